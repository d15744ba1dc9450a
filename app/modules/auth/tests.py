"""
Tests para el módulo de Auth

Cubren la resolución del tenant a partir del token de contexto:
- Token ausente, inválido o expirado -> 401
- Token sin tenant o de otro tipo -> 401
- Usuario sin vínculo activo con la empresa -> 401
"""

from datetime import timedelta
from types import SimpleNamespace
from uuid import uuid4

import pytest
from fastapi import HTTPException
from fastapi.security import HTTPAuthorizationCredentials

from app.main import app  # noqa: F401  (registers every mapped model)
from app.modules.auth.dependencies import AuthDependencies, get_current_tenant_id
from app.modules.auth.schemas import AuthContext
from app.modules.auth.utils import create_context_token, decode_token


class FakeQuery:
    def __init__(self, result):
        self.result = result

    def join(self, *args, **kwargs):
        return self

    def filter(self, *args, **kwargs):
        return self

    def first(self):
        return self.result


class FakeSession:
    def __init__(self, membership=None):
        self.membership = membership

    def query(self, *args, **kwargs):
        return FakeQuery(self.membership)


def bearer(token):
    return HTTPAuthorizationCredentials(scheme="Bearer", credentials=token)


@pytest.fixture
def ids():
    return {"user_id": uuid4(), "tenant_id": uuid4()}


class TestContextToken:
    """Tests para los tokens de contexto"""

    def test_token_round_trip(self, ids):
        token = create_context_token({"sub": str(ids["user_id"]), "tenant_id": str(ids["tenant_id"])})

        payload = decode_token(token)

        assert payload["type"] == "context"
        assert payload["tenant_id"] == str(ids["tenant_id"])


class TestAuthContext:
    """Tests para AuthDependencies.get_auth_context"""

    def test_valid_token_with_membership(self, ids):
        token = create_context_token({"sub": str(ids["user_id"]), "tenant_id": str(ids["tenant_id"])})
        db = FakeSession(SimpleNamespace(role="owner"))

        context = AuthDependencies.get_auth_context(bearer(token), db)

        assert context.user_id == ids["user_id"]
        assert context.tenant_id == ids["tenant_id"]
        assert context.user_role == "owner"
        assert get_current_tenant_id(context) == ids["tenant_id"]

    def test_missing_credentials(self):
        with pytest.raises(HTTPException) as exc_info:
            AuthDependencies.get_auth_context(None, FakeSession())

        assert exc_info.value.status_code == 401

    def test_expired_token(self, ids):
        token = create_context_token(
            {"sub": str(ids["user_id"]), "tenant_id": str(ids["tenant_id"])},
            expires_delta=timedelta(minutes=-1)
        )

        with pytest.raises(HTTPException) as exc_info:
            AuthDependencies.get_auth_context(bearer(token), FakeSession(SimpleNamespace(role="owner")))

        assert exc_info.value.status_code == 401

    def test_token_without_tenant(self, ids):
        token = create_context_token({"sub": str(ids["user_id"])})

        with pytest.raises(HTTPException) as exc_info:
            AuthDependencies.get_auth_context(bearer(token), FakeSession(SimpleNamespace(role="owner")))

        assert exc_info.value.status_code == 401

    def test_user_not_member_of_company(self, ids):
        token = create_context_token({"sub": str(ids["user_id"]), "tenant_id": str(ids["tenant_id"])})

        with pytest.raises(HTTPException) as exc_info:
            AuthDependencies.get_auth_context(bearer(token), FakeSession(None))

        assert exc_info.value.status_code == 401

    def test_context_without_tenant(self, ids):
        with pytest.raises(HTTPException) as exc_info:
            get_current_tenant_id(AuthContext(user_id=ids["user_id"]))

        assert exc_info.value.status_code == 401
