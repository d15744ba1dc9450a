"""
Dependências de autenticação para FastAPI.
"""
from typing import Annotated, Optional
from uuid import UUID
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy.orm import Session
import jwt

from app.database.database import get_db
from app.modules.auth.models import User, UserCompany
from app.modules.auth.schemas import AuthContext
from app.modules.auth.utils import decode_token

# Security scheme (missing credentials are reported as 401 below)
security = HTTPBearer(auto_error=False)


def _credentials_exception(detail: str = "Não foi possível validar as credenciais") -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


class AuthDependencies:
    """Dependências de autenticação reutilizáveis."""

    @staticmethod
    def get_auth_context(
        credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
        db: Session = Depends(get_db)
    ) -> AuthContext:
        """
        Obter o contexto de autenticação com tenant.

        O tenant vem exclusivamente do token de contexto; nenhum header
        da requisição pode sobrescrevê-lo.
        """
        if credentials is None:
            raise _credentials_exception()

        try:
            payload = decode_token(credentials.credentials)
        except jwt.PyJWTError:
            raise _credentials_exception()

        user_id = payload.get("sub")
        tenant_id = payload.get("tenant_id")
        if user_id is None or payload.get("type") != "context" or tenant_id is None:
            raise _credentials_exception()

        try:
            user_uuid = UUID(str(user_id))
            tenant_uuid = UUID(str(tenant_id))
        except ValueError:
            raise _credentials_exception()

        membership = db.query(UserCompany).join(User, UserCompany.user_id == User.id).filter(
            UserCompany.user_id == user_uuid,
            UserCompany.company_id == tenant_uuid,
            UserCompany.is_active == True,
            User.is_active == True
        ).first()

        if membership is None:
            raise _credentials_exception("Usuário não está associado a esta empresa")

        return AuthContext(
            user_id=user_uuid,
            tenant_id=tenant_uuid,
            user_role=membership.role
        )


def get_current_tenant_id(
    auth_context: AuthContext = Depends(AuthDependencies.get_auth_context)
) -> UUID:
    """Tenant do principal autenticado."""
    if auth_context.tenant_id is None:
        raise _credentials_exception("Usuário não está associado a uma empresa")
    return auth_context.tenant_id


# Instâncias de dependências
CurrentTenantId = Annotated[UUID, Depends(get_current_tenant_id)]
