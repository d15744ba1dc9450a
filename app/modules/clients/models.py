"""
Modelos SQLAlchemy para o módulo de Clientes

Clientes pessoa física (PF) ou jurídica (PJ) de cada empresa.
Arquitetura multi-tenant: todas as linhas carregam tenant_id.
"""

from app.database.database import Base
from sqlalchemy import Column, String, Boolean, Enum
from sqlalchemy.dialects.postgresql import UUID
from uuid import uuid4
from app.common.mixins import TenantMixin, TimestampMixin
import enum


class ClientType(enum.Enum):
    PF = "PF"  # Pessoa física
    PJ = "PJ"  # Pessoa jurídica


class Client(Base, TenantMixin, TimestampMixin):
    __tablename__ = "clients"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    nome = Column(String(150), nullable=False)
    email = Column(String(150), nullable=True)
    telefone = Column(String(20), nullable=True)
    tipo = Column(Enum(ClientType), nullable=False, default=ClientType.PF)
    documento = Column(String(20), nullable=True)  # CPF ou CNPJ

    # Endereço
    rua = Column(String(150), nullable=True)
    numero = Column(String(20), nullable=True)
    cidade = Column(String(100), nullable=True)
    estado = Column(String(2), nullable=True)
    cep = Column(String(9), nullable=True)

    is_active = Column(Boolean, default=True, nullable=False)
