from app.database.database import Base
from sqlalchemy import Column, String, DateTime, ForeignKey, UniqueConstraint, Numeric, Enum, Text
from sqlalchemy.orm import relationship
from sqlalchemy.dialects.postgresql import UUID
from uuid import uuid4
from app.common.mixins import TenantMixin, TimestampMixin
import enum


class InvoiceStatus(enum.Enum):
    PENDING = "pending"      # Pendente de pagamento
    PAID = "paid"            # Paga
    OVERDUE = "overdue"      # Vencida
    CANCELLED = "cancelled"  # Cancelada


class PaymentMethod(enum.Enum):
    CASH = "cash"           # Dinheiro
    PIX = "pix"
    CARD = "card"           # Cartão
    TRANSFER = "transfer"   # Transferência
    BOLETO = "boleto"


class Invoice(Base, TenantMixin, TimestampMixin):
    __tablename__ = "invoices"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    number = Column(String(30), nullable=False)

    # References
    order_id = Column(UUID(as_uuid=True), ForeignKey("service_orders.id"), nullable=False)

    status = Column(Enum(InvoiceStatus), nullable=False, default=InvoiceStatus.PENDING)
    total = Column(Numeric(15, 2), nullable=False, default=0)
    due_date = Column(DateTime(timezone=True), nullable=False)
    paid_date = Column(DateTime(timezone=True), nullable=True)
    payment_method = Column(Enum(PaymentMethod), nullable=True)
    notes = Column(Text, nullable=True)

    # Relationships
    order = relationship("ServiceOrder")

    __table_args__ = (
        UniqueConstraint("tenant_id", "number", name="uq_invoice_tenant_number"),
    )
