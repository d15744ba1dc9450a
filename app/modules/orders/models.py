from app.database.database import Base
from sqlalchemy import Column, String, DateTime, ForeignKey, UniqueConstraint, Numeric, Enum, Text
from sqlalchemy.orm import relationship
from sqlalchemy.dialects.postgresql import UUID
from uuid import uuid4
from app.common.mixins import TenantMixin, TimestampMixin
import enum


class OrderStatus(enum.Enum):
    OPEN = "open"                    # Aberta
    IN_PROGRESS = "in_progress"      # Em andamento
    WAITING_PARTS = "waiting_parts"  # Aguardando peças
    COMPLETED = "completed"          # Concluída
    DELIVERED = "delivered"          # Entregue
    CANCELLED = "cancelled"          # Cancelada


class OrderPriority(enum.Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    URGENT = "urgent"


class ActivityType(enum.Enum):
    CREATED = "created"
    STATUS_CHANGED = "status_changed"
    COMMENT = "comment"
    ASSIGNED = "assigned"
    INVOICED = "invoiced"


class ServiceOrder(Base, TenantMixin, TimestampMixin):
    __tablename__ = "service_orders"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    order_number = Column(String(30), nullable=False)

    # References
    client_id = Column(UUID(as_uuid=True), ForeignKey("clients.id"), nullable=False)
    technician_id = Column(UUID(as_uuid=True), ForeignKey("users.id"), nullable=True)

    # Equipamento
    equipment = Column(String(150), nullable=False)
    brand = Column(String(100), nullable=True)
    model = Column(String(100), nullable=True)
    serial_number = Column(String(100), nullable=True)

    # Atendimento
    problem = Column(Text, nullable=False)
    diagnosis = Column(Text, nullable=True)
    solution = Column(Text, nullable=True)
    observations = Column(Text, nullable=True)
    status = Column(Enum(OrderStatus), nullable=False, default=OrderStatus.OPEN)
    priority = Column(Enum(OrderPriority), nullable=False, default=OrderPriority.MEDIUM)

    # Valores
    estimated_value = Column(Numeric(15, 2), nullable=True)
    final_value = Column(Numeric(15, 2), nullable=True)
    labor_cost = Column(Numeric(15, 2), nullable=True)
    parts_cost = Column(Numeric(15, 2), nullable=True)

    # Datas
    estimated_date = Column(DateTime(timezone=True), nullable=True)
    completed_date = Column(DateTime(timezone=True), nullable=True)
    warranty_until = Column(DateTime(timezone=True), nullable=True)

    # Relationships
    client = relationship("Client")
    technician = relationship("User")
    activities = relationship("OrderActivity", back_populates="order", cascade="all, delete-orphan")

    __table_args__ = (
        UniqueConstraint("tenant_id", "order_number", name="uq_service_order_tenant_number"),
    )


class OrderActivity(Base, TenantMixin, TimestampMixin):
    __tablename__ = "order_activities"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    order_id = Column(UUID(as_uuid=True), ForeignKey("service_orders.id"), nullable=False, index=True)
    user_id = Column(UUID(as_uuid=True), ForeignKey("users.id"), nullable=True)
    type = Column(Enum(ActivityType), nullable=False)
    description = Column(Text, nullable=False)

    # Relationships
    order = relationship("ServiceOrder", back_populates="activities")
    user = relationship("User")
