"""
Repository interface consumed by the collector

One repository per entity type with two read operations. The SQLAlchemy
implementation opens its own AsyncSession per call, so repositories can
be queried concurrently.
"""

from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, List, Optional, Sequence
from uuid import UUID

from sqlalchemy import and_, or_, select
from sqlalchemy.orm import selectinload

from app.database.database import AsyncSessionLocal
from app.modules.clients.models import Client
from app.modules.invoices.models import Invoice
from app.modules.orders.models import OrderActivity, ServiceOrder
from app.modules.products.models import Product
from .schemas import Window
from .sheets import MOVEMENT_TIMESTAMPS


class EntityRepository(ABC):
    """Read access to one entity type, always scoped to a tenant"""

    @abstractmethod
    async def list_by_tenant(self, tenant_id: UUID) -> List[Any]:
        """All records of the tenant, newest first"""

    @abstractmethod
    async def list_by_tenant_and_window(self, tenant_id: UUID, window: Window) -> List[Any]:
        """Records with a movement timestamp in [start, end), oldest first"""


class SqlAlchemyEntityRepository(EntityRepository):
    """EntityRepository over the async SQLAlchemy engine"""

    def __init__(
        self,
        model,
        timestamp_columns: Sequence[str] = ("created_at",),
        load_options: Sequence[Any] = (),
        session_factory: Optional[Callable] = None
    ):
        self.model = model
        self.timestamp_columns = tuple(timestamp_columns)
        self.load_options = tuple(load_options)
        self.session_factory = session_factory or AsyncSessionLocal

    def _base_query(self, tenant_id: UUID):
        return select(self.model).where(
            self.model.tenant_id == tenant_id
        ).options(*self.load_options)

    def _window_filter(self, window: Window):
        conditions = []
        for name in self.timestamp_columns:
            column = getattr(self.model, name)
            conditions.append(and_(column >= window.start, column < window.end))
        return or_(*conditions)

    async def _fetch(self, query) -> List[Any]:
        async with self.session_factory() as session:
            result = await session.execute(query)
            return list(result.scalars().all())

    async def list_by_tenant(self, tenant_id: UUID) -> List[Any]:
        query = self._base_query(tenant_id).order_by(
            self.model.created_at.desc(), self.model.id.desc()
        )
        return await self._fetch(query)

    async def list_by_tenant_and_window(self, tenant_id: UUID, window: Window) -> List[Any]:
        query = self._base_query(tenant_id).where(
            self._window_filter(window)
        ).order_by(self.model.created_at.asc(), self.model.id.asc())
        return await self._fetch(query)


def build_repositories(session_factory: Optional[Callable] = None) -> Dict[str, EntityRepository]:
    """Repositories for every exported entity type"""
    return {
        "clients": SqlAlchemyEntityRepository(
            Client,
            MOVEMENT_TIMESTAMPS["clients"],
            session_factory=session_factory
        ),
        "products": SqlAlchemyEntityRepository(
            Product,
            MOVEMENT_TIMESTAMPS["products"],
            session_factory=session_factory
        ),
        "orders": SqlAlchemyEntityRepository(
            ServiceOrder,
            MOVEMENT_TIMESTAMPS["orders"],
            load_options=(
                selectinload(ServiceOrder.client),
                selectinload(ServiceOrder.technician),
            ),
            session_factory=session_factory
        ),
        "activities": SqlAlchemyEntityRepository(
            OrderActivity,
            MOVEMENT_TIMESTAMPS["activities"],
            load_options=(
                selectinload(OrderActivity.order),
                selectinload(OrderActivity.user),
            ),
            session_factory=session_factory
        ),
        "invoices": SqlAlchemyEntityRepository(
            Invoice,
            MOVEMENT_TIMESTAMPS["invoices"],
            load_options=(
                selectinload(Invoice.order).selectinload(ServiceOrder.client),
            ),
            session_factory=session_factory
        ),
    }
