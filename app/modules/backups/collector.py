"""
Tenant data collector

Fetches every exported entity collection of one tenant concurrently and
returns them as a single Snapshot. Either every query succeeds or the
whole collection fails; a partial snapshot is never returned.
"""

import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional
from uuid import UUID

from .exceptions import DataAccessError
from .repository import EntityRepository
from .schemas import Snapshot, Window
from .sheets import ENTITY_TYPES

logger = logging.getLogger(__name__)


class TenantDataCollector:
    """Concurrent fan-out over the entity repositories of one tenant"""

    def __init__(
        self,
        repositories: Dict[str, EntityRepository],
        entity_types: Iterable[str] = ENTITY_TYPES
    ):
        self.repositories = repositories
        self.entity_types = tuple(entity_types)

    async def collect(
        self,
        tenant_id: UUID,
        entity_types: Optional[Iterable[str]] = None
    ) -> Snapshot:
        """Full snapshot, newest records first."""
        fetchers = {
            entity_type: (lambda repo=self._repository(entity_type): repo.list_by_tenant(tenant_id))
            for entity_type in self._selected(entity_types)
        }
        collections = await self._gather(tenant_id, fetchers)
        return Snapshot(tenant_id=tenant_id, collections=collections)

    async def collect_windowed(
        self,
        tenant_id: UUID,
        window: Window,
        entity_types: Optional[Iterable[str]] = None
    ) -> Snapshot:
        """Records moved inside ``window``, in chronological order."""
        fetchers = {
            entity_type: (
                lambda repo=self._repository(entity_type): repo.list_by_tenant_and_window(tenant_id, window)
            )
            for entity_type in self._selected(entity_types)
        }
        collections = await self._gather(tenant_id, fetchers)
        return Snapshot(tenant_id=tenant_id, collections=collections, window=window)

    def _selected(self, entity_types: Optional[Iterable[str]]) -> List[str]:
        if entity_types is None:
            return list(self.entity_types)
        wanted = set(entity_types)
        return [entity_type for entity_type in self.entity_types if entity_type in wanted]

    def _repository(self, entity_type: str) -> EntityRepository:
        repository = self.repositories.get(entity_type)
        if repository is None:
            raise DataAccessError(entity_type, f"Nenhum repositório configurado para '{entity_type}'")
        return repository

    async def _gather(
        self,
        tenant_id: UUID,
        fetchers: Dict[str, Callable[[], Awaitable[List[Any]]]]
    ) -> Dict[str, List[Any]]:
        if not fetchers:
            return {}

        tasks = {
            entity_type: asyncio.ensure_future(fetch())
            for entity_type, fetch in fetchers.items()
        }

        try:
            await asyncio.wait(tasks.values(), return_when=asyncio.FIRST_EXCEPTION)
        except asyncio.CancelledError:
            logger.warning(f"Collection for tenant {tenant_id} cancelled; cancelling pending queries")
            await self._cancel(tasks.values())
            raise

        for entity_type, task in tasks.items():
            if not task.done():
                continue
            if task.cancelled():
                error: BaseException = asyncio.CancelledError()
            else:
                error = task.exception()
            if error is None:
                continue
            await self._cancel(tasks.values())
            raise DataAccessError(entity_type) from error

        collections = {}
        for entity_type, task in tasks.items():
            records = task.result()
            self._check_tenant(tenant_id, entity_type, records)
            collections[entity_type] = records

        counts = ", ".join(f"{key}: {len(records)}" for key, records in collections.items())
        logger.info(f"Collected data for tenant {tenant_id} - {counts}")
        return collections

    @staticmethod
    async def _cancel(tasks: Iterable[asyncio.Future]) -> None:
        tasks = list(tasks)
        for task in tasks:
            # mark finished failures as retrieved
            if task.done() and not task.cancelled():
                task.exception()
        pending = [task for task in tasks if not task.done()]
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)

    @staticmethod
    def _check_tenant(tenant_id: UUID, entity_type: str, records: List[Any]) -> None:
        for record in records:
            record_tenant = getattr(record, "tenant_id", tenant_id)
            if record_tenant != tenant_id:
                raise DataAccessError(entity_type, f"Registro de outro tenant em '{entity_type}'")
