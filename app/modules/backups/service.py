"""
Backup export service

Wires collector -> (window) -> projector -> serializer for the three
export types and names the resulting file. Every failure is re-raised
tagged with the stage it came from; nothing is retried here.
"""

import logging
from contextlib import contextmanager
from datetime import date
from typing import Dict, Iterator, List, Optional, Tuple
from uuid import UUID

from starlette.concurrency import run_in_threadpool

from app.core.config import settings
from .collector import TenantDataCollector
from .exceptions import (
    AuthorizationError,
    ExportError,
    ExportStage,
    InternalError,
    ValidationError,
)
from .projector import TabularProjector
from .repository import build_repositories
from .schemas import ExportType, SheetSchema, Snapshot, WorkbookArtifact
from .serializer import WorkbookSerializer, XlsxWorkbookSerializer
from .sheets import ENTITY_TYPES, FULL_BACKUP_SHEETS, MOVEMENT_SHEETS
from .window import MovementWindowFilter

logger = logging.getLogger(__name__)

FILE_EXTENSION = "xlsx"


@contextmanager
def export_stage(stage: str, tenant_id: Optional[UUID] = None) -> Iterator[None]:
    """Tag failures with ``stage``; unexpected exceptions become InternalError."""
    try:
        yield
    except ExportError as e:
        if e.stage is None:
            e.stage = stage
        _log_failure(e, tenant_id)
        raise
    except Exception as e:
        error = InternalError(f"Falha inesperada: {e}", stage=stage)
        _log_failure(error, tenant_id)
        raise error from e


def _log_failure(error: ExportError, tenant_id: Optional[UUID]) -> None:
    if isinstance(error, (ValidationError, AuthorizationError)):
        logger.warning(f"Export rejected for tenant {tenant_id} at stage '{error.stage}': {error.message}")
    else:
        logger.error(
            f"Export failed for tenant {tenant_id} at stage '{error.stage}': {error.message}",
            exc_info=True
        )


class BackupExportService:
    """Entry points for full backup, daily movement and period exports"""

    def __init__(
        self,
        collector: TenantDataCollector,
        serializer: Optional[WorkbookSerializer] = None,
        window_filter: Optional[MovementWindowFilter] = None,
        projector: Optional[TabularProjector] = None,
        include_summary: Optional[bool] = None
    ):
        self.collector = collector
        self.serializer = serializer or XlsxWorkbookSerializer()
        self.window_filter = window_filter or MovementWindowFilter()
        self.projector = projector or TabularProjector(self.window_filter.tz)
        self.include_summary = (
            settings.EXPORT_INCLUDE_SUMMARY if include_summary is None else include_summary
        )

    # ===== ENTRY POINTS =====

    async def full_backup(self, tenant_id: UUID) -> WorkbookArtifact:
        self._require_tenant(tenant_id)
        filename = self.full_backup_filename()
        logger.info(f"Exporting complete backup for tenant {tenant_id}")

        with export_stage(ExportStage.COLLECT, tenant_id):
            snapshot = await self.collector.collect(tenant_id)
        logger.debug(f"Snapshot for tenant {tenant_id}: {snapshot.total_records} records")

        artifact = await self._render(snapshot, FULL_BACKUP_SHEETS, filename, ExportType.COMPLETE)
        logger.info(f"Complete backup for tenant {tenant_id} ready: {artifact.filename} ({artifact.size} bytes)")
        return artifact

    async def daily_movement(self, tenant_id: UUID, day: Optional[str] = None) -> WorkbookArtifact:
        self._require_tenant(tenant_id)

        with export_stage(ExportStage.VALIDATION, tenant_id):
            target = self.window_filter.resolve_date(day, "date")
            window = self.window_filter.window_for(target)

        filename = self.daily_movement_filename(target)
        logger.info(f"Exporting daily movement of {target:%d/%m/%Y} for tenant {tenant_id}")

        with export_stage(ExportStage.COLLECT, tenant_id):
            snapshot = await self.collector.collect_windowed(tenant_id, window)

        artifact = await self._render(
            snapshot, MOVEMENT_SHEETS, filename, ExportType.DAILY, period=(target, target)
        )
        logger.info(f"Daily movement for tenant {tenant_id} ready: {artifact.filename} ({artifact.size} bytes)")
        return artifact

    async def period_export(
        self,
        tenant_id: UUID,
        from_date: Optional[str] = None,
        to_date: Optional[str] = None,
        tables: Optional[str] = None
    ) -> WorkbookArtifact:
        self._require_tenant(tenant_id)

        with export_stage(ExportStage.VALIDATION, tenant_id):
            start_day = self.window_filter.resolve_date(from_date, "from")
            end_day = self.window_filter.resolve_date(to_date, "to")
            window = self.window_filter.period_window(start_day, end_day)
            entity_types = self.parse_tables(tables)

        filename = self.period_filename(start_day, end_day)
        logger.info(
            f"Exporting period {start_day:%d/%m/%Y} - {end_day:%d/%m/%Y} "
            f"({', '.join(entity_types)}) for tenant {tenant_id}"
        )

        with export_stage(ExportStage.COLLECT, tenant_id):
            snapshot = await self.collector.collect_windowed(tenant_id, window, entity_types)

        artifact = await self._render(
            snapshot, MOVEMENT_SHEETS, filename, ExportType.PERIOD, period=(start_day, end_day)
        )
        logger.info(f"Period export for tenant {tenant_id} ready: {artifact.filename} ({artifact.size} bytes)")
        return artifact

    # ===== FILENAMES =====

    def full_backup_filename(self) -> str:
        return f"backup_completo_{self.window_filter.now():%Y-%m-%d_%H-%M-%S}.{FILE_EXTENSION}"

    @staticmethod
    def daily_movement_filename(day: date) -> str:
        return f"movimentacao_{day:%Y-%m-%d}.{FILE_EXTENSION}"

    @staticmethod
    def period_filename(start_day: date, end_day: date) -> str:
        return f"periodo_{start_day:%Y-%m-%d}_{end_day:%Y-%m-%d}.{FILE_EXTENSION}"

    # ===== HELPERS =====

    @staticmethod
    def parse_tables(tables: Optional[str]) -> List[str]:
        """Comma-separated entity types; unknown names are ignored."""
        if not tables:
            return list(ENTITY_TYPES)
        requested = {name.strip().lower() for name in tables.split(",")}
        selected = [entity_type for entity_type in ENTITY_TYPES if entity_type in requested]
        if not selected:
            raise ValidationError("tables", "Nenhuma tabela válida informada")
        return selected

    @staticmethod
    def _require_tenant(tenant_id: Optional[UUID]) -> None:
        if tenant_id is None:
            error = AuthorizationError("Usuário não está associado a uma empresa")
            _log_failure(error, tenant_id)
            raise error

    async def _render(
        self,
        snapshot: Snapshot,
        registry: Dict[str, SheetSchema],
        filename: str,
        export_type: ExportType,
        period: Optional[Tuple[date, date]] = None
    ) -> WorkbookArtifact:
        # CPU-bound: keep it off the event loop
        return await run_in_threadpool(
            self._build_artifact, snapshot, registry, filename, export_type, period
        )

    def _build_artifact(
        self,
        snapshot: Snapshot,
        registry: Dict[str, SheetSchema],
        filename: str,
        export_type: ExportType,
        period: Optional[Tuple[date, date]]
    ) -> WorkbookArtifact:
        with export_stage(ExportStage.PROJECT, snapshot.tenant_id):
            sheets = self.projector.project(snapshot, registry)
            if self.include_summary:
                sheets.insert(0, self.projector.summarize(export_type.value, sheets, period))

        with export_stage(ExportStage.SERIALIZE, snapshot.tenant_id):
            return self.serializer.serialize(sheets, filename)


def get_backup_export_service() -> BackupExportService:
    """FastAPI dependency: a service wired to the relational store."""
    return BackupExportService(TenantDataCollector(build_repositories()))
