"""
Schemas for the backup/export engine

Value types passed between the pipeline stages (window, snapshot, sheet
schema, projected sheet, artifact) and the error body of the endpoints.
"""

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Sequence
from uuid import UUID

from pydantic import BaseModel


XLSX_MEDIA_TYPE = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"


class ExportType(str, Enum):
    """Tipos de exportação"""
    COMPLETE = "complete"  # Backup completo
    DAILY = "daily"        # Movimentação diária
    PERIOD = "period"      # Período personalizado


class FormatKind(str, Enum):
    """Formatting hint for a column"""
    TEXT = "text"
    INTEGER = "integer"
    CURRENCY = "currency"
    DATE = "date"
    DATETIME = "datetime"
    ENUM = "enum"
    BOOLEAN = "boolean"


@dataclass(frozen=True)
class Window:
    """Half-open UTC interval [start, end)"""
    start: datetime
    end: datetime

    def __post_init__(self):
        if self.start.tzinfo is None or self.end.tzinfo is None:
            raise ValueError("Window bounds must be timezone-aware")
        if self.start > self.end:
            raise ValueError("Window start must not be after its end")

    @property
    def duration(self) -> timedelta:
        return self.end - self.start

    def contains(self, timestamp: Optional[datetime]) -> bool:
        if timestamp is None:
            return False
        if timestamp.tzinfo is None:
            timestamp = timestamp.replace(tzinfo=timezone.utc)
        return self.start <= timestamp < self.end


@dataclass
class Snapshot:
    """One tenant's records per entity type, for a single export call"""
    tenant_id: UUID
    collections: Dict[str, List[Any]]
    window: Optional[Window] = None

    def records(self, entity_type: str) -> List[Any]:
        return self.collections.get(entity_type, [])

    @property
    def total_records(self) -> int:
        return sum(len(records) for records in self.collections.values())


@dataclass(frozen=True)
class ColumnSpec:
    """One column: header label, value extractor and format hint"""
    header: str
    extractor: Callable[[Any], Any]
    kind: FormatKind = FormatKind.TEXT
    width: int = 15
    labels: Optional[Dict[str, str]] = None


@dataclass(frozen=True)
class SheetSchema:
    """Ordered column definition of one sheet"""
    name: str
    columns: Sequence[ColumnSpec]

    @property
    def headers(self) -> List[str]:
        return [column.header for column in self.columns]


@dataclass
class ProjectedSheet:
    """A sheet ready for serialization"""
    name: str
    schema: SheetSchema
    rows: List[List[Any]] = field(default_factory=list)


@dataclass(frozen=True)
class WorkbookArtifact:
    """Finished workbook bytes plus its suggested filename"""
    content: bytes
    filename: str
    media_type: str = XLSX_MEDIA_TYPE

    @property
    def size(self) -> int:
        return len(self.content)


class ExportErrorResponse(BaseModel):
    """Error body returned by the export endpoints"""
    detail: str
