"""
Tabular projector

Maps snapshot records into flat rows following a sheet registry. Values
are normalized per column kind but stay typed (numbers, dates) so the
serializer can write real numeric and date cells.
"""

from datetime import date, datetime, timezone, tzinfo
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional, Tuple, Union

from openpyxl.cell.cell import ILLEGAL_CHARACTERS_RE

from .exceptions import ExportStage, InternalError
from .schemas import ColumnSpec, FormatKind, ProjectedSheet, SheetSchema, Snapshot
from .sheets import ENTITY_TYPES, EXPORT_TYPE_LABELS, SUMMARY_SHEET_NAME
from .window import resolve_timezone


SUMMARY_SCHEMA = SheetSchema(
    SUMMARY_SHEET_NAME,
    [
        ColumnSpec("Item", lambda row: row[0], width=30),
        ColumnSpec("Valor", lambda row: row[1], width=30),
    ]
)


def clean_text(value: str) -> str:
    """Drop control characters that cannot be stored in an xlsx cell."""
    return ILLEGAL_CHARACTERS_RE.sub("", value)


class TabularProjector:
    """Projects a Snapshot into ordered sheets"""

    def __init__(self, tz: Union[str, tzinfo, None] = None):
        self.tz = resolve_timezone(tz)

    def project(
        self,
        snapshot: Snapshot,
        registry: Dict[str, SheetSchema],
        order: Iterable[str] = ENTITY_TYPES
    ) -> List[ProjectedSheet]:
        """
        One sheet per entity type present in the snapshot, in ``order``.
        Entity types without records still get a header-only sheet.
        """
        sheets = []
        for entity_type in order:
            if entity_type not in snapshot.collections:
                continue
            schema = registry.get(entity_type)
            if schema is None:
                raise InternalError(
                    f"Nenhum layout de planilha para '{entity_type}'",
                    stage=ExportStage.PROJECT
                )
            rows = [
                self.project_record(schema, record, index)
                for index, record in enumerate(snapshot.records(entity_type))
            ]
            sheets.append(ProjectedSheet(name=schema.name, schema=schema, rows=rows))
        return sheets

    def project_record(self, schema: SheetSchema, record: Any, index: int = 0) -> List[Any]:
        row = []
        for column in schema.columns:
            try:
                row.append(self.normalize(column, column.extractor(record)))
            except Exception as e:
                raise InternalError(
                    f"Falha ao projetar a coluna '{column.header}' da planilha "
                    f"'{schema.name}' (linha {index + 1}): {e}",
                    stage=ExportStage.PROJECT
                ) from e
        return row

    def normalize(self, column: ColumnSpec, value: Any) -> Any:
        if value is None:
            return None
        if isinstance(value, Enum):
            value = value.value

        kind = column.kind
        if kind == FormatKind.CURRENCY:
            return self._to_decimal(value)
        if kind == FormatKind.INTEGER:
            return int(value)
        if kind == FormatKind.DATE:
            return self._to_local_date(value)
        if kind == FormatKind.DATETIME:
            return self._to_local_datetime(value)
        if kind == FormatKind.ENUM:
            labels = column.labels or {}
            return clean_text(labels.get(str(value), str(value)))
        if kind == FormatKind.BOOLEAN:
            return "Sim" if value else "Não"
        return clean_text(value if isinstance(value, str) else str(value))

    def summarize(
        self,
        export_type: str,
        sheets: List[ProjectedSheet],
        period: Optional[Tuple[date, date]] = None
    ) -> ProjectedSheet:
        """Summary sheet: export type, covered period and counts per sheet."""
        rows: List[List[Any]] = [
            ["Tipo de Exportação", EXPORT_TYPE_LABELS.get(export_type, export_type)],
        ]
        if period is not None:
            rows.append(["Período Início", period[0]])
            rows.append(["Período Fim", period[1]])
        for sheet in sheets:
            rows.append([sheet.name, len(sheet.rows)])
        rows.append(["Total de Registros", sum(len(sheet.rows) for sheet in sheets)])
        return ProjectedSheet(name=SUMMARY_SCHEMA.name, schema=SUMMARY_SCHEMA, rows=rows)

    @staticmethod
    def _to_decimal(value: Any) -> Decimal:
        if isinstance(value, Decimal):
            return value
        if isinstance(value, bool):
            raise TypeError("boolean is not a currency value")
        if isinstance(value, (int, float)):
            return Decimal(str(value))
        try:
            return Decimal(str(value).strip())
        except InvalidOperation:
            raise TypeError(f"not a currency value: {value!r}")

    def _as_aware(self, value: datetime) -> datetime:
        # Store timestamps are UTC; naive values are read as UTC
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value

    def _to_local_date(self, value: Any) -> date:
        if isinstance(value, datetime):
            return self._as_aware(value).astimezone(self.tz).date()
        if isinstance(value, date):
            return value
        raise TypeError(f"not a date: {value!r}")

    def _to_local_datetime(self, value: Any) -> Union[date, datetime]:
        if isinstance(value, datetime):
            # Excel cells have no timezone: write local wall-clock time
            return self._as_aware(value).astimezone(self.tz).replace(tzinfo=None)
        if isinstance(value, date):
            return value
        raise TypeError(f"not a datetime: {value!r}")
