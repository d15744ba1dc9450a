"""
Workbook serializer

Writes projected sheets into a single .xlsx workbook. The workbook is
built completely in memory; callers get the bytes or an exception, never
a partial file.
"""

import logging
from abc import ABC, abstractmethod
from decimal import Decimal
from io import BytesIO
from typing import Any, Optional, Sequence

from openpyxl import Workbook
from openpyxl.cell import WriteOnlyCell
from openpyxl.styles import Alignment, Border, Font, PatternFill, Side
from openpyxl.utils import get_column_letter

from app.core.config import settings
from .exceptions import ExportError, ExportStage, InternalError
from .schemas import ColumnSpec, FormatKind, ProjectedSheet, WorkbookArtifact, XLSX_MEDIA_TYPE

logger = logging.getLogger(__name__)

MAX_SHEET_NAME_LENGTH = 31
MAX_WORKSHEET_ROWS = 1048576
DATE_NUMBER_FORMAT = "DD/MM/YYYY"
DATETIME_NUMBER_FORMAT = "DD/MM/YYYY HH:MM"
INTEGER_NUMBER_FORMAT = "0"

_THIN = Side(style="thin")
_BORDER = Border(top=_THIN, left=_THIN, bottom=_THIN, right=_THIN)
HEADER_FONT = Font(name="Arial", size=11, bold=True, color="FFFFFF")
HEADER_FILL = PatternFill(fill_type="solid", fgColor="4472C4")
HEADER_ALIGNMENT = Alignment(vertical="center", horizontal="center")
CELL_FONT = Font(name="Arial", size=10)
CELL_ALIGNMENT = Alignment(vertical="center", wrap_text=True)


class WorkbookSerializer(ABC):
    """Turns projected sheets into a binary artifact"""

    media_type = XLSX_MEDIA_TYPE

    @abstractmethod
    def write(self, sheets: Sequence[ProjectedSheet]) -> bytes:
        """Render all sheets and return the finished file bytes"""

    def serialize(self, sheets: Sequence[ProjectedSheet], filename: str) -> WorkbookArtifact:
        self.validate_sheet_names(sheets)
        try:
            content = self.write(sheets)
        except ExportError:
            raise
        except Exception as e:
            raise InternalError(
                f"Falha ao gerar a planilha: {e}",
                stage=ExportStage.SERIALIZE
            ) from e
        return WorkbookArtifact(content=content, filename=filename, media_type=self.media_type)

    @staticmethod
    def validate_sheet_names(sheets: Sequence[ProjectedSheet]) -> None:
        """Sheet names must be unique (case-insensitive) and fit Excel's limit."""
        seen = set()
        for sheet in sheets:
            key = sheet.name.strip().lower()
            if not key or len(sheet.name) > MAX_SHEET_NAME_LENGTH:
                raise InternalError(
                    f"Nome de planilha inválido: '{sheet.name}'",
                    stage=ExportStage.SERIALIZE
                )
            if key in seen:
                raise InternalError(
                    f"Nome de planilha duplicado: '{sheet.name}'",
                    stage=ExportStage.SERIALIZE
                )
            seen.add(key)


class XlsxWorkbookSerializer(WorkbookSerializer):
    """openpyxl write-only workbook: rows are streamed into the archive"""

    max_rows = MAX_WORKSHEET_ROWS

    def __init__(self, currency_format: Optional[str] = None, creator: Optional[str] = None):
        self.currency_format = currency_format or settings.EXPORT_CURRENCY_FORMAT
        self.creator = creator or settings.EXPORT_WORKBOOK_CREATOR

    def write(self, sheets: Sequence[ProjectedSheet]) -> bytes:
        workbook = Workbook(write_only=True)
        workbook.properties.creator = self.creator

        for sheet in sheets:
            self._write_sheet(workbook, sheet)

        buffer = BytesIO()
        workbook.save(buffer)
        content = buffer.getvalue()
        logger.debug(f"Workbook written: {len(sheets)} sheets, {len(content)} bytes")
        return content

    def _write_sheet(self, workbook: Workbook, sheet: ProjectedSheet) -> None:
        # write-only sheets do not enforce the xlsx row limit
        if len(sheet.rows) + 1 > self.max_rows:
            raise InternalError(
                f"A planilha '{sheet.name}' excede o limite de {self.max_rows} linhas "
                f"({len(sheet.rows)} registros)",
                stage=ExportStage.SERIALIZE
            )
        worksheet = workbook.create_sheet(title=sheet.name)
        columns = list(sheet.schema.columns)

        # Dimensions and panes must be set before the first row is streamed
        for index, column in enumerate(columns, start=1):
            worksheet.column_dimensions[get_column_letter(index)].width = column.width
        worksheet.freeze_panes = "A2"

        worksheet.append([self._header_cell(worksheet, column.header) for column in columns])

        for row in sheet.rows:
            if len(row) != len(columns):
                raise InternalError(
                    f"Linha com {len(row)} colunas na planilha '{sheet.name}' "
                    f"(esperado {len(columns)})",
                    stage=ExportStage.SERIALIZE
                )
            worksheet.append([
                self._value_cell(worksheet, column, value)
                for column, value in zip(columns, row)
            ])

        if sheet.rows:
            last_column = get_column_letter(len(columns))
            worksheet.auto_filter.ref = f"A1:{last_column}{len(sheet.rows) + 1}"

    @staticmethod
    def _header_cell(worksheet, header: str) -> WriteOnlyCell:
        cell = WriteOnlyCell(worksheet, value=header)
        cell.font = HEADER_FONT
        cell.fill = HEADER_FILL
        cell.alignment = HEADER_ALIGNMENT
        cell.border = _BORDER
        return cell

    def _value_cell(self, worksheet, column: ColumnSpec, value: Any) -> WriteOnlyCell:
        cell = WriteOnlyCell(worksheet, value=self._cell_value(value))
        cell.font = CELL_FONT
        cell.alignment = CELL_ALIGNMENT
        cell.border = _BORDER
        if isinstance(value, str) and column.kind in (FormatKind.TEXT, FormatKind.ENUM):
            # stored text, never a formula
            cell.data_type = "s"
        elif value is not None:
            if column.kind == FormatKind.CURRENCY:
                cell.number_format = self.currency_format
            elif column.kind == FormatKind.DATE:
                cell.number_format = DATE_NUMBER_FORMAT
            elif column.kind == FormatKind.DATETIME:
                cell.number_format = DATETIME_NUMBER_FORMAT
            elif column.kind == FormatKind.INTEGER:
                cell.number_format = INTEGER_NUMBER_FORMAT
        return cell

    @staticmethod
    def _cell_value(value: Any) -> Any:
        """Decimal -> float so cells stay numeric; everything else as is."""
        if isinstance(value, Decimal):
            return float(value)
        return value

