"""
Export Router

Download endpoints for the complete backup, the daily movement and the
custom period workbooks of the authenticated company.
"""

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Response, status

from app.modules.auth.dependencies import CurrentTenantId
from .exceptions import (
    AuthorizationError,
    DataAccessError,
    ExportError,
    ValidationError,
)
from .schemas import ExportErrorResponse, WorkbookArtifact
from .service import BackupExportService, get_backup_export_service

router = APIRouter(prefix="/export", tags=["Export"])

ERROR_RESPONSES = {
    400: {"model": ExportErrorResponse, "description": "Parâmetro inválido"},
    401: {"model": ExportErrorResponse, "description": "Não autorizado"},
    500: {"model": ExportErrorResponse, "description": "Erro interno"},
}


def create_workbook_response(artifact: WorkbookArtifact) -> Response:
    """Binary response with download headers for a finished workbook."""
    return Response(
        content=artifact.content,
        media_type=artifact.media_type,
        headers={
            "Content-Disposition": f'attachment; filename="{artifact.filename}"',
            "Content-Length": str(artifact.size),
            "Cache-Control": "no-cache, no-store, must-revalidate",
            "Pragma": "no-cache",
            "Expires": "0",
        }
    )


def to_http_exception(error: ExportError) -> HTTPException:
    """Map engine errors to status codes; internal details stay in the logs."""
    if isinstance(error, AuthorizationError):
        return HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=error.message,
            headers={"WWW-Authenticate": "Bearer"},
        )
    if isinstance(error, ValidationError):
        return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=error.message)
    if isinstance(error, DataAccessError):
        detail = "Erro ao acessar os dados durante a exportação"
    else:
        detail = "Erro interno ao gerar a exportação"
    return HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=detail)


@router.get("/complete", response_class=Response, responses=ERROR_RESPONSES)
async def export_complete_backup(
    tenant_id: CurrentTenantId,
    service: BackupExportService = Depends(get_backup_export_service)
):
    """Backup completo de todos os dados da empresa."""
    try:
        artifact = await service.full_backup(tenant_id)
    except ExportError as e:
        raise to_http_exception(e)
    return create_workbook_response(artifact)


@router.get("/daily", response_class=Response, responses=ERROR_RESPONSES)
async def export_daily_movement(
    tenant_id: CurrentTenantId,
    day: Optional[str] = Query(None, alias="date", description="Data (YYYY-MM-DD), padrão: hoje"),
    service: BackupExportService = Depends(get_backup_export_service)
):
    """Movimentação de um dia no fuso horário de operação."""
    try:
        artifact = await service.daily_movement(tenant_id, day)
    except ExportError as e:
        raise to_http_exception(e)
    return create_workbook_response(artifact)


@router.get("/period", response_class=Response, responses=ERROR_RESPONSES)
async def export_period(
    tenant_id: CurrentTenantId,
    from_date: Optional[str] = Query(None, alias="from", description="Data inicial (YYYY-MM-DD)"),
    to_date: Optional[str] = Query(None, alias="to", description="Data final (YYYY-MM-DD)"),
    tables: Optional[str] = Query(
        None,
        description="Tabelas separadas por vírgula: orders, clients, products, activities, invoices"
    ),
    service: BackupExportService = Depends(get_backup_export_service)
):
    """Exportação de um período personalizado (até 365 dias)."""
    try:
        artifact = await service.period_export(tenant_id, from_date, to_date, tables)
    except ExportError as e:
        raise to_http_exception(e)
    return create_workbook_response(artifact)
