"""
Exceptions for the backup/export engine.

Every error carries the pipeline stage that raised it so the transport
layer can pick the right status code and the logs show where it failed.
"""

from typing import Optional


class ExportStage:
    AUTH = "auth"
    VALIDATION = "validation"
    COLLECT = "collect"
    PROJECT = "project"
    SERIALIZE = "serialize"


class ExportError(Exception):
    """Base class for all export engine failures"""

    default_message = "Erro ao gerar exportação"
    default_stage: Optional[str] = None

    def __init__(self, message: Optional[str] = None, stage: Optional[str] = None):
        self.message = message or self.default_message
        self.stage = stage or self.default_stage
        super().__init__(self.message)

    def __str__(self) -> str:
        if self.stage:
            return f"[{self.stage}] {self.message}"
        return self.message


class AuthorizationError(ExportError):
    """Missing or invalid tenant context"""

    default_message = "Não autorizado"
    default_stage = ExportStage.AUTH


class ValidationError(ExportError):
    """Malformed user input, e.g. an unparseable date"""

    default_message = "Parâmetro inválido"
    default_stage = ExportStage.VALIDATION

    def __init__(self, field: str, message: Optional[str] = None):
        self.field = field
        super().__init__(message or f"Valor inválido para '{field}'")


class DataAccessError(ExportError):
    """An underlying store query failed; the whole export is aborted"""

    default_message = "Erro ao acessar os dados"
    default_stage = ExportStage.COLLECT

    def __init__(self, entity_type: str, message: Optional[str] = None):
        self.entity_type = entity_type
        super().__init__(message or f"Falha ao consultar '{entity_type}'")


class InternalError(ExportError):
    """Invariant violation inside projection or serialization (a defect)"""

    default_message = "Erro interno na exportação"
