"""
Sheet registry for exports

Column layout of every sheet (header labels in Portuguese, extractor,
format hint, width) and the fixed order in which sheets are written.
"""

from enum import Enum
from typing import Any, Callable, Dict, List

from .schemas import ColumnSpec, FormatKind, SheetSchema


# Fixed sheet order, independent of snapshot insertion order
ENTITY_TYPES = ("clients", "products", "orders", "activities", "invoices")

# Columns compared against a movement window, per entity type
MOVEMENT_TIMESTAMPS: Dict[str, tuple] = {
    "clients": ("created_at",),
    "products": ("created_at", "updated_at"),
    "orders": ("created_at", "updated_at"),
    "activities": ("created_at",),
    "invoices": ("created_at", "updated_at"),
}


def attr(path: str) -> Callable[[Any], Any]:
    """
    Extractor for a dotted attribute path. Missing attributes or missing
    related objects yield None instead of raising.
    """
    parts = path.split(".")

    def extract(record: Any) -> Any:
        value = record
        for part in parts:
            if value is None:
                return None
            if isinstance(value, dict):
                value = value.get(part)
            else:
                value = getattr(value, part, None)
        if isinstance(value, Enum):
            return value.value
        return value

    return extract


ORDER_STATUS_LABELS = {
    "open": "Aberta",
    "in_progress": "Em andamento",
    "waiting_parts": "Aguardando peças",
    "completed": "Concluída",
    "delivered": "Entregue",
    "cancelled": "Cancelada",
}

ORDER_PRIORITY_LABELS = {
    "low": "Baixa",
    "medium": "Média",
    "high": "Alta",
    "urgent": "Urgente",
}

ACTIVITY_TYPE_LABELS = {
    "created": "Criação",
    "status_changed": "Mudança de status",
    "comment": "Comentário",
    "assigned": "Atribuição",
    "invoiced": "Faturamento",
}

INVOICE_STATUS_LABELS = {
    "pending": "Pendente",
    "paid": "Paga",
    "overdue": "Vencida",
    "cancelled": "Cancelada",
}

PAYMENT_METHOD_LABELS = {
    "cash": "Dinheiro",
    "pix": "PIX",
    "card": "Cartão",
    "transfer": "Transferência",
    "boleto": "Boleto",
}


def _clients(created_kind: FormatKind) -> List[ColumnSpec]:
    return [
        ColumnSpec("ID", attr("id"), width=38),
        ColumnSpec("Nome", attr("nome"), width=30),
        ColumnSpec("Email", attr("email"), width=30),
        ColumnSpec("Telefone", attr("telefone"), width=15),
        ColumnSpec("Tipo", attr("tipo"), FormatKind.ENUM, width=10, labels={"PF": "PF", "PJ": "PJ"}),
        ColumnSpec("Documento", attr("documento"), width=20),
        ColumnSpec("Rua", attr("rua"), width=30),
        ColumnSpec("Número", attr("numero"), width=10),
        ColumnSpec("Cidade", attr("cidade"), width=20),
        ColumnSpec("Estado", attr("estado"), width=10),
        ColumnSpec("CEP", attr("cep"), width=12),
        ColumnSpec("Ativo", attr("is_active"), FormatKind.BOOLEAN, width=10),
        ColumnSpec("Data Criação", attr("created_at"), created_kind, width=20),
    ]


def _products(created_kind: FormatKind) -> List[ColumnSpec]:
    return [
        ColumnSpec("ID", attr("id"), width=38),
        ColumnSpec("Nome", attr("name"), width=30),
        ColumnSpec("Marca", attr("brand"), width=20),
        ColumnSpec("Modelo", attr("model"), width=20),
        ColumnSpec("Categoria", attr("category"), width=20),
        ColumnSpec("Descrição", attr("description"), width=40),
        ColumnSpec("Preço", attr("price"), FormatKind.CURRENCY, width=15),
        ColumnSpec("Custo", attr("cost"), FormatKind.CURRENCY, width=15),
        ColumnSpec("Estoque", attr("stock"), FormatKind.INTEGER, width=12),
        ColumnSpec("Estoque Mínimo", attr("min_stock"), FormatKind.INTEGER, width=15),
        ColumnSpec("Código Barras", attr("barcode"), width=20),
        ColumnSpec("Ativo", attr("is_active"), FormatKind.BOOLEAN, width=10),
        ColumnSpec("Data Criação", attr("created_at"), created_kind, width=20),
    ]


def _orders(created_kind: FormatKind) -> List[ColumnSpec]:
    return [
        ColumnSpec("Número OS", attr("order_number"), width=15),
        ColumnSpec("Cliente", attr("client.nome"), width=30),
        ColumnSpec("Telefone Cliente", attr("client.telefone"), width=15),
        ColumnSpec("Equipamento", attr("equipment"), width=25),
        ColumnSpec("Marca", attr("brand"), width=20),
        ColumnSpec("Modelo", attr("model"), width=20),
        ColumnSpec("Número Série", attr("serial_number"), width=20),
        ColumnSpec("Problema", attr("problem"), width=40),
        ColumnSpec("Diagnóstico", attr("diagnosis"), width=40),
        ColumnSpec("Solução", attr("solution"), width=40),
        ColumnSpec("Status", attr("status"), FormatKind.ENUM, width=15, labels=ORDER_STATUS_LABELS),
        ColumnSpec("Prioridade", attr("priority"), FormatKind.ENUM, width=12, labels=ORDER_PRIORITY_LABELS),
        ColumnSpec("Valor Estimado", attr("estimated_value"), FormatKind.CURRENCY, width=18),
        ColumnSpec("Valor Final", attr("final_value"), FormatKind.CURRENCY, width=18),
        ColumnSpec("Custo Mão de Obra", attr("labor_cost"), FormatKind.CURRENCY, width=20),
        ColumnSpec("Custo Peças", attr("parts_cost"), FormatKind.CURRENCY, width=18),
        ColumnSpec("Data Estimada", attr("estimated_date"), FormatKind.DATE, width=18),
        ColumnSpec("Data Conclusão", attr("completed_date"), FormatKind.DATE, width=18),
        ColumnSpec("Garantia Até", attr("warranty_until"), FormatKind.DATE, width=18),
        ColumnSpec("Técnico", attr("technician.name"), width=25),
        ColumnSpec("Observações", attr("observations"), width=40),
        ColumnSpec("Data Criação", attr("created_at"), created_kind, width=20),
    ]


def _activities(created_kind: FormatKind) -> List[ColumnSpec]:
    return [
        ColumnSpec("Número OS", attr("order.order_number"), width=15),
        ColumnSpec("Tipo", attr("type"), FormatKind.ENUM, width=20, labels=ACTIVITY_TYPE_LABELS),
        ColumnSpec("Descrição", attr("description"), width=50),
        ColumnSpec("Usuário", attr("user.name"), width=25),
        ColumnSpec("Data/Hora", attr("created_at"), created_kind, width=20),
    ]


def _invoices(created_kind: FormatKind) -> List[ColumnSpec]:
    return [
        ColumnSpec("Número Fatura", attr("number"), width=18),
        ColumnSpec("Número OS", attr("order.order_number"), width=15),
        ColumnSpec("Cliente", attr("order.client.nome"), width=30),
        ColumnSpec("Status", attr("status"), FormatKind.ENUM, width=15, labels=INVOICE_STATUS_LABELS),
        ColumnSpec("Valor", attr("total"), FormatKind.CURRENCY, width=18),
        ColumnSpec("Data Vencimento", attr("due_date"), FormatKind.DATE, width=18),
        ColumnSpec("Data Pagamento", attr("paid_date"), FormatKind.DATE, width=18),
        ColumnSpec("Método Pagamento", attr("payment_method"), FormatKind.ENUM, width=20,
                   labels=PAYMENT_METHOD_LABELS),
        ColumnSpec("Observações", attr("notes"), width=40),
        ColumnSpec("Data Criação", attr("created_at"), created_kind, width=20),
    ]


def _registry(created_kind: FormatKind) -> Dict[str, SheetSchema]:
    return {
        "clients": SheetSchema("Clientes", _clients(created_kind)),
        "products": SheetSchema("Produtos", _products(created_kind)),
        "orders": SheetSchema("Ordens de Serviço", _orders(created_kind)),
        "activities": SheetSchema("Atividades", _activities(created_kind)),
        "invoices": SheetSchema("Faturas", _invoices(created_kind)),
    }


def _with_updated_at(registry: Dict[str, SheetSchema]) -> Dict[str, SheetSchema]:
    """Movement sheets also show when updatable records last changed."""
    result = {}
    for key, schema in registry.items():
        columns = list(schema.columns)
        if "updated_at" in MOVEMENT_TIMESTAMPS[key]:
            columns.append(ColumnSpec("Última Atualização", attr("updated_at"), FormatKind.DATETIME, width=20))
        result[key] = SheetSchema(schema.name, columns)
    return result


FULL_BACKUP_SHEETS: Dict[str, SheetSchema] = _registry(FormatKind.DATETIME)

# Movement rows keep their time of day
MOVEMENT_SHEETS: Dict[str, SheetSchema] = _with_updated_at(_registry(FormatKind.DATETIME))

SUMMARY_SHEET_NAME = "Resumo da Exportação"

EXPORT_TYPE_LABELS = {
    "complete": "Backup Completo",
    "daily": "Movimentação Diária",
    "period": "Período Personalizado",
}
