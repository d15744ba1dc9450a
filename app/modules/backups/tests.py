"""
Tests para o módulo de Backups/Exportação

Cobrem o pipeline completo contra um repositório em memória:
- Janela diária [início, fim) no fuso de operação
- Projeção das planilhas (ordem fixa, planilhas vazias, formatos)
- Serialização .xlsx (células numéricas, texto literal, limites)
- Consultas SQL geradas pelo repositório (janela, tenant, ordenação)
- Coleta concorrente (isolamento por tenant, falha parcial, cancelamento)
- Orquestração (nomes de arquivo, idempotência, erros por etapa)
- Endpoints HTTP (status e headers)
"""

import asyncio
import logging
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal
from io import BytesIO
from types import SimpleNamespace
from uuid import uuid4

import pytest
from fastapi.testclient import TestClient
from openpyxl import load_workbook
from sqlalchemy.dialects import postgresql

from app.main import app
from app.modules.auth.dependencies import get_current_tenant_id
from app.modules.orders.models import ActivityType, OrderPriority, OrderStatus
from app.modules.invoices.models import InvoiceStatus, PaymentMethod
from app.modules.clients.models import Client, ClientType
from app.modules.products.models import Product
from app.modules.backups.collector import TenantDataCollector
from app.modules.backups.exceptions import (
    AuthorizationError,
    DataAccessError,
    ExportStage,
    InternalError,
    ValidationError,
)
from app.modules.backups.projector import TabularProjector
from app.modules.backups.repository import EntityRepository, SqlAlchemyEntityRepository
from app.modules.backups.schemas import (
    ColumnSpec,
    FormatKind,
    ProjectedSheet,
    SheetSchema,
    Snapshot,
    Window,
    XLSX_MEDIA_TYPE,
)
from app.modules.backups.serializer import XlsxWorkbookSerializer
from app.modules.backups.service import BackupExportService, get_backup_export_service
from app.modules.backups.sheets import (
    ENTITY_TYPES,
    FULL_BACKUP_SHEETS,
    MOVEMENT_SHEETS,
    MOVEMENT_TIMESTAMPS,
    SUMMARY_SHEET_NAME,
    attr,
)
from app.modules.backups.window import MovementWindowFilter, window_for


TZ = "America/Sao_Paulo"  # UTC-03:00, sem horário de verão
TENANT_A = uuid4()
TENANT_B = uuid4()

# 2024-03-10 22:30 em São Paulo
FIXED_NOW = datetime(2024, 3, 11, 1, 30, tzinfo=timezone.utc)

# Janela de 2024-03-10 em São Paulo
DAY_START = datetime(2024, 3, 10, 3, 0, tzinfo=timezone.utc)
DAY_END = datetime(2024, 3, 11, 3, 0, tzinfo=timezone.utc)

SHEET_NAMES = ["Clientes", "Produtos", "Ordens de Serviço", "Atividades", "Faturas"]


# ===== FAKE STORE =====

class InMemoryEntityRepository(EntityRepository):
    """Repositório em memória com falhas e atrasos configuráveis"""

    def __init__(self, records=None, timestamp_columns=("created_at",), fail=False, delay=0.0):
        self.records = list(records or [])
        self.timestamp_columns = timestamp_columns
        self.fail = fail
        self.delay = delay
        self.calls = 0
        self.cancelled = False

    async def _wait(self):
        self.calls += 1
        try:
            if self.delay:
                await asyncio.sleep(self.delay)
        except asyncio.CancelledError:
            self.cancelled = True
            raise
        if self.fail:
            raise RuntimeError("connection lost")

    async def list_by_tenant(self, tenant_id):
        await self._wait()
        rows = [r for r in self.records if r.tenant_id == tenant_id]
        return sorted(rows, key=lambda r: r.created_at, reverse=True)

    async def list_by_tenant_and_window(self, tenant_id, window):
        await self._wait()
        rows = [r for r in self.records if r.tenant_id == tenant_id]
        rows = MovementWindowFilter.narrow(
            rows, window, lambda r: [getattr(r, c, None) for c in self.timestamp_columns]
        )
        return sorted(rows, key=lambda r: r.created_at)


class SpySerializer(XlsxWorkbookSerializer):
    def __init__(self):
        super().__init__(currency_format='"R$" #,##0.00', creator="tests")
        self.calls = 0

    def write(self, sheets):
        self.calls += 1
        return super().write(sheets)


def at(day, hour=12, minute=0):
    """UTC timestamp"""
    return datetime(2024, 3, day, hour, minute, tzinfo=timezone.utc)


def make_user(name="Técnico João"):
    return SimpleNamespace(id=uuid4(), name=name, email="tecnico@example.com")


def make_client(tenant_id, nome, created_at, **extra):
    data = dict(
        id=uuid4(), tenant_id=tenant_id, nome=nome, email=None, telefone="11999990000",
        tipo=ClientType.PF, documento="123.456.789-00", rua="Rua A", numero="10",
        cidade="São Paulo", estado="SP", cep="01000-000", is_active=True,
        created_at=created_at, updated_at=created_at,
    )
    data.update(extra)
    return SimpleNamespace(**data)


def make_product(tenant_id, name, created_at, updated_at=None, **extra):
    data = dict(
        id=uuid4(), tenant_id=tenant_id, name=name, brand="Samsung", model=None,
        category="Peças", description=None, price=Decimal("1234.50"), cost=Decimal("800.00"),
        stock=7, min_stock=2, barcode=None, is_active=True,
        created_at=created_at, updated_at=updated_at or created_at,
    )
    data.update(extra)
    return SimpleNamespace(**data)


def make_order(tenant_id, number, client, created_at, technician=None, **extra):
    data = dict(
        id=uuid4(), tenant_id=tenant_id, order_number=number, client=client,
        technician=technician, equipment="Notebook", brand=None, model=None,
        serial_number=None, problem="Não liga", diagnosis=None, solution=None,
        observations=None, status=OrderStatus.IN_PROGRESS, priority=OrderPriority.HIGH,
        estimated_value=Decimal("350.00"), final_value=None, labor_cost=None, parts_cost=None,
        estimated_date=None, completed_date=None, warranty_until=None,
        created_at=created_at, updated_at=created_at,
    )
    data.update(extra)
    return SimpleNamespace(**data)


def make_activity(tenant_id, order, description, created_at, user=None):
    return SimpleNamespace(
        id=uuid4(), tenant_id=tenant_id, order=order, user=user,
        type=ActivityType.COMMENT, description=description,
        created_at=created_at, updated_at=created_at,
    )


def make_invoice(tenant_id, number, order, created_at, **extra):
    data = dict(
        id=uuid4(), tenant_id=tenant_id, number=number, order=order,
        status=InvoiceStatus.PENDING, total=Decimal("350.00"),
        due_date=at(20, 2), paid_date=None, payment_method=PaymentMethod.PIX,
        notes=None, created_at=created_at, updated_at=created_at,
    )
    data.update(extra)
    return SimpleNamespace(**data)


def build_repositories(records_by_type=None, **overrides):
    records_by_type = records_by_type or {}
    repositories = {
        entity_type: InMemoryEntityRepository(
            records_by_type.get(entity_type, []),
            MOVEMENT_TIMESTAMPS[entity_type]
        )
        for entity_type in ENTITY_TYPES
    }
    repositories.update(overrides)
    return repositories


def build_service(repositories, serializer=None, include_summary=True):
    return BackupExportService(
        TenantDataCollector(repositories),
        serializer=serializer or XlsxWorkbookSerializer(currency_format='"R$" #,##0.00', creator="tests"),
        window_filter=MovementWindowFilter(TZ, clock=lambda: FIXED_NOW),
        include_summary=include_summary,
    )


def read_workbook(artifact):
    return load_workbook(BytesIO(artifact.content))


def sheet_rows(workbook, name):
    return [list(row) for row in workbook[name].iter_rows(values_only=True)]


def workbook_contents(workbook):
    return {name: sheet_rows(workbook, name) for name in workbook.sheetnames}


@pytest.fixture
def two_tenant_data():
    """Dados de dois tenants no mesmo store"""
    user = make_user()
    client_a1 = make_client(TENANT_A, "Maria Silva", at(1))
    client_a2 = make_client(TENANT_A, "José Souza", at(5))
    client_b = make_client(TENANT_B, "TENANT-B Cliente", at(3))
    order_a = make_order(TENANT_A, "OS-0001", client_a1, at(6), technician=user)
    order_b = make_order(TENANT_B, "TENANT-B-OS", client_b, at(6))
    return {
        "clients": [client_a1, client_a2, client_b],
        "products": [
            make_product(TENANT_A, "Tela LCD", at(2)),
            make_product(TENANT_B, "TENANT-B Bateria", at(2)),
        ],
        "orders": [order_a, order_b],
        "activities": [
            make_activity(TENANT_A, order_a, "Diagnóstico iniciado", at(6, 15), user),
            make_activity(TENANT_B, order_b, "TENANT-B atividade", at(6, 15)),
        ],
        "invoices": [
            make_invoice(TENANT_A, "FAT-0001", order_a, at(7)),
            make_invoice(TENANT_B, "TENANT-B-FAT", order_b, at(7)),
        ],
    }


# ===== TESTS DA JANELA =====

class TestMovementWindowFilter:
    """Tests para MovementWindowFilter"""

    def test_window_starts_at_local_midnight(self):
        window = MovementWindowFilter(TZ).window_for(date(2024, 3, 10))

        assert window.start == DAY_START
        assert window.end == DAY_END
        assert window.duration == timedelta(hours=24)

    def test_window_bounds_are_half_open(self):
        window = MovementWindowFilter(TZ).window_for(date(2024, 3, 10))

        assert window.contains(DAY_START)
        assert window.contains(DAY_END - timedelta(microseconds=1))
        assert not window.contains(DAY_END)
        assert not window.contains(DAY_START - timedelta(seconds=1))

    def test_naive_timestamp_is_read_as_utc(self):
        window = MovementWindowFilter(TZ).window_for(date(2024, 3, 10))

        assert window.contains(datetime(2024, 3, 10, 3, 0))
        assert not window.contains(datetime(2024, 3, 10, 2, 59))

    def test_window_with_explicit_timezone(self):
        window = MovementWindowFilter(TZ).window_for(date(2024, 3, 10), "UTC")

        assert window.start == datetime(2024, 3, 10, tzinfo=timezone.utc)

    def test_module_level_window_for(self):
        assert window_for(date(2024, 3, 10), TZ) == Window(start=DAY_START, end=DAY_END)
        assert window_for(date(2024, 3, 10), "UTC").start == datetime(2024, 3, 10, tzinfo=timezone.utc)

    def test_window_rejects_inverted_bounds(self):
        with pytest.raises(ValueError):
            Window(start=DAY_END, end=DAY_START)

    def test_parse_invalid_date(self):
        with pytest.raises(ValidationError) as exc_info:
            MovementWindowFilter.parse_date("not-a-date")

        assert exc_info.value.field == "date"
        assert exc_info.value.stage == ExportStage.VALIDATION
        assert "not-a-date" in exc_info.value.message

    def test_resolve_date_defaults_to_local_today(self):
        # 01:30 UTC on the 11th is still the 10th in São Paulo
        window_filter = MovementWindowFilter(TZ, clock=lambda: FIXED_NOW)

        assert window_filter.resolve_date(None) == date(2024, 3, 10)

    def test_resolve_date_never_falls_back_on_bad_input(self):
        window_filter = MovementWindowFilter(TZ, clock=lambda: FIXED_NOW)

        with pytest.raises(ValidationError):
            window_filter.resolve_date("2024-13-45")
        with pytest.raises(ValidationError):
            window_filter.resolve_date("")

    def test_period_window(self):
        window = MovementWindowFilter(TZ).period_window(date(2024, 3, 1), date(2024, 3, 10))

        assert window.start == datetime(2024, 3, 1, 3, 0, tzinfo=timezone.utc)
        assert window.end == DAY_END

    def test_period_window_rejects_reversed_range(self):
        with pytest.raises(ValidationError) as exc_info:
            MovementWindowFilter(TZ).period_window(date(2024, 3, 10), date(2024, 3, 1))

        assert exc_info.value.field == "from"

    def test_period_window_rejects_long_range(self):
        window_filter = MovementWindowFilter(TZ, max_period_days=365)

        with pytest.raises(ValidationError) as exc_info:
            window_filter.period_window(date(2023, 1, 1), date(2024, 3, 1))

        assert exc_info.value.field == "to"


# ===== TESTS DO PROJETOR =====

class TestTabularProjector:
    """Tests para TabularProjector"""

    def test_attr_extractor_is_total(self):
        record = SimpleNamespace(order=None, data={"nome": "X"})

        assert attr("order.client.nome")(record) is None
        assert attr("missing")(record) is None
        assert attr("data.nome")(record) == "X"
        assert attr("status")(SimpleNamespace(status=OrderStatus.OPEN)) == "open"

    def test_sheet_order_is_fixed(self):
        snapshot = Snapshot(
            tenant_id=TENANT_A,
            collections={"invoices": [], "clients": [], "activities": [], "products": [], "orders": []}
        )

        sheets = TabularProjector(TZ).project(snapshot, FULL_BACKUP_SHEETS)

        assert [sheet.name for sheet in sheets] == SHEET_NAMES

    def test_empty_entity_type_yields_header_only_sheet(self):
        snapshot = Snapshot(tenant_id=TENANT_A, collections={"clients": []})

        sheets = TabularProjector(TZ).project(snapshot, FULL_BACKUP_SHEETS)

        assert len(sheets) == 1
        assert sheets[0].rows == []
        assert sheets[0].schema.headers[1] == "Nome"

    def test_order_row_formats(self):
        client = make_client(TENANT_A, "Maria Silva", at(1))
        order = make_order(
            TENANT_A, "OS-0001", client, at(6, 2),
            completed_date=at(8, 1),
        )
        snapshot = Snapshot(tenant_id=TENANT_A, collections={"orders": [order]})

        sheet = TabularProjector(TZ).project(snapshot, FULL_BACKUP_SHEETS)[0]
        row = dict(zip(sheet.schema.headers, sheet.rows[0]))

        assert row["Cliente"] == "Maria Silva"
        assert row["Técnico"] is None
        assert row["Status"] == "Em andamento"
        assert row["Prioridade"] == "Alta"
        assert row["Valor Estimado"] == Decimal("350.00")
        assert row["Valor Final"] is None
        # 01:00 UTC on the 8th is the 7th in São Paulo
        assert row["Data Conclusão"] == date(2024, 3, 7)
        assert row["Data Criação"] == datetime(2024, 3, 5, 23, 0)

    def test_client_row_formats(self):
        client = make_client(TENANT_A, "Maria Silva", at(1), is_active=False)
        snapshot = Snapshot(tenant_id=TENANT_A, collections={"clients": [client]})

        sheet = TabularProjector(TZ).project(snapshot, FULL_BACKUP_SHEETS)[0]
        row = dict(zip(sheet.schema.headers, sheet.rows[0]))

        assert row["ID"] == str(client.id)
        assert row["Tipo"] == "PF"
        assert row["Ativo"] == "Não"
        assert row["Email"] is None

    def test_movement_sheets_include_last_update(self):
        assert MOVEMENT_SHEETS["products"].headers[-1] == "Última Atualização"
        assert MOVEMENT_SHEETS["clients"].headers[-1] == "Data Criação"

    def test_control_characters_are_dropped_from_text(self):
        client = make_client(TENANT_A, "Maria\x0bSilva", at(1), rua="Rua\x00 A\x1f")
        snapshot = Snapshot(tenant_id=TENANT_A, collections={"clients": [client]})

        sheet = TabularProjector(TZ).project(snapshot, FULL_BACKUP_SHEETS)[0]
        row = dict(zip(sheet.schema.headers, sheet.rows[0]))

        assert row["Nome"] == "MariaSilva"
        assert row["Rua"] == "Rua A"
        # tabs and line breaks are valid cell text
        assert TabularProjector(TZ).normalize(ColumnSpec("Obs", attr("x")), "a\tb\nc") == "a\tb\nc"

    def test_failing_extractor_is_internal_error(self):
        def broken(record):
            raise KeyError("boom")

        registry = {"clients": SheetSchema("Clientes", [ColumnSpec("Nome", broken)])}
        snapshot = Snapshot(
            tenant_id=TENANT_A,
            collections={"clients": [make_client(TENANT_A, "Maria", at(1))]}
        )

        with pytest.raises(InternalError) as exc_info:
            TabularProjector(TZ).project(snapshot, registry)

        assert exc_info.value.stage == ExportStage.PROJECT
        assert "Nome" in exc_info.value.message

    def test_summary_counts(self):
        snapshot = Snapshot(
            tenant_id=TENANT_A,
            collections={"clients": [make_client(TENANT_A, "Maria", at(1))], "products": []}
        )
        projector = TabularProjector(TZ)
        sheets = projector.project(snapshot, FULL_BACKUP_SHEETS)

        summary = projector.summarize("complete", sheets)

        assert summary.name == SUMMARY_SHEET_NAME
        assert summary.rows[0] == ["Tipo de Exportação", "Backup Completo"]
        assert ["Clientes", 1] in summary.rows
        assert ["Produtos", 0] in summary.rows
        assert summary.rows[-1] == ["Total de Registros", 1]


# ===== TESTS DO SERIALIZADOR =====

class TestXlsxWorkbookSerializer:
    """Tests para XlsxWorkbookSerializer"""

    def _sheet(self, name="Produtos", rows=None):
        schema = SheetSchema(name, [
            ColumnSpec("Nome", attr("name")),
            ColumnSpec("Preço", attr("price"), FormatKind.CURRENCY),
            ColumnSpec("Estoque", attr("stock"), FormatKind.INTEGER),
            ColumnSpec("Data", attr("created_at"), FormatKind.DATETIME),
        ])
        return ProjectedSheet(name=name, schema=schema, rows=rows or [])

    def test_currency_cell_round_trip(self):
        sheet = self._sheet(rows=[["Tela", Decimal("1234.5"), 7, datetime(2024, 3, 10, 9, 15)]])

        artifact = XlsxWorkbookSerializer().serialize([sheet], "produtos.xlsx")
        worksheet = read_workbook(artifact)["Produtos"]

        assert artifact.media_type == XLSX_MEDIA_TYPE
        assert artifact.filename == "produtos.xlsx"
        assert worksheet.cell(row=1, column=2).value == "Preço"
        price = worksheet.cell(row=2, column=2)
        assert isinstance(price.value, (int, float))
        assert price.value == pytest.approx(1234.5)
        assert "R$" in price.number_format
        assert worksheet.cell(row=2, column=3).value == 7
        assert worksheet.cell(row=2, column=4).value == datetime(2024, 3, 10, 9, 15)

    def test_missing_values_are_empty_cells(self):
        sheet = self._sheet(rows=[["Tela", None, None, None]])

        artifact = XlsxWorkbookSerializer().serialize([sheet], "produtos.xlsx")

        assert sheet_rows(read_workbook(artifact), "Produtos")[1] == ["Tela", None, None, None]

    def test_empty_sheet_has_only_headers(self):
        artifact = XlsxWorkbookSerializer().serialize([self._sheet()], "vazio.xlsx")

        rows = sheet_rows(read_workbook(artifact), "Produtos")
        assert rows == [["Nome", "Preço", "Estoque", "Data"]]

    def test_duplicate_sheet_names_fail_fast(self):
        serializer = SpySerializer()

        with pytest.raises(InternalError) as exc_info:
            serializer.serialize([self._sheet("Produtos"), self._sheet("produtos")], "dup.xlsx")

        assert exc_info.value.stage == ExportStage.SERIALIZE
        assert serializer.calls == 0

    def test_row_width_mismatch_is_internal_error(self):
        sheet = self._sheet(rows=[["Tela", Decimal("10")]])

        with pytest.raises(InternalError):
            XlsxWorkbookSerializer().serialize([sheet], "x.xlsx")

    def test_text_starting_with_equals_is_not_a_formula(self):
        sheet = self._sheet(rows=[['=HYPERLINK("http://x","y")', Decimal("10"), 1, None]])

        artifact = XlsxWorkbookSerializer().serialize([sheet], "produtos.xlsx")
        cell = read_workbook(artifact)["Produtos"].cell(row=2, column=1)

        assert cell.data_type == "s"
        assert cell.value == '=HYPERLINK("http://x","y")'

    def test_sheet_over_row_limit_is_rejected(self):
        serializer = XlsxWorkbookSerializer()
        serializer.max_rows = 3
        rows = [["Tela", Decimal("10"), 1, None] for _ in range(3)]

        with pytest.raises(InternalError) as exc_info:
            serializer.serialize([self._sheet(rows=rows)], "grande.xlsx")

        assert exc_info.value.stage == ExportStage.SERIALIZE
        assert "Produtos" in exc_info.value.message

    def test_sheet_at_row_limit_is_written(self):
        serializer = XlsxWorkbookSerializer()
        serializer.max_rows = 3
        rows = [["Tela", Decimal("10"), 1, None] for _ in range(2)]

        artifact = serializer.serialize([self._sheet(rows=rows)], "limite.xlsx")

        assert len(sheet_rows(read_workbook(artifact), "Produtos")) == 3


# ===== TESTS DO REPOSITÓRIO SQL =====

class CapturingSession:
    """AsyncSession stand-in that records executed statements"""

    def __init__(self, statements):
        self.statements = statements

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        return False

    async def execute(self, statement):
        self.statements.append(statement)
        return SimpleNamespace(scalars=lambda: SimpleNamespace(all=lambda: []))


class TestSqlAlchemyEntityRepository:
    """Tests para as consultas geradas por SqlAlchemyEntityRepository"""

    def _repository(self, model, entity_type, statements):
        return SqlAlchemyEntityRepository(
            model,
            MOVEMENT_TIMESTAMPS[entity_type],
            session_factory=lambda: CapturingSession(statements)
        )

    @staticmethod
    def _compile(statement):
        compiled = statement.compile(dialect=postgresql.dialect())
        return " ".join(str(compiled).split()), compiled.params

    def test_windowed_query_is_half_open_and_tenant_scoped(self):
        statements = []
        repository = self._repository(Product, "products", statements)
        window = MovementWindowFilter(TZ).window_for(date(2024, 3, 10))

        records = asyncio.run(repository.list_by_tenant_and_window(TENANT_A, window))

        assert records == []
        sql, params = self._compile(statements[0])
        assert "products.tenant_id = " in sql
        assert "products.created_at >= " in sql
        assert "products.created_at < " in sql
        assert "products.updated_at >= " in sql
        assert "products.updated_at < " in sql
        assert " OR " in sql
        assert "<=" not in sql
        assert "ORDER BY products.created_at ASC, products.id ASC" in sql
        assert TENANT_A in params.values()
        assert window.start in params.values()
        assert window.end in params.values()

    def test_windowed_query_with_single_timestamp(self):
        statements = []
        repository = self._repository(Client, "clients", statements)
        window = MovementWindowFilter(TZ).window_for(date(2024, 3, 10))

        asyncio.run(repository.list_by_tenant_and_window(TENANT_A, window))

        sql, _ = self._compile(statements[0])
        assert "clients.created_at < " in sql
        assert "updated_at >=" not in sql
        assert " OR " not in sql

    def test_full_query_is_newest_first(self):
        statements = []
        repository = self._repository(Product, "products", statements)

        asyncio.run(repository.list_by_tenant(TENANT_A))

        sql, params = self._compile(statements[0])
        assert "products.tenant_id = " in sql
        assert "ORDER BY products.created_at DESC, products.id DESC" in sql
        assert "products.created_at >= " not in sql
        assert TENANT_A in params.values()


# ===== TESTS DO COLETOR =====

class TestTenantDataCollector:
    """Tests para TenantDataCollector"""

    def test_collect_is_tenant_scoped(self, two_tenant_data):
        collector = TenantDataCollector(build_repositories(two_tenant_data))

        snapshot = asyncio.run(collector.collect(TENANT_A))

        assert list(snapshot.collections) == list(ENTITY_TYPES)
        assert snapshot.tenant_id == TENANT_A
        for records in snapshot.collections.values():
            assert all(record.tenant_id == TENANT_A for record in records)
        assert [c.nome for c in snapshot.records("clients")] == ["José Souza", "Maria Silva"]

    def test_collect_subset_of_entity_types(self, two_tenant_data):
        collector = TenantDataCollector(build_repositories(two_tenant_data))

        snapshot = asyncio.run(collector.collect(TENANT_A, ["invoices", "clients"]))

        assert list(snapshot.collections) == ["clients", "invoices"]

    def test_partial_failure_aborts_collection(self):
        slow = InMemoryEntityRepository(delay=5)
        repositories = build_repositories(
            products=InMemoryEntityRepository(fail=True, delay=0.01),
            orders=slow,
        )
        collector = TenantDataCollector(repositories)

        with pytest.raises(DataAccessError) as exc_info:
            asyncio.run(collector.collect(TENANT_A))

        assert exc_info.value.entity_type == "products"
        assert exc_info.value.stage == ExportStage.COLLECT
        assert isinstance(exc_info.value.__cause__, RuntimeError)
        assert slow.cancelled

    def test_cancellation_cancels_in_flight_queries(self):
        repositories = {
            entity_type: InMemoryEntityRepository(delay=5) for entity_type in ENTITY_TYPES
        }
        collector = TenantDataCollector(repositories)

        async def scenario():
            task = asyncio.ensure_future(collector.collect(TENANT_A))
            await asyncio.sleep(0.05)
            task.cancel()
            with pytest.raises(asyncio.CancelledError):
                await task

        asyncio.run(scenario())

        assert all(repository.cancelled for repository in repositories.values())

    def test_record_of_other_tenant_is_rejected(self):
        class LeakyRepository(InMemoryEntityRepository):
            async def list_by_tenant(self, tenant_id):
                return list(self.records)

        leaky = LeakyRepository([make_client(TENANT_B, "TENANT-B Cliente", at(1))])
        collector = TenantDataCollector(build_repositories(clients=leaky))

        with pytest.raises(DataAccessError) as exc_info:
            asyncio.run(collector.collect(TENANT_A))

        assert exc_info.value.entity_type == "clients"

    def test_collect_windowed_order_and_bounds(self):
        order = make_order(TENANT_A, "OS-0001", None, at(1))
        activities = [
            make_activity(TENANT_A, order, "meio do dia", at(10, 15)),
            make_activity(TENANT_A, order, "fim exato", DAY_END),
            make_activity(TENANT_A, order, "início exato", DAY_START),
            make_activity(TENANT_A, order, "dia anterior", DAY_START - timedelta(seconds=1)),
        ]
        collector = TenantDataCollector(build_repositories({"activities": activities}))
        window = MovementWindowFilter(TZ).window_for(date(2024, 3, 10))

        snapshot = asyncio.run(collector.collect_windowed(TENANT_A, window))

        assert snapshot.window == window
        descriptions = [a.description for a in snapshot.records("activities")]
        assert descriptions == ["início exato", "meio do dia"]


# ===== TESTS DO SERVIÇO =====

class TestBackupExportService:
    """Tests para BackupExportService"""

    def test_full_backup_filename_and_sheets(self, two_tenant_data):
        service = build_service(build_repositories(two_tenant_data))

        artifact = asyncio.run(service.full_backup(TENANT_A))
        workbook = read_workbook(artifact)

        assert artifact.filename == "backup_completo_2024-03-10_22-30-00.xlsx"
        assert workbook.sheetnames == [SUMMARY_SHEET_NAME] + SHEET_NAMES
        clients = sheet_rows(workbook, "Clientes")
        assert clients[0][:2] == ["ID", "Nome"]
        assert [row[1] for row in clients[1:]] == ["José Souza", "Maria Silva"]
        invoices = sheet_rows(workbook, "Faturas")
        assert invoices[1][:5] == ["FAT-0001", "OS-0001", "Maria Silva", "Pendente", 350]
        assert invoices[1][5] == datetime(2024, 3, 19)

    def test_full_backup_tenant_isolation(self, two_tenant_data):
        service = build_service(build_repositories(two_tenant_data))

        workbook = read_workbook(asyncio.run(service.full_backup(TENANT_A)))

        for rows in workbook_contents(workbook).values():
            for row in rows:
                assert not any("TENANT-B" in str(value) for value in row if value is not None)

    def test_full_backup_is_idempotent(self, two_tenant_data):
        service = build_service(build_repositories(two_tenant_data))

        first = read_workbook(asyncio.run(service.full_backup(TENANT_A)))
        second = read_workbook(asyncio.run(service.full_backup(TENANT_A)))

        assert workbook_contents(first) == workbook_contents(second)

    def test_empty_tenant_gets_header_only_sheets(self):
        service = build_service(build_repositories())

        workbook = read_workbook(asyncio.run(service.full_backup(TENANT_A)))

        for name in SHEET_NAMES:
            rows = sheet_rows(workbook, name)
            assert len(rows) == 1
            assert rows[0][0] is not None
        summary = sheet_rows(workbook, SUMMARY_SHEET_NAME)
        assert summary[-1] == ["Total de Registros", 0]

    def test_summary_can_be_disabled(self):
        service = build_service(build_repositories(), include_summary=False)

        workbook = read_workbook(asyncio.run(service.full_backup(TENANT_A)))

        assert workbook.sheetnames == SHEET_NAMES

    def test_partial_failure_produces_no_artifact(self, two_tenant_data):
        serializer = SpySerializer()
        repositories = build_repositories(
            two_tenant_data,
            products=InMemoryEntityRepository(fail=True),
        )
        service = build_service(repositories, serializer=serializer)

        with pytest.raises(DataAccessError) as exc_info:
            asyncio.run(service.full_backup(TENANT_A))

        assert exc_info.value.stage == ExportStage.COLLECT
        assert serializer.calls == 0

    def test_data_access_failure_is_logged_once(self, caplog):
        repositories = build_repositories(products=InMemoryEntityRepository(fail=True))
        service = build_service(repositories)

        with caplog.at_level(logging.ERROR, logger="app.modules.backups"):
            with pytest.raises(DataAccessError):
                asyncio.run(service.full_backup(TENANT_A))

        errors = [record for record in caplog.records if record.levelno >= logging.ERROR]
        assert len(errors) == 1
        assert "'collect'" in errors[0].getMessage()
        assert "products" in errors[0].getMessage()

    def test_user_text_is_exported_verbatim(self):
        clients = [
            make_client(TENANT_A, "=1+1", at(1)),
            make_client(TENANT_A, "Maria\x0bSilva", at(2), documento="+55 11"),
        ]
        service = build_service(build_repositories({"clients": clients}))

        worksheet = read_workbook(asyncio.run(service.full_backup(TENANT_A)))["Clientes"]

        names = {worksheet.cell(row=row, column=2).value: worksheet.cell(row=row, column=2)
                 for row in (2, 3)}
        assert set(names) == {"=1+1", "MariaSilva"}
        assert names["=1+1"].data_type == "s"

    def test_missing_tenant_is_authorization_error(self):
        service = build_service(build_repositories())

        with pytest.raises(AuthorizationError):
            asyncio.run(service.full_backup(None))

    def test_daily_movement_window_bounds(self):
        order = make_order(TENANT_A, "OS-0001", None, at(1))
        activities = [
            make_activity(TENANT_A, order, "fim exato", DAY_END),
            make_activity(TENANT_A, order, "meio do dia", at(10, 15)),
            make_activity(TENANT_A, order, "início exato", DAY_START),
        ]
        products = [
            make_product(TENANT_A, "Atualizado hoje", at(1), updated_at=at(10, 18)),
            make_product(TENANT_A, "Parado", at(1)),
        ]
        service = build_service(build_repositories({"activities": activities, "products": products}))

        artifact = asyncio.run(service.daily_movement(TENANT_A, "2024-03-10"))
        workbook = read_workbook(artifact)

        assert artifact.filename == "movimentacao_2024-03-10.xlsx"
        rows = sheet_rows(workbook, "Atividades")
        assert [row[2] for row in rows[1:]] == ["início exato", "meio do dia"]
        # time of day is kept, in local time
        assert rows[1][4] == datetime(2024, 3, 10, 0, 0)
        assert [row[1] for row in sheet_rows(workbook, "Produtos")[1:]] == ["Atualizado hoje"]
        summary = sheet_rows(workbook, SUMMARY_SHEET_NAME)
        assert summary[0] == ["Item", "Valor"]
        assert summary[1] == ["Tipo de Exportação", "Movimentação Diária"]

    def test_daily_movement_defaults_to_today(self):
        service = build_service(build_repositories())

        artifact = asyncio.run(service.daily_movement(TENANT_A))

        assert artifact.filename == "movimentacao_2024-03-10.xlsx"

    def test_daily_movement_invalid_date(self):
        repositories = build_repositories()
        service = build_service(repositories)

        with pytest.raises(ValidationError) as exc_info:
            asyncio.run(service.daily_movement(TENANT_A, "not-a-date"))

        assert exc_info.value.field == "date"
        assert all(repository.calls == 0 for repository in repositories.values())

    def test_concurrent_exports_for_two_tenants(self, two_tenant_data):
        service = build_service(build_repositories(two_tenant_data))

        async def scenario():
            return await asyncio.gather(service.full_backup(TENANT_A), service.full_backup(TENANT_B))

        artifact_a, artifact_b = asyncio.run(scenario())

        clients_a = sheet_rows(read_workbook(artifact_a), "Clientes")
        clients_b = sheet_rows(read_workbook(artifact_b), "Clientes")
        assert [row[1] for row in clients_a[1:]] == ["José Souza", "Maria Silva"]
        assert [row[1] for row in clients_b[1:]] == ["TENANT-B Cliente"]

    def test_period_export_selected_tables(self, two_tenant_data):
        service = build_service(build_repositories(two_tenant_data))

        artifact = asyncio.run(
            service.period_export(TENANT_A, "2024-03-01", "2024-03-10", "clients, invoices,unknown")
        )
        workbook = read_workbook(artifact)

        assert artifact.filename == "periodo_2024-03-01_2024-03-10.xlsx"
        assert workbook.sheetnames == [SUMMARY_SHEET_NAME, "Clientes", "Faturas"]
        assert len(sheet_rows(workbook, "Clientes")) == 3

    def test_period_export_rejects_invalid_tables(self):
        service = build_service(build_repositories())

        with pytest.raises(ValidationError) as exc_info:
            asyncio.run(service.period_export(TENANT_A, "2024-03-01", "2024-03-10", "users"))

        assert exc_info.value.field == "tables"

    def test_period_export_rejects_long_range(self):
        service = build_service(build_repositories())

        with pytest.raises(ValidationError):
            asyncio.run(service.period_export(TENANT_A, "2023-01-01", "2024-03-10"))

    def test_unexpected_projection_failure_is_tagged(self, two_tenant_data):
        class BrokenProjector(TabularProjector):
            def project(self, snapshot, registry, order=ENTITY_TYPES):
                raise ZeroDivisionError("bug")

        service = BackupExportService(
            TenantDataCollector(build_repositories(two_tenant_data)),
            window_filter=MovementWindowFilter(TZ, clock=lambda: FIXED_NOW),
            projector=BrokenProjector(TZ),
        )

        with pytest.raises(InternalError) as exc_info:
            asyncio.run(service.full_backup(TENANT_A))

        assert exc_info.value.stage == ExportStage.PROJECT


# ===== TESTS DOS ENDPOINTS =====

client = TestClient(app)


@pytest.fixture
def override_export(two_tenant_data):
    """Autentica como TENANT_A e usa o store em memória"""
    state = {"repositories": build_repositories(two_tenant_data)}
    app.dependency_overrides[get_current_tenant_id] = lambda: TENANT_A
    app.dependency_overrides[get_backup_export_service] = lambda: build_service(state["repositories"])
    yield state
    app.dependency_overrides.clear()


class TestExportRouter:
    """Tests para os endpoints de exportação"""

    def test_complete_backup_download(self, override_export):
        response = client.get("/api/v1/export/complete")

        assert response.status_code == 200
        assert response.headers["content-type"] == XLSX_MEDIA_TYPE
        assert response.headers["content-disposition"] == (
            'attachment; filename="backup_completo_2024-03-10_22-30-00.xlsx"'
        )
        assert response.headers["cache-control"] == "no-cache, no-store, must-revalidate"
        workbook = load_workbook(BytesIO(response.content))
        assert "Clientes" in workbook.sheetnames

    def test_daily_movement_download(self, override_export):
        response = client.get("/api/v1/export/daily", params={"date": "2024-03-06"})

        assert response.status_code == 200
        assert 'filename="movimentacao_2024-03-06.xlsx"' in response.headers["content-disposition"]

    def test_daily_movement_invalid_date_is_400(self, override_export):
        response = client.get("/api/v1/export/daily", params={"date": "not-a-date"})

        assert response.status_code == 400
        assert "date" in response.json()["detail"]

    def test_period_export_download(self, override_export):
        response = client.get(
            "/api/v1/export/period",
            params={"from": "2024-03-01", "to": "2024-03-10", "tables": "orders"}
        )

        assert response.status_code == 200
        assert 'filename="periodo_2024-03-01_2024-03-10.xlsx"' in response.headers["content-disposition"]

    def test_data_access_failure_is_500_without_detail(self, override_export):
        override_export["repositories"]["orders"] = InMemoryEntityRepository(fail=True)

        response = client.get("/api/v1/export/complete")

        assert response.status_code == 500
        assert "connection lost" not in response.text
        assert response.json()["detail"] == "Erro ao acessar os dados durante a exportação"

    def test_missing_token_is_401(self):
        response = client.get("/api/v1/export/complete")

        assert response.status_code == 401
        assert response.headers["www-authenticate"] == "Bearer"

    def test_invalid_token_is_401(self):
        response = client.get(
            "/api/v1/export/daily",
            headers={"Authorization": "Bearer not-a-jwt"}
        )

        assert response.status_code == 401
