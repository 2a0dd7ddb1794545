"""Shared fixtures: in-memory services wired to a temporary artifacts directory."""

from decimal import Decimal

import pytest

from core.audit import AuditLogger, InMemoryAuditBackend
from core.config import Settings
from core.models import DocumentType, OrderSheetStatus
from core.security.identity import Actor, StaticIdentityProvider, UserRole
from services import build_services, set_services
from storage.repository import InMemoryRepository


STATEMENT_HEADER = ["품목", "원산지", "수량", "중량", "단가", "금액", "이력번호", "도축장"]
INSPECTION_HEADER = ["No", "바코드", "품목", "수량", "중량", "단가", "금액", "이력번호", "개체번호", "도축장", "비고"]


def statement_rows(*lines):
    """(product, weight, amount, trace) tuples -> statement sheet rows."""
    rows = [["거래내역서"], STATEMENT_HEADER]
    for product, weight, amount, trace in lines:
        rows.append([product, "호주", 1, weight, 0, amount, trace, "도축장A"])
    rows.append(["합계", "", "", "", "", "", "", ""])
    return rows


def inspection_rows(*packages):
    """(barcode, product, weight, amount, trace) tuples -> inspection sheet rows."""
    rows = [INSPECTION_HEADER]
    for n, (barcode, product, weight, amount, trace) in enumerate(packages, start=1):
        rows.append([n, barcode, product, 1, weight, 0, amount, trace, "", "도축장A", ""])
    return rows


@pytest.fixture
def settings(tmp_path):
    return Settings(
        db_path=tmp_path / "fulfillment.db",
        artifacts_dir=tmp_path / "artifacts",
        gate_checklist=("거래내역서 확인", "포장상태 확인"),
    )


@pytest.fixture
def audit_backend():
    return InMemoryAuditBackend()


@pytest.fixture
def identity():
    return StaticIdentityProvider({
        "admin-1": UserRole.ADMIN,
        "ops-1": UserRole.OPS,
        "cust-1": UserRole.CUSTOMER,
        "wh-1": UserRole.WAREHOUSE,
    })


@pytest.fixture
def services(settings, audit_backend, identity):
    audit = AuditLogger()
    audit.add_backend(audit_backend)
    built = build_services(
        settings=settings,
        repository=InMemoryRepository(),
        audit=audit,
        identity=identity,
    )
    set_services(built)
    yield built
    set_services(None)


@pytest.fixture
def ops():
    return Actor(user_id="ops-1", role=UserRole.OPS)


@pytest.fixture
def warehouse():
    return Actor(user_id="wh-1", role=UserRole.WAREHOUSE)


@pytest.fixture
def customer():
    return Actor(user_id="cust-1", role=UserRole.CUSTOMER)


@pytest.fixture
def order_items():
    return [
        {"product_name": "소고기", "qty_kg": Decimal("25"), "unit_price": Decimal("20000")},
    ]


@pytest.fixture
def confirmed_order(services, ops, customer, order_items):
    """Order sheet walked DRAFT -> SENT -> SUBMITTED -> CONFIRMED; returns (sheet, sales_order)."""
    lifecycle = services.lifecycle
    sheet = lifecycle.create_order_sheet("한우마트", ops, items=order_items)
    sent = lifecycle.request_transition(sheet.id, OrderSheetStatus.DRAFT, OrderSheetStatus.SENT, ops)
    holder = Actor(user_id=customer.user_id, role=customer.role, invite_token=sent.invite_token.token)
    lifecycle.request_transition(sheet.id, OrderSheetStatus.SENT, OrderSheetStatus.SUBMITTED, holder)
    confirmed = lifecycle.request_transition(sheet.id, OrderSheetStatus.SUBMITTED, OrderSheetStatus.CONFIRMED, ops)
    return confirmed.order_sheet, confirmed.sales_order


@pytest.fixture
def matched_sales_order(services, confirmed_order):
    """Confirmed sales order whose documents reconciled with every line MATCHED."""
    _, sales_order = confirmed_order
    services.ingestion.ingest(
        sales_order.id,
        DocumentType.TRANSACTION_STATEMENT,
        statement_rows(("소고기", 12.5, 250000, "L001"), ("소고기", 12.5, 250000, "L002")),
    )
    services.ingestion.ingest(
        sales_order.id,
        DocumentType.INSPECTION_REPORT,
        inspection_rows(("B1", "소고기", 12.5, 250000, "L001"), ("B2", "소고기", 12.5, 250000, "L002")),
    )
    report = services.reconciliation.reconcile(sales_order.id)
    assert report.all_matched
    return services.lifecycle.get_sales_order(sales_order.id)
