"""Tests for the warehouse gate checkpoint."""

import pytest

from core.audit import AuditEventType
from core.errors import IncompleteGate, InvalidTransition, NotFound, Unauthorized, ValidationError
from conftest import statement_rows
from core.models import DocumentType, OrderSheetStatus, ReconciliationStatus, ShipmentStatus
from core.storage import get_bytes
from gate import GateStatus

SIGNATURE = b"\x89PNG\r\n\x1a\nsignature"


def check_all(gate, session):
    for item in list(session.state.checklist):
        gate.toggle_checklist_item(session.session_id, item, True)


@pytest.fixture
def shipment(services, ops, matched_sales_order):
    return services.lifecycle.create_shipment(matched_sales_order.id, ops)


class TestGateStatus:

    def test_pending_until_reconciled(self, services, ops, confirmed_order, warehouse):
        _, sales_order = confirmed_order
        shipment = services.lifecycle.create_shipment(sales_order.id, ops)

        assert services.gate.gate_status(shipment.id) == GateStatus.PENDING
        with pytest.raises(InvalidTransition):
            services.gate.open_gate(shipment.id, warehouse)

    def test_ready_after_match(self, services, shipment):
        assert services.gate.gate_status(shipment.id) == GateStatus.READY

    def test_new_document_after_match_blocks_gate(self, services, shipment, warehouse, audit_backend):
        services.ingestion.ingest(
            shipment.source_sales_order_id,
            DocumentType.TRANSACTION_STATEMENT,
            statement_rows(("소고기", 99, 1, "ZZZ")),
        )

        sales_order = services.lifecycle.get_sales_order(shipment.source_sales_order_id)
        assert sales_order.reconciliation_status == ReconciliationStatus.PENDING
        assert services.gate.gate_status(shipment.id) == GateStatus.PENDING
        with pytest.raises(InvalidTransition):
            services.gate.open_gate(shipment.id, warehouse)
        assert audit_backend.query(event_type=AuditEventType.RECONCILIATION_RESET.value)

    def test_open_session_cannot_complete_after_new_document(self, services, shipment, warehouse):
        session = services.gate.open_gate(shipment.id, warehouse)
        check_all(services.gate, session)
        services.gate.submit_signature(session.session_id, SIGNATURE, "image/png")

        services.ingestion.ingest(
            shipment.source_sales_order_id,
            DocumentType.TRANSACTION_STATEMENT,
            statement_rows(("소고기", 99, 1, "ZZZ")),
        )

        with pytest.raises(InvalidTransition):
            services.gate.complete_gate(session.session_id)
        assert services.lifecycle.get_shipment(shipment.id).status == ShipmentStatus.PREPARING

    def test_unknown_shipment(self, services):
        with pytest.raises(NotFound):
            services.gate.gate_status("sh_missing")


class TestGateSession:

    def test_only_gate_roles_open(self, services, shipment, customer, ops):
        with pytest.raises(Unauthorized):
            services.gate.open_gate(shipment.id, customer)
        with pytest.raises(Unauthorized):
            services.gate.open_gate(shipment.id, ops)

    def test_checklist_starts_unchecked(self, services, shipment, warehouse, settings):
        session = services.gate.open_gate(shipment.id, warehouse)
        assert session.state.checklist == {item: False for item in settings.gate_checklist}
        assert session.missing_items() == list(settings.gate_checklist)

    def test_toggle_and_set(self, services, shipment, warehouse):
        session = services.gate.open_gate(shipment.id, warehouse)
        item = next(iter(session.state.checklist))

        assert services.gate.toggle_checklist_item(session.session_id, item).checklist[item] is True
        assert services.gate.toggle_checklist_item(session.session_id, item).checklist[item] is False
        assert services.gate.toggle_checklist_item(session.session_id, item, True).checklist[item] is True

    def test_unknown_item(self, services, shipment, warehouse):
        session = services.gate.open_gate(shipment.id, warehouse)
        with pytest.raises(ValidationError):
            services.gate.toggle_checklist_item(session.session_id, "없는 항목")

    def test_empty_signature_rejected(self, services, shipment, warehouse):
        session = services.gate.open_gate(shipment.id, warehouse)
        with pytest.raises(ValidationError):
            services.gate.submit_signature(session.session_id, b"")

    def test_reopen_replaces_session(self, services, shipment, warehouse):
        first = services.gate.open_gate(shipment.id, warehouse)
        second = services.gate.open_gate(shipment.id, warehouse)

        assert services.gate.session_for_shipment(shipment.id).session_id == second.session_id
        with pytest.raises(NotFound):
            services.gate.get_session(first.session_id)


class TestGateCompletion:

    def test_incomplete_checklist_keeps_session_open(self, services, shipment, warehouse):
        session = services.gate.open_gate(shipment.id, warehouse)
        services.gate.submit_signature(session.session_id, SIGNATURE)

        with pytest.raises(IncompleteGate) as exc:
            services.gate.complete_gate(session.session_id)
        assert exc.value.details["missing_items"] == session.missing_items()
        assert services.gate.get_session(session.session_id) is session
        assert services.lifecycle.get_shipment(shipment.id).status == ShipmentStatus.PREPARING

    def test_missing_signature(self, services, shipment, warehouse):
        session = services.gate.open_gate(shipment.id, warehouse)
        check_all(services.gate, session)

        with pytest.raises(IncompleteGate) as exc:
            services.gate.complete_gate(session.session_id)
        assert exc.value.details["has_signature"] is False

    def test_complete_delivers_and_records(self, services, shipment, warehouse, audit_backend):
        session = services.gate.open_gate(shipment.id, warehouse)
        check_all(services.gate, session)
        services.gate.submit_signature(session.session_id, SIGNATURE)

        completion = services.gate.complete_gate(session.session_id)

        assert completion.shipment.status == ShipmentStatus.DELIVERED
        assert services.gate.gate_status(shipment.id) == GateStatus.COMPLETED
        records = services.repository.list_gate_records(shipment.id)
        assert [r.id for r in records] == [completion.record.id]
        assert all(records[0].checklist.values())
        assert records[0].checked_by == str(warehouse)
        assert get_bytes(completion.record.signature_ref) == SIGNATURE

        with pytest.raises(NotFound):
            services.gate.get_session(session.session_id)
        events = audit_backend.query(event_type=AuditEventType.GATE_COMPLETED.value, shipment_id=shipment.id)
        assert events[0].artifact_refs[0].content_hash == completion.record.signature_ref.content_hash

    def test_record_uses_the_validated_checklist(self, services, shipment, warehouse, monkeypatch):
        gate = services.gate
        session = gate.open_gate(shipment.id, warehouse)
        check_all(gate, session)
        gate.submit_signature(session.session_id, SIGNATURE)
        item = next(iter(session.state.checklist))
        store_signature = gate.artifact_store.put_signature

        def untick_while_storing(*args, **kwargs):
            gate.toggle_checklist_item(session.session_id, item, False)
            return store_signature(*args, **kwargs)

        monkeypatch.setattr(gate.artifact_store, "put_signature", untick_while_storing)
        completion = gate.complete_gate(session.session_id)

        assert completion.record.checklist[item] is True
        assert all(completion.record.checklist.values())

    def test_last_delivery_closes_order_sheet(self, services, shipment, warehouse, confirmed_order):
        sheet, _ = confirmed_order
        session = services.gate.open_gate(shipment.id, warehouse)
        check_all(services.gate, session)
        services.gate.submit_signature(session.session_id, SIGNATURE)

        completion = services.gate.complete_gate(session.session_id)

        assert completion.order_sheet_closed
        assert services.lifecycle.get_order_sheet(sheet.id).status == OrderSheetStatus.CLOSED

    def test_pending_shipment_keeps_order_sheet_open(self, services, ops, shipment, warehouse, confirmed_order):
        sheet, sales_order = confirmed_order
        services.lifecycle.create_shipment(sales_order.id, ops)
        session = services.gate.open_gate(shipment.id, warehouse)
        check_all(services.gate, session)
        services.gate.submit_signature(session.session_id, SIGNATURE)

        completion = services.gate.complete_gate(session.session_id)

        assert not completion.order_sheet_closed
        assert services.lifecycle.get_order_sheet(sheet.id).status == OrderSheetStatus.CONFIRMED

    def test_delivered_shipment_cannot_reopen(self, services, shipment, warehouse):
        session = services.gate.open_gate(shipment.id, warehouse)
        check_all(services.gate, session)
        services.gate.submit_signature(session.session_id, SIGNATURE)
        services.gate.complete_gate(session.session_id)

        with pytest.raises(InvalidTransition):
            services.gate.open_gate(shipment.id, warehouse)

    def test_abandon_leaves_no_trace(self, services, shipment, warehouse):
        session = services.gate.open_gate(shipment.id, warehouse)
        check_all(services.gate, session)
        services.gate.abandon_gate(session.session_id)

        assert services.gate.session_for_shipment(shipment.id) is None
        assert services.repository.list_gate_records(shipment.id) == []
        assert services.lifecycle.get_shipment(shipment.id).status == ShipmentStatus.PREPARING
        with pytest.raises(NotFound):
            services.gate.abandon_gate(session.session_id)
