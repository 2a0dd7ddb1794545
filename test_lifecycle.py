"""Tests for the order sheet state machine, invite tokens and shipments."""

from datetime import datetime, timedelta

import pytest

from core.audit import AuditEventType
from core.errors import InvalidTransition, NotFound, StaleState, Unauthorized, ValidationError
from core.models import (
    DispatchInfo,
    OrderSheetStatus,
    ShipmentStatus,
)
from core.security.identity import SYSTEM_ACTOR, Actor, UserRole
from lifecycle.transitions import EDGES, allowed_roles, is_legal_edge, next_statuses
from storage.repository import EntityKind

S = OrderSheetStatus


def with_token(actor, token):
    return Actor(user_id=actor.user_id, role=actor.role, invite_token=token)


class TestTransitionTable:

    def test_edges(self):
        assert len(EDGES) == 6
        assert is_legal_edge(S.SUBMITTED, S.REVISION)
        assert not is_legal_edge(S.DRAFT, S.CONFIRMED)
        assert not is_legal_edge(S.CLOSED, S.DRAFT)

    def test_roles(self):
        assert allowed_roles(S.SENT, S.SUBMITTED) == {UserRole.CUSTOMER}
        assert UserRole.SYSTEM in allowed_roles(S.CONFIRMED, S.CLOSED)
        assert UserRole.SYSTEM not in allowed_roles(S.SUBMITTED, S.CONFIRMED)

    def test_next_statuses(self):
        assert next_statuses(S.SUBMITTED) == [S.REVISION, S.CONFIRMED]
        assert next_statuses(S.CLOSED) == []


class TestOrderSheetTransitions:

    def test_create_requires_staff(self, services, customer):
        with pytest.raises(Unauthorized):
            services.lifecycle.create_order_sheet("한우마트", customer)

    def test_create_requires_customer_name(self, services, ops):
        with pytest.raises(ValidationError):
            services.lifecycle.create_order_sheet("  ", ops)

    def test_send_issues_token(self, services, ops, audit_backend):
        sheet = services.lifecycle.create_order_sheet("한우마트", ops)
        result = services.lifecycle.request_transition(sheet.id, S.DRAFT, S.SENT, ops)

        assert result.order_sheet.status == S.SENT
        assert result.invite_token is not None
        assert result.order_sheet.invite_token_id == result.invite_token.id
        assert result.invite_token.expires_at > datetime.utcnow()
        assert audit_backend.query(event_type=AuditEventType.INVITE_TOKEN_ISSUED.value, order_sheet_id=sheet.id)

    def test_token_capped_at_cut_off(self, services, ops):
        cut_off = datetime.utcnow() + timedelta(hours=2)
        sheet = services.lifecycle.create_order_sheet("한우마트", ops, cut_off_at=cut_off)
        result = services.lifecycle.request_transition(sheet.id, S.DRAFT, S.SENT, ops)

        assert result.invite_token.expires_at == cut_off

    def test_send_after_cut_off_rejected(self, services, ops):
        sheet = services.lifecycle.create_order_sheet(
            "한우마트", ops, cut_off_at=datetime.utcnow() - timedelta(minutes=1)
        )
        with pytest.raises(ValidationError):
            services.lifecycle.request_transition(sheet.id, S.DRAFT, S.SENT, ops)
        assert services.lifecycle.get_order_sheet(sheet.id).status == S.DRAFT

    def test_illegal_edge_mutates_nothing(self, services, ops, audit_backend):
        sheet = services.lifecycle.create_order_sheet("한우마트", ops)
        with pytest.raises(InvalidTransition):
            services.lifecycle.request_transition(sheet.id, S.DRAFT, S.CONFIRMED, ops)

        assert services.lifecycle.get_order_sheet(sheet.id).status == S.DRAFT
        rejected = audit_backend.query(event_type=AuditEventType.TRANSITION_REJECTED.value, order_sheet_id=sheet.id)
        assert rejected[0].details["error"] == "INVALID_TRANSITION"

    def test_unknown_status_is_invalid_transition(self, services, ops):
        sheet = services.lifecycle.create_order_sheet("한우마트", ops)
        with pytest.raises(InvalidTransition):
            services.lifecycle.request_transition(sheet.id, "DRAFT", "SHIPPED", ops)

    def test_unknown_order_sheet(self, services, ops):
        with pytest.raises(NotFound):
            services.lifecycle.request_transition("os_missing", S.DRAFT, S.SENT, ops)

    def test_role_checked_before_status(self, services, ops, warehouse):
        sheet = services.lifecycle.create_order_sheet("한우마트", ops)
        with pytest.raises(Unauthorized):
            services.lifecycle.request_transition(sheet.id, S.SUBMITTED, S.CONFIRMED, warehouse)

    def test_stale_expected_status(self, services, ops):
        sheet = services.lifecycle.create_order_sheet("한우마트", ops)
        with pytest.raises(StaleState) as exc:
            services.lifecycle.request_transition(sheet.id, S.REVISION, S.SENT, ops)
        assert exc.value.expected == S.REVISION
        assert exc.value.actual == S.DRAFT

    def test_submit_requires_matching_token(self, services, ops, customer):
        sheet = services.lifecycle.create_order_sheet("한우마트", ops)
        services.lifecycle.request_transition(sheet.id, S.DRAFT, S.SENT, ops)

        with pytest.raises(Unauthorized):
            services.lifecycle.request_transition(sheet.id, S.SENT, S.SUBMITTED, customer)
        with pytest.raises(Unauthorized):
            services.lifecycle.request_transition(sheet.id, S.SENT, S.SUBMITTED, with_token(customer, "forged"))
        assert services.lifecycle.get_order_sheet(sheet.id).status == S.SENT

    def test_token_is_single_use(self, services, ops, customer):
        sheet = services.lifecycle.create_order_sheet("한우마트", ops)
        sent = services.lifecycle.request_transition(sheet.id, S.DRAFT, S.SENT, ops)
        holder = with_token(customer, sent.invite_token.token)

        submitted = services.lifecycle.request_transition(sheet.id, S.SENT, S.SUBMITTED, holder)
        assert submitted.invite_token.used_at is not None
        assert submitted.order_sheet.last_submitted_at is not None

        services.lifecycle.request_transition(sheet.id, S.SUBMITTED, S.REVISION, ops, reason="수량 확인")
        services.lifecycle.request_transition(sheet.id, S.REVISION, S.SENT, ops)
        with pytest.raises(Unauthorized):
            services.lifecycle.request_transition(sheet.id, S.SENT, S.SUBMITTED, holder)

    def test_expired_token(self, services, ops, customer):
        sheet = services.lifecycle.create_order_sheet("한우마트", ops)
        sent = services.lifecycle.request_transition(sheet.id, S.DRAFT, S.SENT, ops)
        token = sent.invite_token.model_copy(update={"expires_at": datetime.utcnow() - timedelta(seconds=1)})
        services.repository.save(EntityKind.INVITE_TOKEN, token)

        with pytest.raises(Unauthorized):
            services.lifecycle.request_transition(
                sheet.id, S.SENT, S.SUBMITTED, with_token(customer, token.token)
            )

    def test_revision_requires_reason(self, services, ops, customer):
        sheet = services.lifecycle.create_order_sheet("한우마트", ops)
        sent = services.lifecycle.request_transition(sheet.id, S.DRAFT, S.SENT, ops)
        services.lifecycle.request_transition(sheet.id, S.SENT, S.SUBMITTED, with_token(customer, sent.invite_token.token))

        with pytest.raises(ValidationError):
            services.lifecycle.request_transition(sheet.id, S.SUBMITTED, S.REVISION, ops, reason=" ")
        result = services.lifecycle.request_transition(sheet.id, S.SUBMITTED, S.REVISION, ops, reason="단가 조정")
        assert result.order_sheet.revision_comment == "단가 조정"

    def test_confirm_creates_one_sales_order(self, services, ops, confirmed_order):
        sheet, sales_order = confirmed_order
        assert sheet.status == S.CONFIRMED
        assert sales_order.source_order_sheet_id == sheet.id
        assert sales_order.items == sheet.items

        again = services.lifecycle.request_transition(sheet.id, S.CONFIRMED, S.CONFIRMED, ops)
        assert again.created is False
        assert again.sales_order.id == sales_order.id
        assert len(services.repository.list(EntityKind.SALES_ORDER, parent_id=sheet.id)) == 1

    def test_second_confirm_from_submitted_is_stale(self, services, ops, confirmed_order):
        sheet, _ = confirmed_order
        with pytest.raises(StaleState):
            services.lifecycle.request_transition(sheet.id, S.SUBMITTED, S.CONFIRMED, ops)
        assert len(services.repository.list(EntityKind.SALES_ORDER)) == 1

    def test_close_requires_delivered_shipments(self, services, ops, confirmed_order):
        sheet, sales_order = confirmed_order
        with pytest.raises(InvalidTransition):
            services.lifecycle.request_transition(sheet.id, S.CONFIRMED, S.CLOSED, ops)

        shipment = services.lifecycle.create_shipment(sales_order.id, ops)
        with pytest.raises(InvalidTransition) as exc:
            services.lifecycle.request_transition(sheet.id, S.CONFIRMED, S.CLOSED, ops)
        assert exc.value.details["pending_shipments"] == [shipment.id]

        services.lifecycle.mark_delivered(shipment.id, ShipmentStatus.PREPARING)
        result = services.lifecycle.request_transition(sheet.id, S.CONFIRMED, S.CLOSED, ops)
        assert result.order_sheet.status == S.CLOSED


class TestOrderItems:

    def test_staff_edits_draft(self, services, ops):
        sheet = services.lifecycle.create_order_sheet("한우마트", ops)
        updated = services.lifecycle.update_order_items(sheet.id, [{"product_name": "갈비", "qty_kg": "3.5"}], ops)
        assert updated.items[0].product_name == "갈비"
        assert updated.status == S.DRAFT

    def test_customer_edits_sent_with_token(self, services, ops, customer):
        sheet = services.lifecycle.create_order_sheet("한우마트", ops)
        sent = services.lifecycle.request_transition(sheet.id, S.DRAFT, S.SENT, ops)

        with pytest.raises(Unauthorized):
            services.lifecycle.update_order_items(sheet.id, [], customer)
        updated = services.lifecycle.update_order_items(
            sheet.id, [{"product_name": "등심", "qty_kg": 5}], with_token(customer, sent.invite_token.token)
        )
        assert updated.items[0].product_name == "등심"

    def test_confirmed_sheet_is_frozen(self, services, ops, confirmed_order):
        sheet, _ = confirmed_order
        with pytest.raises(InvalidTransition):
            services.lifecycle.update_order_items(sheet.id, [], ops)


class TestShipments:

    def test_create_and_transit(self, services, ops, warehouse, confirmed_order):
        _, sales_order = confirmed_order
        shipment = services.lifecycle.create_shipment(
            sales_order.id, ops, dispatch=DispatchInfo(company="한빛물류", vehicle_number="12가3456")
        )
        assert shipment.status == ShipmentStatus.PREPARING
        assert shipment.company == "한빛물류"

        moved = services.lifecycle.start_transit(shipment.id, warehouse)
        assert moved.status == ShipmentStatus.IN_TRANSIT
        with pytest.raises(StaleState):
            services.lifecycle.start_transit(shipment.id, warehouse)

    def test_customer_cannot_create_shipment(self, services, customer, confirmed_order):
        _, sales_order = confirmed_order
        with pytest.raises(Unauthorized):
            services.lifecycle.create_shipment(sales_order.id, customer)

    def test_dispatch_update_sets_modified(self, services, ops, confirmed_order):
        _, sales_order = confirmed_order
        shipment = services.lifecycle.create_shipment(sales_order.id, ops)

        unchanged = services.lifecycle.update_dispatch(shipment.id, DispatchInfo(), ops)
        assert unchanged.is_modified is False

        updated = services.lifecycle.update_dispatch(shipment.id, DispatchInfo(driver_name="김기사"), ops)
        assert updated.is_modified is True
        assert updated.status == ShipmentStatus.PREPARING
        assert services.lifecycle.get_shipment(shipment.id).driver_name == "김기사"

    def test_mark_delivered_with_stale_status(self, services, ops, confirmed_order):
        _, sales_order = confirmed_order
        shipment = services.lifecycle.create_shipment(sales_order.id, ops)
        with pytest.raises(StaleState):
            services.lifecycle.mark_delivered(shipment.id, ShipmentStatus.IN_TRANSIT, SYSTEM_ACTOR)

    def test_delivered_shipment_dispatch_frozen(self, services, ops, confirmed_order):
        _, sales_order = confirmed_order
        shipment = services.lifecycle.create_shipment(sales_order.id, ops)
        services.lifecycle.mark_delivered(shipment.id, ShipmentStatus.PREPARING)
        with pytest.raises(InvalidTransition):
            services.lifecycle.update_dispatch(shipment.id, DispatchInfo(driver_name="박기사"), ops)
