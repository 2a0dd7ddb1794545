"""
Order Lifecycle

The single writer of status fields for order sheets, sales orders,
shipments and documents. Every status change is a compare-and-set on the
repository: the caller states the status it believes is current, and a
mismatch fails with StaleState instead of overwriting.

Order sheet flow:
    DRAFT -> SENT -> SUBMITTED -> CONFIRMED -> CLOSED
                        |  ^
                        v  |
                      REVISION -> SENT
"""

import secrets
import time
import uuid
from datetime import date, datetime, timedelta
from typing import Iterable, List, Optional, Union

from core.audit import AuditEventType, AuditLogger, create_audit_event
from core.config import Settings
from core.errors import (
    FulfillmentError,
    InvalidTransition,
    NotFound,
    StaleState,
    Unauthorized,
    ValidationError,
)
from core.models import (
    AuditSeverity,
    DispatchInfo,
    Document,
    DocumentStatus,
    InviteToken,
    OrderItem,
    OrderSheet,
    OrderSheetStatus,
    ReconciliationReport,
    ReconciliationStatus,
    SalesOrder,
    Shipment,
    ShipmentStatus,
)
from core.observability.logging import get_logger, with_correlation
from core.observability.metrics import MetricsCollector, get_metrics
from core.security.identity import SYSTEM_ACTOR, Actor, UserRole
from lifecycle.transitions import (
    SHIPMENT_EDGES,
    STAFF,
    TOKEN_ISSUING_EDGES,
    TransitionResult,
    allowed_roles,
    edge_label,
    is_forward_document_move,
    is_legal_edge,
)
from storage.repository import EntityKind, Repository

logger = get_logger(__name__)

S = OrderSheetStatus

SHIPMENT_ROLES = STAFF
TRANSIT_ROLES = STAFF | {UserRole.WAREHOUSE}


def new_id(prefix: str) -> str:
    return f"{prefix}_{uuid.uuid4().hex[:16]}"


def _as_items(items: Optional[Iterable[Union[OrderItem, dict]]]) -> List[OrderItem]:
    return [i if isinstance(i, OrderItem) else OrderItem.model_validate(i) for i in (items or [])]


class OrderLifecycle:
    """State machine over order sheets and the aggregates derived from them."""

    def __init__(
        self,
        repository: Repository,
        settings: Optional[Settings] = None,
        audit: Optional[AuditLogger] = None,
        metrics: Optional[MetricsCollector] = None,
    ):
        self.repository = repository
        self.settings = settings or Settings()
        self.audit = audit or AuditLogger()
        self.metrics = metrics or get_metrics()

    # =========================================================================
    # Queries
    # =========================================================================

    def get_order_sheet(self, order_sheet_id: str) -> OrderSheet:
        return self.repository.require(EntityKind.ORDER_SHEET, order_sheet_id)

    def get_sales_order(self, sales_order_id: str) -> SalesOrder:
        return self.repository.require(EntityKind.SALES_ORDER, sales_order_id)

    def get_shipment(self, shipment_id: str) -> Shipment:
        return self.repository.require(EntityKind.SHIPMENT, shipment_id)

    def get_document(self, document_id: str) -> Document:
        return self.repository.require(EntityKind.DOCUMENT, document_id)

    # =========================================================================
    # Order sheets
    # =========================================================================

    def create_order_sheet(
        self,
        customer_name: str,
        actor: Actor,
        items: Optional[Iterable[Union[OrderItem, dict]]] = None,
        ship_date: Optional[date] = None,
        cut_off_at: Optional[datetime] = None,
    ) -> OrderSheet:
        """Create a DRAFT order sheet."""
        if actor.role not in STAFF:
            raise Unauthorized(f"{actor.role.value} may not create order sheets")
        if not customer_name or not customer_name.strip():
            raise ValidationError("customer_name is required")

        sheet = OrderSheet(
            id=new_id("os"),
            customer_name=customer_name.strip(),
            items=_as_items(items),
            ship_date=ship_date,
            cut_off_at=cut_off_at,
        )
        self.repository.add(EntityKind.ORDER_SHEET, sheet)

        with with_correlation(order_sheet_id=sheet.id, actor=str(actor)):
            logger.info(f"Order sheet created for {sheet.customer_name}")
        self.audit.log_info(
            AuditEventType.ORDER_SHEET_CREATED,
            f"Order sheet {sheet.id} created for {sheet.customer_name}",
            order_sheet_id=sheet.id,
            actor=str(actor),
        )
        return sheet

    def update_order_items(
        self,
        order_sheet_id: str,
        items: Iterable[Union[OrderItem, dict]],
        actor: Actor,
    ) -> OrderSheet:
        """Replace the requested items of an editable order sheet.

        Staff edit DRAFT and REVISION sheets; the customer edits a SENT sheet
        while holding its current invite token.
        """
        sheet = self.get_order_sheet(order_sheet_id)

        if sheet.status in (S.DRAFT, S.REVISION):
            if actor.role not in STAFF:
                raise Unauthorized(f"{actor.role.value} may not edit a {sheet.status.value} order sheet")
        elif sheet.status == S.SENT:
            if actor.role != UserRole.CUSTOMER:
                raise Unauthorized("Only the customer may edit a SENT order sheet")
            self._require_usable_token(sheet, actor)
        else:
            raise InvalidTransition(
                f"Order sheet {sheet.id} is {sheet.status.value} and cannot be edited",
                {"status": sheet.status.value},
            )

        updated = sheet.model_copy(update={"items": _as_items(items), "updated_at": datetime.utcnow()})
        return self.repository.save(EntityKind.ORDER_SHEET, updated)

    def request_transition(
        self,
        order_sheet_id: str,
        from_status: Union[OrderSheetStatus, str],
        to_status: Union[OrderSheetStatus, str],
        actor: Actor,
        reason: Optional[str] = None,
    ) -> TransitionResult:
        """Move an order sheet along one legal edge.

        Checks, in order: existence, edge legality, role, expected status,
        edge preconditions. The status write is a compare-and-set; side
        effects (invite token, sales order) follow the write.

        Raises:
            NotFound, InvalidTransition, Unauthorized, StaleState, ValidationError
        """
        try:
            from_status = OrderSheetStatus(from_status)
            to_status = OrderSheetStatus(to_status)
        except ValueError as e:
            raise InvalidTransition(f"Unknown order sheet status: {e}") from e

        with with_correlation(order_sheet_id=order_sheet_id, actor=str(actor)):
            try:
                result = self._request_transition(order_sheet_id, from_status, to_status, actor, reason)
            except FulfillmentError as e:
                self._record_rejection(order_sheet_id, from_status, to_status, actor, e)
                raise

            if result.created:
                self.metrics.record_transition(from_status.value, to_status.value)
                logger.info(
                    f"Order sheet {edge_label(from_status, to_status)}",
                    extra_fields={"side_effects": result.side_effects},
                )
                self.audit.log_info(
                    AuditEventType.ORDER_SHEET_TRANSITIONED,
                    f"Order sheet {order_sheet_id} {edge_label(from_status, to_status)}",
                    order_sheet_id=order_sheet_id,
                    sales_order_id=result.sales_order.id if result.sales_order else None,
                    details={
                        "from_status": from_status.value,
                        "to_status": to_status.value,
                        "reason": reason,
                        "side_effects": result.side_effects,
                    },
                    actor=str(actor),
                )
            return result

    def _request_transition(
        self,
        order_sheet_id: str,
        from_status: OrderSheetStatus,
        to_status: OrderSheetStatus,
        actor: Actor,
        reason: Optional[str],
    ) -> TransitionResult:
        sheet = self.repository.get_order_sheet(order_sheet_id)
        if sheet is None:
            raise NotFound(f"Order sheet not found: {order_sheet_id}", {"id": order_sheet_id})

        if from_status == S.CONFIRMED and to_status == S.CONFIRMED:
            return self._reconfirm(sheet, actor)

        if not is_legal_edge(from_status, to_status):
            raise InvalidTransition(
                f"Illegal transition {edge_label(from_status, to_status)}",
                {"from_status": from_status.value, "to_status": to_status.value},
            )

        if actor.role not in allowed_roles(from_status, to_status):
            raise Unauthorized(
                f"{actor.role.value} may not perform {edge_label(from_status, to_status)}",
                {"role": actor.role.value},
            )

        if sheet.status != from_status:
            raise StaleState(
                f"Order sheet {sheet.id} is {sheet.status.value}, expected {from_status.value}",
                expected=from_status,
                actual=sheet.status,
            )

        now = datetime.utcnow()
        changes = {}
        token: Optional[InviteToken] = None
        edge = (from_status, to_status)

        # Preconditions
        if edge in TOKEN_ISSUING_EDGES:
            token = self._new_invite_token(sheet, now)
            changes["invite_token_id"] = token.id
        elif edge == (S.SENT, S.SUBMITTED):
            token = self._require_usable_token(sheet, actor, now)
            changes["last_submitted_at"] = now
        elif edge == (S.SUBMITTED, S.REVISION):
            if not reason or not reason.strip():
                raise ValidationError("A reason is required to request revision")
            changes["revision_comment"] = reason.strip()
        elif edge == (S.CONFIRMED, S.CLOSED):
            self._require_all_delivered(sheet)

        updated = self.repository.compare_and_set_status(
            EntityKind.ORDER_SHEET, sheet.id, from_status, to_status, **changes
        )
        if updated is None:
            actual = self.repository.get_order_sheet(sheet.id)
            raise StaleState(
                f"Order sheet {sheet.id} changed concurrently",
                expected=from_status,
                actual=actual.status if actual else None,
            )

        result = TransitionResult(order_sheet=updated, from_status=from_status, to_status=to_status)

        # Side effects
        if edge in TOKEN_ISSUING_EDGES:
            self.repository.add(EntityKind.INVITE_TOKEN, token)
            result.invite_token = token
            result.side_effects.append("invite_token_issued")
            self.audit.log_info(
                AuditEventType.INVITE_TOKEN_ISSUED,
                f"Invite token issued for order sheet {sheet.id}",
                order_sheet_id=sheet.id,
                details={"token_id": token.id, "expires_at": token.expires_at.isoformat()},
                actor=str(actor),
            )
        elif edge == (S.SENT, S.SUBMITTED):
            used = token.model_copy(update={"used_at": now})
            self.repository.save(EntityKind.INVITE_TOKEN, used)
            result.invite_token = used
            result.side_effects.append("invite_token_used")
        elif edge == (S.SUBMITTED, S.CONFIRMED):
            result.sales_order = self._get_or_create_sales_order(updated, actor)
            result.side_effects.append("sales_order_created")

        return result

    def _reconfirm(self, sheet: OrderSheet, actor: Actor) -> TransitionResult:
        """CONFIRMED -> CONFIRMED: return the existing sales order without writing status."""
        if actor.role not in allowed_roles(S.SUBMITTED, S.CONFIRMED):
            raise Unauthorized(f"{actor.role.value} may not confirm order sheets")
        if sheet.status != S.CONFIRMED:
            raise StaleState(
                f"Order sheet {sheet.id} is {sheet.status.value}, expected CONFIRMED",
                expected=S.CONFIRMED,
                actual=sheet.status,
            )
        sales_order = self._get_or_create_sales_order(sheet, actor)
        return TransitionResult(
            order_sheet=sheet,
            from_status=S.CONFIRMED,
            to_status=S.CONFIRMED,
            sales_order=sales_order,
            created=False,
        )

    def _record_rejection(self, order_sheet_id, from_status, to_status, actor, error: FulfillmentError):
        self.metrics.record_transition_rejected(from_status.value, to_status.value, error.code)
        logger.warning(
            f"Transition {edge_label(from_status, to_status)} rejected: {error.message}",
            extra_fields={"error": error.code},
        )
        self.audit.log_warning(
            AuditEventType.TRANSITION_REJECTED,
            f"Order sheet {order_sheet_id} {edge_label(from_status, to_status)} rejected: {error.message}",
            order_sheet_id=order_sheet_id,
            details=error.to_dict(),
            actor=str(actor),
        )

    # =========================================================================
    # Preconditions and side effects
    # =========================================================================

    def _new_invite_token(self, sheet: OrderSheet, now: datetime) -> InviteToken:
        expires_at = now + timedelta(hours=self.settings.invite_token_ttl_hours)
        if sheet.cut_off_at is not None:
            if sheet.cut_off_at <= now:
                raise ValidationError(
                    f"Order sheet {sheet.id} cut-off has passed",
                    {"cut_off_at": sheet.cut_off_at.isoformat()},
                )
            expires_at = min(expires_at, sheet.cut_off_at)
        return InviteToken(
            id=new_id("tok"),
            order_sheet_id=sheet.id,
            token=secrets.token_urlsafe(24),
            expires_at=expires_at,
            created_at=now,
        )

    def _require_usable_token(self, sheet: OrderSheet, actor: Actor,
                              now: Optional[datetime] = None) -> InviteToken:
        token = self.repository.get_invite_token(sheet.invite_token_id) if sheet.invite_token_id else None
        if token is None or not actor.invite_token:
            raise Unauthorized("A valid invite token is required")
        if not secrets.compare_digest(token.token, actor.invite_token):
            raise Unauthorized("Invite token does not match this order sheet")
        if not token.is_usable(now):
            raise Unauthorized("Invite token is expired or already used", {"token_id": token.id})
        return token

    def _require_all_delivered(self, sheet: OrderSheet) -> None:
        sales_order = self.repository.get_sales_order_by_source(sheet.id)
        if sales_order is None:
            raise InvalidTransition(f"Order sheet {sheet.id} has no sales order")
        shipments = self.repository.list_shipments(sales_order.id)
        if not shipments:
            raise InvalidTransition(
                f"Sales order {sales_order.id} has no shipments",
                {"sales_order_id": sales_order.id},
            )
        pending = [s.id for s in shipments if s.status != ShipmentStatus.DELIVERED]
        if pending:
            raise InvalidTransition(
                f"{len(pending)} shipments not yet delivered",
                {"sales_order_id": sales_order.id, "pending_shipments": pending},
            )

    def _get_or_create_sales_order(self, sheet: OrderSheet, actor: Actor) -> SalesOrder:
        candidate = SalesOrder(
            id=new_id("so"),
            source_order_sheet_id=sheet.id,
            customer_name=sheet.customer_name,
            items=sheet.items,
        )
        sales_order, created = self.repository.get_or_create_sales_order(candidate)
        if created:
            logger.info(f"Sales order {sales_order.id} created", extra_fields={"sales_order_id": sales_order.id})
            self.audit.log_info(
                AuditEventType.SALES_ORDER_CREATED,
                f"Sales order {sales_order.id} created from order sheet {sheet.id}",
                order_sheet_id=sheet.id,
                sales_order_id=sales_order.id,
                details={"totals_kg": str(sales_order.totals_kg), "totals_amount": str(sales_order.totals_amount)},
                actor=str(actor),
            )
        return sales_order

    # =========================================================================
    # Shipments
    # =========================================================================

    def create_shipment(self, sales_order_id: str, actor: Actor,
                        dispatch: Optional[DispatchInfo] = None) -> Shipment:
        """Create a PREPARING shipment for a sales order."""
        if actor.role not in SHIPMENT_ROLES:
            raise Unauthorized(f"{actor.role.value} may not create shipments")
        sales_order = self.get_sales_order(sales_order_id)
        dispatch = dispatch or DispatchInfo()

        shipment = Shipment(
            id=new_id("sh"),
            source_sales_order_id=sales_order.id,
            **dispatch.model_dump(),
        )
        self.repository.add(EntityKind.SHIPMENT, shipment)

        with with_correlation(sales_order_id=sales_order.id, shipment_id=shipment.id, actor=str(actor)):
            logger.info("Shipment created")
        self.audit.log_info(
            AuditEventType.SHIPMENT_CREATED,
            f"Shipment {shipment.id} created for sales order {sales_order.id}",
            sales_order_id=sales_order.id,
            shipment_id=shipment.id,
            actor=str(actor),
        )
        return shipment

    def update_dispatch(self, shipment_id: str, dispatch: DispatchInfo, actor: Actor) -> Shipment:
        """Replace carrier details; flags the shipment as modified when they change."""
        if actor.role not in SHIPMENT_ROLES:
            raise Unauthorized(f"{actor.role.value} may not update dispatch info")
        shipment = self.get_shipment(shipment_id)
        if shipment.status == ShipmentStatus.DELIVERED:
            raise InvalidTransition(f"Shipment {shipment.id} is already delivered")

        if dispatch == shipment.dispatch_info():
            return shipment

        updated = shipment.model_copy(update={
            **dispatch.model_dump(),
            "is_modified": True,
            "updated_at": datetime.utcnow(),
        })
        updated = self.repository.save(EntityKind.SHIPMENT, updated)
        self.audit.log_info(
            AuditEventType.SHIPMENT_DISPATCH_UPDATED,
            f"Dispatch info updated for shipment {shipment.id}",
            sales_order_id=shipment.source_sales_order_id,
            shipment_id=shipment.id,
            details=dispatch.model_dump(mode="json"),
            actor=str(actor),
        )
        return updated

    def start_transit(self, shipment_id: str, actor: Actor) -> Shipment:
        """PREPARING -> IN_TRANSIT."""
        if actor.role not in TRANSIT_ROLES:
            raise Unauthorized(f"{actor.role.value} may not dispatch shipments")
        updated = self._move_shipment(shipment_id, ShipmentStatus.PREPARING, ShipmentStatus.IN_TRANSIT)
        self.audit.log_info(
            AuditEventType.SHIPMENT_IN_TRANSIT,
            f"Shipment {shipment_id} in transit",
            sales_order_id=updated.source_sales_order_id,
            shipment_id=shipment_id,
            actor=str(actor),
        )
        return updated

    def mark_delivered(self, shipment_id: str, expected_status: Union[ShipmentStatus, str],
                       actor: Actor = SYSTEM_ACTOR) -> Shipment:
        """Move a shipment to DELIVERED. Called by the gate checkpoint on completion."""
        updated = self._move_shipment(shipment_id, ShipmentStatus(expected_status), ShipmentStatus.DELIVERED)
        with with_correlation(shipment_id=shipment_id, actor=str(actor)):
            logger.info("Shipment delivered")
        self.audit.log_info(
            AuditEventType.SHIPMENT_DELIVERED,
            f"Shipment {shipment_id} delivered",
            sales_order_id=updated.source_sales_order_id,
            shipment_id=shipment_id,
            actor=str(actor),
        )
        return updated

    def _move_shipment(self, shipment_id: str, expected: ShipmentStatus, new: ShipmentStatus) -> Shipment:
        if (expected, new) not in SHIPMENT_EDGES:
            raise InvalidTransition(f"Illegal shipment transition {edge_label(expected, new)}")
        updated = self.repository.compare_and_set_status(EntityKind.SHIPMENT, shipment_id, expected, new)
        if updated is None:
            actual = self.repository.get_shipment(shipment_id)
            raise StaleState(
                f"Shipment {shipment_id} is {actual.status.value}, expected {expected.value}",
                expected=expected,
                actual=actual.status,
            )
        self.metrics.record_transition(expected.value, new.value)
        return updated

    def on_gate_completed(self, shipment_id: str) -> Optional[TransitionResult]:
        """Close the order sheet once every shipment of its sales order is delivered."""
        shipment = self.get_shipment(shipment_id)
        sales_order = self.get_sales_order(shipment.source_sales_order_id)
        sheet = self.get_order_sheet(sales_order.source_order_sheet_id)

        if sheet.status != S.CONFIRMED:
            return None
        shipments = self.repository.list_shipments(sales_order.id)
        if not all(s.status == ShipmentStatus.DELIVERED for s in shipments):
            return None

        try:
            return self.request_transition(sheet.id, S.CONFIRMED, S.CLOSED, SYSTEM_ACTOR)
        except StaleState:
            # Closed by someone else in the meantime
            logger.info(f"Order sheet {sheet.id} already moved on; skipping auto-close")
            return None

    # =========================================================================
    # Documents and reconciliation
    # =========================================================================

    def add_document(self, document: Document, actor: Actor = SYSTEM_ACTOR) -> Document:
        """Store a newly uploaded document and move it to PARSED.

        A new document invalidates the sales order's previous verdict, so its
        reconciliation status goes back to PENDING until the next run.
        """
        if document.sales_order_id:
            self.get_sales_order(document.sales_order_id)
        self.repository.add(EntityKind.DOCUMENT, document)
        if document.sales_order_id:
            self._reset_reconciliation(document.sales_order_id, document.id, actor)
        return self.advance_document(document.id, DocumentStatus.PARSED, actor)

    def _reset_reconciliation(self, sales_order_id: str, document_id: str, actor: Actor) -> None:
        while True:
            sales_order = self.get_sales_order(sales_order_id)
            previous = sales_order.reconciliation_status
            if previous == ReconciliationStatus.PENDING:
                return
            updated = self.repository.compare_and_set_status(
                EntityKind.SALES_ORDER, sales_order_id, previous, ReconciliationStatus.PENDING
            )
            if updated is not None:
                break

        with with_correlation(sales_order_id=sales_order_id, document_id=document_id):
            logger.info(f"Reconciliation reset: {previous.value}->PENDING after new document")
        self.audit.log_info(
            AuditEventType.RECONCILIATION_RESET,
            f"Sales order {sales_order_id} reconciliation reset by document {document_id}",
            sales_order_id=sales_order_id,
            document_id=document_id,
            details={"from_status": previous.value},
            actor=str(actor),
        )

    def advance_document(self, document_id: str, to_status: Union[DocumentStatus, str],
                         actor: Actor = SYSTEM_ACTOR) -> Document:
        """Move a document forward; moving to its current status is a no-op."""
        to_status = DocumentStatus(to_status)
        document = self.get_document(document_id)
        if document.status == to_status:
            return document
        if not is_forward_document_move(document.status, to_status):
            raise InvalidTransition(
                f"Document {document_id} cannot move back from {document.status.value} to {to_status.value}",
                {"from_status": document.status.value, "to_status": to_status.value},
            )

        updated = self.repository.compare_and_set_status(
            EntityKind.DOCUMENT, document_id, document.status, to_status
        )
        if updated is None:
            actual = self.repository.get_document(document_id)
            raise StaleState(
                f"Document {document_id} changed concurrently",
                expected=document.status,
                actual=actual.status,
            )
        self.audit.log_info(
            AuditEventType.DOCUMENT_ADVANCED,
            f"Document {document_id} {edge_label(document.status, to_status)}",
            sales_order_id=document.sales_order_id,
            document_id=document_id,
            actor=str(actor),
        )
        return updated

    def record_reconciliation(self, sales_order_id: str, report: ReconciliationReport,
                              document_ids: Iterable[str] = (),
                              actor: Actor = SYSTEM_ACTOR) -> SalesOrder:
        """Store a reconciliation verdict on the sales order and advance its documents."""
        start = time.time()
        new_status = ReconciliationStatus.MATCHED if report.all_matched else ReconciliationStatus.DISCREPANCY
        target = DocumentStatus.VERIFIED if report.all_matched else DocumentStatus.MATCHED

        with with_correlation(sales_order_id=sales_order_id, actor=str(actor)):
            sales_order = self.get_sales_order(sales_order_id)
            updated = self.repository.compare_and_set_status(
                EntityKind.SALES_ORDER,
                sales_order_id,
                sales_order.reconciliation_status,
                new_status,
                last_reconciled_at=report.reconciled_at,
            )
            if updated is None:
                actual = self.repository.get_sales_order(sales_order_id)
                raise StaleState(
                    f"Sales order {sales_order_id} reconciliation status changed concurrently",
                    expected=sales_order.reconciliation_status,
                    actual=actual.reconciliation_status,
                )

            for document_id in document_ids:
                document = self.get_document(document_id)
                if is_forward_document_move(document.status, target):
                    self.advance_document(document_id, target, actor)

            self.metrics.record_reconciliation(
                all_matched=report.all_matched,
                verdict_counts=report.summary,
                duration_ms=(time.time() - start) * 1000,
            )
            logger.info(
                f"Reconciliation recorded: {new_status.value}",
                extra_fields={"summary": report.summary},
            )
            self.audit.log(self._reconciliation_event(sales_order_id, report, new_status, actor))
            return updated

    def _reconciliation_event(self, sales_order_id, report, new_status, actor):
        return create_audit_event(
            AuditEventType.RECONCILIATION_COMPLETED,
            f"Sales order {sales_order_id} reconciled: {new_status.value}",
            severity=AuditSeverity.INFO if report.all_matched else AuditSeverity.WARN,
            sales_order_id=sales_order_id,
            details={"summary": report.summary, "metrics": report.metrics},
            actor=str(actor),
        )
