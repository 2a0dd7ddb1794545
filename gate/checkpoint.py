"""
Warehouse Gate Checkpoint

A shipment may leave through the gate only after its sales order has
reconciled with every line MATCHED. The warehouse opens a gate session,
ticks each checklist item, captures a signature, and completes the
session. Completion is the only path that marks a shipment DELIVERED.

Session progress lives in memory until completion; an abandoned or
replaced session leaves no trace on the shipment.
"""

import threading
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Dict, Optional, Sequence

from core.audit import AuditEventType, AuditLogger
from core.config import DEFAULT_GATE_CHECKLIST
from core.errors import IncompleteGate, InvalidTransition, NotFound, Unauthorized, ValidationError
from core.models import (
    GateCheckRecord,
    GateChecklistState,
    ReconciliationStatus,
    Shipment,
    ShipmentStatus,
)
from core.observability.logging import get_logger, with_correlation
from core.observability.metrics import MetricsCollector, get_metrics
from core.security.identity import Actor, UserRole
from core.storage.artifacts import ArtifactStore
from lifecycle.service import OrderLifecycle, new_id
from lifecycle.transitions import TransitionResult
from storage.repository import EntityKind

logger = get_logger(__name__)

GATE_ROLES = frozenset({UserRole.WAREHOUSE, UserRole.ADMIN})


class GateStatus(str, Enum):
    """Derived gate eligibility of a shipment. Never stored."""
    PENDING = "PENDING"
    READY = "READY"
    COMPLETED = "COMPLETED"


@dataclass
class GateSession:
    """An open gate session and its in-progress checklist."""
    session_id: str
    shipment_id: str
    opened_by: Actor
    state: GateChecklistState
    opened_at: datetime = field(default_factory=datetime.utcnow)

    def missing_items(self):
        return [item for item, checked in self.state.checklist.items() if not checked]


@dataclass
class GateCompletion:
    record: GateCheckRecord
    shipment: Shipment
    close_result: Optional[TransitionResult] = None

    @property
    def order_sheet_closed(self) -> bool:
        return self.close_result is not None


class GateCheckpoint:
    """Owns open gate sessions and drives shipment delivery on completion."""

    def __init__(
        self,
        lifecycle: OrderLifecycle,
        artifact_store: ArtifactStore,
        checklist: Optional[Sequence[str]] = None,
        audit: Optional[AuditLogger] = None,
        metrics: Optional[MetricsCollector] = None,
    ):
        self.lifecycle = lifecycle
        self.repository = lifecycle.repository
        self.artifact_store = artifact_store
        self.checklist = tuple(checklist or lifecycle.settings.gate_checklist or DEFAULT_GATE_CHECKLIST)
        self.audit = audit or lifecycle.audit
        self.metrics = metrics or get_metrics()

        self._sessions: Dict[str, GateSession] = {}
        self._by_shipment: Dict[str, str] = {}
        self._lock = threading.Lock()

    # =========================================================================
    # Eligibility
    # =========================================================================

    def gate_status(self, shipment_id: str) -> GateStatus:
        shipment = self.lifecycle.get_shipment(shipment_id)
        if shipment.status == ShipmentStatus.DELIVERED:
            return GateStatus.COMPLETED
        sales_order = self.lifecycle.get_sales_order(shipment.source_sales_order_id)
        if sales_order.reconciliation_status == ReconciliationStatus.MATCHED:
            return GateStatus.READY
        return GateStatus.PENDING

    def _require_ready(self, shipment_id: str) -> None:
        status = self.gate_status(shipment_id)
        if status != GateStatus.READY:
            raise InvalidTransition(
                f"Shipment {shipment_id} gate is {status.value}, not READY",
                {"gate_status": status.value},
            )

    # =========================================================================
    # Sessions
    # =========================================================================

    def open_gate(self, shipment_id: str, actor: Actor) -> GateSession:
        """Open a session; any earlier session for the shipment is discarded."""
        if actor.role not in GATE_ROLES:
            raise Unauthorized(f"{actor.role.value} may not operate the gate")
        self._require_ready(shipment_id)

        session = GateSession(
            session_id=str(uuid.uuid4()),
            shipment_id=shipment_id,
            opened_by=actor,
            state=GateChecklistState(
                shipment_id=shipment_id,
                checklist={item: False for item in self.checklist},
            ),
        )
        with self._lock:
            previous = self._by_shipment.get(shipment_id)
            if previous:
                self._sessions.pop(previous, None)
            self._sessions[session.session_id] = session
            self._by_shipment[shipment_id] = session.session_id

        with with_correlation(shipment_id=shipment_id, actor=str(actor)):
            if previous:
                logger.info(f"Gate session {previous} replaced")
            logger.info("Gate opened")
        self.metrics.record_gate_opened()
        self.audit.log_info(
            AuditEventType.GATE_OPENED,
            f"Gate opened for shipment {shipment_id}",
            shipment_id=shipment_id,
            details={"session_id": session.session_id, "replaced_session_id": previous},
            actor=str(actor),
        )
        return session

    def get_session(self, session_id: str) -> GateSession:
        with self._lock:
            session = self._sessions.get(session_id)
        if session is None:
            raise NotFound(f"Gate session not found: {session_id}", {"session_id": session_id})
        return session

    def session_for_shipment(self, shipment_id: str) -> Optional[GateSession]:
        with self._lock:
            session_id = self._by_shipment.get(shipment_id)
            return self._sessions.get(session_id) if session_id else None

    def toggle_checklist_item(self, session_id: str, item: str,
                              value: Optional[bool] = None) -> GateChecklistState:
        """Flip one checklist item, or set it when value is given."""
        session = self.get_session(session_id)
        with self._lock:
            checklist = session.state.checklist
            if item not in checklist:
                raise ValidationError(
                    f"Unknown checklist item: {item}",
                    {"item": item, "checklist": list(checklist)},
                )
            checklist[item] = (not checklist[item]) if value is None else bool(value)
            return session.state.model_copy(deep=True)

    def submit_signature(self, session_id: str, artifact: bytes,
                         content_type: str = "image/png") -> GateChecklistState:
        if not artifact:
            raise ValidationError("Signature artifact is empty")
        session = self.get_session(session_id)
        with self._lock:
            session.state.signature_artifact = bytes(artifact)
            session.state.signature_content_type = content_type
            return session.state.model_copy(deep=True)

    def complete_gate(self, session_id: str) -> GateCompletion:
        """Commit a finished session: store the signature, deliver, record.

        Raises:
            IncompleteGate: If any item is unchecked or the signature is missing
                (the session stays open)
            InvalidTransition: If the shipment is no longer READY
            StaleState: If the shipment status changed since it was read
        """
        session = self.get_session(session_id)
        shipment_id = session.shipment_id
        actor = session.opened_by

        with self._lock:
            state = session.state.model_copy(deep=True)

        with with_correlation(shipment_id=shipment_id, actor=str(actor)):
            missing = [item for item, checked in state.checklist.items() if not checked]
            if missing or not state.has_signature:
                self.metrics.record_gate_incomplete()
                logger.warning(
                    "Gate completion refused: checklist or signature incomplete",
                    extra_fields={"missing_items": missing, "has_signature": state.has_signature},
                )
                raise IncompleteGate(
                    "All checklist items and a signature are required",
                    {"missing_items": missing, "has_signature": state.has_signature},
                )

            self._require_ready(shipment_id)
            shipment = self.lifecycle.get_shipment(shipment_id)

            signature_ref = self.artifact_store.put_signature(
                shipment_id,
                state.signature_artifact,
                state.signature_content_type,
            )

            delivered = self.lifecycle.mark_delivered(shipment_id, shipment.status, actor)

            now = datetime.utcnow()
            record = GateCheckRecord(
                id=new_id("gate"),
                shipment_id=shipment_id,
                checklist=dict(state.checklist),
                signature_ref=signature_ref,
                checked_by=str(actor),
                completed_at=now,
            )
            self.repository.add(EntityKind.GATE_RECORD, record)

            with self._lock:
                self._sessions.pop(session_id, None)
                if self._by_shipment.get(shipment_id) == session_id:
                    del self._by_shipment[shipment_id]

            self.metrics.record_gate_completed()
            logger.info("Gate completed")
            self.audit.log_info(
                AuditEventType.GATE_COMPLETED,
                f"Gate completed for shipment {shipment_id}",
                sales_order_id=delivered.source_sales_order_id,
                shipment_id=shipment_id,
                details={"session_id": session_id, "record_id": record.id},
                actor=str(actor),
                artifact_refs=[signature_ref],
            )

            close_result = self.lifecycle.on_gate_completed(shipment_id)
            return GateCompletion(record=record, shipment=delivered, close_result=close_result)

    def abandon_gate(self, session_id: str) -> None:
        """Discard a session without touching the shipment."""
        with self._lock:
            session = self._sessions.pop(session_id, None)
            if session is None:
                raise NotFound(f"Gate session not found: {session_id}", {"session_id": session_id})
            if self._by_shipment.get(session.shipment_id) == session_id:
                del self._by_shipment[session.shipment_id]

        self.metrics.record_gate_abandoned()
        self.audit.log_info(
            AuditEventType.GATE_ABANDONED,
            f"Gate session abandoned for shipment {session.shipment_id}",
            shipment_id=session.shipment_id,
            details={"session_id": session_id},
            actor=str(session.opened_by),
        )
