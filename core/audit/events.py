"""Audit event logging and persistence.

Records every lifecycle action (order sheet transitions, sales order
creation, document ingestion, reconciliation and gate sessions) as a
structured event. Supports multiple persistence backends.
"""

import json
import threading
import uuid
from abc import ABC, abstractmethod
from datetime import datetime
from enum import Enum
from itertools import islice
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional

from core.models.refs import AuditEvent, AuditSeverity, DataReference
from core.observability.logging import get_logger

logger = get_logger(__name__)


class AuditEventType(str, Enum):
    """Standard audit event types."""
    # Order sheet events
    ORDER_SHEET_CREATED = "ORDER_SHEET_CREATED"
    ORDER_SHEET_TRANSITIONED = "ORDER_SHEET_TRANSITIONED"
    TRANSITION_REJECTED = "TRANSITION_REJECTED"
    INVITE_TOKEN_ISSUED = "INVITE_TOKEN_ISSUED"

    # Sales order events
    SALES_ORDER_CREATED = "SALES_ORDER_CREATED"

    # Document events
    DOCUMENT_INGESTED = "DOCUMENT_INGESTED"
    DOCUMENT_ADVANCED = "DOCUMENT_ADVANCED"

    # Reconciliation events
    RECONCILIATION_COMPLETED = "RECONCILIATION_COMPLETED"
    RECONCILIATION_RESET = "RECONCILIATION_RESET"

    # Shipment events
    SHIPMENT_CREATED = "SHIPMENT_CREATED"
    SHIPMENT_DISPATCH_UPDATED = "SHIPMENT_DISPATCH_UPDATED"
    SHIPMENT_IN_TRANSIT = "SHIPMENT_IN_TRANSIT"
    SHIPMENT_DELIVERED = "SHIPMENT_DELIVERED"

    # Gate events
    GATE_OPENED = "GATE_OPENED"
    GATE_COMPLETED = "GATE_COMPLETED"
    GATE_ABANDONED = "GATE_ABANDONED"


def create_audit_event(
    event_type: AuditEventType,
    message: str,
    severity: AuditSeverity = AuditSeverity.INFO,
    order_sheet_id: Optional[str] = None,
    sales_order_id: Optional[str] = None,
    shipment_id: Optional[str] = None,
    document_id: Optional[str] = None,
    details: Optional[Dict[str, Any]] = None,
    actor: str = "system",
    artifact_refs: Optional[List[DataReference]] = None,
) -> AuditEvent:
    """Create a new audit event with auto-generated ID and timestamp.

    Args:
        event_type: Type of event
        message: Human-readable message
        severity: Event severity level
        order_sheet_id: Associated order sheet ID
        sales_order_id: Associated sales order ID
        shipment_id: Associated shipment ID
        document_id: Associated document ID
        details: Additional structured details
        actor: Who/what performed the action
        artifact_refs: Related artifact references

    Returns:
        Configured AuditEvent ready for logging
    """
    return AuditEvent(
        event_id=str(uuid.uuid4()),
        timestamp=datetime.utcnow(),
        event_type=event_type.value,
        severity=severity,
        order_sheet_id=order_sheet_id,
        sales_order_id=sales_order_id,
        shipment_id=shipment_id,
        document_id=document_id,
        message=message,
        details=details or {},
        actor=actor,
        artifact_refs=artifact_refs or [],
    )


def _matches(event: AuditEvent, event_type: Optional[str], order_sheet_id: Optional[str],
             shipment_id: Optional[str], start_time: Optional[datetime],
             end_time: Optional[datetime]) -> bool:
    if event_type and event.event_type != event_type:
        return False
    if order_sheet_id and event.order_sheet_id != order_sheet_id:
        return False
    if shipment_id and event.shipment_id != shipment_id:
        return False
    if start_time and event.timestamp < start_time:
        return False
    if end_time and event.timestamp > end_time:
        return False
    return True


class AuditBackend(ABC):
    """Abstract base class for audit persistence backends."""

    @abstractmethod
    def log(self, event: AuditEvent) -> None:
        """Persist an audit event."""
        pass

    @abstractmethod
    def query(
        self,
        event_type: Optional[str] = None,
        order_sheet_id: Optional[str] = None,
        shipment_id: Optional[str] = None,
        start_time: Optional[datetime] = None,
        end_time: Optional[datetime] = None,
        limit: int = 100,
    ) -> List[AuditEvent]:
        """Query audit events with filters."""
        pass


class JSONFileAuditBackend(AuditBackend):
    """Append-only audit files, one JSON object per line.

    Events go to ``<base_path>/YYYY-MM-DD.jsonl`` keyed by event timestamp.
    """

    def __init__(self, base_path: Path):
        self.base_path = Path(base_path)
        self.base_path.mkdir(parents=True, exist_ok=True)
        self._lock = threading.Lock()

    def _get_file_path(self, day: datetime) -> Path:
        return self.base_path / f"{day:%Y-%m-%d}.jsonl"

    def log(self, event: AuditEvent) -> None:
        line = json.dumps(event.model_dump(mode="json"), ensure_ascii=False)
        with self._lock, open(self._get_file_path(event.timestamp), "a", encoding="utf-8") as f:
            f.write(line + "\n")

    def _day_files(self, start_time: Optional[datetime], end_time: Optional[datetime]) -> Iterator[Path]:
        first = start_time.date() if start_time else None
        last = end_time.date() if end_time else None
        for path in sorted(self.base_path.glob("*.jsonl")):
            day = datetime.strptime(path.stem, "%Y-%m-%d").date()
            if (first and day < first) or (last and day > last):
                continue
            yield path

    def query(
        self,
        event_type: Optional[str] = None,
        order_sheet_id: Optional[str] = None,
        shipment_id: Optional[str] = None,
        start_time: Optional[datetime] = None,
        end_time: Optional[datetime] = None,
        limit: int = 100,
    ) -> List[AuditEvent]:
        results: List[AuditEvent] = []
        for path in self._day_files(start_time, end_time):
            with open(path, encoding="utf-8") as f:
                for raw in f:
                    if not raw.strip():
                        continue
                    event = AuditEvent.model_validate_json(raw)
                    if _matches(event, event_type, order_sheet_id, shipment_id, start_time, end_time):
                        results.append(event)
                        if len(results) >= limit:
                            return results
        return results


class InMemoryAuditBackend(AuditBackend):
    """Keeps events in a list; used by tests and local runs."""

    def __init__(self):
        self._events: List[AuditEvent] = []
        self._lock = threading.Lock()

    def log(self, event: AuditEvent) -> None:
        with self._lock:
            self._events.append(event)

    def query(
        self,
        event_type: Optional[str] = None,
        order_sheet_id: Optional[str] = None,
        shipment_id: Optional[str] = None,
        start_time: Optional[datetime] = None,
        end_time: Optional[datetime] = None,
        limit: int = 100,
    ) -> List[AuditEvent]:
        with self._lock:
            snapshot = list(self._events)
        matching = (e for e in snapshot
                    if _matches(e, event_type, order_sheet_id, shipment_id, start_time, end_time))
        return list(islice(matching, limit))

    def clear(self) -> None:
        with self._lock:
            self._events.clear()


class AuditLogger:
    """Main audit logger that supports multiple backends.

    Usage:
        audit = AuditLogger()
        audit.add_backend(JSONFileAuditBackend(Path("./audit")))

        audit.log_info(
            AuditEventType.ORDER_SHEET_TRANSITIONED,
            "Order sheet OS-001 SUBMITTED -> CONFIRMED",
            order_sheet_id="OS-001",
        )
    """

    def __init__(self):
        self._backends: List[AuditBackend] = []

    def add_backend(self, backend: AuditBackend) -> None:
        """Add an audit backend."""
        self._backends.append(backend)

    def log(self, event: AuditEvent) -> None:
        """Log event to all backends."""
        for backend in self._backends:
            try:
                backend.log(event)
            except OSError as e:
                # Audit failures must not roll back a committed transition
                logger.warning(
                    f"Audit logging failed for backend {type(backend).__name__}: {e}",
                    extra_fields={"event_type": event.event_type},
                )

    def log_info(self, event_type: AuditEventType, message: str, **kwargs) -> None:
        """Log an INFO level event."""
        self.log(create_audit_event(event_type, message, AuditSeverity.INFO, **kwargs))

    def log_warning(self, event_type: AuditEventType, message: str, **kwargs) -> None:
        """Log a WARN level event."""
        self.log(create_audit_event(event_type, message, AuditSeverity.WARN, **kwargs))

    def log_error(self, event_type: AuditEventType, message: str, **kwargs) -> None:
        """Log an ERROR level event."""
        self.log(create_audit_event(event_type, message, AuditSeverity.ERROR, **kwargs))

    def query(
        self,
        event_type: Optional[str] = None,
        order_sheet_id: Optional[str] = None,
        shipment_id: Optional[str] = None,
        start_time: Optional[datetime] = None,
        end_time: Optional[datetime] = None,
        limit: int = 100,
    ) -> List[AuditEvent]:
        """Query events from all backends (returns first backend's results)."""
        if not self._backends:
            return []
        return self._backends[0].query(
            event_type, order_sheet_id, shipment_id, start_time, end_time, limit
        )
