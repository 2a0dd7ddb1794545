"""Reference, reconciliation result and audit models."""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Dict, List, Optional

from pydantic import BaseModel, Field


class DataReference(BaseModel):
    """Reference to a stored artifact with metadata for retrieval and verification.

    Attributes:
        storage_uri: Absolute file path to the artifact
        content_hash: SHA256 hash of the content for integrity verification
        content_type: MIME type (e.g., "application/json", "image/png")
        size_bytes: Size of the artifact in bytes
        stored_at: Timestamp when the artifact was stored
    """
    storage_uri: str = Field(..., description="Absolute file path to the artifact")
    content_hash: str = Field(..., description="SHA256 hash of content")
    content_type: str = Field(default="application/json", description="MIME type")
    size_bytes: int = Field(..., description="Size in bytes")
    stored_at: datetime = Field(default_factory=datetime.utcnow, description="Storage timestamp")


# =============================================================================
# Reconciliation Results
# =============================================================================

class MatchVerdict(str, Enum):
    MATCHED = "MATCHED"
    QUANTITY_MISMATCH = "QUANTITY_MISMATCH"
    TRACE_MISMATCH = "TRACE_MISMATCH"
    UNMATCHED_STATEMENT = "UNMATCHED_STATEMENT"
    UNMATCHED_INSPECTION = "UNMATCHED_INSPECTION"


class MatchResult(BaseModel):
    """Verdict for one statement/inspection pair or one unmatched line.

    Deltas are inspection minus statement; an unmatched line reports its own
    weight and amount (negated for an unmatched statement line).
    """
    verdict: MatchVerdict
    trace_no: str = ""
    statement_index: Optional[int] = None
    inspection_index: Optional[int] = None
    delta_weight_kg: Decimal = Decimal("0")
    delta_amount: Decimal = Decimal("0")


class ReconciliationReport(BaseModel):
    """Reconciliation results for one statement/inspection document pair.

    Attributes:
        sales_order_id: Sales order the documents belong to (if known)
        statement_document_id: Statement the lines came from (if stored)
        inspection_document_id: Inspection report the packages came from (if stored)
        results: Ordered per-line verdicts
        all_matched: True iff results is non-empty and every verdict is MATCHED
        contents_match: Whether shipped weights cover the ordered items (advisory)
        checks: Advisory content checks against the sales order items
        summary: Counts per verdict
        metrics: Totals and deltas
    """
    sales_order_id: Optional[str] = Field(None, description="Sales order identifier")
    statement_document_id: Optional[str] = None
    inspection_document_id: Optional[str] = None
    results: List[MatchResult] = Field(default_factory=list, description="Per-line verdicts")
    all_matched: bool = Field(False, description="Gate readiness flag")
    contents_match: Optional[bool] = Field(None, description="Ordered vs shipped weight check")
    checks: List[dict] = Field(default_factory=list, description="Advisory check results")
    summary: Dict[str, int] = Field(default_factory=dict, description="Counts per verdict")
    metrics: dict = Field(default_factory=dict, description="Key metrics")
    reconciled_at: datetime = Field(default_factory=datetime.utcnow)


# =============================================================================
# Gate Records
# =============================================================================

class GateCheckRecord(BaseModel):
    """Persisted outcome of a completed gate session."""
    id: str
    shipment_id: str
    checklist: Dict[str, bool] = Field(default_factory=dict)
    signature_ref: DataReference
    checked_by: str
    completed_at: datetime = Field(default_factory=datetime.utcnow)


# =============================================================================
# Audit Event Models
# =============================================================================

class AuditSeverity(str, Enum):
    """Severity levels for audit events."""
    INFO = "INFO"
    WARN = "WARN"
    ERROR = "ERROR"


class AuditEvent(BaseModel):
    """An audit event for tracking lifecycle actions."""
    event_id: str = Field(..., description="Unique event identifier")
    timestamp: datetime = Field(default_factory=datetime.utcnow, description="Event timestamp")
    event_type: str = Field(..., description="Type of event")
    severity: AuditSeverity = Field(default=AuditSeverity.INFO, description="Event severity")

    # Context
    order_sheet_id: Optional[str] = Field(None, description="Associated order sheet")
    sales_order_id: Optional[str] = Field(None, description="Associated sales order")
    shipment_id: Optional[str] = Field(None, description="Associated shipment")
    document_id: Optional[str] = Field(None, description="Associated document")

    # Details
    message: str = Field(..., description="Human-readable message")
    details: dict = Field(default_factory=dict, description="Additional event details")

    # Actor
    actor: str = Field(default="system", description="Who/what performed the action")

    # Evidence
    artifact_refs: List[DataReference] = Field(default_factory=list, description="Related artifacts")
