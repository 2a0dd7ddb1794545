"""Core data models - canonical order, shipment and document types.

This package contains all canonical data models shared by the parser,
reconciliation engine, lifecycle and gate components.
"""

from core.models.canonical import (
    # Base
    CanonicalBase,
    DecimalValue,
    DateValue,
    to_decimal_or_zero,
    to_date_or_none,

    # Enums
    DocumentType,
    DocumentStatus,
    OrderSheetStatus,
    ShipmentStatus,
    ReconciliationStatus,

    # Documents
    TransactionLine,
    InspectionPackage,
    LineRecord,
    Document,

    # Orders
    OrderItem,
    OrderSheet,
    InviteToken,
    SalesOrder,

    # Shipments
    DispatchInfo,
    Shipment,
    GateChecklistState,
)

from core.models.refs import (
    DataReference,
    MatchVerdict,
    MatchResult,
    ReconciliationReport,
    GateCheckRecord,
    AuditEvent,
    AuditSeverity,
)

__all__ = [
    "CanonicalBase",
    "DecimalValue",
    "DateValue",
    "to_decimal_or_zero",
    "to_date_or_none",
    "DocumentType",
    "DocumentStatus",
    "OrderSheetStatus",
    "ShipmentStatus",
    "ReconciliationStatus",
    "TransactionLine",
    "InspectionPackage",
    "LineRecord",
    "Document",
    "OrderItem",
    "OrderSheet",
    "InviteToken",
    "SalesOrder",
    "DispatchInfo",
    "Shipment",
    "GateChecklistState",
    "DataReference",
    "MatchVerdict",
    "MatchResult",
    "ReconciliationReport",
    "GateCheckRecord",
    "AuditEvent",
    "AuditSeverity",
]
