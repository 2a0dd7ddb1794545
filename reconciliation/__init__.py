"""Reconciliation of transaction statements against inspection reports."""

from reconciliation.engine import (
    CheckResult,
    ReconciliationTolerance,
    Severity,
    amounts_match,
    reconcile_lines,
    trace_key,
    weights_match,
)
from reconciliation.service import ReconciliationService

__all__ = [
    "CheckResult",
    "ReconciliationTolerance",
    "Severity",
    "amounts_match",
    "reconcile_lines",
    "trace_key",
    "weights_match",
    "ReconciliationService",
]
