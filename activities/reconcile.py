"""Reconciliation activity.

Temporal activity that reconciles a sales order's transaction statement
against its inspection report (the latest uploads unless ids are pinned).
"""

from dataclasses import dataclass, field
from typing import Dict, List, Optional

from temporalio import activity

from activities.ingest import to_application_error
from core.errors import FulfillmentError
from core.models import MatchVerdict
from services import get_services


# =============================================================================
# Data Classes
# =============================================================================

@dataclass
class ReconcileSalesOrderInput:
    """Sales order to reconcile; document ids pin the exact uploads to use."""
    sales_order_id: str
    statement_document_id: Optional[str] = None
    inspection_document_id: Optional[str] = None


@dataclass
class ReconcileSalesOrderOutput:
    """Output from reconcile_sales_order activity.

    Attributes:
        sales_order_id: Reconciled sales order
        all_matched: True when every line matched; makes the gate READY
        reconciliation_status: MATCHED or DISCREPANCY
        summary: Result counts per verdict
        contents_match: Advisory ordered-vs-shipped check (None if not run)
        discrepancies: Trace numbers of non-MATCHED results
        statement_document_id: Statement the verdict was computed from
        inspection_document_id: Inspection report the verdict was computed from
    """
    sales_order_id: str
    all_matched: bool
    reconciliation_status: str
    summary: Dict[str, int] = field(default_factory=dict)
    contents_match: Optional[bool] = None
    discrepancies: List[str] = field(default_factory=list)
    statement_document_id: Optional[str] = None
    inspection_document_id: Optional[str] = None


# =============================================================================
# Activity Definition
# =============================================================================

@activity.defn
async def reconcile_sales_order(input: ReconcileSalesOrderInput) -> ReconcileSalesOrderOutput:
    """Run reconciliation for one sales order and record the verdict."""
    activity.logger.info(f"Reconciling sales order {input.sales_order_id}")

    try:
        report = get_services().reconciliation.reconcile(
            input.sales_order_id,
            statement_document_id=input.statement_document_id,
            inspection_document_id=input.inspection_document_id,
        )
    except FulfillmentError as e:
        activity.logger.error(f"Reconciliation failed: {e.message}")
        raise to_application_error(e) from e

    discrepancies = [r.trace_no for r in report.results if r.verdict != MatchVerdict.MATCHED]
    status = "MATCHED" if report.all_matched else "DISCREPANCY"

    activity.logger.info(f"Reconciliation {status}: {report.summary}")

    return ReconcileSalesOrderOutput(
        sales_order_id=input.sales_order_id,
        all_matched=report.all_matched,
        reconciliation_status=status,
        summary=dict(report.summary),
        contents_match=report.contents_match,
        discrepancies=discrepancies,
        statement_document_id=report.statement_document_id,
        inspection_document_id=report.inspection_document_id,
    )
