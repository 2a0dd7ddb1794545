"""
Document Reconciliation Workflow

Per-sales-order workflow that orchestrates:
INGEST_STATEMENT + INGEST_INSPECTION -> RECONCILE

The two ingestions run concurrently; reconciliation runs once both
documents are stored. A MATCHED result makes the sales order's shipments
eligible for the warehouse gate.
"""

import asyncio
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Any, Dict, List, Optional

from temporalio import workflow
from temporalio.common import RetryPolicy

with workflow.unsafe.imports_passed_through():
    from activities.ingest import ingest_document, IngestDocumentInput
    from activities.reconcile import reconcile_sales_order, ReconcileSalesOrderInput


# ApplicationError types raised by the activities for domain errors
NON_RETRYABLE_ERRORS = [
    "ValidationError",
    "NotFound",
    "InvalidTransition",
    "StaleState",
    "Unauthorized",
]


@dataclass
class DocumentReconciliationInput:
    """Input for the document reconciliation workflow."""
    sales_order_id: str
    statement_rows: List[List[Any]]
    inspection_rows: List[List[Any]]
    statement_file_name: Optional[str] = None
    inspection_file_name: Optional[str] = None
    statement_template_version: Optional[int] = None
    inspection_template_version: Optional[int] = None
    task_queue: Optional[str] = None


@dataclass
class DocumentReconciliationOutput:
    sales_order_id: str
    statement_document_id: str
    inspection_document_id: str
    all_matched: bool
    reconciliation_status: str
    summary: Dict[str, int] = field(default_factory=dict)
    discrepancies: List[str] = field(default_factory=list)
    dropped_rows: int = 0


@workflow.defn
class DocumentReconciliationWorkflow:
    """Ingest both documents for a sales order, then reconcile them."""

    def __init__(self):
        self.stage = "PENDING"

    @workflow.query
    def current_stage(self) -> str:
        return self.stage

    @workflow.run
    async def run(self, input: DocumentReconciliationInput) -> DocumentReconciliationOutput:
        workflow.logger.info(f"Starting document reconciliation for {input.sales_order_id}")

        activity_options = {
            "start_to_close_timeout": timedelta(minutes=2),
            "retry_policy": RetryPolicy(
                maximum_attempts=3,
                initial_interval=timedelta(seconds=1),
                backoff_coefficient=2.0,
                non_retryable_error_types=NON_RETRYABLE_ERRORS,
            ),
        }
        if input.task_queue:
            activity_options["task_queue"] = input.task_queue

        self.stage = "INGESTING"
        statement, inspection = await asyncio.gather(
            workflow.execute_activity(
                ingest_document,
                IngestDocumentInput(
                    sales_order_id=input.sales_order_id,
                    doc_type="TRANSACTION_STATEMENT",
                    rows=input.statement_rows,
                    file_name=input.statement_file_name,
                    template_version=input.statement_template_version,
                ),
                **activity_options,
            ),
            workflow.execute_activity(
                ingest_document,
                IngestDocumentInput(
                    sales_order_id=input.sales_order_id,
                    doc_type="INSPECTION_REPORT",
                    rows=input.inspection_rows,
                    file_name=input.inspection_file_name,
                    template_version=input.inspection_template_version,
                ),
                **activity_options,
            ),
        )

        self.stage = "RECONCILING"
        result = await workflow.execute_activity(
            reconcile_sales_order,
            ReconcileSalesOrderInput(
                sales_order_id=input.sales_order_id,
                statement_document_id=statement.document_id,
                inspection_document_id=inspection.document_id,
            ),
            **activity_options,
        )

        self.stage = result.reconciliation_status
        workflow.logger.info(f"Reconciliation for {input.sales_order_id}: {result.reconciliation_status}")

        return DocumentReconciliationOutput(
            sales_order_id=input.sales_order_id,
            statement_document_id=result.statement_document_id,
            inspection_document_id=result.inspection_document_id,
            all_matched=result.all_matched,
            reconciliation_status=result.reconciliation_status,
            summary=result.summary,
            discrepancies=result.discrepancies,
            dropped_rows=statement.dropped_rows + inspection.dropped_rows,
        )
