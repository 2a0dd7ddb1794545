"""Reconciliation of a sales order's latest uploaded documents."""

import time
from typing import List, Optional, Tuple

from core.errors import StaleState, ValidationError
from core.models import Document, DocumentType, ReconciliationReport
from core.observability.logging import get_logger, with_correlation
from core.security.identity import SYSTEM_ACTOR, Actor
from core.storage.artifacts import ArtifactStore
from lifecycle.service import OrderLifecycle
from reconciliation.engine import ReconciliationTolerance, reconcile_lines

logger = get_logger(__name__)


def latest_documents(documents: List[Document]) -> Tuple[Optional[Document], Optional[Document]]:
    """Most recently uploaded statement and inspection report (later insertion wins ties)."""
    statement = inspection = None
    for doc in documents:
        if doc.doc_type == DocumentType.TRANSACTION_STATEMENT:
            if statement is None or doc.uploaded_at >= statement.uploaded_at:
                statement = doc
        elif doc.doc_type == DocumentType.INSPECTION_REPORT:
            if inspection is None or doc.uploaded_at >= inspection.uploaded_at:
                inspection = doc
    return statement, inspection


class ReconciliationService:
    """Loads documents, runs the engine, and hands the verdict to the lifecycle."""

    def __init__(
        self,
        lifecycle: OrderLifecycle,
        tolerance: Optional[ReconciliationTolerance] = None,
        artifact_store: Optional[ArtifactStore] = None,
    ):
        self.lifecycle = lifecycle
        self.tolerance = tolerance or ReconciliationTolerance.from_settings(lifecycle.settings)
        self.artifact_store = artifact_store

    def reconcile(
        self,
        sales_order_id: str,
        actor: Actor = SYSTEM_ACTOR,
        statement_document_id: Optional[str] = None,
        inspection_document_id: Optional[str] = None,
    ) -> ReconciliationReport:
        """Reconcile a statement against an inspection report.

        Without document ids the latest upload of each type is used. A given
        id pins that document; it must belong to the sales order and still be
        its latest upload of that type, since the verdict stands for the
        sales order's current documents.

        Raises:
            NotFound: If the sales order or a pinned document does not exist
            ValidationError: If either document is missing or a pinned id
                names the wrong sales order or document type
            StaleState: If a newer document superseded a pinned one
        """
        start = time.time()
        with with_correlation(sales_order_id=sales_order_id, actor=str(actor)):
            sales_order = self.lifecycle.get_sales_order(sales_order_id)
            documents = self.lifecycle.repository.list_documents(sales_order_id)
            statement, inspection = latest_documents(documents)

            if statement_document_id:
                self._check_pinned(sales_order_id, statement_document_id,
                                   DocumentType.TRANSACTION_STATEMENT, statement)
            if inspection_document_id:
                self._check_pinned(sales_order_id, inspection_document_id,
                                   DocumentType.INSPECTION_REPORT, inspection)

            missing = []
            if statement is None:
                missing.append(DocumentType.TRANSACTION_STATEMENT.value)
            if inspection is None:
                missing.append(DocumentType.INSPECTION_REPORT.value)
            if missing:
                raise ValidationError(
                    f"Sales order {sales_order_id} is missing documents: {missing}",
                    {"missing": missing},
                )

            report = reconcile_lines(
                statement.lines,
                inspection.lines,
                expected_items=sales_order.items or None,
                tolerance=self.tolerance,
                sales_order_id=sales_order_id,
            )
            report = report.model_copy(update={
                "statement_document_id": statement.id,
                "inspection_document_id": inspection.id,
            })

            self.lifecycle.record_reconciliation(
                sales_order_id, report, document_ids=[statement.id, inspection.id], actor=actor
            )

            if self.artifact_store is not None:
                self.artifact_store.put_report(sales_order_id, report)

            duration_ms = (time.time() - start) * 1000
            self.lifecycle.metrics.record_processing_time("reconciliation", duration_ms)
            logger.info(
                f"Reconciled: all_matched={report.all_matched}",
                extra_fields={
                    "statement_id": statement.id,
                    "inspection_id": inspection.id,
                    "summary": report.summary,
                    "duration_ms": round(duration_ms, 2),
                },
            )
            return report

    def _check_pinned(self, sales_order_id: str, document_id: str,
                      doc_type: DocumentType, latest: Optional[Document]) -> None:
        document = self.lifecycle.get_document(document_id)
        if document.sales_order_id != sales_order_id or document.doc_type != doc_type:
            raise ValidationError(
                f"Document {document_id} is not a {doc_type.value} of sales order {sales_order_id}",
                {"document_id": document_id, "doc_type": document.doc_type.value,
                 "sales_order_id": document.sales_order_id},
            )
        if latest is not None and latest.id != document_id:
            raise StaleState(
                f"Document {document_id} was superseded by {latest.id}",
                expected=document_id,
                actual=latest.id,
                details={"doc_type": doc_type.value},
            )
