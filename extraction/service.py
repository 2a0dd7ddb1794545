"""Document ingestion: decoded rows in, stored PARSED document out."""

import time
from typing import Any, Optional, Sequence

from core.audit import AuditEventType
from core.models import Document, DocumentType
from core.observability.logging import get_logger, with_correlation
from core.security.identity import SYSTEM_ACTOR, Actor
from extraction.tabular import parse_rows
from extraction.templates import get_template
from lifecycle.service import OrderLifecycle, new_id

logger = get_logger(__name__)


class DocumentIngestionService:
    """Parses uploaded rows into a Document owned by a sales order."""

    def __init__(self, lifecycle: OrderLifecycle):
        self.lifecycle = lifecycle

    def ingest(
        self,
        sales_order_id: str,
        doc_type: DocumentType,
        rows: Sequence[Sequence[Any]],
        file_name: Optional[str] = None,
        template_version: Optional[int] = None,
        actor: Actor = SYSTEM_ACTOR,
    ) -> Document:
        """Parse rows and store the result as a PARSED document.

        Raises:
            NotFound: If the sales order does not exist
            ValidationError: If the template version is unknown
        """
        start = time.time()
        doc_type = DocumentType(doc_type)
        template = get_template(doc_type, template_version)

        # Fail before parsing when the owner is missing
        self.lifecycle.get_sales_order(sales_order_id)

        result = parse_rows(doc_type, rows, template)
        document = Document(
            id=new_id("doc"),
            doc_type=doc_type,
            lines=result.lines,
            sales_order_id=sales_order_id,
            file_name=file_name,
            template_version=template.version,
            dropped_rows=result.dropped_rows,
        )

        with with_correlation(sales_order_id=sales_order_id, document_id=document.id, actor=str(actor)):
            document = self.lifecycle.add_document(document, actor)

            duration_ms = (time.time() - start) * 1000
            self.lifecycle.metrics.record_processing_time("ingestion", duration_ms)
            logger.info(
                f"Ingested {doc_type.value}: {len(document.lines)} lines, {result.dropped_rows} rows dropped",
                extra_fields={"template_version": template.version, "duration_ms": round(duration_ms, 2)},
            )
            self.lifecycle.audit.log_info(
                AuditEventType.DOCUMENT_INGESTED,
                f"{doc_type.value} {file_name or document.id} ingested",
                sales_order_id=sales_order_id,
                document_id=document.id,
                details={
                    "lines": len(document.lines),
                    "dropped_rows": result.dropped_rows,
                    "template_version": template.version,
                },
                actor=str(actor),
            )
        return document
