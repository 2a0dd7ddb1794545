"""Document ingestion activity.

Parses decoded spreadsheet rows for a sales order and stores the
resulting document.
"""

from dataclasses import dataclass
from typing import Any, List, Optional

from temporalio import activity
from temporalio.exceptions import ApplicationError

from core.errors import FulfillmentError
from services import get_services


def to_application_error(error: FulfillmentError) -> ApplicationError:
    """Map a domain error to a non-retryable Temporal failure."""
    return ApplicationError(
        error.message,
        error.to_dict(),
        type=type(error).__name__,
        non_retryable=True,
    )


# =============================================================================
# Data Classes
# =============================================================================

@dataclass
class IngestDocumentInput:
    """Input for ingest_document activity.

    Attributes:
        sales_order_id: Owning sales order
        doc_type: TRANSACTION_STATEMENT or INSPECTION_REPORT
        rows: Decoded spreadsheet rows, header included
        file_name: Original upload name
        template_version: Column template version (latest when omitted)
    """
    sales_order_id: str
    doc_type: str
    rows: List[List[Any]]
    file_name: Optional[str] = None
    template_version: Optional[int] = None


@dataclass
class IngestDocumentOutput:
    document_id: str
    doc_type: str
    status: str
    lines: int
    dropped_rows: int
    template_version: int


# =============================================================================
# Activity Definition
# =============================================================================

@activity.defn
async def ingest_document(input: IngestDocumentInput) -> IngestDocumentOutput:
    """Parse rows into a PARSED document owned by the sales order."""
    activity.logger.info(
        f"Ingesting {input.doc_type} ({len(input.rows)} rows) for sales order {input.sales_order_id}"
    )

    try:
        document = get_services().ingestion.ingest(
            input.sales_order_id,
            input.doc_type,
            input.rows,
            file_name=input.file_name,
            template_version=input.template_version,
        )
    except FulfillmentError as e:
        activity.logger.error(f"Ingestion failed: {e.message}")
        raise to_application_error(e) from e

    activity.logger.info(f"Document {document.id}: {len(document.lines)} lines, {document.dropped_rows} dropped")

    return IngestDocumentOutput(
        document_id=document.id,
        doc_type=document.doc_type.value,
        status=document.status.value,
        lines=len(document.lines),
        dropped_rows=document.dropped_rows,
        template_version=document.template_version,
    )
