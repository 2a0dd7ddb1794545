"""Activity definitions module."""

from activities.ingest import (
    ingest_document,
    IngestDocumentInput,
    IngestDocumentOutput,
)
from activities.reconcile import (
    reconcile_sales_order,
    ReconcileSalesOrderInput,
    ReconcileSalesOrderOutput,
)

__all__ = [
    "ingest_document",
    "IngestDocumentInput",
    "IngestDocumentOutput",
    "reconcile_sales_order",
    "ReconcileSalesOrderInput",
    "ReconcileSalesOrderOutput",
]
