"""Start the document reconciliation workflow for one sales order.

Reads the transaction statement and inspection package as CSV or JSON
row files and either starts DocumentReconciliationWorkflow on Temporal or,
with --local, runs ingestion and reconciliation in-process.
"""

import argparse
import asyncio
import csv
import json
import logging
import sys
from pathlib import Path
from typing import Any, List

# Add repo root to path
sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

from core.config import load_settings
from core.models import DocumentType
from core.observability.logging import configure_logging, get_logger
from services import build_services
from temporal_client import get_temporal_client
from workflows.reconciliation_workflow import (
    DocumentReconciliationInput,
    DocumentReconciliationWorkflow,
)

logger = get_logger(__name__)


def read_rows(path: Path) -> List[List[Any]]:
    """Load sheet rows from a .json (list of lists) or .csv file."""
    if path.suffix.lower() == ".json":
        with open(path, encoding="utf-8") as f:
            rows = json.load(f)
        if not isinstance(rows, list) or not all(isinstance(r, list) for r in rows):
            raise ValueError(f"{path} must contain a JSON list of row lists")
        return rows
    with open(path, newline="", encoding="utf-8-sig") as f:
        return [row for row in csv.reader(f)]


def run_local(sales_order_id: str, statement_rows, inspection_rows, args) -> dict:
    services = build_services()
    statement = services.ingestion.ingest(
        sales_order_id, DocumentType.TRANSACTION_STATEMENT, statement_rows,
        file_name=args.statement.name, template_version=args.statement_version,
    )
    inspection = services.ingestion.ingest(
        sales_order_id, DocumentType.INSPECTION_REPORT, inspection_rows,
        file_name=args.inspection.name, template_version=args.inspection_version,
    )
    report = services.reconciliation.reconcile(
        sales_order_id, statement_document_id=statement.id, inspection_document_id=inspection.id,
    )
    return {
        "sales_order_id": sales_order_id,
        "statement_document_id": statement.id,
        "inspection_document_id": inspection.id,
        "all_matched": report.all_matched,
        "summary": report.summary,
        "contents_match": report.contents_match,
    }


async def start_workflow(sales_order_id: str, statement_rows, inspection_rows, args) -> dict:
    settings = load_settings()
    task_queue = args.queue or settings.temporal_task_queue
    client = await get_temporal_client()
    logger.info(f"Connected to Temporal namespace: {client.namespace}")

    workflow_id = f"reconcile-{sales_order_id}"
    handle = await client.start_workflow(
        DocumentReconciliationWorkflow.run,
        DocumentReconciliationInput(
            sales_order_id=sales_order_id,
            statement_rows=statement_rows,
            inspection_rows=inspection_rows,
            statement_file_name=args.statement.name,
            inspection_file_name=args.inspection.name,
            statement_template_version=args.statement_version,
            inspection_template_version=args.inspection_version,
            task_queue=task_queue,
        ),
        id=workflow_id,
        task_queue=task_queue,
    )
    logger.info(f"Workflow started: {handle.id}")
    result = await handle.result()
    return vars(result)


def main():
    """Entry point."""
    settings = load_settings()
    configure_logging(level=getattr(logging, settings.log_level, logging.INFO), json_format=settings.log_json)

    parser = argparse.ArgumentParser(description="Reconcile a sales order's documents")
    parser.add_argument("sales_order_id", help="Sales order to reconcile")
    parser.add_argument("--statement", type=Path, required=True, help="Transaction statement rows (.csv/.json)")
    parser.add_argument("--inspection", type=Path, required=True, help="Inspection package rows (.csv/.json)")
    parser.add_argument("--statement-version", type=int, default=None, help="Statement template version")
    parser.add_argument("--inspection-version", type=int, default=None, help="Inspection template version")
    parser.add_argument("--queue", "-q", default=None, help="Task queue (default from settings)")
    parser.add_argument("--local", action="store_true", help="Run in-process instead of on Temporal")
    args = parser.parse_args()

    try:
        statement_rows = read_rows(args.statement)
        inspection_rows = read_rows(args.inspection)
        if args.local:
            result = run_local(args.sales_order_id, statement_rows, inspection_rows, args)
        else:
            result = asyncio.run(start_workflow(args.sales_order_id, statement_rows, inspection_rows, args))
    except Exception as e:
        logger.error(f"Reconciliation failed: {e}", exc_info=True)
        return 1

    print("\n=== RECONCILIATION RESULT ===")
    for key, value in result.items():
        print(f"  {key}: {value}")
    print("=============================\n")
    return 0


if __name__ == "__main__":
    sys.exit(main())
