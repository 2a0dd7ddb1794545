"""Worker for the fulfillment pipeline.

Polls one task queue and executes the document reconciliation workflow
and its ingestion/reconciliation activities.

Run with --queue <name> to override the configured task queue.
"""

import argparse
import asyncio
import logging
import sys
from pathlib import Path

from temporalio.worker import Worker

# Add repo root to path
sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

from core.config import load_settings
from core.observability.logging import configure_logging, get_logger
from temporal_client import get_temporal_client
from workflows.reconciliation_workflow import DocumentReconciliationWorkflow
from activities.ingest import ingest_document
from activities.reconcile import reconcile_sales_order

logger = get_logger(__name__)

WORKFLOWS = [DocumentReconciliationWorkflow]
ACTIVITIES = [ingest_document, reconcile_sales_order]


async def run_worker(task_queue: str):
    """Start a worker listening on task_queue.

    Raises:
        Exception: If connection to Temporal fails
    """
    client = await get_temporal_client()
    logger.info(f"Connected to Temporal namespace: {client.namespace}")

    worker = Worker(
        client,
        task_queue=task_queue,
        workflows=WORKFLOWS,
        activities=ACTIVITIES,
    )
    logger.info(f"Worker created for queue '{task_queue}':")
    logger.info(f"  - Workflows: {len(WORKFLOWS)}")
    logger.info(f"  - Activities: {len(ACTIVITIES)}")

    try:
        logger.info("Worker running... (Ctrl+C to stop)")
        await worker.run()
    except Exception as e:
        logger.error(f"Worker error: {e}", exc_info=True)
        raise


def main():
    """Entry point for worker with CLI args."""
    settings = load_settings()
    configure_logging(level=getattr(logging, settings.log_level, logging.INFO), json_format=settings.log_json)

    parser = argparse.ArgumentParser(description="Fulfillment Temporal Worker")
    parser.add_argument(
        "--queue", "-q",
        default=settings.temporal_task_queue,
        help=f"Task queue to poll (default: {settings.temporal_task_queue})",
    )
    args = parser.parse_args()

    try:
        asyncio.run(run_worker(args.queue))
    except KeyboardInterrupt:
        logger.info("Worker interrupted by user")


if __name__ == "__main__":
    main()
