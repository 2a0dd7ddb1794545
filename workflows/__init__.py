"""Workflow definitions module."""

from workflows.reconciliation_workflow import (
    DocumentReconciliationWorkflow,
    DocumentReconciliationInput,
    DocumentReconciliationOutput,
)

__all__ = [
    "DocumentReconciliationWorkflow",
    "DocumentReconciliationInput",
    "DocumentReconciliationOutput",
]
