"""Warehouse gate checkpoint."""

from gate.checkpoint import GateCheckpoint, GateCompletion, GateSession, GateStatus

__all__ = [
    "GateCheckpoint",
    "GateCompletion",
    "GateSession",
    "GateStatus",
]
