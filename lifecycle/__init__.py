"""Order lifecycle - the state machine over order sheets, shipments and documents."""

from lifecycle.service import OrderLifecycle, new_id
from lifecycle.transitions import (
    EDGE_PERMISSIONS,
    EDGES,
    TransitionResult,
    allowed_roles,
    is_legal_edge,
    next_statuses,
)

__all__ = [
    "OrderLifecycle",
    "new_id",
    "EDGE_PERMISSIONS",
    "EDGES",
    "TransitionResult",
    "allowed_roles",
    "is_legal_edge",
    "next_statuses",
]
