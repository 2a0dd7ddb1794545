"""Order sheet state machine: legal edges and who may take them."""

from dataclasses import dataclass, field
from typing import Dict, FrozenSet, List, Optional, Tuple

from core.models import (
    DocumentStatus,
    InviteToken,
    OrderSheet,
    OrderSheetStatus,
    SalesOrder,
    ShipmentStatus,
)
from core.security.identity import UserRole

Edge = Tuple[OrderSheetStatus, OrderSheetStatus]

S = OrderSheetStatus

STAFF: FrozenSet[UserRole] = frozenset({UserRole.ADMIN, UserRole.OPS})

# Legal order sheet edges and the roles permitted to take each one
EDGE_PERMISSIONS: Dict[Edge, FrozenSet[UserRole]] = {
    (S.DRAFT, S.SENT): STAFF,
    (S.SENT, S.SUBMITTED): frozenset({UserRole.CUSTOMER}),
    (S.SUBMITTED, S.REVISION): STAFF,
    (S.SUBMITTED, S.CONFIRMED): STAFF,
    (S.REVISION, S.SENT): STAFF,
    (S.CONFIRMED, S.CLOSED): STAFF | {UserRole.SYSTEM},
}

EDGES: FrozenSet[Edge] = frozenset(EDGE_PERMISSIONS)

# Edges that (re)issue a customer invite token
TOKEN_ISSUING_EDGES: FrozenSet[Edge] = frozenset({(S.DRAFT, S.SENT), (S.REVISION, S.SENT)})

SHIPMENT_EDGES: FrozenSet[Tuple[ShipmentStatus, ShipmentStatus]] = frozenset({
    (ShipmentStatus.PREPARING, ShipmentStatus.IN_TRANSIT),
    (ShipmentStatus.PREPARING, ShipmentStatus.DELIVERED),
    (ShipmentStatus.IN_TRANSIT, ShipmentStatus.DELIVERED),
})


def is_legal_edge(from_status: OrderSheetStatus, to_status: OrderSheetStatus) -> bool:
    return (from_status, to_status) in EDGES


def allowed_roles(from_status: OrderSheetStatus, to_status: OrderSheetStatus) -> FrozenSet[UserRole]:
    return EDGE_PERMISSIONS.get((from_status, to_status), frozenset())


def next_statuses(status: OrderSheetStatus) -> List[OrderSheetStatus]:
    """Statuses reachable from status in one step, in declaration order."""
    return [to for (frm, to) in EDGE_PERMISSIONS if frm == status]


def is_forward_document_move(current: DocumentStatus, target: DocumentStatus) -> bool:
    return target.rank >= current.rank


def edge_label(from_status, to_status) -> str:
    return f"{getattr(from_status, 'value', from_status)}->{getattr(to_status, 'value', to_status)}"


@dataclass
class TransitionResult:
    """Outcome of an accepted transition request.

    Attributes:
        order_sheet: The order sheet after the transition
        from_status: Status before the transition
        to_status: Status after the transition
        sales_order: Sales order created or found on confirmation
        invite_token: Token issued on DRAFT/REVISION -> SENT
        created: False when the request was an idempotent no-op
    """
    order_sheet: OrderSheet
    from_status: OrderSheetStatus
    to_status: OrderSheetStatus
    sales_order: Optional[SalesOrder] = None
    invite_token: Optional[InviteToken] = None
    created: bool = True
    side_effects: List[str] = field(default_factory=list)
