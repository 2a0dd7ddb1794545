"""Order sheet endpoints.

Handles creation, item edits and lifecycle transitions of order sheets.
"""

from datetime import date, datetime
from typing import List, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from api.dependencies import get_actor, get_services
from core.errors import NotFound
from core.models import OrderItem, OrderSheet, OrderSheetStatus, SalesOrder
from core.security.identity import Actor
from lifecycle.transitions import next_statuses
from services import FulfillmentServices


router = APIRouter()


class OrderSheetCreateRequest(BaseModel):
    """Request to create a DRAFT order sheet."""
    customer_name: str = Field(..., description="Customer (거래처) name")
    items: List[OrderItem] = Field(default_factory=list)
    ship_date: Optional[date] = None
    cut_off_at: Optional[datetime] = Field(None, description="Order deadline; caps invite token lifetime")


class OrderItemsRequest(BaseModel):
    items: List[OrderItem]


class TransitionRequest(BaseModel):
    """Request to move an order sheet along one edge."""
    from_status: OrderSheetStatus = Field(..., description="Status the caller believes is current")
    to_status: OrderSheetStatus
    reason: Optional[str] = Field(None, description="Required for SUBMITTED -> REVISION")


class TransitionResponse(BaseModel):
    order_sheet: OrderSheet
    from_status: OrderSheetStatus
    to_status: OrderSheetStatus
    created: bool
    sales_order_id: Optional[str] = None
    invite_token: Optional[str] = Field(None, description="Issued on DRAFT/REVISION -> SENT")
    invite_token_expires_at: Optional[datetime] = None
    next_statuses: List[OrderSheetStatus] = Field(default_factory=list)


@router.post("", response_model=OrderSheet, status_code=201)
def create_order_sheet(
    request: OrderSheetCreateRequest,
    actor: Actor = Depends(get_actor),
    services: FulfillmentServices = Depends(get_services),
) -> OrderSheet:
    return services.lifecycle.create_order_sheet(
        request.customer_name,
        actor,
        items=request.items,
        ship_date=request.ship_date,
        cut_off_at=request.cut_off_at,
    )


@router.get("/{order_sheet_id}", response_model=OrderSheet)
def get_order_sheet(
    order_sheet_id: str,
    actor: Actor = Depends(get_actor),
    services: FulfillmentServices = Depends(get_services),
) -> OrderSheet:
    return services.lifecycle.get_order_sheet(order_sheet_id)


@router.put("/{order_sheet_id}/items", response_model=OrderSheet)
def update_items(
    order_sheet_id: str,
    request: OrderItemsRequest,
    actor: Actor = Depends(get_actor),
    services: FulfillmentServices = Depends(get_services),
) -> OrderSheet:
    return services.lifecycle.update_order_items(order_sheet_id, request.items, actor)


@router.post("/{order_sheet_id}/transitions", response_model=TransitionResponse)
def request_transition(
    order_sheet_id: str,
    request: TransitionRequest,
    actor: Actor = Depends(get_actor),
    services: FulfillmentServices = Depends(get_services),
) -> TransitionResponse:
    """Request a status transition.

    Fails with 404 (unknown sheet), 409 (illegal edge or stale status),
    403 (role or invite token) or 400 (missing reason).
    """
    result = services.lifecycle.request_transition(
        order_sheet_id, request.from_status, request.to_status, actor, reason=request.reason
    )
    issued = result.invite_token if result.to_status == OrderSheetStatus.SENT else None
    return TransitionResponse(
        order_sheet=result.order_sheet,
        from_status=result.from_status,
        to_status=result.to_status,
        created=result.created,
        sales_order_id=result.sales_order.id if result.sales_order else None,
        invite_token=issued.token if issued else None,
        invite_token_expires_at=issued.expires_at if issued else None,
        next_statuses=next_statuses(result.order_sheet.status),
    )


@router.get("/{order_sheet_id}/sales-order", response_model=SalesOrder)
def get_sales_order_for_sheet(
    order_sheet_id: str,
    actor: Actor = Depends(get_actor),
    services: FulfillmentServices = Depends(get_services),
) -> SalesOrder:
    sheet = services.lifecycle.get_order_sheet(order_sheet_id)
    sales_order = services.repository.get_sales_order_by_source(sheet.id)
    if sales_order is None:
        raise NotFound(f"Order sheet {sheet.id} has no sales order")
    return sales_order
