"""Shipment endpoints: dispatch details, transit and gate entry."""

from typing import List, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from api.dependencies import get_actor, get_services
from api.routes.gate import GateSessionView
from core.models import DispatchInfo, GateCheckRecord, Shipment
from core.security.identity import Actor
from gate.checkpoint import GateStatus
from services import FulfillmentServices


router = APIRouter()


class GateStatusResponse(BaseModel):
    shipment_id: str
    gate_status: GateStatus
    open_session_id: Optional[str] = None
    records: List[GateCheckRecord] = []


@router.get("/{shipment_id}", response_model=Shipment)
def get_shipment(
    shipment_id: str,
    actor: Actor = Depends(get_actor),
    services: FulfillmentServices = Depends(get_services),
) -> Shipment:
    return services.lifecycle.get_shipment(shipment_id)


@router.put("/{shipment_id}/dispatch", response_model=Shipment)
def update_dispatch(
    shipment_id: str,
    dispatch: DispatchInfo,
    actor: Actor = Depends(get_actor),
    services: FulfillmentServices = Depends(get_services),
) -> Shipment:
    """Update driver/vehicle details; marks the shipment modified when they change."""
    return services.lifecycle.update_dispatch(shipment_id, dispatch, actor)


@router.post("/{shipment_id}/transit", response_model=Shipment)
def start_transit(
    shipment_id: str,
    actor: Actor = Depends(get_actor),
    services: FulfillmentServices = Depends(get_services),
) -> Shipment:
    return services.lifecycle.start_transit(shipment_id, actor)


@router.get("/{shipment_id}/gate", response_model=GateStatusResponse)
def get_gate_status(
    shipment_id: str,
    actor: Actor = Depends(get_actor),
    services: FulfillmentServices = Depends(get_services),
) -> GateStatusResponse:
    status = services.gate.gate_status(shipment_id)
    session = services.gate.session_for_shipment(shipment_id)
    return GateStatusResponse(
        shipment_id=shipment_id,
        gate_status=status,
        open_session_id=session.session_id if session else None,
        records=services.repository.list_gate_records(shipment_id),
    )


@router.post("/{shipment_id}/gate", response_model=GateSessionView, status_code=201)
def open_gate(
    shipment_id: str,
    actor: Actor = Depends(get_actor),
    services: FulfillmentServices = Depends(get_services),
) -> GateSessionView:
    """Open a gate session. 409 unless the gate is READY."""
    session = services.gate.open_gate(shipment_id, actor)
    return GateSessionView.from_session(session)
