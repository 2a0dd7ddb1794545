"""Gate session endpoints.

A session is opened through POST /shipments/{id}/gate; these endpoints
drive it to completion or abandonment.
"""

import base64
import binascii
from datetime import datetime
from typing import Dict, List, Optional

from fastapi import APIRouter, Depends, Response
from pydantic import BaseModel, Field

from api.dependencies import get_actor, get_services
from core.errors import Unauthorized, ValidationError
from core.models import GateCheckRecord, Shipment
from core.security.identity import Actor
from gate.checkpoint import GATE_ROLES, GateSession
from services import FulfillmentServices


router = APIRouter()


class GateSessionView(BaseModel):
    """Session progress without the raw signature bytes."""
    session_id: str
    shipment_id: str
    opened_by: str
    opened_at: datetime
    checklist: Dict[str, bool]
    missing_items: List[str]
    has_signature: bool

    @classmethod
    def from_session(cls, session: GateSession) -> "GateSessionView":
        return cls(
            session_id=session.session_id,
            shipment_id=session.shipment_id,
            opened_by=str(session.opened_by),
            opened_at=session.opened_at,
            checklist=dict(session.state.checklist),
            missing_items=session.missing_items(),
            has_signature=session.state.has_signature,
        )


class ChecklistItemRequest(BaseModel):
    item: str
    value: Optional[bool] = Field(None, description="Omit to toggle")


class SignatureRequest(BaseModel):
    data_base64: str
    content_type: str = "image/png"


class GateCompletionResponse(BaseModel):
    record: GateCheckRecord
    shipment: Shipment
    order_sheet_closed: bool


def _require_gate_role(actor: Actor) -> None:
    if actor.role not in GATE_ROLES:
        raise Unauthorized(f"{actor.role.value} may not operate the gate")


@router.get("/{session_id}", response_model=GateSessionView)
def get_session(
    session_id: str,
    actor: Actor = Depends(get_actor),
    services: FulfillmentServices = Depends(get_services),
) -> GateSessionView:
    _require_gate_role(actor)
    return GateSessionView.from_session(services.gate.get_session(session_id))


@router.post("/{session_id}/items", response_model=GateSessionView)
def toggle_item(
    session_id: str,
    request: ChecklistItemRequest,
    actor: Actor = Depends(get_actor),
    services: FulfillmentServices = Depends(get_services),
) -> GateSessionView:
    _require_gate_role(actor)
    services.gate.toggle_checklist_item(session_id, request.item, request.value)
    return GateSessionView.from_session(services.gate.get_session(session_id))


@router.post("/{session_id}/signature", response_model=GateSessionView)
def submit_signature(
    session_id: str,
    request: SignatureRequest,
    actor: Actor = Depends(get_actor),
    services: FulfillmentServices = Depends(get_services),
) -> GateSessionView:
    _require_gate_role(actor)
    try:
        data = base64.b64decode(request.data_base64, validate=True)
    except (binascii.Error, ValueError) as e:
        raise ValidationError(f"Signature is not valid base64: {e}")
    services.gate.submit_signature(session_id, data, request.content_type)
    return GateSessionView.from_session(services.gate.get_session(session_id))


@router.post("/{session_id}/complete", response_model=GateCompletionResponse)
def complete_gate(
    session_id: str,
    actor: Actor = Depends(get_actor),
    services: FulfillmentServices = Depends(get_services),
) -> GateCompletionResponse:
    """Complete the session. 422 while items or the signature are missing."""
    _require_gate_role(actor)
    completion = services.gate.complete_gate(session_id)
    return GateCompletionResponse(
        record=completion.record,
        shipment=completion.shipment,
        order_sheet_closed=completion.order_sheet_closed,
    )


@router.delete("/{session_id}", status_code=204)
def abandon_gate(
    session_id: str,
    actor: Actor = Depends(get_actor),
    services: FulfillmentServices = Depends(get_services),
) -> Response:
    _require_gate_role(actor)
    services.gate.abandon_gate(session_id)
    return Response(status_code=204)
