"""Sales order endpoints: documents, reconciliation and shipments."""

from typing import Any, List, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from api.dependencies import get_actor, get_services
from core.errors import Unauthorized
from core.models import (
    DispatchInfo,
    Document,
    DocumentStatus,
    DocumentType,
    ReconciliationReport,
    SalesOrder,
    Shipment,
)
from core.security.identity import Actor, UserRole
from lifecycle.transitions import STAFF
from services import FulfillmentServices


router = APIRouter()

DOCUMENT_ROLES = STAFF | {UserRole.WAREHOUSE}


class DocumentUploadRequest(BaseModel):
    """Already-decoded spreadsheet rows for one document."""
    doc_type: DocumentType
    rows: List[List[Any]] = Field(..., description="Sheet rows including the header row")
    file_name: Optional[str] = None
    template_version: Optional[int] = None


class DocumentSummary(BaseModel):
    id: str
    doc_type: DocumentType
    status: DocumentStatus
    file_name: Optional[str]
    lines: int
    dropped_rows: int
    template_version: Optional[int]

    @classmethod
    def from_document(cls, document: Document) -> "DocumentSummary":
        return cls(
            id=document.id,
            doc_type=document.doc_type,
            status=document.status,
            file_name=document.file_name,
            lines=len(document.lines),
            dropped_rows=document.dropped_rows,
            template_version=document.template_version,
        )


def _require_role(actor: Actor, roles) -> None:
    if actor.role not in roles:
        raise Unauthorized(f"{actor.role.value} may not perform this action")


@router.get("/{sales_order_id}", response_model=SalesOrder)
def get_sales_order(
    sales_order_id: str,
    actor: Actor = Depends(get_actor),
    services: FulfillmentServices = Depends(get_services),
) -> SalesOrder:
    return services.lifecycle.get_sales_order(sales_order_id)


@router.post("/{sales_order_id}/documents", response_model=DocumentSummary, status_code=201)
def upload_document(
    sales_order_id: str,
    request: DocumentUploadRequest,
    actor: Actor = Depends(get_actor),
    services: FulfillmentServices = Depends(get_services),
) -> DocumentSummary:
    _require_role(actor, DOCUMENT_ROLES)
    document = services.ingestion.ingest(
        sales_order_id,
        request.doc_type,
        request.rows,
        file_name=request.file_name,
        template_version=request.template_version,
        actor=actor,
    )
    return DocumentSummary.from_document(document)


@router.get("/{sales_order_id}/documents", response_model=List[DocumentSummary])
def list_documents(
    sales_order_id: str,
    actor: Actor = Depends(get_actor),
    services: FulfillmentServices = Depends(get_services),
) -> List[DocumentSummary]:
    services.lifecycle.get_sales_order(sales_order_id)
    return [DocumentSummary.from_document(d) for d in services.repository.list_documents(sales_order_id)]


@router.post("/{sales_order_id}/reconciliation", response_model=ReconciliationReport)
def reconcile(
    sales_order_id: str,
    actor: Actor = Depends(get_actor),
    services: FulfillmentServices = Depends(get_services),
) -> ReconciliationReport:
    _require_role(actor, DOCUMENT_ROLES)
    return services.reconciliation.reconcile(sales_order_id, actor=actor)


@router.post("/{sales_order_id}/shipments", response_model=Shipment, status_code=201)
def create_shipment(
    sales_order_id: str,
    dispatch: Optional[DispatchInfo] = None,
    actor: Actor = Depends(get_actor),
    services: FulfillmentServices = Depends(get_services),
) -> Shipment:
    return services.lifecycle.create_shipment(sales_order_id, actor, dispatch=dispatch)


@router.get("/{sales_order_id}/shipments", response_model=List[Shipment])
def list_shipments(
    sales_order_id: str,
    actor: Actor = Depends(get_actor),
    services: FulfillmentServices = Depends(get_services),
) -> List[Shipment]:
    services.lifecycle.get_sales_order(sales_order_id)
    return services.repository.list_shipments(sales_order_id)
