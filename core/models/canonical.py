"""Core canonical data models for the fulfillment pipeline.

These models represent orders, shipments and parsed document lines in a
form that is independent of the spreadsheet templates they were parsed
from and of the storage technology that persists them.

Status fields on these models are written only by the order lifecycle.
"""

from __future__ import annotations

from datetime import date, datetime, timedelta
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field
from pydantic.functional_validators import BeforeValidator
from typing_extensions import Annotated


# =============================================================================
# Value Parsers (handle spreadsheet cell formats)
# =============================================================================

EXCEL_EPOCH = date(1899, 12, 30)


def _parse_decimal(value):
    """Parse decimal from various formats (string with commas, floats, etc.)."""
    if value is None:
        return None
    if isinstance(value, Decimal):
        return value
    if isinstance(value, bool):
        return Decimal(int(value))
    if isinstance(value, (int, float)):
        return Decimal(str(value))
    if isinstance(value, str):
        s = value.strip()
        if s == "":
            return None
        s = s.replace(",", "").replace("₩", "").replace("원", "")
        if s.startswith("(") and s.endswith(")"):
            s = "-" + s[1:-1]
        return Decimal(s)
    return value


def _parse_date(value):
    """Parse date from strings, datetimes or Excel serial day numbers."""
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return EXCEL_EPOCH + timedelta(days=int(value))
    if isinstance(value, str):
        s = value.strip()
        if s == "":
            return None
        for fmt in ("%Y-%m-%d", "%Y.%m.%d", "%Y/%m/%d", "%Y%m%d", "%y.%m.%d"):
            try:
                return datetime.strptime(s, fmt).date()
            except ValueError:
                continue
        raise ValueError(f"Cannot parse date: {s}")
    return value


def to_decimal_or_zero(value) -> Decimal:
    """Failure-tolerant numeric cast used for spreadsheet cells.

    Returns Decimal("0") for anything that is not a finite number.
    """
    try:
        parsed = _parse_decimal(value)
    except (InvalidOperation, ValueError, TypeError):
        return Decimal("0")
    if not isinstance(parsed, Decimal) or not parsed.is_finite():
        return Decimal("0")
    return parsed


def to_date_or_none(value) -> Optional[date]:
    """Failure-tolerant date cast used for spreadsheet cells."""
    try:
        parsed = _parse_date(value)
    except (ValueError, OverflowError, TypeError):
        return None
    return parsed if isinstance(parsed, date) else None


# Annotated types for automatic parsing
DecimalValue = Annotated[Decimal, BeforeValidator(_parse_decimal)]
DateValue = Annotated[date, BeforeValidator(_parse_date)]


# =============================================================================
# Enums
# =============================================================================

class DocumentType(str, Enum):
    TRANSACTION_STATEMENT = "TRANSACTION_STATEMENT"
    INSPECTION_REPORT = "INSPECTION_REPORT"


class DocumentStatus(str, Enum):
    """Document processing status. Forward-only in declaration order."""
    UPLOADED = "UPLOADED"
    PARSED = "PARSED"
    MATCHED = "MATCHED"
    VERIFIED = "VERIFIED"

    @property
    def rank(self) -> int:
        return list(DocumentStatus).index(self)


class OrderSheetStatus(str, Enum):
    DRAFT = "DRAFT"
    SENT = "SENT"
    SUBMITTED = "SUBMITTED"
    REVISION = "REVISION"
    CONFIRMED = "CONFIRMED"
    CLOSED = "CLOSED"


class ShipmentStatus(str, Enum):
    PREPARING = "PREPARING"
    IN_TRANSIT = "IN_TRANSIT"
    DELIVERED = "DELIVERED"


class ReconciliationStatus(str, Enum):
    """Reconciliation state of a sales order's documents."""
    PENDING = "PENDING"
    MATCHED = "MATCHED"
    DISCREPANCY = "DISCREPANCY"


# =============================================================================
# Base Model
# =============================================================================

class CanonicalBase(BaseModel):
    """Base model for all canonical data structures."""
    model_config = ConfigDict(populate_by_name=True)


class LineBase(CanonicalBase):
    """Immutable parsed line fact."""
    model_config = ConfigDict(populate_by_name=True, frozen=True)


# =============================================================================
# Parsed Document Lines
# =============================================================================

class TransactionLine(LineBase):
    """One line of a transaction statement (거래내역서)."""
    kind: Literal["TRANSACTION"] = "TRANSACTION"
    product_name: str
    origin: Optional[str] = None
    quantity: DecimalValue = Decimal("0")
    weight_kg: DecimalValue = Decimal("0")
    unit_price: DecimalValue = Decimal("0")
    amount: DecimalValue = Decimal("0")
    trace_no: str = ""
    slaughterhouse: Optional[str] = None

    @property
    def is_valid(self) -> bool:
        return self.weight_kg > 0 and self.amount >= 0


class InspectionPackage(LineBase):
    """One package (barcode unit) of an inspection report (검수확인서)."""
    kind: Literal["INSPECTION"] = "INSPECTION"
    barcode: str
    product_name: str = ""
    origin: Optional[str] = None
    quantity: DecimalValue = Decimal("0")
    weight_kg: DecimalValue = Decimal("0")
    unit_price: DecimalValue = Decimal("0")
    amount: DecimalValue = Decimal("0")
    trace_no: str = ""
    animal_id: Optional[str] = None
    slaughterhouse: Optional[str] = None
    remark: Optional[str] = None
    produced_at: Optional[DateValue] = None
    expires_at: Optional[DateValue] = None

    @property
    def is_valid(self) -> bool:
        return bool(self.barcode.strip()) and self.amount >= 0


LineRecord = Annotated[Union[TransactionLine, InspectionPackage], Field(discriminator="kind")]


class Document(CanonicalBase):
    """An uploaded tabular document and the lines parsed from it."""
    id: str
    doc_type: DocumentType
    status: DocumentStatus = DocumentStatus.UPLOADED
    lines: List[LineRecord] = Field(default_factory=list)
    uploaded_at: datetime = Field(default_factory=datetime.utcnow)
    sales_order_id: Optional[str] = None
    file_name: Optional[str] = None
    template_version: Optional[int] = None
    dropped_rows: int = 0


# =============================================================================
# Orders
# =============================================================================

class OrderItem(CanonicalBase):
    """A requested or confirmed order line."""
    product_name: str
    qty_kg: DecimalValue = Decimal("0")
    unit_price: DecimalValue = Decimal("0")
    amount: Optional[DecimalValue] = None

    @property
    def line_amount(self) -> Decimal:
        if self.amount is not None:
            return self.amount
        return self.qty_kg * self.unit_price


class OrderSheet(CanonicalBase):
    """Customer-facing order draft through confirmation (주문장)."""
    id: str
    customer_name: str
    status: OrderSheetStatus = OrderSheetStatus.DRAFT
    items: List[OrderItem] = Field(default_factory=list)
    invite_token_id: Optional[str] = None
    ship_date: Optional[DateValue] = None
    cut_off_at: Optional[datetime] = None
    last_submitted_at: Optional[datetime] = None
    revision_comment: Optional[str] = None
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)


class InviteToken(CanonicalBase):
    """Single-use customer invite for submitting an order sheet."""
    id: str
    order_sheet_id: str
    token: str
    expires_at: datetime
    used_at: Optional[datetime] = None
    created_at: datetime = Field(default_factory=datetime.utcnow)

    def is_usable(self, now: Optional[datetime] = None) -> bool:
        now = now or datetime.utcnow()
        return self.used_at is None and now < self.expires_at


class SalesOrder(CanonicalBase):
    """Internal confirmed order derived from a confirmed order sheet (판매오더)."""
    id: str
    source_order_sheet_id: str
    customer_name: str
    items: List[OrderItem] = Field(default_factory=list)
    reconciliation_status: ReconciliationStatus = ReconciliationStatus.PENDING
    last_reconciled_at: Optional[datetime] = None
    confirmed_at: datetime = Field(default_factory=datetime.utcnow)

    @property
    def totals_kg(self) -> Decimal:
        return sum((item.qty_kg for item in self.items), Decimal("0"))

    @property
    def totals_amount(self) -> Decimal:
        return sum((item.line_amount for item in self.items), Decimal("0"))


# =============================================================================
# Shipments & Gate
# =============================================================================

class DispatchInfo(CanonicalBase):
    """Carrier and vehicle details for a shipment (배차 정보)."""
    company: Optional[str] = None
    vehicle_number: Optional[str] = None
    driver_name: Optional[str] = None
    driver_phone: Optional[str] = None
    eta_at: Optional[datetime] = None


class Shipment(CanonicalBase):
    """Physical delivery instance tied to a sales order."""
    id: str
    source_sales_order_id: str
    status: ShipmentStatus = ShipmentStatus.PREPARING
    company: Optional[str] = None
    vehicle_number: Optional[str] = None
    driver_name: Optional[str] = None
    driver_phone: Optional[str] = None
    eta_at: Optional[datetime] = None
    is_modified: bool = False
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)

    def dispatch_info(self) -> DispatchInfo:
        return DispatchInfo(
            company=self.company,
            vehicle_number=self.vehicle_number,
            driver_name=self.driver_name,
            driver_phone=self.driver_phone,
            eta_at=self.eta_at,
        )


class GateChecklistState(CanonicalBase):
    """Progress of one open gate session. Never persisted while partial."""
    shipment_id: str
    checklist: Dict[str, bool] = Field(default_factory=dict)
    signature_artifact: Optional[bytes] = None
    signature_content_type: str = "image/png"
    completed_at: Optional[datetime] = None

    @property
    def checklist_complete(self) -> bool:
        return bool(self.checklist) and all(self.checklist.values())

    @property
    def has_signature(self) -> bool:
        return bool(self.signature_artifact)
