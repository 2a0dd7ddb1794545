"""Row parser for tabular document exports.

Turns already-decoded spreadsheet rows into typed line records:
- parse_rows(doc_type, rows, template=None) -> ParseResult

Parsing never raises on malformed data rows; rows that cannot produce a
valid record are dropped and counted.
"""

from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from typing import Any, List, Optional, Sequence

from core.models import (
    DocumentType,
    InspectionPackage,
    TransactionLine,
    to_date_or_none,
    to_decimal_or_zero,
)
from extraction.templates import ColumnTemplate, get_template


Row = Sequence[Any]


@dataclass
class ParseResult:
    """Parsed line records plus bookkeeping about excluded rows."""
    lines: List[Any] = field(default_factory=list)
    dropped_rows: int = 0
    header_index: int = 0
    template_version: int = 0


# =============================================================================
# Cell Helpers
# =============================================================================

def cell_text(value: Any) -> str:
    """Render a cell as trimmed text; integral floats lose their ".0"."""
    if value is None:
        return ""
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    if isinstance(value, Decimal) and value.is_finite() and value == value.to_integral_value():
        try:
            return str(value.quantize(Decimal(1)))
        except InvalidOperation:
            # More integer digits than the context precision
            return str(value)
    return str(value).strip()


def _cell(row: Row, index: Optional[int]) -> Any:
    if index is None or index < 0 or index >= len(row):
        return None
    return row[index]


def _text(row: Row, template: ColumnTemplate, name: str) -> str:
    return cell_text(_cell(row, template.column(name)))


def _optional_text(row: Row, template: ColumnTemplate, name: str) -> Optional[str]:
    return _text(row, template, name) or None


def _number(row: Row, template: ColumnTemplate, name: str) -> Decimal:
    return to_decimal_or_zero(_cell(row, template.column(name)))


def find_header_index(rows: Sequence[Row], template: ColumnTemplate) -> int:
    """Index of the first row with a cell containing every header marker, else 0."""
    for i, row in enumerate(rows):
        for value in row:
            text = cell_text(value)
            if text and all(marker in text for marker in template.header_markers):
                return i
    return 0


# =============================================================================
# Record Builders
# =============================================================================

def _build_transaction(row: Row, template: ColumnTemplate) -> TransactionLine:
    return TransactionLine(
        product_name=_text(row, template, "product_name"),
        origin=_optional_text(row, template, "origin"),
        quantity=_number(row, template, "quantity"),
        weight_kg=_number(row, template, "weight_kg"),
        unit_price=_number(row, template, "unit_price"),
        amount=_number(row, template, "amount"),
        trace_no=_text(row, template, "trace_no"),
        slaughterhouse=_optional_text(row, template, "slaughterhouse"),
    )


def _build_inspection(row: Row, template: ColumnTemplate) -> InspectionPackage:
    return InspectionPackage(
        barcode=_text(row, template, "barcode"),
        product_name=_text(row, template, "product_name"),
        origin=_optional_text(row, template, "origin"),
        quantity=_number(row, template, "quantity"),
        weight_kg=_number(row, template, "weight_kg"),
        unit_price=_number(row, template, "unit_price"),
        amount=_number(row, template, "amount"),
        trace_no=_text(row, template, "trace_no"),
        animal_id=_optional_text(row, template, "animal_id"),
        slaughterhouse=_optional_text(row, template, "slaughterhouse"),
        remark=_optional_text(row, template, "remark"),
        produced_at=to_date_or_none(_cell(row, template.column("produced_at"))),
        expires_at=to_date_or_none(_cell(row, template.column("expires_at"))),
    )


def _is_candidate(row: Row, template: ColumnTemplate) -> bool:
    key = cell_text(_cell(row, template.key_column))
    if not key:
        return False
    return not any(marker in key for marker in template.skip_markers)


# =============================================================================
# Main Entry Point
# =============================================================================

def parse_rows(
    doc_type: DocumentType,
    rows: Sequence[Row],
    template: Optional[ColumnTemplate] = None,
) -> ParseResult:
    """Parse spreadsheet rows into line records.

    Args:
        doc_type: TRANSACTION_STATEMENT or INSPECTION_REPORT
        rows: Decoded rows (header and data) in sheet order
        template: Column template; latest for doc_type when omitted

    Returns:
        ParseResult with valid records in input order and the count of
        candidate rows that were dropped
    """
    doc_type = DocumentType(doc_type)
    template = template or get_template(doc_type)

    result = ParseResult(template_version=template.version)
    if not rows:
        return result

    header_index = find_header_index(rows, template)
    result.header_index = header_index

    build = _build_transaction if doc_type == DocumentType.TRANSACTION_STATEMENT else _build_inspection

    for row in rows[header_index + 1:]:
        if row is None or not _is_candidate(row, template):
            result.dropped_rows += 1
            continue

        record = build(row, template)
        if not record.is_valid:
            result.dropped_rows += 1
            continue

        result.lines.append(record)

    return result
