"""Column templates for the tabular document exports.

Each supported spreadsheet layout is described by a ColumnTemplate: the
header markers that identify its header row and the fixed column offset
of every field. Templates are versioned per document type; parsing with
no explicit template uses the latest registered version.
"""

from dataclasses import dataclass
from typing import Dict, Optional, Tuple

from core.errors import ValidationError
from core.models import DocumentType


@dataclass(frozen=True)
class ColumnTemplate:
    """Fixed column layout of one document template version.

    Attributes:
        doc_type: Document type the template parses
        version: Template version (higher is newer)
        header_markers: Substrings that must all appear in one header cell
        columns: Field name -> zero-based column offset
        key_column: Column that must be non-empty for a row to be a candidate
        skip_markers: Rows whose key cell contains any of these are skipped
        description: Human-readable layout name
    """
    doc_type: DocumentType
    version: int
    header_markers: Tuple[str, ...]
    columns: Dict[str, int]
    key_column: int = 0
    skip_markers: Tuple[str, ...] = ()
    description: str = ""

    def column(self, name: str) -> Optional[int]:
        return self.columns.get(name)


STATEMENT_V1 = ColumnTemplate(
    doc_type=DocumentType.TRANSACTION_STATEMENT,
    version=1,
    header_markers=("품", "목"),
    columns={
        "product_name": 0,
        "origin": 4,
        "quantity": 6,
        "weight_kg": 7,
        "unit_price": 10,
        "amount": 13,
        "trace_no": 15,
        "slaughterhouse": 20,
    },
    key_column=0,
    skip_markers=("합계",),
    description="ERP wide export (merged cells)",
)

STATEMENT_V2 = ColumnTemplate(
    doc_type=DocumentType.TRANSACTION_STATEMENT,
    version=2,
    header_markers=("품", "목"),
    columns={
        "product_name": 0,
        "origin": 1,
        "quantity": 2,
        "weight_kg": 3,
        "unit_price": 4,
        "amount": 5,
        "trace_no": 6,
        "slaughterhouse": 7,
    },
    key_column=0,
    skip_markers=("합계",),
    description="Compact export",
)

INSPECTION_V1 = ColumnTemplate(
    doc_type=DocumentType.INSPECTION_REPORT,
    version=1,
    header_markers=("바코드",),
    columns={
        "barcode": 1,
        "product_name": 2,
        "quantity": 3,
        "weight_kg": 4,
        "unit_price": 5,
        "amount": 6,
        "trace_no": 7,
        "animal_id": 8,
        "slaughterhouse": 9,
        "remark": 10,
        "produced_at": 11,
        "expires_at": 12,
    },
    key_column=1,
    description="Inspection report (one row per barcode)",
)


_REGISTRY: Dict[DocumentType, Dict[int, ColumnTemplate]] = {}


def register_template(template: ColumnTemplate) -> None:
    """Add a template to the registry, replacing the same version if present."""
    _REGISTRY.setdefault(template.doc_type, {})[template.version] = template


for _template in (STATEMENT_V1, STATEMENT_V2, INSPECTION_V1):
    register_template(_template)


def get_template(doc_type: DocumentType, version: Optional[int] = None) -> ColumnTemplate:
    """Look up a template; the latest version when none is given.

    Raises:
        ValidationError: If no template exists for the type or version
    """
    doc_type = DocumentType(doc_type)
    versions = _REGISTRY.get(doc_type)
    if not versions:
        raise ValidationError(f"No templates registered for {doc_type.value}")
    if version is None:
        return versions[max(versions)]
    if version not in versions:
        raise ValidationError(
            f"Unknown template version {version} for {doc_type.value}",
            {"doc_type": doc_type.value, "version": version, "known_versions": sorted(versions)},
        )
    return versions[version]


def list_templates() -> Dict[str, list]:
    return {doc_type.value: sorted(versions) for doc_type, versions in _REGISTRY.items()}
