"""Reconciliation engine for transaction statements and inspection reports.

Exposes high-level function:
- reconcile_lines(statement_lines, inspection_lines, ...) -> ReconciliationReport

Statement lines are joined to inspection packages on trace number. Each
statement line takes the first unconsumed inspection package with the
same trace (greedy, in inspection order). Packages never consumed are
reported after all statement results.
"""

from collections import OrderedDict, deque
from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from typing import Deque, Dict, List, Optional, Sequence

from core.models import (
    InspectionPackage,
    MatchResult,
    MatchVerdict,
    OrderItem,
    ReconciliationReport,
    TransactionLine,
)


# =============================================================================
# Configuration & Data Structures
# =============================================================================

@dataclass(frozen=True)
class ReconciliationTolerance:
    """Matching tolerances.

    Attributes:
        weight_kg: Absolute weight tolerance, inclusive
        amount_pct: Relative amount tolerance in percent of the larger amount, inclusive
        content_pct: Relative tolerance in percent for ordered vs shipped weight
    """
    weight_kg: Decimal = Decimal("0.05")
    amount_pct: Decimal = Decimal("1")
    content_pct: Decimal = Decimal("10")

    @classmethod
    def from_settings(cls, settings) -> "ReconciliationTolerance":
        return cls(
            weight_kg=settings.weight_tolerance_kg,
            amount_pct=settings.amount_tolerance_pct,
            content_pct=settings.content_tolerance_pct,
        )


class Severity(str, Enum):
    WARN = "WARN"
    INFO = "INFO"


class CheckResult:
    """Result of a single advisory content check."""

    def __init__(
        self,
        check_id: str,
        severity: Severity,
        passed: bool,
        message: str,
        evidence: Optional[Dict] = None,
    ):
        self.check_id = check_id
        self.severity = severity
        self.passed = passed
        self.message = message
        self.evidence = evidence or {}

    def to_dict(self) -> Dict:
        return {
            "check_id": self.check_id,
            "severity": self.severity.value,
            "passed": self.passed,
            "message": self.message,
            "evidence": self.evidence,
        }


# =============================================================================
# Utility Functions
# =============================================================================

def trace_key(trace_no: Optional[str]) -> str:
    """Join key for a trace number: trimmed and case-folded."""
    return (trace_no or "").strip().casefold()


def product_key(name: Optional[str]) -> str:
    return " ".join((name or "").split()).casefold()


def weights_match(a: Decimal, b: Decimal, tolerance: Decimal) -> bool:
    return abs(a - b) <= tolerance


def amounts_match(a: Decimal, b: Decimal, tolerance_pct: Decimal) -> bool:
    """Relative comparison against the larger absolute amount."""
    larger = max(abs(a), abs(b))
    if larger == 0:
        return True
    return abs(a - b) <= larger * tolerance_pct / Decimal("100")


def _index_inspections(inspection_lines: Sequence[InspectionPackage]) -> Dict[str, Deque[int]]:
    index: Dict[str, Deque[int]] = {}
    for i, package in enumerate(inspection_lines):
        key = trace_key(package.trace_no)
        if not key:
            continue
        index.setdefault(key, deque()).append(i)
    return index


# =============================================================================
# Line Matching
# =============================================================================

def match_lines(
    statement_lines: Sequence[TransactionLine],
    inspection_lines: Sequence[InspectionPackage],
    tolerance: ReconciliationTolerance,
) -> List[MatchResult]:
    """Pair statement lines with inspection packages and classify each pair."""
    index = _index_inspections(inspection_lines)
    consumed = set()
    results: List[MatchResult] = []

    for i, line in enumerate(statement_lines):
        key = trace_key(line.trace_no)
        candidates = index.get(key) if key else None

        if not candidates:
            results.append(MatchResult(
                verdict=MatchVerdict.UNMATCHED_STATEMENT,
                trace_no=line.trace_no,
                statement_index=i,
                delta_weight_kg=-line.weight_kg,
                delta_amount=-line.amount,
            ))
            continue

        j = candidates.popleft()
        consumed.add(j)
        package = inspection_lines[j]

        if not weights_match(package.weight_kg, line.weight_kg, tolerance.weight_kg):
            verdict = MatchVerdict.QUANTITY_MISMATCH
        elif not amounts_match(package.amount, line.amount, tolerance.amount_pct):
            verdict = MatchVerdict.TRACE_MISMATCH
        else:
            verdict = MatchVerdict.MATCHED

        results.append(MatchResult(
            verdict=verdict,
            trace_no=line.trace_no,
            statement_index=i,
            inspection_index=j,
            delta_weight_kg=package.weight_kg - line.weight_kg,
            delta_amount=package.amount - line.amount,
        ))

    for j, package in enumerate(inspection_lines):
        if j in consumed:
            continue
        results.append(MatchResult(
            verdict=MatchVerdict.UNMATCHED_INSPECTION,
            trace_no=package.trace_no,
            inspection_index=j,
            delta_weight_kg=package.weight_kg,
            delta_amount=package.amount,
        ))

    return results


# =============================================================================
# Advisory Content Checks
# =============================================================================

def check_c1_ordered_weight(
    item: OrderItem,
    shipped_kg: Decimal,
    tolerance_pct: Decimal,
) -> CheckResult:
    """C1: Shipped (inspected) weight per product is close to the ordered weight."""
    ordered_kg = item.qty_kg
    evidence = {
        "product_name": item.product_name,
        "ordered_kg": str(ordered_kg),
        "shipped_kg": str(shipped_kg),
        "difference_kg": str(shipped_kg - ordered_kg),
    }

    if amounts_match(shipped_kg, ordered_kg, tolerance_pct):
        return CheckResult(
            check_id="C1_ORDERED_WEIGHT",
            severity=Severity.INFO,
            passed=True,
            message=f"{item.product_name}: shipped {shipped_kg}kg matches ordered {ordered_kg}kg",
            evidence=evidence,
        )

    return CheckResult(
        check_id="C1_ORDERED_WEIGHT",
        severity=Severity.WARN,
        passed=False,
        message=f"{item.product_name}: shipped {shipped_kg}kg vs ordered {ordered_kg}kg exceeds {tolerance_pct}%",
        evidence=evidence,
    )


def check_c2_unordered_products(
    expected_items: Sequence[OrderItem],
    shipped_by_product: Dict[str, Decimal],
    display_names: Dict[str, str],
) -> CheckResult:
    """C2: Every inspected product appears on the sales order."""
    ordered = {product_key(item.product_name) for item in expected_items}
    extra = [display_names[key] for key in shipped_by_product if key and key not in ordered]

    if extra:
        return CheckResult(
            check_id="C2_UNORDERED_PRODUCTS",
            severity=Severity.WARN,
            passed=False,
            message=f"{len(extra)} inspected products not on the sales order",
            evidence={"products": extra},
        )

    return CheckResult(
        check_id="C2_UNORDERED_PRODUCTS",
        severity=Severity.INFO,
        passed=True,
        message="All inspected products are on the sales order",
        evidence={"products": []},
    )


def check_contents(
    expected_items: Sequence[OrderItem],
    inspection_lines: Sequence[InspectionPackage],
    tolerance: ReconciliationTolerance,
) -> List[CheckResult]:
    shipped: Dict[str, Decimal] = OrderedDict()
    display_names: Dict[str, str] = {}
    for package in inspection_lines:
        key = product_key(package.product_name)
        shipped[key] = shipped.get(key, Decimal("0")) + package.weight_kg
        display_names.setdefault(key, package.product_name)

    checks = [
        check_c1_ordered_weight(
            item,
            shipped.get(product_key(item.product_name), Decimal("0")),
            tolerance.content_pct,
        )
        for item in expected_items
    ]
    checks.append(check_c2_unordered_products(expected_items, shipped, display_names))
    return checks


# =============================================================================
# Main Reconciliation Engine
# =============================================================================

def reconcile_lines(
    statement_lines: Sequence[TransactionLine],
    inspection_lines: Sequence[InspectionPackage],
    expected_items: Optional[Sequence[OrderItem]] = None,
    tolerance: Optional[ReconciliationTolerance] = None,
    sales_order_id: Optional[str] = None,
) -> ReconciliationReport:
    """Match statement lines against inspection packages and build a report.

    Args:
        statement_lines: Parsed transaction statement lines, in document order
        inspection_lines: Parsed inspection packages, in document order
        expected_items: Sales order items for advisory content checks
        tolerance: Matching tolerances (defaults when omitted)
        sales_order_id: Sales order the documents belong to

    Returns:
        ReconciliationReport; all_matched is True iff there is at least one
        result and every verdict is MATCHED
    """
    tolerance = tolerance or ReconciliationTolerance()

    results = match_lines(statement_lines, inspection_lines, tolerance)
    all_matched = bool(results) and all(r.verdict == MatchVerdict.MATCHED for r in results)

    checks: List[CheckResult] = []
    contents_match = None
    if expected_items is not None:
        checks = check_contents(expected_items, inspection_lines, tolerance)
        contents_match = all(c.passed for c in checks)

    summary = {verdict.value: 0 for verdict in MatchVerdict}
    for r in results:
        summary[r.verdict.value] += 1

    statement_weight = sum((line.weight_kg for line in statement_lines), Decimal("0"))
    inspection_weight = sum((p.weight_kg for p in inspection_lines), Decimal("0"))
    statement_amount = sum((line.amount for line in statement_lines), Decimal("0"))
    inspection_amount = sum((p.amount for p in inspection_lines), Decimal("0"))

    return ReconciliationReport(
        sales_order_id=sales_order_id,
        results=results,
        all_matched=all_matched,
        contents_match=contents_match,
        checks=[c.to_dict() for c in checks],
        summary=summary,
        metrics={
            "statement_lines": len(statement_lines),
            "inspection_lines": len(inspection_lines),
            "statement_weight_kg": str(statement_weight),
            "inspection_weight_kg": str(inspection_weight),
            "weight_delta_kg": str(inspection_weight - statement_weight),
            "statement_amount": str(statement_amount),
            "inspection_amount": str(inspection_amount),
            "amount_delta": str(inspection_amount - statement_amount),
        },
    )
