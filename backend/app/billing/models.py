"""
Engine data model.

Plain dataclasses shared by the fee schedule, the reasonableness classifier,
the duplicate rules and the summary builder. Currency is carried as Decimal
end to end and only converted to float in ``to_dict()`` for JSON output.
"""

import re
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal, ROUND_HALF_UP
from enum import Enum

CENT = Decimal("0.01")
ZERO = Decimal("0")

_PUNCTUATION_RE = re.compile(r"[^\w\s]")


class Assessment(str, Enum):
    REASONABLE = "reasonable"
    HIGH = "high"
    EXCESSIVE = "excessive"


class MatchType(str, Enum):
    EXACT = "exact"
    NEAR = "near"
    UNBUNDLING = "unbundling"
    UPCODING = "upcoding"


# ── Rounding helpers ──

def quantize_money(value: Decimal) -> Decimal:
    """Round a currency amount half-up to cents."""
    return Decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


def round_half_up(value: float, places: int = 1) -> float:
    """Round a float for display without banker's rounding."""
    exponent = Decimal(1).scaleb(-places)
    return float(Decimal(repr(value)).quantize(exponent, rounding=ROUND_HALF_UP))


def normalize_text(value: str | None) -> str:
    """Lower-case, drop punctuation and collapse whitespace, for grouping keys."""
    if not value:
        return ""
    return " ".join(_PUNCTUATION_RE.sub(" ", value.casefold()).split())


def _money(value: Decimal | None) -> float | None:
    return float(quantize_money(value)) if value is not None else None


def _iso(value: date | None) -> str | None:
    return value.isoformat() if value is not None else None


# ── Input ──

@dataclass(frozen=True)
class BillLineItem:
    """One billed line item for a case, as accepted by intake."""
    index: int
    case_id: str
    provider_name: str
    billed_amount: Decimal
    service_description: str = ""
    procedure_code: str | None = None
    modifier: str | None = None
    item_id: str | None = None
    paid_amount: Decimal | None = None
    outstanding_balance: Decimal | None = None
    service_date: date | None = None
    status: str | None = None
    service_type: str | None = None
    encounter_type: str | None = None

    @property
    def provider_key(self) -> str:
        return normalize_text(self.provider_name) or "unknown"

    @property
    def description_key(self) -> str:
        return normalize_text(self.service_description)

    @property
    def canonical_key(self) -> tuple:
        """Chronological order used for every tie-break: date, then ingestion order."""
        return (self.service_date is None, self.service_date or date.min, self.index)

    def to_dict(self) -> dict:
        return {
            "index": self.index,
            "item_id": self.item_id,
            "case_id": self.case_id,
            "provider_name": self.provider_name,
            "procedure_code": self.procedure_code,
            "modifier": self.modifier,
            "billed_amount": _money(self.billed_amount),
            "paid_amount": _money(self.paid_amount),
            "outstanding_balance": _money(self.outstanding_balance),
            "service_date": _iso(self.service_date),
            "service_description": self.service_description,
            "status": self.status,
            "service_type": self.service_type,
            "encounter_type": self.encounter_type,
        }


@dataclass(frozen=True)
class DataQualityWarning:
    """Non-fatal problem with one input record.

    ``excluded_from`` is "all" (item dropped), "rate_analysis" (kept for
    totals and duplicates, no reasonableness row), "date_rules" (kept, but
    ineligible for date-based duplicate rules) or "none" (field dropped).
    """
    index: int
    field: str
    reason: str
    excluded_from: str
    item_id: str | None = None

    def to_dict(self) -> dict:
        return {
            "index": self.index,
            "item_id": self.item_id,
            "field": self.field,
            "reason": self.reason,
            "excluded_from": self.excluded_from,
        }


# ── Reasonableness ──

@dataclass(frozen=True)
class ReasonablenessRow:
    index: int
    procedure_code: str
    provider_name: str
    billed_amount: Decimal
    benchmark_rate: Decimal
    reasonable_rate: Decimal
    variance_pct: float
    variance_amount: Decimal
    assessment: Assessment
    overcharge_amount: Decimal
    overcharge_percentage: int
    rate_source: str
    rate_band: str | None = None
    description: str | None = None
    service_date: date | None = None
    item_id: str | None = None

    @property
    def is_overcharge(self) -> bool:
        return self.overcharge_amount > 0

    def to_dict(self) -> dict:
        return {
            "index": self.index,
            "item_id": self.item_id,
            "procedure_code": self.procedure_code,
            "description": self.description,
            "provider_name": self.provider_name,
            "service_date": _iso(self.service_date),
            "billed_amount": _money(self.billed_amount),
            "benchmark_rate": _money(self.benchmark_rate),
            "reasonable_rate": _money(self.reasonable_rate),
            "variance_pct": round_half_up(self.variance_pct, 1),
            "variance_amount": _money(self.variance_amount),
            "assessment": self.assessment.value,
            "overcharge_amount": _money(self.overcharge_amount),
            "overcharge_percentage": self.overcharge_percentage,
            "rate_source": self.rate_source,
            "rate_band": self.rate_band,
        }


@dataclass(frozen=True)
class ReasonablenessSummary:
    total_billed: Decimal = ZERO
    total_benchmark: Decimal = ZERO
    overall_variance_pct: float = 0.0
    reasonable_count: int = 0
    high_count: int = 0
    excessive_count: int = 0
    average_variance: float = 0.0
    median_variance: float = 0.0

    def to_dict(self) -> dict:
        return {
            "total_billed": _money(self.total_billed),
            "total_benchmark": _money(self.total_benchmark),
            "overall_variance_pct": self.overall_variance_pct,
            "reasonable_count": self.reasonable_count,
            "high_count": self.high_count,
            "excessive_count": self.excessive_count,
            "average_variance": self.average_variance,
            "median_variance": self.median_variance,
        }


# ── Duplicates ──

@dataclass(frozen=True)
class DuplicateMatch:
    """A flagged line item paired with the canonical item it duplicates.

    For upcoding there is no second charge; both sides reference the
    upcoded item and ``evidence["expected_code"]`` names the supported code.
    """
    original_index: int
    duplicate_index: int
    match_type: MatchType
    similarity: float
    potential_overcharge: Decimal
    rule_id: str
    original_id: str | None = None
    duplicate_id: str | None = None
    details: str = ""
    evidence: dict = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {
            "original_index": self.original_index,
            "duplicate_index": self.duplicate_index,
            "original_id": self.original_id,
            "duplicate_id": self.duplicate_id,
            "match_type": self.match_type.value,
            "similarity": self.similarity,
            "potential_overcharge": _money(self.potential_overcharge),
            "rule_id": self.rule_id,
            "details": self.details,
            "evidence": self.evidence,
        }


# ── Summary ──

@dataclass(frozen=True)
class ProviderSummary:
    provider_name: str
    total_billed: Decimal
    num_bills: int
    visit_count: int
    percentage: float

    def to_dict(self) -> dict:
        return {
            "provider_name": self.provider_name,
            "total_billed": _money(self.total_billed),
            "num_bills": self.num_bills,
            "visit_count": self.visit_count,
            "percentage": self.percentage,
        }


@dataclass(frozen=True)
class ServiceTypeSummary:
    service_type: str
    total_billed: Decimal
    num_bills: int
    percentage: float

    def to_dict(self) -> dict:
        return {
            "service_type": self.service_type,
            "total_billed": _money(self.total_billed),
            "num_bills": self.num_bills,
            "percentage": self.percentage,
        }


@dataclass(frozen=True)
class BillingSummary:
    case_id: str
    total_billed: Decimal = ZERO
    total_paid: Decimal = ZERO
    total_balance: Decimal = ZERO
    num_bills: int = 0
    date_start: date | None = None
    date_end: date | None = None
    by_provider: list[ProviderSummary] = field(default_factory=list)
    by_service_type: list[ServiceTypeSummary] = field(default_factory=list)
    duplicates: list[DuplicateMatch] = field(default_factory=list)
    overcharges: list[ReasonablenessRow] = field(default_factory=list)
    total_duplicate_overcharge: Decimal = ZERO
    total_rate_overcharge: Decimal = ZERO
    net_amount: Decimal = ZERO
    skipped_count: int = 0

    def to_dict(self) -> dict:
        return {
            "case_id": self.case_id,
            "total_billed": _money(self.total_billed),
            "total_paid": _money(self.total_paid),
            "total_balance": _money(self.total_balance),
            "num_bills": self.num_bills,
            "date_range": {"start": _iso(self.date_start), "end": _iso(self.date_end)},
            "by_provider": [p.to_dict() for p in self.by_provider],
            "by_service_type": [s.to_dict() for s in self.by_service_type],
            "duplicates": [d.to_dict() for d in self.duplicates],
            "overcharges": [o.to_dict() for o in self.overcharges],
            "total_duplicate_overcharge": _money(self.total_duplicate_overcharge),
            "total_rate_overcharge": _money(self.total_rate_overcharge),
            "net_amount": _money(self.net_amount),
            "skipped_count": self.skipped_count,
        }


@dataclass(frozen=True)
class BillingReport:
    """Everything the API and export layers need, reconstructable from the line items."""
    summary: BillingSummary
    rows: list[ReasonablenessRow]
    reasonableness: ReasonablenessSummary
    warnings: list[DataQualityWarning]
    reference_versions: dict = field(default_factory=dict)

    @property
    def matches(self) -> list[DuplicateMatch]:
        return self.summary.duplicates

    def to_dict(self) -> dict:
        return {
            "summary": self.summary.to_dict(),
            "reasonableness": {
                "rows": [r.to_dict() for r in self.rows],
                "summary": self.reasonableness.to_dict(),
            },
            "warnings": [w.to_dict() for w in self.warnings],
            "reference_versions": dict(self.reference_versions),
        }
