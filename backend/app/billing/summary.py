"""
Billing summary (Phase 4) and the single analysis entry point.

analyze_line_items() runs the whole engine for one case:

  raw records ─► intake ─┬─► classifier ─► aggregator ──┐
                         └─► duplicate detector ────────┴─► BillingSummaryBuilder ─► BillingReport

Pure and synchronous: no I/O, no clock in the result, so the same input
always yields the same report.
"""

import logging
import time
from collections import defaultdict
from decimal import Decimal

from app.billing.errors import ValidationError
from app.billing.fee_schedule import FeeScheduleResolver
from app.billing.intake import normalize_line_items
from app.billing.models import (
    BillingReport,
    BillingSummary,
    BillLineItem,
    DuplicateMatch,
    ProviderSummary,
    ReasonablenessRow,
    ServiceTypeSummary,
    ZERO,
    quantize_money,
    round_half_up,
)
from app.billing.reasonableness import ReasonablenessAggregator, RateReasonablenessClassifier
from app.billing.reference import reference_versions
from app.billing.service_types import categorize_service_type
from app.config import settings
from app.middleware.metrics import (
    billing_analyses_total,
    billing_analysis_duration_seconds,
    billing_duplicate_matches_total,
    billing_line_items_analyzed,
    billing_line_items_skipped,
)
from app.services.duplicate_detector import DuplicateDetector

logger = logging.getLogger(__name__)


def _percentage(part: Decimal, total: Decimal) -> float:
    if total <= 0:
        return 0.0
    return round_half_up(float(part / total * 100), 1)


class BillingSummaryBuilder:
    """Composes line items, reasonableness rows and matches into a case summary."""

    def build(
        self,
        case_id: str,
        items: list[BillLineItem],
        rows: list[ReasonablenessRow],
        matches: list[DuplicateMatch],
        skipped_count: int = 0,
    ) -> BillingSummary:
        total_billed = sum((i.billed_amount for i in items), ZERO)
        total_paid = sum((i.paid_amount for i in items if i.paid_amount is not None), ZERO)
        total_balance = sum(
            (i.outstanding_balance if i.outstanding_balance is not None else i.billed_amount for i in items),
            ZERO,
        )
        dates = [i.service_date for i in items if i.service_date is not None]

        overcharges = [r for r in rows if r.is_overcharge]
        total_duplicate = sum((m.potential_overcharge for m in matches), ZERO)
        total_rate = sum((r.overcharge_amount for r in overcharges), ZERO)
        net = max(ZERO, total_billed - total_duplicate - total_rate)

        return BillingSummary(
            case_id=case_id,
            total_billed=quantize_money(total_billed),
            total_paid=quantize_money(total_paid),
            total_balance=quantize_money(total_balance),
            num_bills=len(items),
            date_start=min(dates) if dates else None,
            date_end=max(dates) if dates else None,
            by_provider=self.group_by_provider(items, total_billed),
            by_service_type=self.group_by_service_type(items, total_billed),
            duplicates=list(matches),
            overcharges=overcharges,
            total_duplicate_overcharge=quantize_money(total_duplicate),
            total_rate_overcharge=quantize_money(total_rate),
            net_amount=quantize_money(net),
            skipped_count=skipped_count,
        )

    def group_by_provider(self, items: list[BillLineItem], case_total: Decimal) -> list[ProviderSummary]:
        names: dict[str, str] = {}
        totals: dict[str, Decimal] = defaultdict(lambda: ZERO)
        counts: dict[str, int] = defaultdict(int)
        visit_dates: dict[str, set] = defaultdict(set)

        for item in items:
            key = item.provider_key
            names.setdefault(key, item.provider_name or "Unknown")
            totals[key] += item.billed_amount
            counts[key] += 1
            if item.service_date is not None:
                visit_dates[key].add(item.service_date)

        groups = [
            ProviderSummary(
                provider_name=names[key],
                total_billed=quantize_money(totals[key]),
                num_bills=counts[key],
                visit_count=len(visit_dates[key]),
                percentage=_percentage(totals[key], case_total),
            )
            for key in names
        ]
        return sorted(groups, key=lambda g: g.total_billed, reverse=True)

    def group_by_service_type(self, items: list[BillLineItem], case_total: Decimal) -> list[ServiceTypeSummary]:
        totals: dict[str, Decimal] = defaultdict(lambda: ZERO)
        counts: dict[str, int] = defaultdict(int)

        for item in items:
            service_type = item.service_type or categorize_service_type(
                item.procedure_code, item.service_description,
            )
            totals[service_type] += item.billed_amount
            counts[service_type] += 1

        groups = [
            ServiceTypeSummary(
                service_type=service_type,
                total_billed=quantize_money(total),
                num_bills=counts[service_type],
                percentage=_percentage(total, case_total),
            )
            for service_type, total in totals.items()
        ]
        return sorted(groups, key=lambda g: g.total_billed, reverse=True)


def analyze_line_items(
    case_id: str,
    records,
    *,
    resolver: FeeScheduleResolver | None = None,
    detector: DuplicateDetector | None = None,
    policy: dict | None = None,
    max_line_items: int | None = None,
) -> BillingReport:
    """
    Run the full engine over one case's bill records.

    Raises ValidationError for a missing case id or an oversized input.
    Per-record problems never raise; they are reported as warnings.
    """
    if not case_id or not str(case_id).strip():
        raise ValidationError("case_id is required")
    case_id = str(case_id).strip()

    records = list(records)
    limit = max_line_items if max_line_items is not None else settings.max_line_items
    if len(records) > limit:
        raise ValidationError(f"Too many line items: {len(records)} exceeds the limit of {limit}")

    start = time.perf_counter()
    resolver = resolver or FeeScheduleResolver()
    detector = detector or DuplicateDetector(resolver=resolver)

    intake = normalize_line_items(case_id, records)
    rows = RateReasonablenessClassifier(resolver, policy).classify_all(intake.items)
    reasonableness = ReasonablenessAggregator().summarize(rows)
    matches = detector.detect(intake.items)

    summary = BillingSummaryBuilder().build(
        case_id, intake.items, rows, matches, skipped_count=intake.skipped_count,
    )
    report = BillingReport(
        summary=summary,
        rows=rows,
        reasonableness=reasonableness,
        warnings=list(intake.warnings),
        reference_versions=reference_versions(resolver.data, detector.coding_rules),
    )

    duration = time.perf_counter() - start
    billing_analyses_total.inc()
    billing_analysis_duration_seconds.observe(duration)
    billing_line_items_analyzed.inc(len(intake.items))
    billing_line_items_skipped.inc(intake.skipped_count)
    for match in matches:
        billing_duplicate_matches_total.labels(match_type=match.match_type.value).inc()

    logger.info(
        "Analyzed case %s: %d items, %d skipped, %d coded rows, %d duplicate matches, "
        "%d rate overcharges in %.1fms",
        case_id, len(intake.items), intake.skipped_count, len(rows), len(matches),
        len(summary.overcharges), duration * 1000,
        extra={"case_id": case_id, "duration_ms": round(duration * 1000, 2)},
    )
    return report
