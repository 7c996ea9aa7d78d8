"""
Rate reasonableness (Phase 2 of a billing analysis)

Classifies each procedure-coded line item against its Medicare benchmark
and folds the rows into case-level variance statistics.

  benchmark  = fee schedule rate for the code
  reasonable = benchmark × commercial_multiplier       (2.0)
  threshold  = reasonable × excessive_multiplier       (1.5)

  billed <= reasonable          -> reasonable
  reasonable < billed <= thresh -> high
  billed > threshold            -> excessive
"""

from decimal import Decimal, ROUND_HALF_UP
from statistics import mean, median

from app.billing.fee_schedule import FeeScheduleResolver
from app.billing.models import (
    Assessment,
    BillLineItem,
    ReasonablenessRow,
    ReasonablenessSummary,
    ZERO,
    quantize_money,
    round_half_up,
)


# Default policy; callers may pass an override
DEFAULT_REASONABLENESS_POLICY = {
    "commercial_multiplier": Decimal("2.0"),
    "excessive_multiplier": Decimal("1.5"),
}


class RateReasonablenessClassifier:
    """Produces one ReasonablenessRow per procedure-coded line item."""

    def __init__(self, resolver: FeeScheduleResolver | None = None, policy: dict | None = None):
        self.resolver = resolver or FeeScheduleResolver()
        self.policy = {**DEFAULT_REASONABLENESS_POLICY, **(policy or {})}

    def classify_assessment(self, billed: Decimal, reasonable: Decimal) -> Assessment:
        threshold = reasonable * Decimal(self.policy["excessive_multiplier"])
        if billed <= reasonable:
            return Assessment.REASONABLE
        elif billed <= threshold:
            return Assessment.HIGH
        else:
            return Assessment.EXCESSIVE

    def classify(self, item: BillLineItem) -> ReasonablenessRow | None:
        """Classify one item. None when the item carries no procedure code."""
        if not item.procedure_code:
            return None

        quote = self.resolver.resolve(item.procedure_code)
        benchmark = quote.rate
        reasonable = benchmark * Decimal(self.policy["commercial_multiplier"])
        billed = item.billed_amount

        assessment = self.classify_assessment(billed, reasonable)

        if billed > reasonable:
            overcharge_amount = billed - reasonable
            overcharge_pct = int(
                (overcharge_amount / reasonable * 100).quantize(Decimal(1), rounding=ROUND_HALF_UP)
            )
        else:
            overcharge_amount = ZERO
            overcharge_pct = 0

        return ReasonablenessRow(
            index=item.index,
            item_id=item.item_id,
            procedure_code=item.procedure_code,
            description=item.service_description or quote.description,
            provider_name=item.provider_name,
            service_date=item.service_date,
            billed_amount=billed,
            benchmark_rate=benchmark,
            reasonable_rate=reasonable,
            variance_pct=float((billed - benchmark) / benchmark * 100),
            variance_amount=billed - benchmark,
            assessment=assessment,
            overcharge_amount=overcharge_amount,
            overcharge_percentage=overcharge_pct,
            rate_source=quote.source,
            rate_band=quote.band,
        )

    def classify_all(self, items: list[BillLineItem]) -> list[ReasonablenessRow]:
        rows = []
        for item in items:
            row = self.classify(item)
            if row is not None:
                rows.append(row)
        return rows


class ReasonablenessAggregator:
    """Folds classified rows into a ReasonablenessSummary."""

    def summarize(self, rows: list[ReasonablenessRow]) -> ReasonablenessSummary:
        if not rows:
            return ReasonablenessSummary()

        total_billed = sum((r.billed_amount for r in rows), ZERO)
        total_benchmark = sum((r.benchmark_rate for r in rows), ZERO)
        if total_benchmark > 0:
            overall = float((total_billed - total_benchmark) / total_benchmark * 100)
        else:
            overall = 0.0

        counts = {a: 0 for a in Assessment}
        for r in rows:
            counts[r.assessment] += 1

        variances = [r.variance_pct for r in rows]

        return ReasonablenessSummary(
            total_billed=quantize_money(total_billed),
            total_benchmark=quantize_money(total_benchmark),
            overall_variance_pct=round_half_up(overall, 1),
            reasonable_count=counts[Assessment.REASONABLE],
            high_count=counts[Assessment.HIGH],
            excessive_count=counts[Assessment.EXCESSIVE],
            average_variance=round_half_up(mean(variances), 1),
            median_variance=round_half_up(median(variances), 1),
        )
