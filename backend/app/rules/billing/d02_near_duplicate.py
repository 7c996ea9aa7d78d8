"""
D2: Near Duplicate Charge Detection

Detects the same procedure billed again by the same provider within a short
window at nearly the same price (a rebill with a changed date or amount).

Similarity = 1 − 0.25 × (amount_diff / tolerance) − 0.25 × (day_gap / window)
where amount_diff = |a − b| / mean(a, b). Ranges from 0.5 to 1.0.
"""

from app.billing.models import BillLineItem, MatchType
from app.rules.base import PairwiseMatchRule


class NearDuplicateRule(PairwiseMatchRule):
    """
    Flags a later item whose amount is within `amount_tolerance` (relative)
    and whose date is within `window_days` of an earlier item with the same
    provider and procedure code. Exact copies are left to D1.
    """

    rule_id = "D2"
    category = "Near Duplicate"
    match_type = MatchType.NEAR
    default_thresholds = {
        "amount_tolerance": 0.10,
        "window_days": 7,
        "exclude_modifiers": ["76", "77"],
    }

    def bucket_key(self, item: BillLineItem, thresholds: dict) -> tuple | None:
        if item.service_date is None or not item.procedure_code:
            return None
        return (item.provider_key, item.procedure_code)

    def window_days(self, thresholds: dict) -> int | None:
        return int(thresholds.get("window_days", self.default_thresholds["window_days"]))

    @staticmethod
    def amount_difference(a: BillLineItem, b: BillLineItem) -> float:
        avg = (a.billed_amount + b.billed_amount) / 2
        if avg == 0:
            return 0.0
        return float(abs(a.billed_amount - b.billed_amount) / avg)

    def score(self, canonical: BillLineItem, candidate: BillLineItem, thresholds: dict) -> float | None:
        tolerance = float(thresholds.get("amount_tolerance", self.default_thresholds["amount_tolerance"]))
        window = self.window_days(thresholds)

        amount_diff = self.amount_difference(canonical, candidate)
        if amount_diff > tolerance:
            return None
        day_gap = abs((candidate.service_date - canonical.service_date).days)
        if day_gap > window:
            return None

        amount_term = amount_diff / tolerance if tolerance > 0 else 0.0
        date_term = day_gap / window if window > 0 else 0.0
        return round(1.0 - 0.25 * amount_term - 0.25 * date_term, 4)

    def evidence(self, canonical: BillLineItem, candidate: BillLineItem) -> dict:
        evidence = super().evidence(canonical, candidate)
        evidence["amount_difference_pct"] = round(self.amount_difference(canonical, candidate) * 100, 2)
        evidence["day_gap"] = (candidate.service_date - canonical.service_date).days
        return evidence

    def describe(self, canonical: BillLineItem, candidate: BillLineItem, similarity: float) -> str:
        gap = (candidate.service_date - canonical.service_date).days
        return (
            f"Item {candidate.index} rebills CPT {candidate.procedure_code} from item {canonical.index} "
            f"{gap} day(s) later (${float(canonical.billed_amount):,.2f} vs "
            f"${float(candidate.billed_amount):,.2f}, similarity {similarity:.2f})"
        )
