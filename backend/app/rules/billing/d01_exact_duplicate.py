"""
D1: Exact Duplicate Charge Detection

Detects line items billed twice: same service date, same provider, same
procedure code (or, for uncoded items, same description) and the same amount
to the cent. The earliest occurrence stays canonical; every later copy is
flagged and its whole billed amount counts as overcharge.
"""

from app.billing.models import BillLineItem, MatchType, quantize_money
from app.rules.base import PairwiseMatchRule


class ExactDuplicateRule(PairwiseMatchRule):
    """
    Buckets on the full identity (date, provider, code-or-description,
    amount), so every pair inside a bucket is an exact match.

    Allows modifier exceptions: modifier 76 (repeat procedure) and 77
    (repeat by another provider) are legitimate repeats.
    """

    rule_id = "D1"
    category = "Exact Duplicate"
    match_type = MatchType.EXACT
    default_thresholds = {
        "exclude_modifiers": ["76", "77"],
    }

    def bucket_key(self, item: BillLineItem, thresholds: dict) -> tuple | None:
        if item.service_date is None:
            return None
        if item.procedure_code:
            service = ("code", item.procedure_code)
        elif item.description_key:
            service = ("description", item.description_key)
        else:
            return None
        return (
            item.service_date,
            item.provider_key,
            service,
            quantize_money(item.billed_amount),
        )

    def score(self, canonical: BillLineItem, candidate: BillLineItem, thresholds: dict) -> float | None:
        return 1.0

    def describe(self, canonical: BillLineItem, candidate: BillLineItem, similarity: float) -> str:
        service = candidate.procedure_code or candidate.service_description
        return (
            f"Item {candidate.index} repeats item {canonical.index}: "
            f"{service} by {candidate.provider_name or 'Unknown'} on {candidate.service_date} "
            f"for ${float(candidate.billed_amount):,.2f}"
        )
