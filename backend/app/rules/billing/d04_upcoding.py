"""
D4: Upcoding Detection

Detects E&M visits billed at a higher level than the documented encounter
supports. The documented level comes from the item's encounter_type when
present, otherwise from level keywords in the service description. When
several levels are mentioned, the highest wins.
"""

from app.billing.models import BillLineItem, DuplicateMatch, MatchType
from app.billing.reference import UpcodingTable
from app.rules.base import BaseMatchRule, DetectionContext


def documented_level(text: str | None, table: UpcodingTable) -> str | None:
    """Highest encounter level named in free text, or None."""
    if not text:
        return None
    lowered = " ".join(text.lower().replace("_", " ").split())
    for level in table.levels:
        if lowered == level.level or any(kw in lowered for kw in level.keywords):
            return level.level
    return None


class UpcodingRule(BaseMatchRule):
    """
    Flags an E&M code ranked above the code its family maps to the documented
    level. The match points at the item itself on both sides; the supported
    code is reported in evidence["expected_code"].

    Overcharge = benchmark(billed code) − benchmark(expected code).
    """

    rule_id = "D4"
    category = "Upcoding"
    match_type = MatchType.UPCODING
    default_thresholds = {
        "encounter_type_similarity": 0.90,
        "keyword_similarity": 0.70,
    }

    def evaluate(self, context: DetectionContext, thresholds: dict) -> list[DuplicateMatch]:
        table = context.coding_rules.upcoding
        matches = []

        for item in context.items:
            if not item.procedure_code or not context.can_flag(item):
                continue
            family = table.family_for(item.procedure_code)
            if family is None:
                continue

            level = documented_level(item.encounter_type, table)
            if level is not None:
                source = "encounter_type"
                similarity = thresholds.get(
                    "encounter_type_similarity", self.default_thresholds["encounter_type_similarity"],
                )
            else:
                level = documented_level(item.service_description, table)
                source = "description"
                similarity = thresholds.get("keyword_similarity", self.default_thresholds["keyword_similarity"])
            if level is None:
                continue

            expected_code = family.level_codes.get(level)
            if expected_code is None or family.rank(item.procedure_code) <= family.rank(expected_code):
                continue

            billed_rate = context.resolver.rate(item.procedure_code)
            expected_rate = context.resolver.rate(expected_code)

            evidence = {
                "family": family.family,
                "billed_code": item.procedure_code,
                "expected_code": expected_code,
                "documented_level": level,
                "level_source": source,
                "billed_benchmark": float(billed_rate),
                "expected_benchmark": float(expected_rate),
                "levels_above": family.rank(item.procedure_code) - family.rank(expected_code),
            }
            details = (
                f"Item {item.index} billed {item.procedure_code} ({family.description}) but the "
                f"documented encounter is {level} (from {source.replace('_', ' ')}), "
                f"which supports {expected_code}"
            )
            matches.append(self._match(
                context,
                original=item,
                duplicate=item,
                similarity=float(similarity),
                overcharge=billed_rate - expected_rate,
                evidence=evidence,
                details=details,
            ))

        return matches
