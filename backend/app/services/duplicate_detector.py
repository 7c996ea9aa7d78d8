"""
Duplicate Detector (Phase 3 orchestrator)

Discovers the registered duplicate-charge rules and runs them over one
case's line items. Pairwise rules (exact, near) share a single pass in
canonical order: each item is tried against every pairwise rule, in rule_id
order, before it can anchor a later item, so the earliest charge of an
overlapping cluster stays canonical. Group rules (unbundling, upcoding) then
run in rule_id order. Each item is flagged at most once.
"""

import importlib
import logging
import pkgutil
from collections import Counter

from app.billing.fee_schedule import FeeScheduleResolver
from app.billing.models import BillLineItem, DuplicateMatch
from app.billing.reference import CodingRules, load_coding_rules
from app.config import settings
from app.rules.base import BaseMatchRule, DetectionContext, PairwiseMatchRule

logger = logging.getLogger(__name__)

RULE_PACKAGES = ["app.rules.billing"]

_ABSTRACT_RULES = (BaseMatchRule, PairwiseMatchRule)


def discover_rules() -> dict[str, BaseMatchRule]:
    """Instantiate every concrete rule class found in RULE_PACKAGES, keyed by rule_id."""
    rules: dict[str, BaseMatchRule] = {}
    for package_name in RULE_PACKAGES:
        package = importlib.import_module(package_name)
        for _, modname, _ in pkgutil.iter_modules(package.__path__):
            module = importlib.import_module(f"{package_name}.{modname}")
            for attr_name in dir(module):
                attr = getattr(module, attr_name)
                if (
                    isinstance(attr, type)
                    and issubclass(attr, BaseMatchRule)
                    and attr not in _ABSTRACT_RULES
                    and hasattr(attr, "rule_id")
                ):
                    instance = attr()
                    rules[instance.rule_id] = instance
    return dict(sorted(rules.items()))


def default_rule_thresholds() -> dict[str, dict]:
    """Per-rule threshold overrides taken from settings."""
    return {
        "D2": {
            "amount_tolerance": settings.near_duplicate_amount_tolerance,
            "window_days": settings.near_duplicate_window_days,
        },
    }


class DuplicateDetector:
    """Runs all enabled duplicate-charge rules over a set of line items."""

    def __init__(
        self,
        resolver: FeeScheduleResolver | None = None,
        coding_rules: CodingRules | None = None,
        thresholds: dict[str, dict] | None = None,
        disabled_rules: set[str] | None = None,
    ):
        self.resolver = resolver or FeeScheduleResolver()
        self.coding_rules = coding_rules or load_coding_rules(settings.coding_rules_path)
        self.rules = discover_rules()
        self.overrides = default_rule_thresholds() if thresholds is None else thresholds
        self.disabled_rules = disabled_rules or set()

    def thresholds_for(self, rule: BaseMatchRule) -> dict:
        return {**rule.default_thresholds, **self.overrides.get(rule.rule_id, {})}

    def detect(self, items: list[BillLineItem]) -> list[DuplicateMatch]:
        """Deterministic for a given input; pairwise matches first, in canonical order."""
        context = DetectionContext(
            items=sorted(items, key=lambda i: i.canonical_key),
            resolver=self.resolver,
            coding_rules=self.coding_rules,
        )
        enabled = [rule for rule_id, rule in self.rules.items() if rule_id not in self.disabled_rules]

        matches = self._detect_pairwise(
            context, [rule for rule in enabled if isinstance(rule, PairwiseMatchRule)],
        )
        for rule in enabled:
            if isinstance(rule, PairwiseMatchRule):
                continue
            found = rule.evaluate(context, self.thresholds_for(rule))
            if found:
                logger.debug("Rule %s (%s) flagged %d item(s)", rule.rule_id, rule.category, len(found))
            matches.extend(found)

        return matches

    def _detect_pairwise(self, context: DetectionContext, rules: list[PairwiseMatchRule]) -> list[DuplicateMatch]:
        prepared = []
        for rule in rules:
            thresholds = self.thresholds_for(rule)
            prepared.append((rule, thresholds, rule.build_index(context, thresholds)))

        matches: list[DuplicateMatch] = []
        for candidate in context.items:
            if not context.can_flag(candidate):
                continue
            for rule, thresholds, index in prepared:
                match = rule.match_candidate(context, index, candidate, thresholds)
                if match is not None:
                    matches.append(match)
                    break

        if matches:
            by_rule = Counter(m.rule_id for m in matches)
            logger.debug("Pairwise rules flagged %s", dict(sorted(by_rule.items())))
        return matches

    def get_rule_count(self) -> int:
        return len(self.rules)
