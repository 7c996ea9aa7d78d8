"""
D3: Unbundling Detection

Detects component procedures billed separately on the same date by the same
provider when a single comprehensive (bundle) code covers them, per the
bundle table in the coding rules.

Two patterns:
  A. Bundle code billed alongside its components: the components are
     double billed. Canonical = the bundle item; each component is flagged
     with its full billed amount.
  B. Components billed without the bundle code: canonical = the earliest
     component; the others are flagged. Group overcharge =
     Σ billed − benchmark(bundle code), spread over the flagged items.
"""

from collections import defaultdict
from decimal import Decimal

from app.billing.models import BillLineItem, DuplicateMatch, MatchType
from app.billing.reference import BundleRule
from app.rules.base import BaseMatchRule, DetectionContext


class UnbundlingRule(BaseMatchRule):
    """
    Groups unflagged coded items by (provider, date) and tries bundles with
    the most matched components first, ties in table order. An item joins at
    most one bundle group.
    """

    rule_id = "D3"
    category = "Unbundling"
    match_type = MatchType.UNBUNDLING
    default_thresholds = {
        "bundled_similarity": 0.90,
        "component_similarity": 0.85,
    }

    def evaluate(self, context: DetectionContext, thresholds: dict) -> list[DuplicateMatch]:
        groups: dict[tuple, list[BillLineItem]] = defaultdict(list)
        for item in context.items:
            if item.procedure_code and item.service_date is not None and context.can_anchor(item):
                groups[(item.provider_key, item.service_date)].append(item)

        matches = []
        for group in groups.values():
            if len(group) < 2:
                continue
            used: set[int] = set()
            while True:
                selected = self._select_bundle(context, group, used)
                if selected is None:
                    break
                bundle, bundle_items, component_items = selected
                matches.extend(self._apply(context, bundle, bundle_items, component_items, thresholds))
                used.update(i.index for i in bundle_items + component_items)
        return matches

    def _select_bundle(
        self, context: DetectionContext, group: list[BillLineItem], used: set[int],
    ) -> tuple[BundleRule, list[BillLineItem], list[BillLineItem]] | None:
        best = None
        best_count = 0
        for bundle in context.coding_rules.bundles:
            components = set(bundle.components)
            available = [i for i in group if i.index not in used]
            bundle_items = [i for i in available if i.procedure_code == bundle.bundle_code]
            component_items = [i for i in available if i.procedure_code in components]
            distinct = len({i.procedure_code for i in component_items})

            if bundle_items:
                qualifies = distinct >= 1
            else:
                qualifies = distinct >= bundle.min_components
            if qualifies and distinct > best_count:
                best = (bundle, bundle_items, component_items)
                best_count = distinct
        return best

    def _apply(
        self,
        context: DetectionContext,
        bundle: BundleRule,
        bundle_items: list[BillLineItem],
        component_items: list[BillLineItem],
        thresholds: dict,
    ) -> list[DuplicateMatch]:
        benchmark = context.resolver.rate(bundle.bundle_code)
        matches = []

        if bundle_items:
            canonical = bundle_items[0]
            similarity = float(thresholds.get("bundled_similarity", self.default_thresholds["bundled_similarity"]))
            for component in component_items:
                if not context.can_flag(component):
                    continue
                matches.append(self._match(
                    context,
                    original=canonical,
                    duplicate=component,
                    similarity=similarity,
                    overcharge=component.billed_amount,
                    evidence=self._evidence(bundle, canonical, component, benchmark, pattern="bundle_billed"),
                    details=(
                        f"CPT {component.procedure_code} (item {component.index}) is a component of "
                        f"{bundle.bundle_code} {bundle.description} already billed as item {canonical.index}"
                    ),
                ))
            return matches

        canonical = component_items[0]
        flaggable = [c for c in component_items[1:] if context.can_flag(c)]
        if not flaggable:
            return matches

        similarity = float(thresholds.get("component_similarity", self.default_thresholds["component_similarity"]))
        group_billed = canonical.billed_amount + sum((c.billed_amount for c in flaggable), Decimal("0"))
        group_overcharge = max(Decimal("0"), group_billed - benchmark)

        remaining = group_overcharge
        shares = []
        for component in flaggable:
            share = min(component.billed_amount, remaining)
            shares.append(share)
            remaining -= share
        shares[-1] += remaining

        codes = sorted({c.procedure_code for c in component_items})
        for component, share in zip(flaggable, shares):
            evidence = self._evidence(bundle, canonical, component, benchmark, pattern="components_only")
            evidence["group_codes"] = codes
            evidence["group_billed"] = float(group_billed)
            evidence["group_overcharge"] = float(group_overcharge)
            matches.append(self._match(
                context,
                original=canonical,
                duplicate=component,
                similarity=similarity,
                overcharge=share,
                evidence=evidence,
                details=(
                    f"CPT {component.procedure_code} (item {component.index}) billed separately with "
                    f"{', '.join(codes)}; should bill as {bundle.bundle_code} {bundle.description} "
                    f"(benchmark ${float(benchmark):,.2f})"
                ),
            ))
        return matches

    @staticmethod
    def _evidence(bundle, canonical, component, benchmark, pattern: str) -> dict:
        return {
            "pattern": pattern,
            "bundle_code": bundle.bundle_code,
            "bundle_description": bundle.description,
            "bundle_benchmark": float(benchmark),
            "component_code": component.procedure_code,
            "canonical_code": canonical.procedure_code,
            "provider": component.provider_name,
            "service_date": component.service_date.isoformat(),
        }
