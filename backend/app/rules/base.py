"""
Base classes for all duplicate-charge detection rules.

Every rule implements `evaluate()` which takes the shared DetectionContext
(line items in canonical order plus the flags recorded so far) and returns
the DuplicateMatches it found. A rule must skip items that are already
flagged or already serve as a canonical, and never anchor on a flagged item.
"""

from abc import ABC, abstractmethod
from collections import defaultdict
from dataclasses import dataclass, field
from decimal import Decimal

from app.billing.fee_schedule import FeeScheduleResolver
from app.billing.models import BillLineItem, DuplicateMatch, MatchType
from app.billing.reference import CodingRules


@dataclass
class DetectionContext:
    """Mutable state shared by the rules during one detection run."""
    items: list[BillLineItem]               # canonical order
    resolver: FeeScheduleResolver
    coding_rules: CodingRules
    flagged: set[int] = field(default_factory=set)
    canonicals: set[int] = field(default_factory=set)

    def can_flag(self, item: BillLineItem) -> bool:
        return item.index not in self.flagged and item.index not in self.canonicals

    def can_anchor(self, item: BillLineItem) -> bool:
        return item.index not in self.flagged

    def record(self, match: DuplicateMatch) -> None:
        self.flagged.add(match.duplicate_index)
        if match.original_index != match.duplicate_index:
            self.canonicals.add(match.original_index)


class BaseMatchRule(ABC):
    """Abstract base class for all duplicate-charge rules."""

    rule_id: str
    category: str
    match_type: MatchType
    default_thresholds: dict

    @abstractmethod
    def evaluate(self, context: DetectionContext, thresholds: dict) -> list[DuplicateMatch]:
        """
        Find matches among the context's items.

        Args:
            context: items in canonical order plus flags recorded by earlier rules
            thresholds: rule thresholds (defaults merged with overrides)

        Returns:
            DuplicateMatches in detection order; each is already recorded on the context
        """
        pass

    def _match(
        self,
        context: DetectionContext,
        original: BillLineItem,
        duplicate: BillLineItem,
        similarity: float,
        overcharge: Decimal,
        evidence: dict,
        details: str,
    ) -> DuplicateMatch:
        """Build a match and record it on the context."""
        match = DuplicateMatch(
            original_index=original.index,
            duplicate_index=duplicate.index,
            original_id=original.item_id,
            duplicate_id=duplicate.item_id,
            match_type=self.match_type,
            similarity=round(min(max(similarity, 0.0), 1.0), 4),
            potential_overcharge=max(overcharge, Decimal("0")),
            rule_id=self.rule_id,
            details=details,
            evidence=evidence,
        )
        context.record(match)
        return match


@dataclass
class PairwiseIndex:
    """One pairwise rule's buckets, plus each bucket's sliding-window start."""
    members: dict[tuple, list[BillLineItem]] = field(default_factory=lambda: defaultdict(list))
    positions: dict[int, tuple[tuple, int]] = field(default_factory=dict)
    starts: dict[tuple, int] = field(default_factory=lambda: defaultdict(int))


class PairwiseMatchRule(BaseMatchRule):
    """
    Pairs each later item with the best earlier unflagged item in its bucket.

    Items are bucketed by `bucket_key()` (None = ineligible) so comparisons
    only happen inside a bucket. When `window_days()` returns a value the
    scan is limited to a sliding date window; such rules must only bucket
    dated items. The best canonical is the one with the highest similarity,
    ties going to the earliest in canonical order.

    `match_candidate()` lets the detector try several pairwise rules on one
    item before moving on; candidates must arrive in canonical order.
    """

    max_similarity = 1.0

    @abstractmethod
    def bucket_key(self, item: BillLineItem, thresholds: dict) -> tuple | None:
        pass

    @abstractmethod
    def score(self, canonical: BillLineItem, candidate: BillLineItem, thresholds: dict) -> float | None:
        """Similarity of a pair, or None when the pair does not match."""
        pass

    @abstractmethod
    def describe(self, canonical: BillLineItem, candidate: BillLineItem, similarity: float) -> str:
        pass

    def window_days(self, thresholds: dict) -> int | None:
        return None

    def overcharge(self, canonical: BillLineItem, candidate: BillLineItem) -> Decimal:
        return candidate.billed_amount

    def evidence(self, canonical: BillLineItem, candidate: BillLineItem) -> dict:
        return {
            "provider": candidate.provider_name,
            "procedure_code": candidate.procedure_code,
            "original_date": canonical.service_date.isoformat() if canonical.service_date else None,
            "duplicate_date": candidate.service_date.isoformat() if candidate.service_date else None,
            "original_amount": float(canonical.billed_amount),
            "duplicate_amount": float(candidate.billed_amount),
        }

    def build_index(self, context: DetectionContext, thresholds: dict) -> PairwiseIndex:
        exclude_modifiers = set(thresholds.get("exclude_modifiers", []))
        index = PairwiseIndex()
        for item in context.items:
            if item.modifier and item.modifier in exclude_modifiers:
                continue
            key = self.bucket_key(item, thresholds)
            if key is None:
                continue
            bucket = index.members[key]
            index.positions[item.index] = (key, len(bucket))
            bucket.append(item)
        return index

    def match_candidate(
        self,
        context: DetectionContext,
        index: PairwiseIndex,
        candidate: BillLineItem,
        thresholds: dict,
    ) -> DuplicateMatch | None:
        """Pair `candidate` with its best earlier anchor and record the match, if any."""
        position = index.positions.get(candidate.index)
        if position is None:
            return None
        key, j = position
        members = index.members[key]

        start = index.starts[key]
        window = self.window_days(thresholds)
        if window is not None:
            while (candidate.service_date - members[start].service_date).days > window:
                start += 1
            index.starts[key] = start

        best: BillLineItem | None = None
        best_score = -1.0
        for canonical in members[start:j]:
            if not context.can_anchor(canonical):
                continue
            similarity = self.score(canonical, candidate, thresholds)
            # forward scan: strictly greater keeps the earliest on ties
            if similarity is not None and similarity > best_score:
                best, best_score = canonical, similarity
                if similarity >= self.max_similarity:
                    break

        if best is None:
            return None
        return self._match(
            context,
            original=best,
            duplicate=candidate,
            similarity=best_score,
            overcharge=self.overcharge(best, candidate),
            evidence=self.evidence(best, candidate),
            details=self.describe(best, candidate, best_score),
        )

    def evaluate(self, context: DetectionContext, thresholds: dict) -> list[DuplicateMatch]:
        index = self.build_index(context, thresholds)
        matches = []
        for candidate in context.items:
            if not context.can_flag(candidate):
                continue
            match = self.match_candidate(context, index, candidate, thresholds)
            if match is not None:
                matches.append(match)
        return matches
