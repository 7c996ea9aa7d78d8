"""Tests for duplicate-charge detection rules D1-D4."""

from datetime import date
from decimal import Decimal

import pytest

from app.billing.models import MatchType
from app.services.duplicate_detector import DuplicateDetector, discover_rules


@pytest.fixture(scope="module")
def detector() -> DuplicateDetector:
    return DuplicateDetector(thresholds={})


class TestRuleDiscovery:
    def test_rules_run_in_specificity_order(self):
        assert list(discover_rules()) == ["D1", "D2", "D3", "D4"]

    def test_rule_count(self, detector):
        assert detector.get_rule_count() == 4


class TestExactDuplicates:
    def test_same_day_repeat_flags_second(self, detector, make_item):
        matches = detector.detect([make_item(0), make_item(1)])

        assert len(matches) == 1
        m = matches[0]
        assert m.match_type == MatchType.EXACT
        assert (m.original_index, m.duplicate_index) == (0, 1)
        assert m.similarity == 1.0
        assert m.potential_overcharge == Decimal("500.00")
        assert m.rule_id == "D1"

    def test_cluster_flags_all_but_earliest(self, detector, make_item):
        items = [make_item(i) for i in range(4)]
        matches = detector.detect(items)

        assert len(matches) == 3
        assert {m.duplicate_index for m in matches} == {1, 2, 3}
        assert all(m.original_index == 0 for m in matches)

    def test_provider_names_are_normalized(self, detector, make_item):
        matches = detector.detect([
            make_item(0, provider_name="Dr. Smith"),
            make_item(1, provider_name="dr  smith"),
        ])
        assert len(matches) == 1

    def test_different_amount_is_not_exact(self, detector, make_item):
        matches = detector.detect([make_item(0), make_item(1, billed_amount="501")])
        assert all(m.match_type != MatchType.EXACT for m in matches)

    def test_uncoded_items_match_on_description(self, detector, make_item):
        matches = detector.detect([
            make_item(0, procedure_code=None, service_description="Ambulance transport"),
            make_item(1, procedure_code=None, service_description="ambulance transport."),
        ])
        assert len(matches) == 1
        assert matches[0].match_type == MatchType.EXACT

    def test_undated_items_are_ineligible(self, detector, make_item):
        matches = detector.detect([make_item(0, service_date=None), make_item(1, service_date=None)])
        assert matches == []

    @pytest.mark.parametrize("modifier", ["76", "77"])
    def test_repeat_procedure_modifiers_are_exempt(self, detector, make_item, modifier):
        matches = detector.detect([make_item(0), make_item(1, modifier=modifier)])
        assert matches == []


class TestNearDuplicates:
    def test_similarity_scales_with_amount_and_gap(self, detector, make_item):
        matches = detector.detect([
            make_item(0, billed_amount="100", service_date=date(2024, 3, 1)),
            make_item(1, billed_amount="105", service_date=date(2024, 3, 4)),
        ])

        assert len(matches) == 1
        m = matches[0]
        assert m.match_type == MatchType.NEAR
        assert m.similarity == 0.7709
        assert m.potential_overcharge == Decimal("105")
        assert m.evidence["day_gap"] == 3

    def test_outside_window_is_not_matched(self, detector, make_item):
        matches = detector.detect([
            make_item(0, billed_amount="100", service_date=date(2024, 3, 1)),
            make_item(1, billed_amount="100", service_date=date(2024, 3, 9)),
        ])
        assert matches == []

    def test_amount_outside_tolerance_is_not_matched(self, detector, make_item):
        matches = detector.detect([
            make_item(0, billed_amount="100", service_date=date(2024, 3, 1)),
            make_item(1, billed_amount="115", service_date=date(2024, 3, 2)),
        ])
        assert matches == []

    def test_earlier_date_is_canonical_regardless_of_input_order(self, detector, make_item):
        matches = detector.detect([
            make_item(0, billed_amount="520", service_date=date(2024, 3, 10)),
            make_item(1, billed_amount="500", service_date=date(2024, 3, 8)),
        ])
        assert (matches[0].original_index, matches[0].duplicate_index) == (1, 0)

    def test_best_canonical_wins(self, detector, make_item):
        # item 1 is too far from item 0 to match it, but item 2 matches both
        matches = detector.detect([
            make_item(0, billed_amount="100", service_date=date(2024, 3, 1)),
            make_item(1, billed_amount="111", service_date=date(2024, 3, 2)),
            make_item(2, billed_amount="105", service_date=date(2024, 3, 3)),
        ])

        assert len(matches) == 1
        assert (matches[0].original_index, matches[0].duplicate_index) == (1, 2)
        assert matches[0].similarity == 0.8254

    def test_flagged_item_never_becomes_canonical(self, detector, make_item):
        matches = detector.detect([
            make_item(0, billed_amount="100", service_date=date(2024, 3, 1)),
            make_item(1, billed_amount="100", service_date=date(2024, 3, 1)),
            make_item(2, billed_amount="102", service_date=date(2024, 3, 3)),
        ])

        assert [(m.match_type, m.original_index, m.duplicate_index) for m in matches] == [
            (MatchType.EXACT, 0, 1),
            (MatchType.NEAR, 0, 2),
        ]

    def test_settings_thresholds_apply(self, make_item):
        detector = DuplicateDetector(thresholds={"D2": {"window_days": 10}})
        matches = detector.detect([
            make_item(0, billed_amount="100", service_date=date(2024, 3, 1)),
            make_item(1, billed_amount="100", service_date=date(2024, 3, 9)),
        ])
        assert len(matches) == 1


class TestUnbundling:
    def test_components_billed_with_panel(self, detector, make_item):
        matches = detector.detect([
            make_item(0, procedure_code="80053", billed_amount="150"),
            make_item(1, procedure_code="82310", billed_amount="25"),
            make_item(2, procedure_code="82565", billed_amount="30"),
        ])

        assert len(matches) == 2
        assert all(m.match_type == MatchType.UNBUNDLING for m in matches)
        assert all(m.original_index == 0 for m in matches)
        assert [m.potential_overcharge for m in matches] == [Decimal("25"), Decimal("30")]
        assert matches[0].similarity == 0.9
        assert matches[0].evidence["pattern"] == "bundle_billed"

    def test_components_without_panel(self, detector, make_item):
        matches = detector.detect([
            make_item(0, procedure_code="82310", billed_amount="25"),
            make_item(1, procedure_code="82565", billed_amount="30"),
            make_item(2, procedure_code="84132", billed_amount="20"),
        ])

        assert len(matches) == 2
        assert all(m.original_index == 0 for m in matches)
        assert matches[0].evidence["bundle_code"] == "80053"
        assert matches[0].similarity == 0.85
        # 75 billed against a 15 panel benchmark; remainder lands on the last match
        assert [m.potential_overcharge for m in matches] == [Decimal("30"), Decimal("30")]
        assert sum(m.potential_overcharge for m in matches) == Decimal("60")

    def test_lipid_panel_components(self, detector, make_item):
        matches = detector.detect([
            make_item(0, procedure_code="82465", billed_amount="40"),
            make_item(1, procedure_code="83718", billed_amount="35"),
        ])

        assert len(matches) == 1
        assert matches[0].evidence["bundle_code"] == "80061"
        assert matches[0].potential_overcharge == Decimal("55")

    def test_different_dates_are_not_bundled(self, detector, make_item):
        matches = detector.detect([
            make_item(0, procedure_code="82465", billed_amount="40", service_date=date(2024, 3, 1)),
            make_item(1, procedure_code="83718", billed_amount="35", service_date=date(2024, 3, 2)),
        ])
        assert matches == []

    def test_single_component_is_not_unbundling(self, detector, make_item):
        matches = detector.detect([make_item(0, procedure_code="82465", billed_amount="40")])
        assert matches == []


class TestUpcoding:
    def test_encounter_type_below_billed_level(self, detector, make_item):
        matches = detector.detect([make_item(0, procedure_code="99215", billed_amount="300", encounter_type="low")])

        assert len(matches) == 1
        m = matches[0]
        assert m.match_type == MatchType.UPCODING
        assert m.original_index == m.duplicate_index == 0
        assert m.evidence["expected_code"] == "99213"
        assert m.potential_overcharge == Decimal("90")
        assert m.similarity == 0.9

    def test_description_keywords(self, detector, make_item):
        matches = detector.detect([
            make_item(0, procedure_code="99285", billed_amount="900",
                      service_description="ED visit for minor problem"),
        ])

        assert len(matches) == 1
        assert matches[0].evidence["expected_code"] == "99281"
        assert matches[0].evidence["level_source"] == "description"
        assert matches[0].potential_overcharge == Decimal("340")
        assert matches[0].similarity == 0.7

    def test_highest_documented_level_wins(self, detector, make_item):
        matches = detector.detect([
            make_item(0, procedure_code="99215",
                      service_description="Follow-up, low complexity; high complexity decision making"),
        ])
        assert matches == []

    def test_billed_at_or_below_documented_level(self, detector, make_item):
        matches = detector.detect([make_item(0, procedure_code="99213", encounter_type="moderate")])
        assert matches == []

    def test_no_level_signal(self, detector, make_item):
        matches = detector.detect([make_item(0, procedure_code="99215", service_description="Office visit")])
        assert matches == []


class TestDetectorInvariants:
    def test_each_item_flagged_at_most_once(self, detector, make_item):
        matches = detector.detect([
            make_item(0, procedure_code="99215", billed_amount="300", encounter_type="low"),
            make_item(1, procedure_code="99215", billed_amount="300", encounter_type="low"),
        ])

        flagged = [m.duplicate_index for m in matches]
        assert len(flagged) == len(set(flagged))
        assert 0 not in flagged
        assert matches[0].match_type == MatchType.EXACT

    def test_overlapping_cluster_keeps_earliest_canonical(self, detector, make_item):
        # b and c are exact copies of each other and near copies of a
        matches = detector.detect([
            make_item(0, billed_amount="100", service_date=date(2024, 3, 1)),
            make_item(1, billed_amount="100", service_date=date(2024, 3, 3)),
            make_item(2, billed_amount="100", service_date=date(2024, 3, 3)),
        ])

        assert [(m.original_index, m.duplicate_index) for m in matches] == [(0, 1), (0, 2)]
        assert all(m.match_type == MatchType.NEAR for m in matches)
        assert sum(m.potential_overcharge for m in matches) == Decimal("200")

    def test_exact_copy_of_unflagged_item_is_still_exact(self, detector, make_item):
        matches = detector.detect([
            make_item(0, billed_amount="100", service_date=date(2024, 3, 1)),
            make_item(1, billed_amount="300", service_date=date(2024, 3, 3)),
            make_item(2, billed_amount="300", service_date=date(2024, 3, 3)),
        ])

        assert [(m.original_index, m.duplicate_index, m.match_type) for m in matches] == [
            (1, 2, MatchType.EXACT),
        ]

    def test_deterministic(self, detector, make_item):
        items = [
            make_item(0),
            make_item(1),
            make_item(2, billed_amount="520", service_date=date(2024, 3, 4)),
            make_item(3, procedure_code="82465", billed_amount="40"),
            make_item(4, procedure_code="83718", billed_amount="35"),
        ]
        first = [m.to_dict() for m in detector.detect(items)]
        second = [m.to_dict() for m in detector.detect(list(reversed(items)))]
        assert first == second

    def test_disabled_rules_are_skipped(self, make_item):
        detector = DuplicateDetector(thresholds={}, disabled_rules={"D1"})
        matches = detector.detect([make_item(0), make_item(1)])
        # the same pair is still a near duplicate
        assert [m.match_type for m in matches] == [MatchType.NEAR]

    def test_empty_input(self, detector):
        assert detector.detect([]) == []
