"""Tests for the rate reasonableness classifier and aggregator."""

from decimal import Decimal

import pytest

from app.billing.models import Assessment
from app.billing.reasonableness import (
    DEFAULT_REASONABLENESS_POLICY,
    RateReasonablenessClassifier,
    ReasonablenessAggregator,
)


@pytest.fixture(scope="module")
def classifier() -> RateReasonablenessClassifier:
    return RateReasonablenessClassifier()


class TestClassifier:
    def test_office_visit_billed_500_is_excessive(self, classifier, make_item):
        row = classifier.classify(make_item(0, procedure_code="99213", billed_amount="500"))

        assert row.benchmark_rate == Decimal("90")
        assert row.reasonable_rate == Decimal("180")
        assert row.assessment == Assessment.EXCESSIVE
        assert row.overcharge_amount == Decimal("320")
        assert row.overcharge_percentage == 178
        assert row.variance_pct == pytest.approx(455.5556, abs=1e-3)
        assert row.rate_source == "fee_schedule"

    def test_unlisted_code_uses_default_benchmark(self, classifier, make_item):
        row = classifier.classify(make_item(0, procedure_code="00000", billed_amount="150"))
        assert row.benchmark_rate == Decimal("100")
        assert row.reasonable_rate == Decimal("200")
        assert row.rate_source == "default"

    def test_uncoded_item_is_skipped(self, classifier, make_item):
        assert classifier.classify(make_item(0, procedure_code=None)) is None

    @pytest.mark.parametrize("billed,assessment,overcharge,pct", [
        ("45", Assessment.REASONABLE, "0", 0),
        ("180", Assessment.REASONABLE, "0", 0),
        ("180.01", Assessment.HIGH, "0.01", 0),
        ("270", Assessment.HIGH, "90", 50),
        ("270.01", Assessment.EXCESSIVE, "90.01", 50),
    ])
    def test_assessment_boundaries(self, classifier, make_item, billed, assessment, overcharge, pct):
        row = classifier.classify(make_item(0, procedure_code="99213", billed_amount=billed))
        assert row.assessment == assessment
        assert row.overcharge_amount == Decimal(overcharge)
        assert row.overcharge_percentage == pct

    def test_reasonable_rate_is_twice_benchmark(self, classifier, make_item):
        for i, code in enumerate(["99213", "72148", "12001", "J1234", "80053", "97750"]):
            row = classifier.classify(make_item(i, procedure_code=code, billed_amount="1000"))
            assert row.reasonable_rate == row.benchmark_rate * 2

    def test_below_benchmark_has_negative_variance(self, classifier, make_item):
        row = classifier.classify(make_item(0, procedure_code="99213", billed_amount="45"))
        assert row.variance_pct == pytest.approx(-50.0)
        assert row.variance_amount == Decimal("-45")

    def test_policy_override(self, make_item):
        classifier = RateReasonablenessClassifier(policy={"commercial_multiplier": Decimal("3.0")})
        row = classifier.classify(make_item(0, procedure_code="99213", billed_amount="260"))
        assert row.reasonable_rate == Decimal("270")
        assert row.assessment == Assessment.REASONABLE
        assert DEFAULT_REASONABLENESS_POLICY["commercial_multiplier"] == Decimal("2.0")

    def test_row_to_dict_rounds_for_display(self, classifier, make_item):
        data = classifier.classify(make_item(0, procedure_code="99213", billed_amount="500")).to_dict()
        assert data["variance_pct"] == 455.6
        assert data["billed_amount"] == 500.0
        assert data["assessment"] == "excessive"


# Billed amounts for 99213 (benchmark 90) giving variances
# [-10, 0, 5, 10, 15, 20, 25, 110, 160, 300]
TEN_BILLED = ["81", "90", "94.5", "99", "103.5", "108", "112.5", "189", "234", "360"]


class TestAggregator:
    def _rows(self, classifier, make_item, amounts):
        items = [make_item(i, procedure_code="99213", billed_amount=a) for i, a in enumerate(amounts)]
        return classifier.classify_all(items)

    def test_even_count_median(self, classifier, make_item):
        summary = ReasonablenessAggregator().summarize(self._rows(classifier, make_item, TEN_BILLED))
        assert summary.median_variance == 17.5
        assert summary.average_variance == 63.5

    def test_odd_count_median(self, classifier, make_item):
        summary = ReasonablenessAggregator().summarize(self._rows(classifier, make_item, TEN_BILLED[:9]))
        assert summary.median_variance == 15.0

    def test_totals_and_partition(self, classifier, make_item):
        rows = self._rows(classifier, make_item, TEN_BILLED)
        summary = ReasonablenessAggregator().summarize(rows)

        assert summary.total_billed == Decimal("1471.50")
        assert summary.total_benchmark == Decimal("900.00")
        assert summary.overall_variance_pct == 63.5
        assert (summary.reasonable_count, summary.high_count, summary.excessive_count) == (7, 2, 1)
        assert summary.reasonable_count + summary.high_count + summary.excessive_count == len(rows)

    def test_reasonable_rows_never_carry_overcharge(self, classifier, make_item):
        for row in self._rows(classifier, make_item, TEN_BILLED):
            if row.assessment == Assessment.REASONABLE:
                assert row.overcharge_amount == 0

    def test_empty_rows(self):
        summary = ReasonablenessAggregator().summarize([])
        assert summary.to_dict() == {
            "total_billed": 0.0,
            "total_benchmark": 0.0,
            "overall_variance_pct": 0.0,
            "reasonable_count": 0,
            "high_count": 0,
            "excessive_count": 0,
            "average_variance": 0.0,
            "median_variance": 0.0,
        }
