"""
Tests for Payout Analytics
"""

from decimal import Decimal

from payout_engine.analytics import build_insights, percentile
from payout_engine.models import FinalPayoutResult


def _result(rep_id, territory, attainment, payout):
    return FinalPayoutResult(
        rep_id=rep_id,
        rep_name=f"Rep {rep_id}",
        region=territory,
        quota=Decimal("100000"),
        actual_sales=Decimal(str(attainment * 1000)),
        attainment_percent=Decimal(str(attainment)),
        payout_curve_type="GoalAttainment",
        curve_payout_percent=Decimal(str(attainment)),
        final_payout=Decimal(str(payout)),
        percent_of_target_pay=Decimal("0"),
    )


RESULTS = [
    _result("R1", "West", 130, 21450),
    _result("R2", "West", 90, 8000),
    _result("R3", "East", 110, 30000),
    _result("R4", "East", 70, 4000),
    _result("R5", "South", 150, 120000),
    _result("R6", "South", 100, 55000),
]


class TestInsights:
    """Shape and figures of the insights payload."""

    def test_summary(self):
        summary = build_insights(RESULTS)["summary"]

        # 21450 + 8000 + 30000 + 4000 + 120000 + 55000 = 238450
        assert summary["totalPayout"] == 238450.0
        # (130 + 90 + 110 + 70 + 150 + 100) / 6 = 108.33
        assert summary["avgQuotaAttainment"] == 108.33
        assert summary["totalReps"] == 6
        # Nearest rank: ceil(0.9 * 6) = 6th of sorted -> 150
        assert summary["topPerformerThreshold"] == 150.0

    def test_top_performers_ordered_by_attainment(self):
        top = build_insights(RESULTS)["topPerformingReps"]

        assert [r["repId"] for r in top] == ["R5", "R1", "R3", "R6", "R2"]
        assert top[0] == {"repId": "R5", "repName": "Rep R5", "payoutAmount": 120000.0, "quotaAttainment": 150.0}

    def test_territory_effectiveness(self):
        territories = build_insights(RESULTS)["territoryEffectiveness"]

        assert [t["territory"] for t in territories] == ["South", "West", "East"]
        west = territories[1]
        assert west == {"territory": "West", "avgQuotaAttainment": 110.0, "totalPayout": 29450.0, "repCount": 2}

    def test_payout_distribution(self):
        distribution = {d["range"]: d for d in build_insights(RESULTS)["payoutDistribution"]}

        assert distribution["$0-$10K"]["count"] == 2
        assert distribution["$10K-$25K"]["count"] == 1
        assert distribution["$25K-$50K"]["count"] == 1
        assert distribution["$50K-$100K"]["count"] == 1
        assert distribution["$100K+"]["count"] == 1
        # 2 / 6 = 33.33%
        assert distribution["$0-$10K"]["percentage"] == 33.33

    def test_empty_results(self):
        insights = build_insights([])

        assert insights["summary"]["totalReps"] == 0
        assert insights["topPerformingReps"] == []
        assert all(d["percentage"] == 0.0 for d in insights["payoutDistribution"])


class TestPercentile:

    def test_nearest_rank(self):
        values = [Decimal(v) for v in ("10", "20", "30", "40")]
        assert percentile(values, 50) == Decimal("20")
        assert percentile(values, 90) == Decimal("40")

    def test_empty(self):
        assert percentile([], 90) == Decimal("0")
