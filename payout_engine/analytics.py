"""
Payout Analytics

Summary figures over a job's final results for the insights view.
"""

import math
from decimal import Decimal

from .calculators import quantize_percent
from .models import FinalPayoutResult
from .output import to_money

# (label, lower bound inclusive, upper bound exclusive or None)
PAYOUT_RANGES = [
    ("$0-$10K", Decimal("0"), Decimal("10000")),
    ("$10K-$25K", Decimal("10000"), Decimal("25000")),
    ("$25K-$50K", Decimal("25000"), Decimal("50000")),
    ("$50K-$100K", Decimal("50000"), Decimal("100000")),
    ("$100K+", Decimal("100000"), None),
]

TOP_PERFORMER_COUNT = 5
TOP_PERFORMER_PERCENTILE = 90


def _average(values: list[Decimal]) -> Decimal:
    if not values:
        return Decimal("0")
    return quantize_percent(sum(values, Decimal("0")) / Decimal(len(values)))


def percentile(values: list[Decimal], pct: int) -> Decimal:
    """Nearest-rank percentile."""
    if not values:
        return Decimal("0")
    ordered = sorted(values)
    rank = max(1, math.ceil(pct / 100 * len(ordered)))
    return ordered[rank - 1]


def _range_label(payout: Decimal) -> str:
    for label, low, high in PAYOUT_RANGES:
        if payout >= low and (high is None or payout < high):
            return label
    # Negative payouts (clawbacks) sit in the lowest bucket
    return PAYOUT_RANGES[0][0]


def build_insights(results: list[FinalPayoutResult]) -> dict:
    """
    Build the insights payload:
    - topPerformingReps: highest attainment first
    - territoryEffectiveness: per territory, sorted by average attainment
    - payoutDistribution: count and share per payout range
    - summary: totals plus the 90th percentile attainment
    """
    total = len(results)

    top = sorted(results, key=lambda r: (-r.attainment_percent, r.rep_id))[:TOP_PERFORMER_COUNT]
    top_performing = [
        {
            "repId": r.rep_id,
            "repName": r.rep_name,
            "payoutAmount": to_money(r.final_payout),
            "quotaAttainment": float(r.attainment_percent),
        }
        for r in top
    ]

    by_territory: dict[str, list[FinalPayoutResult]] = {}
    for r in results:
        by_territory.setdefault(r.territory, []).append(r)
    territory_effectiveness = sorted(
        (
            {
                "territory": territory,
                "avgQuotaAttainment": float(_average([r.attainment_percent for r in reps])),
                "totalPayout": to_money(sum((r.final_payout for r in reps), Decimal("0"))),
                "repCount": len(reps),
            }
            for territory, reps in by_territory.items()
        ),
        key=lambda t: (-t["avgQuotaAttainment"], t["territory"]),
    )

    counts = {label: 0 for label, _, _ in PAYOUT_RANGES}
    for r in results:
        counts[_range_label(r.final_payout)] += 1
    payout_distribution = [
        {
            "range": label,
            "count": count,
            "percentage": float(quantize_percent(Decimal(count) / Decimal(total) * 100)) if total else 0.0,
        }
        for label, count in counts.items()
    ]

    attainments = [r.attainment_percent for r in results]
    summary = {
        "totalPayout": to_money(sum((r.final_payout for r in results), Decimal("0"))),
        "avgQuotaAttainment": float(_average(attainments)),
        "totalReps": total,
        "topPerformerThreshold": float(percentile(attainments, TOP_PERFORMER_PERCENTILE)),
    }

    return {
        "topPerformingReps": top_performing,
        "territoryEffectiveness": territory_effectiveness,
        "payoutDistribution": payout_distribution,
        "summary": summary,
    }
