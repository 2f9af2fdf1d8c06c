"""
Quota Attainment Step

Step 2. Also evaluates the plan's pay curve at the attainment so the
result can report where the rep sits on the curve.
"""

from decimal import Decimal

from ..models import ProcessingContext
from .base import StepCalculator, dec, quantize_percent
from .curve import PayCurveEvaluator


def attainment_tier(attainment: Decimal) -> str:
    if attainment >= 120:
        return "Excellent"
    if attainment >= 100:
        return "On Target"
    if attainment >= 80:
        return "Developing"
    return "Below Threshold"


class AttainmentCalculator(StepCalculator):
    """Calculates percentage of quota achieved."""

    STEP_INDEX = 2
    STEP_NAME = "Quota Attainment"
    DESCRIPTION = "Calculate percentage of quota achieved"
    RULE = "Quota Attainment Formula"
    FORMULA = "(actualSales / quota) * 100"

    def __init__(self, curve_evaluator: PayCurveEvaluator | None = None):
        self.curve_evaluator = curve_evaluator or PayCurveEvaluator()

    def gather(self, ctx: ProcessingContext) -> dict:
        return {"actualSales": ctx.rep.actual_sales, "quota": ctx.rep.quota}

    def compute(self, inputs: dict) -> tuple[Decimal, Decimal]:
        raw = dec(inputs["actualSales"]) / dec(inputs["quota"]) * Decimal("100")
        return raw, quantize_percent(raw)

    def record(self, ctx: ProcessingContext, result: Decimal) -> None:
        ctx.attainment_percent = result
        ctx.curve_payout_percent = quantize_percent(
            self.curve_evaluator.evaluate_for_plan(ctx.plan, result)
        )

    def metadata(self, ctx: ProcessingContext, inputs: dict, result: Decimal) -> dict:
        return {
            "attainmentTier": attainment_tier(result),
            "curvePayoutPercent": ctx.curve_payout_percent,
            "payoutCurveType": ctx.plan.plan_type,
        }
