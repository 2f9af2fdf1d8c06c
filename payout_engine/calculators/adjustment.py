"""
Manual Adjustment Applicator

Step 7. Adds approved-and-applied manual adjustments for the rep.
"""

from decimal import Decimal

from ..models import ProcessingContext
from .base import StepCalculator, dec, quantize_money


class ManualAdjustmentApplicator(StepCalculator):
    """Applies manual adjustments or overrides."""

    STEP_INDEX = 7
    STEP_NAME = "Manual Adjustment"
    DESCRIPTION = "Apply any manual adjustments or overrides"
    RULE = "Manual Adjustment Rules"
    FORMULA = "calculatedAmount + adjustmentAmount"

    def gather(self, ctx: ProcessingContext) -> dict:
        adjustments = ctx.adjustments
        reasons = "; ".join(a.reason for a in adjustments) if adjustments else "None"
        return {
            "calculatedAmount": ctx.capped_amount,
            "adjustmentAmount": sum((a.adjustment_amount for a in adjustments), Decimal("0")),
            "adjustmentIds": [a.adjustment_id for a in adjustments],
            "adjustmentReason": reasons,
        }

    def compute(self, inputs: dict) -> tuple[Decimal, Decimal]:
        raw = dec(inputs["calculatedAmount"]) + dec(inputs["adjustmentAmount"])
        return raw, quantize_money(raw)

    def record(self, ctx: ProcessingContext, result: Decimal) -> None:
        ctx.adjustment_total = sum((a.adjustment_amount for a in ctx.adjustments), Decimal("0"))
        ctx.final_payout = result

    def metadata(self, ctx: ProcessingContext, inputs: dict, result: Decimal) -> dict:
        approvers = sorted({a.reviewed_by for a in ctx.adjustments if a.reviewed_by})
        return {
            "hasAdjustment": bool(ctx.adjustments),
            "approvedBy": approvers or None,
        }
