"""
Payout Cap Enforcer

Step 6. Clamps the payout to the plan's caps.
"""

from decimal import Decimal

from ..models import ProcessingContext
from .base import StepCalculator, dec, quantize_money


class PayoutCapEnforcer(StepCalculator):
    """Enforces payout caps on the calculated amount."""

    STEP_INDEX = 6
    STEP_NAME = "Cap Application"
    DESCRIPTION = "Apply maximum payout cap"
    RULE = "Payout Cap Rules"
    FORMULA = "MIN(calculatedAmount, payoutCap, targetPay * capPercent / 100)"

    def gather(self, ctx: ProcessingContext) -> dict:
        return {
            "calculatedAmount": ctx.territory_amount,
            "payoutCap": ctx.plan.payout_cap,
            "capPercent": ctx.plan.cap_percent,
            "targetPay": ctx.rep.target_pay,
        }

    @staticmethod
    def effective_cap(inputs: dict) -> Decimal | None:
        """
        Lowest configured cap, or None when uncapped.

        Cap types:
        - payoutCap: absolute amount
        - capPercent: percent of target pay (ignored when target pay is 0)
        """
        caps = []
        payout_cap = dec(inputs.get("payoutCap"))
        if payout_cap is not None:
            caps.append(payout_cap)

        cap_percent = dec(inputs.get("capPercent"))
        target_pay = dec(inputs.get("targetPay")) or Decimal("0")
        if cap_percent is not None and target_pay > 0:
            caps.append(quantize_money(target_pay * cap_percent / Decimal("100")))

        return min(caps) if caps else None

    def compute(self, inputs: dict) -> tuple[Decimal, Decimal]:
        calculated = dec(inputs["calculatedAmount"])
        cap = self.effective_cap(inputs)
        if cap is None:
            return calculated, quantize_money(calculated)
        return calculated, quantize_money(min(calculated, cap))

    def record(self, ctx: ProcessingContext, result: Decimal) -> None:
        ctx.cap_applied = result < ctx.territory_amount
        ctx.capped_amount = result

    def metadata(self, ctx: ProcessingContext, inputs: dict, result: Decimal) -> dict:
        cap = self.effective_cap(inputs)
        return {
            "capApplied": ctx.cap_applied,
            "capThreshold": cap,
            "amountNotPaidDueToCap": ctx.territory_amount - result,
        }
