"""
Accelerator Applicator

Step 4. Scales base commission once attainment crosses a threshold.
"""

from decimal import Decimal

from ..models import ProcessingContext
from .base import StepCalculator, dec, quantize_money


def _fmt_pct(value) -> str:
    return f"{dec(value).normalize():f}%"


class AcceleratorApplicator(StepCalculator):
    """Applies accelerator or decelerator factors to base commission."""

    STEP_INDEX = 4
    STEP_NAME = "Accelerator Application"
    DESCRIPTION = "Apply accelerator for quota overachievement or decelerator for underachievement"
    RULE = "Accelerator Rules"
    FORMULA = "baseCommission * 1"

    def gather(self, ctx: ProcessingContext) -> dict:
        plan = ctx.plan
        return {
            "attainmentPercent": ctx.attainment_percent,
            "baseCommission": ctx.base_commission,
            "acceleratorThreshold": plan.accelerator_threshold,
            "acceleratorMultiplier": plan.accelerator_multiplier,
            "deceleratorThreshold": plan.decelerator_threshold,
            "deceleratorMultiplier": plan.decelerator_multiplier,
        }

    @staticmethod
    def factor(inputs: dict) -> Decimal:
        """
        Determine the multiplier for this attainment.

        Priority order:
        1. Accelerator, when attainment is above its threshold
        2. Decelerator, when attainment is below its threshold
        3. No change
        """
        attainment = dec(inputs["attainmentPercent"])
        accel_threshold = dec(inputs.get("acceleratorThreshold"))
        accel_multiplier = dec(inputs.get("acceleratorMultiplier"))
        decel_threshold = dec(inputs.get("deceleratorThreshold"))
        decel_multiplier = dec(inputs.get("deceleratorMultiplier"))

        if accel_threshold is not None and accel_multiplier is not None and attainment > accel_threshold:
            return accel_multiplier
        if decel_threshold is not None and decel_multiplier is not None and attainment < decel_threshold:
            return decel_multiplier
        return Decimal("1")

    def compute(self, inputs: dict) -> tuple[Decimal, Decimal]:
        raw = dec(inputs["baseCommission"]) * self.factor(inputs)
        return raw, quantize_money(raw)

    def record(self, ctx: ProcessingContext, result: Decimal) -> None:
        ctx.accelerated_amount = result

    def formula_text(self, inputs: dict) -> str:
        clauses = []
        if inputs.get("acceleratorThreshold") is not None and inputs.get("acceleratorMultiplier") is not None:
            clauses.append(
                f"IF(attainment > {_fmt_pct(inputs['acceleratorThreshold'])}, "
                f"baseCommission * {dec(inputs['acceleratorMultiplier']).normalize():f}"
            )
        if inputs.get("deceleratorThreshold") is not None and inputs.get("deceleratorMultiplier") is not None:
            clauses.append(
                f"IF(attainment < {_fmt_pct(inputs['deceleratorThreshold'])}, "
                f"baseCommission * {dec(inputs['deceleratorMultiplier']).normalize():f}"
            )
        if not clauses:
            return "baseCommission * 1"
        return ", ".join(clauses) + ", baseCommission" + ")" * len(clauses)

    def metadata(self, ctx: ProcessingContext, inputs: dict, result: Decimal) -> dict:
        factor = self.factor(inputs)
        return {
            "appliedFactor": factor,
            "qualifiedForAccelerator": factor > 1,
            "deceleratorApplied": factor < 1,
        }
