"""
Base Commission Calculator

Step 3. Commission on actual sales at the plan's base rate.
"""

from decimal import Decimal

from ..models import ProcessingContext
from .base import StepCalculator, dec, quantize_money


class BaseCommissionCalculator(StepCalculator):
    """Calculates base commission on actual sales."""

    STEP_INDEX = 3
    STEP_NAME = "Base Commission"
    DESCRIPTION = "Calculate base commission on actual sales"
    RULE = "Base Commission Rule"
    FORMULA = "actualSales * commissionRate"

    def gather(self, ctx: ProcessingContext) -> dict:
        return {
            "actualSales": ctx.rep.actual_sales,
            "commissionRate": ctx.plan.base_commission_rate,
        }

    def compute(self, inputs: dict) -> tuple[Decimal, Decimal]:
        raw = dec(inputs["actualSales"]) * dec(inputs["commissionRate"])
        return raw, quantize_money(raw)

    def record(self, ctx: ProcessingContext, result: Decimal) -> None:
        ctx.base_commission = result

    def metadata(self, ctx: ProcessingContext, inputs: dict, result: Decimal) -> dict:
        return {"rateType": "Base", "planType": ctx.plan.plan_type}
