"""
Territory Multiplier

Step 5. Territory and role factors; both default to 1.0.
"""

from decimal import Decimal

from ..models import ProcessingContext
from .base import StepCalculator, dec, quantize_money


class TerritoryMultiplier(StepCalculator):
    """Applies territory-specific (and role-specific) multipliers."""

    STEP_INDEX = 5
    STEP_NAME = "Territory Multiplier"
    DESCRIPTION = "Apply territory-specific multiplier"
    RULE = "Territory Adjustment Rules"
    FORMULA = "baseAmount * territoryMultiplier * roleMultiplier"

    def gather(self, ctx: ProcessingContext) -> dict:
        rep = ctx.rep
        plan = ctx.plan
        role_multiplier = Decimal("1")
        if rep.role is not None:
            role_multiplier = plan.role_multipliers.get(rep.role, Decimal("1"))
        return {
            "territory": rep.territory,
            "role": rep.role,
            "baseAmount": ctx.accelerated_amount,
            "territoryMultiplier": plan.territory_multipliers.get(rep.territory, Decimal("1")),
            "roleMultiplier": role_multiplier,
        }

    def compute(self, inputs: dict) -> tuple[Decimal, Decimal]:
        raw = (
            dec(inputs["baseAmount"])
            * dec(inputs.get("territoryMultiplier", 1))
            * dec(inputs.get("roleMultiplier", 1))
        )
        return raw, quantize_money(raw)

    def record(self, ctx: ProcessingContext, result: Decimal) -> None:
        ctx.territory_amount = result

    def metadata(self, ctx: ProcessingContext, inputs: dict, result: Decimal) -> dict:
        return {
            "territoryConfigured": ctx.rep.territory in ctx.plan.territory_multipliers,
            "roleConfigured": ctx.rep.role in ctx.plan.role_multipliers if ctx.rep.role else False,
        }
