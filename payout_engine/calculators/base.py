"""
Step Calculator Base

Every pipeline stage snapshots its inputs, computes from that snapshot only,
and records one CalculationStep. Because compute() reads nothing but the
snapshot, a stored step can be replayed later.
"""

from decimal import ROUND_HALF_UP, Decimal

from ..models import CalculationStep, ProcessingContext, to_decimal


def quantize_money(value: Decimal) -> Decimal:
    """Round to 2 decimal places using ROUND_HALF_UP."""
    return value.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)


def quantize_percent(value: Decimal) -> Decimal:
    """Percentages are kept to 2 decimal places as well."""
    return value.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)


def dec(value) -> Decimal | None:
    """Inputs may come back from storage as floats or strings."""
    return to_decimal(value)


class StepCalculator:
    """One stage of the per-rep payout pipeline."""

    STEP_INDEX = 0
    STEP_NAME = ""
    DESCRIPTION = ""
    RULE = ""
    FORMULA = ""

    def gather(self, ctx: ProcessingContext) -> dict:
        """Snapshot the values this step consumes."""
        raise NotImplementedError

    def compute(self, inputs: dict) -> tuple[Decimal, Decimal]:
        """Return (intermediate_result, step_result) from the snapshot alone."""
        raise NotImplementedError

    def record(self, ctx: ProcessingContext, result: Decimal) -> None:
        """Write the step result back into the context."""
        raise NotImplementedError

    def metadata(self, ctx: ProcessingContext, inputs: dict, result: Decimal) -> dict:
        return {}

    def formula_text(self, inputs: dict) -> str:
        return self.FORMULA

    def run(self, ctx: ProcessingContext) -> CalculationStep:
        inputs = self.gather(ctx)
        intermediate, result = self.compute(inputs)
        self.record(ctx, result)
        step = CalculationStep(
            step_index=self.STEP_INDEX,
            step_name=self.STEP_NAME,
            description=self.DESCRIPTION,
            input_data=inputs,
            rule_applied=self.RULE,
            formula=self.formula_text(inputs),
            intermediate_result=intermediate,
            step_result=result,
            metadata=self.metadata(ctx, inputs, result),
        )
        ctx.steps.append(step)
        return step
