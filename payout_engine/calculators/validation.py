"""
Data Validation Step

Step 1. A failed rep is recorded and skipped; the rest of the job continues.
"""

from decimal import Decimal

from ..models import ProcessingContext
from ..validators import representative_problems
from .base import StepCalculator, dec


class DataValidationStep(StepCalculator):
    """Checks the rep's quota, sales and target pay before anything is computed."""

    STEP_INDEX = 1
    STEP_NAME = "Data Validation"
    DESCRIPTION = "Validate input sales data and quota information"
    RULE = "Data Validation Rules"
    FORMULA = "IF(quota > 0 AND actualSales >= 0 AND targetPay >= 0, VALID, INVALID)"

    def gather(self, ctx: ProcessingContext) -> dict:
        rep = ctx.rep
        return {
            "quota": rep.quota,
            "actualSales": rep.actual_sales,
            "targetPay": rep.target_pay,
            "territory": rep.territory,
        }

    def compute(self, inputs: dict) -> tuple[Decimal, Decimal]:
        problems = representative_problems(
            dec(inputs["quota"]), dec(inputs["actualSales"]), dec(inputs["targetPay"])
        )
        result = Decimal("0") if problems else Decimal("1")
        return result, result

    def record(self, ctx: ProcessingContext, result: Decimal) -> None:
        rep = ctx.rep
        ctx.is_valid = result == 1
        ctx.validation_errors = representative_problems(rep.quota, rep.actual_sales, rep.target_pay)

    def metadata(self, ctx: ProcessingContext, inputs: dict, result: Decimal) -> dict:
        return {
            "validationStatus": "PASSED" if ctx.is_valid else "FAILED",
            "errors": list(ctx.validation_errors),
        }
