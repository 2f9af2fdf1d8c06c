"""
Input Validation for the IC Payout Engine

Validates plans before a run starts and representatives as the first
pipeline step. Plan problems raise; rep problems are reported as a list
so the engine can record them against the rep and carry on.
"""

from decimal import Decimal

from .errors import InvalidCurveError, ValidationError
from .models import PLAN_TYPES, Breakpoint, PlanConfiguration, Representative


def representative_problems(quota: Decimal, actual_sales: Decimal, target_pay: Decimal) -> list[str]:
    """Return human-readable reasons the rep cannot be calculated (empty = valid)."""
    problems = []
    # NaN and Infinity are rejected before any ordering comparison
    if quota is None or not quota.is_finite() or quota <= 0:
        problems.append(f"quota must be positive, got: {quota}")
    if actual_sales is None or not actual_sales.is_finite() or actual_sales < 0:
        problems.append(f"actual_sales cannot be negative, got: {actual_sales}")
    if target_pay is not None and (not target_pay.is_finite() or target_pay < 0):
        problems.append(f"target_pay cannot be negative, got: {target_pay}")
    return problems


def validate_curve(curve: list[Breakpoint]) -> None:
    """
    Raise InvalidCurveError unless the curve can be evaluated.

    A valid curve has at least two points, strictly increasing performance
    percents, and non-negative, non-decreasing payout percents.
    """
    if curve is None or len(curve) < 2:
        count = 0 if curve is None else len(curve)
        raise InvalidCurveError(f"Pay curve needs at least 2 breakpoints, got: {count}")

    for i, point in enumerate(curve):
        if not (point.performance_percent.is_finite() and point.payout_percent.is_finite()):
            raise InvalidCurveError(f"Breakpoint {i} must be a finite number pair")
        if point.payout_percent < 0:
            raise InvalidCurveError(f"Breakpoint {i} payout percent cannot be negative, got: {point.payout_percent}")
        if i == 0:
            continue
        prev = curve[i - 1]
        if point.performance_percent <= prev.performance_percent:
            raise InvalidCurveError(
                f"Breakpoint performance percents must be strictly increasing: "
                f"{prev.performance_percent} then {point.performance_percent}"
            )
        if point.payout_percent < prev.payout_percent:
            raise InvalidCurveError(
                f"Breakpoint payout percents cannot decrease: "
                f"{prev.payout_percent} then {point.payout_percent}"
            )


class InputValidator:
    """Validates plan and rep input according to business rules."""

    def validate_plan(self, plan: PlanConfiguration) -> None:
        """
        Run all plan validations. Raises InvalidCurveError for a bad curve,
        ValidationError for any other constraint violation.
        """
        validate_curve(plan.breakpoints)
        self._validate_plan_type(plan)
        self._validate_finite(plan)
        self._validate_rates(plan)
        self._validate_modifiers(plan)

    def validate_representative(self, rep: Representative) -> None:
        """Raise ValidationError if the rep cannot be calculated."""
        problems = representative_problems(rep.quota, rep.actual_sales, rep.target_pay)
        if problems:
            raise ValidationError(f"Representative {rep.rep_id}: " + "; ".join(problems))

    def _validate_plan_type(self, plan: PlanConfiguration) -> None:
        if plan.plan_type not in PLAN_TYPES:
            raise ValidationError(
                f"Invalid plan_type: {plan.plan_type}. Must be one of: {', '.join(PLAN_TYPES)}"
            )

    def _validate_finite(self, plan: PlanConfiguration) -> None:
        fields = {
            "base_commission_rate": plan.base_commission_rate,
            "cap_percent": plan.cap_percent,
            "payout_cap": plan.payout_cap,
            "accelerator_threshold": plan.accelerator_threshold,
            "accelerator_multiplier": plan.accelerator_multiplier,
            "decelerator_threshold": plan.decelerator_threshold,
            "decelerator_multiplier": plan.decelerator_multiplier,
        }
        for kind, factors in (("territory", plan.territory_multipliers), ("role", plan.role_multipliers)):
            fields.update({f"{kind} multiplier {key}": factor for key, factor in factors.items()})
        for name, value in fields.items():
            if value is not None and not value.is_finite():
                raise ValidationError(f"{name} must be a finite number, got: {value}")

    def _validate_rates(self, plan: PlanConfiguration) -> None:
        if not (0 <= plan.base_commission_rate <= 1):
            raise ValidationError(
                f"base_commission_rate must be between 0 and 1, got: {plan.base_commission_rate}"
            )

        if plan.cap_percent is not None and plan.cap_percent < 0:
            raise ValidationError(f"cap_percent cannot be negative, got: {plan.cap_percent}")

        if plan.payout_cap is not None and plan.payout_cap < 0:
            raise ValidationError(f"payout_cap cannot be negative, got: {plan.payout_cap}")

    def _validate_modifiers(self, plan: PlanConfiguration) -> None:
        pairs = [
            ("accelerator", plan.accelerator_threshold, plan.accelerator_multiplier),
            ("decelerator", plan.decelerator_threshold, plan.decelerator_multiplier),
        ]
        for label, threshold, multiplier in pairs:
            if (threshold is None) != (multiplier is None):
                raise ValidationError(f"{label}_threshold and {label}_multiplier must be set together")
            if multiplier is not None and multiplier < 0:
                raise ValidationError(f"{label}_multiplier cannot be negative, got: {multiplier}")

        if plan.accelerate_beyond_curve and plan.accelerator_multiplier is None:
            raise ValidationError("accelerate_beyond_curve requires an accelerator_multiplier")

        for label, factors in (("territory", plan.territory_multipliers), ("role", plan.role_multipliers)):
            for key, factor in factors.items():
                if factor is None or factor < 0:
                    raise ValidationError(f"{label} multiplier for '{key}' cannot be negative, got: {factor}")
