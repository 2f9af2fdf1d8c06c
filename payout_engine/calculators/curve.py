"""
Pay Curve Evaluator

Maps an attainment percentage to a payout percentage by linear
interpolation between ordered breakpoints. Pure and deterministic.
"""

from decimal import Decimal

from ..models import Breakpoint
from ..validators import validate_curve


def _interpolate(lower: Breakpoint, upper: Breakpoint, attainment: Decimal) -> Decimal:
    span = upper.performance_percent - lower.performance_percent
    position = (attainment - lower.performance_percent) / span
    return lower.payout_percent + position * (upper.payout_percent - lower.payout_percent)


def evaluate(
    curve: list[Breakpoint],
    attainment_percent: Decimal,
    cap: Decimal | None = None,
    accelerator: Decimal | None = None,
) -> Decimal:
    """
    Evaluate the pay curve at the given attainment.

    - Below the first breakpoint: the first payout (no negative extrapolation)
    - Between breakpoints: linear interpolation
    - Above the last breakpoint: the last payout, or, when an accelerator
      multiplier is given, continued growth at the last segment's slope
      times the multiplier
    - cap: payout percent ceiling
    """
    validate_curve(curve)
    attainment = Decimal(str(attainment_percent))
    first, last = curve[0], curve[-1]

    if attainment <= first.performance_percent:
        payout = first.payout_percent
    elif attainment >= last.performance_percent:
        payout = last.payout_percent
        if accelerator is not None and attainment > last.performance_percent:
            prev = curve[-2]
            slope = (last.payout_percent - prev.payout_percent) / (
                last.performance_percent - prev.performance_percent
            )
            payout += (attainment - last.performance_percent) * slope * Decimal(str(accelerator))
    else:
        payout = last.payout_percent
        for lower, upper in zip(curve, curve[1:]):
            if lower.performance_percent <= attainment <= upper.performance_percent:
                payout = _interpolate(lower, upper, attainment)
                break

    if cap is not None:
        payout = min(payout, Decimal(str(cap)))

    return payout


class PayCurveEvaluator:
    """Evaluates a plan's pay curve with the plan's own modifiers."""

    def evaluate_for_plan(self, plan, attainment_percent: Decimal) -> Decimal:
        accelerator = plan.accelerator_multiplier if plan.accelerate_beyond_curve else None
        return evaluate(plan.breakpoints, attainment_percent, cap=plan.cap_percent, accelerator=accelerator)
