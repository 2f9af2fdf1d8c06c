"""
Unit Tests for Pay Curve Evaluator

Tests verify interpolation, floor and ceiling behavior, caps, accelerated
growth past the last breakpoint and curve validation.
"""

from decimal import Decimal

import pytest

from payout_engine.calculators.curve import PayCurveEvaluator, evaluate
from payout_engine.errors import InvalidCurveError
from payout_engine.models import Breakpoint, PlanConfiguration
from payout_engine.validators import validate_curve


def _curve(*points):
    return [Breakpoint(Decimal(str(perf)), Decimal(str(pay))) for perf, pay in points]


STANDARD = _curve((0, 0), (80, 50), (100, 100), (120, 150), (140, 200))


class TestInterpolation:
    """Test linear interpolation between breakpoints."""

    def test_exact_breakpoint(self):
        assert evaluate(STANDARD, Decimal("100")) == Decimal("100")

    def test_between_breakpoints(self):
        """130% sits halfway between (120,150) and (140,200)."""
        # 150 + 0.5 * (200 - 150) = 175
        assert evaluate(STANDARD, Decimal("130")) == Decimal("175")

    def test_lower_segment(self):
        # 0 + (40 / 80) * 50 = 25
        assert evaluate(STANDARD, Decimal("40")) == Decimal("25")

    def test_accepts_float_attainment(self):
        assert evaluate(STANDARD, 90) == Decimal("75")


class TestBoundaries:
    """Test behavior outside the curve's range."""

    def test_below_first_breakpoint_floors(self):
        """No negative extrapolation below the first point."""
        curve = _curve((50, 25), (100, 100))
        assert evaluate(curve, Decimal("10")) == Decimal("25")

    def test_above_last_breakpoint_holds_last_payout(self):
        assert evaluate(STANDARD, Decimal("180")) == Decimal("200")

    def test_accelerator_continues_growth_past_last_point(self):
        """Past the last point, growth continues at the last slope times the multiplier."""
        curve = _curve((0, 0), (100, 100), (150, 150))
        # Last slope = (150 - 100) / (150 - 100) = 1
        # 150 + (170 - 150) * 1 * 2 = 190
        assert evaluate(curve, Decimal("170"), accelerator=Decimal("2")) == Decimal("190")

    def test_accelerator_ignored_inside_curve(self):
        curve = _curve((0, 0), (100, 100), (150, 150))
        assert evaluate(curve, Decimal("120"), accelerator=Decimal("2")) == Decimal("120")


class TestCap:
    """Test payout-percent ceiling."""

    def test_cap_clamps_interpolated_value(self):
        """Attainment 140 interpolates to 140, then caps to 130."""
        curve = _curve((0, 0), (100, 100), (150, 150))
        assert evaluate(curve, Decimal("140"), cap=Decimal("130")) == Decimal("130")

    def test_cap_above_value_has_no_effect(self):
        curve = _curve((0, 0), (100, 100), (150, 150))
        assert evaluate(curve, Decimal("110"), cap=Decimal("130")) == Decimal("110")

    def test_cap_applies_to_accelerated_growth(self):
        curve = _curve((0, 0), (100, 100), (150, 150))
        # Uncapped would be 190
        assert evaluate(curve, Decimal("170"), cap=Decimal("175"), accelerator=Decimal("2")) == Decimal("175")


class TestMonotonicity:
    """Valid curves never pay less for more attainment."""

    @pytest.mark.parametrize("curve", [
        STANDARD,
        _curve((0, 0), (100, 100)),
        _curve((0, 10), (50, 10), (100, 100), (200, 120)),
    ])
    def test_non_decreasing(self, curve):
        previous = None
        for attainment in range(0, 260, 5):
            value = evaluate(curve, Decimal(attainment))
            if previous is not None:
                assert value >= previous
            previous = value

    def test_non_decreasing_with_accelerator_and_cap(self):
        previous = Decimal("-1")
        for attainment in range(0, 300, 10):
            value = evaluate(STANDARD, Decimal(attainment), cap=Decimal("260"), accelerator=Decimal("1.5"))
            assert value >= previous
            previous = value


class TestCurveValidation:
    """Test InvalidCurveError conditions."""

    def test_single_point_rejected(self):
        with pytest.raises(InvalidCurveError, match="at least 2"):
            evaluate(_curve((0, 0)), Decimal("50"))

    def test_empty_curve_rejected(self):
        with pytest.raises(InvalidCurveError):
            validate_curve([])

    def test_non_increasing_performance_rejected(self):
        with pytest.raises(InvalidCurveError, match="strictly increasing"):
            validate_curve(_curve((0, 0), (100, 100), (100, 120)))

    def test_decreasing_payout_rejected(self):
        with pytest.raises(InvalidCurveError, match="cannot decrease"):
            validate_curve(_curve((0, 0), (100, 100), (120, 90)))

    def test_negative_payout_rejected(self):
        with pytest.raises(InvalidCurveError, match="negative"):
            validate_curve(_curve((0, -10), (100, 100)))

    def test_invalid_curve_is_value_error(self):
        """Existing callers catch ValueError for bad input."""
        with pytest.raises(ValueError):
            validate_curve(_curve((0, 0)))


class TestPlanEvaluation:
    """Test evaluation with a plan's own modifiers."""

    def _make_plan(self, **overrides):
        values = dict(
            plan_id="P1",
            plan_type="GoalAttainment",
            breakpoints=_curve((0, 0), (100, 100), (150, 150)),
            base_commission_rate=Decimal("0.02"),
        )
        values.update(overrides)
        return PlanConfiguration(**values)

    def test_plan_cap_percent_used(self):
        plan = self._make_plan(cap_percent=Decimal("130"))
        assert PayCurveEvaluator().evaluate_for_plan(plan, Decimal("140")) == Decimal("130")

    def test_accelerator_only_when_plan_opts_in(self):
        evaluator = PayCurveEvaluator()
        plan = self._make_plan(
            accelerator_threshold=Decimal("100"), accelerator_multiplier=Decimal("2")
        )
        assert evaluator.evaluate_for_plan(plan, Decimal("170")) == Decimal("150")

        plan.accelerate_beyond_curve = True
        # 150 + 20 * 1 * 2 = 190
        assert evaluator.evaluate_for_plan(plan, Decimal("170")) == Decimal("190")
