"""
Calculation Trace Replay

Re-executes each stored step's formula against its recorded inputs and
checks that the chain of step results reaches the stored final payout.
"""

from dataclasses import dataclass, field
from decimal import Decimal

from .calculators import (
    AcceleratorApplicator,
    AttainmentCalculator,
    BaseCommissionCalculator,
    DataValidationStep,
    ManualAdjustmentApplicator,
    PayoutCapEnforcer,
    TerritoryMultiplier,
)
from .models import CalculationStep, CalculationTrace, to_decimal

REPLAYERS = {
    calc.STEP_NAME: calc
    for calc in (
        DataValidationStep(),
        AttainmentCalculator(),
        BaseCommissionCalculator(),
        AcceleratorApplicator(),
        TerritoryMultiplier(),
        PayoutCapEnforcer(),
        ManualAdjustmentApplicator(),
    )
}

# step index -> {input key: index of the step whose result it must equal}
CHAINED_INPUTS = {
    4: {"attainmentPercent": 2, "baseCommission": 3},
    5: {"baseAmount": 4},
    6: {"calculatedAmount": 5},
    7: {"calculatedAmount": 6},
}


@dataclass
class ReplayResult:
    """Outcome of replaying one trace."""

    rep_id: str
    reproduced: bool
    replayed_final: Decimal | None
    mismatches: list[str] = field(default_factory=list)


def replay_step(step: CalculationStep) -> Decimal:
    """Recompute one step's result from its recorded inputs."""
    calculator = REPLAYERS.get(step.step_name)
    if calculator is None:
        raise ValueError(f"No replay rule for step: {step.step_name}")
    _, result = calculator.compute(step.input_data)
    return result


def replay_trace(trace: CalculationTrace, expected_final: Decimal | None = None) -> ReplayResult:
    """
    Replay every step of a trace.

    Checks:
    1. Steps are numbered 1..n in order
    2. Each step's formula reproduces its recorded result
    3. Chained inputs equal the earlier step results they were taken from
    4. The last result equals expected_final, when given
    """
    mismatches = []
    results_by_index = {}
    replayed = None

    for position, step in enumerate(trace.steps, start=1):
        if step.step_index != position:
            mismatches.append(f"Step {step.step_name} recorded as #{step.step_index}, expected #{position}")

        try:
            replayed = replay_step(step)
        except (ValueError, KeyError, ArithmeticError) as e:
            mismatches.append(f"Step {step.step_index} ({step.step_name}) could not be replayed: {e}")
            replayed = None
            continue

        recorded = to_decimal(step.step_result)
        if replayed != recorded:
            mismatches.append(
                f"Step {step.step_index} ({step.step_name}) replayed to {replayed}, recorded {recorded}"
            )
        results_by_index[step.step_index] = recorded

        for key, source_index in CHAINED_INPUTS.get(step.step_index, {}).items():
            if source_index not in results_by_index:
                continue
            carried = to_decimal(step.input_data.get(key))
            if carried != results_by_index[source_index]:
                mismatches.append(
                    f"Step {step.step_index} input {key}={carried} does not match "
                    f"step {source_index} result {results_by_index[source_index]}"
                )

    final = to_decimal(trace.steps[-1].step_result) if trace.steps else None
    if expected_final is not None and final != to_decimal(expected_final):
        mismatches.append(f"Trace final {final} does not match stored payout {expected_final}")

    return ReplayResult(
        rep_id=trace.rep_id,
        reproduced=not mismatches,
        replayed_final=replayed,
        mismatches=mismatches,
    )
