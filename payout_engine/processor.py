"""
Calculation Engine - Main Orchestrator

Coordinates the per-rep payout pipeline through discrete, testable steps
and keeps the job's counters.
"""

import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Any, Dict, Iterable, Iterator

from .calculators import (
    AcceleratorApplicator,
    AttainmentCalculator,
    BaseCommissionCalculator,
    DataValidationStep,
    ManualAdjustmentApplicator,
    PayCurveEvaluator,
    PayoutCapEnforcer,
    TerritoryMultiplier,
)
from .errors import ValidationError
from .models import (
    CalculationJob,
    CalculationTrace,
    FinalPayoutResult,
    PayoutAdjustment,
    PlanConfiguration,
    ProcessingContext,
    RepError,
    Representative,
    utcnow,
)
from .output import OutputBuilder
from .validators import InputValidator

logger = logging.getLogger(__name__)


@dataclass
class RepOutcome:
    """What one rep's pipeline produced. Exactly one of result/error is set."""

    rep_id: str
    result: FinalPayoutResult | None = None
    trace: CalculationTrace | None = None
    error: RepError | None = None


def adjustment_in_period(adjustment: PayoutAdjustment, job: CalculationJob) -> bool:
    """
    True when the adjustment's period falls inside the job's period.
    Undated adjustments and undated jobs never match. ISO dates compare as strings.
    """
    if adjustment.period is None:
        return False
    if not job.period_start and not job.period_end:
        return False
    if job.period_start and adjustment.period < job.period_start:
        return False
    if job.period_end and adjustment.period > job.period_end:
        return False
    return True


class CalculationEngine:
    """
    Main orchestrator for payout calculation.

    Implements a fixed pipeline per representative:
    1. Data Validation
    2. Quota Attainment
    3. Base Commission
    4. Accelerator Application
    5. Territory Multiplier
    6. Cap Application
    7. Manual Adjustment

    Each step appends one CalculationStep to the rep's trace. A rep that
    fails validation keeps its partial trace and is left out of the results.
    """

    def __init__(self, max_workers: int = 1):
        self.max_workers = max(1, max_workers)
        self.validator = InputValidator()
        self.curve_evaluator = PayCurveEvaluator()
        self.validation_step = DataValidationStep()
        self.pipeline = [
            AttainmentCalculator(self.curve_evaluator),
            BaseCommissionCalculator(),
            AcceleratorApplicator(),
            TerritoryMultiplier(),
            PayoutCapEnforcer(),
            ManualAdjustmentApplicator(),
        ]
        self.output_builder = OutputBuilder()

    def run_job(
        self,
        job: CalculationJob,
        reps: list[Representative],
        plans: list[PlanConfiguration],
        adjustments: Iterable[PayoutAdjustment] = (),
    ) -> tuple[list[FinalPayoutResult], list[CalculationTrace]]:
        """
        Run every rep through the pipeline and update the job as we go.

        Returns (results, traces) in input order. Traces include the partial
        traces of reps that failed validation.
        """
        plan_map = {p.plan_id: p for p in plans}
        if job.plan_ids:
            # The job's plan ids bound which of the supplied plans are used
            plan_map = {plan_id: plan for plan_id, plan in plan_map.items() if plan_id in job.plan_ids}
        else:
            job.plan_ids = list(plan_map)

        job.status = "running"
        job.started_at = utcnow()
        job.total_records = len(reps)
        job.processed_records = 0
        job.error_count = 0
        job.errors = []
        logger.info(f"Starting calculation job {job.job_id}: {len(reps)} reps, {len(plan_map)} plans")

        try:
            plan_errors = self._validate_plans(plan_map)
            assignments = [(rep, self._resolve_plan(rep, plan_map)) for rep in reps]

            usable = [plan for _, plan in assignments if plan is not None and plan.plan_id not in plan_errors]
            if reps and not usable:
                reasons = "; ".join(plan_errors.values()) or "no plan matches any representative"
                self._finish(job, "failed", failure_reason=f"No representative has a usable plan: {reasons}")
                return [], []

            applied = [a for a in adjustments if a.status == "applied" and adjustment_in_period(a, job)]

            results, traces = [], []
            for outcome in self._outcomes(job, assignments, plan_errors, applied):
                # Counters are only touched here, on the calling thread
                job.processed_records += 1
                if outcome.trace is not None:
                    traces.append(outcome.trace)
                if outcome.error is not None:
                    job.error_count += 1
                    job.errors.append(outcome.error)
                    logger.warning(
                        f"Job {job.job_id}: rep {outcome.rep_id} failed ({outcome.error.error_type}): "
                        f"{outcome.error.message}"
                    )
                else:
                    results.append(outcome.result)

        except Exception as e:
            logger.error(f"Calculation job {job.job_id} failed: {e}", exc_info=True)
            self._finish(job, "failed", failure_reason=str(e))
            raise

        if job.cancel_requested and job.processed_records < job.total_records:
            self._finish(job, "cancelled")
        else:
            self._finish(job, "completed")
        return results, traces

    def run_from_dict(
        self, job: CalculationJob, data: Dict[str, Any], adjustments: Iterable[PayoutAdjustment] = ()
    ):
        """
        Run a job from raw dictionary input.

        Convenience method for API usage.
        """
        try:
            reps = [Representative.from_dict(r) for r in data.get("representatives", [])]
            plans = [PlanConfiguration.from_dict(p) for p in data.get("plans", [])]
        except (KeyError, TypeError, ArithmeticError) as e:
            self._finish(job, "failed", failure_reason=f"Malformed calculation input: {e}")
            raise ValidationError(f"Malformed calculation input: {e}") from e
        return self.run_job(job, reps, plans, adjustments)

    def calculate_rep(
        self,
        rep: Representative,
        plan: PlanConfiguration,
        adjustments: Iterable[PayoutAdjustment] = (),
        job_id: int | None = None,
    ) -> RepOutcome:
        """Run a single rep through all seven steps."""
        ctx = ProcessingContext(
            rep=rep,
            plan=plan,
            adjustments=tuple(a for a in adjustments if a.rep_id == rep.rep_id),
            job_id=job_id,
        )
        trace = CalculationTrace(
            job_id=job_id, rep_id=rep.rep_id, rep_name=rep.name, plan_id=plan.plan_id, steps=ctx.steps
        )

        try:
            # Step 1: Validate
            self.validation_step.run(ctx)
            if not ctx.is_valid:
                return RepOutcome(
                    rep_id=rep.rep_id,
                    trace=trace,
                    error=RepError(rep.rep_id, "validation", "; ".join(ctx.validation_errors)),
                )

            # Steps 2-7
            for calculator in self.pipeline:
                calculator.run(ctx)
        except ArithmeticError as e:
            return RepOutcome(
                rep_id=rep.rep_id,
                trace=trace,
                error=RepError(rep.rep_id, "calculation", f"{type(e).__name__}: {e}"),
            )

        return RepOutcome(rep_id=rep.rep_id, result=self.output_builder.build(ctx), trace=trace)

    # -------------------------------------------------------------------------
    # Internals
    # -------------------------------------------------------------------------

    def _validate_plans(self, plan_map: dict[str, PlanConfiguration]) -> dict[str, str]:
        """Validate each plan once. A bad plan fails only the reps under it."""
        errors = {}
        for plan_id, plan in plan_map.items():
            try:
                self.validator.validate_plan(plan)
            except ValidationError as e:
                logger.warning(f"Plan {plan_id} rejected: {e}")
                errors[plan_id] = f"Plan {plan_id}: {e}"
        return errors

    @staticmethod
    def _resolve_plan(rep: Representative, plan_map: dict[str, PlanConfiguration]) -> PlanConfiguration | None:
        if rep.plan_id is not None:
            return plan_map.get(rep.plan_id)
        if len(plan_map) == 1:
            return next(iter(plan_map.values()))
        return None

    def _process(
        self,
        job: CalculationJob,
        rep: Representative,
        plan: PlanConfiguration | None,
        plan_errors: dict[str, str],
        adjustments: list[PayoutAdjustment],
    ) -> RepOutcome:
        if plan is None:
            wanted = rep.plan_id or "(none)"
            return RepOutcome(
                rep_id=rep.rep_id,
                error=RepError(rep.rep_id, "missing_plan", f"No plan configuration for plan id {wanted}"),
            )
        if plan.plan_id in plan_errors:
            return RepOutcome(
                rep_id=rep.rep_id, error=RepError(rep.rep_id, "invalid_plan", plan_errors[plan.plan_id])
            )
        return self.calculate_rep(rep, plan, adjustments, job_id=job.job_id)

    def _outcomes(self, job, assignments, plan_errors, adjustments) -> Iterator[RepOutcome]:
        """
        Yield one outcome per rep, in input order. Cancellation is checked
        before each rep starts; reps already running are allowed to finish.
        """
        if self.max_workers == 1:
            for rep, plan in assignments:
                if job.cancel_requested:
                    logger.info(f"Job {job.job_id} cancelled after {job.processed_records} reps")
                    return
                yield self._process(job, rep, plan, plan_errors, adjustments)
            return

        def guarded(rep, plan):
            if job.cancel_requested:
                return None
            return self._process(job, rep, plan, plan_errors, adjustments)

        with ThreadPoolExecutor(max_workers=self.max_workers) as pool:
            futures = [pool.submit(guarded, rep, plan) for rep, plan in assignments]
            for index, future in enumerate(futures):
                outcome = future.result()
                if outcome is None:
                    for pending in futures[index + 1:]:
                        pending.cancel()
                    logger.info(f"Job {job.job_id} cancelled after {job.processed_records} reps")
                    return
                yield outcome

    @staticmethod
    def _finish(job: CalculationJob, status: str, failure_reason: str | None = None) -> None:
        job.status = status
        job.failure_reason = failure_reason
        job.completed_at = utcnow()
        logger.info(
            f"Calculation job {job.job_id} {status}: "
            f"{job.processed_records}/{job.total_records} processed, {job.error_count} errors"
        )
