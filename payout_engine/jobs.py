"""
Job Store

In-memory store for calculation jobs, their final results, traces and
per-rep errors. Stands in for whatever persistence a deployment plugs in.
"""

import logging
import threading
from decimal import Decimal

from .errors import NotFoundError
from .models import CalculationJob, CalculationTrace, FinalPayoutResult

logger = logging.getLogger(__name__)


class JobStore:
    """Holds jobs and their outputs, keyed by job id."""

    def __init__(self):
        self._lock = threading.Lock()
        self._next_id = 1
        self._jobs: dict[int, CalculationJob] = {}
        self._results: dict[int, list[FinalPayoutResult]] = {}
        self._traces: dict[int, dict[str, CalculationTrace]] = {}

    def create_job(
        self,
        plan_ids: list[str] | None = None,
        period_start: str | None = None,
        period_end: str | None = None,
    ) -> CalculationJob:
        with self._lock:
            job = CalculationJob(
                job_id=self._next_id,
                plan_ids=list(plan_ids or []),
                period_start=period_start,
                period_end=period_end,
            )
            self._jobs[job.job_id] = job
            self._next_id += 1
        logger.info(f"Created calculation job {job.job_id}")
        return job

    def get_job(self, job_id: int) -> CalculationJob:
        job = self._jobs.get(job_id)
        if job is None:
            raise NotFoundError(f"Calculation job not found: {job_id}")
        return job

    def list_jobs(self) -> list[CalculationJob]:
        return sorted(self._jobs.values(), key=lambda j: j.job_id)

    def save_run(self, job: CalculationJob, results: list[FinalPayoutResult], traces: list[CalculationTrace]) -> None:
        """Store the outputs of a finished run."""
        with self._lock:
            self._results[job.job_id] = list(results)
            self._traces[job.job_id] = {t.rep_id: t for t in traces}

    def results(self, job_id: int) -> list[FinalPayoutResult]:
        self.get_job(job_id)
        return list(self._results.get(job_id, []))

    def result_for(self, job_id: int, rep_id: str) -> FinalPayoutResult:
        for result in self.results(job_id):
            if result.rep_id == rep_id:
                return result
        raise NotFoundError(f"No result for rep {rep_id} in job {job_id}")

    def traces(self, job_id: int) -> list[CalculationTrace]:
        self.get_job(job_id)
        return list(self._traces.get(job_id, {}).values())

    def trace(self, job_id: int, rep_id: str) -> CalculationTrace:
        self.get_job(job_id)
        trace = self._traces.get(job_id, {}).get(rep_id)
        if trace is None:
            raise NotFoundError(f"No trace for rep {rep_id} in job {job_id}")
        return trace

    def request_cancel(self, job_id: int) -> CalculationJob:
        """
        Ask a running job to stop. The engine checks the flag between reps,
        so reps already in flight finish. Terminal jobs are left unchanged.
        """
        job = self.get_job(job_id)
        if job.is_terminal:
            return job
        job.cancel_requested = True
        if job.status == "pending":
            job.status = "cancelled"
        logger.info(f"Cancellation requested for job {job_id}")
        return job

    def latest_result_for_rep(self, rep_id: str) -> FinalPayoutResult | None:
        """Most recent completed result for a rep across all jobs."""
        for job_id in sorted(self._results, reverse=True):
            for result in self._results[job_id]:
                if result.rep_id == rep_id:
                    return result
        return None

    @staticmethod
    def patch_result(result: FinalPayoutResult, amount: Decimal) -> FinalPayoutResult:
        """Apply an adjustment to a stored result after the run."""
        result.final_payout += amount
        result.post_hoc_adjustment += amount
        result.any_adjustment = True
        return result
