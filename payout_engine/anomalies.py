"""
Anomaly Detector

Scores final payouts against a historical baseline and flags the ones worth
a human look. Detection is advisory: results are never changed here.
"""

import logging
import threading
from dataclasses import replace
from decimal import Decimal
from typing import Iterable

from .calculators import quantize_money, quantize_percent
from .config import AnomalyThresholds
from .errors import InvalidTransitionError, NotFoundError, ValidationError
from .models import (
    ANOMALY_STATUSES,
    AnomalyRecord,
    CalculationTrace,
    FinalPayoutResult,
    HistoricalBaseline,
    utcnow,
)
from .trace import replay_trace

logger = logging.getLogger(__name__)

# Highest priority first; the first signal present names the record
TYPE_PRIORITY = ("calculation_error", "payout_spike", "payout_drop", "territory_outlier", "quota_mismatch")

ROOT_CAUSES = {
    "payout_spike": (
        "Payout of {current} is {pct}% above the expected {expected}. "
        "Check for unusually large closed deals, accelerator activation or duplicate sales records."
    ),
    "payout_drop": (
        "Payout of {current} is {pct}% below the expected {expected}. "
        "Check for missing sales records, a lowered commission rate or a cap that now binds."
    ),
    "quota_mismatch": (
        "Attainment of {attainment}% does not match the direction of the payout change ({pct}%). "
        "The quota or the pay curve may be misconfigured for this rep."
    ),
    "territory_outlier": (
        "Payout of {current} is more than {std_devs} standard deviations from the "
        "{territory} territory mean of {mean}."
    ),
    "calculation_error": (
        "Replaying the calculation trace did not reproduce the stored payout of {current}. "
        "The stored result or trace may have been altered after the run."
    ),
}

RECOMMENDED_ACTIONS = {
    "payout_spike": [
        "Verify the rep's closed deals for the period",
        "Confirm accelerator thresholds in the plan configuration",
        "Review any manual adjustments applied to this rep",
    ],
    "payout_drop": [
        "Check that all of the rep's sales records were imported",
        "Compare the plan version used against the previous period",
        "Confirm whether a payout cap was applied",
    ],
    "quota_mismatch": [
        "Confirm the rep's quota for the period",
        "Review the pay curve breakpoints around 100% attainment",
    ],
    "territory_outlier": [
        "Compare the rep's payout with territory peers",
        "Confirm the territory multiplier in the plan configuration",
    ],
    "calculation_error": [
        "Re-run the calculation job for this rep",
        "Compare the stored trace with the stored final payout",
        "Escalate to the compensation operations team before paying out",
    ],
}

# current status -> statuses a reviewer may move to
REVIEW_TRANSITIONS = {
    "pending": ("reviewed", "resolved", "false_positive"),
    "reviewed": ("resolved", "false_positive"),
}


def _fmt(value) -> str:
    return f"${value:,.2f}"


def _population_stats(values: list[Decimal]) -> tuple[Decimal, Decimal]:
    n = Decimal(len(values))
    mean = sum(values, Decimal("0")) / n
    variance = sum(((v - mean) ** 2 for v in values), Decimal("0")) / n
    return mean, variance.sqrt()


class AnomalyDetector:
    """
    Flags payouts that deviate from their expected value.

    Signals:
    1. payout_spike / payout_drop: |variance %| above the medium threshold
    2. quota_mismatch: attainment at/above 100% while payout dropped,
       or below 100% while payout spiked
    3. territory_outlier: more than N standard deviations from the
       territory cohort mean
    4. calculation_error: trace replay does not reproduce the payout
    """

    def __init__(self, thresholds: AnomalyThresholds | None = None):
        self.thresholds = thresholds or AnomalyThresholds()

    def detect(
        self,
        results: list[FinalPayoutResult],
        baseline: HistoricalBaseline | None = None,
        traces: Iterable[CalculationTrace] | None = None,
        job_id: int | None = None,
    ) -> list[AnomalyRecord]:
        baseline = baseline or HistoricalBaseline()
        traces_by_rep = {t.rep_id: t for t in (traces or [])}
        territory_stats = self._territory_stats(results, baseline)

        anomalies = []
        for result in results:
            record = self._score(result, baseline, traces_by_rep.get(result.rep_id), territory_stats, job_id)
            if record is not None:
                anomalies.append(record)

        logger.info(f"Anomaly detection over {len(results)} results flagged {len(anomalies)}")
        return anomalies

    def expected_payout(self, result: FinalPayoutResult, baseline: HistoricalBaseline) -> Decimal | None:
        """Rep baseline first, then role cohort, then territory cohort."""
        if result.rep_id in baseline.reps:
            return baseline.reps[result.rep_id]
        if result.role and result.role in baseline.roles:
            return baseline.roles[result.role].expected_payout
        if result.territory in baseline.territories:
            return baseline.territories[result.territory].expected_payout
        return None

    @staticmethod
    def variance_percent(current: Decimal, expected: Decimal | None) -> Decimal:
        if expected is None:
            return Decimal("0")
        if expected == 0:
            if current == 0:
                return Decimal("0")
            return Decimal("100") if current > 0 else Decimal("-100")
        return quantize_percent((current - expected) / expected * Decimal("100"))

    def severity(self, variance_percent: Decimal, signals: list[str]) -> str | None:
        """Severity for a set of signals, or None when nothing fired."""
        if not signals:
            return None
        magnitude = abs(variance_percent)
        t = self.thresholds
        if "calculation_error" in signals or magnitude > t.critical_percent:
            return "critical"
        if magnitude > t.high_percent:
            return "high"
        if magnitude > t.medium_percent:
            return "medium"
        return "low"

    @staticmethod
    def confidence(variance_percent: Decimal, signals: list[str]) -> int:
        """Grows with |variance %| and with each corroborating signal."""
        if "calculation_error" in signals:
            return 99
        magnitude = min(abs(variance_percent), Decimal("100"))
        score = Decimal("40") + magnitude * Decimal("0.4") + Decimal("10") * (len(signals) - 1)
        return int(min(score, Decimal("99")))

    # -------------------------------------------------------------------------
    # Internals
    # -------------------------------------------------------------------------

    def _territory_stats(
        self, results: list[FinalPayoutResult], baseline: HistoricalBaseline
    ) -> dict[str, tuple[Decimal, Decimal]]:
        """
        Mean and std dev per territory. A baseline cohort always wins; one
        with no spread leaves its territory unscored. Territories without a
        baseline cohort use this run's payouts.
        """
        grouped: dict[str, list[Decimal]] = {}
        for result in results:
            grouped.setdefault(result.territory, []).append(result.final_payout)

        stats = {}
        for territory, payouts in grouped.items():
            cohort = baseline.territories.get(territory)
            if cohort is not None:
                if cohort.std_dev > 0:
                    stats[territory] = (cohort.expected_payout, cohort.std_dev)
            elif len(payouts) >= self.thresholds.min_cohort_size:
                stats[territory] = _population_stats(payouts)
        return stats

    def _score(self, result, baseline, trace, territory_stats, job_id) -> AnomalyRecord | None:
        t = self.thresholds
        current = result.final_payout
        expected = self.expected_payout(result, baseline)
        variance = current - expected if expected is not None else Decimal("0")
        variance_pct = self.variance_percent(current, expected)

        signals = []
        if expected is not None and abs(variance_pct) > t.medium_percent:
            signals.append("payout_spike" if variance_pct > 0 else "payout_drop")

        if expected is not None:
            at_target = result.attainment_percent >= 100
            if (at_target and variance_pct < -t.medium_percent) or (
                not at_target and variance_pct > t.medium_percent
            ):
                signals.append("quota_mismatch")

        mean = std = None
        if result.territory in territory_stats:
            mean, std = territory_stats[result.territory]
            if std > 0 and abs(current - mean) > t.territory_std_devs * std:
                signals.append("territory_outlier")

        if trace is not None:
            replay = replay_trace(trace, expected_final=current - result.post_hoc_adjustment)
            if not replay.reproduced or not trace.is_complete:
                signals.append("calculation_error")
                for mismatch in replay.mismatches:
                    logger.warning(f"Rep {result.rep_id} trace mismatch: {mismatch}")

        severity = self.severity(variance_pct, signals)
        if severity is None:
            return None

        anomaly_type = next(s for s in TYPE_PRIORITY if s in signals)
        details = {
            "current": _fmt(current),
            "expected": _fmt(expected) if expected is not None else "n/a",
            "pct": f"{abs(variance_pct):.2f}",
            "attainment": f"{result.attainment_percent:.2f}",
            "std_devs": t.territory_std_devs,
            "territory": result.territory,
            "mean": _fmt(mean) if mean is not None else "n/a",
        }
        description = f"{anomaly_type.replace('_', ' ').capitalize()} detected for {result.rep_name}"
        if expected is not None:
            description += f": {_fmt(current)} against an expected {_fmt(expected)} ({variance_pct:+.2f}%)"

        actions = []
        for signal in signals:
            for action in RECOMMENDED_ACTIONS[signal]:
                if action not in actions:
                    actions.append(action)

        return AnomalyRecord(
            rep_id=result.rep_id,
            rep_name=result.rep_name,
            job_id=job_id if job_id is not None else result.job_id,
            anomaly_type=anomaly_type,
            severity=severity,
            confidence_score=self.confidence(variance_pct, signals),
            current_value=current,
            expected_value=expected,
            variance=quantize_money(variance),
            variance_percent=variance_pct,
            description=description,
            root_cause=" ".join(ROOT_CAUSES[s].format(**details) for s in signals),
            recommended_actions=actions,
            signals=signals,
        )


class AnomalyRegistry:
    """Stores detected anomalies and their review status."""

    def __init__(self):
        self._lock = threading.Lock()
        self._next_id = 1
        self._anomalies: dict[int, AnomalyRecord] = {}

    def save(self, anomalies: list[AnomalyRecord]) -> list[AnomalyRecord]:
        saved = []
        with self._lock:
            for anomaly in anomalies:
                stored = replace(anomaly, anomaly_id=self._next_id)
                self._anomalies[stored.anomaly_id] = stored
                self._next_id += 1
                saved.append(replace(stored))
        return saved

    def get(self, anomaly_id: int) -> AnomalyRecord:
        anomaly = self._anomalies.get(anomaly_id)
        if anomaly is None:
            raise NotFoundError(f"Anomaly not found: {anomaly_id}")
        return replace(anomaly)

    def for_job(self, job_id: int) -> list[AnomalyRecord]:
        return [replace(a) for a in sorted(self._anomalies.values(), key=lambda a: a.anomaly_id) if a.job_id == job_id]

    def review(self, anomaly_id: int, status: str, reviewer: str | None = None, notes: str | None = None) -> AnomalyRecord:
        if status not in ANOMALY_STATUSES:
            raise ValidationError(f"Invalid anomaly status: {status}. Must be one of: {', '.join(ANOMALY_STATUSES)}")

        with self._lock:
            anomaly = self._anomalies.get(anomaly_id)
            if anomaly is None:
                raise NotFoundError(f"Anomaly not found: {anomaly_id}")
            allowed = REVIEW_TRANSITIONS.get(anomaly.status, ())
            if status not in allowed:
                raise InvalidTransitionError(
                    f"Cannot move anomaly {anomaly_id} from {anomaly.status} to {status}",
                    current_status=anomaly.status,
                    action=status,
                )
            anomaly.status = status
            anomaly.reviewed_by = reviewer
            anomaly.reviewer_notes = notes
            anomaly.reviewed_at = utcnow()
            snapshot = replace(anomaly)

        logger.info(f"Anomaly {anomaly_id} marked {status} by {reviewer}")
        return snapshot
