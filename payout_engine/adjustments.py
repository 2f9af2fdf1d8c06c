"""
Adjustment Workflow

Manual payout overrides move through an approval state machine:

    pending --approve--> approved --apply--> applied
    pending --reject---> rejected

Every transition checks status and version under one lock, so two reviewers
acting on the same adjustment cannot both succeed.
"""

import logging
import threading
from dataclasses import replace
from decimal import Decimal
from typing import Any, Dict

from .errors import ConcurrencyConflictError, InvalidTransitionError, NotFoundError, ValidationError
from .jobs import JobStore
from .models import ADJUSTMENT_TYPES, PRIORITIES, FinalPayoutResult, PayoutAdjustment, to_decimal, utcnow

logger = logging.getLogger(__name__)

MIN_REASON_LENGTH = 10
MIN_JUSTIFICATION_LENGTH = 20

# action -> (required status, resulting status)
TRANSITIONS = {
    "approve": ("pending", "approved"),
    "reject": ("pending", "rejected"),
    "apply": ("approved", "applied"),
}


class AdjustmentWorkflow:
    """Owns all payout adjustments and their transitions."""

    def __init__(self, enforce_separation_of_duties: bool = True):
        self.enforce_separation_of_duties = enforce_separation_of_duties
        self._lock = threading.Lock()
        self._next_id = 1
        self._adjustments: dict[int, PayoutAdjustment] = {}

    def submit(
        self,
        rep_id: str,
        rep_name: str,
        original_payout: Decimal,
        adjustment_amount: Decimal,
        adjustment_type: str,
        reason: str,
        justification: str,
        submitted_by: str,
        priority: str = "normal",
        period: str | None = None,
    ) -> PayoutAdjustment:
        """Create a pending adjustment after checking the form rules."""
        reason = (reason or "").strip()
        justification = (justification or "").strip()

        if adjustment_type not in ADJUSTMENT_TYPES:
            raise ValidationError(
                f"Invalid adjustment_type: {adjustment_type}. Must be one of: {', '.join(ADJUSTMENT_TYPES)}"
            )
        if priority not in PRIORITIES:
            raise ValidationError(f"Invalid priority: {priority}. Must be one of: {', '.join(PRIORITIES)}")
        if len(reason) < MIN_REASON_LENGTH:
            raise ValidationError(f"Adjustment reason must be at least {MIN_REASON_LENGTH} characters")
        if len(justification) < MIN_JUSTIFICATION_LENGTH:
            raise ValidationError(
                f"Business justification must be at least {MIN_JUSTIFICATION_LENGTH} characters"
            )
        if not submitted_by:
            raise ValidationError("submitted_by is required")
        if original_payout is None or adjustment_amount is None:
            raise ValidationError("original_payout and adjustment_amount are required")

        with self._lock:
            adjustment = PayoutAdjustment(
                adjustment_id=self._next_id,
                rep_id=rep_id,
                rep_name=rep_name,
                original_payout=to_decimal(original_payout),
                adjustment_amount=to_decimal(adjustment_amount),
                adjustment_type=adjustment_type,
                reason=reason,
                justification=justification,
                submitted_by=submitted_by,
                priority=priority,
                period=period,
            )
            self._adjustments[adjustment.adjustment_id] = adjustment
            self._next_id += 1

        logger.info(
            f"Adjustment {adjustment.adjustment_id} submitted for rep {rep_id} by {submitted_by}: "
            f"{adjustment.adjustment_type} {adjustment.adjustment_amount}"
        )
        return replace(adjustment)

    def submit_from_dict(self, data: Dict[str, Any]) -> PayoutAdjustment:
        """Convenience method for API usage."""
        try:
            return self.submit(
                rep_id=str(data["repId"]),
                rep_name=data.get("repName", ""),
                original_payout=to_decimal(data["originalPayout"]),
                adjustment_amount=to_decimal(data["adjustmentAmount"]),
                adjustment_type=data.get("adjustmentType", ""),
                reason=data.get("adjustmentReason", ""),
                justification=data.get("businessJustification", ""),
                submitted_by=data.get("submittedBy", ""),
                priority=data.get("priority", "normal"),
                period=data.get("period"),
            )
        except KeyError as e:
            raise ValidationError(f"Missing required field: {e.args[0]}") from e

    def get(self, adjustment_id: int) -> PayoutAdjustment:
        return replace(self._get(adjustment_id))

    def approve(
        self, adjustment_id: int, reviewer: str, comments: str | None = None, expected_version: int | None = None
    ) -> PayoutAdjustment:
        return self._transition(adjustment_id, "approve", reviewer, comments, expected_version)

    def reject(
        self, adjustment_id: int, reviewer: str, comments: str | None = None, expected_version: int | None = None
    ) -> PayoutAdjustment:
        return self._transition(adjustment_id, "reject", reviewer, comments, expected_version)

    def apply(
        self,
        adjustment_id: int,
        applied_by: str,
        result: FinalPayoutResult | None = None,
        expected_version: int | None = None,
        period: str | None = None,
    ) -> PayoutAdjustment:
        """
        Mark an approved adjustment applied. When the rep's final result is
        given, the amount is added to it after the fact; the original trace
        is left as it was.

        An undated adjustment takes `period` (normally a date inside the
        patched job's period). Only dated adjustments feed later runs.
        """
        adjustment = self._transition(adjustment_id, "apply", applied_by, None, expected_version, period)
        if result is not None:
            JobStore.patch_result(result, adjustment.adjustment_amount)
            logger.info(
                f"Adjustment {adjustment_id} patched into job {result.job_id} result for rep {result.rep_id}"
            )
        return adjustment

    def perform(self, adjustment_id: int, action: str, actor: str, **kwargs) -> PayoutAdjustment:
        """Dispatch an action by name."""
        if action == "approve":
            return self.approve(adjustment_id, actor, **kwargs)
        if action == "reject":
            return self.reject(adjustment_id, actor, **kwargs)
        if action == "apply":
            return self.apply(adjustment_id, actor, **kwargs)
        raise ValidationError(f"Unknown adjustment action: {action}. Must be one of: {', '.join(TRANSITIONS)}")

    def list_adjustments(
        self, status: str | None = None, priority: str | None = None, search: str | None = None
    ) -> list[PayoutAdjustment]:
        """Filter by status, priority and a case-insensitive rep id/name search."""
        needle = search.strip().lower() if search else None
        matches = []
        for adjustment in sorted(self._adjustments.values(), key=lambda a: a.adjustment_id):
            if status and adjustment.status != status:
                continue
            if priority and adjustment.priority != priority:
                continue
            if needle and needle not in adjustment.rep_id.lower() and needle not in adjustment.rep_name.lower():
                continue
            matches.append(replace(adjustment))
        return matches

    def applied(self, rep_id: str | None = None) -> list[PayoutAdjustment]:
        """Applied adjustments, which feed the Manual Adjustment step of later runs."""
        return [a for a in self.list_adjustments(status="applied") if rep_id is None or a.rep_id == rep_id]

    # -------------------------------------------------------------------------
    # Internals
    # -------------------------------------------------------------------------

    def _get(self, adjustment_id: int) -> PayoutAdjustment:
        adjustment = self._adjustments.get(adjustment_id)
        if adjustment is None:
            raise NotFoundError(f"Adjustment not found: {adjustment_id}")
        return adjustment

    def _transition(
        self,
        adjustment_id: int,
        action: str,
        actor: str,
        comments: str | None,
        expected_version: int | None,
        period: str | None = None,
    ) -> PayoutAdjustment:
        required, target = TRANSITIONS[action]
        if not actor:
            raise ValidationError(f"An actor is required to {action} an adjustment")

        with self._lock:
            adjustment = self._get(adjustment_id)

            if expected_version is not None and adjustment.version != expected_version:
                raise ConcurrencyConflictError(
                    f"Adjustment {adjustment_id} is at version {adjustment.version}, "
                    f"caller expected {expected_version}"
                )
            if adjustment.status != required:
                raise InvalidTransitionError(
                    f"Cannot {action} adjustment {adjustment_id}: status is {adjustment.status}, "
                    f"must be {required}",
                    current_status=adjustment.status,
                    action=action,
                )
            if (
                action in ("approve", "reject")
                and self.enforce_separation_of_duties
                and actor == adjustment.submitted_by
            ):
                raise InvalidTransitionError(
                    f"Cannot {action} adjustment {adjustment_id}: reviewer must differ from submitter",
                    current_status=adjustment.status,
                    action=action,
                )

            now = utcnow()
            adjustment.status = target
            adjustment.version += 1
            if action == "apply":
                adjustment.applied_by = actor
                adjustment.applied_at = now
                if adjustment.period is None:
                    adjustment.period = period
            else:
                adjustment.reviewed_by = actor
                adjustment.reviewed_at = now
                adjustment.comments = comments
            snapshot = replace(adjustment)

        logger.info(f"Adjustment {adjustment_id} {target} by {actor}")
        return snapshot
