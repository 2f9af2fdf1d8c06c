"""
Output Builder

Constructs final payout results from the processing context, and converts
engine records into the camelCase dicts the API returns.
"""

from datetime import datetime
from decimal import Decimal

from .calculators import quantize_money, quantize_percent
from .models import (
    AnomalyRecord,
    AuditLogEntry,
    CalculationJob,
    CalculationStep,
    CalculationTrace,
    FinalPayoutResult,
    PayoutAdjustment,
    PlanVersion,
    ProcessingContext,
)


def to_money(value: Decimal) -> float:
    """Convert Decimal to float with 2 decimal places."""
    return round(float(value), 2)


def _fmt(value) -> str:
    """Format a number as currency string for descriptions."""
    return f"${value:,.2f}"


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


def jsonable(value):
    """Recursively convert Decimals and datetimes for JSON output."""
    if isinstance(value, Decimal):
        return float(value)
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, dict):
        return {k: jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [jsonable(v) for v in value]
    return value


class OutputBuilder:
    """Builds final results and API response dicts."""

    def build(self, ctx: ProcessingContext) -> FinalPayoutResult:
        """Construct the final payout result from a completed pipeline."""
        rep = ctx.rep
        return FinalPayoutResult(
            rep_id=rep.rep_id,
            rep_name=rep.name,
            region=rep.territory,
            quota=rep.quota,
            actual_sales=rep.actual_sales,
            attainment_percent=ctx.attainment_percent,
            payout_curve_type=ctx.plan.plan_type,
            curve_payout_percent=ctx.curve_payout_percent,
            final_payout=ctx.final_payout,
            percent_of_target_pay=self.percent_of_target(ctx.final_payout, rep.target_pay),
            target_pay=rep.target_pay,
            any_adjustment=bool(ctx.adjustments),
            notes=self._build_notes(ctx),
            role=rep.role,
            plan_id=ctx.plan.plan_id,
            job_id=ctx.job_id,
        )

    @staticmethod
    def percent_of_target(final_payout: Decimal, target_pay: Decimal) -> Decimal:
        if not target_pay or target_pay <= 0:
            return Decimal("0")
        return quantize_percent(final_payout / target_pay * Decimal("100"))

    def _build_notes(self, ctx: ProcessingContext) -> str:
        notes = []
        if ctx.accelerated_amount > ctx.base_commission:
            notes.append("Accelerator applied")
        elif ctx.accelerated_amount < ctx.base_commission:
            notes.append("Decelerator applied")
        if ctx.cap_applied:
            notes.append(f"Capped at {_fmt(ctx.capped_amount)}")
        if ctx.adjustments:
            notes.append(f"Manual adjustment of {_fmt(ctx.adjustment_total)}")
        return "; ".join(notes)

    # -------------------------------------------------------------------------
    # Dict conversion
    # -------------------------------------------------------------------------

    def result_to_dict(self, result: FinalPayoutResult) -> dict:
        return {
            "repId": result.rep_id,
            "repName": result.rep_name,
            "region": result.region,
            "quota": to_money(result.quota),
            "actualSales": to_money(result.actual_sales),
            "attainmentPercent": float(result.attainment_percent),
            "payoutCurveType": result.payout_curve_type,
            "curvePayoutPercent": float(result.curve_payout_percent),
            "finalPayout": to_money(result.final_payout),
            "percentOfTargetPay": float(result.percent_of_target_pay),
            "targetPay": to_money(result.target_pay),
            "anyAdjustment": "Yes" if result.any_adjustment or result.post_hoc_adjustment else "No",
            "notes": result.notes,
        }

    def step_to_dict(self, step: CalculationStep) -> dict:
        return {
            "calculationStep": step.step_index,
            "stepName": step.step_name,
            "stepDescription": step.description,
            "inputData": jsonable(step.input_data),
            "ruleApplied": step.rule_applied,
            "calculation": step.formula,
            "intermediateResult": float(step.intermediate_result),
            "finalStepResult": float(step.step_result),
            "metadata": jsonable(step.metadata),
            "executedAt": _iso(step.executed_at),
        }

    def trace_to_dict(self, trace: CalculationTrace, final_payout: Decimal | None = None) -> dict:
        final = final_payout if final_payout is not None else trace.final_step_result
        return {
            "jobId": trace.job_id,
            "repId": trace.rep_id,
            "repName": trace.rep_name,
            "planId": trace.plan_id,
            "steps": [self.step_to_dict(s) for s in trace.steps],
            "finalPayout": to_money(final) if final is not None else None,
        }

    def job_to_dict(self, job: CalculationJob) -> dict:
        return {
            "jobId": job.job_id,
            "planIds": list(job.plan_ids),
            "periodStart": job.period_start,
            "periodEnd": job.period_end,
            "status": job.status,
            "totalRecords": job.total_records,
            "processedRecords": job.processed_records,
            "errorCount": job.error_count,
            "progress": float(job.progress),
            "errors": [
                {"repId": e.rep_id, "errorType": e.error_type, "message": e.message} for e in job.errors
            ],
            "failureReason": job.failure_reason,
            "createdAt": _iso(job.created_at),
            "startedAt": _iso(job.started_at),
            "completedAt": _iso(job.completed_at),
        }

    def adjustment_to_dict(self, adj: PayoutAdjustment) -> dict:
        return {
            "id": adj.adjustment_id,
            "repId": adj.rep_id,
            "repName": adj.rep_name,
            "originalPayout": to_money(adj.original_payout),
            "adjustmentAmount": to_money(adj.adjustment_amount),
            "finalPayout": to_money(adj.final_payout),
            "adjustmentType": adj.adjustment_type,
            "adjustmentReason": adj.reason,
            "businessJustification": adj.justification,
            "submittedBy": adj.submitted_by,
            "approvedBy": adj.reviewed_by,
            "appliedBy": adj.applied_by,
            "status": adj.status,
            "priority": adj.priority,
            "period": adj.period,
            "comments": adj.comments,
            "version": adj.version,
            "submittedAt": _iso(adj.submitted_at),
            "reviewedAt": _iso(adj.reviewed_at),
            "appliedAt": _iso(adj.applied_at),
        }

    def anomaly_to_dict(self, anomaly: AnomalyRecord) -> dict:
        expected = anomaly.expected_value
        return {
            "id": anomaly.anomaly_id,
            "jobId": anomaly.job_id,
            "repId": anomaly.rep_id,
            "repName": anomaly.rep_name,
            "anomalyType": anomaly.anomaly_type,
            "severity": anomaly.severity,
            "confidenceScore": anomaly.confidence_score,
            "description": anomaly.description,
            "rootCauseAnalysis": anomaly.root_cause,
            "suggestedActions": list(anomaly.recommended_actions),
            "signals": list(anomaly.signals),
            "affectedPayout": to_money(anomaly.current_value),
            "expectedPayout": to_money(expected) if expected is not None else None,
            "variance": to_money(anomaly.variance),
            "variancePercent": float(anomaly.variance_percent),
            "status": anomaly.status,
            "reviewerNotes": anomaly.reviewer_notes,
            "reviewedBy": anomaly.reviewed_by,
            "detectedAt": _iso(anomaly.detected_at),
            "reviewedAt": _iso(anomaly.reviewed_at),
        }

    def version_to_dict(self, version: PlanVersion) -> dict:
        return {
            "id": version.version_id,
            "planId": version.plan_id,
            "versionNumber": version.version_number,
            "configurationData": jsonable(version.configuration_data),
            "payCurveData": jsonable(version.pay_curve_data),
            "simulationResults": jsonable(version.simulation_results),
            "changeDescription": version.change_description,
            "createdBy": version.created_by,
            "createdAt": _iso(version.created_at),
            "isSnapshot": version.is_snapshot,
            "restoredFrom": version.restored_from,
        }

    def audit_to_dict(self, entry: AuditLogEntry) -> dict:
        return {
            "id": entry.entry_id,
            "planId": entry.plan_id,
            "versionId": entry.version_id,
            "userId": entry.user_id,
            "action": entry.action,
            "actionCategory": entry.action_category,
            "fieldChanged": entry.field_changed,
            "oldValue": jsonable(entry.old_value),
            "newValue": jsonable(entry.new_value),
            "changeSource": entry.change_source,
            "timestamp": _iso(entry.timestamp),
        }


__all__ = ["OutputBuilder", "to_money", "jsonable", "quantize_money"]
