"""
Domain Models for the IC Payout Engine

These dataclasses provide type-safe representations of all business entities.
All monetary values and percentages use Decimal for precision.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal


PLAN_TYPES = (
    "GoalAttainment",
    "GoalAttainmentWithRank",
    "Matrix",
    "RankBased",
    "VolumeGrowth",
    "TerritoryBased",
    "TieredCommission",
)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def to_decimal(value) -> Decimal | None:
    """Convert JSON-ish numbers to Decimal, passing None through."""
    if value is None:
        return None
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def _decimal_map(data: dict | None) -> dict[str, Decimal]:
    return {str(k): to_decimal(v) for k, v in (data or {}).items()}


# =============================================================================
# INPUT MODELS
# =============================================================================


@dataclass(frozen=True)
class Breakpoint:
    """A single point on a pay curve."""

    performance_percent: Decimal
    payout_percent: Decimal

    @classmethod
    def from_dict(cls, data: dict) -> "Breakpoint":
        return cls(
            performance_percent=to_decimal(data["performancePercent"]),
            payout_percent=to_decimal(data["payoutPercent"]),
        )

    def to_dict(self) -> dict:
        return {
            "performancePercent": float(self.performance_percent),
            "payoutPercent": float(self.payout_percent),
        }


@dataclass(frozen=True)
class Representative:
    """A sales representative's numbers for one period."""

    rep_id: str
    name: str
    territory: str
    quota: Decimal
    actual_sales: Decimal
    target_pay: Decimal = Decimal("0")
    role: str | None = None
    plan_id: str | None = None

    @classmethod
    def from_dict(cls, data: dict) -> "Representative":
        return cls(
            rep_id=str(data["repId"]),
            name=data.get("repName", data.get("name", "")),
            territory=data.get("territory", data.get("region", "")),
            quota=to_decimal(data["quota"]),
            actual_sales=to_decimal(data["actualSales"]),
            target_pay=to_decimal(data.get("targetPay", 0)),
            role=data.get("role"),
            plan_id=str(data["planId"]) if data.get("planId") is not None else None,
        )


@dataclass
class PlanConfiguration:
    """Compensation plan rules: pay curve, commission rate, modifiers."""

    plan_id: str
    plan_type: str
    breakpoints: list[Breakpoint]
    base_commission_rate: Decimal = Decimal("0")
    name: str = ""
    cap_percent: Decimal | None = None
    payout_cap: Decimal | None = None
    accelerator_threshold: Decimal | None = None
    accelerator_multiplier: Decimal | None = None
    decelerator_threshold: Decimal | None = None
    decelerator_multiplier: Decimal | None = None
    accelerate_beyond_curve: bool = False
    territory_multipliers: dict[str, Decimal] = field(default_factory=dict)
    role_multipliers: dict[str, Decimal] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: dict) -> "PlanConfiguration":
        return cls(
            plan_id=str(data["planId"]),
            plan_type=data["planType"],
            breakpoints=[Breakpoint.from_dict(b) for b in data.get("breakpoints", [])],
            base_commission_rate=to_decimal(data.get("baseCommissionRate", 0)),
            name=data.get("name", ""),
            cap_percent=to_decimal(data.get("capPercent")),
            payout_cap=to_decimal(data.get("payoutCap")),
            accelerator_threshold=to_decimal(data.get("acceleratorThreshold")),
            accelerator_multiplier=to_decimal(data.get("acceleratorMultiplier")),
            decelerator_threshold=to_decimal(data.get("deceleratorThreshold")),
            decelerator_multiplier=to_decimal(data.get("deceleratorMultiplier")),
            accelerate_beyond_curve=data.get("accelerateBeyondCurve", False),
            territory_multipliers=_decimal_map(data.get("territoryMultipliers")),
            role_multipliers=_decimal_map(data.get("roleMultipliers")),
        )

    def to_dict(self) -> dict:
        """Plain-dict form, as stored in plan versions. Excludes the curve."""

        def num(value):
            return float(value) if value is not None else None

        return {
            "planId": self.plan_id,
            "name": self.name,
            "planType": self.plan_type,
            "baseCommissionRate": num(self.base_commission_rate),
            "capPercent": num(self.cap_percent),
            "payoutCap": num(self.payout_cap),
            "acceleratorThreshold": num(self.accelerator_threshold),
            "acceleratorMultiplier": num(self.accelerator_multiplier),
            "deceleratorThreshold": num(self.decelerator_threshold),
            "deceleratorMultiplier": num(self.decelerator_multiplier),
            "accelerateBeyondCurve": self.accelerate_beyond_curve,
            "territoryMultipliers": {k: float(v) for k, v in self.territory_multipliers.items()},
            "roleMultipliers": {k: float(v) for k, v in self.role_multipliers.items()},
        }

    def pay_curve_data(self) -> list[dict]:
        return [b.to_dict() for b in self.breakpoints]


@dataclass(frozen=True)
class CohortBaseline:
    """Historical payout statistics for a peer group."""

    expected_payout: Decimal
    std_dev: Decimal = Decimal("0")
    sample_size: int = 0

    @classmethod
    def from_dict(cls, data: dict) -> "CohortBaseline":
        return cls(
            expected_payout=to_decimal(data["expectedPayout"]),
            std_dev=to_decimal(data.get("stdDev", 0)),
            sample_size=int(data.get("sampleSize", 0)),
        )


@dataclass
class HistoricalBaseline:
    """Expected payouts per rep and per role/territory cohort."""

    reps: dict[str, Decimal] = field(default_factory=dict)
    roles: dict[str, CohortBaseline] = field(default_factory=dict)
    territories: dict[str, CohortBaseline] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: dict) -> "HistoricalBaseline":
        return cls(
            reps=_decimal_map(data.get("reps")),
            roles={k: CohortBaseline.from_dict(v) for k, v in (data.get("roles") or {}).items()},
            territories={
                k: CohortBaseline.from_dict(v) for k, v in (data.get("territories") or {}).items()
            },
        )


# =============================================================================
# TRACE MODELS
# =============================================================================


@dataclass(frozen=True)
class CalculationStep:
    """One recorded stage of a rep's payout pipeline."""

    step_index: int
    step_name: str
    description: str
    input_data: dict
    rule_applied: str
    formula: str
    intermediate_result: Decimal
    step_result: Decimal
    metadata: dict = field(default_factory=dict)
    executed_at: datetime = field(default_factory=utcnow)


@dataclass
class CalculationTrace:
    """The ordered steps for one rep in one job."""

    job_id: int | None
    rep_id: str
    rep_name: str
    plan_id: str | None
    steps: list[CalculationStep] = field(default_factory=list)

    @property
    def final_step_result(self) -> Decimal | None:
        return self.steps[-1].step_result if self.steps else None

    @property
    def is_complete(self) -> bool:
        return len(self.steps) == 7


# =============================================================================
# JOB / RESULT MODELS
# =============================================================================


JOB_STATUSES = ("pending", "running", "completed", "failed", "cancelled")


@dataclass
class RepError:
    """A per-rep failure captured into the job."""

    rep_id: str
    error_type: str
    message: str


@dataclass
class CalculationJob:
    """Groups one calculation run and tracks its progress."""

    job_id: int | None = None
    plan_ids: list[str] = field(default_factory=list)
    period_start: str | None = None
    period_end: str | None = None
    status: str = "pending"
    total_records: int = 0
    processed_records: int = 0
    error_count: int = 0
    errors: list[RepError] = field(default_factory=list)
    failure_reason: str | None = None
    cancel_requested: bool = False
    created_at: datetime = field(default_factory=utcnow)
    started_at: datetime | None = None
    completed_at: datetime | None = None

    @property
    def progress(self) -> Decimal:
        if self.total_records == 0:
            return Decimal("100") if self.status == "completed" else Decimal("0")
        pct = Decimal(self.processed_records) / Decimal(self.total_records) * Decimal("100")
        return pct.quantize(Decimal("0.01"))

    @property
    def is_terminal(self) -> bool:
        return self.status in ("completed", "failed", "cancelled")

    @classmethod
    def from_dict(cls, data: dict) -> "CalculationJob":
        return cls(
            plan_ids=[str(p) for p in data.get("planIds", [])],
            period_start=data.get("periodStart"),
            period_end=data.get("periodEnd"),
        )


@dataclass
class FinalPayoutResult:
    """Final output for one rep in one job."""

    rep_id: str
    rep_name: str
    region: str
    quota: Decimal
    actual_sales: Decimal
    attainment_percent: Decimal
    payout_curve_type: str
    curve_payout_percent: Decimal
    final_payout: Decimal
    percent_of_target_pay: Decimal
    target_pay: Decimal = Decimal("0")
    any_adjustment: bool = False
    notes: str = ""
    role: str | None = None
    plan_id: str | None = None
    job_id: int | None = None
    # Adjustments patched in after the run; not part of the trace
    post_hoc_adjustment: Decimal = Decimal("0")

    @property
    def territory(self) -> str:
        return self.region


@dataclass
class ProcessingContext:
    """
    Holds all intermediate state during one rep's pipeline.
    This is the "bag" that flows through the calculators.
    """

    # Input (immutable during processing)
    rep: Representative
    plan: PlanConfiguration
    adjustments: tuple = ()
    job_id: int | None = None

    # Step results (populated as we go)
    is_valid: bool = False
    validation_errors: list[str] = field(default_factory=list)
    attainment_percent: Decimal = Decimal("0")
    curve_payout_percent: Decimal = Decimal("0")
    base_commission: Decimal = Decimal("0")
    accelerated_amount: Decimal = Decimal("0")
    territory_amount: Decimal = Decimal("0")
    capped_amount: Decimal = Decimal("0")
    cap_applied: bool = False
    adjustment_total: Decimal = Decimal("0")

    # Final outputs
    final_payout: Decimal = Decimal("0")
    steps: list[CalculationStep] = field(default_factory=list)


# =============================================================================
# WORKFLOW / AUDIT MODELS
# =============================================================================


ADJUSTMENT_TYPES = ("bonus", "correction", "penalty", "override")
ADJUSTMENT_STATUSES = ("pending", "approved", "rejected", "applied")
PRIORITIES = ("low", "normal", "high", "urgent")


@dataclass
class PayoutAdjustment:
    """A manual override to a computed payout, moving through approval."""

    adjustment_id: int
    rep_id: str
    rep_name: str
    original_payout: Decimal
    adjustment_amount: Decimal
    adjustment_type: str
    reason: str
    justification: str
    submitted_by: str
    priority: str = "normal"
    period: str | None = None
    status: str = "pending"
    reviewed_by: str | None = None
    applied_by: str | None = None
    comments: str | None = None
    version: int = 1
    submitted_at: datetime = field(default_factory=utcnow)
    reviewed_at: datetime | None = None
    applied_at: datetime | None = None

    @property
    def final_payout(self) -> Decimal:
        return self.original_payout + self.adjustment_amount


ANOMALY_TYPES = ("payout_spike", "payout_drop", "quota_mismatch", "territory_outlier", "calculation_error")
SEVERITIES = ("low", "medium", "high", "critical")
ANOMALY_STATUSES = ("pending", "reviewed", "resolved", "false_positive")


@dataclass
class AnomalyRecord:
    """An advisory flag on one rep's final payout."""

    rep_id: str
    rep_name: str
    job_id: int | None
    anomaly_type: str
    severity: str
    confidence_score: int
    current_value: Decimal
    expected_value: Decimal | None
    variance: Decimal
    variance_percent: Decimal
    description: str
    root_cause: str
    recommended_actions: list[str] = field(default_factory=list)
    signals: list[str] = field(default_factory=list)
    anomaly_id: int | None = None
    status: str = "pending"
    reviewer_notes: str | None = None
    reviewed_by: str | None = None
    detected_at: datetime = field(default_factory=utcnow)
    reviewed_at: datetime | None = None


@dataclass(frozen=True)
class PlanVersion:
    """Immutable snapshot of a plan's configuration and pay curve."""

    version_id: str
    plan_id: str
    version_number: int
    configuration_data: dict
    pay_curve_data: list
    change_description: str
    created_by: str
    created_at: datetime = field(default_factory=utcnow)
    is_snapshot: bool = True
    simulation_results: dict | None = None
    restored_from: str | None = None


CHANGE_SOURCES = ("assistant", "form", "api", "system")


@dataclass(frozen=True)
class AuditLogEntry:
    """One observed mutation to a plan's configuration."""

    entry_id: int
    plan_id: str
    user_id: str
    action: str
    action_category: str
    change_source: str
    version_id: str | None = None
    field_changed: str | None = None
    old_value: object = None
    new_value: object = None
    timestamp: datetime = field(default_factory=utcnow)
