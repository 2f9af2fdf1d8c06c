"""
Plan Version & Audit Log

Append-only history of plan configurations. Versions are never edited or
removed; restoring an old version appends a new one that copies it.
Version numbers are allocated under a per-plan lock.
"""

import copy
import logging
import threading
from typing import Any, Dict

from .errors import NotFoundError, ValidationError
from .models import CHANGE_SOURCES, AuditLogEntry, PlanConfiguration, PlanVersion
from .validators import InputValidator

logger = logging.getLogger(__name__)

CONFIG_FIELDS = (
    "name",
    "planType",
    "baseCommissionRate",
    "capPercent",
    "payoutCap",
    "acceleratorThreshold",
    "acceleratorMultiplier",
    "deceleratorThreshold",
    "deceleratorMultiplier",
    "accelerateBeyondCurve",
    "territoryMultipliers",
    "roleMultipliers",
)


class PlanVersionStore:
    """Holds each plan's live configuration, its versions and its audit trail."""

    def __init__(self):
        self.validator = InputValidator()
        self._guard = threading.Lock()
        self._plan_locks: dict[str, threading.Lock] = {}
        self._audit_lock = threading.Lock()
        self._configs: dict[str, dict] = {}
        self._curves: dict[str, list] = {}
        self._versions: dict[str, list[PlanVersion]] = {}
        self._audit: list[AuditLogEntry] = []

    # -------------------------------------------------------------------------
    # Live configuration
    # -------------------------------------------------------------------------

    def register_plan(self, plan: PlanConfiguration, user_id: str = "system") -> None:
        """Validate and store a plan as the live configuration."""
        self.validator.validate_plan(plan)
        with self._lock_for(plan.plan_id):
            self._configs[plan.plan_id] = plan.to_dict()
            self._curves[plan.plan_id] = plan.pay_curve_data()
        self._append_audit(plan.plan_id, user_id, "register_plan", "configuration", "system")

    def configuration(self, plan_id: str) -> PlanConfiguration:
        """The live plan, rebuilt from stored data."""
        config, curve = self._live(plan_id)
        return PlanConfiguration.from_dict({**config, "breakpoints": curve})

    def plans(self) -> list[PlanConfiguration]:
        return [self.configuration(plan_id) for plan_id in sorted(self._configs)]

    def update_configuration(
        self, plan_id: str, changes: Dict[str, Any], user_id: str, change_source: str = "form"
    ) -> list[AuditLogEntry]:
        """
        Apply field changes to the live configuration.

        Writes one audit entry per field whose value actually changed.
        Changes are validated as a whole; nothing is written if the
        resulting plan is invalid.
        """
        if change_source not in CHANGE_SOURCES:
            raise ValidationError(
                f"Invalid change_source: {change_source}. Must be one of: {', '.join(CHANGE_SOURCES)}"
            )
        unknown = [k for k in changes if k not in CONFIG_FIELDS and k != "breakpoints"]
        if unknown:
            raise ValidationError(f"Unknown configuration fields: {', '.join(sorted(unknown))}")

        with self._lock_for(plan_id):
            config, curve = self._live(plan_id)
            new_config = copy.deepcopy(config)
            new_curve = copy.deepcopy(curve)
            for key, value in changes.items():
                if key == "breakpoints":
                    new_curve = copy.deepcopy(value)
                else:
                    new_config[key] = copy.deepcopy(value)

            try:
                candidate = PlanConfiguration.from_dict({**new_config, "breakpoints": new_curve})
            except (KeyError, TypeError, ArithmeticError) as e:
                raise ValidationError(f"Malformed configuration change: {e}") from e
            self.validator.validate_plan(candidate)

            # Store the normalised form so later comparisons are like-for-like
            normalised_config = candidate.to_dict()
            normalised_curve = candidate.pay_curve_data()

            entries = []
            for key in CONFIG_FIELDS:
                if config.get(key) != normalised_config.get(key):
                    entries.append(
                        self._append_audit(
                            plan_id, user_id, "update_configuration", "configuration", change_source,
                            field_changed=key, old_value=config.get(key), new_value=normalised_config.get(key),
                        )
                    )
            if curve != normalised_curve:
                entries.append(
                    self._append_audit(
                        plan_id, user_id, "update_pay_curve", "configuration", change_source,
                        field_changed="breakpoints", old_value=curve, new_value=normalised_curve,
                    )
                )

            self._configs[plan_id] = normalised_config
            self._curves[plan_id] = normalised_curve

        logger.info(f"Plan {plan_id} updated by {user_id} via {change_source}: {len(entries)} fields changed")
        return copy.deepcopy(entries)

    # -------------------------------------------------------------------------
    # Versions
    # -------------------------------------------------------------------------

    def create_snapshot(
        self,
        plan_id: str,
        configuration: dict | None = None,
        pay_curve: list | None = None,
        description: str = "",
        created_by: str = "system",
        simulation_results: dict | None = None,
    ) -> PlanVersion:
        """
        Append version current + 1. Configuration and curve default to the
        live plan when not given.
        """
        with self._lock_for(plan_id):
            if configuration is None or pay_curve is None:
                live_config, live_curve = self._live(plan_id)
                configuration = live_config if configuration is None else configuration
                pay_curve = live_curve if pay_curve is None else pay_curve
            version = self._append_version(
                plan_id, configuration, pay_curve, description, created_by, simulation_results
            )
        self._append_audit(
            plan_id, created_by, "create_version", "versioning", "system", version_id=version.version_id
        )
        return copy.deepcopy(version)

    def restore(self, version_id: str, restored_by: str) -> PlanVersion:
        """Append a new version copying the target, and make it the live plan."""
        target = self.get_version(version_id)
        plan_id = target.plan_id
        with self._lock_for(plan_id):
            version = self._append_version(
                plan_id,
                target.configuration_data,
                target.pay_curve_data,
                f"Restored from version {target.version_number}",
                restored_by,
                target.simulation_results,
                restored_from=target.version_id,
            )
            self._configs[plan_id] = copy.deepcopy(target.configuration_data)
            self._curves[plan_id] = copy.deepcopy(target.pay_curve_data)
        self._append_audit(
            plan_id, restored_by, "restore", "versioning", "system",
            version_id=version.version_id, old_value=None, new_value=target.version_id,
        )
        return copy.deepcopy(version)

    def versions(self, plan_id: str) -> list[PlanVersion]:
        return copy.deepcopy(self._versions.get(plan_id, []))

    def current_version(self, plan_id: str) -> int:
        history = self._versions.get(plan_id, [])
        return history[-1].version_number if history else 0

    def get_version(self, version_id: str) -> PlanVersion:
        plan_id, _, _ = version_id.rpartition(":v")
        for version in self._versions.get(plan_id, []):
            if version.version_id == version_id:
                return copy.deepcopy(version)
        raise NotFoundError(f"Plan version not found: {version_id}")

    # -------------------------------------------------------------------------
    # Audit log
    # -------------------------------------------------------------------------

    def audit_log(self, plan_id: str | None = None) -> list[AuditLogEntry]:
        return copy.deepcopy([e for e in self._audit if plan_id is None or e.plan_id == plan_id])

    # -------------------------------------------------------------------------
    # Internals
    # -------------------------------------------------------------------------

    def _lock_for(self, plan_id: str) -> threading.Lock:
        with self._guard:
            return self._plan_locks.setdefault(plan_id, threading.Lock())

    def _live(self, plan_id: str) -> tuple[dict, list]:
        if plan_id not in self._configs:
            raise NotFoundError(f"Plan not found: {plan_id}")
        return copy.deepcopy(self._configs[plan_id]), copy.deepcopy(self._curves[plan_id])

    def _append_version(
        self, plan_id, configuration, pay_curve, description, created_by, simulation_results, restored_from=None
    ) -> PlanVersion:
        """Caller holds the plan lock."""
        number = self.current_version(plan_id) + 1
        version = PlanVersion(
            version_id=f"{plan_id}:v{number}",
            plan_id=plan_id,
            version_number=number,
            configuration_data=copy.deepcopy(configuration),
            pay_curve_data=copy.deepcopy(pay_curve),
            change_description=description,
            created_by=created_by,
            simulation_results=copy.deepcopy(simulation_results),
            restored_from=restored_from,
        )
        self._versions.setdefault(plan_id, []).append(version)
        logger.info(f"Plan {plan_id} version {number} created by {created_by}")
        return version

    def _append_audit(
        self, plan_id, user_id, action, category, change_source,
        version_id=None, field_changed=None, old_value=None, new_value=None,
    ) -> AuditLogEntry:
        with self._audit_lock:
            entry = AuditLogEntry(
                entry_id=len(self._audit) + 1,
                plan_id=plan_id,
                user_id=user_id,
                action=action,
                action_category=category,
                change_source=change_source,
                version_id=version_id,
                field_changed=field_changed,
                old_value=copy.deepcopy(old_value),
                new_value=copy.deepcopy(new_value),
            )
            self._audit.append(entry)
        return entry
