"""
Engine Settings

Tunable parameters read from the environment. Anomaly thresholds are
deployment-specific, so none of them are hard-coded in the detector.
"""

import os
from dataclasses import dataclass, field
from decimal import Decimal


def _env_decimal(name: str, default: str) -> Decimal:
    return Decimal(os.environ.get(name, default))


def _env_bool(name: str, default: bool) -> bool:
    value = os.environ.get(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


@dataclass
class AnomalyThresholds:
    """Variance-percent boundaries for anomaly severity."""

    critical_percent: Decimal = Decimal("50")
    high_percent: Decimal = Decimal("30")
    medium_percent: Decimal = Decimal("15")
    territory_std_devs: Decimal = Decimal("2")
    min_cohort_size: int = 3


@dataclass
class EngineSettings:
    environment: str = "dev"
    log_level: str = "INFO"
    max_workers: int = 1
    enforce_separation_of_duties: bool = True
    anomaly: AnomalyThresholds = field(default_factory=AnomalyThresholds)

    @classmethod
    def from_env(cls) -> "EngineSettings":
        return cls(
            environment=os.environ.get("ENVIRONMENT", "dev"),
            log_level=os.environ.get("LOG_LEVEL", "INFO"),
            max_workers=int(os.environ.get("CALCULATION_MAX_WORKERS", "1")),
            enforce_separation_of_duties=_env_bool("ENFORCE_SEPARATION_OF_DUTIES", True),
            anomaly=AnomalyThresholds(
                critical_percent=_env_decimal("ANOMALY_CRITICAL_PERCENT", "50"),
                high_percent=_env_decimal("ANOMALY_HIGH_PERCENT", "30"),
                medium_percent=_env_decimal("ANOMALY_MEDIUM_PERCENT", "15"),
                territory_std_devs=_env_decimal("ANOMALY_TERRITORY_STD_DEVS", "2"),
                min_cohort_size=int(os.environ.get("ANOMALY_MIN_COHORT_SIZE", "3")),
            ),
        )
