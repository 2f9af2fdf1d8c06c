"""
IC PAYOUT ENGINE
Deterministic, auditable incentive compensation calculation.
"""

from .adjustments import AdjustmentWorkflow
from .anomalies import AnomalyDetector, AnomalyRegistry
from .config import EngineSettings
from .jobs import JobStore
from .models import FinalPayoutResult, PlanConfiguration, Representative
from .processor import CalculationEngine
from .versioning import PlanVersionStore

__all__ = [
    'CalculationEngine',
    'JobStore',
    'AdjustmentWorkflow',
    'AnomalyDetector',
    'AnomalyRegistry',
    'PlanVersionStore',
    'EngineSettings',
    'Representative',
    'PlanConfiguration',
    'FinalPayoutResult',
]
