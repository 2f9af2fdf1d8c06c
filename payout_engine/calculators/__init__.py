"""
Calculators Package

Provides the pay curve evaluator and one calculator per pipeline step.
"""

from .accelerator import AcceleratorApplicator
from .adjustment import ManualAdjustmentApplicator
from .attainment import AttainmentCalculator
from .base import StepCalculator, quantize_money, quantize_percent
from .cap import PayoutCapEnforcer
from .commission import BaseCommissionCalculator
from .curve import PayCurveEvaluator, evaluate, validate_curve
from .territory import TerritoryMultiplier
from .validation import DataValidationStep

__all__ = [
    "PayCurveEvaluator",
    "evaluate",
    "validate_curve",
    "StepCalculator",
    "quantize_money",
    "quantize_percent",
    "DataValidationStep",
    "AttainmentCalculator",
    "BaseCommissionCalculator",
    "AcceleratorApplicator",
    "TerritoryMultiplier",
    "PayoutCapEnforcer",
    "ManualAdjustmentApplicator",
]
