"""
Error Taxonomy for the Payout Engine

Per-rep problems are captured into the job; structural problems abort only
the scope they apply to. Nothing here is retried automatically.
"""


class PayoutEngineError(Exception):
    """Base class for all engine errors."""


class ValidationError(PayoutEngineError, ValueError):
    """Bad input record (quota <= 0, malformed plan, missing justification)."""


class InvalidCurveError(ValidationError):
    """Pay curve cannot be evaluated. Fatal for every rep under that plan."""


class InvalidTransitionError(PayoutEngineError):
    """Workflow action attempted from a state that does not allow it."""

    def __init__(self, message: str, current_status: str | None = None, action: str | None = None):
        super().__init__(message)
        self.current_status = current_status
        self.action = action


class ConcurrencyConflictError(PayoutEngineError):
    """Record changed since the caller read it. Retry with fresh state."""


class NotFoundError(PayoutEngineError, KeyError):
    """Unknown job, adjustment, anomaly, plan or version."""

    def __str__(self) -> str:
        # KeyError quotes its argument; keep messages readable
        return str(self.args[0]) if self.args else ""
