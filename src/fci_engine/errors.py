"""Fatal engine errors.

These deliberately do not subclass ``ValueError``: pydantic folds
``ValueError`` raised inside validators into a ``ValidationError``, while
any other exception propagates to the caller unchanged.
"""

from typing import Any


class EngineError(Exception):
    """Base class for errors that abort an engine operation."""

    def __init__(self, message: str, *, field: str | None = None, value: Any = None):
        super().__init__(message)
        self.field = field
        self.value = value


class InvalidCurveParameters(EngineError):
    """Curve parameters produce a condition that rises with age."""


class InvalidBudget(EngineError):
    """Budget constraint is zero or negative."""


class InvalidHorizon(EngineError):
    """Planning horizon is zero, negative, or above the configured cap."""


class ScenarioStateError(EngineError):
    """Illegal scenario lifecycle transition."""


class ClassificationError(EngineError):
    """Component code is duplicated, orphaned, or collides with the standard scheme."""


class InfeasiblePortfolio(EngineError):
    """No project selection satisfies the portfolio constraints."""
