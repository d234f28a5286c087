# src/ode_engine/errors.py
"""Error types for ode_engine.

This module centralizes:
- the exception hierarchy shared by formulas, equation solvers and drivers, and
- small helpers for validating arguments with actionable messages.

Every exception derives from OdeEngineError and from the builtin exception kind
that best describes it, so callers may catch either.
"""

from __future__ import annotations

from typing import Final

import numpy as np

_POSITIVE_ERROR_MSG: Final[str] = "{name} must be positive and finite, got {value!r}."
_NON_NEGATIVE_ERROR_MSG: Final[str] = "{name} must be non-negative, got {value!r}."


class OdeEngineError(Exception):
    """Base exception for ode_engine errors."""


class PreconditionError(OdeEngineError, ValueError):
    """Raised when a call violates a documented precondition."""


class ConfigurationError(OdeEngineError, ValueError):
    """Raised when a solver configuration is invalid or inconsistent."""


class CapabilityError(OdeEngineError, TypeError):
    """Raised when a problem cannot supply the evaluations an algorithm needs."""


class AlgorithmFailure(OdeEngineError, RuntimeError):
    """Raised when a numerical algorithm cannot produce a usable result."""


class DriverFailure(OdeEngineError, RuntimeError):
    """Raised when an adaptive driver cannot complete a step."""


class StepSizeUnderflowError(DriverFailure):
    """Raised when a step is rejected at the minimum allowed step size."""


class TooManyRejectionsError(DriverFailure):
    """Raised when a single step exceeds the allowed number of rejections."""


def require_positive(name: str, value: float) -> float:
    """Validate that a scalar is strictly positive and finite.

    Args:
        name: Argument name used in the error message.
        value: Value to validate.

    Returns:
        The value converted to float.

    Raises:
        PreconditionError: If the value is not positive or not finite.
    """
    out = float(value)
    if not np.isfinite(out) or out <= 0.0:
        raise PreconditionError(_POSITIVE_ERROR_MSG.format(name=name, value=value))
    return out


def require_non_negative(name: str, value: int) -> int:
    """Validate that an integer is non-negative.

    Args:
        name: Argument name used in the error message.
        value: Value to validate.

    Returns:
        The value converted to int.

    Raises:
        PreconditionError: If the value is negative.
    """
    out = int(value)
    if out < 0:
        raise PreconditionError(_NON_NEGATIVE_ERROR_MSG.format(name=name, value=value))
    return out
