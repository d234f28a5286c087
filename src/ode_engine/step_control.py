# src/ode_engine/step_control.py
"""Step size control for embedded formulas.

A controller turns the error estimate of a trial step into an accept/reject
decision and the step size of the next attempt. The factor applied to the
step size follows the classical power law ``safety * norm**(-1/(p+1))``,
clamped to ``[fac_min, fac_max]``, where ``p`` is the order of the embedded
error estimate. The resulting step size is clamped to ``[dt_min, dt_max]``.
"""

from __future__ import annotations

import math
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import TYPE_CHECKING, Final

import numpy as np

from .errors import PreconditionError
from .evaluation import DIFF_COEFF, request_evaluations
from .linalg import copy_variable
from .tolerances import ErrorTolerances

if TYPE_CHECKING:
    from .linalg import Variable
    from .problem import Problem

DEFAULT_DT_MIN: Final[float] = float(np.sqrt(np.finfo(np.float64).eps))
DEFAULT_PI_CURRENT_EXPONENT: Final[float] = 0.7
DEFAULT_PI_PREVIOUS_EXPONENT: Final[float] = 0.4

_DT_LIMITS_ERROR_MSG: Final[str] = (
    "Step size limits must satisfy 0 < dt_min < dt_max, got dt_min={dt_min!r}, "
    "dt_max={dt_max!r}."
)
_SAFETY_ERROR_MSG: Final[str] = "safety must be in (0, 1], got {safety!r}."
_FACTOR_ERROR_MSG: Final[str] = (
    "Factors must satisfy 0 < fac_min < 1 < fac_max, got fac_min={fac_min!r}, "
    "fac_max={fac_max!r}."
)
_MAX_REJECTS_ERROR_MSG: Final[str] = "max_rejects must be at least 1, got {value!r}."
_PI_EXPONENTS_ERROR_MSG: Final[str] = (
    "PI exponents must satisfy 0 <= previous_exponent <= current_exponent, got "
    "current_exponent={current!r}, previous_exponent={previous!r}."
)


# =============================================================================
# Configuration
# =============================================================================


@dataclass(slots=True, frozen=True)
class DtControllerConfig:
    """Configuration for adaptive step size control.

    Attributes:
        dt_min: Minimum allowed step size; a rejection at this size is fatal.
        dt_max: Maximum allowed step size.
        safety: Safety factor applied to step size updates.
        fac_min: Minimum multiplicative change factor.
        fac_max: Maximum multiplicative change factor.
        max_rejects: Consecutive rejections allowed within one step.
    """

    dt_min: float = DEFAULT_DT_MIN
    dt_max: float = float("inf")
    safety: float = 0.9
    fac_min: float = 0.1
    fac_max: float = 2.0
    max_rejects: int = 100

    def __post_init__(self) -> None:
        if not (0.0 < self.dt_min < self.dt_max):
            raise PreconditionError(
                _DT_LIMITS_ERROR_MSG.format(dt_min=self.dt_min, dt_max=self.dt_max)
            )
        if not (0.0 < self.safety <= 1.0):
            raise PreconditionError(_SAFETY_ERROR_MSG.format(safety=self.safety))
        if not (0.0 < self.fac_min < 1.0 < self.fac_max):
            raise PreconditionError(
                _FACTOR_ERROR_MSG.format(fac_min=self.fac_min, fac_max=self.fac_max)
            )
        if self.max_rejects < 1:
            raise PreconditionError(
                _MAX_REJECTS_ERROR_MSG.format(value=self.max_rejects)
            )

    def clamp(self, step_size: float) -> float:
        """Clamp a step size to ``[dt_min, dt_max]``."""
        return min(self.dt_max, max(self.dt_min, float(step_size)))


@dataclass(slots=True, frozen=True)
class StepDecision:
    """Outcome of checking one trial step.

    Attributes:
        accepted: Whether the step is accepted.
        error_norm: Weighted norm of the error estimate.
        next_step_size: Step size of the next attempt.
    """

    accepted: bool
    error_norm: float
    next_step_size: float


# =============================================================================
# Controllers
# =============================================================================


class StepSizeController(ABC):
    """
    Base class of step size controllers.

    Args:
        config: Step size limits and factors.
        tolerances: Error tolerances defining a unit error norm.
    """

    def __init__(
        self,
        config: DtControllerConfig | None = None,
        tolerances: ErrorTolerances | None = None,
    ) -> None:
        self._config = config if config is not None else DtControllerConfig()
        self._tolerances = tolerances if tolerances is not None else ErrorTolerances()

    @property
    def config(self) -> DtControllerConfig:
        """Step size limits and factors."""
        return self._config

    @property
    def tolerances(self) -> ErrorTolerances:
        """Error tolerances defining a unit error norm."""
        return self._tolerances

    @tolerances.setter
    def tolerances(self, val: ErrorTolerances) -> None:
        self._tolerances = val

    def init(self) -> None:
        """Reset controller history before a new integration."""

    def check_and_calc_next(
        self,
        step_size: float,
        variable: Variable,
        error: Variable,
        *,
        order: int,
    ) -> StepDecision:
        """
        Decide on a trial step and propose the next step size.

        Args:
            step_size: Step size of the trial step.
            variable: Estimate of the trial step, reference of relative errors.
            error: Error estimate of the trial step.
            order: Order of the error estimate.

        Returns:
            The decision.
        """
        norm = self._tolerances.calc_norm(variable, error)
        if norm <= 1.0:
            factor = self._accept_factor(norm, order)
            accepted = True
        else:
            factor = self._reject_factor(norm, order)
            accepted = False
        return StepDecision(
            accepted=accepted,
            error_norm=norm,
            next_step_size=self._config.clamp(step_size * factor),
        )

    @abstractmethod
    def _accept_factor(self, norm: float, order: int) -> float:
        """Step size factor after an accepted step with ``norm <= 1``."""

    def _reject_factor(self, norm: float, order: int) -> float:
        cfg = self._config
        if not math.isfinite(norm):
            return cfg.fac_min
        return max(cfg.fac_min, cfg.safety * norm ** (-1.0 / float(order + 1)))


class BasicStepSizeController(StepSizeController):
    """Controller using only the error of the current step."""

    def _accept_factor(self, norm: float, order: int) -> float:
        cfg = self._config
        if norm <= 0.0:
            return cfg.fac_max
        return min(cfg.fac_max, cfg.safety * norm ** (-1.0 / float(order + 1)))


class PIStepSizeController(StepSizeController):
    """
    Proportional-integral controller.

    Accepted steps use ``safety * norm**(-a/(p+1)) * prev**(b/(p+1))`` where
    ``prev`` is the error norm of the previous accepted step, ``a`` is
    ``current_exponent`` and ``b`` is ``previous_exponent``. Rejected steps
    fall back to the basic power law.

    Args:
        config: Step size limits and factors.
        tolerances: Error tolerances defining a unit error norm.
        current_exponent: Weight of the current error norm.
        previous_exponent: Weight of the previous error norm; must satisfy
            ``0 <= previous_exponent <= current_exponent``.

    Raises:
        PreconditionError: If the exponents are out of order.
    """

    _min_previous_norm: Final[float] = 1e-4

    def __init__(
        self,
        config: DtControllerConfig | None = None,
        tolerances: ErrorTolerances | None = None,
        *,
        current_exponent: float = DEFAULT_PI_CURRENT_EXPONENT,
        previous_exponent: float = DEFAULT_PI_PREVIOUS_EXPONENT,
    ) -> None:
        super().__init__(config, tolerances)
        if not (0.0 <= previous_exponent <= current_exponent):
            raise PreconditionError(
                _PI_EXPONENTS_ERROR_MSG.format(
                    current=current_exponent, previous=previous_exponent
                )
            )
        self._current_exponent = float(current_exponent)
        self._previous_exponent = float(previous_exponent)
        self._previous_norm = 1.0

    @property
    def current_exponent(self) -> float:
        """Weight of the current error norm."""
        return self._current_exponent

    @property
    def previous_exponent(self) -> float:
        """Weight of the previous error norm."""
        return self._previous_exponent

    def init(self) -> None:
        self._previous_norm = 1.0

    def _accept_factor(self, norm: float, order: int) -> float:
        cfg = self._config
        if norm <= 0.0:
            factor = cfg.fac_max
        else:
            denom = float(order + 1)
            factor = (
                cfg.safety
                * norm ** (-self._current_exponent / denom)
                * self._previous_norm ** (self._previous_exponent / denom)
            )
        self._previous_norm = max(norm, self._min_previous_norm)
        return min(cfg.fac_max, max(cfg.fac_min, factor))


# =============================================================================
# Initial step size
# =============================================================================


def initial_step_size(
    problem: Problem,
    time: float,
    variable: Variable,
    *,
    order: int,
    tolerances: ErrorTolerances,
    config: DtControllerConfig,
) -> float:
    """
    Estimate a starting step size from two evaluations of the problem.

    Hairer, Norsett and Wanner, Solving Ordinary Differential Equations I,
    section II.4.

    Args:
        problem: Problem to integrate.
        time: Initial time.
        variable: Initial variable.
        order: Order of the error estimate of the formula.
        tolerances: Error tolerances weighting the norms.
        config: Step size limits.

    Returns:
        Initial step size clamped to the configured limits.
    """
    request_evaluations(problem, time, variable, DIFF_COEFF)
    slope = copy_variable(problem.diff_coeff())

    variable_norm = tolerances.calc_norm(variable, variable)
    slope_norm = tolerances.calc_norm(variable, slope)
    if variable_norm < 1e-5 or slope_norm < 1e-5:
        trial = 1e-6
    else:
        trial = 0.01 * variable_norm / slope_norm
    trial = config.clamp(trial)

    request_evaluations(problem, time + trial, variable + trial * slope, DIFF_COEFF)
    curvature_norm = (
        tolerances.calc_norm(variable, problem.diff_coeff() - slope) / trial
    )

    largest = max(slope_norm, curvature_norm)
    if largest <= 1e-15:
        proposal = max(1e-6, trial * 1e-3)
    else:
        proposal = (0.01 / largest) ** (1.0 / float(order + 1))
    return config.clamp(min(100.0 * trial, proposal))
