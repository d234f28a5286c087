# src/ode_engine/core_solver.py
"""Drivers advancing a formula through time.

EmbeddedSolver is the adaptive driver: each step asks an embedded formula for
an estimate and an error estimate, lets a step size controller accept or
reject it, and retries rejected steps with a smaller step size from the same
``(time, variable)``. SimpleSolver takes fixed steps with any formula.

Both drivers share the state machine:
    uninitialized --init--> ready --step--> stepping --> ready
                                                     \\-> failed (on any error)
``init`` restarts from any state. ``solve_till`` repeats ``step`` and clamps
the last step so that ``time`` lands exactly on the requested end time.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from enum import Enum
from typing import TYPE_CHECKING, Final

from .errors import (
    PreconditionError,
    StepSizeUnderflowError,
    TooManyRejectionsError,
    require_positive,
)
from .iteration_logger import IterationLogger
from .linalg import copy_variable
from .step_control import (
    BasicStepSizeController,
    StepSizeController,
    initial_step_size,
)

if TYPE_CHECKING:
    from .formulas.base import EmbeddedFormula, Formula
    from .linalg import Variable
    from .problem import Problem
    from .tolerances import ErrorTolerances

_LOGGER = logging.getLogger(__name__)

# Relative slack absorbing rounding in accumulated times.
_TIME_SLACK: Final[float] = 1e-12


# =============================================================================
# Errors / messages
# =============================================================================

_NOT_INITIALIZED_ERROR_MSG: Final[str] = (
    "Solver is not initialized; call init(time, variable) first."
)
_FAILED_ERROR_MSG: Final[str] = (
    "Solver failed in a previous step; call init(time, variable) to restart."
)
_END_TIME_ERROR_MSG: Final[str] = (
    "end_time {end_time!r} is before the current time {time!r}."
)
_TOO_MANY_REJECTS_ERROR_MSG: Final[str] = (
    "Too many rejected steps at time {time!r} (last step size {step_size!r})."
)
_DT_UNDERFLOW_ERROR_MSG: Final[str] = (
    "Step rejected at the minimum step size {dt_min!r} at time {time!r}."
)


class SolverState(Enum):
    """Lifecycle state of a driver."""

    UNINITIALIZED = "uninitialized"
    READY = "ready"
    STEPPING = "stepping"
    FAILED = "failed"


# =============================================================================
# Shared driver logic
# =============================================================================


class SolverBase(ABC):
    """
    Base class of drivers.

    Args:
        formula: Formula taking the steps.
        iteration_logger: Sink receiving one record per accepted step during
            ``solve_till``; a debug-level logger is used if None.
        logger: Logger for driver diagnostics.
    """

    def __init__(
        self,
        formula: Formula,
        *,
        iteration_logger: IterationLogger | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        self._formula = formula
        self._logger = logger if logger is not None else _LOGGER
        self._state = SolverState.UNINITIALIZED
        self._time = 0.0
        self._variable: Variable = 0.0
        self._steps = 0
        self._step_size = 0.0
        self._last_step_size = 0.0
        if iteration_logger is None:
            iteration_logger = IterationLogger(logger=self._logger)
        self.configure_iteration_logger(iteration_logger)
        formula.configure_iteration_logger(iteration_logger)
        self._iteration_logger = iteration_logger

    # ------------------------------------------------------------------
    # Observability
    # ------------------------------------------------------------------

    @property
    def formula(self) -> Formula:
        """Formula taking the steps."""
        return self._formula

    @property
    def problem(self) -> Problem:
        """Problem being integrated."""
        return self._formula.problem

    @property
    def state(self) -> SolverState:
        """Lifecycle state."""
        return self._state

    @property
    def time(self) -> float:
        """Current time."""
        return self._time

    @property
    def variable(self) -> Variable:
        """Current variable."""
        return self._variable

    @property
    def steps(self) -> int:
        """Number of accepted steps since ``init``."""
        return self._steps

    @property
    def step_size(self) -> float:
        """Step size of the next step."""
        return self._step_size

    @step_size.setter
    def step_size(self, val: float) -> None:
        self._step_size = require_positive("step_size", val)

    @property
    def last_step_size(self) -> float:
        """Step size of the last accepted step."""
        return self._last_step_size

    @property
    def iteration_logger(self) -> IterationLogger:
        """Sink receiving per-step records during ``solve_till``."""
        return self._iteration_logger

    def configure_iteration_logger(self, iteration_logger: IterationLogger) -> None:
        """Register the driver's diagnostic fields."""
        iteration_logger.append("Steps", lambda solver: solver.steps, exist_ok=True)
        iteration_logger.append("Time", lambda solver: solver.time, exist_ok=True)
        iteration_logger.append(
            "StepSize", lambda solver: solver.last_step_size, exist_ok=True
        )

    # ------------------------------------------------------------------
    # Stepping
    # ------------------------------------------------------------------

    def init(self, time: float, variable: Variable) -> None:
        """
        Set the initial state and reset counters and the step size.

        Args:
            time: Initial time.
            variable: Initial variable; copied.
        """
        self._time = float(time)
        self._variable = copy_variable(variable)
        self._steps = 0
        self._last_step_size = 0.0
        self._iteration_logger.reset()
        self._state = SolverState.STEPPING
        try:
            self._reset()
        except Exception:
            self._state = SolverState.FAILED
            raise
        self._state = SolverState.READY

    def step(self) -> None:
        """
        Take one accepted step.

        Raises:
            PreconditionError: If the driver is not ready.
        """
        self._require_ready()
        self._state = SolverState.STEPPING
        try:
            self._step()
        except Exception:
            self._state = SolverState.FAILED
            raise
        self._state = SolverState.READY

    def solve_till(self, end_time: float) -> None:
        """
        Step until ``time`` equals ``end_time``.

        The last step is shortened to land on ``end_time``; the step size
        proposed before shortening is kept for later calls.

        Raises:
            PreconditionError: If the driver is not ready or ``end_time`` is
                before the current time.
        """
        self._require_ready()
        end_time = float(end_time)
        if end_time < self._time:
            raise PreconditionError(
                _END_TIME_ERROR_MSG.format(end_time=end_time, time=self._time)
            )
        while self._time < end_time:
            remaining = end_time - self._time
            unclamped = self._step_size
            clamped = unclamped * (1.0 + _TIME_SLACK) >= remaining
            if clamped:
                self._step_size = remaining
            self.step()
            if clamped and self._last_step_size == remaining:
                self._time = end_time
                self._step_size = max(self._step_size, unclamped)
            self._iteration_logger.write_iteration(self)
        self._iteration_logger.write_summary(self)

    def _require_ready(self) -> None:
        if self._state is SolverState.UNINITIALIZED:
            raise PreconditionError(_NOT_INITIALIZED_ERROR_MSG)
        if self._state is SolverState.FAILED:
            raise PreconditionError(_FAILED_ERROR_MSG)

    @abstractmethod
    def _reset(self) -> None:
        """Reset driver-specific state during ``init``."""

    @abstractmethod
    def _step(self) -> None:
        """Take one accepted step from the current state."""


# =============================================================================
# Drivers
# =============================================================================


class EmbeddedSolver(SolverBase):
    """
    Adaptive driver for embedded formulas.

    Args:
        formula: Embedded formula taking the steps.
        controller: Step size controller; BasicStepSizeController if None.
        tolerances: Error tolerances; replaces the controller's if given.
        step_size: Initial step size; estimated from the problem if None.
        iteration_logger: Sink receiving per-step records during ``solve_till``.
        logger: Logger for driver diagnostics.
    """

    def __init__(
        self,
        formula: EmbeddedFormula,
        *,
        controller: StepSizeController | None = None,
        tolerances: ErrorTolerances | None = None,
        step_size: float | None = None,
        iteration_logger: IterationLogger | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        self._controller = (
            controller if controller is not None else BasicStepSizeController()
        )
        self._rejections = 0
        self._error_norm = 0.0
        super().__init__(formula, iteration_logger=iteration_logger, logger=logger)
        self._embedded: EmbeddedFormula = formula
        if tolerances is not None:
            self._controller.tolerances = tolerances
        formula.tolerances(self._controller.tolerances)
        self._user_step_size = (
            None if step_size is None else require_positive("step_size", step_size)
        )
        if self._user_step_size is not None:
            self._step_size = self._user_step_size

    @property
    def controller(self) -> StepSizeController:
        """Step size controller."""
        return self._controller

    @property
    def tolerances(self) -> ErrorTolerances:
        """Error tolerances used for step acceptance."""
        return self._controller.tolerances

    @tolerances.setter
    def tolerances(self, val: ErrorTolerances) -> None:
        self._controller.tolerances = val
        self._embedded.tolerances(val)

    @property
    def step_size(self) -> float:
        """Step size of the next attempt."""
        return self._step_size

    @step_size.setter
    def step_size(self, val: float) -> None:
        self._step_size = require_positive("step_size", val)
        self._user_step_size = self._step_size

    @property
    def rejections(self) -> int:
        """Number of rejected trial steps since ``init``."""
        return self._rejections

    @property
    def error_norm(self) -> float:
        """Error norm of the last trial step."""
        return self._error_norm

    def configure_iteration_logger(self, iteration_logger: IterationLogger) -> None:
        super().configure_iteration_logger(iteration_logger)
        iteration_logger.append(
            "EstError", lambda solver: solver.error_norm, exist_ok=True
        )
        iteration_logger.append(
            "Rejections", lambda solver: solver.rejections, exist_ok=True
        )

    def _reset(self) -> None:
        self._controller.init()
        self._rejections = 0
        self._error_norm = 0.0
        if self._user_step_size is not None:
            self._step_size = self._user_step_size
        else:
            self._step_size = initial_step_size(
                self.problem,
                self._time,
                self._variable,
                order=self._embedded.lesser_order,
                tolerances=self._controller.tolerances,
                config=self._controller.config,
            )

    def _step(self) -> None:
        """
        Take one accepted step, retrying rejected trial steps.

        Raises:
            StepSizeUnderflowError: If a step is rejected at ``dt_min``.
            TooManyRejectionsError: If more than ``max_rejects`` consecutive
                trial steps are rejected.
        """
        cfg = self._controller.config
        rejects = 0
        while True:
            step_size = self._step_size
            estimate, error = self._embedded.step_embedded(
                self._time, step_size, self._variable
            )
            decision = self._controller.check_and_calc_next(
                step_size, estimate, error, order=self._embedded.lesser_order
            )
            self._error_norm = decision.error_norm
            if decision.accepted:
                self._time += step_size
                self._variable = estimate
                self._last_step_size = step_size
                self._step_size = decision.next_step_size
                self._steps += 1
                return

            if step_size <= cfg.dt_min:
                raise StepSizeUnderflowError(
                    _DT_UNDERFLOW_ERROR_MSG.format(dt_min=cfg.dt_min, time=self._time)
                )
            rejects += 1
            self._rejections += 1
            if rejects > cfg.max_rejects:
                raise TooManyRejectionsError(
                    _TOO_MANY_REJECTS_ERROR_MSG.format(
                        time=self._time, step_size=step_size
                    )
                )
            self._logger.debug(
                "Rejected step at time %g with step size %g (error norm %g).",
                self._time,
                step_size,
                decision.error_norm,
            )
            self._step_size = decision.next_step_size


class SimpleSolver(SolverBase):
    """
    Fixed step driver for any formula.

    Args:
        formula: Formula taking the steps.
        step_size: Step size of every step except a shortened last one.
        iteration_logger: Sink receiving per-step records during ``solve_till``.
        logger: Logger for driver diagnostics.
    """

    def __init__(
        self,
        formula: Formula,
        *,
        step_size: float,
        iteration_logger: IterationLogger | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        super().__init__(formula, iteration_logger=iteration_logger, logger=logger)
        self._step_size = require_positive("step_size", step_size)

    @property
    def rejections(self) -> int:
        """Always zero; every fixed step is accepted."""
        return 0

    @property
    def error_norm(self) -> float:
        """Always NaN; fixed steps carry no error estimate."""
        return float("nan")

    def _reset(self) -> None:
        """Keep the configured step size."""

    def _step(self) -> None:
        step_size = self._step_size
        self._variable = self._formula.step(self._time, step_size, self._variable)
        self._time += step_size
        self._last_step_size = step_size
        self._steps += 1
