# src/ode_engine/newton.py
"""
Inexact Newton solver for the stage equations of implicit Runge-Kutta formulas.

Each implicit stage of a diagonally implicit formula solves

    z = offset + h * a * f(t_i, x + z)

for the stage update ``z``. The Jacobian is evaluated once per step at the
start of the step and ``I - h * a * J`` is factorized once; every Newton
iteration then costs one evaluation of the differential coefficient and one
back substitution.

Iterations stop with the criterion of Hairer and Wanner, Solving Ordinary
Differential Equations II, section IV.8:

    rate / (1 - rate) * ||dz|| <= tolerance_rate

where ``rate`` is the ratio of the last two update norms, measured in units
of the error tolerances.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Final, cast

import numpy as np

from .errors import AlgorithmFailure, CapabilityError, PreconditionError, require_positive
from .evaluation import (
    DIFF_COEFF,
    DIFF_COEFF_AND_JACOBIAN,
    allowed_evaluations_of,
    request_evaluations,
    require_evaluations,
)
from .linalg import build_stage_matrix, copy_variable, factorize
from .tolerances import ErrorTolerances

if TYPE_CHECKING:
    from collections.abc import Callable

    from .iteration_logger import IterationLogger
    from .linalg import Variable
    from .problem import Problem

_LOGGER = logging.getLogger(__name__)

_MASS_NOT_SUPPORTED_ERROR_MSG: Final[str] = (
    "{owner} does not support problems with a mass matrix; {problem} declares one."
)
_NOT_UPDATED_ERROR_MSG: Final[str] = (
    "InexactNewtonUpdateSolver was used before update_jacobian was called."
)
_SCALAR_SINGULAR_ERROR_MSG: Final[str] = (
    "Value to invert in the scalar stage equation is too small: {value!r}."
)
_NON_FINITE_UPDATE_ERROR_MSG: Final[str] = (
    "Newton update is not finite (step size {step_size!r})."
)
_NOT_CONVERGED_ERROR_MSG: Final[str] = (
    "Newton iteration did not converge within {iterations} iterations "
    "(update norm {update:.3e}, tolerance rate {rate:.3e})."
)

_EPS: Final[float] = float(np.finfo(np.float64).eps)


class InexactNewtonUpdateSolver:
    """
    Simplified Newton solver with a Jacobian frozen over one step.

    Args:
        tolerance_rate: Bound on the estimated remaining error of ``z`` in
            units of the error tolerances.
        max_iterations: Newton iterations allowed per stage.
        tolerances: Error tolerances weighting update norms.
    """

    required_evaluations = DIFF_COEFF_AND_JACOBIAN

    def __init__(
        self,
        *,
        tolerance_rate: float = 1e-2,
        max_iterations: int = 100,
        tolerances: ErrorTolerances | None = None,
    ) -> None:
        self._tolerance_rate = require_positive("tolerance_rate", tolerance_rate)
        self._max_iterations = int(require_positive("max_iterations", max_iterations))
        self._tolerances = tolerances if tolerances is not None else ErrorTolerances()
        self._problem: Problem | None = None
        self._step_size = 0.0
        self._slope_coeff = 0.0
        self._variable: Variable = 0.0
        self._initial_slope: Variable = 0.0
        self._solve_linear: Callable[[Variable], Variable] | None = None
        self.iterations = 0
        self.update_norm = 0.0

    @property
    def tolerance_rate(self) -> float:
        """Bound on the estimated remaining error in units of the tolerances."""
        return self._tolerance_rate

    @property
    def max_iterations(self) -> int:
        """Newton iterations allowed per stage."""
        return self._max_iterations

    @property
    def initial_slope(self) -> Variable:
        """Differential coefficient at the start of the step."""
        self._require_updated()
        return self._initial_slope

    def tolerances(self, val: ErrorTolerances) -> None:
        """Set the tolerances weighting update norms."""
        self._tolerances = val

    def check_problem(self, problem: Problem) -> None:
        """
        Check that a problem can be handled.

        Raises:
            CapabilityError: If the problem has no Jacobian or declares a mass
                matrix.
        """
        require_evaluations(
            problem, self.required_evaluations, owner=type(self).__name__
        )
        if allowed_evaluations_of(problem).mass:
            raise CapabilityError(
                _MASS_NOT_SUPPORTED_ERROR_MSG.format(
                    owner=type(self).__name__, problem=type(problem).__name__
                )
            )

    def configure_iteration_logger(self, iteration_logger: IterationLogger) -> None:
        """Register the iteration count and update norm of the last stage."""
        iteration_logger.append(
            "NewtonIterations", lambda _: self.iterations, exist_ok=True
        )
        iteration_logger.append("Update", lambda _: self.update_norm, exist_ok=True)

    def update_jacobian(
        self,
        problem: Problem,
        time: float,
        step_size: float,
        variable: Variable,
        slope_coeff: float,
    ) -> None:
        """
        Evaluate the Jacobian and factorize ``I - step_size * slope_coeff * J``.

        Args:
            problem: Problem to linearize.
            time: Time at the start of the step.
            step_size: Step size h.
            variable: Variable at the start of the step.
            slope_coeff: Diagonal coefficient of the formula.

        Raises:
            AlgorithmFailure: If the iteration matrix is singular.
        """
        self._solve_linear = None
        step_size = require_positive("step_size", step_size)
        request_evaluations(problem, time, variable, DIFF_COEFF_AND_JACOBIAN)
        self._initial_slope = copy_variable(problem.diff_coeff())
        jacobian = problem.jacobian()  # type: ignore[attr-defined]
        scale = step_size * slope_coeff
        if np.ndim(jacobian) == 0 and not isinstance(variable, np.ndarray):
            value = 1.0 - scale * float(jacobian)
            if not abs(value) > _EPS:
                raise AlgorithmFailure(_SCALAR_SINGULAR_ERROR_MSG.format(value=value))
            self._solve_linear = lambda rhs: rhs / value
        else:
            matrix_solver = factorize(build_stage_matrix(jacobian, step_size, slope_coeff))
            self._solve_linear = lambda rhs: matrix_solver(np.asarray(rhs, dtype=float))
        self._problem = problem
        self._step_size = step_size
        self._slope_coeff = float(slope_coeff)
        self._variable = copy_variable(variable)

    def solve(self, time: float, offset: Variable, initial: Variable) -> Variable:
        """
        Solve ``z = offset + h * a * f(time, x + z)`` starting from ``initial``.

        Args:
            time: Time of the stage.
            offset: Known part of the stage update.
            initial: Initial guess of ``z``.

        Returns:
            The stage update ``z``.

        Raises:
            AlgorithmFailure: If an update is not finite or the iteration does
                not converge within ``max_iterations``.
        """
        self._require_updated()
        problem = cast("Problem", self._problem)
        solve_linear = cast("Callable[[Variable], Variable]", self._solve_linear)
        scale = self._step_size * self._slope_coeff
        solution = copy_variable(initial)
        previous_norm: float | None = None
        self.iterations = 0
        self.update_norm = 0.0
        while self.iterations < self._max_iterations:
            request_evaluations(problem, time, self._variable + solution, DIFF_COEFF)
            residual = solution - scale * problem.diff_coeff() - offset
            update = -solve_linear(residual)
            if not np.all(np.isfinite(update)):
                raise AlgorithmFailure(
                    _NON_FINITE_UPDATE_ERROR_MSG.format(step_size=self._step_size)
                )
            solution = solution + update
            self.iterations += 1
            self.update_norm = self._tolerances.calc_norm(self._variable, update)
            if self._converged(previous_norm):
                return solution
            previous_norm = self.update_norm
        raise AlgorithmFailure(
            _NOT_CONVERGED_ERROR_MSG.format(
                iterations=self._max_iterations,
                update=self.update_norm,
                rate=self._tolerance_rate,
            )
        )

    def _converged(self, previous_norm: float | None) -> bool:
        if self.update_norm == 0.0:
            return True
        if previous_norm is None or previous_norm == 0.0:
            return False
        rate = self.update_norm / previous_norm
        if rate >= 1.0:
            _LOGGER.debug(
                "Newton update grew at iteration %d (rate %.3g).", self.iterations, rate
            )
            return False
        return rate / (1.0 - rate) * self.update_norm <= self._tolerance_rate

    def _require_updated(self) -> None:
        if self._solve_linear is None:
            raise PreconditionError(_NOT_UPDATED_ERROR_MSG)
