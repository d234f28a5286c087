# src/ode_engine/equation_solvers.py
"""
Stage equation solvers for Rosenbrock formulas.

Each Rosenbrock stage solves ``(M - h * gamma * J) k = rhs``. The strategies
here differ in how the stage matrix is represented:

- ScalarEquationSolver: closed-form reciprocal for scalar problems.
- LuEquationSolver: dense or sparse LU factorization of the exact Jacobian.
- BicgstabEquationSolver / GmresEquationSolver: matrix-free Krylov solves using
  a central finite-difference directional derivative of the problem.
- MixedBroydenEquationSolver: explicit inverse of the stage matrix, kept up to
  date with rank-1 secant updates between refactorizations.

Every solver is invalid until ``evaluate_and_update_jacobian`` has been called,
and each call resets the state it prepared for the previous step.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from enum import Enum
from typing import TYPE_CHECKING, Any, ClassVar, Final, cast

import numpy as np
from scipy.sparse import issparse
from scipy.sparse.linalg import bicgstab, gmres

from .errors import (
    AlgorithmFailure,
    CapabilityError,
    PreconditionError,
    require_non_negative,
    require_positive,
)
from .evaluation import (
    DIFF_COEFF,
    DIFF_COEFF_AND_JACOBIAN,
    EvaluationType,
    allowed_evaluations_of,
    request_evaluations,
    require_evaluations,
    supported_subset,
)
from .linalg import (
    apply_mass,
    as_linear_operator,
    as_vector,
    build_stage_matrix,
    copy_variable,
    dense_inverse,
    factorize,
)
from .tolerances import ErrorTolerances

if TYPE_CHECKING:
    from collections.abc import Callable

    from numpy.typing import NDArray
    from scipy.sparse.linalg import LinearOperator

    from .iteration_logger import IterationLogger
    from .linalg import Variable
    from .problem import Problem

_LOGGER = logging.getLogger(__name__)

_EPS: Final[float] = float(np.finfo(np.float64).eps)
_SQRT_EPS: Final[float] = float(np.sqrt(_EPS))
_TINY: Final[float] = float(np.finfo(np.float64).tiny)

_NOT_EVALUATED_ERROR_MSG: Final[str] = (
    "{name} was used before evaluate_and_update_jacobian was called."
)
_SCALAR_SINGULAR_ERROR_MSG: Final[str] = (
    "Value to invert in the scalar stage equation is too small: {value!r}."
)
_KRYLOV_NOT_CONVERGED_ERROR_MSG: Final[str] = (
    "{name} did not converge within {passes} passes "
    "(residual norm {residual:.3e}, tolerance rate {rate:.3e})."
)
_SCALAR_WITHOUT_JACOBIAN_ERROR_MSG: Final[str] = (
    "Scalar problems need the jacobian capability; {problem} does not declare it."
)
_UNKNOWN_EQUATION_SOLVER_ERROR_MSG: Final[str] = (
    "Unknown equation solver {name!r}; expected one of {choices}."
)


# =============================================================================
# Common contract
# =============================================================================


class RosenbrockEquationSolver(ABC):
    """
    Base class of stage equation solvers.

    Args:
        inverted_jacobian_coeff: Diagonal coefficient gamma of the formula.
    """

    name: ClassVar[str]
    required_evaluations: ClassVar[EvaluationType] = DIFF_COEFF_AND_JACOBIAN

    def __init__(self, inverted_jacobian_coeff: float) -> None:
        self._coeff = require_positive(
            "inverted_jacobian_coeff", inverted_jacobian_coeff
        )
        self._evaluated = False
        self._step_size = 0.0
        self._time_derivative: Variable | None = None
        self._mass: Any = None

    @property
    def inverted_jacobian_coeff(self) -> float:
        """Diagonal coefficient gamma used in the stage matrix."""
        return self._coeff

    @property
    def step_size(self) -> float:
        """Step size of the last evaluation."""
        self._require_evaluated()
        return self._step_size

    def check_problem(self, problem: Problem) -> None:
        """
        Check that a problem supports every evaluation this solver requests.

        Raises:
            CapabilityError: If the problem lacks a required capability.
        """
        require_evaluations(
            problem, self.required_evaluations, owner=type(self).__name__
        )

    @abstractmethod
    def evaluate_and_update_jacobian(
        self,
        problem: Problem,
        time: float,
        step_size: float,
        variable: Variable,
    ) -> None:
        """
        Evaluate the problem and prepare the stage matrix for ``solve``.

        Args:
            problem: Problem to linearize.
            time: Time at the start of the step.
            step_size: Step size h.
            variable: Variable at the start of the step.
        """

    def update_jacobian(
        self,
        problem: Problem,
        time: float,
        step_size: float,
        variable: Variable,
    ) -> None:
        """Alias of ``evaluate_and_update_jacobian``."""
        self.evaluate_and_update_jacobian(problem, time, step_size, variable)

    @abstractmethod
    def apply_jacobian(self, target: Variable) -> Variable:
        """Return the Jacobian applied to ``target``."""

    def add_time_derivative_term(
        self, step_size: float, coeff: float, target: Variable
    ) -> Variable:
        """
        Add ``step_size * coeff * df/dt`` to ``target``.

        Array targets are updated in place. Nothing is added for problems
        without the time_derivative capability.

        Returns:
            The updated target.
        """
        self._require_evaluated()
        if self._time_derivative is None:
            return target
        term = step_size * coeff * self._time_derivative
        if isinstance(target, np.ndarray):
            target += term
            return target
        return target + term

    @abstractmethod
    def solve(self, rhs: Variable) -> Variable:
        """Solve ``(M - h * gamma * J) result = rhs``."""

    def tolerances(self, val: ErrorTolerances) -> None:
        """Set error tolerances; direct solvers ignore them."""

    def configure_iteration_logger(self, iteration_logger: IterationLogger) -> None:
        """Register diagnostic fields; direct solvers have none."""

    def _request(self, problem: Problem, *, jacobian: bool) -> EvaluationType:
        base = DIFF_COEFF_AND_JACOBIAN if jacobian else DIFF_COEFF
        return base | supported_subset(problem, "time_derivative", "mass")

    def _store_optional(self, problem: Any, request: EvaluationType) -> None:
        self._time_derivative = (
            copy_variable(problem.time_derivative()) if request.time_derivative else None
        )
        self._mass = problem.mass() if request.mass else None

    def _require_evaluated(self) -> None:
        if not self._evaluated:
            raise PreconditionError(
                _NOT_EVALUATED_ERROR_MSG.format(name=type(self).__name__)
            )


# =============================================================================
# Direct variants
# =============================================================================


class ScalarEquationSolver(RosenbrockEquationSolver):
    """Stage equation solver for scalar problems."""

    name = "scalar"

    def __init__(self, inverted_jacobian_coeff: float) -> None:
        super().__init__(inverted_jacobian_coeff)
        self._jacobian = 0.0
        self._inverted = 1.0

    @property
    def jacobian(self) -> float:
        """Jacobian of the last evaluation."""
        self._require_evaluated()
        return self._jacobian

    def evaluate_and_update_jacobian(
        self,
        problem: Problem,
        time: float,
        step_size: float,
        variable: Variable,
    ) -> None:
        """
        Evaluate the problem and compute the scalar stage value.

        Raises:
            AlgorithmFailure: If ``M - h * gamma * J`` is smaller than machine
                epsilon in magnitude.
        """
        self._evaluated = False
        step_size = require_positive("step_size", step_size)
        request = self._request(problem, jacobian=True)
        request_evaluations(problem, time, variable, request)
        self._store_optional(problem, request)
        self._jacobian = float(problem.jacobian())  # type: ignore[attr-defined]
        mass = 1.0 if self._mass is None else float(self._mass)
        inverted = mass - step_size * self._coeff * self._jacobian
        if abs(inverted) < _EPS:
            raise AlgorithmFailure(_SCALAR_SINGULAR_ERROR_MSG.format(value=inverted))
        self._inverted = inverted
        self._step_size = step_size
        self._evaluated = True

    def apply_jacobian(self, target: Variable) -> Variable:
        self._require_evaluated()
        return self._jacobian * target

    def solve(self, rhs: Variable) -> Variable:
        self._require_evaluated()
        return rhs / self._inverted


class LuEquationSolver(RosenbrockEquationSolver):
    """Stage equation solver factorizing the exact stage matrix."""

    name = "lu"

    def __init__(self, inverted_jacobian_coeff: float) -> None:
        super().__init__(inverted_jacobian_coeff)
        self._jacobian: Any = None
        self._solver: Callable[[NDArray[np.floating]], NDArray[np.floating]] | None = (
            None
        )

    @property
    def jacobian(self) -> Any:
        """Jacobian of the last evaluation, dense or sparse."""
        self._require_evaluated()
        return self._jacobian

    def evaluate_and_update_jacobian(
        self,
        problem: Problem,
        time: float,
        step_size: float,
        variable: Variable,
    ) -> None:
        """
        Evaluate the problem and factorize the stage matrix.

        Raises:
            AlgorithmFailure: If the stage matrix is singular.
        """
        self._evaluated = False
        step_size = require_positive("step_size", step_size)
        request = self._request(problem, jacobian=True)
        request_evaluations(problem, time, variable, request)
        self._store_optional(problem, request)
        jacobian = problem.jacobian()  # type: ignore[attr-defined]
        self._jacobian = jacobian if issparse(jacobian) else np.array(
            jacobian, dtype=float, copy=True
        )
        matrix = build_stage_matrix(self._jacobian, step_size, self._coeff, self._mass)
        self._solver = factorize(matrix)
        self._step_size = step_size
        self._evaluated = True

    def apply_jacobian(self, target: Variable) -> Variable:
        self._require_evaluated()
        return np.asarray(self._jacobian @ as_vector(target), dtype=float)

    def solve(self, rhs: Variable) -> Variable:
        self._require_evaluated()
        solver = cast(
            "Callable[[NDArray[np.floating]], NDArray[np.floating]]", self._solver
        )
        return solver(as_vector(rhs))


# =============================================================================
# Matrix-free Krylov variants
# =============================================================================


class _MatrixFreeEquationSolver(RosenbrockEquationSolver):
    """
    Base of Krylov solvers using a finite-difference Jacobian product.

    Each ``solve`` runs at most ``max_restarts`` passes of the Krylov kernel and
    checks the true residual after every pass. A pass is accepted once the
    weighted residual norm relative to the right-hand side is at most
    ``tolerance_rate``; otherwise AlgorithmFailure is raised.

    Args:
        inverted_jacobian_coeff: Diagonal coefficient gamma of the formula.
        tolerance_rate: Residual norm, in units of the error tolerances, at which
            a solve is accepted.
        max_restarts: Maximum number of kernel passes per solve.
        tolerances: Error tolerances weighting the residual.
    """

    required_evaluations = DIFF_COEFF
    default_max_restarts: ClassVar[int] = 100

    def __init__(
        self,
        inverted_jacobian_coeff: float,
        *,
        tolerance_rate: float = 1e-2,
        max_restarts: int | None = None,
        tolerances: ErrorTolerances | None = None,
    ) -> None:
        super().__init__(inverted_jacobian_coeff)
        self._tolerance_rate = require_positive("tolerance_rate", tolerance_rate)
        self._max_restarts = int(
            require_positive(
                "max_restarts",
                self.default_max_restarts if max_restarts is None else max_restarts,
            )
        )
        self._tolerances = tolerances if tolerances is not None else ErrorTolerances()
        self._problem: Problem | None = None
        self._time = 0.0
        self._variable: NDArray[np.floating] = np.zeros(0)
        self.iterations = 0
        self.residual_norm = 0.0

    @property
    def tolerance_rate(self) -> float:
        """Accepted residual norm in units of the error tolerances."""
        return self._tolerance_rate

    def tolerances(self, val: ErrorTolerances) -> None:
        """Set the tolerances weighting the residual."""
        self._tolerances = val

    def configure_iteration_logger(self, iteration_logger: IterationLogger) -> None:
        """Register the iteration count and residual norm of the last solve.

        The fields read from this solver whatever algorithm writes the record.
        """
        iteration_logger.append("Iterations", lambda _: self.iterations, exist_ok=True)
        iteration_logger.append("Residual", lambda _: self.residual_norm, exist_ok=True)

    def evaluate_and_update_jacobian(
        self,
        problem: Problem,
        time: float,
        step_size: float,
        variable: Variable,
    ) -> None:
        self._evaluated = False
        step_size = require_positive("step_size", step_size)
        request = self._request(problem, jacobian=False)
        request_evaluations(problem, time, variable, request)
        self._store_optional(problem, request)
        self._problem = problem
        self._time = float(time)
        self._variable = np.array(as_vector(variable), copy=True)
        self._step_size = step_size
        self._evaluated = True

    def apply_jacobian(self, target: Variable) -> Variable:
        """
        Apply the Jacobian by a central finite difference.

        The difference width is ``sqrt(eps) / ||target||``; a zero target gives
        a zero result without evaluating the problem.
        """
        self._require_evaluated()
        problem = cast("Problem", self._problem)
        direction = as_vector(target)
        target_norm = float(np.linalg.norm(direction))
        if target_norm < _TINY:
            return np.zeros_like(self._variable)
        width = _SQRT_EPS / target_norm
        request_evaluations(
            problem, self._time, self._variable + width * direction, DIFF_COEFF
        )
        forward = np.array(problem.diff_coeff(), dtype=float, copy=True)
        request_evaluations(
            problem, self._time, self._variable - width * direction, DIFF_COEFF
        )
        backward = np.asarray(problem.diff_coeff(), dtype=float)
        return (forward - backward) / (2.0 * width)

    def _apply_stage_matrix(self, target: NDArray[np.floating]) -> NDArray[np.floating]:
        return np.asarray(
            apply_mass(self._mass, target)
            - self._step_size * self._coeff * self.apply_jacobian(target),
            dtype=float,
        )

    def solve(self, rhs: Variable) -> Variable:
        """
        Solve the stage equation iteratively.

        Raises:
            AlgorithmFailure: If the residual tolerance is not met within
                ``max_restarts`` passes.
        """
        self._require_evaluated()
        rhs_vec = as_vector(rhs)
        size = rhs_vec.size
        operator = as_linear_operator(size, self._apply_stage_matrix)
        # Sufficient bound on ||r||_2 for the weighted RMS norm to meet the rate.
        threshold = (
            self._tolerance_rate
            * np.sqrt(size)
            * float(np.min(self._tolerances.scale(rhs_vec)))
        )
        solution = np.zeros(size)
        self.iterations = 0
        for restart in range(self._max_restarts):
            solution = self._run_pass(operator, rhs_vec, solution, threshold)
            residual = self._apply_stage_matrix(solution) - rhs_vec
            self.residual_norm = self._tolerances.calc_norm(rhs_vec, residual)
            if self.residual_norm <= self._tolerance_rate:
                return solution
            _LOGGER.debug(
                "%s pass %d: residual norm %.3e",
                type(self).__name__,
                restart + 1,
                self.residual_norm,
            )
        raise AlgorithmFailure(
            _KRYLOV_NOT_CONVERGED_ERROR_MSG.format(
                name=type(self).__name__,
                passes=self._max_restarts,
                residual=self.residual_norm,
                rate=self._tolerance_rate,
            )
        )

    @abstractmethod
    def _run_pass(
        self,
        operator: LinearOperator,
        rhs: NDArray[np.floating],
        initial: NDArray[np.floating],
        threshold: float,
    ) -> NDArray[np.floating]:
        """Run one pass of the Krylov kernel starting from ``initial``."""

    def _count_iteration(self, _: Any) -> None:
        self.iterations += 1


class BicgstabEquationSolver(_MatrixFreeEquationSolver):
    """
    Matrix-free stage equation solver using BiCGSTAB.

    Args:
        inverted_jacobian_coeff: Diagonal coefficient gamma of the formula.
        max_iterations: Maximum BiCGSTAB iterations per pass.
        **kwargs: Options of the matrix-free base (tolerance_rate,
            max_restarts, tolerances).
    """

    name = "bicgstab"
    default_max_restarts = 5

    def __init__(
        self,
        inverted_jacobian_coeff: float,
        *,
        max_iterations: int = 1000,
        **kwargs: Any,
    ) -> None:
        super().__init__(inverted_jacobian_coeff, **kwargs)
        self._max_iterations = int(require_positive("max_iterations", max_iterations))

    def _run_pass(
        self,
        operator: LinearOperator,
        rhs: NDArray[np.floating],
        initial: NDArray[np.floating],
        threshold: float,
    ) -> NDArray[np.floating]:
        solution, _ = bicgstab(
            operator,
            rhs,
            x0=initial,
            rtol=0.0,
            atol=threshold,
            maxiter=self._max_iterations,
            callback=self._count_iteration,
        )
        return np.asarray(solution, dtype=float)


class GmresEquationSolver(_MatrixFreeEquationSolver):
    """
    Matrix-free stage equation solver using restarted GMRES.

    Each pass builds a Krylov subspace of at most ``max_subspace_dim``
    dimensions (capped at the problem size).

    Args:
        inverted_jacobian_coeff: Diagonal coefficient gamma of the formula.
        max_subspace_dim: Krylov subspace dimension per pass.
        **kwargs: Options of the matrix-free base (tolerance_rate,
            max_restarts, tolerances).
    """

    name = "gmres"
    default_max_restarts = 100

    def __init__(
        self,
        inverted_jacobian_coeff: float,
        *,
        max_subspace_dim: int = 2,
        **kwargs: Any,
    ) -> None:
        super().__init__(inverted_jacobian_coeff, **kwargs)
        self._max_subspace_dim = int(
            require_positive("max_subspace_dim", max_subspace_dim)
        )

    def _run_pass(
        self,
        operator: LinearOperator,
        rhs: NDArray[np.floating],
        initial: NDArray[np.floating],
        threshold: float,
    ) -> NDArray[np.floating]:
        solution, _ = gmres(
            operator,
            rhs,
            x0=initial,
            rtol=0.0,
            atol=threshold,
            restart=min(self._max_subspace_dim, rhs.size),
            maxiter=1,
            callback=self._count_iteration,
            callback_type="pr_norm",
        )
        return np.asarray(solution, dtype=float)


# =============================================================================
# Broyden variant
# =============================================================================


class BroydenStaleness(Enum):
    """Age of the inverse stage matrix held by MixedBroydenEquationSolver.

    FRESH: exact Jacobian, inverse factorized from it.
    UPDATED: secant-updated Jacobian, inverse corrected by Sherman-Morrison.
    REBUILT: secant-updated Jacobian, inverse recomputed because the step
        size or the mass matrix differs from the previous evaluation.
    """

    FRESH = "fresh"
    UPDATED = "updated"
    REBUILT = "rebuilt"


class MixedBroydenEquationSolver(RosenbrockEquationSolver):
    """
    Stage equation solver reusing an approximate Jacobian with secant updates.

    The exact Jacobian is evaluated and the stage matrix inverted when no
    inverse exists yet, when time does not advance (for example after a
    rejected step), when the variable barely moved, or after ``max_updates``
    consecutive rank-1 updates. Otherwise only the differential coefficient is
    evaluated and the Jacobian receives a Broyden update. The inverse always
    matches ``M - h * gamma * J`` for the current step size and Jacobian:
    with an unchanged step size it is corrected by the Sherman-Morrison
    formula, otherwise it is recomputed from the updated Jacobian.

    Args:
        inverted_jacobian_coeff: Diagonal coefficient gamma of the formula.
        max_updates: Rank-1 updates allowed before forcing a refactorization;
            zero refactorizes on every step.
    """

    name = "mixed_broyden"

    def __init__(self, inverted_jacobian_coeff: float, *, max_updates: int = 10) -> None:
        super().__init__(inverted_jacobian_coeff)
        self._max_updates = require_non_negative("max_updates", max_updates)
        self._staleness: BroydenStaleness | None = None
        self._updates = 0
        self._jacobian: NDArray[np.floating] = np.zeros((0, 0))
        self._inverse: NDArray[np.floating] = np.zeros((0, 0))
        self._prev_time = 0.0
        self._prev_variable: NDArray[np.floating] = np.zeros(0)
        self._prev_diff_coeff: NDArray[np.floating] = np.zeros(0)

    @property
    def max_updates(self) -> int:
        """Rank-1 updates allowed before a refactorization."""
        return self._max_updates

    @property
    def staleness(self) -> BroydenStaleness:
        """How the current inverse was obtained."""
        self._require_evaluated()
        return cast("BroydenStaleness", self._staleness)

    @property
    def updates(self) -> int:
        """Consecutive rank-1 updates since the last refactorization."""
        return self._updates

    @property
    def jacobian(self) -> NDArray[np.floating]:
        """Current (possibly approximate) Jacobian."""
        self._require_evaluated()
        return self._jacobian

    @property
    def inverse(self) -> NDArray[np.floating]:
        """Inverse of the stage matrix built from ``jacobian``."""
        self._require_evaluated()
        return self._inverse

    def evaluate_and_update_jacobian(
        self,
        problem: Problem,
        time: float,
        step_size: float,
        variable: Variable,
    ) -> None:
        """
        Refresh the Jacobian exactly or by a secant update.

        Raises:
            AlgorithmFailure: If a stage matrix is singular.
        """
        step_size = require_positive("step_size", step_size)
        current = np.array(as_vector(variable), copy=True)
        if self._needs_refactorization(time, current):
            self._evaluate_exactly(problem, time, step_size, current)
            return

        tol = float(np.linalg.norm(self._prev_variable)) * _EPS
        secant = current - self._prev_variable
        if float(np.linalg.norm(secant)) <= tol:
            self._evaluate_exactly(problem, time, step_size, current)
            return

        self._evaluated = False
        request = self._request(problem, jacobian=False)
        request_evaluations(problem, time, current, request)
        self._store_optional(problem, request)
        diff_coeff = np.array(problem.diff_coeff(), dtype=float, copy=True)
        secant_sq = float(secant @ secant)
        correction = (diff_coeff - self._prev_diff_coeff) - self._jacobian @ secant

        if step_size == self._step_size and self._mass is None:
            # M - h*gamma*J changes by -u s^T with u = h*gamma*correction/(s.s).
            moved = self._inverse @ ((step_size * self._coeff / secant_sq) * correction)
            denominator = 1.0 - float(secant @ moved)
            if abs(denominator) <= _SQRT_EPS:
                self._evaluate_exactly(problem, time, step_size, current)
                return
            self._inverse += np.outer(moved, secant @ self._inverse) / denominator
            self._jacobian += np.outer(correction, secant) / secant_sq
            staleness = BroydenStaleness.UPDATED
        else:
            self._jacobian += np.outer(correction, secant) / secant_sq
            matrix = build_stage_matrix(
                self._jacobian, step_size, self._coeff, self._mass
            )
            self._inverse = dense_inverse(matrix)
            staleness = BroydenStaleness.REBUILT

        self._remember(time, step_size, current, diff_coeff)
        self._updates += 1
        self._staleness = staleness
        self._evaluated = True

    def apply_jacobian(self, target: Variable) -> Variable:
        self._require_evaluated()
        return self._jacobian @ as_vector(target)

    def solve(self, rhs: Variable) -> Variable:
        self._require_evaluated()
        return self._inverse @ as_vector(rhs)

    def _needs_refactorization(
        self, time: float, current: NDArray[np.floating]
    ) -> bool:
        return (
            self._staleness is None
            or time <= self._prev_time
            or self._updates >= self._max_updates
            or current.shape != self._prev_variable.shape
        )

    def _evaluate_exactly(
        self,
        problem: Problem,
        time: float,
        step_size: float,
        current: NDArray[np.floating],
    ) -> None:
        self._evaluated = False
        request = self._request(problem, jacobian=True)
        request_evaluations(problem, time, current, request)
        self._store_optional(problem, request)
        jacobian = problem.jacobian()  # type: ignore[attr-defined]
        self._jacobian = (
            jacobian.toarray()
            if issparse(jacobian)
            else np.array(jacobian, dtype=float, copy=True)
        )
        matrix = build_stage_matrix(self._jacobian, step_size, self._coeff, self._mass)
        self._inverse = dense_inverse(matrix)
        diff_coeff = np.array(problem.diff_coeff(), dtype=float, copy=True)
        self._remember(time, step_size, current, diff_coeff)
        if self._staleness is not None:
            _LOGGER.debug("Refactorized after %d Broyden updates.", self._updates)
        self._updates = 0
        self._staleness = BroydenStaleness.FRESH
        self._evaluated = True

    def _remember(
        self,
        time: float,
        step_size: float,
        current: NDArray[np.floating],
        diff_coeff: NDArray[np.floating],
    ) -> None:
        self._prev_time = float(time)
        self._prev_variable = current
        self._prev_diff_coeff = diff_coeff
        self._step_size = step_size


# =============================================================================
# Registry and default selection
# =============================================================================

EQUATION_SOLVERS: Final[dict[str, type[RosenbrockEquationSolver]]] = {
    cls.name: cls
    for cls in (
        ScalarEquationSolver,
        LuEquationSolver,
        BicgstabEquationSolver,
        GmresEquationSolver,
        MixedBroydenEquationSolver,
    )
}


def create_equation_solver(
    name: str, inverted_jacobian_coeff: float, **options: Any
) -> RosenbrockEquationSolver:
    """
    Create an equation solver by registry name.

    Args:
        name: One of the keys of EQUATION_SOLVERS.
        inverted_jacobian_coeff: Diagonal coefficient gamma of the formula.
        **options: Keyword options of the selected class.

    Returns:
        The equation solver.

    Raises:
        PreconditionError: If the name is unknown.
    """
    try:
        cls = EQUATION_SOLVERS[name]
    except KeyError:
        raise PreconditionError(
            _UNKNOWN_EQUATION_SOLVER_ERROR_MSG.format(
                name=name, choices=sorted(EQUATION_SOLVERS)
            )
        ) from None
    return cls(inverted_jacobian_coeff, **options)


def default_equation_solver(
    problem: Problem, inverted_jacobian_coeff: float
) -> RosenbrockEquationSolver:
    """
    Choose an equation solver from a problem's capabilities.

    Differentiable problems use the scalar or LU variant depending on
    ``problem.variable_type``; problems without a Jacobian use BiCGSTAB.

    Raises:
        CapabilityError: For scalar problems without a Jacobian.
    """
    allowed = allowed_evaluations_of(problem)
    is_scalar = getattr(problem, "variable_type", np.ndarray) is float
    if allowed.jacobian:
        if is_scalar:
            return ScalarEquationSolver(inverted_jacobian_coeff)
        return LuEquationSolver(inverted_jacobian_coeff)
    if is_scalar:
        raise CapabilityError(
            _SCALAR_WITHOUT_JACOBIAN_ERROR_MSG.format(problem=type(problem).__name__)
        )
    return BicgstabEquationSolver(inverted_jacobian_coeff)
