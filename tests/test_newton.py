# tests/test_newton.py
"""Tests for ode_engine.newton.InexactNewtonUpdateSolver."""

from __future__ import annotations

import numpy as np
import pytest
from problems import ExponentialProblem, LinearDecayProblem, MassSpringProblem

from ode_engine.errors import AlgorithmFailure, CapabilityError, PreconditionError
from ode_engine.iteration_logger import IterationLogger
from ode_engine.newton import InexactNewtonUpdateSolver
from ode_engine.problem import FunctionProblem
from ode_engine.tolerances import ErrorTolerances

AD = 0.25


# -----------------------------------------------------------------------------
# Stage equations
# -----------------------------------------------------------------------------


def test_linear_scalar_stage_is_exact() -> None:
    """A linear scalar stage equation is solved by the first update."""
    solver = InexactNewtonUpdateSolver()
    h = 0.2
    solver.update_jacobian(ExponentialProblem(), 0.0, h, 1.0, AD)

    z = solver.solve(0.0, 0.1, 0.0)

    # z = 0.1 + h * AD * (1 + z)
    assert z == pytest.approx((0.1 + h * AD) / (1.0 - h * AD), rel=1e-14)
    assert solver.iterations <= 2
    assert solver.initial_slope == 1.0


def test_linear_system_stage_is_exact() -> None:
    """A linear system stage equation matches a direct solve."""
    problem = LinearDecayProblem(size=3, scale=50.0)
    solver = InexactNewtonUpdateSolver()
    h = 0.1
    x = np.array([1.0, -2.0, 0.5])
    offset = np.array([0.01, 0.02, -0.03])
    solver.update_jacobian(problem, 0.0, h, x, AD)

    z = solver.solve(0.0, offset, np.zeros(3))

    jacobian = problem.jacobian()
    expected = np.linalg.solve(
        np.eye(3) - h * AD * jacobian, offset + h * AD * jacobian @ x
    )
    np.testing.assert_allclose(z, expected, rtol=1e-12, atol=1e-14)


def test_nonlinear_stage_residual_is_small() -> None:
    """A frozen Jacobian still drives a nonlinear residual below tolerance."""
    problem = FunctionProblem(
        lambda t, x: -(x**3), jacobian=lambda t, x: np.diag(-3.0 * x**2)
    )
    solver = InexactNewtonUpdateSolver(
        tolerances=ErrorTolerances(tol_rel_error=1e-10, tol_abs_error=1e-10)
    )
    h = 0.1
    x = np.array([1.0, 2.0])
    offset = np.array([-0.05, -0.4])
    solver.update_jacobian(problem, 0.0, h, x, AD)

    z = solver.solve(h, offset, np.zeros(2))

    residual = z - h * AD * (-((x + z) ** 3)) - offset
    np.testing.assert_allclose(residual, np.zeros(2), atol=1e-9)
    assert solver.iterations > 2


# -----------------------------------------------------------------------------
# Diagnostics
# -----------------------------------------------------------------------------


def test_iteration_logger_fields() -> None:
    """Iteration count and update norm are read from the solver."""
    solver = InexactNewtonUpdateSolver()
    logger = IterationLogger()
    solver.configure_iteration_logger(logger)
    solver.configure_iteration_logger(logger)
    solver.update_jacobian(ExponentialProblem(), 0.0, 0.2, 1.0, AD)
    solver.solve(0.0, 0.0, 0.0)

    values = logger.values(object())

    assert logger.field_names == ("NewtonIterations", "Update")
    assert values["NewtonIterations"] == solver.iterations
    assert values["Update"] == solver.update_norm


# -----------------------------------------------------------------------------
# Failures
# -----------------------------------------------------------------------------


@pytest.mark.parametrize(
    "kwargs",
    [{"tolerance_rate": 0.0}, {"max_iterations": 0}, {"tolerance_rate": np.inf}],
)
def test_invalid_options(kwargs: dict[str, float]) -> None:
    """Options must be positive and finite."""
    with pytest.raises(PreconditionError):
        InexactNewtonUpdateSolver(**kwargs)


def test_solve_before_update() -> None:
    """Stage equations need a factorized iteration matrix."""
    solver = InexactNewtonUpdateSolver()

    with pytest.raises(PreconditionError, match="update_jacobian"):
        solver.solve(0.0, 0.0, 0.0)


def test_mass_problem_is_rejected() -> None:
    """Problems with a mass matrix are not supported."""
    with pytest.raises(CapabilityError, match="mass"):
        InexactNewtonUpdateSolver().check_problem(MassSpringProblem())


def test_non_finite_update() -> None:
    """Non-finite updates stop the iteration."""
    problem = FunctionProblem(
        lambda t, x: np.where(t > 0.0, np.nan, -x), jacobian=lambda t, x: -np.eye(2)
    )
    solver = InexactNewtonUpdateSolver()
    solver.update_jacobian(problem, 0.0, 0.1, np.ones(2), AD)

    with pytest.raises(AlgorithmFailure, match="not finite"):
        solver.solve(0.1, np.zeros(2), np.zeros(2))


def test_divergence_exhausts_iterations() -> None:
    """A diverging iteration stops after max_iterations."""
    problem = FunctionProblem(
        lambda t, x: -1000.0 * x, jacobian=lambda t, x: np.zeros((2, 2))
    )
    solver = InexactNewtonUpdateSolver(max_iterations=4)
    solver.update_jacobian(problem, 0.0, 0.1, np.ones(2), AD)

    with pytest.raises(AlgorithmFailure, match="within 4 iterations"):
        solver.solve(0.0, np.zeros(2), np.zeros(2))
    assert solver.iterations == 4
