# tests/test_implicit_runge_kutta.py
"""Tests for the embedded diagonally implicit Runge-Kutta formulas."""

from __future__ import annotations

from typing import Any

import numpy as np
import pytest
from problems import (
    ExponentialProblem,
    ForcedDecayProblem,
    JacobianFreeSpringProblem,
    LinearDecayProblem,
    MassSpringProblem,
    SpringMovementProblem,
    spring_solution,
)

from ode_engine.core_solver import EmbeddedSolver, SolverState
from ode_engine.errors import AlgorithmFailure, CapabilityError, PreconditionError
from ode_engine.formulas import (
    Ark43EsdirkFormula,
    Ark54EsdirkFormula,
    Dopri5Formula,
    ImplicitRungeKuttaFormula,
    Sdirk4Formula,
)
from ode_engine.iteration_logger import IterationLogger
from ode_engine.linalg import combine
from ode_engine.newton import InexactNewtonUpdateSolver
from ode_engine.problem import FunctionProblem
from ode_engine.tolerances import ErrorTolerances

IMPLICIT_FORMULAS = [Sdirk4Formula, Ark43EsdirkFormula, Ark54EsdirkFormula]


def _observed_order(errors: list[float]) -> float:
    return float(np.log2(errors[-2] / errors[-1]))


# -----------------------------------------------------------------------------
# Tableaus
# -----------------------------------------------------------------------------


@pytest.mark.parametrize("cls", IMPLICIT_FORMULAS)
def test_tableau_consistency(cls: type[ImplicitRungeKuttaFormula]) -> None:
    """Weights sum to one, nodes follow A and AD, and the last stage is the estimate."""
    assert sum(cls.C) == pytest.approx(1.0, abs=1e-10)
    assert sum(cls.CW) == pytest.approx(1.0, abs=1e-10)
    assert cls.stages == len(cls.C) == len(cls.A) + 1
    assert cls.B[0] == (0.0 if cls.EXPLICIT_FIRST_STAGE else cls.AD)
    for i, row in enumerate(cls.A, start=1):
        assert len(row) == i
        assert cls.B[i] == pytest.approx(sum(row) + cls.AD)
    assert cls.B[-1] == pytest.approx(1.0)
    np.testing.assert_allclose(cls.C[:-1], cls.A[-1], rtol=0.0, atol=1e-15)
    assert cls.C[-1] == cls.AD


@pytest.mark.parametrize(
    ("cls", "stages", "order", "lesser_order", "explicit_first_stage"),
    [
        (Sdirk4Formula, 5, 4, 3, False),
        (Ark43EsdirkFormula, 6, 4, 3, True),
        (Ark54EsdirkFormula, 8, 5, 4, True),
    ],
)
def test_metadata(
    cls: type[ImplicitRungeKuttaFormula],
    stages: int,
    order: int,
    lesser_order: int,
    explicit_first_stage: bool,
) -> None:
    """Stage counts, orders and first stage kind of each formula."""
    assert (cls.stages, cls.order, cls.lesser_order) == (stages, order, lesser_order)
    assert cls.EXPLICIT_FIRST_STAGE is explicit_first_stage


# -----------------------------------------------------------------------------
# Accuracy
# -----------------------------------------------------------------------------


@pytest.mark.convergence
@pytest.mark.parametrize("cls", IMPLICIT_FORMULAS)
def test_local_error_order_scalar(cls: type[ImplicitRungeKuttaFormula]) -> None:
    """Local error on dy/dt = y decays at least like h**p."""
    formula = cls(ExponentialProblem())
    errors = [abs(formula.step(0.0, h, 1.0) - np.exp(h)) for h in (0.1, 0.05, 0.025)]

    assert _observed_order(errors) >= cls.order


@pytest.mark.convergence
@pytest.mark.parametrize("cls", IMPLICIT_FORMULAS)
def test_local_error_order_non_autonomous(cls: type[ImplicitRungeKuttaFormula]) -> None:
    """Stage nodes keep the order on a non-autonomous problem."""
    formula = cls(ForcedDecayProblem())
    t0 = 0.5
    errors = [
        abs(float(formula.step(t0, h, np.array([np.sin(t0)]))[0]) - np.sin(t0 + h))
        for h in (0.1, 0.05, 0.025)
    ]

    assert _observed_order(errors) >= cls.order


@pytest.mark.parametrize("cls", IMPLICIT_FORMULAS)
def test_error_is_weighted_sum_of_stages(cls: type[ImplicitRungeKuttaFormula]) -> None:
    """The error estimate equals h * sum(CE_i * k_i)."""
    formula = cls(SpringMovementProblem())
    h = 0.1

    estimate, error = formula.step_embedded(0.0, h, spring_solution(0.0))

    k = formula.stage_derivatives
    assert len(k) == cls.stages
    np.testing.assert_allclose(error, h * combine(cls.CE, k), rtol=1e-12, atol=1e-18)
    np.testing.assert_allclose(estimate, spring_solution(h), atol=1e-4)


@pytest.mark.parametrize("cls", IMPLICIT_FORMULAS)
def test_stage_derivatives_satisfy_stage_equations(
    cls: type[ImplicitRungeKuttaFormula],
) -> None:
    """Every implicit stage derivative equals f at its own stage variable."""
    problem = SpringMovementProblem()
    formula = cls(problem)
    h = 0.2
    start = spring_solution(0.0)
    jacobian = np.array([[0.0, -1.0], [1.0, 0.0]])

    formula.step(0.0, h, start)

    k = formula.stage_derivatives
    for i in range(1, cls.stages):
        stage_variable = start + h * (combine(cls.A[i - 1], k[:i]) + cls.AD * k[i])
        np.testing.assert_allclose(k[i], jacobian @ stage_variable, atol=1e-8)


@pytest.mark.parametrize("cls", IMPLICIT_FORMULAS)
def test_solve_stiff_problem(cls: type[ImplicitRungeKuttaFormula]) -> None:
    """Stiff decay is integrated with far fewer steps than an explicit formula."""
    tolerances = ErrorTolerances(tol_rel_error=1e-6, tol_abs_error=1e-6)
    implicit = EmbeddedSolver(cls(LinearDecayProblem(scale=1000.0)), tolerances=tolerances)
    explicit = EmbeddedSolver(
        Dopri5Formula(LinearDecayProblem(scale=1000.0)), tolerances=tolerances
    )
    implicit.init(0.0, np.ones(4))
    explicit.init(0.0, np.ones(4))

    implicit.solve_till(1.0)
    explicit.solve_till(1.0)

    assert implicit.time == 1.0
    np.testing.assert_allclose(implicit.variable, np.zeros(4), atol=1e-5)
    assert implicit.steps < explicit.steps / 3


@pytest.mark.parametrize("cls", IMPLICIT_FORMULAS)
def test_solve_non_autonomous(cls: type[ImplicitRungeKuttaFormula]) -> None:
    """Adaptive integration of dy/dt = -y + sin t + cos t reaches sin(1)."""
    solver = EmbeddedSolver(
        cls(ForcedDecayProblem()),
        tolerances=ErrorTolerances(tol_rel_error=1e-7, tol_abs_error=1e-7),
    )
    solver.init(0.0, np.array([0.0]))

    solver.solve_till(1.0)

    assert float(solver.variable[0]) == pytest.approx(np.sin(1.0), abs=1e-5)


def test_nonlinear_problem() -> None:
    """Newton iterations handle a nonlinear right-hand side."""
    problem = FunctionProblem(
        lambda t, x: -(x**3), jacobian=lambda t, x: np.diag(-3.0 * x**2)
    )
    solver = EmbeddedSolver(
        Ark43EsdirkFormula(problem),
        tolerances=ErrorTolerances(tol_rel_error=1e-8, tol_abs_error=1e-8),
    )
    start = np.array([1.0, 2.0])
    solver.init(0.0, start)

    solver.solve_till(2.0)

    # dy/dt = -y**3 gives y = y0 / sqrt(1 + 2 t y0**2)
    expected = start / np.sqrt(1.0 + 4.0 * start**2)
    np.testing.assert_allclose(solver.variable, expected, rtol=1e-5)


# -----------------------------------------------------------------------------
# Construction, diagnostics and failures
# -----------------------------------------------------------------------------


def test_default_update_solver() -> None:
    """A default Newton solver is created when none is given."""
    formula = Sdirk4Formula(SpringMovementProblem())

    assert isinstance(formula.update_solver, InexactNewtonUpdateSolver)


def test_update_solver_instance_is_used() -> None:
    """A given Newton solver instance handles the stage equations."""
    update_solver = InexactNewtonUpdateSolver(tolerance_rate=1e-4, max_iterations=5)

    formula = Ark54EsdirkFormula(SpringMovementProblem(), update_solver)

    assert formula.update_solver is update_solver


@pytest.mark.parametrize(
    "problem",
    [JacobianFreeSpringProblem(), MassSpringProblem()],
    ids=["no_jacobian", "mass"],
)
def test_unsupported_problems_fail_before_evaluation(problem: Any) -> None:
    """Problems without a Jacobian or with a mass matrix are rejected up front."""
    with pytest.raises(CapabilityError):
        Sdirk4Formula(problem)
    assert problem.evaluations == 0


def test_iteration_logger_records_newton_fields() -> None:
    """Newton iteration counts and update norms reach the driver's records."""
    records: list[dict[str, float | int]] = []
    solver = EmbeddedSolver(
        Ark43EsdirkFormula(SpringMovementProblem()),
        step_size=0.1,
        iteration_logger=IterationLogger(sink=records.append),
    )
    solver.init(0.0, spring_solution(0.0))

    solver.solve_till(0.5)

    assert records
    assert all("NewtonIterations" in record and "Update" in record for record in records)
    assert all(record["NewtonIterations"] >= 1 for record in records)


def test_newton_divergence_fails_driver() -> None:
    """A Jacobian that does not match the problem stops the Newton iteration."""
    problem = FunctionProblem(
        lambda t, x: -1000.0 * x, jacobian=lambda t, x: np.zeros((2, 2))
    )
    formula = Sdirk4Formula(problem, InexactNewtonUpdateSolver(max_iterations=5))
    solver = EmbeddedSolver(formula, step_size=0.1)
    solver.init(0.0, np.ones(2))

    with pytest.raises(AlgorithmFailure, match="Newton"):
        solver.step()
    assert solver.state is SolverState.FAILED
    with pytest.raises(PreconditionError, match="failed"):
        solver.step()
