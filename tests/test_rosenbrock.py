# tests/test_rosenbrock.py
"""Tests for the embedded Rosenbrock formulas."""

from __future__ import annotations

import numpy as np
import pytest
from problems import (
    ExponentialProblem,
    ForcedDecayProblem,
    JacobianFreeSpringProblem,
    MassSpringProblem,
    SpringMovementProblem,
    spring_solution,
)

from ode_engine.core_solver import EmbeddedSolver, SolverState
from ode_engine.equation_solvers import (
    BicgstabEquationSolver,
    BroydenStaleness,
    GmresEquationSolver,
    LuEquationSolver,
    MixedBroydenEquationSolver,
    ScalarEquationSolver,
)
from ode_engine.errors import AlgorithmFailure, CapabilityError, PreconditionError
from ode_engine.formulas import (
    RodaspFormula,
    RodasprFormula,
    Ros3wFormula,
    Ros34pw3Formula,
    RosenbrockFormula,
)
from ode_engine.linalg import combine
from ode_engine.problem import FunctionProblem
from ode_engine.tolerances import ErrorTolerances

ROSENBROCK_FORMULAS = [Ros3wFormula, Ros34pw3Formula, RodaspFormula, RodasprFormula]


def _observed_order(errors: list[float]) -> float:
    return float(np.log2(errors[-2] / errors[-1]))


# -----------------------------------------------------------------------------
# Tableaus
# -----------------------------------------------------------------------------


@pytest.mark.parametrize("cls", ROSENBROCK_FORMULAS)
def test_tableau_consistency(cls: type[RosenbrockFormula]) -> None:
    """Weights sum to one and derived coefficients follow A, G and GAMMA."""
    assert sum(cls.C) == pytest.approx(1.0, abs=1e-10)
    assert sum(cls.CW) == pytest.approx(1.0, abs=1e-10)
    assert cls.stages == len(cls.C) == len(cls.A) + 1 == len(cls.G) + 1
    assert cls.B[0] == 0.0
    assert cls.TIME_DERIVATIVE_COEFFS[0] == cls.GAMMA
    for i, (a_row, g_row) in enumerate(zip(cls.A, cls.G, strict=True), start=1):
        assert cls.B[i] == pytest.approx(sum(a_row))
        assert cls.TIME_DERIVATIVE_COEFFS[i] == pytest.approx(sum(g_row) + cls.GAMMA)


@pytest.mark.parametrize(
    ("cls", "stages", "order", "lesser_order"),
    [
        (Ros3wFormula, 3, 3, 2),
        (Ros34pw3Formula, 4, 4, 2),
        (RodaspFormula, 6, 4, 3),
        (RodasprFormula, 6, 4, 3),
    ],
)
def test_metadata(
    cls: type[RosenbrockFormula], stages: int, order: int, lesser_order: int
) -> None:
    """Stage counts and orders of each formula."""
    assert (cls.stages, cls.order, cls.lesser_order) == (stages, order, lesser_order)


# -----------------------------------------------------------------------------
# Accuracy
# -----------------------------------------------------------------------------


@pytest.mark.convergence
@pytest.mark.parametrize("cls", ROSENBROCK_FORMULAS)
def test_local_error_order_scalar(cls: type[RosenbrockFormula]) -> None:
    """Local error on dy/dt = y decays at least like h**(p+1)."""
    formula = cls(ExponentialProblem())
    errors = [abs(formula.step(0.0, h, 1.0) - np.exp(h)) for h in (0.1, 0.05, 0.025)]

    assert isinstance(formula.equation_solver, ScalarEquationSolver)
    assert _observed_order(errors) >= cls.order + 0.5


@pytest.mark.convergence
@pytest.mark.parametrize("cls", ROSENBROCK_FORMULAS)
def test_local_error_order_non_autonomous(cls: type[RosenbrockFormula]) -> None:
    """Time-derivative terms keep the order on a non-autonomous problem."""
    formula = cls(ForcedDecayProblem())
    t0 = 0.5
    errors = [
        abs(float(formula.step(t0, h, np.array([np.sin(t0)]))[0]) - np.sin(t0 + h))
        for h in (0.1, 0.05, 0.025)
    ]

    assert _observed_order(errors) >= cls.order


@pytest.mark.parametrize("cls", ROSENBROCK_FORMULAS)
def test_error_is_weighted_sum_of_stages(cls: type[RosenbrockFormula]) -> None:
    """The error estimate equals h * sum(CE_i * k_i)."""
    formula = cls(SpringMovementProblem())
    h = 0.1

    estimate, error = formula.step_embedded(0.0, h, spring_solution(0.0))

    k = formula.stage_derivatives
    np.testing.assert_allclose(error, h * combine(cls.CE, k), rtol=1e-12, atol=1e-18)
    np.testing.assert_allclose(estimate, spring_solution(h), atol=1e-4)


@pytest.mark.parametrize(
    "solver_cls",
    [
        LuEquationSolver,
        BicgstabEquationSolver,
        GmresEquationSolver,
        MixedBroydenEquationSolver,
    ],
)
def test_equation_solver_variants_agree(solver_cls: type) -> None:
    """Every stage equation solver yields the same step."""
    reference = Ros34pw3Formula(SpringMovementProblem(), LuEquationSolver)
    formula = Ros34pw3Formula(SpringMovementProblem(), solver_cls)
    start = spring_solution(0.0)

    expected = reference.step(0.0, 0.1, start)
    np.testing.assert_allclose(formula.step(0.0, 0.1, start), expected, atol=1e-6)


@pytest.mark.parametrize("cls", ROSENBROCK_FORMULAS)
def test_solve_non_autonomous(cls: type[RosenbrockFormula]) -> None:
    """Adaptive integration of dy/dt = -y + sin t + cos t reaches sin(1)."""
    solver = EmbeddedSolver(
        cls(ForcedDecayProblem()),
        tolerances=ErrorTolerances(tol_rel_error=1e-7, tol_abs_error=1e-7),
    )
    solver.init(0.0, np.array([0.0]))

    solver.solve_till(1.0)

    assert solver.time == 1.0
    assert float(solver.variable[0]) == pytest.approx(np.sin(1.0), abs=1e-5)


@pytest.mark.parametrize("solver_cls", [LuEquationSolver, MixedBroydenEquationSolver])
def test_solve_with_mass_matrix(solver_cls: type) -> None:
    """Mass matrices enter the stage matrix without changing the solution."""
    solver = EmbeddedSolver(
        Ros34pw3Formula(MassSpringProblem(), solver_cls),
        tolerances=ErrorTolerances(tol_rel_error=1e-6, tol_abs_error=1e-6),
    )
    solver.init(0.0, spring_solution(0.0))

    solver.solve_till(1.0)

    np.testing.assert_allclose(solver.variable, spring_solution(1.0), atol=1e-4)


def test_broyden_driver_matches_lu_with_changing_step_sizes() -> None:
    """Adaptive runs with Broyden updates follow the LU run when h changes."""
    tolerances = ErrorTolerances(tol_rel_error=1e-8, tol_abs_error=1e-8)
    broyden = EmbeddedSolver(
        RodaspFormula(SpringMovementProblem(), MixedBroydenEquationSolver),
        tolerances=tolerances,
    )
    lu = EmbeddedSolver(
        RodaspFormula(SpringMovementProblem(), LuEquationSolver), tolerances=tolerances
    )
    broyden.init(0.0, spring_solution(0.0))
    lu.init(0.0, spring_solution(0.0))
    equation_solver = broyden.formula.equation_solver
    seen = set()
    while broyden.time < 2.0:
        broyden.step()
        seen.add(equation_solver.staleness)

    broyden.solve_till(10.0)
    lu.solve_till(10.0)

    assert BroydenStaleness.REBUILT in seen
    np.testing.assert_allclose(broyden.variable, lu.variable, atol=1e-6)
    np.testing.assert_allclose(broyden.variable, spring_solution(10.0), atol=1e-5)


def test_jacobian_free_problem_with_krylov() -> None:
    """Matrix-free solvers integrate problems without a Jacobian."""
    formula = Ros34pw3Formula(JacobianFreeSpringProblem(), GmresEquationSolver)
    solver = EmbeddedSolver(
        formula, tolerances=ErrorTolerances(tol_rel_error=1e-6, tol_abs_error=1e-6)
    )
    solver.init(0.0, spring_solution(0.0))

    solver.solve_till(1.0)

    np.testing.assert_allclose(solver.variable, spring_solution(1.0), atol=1e-4)


# -----------------------------------------------------------------------------
# Construction and failures
# -----------------------------------------------------------------------------


def test_solver_instance_must_match_gamma() -> None:
    """Equation solver instances must use the formula's GAMMA."""
    problem = SpringMovementProblem()

    formula = Ros3wFormula(problem, LuEquationSolver(Ros3wFormula.GAMMA))
    assert formula.equation_solver.inverted_jacobian_coeff == Ros3wFormula.GAMMA

    with pytest.raises(PreconditionError, match="inverted_jacobian_coeff"):
        Ros3wFormula(problem, LuEquationSolver(0.5))


def test_factory_receives_gamma() -> None:
    """Factories are called with the formula's GAMMA."""
    formula = RodaspFormula(
        SpringMovementProblem(),
        lambda gamma: MixedBroydenEquationSolver(gamma, max_updates=3),
    )

    assert isinstance(formula.equation_solver, MixedBroydenEquationSolver)
    assert formula.equation_solver.inverted_jacobian_coeff == RodaspFormula.GAMMA
    assert formula.equation_solver.max_updates == 3


def test_missing_jacobian_fails_before_evaluation() -> None:
    """Capability mismatches are reported at construction time."""
    problem = JacobianFreeSpringProblem()

    with pytest.raises(CapabilityError, match="LuEquationSolver"):
        Ros34pw3Formula(problem, LuEquationSolver)
    assert problem.evaluations == 0


def test_algorithm_failure_propagates_and_fails_driver() -> None:
    """A singular stage matrix fails the step and the driver."""
    problem = FunctionProblem(
        lambda t, x: -x, jacobian=lambda t, x: np.full((2, 2), np.nan)
    )
    solver = EmbeddedSolver(Ros3wFormula(problem), step_size=0.1)
    solver.init(0.0, np.ones(2))

    with pytest.raises(AlgorithmFailure):
        solver.step()
    assert solver.state is SolverState.FAILED
    with pytest.raises(PreconditionError, match="failed"):
        solver.step()
