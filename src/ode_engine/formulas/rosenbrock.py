# src/ode_engine/formulas/rosenbrock.py
"""Embedded Rosenbrock formulas.

A Rosenbrock step evaluates the Jacobian once and solves one linear system
per stage:

    (M - h * GAMMA * J) k_i = f(t + B_i h, x + h sum_j A_ij k_j)
                              + h J sum_j G_ij k_j
                              + h (sum_j G_ij + GAMMA) df/dt

The stage matrix is handled by a RosenbrockEquationSolver. ``A`` and ``G``
store the strictly lower triangular coefficients row by row, starting from
the second stage. Nodes ``B`` and the time-derivative coefficients are
derived when a subclass is created.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, ClassVar, Final

from ..equation_solvers import RosenbrockEquationSolver, default_equation_solver
from ..errors import PreconditionError, require_positive
from ..evaluation import DIFF_COEFF, request_evaluations
from ..linalg import combine, copy_variable
from .base import EmbeddedFormula

if TYPE_CHECKING:
    from collections.abc import Callable

    from ..iteration_logger import IterationLogger
    from ..linalg import Variable
    from ..problem import Problem
    from ..tolerances import ErrorTolerances

Row = tuple[float, ...]

_COEFF_MISMATCH_ERROR_MSG: Final[str] = (
    "{formula} needs an equation solver with inverted_jacobian_coeff={expected!r}, "
    "got {actual!r}."
)


class RosenbrockFormula(EmbeddedFormula):
    """
    Tableau-driven embedded Rosenbrock formula.

    Args:
        problem: Problem to integrate.
        equation_solver: Solver instance built with ``GAMMA``, a factory taking
            ``GAMMA``, or None to choose one from the problem's capabilities.

    Raises:
        CapabilityError: If the problem lacks an evaluation the equation solver
            needs.
        PreconditionError: If a solver instance uses a different coefficient.
    """

    A: ClassVar[tuple[Row, ...]]
    G: ClassVar[tuple[Row, ...]]
    GAMMA: ClassVar[float]
    C: ClassVar[Row]
    CW: ClassVar[Row]
    B: ClassVar[Row]
    CE: ClassVar[Row]
    TIME_DERIVATIVE_COEFFS: ClassVar[Row]

    def __init_subclass__(cls, **kwargs: object) -> None:
        super().__init_subclass__(**kwargs)
        if "C" in cls.__dict__:
            cls.stages = len(cls.C)
            cls.B = (0.0, *(sum(row) for row in cls.A))
            cls.TIME_DERIVATIVE_COEFFS = (
                cls.GAMMA,
                *(sum(row) + cls.GAMMA for row in cls.G),
            )
            cls.CE = tuple(c - cw for c, cw in zip(cls.C, cls.CW, strict=True))

    def __init__(
        self,
        problem: Problem,
        equation_solver: RosenbrockEquationSolver
        | Callable[[float], RosenbrockEquationSolver]
        | None = None,
    ) -> None:
        super().__init__(problem)
        if equation_solver is None:
            solver = default_equation_solver(problem, self.GAMMA)
        elif isinstance(equation_solver, RosenbrockEquationSolver):
            solver = equation_solver
            if solver.inverted_jacobian_coeff != self.GAMMA:
                raise PreconditionError(
                    _COEFF_MISMATCH_ERROR_MSG.format(
                        formula=type(self).__name__,
                        expected=self.GAMMA,
                        actual=solver.inverted_jacobian_coeff,
                    )
                )
        else:
            solver = equation_solver(self.GAMMA)
        solver.check_problem(problem)
        self._solver = solver
        self._k: list[Variable] = []

    @property
    def equation_solver(self) -> RosenbrockEquationSolver:
        """Equation solver handling the stage matrix."""
        return self._solver

    @property
    def stage_derivatives(self) -> tuple[Variable, ...]:
        """Stage solutions k_i of the last step."""
        return tuple(self._k)

    def tolerances(self, val: ErrorTolerances) -> None:
        """Forward error tolerances to the equation solver."""
        self._solver.tolerances(val)

    def configure_iteration_logger(self, iteration_logger: IterationLogger) -> None:
        """Register the equation solver's diagnostic fields."""
        self._solver.configure_iteration_logger(iteration_logger)

    def step_embedded(
        self, time: float, step_size: float, current: Variable
    ) -> tuple[Variable, Variable]:
        step_size = require_positive("step_size", step_size)
        problem = self._problem
        solver = self._solver
        solver.evaluate_and_update_jacobian(problem, time, step_size, current)

        k = self._k
        k.clear()
        for i in range(self.stages):
            if i == 0:
                rhs = copy_variable(problem.diff_coeff())
            else:
                # J is applied first; matrix-free solvers re-evaluate the problem.
                coupling = step_size * solver.apply_jacobian(combine(self.G[i - 1], k))
                stage_variable = current + step_size * combine(self.A[i - 1], k)
                request_evaluations(
                    problem, time + self.B[i] * step_size, stage_variable, DIFF_COEFF
                )
                rhs = problem.diff_coeff() + coupling
            rhs = solver.add_time_derivative_term(
                step_size, self.TIME_DERIVATIVE_COEFFS[i], rhs
            )
            k.append(solver.solve(rhs))

        estimate = current + step_size * combine(self.C, k)
        error = step_size * combine(self.CE, k)
        return estimate, error


class Ros3wFormula(RosenbrockFormula):
    """ROS3w: three stages, order 3 with an embedded order 2 estimate.

    Rang and Angermann, BIT Numerical Mathematics 45 (2005).
    """

    name = "ros3w"
    order = 3
    lesser_order = 2

    A = (
        (6.666666666666666e-01,),
        (6.666666666666666e-01, 0.0),
    )
    G = (
        (3.635068368900681e-01,),
        (-8.996866791992636e-01, -1.537997822626885e-01),
    )
    GAMMA = 4.358665215084590e-01
    C = (0.25, 0.25, 0.5)
    CW = (7.467047032740110e-01, 1.144064078371002e-01, 1.388888888888889e-01)


class Ros34pw3Formula(RosenbrockFormula):
    """ROS34PW3: four stages, order 4 with an embedded order 2 estimate.

    Rang and Angermann, BIT Numerical Mathematics 45 (2005).
    """

    name = "ros34pw3"
    order = 4
    lesser_order = 2

    A = (
        (2.5155456020628817,),
        (5.0777280103144085e-01, 0.75),
        (1.3959081404277204e-01, -3.3111001065419338e-01, 8.2040559712714178e-01),
    )
    G = (
        (-2.5155456020628817,),
        (-8.7991339217106512e-01, -9.6014187766190695e-01),
        (-4.1731389379448741e-01, 4.1091047035857703e-01, -1.3558873204765276),
    )
    GAMMA = 1.0685790213016289
    C = (
        2.2047681286931747e-01,
        2.7828278331185935e-03,
        7.1844787635140066e-03,
        7.6955588053404989e-01,
    )
    CW = (
        3.1300297285209688e-01,
        -2.8946895245112692e-01,
        9.7646597959903003e-01,
        0.0,
    )


class RodaspFormula(RosenbrockFormula):
    """RODASP: six stages, order 4 with an embedded order 3 estimate.

    Steinebach, Preprint 1626, TH Darmstadt (1995).
    """

    name = "rodasp"
    order = 4
    lesser_order = 3

    A = (
        (0.75,),
        (8.6120400814152190e-2, 0.1238795991858478),
        (0.7749345355073236, 0.1492651549508680, -0.2941996904581916),
        (5.308746682646142, 1.330892140037269, -5.374137811655562, -0.2655010110278497),
        (
            -1.764437648774483,
            -0.4747565572063027,
            2.369691846915802,
            0.6195023590649829,
            0.25,
        ),
    )
    G = (
        (-0.75,),
        (-0.1355124008141522, -0.1379915991858478),
        (-1.2569840048950798, -0.2501447105064236, 1.2209287154015032),
        (-7.073184331420625, -1.805648697243572, 7.7438296585713635, 0.8850033700928326),
        (
            1.6840692779853665,
            0.41826594361385516,
            -1.8814062168730028,
            -0.11378614758336392,
            -0.3571428571428569,
        ),
    )
    GAMMA = 0.25
    C = (
        -8.0368370789113464e-2,
        -5.6490613592447572e-2,
        0.4882856300427991,
        0.5057162114816189,
        -0.1071428571428569,
        0.25,
    )
    CW = (
        -1.764437648774483,
        -0.4747565572063027,
        2.369691846915802,
        0.6195023590649829,
        0.25,
        0.0,
    )


class RodasprFormula(RosenbrockFormula):
    """RODASPR: six stages, order 4 with an embedded order 3 estimate.

    Rang, Journal of Computational and Applied Mathematics 286 (2015). The
    coefficients keep the order for Prothero-Robinson type stiff problems.
    """

    name = "rodaspr"
    order = 4
    lesser_order = 3

    A = (
        (0.75,),
        (7.5162877593868457e-2, 2.4837122406131545e-2),
        (1.6532708886396510, 0.21545706385445562, -1.3157488872766792),
        (
            19.385003738039885,
            1.2007117225835324,
            -19.337924059522791,
            -0.24779140110062559,
        ),
        (
            -7.3844531665375115,
            -0.30593419030174646,
            7.8622074209377981,
            0.57817993590145966,
            0.25,
        ),
    )
    G = (
        (-0.75,),
        (-8.8644359075349941e-2, -2.8688974257983398e-2),
        (-4.8470034585330284, -0.31583244269672095, 4.9536568360123221),
        (
            -26.769456904577400,
            -1.5066459128852787,
            27.200131480460591,
            0.82597133700208525,
        ),
        (
            6.5876206496361416,
            0.36807059172993878,
            -6.7423520694658121,
            -0.10619631475741095,
            -0.35714285714285715,
        ),
    )
    GAMMA = 0.25
    C = (
        -0.79683251690137014,
        6.2136401428192344e-2,
        1.1198553514719862,
        0.47198362114404874,
        -0.10714285714285714,
        0.25,
    )
    CW = (
        -7.3844531665375115,
        -0.30593419030174646,
        7.8622074209377981,
        0.57817993590145966,
        0.25,
        0.0,
    )
