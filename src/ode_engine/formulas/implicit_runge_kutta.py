# src/ode_engine/formulas/implicit_runge_kutta.py
"""Embedded diagonally implicit Runge-Kutta formulas.

Every implicit stage solves

    z_i = h sum_j A_ij k_j + h AD f(t + B_i h, x + z_i)

with an InexactNewtonUpdateSolver, and ``k_i = (z_i - h sum_j A_ij k_j) / (h AD)``.
``A`` stores the strictly lower triangular coefficients row by row, starting
from the second stage. ESDIRK formulas evaluate the first stage explicitly;
SDIRK formulas solve it like every other stage. Nodes ``B`` are derived when
a subclass is created.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, ClassVar

from ..errors import require_positive
from ..evaluation import DIFF_COEFF_AND_JACOBIAN
from ..linalg import combine, copy_variable
from ..newton import InexactNewtonUpdateSolver
from .base import EmbeddedFormula

if TYPE_CHECKING:
    from ..iteration_logger import IterationLogger
    from ..linalg import Variable
    from ..problem import Problem
    from ..tolerances import ErrorTolerances

Row = tuple[float, ...]


class ImplicitRungeKuttaFormula(EmbeddedFormula):
    """
    Tableau-driven embedded diagonally implicit Runge-Kutta formula.

    Args:
        problem: Problem to integrate.
        update_solver: Newton solver for the stage equations; a default
            InexactNewtonUpdateSolver when None.

    Raises:
        CapabilityError: If the problem has no Jacobian or declares a mass
            matrix.
    """

    required_evaluations = DIFF_COEFF_AND_JACOBIAN

    A: ClassVar[tuple[Row, ...]]
    AD: ClassVar[float]
    C: ClassVar[Row]
    CW: ClassVar[Row]
    B: ClassVar[Row]
    CE: ClassVar[Row]
    EXPLICIT_FIRST_STAGE: ClassVar[bool] = True

    def __init_subclass__(cls, **kwargs: object) -> None:
        super().__init_subclass__(**kwargs)
        if "C" in cls.__dict__:
            cls.stages = len(cls.C)
            first = 0.0 if cls.EXPLICIT_FIRST_STAGE else cls.AD
            cls.B = (first, *(sum(row) + cls.AD for row in cls.A))
            cls.CE = tuple(c - cw for c, cw in zip(cls.C, cls.CW, strict=True))

    def __init__(
        self,
        problem: Problem,
        update_solver: InexactNewtonUpdateSolver | None = None,
    ) -> None:
        super().__init__(problem)
        solver = update_solver if update_solver is not None else InexactNewtonUpdateSolver()
        solver.check_problem(problem)
        self._solver = solver
        self._k: list[Variable] = []

    @property
    def update_solver(self) -> InexactNewtonUpdateSolver:
        """Newton solver handling the stage equations."""
        return self._solver

    @property
    def stage_derivatives(self) -> tuple[Variable, ...]:
        """Stage derivatives k_i of the last step."""
        return tuple(self._k)

    def tolerances(self, val: ErrorTolerances) -> None:
        """Forward error tolerances to the Newton solver."""
        self._solver.tolerances(val)

    def configure_iteration_logger(self, iteration_logger: IterationLogger) -> None:
        """Register the Newton solver's diagnostic fields."""
        self._solver.configure_iteration_logger(iteration_logger)

    def step_embedded(
        self, time: float, step_size: float, current: Variable
    ) -> tuple[Variable, Variable]:
        step_size = require_positive("step_size", step_size)
        solver = self._solver
        solver.update_jacobian(self._problem, time, step_size, current, self.AD)
        scale = step_size * self.AD

        k = self._k
        k.clear()
        for i in range(self.stages):
            if i == 0 and self.EXPLICIT_FIRST_STAGE:
                k.append(copy_variable(solver.initial_slope))
                continue
            if i == 0:
                offset = 0.0 * current
                initial = scale * solver.initial_slope
            else:
                offset = step_size * combine(self.A[i - 1], k)
                initial = offset + scale * k[-1]
            stage = solver.solve(time + self.B[i] * step_size, offset, initial)
            k.append((stage - offset) / scale)

        estimate = current + step_size * combine(self.C, k)
        error = step_size * combine(self.CE, k)
        return estimate, error


class Sdirk4Formula(ImplicitRungeKuttaFormula):
    """SDIRK4: five implicit stages, order 4 with an embedded order 3 estimate.

    Hairer and Wanner, Solving Ordinary Differential Equations II, Table IV.6.5.
    """

    name = "sdirk4"
    order = 4
    lesser_order = 3
    EXPLICIT_FIRST_STAGE = False

    AD = 1 / 4
    A = (
        (1 / 2,),
        (17 / 50, -1 / 25),
        (371 / 1360, -137 / 2720, 15 / 544),
        (25 / 24, -49 / 48, 125 / 16, -85 / 12),
    )
    C = (25 / 24, -49 / 48, 125 / 16, -85 / 12, 1 / 4)
    CW = (59 / 48, -17 / 96, 225 / 32, -85 / 12, 0.0)


class Ark43EsdirkFormula(ImplicitRungeKuttaFormula):
    """ARK4(3)6L[2]SA implicit part: six stages, order 4 with an order 3 estimate.

    Kennedy and Carpenter, Applied Numerical Mathematics 44 (2003).
    """

    name = "ark43_esdirk"
    order = 4
    lesser_order = 3

    AD = 1 / 4
    A = (
        (1 / 4,),
        (8611 / 62500, -1743 / 31250),
        (5012029 / 34652500, -654441 / 2922500, 174375 / 388108),
        (
            15267082809 / 155376265600,
            -71443401 / 120774400,
            730878875 / 902184768,
            2285395 / 8070912,
        ),
        (82889 / 524892, 0.0, 15625 / 83664, 69875 / 102672, -2260 / 8211),
    )
    C = (82889 / 524892, 0.0, 15625 / 83664, 69875 / 102672, -2260 / 8211, 1 / 4)
    CW = (
        4586570599 / 29645900160,
        0.0,
        178811875 / 945068544,
        814220225 / 1159782912,
        -3700637 / 11593932,
        61727 / 225920,
    )


class Ark54EsdirkFormula(ImplicitRungeKuttaFormula):
    """ARK5(4)8L[2]SA implicit part: eight stages, order 5 with an order 4 estimate.

    Kennedy and Carpenter, Applied Numerical Mathematics 44 (2003).
    """

    name = "ark54_esdirk"
    order = 5
    lesser_order = 4

    AD = 41 / 200
    A = (
        (41 / 200,),
        (41 / 400, -567603406766 / 11931857230679),
        (683785636431 / 9252920307686, 0.0, -110385047103 / 1367015193373),
        (
            3016520224154 / 10081342136671,
            0.0,
            30586259806659 / 12414158314087,
            -22760509404356 / 11113319521817,
        ),
        (
            218866479029 / 1489978393911,
            0.0,
            638256894668 / 5436446318841,
            -1179710474555 / 5321154724896,
            -60928119172 / 8023461067671,
        ),
        (
            1020004230633 / 5715676835656,
            0.0,
            25762820946817 / 25263940353407,
            -2161375909145 / 9755907335909,
            -211217309593 / 5846859502534,
            -4269925059573 / 7827059040749,
        ),
        (
            -872700587467 / 9133579230613,
            0.0,
            0.0,
            22348218063261 / 9555858737531,
            -1143369518992 / 8141816002931,
            -39379526789629 / 19018526304540,
            32727382324388 / 42900044865799,
        ),
    )
    C = (
        -872700587467 / 9133579230613,
        0.0,
        0.0,
        22348218063261 / 9555858737531,
        -1143369518992 / 8141816002931,
        -39379526789629 / 19018526304540,
        32727382324388 / 42900044865799,
        41 / 200,
    )
    CW = (
        -975461918565 / 9796059967033,
        0.0,
        0.0,
        78070527104295 / 32432590147079,
        -548382580838 / 3424219808633,
        -33438840321285 / 15594753105479,
        3629800801594 / 4656183773603,
        4035322873751 / 18575991585200,
    )
