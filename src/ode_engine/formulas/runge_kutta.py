# src/ode_engine/formulas/runge_kutta.py
"""Explicit embedded Runge-Kutta formulas.

Tableaus are stored as class attributes:

- ``A``: row ``i`` holds the coefficients of stage ``i + 2`` on stages 1..i+1.
- ``B``: stage nodes, stage ``i`` is evaluated at ``time + B[i] * h``.
- ``C``: weights of the returned estimate.
- ``CW``: weights of the embedded lower-order estimate.

The error coefficients ``CE = C - CW`` are derived when a subclass is created.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, ClassVar

from ..errors import require_positive
from ..evaluation import DIFF_COEFF, request_evaluations
from ..linalg import combine, copy_variable
from .base import EmbeddedFormula

if TYPE_CHECKING:
    from ..linalg import Variable
    from ..problem import Problem

Row = tuple[float, ...]


def _derive_error_coefficients(cls: type) -> None:
    if "C" in cls.__dict__:
        cls.CE = tuple(c - cw for c, cw in zip(cls.C, cls.CW, strict=True))
        cls.stages = len(cls.C)


class ExplicitRungeKuttaFormula(EmbeddedFormula):
    """Tableau-driven explicit embedded Runge-Kutta formula."""

    A: ClassVar[tuple[Row, ...]]
    B: ClassVar[Row]
    C: ClassVar[Row]
    CW: ClassVar[Row]
    CE: ClassVar[Row]

    def __init_subclass__(cls, **kwargs: object) -> None:
        super().__init_subclass__(**kwargs)
        _derive_error_coefficients(cls)

    def __init__(self, problem: Problem) -> None:
        super().__init__(problem)
        self._k: list[Variable] = []

    @property
    def stage_derivatives(self) -> tuple[Variable, ...]:
        """Stage derivatives k_i of the last step."""
        return tuple(self._k)

    def step_embedded(
        self, time: float, step_size: float, current: Variable
    ) -> tuple[Variable, Variable]:
        step_size = require_positive("step_size", step_size)
        k = self._k
        k.clear()
        for i in range(self.stages):
            if i == 0:
                stage_variable = current
            else:
                stage_variable = current + step_size * combine(self.A[i - 1], k)
            request_evaluations(
                self._problem, time + self.B[i] * step_size, stage_variable, DIFF_COEFF
            )
            k.append(copy_variable(self._problem.diff_coeff()))

        estimate = current + step_size * combine(self.C, k)
        error = step_size * combine(self.CE, k)
        return estimate, error


class Ark43ErkFormula(ExplicitRungeKuttaFormula):
    """Explicit part of the ARK4(3)6L[2]SA additive Runge-Kutta scheme.

    Kennedy and Carpenter, Applied Numerical Mathematics 44 (2003).
    Six stages, order 4 with an embedded order 3 estimate.
    """

    name = "ark43_erk"
    order = 4
    lesser_order = 3

    A = (
        (1.0 / 2.0,),
        (13861.0 / 62500.0, 6889.0 / 62500.0),
        (
            -116923316275.0 / 2393684061468.0,
            -2731218467317.0 / 15368042101831.0,
            9408046702089.0 / 11113171139209.0,
        ),
        (
            -451086348788.0 / 2902428689909.0,
            -2682348792572.0 / 7519795681897.0,
            12662868775082.0 / 11960479115383.0,
            3355817975965.0 / 11060851509271.0,
        ),
        (
            647845179188.0 / 3216320057751.0,
            73281519250.0 / 8382639484533.0,
            552539513391.0 / 3454668386233.0,
            3354512671639.0 / 8306763924573.0,
            4040.0 / 17871.0,
        ),
    )
    B = (0.0, 1.0 / 2.0, 83.0 / 250.0, 31.0 / 50.0, 17.0 / 20.0, 1.0)
    C = (
        82889.0 / 524892.0,
        0.0,
        15625.0 / 83664.0,
        69875.0 / 102672.0,
        -2260.0 / 8211.0,
        1.0 / 4.0,
    )
    CW = (
        4586570599.0 / 29645900160.0,
        0.0,
        178811875.0 / 945068544.0,
        814220225.0 / 1159782912.0,
        -3700637.0 / 11593932.0,
        61727.0 / 225920.0,
    )


class Rkf45Formula(ExplicitRungeKuttaFormula):
    """Runge-Kutta-Fehlberg formula, order 5 with an embedded order 4 estimate."""

    name = "rkf45"
    order = 5
    lesser_order = 4

    A = (
        (1.0 / 4.0,),
        (3.0 / 32.0, 9.0 / 32.0),
        (1932.0 / 2197.0, -7200.0 / 2197.0, 7296.0 / 2197.0),
        (439.0 / 216.0, -8.0, 3680.0 / 513.0, -845.0 / 4104.0),
        (-8.0 / 27.0, 2.0, -3544.0 / 2565.0, 1859.0 / 4104.0, -11.0 / 40.0),
    )
    B = (0.0, 1.0 / 4.0, 3.0 / 8.0, 12.0 / 13.0, 1.0, 1.0 / 2.0)
    C = (
        16.0 / 135.0,
        0.0,
        6656.0 / 12825.0,
        28561.0 / 56430.0,
        -9.0 / 50.0,
        2.0 / 55.0,
    )
    CW = (25.0 / 216.0, 0.0, 1408.0 / 2565.0, 2197.0 / 4104.0, -1.0 / 5.0, 0.0)


class Dopri5Formula(ExplicitRungeKuttaFormula):
    """Dormand-Prince formula, order 5 with an embedded order 4 estimate.

    The seventh stage is evaluated at the estimate itself and only enters the
    error estimate.
    """

    name = "dopri5"
    order = 5
    lesser_order = 4

    A = (
        (1.0 / 5.0,),
        (3.0 / 40.0, 9.0 / 40.0),
        (44.0 / 45.0, -56.0 / 15.0, 32.0 / 9.0),
        (19372.0 / 6561.0, -25360.0 / 2187.0, 64448.0 / 6561.0, -212.0 / 729.0),
        (
            9017.0 / 3168.0,
            -355.0 / 33.0,
            46732.0 / 5247.0,
            49.0 / 176.0,
            -5103.0 / 18656.0,
        ),
        (
            35.0 / 384.0,
            0.0,
            500.0 / 1113.0,
            125.0 / 192.0,
            -2187.0 / 6784.0,
            11.0 / 84.0,
        ),
    )
    B = (0.0, 1.0 / 5.0, 3.0 / 10.0, 4.0 / 5.0, 8.0 / 9.0, 1.0, 1.0)
    C = (
        35.0 / 384.0,
        0.0,
        500.0 / 1113.0,
        125.0 / 192.0,
        -2187.0 / 6784.0,
        11.0 / 84.0,
        0.0,
    )
    CW = (
        5179.0 / 57600.0,
        0.0,
        7571.0 / 16695.0,
        393.0 / 640.0,
        -92097.0 / 339200.0,
        187.0 / 2100.0,
        1.0 / 40.0,
    )
