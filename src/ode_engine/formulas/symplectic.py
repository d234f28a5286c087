# src/ode_engine/formulas/symplectic.py
"""Symplectic formulas for separable Hamiltonian problems.

The variable is split into two equal halves: momentum first, then position.
A step applies a fixed sequence of partial updates, each adding
``h * coeff * f`` to one half with ``f`` re-evaluated at the current
intermediate variable. These formulas carry no error estimate.
"""

from __future__ import annotations

from enum import Enum
from typing import TYPE_CHECKING, ClassVar, Final

import numpy as np

from ..errors import PreconditionError, require_positive
from ..evaluation import DIFF_COEFF, request_evaluations
from ..linalg import as_vector
from .base import Formula

if TYPE_CHECKING:
    from numpy.typing import NDArray

    from ..linalg import Variable

_ODD_DIMENSION_ERROR_MSG: Final[str] = (
    "{formula} needs a variable with an even number of components, got {size}."
)


class Half(Enum):
    """Half of a symplectic variable updated by one partial step."""

    MOMENTUM = "momentum"
    POSITION = "position"


class SymplecticFormula(Formula):
    """Composition of partial momentum and position updates."""

    UPDATES: ClassVar[tuple[tuple[Half, float], ...]]

    def __init_subclass__(cls, **kwargs: object) -> None:
        super().__init_subclass__(**kwargs)
        if "UPDATES" in cls.__dict__:
            cls.stages = len(cls.UPDATES)

    def step(self, time: float, step_size: float, current: Variable) -> Variable:
        """
        Compute the variable after one step.

        Raises:
            PreconditionError: If the variable has an odd number of components.
        """
        step_size = require_positive("step_size", step_size)
        estimate: NDArray[np.floating] = np.array(as_vector(current), copy=True)
        if estimate.size % 2 != 0:
            raise PreconditionError(
                _ODD_DIMENSION_ERROR_MSG.format(
                    formula=type(self).__name__, size=estimate.size
                )
            )
        half_size = estimate.size // 2
        parts = {
            Half.MOMENTUM: slice(0, half_size),
            Half.POSITION: slice(half_size, None),
        }
        for half, coeff in self.UPDATES:
            request_evaluations(self._problem, time, estimate, DIFF_COEFF)
            part = parts[half]
            estimate[part] += (
                step_size * coeff * as_vector(self._problem.diff_coeff())[part]
            )
        return estimate


class LeapFrogFormula(SymplecticFormula):
    """Leapfrog (Stormer-Verlet) formula of order 2."""

    name = "leap_frog"
    order = 2

    UPDATES = (
        (Half.MOMENTUM, 0.5),
        (Half.POSITION, 1.0),
        (Half.MOMENTUM, 0.5),
    )


_ALPHA: Final[float] = 1.0 - 2.0 ** (1.0 / 3.0)


class SymplecticForest4Formula(SymplecticFormula):
    """Forest-Ruth composition of leapfrog steps, order 4.

    Forest and Ruth, Physica D 43 (1990).
    """

    name = "symplectic_forest4"
    order = 4

    UPDATES = (
        (Half.MOMENTUM, 1.0 / (2.0 * (1.0 + _ALPHA))),
        (Half.POSITION, 1.0 / (1.0 + _ALPHA)),
        (Half.MOMENTUM, _ALPHA / (2.0 * (1.0 + _ALPHA))),
        (Half.POSITION, (_ALPHA - 1.0) / (1.0 + _ALPHA)),
        (Half.MOMENTUM, _ALPHA / (2.0 * (1.0 + _ALPHA))),
        (Half.POSITION, 1.0 / (1.0 + _ALPHA)),
        (Half.MOMENTUM, 1.0 / (2.0 * (1.0 + _ALPHA))),
    )
