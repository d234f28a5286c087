# src/ode_engine/formulas/wrappers.py
"""Error estimation for formulas without an embedded estimate."""

from __future__ import annotations

from typing import TYPE_CHECKING

from ..errors import require_positive
from .base import EmbeddedFormula

if TYPE_CHECKING:
    from ..iteration_logger import IterationLogger
    from ..linalg import Variable
    from ..tolerances import ErrorTolerances
    from .base import Formula


class StepDoublingFormula(EmbeddedFormula):
    """
    Embedded formula built by step doubling.

    The estimate is two half steps of the wrapped formula; the error is its
    difference from one full step. The estimate keeps the wrapped order.

    Args:
        formula: Formula to wrap.
    """

    name = "step_doubling"

    def __init__(self, formula: Formula) -> None:
        super().__init__(formula.problem)
        self._formula = formula
        self.order = formula.order
        self.lesser_order = formula.order
        self.stages = 3 * formula.stages

    @property
    def formula(self) -> Formula:
        """Wrapped formula."""
        return self._formula

    def tolerances(self, val: ErrorTolerances) -> None:
        self._formula.tolerances(val)

    def configure_iteration_logger(self, iteration_logger: IterationLogger) -> None:
        self._formula.configure_iteration_logger(iteration_logger)

    def step_embedded(
        self, time: float, step_size: float, current: Variable
    ) -> tuple[Variable, Variable]:
        step_size = require_positive("step_size", step_size)
        full = self._formula.step(time, step_size, current)
        half = 0.5 * step_size
        midpoint = self._formula.step(time, half, current)
        estimate = self._formula.step(time + half, half, midpoint)
        return estimate, estimate - full
