# src/ode_engine/formulas/base.py
"""Abstract formula types.

A formula advances a variable by one step of a given size. It never changes
the step size; embedded formulas additionally report an error estimate the
driver uses to accept or reject the step.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, ClassVar

from ..evaluation import DIFF_COEFF, EvaluationType, require_evaluations

if TYPE_CHECKING:
    from ..iteration_logger import IterationLogger
    from ..linalg import Variable
    from ..problem import Problem
    from ..tolerances import ErrorTolerances


class Formula(ABC):
    """
    Single-step formula bound to a problem.

    Attributes:
        stages: Problem evaluations per step.
        order: Order of the returned estimate.

    Args:
        problem: Problem to integrate.

    Raises:
        CapabilityError: If the problem lacks an evaluation the formula needs.
    """

    name: ClassVar[str]
    required_evaluations: ClassVar[EvaluationType] = DIFF_COEFF
    stages: int
    order: int

    def __init__(self, problem: Problem) -> None:
        require_evaluations(
            problem, self.required_evaluations, owner=type(self).__name__
        )
        self._problem = problem

    @property
    def problem(self) -> Problem:
        """Problem this formula integrates."""
        return self._problem

    @abstractmethod
    def step(self, time: float, step_size: float, current: Variable) -> Variable:
        """
        Compute the variable after one step.

        Args:
            time: Time at the start of the step.
            step_size: Step size, strictly positive.
            current: Variable at the start of the step.

        Returns:
            Estimate of the variable at ``time + step_size``.
        """

    def tolerances(self, val: ErrorTolerances) -> None:
        """Set error tolerances used by inner iterative solvers, if any."""

    def configure_iteration_logger(self, iteration_logger: IterationLogger) -> None:
        """Register diagnostic fields of inner solvers, if any."""


class EmbeddedFormula(Formula):
    """
    Formula with an embedded lower-order error estimate.

    Attributes:
        lesser_order: Order of the embedded formula.
    """

    lesser_order: int

    def step(self, time: float, step_size: float, current: Variable) -> Variable:
        estimate, _ = self.step_embedded(time, step_size, current)
        return estimate

    @abstractmethod
    def step_embedded(
        self, time: float, step_size: float, current: Variable
    ) -> tuple[Variable, Variable]:
        """
        Compute the variable after one step with an error estimate.

        Args:
            time: Time at the start of the step.
            step_size: Step size, strictly positive.
            current: Variable at the start of the step.

        Returns:
            Tuple of the estimate and its error estimate.
        """
