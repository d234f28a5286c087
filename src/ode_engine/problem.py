# src/ode_engine/problem.py
"""Problem contract consumed by formulas and equation solvers.

A problem describes ``M dx/dt = f(t, x)``. It is evaluated in place through
``evaluate_on`` and queried through accessors afterwards, so a single
evaluation can share work between the quantities requested together.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Final, Protocol, runtime_checkable

import numpy as np
from scipy.sparse import issparse

from .errors import CapabilityError, PreconditionError
from .evaluation import EvaluationType

if TYPE_CHECKING:
    from collections.abc import Callable

_NOT_EVALUATED_ERROR_MSG: Final[str] = (
    "{name} has not been evaluated; call evaluate_on with it requested first."
)
_UNSUPPORTED_REQUEST_ERROR_MSG: Final[str] = (
    "Requested evaluations {requested} exceed allowed evaluations {allowed}."
)
_VARIABLE_TYPE_ERROR_MSG: Final[str] = (
    "variable_type must be float or numpy.ndarray, got {variable_type!r}."
)


@runtime_checkable
class Problem(Protocol):
    """Interface of problems solved by ode_engine.

    Accessors for ``jacobian``, ``time_derivative`` and ``mass`` are only
    required when the corresponding flag is set in ``allowed_evaluations``.
    """

    allowed_evaluations: EvaluationType
    variable_type: type

    def evaluate_on(
        self, time: float, variable: Any, evaluations: EvaluationType
    ) -> None:
        """Compute the requested quantities at ``(time, variable)``."""
        ...

    def diff_coeff(self) -> Any:
        """Differential coefficient from the last evaluation."""
        ...


class FunctionProblem:
    """Problem built from plain callables.

    Args:
        rhs: Differential coefficient ``rhs(t, x)``.
        jacobian: Optional Jacobian ``jacobian(t, x)``, dense or SciPy sparse.
        time_derivative: Optional ``time_derivative(t, x)`` giving df/dt.
        mass: Optional mass matrix, either constant or ``mass(t, x)``.
        variable_type: ``float`` for scalar problems, ``numpy.ndarray`` otherwise.
    """

    scalar_type = float

    def __init__(
        self,
        rhs: Callable[[float, Any], Any],
        *,
        jacobian: Callable[[float, Any], Any] | None = None,
        time_derivative: Callable[[float, Any], Any] | None = None,
        mass: Any = None,
        variable_type: type = np.ndarray,
    ) -> None:
        if variable_type not in {float, np.ndarray}:
            raise PreconditionError(
                _VARIABLE_TYPE_ERROR_MSG.format(variable_type=variable_type)
            )
        self._rhs = rhs
        self._jacobian_fn = jacobian
        self._time_derivative_fn = time_derivative
        self._mass_fn = mass
        self.variable_type = variable_type
        self.allowed_evaluations = EvaluationType(
            diff_coeff=True,
            jacobian=jacobian is not None,
            time_derivative=time_derivative is not None,
            mass=mass is not None,
        )
        self.evaluations = 0
        self._values: dict[str, Any] = {}

    def evaluate_on(
        self, time: float, variable: Any, evaluations: EvaluationType
    ) -> None:
        """Compute the requested quantities at ``(time, variable)``.

        Raises:
            CapabilityError: If a requested quantity has no callable.
        """
        if not self.allowed_evaluations.allows(evaluations):
            raise CapabilityError(
                _UNSUPPORTED_REQUEST_ERROR_MSG.format(
                    requested=evaluations, allowed=self.allowed_evaluations
                )
            )
        self.evaluations += 1
        if evaluations.diff_coeff:
            self._values["diff_coeff"] = self._as_variable(self._rhs(time, variable))
        if evaluations.jacobian and self._jacobian_fn is not None:
            self._values["jacobian"] = self._as_operator(
                self._jacobian_fn(time, variable)
            )
        if evaluations.time_derivative and self._time_derivative_fn is not None:
            self._values["time_derivative"] = self._as_variable(
                self._time_derivative_fn(time, variable)
            )
        if evaluations.mass and self._mass_fn is not None:
            mass = self._mass_fn(time, variable) if callable(self._mass_fn) else (
                self._mass_fn
            )
            self._values["mass"] = self._as_operator(mass)

    def diff_coeff(self) -> Any:
        """Differential coefficient from the last evaluation."""
        return self._get("diff_coeff")

    def jacobian(self) -> Any:
        """Jacobian from the last evaluation requesting it."""
        return self._get("jacobian")

    def time_derivative(self) -> Any:
        """Partial time derivative from the last evaluation requesting it."""
        return self._get("time_derivative")

    def mass(self) -> Any:
        """Mass matrix from the last evaluation requesting it."""
        return self._get("mass")

    def _get(self, name: str) -> Any:
        try:
            return self._values[name]
        except KeyError:
            raise PreconditionError(
                _NOT_EVALUATED_ERROR_MSG.format(name=name)
            ) from None

    def _as_variable(self, value: Any) -> Any:
        if self.variable_type is float:
            return float(value)
        return np.asarray(value, dtype=float)

    def _as_operator(self, value: Any) -> Any:
        if self.variable_type is float:
            return float(value)
        if issparse(value):
            return value
        return np.asarray(value, dtype=float)
