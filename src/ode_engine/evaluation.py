# src/ode_engine/evaluation.py
"""Evaluation capability descriptor and request helpers.

A problem declares which quantities it can compute through a static
``allowed_evaluations`` descriptor. Formulas and equation solvers state their
needs with the same type and check them once at construction time; every
request issued afterwards passes through ``request_evaluations`` which checks
again before the problem is touched.
"""

from __future__ import annotations

from dataclasses import dataclass, fields
from typing import TYPE_CHECKING, Any, Final

from .errors import CapabilityError

if TYPE_CHECKING:
    from .problem import Problem

_MISSING_CAPABILITY_ERROR_MSG: Final[str] = (
    "{owner} requires evaluations {required} but {problem} only allows {allowed}."
)
_NO_CAPABILITY_ERROR_MSG: Final[str] = (
    "{problem} does not declare an 'allowed_evaluations' EvaluationType."
)


@dataclass(frozen=True, slots=True)
class EvaluationType:
    """Set of quantities requested from, or supported by, a problem.

    Attributes:
        diff_coeff: Differential coefficient f(t, x).
        jacobian: Jacobian of f with respect to x.
        time_derivative: Partial derivative of f with respect to t.
        mass: Mass matrix M in M dx/dt = f(t, x).
    """

    diff_coeff: bool = False
    jacobian: bool = False
    time_derivative: bool = False
    mass: bool = False

    def allows(self, request: EvaluationType) -> bool:
        """Check whether every flag set in ``request`` is also set here.

        Args:
            request: Requested evaluations.

        Returns:
            True if this descriptor is a superset of the request.
        """
        return all(
            getattr(self, f.name) or not getattr(request, f.name) for f in fields(self)
        )

    def __or__(self, other: EvaluationType) -> EvaluationType:
        return EvaluationType(
            **{
                f.name: getattr(self, f.name) or getattr(other, f.name)
                for f in fields(self)
            }
        )

    def flags(self) -> tuple[str, ...]:
        """Names of the flags that are set."""
        return tuple(f.name for f in fields(self) if getattr(self, f.name))

    def __str__(self) -> str:
        return "{" + ", ".join(self.flags()) + "}"


DIFF_COEFF: Final[EvaluationType] = EvaluationType(diff_coeff=True)
DIFF_COEFF_AND_JACOBIAN: Final[EvaluationType] = EvaluationType(
    diff_coeff=True, jacobian=True
)


def allowed_evaluations_of(problem: Any) -> EvaluationType:
    """Return the capability descriptor declared by a problem.

    Raises:
        CapabilityError: If the problem declares no EvaluationType.
    """
    allowed = getattr(problem, "allowed_evaluations", None)
    if not isinstance(allowed, EvaluationType):
        raise CapabilityError(
            _NO_CAPABILITY_ERROR_MSG.format(problem=type(problem).__name__)
        )
    return allowed


def require_evaluations(problem: Any, required: EvaluationType, *, owner: str) -> None:
    """Fail fast if a problem cannot satisfy an algorithm's requirements.

    Args:
        problem: Problem to check.
        required: Evaluations the algorithm will request.
        owner: Name of the algorithm, used in the error message.

    Raises:
        CapabilityError: If ``required`` is not a subset of the problem's
            allowed evaluations.
    """
    allowed = allowed_evaluations_of(problem)
    if not allowed.allows(required):
        raise CapabilityError(
            _MISSING_CAPABILITY_ERROR_MSG.format(
                owner=owner,
                required=required,
                problem=type(problem).__name__,
                allowed=allowed,
            )
        )


def supported_subset(problem: Any, *optional: str) -> EvaluationType:
    """Build a request holding only the optional flags the problem supports.

    Args:
        problem: Problem to inspect.
        *optional: Flag names to include when supported.

    Returns:
        EvaluationType with the supported subset of ``optional`` set.
    """
    allowed = allowed_evaluations_of(problem)
    return EvaluationType(**{name: getattr(allowed, name) for name in optional})


def request_evaluations(
    problem: Problem,
    time: float,
    variable: Any,
    evaluations: EvaluationType,
) -> None:
    """Evaluate a problem after checking the request against its capabilities.

    Args:
        problem: Problem to evaluate.
        time: Time of the evaluation.
        variable: Variable of the evaluation.
        evaluations: Quantities to compute.

    Raises:
        CapabilityError: If the request exceeds the problem's capabilities.
    """
    require_evaluations(problem, evaluations, owner="evaluation request")
    problem.evaluate_on(time, variable, evaluations)
