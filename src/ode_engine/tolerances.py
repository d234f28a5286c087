# src/ode_engine/tolerances.py
"""Error tolerance policy shared by step controllers and iterative solvers."""

from __future__ import annotations

from typing import TYPE_CHECKING, Final

import numpy as np

from .errors import PreconditionError

if TYPE_CHECKING:
    from numpy.typing import ArrayLike, NDArray

_TOLERANCE_ERROR_MSG: Final[str] = (
    "{name} must be strictly positive and finite in every component, got {value!r}."
)

DEFAULT_TOL_REL_ERROR: Final[float] = 1e-4
DEFAULT_TOL_ABS_ERROR: Final[float] = 1e-4


def _validate_tolerance(name: str, value: ArrayLike) -> float | NDArray[np.floating]:
    arr = np.asarray(value, dtype=float)
    if arr.size == 0 or not np.all(np.isfinite(arr)) or np.any(arr <= 0.0):
        raise PreconditionError(_TOLERANCE_ERROR_MSG.format(name=name, value=value))
    if arr.ndim == 0:
        return float(arr)
    return arr


class ErrorTolerances:
    """Weighted absolute/relative error tolerances.

    Component ``i`` of an error is scaled by ``rtol_i * |x_i| + atol_i`` and the
    scaled error is reduced with a root mean square, so a norm of one means the
    error sits exactly on the tolerance.

    Args:
        tol_rel_error: Relative tolerance, scalar or per component.
        tol_abs_error: Absolute tolerance, scalar or per component.
    """

    __slots__ = ("_tol_abs_error", "_tol_rel_error")

    def __init__(
        self,
        tol_rel_error: ArrayLike = DEFAULT_TOL_REL_ERROR,
        tol_abs_error: ArrayLike = DEFAULT_TOL_ABS_ERROR,
    ) -> None:
        self._tol_rel_error = _validate_tolerance("tol_rel_error", tol_rel_error)
        self._tol_abs_error = _validate_tolerance("tol_abs_error", tol_abs_error)

    @property
    def tol_rel_error(self) -> float | NDArray[np.floating]:
        """Relative tolerance."""
        return self._tol_rel_error

    @property
    def tol_abs_error(self) -> float | NDArray[np.floating]:
        """Absolute tolerance."""
        return self._tol_abs_error

    def scale(self, variable: ArrayLike) -> NDArray[np.floating]:
        """Per-component tolerance ``rtol * |variable| + atol``."""
        return np.atleast_1d(
            self._tol_rel_error * np.abs(np.asarray(variable, dtype=float))
            + self._tol_abs_error
        )

    def calc_norm(self, variable: ArrayLike, error: ArrayLike) -> float:
        """Compute the weighted RMS norm of an error.

        Args:
            variable: Reference variable for the relative part.
            error: Error to measure.

        Returns:
            Norm of the scaled error; ``inf`` if it is not finite.
        """
        ratio = np.atleast_1d(np.asarray(error, dtype=float)) / self.scale(variable)
        val = float(np.sqrt(np.mean(ratio * ratio)))
        if not np.isfinite(val):
            return float("inf")
        return val

    def check(self, variable: ArrayLike, error: ArrayLike) -> bool:
        """Check whether every error component is within its tolerance."""
        err = np.atleast_1d(np.abs(np.asarray(error, dtype=float)))
        return bool(np.all(err <= self.scale(variable)))

    def __repr__(self) -> str:
        return (
            f"ErrorTolerances(tol_rel_error={self._tol_rel_error!r}, "
            f"tol_abs_error={self._tol_abs_error!r})"
        )
