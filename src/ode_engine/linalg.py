# src/ode_engine/linalg.py
"""
Linear algebra helpers for stage equation solvers.

This module provides the small numerical utilities shared by the Rosenbrock
stage equation solvers:

- Assembly of the stage matrix ``M - h * gamma * J``.
- Dense and sparse LU factorizations returned as reusable solve callables.
- Mass-matrix application and SciPy ``LinearOperator`` construction for
  matrix-free Krylov solves.
- Variable helpers that treat Python floats and 1D arrays uniformly.

Design notes:
    * Dense paths rely on SciPy LAPACK wrappers; sparse paths rely on SciPy
      sparse factorizations.
    * Factorization degeneracy is reported as AlgorithmFailure, never as a
      SciPy-specific exception.
"""

from __future__ import annotations

import warnings
from typing import TYPE_CHECKING, Any, Final, TypeAlias

import numpy as np
from numpy.typing import NDArray
from scipy.linalg import LinAlgWarning, lu_factor, lu_solve
from scipy.sparse import csc_matrix, csr_matrix, identity, issparse
from scipy.sparse.linalg import LinearOperator
from scipy.sparse.linalg import factorized as sparse_factorized

from .errors import AlgorithmFailure, PreconditionError

if TYPE_CHECKING:
    from collections.abc import Callable, Sequence


# =============================================================================
# Public operator and variable types
# =============================================================================

DenseOperator: TypeAlias = NDArray[np.floating]
SparseOperator: TypeAlias = csr_matrix | csc_matrix
Operator: TypeAlias = DenseOperator | SparseOperator
Variable: TypeAlias = float | NDArray[np.floating]

_SQUARE_ERROR_MSG: Final[str] = "Jacobian must be a square 2D operator, got {shape}."
_MASS_SHAPE_ERROR_MSG: Final[str] = (
    "Mass matrix shape {mass_shape} does not match Jacobian shape {shape}."
)
_SINGULAR_ERROR_MSG: Final[str] = "Stage matrix is singular ({detail})."
_NON_FINITE_ERROR_MSG: Final[str] = "Stage matrix contains non-finite values."
_INVERSE_NON_FINITE_ERROR_MSG: Final[str] = "Inverse of the stage matrix is not finite."
_VECTOR_ERROR_MSG: Final[str] = "Variable must be a 1D array, got shape {shape}."


# =============================================================================
# Variable helpers
# =============================================================================


def copy_variable(value: Any) -> Variable:
    """Return an independent copy of a scalar or array variable."""
    if isinstance(value, np.ndarray):
        return np.array(value, dtype=float, copy=True)
    return float(value)


def as_vector(value: Any) -> NDArray[np.floating]:
    """Return a variable as a 1D float array.

    Raises:
        PreconditionError: If the variable is not one dimensional.
    """
    arr = np.asarray(value, dtype=float)
    if arr.ndim != 1:
        raise PreconditionError(_VECTOR_ERROR_MSG.format(shape=arr.shape))
    return arr


def variable_norm(value: Any) -> float:
    """Euclidean norm of a scalar or array variable."""
    return float(np.linalg.norm(np.atleast_1d(np.asarray(value, dtype=float))))


def combine(coeffs: Sequence[float], vectors: Sequence[Any]) -> Variable:
    """
    Form the linear combination ``sum(c * v)`` skipping zero coefficients.

    Args:
        coeffs: Coefficients, at least as many as ``vectors``.
        vectors: Scalars or arrays of a common shape.

    Returns:
        The linear combination; zeros shaped like ``vectors[0]`` if every
        coefficient is zero.
    """
    total: Any = None
    for coeff, vec in zip(coeffs, vectors, strict=False):
        if coeff == 0.0:
            continue
        term = coeff * vec
        total = term if total is None else total + term
    if total is None:
        return 0.0 * vectors[0]
    return total


# =============================================================================
# Stage matrix assembly
# =============================================================================


def _validate_square(jacobian: Any) -> int:
    shape = np.shape(jacobian) if not issparse(jacobian) else jacobian.shape
    if len(shape) != 2 or shape[0] != shape[1]:
        raise PreconditionError(_SQUARE_ERROR_MSG.format(shape=shape))
    return int(shape[0])


def apply_mass(mass: Any, target: Any) -> Variable:
    """
    Apply a mass matrix to a variable.

    Args:
        mass: None (identity), a scalar, or a dense/sparse 2D operator.
        target: Scalar or 1D array.

    Returns:
        ``mass @ target``, or a copy of ``target`` when ``mass`` is None.
    """
    if mass is None:
        return copy_variable(target)
    if issparse(mass) or np.ndim(mass) == 2:
        return np.asarray(mass @ target, dtype=float)
    return mass * target


def build_stage_matrix(
    jacobian: Any,
    step_size: float,
    coeff: float,
    mass: Any = None,
) -> Operator:
    """
    Build the stage matrix ``M - step_size * coeff * J``.

    Args:
        jacobian: Dense or sparse square Jacobian.
        step_size: Step size h.
        coeff: Inverted Jacobian coefficient gamma.
        mass: Optional mass matrix (scalar, dense or sparse); identity if None.

    Returns:
        CSC matrix if either operand is sparse, dense ndarray otherwise.

    Raises:
        PreconditionError: If shapes are inconsistent.
    """
    n = _validate_square(jacobian)
    scale = step_size * coeff
    if mass is not None and (issparse(mass) or np.ndim(mass) == 2):
        mass_shape = mass.shape if issparse(mass) else np.shape(mass)
        if mass_shape != (n, n):
            raise PreconditionError(
                _MASS_SHAPE_ERROR_MSG.format(mass_shape=mass_shape, shape=(n, n))
            )

    if issparse(jacobian) or issparse(mass):
        jac = csr_matrix(jacobian, dtype=float)
        if mass is None:
            left = identity(n, format="csr", dtype=float)
        elif not issparse(mass) and np.ndim(mass) == 0:
            left = float(mass) * identity(n, format="csr", dtype=float)
        else:
            left = csr_matrix(mass, dtype=float)
        return csc_matrix(left - scale * jac)

    jac_dense = np.asarray(jacobian, dtype=float)
    if mass is None:
        left_dense = np.eye(n)
    elif np.ndim(mass) == 0:
        left_dense = float(mass) * np.eye(n)
    else:
        left_dense = np.asarray(mass, dtype=float)
    return left_dense - scale * jac_dense


# =============================================================================
# Factorizations
# =============================================================================


def factorize(
    matrix: Operator,
) -> Callable[[NDArray[np.floating]], NDArray[np.floating]]:
    """
    Factorize a stage matrix and return a reusable solver.

    Args:
        matrix: Dense ndarray or sparse matrix.

    Returns:
        A callable that takes a right-hand side and returns the solution.

    Raises:
        AlgorithmFailure: If the matrix is not finite or exactly singular.
    """
    if issparse(matrix):
        sparse = csc_matrix(matrix, dtype=float)
        if not np.all(np.isfinite(sparse.data)):
            raise AlgorithmFailure(_NON_FINITE_ERROR_MSG)
        try:
            solve_sparse = sparse_factorized(sparse)
        except RuntimeError as exc:
            raise AlgorithmFailure(_SINGULAR_ERROR_MSG.format(detail=exc)) from exc

        def sparse_solver(rhs: NDArray[np.floating]) -> NDArray[np.floating]:
            return np.asarray(solve_sparse(np.asarray(rhs, dtype=float)), dtype=float)

        return sparse_solver

    dense = np.asarray(matrix, dtype=float)
    if not np.all(np.isfinite(dense)):
        raise AlgorithmFailure(_NON_FINITE_ERROR_MSG)
    with warnings.catch_warnings():
        warnings.simplefilter("ignore", LinAlgWarning)
        lu, piv = lu_factor(dense, check_finite=False)
    zero_pivots = np.flatnonzero(np.diag(lu) == 0.0)
    if zero_pivots.size:
        raise AlgorithmFailure(
            _SINGULAR_ERROR_MSG.format(detail=f"zero pivot at {int(zero_pivots[0])}")
        )

    def dense_solver(rhs: NDArray[np.floating]) -> NDArray[np.floating]:
        """
        Perform a dense solve using the precomputed LU factorization.

        Args:
            rhs: 1D right-hand side.

        Returns:
            The 1D solution.
        """
        out = lu_solve((lu, piv), np.asarray(rhs, dtype=float), check_finite=False)
        return np.asarray(out, dtype=float)

    return dense_solver


def dense_inverse(matrix: Operator) -> NDArray[np.floating]:
    """
    Compute the explicit inverse of a stage matrix through its LU factorization.

    Raises:
        AlgorithmFailure: If the matrix is singular or the inverse is not finite.
    """
    dense = matrix.toarray() if issparse(matrix) else np.asarray(matrix, dtype=float)
    solver = factorize(dense)
    inverse = solver(np.eye(dense.shape[0]))
    if not np.all(np.isfinite(inverse)):
        raise AlgorithmFailure(_INVERSE_NON_FINITE_ERROR_MSG)
    return inverse


def as_linear_operator(
    size: int,
    matvec: Callable[[NDArray[np.floating]], NDArray[np.floating]],
) -> LinearOperator:
    """
    Wrap a matrix-free product as a SciPy LinearOperator.

    Args:
        size: Dimension of the square operator.
        matvec: Callable computing the operator applied to a 1D vector.

    Returns:
        A SciPy LinearOperator.
    """

    def _matvec(v: NDArray[np.floating]) -> NDArray[np.floating]:
        return np.asarray(matvec(np.ravel(v)), dtype=float)

    return LinearOperator(shape=(size, size), dtype=np.float64, matvec=_matvec)
