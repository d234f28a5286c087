"""Global pytest configuration and shared fixtures for ode_engine."""

from __future__ import annotations

import numpy as np
import pytest
from problems import (
    ExponentialProblem,
    ForcedDecayProblem,
    JacobianFreeSpringProblem,
    MassSpringProblem,
    SpringMovementProblem,
)

# -----------------------------------------------------------------------------
# Global markers registration safety (for local pytest runs)
# -----------------------------------------------------------------------------


def pytest_configure(config: pytest.Config) -> None:
    """Register custom markers used by the test suite."""
    config.addinivalue_line(
        "markers",
        "convergence: mark test as an observed-order convergence check",
    )


# -----------------------------------------------------------------------------
# Problem fixtures
# -----------------------------------------------------------------------------


@pytest.fixture
def exponential() -> ExponentialProblem:
    """Fresh scalar exponential growth problem."""
    return ExponentialProblem()


@pytest.fixture
def spring() -> SpringMovementProblem:
    """Fresh harmonic oscillator with an exact Jacobian."""
    return SpringMovementProblem()


@pytest.fixture
def jacobian_free_spring() -> JacobianFreeSpringProblem:
    """Fresh harmonic oscillator without a Jacobian."""
    return JacobianFreeSpringProblem()


@pytest.fixture
def mass_spring() -> MassSpringProblem:
    """Fresh harmonic oscillator with a mass matrix."""
    return MassSpringProblem()


@pytest.fixture
def forced_decay() -> ForcedDecayProblem:
    """Fresh non-autonomous scalar problem stored as a 1D array."""
    return ForcedDecayProblem()


@pytest.fixture
def spring_start() -> np.ndarray:
    """Initial (p, q) of the harmonic oscillator."""
    return np.array([1.0, 0.0])
