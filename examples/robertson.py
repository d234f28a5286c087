# ode_engine/examples/robertson.py
"""Robertson chemical kinetics as a canonical stiff ODE example.

This example demonstrates the driver API:

- EmbeddedSolver.solve_till(t) lands exactly on each requested output time,
  taking as many internal adaptive steps as the tolerances require.
- Rosenbrock formulas handle the stiff reaction rates with a few hundred steps,
  while an explicit formula needs orders of magnitude more over a short horizon.

The state y = (A, B, C) satisfies A + B + C = 1 for all times.

This script saves plots to disk (no interactive windows).
"""

from __future__ import annotations

import logging
from pathlib import Path

import matplotlib.pyplot as plt
import numpy as np

from ode_engine import (
    Dopri5Formula,
    EmbeddedSolver,
    ErrorTolerances,
    FunctionProblem,
    RodaspFormula,
    Ros34pw3Formula,
)

_OUTPUT_DIR = Path(__file__).resolve().parent / "output" / "robertson"
_LOGGER = logging.getLogger(__name__)

K1 = 0.04
K2 = 3.0e7
K3 = 1.0e4


def robertson_rhs(t: float, y: np.ndarray) -> np.ndarray:  # noqa: ARG001
    """Reaction rates of the Robertson system.

    Args:
        t: Current time (unused; the system is autonomous).
        y: Concentrations (A, B, C).

    Returns:
        Time derivatives (dA/dt, dB/dt, dC/dt).
    """
    a, b, c = y
    return np.array(
        [
            -K1 * a + K3 * b * c,
            K1 * a - K3 * b * c - K2 * b * b,
            K2 * b * b,
        ]
    )


def robertson_jacobian(t: float, y: np.ndarray) -> np.ndarray:  # noqa: ARG001
    """Jacobian of the Robertson reaction rates."""
    _, b, c = y
    return np.array(
        [
            [-K1, K3 * c, K3 * b],
            [K1, -K3 * c - 2.0 * K2 * b, -K3 * b],
            [0.0, 2.0 * K2 * b, 0.0],
        ]
    )


def make_problem() -> FunctionProblem:
    """Build the Robertson problem with an exact Jacobian."""
    return FunctionProblem(robertson_rhs, jacobian=robertson_jacobian)


def integrate(
    solver: EmbeddedSolver, output_times: np.ndarray
) -> tuple[np.ndarray, list[int]]:
    """Integrate from y(0) = (1, 0, 0) and record the state at output times.

    Args:
        solver: Driver to use.
        output_times: Increasing output times, all positive.

    Returns:
        Tuple of the states, shape (n_times, 3), and the cumulative step count
        at each output time.
    """
    solver.init(0.0, np.array([1.0, 0.0, 0.0]))
    states = np.empty((output_times.size, 3))
    steps = []
    for i, t in enumerate(output_times):
        solver.solve_till(float(t))
        states[i] = solver.variable
        steps.append(solver.steps)
    return states, steps


def save_robertson_plot(
    time: np.ndarray,
    states: np.ndarray,
    *,
    title: str,
    out_path: Path,
) -> None:
    """Save A, 1e4 * B and C trajectories on a logarithmic time axis.

    Args:
        time: 1D array of output times.
        states: States at the output times, shape (n_times, 3).
        title: Plot title.
        out_path: Output path for the saved figure.
    """
    drift = float(np.max(np.abs(states.sum(axis=1) - 1.0)))

    plt.figure(figsize=(8, 5))
    plt.semilogx(time, states[:, 0], label="A")
    plt.semilogx(time, 1e4 * states[:, 1], label="1e4 * B")
    plt.semilogx(time, states[:, 2], label="C")
    plt.grid(visible=True)
    plt.legend()
    plt.title(f"{title}\nmax |A+B+C-1| = {drift:.3e}")
    plt.xlabel("Time")
    plt.ylabel("Concentration")
    plt.tight_layout()

    out_path.parent.mkdir(parents=True, exist_ok=True)
    plt.savefig(out_path, dpi=150)
    plt.close()


def main() -> None:
    """Run the Robertson problem with stiff and non-stiff formulas.

    Produces one saved plot per Rosenbrock formula and logs the step counts of
    an explicit formula over a short horizon for comparison.

    Files are written to: examples/output/robertson/
    """
    logging.basicConfig(level=logging.INFO, format="%(name)s: %(message)s")
    tolerances = ErrorTolerances(tol_rel_error=1e-6, tol_abs_error=1e-10)
    output_times = np.logspace(-5, 4, 91)

    # ---------------------------------------------------------------------
    # (1) Rosenbrock formulas over the full horizon
    # ---------------------------------------------------------------------
    for formula_cls in (Ros34pw3Formula, RodaspFormula):
        solver = EmbeddedSolver(formula_cls(make_problem()), tolerances=tolerances)
        states, steps = integrate(solver, output_times)
        _LOGGER.info(
            "%s: %d steps, %d rejections up to t=%g",
            formula_cls.name,
            steps[-1],
            solver.rejections,
            output_times[-1],
        )
        save_robertson_plot(
            output_times,
            states,
            title=f"Robertson kinetics ({formula_cls.name})",
            out_path=_OUTPUT_DIR / f"robertson_{formula_cls.name}.png",
        )

    # ---------------------------------------------------------------------
    # (2) Explicit formula over a short horizon
    # ---------------------------------------------------------------------
    short_times = np.array([1.0])
    explicit = EmbeddedSolver(Dopri5Formula(make_problem()), tolerances=tolerances)
    _, explicit_steps = integrate(explicit, short_times)
    stiff = EmbeddedSolver(RodaspFormula(make_problem()), tolerances=tolerances)
    _, stiff_steps = integrate(stiff, short_times)
    _LOGGER.info(
        "Up to t=1: dopri5 took %d steps, rodasp took %d steps.",
        explicit_steps[-1],
        stiff_steps[-1],
    )


if __name__ == "__main__":
    main()
