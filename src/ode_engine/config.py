# src/ode_engine/config.py
"""Declarative solver configuration.

This module defines a pydantic model describing a complete driver setup
(formula, equation solver, controller, tolerances) and translates it into
native ode_engine objects, so setups can be loaded from plain mappings such
as parsed YAML or JSON files.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Final, Literal, cast

from pydantic import BaseModel, ConfigDict, Field, model_validator

from .core_solver import EmbeddedSolver, SimpleSolver, SolverBase
from .equation_solvers import (
    EQUATION_SOLVERS,
    BicgstabEquationSolver,
    GmresEquationSolver,
    MixedBroydenEquationSolver,
    RosenbrockEquationSolver,
    create_equation_solver,
    default_equation_solver,
)
from .errors import ConfigurationError
from .formulas import (
    FORMULAS,
    EmbeddedFormula,
    ImplicitRungeKuttaFormula,
    RosenbrockFormula,
    StepDoublingFormula,
)
from .newton import InexactNewtonUpdateSolver
from .step_control import (
    DEFAULT_DT_MIN,
    DEFAULT_PI_CURRENT_EXPONENT,
    DEFAULT_PI_PREVIOUS_EXPONENT,
    BasicStepSizeController,
    DtControllerConfig,
    PIStepSizeController,
    StepSizeController,
)
from .tolerances import ErrorTolerances

if TYPE_CHECKING:
    from .formulas import Formula
    from .problem import Problem

MethodName = Literal[
    "ark43_erk",
    "rkf45",
    "dopri5",
    "ros3w",
    "ros34pw3",
    "rodasp",
    "rodaspr",
    "sdirk4",
    "ark43_esdirk",
    "ark54_esdirk",
    "leap_frog",
    "symplectic_forest4",
]
EquationSolverName = Literal[
    "auto",
    "scalar",
    "lu",
    "bicgstab",
    "gmres",
    "mixed_broyden",
]
ControllerName = Literal["basic", "pi"]

_EQUATION_SOLVER_NOT_USED_ERROR_MSG: Final[str] = (
    "equation_solver={name!r} only applies to Rosenbrock methods, got {method!r}."
)
_FIXED_STEP_SIZE_ERROR_MSG: Final[str] = "Non-adaptive runs require step_size."
_DT_LIMITS_ERROR_MSG: Final[str] = (
    "dt_min must be smaller than dt_max, got dt_min={dt_min!r}, dt_max={dt_max!r}."
)
_PI_EXPONENTS_ERROR_MSG: Final[str] = (
    "pi_previous_exponent must not exceed pi_current_exponent, got "
    "{previous!r} > {current!r}."
)


class SolverConfig(BaseModel):
    """Configuration schema of an ode_engine driver.

    Adaptive runs use the embedded estimate of the method, or step doubling
    for non-embedded methods; ``step_size`` then only fixes the initial step
    size. Non-adaptive runs take fixed steps of ``step_size`` with any method.
    """

    model_config = ConfigDict(extra="forbid", frozen=True)

    method: MethodName = Field(
        default="ros34pw3",
        description="Step formula",
    )
    equation_solver: EquationSolverName = Field(
        default="auto",
        description="Stage equation solver of Rosenbrock methods",
    )
    controller: ControllerName = Field(
        default="basic",
        description="Step size controller",
    )
    adaptive: bool = Field(
        default=True,
        description="Adapt step sizes from an error estimate",
    )

    # Error tolerances
    rtol: float = Field(default=1e-4, gt=0.0)
    atol: float = Field(default=1e-4, gt=0.0)

    # Step size controller
    step_size: float | None = Field(default=None, gt=0.0)
    dt_min: float = Field(default=DEFAULT_DT_MIN, gt=0.0)
    dt_max: float = Field(default=float("inf"), gt=0.0)
    safety: float = Field(default=0.9, gt=0.0, le=1.0)
    fac_min: float = Field(default=0.1, gt=0.0, lt=1.0)
    fac_max: float = Field(default=2.0, gt=1.0)
    max_rejects: int = Field(default=100, ge=1)
    pi_current_exponent: float = Field(default=DEFAULT_PI_CURRENT_EXPONENT, ge=0.0)
    pi_previous_exponent: float = Field(default=DEFAULT_PI_PREVIOUS_EXPONENT, ge=0.0)

    # Iterative solvers (Krylov and Newton)
    tolerance_rate: float = Field(default=1e-2, gt=0.0)
    max_subspace_dim: int = Field(default=2, ge=1)
    max_iterations: int = Field(default=1000, ge=1)
    max_restarts: int | None = Field(default=None, ge=1)
    max_newton_iterations: int = Field(default=100, ge=1)

    # Broyden equation solver
    max_broyden_updates: int = Field(default=10, ge=0)

    @model_validator(mode="after")
    def _validate_combinations(self) -> SolverConfig:
        if self.dt_min >= self.dt_max:
            raise ConfigurationError(
                _DT_LIMITS_ERROR_MSG.format(dt_min=self.dt_min, dt_max=self.dt_max)
            )
        if self.pi_previous_exponent > self.pi_current_exponent:
            raise ConfigurationError(
                _PI_EXPONENTS_ERROR_MSG.format(
                    previous=self.pi_previous_exponent,
                    current=self.pi_current_exponent,
                )
            )
        if self.equation_solver != "auto" and not issubclass(
            FORMULAS[self.method], RosenbrockFormula
        ):
            raise ConfigurationError(
                _EQUATION_SOLVER_NOT_USED_ERROR_MSG.format(
                    name=self.equation_solver, method=self.method
                )
            )
        if not self.adaptive and self.step_size is None:
            raise ConfigurationError(_FIXED_STEP_SIZE_ERROR_MSG)
        return self

    def to_controller_config(self) -> DtControllerConfig:
        """Convert the controller fields to a native DtControllerConfig."""
        return DtControllerConfig(
            dt_min=self.dt_min,
            dt_max=self.dt_max,
            safety=self.safety,
            fac_min=self.fac_min,
            fac_max=self.fac_max,
            max_rejects=self.max_rejects,
        )

    def to_tolerances(self) -> ErrorTolerances:
        """Convert the tolerance fields to native ErrorTolerances."""
        return ErrorTolerances(tol_rel_error=self.rtol, tol_abs_error=self.atol)

    def to_controller(self) -> StepSizeController:
        """Build the configured step size controller."""
        if self.controller == "pi":
            return PIStepSizeController(
                self.to_controller_config(),
                self.to_tolerances(),
                current_exponent=self.pi_current_exponent,
                previous_exponent=self.pi_previous_exponent,
            )
        return BasicStepSizeController(self.to_controller_config(), self.to_tolerances())

    def build_equation_solver(
        self, problem: Problem, inverted_jacobian_coeff: float
    ) -> RosenbrockEquationSolver:
        """Build the configured stage equation solver for a problem."""
        if self.equation_solver == "auto":
            return default_equation_solver(problem, inverted_jacobian_coeff)
        return create_equation_solver(
            self.equation_solver,
            inverted_jacobian_coeff,
            **self._equation_solver_options(),
        )

    def build_update_solver(self) -> InexactNewtonUpdateSolver:
        """Build the Newton solver of implicit Runge-Kutta methods."""
        return InexactNewtonUpdateSolver(
            tolerance_rate=self.tolerance_rate,
            max_iterations=self.max_newton_iterations,
            tolerances=self.to_tolerances(),
        )

    def build_formula(self, problem: Problem) -> Formula:
        """Build the configured formula for a problem."""
        cls = FORMULAS[self.method]
        if issubclass(cls, RosenbrockFormula):
            return cls(problem, self.build_equation_solver(problem, cls.GAMMA))
        if issubclass(cls, ImplicitRungeKuttaFormula):
            return cls(problem, self.build_update_solver())
        return cls(problem)

    def build_solver(self, problem: Problem) -> SolverBase:
        """Build a driver for a problem."""
        formula = self.build_formula(problem)
        if not self.adaptive:
            return SimpleSolver(formula, step_size=cast("float", self.step_size))
        if not isinstance(formula, EmbeddedFormula):
            formula = StepDoublingFormula(formula)
        return EmbeddedSolver(
            formula,
            controller=self.to_controller(),
            step_size=self.step_size,
        )

    def _equation_solver_options(self) -> dict[str, Any]:
        cls = EQUATION_SOLVERS[self.equation_solver]
        if cls is MixedBroydenEquationSolver:
            return {"max_updates": self.max_broyden_updates}
        options: dict[str, Any] = {}
        if issubclass(cls, (BicgstabEquationSolver, GmresEquationSolver)):
            options = {
                "tolerance_rate": self.tolerance_rate,
                "max_restarts": self.max_restarts,
                "tolerances": self.to_tolerances(),
            }
        if cls is BicgstabEquationSolver:
            options["max_iterations"] = self.max_iterations
        if cls is GmresEquationSolver:
            options["max_subspace_dim"] = self.max_subspace_dim
        return options
