"""ode_engine adaptive embedded ODE integration package."""

from __future__ import annotations

from .config import SolverConfig
from .core_solver import EmbeddedSolver, SimpleSolver, SolverBase, SolverState
from .equation_solvers import (
    EQUATION_SOLVERS,
    BicgstabEquationSolver,
    BroydenStaleness,
    GmresEquationSolver,
    LuEquationSolver,
    MixedBroydenEquationSolver,
    RosenbrockEquationSolver,
    ScalarEquationSolver,
    create_equation_solver,
    default_equation_solver,
)
from .errors import (
    AlgorithmFailure,
    CapabilityError,
    ConfigurationError,
    DriverFailure,
    OdeEngineError,
    PreconditionError,
    StepSizeUnderflowError,
    TooManyRejectionsError,
)
from .evaluation import EvaluationType
from .formulas import (
    FORMULAS,
    Ark43ErkFormula,
    Ark43EsdirkFormula,
    Ark54EsdirkFormula,
    Dopri5Formula,
    EmbeddedFormula,
    Formula,
    ImplicitRungeKuttaFormula,
    LeapFrogFormula,
    Rkf45Formula,
    RodaspFormula,
    RodasprFormula,
    Ros3wFormula,
    Ros34pw3Formula,
    RosenbrockFormula,
    Sdirk4Formula,
    StepDoublingFormula,
    SymplecticForest4Formula,
)
from .iteration_logger import IterationLogger
from .newton import InexactNewtonUpdateSolver
from .problem import FunctionProblem, Problem
from .step_control import (
    BasicStepSizeController,
    DtControllerConfig,
    PIStepSizeController,
    StepSizeController,
)
from .tolerances import ErrorTolerances

__all__ = [
    "EQUATION_SOLVERS",
    "FORMULAS",
    "AlgorithmFailure",
    "Ark43ErkFormula",
    "Ark43EsdirkFormula",
    "Ark54EsdirkFormula",
    "BasicStepSizeController",
    "BicgstabEquationSolver",
    "BroydenStaleness",
    "CapabilityError",
    "ConfigurationError",
    "Dopri5Formula",
    "DriverFailure",
    "DtControllerConfig",
    "EmbeddedFormula",
    "EmbeddedSolver",
    "ErrorTolerances",
    "EvaluationType",
    "Formula",
    "FunctionProblem",
    "GmresEquationSolver",
    "ImplicitRungeKuttaFormula",
    "InexactNewtonUpdateSolver",
    "IterationLogger",
    "LeapFrogFormula",
    "LuEquationSolver",
    "MixedBroydenEquationSolver",
    "OdeEngineError",
    "PIStepSizeController",
    "PreconditionError",
    "Problem",
    "Rkf45Formula",
    "RodaspFormula",
    "RodasprFormula",
    "Ros34pw3Formula",
    "Ros3wFormula",
    "RosenbrockEquationSolver",
    "RosenbrockFormula",
    "ScalarEquationSolver",
    "Sdirk4Formula",
    "SimpleSolver",
    "SolverBase",
    "SolverConfig",
    "SolverState",
    "StepDoublingFormula",
    "StepSizeController",
    "StepSizeUnderflowError",
    "SymplecticForest4Formula",
    "TooManyRejectionsError",
    "create_equation_solver",
    "default_equation_solver",
]

__version__ = "0.1.0"
