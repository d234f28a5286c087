# src/ode_engine/formulas/__init__.py
"""Step formulas: Runge-Kutta, Rosenbrock and symplectic."""

from __future__ import annotations

from typing import Final

from .base import EmbeddedFormula, Formula
from .implicit_runge_kutta import (
    Ark43EsdirkFormula,
    Ark54EsdirkFormula,
    ImplicitRungeKuttaFormula,
    Sdirk4Formula,
)
from .rosenbrock import (
    RodaspFormula,
    RodasprFormula,
    Ros3wFormula,
    Ros34pw3Formula,
    RosenbrockFormula,
)
from .runge_kutta import (
    Ark43ErkFormula,
    Dopri5Formula,
    ExplicitRungeKuttaFormula,
    Rkf45Formula,
)
from .symplectic import (
    Half,
    LeapFrogFormula,
    SymplecticForest4Formula,
    SymplecticFormula,
)
from .wrappers import StepDoublingFormula

FORMULAS: Final[dict[str, type[Formula]]] = {
    cls.name: cls
    for cls in (
        Ark43ErkFormula,
        Rkf45Formula,
        Dopri5Formula,
        Ros3wFormula,
        Ros34pw3Formula,
        RodaspFormula,
        RodasprFormula,
        Sdirk4Formula,
        Ark43EsdirkFormula,
        Ark54EsdirkFormula,
        LeapFrogFormula,
        SymplecticForest4Formula,
    )
}

__all__ = [
    "FORMULAS",
    "Ark43ErkFormula",
    "Ark43EsdirkFormula",
    "Ark54EsdirkFormula",
    "Dopri5Formula",
    "EmbeddedFormula",
    "ExplicitRungeKuttaFormula",
    "Formula",
    "Half",
    "ImplicitRungeKuttaFormula",
    "LeapFrogFormula",
    "Rkf45Formula",
    "RodaspFormula",
    "RodasprFormula",
    "Ros34pw3Formula",
    "Ros3wFormula",
    "RosenbrockFormula",
    "Sdirk4Formula",
    "StepDoublingFormula",
    "SymplecticForest4Formula",
    "SymplecticFormula",
]
