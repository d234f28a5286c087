# src/ode_engine/iteration_logger.py
"""Iteration logger collecting named numeric fields from running algorithms.

Algorithms register the fields they expose through their
``configure_iteration_logger`` method. The logger only reads from them.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Final

from .errors import PreconditionError, require_positive

if TYPE_CHECKING:
    from collections.abc import Callable, Mapping

_LOGGER = logging.getLogger(__name__)

_DUPLICATE_FIELD_ERROR_MSG: Final[str] = "Iteration field {name!r} is already registered."


@dataclass(frozen=True, slots=True)
class IterationField:
    """Named numeric value read from an algorithm.

    Attributes:
        name: Field label.
        getter: Callable reading the value from the algorithm.
    """

    name: str
    getter: Callable[[Any], float | int]


class IterationLogger:
    """Write-only sink for per-iteration diagnostics.

    One logger may be shared by several drivers. Drivers register their fields
    with ``exist_ok=True`` and read them from the driver passed to
    ``write_iteration``; fields of inner solvers keep reading from the solver
    that registered them first.

    Args:
        period: Emit a log record every ``period`` iterations.
        sink: Optional callable receiving the field values of every iteration.
        logger: Logger used for records; defaults to this module's logger.
    """

    def __init__(
        self,
        *,
        period: int = 1,
        sink: Callable[[Mapping[str, float | int]], None] | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        self._period = int(require_positive("period", period))
        self._sink = sink
        self._logger = logger if logger is not None else _LOGGER
        self._fields: list[IterationField] = []
        self._iterations = 0

    @property
    def field_names(self) -> tuple[str, ...]:
        """Names of the registered fields, in registration order."""
        return tuple(f.name for f in self._fields)

    @property
    def iterations(self) -> int:
        """Number of iterations written since the last reset."""
        return self._iterations

    def append(
        self,
        name: str,
        getter: Callable[[Any], float | int],
        *,
        exist_ok: bool = False,
    ) -> None:
        """Register a field.

        Args:
            name: Field label.
            getter: Callable reading the value from the algorithm passed to
                ``write_iteration``.
            exist_ok: Keep the registered field instead of raising when the
                name is taken.

        Raises:
            PreconditionError: If the name is already registered and
                ``exist_ok`` is false.
        """
        if name in self.field_names:
            if exist_ok:
                return
            raise PreconditionError(_DUPLICATE_FIELD_ERROR_MSG.format(name=name))
        self._fields.append(IterationField(name=name, getter=getter))

    def reset(self) -> None:
        """Reset the iteration counter."""
        self._iterations = 0

    def values(self, algorithm: Any) -> dict[str, float | int]:
        """Read every registered field from an algorithm."""
        return {f.name: f.getter(algorithm) for f in self._fields}

    def write_iteration(self, algorithm: Any) -> None:
        """Record one iteration of an algorithm."""
        values = self.values(algorithm)
        if self._iterations % self._period == 0:
            self._logger.debug("iteration %d: %s", self._iterations, _format(values))
        self._iterations += 1
        if self._sink is not None:
            self._sink(values)

    def write_summary(self, algorithm: Any) -> None:
        """Record the final state of an algorithm."""
        self._logger.info(
            "finished after %d iterations: %s",
            self._iterations,
            _format(self.values(algorithm)),
        )


def _format(values: Mapping[str, float | int]) -> str:
    return ", ".join(f"{name}={value:.6g}" for name, value in values.items())
