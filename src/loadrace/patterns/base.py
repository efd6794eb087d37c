"""Abstract base class for load shapes."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import TYPE_CHECKING

from loadrace._internal.errors import ConfigError

if TYPE_CHECKING:
    from collections.abc import Iterator


class LoadPattern(ABC):
    """Abstract base for all load shapes.

    A load shape defines how the desired number of concurrently active
    virtual users changes over wall-clock time. Concrete subclasses
    implement :meth:`iter_concurrency` to yield
    ``(elapsed_seconds, target_concurrency)`` tuples, which the scheduler
    turns into scale commands.

    Example::

        pattern = StagedPattern([LoadStage("10s", 20), LoadStage("10s", 0)])
        for elapsed, users in pattern.iter_concurrency():
            print(f"t={elapsed:.1f}s -> {users} users")
    """

    @property
    @abstractmethod
    def total_duration(self) -> float | None:
        """Natural length of the shape in seconds, or None if unbounded."""

    @property
    @abstractmethod
    def peak_users(self) -> int:
        """Highest concurrency the shape ever asks for."""

    @abstractmethod
    def iter_concurrency(
        self,
        duration_seconds: float | None = None,
        tick_interval: float = 1.0,
    ) -> Iterator[tuple[float, int]]:
        """Yield ``(elapsed_seconds, target_concurrency)`` at each tick.

        Args:
            duration_seconds: Duration to generate ticks for. Shapes with a
                natural length use it when this is None.
            tick_interval: Seconds between regular ticks.

        Yields:
            Time-ordered ``(elapsed_seconds, target_concurrency)`` tuples.
        """

    @abstractmethod
    def describe(self) -> str:
        """Return a short human-readable description for logs and reports."""


def _validate_positive(value: float, name: str) -> None:
    """Raise :class:`ConfigError` if *value* is not strictly positive."""
    if value <= 0:
        msg = f"{name} must be positive, got {value}"
        raise ConfigError(msg)


def _validate_non_negative(value: float, name: str) -> None:
    """Raise :class:`ConfigError` if *value* is negative."""
    if value < 0:
        msg = f"{name} must be non-negative, got {value}"
        raise ConfigError(msg)
