"""Constant load shape: a fixed number of looping virtual users."""

from __future__ import annotations

from typing import TYPE_CHECKING

from loadrace._internal.errors import ConfigError
from loadrace.patterns.base import LoadPattern, _validate_positive

if TYPE_CHECKING:
    from collections.abc import Iterator


class ConstantPattern(LoadPattern):
    """Hold a fixed number of virtual users for the whole run.

    Args:
        users: Number of concurrent virtual users. Must be >= 1.
        duration: Optional natural length in seconds.

    Raises:
        ConfigError: If *users* < 1 or *duration* is not positive.
    """

    def __init__(self, users: int, duration: float | None = None) -> None:
        if users < 1:
            msg = f"users must be >= 1, got {users}"
            raise ConfigError(msg)
        if duration is not None:
            _validate_positive(duration, "duration")
        self._users = users
        self._duration = duration

    @property
    def total_duration(self) -> float | None:
        return self._duration

    @property
    def peak_users(self) -> int:
        return self._users

    def iter_concurrency(
        self,
        duration_seconds: float | None = None,
        tick_interval: float = 1.0,
    ) -> Iterator[tuple[float, int]]:
        """Yield ``(elapsed, users)`` at every tick.

        Raises:
            ConfigError: If no duration is known or an argument is not
                positive.
        """
        horizon = self._duration if duration_seconds is None else duration_seconds
        if horizon is None:
            msg = "duration_seconds is required for a ConstantPattern without a duration"
            raise ConfigError(msg)
        _validate_positive(horizon, "duration_seconds")
        _validate_positive(tick_interval, "tick_interval")
        step = 0
        elapsed = 0.0
        while step * tick_interval <= horizon + 1e-9:
            elapsed = step * tick_interval
            yield (elapsed, self._users)
            step += 1
        if elapsed < horizon - 1e-9:
            yield (horizon, self._users)

    def describe(self) -> str:
        if self._duration is None:
            return f"Constant: {self._users} users"
        return f"Constant: {self._users} users for {self._duration:g}s"
