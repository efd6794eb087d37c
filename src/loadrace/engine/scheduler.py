"""Turns a load shape into the timed resize commands a ramp session follows."""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Iterator

    from loadrace.patterns.base import LoadPattern


@dataclass(frozen=True)
class ScaleCommand:
    """Resize the user pool at a given offset into the run.

    Attributes:
        elapsed_seconds: Offset from run start at which the command applies.
        target_users: Users that should be active from then on.
        previous_users: Target of the preceding command (0 for the first).
        final: True for the last command of the schedule.
    """

    elapsed_seconds: float
    target_users: int
    previous_users: int = 0
    final: bool = False

    @property
    def spawn(self) -> int:
        """Users to start."""
        return max(self.target_users - self.previous_users, 0)

    @property
    def retire(self) -> int:
        """Users to retire, newest first."""
        return max(self.previous_users - self.target_users, 0)


class Scheduler:
    """Walks a :class:`LoadPattern` tick by tick.

    One command is produced per tick, including ticks where the target does
    not change, so the session can flush a metric snapshot on each of them.

    Args:
        pattern: The load shape to follow.
        duration_seconds: Horizon in seconds. Defaults to the pattern's own
            total duration.
        tick_interval: Seconds between regular ticks.
    """

    def __init__(
        self,
        pattern: LoadPattern,
        duration_seconds: float | None = None,
        tick_interval: float = 1.0,
    ) -> None:
        self._pattern = pattern
        self._duration_seconds = duration_seconds
        self._tick_interval = tick_interval

    @property
    def duration_seconds(self) -> float | None:
        """Effective horizon of the schedule."""
        if self._duration_seconds is not None:
            return self._duration_seconds
        return self._pattern.total_duration

    def iter_commands(self) -> Iterator[ScaleCommand]:
        """Yield one :class:`ScaleCommand` per tick, the last one marked final."""
        ticks = self._pattern.iter_concurrency(self._duration_seconds, self._tick_interval)
        pending: tuple[float, int] | None = None
        previous = 0
        for tick in ticks:
            if pending is not None:
                yield ScaleCommand(pending[0], pending[1], previous)
                previous = pending[1]
            pending = tick
        if pending is not None:
            yield ScaleCommand(pending[0], pending[1], previous, final=True)
