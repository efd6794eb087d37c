"""Staged ramp profile: a sequence of ``(duration, target)`` stages."""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import TYPE_CHECKING

from loadrace._internal.errors import ConfigError
from loadrace.patterns.base import LoadPattern, _validate_non_negative, _validate_positive

if TYPE_CHECKING:
    from collections.abc import Iterator, Sequence

_DURATION_RE = re.compile(r"(\d+(?:\.\d+)?)(ms|h|m|s)")
_UNIT_SECONDS = {"ms": 0.001, "s": 1.0, "m": 60.0, "h": 3600.0}

# Float slack when deciding whether a tick landed on a stage boundary.
_EPSILON = 1e-9


def parse_duration(value: float | int | str) -> float:
    """Convert a duration to seconds.

    Numbers are taken as seconds. Strings use k6-style unit suffixes and may
    combine them: ``"30s"``, ``"1m"``, ``"1m30s"``, ``"250ms"``, ``"1h"``.

    Raises:
        ConfigError: If the string is not a valid duration or the value is
            negative.
    """
    if isinstance(value, bool):
        msg = f"Invalid duration: {value!r}"
        raise ConfigError(msg)
    if isinstance(value, int | float):
        seconds = float(value)
    else:
        text = value.strip()
        if text and text.replace(".", "", 1).isdigit():
            seconds = float(text)
        else:
            pos = 0
            seconds = 0.0
            for match in _DURATION_RE.finditer(text):
                if match.start() != pos:
                    break
                seconds += float(match.group(1)) * _UNIT_SECONDS[match.group(2)]
                pos = match.end()
            if not text or pos != len(text):
                msg = f"Invalid duration: {value!r}"
                raise ConfigError(msg)
    _validate_non_negative(seconds, "duration")
    return seconds


@dataclass(frozen=True)
class LoadStage:
    """One stage of a ramp profile.

    Attributes:
        duration: Stage length in seconds (strings such as ``"30s"`` are
            accepted and converted).
        target: Concurrency reached at the end of the stage.
    """

    duration: float
    target: int

    def __post_init__(self) -> None:
        object.__setattr__(self, "duration", parse_duration(self.duration))
        if isinstance(self.target, bool) or not isinstance(self.target, int):
            msg = f"stage target must be an integer, got {self.target!r}"
            raise ConfigError(msg)
        _validate_non_negative(self.target, "target")


class StagedPattern(LoadPattern):
    """Ramp through an ordered sequence of :class:`LoadStage` objects.

    Within stage *i* concurrency moves linearly from the previous stage's
    target (``start_users`` for the first stage) to this stage's target::

        round(c0 + (c1 - c0) * elapsed_in_stage / stage_duration)

    Ticks are emitted every *tick_interval* seconds and additionally at each
    stage boundary, so the value yielded at a stage's end is exactly that
    stage's target. A zero-duration stage jumps to its target at once.

    Args:
        stages: Ordered stages. Must be non-empty with a positive total
            duration.
        start_users: Concurrency before the first stage.

    Raises:
        ConfigError: If the profile is empty, has zero total duration or
            contains negative values.

    Example::

        pattern = StagedPattern(
            [LoadStage("30s", 50), LoadStage("1m", 200), LoadStage("30s", 0)]
        )
        assert pattern.total_duration == 120.0
    """

    def __init__(self, stages: Sequence[LoadStage], start_users: int = 0) -> None:
        if not stages:
            msg = "stages must contain at least one stage"
            raise ConfigError(msg)
        _validate_non_negative(start_users, "start_users")
        self._stages = tuple(stages)
        self._start_users = start_users
        _validate_positive(self.total_duration, "total stage duration")

    @property
    def stages(self) -> tuple[LoadStage, ...]:
        """The configured stages."""
        return self._stages

    @property
    def total_duration(self) -> float:
        """Sum of all stage durations, in seconds."""
        return sum(stage.duration for stage in self._stages)

    @property
    def peak_users(self) -> int:
        """Highest concurrency the profile ever asks for."""
        return max(self._start_users, *(stage.target for stage in self._stages))

    def users_at(self, elapsed: float) -> int:
        """Return the desired concurrency at *elapsed* seconds.

        Past the last stage the final target holds.
        """
        offset = 0.0
        previous = self._start_users
        for stage in self._stages:
            end = offset + stage.duration
            if elapsed < end - _EPSILON:
                fraction = (elapsed - offset) / stage.duration
                return max(round(previous + (stage.target - previous) * fraction), 0)
            offset = end
            previous = stage.target
        return previous

    def iter_concurrency(
        self,
        duration_seconds: float | None = None,
        tick_interval: float = 1.0,
    ) -> Iterator[tuple[float, int]]:
        """Yield ``(elapsed, target_concurrency)`` across all stages.

        Args:
            duration_seconds: Optional cut-off. Defaults to the total stage
                duration; a shorter value truncates the profile.
            tick_interval: Seconds between regular ticks.

        Yields:
            ``(elapsed_seconds, target_concurrency)`` tuples in time order,
            including one tick at every stage boundary.
        """
        _validate_positive(tick_interval, "tick_interval")
        horizon = self.total_duration if duration_seconds is None else duration_seconds
        _validate_positive(horizon, "duration_seconds")

        boundaries: list[float] = []
        offset = 0.0
        for stage in self._stages:
            offset += stage.duration
            boundaries.append(offset)

        times: set[float] = set()
        step = 0
        while step * tick_interval <= horizon + _EPSILON:
            times.add(round(step * tick_interval, 9))
            step += 1
        times.update(round(b, 9) for b in boundaries if b <= horizon + _EPSILON)

        for elapsed in sorted(times):
            yield (elapsed, self.users_at(elapsed))

    def describe(self) -> str:
        """Return a human-readable description.

        Returns:
            Description listing every stage.
        """
        parts = [f"{stage.duration:g}s->{stage.target}" for stage in self._stages]
        return f"Stages: {', '.join(parts)} ({self.total_duration:g}s total)"
