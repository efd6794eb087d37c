"""Pass/fail thresholds evaluated against a finished run's report.

A run "fails" when any threshold fails; the CLI turns that into a non-zero
exit status. Thresholds never stop a run early.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import TYPE_CHECKING

from loadrace._internal.errors import ConfigError

if TYPE_CHECKING:
    from collections.abc import Sequence

    from loadrace.metrics.models import RunReport


@dataclass(frozen=True)
class ThresholdResult:
    """Verdict for a single threshold.

    Attributes:
        name: Human-readable threshold description.
        passed: Whether the report satisfied the threshold.
        observed: Observed value, formatted for display.
    """

    name: str
    passed: bool
    observed: str


class Threshold(ABC):
    """A condition a finished run must satisfy."""

    @abstractmethod
    def evaluate(self, report: RunReport) -> ThresholdResult:
        """Evaluate this threshold against *report*."""


def _validate_rate(value: float, name: str) -> None:
    if not 0.0 <= value <= 1.0:
        msg = f"{name} must be between 0.0 and 1.0, got {value}"
        raise ConfigError(msg)


class MaxErrorRate(Threshold):
    """Fail when the request error rate exceeds *max_rate*.

    Errors are transport failures plus HTTP statuses >= 400.
    """

    def __init__(self, max_rate: float) -> None:
        _validate_rate(max_rate, "max_rate")
        self.max_rate = max_rate

    def evaluate(self, report: RunReport) -> ThresholdResult:
        return ThresholdResult(
            name=f"error rate <= {self.max_rate * 100:.2f}%",
            passed=report.error_rate <= self.max_rate,
            observed=f"{report.error_rate * 100:.2f}%",
        )


class MinCheckPassRate(Threshold):
    """Fail when checks pass less often than *min_rate*.

    With *label* set only that check is considered; a label that was never
    evaluated fails the threshold.
    """

    def __init__(self, min_rate: float, label: str | None = None) -> None:
        _validate_rate(min_rate, "min_rate")
        self.min_rate = min_rate
        self.label = label

    def evaluate(self, report: RunReport) -> ThresholdResult:
        if self.label is None:
            rate = report.check_pass_rate
            name = f"check pass rate >= {self.min_rate * 100:.2f}%"
            return ThresholdResult(
                name=name,
                passed=rate >= self.min_rate,
                observed=f"{rate * 100:.2f}%",
            )

        name = f"{self.label!r} pass rate >= {self.min_rate * 100:.2f}%"
        summary = report.checks.get(self.label)
        if summary is None or summary.total == 0:
            return ThresholdResult(name=name, passed=False, observed="never evaluated")
        return ThresholdResult(
            name=name,
            passed=summary.pass_rate >= self.min_rate,
            observed=f"{summary.pass_rate * 100:.2f}%",
        )


class CheckCount(Threshold):
    """Bound how many times a labelled check passed.

    Used to state race expectations, e.g. at most one successful order for a
    single unit of stock, and zero server errors. A label that was never
    evaluated counts as zero passes.
    """

    def __init__(
        self,
        label: str,
        *,
        min_passes: int | None = None,
        max_passes: int | None = None,
    ) -> None:
        if min_passes is None and max_passes is None:
            msg = "CheckCount needs min_passes, max_passes or both"
            raise ConfigError(msg)
        if min_passes is not None and max_passes is not None and min_passes > max_passes:
            msg = f"min_passes ({min_passes}) exceeds max_passes ({max_passes})"
            raise ConfigError(msg)
        self.label = label
        self.min_passes = min_passes
        self.max_passes = max_passes

    def evaluate(self, report: RunReport) -> ThresholdResult:
        summary = report.checks.get(self.label)
        passes = summary.passes if summary is not None else 0
        ok = (self.min_passes is None or passes >= self.min_passes) and (
            self.max_passes is None or passes <= self.max_passes
        )
        if self.min_passes == self.max_passes:
            bound = f"== {self.min_passes}"
        elif self.min_passes is None:
            bound = f"<= {self.max_passes}"
        elif self.max_passes is None:
            bound = f">= {self.min_passes}"
        else:
            bound = f"in [{self.min_passes}, {self.max_passes}]"
        return ThresholdResult(name=f"{self.label!r} passes {bound}", passed=ok, observed=str(passes))


def single_winner(
    success_label: str,
    *,
    conflict_label: str | None = None,
    error_label: str | None = None,
    contenders: int | None = None,
) -> list[Threshold]:
    """Thresholds for "exactly one contender wins the last unit".

    Args:
        success_label: Check label that passes for a winning request.
        conflict_label: Check label that passes for a clean rejection.
            With *contenders* it must pass exactly ``contenders - 1`` times.
        error_label: Check label that passes for a server error; must
            never pass.
        contenders: Number of users racing for the unit.

    Returns:
        The thresholds, ready to add to a scenario.
    """
    thresholds: list[Threshold] = [CheckCount(success_label, min_passes=1, max_passes=1)]
    if conflict_label is not None and contenders is not None:
        if contenders < 1:
            msg = f"contenders must be >= 1, got {contenders}"
            raise ConfigError(msg)
        losers = contenders - 1
        thresholds.append(CheckCount(conflict_label, min_passes=losers, max_passes=losers))
    if error_label is not None:
        thresholds.append(CheckCount(error_label, max_passes=0))
    return thresholds


def evaluate_thresholds(
    report: RunReport,
    thresholds: Sequence[Threshold],
) -> list[ThresholdResult]:
    """Evaluate every threshold against *report*, in order."""
    return [threshold.evaluate(report) for threshold in thresholds]
