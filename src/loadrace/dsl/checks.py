"""Non-fatal response checks.

A check is a labelled predicate over an :class:`HttpResult`. Evaluating a
set of checks records every label's outcome independently and never raises,
so several labels can be true for the same response (e.g. a labelled
"conflict" outcome and a labelled "any 4xx" outcome) and be counted apart.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Protocol

from loadrace._internal.errors import ExtractionError
from loadrace._internal.logging import get_logger
from loadrace.dsl.extract import lookup_path

if TYPE_CHECKING:
    from collections.abc import Callable, Mapping

    from loadrace.dsl.http_client import HttpResult

    Predicate = Callable[[HttpResult], bool]

logger = get_logger("dsl.checks")


class CheckRecorder(Protocol):
    """Anything that accepts labelled check outcomes."""

    def record_check(self, label: str, passed: bool) -> None:
        """Record one outcome for *label*."""
        ...


def evaluate(result: HttpResult, checks: Mapping[str, Predicate]) -> dict[str, bool]:
    """Evaluate every predicate against *result*.

    A predicate that raises is treated as failed.

    Returns:
        Outcome per label, in declaration order.
    """
    outcomes: dict[str, bool] = {}
    for label, predicate in checks.items():
        try:
            outcomes[label] = bool(predicate(result))
        except Exception:
            logger.debug("Check %r raised; counted as failed", label, exc_info=True)
            outcomes[label] = False
    return outcomes


def check(
    result: HttpResult,
    checks: Mapping[str, Predicate],
    recorder: CheckRecorder | None = None,
) -> bool:
    """Evaluate *checks* against *result* and record each outcome.

    Args:
        result: The response to check.
        checks: Mapping of label to predicate.
        recorder: Optional sink for per-label outcomes, usually the run
            aggregator.

    Returns:
        True if every check passed (vacuously True for no checks).
    """
    outcomes = evaluate(result, checks)
    if recorder is not None:
        for label, passed in outcomes.items():
            recorder.record_check(label, passed)
    return all(outcomes.values())


# ---------------------------------------------------------------------------
# Predicate helpers
# ---------------------------------------------------------------------------


def status_is(*codes: int) -> Predicate:
    """Pass when the status is one of *codes*."""
    accepted = frozenset(codes)

    def _predicate(result: HttpResult) -> bool:
        return result.status in accepted

    return _predicate


def status_between(low: int, high: int) -> Predicate:
    """Pass when ``low <= status <= high``."""

    def _predicate(result: HttpResult) -> bool:
        return low <= result.status <= high

    return _predicate


def json_has(path: str) -> Predicate:
    """Pass when the JSON body has a non-null value at *path*."""

    def _predicate(result: HttpResult) -> bool:
        try:
            lookup_path(result.json(), path)
        except (ValueError, ExtractionError):
            return False
        return True

    return _predicate


def json_equals(path: str, expected: Any) -> Predicate:
    """Pass when the JSON value at *path* equals *expected*."""

    def _predicate(result: HttpResult) -> bool:
        try:
            return bool(lookup_path(result.json(), path) == expected)
        except (ValueError, ExtractionError):
            return False

    return _predicate


def latency_below(limit_ms: float) -> Predicate:
    """Pass when the request completed in under *limit_ms*."""

    def _predicate(result: HttpResult) -> bool:
        return not result.transport_error and result.latency_ms < limit_ms

    return _predicate
