"""Load shapes for LoadRace.

A load shape defines how many virtual users should be active over time.
All shapes implement :class:`LoadPattern` and yield
``(elapsed_seconds, target_concurrency)`` tuples via :meth:`iter_concurrency`.
"""

from __future__ import annotations

from loadrace.patterns.base import LoadPattern
from loadrace.patterns.constant import ConstantPattern
from loadrace.patterns.stages import LoadStage, StagedPattern, parse_duration

__all__ = [
    "ConstantPattern",
    "LoadPattern",
    "LoadStage",
    "StagedPattern",
    "parse_duration",
]
