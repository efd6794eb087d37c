"""LoadRace — scripted HTTP load and race-condition testing."""

from __future__ import annotations

from loadrace.dsl.checks import (
    check,
    json_equals,
    json_has,
    latency_below,
    status_between,
    status_is,
)
from loadrace.dsl.http_client import HttpClient, HttpResult, RequestMetric
from loadrace.dsl.scenario import Extract, ScenarioDefinition, Step, fresh_uuid
from loadrace.engine.runner import LoadTestRunner
from loadrace.metrics.thresholds import (
    CheckCount,
    MaxErrorRate,
    MinCheckPassRate,
    Threshold,
    single_winner,
)
from loadrace.patterns.base import LoadPattern
from loadrace.patterns.constant import ConstantPattern
from loadrace.patterns.stages import LoadStage, StagedPattern

__version__ = "0.1.0"

__all__ = [
    "CheckCount",
    "ConstantPattern",
    "Extract",
    "HttpClient",
    "HttpResult",
    "LoadPattern",
    "LoadStage",
    "LoadTestRunner",
    "MaxErrorRate",
    "MinCheckPassRate",
    "RequestMetric",
    "ScenarioDefinition",
    "StagedPattern",
    "Step",
    "Threshold",
    "check",
    "fresh_uuid",
    "json_equals",
    "json_has",
    "latency_below",
    "single_winner",
    "status_between",
    "status_is",
]
