"""Top-level load test orchestrator."""

from __future__ import annotations

import asyncio
import sys
from dataclasses import replace
from pathlib import Path
from typing import TYPE_CHECKING

from loadrace._internal.config import load_config
from loadrace._internal.logging import get_logger, setup_logging
from loadrace.dsl.loader import load_scenario
from loadrace.engine.session import create_session
from loadrace.patterns.stages import parse_duration

if TYPE_CHECKING:
    from collections.abc import Callable, Sequence

    from loadrace._internal.config import LoadRaceConfig
    from loadrace.dsl.scenario import ScenarioDefinition
    from loadrace.metrics.models import MetricSnapshot, RunResult
    from loadrace.metrics.thresholds import Threshold
    from loadrace.patterns.stages import LoadStage

logger = get_logger("engine.runner")


def _loop_factory() -> Callable[[], asyncio.AbstractEventLoop] | None:
    """Return uvloop's loop factory if available.

    Falls back silently to the default asyncio event loop on Windows
    or if uvloop is not installed.
    """
    if sys.platform == "win32":
        return None

    try:
        import uvloop
    except ImportError:
        logger.debug("uvloop not available, using default asyncio event loop")
        return None
    logger.debug("Using uvloop event loop")
    return uvloop.new_event_loop


class LoadTestRunner:
    """Loads, validates and runs one scenario to completion.

    Everything that can be wrong with the scenario or the configuration
    is detected in the constructor, so a :class:`ConfigError` always means
    no virtual user was started.

    Args:
        scenario: A scenario object, or a path to a scenario file.
        scenario_name: Scenario to pick when the file defines several.
        stages: Override the load shape with a ramp profile.
        vus: Override the virtual user count.
        iterations: Override the fixed-mode iteration total.
        duration: Override the constant-mode duration.
        timeout: Override the global deadline.
        base_url: Override the scenario's base URL.
        thresholds: Thresholds evaluated in addition to the scenario's.
        config: Global configuration. Defaults to the environment.
        on_snapshot: Called with every tick snapshot.
        log_level: Logging level.
        json_logs: Emit logs as JSON lines.

    Raises:
        ConfigError: If the scenario cannot be loaded, fails validation or
            the environment holds invalid values.
    """

    def __init__(
        self,
        scenario: ScenarioDefinition | str | Path,
        *,
        scenario_name: str | None = None,
        stages: list[LoadStage] | None = None,
        vus: int | None = None,
        iterations: int | None = None,
        duration: float | str | None = None,
        timeout: float | str | None = None,
        base_url: str | None = None,
        thresholds: Sequence[Threshold] = (),
        config: LoadRaceConfig | None = None,
        on_snapshot: Callable[[MetricSnapshot], None] | None = None,
        log_level: int = 20,
        json_logs: bool = False,
    ) -> None:
        self._config = config or load_config()

        if isinstance(scenario, str | Path):
            scenario = load_scenario(Path(scenario).resolve(), name=scenario_name)

        scenario = scenario.with_load(
            stages=stages, vus=vus, iterations=iterations, duration=duration
        )
        if timeout is not None:
            scenario = replace(scenario, timeout=parse_duration(timeout))
        if base_url:
            scenario = replace(scenario, base_url=base_url)
        scenario.validate()

        self.scenario = scenario
        self._thresholds = list(thresholds)
        self.on_snapshot = on_snapshot
        self._log_level = log_level
        self._json_logs = json_logs

    def describe(self) -> str:
        """Human-readable description of the load shape."""
        return self.scenario.describe_load()

    def run(self) -> RunResult:
        """Execute the run and return its result.

        Blocks until the load shape is exhausted, the global deadline
        passes, or a SIGINT/SIGTERM requests a graceful stop.

        Raises:
            EngineError: If the session fails outside any one virtual user.
        """
        setup_logging(level=self._log_level, json_format=self._json_logs)
        logger.info(
            "Starting load test: scenario=%s, mode=%s, load=%s",
            self.scenario.name,
            self.scenario.mode,
            self.describe(),
        )

        with asyncio.Runner(loop_factory=_loop_factory()) as runner:
            result = runner.run(self._run_session())

        logger.info(
            "Load test completed: duration=%.1fs, requests=%d, rps=%.1f, "
            "p95=%.1fms, thresholds=%s",
            result.duration_seconds,
            result.report.total_requests,
            result.report.requests_per_second,
            result.report.latency_p95,
            "passed" if result.passed else "FAILED",
        )
        return result

    async def _run_session(self) -> RunResult:
        session = create_session(
            self.scenario,
            config=self._config,
            thresholds=self._thresholds,
            on_snapshot=self.on_snapshot,
        )
        return await session.run()
