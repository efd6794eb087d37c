"""Run lifecycle: user pools, ticks, deadlines and signal handling."""

from __future__ import annotations

import asyncio
import contextlib
import signal
import sys
import time
from abc import ABC, abstractmethod
from enum import Enum, auto
from typing import TYPE_CHECKING

import aiohttp

from loadrace._internal.config import LoadRaceConfig
from loadrace._internal.errors import ConfigError, EngineError
from loadrace._internal.logging import get_logger
from loadrace.engine._user_utils import drain_users
from loadrace.engine.scheduler import Scheduler
from loadrace.engine.script import ScriptEngine
from loadrace.engine.user import VirtualUser
from loadrace.metrics.aggregator import RunAggregator
from loadrace.metrics.models import RunResult
from loadrace.metrics.thresholds import evaluate_thresholds

if TYPE_CHECKING:
    from collections.abc import Callable, Sequence

    from loadrace.dsl.scenario import ScenarioDefinition
    from loadrace.metrics.models import MetricSnapshot
    from loadrace.metrics.thresholds import Threshold
    from loadrace.patterns.base import LoadPattern

logger = get_logger("engine.session")

# Extra seconds granted on top of the request timeout while draining.
_DRAIN_GRACE = 5.0


class SessionState(Enum):
    """State machine for a load session."""

    CREATED = auto()
    STARTING = auto()
    RUNNING = auto()
    STOPPING = auto()
    COMPLETED = auto()
    FAILED = auto()


class LoadSession(ABC):
    """Common lifecycle of a single-process run.

    Owns the aggregator, the shared TCP connector, the virtual users and
    the stop event. Subclasses only decide how many users run and when
    the run is over.

    State machine: CREATED -> STARTING -> RUNNING -> STOPPING -> COMPLETED
                                                  -> FAILED (on error)

    Stopping, whether from the global deadline, a signal or :meth:`stop`,
    is graceful: no new iteration or step starts, in-flight requests
    complete or hit their own timeout, then the users exit.

    Args:
        scenario: The scenario to run. Validated on construction.
        config: Global configuration. Defaults to ``LoadRaceConfig()``.
        thresholds: Thresholds evaluated in addition to the scenario's.
        on_snapshot: Called with every tick snapshot.
        handle_signals: Install SIGINT/SIGTERM handlers for the run.

    Raises:
        ConfigError: If the scenario or the base URL is invalid.
    """

    mode = ""

    def __init__(
        self,
        scenario: ScenarioDefinition,
        *,
        config: LoadRaceConfig | None = None,
        thresholds: Sequence[Threshold] = (),
        on_snapshot: Callable[[MetricSnapshot], None] | None = None,
        handle_signals: bool = True,
    ) -> None:
        scenario.validate()
        self._scenario = scenario
        self._config = config or LoadRaceConfig()
        self._thresholds = [*scenario.thresholds, *thresholds]
        self._on_snapshot = on_snapshot
        self._handle_signals = handle_signals

        self._base_url = scenario.base_url or self._config.default_base_url
        relative = [s.name for s in scenario.steps if not s.path.startswith(("http://", "https://"))]
        if not self._base_url and relative:
            msg = (
                f"Scenario {scenario.name!r} has no base_url and LOADRACE_BASE_URL is unset; "
                f"steps with relative paths: {relative}"
            )
            raise ConfigError(msg)

        self._state = SessionState.CREATED
        self._aggregator = RunAggregator()
        self._stop_event = asyncio.Event()
        self._users: list[VirtualUser] = []
        self._next_user_id = 1
        self._snapshots: list[MetricSnapshot] = []
        self._start_time = 0.0
        self._deadline: float | None = None
        self._timed_out = False
        self._connector: aiohttp.TCPConnector | None = None
        self._engine: ScriptEngine | None = None

    @property
    def state(self) -> SessionState:
        """Return the current session state."""
        return self._state

    @property
    def aggregator(self) -> RunAggregator:
        return self._aggregator

    @property
    def active_user_count(self) -> int:
        """Users that are running and not draining."""
        return sum(
            1
            for user in self._users
            if not user.retiring and user.task is not None and not user.task.done()
        )

    @property
    def spawned_user_count(self) -> int:
        """Users started so far, including ones that already exited."""
        return self._next_user_id - 1

    @abstractmethod
    def describe(self) -> str:
        """Human-readable description of the load shape."""

    @abstractmethod
    def _timeout(self) -> float | None:
        """Global deadline in seconds from start, or None."""

    @abstractmethod
    async def _drive(self) -> None:
        """Run users until the load shape is exhausted or the run stops."""

    async def run(self) -> RunResult:
        """Execute the full session lifecycle.

        Returns:
            RunResult with the final report, tick snapshots and threshold
            verdicts.

        Raises:
            EngineError: If the session fails for reasons outside any one
                virtual user.
        """
        self._state = SessionState.STARTING
        logger.info(
            "Starting session: scenario=%s, mode=%s, load=%s",
            self._scenario.name,
            self.mode,
            self.describe(),
        )

        if self._handle_signals:
            self._install_signal_handlers()

        self._connector = aiohttp.TCPConnector(limit=self._config.connection_pool_size)
        self._engine = ScriptEngine(
            self._scenario,
            self._aggregator,
            session_header=self._config.session_header,
            stop_event=self._stop_event,
        )

        self._start_time = time.monotonic()
        timeout = self._timeout()
        self._deadline = self._start_time + timeout if timeout is not None else None
        self._state = SessionState.RUNNING

        try:
            await self._drive()
        except Exception as exc:
            self._state = SessionState.FAILED
            logger.exception("Session failed")
            raise EngineError("Session failed") from exc
        finally:
            if self._state != SessionState.FAILED:
                self._state = SessionState.STOPPING
            self._stop_event.set()
            await drain_users(self._users, self._config.request_timeout + _DRAIN_GRACE)
            if self._handle_signals:
                self._remove_signal_handlers()
            await self._connector.close()

        end_time = time.monotonic()
        duration = end_time - self._start_time

        # Captures requests finished while draining.
        self._flush(target=0)

        report = self._aggregator.finalize(duration)
        verdicts = evaluate_thresholds(report, self._thresholds)

        self._state = SessionState.COMPLETED
        logger.info(
            "Session completed: duration=%.1fs, requests=%d, iterations=%d, "
            "aborted=%d, error_rate=%.2f%%, checks_failed=%d",
            duration,
            report.total_requests,
            report.iterations,
            report.iterations_aborted,
            report.error_rate * 100,
            report.checks_failed,
        )

        return RunResult(
            scenario_name=self._scenario.name,
            mode=self.mode,
            start_time=self._start_time,
            end_time=end_time,
            duration_seconds=duration,
            load_description=self.describe(),
            report=report,
            snapshots=list(self._snapshots),
            thresholds=verdicts,
            timed_out=self._timed_out,
        )

    def stop(self) -> None:
        """Request graceful shutdown of the session."""
        if self._state == SessionState.RUNNING:
            logger.info("Graceful shutdown requested")
            self._state = SessionState.STOPPING
            self._stop_event.set()

    def _spawn(self, iteration_budget: int | None = None) -> VirtualUser:
        user = VirtualUser(
            user_id=self._next_user_id,
            scenario=self._scenario,
            engine=self._engine,  # type: ignore[arg-type]
            aggregator=self._aggregator,
            base_url=self._base_url,
            request_timeout=self._config.request_timeout,
            connector=self._connector,
            iteration_budget=iteration_budget,
            stop_event=self._stop_event,
        )
        self._next_user_id += 1
        user.start()
        self._users.append(user)
        return user

    def _flush(self, target: int) -> MetricSnapshot:
        elapsed = time.monotonic() - self._start_time
        snapshot = self._aggregator.flush_tick(
            elapsed_seconds=elapsed,
            active_users=self.active_user_count,
            target_users=target,
        )
        self._snapshots.append(snapshot)
        logger.debug(
            "Tick %.1fs: users=%d/%d, rps=%.1f, p95=%.1fms, errors=%d",
            elapsed,
            snapshot.active_users,
            snapshot.target_users,
            snapshot.requests_per_second,
            snapshot.latency_p95,
            snapshot.total_errors,
        )
        if self._on_snapshot is not None:
            self._on_snapshot(snapshot)
        return snapshot

    def _deadline_passed(self) -> bool:
        if self._deadline is None or time.monotonic() < self._deadline:
            return False
        if not self._timed_out:
            self._timed_out = True
            logger.warning(
                "Global timeout of %.1fs reached; no new iterations will start",
                self._deadline - self._start_time,
            )
            self._stop_event.set()
        return True

    async def _sleep_until(self, when: float) -> bool:
        """Sleep until monotonic time *when*.

        Returns:
            False if the run stopped or hit its deadline first.
        """
        if self._deadline is not None:
            when = min(when, self._deadline)
        delay = when - time.monotonic()
        if delay > 0:
            with contextlib.suppress(TimeoutError):
                await asyncio.wait_for(self._stop_event.wait(), timeout=delay)
        if self._stop_event.is_set():
            return False
        return not self._deadline_passed()

    def _install_signal_handlers(self) -> None:
        """Install SIGINT and SIGTERM handlers for graceful shutdown."""
        loop = asyncio.get_running_loop()

        def _signal_handler() -> None:
            logger.info("Signal received, initiating graceful shutdown")
            self.stop()

        if sys.platform != "win32":
            loop.add_signal_handler(signal.SIGINT, _signal_handler)
            loop.add_signal_handler(signal.SIGTERM, _signal_handler)
        else:
            signal.signal(signal.SIGINT, lambda _s, _f: _signal_handler())
            signal.signal(signal.SIGTERM, lambda _s, _f: _signal_handler())

    def _remove_signal_handlers(self) -> None:
        """Remove custom signal handlers, restoring defaults."""
        if sys.platform != "win32":
            loop = asyncio.get_running_loop()
            for sig in (signal.SIGINT, signal.SIGTERM):
                loop.remove_signal_handler(sig)
        else:
            signal.signal(signal.SIGINT, signal.default_int_handler)
            signal.signal(signal.SIGTERM, signal.SIG_DFL)


class RampSession(LoadSession):
    """Follow a load pattern tick by tick (stages or constant mode).

    At every tick the pool is resized to the pattern's target. Scaling up
    starts new users immediately; scaling down retires the most recently
    started users, which finish their current iteration before exiting.
    Retiring users no longer count as active, so right after each tick the
    active count equals the target exactly.

    Args:
        scenario: The scenario to run.
        pattern: Load shape. Defaults to ``scenario.build_pattern()``.
        **kwargs: Passed to :class:`LoadSession`.
    """

    mode = "stages"

    def __init__(
        self,
        scenario: ScenarioDefinition,
        pattern: LoadPattern | None = None,
        **kwargs: object,
    ) -> None:
        super().__init__(scenario, **kwargs)  # type: ignore[arg-type]
        self.mode = scenario.mode
        built = pattern or scenario.build_pattern()
        if built is None:
            msg = "RampSession needs stages or vus + duration"
            raise ConfigError(msg)
        self._pattern = built

    def describe(self) -> str:
        return self._pattern.describe()

    def _timeout(self) -> float | None:
        return self._scenario.timeout  # type: ignore[return-value]

    async def _drive(self) -> None:
        scheduler = Scheduler(self._pattern, tick_interval=self._config.tick_interval)
        for command in scheduler.iter_commands():
            if not await self._sleep_until(self._start_time + command.elapsed_seconds):
                break
            if command.spawn or command.retire:
                logger.info(
                    "Scaling users %d -> %d at %.1fs",
                    command.previous_users,
                    command.target_users,
                    command.elapsed_seconds,
                )
            self._scale_users(command.target_users)
            self._flush(target=command.target_users)

    def _scale_users(self, target: int) -> None:
        """Resize the active pool to *target* users."""
        self._users = [u for u in self._users if u.task is not None and not u.task.done()]
        active = [u for u in self._users if not u.retiring]

        if target > len(active):
            for _ in range(target - len(active)):
                self._spawn()
        elif target < len(active):
            # LIFO: the newest users retire first.
            for user in active[target:]:
                user.retire()
            logger.debug("Retiring %d user(s)", len(active) - target)


class FixedIterationSession(LoadSession):
    """Run exactly ``iterations`` iterations shared by ``vus`` users.

    Every user gets ``iterations // vus`` iterations and the first
    ``iterations % vus`` users one more, so each user runs at most one
    iteration more than any other and the total is exact. The run ends
    when every user has used its budget, or earlier on the deadline.

    Args:
        scenario: A fixed-mode scenario.
        **kwargs: Passed to :class:`LoadSession`.
    """

    mode = "fixed"

    # Matches k6's default maxDuration for iteration-bound executors.
    default_timeout = 600.0

    def __init__(self, scenario: ScenarioDefinition, **kwargs: object) -> None:
        super().__init__(scenario, **kwargs)  # type: ignore[arg-type]
        if scenario.mode != "fixed":
            msg = "FixedIterationSession needs vus + iterations"
            raise ConfigError(msg)
        self._vus: int = scenario.vus  # type: ignore[assignment]
        self._iterations: int = scenario.iterations  # type: ignore[assignment]

    def describe(self) -> str:
        return self._scenario.describe_load()

    def budgets(self) -> list[int]:
        """Per-user iteration budgets, in user id order."""
        share, extra = divmod(self._iterations, self._vus)
        return [share + (1 if index < extra else 0) for index in range(self._vus)]

    def _timeout(self) -> float | None:
        timeout = self._scenario.timeout
        return self.default_timeout if timeout is None else timeout  # type: ignore[return-value]

    async def _drive(self) -> None:
        budgets = [budget for budget in self.budgets() if budget > 0]
        for budget in budgets:
            self._spawn(iteration_budget=budget)
        self._flush(target=len(budgets))

        pending = {user.task for user in self._users if user.task is not None}
        tick = self._config.tick_interval
        next_tick = self._start_time + tick
        stop_waiter = asyncio.create_task(self._stop_event.wait())

        try:
            while pending and not self._stop_event.is_set():
                wake = next_tick if self._deadline is None else min(next_tick, self._deadline)
                done, _ = await asyncio.wait(
                    {*pending, stop_waiter},
                    timeout=max(wake - time.monotonic(), 0.0),
                    return_when=asyncio.FIRST_COMPLETED,
                )
                pending -= done
                if self._deadline_passed():
                    break
                if time.monotonic() >= next_tick:
                    self._flush(target=self.active_user_count)
                    next_tick += tick
        finally:
            stop_waiter.cancel()


def create_session(scenario: ScenarioDefinition, **kwargs: object) -> LoadSession:
    """Build the session matching the scenario's load mode.

    Args:
        scenario: The scenario to run.
        **kwargs: Passed to the session constructor.

    Returns:
        A :class:`FixedIterationSession` in fixed mode, else a
        :class:`RampSession`.
    """
    if scenario.mode == "fixed":
        return FixedIterationSession(scenario, **kwargs)
    return RampSession(scenario, **kwargs)
