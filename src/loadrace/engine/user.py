"""Virtual user: one asyncio task looping scenario iterations."""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING

from loadrace._internal.logging import get_logger
from loadrace.dsl.http_client import HttpClient
from loadrace.engine._user_utils import pause
from loadrace.engine.context import SessionContext

if TYPE_CHECKING:
    import aiohttp

    from loadrace.dsl.scenario import ScenarioDefinition
    from loadrace.engine.script import ScriptEngine
    from loadrace.metrics.aggregator import RunAggregator

logger = get_logger("engine.user")


class VirtualUser:
    """A simulated client running the scenario script in a loop.

    Each user owns its own HTTP session (cookies, default headers) and its
    own :class:`SessionContext`; only the TCP connector is shared. Steps
    within an iteration run strictly one after another.

    Retiring is cooperative: :meth:`retire` only flips a flag, and the
    user exits once the iteration in progress has finished. Requests are
    never cancelled mid-flight.

    Args:
        user_id: 1-based user id, exposed to templates as ``vu``.
        scenario: The scenario to run.
        engine: Shared script engine.
        aggregator: Metrics sink wired into the HTTP client.
        base_url: Resolved base URL.
        request_timeout: Per-request timeout in seconds.
        connector: Shared TCP connector.
        iteration_budget: Iterations to run before exiting, or None to
            loop until retired.
        stop_event: Global stop signal. Once set, no new iteration starts.
    """

    def __init__(
        self,
        user_id: int,
        scenario: ScenarioDefinition,
        engine: ScriptEngine,
        aggregator: RunAggregator,
        base_url: str,
        request_timeout: float,
        connector: aiohttp.BaseConnector | None = None,
        iteration_budget: int | None = None,
        stop_event: asyncio.Event | None = None,
    ) -> None:
        self.user_id = user_id
        self._scenario = scenario
        self._engine = engine
        self._aggregator = aggregator
        self._base_url = base_url
        self._request_timeout = request_timeout
        self._connector = connector
        self._budget = iteration_budget
        self._stop_event = stop_event
        self._retire_event = asyncio.Event()
        self.iterations_done = 0
        self.task: asyncio.Task[None] | None = None

    @property
    def retiring(self) -> bool:
        return self._retire_event.is_set()

    def retire(self) -> None:
        """Ask the user to exit after its current iteration."""
        self._retire_event.set()

    def start(self) -> asyncio.Task[None]:
        """Schedule :meth:`run` as a task on the running loop."""
        self.task = asyncio.create_task(self.run(), name=f"vu-{self.user_id}")
        return self.task

    def _has_budget(self) -> bool:
        return self._budget is None or self.iterations_done < self._budget

    def _may_continue(self) -> bool:
        if self.retiring or (self._stop_event is not None and self._stop_event.is_set()):
            return False
        return self._has_budget()

    async def run(self) -> None:
        """Loop iterations until retired, stopped or out of budget."""
        context = SessionContext(self.user_id, self._scenario.initial_variables(self.user_id))
        logger.debug("VU %d started", self.user_id)

        async with HttpClient(
            base_url=self._base_url,
            headers=self._scenario.default_headers,
            metric_callback=self._aggregator.record_request,
            user_id=self.user_id,
            timeout=self._request_timeout,
            connector=self._connector,
        ) as client:
            while self._may_continue():
                self.iterations_done += 1
                context.begin_iteration(self.iterations_done)
                try:
                    await self._engine.run_iteration(client, context)
                except Exception:
                    logger.exception(
                        "VU %d: unexpected error in iteration %d",
                        self.user_id,
                        self.iterations_done,
                    )
                    self._aggregator.record_iteration(aborted=True)

                if self._scenario.think_time and self._may_continue():
                    await pause(self._scenario.think_time, self._retire_event)

        logger.debug("VU %d exited after %d iteration(s)", self.user_id, self.iterations_done)
