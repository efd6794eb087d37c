"""Sequential execution of one scenario iteration for one virtual user."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING

from loadrace._internal.errors import ExtractionError, ScenarioError
from loadrace._internal.logging import get_logger
from loadrace.dsl.checks import evaluate
from loadrace.dsl.extract import extract_value
from loadrace.dsl.templates import render
from loadrace.engine._user_utils import pause

if TYPE_CHECKING:
    import asyncio

    from loadrace.dsl.http_client import HttpClient, HttpResult
    from loadrace.dsl.scenario import ScenarioDefinition, Step
    from loadrace.engine.context import SessionContext
    from loadrace.metrics.aggregator import RunAggregator

logger = get_logger("engine.script")

# Response bodies are truncated to this many characters in abort logs.
_BODY_PREVIEW = 200


class AbortReason(Enum):
    """Why an iteration stopped before its last step."""

    CRITICAL_CHECK = "critical_check"
    TRANSPORT_ERROR = "transport_error"
    TEMPLATE_ERROR = "template_error"
    STOPPED = "stopped"


@dataclass
class IterationOutcome:
    """What happened during one iteration.

    Attributes:
        user_id: Virtual user that ran the iteration.
        iteration: 1-based iteration number for that user.
        steps_run: Names of the steps that sent a request, in order.
        abort_reason: Set when the iteration stopped early.
        abort_step: Step at which the iteration stopped.
    """

    user_id: int
    iteration: int
    steps_run: list[str] = field(default_factory=list)
    abort_reason: AbortReason | None = None
    abort_step: str | None = None

    @property
    def aborted(self) -> bool:
        return self.abort_reason is not None


class ScriptEngine:
    """Runs a scenario's steps in order against one user's client.

    The engine itself is stateless between iterations and may be shared by
    every virtual user; all per-user state lives in the
    :class:`SessionContext` passed to :meth:`run_iteration`.

    For each step the engine renders the templates, sends the request,
    records every check, applies the extraction rules and then decides
    whether to continue. A failed critical check or a transport failure
    aborts the rest of the iteration. Once *stop_event* is set the current
    request is allowed to finish but no further step starts.

    Args:
        scenario: The validated scenario to run.
        aggregator: Sink for checks, iterations and extraction failures.
        session_header: Header carrying the scenario's session variable.
        stop_event: Global stop signal for the run.
    """

    def __init__(
        self,
        scenario: ScenarioDefinition,
        aggregator: RunAggregator,
        session_header: str,
        stop_event: asyncio.Event | None = None,
    ) -> None:
        self._scenario = scenario
        self._aggregator = aggregator
        self._session_header = scenario.session_header or session_header
        self._stop_event = stop_event

    def _stopped(self) -> bool:
        return self._stop_event is not None and self._stop_event.is_set()

    def _session_headers(self, context: SessionContext) -> dict[str, str]:
        name = self._scenario.session_variable
        if name is None:
            return {}
        value = context.get(name)
        return {self._session_header: value} if value else {}

    async def run_iteration(self, client: HttpClient, context: SessionContext) -> IterationOutcome:
        """Run every step once, in declaration order.

        Args:
            client: The user's HTTP client.
            context: The user's session context, already advanced to the
                current iteration.

        Returns:
            The iteration outcome. The iteration is recorded on the
            aggregator, aborted or not, unless the run was already stopped
            before its first step.
        """
        outcome = IterationOutcome(user_id=context.user_id, iteration=int(context["iteration"]))
        steps = self._scenario.steps

        if self._stopped():
            outcome.abort_reason = AbortReason.STOPPED
            return outcome

        for index, step in enumerate(steps):
            if self._stopped():
                outcome.abort_reason = AbortReason.STOPPED
                outcome.abort_step = step.name
                break

            reason = await self._run_step(step, client, context)
            if reason is not AbortReason.TEMPLATE_ERROR:
                outcome.steps_run.append(step.name)
            if reason is not None:
                outcome.abort_reason = reason
                outcome.abort_step = step.name
                break

            if step.delay_after and index < len(steps) - 1:
                await pause(step.delay_after, self._stop_event)

        self._aggregator.record_iteration(aborted=outcome.aborted)
        return outcome

    async def _run_step(
        self,
        step: Step,
        client: HttpClient,
        context: SessionContext,
    ) -> AbortReason | None:
        variables = context.variables
        try:
            path = render(step.path, variables)
            body = render(step.body, variables)
            headers = {**render(step.headers, variables), **self._session_headers(context)}
        except ScenarioError as exc:
            logger.warning(
                "VU %d aborted iteration %s at step %r: %s",
                context.user_id,
                context["iteration"],
                step.name,
                exc,
                extra={"vu": context.user_id, "step": step.name},
            )
            return AbortReason.TEMPLATE_ERROR

        result = await client.execute(
            step.method, path, name=step.name, json_body=body, headers=headers
        )

        outcomes = evaluate(result, step.checks)
        for label, passed in outcomes.items():
            self._aggregator.record_check(label, passed)

        if result.transport_error:
            self._log_abort(step, context, result, "transport error")
            return AbortReason.TRANSPORT_ERROR

        self._apply_extractions(step, result, context, all_passed=all(outcomes.values()))

        failed_critical = [label for label in step.critical_labels if not outcomes.get(label)]
        if failed_critical:
            self._log_abort(step, context, result, f"critical check {failed_critical[0]!r} failed")
            return AbortReason.CRITICAL_CHECK
        return None

    def _apply_extractions(
        self,
        step: Step,
        result: HttpResult,
        context: SessionContext,
        *,
        all_passed: bool,
    ) -> None:
        for rule in step.extract:
            if rule.only_if_passed and not all_passed:
                continue
            try:
                value = extract_value(result, rule.path)
            except ExtractionError as exc:
                self._aggregator.record_extraction_failure()
                logger.debug(
                    "VU %d step %r: extraction of %r failed, keeping previous value: %s",
                    context.user_id,
                    step.name,
                    rule.variable,
                    exc,
                )
                continue
            context.set(rule.variable, value)

    def _log_abort(
        self,
        step: Step,
        context: SessionContext,
        result: HttpResult,
        why: str,
    ) -> None:
        detail = result.error if result.transport_error else result.text[:_BODY_PREVIEW]
        logger.warning(
            "VU %d aborted iteration %s at step %r (%s): status=%d body=%s",
            context.user_id,
            context["iteration"],
            step.name,
            why,
            result.status,
            detail,
            extra={"vu": context.user_id, "step": step.name, "status": result.status},
        )
