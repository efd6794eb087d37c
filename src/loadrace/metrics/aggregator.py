"""Lock-protected accumulation of request, check and iteration outcomes.

The ``RunAggregator`` is the only structure shared by all virtual users.
Every mutation happens under one ``threading.Lock`` so totals stay exact
whether writers are asyncio tasks on one loop or real threads.

Two views are maintained:
- **Per-tick**: reset by :meth:`RunAggregator.flush_tick`, feeds the live
  display.
- **Cumulative**: never reset, frozen by :meth:`RunAggregator.finalize`
  into the final :class:`RunReport`.
"""

from __future__ import annotations

import threading
import time
from collections import defaultdict

from loadrace._internal.errors import EngineError
from loadrace._internal.logging import get_logger
from loadrace.metrics.histogram import LatencyHistogram
from loadrace.metrics.models import (
    CheckSummary,
    EndpointMetrics,
    MetricSnapshot,
    RequestMetric,
    RunReport,
)

logger = get_logger("metrics.aggregator")


class RunAggregator:
    """Thread-safe accumulator for one run.

    ``record_request`` matches the ``HttpClient.metric_callback`` signature
    and ``record_check`` satisfies the check engine's recorder protocol, so
    an aggregator can be handed straight to both.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._finalized = False
        self._start_time = time.monotonic()
        self._last_flush = self._start_time

        # Cumulative state
        self._overall = LatencyHistogram()
        self._endpoint_hists: dict[str, LatencyHistogram] = {}
        self._endpoint_counts: dict[str, int] = defaultdict(int)
        self._endpoint_errors: dict[str, int] = defaultdict(int)
        self._total_requests = 0
        self._total_errors = 0
        self._status_codes: dict[int, int] = defaultdict(int)
        self._transport_errors: dict[str, int] = defaultdict(int)
        self._checks: dict[str, CheckSummary] = {}
        self._iterations = 0
        self._iterations_aborted = 0
        self._extraction_failures = 0

        # Per-tick state
        self._tick_latency = LatencyHistogram()
        self._tick_requests = 0
        self._tick_errors = 0
        self._tick_iterations = 0
        self._tick_aborted = 0
        self._tick_checks_failed = 0

    @property
    def finalized(self) -> bool:
        return self._finalized

    @property
    def total_requests(self) -> int:
        with self._lock:
            return self._total_requests

    @property
    def iterations(self) -> int:
        with self._lock:
            return self._iterations

    def _ensure_open(self) -> None:
        if self._finalized:
            msg = "RunAggregator is finalized; results are read-only"
            raise EngineError(msg)

    def record_request(self, metric: RequestMetric) -> None:
        """Record one executed request.

        Raises:
            EngineError: If the aggregator has been finalized.
        """
        with self._lock:
            self._ensure_open()
            name = metric.name
            self._overall.record(metric.latency_ms)
            self._tick_latency.record(metric.latency_ms)
            if name not in self._endpoint_hists:
                self._endpoint_hists[name] = LatencyHistogram()
            self._endpoint_hists[name].record(metric.latency_ms)

            self._total_requests += 1
            self._tick_requests += 1
            self._endpoint_counts[name] += 1
            self._status_codes[metric.status_code] += 1

            if metric.is_error:
                self._total_errors += 1
                self._tick_errors += 1
                self._endpoint_errors[name] += 1
            if metric.error is not None:
                # "ClientConnectorError: ..." -> "ClientConnectorError"
                self._transport_errors[metric.error.split(":")[0].strip()] += 1

    def record_check(self, label: str, passed: bool) -> None:
        """Record one check outcome under *label*.

        Raises:
            EngineError: If the aggregator has been finalized.
        """
        with self._lock:
            self._ensure_open()
            summary = self._checks.get(label)
            if summary is None:
                summary = self._checks[label] = CheckSummary(label=label)
            if passed:
                summary.passes += 1
            else:
                summary.fails += 1
                self._tick_checks_failed += 1

    def record_iteration(self, *, aborted: bool) -> None:
        """Record one finished scenario iteration.

        Raises:
            EngineError: If the aggregator has been finalized.
        """
        with self._lock:
            self._ensure_open()
            self._iterations += 1
            self._tick_iterations += 1
            if aborted:
                self._iterations_aborted += 1
                self._tick_aborted += 1

    def record_extraction_failure(self) -> None:
        """Record an extraction rule that found nothing usable.

        Raises:
            EngineError: If the aggregator has been finalized.
        """
        with self._lock:
            self._ensure_open()
            self._extraction_failures += 1

    def flush_tick(
        self,
        elapsed_seconds: float,
        active_users: int,
        target_users: int | None = None,
    ) -> MetricSnapshot:
        """Return the interval snapshot since the last flush and reset it.

        Args:
            elapsed_seconds: Seconds since the run started.
            active_users: Virtual users not currently draining.
            target_users: Concurrency the load shape asked for. Defaults to
                *active_users*.

        Returns:
            Snapshot of the interval.
        """
        with self._lock:
            now = time.monotonic()
            interval = max(now - self._last_flush, 0.001)
            self._last_flush = now
            requests = self._tick_requests
            snapshot = MetricSnapshot(
                timestamp=now,
                elapsed_seconds=elapsed_seconds,
                active_users=active_users,
                target_users=active_users if target_users is None else target_users,
                total_requests=requests,
                requests_per_second=requests / interval,
                latency_p50=self._tick_latency.percentile(50.0),
                latency_p95=self._tick_latency.percentile(95.0),
                latency_p99=self._tick_latency.percentile(99.0),
                total_errors=self._tick_errors,
                error_rate=self._tick_errors / requests if requests else 0.0,
                iterations=self._tick_iterations,
                iterations_aborted=self._tick_aborted,
                checks_failed=self._tick_checks_failed,
            )
            self._tick_latency.reset()
            self._tick_requests = 0
            self._tick_errors = 0
            self._tick_iterations = 0
            self._tick_aborted = 0
            self._tick_checks_failed = 0
        return snapshot

    def finalize(self, duration_seconds: float | None = None) -> RunReport:
        """Freeze the aggregator and build the final report.

        Further ``record_*`` calls raise :class:`EngineError`. Calling
        ``finalize`` again returns an equivalent report.

        Args:
            duration_seconds: Run duration used for the request rate.
                Defaults to the time since the aggregator was created.

        Returns:
            The cumulative run report.
        """
        with self._lock:
            self._finalized = True
            duration = (
                time.monotonic() - self._start_time
                if duration_seconds is None
                else duration_seconds
            )
            endpoints: dict[str, EndpointMetrics] = {}
            for name, hist in self._endpoint_hists.items():
                count = self._endpoint_counts[name]
                errors = self._endpoint_errors[name]
                endpoints[name] = EndpointMetrics(
                    name=name,
                    request_count=count,
                    error_count=errors,
                    error_rate=errors / count if count else 0.0,
                    latency_min=hist.min(),
                    latency_max=hist.max(),
                    latency_avg=hist.mean(),
                    latency_p50=hist.percentile(50.0),
                    latency_p90=hist.percentile(90.0),
                    latency_p95=hist.percentile(95.0),
                    latency_p99=hist.percentile(99.0),
                )

            total = self._total_requests
            report = RunReport(
                duration_seconds=duration,
                total_requests=total,
                total_errors=self._total_errors,
                error_rate=self._total_errors / total if total else 0.0,
                requests_per_second=total / max(duration, 0.001),
                iterations=self._iterations,
                iterations_aborted=self._iterations_aborted,
                extraction_failures=self._extraction_failures,
                latency_min=self._overall.min(),
                latency_max=self._overall.max(),
                latency_avg=self._overall.mean(),
                latency_p50=self._overall.percentile(50.0),
                latency_p90=self._overall.percentile(90.0),
                latency_p95=self._overall.percentile(95.0),
                latency_p99=self._overall.percentile(99.0),
                status_codes=dict(self._status_codes),
                transport_errors=dict(self._transport_errors),
                checks={
                    label: CheckSummary(label=label, passes=s.passes, fails=s.fails)
                    for label, s in self._checks.items()
                },
                endpoints=endpoints,
            )
        logger.debug(
            "Aggregator finalized: requests=%d, iterations=%d, checks=%d",
            report.total_requests,
            report.iterations,
            len(report.checks),
        )
        return report
