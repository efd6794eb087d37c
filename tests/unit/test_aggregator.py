"""Tests for the lock-protected run aggregator."""

from __future__ import annotations

import threading
import time

import pytest

from loadrace._internal.errors import EngineError
from loadrace.dsl.http_client import RequestMetric
from loadrace.metrics.aggregator import RunAggregator


def _metric(
    name: str = "Step",
    status: int = 200,
    latency_ms: float = 10.0,
    error: str | None = None,
) -> RequestMetric:
    return RequestMetric(
        timestamp=time.monotonic(),
        name=name,
        method="GET",
        url=f"http://localhost/{name}",
        status_code=status,
        latency_ms=latency_ms,
        content_length=0,
        error=error,
    )


class TestRecording:
    def test_empty_report(self):
        report = RunAggregator().finalize(duration_seconds=1.0)
        assert report.total_requests == 0
        assert report.error_rate == 0.0
        assert report.latency_p95 == 0.0
        assert report.check_pass_rate == 1.0
        assert report.checks == {}

    def test_requests_status_and_errors(self):
        agg = RunAggregator()
        agg.record_request(_metric(status=200))
        agg.record_request(_metric(status=201))
        agg.record_request(_metric(status=409))
        agg.record_request(_metric(status=0, error="ClientConnectorError: refused"))

        report = agg.finalize(duration_seconds=2.0)
        assert report.total_requests == 4
        assert report.total_errors == 2
        assert report.error_rate == 0.5
        assert report.requests_per_second == 2.0
        assert report.status_codes == {200: 1, 201: 1, 409: 1, 0: 1}
        assert report.transport_errors == {"ClientConnectorError": 1}

    def test_endpoint_breakdown(self):
        agg = RunAggregator()
        for latency in (10.0, 20.0, 30.0):
            agg.record_request(_metric(name="Add to cart", latency_ms=latency))
        agg.record_request(_metric(name="Order from cart", status=500))

        report = agg.finalize()
        cart = report.endpoints["Add to cart"]
        order = report.endpoints["Order from cart"]
        assert cart.request_count == 3
        assert cart.error_count == 0
        assert 9.9 <= cart.latency_min <= 10.1
        assert 29.9 <= cart.latency_max <= 30.1
        assert order.error_rate == 1.0

    def test_latency_percentiles(self):
        agg = RunAggregator()
        for i in range(1, 101):
            agg.record_request(_metric(latency_ms=float(i)))
        report = agg.finalize()
        assert 49.0 <= report.latency_p50 <= 51.0
        assert 89.0 <= report.latency_p90 <= 91.0
        assert 98.0 <= report.latency_p99 <= 100.0

    def test_checks_counted_per_label(self):
        agg = RunAggregator()
        agg.record_check("Order Success (201)", True)
        agg.record_check("Order Success (201)", False)
        agg.record_check("Order Conflict (400/409)", True)

        report = agg.finalize()
        assert report.checks["Order Success (201)"].passes == 1
        assert report.checks["Order Success (201)"].fails == 1
        assert report.checks["Order Conflict (400/409)"].pass_rate == 1.0
        assert report.checks_passed == 2
        assert report.checks_failed == 1
        assert report.check_pass_rate == pytest.approx(2 / 3)

    def test_iterations_and_extraction_failures(self):
        agg = RunAggregator()
        agg.record_iteration(aborted=False)
        agg.record_iteration(aborted=True)
        agg.record_extraction_failure()

        assert agg.iterations == 2
        report = agg.finalize()
        assert report.iterations == 2
        assert report.iterations_aborted == 1
        assert report.extraction_failures == 1


class TestFlushTick:
    def test_interval_counters_reset(self):
        agg = RunAggregator()
        agg.record_request(_metric(status=500))
        agg.record_check("ok", False)
        agg.record_iteration(aborted=True)

        first = agg.flush_tick(elapsed_seconds=1.0, active_users=3, target_users=4)
        assert first.total_requests == 1
        assert first.total_errors == 1
        assert first.error_rate == 1.0
        assert first.iterations == 1
        assert first.iterations_aborted == 1
        assert first.checks_failed == 1
        assert first.active_users == 3
        assert first.target_users == 4

        second = agg.flush_tick(elapsed_seconds=2.0, active_users=3)
        assert second.total_requests == 0
        assert second.latency_p95 == 0.0
        assert second.target_users == 3

    def test_cumulative_view_unaffected_by_flush(self):
        agg = RunAggregator()
        agg.record_request(_metric())
        agg.flush_tick(elapsed_seconds=1.0, active_users=1)
        agg.record_request(_metric())
        assert agg.total_requests == 2
        assert agg.finalize().total_requests == 2


class TestFinalize:
    def test_read_only_after_finalize(self):
        agg = RunAggregator()
        agg.finalize()
        assert agg.finalized
        with pytest.raises(EngineError, match="read-only"):
            agg.record_request(_metric())
        with pytest.raises(EngineError):
            agg.record_check("x", True)
        with pytest.raises(EngineError):
            agg.record_iteration(aborted=False)
        with pytest.raises(EngineError):
            agg.record_extraction_failure()

    def test_finalize_twice_is_equivalent(self):
        agg = RunAggregator()
        agg.record_request(_metric())
        first = agg.finalize(duration_seconds=1.0)
        second = agg.finalize(duration_seconds=1.0)
        assert first == second

    def test_report_to_dict_uses_string_status_keys(self):
        agg = RunAggregator()
        agg.record_request(_metric(status=201))
        data = agg.finalize().to_dict()
        assert data["status_codes"] == {"201": 1}
        assert data["check_pass_rate"] == 1.0


class TestConcurrentWrites:
    def test_totals_exact_under_200_threads(self):
        agg = RunAggregator()
        threads_count = 200
        per_thread = 50
        barrier = threading.Barrier(threads_count)

        def _writer(index: int) -> None:
            barrier.wait()
            for i in range(per_thread):
                status = 500 if i % 10 == 0 else 200
                agg.record_request(_metric(name=f"step-{index % 4}", status=status))
                agg.record_check("Status 200", status == 200)
                agg.record_iteration(aborted=status != 200)

        threads = [threading.Thread(target=_writer, args=(n,)) for n in range(threads_count)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        report = agg.finalize()
        total = threads_count * per_thread
        assert report.total_requests == total
        assert report.total_errors == total // 10
        assert report.status_codes == {200: total - total // 10, 500: total // 10}
        assert report.checks["Status 200"].total == total
        assert report.checks["Status 200"].fails == total // 10
        assert report.iterations == total
        assert report.iterations_aborted == total // 10
        assert sum(ep.request_count for ep in report.endpoints.values()) == total
