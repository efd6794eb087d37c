"""Result dataclasses for LoadRace runs."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from typing import TYPE_CHECKING, Any

# NOTE: RequestMetric lives in dsl/http_client.py. Re-exported here so
# consumers can import it from either location.
from loadrace.dsl.http_client import RequestMetric

if TYPE_CHECKING:
    from loadrace.metrics.thresholds import ThresholdResult

__all__ = [
    "CheckSummary",
    "EndpointMetrics",
    "MetricSnapshot",
    "RequestMetric",
    "RunReport",
    "RunResult",
]


@dataclass
class CheckSummary:
    """Pass/fail counts for one labelled check.

    Attributes:
        label: The caller-supplied check description.
        passes: Number of evaluations that passed.
        fails: Number of evaluations that failed.
    """

    label: str
    passes: int = 0
    fails: int = 0

    @property
    def total(self) -> int:
        return self.passes + self.fails

    @property
    def pass_rate(self) -> float:
        return self.passes / self.total if self.total else 0.0


@dataclass
class EndpointMetrics:
    """Aggregated metrics for one step (logical request name).

    Attributes:
        name: Step name.
        request_count: Total requests made by this step.
        error_count: Transport failures plus HTTP statuses >= 400.
        error_rate: ``error_count / request_count``.
        latency_min: Minimum response time in milliseconds.
        latency_max: Maximum response time in milliseconds.
        latency_avg: Mean response time in milliseconds.
        latency_p50: 50th percentile response time in milliseconds.
        latency_p90: 90th percentile response time in milliseconds.
        latency_p95: 95th percentile response time in milliseconds.
        latency_p99: 99th percentile response time in milliseconds.
    """

    name: str
    request_count: int = 0
    error_count: int = 0
    error_rate: float = 0.0
    latency_min: float = 0.0
    latency_max: float = 0.0
    latency_avg: float = 0.0
    latency_p50: float = 0.0
    latency_p90: float = 0.0
    latency_p95: float = 0.0
    latency_p99: float = 0.0


@dataclass
class MetricSnapshot:
    """Interval metrics emitted every scheduler tick for the live display.

    Attributes:
        timestamp: Monotonic timestamp of the snapshot.
        elapsed_seconds: Seconds since the run started.
        active_users: Virtual users not currently draining.
        target_users: Concurrency the load shape asked for at this tick.
        total_requests: Requests completed in this interval.
        requests_per_second: Request rate over this interval.
        latency_p50: 50th percentile latency in this interval (ms).
        latency_p95: 95th percentile latency in this interval (ms).
        latency_p99: 99th percentile latency in this interval (ms).
        total_errors: Errored requests in this interval.
        error_rate: ``total_errors / total_requests``.
        iterations: Iterations finished in this interval.
        iterations_aborted: Of those, iterations cut short.
        checks_failed: Failed check evaluations in this interval.
    """

    timestamp: float
    elapsed_seconds: float
    active_users: int
    target_users: int = 0
    total_requests: int = 0
    requests_per_second: float = 0.0
    latency_p50: float = 0.0
    latency_p95: float = 0.0
    latency_p99: float = 0.0
    total_errors: int = 0
    error_rate: float = 0.0
    iterations: int = 0
    iterations_aborted: int = 0
    checks_failed: int = 0


@dataclass
class RunReport:
    """Final, read-only summary of a run.

    Attributes:
        total_requests: Every request attempted, including transport failures.
        total_errors: Transport failures plus HTTP statuses >= 400.
        error_rate: ``total_errors / total_requests``.
        requests_per_second: Average request rate over the run.
        iterations: Scenario iterations finished (completed or aborted).
        iterations_aborted: Iterations cut short by a critical check,
            transport error or template failure.
        extraction_failures: Extraction rules that found nothing usable.
        status_codes: Histogram of HTTP status codes (0 = transport failure).
        transport_errors: Transport failures by exception type.
        checks: Pass/fail counts per check label.
        endpoints: Per-step request metrics.
    """

    duration_seconds: float
    total_requests: int = 0
    total_errors: int = 0
    error_rate: float = 0.0
    requests_per_second: float = 0.0
    iterations: int = 0
    iterations_aborted: int = 0
    extraction_failures: int = 0
    latency_min: float = 0.0
    latency_max: float = 0.0
    latency_avg: float = 0.0
    latency_p50: float = 0.0
    latency_p90: float = 0.0
    latency_p95: float = 0.0
    latency_p99: float = 0.0
    status_codes: dict[int, int] = field(default_factory=dict)
    transport_errors: dict[str, int] = field(default_factory=dict)
    checks: dict[str, CheckSummary] = field(default_factory=dict)
    endpoints: dict[str, EndpointMetrics] = field(default_factory=dict)

    @property
    def checks_passed(self) -> int:
        return sum(c.passes for c in self.checks.values())

    @property
    def checks_failed(self) -> int:
        return sum(c.fails for c in self.checks.values())

    @property
    def check_pass_rate(self) -> float:
        """Fraction of all check evaluations that passed (1.0 if none ran)."""
        total = self.checks_passed + self.checks_failed
        return self.checks_passed / total if total else 1.0

    def to_dict(self) -> dict[str, Any]:
        """Return a JSON-serialisable representation."""
        data = asdict(self)
        data["status_codes"] = {str(code): n for code, n in sorted(self.status_codes.items())}
        data["check_pass_rate"] = self.check_pass_rate
        return data


@dataclass
class RunResult:
    """Complete result of a load test run.

    Attributes:
        scenario_name: Name of the scenario that was executed.
        mode: ``"stages"``, ``"constant"`` or ``"fixed"``.
        start_time: Monotonic time when the run started.
        end_time: Monotonic time when the run completed.
        duration_seconds: Wall-clock duration of the run.
        load_description: Human-readable description of the load shape.
        report: Final aggregated report.
        snapshots: Interval snapshots, one per scheduler tick.
        thresholds: Threshold verdicts, filled in by the runner.
        timed_out: True if the global deadline ended the run early.
    """

    scenario_name: str
    mode: str
    start_time: float
    end_time: float
    duration_seconds: float
    load_description: str
    report: RunReport
    snapshots: list[MetricSnapshot] = field(default_factory=list)
    thresholds: list[ThresholdResult] = field(default_factory=list)
    timed_out: bool = False

    @property
    def passed(self) -> bool:
        """True when every evaluated threshold passed."""
        return all(t.passed for t in self.thresholds)
