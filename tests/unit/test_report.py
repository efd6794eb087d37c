"""Tests for the JSON report writer."""

from __future__ import annotations

import json
from typing import TYPE_CHECKING

from loadrace.metrics.models import CheckSummary, MetricSnapshot, RunReport, RunResult
from loadrace.metrics.report import REPORT_VERSION, result_to_dict, write_json_report
from loadrace.metrics.thresholds import ThresholdResult

if TYPE_CHECKING:
    from pathlib import Path


def _result(passed: bool = True) -> RunResult:
    report = RunReport(
        duration_seconds=3.0,
        total_requests=10,
        status_codes={201: 1, 409: 9},
        checks={"Order Success (201)": CheckSummary("Order Success (201)", 1, 9)},
    )
    return RunResult(
        scenario_name="Checkout Race",
        mode="fixed",
        start_time=0.0,
        end_time=3.0,
        duration_seconds=3.0,
        load_description="Fixed: 10 users sharing 10 iterations",
        report=report,
        snapshots=[MetricSnapshot(timestamp=1.0, elapsed_seconds=1.0, active_users=10)],
        thresholds=[ThresholdResult("'Order Success (201)' passes == 1", passed, "1")],
    )


class TestResultToDict:
    def test_shape(self):
        data = result_to_dict(_result())
        assert data["version"] == REPORT_VERSION
        assert data["scenario"] == "Checkout Race"
        assert data["mode"] == "fixed"
        assert data["passed"] is True
        assert data["timed_out"] is False
        assert data["summary"]["status_codes"] == {"201": 1, "409": 9}
        assert data["summary"]["checks"]["Order Success (201)"]["passes"] == 1
        assert data["thresholds"][0]["observed"] == "1"
        assert data["snapshots"][0]["active_users"] == 10

    def test_failed_threshold(self):
        assert result_to_dict(_result(passed=False))["passed"] is False


class TestWriteJsonReport:
    def test_writes_parseable_json(self, tmp_path: Path):
        target = tmp_path / "out" / "report.json"
        written = write_json_report(_result(), target)
        assert written == target.resolve()
        data = json.loads(target.read_text())
        assert data["summary"]["total_requests"] == 10
