"""Machine-readable JSON report for a finished run."""

from __future__ import annotations

import json
from dataclasses import asdict
from pathlib import Path
from typing import TYPE_CHECKING, Any

from loadrace._internal.logging import get_logger

if TYPE_CHECKING:
    from loadrace.metrics.models import RunResult

logger = get_logger("metrics.report")

REPORT_VERSION = 1


def result_to_dict(result: RunResult) -> dict[str, Any]:
    """Convert a run result into plain JSON-serialisable data."""
    return {
        "version": REPORT_VERSION,
        "scenario": result.scenario_name,
        "mode": result.mode,
        "load": result.load_description,
        "duration_seconds": round(result.duration_seconds, 3),
        "timed_out": result.timed_out,
        "passed": result.passed,
        "summary": result.report.to_dict(),
        "thresholds": [asdict(t) for t in result.thresholds],
        "snapshots": [asdict(s) for s in result.snapshots],
    }


def write_json_report(result: RunResult, path: str | Path) -> Path:
    """Write *result* as indented JSON to *path*, creating parent dirs.

    Returns:
        The resolved output path.
    """
    target = Path(path)
    target.parent.mkdir(parents=True, exist_ok=True)
    target.write_text(json.dumps(result_to_dict(result), indent=2) + "\n")
    logger.info("Report written to %s", target)
    return target.resolve()
