"""``loadrace run`` — execute a scenario with live terminal output."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import TYPE_CHECKING

import typer
from rich.console import Console
from rich.live import Live
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table

from loadrace._internal.errors import ConfigError, LoadRaceError
from loadrace.engine.runner import LoadTestRunner
from loadrace.metrics.report import write_json_report
from loadrace.metrics.thresholds import MaxErrorRate, MinCheckPassRate
from loadrace.patterns.stages import LoadStage

if TYPE_CHECKING:
    from loadrace.metrics.models import MetricSnapshot, RunResult
    from loadrace.metrics.thresholds import Threshold

console = Console(stderr=True)

EXIT_THRESHOLDS_FAILED = 1
EXIT_CONFIG_ERROR = 2


# ---------------------------------------------------------------------------
# Option parsing helpers
# ---------------------------------------------------------------------------


def parse_stage(value: str) -> LoadStage:
    """Parse a ``DURATION:TARGET`` stage option such as ``30s:50``.

    Raises:
        typer.BadParameter: If the value is malformed.
    """
    duration, sep, target = value.rpartition(":")
    if not sep or not duration:
        msg = f"Stage must look like DURATION:TARGET (e.g. 30s:50), got {value!r}"
        raise typer.BadParameter(msg)
    try:
        return LoadStage(duration, int(target))
    except (ValueError, ConfigError) as exc:
        msg = f"Invalid stage {value!r}: {exc}"
        raise typer.BadParameter(msg) from exc


def _cli_thresholds(
    fail_on_error_rate: float | None,
    fail_on_check_rate: float | None,
) -> list[Threshold]:
    thresholds: list[Threshold] = []
    if fail_on_error_rate is not None:
        thresholds.append(MaxErrorRate(fail_on_error_rate))
    if fail_on_check_rate is not None:
        thresholds.append(MinCheckPassRate(fail_on_check_rate))
    return thresholds


# ---------------------------------------------------------------------------
# Rich live display
# ---------------------------------------------------------------------------


def _make_live_table(snapshot: MetricSnapshot | None) -> Table:
    """Build a Rich table summarising the latest tick.

    Args:
        snapshot: Latest metric snapshot, or None if no data yet.

    Returns:
        Formatted Rich Table.
    """
    table = Table(show_header=True, header_style="bold cyan", expand=True)
    table.add_column("Metric", style="bold")
    table.add_column("Value", justify="right")

    if snapshot is None:
        table.add_row("Status", "Starting...")
        return table

    table.add_row("Elapsed", f"{snapshot.elapsed_seconds:.0f}s")
    table.add_row("Active Users", f"{snapshot.active_users} / {snapshot.target_users}")
    table.add_row("Requests/sec", f"{snapshot.requests_per_second:.1f}")
    table.add_row("p50 Latency", f"{snapshot.latency_p50:.1f}ms")
    table.add_row("p95 Latency", f"{snapshot.latency_p95:.1f}ms")
    table.add_row("p99 Latency", f"{snapshot.latency_p99:.1f}ms")
    table.add_row("Errors", str(snapshot.total_errors))
    table.add_row("Iterations", str(snapshot.iterations))
    table.add_row("Aborted", str(snapshot.iterations_aborted))
    table.add_row("Failed Checks", str(snapshot.checks_failed))

    return table


def _print_summary(result: RunResult) -> None:
    """Print the final summary tables.

    Args:
        result: Completed run result.
    """
    report = result.report
    table = Table(title="Run Complete", show_header=True, header_style="bold green", expand=True)
    table.add_column("Metric", style="bold")
    table.add_column("Value", justify="right")

    table.add_row("Scenario", result.scenario_name)
    table.add_row("Load", result.load_description)
    table.add_row("Duration", f"{result.duration_seconds:.1f}s")
    if result.timed_out:
        table.add_row("Timed Out", "[yellow]yes[/yellow]")
    table.add_row("Iterations", str(report.iterations))
    table.add_row("Aborted Iterations", str(report.iterations_aborted))
    table.add_row("Total Requests", str(report.total_requests))
    table.add_row("Avg Requests/sec", f"{report.requests_per_second:.1f}")
    table.add_row("p50 Latency", f"{report.latency_p50:.1f}ms")
    table.add_row("p90 Latency", f"{report.latency_p90:.1f}ms")
    table.add_row("p95 Latency", f"{report.latency_p95:.1f}ms")
    table.add_row("p99 Latency", f"{report.latency_p99:.1f}ms")
    table.add_row("Error Rate", f"{report.error_rate * 100:.2f}%")
    table.add_row("Extraction Failures", str(report.extraction_failures))
    console.print(table)

    if report.checks:
        checks = Table(title="Checks", show_header=True, header_style="bold cyan", expand=True)
        checks.add_column("Check")
        checks.add_column("Passes", justify="right")
        checks.add_column("Fails", justify="right")
        checks.add_column("Pass %", justify="right")
        for summary in report.checks.values():
            checks.add_row(
                summary.label,
                str(summary.passes),
                str(summary.fails),
                f"{summary.pass_rate * 100:.1f}%",
            )
        console.print(checks)

    if report.status_codes:
        codes = Table(title="Status Codes", show_header=True, header_style="bold cyan")
        codes.add_column("Status")
        codes.add_column("Count", justify="right")
        for code, count in sorted(report.status_codes.items()):
            codes.add_row("transport error" if code == 0 else str(code), str(count))
        console.print(codes)

    if report.transport_errors:
        errors = Table(title="Transport Errors", show_header=True, header_style="bold red")
        errors.add_column("Error")
        errors.add_column("Count", justify="right")
        for kind, count in sorted(report.transport_errors.items()):
            errors.add_row(kind, str(count))
        console.print(errors)

    if report.endpoints:
        ep_table = Table(
            title="Per-Step Breakdown",
            show_header=True,
            header_style="bold cyan",
            expand=True,
        )
        ep_table.add_column("Step")
        ep_table.add_column("Requests", justify="right")
        ep_table.add_column("p50", justify="right")
        ep_table.add_column("p95", justify="right")
        ep_table.add_column("p99", justify="right")
        ep_table.add_column("Errors", justify="right")
        ep_table.add_column("Error %", justify="right")
        for ep in report.endpoints.values():
            ep_table.add_row(
                ep.name,
                str(ep.request_count),
                f"{ep.latency_p50:.1f}ms",
                f"{ep.latency_p95:.1f}ms",
                f"{ep.latency_p99:.1f}ms",
                str(ep.error_count),
                f"{ep.error_rate * 100:.2f}%",
            )
        console.print(ep_table)

    if result.thresholds:
        verdicts = Table(title="Thresholds", show_header=True, header_style="bold cyan")
        verdicts.add_column("Threshold")
        verdicts.add_column("Observed", justify="right")
        verdicts.add_column("Result")
        for verdict in result.thresholds:
            verdicts.add_row(
                verdict.name,
                verdict.observed,
                "[green]PASS[/green]" if verdict.passed else "[red]FAIL[/red]",
            )
        console.print(verdicts)


# ---------------------------------------------------------------------------
# Command
# ---------------------------------------------------------------------------


def run_cmd(
    scenario_file: Path = typer.Argument(
        ...,
        help="Path to the scenario .py file.",
        exists=True,
        file_okay=True,
        dir_okay=False,
        readable=True,
    ),
    scenario_name: str | None = typer.Option(
        None,
        "--scenario-name",
        "-n",
        help="Scenario to run when the file defines several.",
    ),
    stage: list[str] | None = typer.Option(
        None,
        "--stage",
        "-s",
        help="Ramp stage as DURATION:TARGET (e.g. 30s:50). Repeat for more stages.",
    ),
    vus: int | None = typer.Option(
        None,
        "--vus",
        "-u",
        help="Virtual users for fixed or constant mode.",
        min=1,
    ),
    iterations: int | None = typer.Option(
        None,
        "--iterations",
        "-i",
        help="Total iterations shared by all users (fixed mode).",
        min=1,
    ),
    duration: str | None = typer.Option(
        None,
        "--duration",
        "-d",
        help="Run length for constant mode (e.g. 30s, 2m).",
    ),
    timeout: str | None = typer.Option(
        None,
        "--timeout",
        "-t",
        help="Global deadline; no new iterations start after it.",
    ),
    base_url: str | None = typer.Option(
        None,
        "--base-url",
        help="Override the scenario's base URL.",
    ),
    report: Path | None = typer.Option(
        None,
        "--report",
        "-o",
        help="Write a JSON report to this path.",
    ),
    fail_on_error_rate: float | None = typer.Option(
        None,
        "--fail-on-error-rate",
        help="Exit non-zero if the error rate exceeds this fraction (e.g. 0.05).",
    ),
    fail_on_check_rate: float | None = typer.Option(
        None,
        "--fail-on-check-rate",
        help="Exit non-zero if the check pass rate is below this fraction (e.g. 0.95).",
    ),
    verbose: bool = typer.Option(
        False,
        "--verbose",
        "-v",
        help="Enable verbose (DEBUG) logging.",
    ),
    log_json: bool = typer.Option(
        False,
        "--log-json",
        help="Emit log lines as JSON.",
    ),
) -> None:
    """Execute a load test scenario with live terminal output."""
    stages = [parse_stage(value) for value in stage or []]
    log_level = logging.DEBUG if verbose else logging.INFO

    try:
        test_runner = LoadTestRunner(
            scenario_file,
            scenario_name=scenario_name,
            stages=stages or None,
            vus=vus,
            iterations=iterations,
            duration=duration,
            timeout=timeout,
            base_url=base_url,
            thresholds=_cli_thresholds(fail_on_error_rate, fail_on_check_rate),
            log_level=log_level,
            json_logs=log_json,
        )
    except ConfigError as exc:
        console.print(f"[red]Configuration error:[/red] {escape(str(exc))}")
        raise typer.Exit(code=EXIT_CONFIG_ERROR) from exc

    console.print(
        Panel(
            f"[bold]Scenario:[/bold] {test_runner.scenario.name}\n"
            f"[bold]File:[/bold]     {scenario_file.name}\n"
            f"[bold]Load:[/bold]     {test_runner.describe()}",
            title="LoadRace",
            border_style="cyan",
        )
    )

    try:
        with Live(
            _make_live_table(None),
            console=console,
            refresh_per_second=2,
            transient=True,
        ) as live:

            def _live_snapshot(snapshot: MetricSnapshot) -> None:
                live.update(_make_live_table(snapshot))

            test_runner.on_snapshot = _live_snapshot
            result = test_runner.run()
    except LoadRaceError as exc:
        console.print(f"[red]Load test failed:[/red] {escape(str(exc))}")
        raise typer.Exit(code=EXIT_THRESHOLDS_FAILED) from exc

    _print_summary(result)

    if report is not None:
        written = write_json_report(result, report)
        console.print(f"[green]Report written:[/green] {written}")

    if not result.passed:
        failed = [t.name for t in result.thresholds if not t.passed]
        console.print(f"[red]FAIL:[/red] {len(failed)} threshold(s) failed: {', '.join(failed)}")
        raise typer.Exit(code=EXIT_THRESHOLDS_FAILED)

    console.print("[green]Load test completed successfully.[/green]")
