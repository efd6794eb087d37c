"""Typer application behind the ``loadrace`` command."""

from __future__ import annotations

from pathlib import Path

import typer
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from loadrace import __version__
from loadrace._internal.errors import ConfigError
from loadrace.cli.init_cmd import init_cmd
from loadrace.cli.run import EXIT_CONFIG_ERROR, run_cmd
from loadrace.dsl.loader import load_scenario

console = Console(stderr=True)

app = typer.Typer(
    name="loadrace",
    help="Scripted HTTP load and race-condition testing.",
    no_args_is_help=True,
    rich_markup_mode="rich",
)

app.command("run", help="Run a load test scenario.")(run_cmd)
app.command("init", help="Scaffold a new scenario file.")(init_cmd)


@app.command("validate")
def validate_cmd(
    scenario_file: Path = typer.Argument(
        ...,
        help="Path to the scenario .py file.",
        exists=True,
        dir_okay=False,
        readable=True,
    ),
    scenario_name: str | None = typer.Option(
        None,
        "--scenario-name",
        "-n",
        help="Scenario to check when the file defines several.",
    ),
) -> None:
    """Load and statically check a scenario without sending any request."""
    try:
        scenario = load_scenario(scenario_file.resolve(), name=scenario_name)
        scenario.validate()
    except ConfigError as exc:
        console.print(f"[red]Invalid scenario:[/red] {escape(str(exc))}")
        raise typer.Exit(code=EXIT_CONFIG_ERROR) from exc

    table = Table(title=escape(scenario.name), show_header=True, header_style="bold cyan")
    table.add_column("#", justify="right")
    table.add_column("Step")
    table.add_column("Request")
    table.add_column("Checks")
    table.add_column("Extracts")
    for index, step in enumerate(scenario.steps, start=1):
        checks = ", ".join(
            f"{label} (critical)" if label in step.critical_labels else label
            for label in step.checks
        )
        extracts = ", ".join(f"{rule.variable} <- {rule.path}" for rule in step.extract)
        table.add_row(
            str(index),
            escape(step.name),
            escape(f"{step.method} {step.path}"),
            escape(checks),
            escape(extracts),
        )
    console.print(table)
    console.print(f"[green]OK[/green] {scenario.describe_load()}")


def _version_callback(value: bool) -> None:
    if value:
        typer.echo(f"loadrace {__version__}")
        raise typer.Exit


@app.callback()
def main(
    version: bool = typer.Option(
        False,
        "--version",
        "-V",
        help="Show version and exit.",
        callback=_version_callback,
        is_eager=True,
    ),
) -> None:
    """LoadRace: scripted HTTP load and race-condition testing."""
