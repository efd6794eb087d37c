"""``loadrace init`` — scaffold a new scenario file from a template."""

from __future__ import annotations

from pathlib import Path
from string import Template

import typer
from rich.console import Console

console = Console(stderr=True)

_SCENARIO_TEMPLATE = Template('''\
"""Load test scenario — $name.

Run with:
    loadrace run $filename
    loadrace run $filename --vus 10 --duration 30s
"""

from __future__ import annotations

from loadrace import Extract, ScenarioDefinition, Step, fresh_uuid, status_is

$var_name = ScenarioDefinition(
    name="$name",
    base_url="http://localhost:8080",
    variables={"session_id": fresh_uuid},
    session_variable="session_id",
    stages=[("10s", 5), ("20s", 5), ("10s", 0)],
    think_time=1.0,
    steps=[
        Step(
            name="Create session",
            method="POST",
            path="/sessions",
            body={"user": "vu-$${vu}"},
            checks={"Session created": status_is(200, 201)},
            critical="Session created",
            extract=[Extract("session_id", "data.sessionId")],
        ),
        Step(
            name="Fetch session",
            path="/sessions/$${session_id}",
            checks={"Session status 200": status_is(200)},
        ),
    ],
)
''')


def init_cmd(
    name: str = typer.Argument(
        "my_scenario",
        help="Name for the scenario (used as filename and variable name).",
    ),
) -> None:
    """Scaffold a new scenario file in the current directory."""
    safe_name = "".join(c if c.isalnum() or c == "_" else "_" for c in name).lower()
    if not safe_name or safe_name[0].isdigit():
        safe_name = "scenario_" + safe_name

    filename = f"{safe_name}.py"
    display_name = name.replace("_", " ").replace("-", " ").title()

    target = Path.cwd() / filename
    if target.exists():
        console.print(f"[red]File already exists:[/red] {filename}")
        raise typer.Exit(code=1)

    content = _SCENARIO_TEMPLATE.substitute(
        name=display_name,
        filename=filename,
        var_name=safe_name,
    )
    target.write_text(content)
    console.print(f"[green]Created scenario:[/green] {filename}")
