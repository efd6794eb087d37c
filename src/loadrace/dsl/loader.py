"""Import scenario files and pick the ScenarioDefinition to run."""

from __future__ import annotations

import importlib.util
import sys
from pathlib import Path

from loadrace._internal.errors import ScenarioError
from loadrace.dsl.scenario import ScenarioDefinition


def _import_file(path: Path) -> dict[str, object]:
    module_name = f"loadrace_scenario_{path.stem}"
    spec = importlib.util.spec_from_file_location(module_name, path)
    if spec is None or spec.loader is None:
        msg = f"Cannot import scenario file: {path}"
        raise ScenarioError(msg)

    module = importlib.util.module_from_spec(spec)
    # Dataclasses defined in the file look their module up in sys.modules.
    sys.modules[module_name] = module
    try:
        spec.loader.exec_module(module)
    except Exception as exc:
        sys.modules.pop(module_name, None)
        msg = f"Failed to import scenario file {path}: {exc}"
        raise ScenarioError(msg) from exc
    return vars(module)


def load_scenario(file_path: str | Path, name: str | None = None) -> ScenarioDefinition:
    """Load a scenario from a Python file.

    Every module-level ``ScenarioDefinition`` is a candidate. *name* may be
    either the scenario's ``name`` or the variable it is bound to.

    Args:
        file_path: Path to the ``.py`` scenario file.
        name: Scenario to pick when the file defines several. Defaults to the
            first one defined.

    Returns:
        The selected ``ScenarioDefinition``.

    Raises:
        ScenarioError: If the file is missing, not a ``.py`` file, fails to
            import, defines no scenario, or has none matching *name*.
    """
    path = Path(file_path)
    if not path.is_file():
        msg = f"Scenario file not found: {path}"
        raise ScenarioError(msg)
    if path.suffix != ".py":
        msg = f"Scenario file must be a .py file, got: {path}"
        raise ScenarioError(msg)

    found = {
        attr: obj
        for attr, obj in _import_file(path).items()
        if isinstance(obj, ScenarioDefinition)
    }
    if not found:
        msg = f"No ScenarioDefinition found in {path}"
        raise ScenarioError(msg)

    if name is None:
        return next(iter(found.values()))
    if name in found:
        return found[name]
    for scenario in found.values():
        if scenario.name == name:
            return scenario

    available = ", ".join(sorted({repr(s.name) for s in found.values()}))
    msg = f"No scenario named {name!r} in {path}; available: {available}"
    raise ScenarioError(msg)
