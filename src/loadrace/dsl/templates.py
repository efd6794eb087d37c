"""``${var}`` template rendering for step paths, headers and JSON bodies.

Templates use :class:`string.Template` syntax. Placeholders may appear
anywhere inside string values, at any depth of a JSON body; dict keys are
not templated. Session variables are always strings, so a rendered value
is a string wherever a placeholder appeared. ``$$`` escapes a literal
dollar sign.
"""

from __future__ import annotations

from string import Template
from typing import TYPE_CHECKING, Any

from loadrace._internal.errors import ScenarioError

if TYPE_CHECKING:
    from collections.abc import Mapping


def template_variables(template: Any) -> set[str]:
    """Return every variable name referenced by *template*.

    Args:
        template: A string, or a JSON-like structure of dicts, lists and
            scalars.

    Returns:
        The set of placeholder identifiers.

    Raises:
        ScenarioError: If a string contains a malformed placeholder.
    """
    if isinstance(template, str):
        tpl = Template(template)
        if not tpl.is_valid():
            msg = f"Malformed placeholder in template: {template!r}"
            raise ScenarioError(msg)
        return set(tpl.get_identifiers())
    if isinstance(template, dict):
        names: set[str] = set()
        for value in template.values():
            names |= template_variables(value)
        return names
    if isinstance(template, list | tuple):
        names = set()
        for item in template:
            names |= template_variables(item)
        return names
    return set()


def render(template: Any, variables: Mapping[str, str]) -> Any:
    """Substitute *variables* into *template*.

    Args:
        template: A string, or a JSON-like structure of dicts, lists and
            scalars. Non-string scalars are returned unchanged.
        variables: Current session variables.

    Returns:
        A new object with every placeholder substituted.

    Raises:
        ScenarioError: If a referenced variable is undefined.
    """
    if isinstance(template, str):
        try:
            return Template(template).substitute(variables)
        except KeyError as exc:
            msg = f"Undefined template variable {exc.args[0]!r} in {template!r}"
            raise ScenarioError(msg) from None
        except ValueError as exc:
            msg = f"Malformed placeholder in template {template!r}: {exc}"
            raise ScenarioError(msg) from None
    if isinstance(template, dict):
        return {key: render(value, variables) for key, value in template.items()}
    if isinstance(template, list | tuple):
        return [render(item, variables) for item in template]
    return template
