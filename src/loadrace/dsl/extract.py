"""Dotted-path extraction from JSON response bodies."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from loadrace._internal.errors import ExtractionError

if TYPE_CHECKING:
    from loadrace.dsl.http_client import HttpResult


def lookup_path(document: Any, path: str) -> Any:
    """Walk *document* along a dotted *path*.

    Segments address dict keys; purely numeric segments index into lists,
    so ``"data.items.0.id"`` reads ``document["data"]["items"][0]["id"]``.

    Raises:
        ExtractionError: If any segment is missing or the value is null.
    """
    current = document
    for segment in path.split("."):
        if isinstance(current, dict):
            if segment not in current:
                msg = f"Field {segment!r} missing at {path!r}"
                raise ExtractionError(msg)
            current = current[segment]
        elif isinstance(current, list) and segment.isdigit():
            index = int(segment)
            if index >= len(current):
                msg = f"Index {index} out of range at {path!r}"
                raise ExtractionError(msg)
            current = current[index]
        else:
            msg = f"Cannot descend into {type(current).__name__} at {path!r}"
            raise ExtractionError(msg)
    if current is None:
        msg = f"Field {path!r} is null"
        raise ExtractionError(msg)
    return current


def extract_value(result: HttpResult, path: str) -> str:
    """Extract a field from a JSON response as a session value.

    Args:
        result: The response to read.
        path: Dotted path into the JSON body.

    Returns:
        The field value. Strings are returned as-is; other scalars are
        converted with ``str()``.

    Raises:
        ExtractionError: If the body is not JSON, the field is absent or
            null, or the field is a JSON object/array.
    """
    try:
        document = result.json()
    except ValueError as exc:
        msg = f"Response body is not valid JSON: {exc}"
        raise ExtractionError(msg) from None

    value = lookup_path(document, path)
    if isinstance(value, dict | list):
        msg = f"Field {path!r} is not a scalar"
        raise ExtractionError(msg)
    if isinstance(value, bool):
        return "true" if value else "false"
    return value if isinstance(value, str) else str(value)
