"""Shared type aliases for LoadRace."""

from __future__ import annotations

from collections.abc import Callable
from typing import Any

# HTTP headers dictionary.
Headers = dict[str, str]

# JSON-compatible request or response body.
JsonBody = Any

# Per virtual-user variable factory, called with the 1-based user id.
VariableFactory = Callable[[int], str]
