"""Per virtual-user session variables."""

from __future__ import annotations

from types import MappingProxyType
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Mapping


class SessionContext:
    """Variables carried across the steps of one virtual user.

    Owned by exactly one virtual user and only touched from that user's
    task, so it needs no locking. Values are always strings.

    Built-in variables:
        vu: The owning user's 1-based id.
        iteration: The current iteration number, 1-based per user.
    """

    def __init__(self, user_id: int, variables: Mapping[str, str] | None = None) -> None:
        self.user_id = user_id
        self._values: dict[str, str] = {"vu": str(user_id), "iteration": "0"}
        self._values.update(variables or {})

    def begin_iteration(self, number: int) -> None:
        """Mark the start of iteration *number*."""
        self._values["iteration"] = str(number)

    def get(self, name: str, default: str | None = None) -> str | None:
        return self._values.get(name, default)

    def set(self, name: str, value: str) -> None:
        self._values[name] = value

    def __getitem__(self, name: str) -> str:
        return self._values[name]

    def __contains__(self, name: object) -> bool:
        return name in self._values

    @property
    def variables(self) -> Mapping[str, str]:
        """Read-only live view of the current values."""
        return MappingProxyType(self._values)

    def __repr__(self) -> str:
        return f"SessionContext(user_id={self.user_id}, variables={self._values!r})"
