"""Logging setup for LoadRace.

Everything logs under the ``loadrace`` namespace. Console output goes
through Rich so log lines interleave cleanly with the live run table;
``json_format=True`` switches to one JSON object per line for log
shippers. Per-user context (``vu``, ``step``, ``status``) travels as
``extra`` fields and is kept as keys in JSON mode.
"""

from __future__ import annotations

import json
import logging
from datetime import UTC, datetime

from rich.console import Console
from rich.logging import RichHandler

ROOT_LOGGER = "loadrace"

_STANDARD_ATTRS = frozenset(
    vars(logging.LogRecord("", 0, "", 0, "", None, None)).keys() | {"message", "asctime"}
)


class JsonLineFormatter(logging.Formatter):
    """Render a record as a single JSON object."""

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, object] = {
            "ts": datetime.fromtimestamp(record.created, tz=UTC).isoformat(),
            "level": record.levelname.lower(),
            "logger": record.name,
            "msg": record.getMessage(),
        }
        entry.update(
            (key, value)
            for key, value in vars(record).items()
            if key not in _STANDARD_ATTRS and not key.startswith("_")
        )
        if record.exc_info and record.exc_info[1] is not None:
            entry["exc"] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str)


def _build_handler(json_format: bool, console: Console | None) -> logging.Handler:
    if json_format:
        handler: logging.Handler = logging.StreamHandler()
        handler.setFormatter(JsonLineFormatter())
        return handler
    return RichHandler(
        console=console or Console(stderr=True),
        show_path=False,
        log_time_format="[%X]",
        markup=False,
    )


def setup_logging(
    level: int = logging.INFO,
    *,
    json_format: bool = False,
    console: Console | None = None,
) -> logging.Logger:
    """Configure the ``loadrace`` logger and return it.

    Calling it again replaces the handler installed by the previous call,
    so a CLI run can switch between Rich and JSON output.

    Args:
        level: Threshold for the namespace, e.g. ``logging.DEBUG``.
        json_format: Emit JSON lines on stderr instead of Rich output.
        console: Rich console to log through. Defaults to a stderr console.

    Returns:
        The ``loadrace`` logger.
    """
    logger = logging.getLogger(ROOT_LOGGER)
    logger.setLevel(level)

    for existing in [h for h in logger.handlers if getattr(h, "_loadrace_owned", False)]:
        logger.removeHandler(existing)

    handler = _build_handler(json_format, console)
    handler.setLevel(level)
    handler._loadrace_owned = True  # type: ignore[attr-defined]
    logger.addHandler(handler)
    logger.propagate = False
    return logger


def get_logger(name: str) -> logging.Logger:
    """Return the ``loadrace.<name>`` child logger, e.g. ``get_logger("engine.script")``."""
    return logging.getLogger(f"{ROOT_LOGGER}.{name}")
