"""Configuration loading for LoadRace."""

from __future__ import annotations

import os
from dataclasses import dataclass

from loadrace._internal.errors import ConfigError

DEFAULT_SESSION_HEADER = "X-Session-Id"


@dataclass(frozen=True)
class LoadRaceConfig:
    """Global LoadRace configuration.

    Scenario files and CLI options take precedence; these values fill in
    whatever they leave unset.

    Attributes:
        default_base_url: Base URL used when a scenario does not set one.
        session_header: Header carrying the session identifier.
        connection_pool_size: Maximum simultaneous connections for the run.
        request_timeout: Per-request timeout in seconds.
        tick_interval: Seconds between scheduler ticks.
    """

    default_base_url: str = ""
    session_header: str = DEFAULT_SESSION_HEADER
    connection_pool_size: int = 100
    request_timeout: float = 30.0
    tick_interval: float = 1.0


def _read_float(name: str, default: str) -> float:
    raw = os.environ.get(name, default)
    try:
        value = float(raw)
    except ValueError:
        msg = f"{name} must be a number, got: {raw!r}"
        raise ConfigError(msg) from None
    if value <= 0:
        msg = f"{name} must be positive, got: {value}"
        raise ConfigError(msg)
    return value


def load_config() -> LoadRaceConfig:
    """Load configuration from environment variables with defaults.

    Environment variables:
        LOADRACE_BASE_URL: Default base URL.
        LOADRACE_SESSION_HEADER: Session header name (default: X-Session-Id).
        LOADRACE_POOL_SIZE: Connection pool size (default: 100).
        LOADRACE_TIMEOUT: Request timeout in seconds (default: 30.0).
        LOADRACE_TICK_INTERVAL: Scheduler tick in seconds (default: 1.0).

    Returns:
        Populated LoadRaceConfig instance.

    Raises:
        ConfigError: If an environment variable has an invalid value.
    """
    pool_size_str = os.environ.get("LOADRACE_POOL_SIZE", "100")
    try:
        pool_size = int(pool_size_str)
    except ValueError:
        msg = f"LOADRACE_POOL_SIZE must be an integer, got: {pool_size_str!r}"
        raise ConfigError(msg) from None

    if pool_size < 1:
        msg = f"LOADRACE_POOL_SIZE must be >= 1, got: {pool_size}"
        raise ConfigError(msg)

    session_header = os.environ.get("LOADRACE_SESSION_HEADER", DEFAULT_SESSION_HEADER).strip()
    if not session_header:
        msg = "LOADRACE_SESSION_HEADER must not be empty"
        raise ConfigError(msg)

    return LoadRaceConfig(
        default_base_url=os.environ.get("LOADRACE_BASE_URL", ""),
        session_header=session_header,
        connection_pool_size=pool_size,
        request_timeout=_read_float("LOADRACE_TIMEOUT", "30.0"),
        tick_interval=_read_float("LOADRACE_TICK_INTERVAL", "1.0"),
    )
