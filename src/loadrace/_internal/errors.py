"""Custom exception hierarchy for LoadRace."""

from __future__ import annotations


class LoadRaceError(Exception):
    """Base exception for all LoadRace errors.

    All custom exceptions in the LoadRace package inherit from this class,
    so callers can catch any LoadRace-specific error with a single except
    clause.
    """


class ConfigError(LoadRaceError):
    """Raised when configuration is invalid or missing.

    Fatal at startup: the run never launches virtual users once this is
    raised.

    Examples:
        - An environment variable has an invalid value.
        - A ramp profile contains a negative duration or target.
        - Both ``stages`` and ``vus``/``iterations`` were given.
    """


class ScenarioError(ConfigError):
    """Raised when a scenario definition is invalid.

    Examples:
        - A scenario has no steps.
        - A step template references a variable nothing ever defines.
        - A scenario file cannot be loaded or contains no scenario.
    """


class EngineError(LoadRaceError):
    """Raised when a test session fails for reasons outside any one user."""


class ExtractionError(LoadRaceError):
    """Raised when a value cannot be extracted from a response body.

    The script engine catches this, records an extraction failure and
    keeps the previous session value. It never escapes an iteration.
    """
