"""Typed scenario scripts: steps, extraction rules and the scenario itself.

A scenario is an ordered list of :class:`Step` objects plus the load shape
it runs under. Steps are immutable; the only per-user state is the session
context the engine creates for each virtual user. Because every template
and extraction rule is declared up front, :meth:`ScenarioDefinition.validate`
can reject undefined variables before a single user starts.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field, replace
from typing import TYPE_CHECKING

from loadrace._internal.errors import ConfigError, ScenarioError
from loadrace.dsl.templates import template_variables
from loadrace.patterns.constant import ConstantPattern
from loadrace.patterns.stages import LoadStage, StagedPattern, parse_duration

if TYPE_CHECKING:
    from loadrace._internal.types import JsonBody, VariableFactory
    from loadrace.dsl.checks import Predicate
    from loadrace.metrics.thresholds import Threshold
    from loadrace.patterns.base import LoadPattern

# Variables every session context defines.
BUILTIN_VARIABLES = frozenset({"vu", "iteration"})

_METHODS = frozenset({"GET", "POST", "PUT", "PATCH", "DELETE", "HEAD", "OPTIONS"})


def fresh_uuid(user_id: int) -> str:  # noqa: ARG001
    """Variable factory returning a new random UUID for each virtual user."""
    return str(uuid.uuid4())


@dataclass(frozen=True)
class Extract:
    """Copy a response field into a session variable.

    Attributes:
        variable: Session variable to overwrite.
        path: Dotted path into the JSON response body (``"data.sessionId"``).
        only_if_passed: Skip extraction when any of the step's checks
            failed.
    """

    variable: str
    path: str
    only_if_passed: bool = True

    def __post_init__(self) -> None:
        if not self.variable.isidentifier():
            msg = f"Extract variable must be an identifier, got {self.variable!r}"
            raise ScenarioError(msg)
        if not self.path or any(not part for part in self.path.split(".")):
            msg = f"Extract path is malformed: {self.path!r}"
            raise ScenarioError(msg)


@dataclass(frozen=True)
class Step:
    """One request in a scenario script.

    Attributes:
        name: Step name, used as the metric grouping key and in logs.
        method: HTTP method.
        path: Path template appended to the scenario base URL.
        body: Optional JSON body template.
        headers: Header templates layered over the scenario headers.
        checks: Mapping of check label to predicate.
        critical: Check label whose failure aborts the rest of the
            iteration. ``True`` makes every check critical.
        extract: Extraction rules applied after the checks.
        delay_after: Seconds to pause before the next step. Used to widen
            the window in which concurrent users overlap.
    """

    name: str
    method: str = "GET"
    path: str = "/"
    body: JsonBody = None
    headers: dict[str, str] = field(default_factory=dict)
    checks: dict[str, Predicate] = field(default_factory=dict)
    critical: str | bool = False
    extract: tuple[Extract, ...] = ()
    delay_after: float = 0.0

    def __post_init__(self) -> None:
        method = self.method.upper()
        if method not in _METHODS:
            msg = f"Step {self.name!r}: unsupported method {self.method!r}"
            raise ScenarioError(msg)
        object.__setattr__(self, "method", method)

        rules = (self.extract,) if isinstance(self.extract, Extract) else tuple(self.extract)
        object.__setattr__(self, "extract", rules)

        if isinstance(self.critical, str) and self.critical not in self.checks:
            msg = f"Step {self.name!r}: critical check {self.critical!r} is not defined"
            raise ScenarioError(msg)
        if self.critical is True and not self.checks:
            msg = f"Step {self.name!r}: critical=True needs at least one check"
            raise ScenarioError(msg)
        if self.delay_after < 0:
            msg = f"Step {self.name!r}: delay_after must be non-negative"
            raise ScenarioError(msg)

    @property
    def critical_labels(self) -> tuple[str, ...]:
        """Labels whose failure aborts the iteration."""
        if self.critical is True:
            return tuple(self.checks)
        if isinstance(self.critical, str):
            return (self.critical,)
        return ()

    def referenced_variables(self) -> set[str]:
        """Every variable the step's templates reference."""
        return (
            template_variables(self.path)
            | template_variables(self.body)
            | template_variables(self.headers)
        )


@dataclass
class ScenarioDefinition:
    """Complete definition of a scripted load test.

    Exactly one load shape must be configured:

    - ``stages``: ramp profile; users loop iterations while active.
    - ``vus`` + ``iterations``: fixed mode; ``vus`` users share exactly
      ``iterations`` iterations, then the run ends.
    - ``vus`` + ``duration``: constant mode; ``vus`` users loop
      iterations for ``duration``.

    Attributes:
        name: Human-readable scenario name.
        steps: Ordered steps of one iteration.
        base_url: Base URL for all steps. Falls back to LOADRACE_BASE_URL.
        variables: Initial session variables; callables are per-user
            factories called with the user id (see :func:`fresh_uuid`).
        default_headers: Headers sent with every request.
        session_variable: Session variable sent in the session header on
            every request once it is defined.
        session_header: Session header name. Falls back to
            LOADRACE_SESSION_HEADER.
        stages: Ramp profile.
        vus: Virtual user count for fixed or constant mode.
        iterations: Total iterations for fixed mode.
        duration: Run length for constant mode.
        timeout: Global run deadline. No new iterations start after it.
        think_time: Pause after each iteration, in seconds.
        thresholds: Pass/fail conditions evaluated after the run.
    """

    name: str
    steps: list[Step]
    base_url: str = ""
    variables: dict[str, str | VariableFactory] = field(default_factory=dict)
    default_headers: dict[str, str] = field(
        default_factory=lambda: {"Content-Type": "application/json"}
    )
    session_variable: str | None = None
    session_header: str | None = None
    stages: list[LoadStage] = field(default_factory=list)
    vus: int | None = None
    iterations: int | None = None
    duration: float | str | None = None
    timeout: float | str | None = None
    think_time: float = 0.0
    thresholds: list[Threshold] = field(default_factory=list)

    def __post_init__(self) -> None:
        self.steps = list(self.steps)
        self.stages = [
            stage if isinstance(stage, LoadStage) else LoadStage(*stage) for stage in self.stages
        ]
        if self.duration is not None:
            self.duration = parse_duration(self.duration)
        if self.timeout is not None:
            self.timeout = parse_duration(self.timeout)

    @property
    def mode(self) -> str:
        """``"stages"``, ``"fixed"`` or ``"constant"``."""
        if self.stages:
            return "stages"
        if self.iterations is not None:
            return "fixed"
        return "constant"

    def build_pattern(self) -> LoadPattern | None:
        """Return the load shape for ramp/constant mode, None for fixed mode.

        Raises:
            ConfigError: If the load shape is invalid.
        """
        self._validate_load_shape()
        if self.mode == "stages":
            return StagedPattern(self.stages)
        if self.mode == "constant":
            return ConstantPattern(users=self.vus, duration=self.duration)  # type: ignore[arg-type]
        return None

    def validate(self) -> None:
        """Check the scenario statically, before any user starts.

        Raises:
            ScenarioError: If steps are missing, names collide or a template
                references a variable that is never defined before use.
            ConfigError: If the load shape is invalid.
        """
        if not self.steps:
            msg = f"Scenario {self.name!r} has no steps"
            raise ScenarioError(msg)

        names = [step.name for step in self.steps]
        duplicates = sorted({n for n in names if names.count(n) > 1})
        if duplicates:
            msg = f"Scenario {self.name!r} has duplicate step names: {duplicates}"
            raise ScenarioError(msg)

        if self.think_time < 0:
            msg = "think_time must be non-negative"
            raise ConfigError(msg)

        for var in self.variables:
            if not var.isidentifier():
                msg = f"Variable name must be an identifier, got {var!r}"
                raise ScenarioError(msg)

        defined = set(self.variables) | BUILTIN_VARIABLES
        extracted_anywhere = {rule.variable for step in self.steps for rule in step.extract}
        if self.session_variable is not None and self.session_variable not in (
            defined | extracted_anywhere
        ):
            msg = (
                f"Session variable {self.session_variable!r} is neither declared in "
                f"variables nor extracted by any step"
            )
            raise ScenarioError(msg)

        for step in self.steps:
            missing = step.referenced_variables() - defined
            if missing:
                msg = (
                    f"Step {step.name!r} references undefined variable(s) "
                    f"{sorted(missing)}; declare them in variables or extract them "
                    f"in an earlier step"
                )
                raise ScenarioError(msg)
            defined |= {rule.variable for rule in step.extract}

        self._validate_load_shape()

    def _validate_load_shape(self) -> None:
        if self.stages:
            if self.vus is not None or self.iterations is not None or self.duration is not None:
                msg = "stages cannot be combined with vus, iterations or duration"
                raise ConfigError(msg)
            StagedPattern(self.stages)
        else:
            if self.vus is None or self.vus < 1:
                msg = f"vus must be >= 1 when no stages are given, got {self.vus}"
                raise ConfigError(msg)
            if self.iterations is not None and self.duration is not None:
                msg = "iterations and duration are mutually exclusive"
                raise ConfigError(msg)
            if self.iterations is None and self.duration is None:
                msg = "vus needs either iterations or duration"
                raise ConfigError(msg)
            if self.iterations is not None and self.iterations < 1:
                msg = f"iterations must be >= 1, got {self.iterations}"
                raise ConfigError(msg)
            if self.duration is not None and self.duration <= 0:
                msg = f"duration must be positive, got {self.duration}"
                raise ConfigError(msg)
        if self.timeout is not None and self.timeout <= 0:  # type: ignore[operator]
            msg = f"timeout must be positive, got {self.timeout}"
            raise ConfigError(msg)

    def describe_load(self) -> str:
        """Human-readable description of the load shape."""
        if self.mode == "fixed":
            return f"Fixed: {self.vus} users sharing {self.iterations} iterations"
        pattern = self.build_pattern()
        return pattern.describe() if pattern is not None else self.mode

    def with_load(
        self,
        *,
        stages: list[LoadStage] | None = None,
        vus: int | None = None,
        iterations: int | None = None,
        duration: float | str | None = None,
    ) -> ScenarioDefinition:
        """Return a copy with the load shape overridden.

        Used by the CLI to override what the scenario file declares.
        ``stages`` replaces the whole shape. Otherwise ``vus`` replaces the
        user count, and ``iterations``/``duration`` replace the run budget
        (the scenario's own budget is kept when neither is given).
        """
        if stages:
            return replace(self, stages=list(stages), vus=None, iterations=None, duration=None)
        if vus is None and iterations is None and duration is None:
            return self
        if iterations is None and duration is None:
            iterations, duration = self.iterations, self.duration
        return replace(
            self,
            stages=[],
            vus=vus if vus is not None else self.vus,
            iterations=iterations,
            duration=duration,
        )

    def initial_variables(self, user_id: int) -> dict[str, str]:
        """Resolve :attr:`variables` for one virtual user."""
        resolved: dict[str, str] = {}
        for name, value in self.variables.items():
            resolved[name] = value(user_id) if callable(value) else str(value)
        return resolved
