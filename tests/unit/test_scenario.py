"""Tests for steps, scenario validation and the scenario loader."""

from __future__ import annotations

import uuid
from typing import TYPE_CHECKING

import pytest

from loadrace._internal.errors import ConfigError, ScenarioError
from loadrace.dsl.checks import status_is
from loadrace.dsl.loader import load_scenario
from loadrace.dsl.scenario import Extract, ScenarioDefinition, Step, fresh_uuid
from loadrace.patterns.constant import ConstantPattern
from loadrace.patterns.stages import LoadStage, StagedPattern

if TYPE_CHECKING:
    from pathlib import Path


def _scenario(**overrides: object) -> ScenarioDefinition:
    fields: dict[str, object] = {
        "name": "Checkout",
        "base_url": "http://localhost",
        "steps": [Step(name="Home", path="/")],
        "vus": 2,
        "iterations": 2,
    }
    fields.update(overrides)
    return ScenarioDefinition(**fields)  # type: ignore[arg-type]


# =========================================================================
# Extract / Step
# =========================================================================


class TestExtract:
    def test_defaults(self):
        rule = Extract("session_id", "data.sessionId")
        assert rule.only_if_passed is True

    @pytest.mark.parametrize("variable", ["", "1abc", "session-id"])
    def test_variable_must_be_identifier(self, variable: str):
        with pytest.raises(ScenarioError, match="identifier"):
            Extract(variable, "data.sessionId")

    @pytest.mark.parametrize("path", ["", "data..id", ".data", "data."])
    def test_malformed_path(self, path: str):
        with pytest.raises(ScenarioError, match="malformed"):
            Extract("x", path)


class TestStep:
    def test_method_upper_cased(self):
        assert Step(name="s", method="post").method == "POST"

    def test_unknown_method(self):
        with pytest.raises(ScenarioError, match="unsupported method"):
            Step(name="s", method="FETCH")

    def test_single_extract_normalised_to_tuple(self):
        rule = Extract("a", "b")
        assert Step(name="s", extract=rule).extract == (rule,)  # type: ignore[arg-type]
        assert Step(name="s", extract=[rule]).extract == (rule,)  # type: ignore[arg-type]

    def test_critical_label_must_exist(self):
        with pytest.raises(ScenarioError, match="critical check"):
            Step(name="s", checks={"ok": status_is(200)}, critical="missing")

    def test_critical_true_needs_checks(self):
        with pytest.raises(ScenarioError, match="at least one check"):
            Step(name="s", critical=True)

    def test_critical_labels(self):
        checks = {"a": status_is(200), "b": status_is(201)}
        assert Step(name="s", checks=checks).critical_labels == ()
        assert Step(name="s", checks=checks, critical="b").critical_labels == ("b",)
        assert Step(name="s", checks=checks, critical=True).critical_labels == ("a", "b")

    def test_negative_delay(self):
        with pytest.raises(ScenarioError, match="delay_after"):
            Step(name="s", delay_after=-0.1)

    def test_referenced_variables(self):
        step = Step(
            name="s",
            path="/carts/${cart_id}",
            body={"variantId": "${variant}"},
            headers={"X-Trace": "${vu}-${iteration}"},
        )
        assert step.referenced_variables() == {"cart_id", "variant", "vu", "iteration"}

    def test_frozen(self):
        step = Step(name="s")
        with pytest.raises(AttributeError):
            step.path = "/other"  # type: ignore[misc]


# =========================================================================
# ScenarioDefinition
# =========================================================================


class TestScenarioModes:
    def test_stages_mode(self):
        scenario = _scenario(vus=None, iterations=None, stages=[("10s", 5), ("10s", 0)])
        assert scenario.mode == "stages"
        assert all(isinstance(stage, LoadStage) for stage in scenario.stages)
        assert isinstance(scenario.build_pattern(), StagedPattern)

    def test_fixed_mode(self):
        scenario = _scenario(vus=50, iterations=50)
        assert scenario.mode == "fixed"
        assert scenario.build_pattern() is None
        assert scenario.describe_load() == "Fixed: 50 users sharing 50 iterations"

    def test_constant_mode(self):
        scenario = _scenario(vus=5, iterations=None, duration="30s")
        assert scenario.mode == "constant"
        assert scenario.duration == 30.0
        pattern = scenario.build_pattern()
        assert isinstance(pattern, ConstantPattern)
        assert pattern.peak_users == 5

    def test_timeout_parsed(self):
        assert _scenario(timeout="2m").timeout == 120.0

    def test_default_headers(self):
        assert _scenario().default_headers == {"Content-Type": "application/json"}


class TestScenarioValidation:
    def test_valid_scenario_passes(self):
        _scenario().validate()

    def test_no_steps(self):
        with pytest.raises(ScenarioError, match="no steps"):
            _scenario(steps=[]).validate()

    def test_duplicate_step_names(self):
        steps = [Step(name="Same"), Step(name="Same")]
        with pytest.raises(ScenarioError, match="duplicate step names"):
            _scenario(steps=steps).validate()

    def test_undefined_variable(self):
        steps = [Step(name="Cart", path="/carts/${cart_id}")]
        with pytest.raises(ScenarioError, match="cart_id"):
            _scenario(steps=steps).validate()

    def test_variable_used_before_extraction(self):
        steps = [
            Step(name="Order", path="/orders/${cart_id}"),
            Step(name="Cart", extract=[Extract("cart_id", "data.id")]),
        ]
        with pytest.raises(ScenarioError, match="earlier step"):
            _scenario(steps=steps).validate()

    def test_variable_extracted_by_earlier_step(self):
        steps = [
            Step(name="Cart", extract=[Extract("cart_id", "data.id")]),
            Step(name="Order", path="/orders/${cart_id}"),
        ]
        _scenario(steps=steps).validate()

    def test_builtins_always_defined(self):
        steps = [Step(name="Me", path="/users/${vu}/${iteration}")]
        _scenario(steps=steps).validate()

    def test_declared_variable(self):
        steps = [Step(name="Variant", body={"variantId": "${variant_id}"})]
        _scenario(steps=steps, variables={"variant_id": "v-1"}).validate()

    def test_session_variable_must_be_defined(self):
        with pytest.raises(ScenarioError, match="Session variable"):
            _scenario(session_variable="session_id").validate()

    def test_session_variable_may_be_extracted(self):
        steps = [Step(name="Cart", extract=[Extract("session_id", "data.sessionId")])]
        _scenario(steps=steps, session_variable="session_id").validate()

    def test_bad_variable_name(self):
        with pytest.raises(ScenarioError, match="identifier"):
            _scenario(variables={"not-valid": "x"}).validate()

    def test_negative_think_time(self):
        with pytest.raises(ConfigError, match="think_time"):
            _scenario(think_time=-1.0).validate()

    @pytest.mark.parametrize(
        ("overrides", "match"),
        [
            ({"vus": None, "iterations": None}, "vus must be >= 1"),
            ({"vus": 0}, "vus must be >= 1"),
            ({"vus": 2, "iterations": None}, "either iterations or duration"),
            ({"iterations": 2, "duration": 10}, "mutually exclusive"),
            ({"iterations": 0}, "iterations must be >= 1"),
            ({"stages": [(10, 5)]}, "cannot be combined"),
            ({"timeout": 0}, "timeout must be positive"),
        ],
    )
    def test_invalid_load_shape(self, overrides: dict[str, object], match: str):
        with pytest.raises(ConfigError, match=match):
            _scenario(**overrides).validate()

    def test_invalid_stage_profile(self):
        scenario = _scenario(vus=None, iterations=None, stages=[(0, 5)])
        with pytest.raises(ConfigError, match="total stage duration"):
            scenario.validate()


class TestScenarioHelpers:
    def test_with_load_stages_replaces_shape(self):
        scenario = _scenario().with_load(stages=[LoadStage(5, 2)])
        assert scenario.mode == "stages"
        assert scenario.vus is None
        assert scenario.iterations is None

    def test_with_load_vus_keeps_budget(self):
        scenario = _scenario(vus=2, iterations=10).with_load(vus=5)
        assert (scenario.vus, scenario.iterations) == (5, 10)

    def test_with_load_duration_switches_to_constant(self):
        scenario = _scenario().with_load(duration="5s")
        assert scenario.mode == "constant"
        assert scenario.iterations is None
        assert scenario.duration == 5.0

    def test_with_load_nothing_returns_same(self):
        scenario = _scenario()
        assert scenario.with_load() is scenario

    def test_initial_variables_resolves_factories(self):
        scenario = _scenario(
            variables={"session_id": fresh_uuid, "variant": "v-1", "tag": lambda vu: f"vu{vu}"}
        )
        first = scenario.initial_variables(1)
        second = scenario.initial_variables(2)
        assert first["variant"] == second["variant"] == "v-1"
        assert first["tag"] == "vu1"
        assert second["tag"] == "vu2"
        assert first["session_id"] != second["session_id"]
        uuid.UUID(first["session_id"])


# =========================================================================
# Loader
# =========================================================================

_SCENARIO_FILE = '''\
from loadrace import ScenarioDefinition, Step

browse = ScenarioDefinition(
    name="Browse",
    base_url="http://localhost",
    vus=1,
    iterations=1,
    steps=[Step(name="Home")],
)

checkout = ScenarioDefinition(
    name="Checkout",
    base_url="http://localhost",
    vus=1,
    iterations=1,
    steps=[Step(name="Cart", method="POST", path="/cart")],
)
'''


class TestLoadScenario:
    def test_loads_first_definition(self, tmp_path: Path):
        path = tmp_path / "scenarios.py"
        path.write_text(_SCENARIO_FILE)
        assert load_scenario(path).name == "Browse"

    def test_selects_by_name(self, tmp_path: Path):
        path = tmp_path / "scenarios.py"
        path.write_text(_SCENARIO_FILE)
        scenario = load_scenario(path, name="Checkout")
        assert scenario.steps[0].method == "POST"

    def test_selects_by_variable_name(self, tmp_path: Path):
        path = tmp_path / "scenarios.py"
        path.write_text(_SCENARIO_FILE)
        assert load_scenario(path, name="checkout").name == "Checkout"

    def test_unknown_name(self, tmp_path: Path):
        path = tmp_path / "scenarios.py"
        path.write_text(_SCENARIO_FILE)
        with pytest.raises(ScenarioError, match="available"):
            load_scenario(path, name="Nope")

    def test_missing_file(self, tmp_path: Path):
        with pytest.raises(ScenarioError, match="not found"):
            load_scenario(tmp_path / "absent.py")

    def test_wrong_suffix(self, tmp_path: Path):
        path = tmp_path / "scenario.txt"
        path.write_text("x = 1\n")
        with pytest.raises(ScenarioError, match=r"\.py"):
            load_scenario(path)

    def test_import_error(self, tmp_path: Path):
        path = tmp_path / "broken.py"
        path.write_text("import definitely_not_a_module_xyz\n")
        with pytest.raises(ScenarioError, match="Failed to import"):
            load_scenario(path)

    def test_no_definition(self, tmp_path: Path):
        path = tmp_path / "empty.py"
        path.write_text("VALUE = 1\n")
        with pytest.raises(ScenarioError, match="No ScenarioDefinition"):
            load_scenario(path)

    def test_invalid_step_is_scenario_error(self, tmp_path: Path):
        path = tmp_path / "bad_step.py"
        path.write_text(
            "from loadrace import Step\n"
            "step = Step(name='x', method='TELEPORT')\n"
        )
        with pytest.raises(ScenarioError, match="Failed to import"):
            load_scenario(path)
