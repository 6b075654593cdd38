"""Tests for SolverConfig validation and parsing."""

import dataclasses
import math

import pytest

from stepjax.analysis import SolverConfig
from stepjax.errors import ConfigurationError, StepjaxError


class TestDefaults:
    def test_default_values(self):
        config = SolverConfig()
        assert config.max_iterations == 20
        assert config.nonlinear_tolerance == 1e-6
        assert config.divergence_factor == 10.0
        assert config.error_on_failure is True
        assert config.cut_factor == 0.5
        assert config.min_dt == 1e-9
        assert config.max_timestep_cuts == 20
        assert config.timestep_selector == "fixed"
        assert config.tracked_quantities == ()
        assert config.output_ministeps is False
        assert config.max_wall_time is None

    def test_immutable(self):
        config = SolverConfig()
        with pytest.raises(dataclasses.FrozenInstanceError):
            config.max_iterations = 3

    def test_hashable(self):
        config = SolverConfig(tracked_quantities=["voltage"])
        assert config.tracked_quantities == ("voltage",)
        assert hash(config) == hash(SolverConfig(tracked_quantities=("voltage",)))


class TestValidation:
    """Invalid values raise ConfigurationError naming the field."""

    @pytest.mark.parametrize(
        "name,value",
        [
            ("max_iterations", 0),
            ("nonlinear_tolerance", 0.0),
            ("nonlinear_tolerance", math.nan),
            ("divergence_factor", 1.0),
            ("cut_factor", 1.0),
            ("cut_factor", 0.0),
            ("min_dt", -1.0),
            ("max_timestep_cuts", -1),
            ("timestep_selector", "lte"),
            ("target_change_abs", 0.0),
            ("target_change_rel", -0.1),
            ("max_growth", 0.9),
            ("min_shrink", 1.5),
            ("selector_min_dt", -1.0),
            ("max_wall_time", 0.0),
            ("progress_interval", -1),
        ],
    )
    def test_invalid_value(self, name, value):
        with pytest.raises(ConfigurationError) as exc_info:
            SolverConfig(**{name: value})
        assert exc_info.value.field == name
        assert str(exc_info.value).startswith(f"{name}: ")

    def test_selector_bounds_ordered(self):
        with pytest.raises(ConfigurationError) as exc_info:
            SolverConfig(selector_min_dt=10.0, selector_max_dt=1.0)
        assert exc_info.value.field == "selector_max_dt"

    def test_change_selector_needs_target(self):
        with pytest.raises(ConfigurationError) as exc_info:
            SolverConfig(timestep_selector="change", tracked_quantities=("voltage",))
        assert exc_info.value.field == "target_change_abs"

    def test_change_selector_needs_quantities(self):
        with pytest.raises(ConfigurationError) as exc_info:
            SolverConfig(timestep_selector="change", target_change_abs=0.01)
        assert exc_info.value.field == "tracked_quantities"

    def test_error_hierarchy(self):
        with pytest.raises(StepjaxError):
            SolverConfig(max_iterations=0)
        with pytest.raises(ValueError):
            SolverConfig(max_iterations=0)


class TestReplace:
    def test_replace_returns_new_config(self):
        base = SolverConfig()
        strict = base.replace(nonlinear_tolerance=1e-9)
        assert strict.nonlinear_tolerance == 1e-9
        assert base.nonlinear_tolerance == 1e-6

    def test_replace_validates(self):
        with pytest.raises(ConfigurationError):
            SolverConfig().replace(cut_factor=2.0)

    def test_replace_unknown_option(self):
        with pytest.raises(ConfigurationError) as exc_info:
            SolverConfig().replace(tolerance=1e-3)
        assert exc_info.value.field == "tolerance"


class TestFromDict:
    """String parsing for key=value options."""

    def test_parses_strings(self):
        config = SolverConfig.from_dict(
            {
                "max_iterations": "40",
                "nonlinear_tolerance": "1e-8",
                "error_on_failure": "false",
                "output_ministeps": "yes",
                "timestep_selector": "change",
                "target_change_abs": "0.02",
                "tracked_quantities": "voltage, soc",
                "max_wall_time": "none",
            }
        )
        assert config.max_iterations == 40
        assert config.nonlinear_tolerance == 1e-8
        assert config.error_on_failure is False
        assert config.output_ministeps is True
        assert config.timestep_selector == "change"
        assert config.target_change_abs == 0.02
        assert config.tracked_quantities == ("voltage", "soc")
        assert config.max_wall_time is None

    def test_accepts_native_values(self):
        config = SolverConfig.from_dict({"max_timestep_cuts": 3, "min_dt": 1e-3})
        assert config.max_timestep_cuts == 3
        assert config.min_dt == 1e-3

    def test_unknown_option(self):
        with pytest.raises(ConfigurationError) as exc_info:
            SolverConfig.from_dict({"bogus": "1"})
        assert exc_info.value.field == "bogus"

    def test_unparseable_value(self):
        with pytest.raises(ConfigurationError) as exc_info:
            SolverConfig.from_dict({"max_iterations": "many"})
        assert exc_info.value.field == "max_iterations"

    def test_update_keeps_other_values(self):
        config = SolverConfig(max_iterations=7).update({"cut_factor": "0.25"})
        assert config.max_iterations == 7
        assert config.cut_factor == 0.25

    def test_to_dict_round_trip(self):
        config = SolverConfig(
            timestep_selector="change", target_change_rel=0.05, tracked_quantities=("v",)
        )
        data = config.to_dict()
        assert data["tracked_quantities"] == ["v"]
        assert SolverConfig.from_dict(data) == config
