"""Unit tests for time-step selection.

Tests the fixed selector, the state-change selector's growth/shrink
clipping and the selector factory.
"""

import math

import numpy as np
import pytest

from stepjax.analysis import (
    FixedTimestepSelector,
    SolverConfig,
    StateChangeTimestepSelector,
    TimestepContext,
    make_timestep_selector,
)
from stepjax.models import State


def _state(t, **quantities):
    return State(time=t, x=None, quantities=quantities)


def _observe(selector, old, new, dt=1.0):
    selector.record(_state(0.0, v=old), _state(dt, v=new), dt)


class TestFixedTimestepSelector:
    """Fixed selector follows the schedule."""

    def test_proposes_nominal(self):
        selector = FixedTimestepSelector()
        assert selector.propose(TimestepContext(nominal_dt=10.0, remaining=10.0)) == 10.0

    def test_clamped_to_remaining(self):
        selector = FixedTimestepSelector()
        ctx = TimestepContext(nominal_dt=10.0, remaining=4.0, previous_dt=5.0)
        assert selector.propose(ctx) == 4.0

    def test_cut(self):
        assert FixedTimestepSelector(cut_factor=0.25).cut(8.0) == 2.0

    def test_context_fields(self):
        # Cut handling lives in cut(); the context only describes the step window
        assert TimestepContext._fields == ("nominal_dt", "remaining", "previous_dt")

    def test_invalid_cut_factor(self):
        with pytest.raises(ValueError):
            FixedTimestepSelector(cut_factor=1.0)


class TestStateChangeTimestepSelector:
    """dt_new = dt_prev * clip(target / observed, min_shrink, max_growth)."""

    def test_first_proposal_is_nominal(self):
        selector = StateChangeTimestepSelector(["v"], target_change_abs=0.1)
        assert selector.propose(TimestepContext(nominal_dt=60.0, remaining=60.0)) == 60.0

    def test_first_proposal_uses_initial_dt(self):
        selector = StateChangeTimestepSelector(["v"], target_change_abs=0.1, initial_dt=5.0)
        assert selector.propose(TimestepContext(nominal_dt=60.0, remaining=60.0)) == 5.0

    def test_shrinks_toward_target(self):
        selector = StateChangeTimestepSelector(["v"], target_change_abs=0.1)
        _observe(selector, 4.0, 3.6)

        ctx = TimestepContext(nominal_dt=60.0, remaining=60.0, previous_dt=10.0)
        assert selector.propose(ctx) == pytest.approx(2.5)

    def test_growth_is_capped(self):
        selector = StateChangeTimestepSelector(["v"], target_change_abs=0.1, max_growth=2.0)
        _observe(selector, 4.0, 3.999)

        ctx = TimestepContext(nominal_dt=60.0, remaining=60.0, previous_dt=10.0)
        assert selector.propose(ctx) == pytest.approx(20.0)

    def test_no_change_grows_by_max_growth(self):
        selector = StateChangeTimestepSelector(["v"], target_change_abs=0.1, max_growth=1.5)
        _observe(selector, 4.0, 4.0)

        assert selector.growth_factor() == 1.5

    def test_shrink_is_floored(self):
        selector = StateChangeTimestepSelector(["v"], target_change_abs=0.1, min_shrink=0.2)
        _observe(selector, 4.0, 0.0)

        ctx = TimestepContext(nominal_dt=60.0, remaining=60.0, previous_dt=10.0)
        assert selector.propose(ctx) == pytest.approx(2.0)

    def test_clamped_to_min_and_max_dt(self):
        selector = StateChangeTimestepSelector(
            ["v"], target_change_abs=0.1, min_dt=3.0, max_dt=12.0
        )
        ctx = TimestepContext(nominal_dt=60.0, remaining=60.0, previous_dt=10.0)

        _observe(selector, 4.0, 4.0)
        assert selector.propose(ctx) == 12.0

        _observe(selector, 4.0, 3.0)
        assert selector.propose(ctx) == 3.0

    def test_never_past_remaining(self):
        selector = StateChangeTimestepSelector(["v"], target_change_abs=0.1, min_dt=30.0)
        _observe(selector, 4.0, 4.0)

        ctx = TimestepContext(nominal_dt=60.0, remaining=7.0, previous_dt=10.0)
        assert selector.propose(ctx) == 7.0

    def test_relative_target(self):
        selector = StateChangeTimestepSelector(["v"], target_change_rel=0.01)
        _observe(selector, 2.0, 1.9)

        assert selector.growth_factor() == pytest.approx(0.2)

    def test_relative_change_from_zero(self):
        selector = StateChangeTimestepSelector(["v"], target_change_rel=0.01, min_shrink=0.1)
        _observe(selector, 0.0, 0.5)

        assert selector.growth_factor() == 0.1

    def test_most_restrictive_target_wins(self):
        selector = StateChangeTimestepSelector(
            ["v"], target_change_abs=1.0, target_change_rel=0.01
        )
        _observe(selector, 2.0, 1.9)

        # abs: 1.0 / 0.1 -> capped at 2; rel: 0.01 / 0.05 = 0.2
        assert selector.growth_factor() == pytest.approx(0.2)

    def test_largest_change_over_quantities(self):
        selector = StateChangeTimestepSelector(["a", "b"], target_change_abs=0.1)
        selector.record(_state(0.0, a=1.0, b=1.0), _state(1.0, a=1.05, b=0.8), 1.0)

        assert selector.growth_factor() == pytest.approx(0.5)

    def test_unknown_quantity(self):
        selector = StateChangeTimestepSelector(["missing"], target_change_abs=0.1)
        with pytest.raises(KeyError):
            _observe(selector, 1.0, 2.0)

    def test_reset_forgets_history(self):
        selector = StateChangeTimestepSelector(["v"], target_change_abs=0.1)
        _observe(selector, 4.0, 3.0)
        selector.reset()

        ctx = TimestepContext(nominal_dt=60.0, remaining=60.0, previous_dt=10.0)
        assert selector.propose(ctx) == 60.0

    @pytest.mark.parametrize(
        "kwargs",
        [
            {},
            {"target_change_abs": -1.0},
            {"target_change_abs": 0.1, "max_growth": 0.5},
            {"target_change_abs": 0.1, "min_shrink": 0.0},
            {"target_change_abs": 0.1, "min_dt": 5.0, "max_dt": 1.0},
            {"target_change_abs": 0.1, "initial_dt": 0.0},
        ],
    )
    def test_invalid_arguments(self, kwargs):
        with pytest.raises(ValueError):
            StateChangeTimestepSelector(["v"], **kwargs)

    def test_requires_quantities(self):
        with pytest.raises(ValueError):
            StateChangeTimestepSelector([], target_change_abs=0.1)

    def test_proposals_stay_bounded(self):
        """Randomized check of the growth/shrink and min/max/remaining clamps."""
        rng = np.random.default_rng(42)
        max_growth, min_shrink, min_dt, max_dt = 2.0, 0.1, 1e-3, 50.0
        selector = StateChangeTimestepSelector(
            ["v"],
            target_change_abs=0.05,
            target_change_rel=0.02,
            max_growth=max_growth,
            min_shrink=min_shrink,
            min_dt=min_dt,
            max_dt=max_dt,
        )

        for _ in range(500):
            old = rng.normal(scale=3.0)
            new = old + rng.normal(scale=rng.choice([1e-6, 1e-2, 1.0]))
            _observe(selector, old, new)
            previous_dt = float(rng.uniform(min_dt, max_dt))
            remaining = float(rng.uniform(1e-4, 100.0))
            dt = selector.propose(
                TimestepContext(nominal_dt=100.0, remaining=remaining, previous_dt=previous_dt)
            )

            assert math.isfinite(dt) and dt > 0
            assert dt <= remaining
            assert dt <= max_dt
            assert dt <= previous_dt * max_growth * (1 + 1e-12)
            assert dt >= min(remaining, max(min_dt, previous_dt * min_shrink)) * (1 - 1e-12)


class TestMakeTimestepSelector:
    """Factory builds the selector named by the config."""

    def test_fixed(self):
        selector = make_timestep_selector(SolverConfig(cut_factor=0.3))
        assert isinstance(selector, FixedTimestepSelector)
        assert selector.cut_factor == 0.3

    def test_change(self):
        config = SolverConfig(
            timestep_selector="change",
            target_change_rel=0.02,
            tracked_quantities=("voltage", "soc"),
            max_growth=3.0,
            selector_max_dt=120.0,
        )
        selector = make_timestep_selector(config)

        assert isinstance(selector, StateChangeTimestepSelector)
        assert selector.quantities == ("voltage", "soc")
        assert selector.target_change_rel == 0.02
        assert selector.max_growth == 3.0
        assert selector.max_dt == 120.0
