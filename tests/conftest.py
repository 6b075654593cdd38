"""Pytest configuration for stepjax tests

Handles platform-specific JAX configuration:
- macOS: Forces CPU backend since Metal has no float64 support

Optionally enables jaxtyping runtime checks with beartype for array shape
validation (set STEPJAX_TYPECHECK=1).

Also provides small numpy models shared by the driver tests:
- RampModel: x' = u, exact in one Newton update, with injectable failures
- ScriptedModel: replays a fixed sequence of residual norms
"""

import math
import os
import sys
import time
from typing import Dict, Sequence

import numpy as np
import pytest


def _setup_jaxtyping():
    """Enable jaxtyping runtime checking with beartype."""
    from jaxtyping import install_import_hook

    install_import_hook("stepjax", "beartype.beartype")


def _configure_platform():
    """Configure JAX and type checking BEFORE any stepjax import.

    Runs at conftest import time since the shared models below import stepjax.
    """
    if sys.platform == "darwin":
        os.environ["JAX_PLATFORMS"] = "cpu"
    if os.environ.get("STEPJAX_TYPECHECK") == "1":
        _setup_jaxtyping()


_configure_platform()


def pytest_configure(config):
    """Import stepjax to auto-configure precision based on backend."""
    import stepjax  # noqa: F401


# =============================================================================
# Shared Test Models
# =============================================================================

from stepjax.models.base import Model, ResidualSystem, State  # noqa: E402


class RampModel(Model):
    """Scalar x with dx/dt = u, the control being the rate u.

    Newton needs two linearizations per step: one to move to the exact
    solution and one to see a zero residual.

    Args:
        x0: Initial value
        max_stable_dt: Attempts with a longer dt report a non-finite residual
        fail_after: Attempts starting at or after this time report a non-finite residual
        delay: Seconds to sleep in every linearization
    """

    quantities = ("x",)

    def __init__(
        self,
        x0: float = 0.0,
        max_stable_dt: float = math.inf,
        fail_after: float = math.inf,
        delay: float = 0.0,
    ):
        self.x0 = x0
        self.max_stable_dt = max_stable_dt
        self.fail_after = fail_after
        self.delay = delay
        self.attempted_dt = []

    def initial_state(self) -> State:
        return State(time=0.0, x=np.array([self.x0]), quantities={"x": self.x0})

    def apply_control(self, state: State, control, dt: float) -> ResidualSystem:
        self.attempted_dt.append(dt)
        return ResidualSystem(state=state, control=control, dt=dt)

    def solve_linear_step(self, system: ResidualSystem, iterate):
        if self.delay:
            time.sleep(self.delay)
        if system.dt > self.max_stable_dt or system.state.time >= self.fail_after:
            return np.zeros_like(iterate), {"residual": math.inf}
        r = iterate - system.state.x - system.control * system.dt
        return -r, {"residual": float(np.max(np.abs(r)))}

    def update_state(self, system: ResidualSystem, iterate) -> State:
        return State(time=system.time, x=iterate, quantities={"x": float(iterate[0])})


class ScriptedModel(Model):
    """Model whose k-th linearization reports ``norms[k]``."""

    quantities = ("x",)

    def __init__(self, norms: Sequence[Dict[str, float]], error_at: int = -1):
        self.norms = list(norms)
        self.error_at = error_at
        self.calls = 0
        self.applied = 0

    def initial_state(self) -> State:
        return State(time=0.0, x=np.zeros(1), quantities={"x": 0.0})

    def apply_control(self, state, control, dt):
        return ResidualSystem(state=state, control=control, dt=dt)

    def solve_linear_step(self, system, iterate):
        k = self.calls
        self.calls += 1
        if k == self.error_at:
            raise np.linalg.LinAlgError("Singular matrix")
        norms = self.norms[min(k, len(self.norms) - 1)]
        return np.ones(1), norms

    def apply_increment(self, iterate, increment):
        self.applied += 1
        return iterate + increment

    def update_state(self, system, iterate):
        return State(time=system.time, x=iterate, quantities={"x": float(iterate[0])})


@pytest.fixture
def ramp():
    """RampModel starting at x=4.5."""
    return RampModel(x0=4.5)
