"""Equivalent-circuit cell model.

Thevenin cell: an open-circuit voltage source OCV(soc), a series resistance
R0 and one RC polarization pair. Unknowns are

    x = [soc, v_rc, voltage, current]

with current positive on discharge. Each step is discretized with backward
Euler:

    soc - soc_prev + dt * I / (3600 * Q)          = 0   (charge)
    v_rc - v_rc_prev - dt * (I / C1 - v_rc / tau) = 0   (polarization)
    V - (OCV(soc) - v_rc - I * R0)                = 0   (voltage)
    I - I_set   or   V - V_set                    = 0   (control)

The OCV curve ``e0 + e1*soc - e2*exp(-e3*soc)`` has a steep knee near an
empty cell, which is where voltage cutoffs fire and Newton needs more than
one iteration.
"""

from dataclasses import dataclass
from typing import Any, Dict, Tuple

import jax.numpy as jnp
from jax import Array

from stepjax.config import SECONDS_PER_HOUR
from stepjax.models.base import State
from stepjax.models.residual import ResidualModel, Vector

# Control encoding for the residual kernel
CURRENT_MODE = 0.0
VOLTAGE_MODE = 1.0


@dataclass(frozen=True)
class CurrentControl:
    """Apply a fixed current (A, positive on discharge)."""

    current: float


@dataclass(frozen=True)
class VoltageControl:
    """Hold the terminal voltage (V)."""

    voltage: float


@dataclass(frozen=True)
class Rest:
    """Open circuit: zero current."""


@dataclass(frozen=True)
class CellParameters:
    """Parameters of the equivalent-circuit cell.

    Attributes:
        capacity_ah: Nominal capacity (Ah)
        r0: Series resistance (ohm)
        r1: Polarization resistance (ohm)
        c1: Polarization capacitance (F)
        ocv_coeffs: (e0, e1, e2, e3) of OCV(soc) = e0 + e1*soc - e2*exp(-e3*soc)
        initial_soc: State of charge at t=0, in (0, 1]
    """

    capacity_ah: float = 5.0
    r0: float = 0.01
    r1: float = 0.015
    c1: float = 2000.0
    ocv_coeffs: Tuple[float, float, float, float] = (3.4, 0.8, 0.4, 12.0)
    initial_soc: float = 1.0

    def __post_init__(self):
        if self.capacity_ah <= 0:
            raise ValueError(f"capacity_ah must be positive, got {self.capacity_ah}")
        if self.r0 < 0 or self.r1 <= 0 or self.c1 <= 0:
            raise ValueError("r0 must be non-negative, r1 and c1 positive")
        if not (0 < self.initial_soc <= 1.0):
            raise ValueError(f"initial_soc must be in (0, 1], got {self.initial_soc}")


class EquivalentCircuitCell(ResidualModel):
    """Thevenin equivalent-circuit cell under current or voltage control.

    Example:
        cell = EquivalentCircuitCell(CellParameters(capacity_ah=5.0))
        schedule = Schedule.uniform(3600.0, 60, CurrentControl(5.0),
                                    stop_conditions=[below("voltage", 3.0)])
        result = simulate(cell, schedule)
    """

    quantities = ("soc", "voltage", "current", "v_rc")

    def __init__(self, params: CellParameters = CellParameters(), **kwargs: Any):
        kwargs.setdefault(
            "groups",
            {"charge": [0], "polarization": [1], "voltage": [2], "control": [3]},
        )
        super().__init__(n_unknowns=4, **kwargs)
        self.params = params

    def ocv(self, soc):
        e0, e1, e2, e3 = self.params.ocv_coeffs
        return e0 + e1 * soc - e2 * jnp.exp(-e3 * soc)

    def initial_state(self) -> State:
        soc0 = self.params.initial_soc
        x0 = jnp.array([soc0, 0.0, float(self.ocv(soc0)), 0.0])
        return State(time=0.0, x=x0, quantities=self.compute_quantities(x0, Rest()))

    def encode_control(self, control: Any) -> Array:
        if isinstance(control, CurrentControl):
            return jnp.array([CURRENT_MODE, control.current])
        if isinstance(control, VoltageControl):
            return jnp.array([VOLTAGE_MODE, control.voltage])
        if isinstance(control, Rest):
            return jnp.array([CURRENT_MODE, 0.0])
        raise TypeError(f"{self.name} does not support control {control!r}")

    def residual(self, x: Vector, x_prev: Vector, dt: Array, u: Array) -> Vector:
        p = self.params
        soc, v_rc, voltage, current = x[0], x[1], x[2], x[3]
        mode, setpoint = u[0], u[1]

        r_charge = soc - x_prev[0] + dt * current / (SECONDS_PER_HOUR * p.capacity_ah)
        r_polar = v_rc - x_prev[1] - dt * (current / p.c1 - v_rc / (p.r1 * p.c1))
        r_voltage = voltage - (self.ocv(soc) - v_rc - current * p.r0)
        r_control = jnp.where(mode == VOLTAGE_MODE, voltage - setpoint, current - setpoint)

        return jnp.stack([r_charge, r_polar, r_voltage, r_control])

    def compute_quantities(self, x: Array, control: Any) -> Dict[str, float]:
        soc, v_rc, voltage, current = (float(v) for v in x)
        return {"soc": soc, "voltage": voltage, "current": current, "v_rc": v_rc}
