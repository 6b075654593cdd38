"""Models expressed as a JAX residual function.

ResidualModel implements the Newton linearization of the Model interface
once for every model that can write its time-discrete equations as

    F(x_{n+1}; x_n, dt, u) = 0

where u is a numeric encoding of the control. The Jacobian comes from
forward-mode autodiff and the correction from a dense solve:

    J(x_k) * delta = -F(x_k)
    x_{k+1} = x_k + step_scale * delta

with ``step_scale = min(damping, max_step / |delta|_inf)``.
"""

from abc import abstractmethod
from typing import Any, Callable, Dict, Mapping, Optional, Sequence, Tuple, Union

import jax
import jax.numpy as jnp
import numpy as np
from jax import Array
from jaxtyping import Float

from stepjax._logging import logger
from stepjax.config import JACOBIAN_REGULARIZATION
from stepjax.models.base import Model, ResidualSystem, State

Vector = Float[Array, " n"]
GroupIndex = Union[slice, Sequence[int]]


class ResidualModel(Model):
    """Model defined by a JAX-traceable residual function.

    Subclasses implement ``residual``, ``initial_state`` and
    ``compute_quantities``; ``encode_control`` maps the opaque control
    object to a numeric array so one compiled kernel serves every control.

    Args:
        n_unknowns: Size of the unknown vector
        groups: Mapping of equation group name to the residual rows it owns.
            Defaults to a single group 'residual' covering all rows.
        scales: Optional per-group scale dividing the group's max-abs residual
        damping: Damping factor for Newton updates (1.0 = full steps)
        max_step: Maximum allowed change of any unknown per iteration
    """

    def __init__(
        self,
        n_unknowns: int,
        groups: Optional[Mapping[str, GroupIndex]] = None,
        scales: Optional[Mapping[str, float]] = None,
        damping: float = 1.0,
        max_step: float = float("inf"),
    ):
        if n_unknowns < 1:
            raise ValueError(f"n_unknowns must be >= 1, got {n_unknowns}")
        if not (0 < damping <= 1.0):
            raise ValueError(f"damping must be in (0, 1], got {damping}")
        if max_step <= 0:
            raise ValueError(f"max_step must be positive, got {max_step}")

        self.n_unknowns = n_unknowns
        self.groups: Dict[str, GroupIndex] = dict(groups or {"residual": slice(None)})
        self.scales: Dict[str, float] = dict(scales or {})
        unknown = set(self.scales) - set(self.groups)
        if unknown:
            raise ValueError(f"scales given for unknown groups: {sorted(unknown)}")
        self.damping = damping
        self.max_step = max_step

        self._kernel: Optional[Callable] = None

    @abstractmethod
    def residual(self, x: Vector, x_prev: Vector, dt: Array, u: Array) -> Vector:
        """Time-discrete residual F(x; x_prev, dt, u). Must be JAX-traceable."""

    @abstractmethod
    def compute_quantities(self, x: Array, control: Any) -> Dict[str, float]:
        """Named scalar quantities published on a State built from ``x``."""

    def encode_control(self, control: Any) -> Array:
        """Numeric encoding of ``control`` passed to ``residual`` as ``u``."""
        return jnp.zeros(0)

    def ensure_kernel(self) -> Callable:
        """Build the jitted linearize-and-solve kernel on first use."""
        if self._kernel is None:
            logger.debug(f"{self.name}: compiling Newton kernel ({self.n_unknowns} unknowns)")
            self._kernel = _make_newton_kernel(
                self.residual, self.n_unknowns, self.damping, self.max_step
            )
        return self._kernel

    def apply_control(self, state: State, control: Any, dt: float) -> ResidualSystem:
        return ResidualSystem(state=state, control=control, dt=dt, data=self.encode_control(control))

    def solve_linear_step(
        self, system: ResidualSystem, iterate: Any
    ) -> Tuple[Array, Dict[str, float]]:
        kernel = self.ensure_kernel()
        increment, f = kernel(iterate, system.state.x, jnp.asarray(system.dt), system.data)
        return increment, self.group_norms(f)

    def group_norms(self, f: Array) -> Dict[str, float]:
        """Max-abs residual of each equation group, divided by its scale."""
        f_host = np.abs(np.asarray(f))
        norms = {}
        for name, rows in self.groups.items():
            values = f_host[rows]
            norm = float(np.max(values)) if values.size else 0.0
            norms[name] = norm / self.scales.get(name, 1.0)
        return norms

    def update_state(self, system: ResidualSystem, iterate: Any) -> State:
        return State(
            time=system.time,
            x=iterate,
            quantities=self.compute_quantities(iterate, system.control),
        )


def _make_newton_kernel(
    residual_fn: Callable, n_unknowns: int, damping: float, max_step: float
) -> Callable:
    """Create the jitted function (x, x_prev, dt, u) -> (increment, residual)."""
    jacobian_fn = jax.jacfwd(residual_fn, argnums=0)

    def linearize_and_solve(x, x_prev, dt, u):
        f = residual_fn(x, x_prev, dt, u)
        J = jacobian_fn(x, x_prev, dt, u)

        reg = JACOBIAN_REGULARIZATION * jnp.eye(n_unknowns, dtype=J.dtype)
        delta = jax.scipy.linalg.solve(J + reg, -f)

        delta_norm = jnp.max(jnp.abs(delta))
        step_scale = jnp.minimum(damping, max_step / (delta_norm + 1e-15))
        return step_scale * delta, f

    return jax.jit(linearize_and_solve)
