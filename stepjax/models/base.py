"""Model interface for stepjax.

A model is anything that can build the discretized residual system for one
time step and perform one Newton linearization on it. The driver treats
every call into the model as a blocking, atomic operation and never looks
inside the state vector: stop conditions and step-size control only see
the named scalar quantities a model publishes on each State.
"""

import dataclasses
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, Mapping, Tuple


@dataclass(frozen=True)
class State:
    """Snapshot of a model at one point in time.

    Attributes:
        time: Simulation time of the snapshot
        x: Model unknowns (array type is up to the model)
        quantities: Named scalar quantities derived from x (e.g. 'voltage')
    """

    time: float
    x: Any
    quantities: Mapping[str, float] = field(default_factory=dict)

    def quantity(self, name: str) -> float:
        """Get a named scalar quantity.

        Args:
            name: Quantity name declared by the model

        Returns:
            Quantity value

        Raises:
            KeyError: If the model does not publish this quantity
        """
        if name in self.quantities:
            return self.quantities[name]
        raise KeyError(f"Quantity '{name}' not found. Available: {sorted(self.quantities)}")

    def __getitem__(self, name: str) -> float:
        return self.quantity(name)

    def replace(self, **changes: Any) -> "State":
        """Return a copy with the given fields replaced."""
        return dataclasses.replace(self, **changes)


@dataclass(frozen=True)
class ResidualSystem:
    """Discretized system for advancing ``state`` by ``dt`` under ``control``.

    Attributes:
        state: Last accepted state (start of the step)
        control: Control applied over the step
        dt: Step length
        data: Model-specific assembly data (coefficients, closures, ...)
    """

    state: State
    control: Any
    dt: float
    data: Any = None

    @property
    def time(self) -> float:
        """Time at the end of the step."""
        return self.state.time + self.dt


class Model(ABC):
    """Abstract base class for models driven by the simulation driver.

    Subclasses implement the four required operations. The remaining hooks
    have defaults suitable for array-valued unknowns.

    Attributes:
        quantities: Names of the scalar quantities published on each State
    """

    quantities: Tuple[str, ...] = ()

    @property
    def name(self) -> str:
        """Human-readable model name for logging."""
        return self.__class__.__name__

    @abstractmethod
    def initial_state(self) -> State:
        """Build the state at t=0. Must be deterministic."""

    @abstractmethod
    def apply_control(self, state: State, control: Any, dt: float) -> ResidualSystem:
        """Build the residual system for advancing ``state`` by ``dt``."""

    @abstractmethod
    def solve_linear_step(
        self, system: ResidualSystem, iterate: Any
    ) -> Tuple[Any, Dict[str, float]]:
        """Linearize at ``iterate`` and solve for the Newton increment.

        Args:
            system: System from apply_control()
            iterate: Current Newton iterate

        Returns:
            Tuple of (increment, norms) where norms maps equation group
            names to residual norms evaluated at ``iterate``
        """

    @abstractmethod
    def update_state(self, system: ResidualSystem, iterate: Any) -> State:
        """Materialize a converged iterate as the state at ``system.time``."""

    def initial_iterate(self, system: ResidualSystem) -> Any:
        """Starting point for the Newton iteration (previous solution)."""
        return system.state.x

    def apply_increment(self, iterate: Any, increment: Any) -> Any:
        """Apply a Newton increment to the iterate."""
        return iterate + increment

    def convergence_norm(self, norms: Mapping[str, float]) -> float:
        """Reduce per-group norms to the scalar compared against the tolerance."""
        if not norms:
            return 0.0
        return max(float(v) for v in norms.values())
