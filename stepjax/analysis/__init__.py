"""Time-integration machinery for stepjax.

This module provides the driver and its collaborators:
- SolverConfig: immutable run configuration
- newton_solve: Newton iteration for one step attempt
- Time-step selectors: fixed and state-change based
- Stop conditions: below/above/crosses/time_reached/any_of
- Schedule / ControlInterval: piecewise-constant controls
- SimulationDriver / simulate: the stepping loop
"""

from stepjax.analysis.convergence import ConvergenceReport, ConvergenceVerdict
from stepjax.analysis.driver import (
    Report,
    RunStatus,
    SimulationDriver,
    SimulationResult,
    StepRecord,
    simulate,
)
from stepjax.analysis.options import SolverConfig
from stepjax.analysis.schedule import ControlInterval, Schedule, uniform_interval
from stepjax.analysis.solver import NewtonResult, newton_solve
from stepjax.analysis.stop import (
    NamedCondition,
    above,
    any_of,
    below,
    crosses,
    evaluate_stop_conditions,
    time_reached,
)
from stepjax.analysis.timestep import (
    FixedTimestepSelector,
    StateChangeTimestepSelector,
    TimestepContext,
    TimestepSelector,
    make_timestep_selector,
)

__all__ = [
    # Configuration
    "SolverConfig",
    # Nonlinear solver
    "newton_solve",
    "NewtonResult",
    "ConvergenceReport",
    "ConvergenceVerdict",
    # Time-step selection
    "TimestepSelector",
    "TimestepContext",
    "FixedTimestepSelector",
    "StateChangeTimestepSelector",
    "make_timestep_selector",
    # Stop conditions
    "NamedCondition",
    "below",
    "above",
    "crosses",
    "time_reached",
    "any_of",
    "evaluate_stop_conditions",
    # Schedule
    "Schedule",
    "ControlInterval",
    "uniform_interval",
    # Driver
    "SimulationDriver",
    "SimulationResult",
    "Report",
    "RunStatus",
    "StepRecord",
    "simulate",
]
