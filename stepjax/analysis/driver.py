"""Simulation driver: adaptive stepping through a control schedule.

The driver owns the single "current state" cursor of a run. For every
control interval and every nominal step of that interval it repeatedly

    1. asks the time-step selector for dt (never past the nominal step end)
    2. builds the residual system and runs the Newton solver
    3. on convergence: evaluates stop conditions, records the state and
       advances time
    4. on failure: cuts dt and retries from the last accepted state, until
       the minimum step or the cut budget is exhausted

until the schedule is complete, a stop condition fires, retries are
exhausted, or the run is cancelled / times out. Every attempt, accepted or
not, is recorded in the run Report.

Usage:
    driver = SimulationDriver(model, SolverConfig(error_on_failure=False))
    result = driver.run(schedule)
    print(result.status, result.times, result.quantity("voltage"))
"""

import math
import time as time_module
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Sequence

import numpy as np

from stepjax._logging import logger
from stepjax.analysis.convergence import ConvergenceReport
from stepjax.analysis.options import SolverConfig
from stepjax.analysis.schedule import Schedule
from stepjax.analysis.solver import newton_solve
from stepjax.analysis.stop import StopCondition, evaluate_stop_conditions
from stepjax.analysis.timestep import (
    TimestepContext,
    TimestepSelector,
    make_timestep_selector,
    selector_stats,
)
from stepjax.config import STEP_END_RTOL
from stepjax.errors import ConfigurationError, SimulationAborted
from stepjax.models.base import Model, State


class RunStatus(Enum):
    """Terminal status of a run."""

    COMPLETED = "completed"
    STOPPED_BY_CONDITION = "stopped_by_condition"
    FAILED_BUT_REPORTED = "failed_but_reported"
    ABORTED = "aborted"
    CANCELLED = "cancelled"
    TIMED_OUT = "timed_out"


@dataclass
class StepRecord:
    """One step attempt.

    Attributes:
        interval: Index of the control interval
        step: Index of the nominal step within the interval
        time: Start time of the attempt
        dt: Step length attempted
        accepted: Whether the attempt converged and was accepted
        retry: Whether the attempt followed a failed (cut) attempt
        convergence: Newton convergence report
    """

    interval: int
    step: int
    time: float
    dt: float
    accepted: bool
    retry: bool
    convergence: ConvergenceReport

    @property
    def end_time(self) -> float:
        return self.time + self.dt


@dataclass
class Report:
    """Run report: every attempt plus the terminal status."""

    status: RunStatus = RunStatus.COMPLETED
    steps: List[StepRecord] = field(default_factory=list)
    message: str = ""
    stop_condition: Optional[str] = None
    failure: Optional[ConvergenceReport] = None
    wall_time: float = 0.0

    @property
    def accepted_steps(self) -> int:
        return sum(1 for s in self.steps if s.accepted)

    @property
    def rejected_steps(self) -> int:
        return sum(1 for s in self.steps if not s.accepted)

    @property
    def total_iterations(self) -> int:
        return sum(s.convergence.iterations for s in self.steps)

    @property
    def min_dt(self) -> Optional[float]:
        dts = [s.dt for s in self.steps if s.accepted]
        return min(dts) if dts else None

    @property
    def max_dt(self) -> Optional[float]:
        dts = [s.dt for s in self.steps if s.accepted]
        return max(dts) if dts else None

    def accepted_dt(self, interval: Optional[int] = None) -> List[float]:
        """Accepted step lengths, optionally restricted to one interval."""
        return [
            s.dt
            for s in self.steps
            if s.accepted and (interval is None or s.interval == interval)
        ]

    def stats(self) -> Dict[str, Any]:
        """Summary statistics of the run."""
        n_attempts = len(self.steps)
        accepted = self.accepted_steps
        return {
            "status": self.status.value,
            "accepted_steps": accepted,
            "rejected_steps": self.rejected_steps,
            "total_nr_iterations": self.total_iterations,
            "avg_nr_iterations": self.total_iterations / max(n_attempts, 1),
            "convergence_rate": accepted / n_attempts if n_attempts else 1.0,
            "min_dt": self.min_dt,
            "max_dt": self.max_dt,
            "stop_condition": self.stop_condition,
            "message": self.message,
            "wall_time": self.wall_time,
            "time_per_step_ms": self.wall_time / n_attempts * 1000 if n_attempts else 0.0,
        }


@dataclass
class SimulationResult:
    """Result of a simulation run.

    Attributes:
        states: Accepted states, in time order (the initial state is not included)
        report: Run report
    """

    states: List[State]
    report: Report

    @property
    def status(self) -> RunStatus:
        return self.report.status

    def __len__(self) -> int:
        return len(self.states)

    @property
    def times(self) -> np.ndarray:
        """Array of output times."""
        return np.array([s.time for s in self.states], dtype=float)

    @property
    def final_state(self) -> Optional[State]:
        return self.states[-1] if self.states else None

    def quantity(self, name: str) -> np.ndarray:
        """Waveform of a named quantity over the output states.

        Raises:
            KeyError: If the model does not publish ``name``
        """
        return np.array([s.quantity(name) for s in self.states], dtype=float)

    @property
    def quantity_names(self) -> List[str]:
        if not self.states:
            return []
        return list(self.states[0].quantities.keys())


StepCallback = Callable[[StepRecord, Optional[State]], None]


class SimulationDriver:
    """Advance a model through a control schedule.

    Args:
        model: Model implementing the Model interface
        config: Solver configuration (defaults to SolverConfig())
        selector: Time-step selector; built from ``config`` when omitted
        stop_conditions: Conditions evaluated in every interval, in addition
            to the ones attached to each interval's control
    """

    def __init__(
        self,
        model: Model,
        config: Optional[SolverConfig] = None,
        selector: Optional[TimestepSelector] = None,
        stop_conditions: Sequence[StopCondition] = (),
    ):
        self.model = model
        self.config = config if config is not None else SolverConfig()
        self.selector = selector if selector is not None else make_timestep_selector(self.config)
        self.stop_conditions = tuple(stop_conditions)

    @property
    def name(self) -> str:
        return f"{self.__class__.__name__}[{self.model.name}]"

    def run(
        self,
        schedule: Schedule,
        initial_state: Optional[State] = None,
        cancel: Optional[Any] = None,
        callback: Optional[StepCallback] = None,
    ) -> SimulationResult:
        """Run the schedule.

        Args:
            schedule: Control schedule to simulate
            initial_state: Start state (default: model.initial_state())
            cancel: Object with ``is_set()`` (e.g. threading.Event), checked
                before every step attempt
            callback: Called as ``callback(record, state)`` after every attempt;
                ``state`` is None for rejected attempts

        Returns:
            SimulationResult with the accepted states and the run report

        Raises:
            ConfigurationError: If the schedule is not a Schedule
            SimulationAborted: If a step fails down to the minimum step size
                and ``config.error_on_failure`` is set
        """
        if not isinstance(schedule, Schedule):
            raise ConfigurationError("schedule", f"expected Schedule, got {type(schedule).__name__}")

        config = self.config
        selector = self.selector
        selector.reset()

        state = initial_state if initial_state is not None else self.model.initial_state()
        initial = state
        t0 = state.time
        t_total = schedule.total_time
        states: List[State] = []
        report = Report()

        logger.info(
            f"{self.name}: Starting simulation ({len(schedule)} intervals, "
            f"{schedule.num_steps} nominal steps, t={t0:g}..{t0 + t_total:g}, "
            f"selector={selector.name})"
        )
        wall_start = time_module.perf_counter()

        def finish(status: RunStatus, message: str) -> SimulationResult:
            # Runs that end between checkpoints still report their last accepted state
            if status is not RunStatus.COMPLETED and state is not initial:
                if not states or states[-1] is not state:
                    states.append(state)
            report.status = status
            report.message = message
            report.wall_time = time_module.perf_counter() - wall_start
            self._log_summary(report)
            return SimulationResult(states=states, report=report)

        previous_dt: Optional[float] = None
        n_accepted = 0

        for i_interval, interval in enumerate(schedule):
            conditions = interval.stop_conditions + self.stop_conditions
            label = interval.name or str(i_interval)
            logger.debug(
                f"{self.name}: interval {label} at t={state.time:g} "
                f"({interval.num_steps} steps, control={interval.control!r})"
            )

            for i_step, nominal_dt in enumerate(interval.step_lengths):
                remaining = nominal_dt
                cuts = 0
                dt: Optional[float] = None

                while remaining > 0:
                    interrupted = self._check_interrupt(cancel, wall_start)
                    if interrupted is not None:
                        return finish(*interrupted)

                    if dt is None:
                        dt = selector.propose(
                            TimestepContext(
                                nominal_dt=nominal_dt,
                                remaining=remaining,
                                previous_dt=previous_dt,
                            )
                        )
                        if not (math.isfinite(dt) and dt > 0):
                            raise ConfigurationError(
                                "timestep_selector", f"{selector.name} proposed dt={dt}"
                            )
                    if remaining - dt <= STEP_END_RTOL * nominal_dt:
                        dt = remaining

                    system = self.model.apply_control(state, interval.control, dt)
                    iterate, conv = newton_solve(self.model, system, config)
                    record = StepRecord(
                        interval=i_interval,
                        step=i_step,
                        time=state.time,
                        dt=dt,
                        accepted=conv.converged,
                        retry=cuts > 0,
                        convergence=conv,
                    )
                    report.steps.append(record)

                    if not conv.converged:
                        if callback is not None:
                            callback(record, None)
                        new_dt = selector.cut(dt)
                        cuts += 1
                        if new_dt < config.min_dt or cuts > config.max_timestep_cuts:
                            return self._give_up(report, conv, state, dt, finish)
                        logger.info(
                            f"{self.name}: t={state.time:.4e} dt={dt:.3e} {conv.summary()}, "
                            f"retrying with dt={new_dt:.3e} (cut {cuts})"
                        )
                        dt = new_dt
                        continue

                    new_state = self.model.update_state(system, iterate)
                    # The selector scales previous_dt by the change it just saw over dt
                    selector.record(state, new_state, dt)
                    previous_dt = dt
                    finishes_step = dt == remaining
                    previous_state, state = state, new_state
                    remaining = 0.0 if finishes_step else remaining - dt
                    n_accepted += 1

                    if callback is not None:
                        callback(record, state)

                    fired = evaluate_stop_conditions(conditions, self.model, state, previous_state)
                    if fired is not None:
                        states.append(state)
                        report.stop_condition = fired
                        return finish(
                            RunStatus.STOPPED_BY_CONDITION,
                            f"stop condition '{fired}' fired at t={state.time:g}",
                        )

                    if config.output_ministeps or remaining == 0.0:
                        states.append(state)

                    if config.progress_interval and n_accepted % config.progress_interval == 0:
                        pct = 100.0 * (state.time - t0) / t_total
                        logger.info(
                            f"Step {n_accepted:6d}: t={state.time:.3e} ({pct:5.1f}%), "
                            f"dt={dt:.2e}, rejected={report.rejected_steps}"
                        )

                    cuts = 0
                    dt = None

            logger.debug(f"{self.name}: interval {label} complete at t={state.time:g}")

        return finish(RunStatus.COMPLETED, f"schedule complete at t={state.time:g}")

    def _check_interrupt(self, cancel: Optional[Any], wall_start: float):
        """Return (status, message) if the run must stop at this step boundary."""
        if cancel is not None and cancel.is_set():
            return RunStatus.CANCELLED, "cancelled"
        max_wall = self.config.max_wall_time
        if max_wall is not None:
            elapsed = time_module.perf_counter() - wall_start
            if elapsed > max_wall:
                return RunStatus.TIMED_OUT, f"wall time {elapsed:.3f}s exceeded {max_wall:g}s"
        return None

    def _give_up(
        self,
        report: Report,
        conv: ConvergenceReport,
        state: State,
        dt: float,
        finish: Callable[[RunStatus, str], SimulationResult],
    ) -> SimulationResult:
        """Handle a step that could not be converged with any allowed dt."""
        report.failure = conv
        message = (
            f"step at t={state.time:g} failed down to dt={dt:.3e} "
            f"({conv.summary()}: {conv.reason})"
        )
        if self.config.error_on_failure:
            logger.error(f"{self.name}: Aborting: {message}")
            result = finish(RunStatus.ABORTED, message)
            raise SimulationAborted(message, result=result, report=conv)
        logger.warning(f"{self.name}: {message}; returning partial output")
        return finish(RunStatus.FAILED_BUT_REPORTED, message)

    def _log_summary(self, report: Report):
        stats = report.stats()
        logger.info(
            f"{self.name}: {report.status.value} after {stats['accepted_steps']} steps "
            f"in {report.wall_time:.3f}s ({stats['time_per_step_ms']:.2f}ms/step, "
            f"{stats['total_nr_iterations']} NR iters, {stats['rejected_steps']} rejected)"
        )

    def describe(self) -> Dict[str, Any]:
        """Configuration summary of this driver."""
        return {
            "model": self.model.name,
            "config": self.config.to_dict(),
            **selector_stats(self.selector),
            "stop_conditions": len(self.stop_conditions),
        }


def simulate(
    model: Model,
    schedule: Schedule,
    config: Optional[SolverConfig] = None,
    selector: Optional[TimestepSelector] = None,
    stop_conditions: Sequence[StopCondition] = (),
    **run_kwargs: Any,
) -> SimulationResult:
    """Build a SimulationDriver and run ``schedule``.

    Args:
        model: Model to simulate
        schedule: Control schedule
        config: Solver configuration
        selector: Optional time-step selector instance
        stop_conditions: Conditions evaluated in every interval
        **run_kwargs: Forwarded to SimulationDriver.run()

    Returns:
        SimulationResult
    """
    driver = SimulationDriver(model, config, selector=selector, stop_conditions=stop_conditions)
    return driver.run(schedule, **run_kwargs)
