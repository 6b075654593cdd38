"""Control schedules.

A schedule is an ordered list of control intervals. Each interval holds an
opaque control value (interpreted only by the model), the nominal step
lengths that partition the interval, and the stop conditions attached to
that control.

All validation happens here, before the driver takes a single step.
"""

import math
from dataclasses import dataclass
from typing import Any, Mapping, Optional, Sequence, Tuple

from stepjax.analysis.stop import StopCondition
from stepjax.config import DURATION_RTOL
from stepjax.errors import ConfigurationError


def _check_step_lengths(step_lengths: Sequence[float], where: str) -> Tuple[float, ...]:
    steps = tuple(float(dt) for dt in step_lengths)
    if not steps:
        raise ConfigurationError("step_lengths", f"{where} has no steps")
    for i, dt in enumerate(steps):
        if not (math.isfinite(dt) and dt > 0):
            raise ConfigurationError(
                "step_lengths", f"{where} step {i} must be positive and finite, got {dt}"
            )
    return steps


def _durations_match(total: float, expected: float) -> bool:
    return math.isclose(total, expected, rel_tol=DURATION_RTOL, abs_tol=0.0)


@dataclass(frozen=True)
class ControlInterval:
    """Time span sharing one control.

    Attributes:
        control: Model-specific control value (e.g. a fixed current)
        step_lengths: Nominal step lengths, in order
        stop_conditions: Conditions attached to this control
        duration: Declared interval length; must equal sum(step_lengths) if given
        name: Optional label for logs and reports
    """

    control: Any
    step_lengths: Tuple[float, ...]
    stop_conditions: Tuple[StopCondition, ...] = ()
    duration: Optional[float] = None
    name: Optional[str] = None

    def __post_init__(self):
        where = f"interval {self.name!r}" if self.name else "interval"
        object.__setattr__(self, "step_lengths", _check_step_lengths(self.step_lengths, where))
        object.__setattr__(self, "stop_conditions", tuple(self.stop_conditions))
        if self.duration is not None and not _durations_match(self.total_time, self.duration):
            raise ConfigurationError(
                "duration",
                f"{where} step lengths sum to {self.total_time:g}, declared {self.duration:g}",
            )

    @property
    def total_time(self) -> float:
        return math.fsum(self.step_lengths)

    @property
    def num_steps(self) -> int:
        return len(self.step_lengths)


@dataclass(frozen=True)
class Schedule:
    """Ordered, immutable sequence of control intervals."""

    intervals: Tuple[ControlInterval, ...]

    def __post_init__(self):
        intervals = tuple(self.intervals)
        if not intervals:
            raise ConfigurationError("intervals", "schedule has no control intervals")
        for i, interval in enumerate(intervals):
            if not isinstance(interval, ControlInterval):
                raise ConfigurationError(
                    "intervals", f"entry {i} is {type(interval).__name__}, not ControlInterval"
                )
        object.__setattr__(self, "intervals", intervals)

    def __len__(self) -> int:
        return len(self.intervals)

    def __iter__(self):
        return iter(self.intervals)

    def __getitem__(self, index: int) -> ControlInterval:
        return self.intervals[index]

    @property
    def total_time(self) -> float:
        return math.fsum(dt for interval in self.intervals for dt in interval.step_lengths)

    @property
    def num_steps(self) -> int:
        return sum(interval.num_steps for interval in self.intervals)

    @classmethod
    def from_steps(
        cls,
        step_lengths: Sequence[Sequence[float]],
        control_indices: Sequence[int],
        controls: Mapping[int, Any],
        stop_conditions: Optional[Mapping[int, Sequence[StopCondition]]] = None,
        total_time: Optional[float] = None,
    ) -> "Schedule":
        """Build a schedule from per-interval steps and a control table.

        Args:
            step_lengths: step_lengths[i] are the nominal steps of interval i
            control_indices: control_indices[i] selects the control of interval i
            controls: Mapping of control index to control value
            stop_conditions: Optional mapping of control index to attached conditions
            total_time: Requested total simulated time; checked against the steps

        Returns:
            Validated Schedule

        Raises:
            ConfigurationError: On mismatched lengths, unknown control indices,
                non-positive steps or a total time that the steps do not reproduce
        """
        if len(step_lengths) != len(control_indices):
            raise ConfigurationError(
                "control_indices",
                f"{len(control_indices)} control indices for {len(step_lengths)} intervals",
            )
        stop_conditions = stop_conditions or {}
        unknown = set(stop_conditions) - set(controls)
        if unknown:
            raise ConfigurationError(
                "stop_conditions", f"conditions given for unknown controls {sorted(unknown)}"
            )

        intervals = []
        for i, (steps, index) in enumerate(zip(step_lengths, control_indices)):
            if index not in controls:
                raise ConfigurationError(
                    "control_indices", f"interval {i} uses unknown control index {index}"
                )
            intervals.append(
                ControlInterval(
                    control=controls[index],
                    step_lengths=tuple(steps),
                    stop_conditions=tuple(stop_conditions.get(index, ())),
                    name=f"{i}:control{index}",
                )
            )

        schedule = cls(tuple(intervals))
        if total_time is not None and not _durations_match(schedule.total_time, total_time):
            raise ConfigurationError(
                "total_time",
                f"step lengths sum to {schedule.total_time:g}, requested {total_time:g}",
            )
        return schedule

    @classmethod
    def uniform(
        cls,
        duration: float,
        n_steps: int,
        control: Any,
        stop_conditions: Sequence[StopCondition] = (),
        name: Optional[str] = None,
    ) -> "Schedule":
        """Single interval of ``duration`` split into ``n_steps`` equal steps."""
        return cls((uniform_interval(duration, n_steps, control, stop_conditions, name),))

    @classmethod
    def concat(cls, *schedules: "Schedule") -> "Schedule":
        """Append the intervals of several schedules."""
        return cls(tuple(interval for s in schedules for interval in s.intervals))


def uniform_interval(
    duration: float,
    n_steps: int,
    control: Any,
    stop_conditions: Sequence[StopCondition] = (),
    name: Optional[str] = None,
) -> ControlInterval:
    """Control interval of ``duration`` split into ``n_steps`` equal steps."""
    if n_steps < 1:
        raise ConfigurationError("n_steps", f"must be >= 1, got {n_steps}")
    if not (math.isfinite(duration) and duration > 0):
        raise ConfigurationError("duration", f"must be positive and finite, got {duration}")
    return ControlInterval(
        control=control,
        step_lengths=(duration / n_steps,) * n_steps,
        stop_conditions=tuple(stop_conditions),
        duration=duration,
        name=name,
    )
