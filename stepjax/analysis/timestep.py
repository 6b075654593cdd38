"""Time-step selection strategies.

A selector proposes the length of the next step attempt. The driver asks
for a proposal at the start of every sub-step of a nominal schedule step,
reports every accepted step through ``record``, and calls ``cut`` after a
failed attempt.

Two strategies are provided:

- FixedTimestepSelector: follows the schedule's step lengths.
- StateChangeTimestepSelector: scales the previous step so the tracked
  quantities change by roughly a target amount per step:

      dt_new = dt_prev * clip(target / observed, min_shrink, max_growth)

  clipped to [min_dt, max_dt] and to the time left in the nominal step.
"""

import math
from abc import ABC, abstractmethod
from typing import Dict, NamedTuple, Optional, Sequence

from stepjax._logging import logger
from stepjax.analysis.options import SolverConfig
from stepjax.config import DEFAULT_CUT_FACTOR, DEFAULT_MAX_GROWTH, DEFAULT_MIN_SHRINK
from stepjax.models.base import State


class TimestepContext(NamedTuple):
    """Information the driver passes to a selector.

    Attributes:
        nominal_dt: Step length declared by the schedule
        remaining: Time left until the end of the nominal step
        previous_dt: Length of the last accepted step, or None
    """

    nominal_dt: float
    remaining: float
    previous_dt: Optional[float] = None


class TimestepSelector(ABC):
    """Abstract base class for time-step selectors.

    Args:
        cut_factor: Factor applied to dt after a failed attempt
    """

    def __init__(self, cut_factor: float = DEFAULT_CUT_FACTOR):
        if not (0 < cut_factor < 1):
            raise ValueError(f"cut_factor must be in (0, 1), got {cut_factor}")
        self.cut_factor = cut_factor

    @property
    def name(self) -> str:
        return self.__class__.__name__

    @abstractmethod
    def propose(self, context: TimestepContext) -> float:
        """Propose the next step length. Never exceeds ``context.remaining``."""

    def record(self, previous: State, new: State, dt: float) -> None:
        """Observe an accepted step."""

    def cut(self, dt: float) -> float:
        """Step length to retry with after a failed attempt."""
        return dt * self.cut_factor

    def reset(self) -> None:
        """Forget all history (called at the start of every run)."""


class FixedTimestepSelector(TimestepSelector):
    """Use the schedule's nominal step lengths.

    A step that had to be cut is finished with sub-steps: after an accepted
    sub-step the proposal is again the nominal length, clamped to what is
    left of the nominal step.
    """

    def propose(self, context: TimestepContext) -> float:
        return min(context.nominal_dt, context.remaining)


class StateChangeTimestepSelector(TimestepSelector):
    """Pick dt so that tracked quantities change by a target amount per step.

    Args:
        quantities: Names of the State quantities to watch
        target_change_abs: Target absolute change per step
        target_change_rel: Target relative change per step
        max_growth: Max ratio dt_new / dt_prev (also used when nothing changed)
        min_shrink: Min ratio dt_new / dt_prev
        min_dt: Floor on the proposed step
        max_dt: Ceiling on the proposed step
        initial_dt: First proposal when there is no history (default: nominal step)
        cut_factor: Factor applied to dt after a failed attempt
    """

    def __init__(
        self,
        quantities: Sequence[str],
        target_change_abs: Optional[float] = None,
        target_change_rel: Optional[float] = None,
        max_growth: float = DEFAULT_MAX_GROWTH,
        min_shrink: float = DEFAULT_MIN_SHRINK,
        min_dt: float = 0.0,
        max_dt: float = math.inf,
        initial_dt: Optional[float] = None,
        cut_factor: float = DEFAULT_CUT_FACTOR,
    ):
        super().__init__(cut_factor=cut_factor)
        if not quantities:
            raise ValueError("quantities must name at least one tracked quantity")
        if target_change_abs is None and target_change_rel is None:
            raise ValueError("target_change_abs or target_change_rel is required")
        targets = {"target_change_abs": target_change_abs, "target_change_rel": target_change_rel}
        for name, value in targets.items():
            if value is not None and value <= 0:
                raise ValueError(f"{name} must be positive, got {value}")
        if max_growth < 1:
            raise ValueError(f"max_growth must be >= 1, got {max_growth}")
        if not (0 < min_shrink <= 1):
            raise ValueError(f"min_shrink must be in (0, 1], got {min_shrink}")
        if min_dt < 0 or max_dt <= 0 or max_dt < min_dt:
            raise ValueError(f"need 0 <= min_dt <= max_dt, got {min_dt}, {max_dt}")
        if initial_dt is not None and initial_dt <= 0:
            raise ValueError(f"initial_dt must be positive, got {initial_dt}")

        self.quantities = tuple(quantities)
        self.target_change_abs = target_change_abs
        self.target_change_rel = target_change_rel
        self.max_growth = max_growth
        self.min_shrink = min_shrink
        self.min_dt = min_dt
        self.max_dt = max_dt
        self.initial_dt = initial_dt

        self._last_change_abs: Optional[float] = None
        self._last_change_rel: Optional[float] = None

    def reset(self) -> None:
        self._last_change_abs = None
        self._last_change_rel = None

    def record(self, previous: State, new: State, dt: float) -> None:
        abs_change = 0.0
        rel_change = 0.0
        for name in self.quantities:
            old_value = previous.quantity(name)
            delta = abs(new.quantity(name) - old_value)
            abs_change = max(abs_change, delta)
            if self.target_change_rel is not None:
                scale = abs(old_value)
                if scale > 0:
                    rel_change = max(rel_change, delta / scale)
                elif delta > 0:
                    rel_change = math.inf
        self._last_change_abs = abs_change
        self._last_change_rel = rel_change

    def growth_factor(self) -> float:
        """Ratio dt_new / dt_prev implied by the last observed change."""
        factors = []
        if self.target_change_abs is not None:
            factors.append(self._factor(self.target_change_abs, self._last_change_abs))
        if self.target_change_rel is not None:
            factors.append(self._factor(self.target_change_rel, self._last_change_rel))
        return min(factors)

    def _factor(self, target: float, observed: Optional[float]) -> float:
        if observed is None or observed == 0.0:
            return self.max_growth
        return min(self.max_growth, max(self.min_shrink, target / observed))

    def propose(self, context: TimestepContext) -> float:
        if context.previous_dt is None or self._last_change_abs is None:
            dt = self.initial_dt if self.initial_dt is not None else context.nominal_dt
        else:
            dt = context.previous_dt * self.growth_factor()
        dt = min(self.max_dt, max(self.min_dt, dt))
        proposed = min(dt, context.remaining)
        logger.debug(f"{self.name}: proposed dt={proposed:.4e} (unclipped {dt:.4e})")
        return proposed


def make_timestep_selector(config: SolverConfig) -> TimestepSelector:
    """Build the selector named by ``config.timestep_selector``."""
    if config.timestep_selector == "change":
        return StateChangeTimestepSelector(
            quantities=config.tracked_quantities,
            target_change_abs=config.target_change_abs,
            target_change_rel=config.target_change_rel,
            max_growth=config.max_growth,
            min_shrink=config.min_shrink,
            min_dt=config.selector_min_dt,
            max_dt=config.selector_max_dt,
            cut_factor=config.cut_factor,
        )
    return FixedTimestepSelector(cut_factor=config.cut_factor)


def selector_stats(selector: TimestepSelector) -> Dict[str, object]:
    """Describe a selector for run statistics."""
    stats: Dict[str, object] = {"selector": selector.name, "cut_factor": selector.cut_factor}
    if isinstance(selector, StateChangeTimestepSelector):
        stats.update(
            tracked_quantities=list(selector.quantities),
            target_change_abs=selector.target_change_abs,
            target_change_rel=selector.target_change_rel,
        )
    return stats
