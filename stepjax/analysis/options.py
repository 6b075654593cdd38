"""Solver configuration with validation and string parsing.

SolverConfig is an immutable value: build it once, pass it to the driver,
and derive variants with ``replace`` instead of mutating shared options.

Example usage:
    # Via Python API
    config = SolverConfig(max_iterations=30, error_on_failure=False)
    strict = config.replace(nonlinear_tolerance=1e-9)

    # Via key=value strings (CLI --option flags)
    config = SolverConfig.from_dict({"timestep_selector": "change",
                                     "target_change_abs": "0.02",
                                     "tracked_quantities": "voltage"})
"""

import dataclasses
import math
from dataclasses import dataclass, fields
from typing import Any, Dict, Mapping, Optional, Tuple

from stepjax.config import (
    DEFAULT_CUT_FACTOR,
    DEFAULT_DIVERGENCE_FACTOR,
    DEFAULT_MAX_GROWTH,
    DEFAULT_MAX_ITERATIONS,
    DEFAULT_MAX_TIMESTEP_CUTS,
    DEFAULT_MIN_DT,
    DEFAULT_MIN_SHRINK,
    DEFAULT_NONLINEAR_TOLERANCE,
)
from stepjax.errors import ConfigurationError

TIMESTEP_SELECTORS = ("fixed", "change")


def _parse_bool(value: Any) -> bool:
    """Parse a boolean from various input types."""
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        return value.lower() in ("true", "1", "yes", "on")
    return bool(value)


def _parse_optional_float(value: Any) -> Optional[float]:
    if value is None:
        return None
    if isinstance(value, str) and value.strip().lower() in ("", "none", "null"):
        return None
    return float(value)


def _parse_names(value: Any) -> Tuple[str, ...]:
    if isinstance(value, str):
        return tuple(name.strip() for name in value.split(",") if name.strip())
    return tuple(str(name) for name in value)


@dataclass(frozen=True)
class SolverConfig:
    """Immutable configuration for a simulation run.

    Options are validated on construction. Invalid values raise
    ConfigurationError naming the offending field.
    """

    # Newton solver
    max_iterations: int = DEFAULT_MAX_ITERATIONS
    """Max Newton iterations (linearizations) per step attempt."""

    nonlinear_tolerance: float = DEFAULT_NONLINEAR_TOLERANCE
    """Convergence threshold on the model's convergence norm."""

    divergence_factor: float = DEFAULT_DIVERGENCE_FACTOR
    """Residual growth ratio that, over two consecutive iterations, marks divergence."""

    # Failure policy
    error_on_failure: bool = True
    """Raise SimulationAborted when cuts are exhausted. If False, return partial output."""

    cut_factor: float = DEFAULT_CUT_FACTOR
    """Timestep cut factor when Newton fails. New dt = dt * cut_factor."""

    min_dt: float = DEFAULT_MIN_DT
    """Smallest step that may be attempted after cutting."""

    max_timestep_cuts: int = DEFAULT_MAX_TIMESTEP_CUTS
    """Max consecutive cuts of one step before giving up."""

    # Time-step selection
    timestep_selector: str = "fixed"
    """'fixed' (schedule step lengths) or 'change' (state-change target)."""

    target_change_abs: Optional[float] = None
    """Target absolute change of the tracked quantities per step."""

    target_change_rel: Optional[float] = None
    """Target relative change of the tracked quantities per step."""

    tracked_quantities: Tuple[str, ...] = ()
    """Quantity names the 'change' selector watches."""

    max_growth: float = DEFAULT_MAX_GROWTH
    """Max factor by which dt may grow between accepted steps."""

    min_shrink: float = DEFAULT_MIN_SHRINK
    """Min factor by which dt may shrink between accepted steps."""

    selector_min_dt: float = 0.0
    """Floor on the dt proposed by the 'change' selector."""

    selector_max_dt: float = math.inf
    """Ceiling on the dt proposed by the 'change' selector."""

    # Output and run control
    output_ministeps: bool = False
    """Keep every accepted sub-step instead of only the schedule checkpoints."""

    max_wall_time: Optional[float] = None
    """Wall-clock limit in seconds, checked between steps."""

    progress_interval: int = 0
    """Log progress every N accepted steps (0 = off)."""

    def __post_init__(self):
        # Normalize sequence input so the value stays hashable
        object.__setattr__(self, "tracked_quantities", _parse_names(self.tracked_quantities))
        self._validate_all()

    def _validate_all(self):
        """Validate all option values."""
        if self.max_iterations < 1:
            self._fail("max_iterations", f"must be >= 1, got {self.max_iterations}")
        if not (self.nonlinear_tolerance > 0):
            self._fail("nonlinear_tolerance", f"must be positive, got {self.nonlinear_tolerance}")
        if not (self.divergence_factor > 1):
            self._fail("divergence_factor", f"must be > 1, got {self.divergence_factor}")
        if not (0 < self.cut_factor < 1):
            self._fail("cut_factor", f"must be in (0, 1), got {self.cut_factor}")
        if not (self.min_dt >= 0):
            self._fail("min_dt", f"must be non-negative, got {self.min_dt}")
        if self.max_timestep_cuts < 0:
            self._fail("max_timestep_cuts", f"must be >= 0, got {self.max_timestep_cuts}")
        if self.timestep_selector not in TIMESTEP_SELECTORS:
            self._fail(
                "timestep_selector",
                f"must be one of {TIMESTEP_SELECTORS}, got {self.timestep_selector!r}",
            )
        for name in ("target_change_abs", "target_change_rel"):
            value = getattr(self, name)
            if value is not None and not (value > 0):
                self._fail(name, f"must be positive, got {value}")
        if not (self.max_growth >= 1):
            self._fail("max_growth", f"must be >= 1, got {self.max_growth}")
        if not (0 < self.min_shrink <= 1):
            self._fail("min_shrink", f"must be in (0, 1], got {self.min_shrink}")
        if not (self.selector_min_dt >= 0):
            self._fail("selector_min_dt", f"must be non-negative, got {self.selector_min_dt}")
        if not (self.selector_max_dt > 0) or self.selector_max_dt < self.selector_min_dt:
            self._fail(
                "selector_max_dt",
                f"must be positive and >= selector_min_dt, got {self.selector_max_dt}",
            )
        if self.max_wall_time is not None and not (self.max_wall_time > 0):
            self._fail("max_wall_time", f"must be positive, got {self.max_wall_time}")
        if self.progress_interval < 0:
            self._fail("progress_interval", f"must be >= 0, got {self.progress_interval}")

        if self.timestep_selector == "change":
            if self.target_change_abs is None and self.target_change_rel is None:
                self._fail(
                    "target_change_abs",
                    "the 'change' selector needs target_change_abs or target_change_rel",
                )
            if not self.tracked_quantities:
                self._fail("tracked_quantities", "the 'change' selector needs at least one name")

    @staticmethod
    def _fail(name: str, message: str):
        raise ConfigurationError(name, message)

    def replace(self, **changes: Any) -> "SolverConfig":
        """Return a new validated configuration with ``changes`` applied.

        Raises:
            ConfigurationError: If an option name is unknown or a value is invalid
        """
        known = {f.name for f in fields(self)}
        for name in changes:
            if name not in known:
                raise ConfigurationError(name, "unknown option")
        return dataclasses.replace(self, **changes)

    @classmethod
    def from_dict(cls, opts: Mapping[str, Any]) -> "SolverConfig":
        """Build a configuration from a mapping of option names to values.

        String values are converted to the field's type, so the mapping can
        come straight from ``key=value`` command-line flags or a JSON file.

        Raises:
            ConfigurationError: If an option name is unknown or a value cannot be parsed
        """
        return cls().update(opts)

    def update(self, opts: Mapping[str, Any]) -> "SolverConfig":
        """Like ``replace`` but parses string values."""
        field_types = {f.name: f.type for f in fields(self)}
        parsed: Dict[str, Any] = {}
        for name, value in opts.items():
            if name not in field_types:
                raise ConfigurationError(name, "unknown option")
            try:
                parsed[name] = _convert(field_types[name], value)
            except (TypeError, ValueError) as e:
                raise ConfigurationError(name, f"cannot parse {value!r}: {e}") from e
        return self.replace(**parsed)

    def to_dict(self) -> Dict[str, Any]:
        """Convert options to a JSON-friendly dictionary."""
        result = {}
        for f in fields(self):
            value = getattr(self, f.name)
            if isinstance(value, tuple):
                value = list(value)
            result[f.name] = value
        return result


def _convert(field_type: Any, value: Any) -> Any:
    """Convert ``value`` to a SolverConfig field type."""
    if field_type in (int, "int"):
        return int(value)
    if field_type in (float, "float"):
        return float(value)
    if field_type in (bool, "bool"):
        return _parse_bool(value)
    if field_type in (str, "str"):
        return str(value).strip("\"'")
    if field_type in (Optional[float], "Optional[float]"):
        return _parse_optional_float(value)
    if field_type in (Tuple[str, ...], "Tuple[str, ...]"):
        return _parse_names(value)
    return value
