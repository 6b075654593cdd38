"""stepjax: adaptive nonlinear time integration through control schedules"""

import jax
import jax.numpy as jnp

from stepjax._logging import enable_performance_logging, logger, set_log_level

__version__ = "0.1.0"

# Backends without float64 support
_X32_ONLY_BACKENDS = ("metal", "iree_metal", "tpu")


def _backend_supports_x64() -> bool:
    """Whether the default JAX backend and its devices can hold float64 state."""
    try:
        backend = jax.default_backend().lower()
        platforms = [getattr(d, "platform", "").lower() for d in jax.devices()]
    except RuntimeError:
        # JAX falls back to CPU, which has float64
        return True
    if backend in _X32_ONLY_BACKENDS:
        return False
    return not any("metal" in p for p in platforms)


def configure_precision(force_x64: bool | None = None) -> bool:
    """Select the float width used for model states and Newton iterates.

    Residual norms are compared against tolerances down to 1e-6 relative,
    which float32 cannot resolve reliably, so float64 is used wherever the
    backend has it.

    Args:
        force_x64: True or False overrides the backend check; None detects.

    Returns:
        Whether float64 is now enabled.
    """
    use_x64 = _backend_supports_x64() if force_x64 is None else force_x64
    jax.config.update("jax_enable_x64", use_x64)
    if use_x64:
        logger.info("stepjax: float64 states")
    else:
        logger.warning("stepjax: float32 states, tight Newton tolerances may not be met")
    return use_x64


def get_float_dtype():
    """dtype of model states under the current precision setting."""
    return jnp.float64 if jax.config.jax_enable_x64 else jnp.float32


def get_precision_info() -> dict:
    """Precision and backend summary, as shown by ``stepjax info``."""
    return {
        "x64_enabled": bool(jax.config.jax_enable_x64),
        "float_dtype": jnp.dtype(get_float_dtype()).name,
        "backend": jax.default_backend(),
        "backend_supports_x64": _backend_supports_x64(),
    }


configure_precision()

# Core simulation API
from stepjax.analysis import (  # noqa: E402
    ControlInterval,
    ConvergenceReport,
    ConvergenceVerdict,
    FixedTimestepSelector,
    Report,
    RunStatus,
    Schedule,
    SimulationDriver,
    SimulationResult,
    SolverConfig,
    StateChangeTimestepSelector,
    TimestepSelector,
    above,
    any_of,
    below,
    crosses,
    simulate,
    time_reached,
)
from stepjax.errors import ConfigurationError, SimulationAborted, StepjaxError  # noqa: E402
from stepjax.models import Model, ResidualModel, ResidualSystem, State  # noqa: E402

__all__ = [
    # Core API
    "simulate",
    "SimulationDriver",
    "SimulationResult",
    "Report",
    "RunStatus",
    "SolverConfig",
    "Schedule",
    "ControlInterval",
    "ConvergenceReport",
    "ConvergenceVerdict",
    # Model interface
    "Model",
    "ResidualModel",
    "ResidualSystem",
    "State",
    # Time-step selection
    "TimestepSelector",
    "FixedTimestepSelector",
    "StateChangeTimestepSelector",
    # Stop conditions
    "below",
    "above",
    "crosses",
    "time_reached",
    "any_of",
    # Errors
    "StepjaxError",
    "ConfigurationError",
    "SimulationAborted",
    # Precision configuration
    "configure_precision",
    "get_precision_info",
    "get_float_dtype",
    # Logging
    "logger",
    "enable_performance_logging",
    "set_log_level",
]
