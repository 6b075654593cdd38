"""Exceptions raised by stepjax.

Only two kinds of failure leave the driver as exceptions: configuration
errors, detected before the stepping loop starts, and aborted runs when
``error_on_failure`` is set. Everything else that goes wrong during a
step is recorded in the run report.
"""

from typing import TYPE_CHECKING, Optional

if TYPE_CHECKING:
    from stepjax.analysis.convergence import ConvergenceReport
    from stepjax.analysis.driver import SimulationResult


class StepjaxError(Exception):
    """Base class for stepjax errors."""

    pass


class ConfigurationError(StepjaxError, ValueError):
    """Invalid schedule or solver configuration.

    Attributes:
        field: Name of the offending configuration field
    """

    def __init__(self, field: str, message: str):
        self.field = field
        super().__init__(f"{field}: {message}")


class SimulationAborted(StepjaxError, RuntimeError):
    """A step could not be converged down to the minimum step size.

    Attributes:
        result: Partial result accumulated before the failure (status ABORTED)
        report: Convergence report of the last failed attempt
    """

    def __init__(
        self,
        message: str,
        result: "SimulationResult",
        report: Optional["ConvergenceReport"] = None,
    ):
        self.result = result
        self.report = report
        super().__init__(message)
