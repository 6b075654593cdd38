"""Convergence reporting for nonlinear step attempts."""

import math
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional


class ConvergenceVerdict(Enum):
    """Terminal verdict of one Newton solve."""

    CONVERGED = "converged"
    DIVERGED = "diverged"
    MAX_ITERATIONS_EXCEEDED = "max_iterations_exceeded"


@dataclass
class ConvergenceReport:
    """Record of one nonlinear solve.

    Attributes:
        residual_norms: Per-iteration mapping of equation group to residual norm
        verdict: How the solve ended
        iterations: Number of linearizations performed
        reason: Human-readable explanation of the verdict
    """

    residual_norms: List[Dict[str, float]] = field(default_factory=list)
    verdict: ConvergenceVerdict = ConvergenceVerdict.MAX_ITERATIONS_EXCEEDED
    iterations: int = 0
    reason: str = ""

    @property
    def converged(self) -> bool:
        return self.verdict is ConvergenceVerdict.CONVERGED

    @property
    def final_norm(self) -> Optional[float]:
        """Largest group norm of the last iteration, or None before any iteration."""
        if not self.residual_norms:
            return None
        last = self.residual_norms[-1]
        return max(last.values()) if last else 0.0

    def worst_group(self) -> Optional[str]:
        """Equation group with the largest residual in the last iteration."""
        if not self.residual_norms or not self.residual_norms[-1]:
            return None
        last = self.residual_norms[-1]
        return max(last, key=lambda k: last[k] if math.isfinite(last[k]) else math.inf)

    def summary(self) -> str:
        norm = self.final_norm
        norm_str = f"{norm:.3e}" if norm is not None else "n/a"
        return f"{self.verdict.value} after {self.iterations} its (|r|={norm_str})"
