"""Newton nonlinear solver for one step attempt.

The solver drives a single (start state, dt, control) attempt to
convergence or failure. It never raises for non-convergence: the verdict
goes into a ConvergenceReport and the driver decides whether to cut the
step, give up, or abort.

Iteration k = 1 .. max_iterations:
    1. Linearize at x_k and solve for the increment (model.solve_linear_step)
    2. Reduce the per-group residual norms to one number (model.convergence_norm)
    3. Stop as DIVERGED on a non-finite norm or increment
    4. Stop as CONVERGED when the norm is within nonlinear_tolerance
    5. Stop as DIVERGED when the norm grew by more than divergence_factor
       over each of the last two iterations
    6. x_{k+1} = model.apply_increment(x_k, delta)
"""

import math
from typing import Any, List, NamedTuple

import numpy as np

from stepjax._logging import logger
from stepjax.analysis.convergence import ConvergenceReport, ConvergenceVerdict
from stepjax.analysis.options import SolverConfig
from stepjax.models.base import Model, ResidualSystem

# Numerical breakdowns inside a model that count as a diverged attempt
NUMERICAL_ERRORS = (ArithmeticError, np.linalg.LinAlgError)


class NewtonResult(NamedTuple):
    """Result from the Newton solver.

    Attributes:
        iterate: Final iterate (the converged solution when report.converged)
        report: Convergence report for the attempt
    """

    iterate: Any
    report: ConvergenceReport


def _all_finite(values: Any) -> bool:
    try:
        return bool(np.all(np.isfinite(np.asarray(values))))
    except TypeError:
        # Object arrays and other non-numeric increments are left to the model
        return True


def _is_diverging(norms: List[float], factor: float) -> bool:
    """True when the norm grew by more than ``factor`` twice in a row."""
    if len(norms) < 3:
        return False
    a, b, c = norms[-3], norms[-2], norms[-1]
    return b > factor * a and c > factor * b


def newton_solve(model: Model, system: ResidualSystem, config: SolverConfig) -> NewtonResult:
    """Solve one time step with Newton iteration.

    Args:
        model: Model providing the linearization contract
        system: Residual system from model.apply_control()
        config: Solver configuration (max_iterations, tolerance, divergence guard)

    Returns:
        NewtonResult with the final iterate and a ConvergenceReport
    """
    report = ConvergenceReport()
    history: List[float] = []
    iterate = model.initial_iterate(system)

    for iteration in range(1, config.max_iterations + 1):
        try:
            increment, norms = model.solve_linear_step(system, iterate)
        except NUMERICAL_ERRORS as e:
            report.iterations = iteration
            report.verdict = ConvergenceVerdict.DIVERGED
            report.reason = f"linear solve failed: {e}"
            logger.debug(f"  NR iter {iteration}: {report.reason}")
            return NewtonResult(iterate, report)

        norms = {name: float(value) for name, value in norms.items()}
        norm = float(model.convergence_norm(norms))
        report.residual_norms.append(norms)
        report.iterations = iteration
        history.append(norm)

        logger.debug(f"  NR iter {iteration}: |r|={norm:.3e} {norms}")

        if not math.isfinite(norm):
            report.verdict = ConvergenceVerdict.DIVERGED
            report.reason = f"non-finite residual at iteration {iteration}"
            return NewtonResult(iterate, report)

        if norm <= config.nonlinear_tolerance:
            report.verdict = ConvergenceVerdict.CONVERGED
            report.reason = f"|r|={norm:.3e} <= {config.nonlinear_tolerance:.3e}"
            return NewtonResult(iterate, report)

        if _is_diverging(history, config.divergence_factor):
            report.verdict = ConvergenceVerdict.DIVERGED
            report.reason = (
                f"residual grew {history[-3]:.3e} -> {history[-2]:.3e} -> {history[-1]:.3e}"
            )
            return NewtonResult(iterate, report)

        if not _all_finite(increment):
            report.verdict = ConvergenceVerdict.DIVERGED
            report.reason = f"non-finite increment at iteration {iteration}"
            return NewtonResult(iterate, report)

        if iteration < config.max_iterations:
            iterate = model.apply_increment(iterate, increment)

    report.verdict = ConvergenceVerdict.MAX_ITERATIONS_EXCEEDED
    report.reason = (
        f"no convergence in {config.max_iterations} iterations "
        f"(|r|={history[-1]:.3e} > {config.nonlinear_tolerance:.3e})"
    )
    return NewtonResult(iterate, report)
