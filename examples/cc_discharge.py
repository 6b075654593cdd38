"""Constant-current discharge of an equivalent-circuit cell

Discharges half of a 5 Ah cell at 1C (with a 3.0 V cutoff as a guard),
rests it, then charges at 4.0 V until the current tapers to C/20.
Runs the schedule twice: once with the schedule's fixed steps and once
with the state-change selector, which refines the step wherever the
voltage moves fastest.
"""

import logging

import numpy as np

from stepjax import Schedule, SolverConfig, above, below, enable_performance_logging, simulate
from stepjax.analysis import uniform_interval
from stepjax.io import write_csv
from stepjax.models import CellParameters, CurrentControl, EquivalentCircuitCell, Rest, VoltageControl


def build_schedule(capacity_ah: float) -> Schedule:
    """30 min 1C discharge, 10 min rest, CV charge at 4.0 V to C/20."""
    current = capacity_ah
    return Schedule(
        (
            uniform_interval(
                1800.0,
                30,
                CurrentControl(current),
                stop_conditions=[below("voltage", 3.0)],
                name="discharge",
            ),
            uniform_interval(600.0, 10, Rest(), name="rest"),
            uniform_interval(
                3600.0,
                60,
                VoltageControl(4.0),
                stop_conditions=[above("current", -current / 20)],
                name="cv",
            ),
        )
    )


def run(config: SolverConfig, label: str):
    cell = EquivalentCircuitCell(CellParameters(capacity_ah=5.0))
    result = simulate(cell, build_schedule(5.0), config)
    stats = result.report.stats()

    print(f"\n{label}")
    print(f"  status:       {result.status.value}")
    print(f"  end time:     {result.final_state.time:.1f} s")
    print(f"  final SOC:    {result.final_state.quantity('soc'):.4f}")
    print(f"  min voltage:  {np.min(result.quantity('voltage')):.4f} V")
    print(f"  steps:        {stats['accepted_steps']} accepted, {stats['rejected_steps']} rejected")
    print(f"  dt range:     {stats['min_dt']:.3g} .. {stats['max_dt']:.3g} s")
    print(f"  NR iters:     {stats['total_nr_iterations']} ({stats['avg_nr_iterations']:.2f}/step)")
    return result


if __name__ == "__main__":
    import sys

    if "-v" in sys.argv:
        enable_performance_logging(with_memory=False)
    else:
        logging.getLogger("stepjax").setLevel(logging.WARNING)

    run(SolverConfig(), "Fixed steps (schedule checkpoints)")
    adaptive = run(
        SolverConfig(
            timestep_selector="change",
            target_change_abs=0.01,
            tracked_quantities=("voltage",),
            output_ministeps=True,
        ),
        "State-change selector (every sub-step)",
    )
    write_csv(adaptive, "cc_discharge.csv")
    print("\nWaveforms written to cc_discharge.csv")
