"""stepjax command-line interface.

Drives the reference equivalent-circuit cell through a
discharge / rest / constant-voltage schedule:
    stepjax run --current 5 --duration 3600 --cutoff 3.0
    stepjax run --current 5 --rest 600 --cv-voltage 4.1 -o cycle.csv
    stepjax run --selector change --target-change 0.01 --ministeps
    stepjax run --option max_iterations=40 --option error_on_failure=false
    stepjax info
"""

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import Dict, List, Optional

import jax

from stepjax import configure_precision, get_precision_info, set_log_level
from stepjax.analysis import RunStatus, Schedule, SolverConfig, below, simulate, uniform_interval
from stepjax.errors import ConfigurationError, SimulationAborted
from stepjax.models.ecm import (
    CellParameters,
    CurrentControl,
    EquivalentCircuitCell,
    Rest,
    VoltageControl,
)

SUCCESS_STATUSES = (RunStatus.COMPLETED, RunStatus.STOPPED_BY_CONDITION)


def setup_logging(verbose: int = 0, quiet: bool = False) -> None:
    """Configure logging based on verbosity level."""
    if quiet:
        level = logging.WARNING
    elif verbose >= 2:
        level = logging.DEBUG
    elif verbose >= 1:
        level = logging.INFO
    else:
        level = logging.WARNING
    set_log_level(level)


def parse_options(pairs: List[str]) -> Dict[str, str]:
    """Parse repeated ``key=value`` flags into a dict."""
    opts = {}
    for pair in pairs:
        if "=" not in pair:
            raise ConfigurationError(pair, "expected key=value")
        key, value = pair.split("=", 1)
        opts[key.strip()] = value.strip()
    return opts


def build_config(args: argparse.Namespace) -> SolverConfig:
    """SolverConfig from --option flags and the selector shortcuts."""
    opts: Dict[str, object] = dict(parse_options(args.option))
    if args.ministeps:
        opts["output_ministeps"] = True
    if args.selector == "change":
        opts.setdefault("timestep_selector", "change")
        opts.setdefault("target_change_abs", args.target_change)
        opts.setdefault("tracked_quantities", "voltage")
    return SolverConfig.from_dict(opts)


def build_schedule(args: argparse.Namespace) -> Schedule:
    """Discharge, optional rest and optional constant-voltage intervals."""
    intervals = [
        uniform_interval(
            args.duration,
            args.steps,
            CurrentControl(args.current),
            stop_conditions=[below("voltage", args.cutoff)],
            name="discharge",
        )
    ]
    if args.rest > 0:
        intervals.append(uniform_interval(args.rest, args.rest_steps, Rest(), name="rest"))
    if args.cv_voltage is not None:
        cv_stop = [] if args.cv_cutoff_current is None else [
            below("current", args.cv_cutoff_current)
        ]
        intervals.append(
            uniform_interval(
                args.cv_duration,
                args.cv_steps,
                VoltageControl(args.cv_voltage),
                stop_conditions=cv_stop,
                name="cv",
            )
        )
    return Schedule(tuple(intervals))


def _write_output(result, output_path: Path, fmt: str) -> None:
    """Write simulation results to file."""
    if fmt == "csv":
        from stepjax.io.csv_writer import write_csv

        write_csv(result, output_path)
    else:
        data = {
            "times": result.times.tolist(),
            "quantities": {name: result.quantity(name).tolist() for name in result.quantity_names},
            "stats": result.report.stats(),
        }
        with open(output_path, "w") as f:
            json.dump(data, f, indent=2)


def cmd_run(args: argparse.Namespace) -> int:
    """Run the reference cell through a schedule."""
    if args.x64:
        configure_precision(force_x64=True)
    elif args.x32:
        configure_precision(force_x64=False)

    try:
        config = build_config(args)
        schedule = build_schedule(args)
        params = CellParameters(capacity_ah=args.capacity, initial_soc=args.initial_soc)
    except (ConfigurationError, ValueError) as e:
        print(f"Error: invalid configuration: {e}", file=sys.stderr)
        return 1

    model = EquivalentCircuitCell(params)
    try:
        result = simulate(model, schedule, config)
    except SimulationAborted as e:
        print(f"Error: simulation aborted: {e}", file=sys.stderr)
        result = e.result

    stats = result.report.stats()
    print(
        f"{result.status.value}: {len(result)} states, t_end="
        f"{result.final_state.time if result.final_state else 0.0:.1f}s, "
        f"{stats['accepted_steps']} steps, {stats['rejected_steps']} rejected, "
        f"{stats['total_nr_iterations']} NR iters"
    )
    if result.report.stop_condition:
        print(f"Stopped by: {result.report.stop_condition}")

    if args.output:
        output_path = Path(args.output)
        fmt = args.format or ("json" if output_path.suffix == ".json" else "csv")
        _write_output(result, output_path, fmt)
        print(f"Results written to: {output_path}")

    return 0 if result.status in SUCCESS_STATUSES else 1


def cmd_info(args: argparse.Namespace) -> int:
    """Show system information."""
    import stepjax

    info = get_precision_info()
    print("stepjax System Information")
    print("-" * 40)
    print(f"Version: {stepjax.__version__}")
    print(f"Backend: {info['backend']}")
    print(f"Float64 enabled: {info['x64_enabled']}")
    print(f"State dtype: {info['float_dtype']}")
    print(f"Devices: {jax.devices()}")
    return 0


def create_parser() -> argparse.ArgumentParser:
    """Create argument parser."""
    parser = argparse.ArgumentParser(
        prog="stepjax",
        description="stepjax: adaptive time integration through control schedules",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  stepjax run --current 5 --duration 3600 --cutoff 3.0
  stepjax run --current 5 --rest 600 --cv-voltage 4.1 -o cycle.csv
  stepjax run --selector change --target-change 0.01 --ministeps
  stepjax run --option max_iterations=40 --option error_on_failure=false
        """,
    )
    parser.add_argument("--version", action="version", version="%(prog)s 0.1.0")
    parser.add_argument(
        "-v", "--verbose", action="count", default=0, help="Increase verbosity (use -vv for debug)"
    )
    parser.add_argument("-q", "--quiet", action="store_true", help="Suppress non-error output")

    subparsers = parser.add_subparsers(dest="command", help="Commands")

    run_parser = subparsers.add_parser("run", help="Simulate the reference cell")
    run_parser.add_argument("-o", "--output", help="Output file path")
    run_parser.add_argument(
        "-f", "--format", choices=["csv", "json"], help="Output format (default: from suffix)"
    )

    # Cell
    run_parser.add_argument("--capacity", type=float, default=5.0, help="Capacity in Ah")
    run_parser.add_argument("--initial-soc", type=float, default=1.0, help="Initial SOC (0, 1]")

    # Schedule
    run_parser.add_argument("--current", type=float, default=5.0, help="Discharge current (A)")
    run_parser.add_argument("--duration", type=float, default=3600.0, help="Discharge time (s)")
    run_parser.add_argument("--steps", type=int, default=60, help="Discharge steps")
    run_parser.add_argument("--cutoff", type=float, default=3.0, help="Discharge cutoff (V)")
    run_parser.add_argument("--rest", type=float, default=0.0, help="Rest time after discharge (s)")
    run_parser.add_argument("--rest-steps", type=int, default=10, help="Rest steps")
    run_parser.add_argument("--cv-voltage", type=float, help="Constant-voltage hold (V)")
    run_parser.add_argument("--cv-duration", type=float, default=1800.0, help="CV time (s)")
    run_parser.add_argument("--cv-steps", type=int, default=30, help="CV steps")
    run_parser.add_argument(
        "--cv-cutoff-current", type=float, help="End the CV hold below this current (A)"
    )

    # Solver
    run_parser.add_argument(
        "--selector", choices=["fixed", "change"], default="fixed", help="Time-step selector"
    )
    run_parser.add_argument(
        "--target-change",
        type=float,
        default=0.01,
        help="Target voltage change per step for --selector change (V)",
    )
    run_parser.add_argument("--ministeps", action="store_true", help="Output every sub-step")
    run_parser.add_argument(
        "--option",
        action="append",
        default=[],
        metavar="KEY=VALUE",
        help="Set any SolverConfig option (repeatable)",
    )
    run_parser.add_argument("--x64", action="store_true", help="Force float64 precision")
    run_parser.add_argument("--x32", action="store_true", help="Force float32 precision")
    run_parser.set_defaults(func=cmd_run)

    info_parser = subparsers.add_parser("info", help="Show system information")
    info_parser.set_defaults(func=cmd_info)

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point."""
    parser = create_parser()
    args = parser.parse_args(argv)

    setup_logging(args.verbose, args.quiet)

    if hasattr(args, "func"):
        return args.func(args)
    parser.print_help()
    return 0


if __name__ == "__main__":
    sys.exit(main())
