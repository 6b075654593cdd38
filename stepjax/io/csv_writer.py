"""Write simulation results to CSV format.

Simple, portable format compatible with spreadsheets and data analysis tools.
"""

import csv
from pathlib import Path
from typing import Any, Dict, Optional, Sequence, Union

import numpy as np


def write_csv(
    result: Any,
    output_path: Union[str, Path],
    quantities: Optional[Sequence[str]] = None,
    precision: int = 9,
) -> None:
    """Write simulation results to CSV file.

    Format:
        time,current,soc,voltage,...
        60.0,5.0,0.99,4.18,...
        120.0,5.0,0.98,4.17,...
        ...

    Args:
        result: SimulationResult (anything with ``times`` and ``quantity(name)``)
        output_path: Path to output file
        quantities: Quantity columns to write (default: all, sorted by name)
        precision: Number of decimal places for scientific notation
    """
    output_path = Path(output_path)

    times = np.asarray(result.times)
    if quantities is None:
        quantities = sorted(result.quantity_names)
    columns = {name: result.quantity(name) for name in quantities}

    with open(output_path, "w", newline="") as f:
        writer = csv.writer(f)
        writer.writerow(["time"] + list(quantities))

        fmt = f"{{:.{precision}e}}"
        for i in range(len(times)):
            row = [fmt.format(times[i])]
            for name in quantities:
                row.append(fmt.format(columns[name][i]))
            writer.writerow(row)


def read_csv(input_path: Union[str, Path]) -> Dict[str, Any]:
    """Read simulation results from CSV file.

    Returns dict with:
        - times: array of output times
        - quantities: dict of quantity name -> array
    """
    input_path = Path(input_path)

    with open(input_path, "r", newline="") as f:
        reader = csv.reader(f)
        header = next(reader)
        names = header[1:]

        times = []
        data = {name: [] for name in names}
        for row in reader:
            times.append(float(row[0]))
            for i, name in enumerate(names):
                data[name].append(float(row[i + 1]))

    return {
        "times": np.array(times),
        "quantities": {name: np.array(values) for name, values in data.items()},
    }
