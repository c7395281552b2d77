#!/usr/bin/env python3
"""Synthetic component takeoff generator.

Writes a spreadsheet in the shape engineering exports usually have:

- Row 1: header row (DRAWING, CMDTY CODE, TYPE, QTY, SIZE, SPEC, DESCRIPTION, ...)
- Row 2+: one line per takeoff item; the same commodity code appears on
  several drawings and now and then twice on the same drawing

Useful for trying chunk sizes and for manual runs of the CLI.
"""
from __future__ import annotations

import argparse
import sys
from pathlib import Path

import numpy as np
import pandas as pd

TYPES = [
    "Gate Valve", "Ball Valve", "VLV", "Pipe", "Spool", "Elbow 90", "Tee",
    "Weld Neck Flange", "Gasket", "Pipe Support", "Hanger", "Pressure Gauge",
    "Field Weld", "Strainer",
]
SIZES = ['1/2"', '3/4"', '1"', '2"', '3"', '4"', '6"', '8"']
SPECS = ["CS150", "CS300", "SS150", "SS300"]
AREAS = ["A100", "A200", "B100"]
SYSTEMS = ["COOLING WATER", "STEAM", "INSTRUMENT AIR", "FIRE WATER"]


def generate_components(rows: int, drawings: int, seed: int = 42) -> pd.DataFrame:
    """Random takeoff lines; quantities follow a small geometric distribution."""
    rng = np.random.default_rng(seed)
    drawing_numbers = [f"P-{35000 + i:05d}" for i in range(drawings)]
    codes = [f"CC-{i:05d}" for i in range(max(rows // 3, 1))]
    return pd.DataFrame({
        "DRAWING": rng.choice(drawing_numbers, rows),
        "CMDTY CODE": rng.choice(codes, rows),
        "TYPE": rng.choice(TYPES, rows),
        "QTY": rng.geometric(0.5, rows),
        "SIZE": rng.choice(SIZES, rows),
        "SPEC": rng.choice(SPECS, rows),
        "DESCRIPTION": [f"Takeoff item {i + 1}" for i in range(rows)],
        "AREA": rng.choice(AREAS, rows),
        "SYSTEM": rng.choice(SYSTEMS, rows),
        "TEST PACKAGE": [f"TP-{n:03d}" for n in rng.integers(1, 40, rows)],
    })


def write_dataset(output_path: Path, rows: int, drawings: int, seed: int = 42) -> None:
    df = generate_components(rows, drawings, seed)
    output_path.parent.mkdir(parents=True, exist_ok=True)
    if output_path.suffix.lower() == ".csv":
        df.to_csv(output_path, index=False)
    else:
        df.to_excel(output_path, index=False, engine="openpyxl")
    print(f"Created {output_path}: {rows} rows, {df['DRAWING'].nunique()} drawings, "
          f"{int(df['QTY'].sum())} instances requested")


def main() -> int:
    parser = argparse.ArgumentParser(
        description="Generate a synthetic component takeoff (.xlsx or .csv)",
    )
    parser.add_argument("output", type=Path, help="Output file (.xlsx or .csv)")
    parser.add_argument("--rows", type=int, default=5000, help="Takeoff lines (default 5000)")
    parser.add_argument("--drawings", type=int, default=50, help="Distinct drawings (default 50)")
    parser.add_argument("--seed", type=int, default=42, help="Random seed (default 42)")
    args = parser.parse_args()

    if args.rows <= 0 or args.drawings <= 0:
        print("Error: --rows and --drawings must be positive", file=sys.stderr)
        return 1
    write_dataset(args.output, args.rows, args.drawings, args.seed)
    return 0


if __name__ == "__main__":
    sys.exit(main())
