"""
EV Charging Dataset Generator

Writes stations, customers, vehicles, sessions and station change files
for local development. Dates fall inside the configured calendar range.
"""

import argparse
from pathlib import Path

from src.data.generators import DataGenerator

OUTPUT_DIR = Path(__file__).parent.parent / "data" / "generated"


def main():
    parser = argparse.ArgumentParser(description="Generate a synthetic EV charging dataset")
    parser.add_argument("--output", default=str(OUTPUT_DIR))
    parser.add_argument("--sessions", type=int, default=5000)
    parser.add_argument("--stations", type=int, default=50)
    parser.add_argument("--customers", type=int, default=500)
    parser.add_argument("--vehicles", type=int, default=500)
    parser.add_argument("--seed", type=int, default=42)
    args = parser.parse_args()

    print("=" * 60)
    print("EV Charging Dataset Generator")
    print("=" * 60 + "\n")

    DataGenerator(output_dir=args.output, seed=args.seed).generate_all(
        n_stations=args.stations,
        n_customers=args.customers,
        n_vehicles=args.vehicles,
        n_sessions=args.sessions,
    )

    output = Path(args.output)
    total = 0
    for f in sorted(output.glob("*.csv")):
        size = f.stat().st_size / 1024 / 1024
        with open(f, "r") as file:
            rows = sum(1 for _ in file) - 1
        total += rows
        print(f"   {f.name}: {rows:,} rows ({size:.2f} MB)")

    print(f"\nTotal: {total:,} rows in {output}")


if __name__ == "__main__":
    main()
