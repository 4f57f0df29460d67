"""
Main Analysis Runner for Boston Neighborhood Change Project

This script runs the complete pipeline:
1. Load the fixed neighborhood boundaries
2. For each census vintage (1940-2017): load tract counts, reallocate them
   onto the neighborhoods, and verify the population total
3. Merge all vintages into one neighborhood table
4. Derive density, racial composition and population change
5. Save the merged table

Usage:
    python run_analysis.py                        # Run every vintage
    python run_analysis.py --vintages 1990 2000   # Run specific vintages
    python run_analysis.py --format parquet       # Save as Parquet
"""

import argparse
import sys
from pathlib import Path
from datetime import datetime

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent))

from config import (
    VINTAGES, OUTPUT_FILE, OUTPUT_CONFIG, CONSERVATION_TOLERANCE,
    NEIGHBORHOOD_LAYER
)
from analysis.errors import ReallocationError
from analysis.pipeline import run_pipeline, save_merged_table
from data.load_data import load_neighborhoods


def print_header(title: str):
    """Print a formatted header."""
    print("\n" + "=" * 70)
    print(f"  {title}")
    print("=" * 70)


def select_vintages(year_labels: list = None) -> list:
    """
    Pick vintage records by year label, keeping config order.

    Args:
        year_labels: Year labels to keep; None keeps all

    Returns:
        List of vintage records
    """
    if not year_labels:
        return list(VINTAGES)

    known = {v['year_label'] for v in VINTAGES}
    unknown = sorted(set(year_labels) - known)
    if unknown:
        raise ValueError(f"Unknown vintages: {unknown}. Available: {sorted(known)}")

    return [v for v in VINTAGES if v['year_label'] in year_labels]


def run_full_analysis(year_labels: list = None,
                      output_path: Path = None,
                      fmt: str = None,
                      fill_missing: bool = False,
                      tolerance: float = CONSERVATION_TOLERANCE):
    """
    Run the complete pipeline and save the merged table.

    Args:
        year_labels: Vintages to run
        output_path: Output file
        fmt: 'csv' or 'parquet'
        fill_missing: Coerce missing tract counts to zero
        tolerance: Relative tolerance for conservation checks
    """
    vintages = select_vintages(year_labels)
    start_time = datetime.now()

    print_header("BOSTON NEIGHBORHOOD CHANGE")
    print(f"Started: {start_time.strftime('%Y-%m-%d %H:%M:%S')}")
    print(f"Vintages: {[v['year_label'] for v in vintages]}")
    print(f"Neighborhood layer: {NEIGHBORHOOD_LAYER}")

    print_header("NEIGHBORHOODS")
    neighborhoods = load_neighborhoods()

    print_header("REALLOCATION")
    merged, checks = run_pipeline(vintages, neighborhoods,
                                  fill_missing=fill_missing,
                                  tolerance=tolerance)

    print_header("OUTPUT")
    path = save_merged_table(merged, output_path, fmt)

    print_header("CONSERVATION SUMMARY")
    for year, check in checks.items():
        status = "conserved" if check['conserved'] else "expected residual"
        print(f"  {year}: {check['source_total']:>12,.0f} raw  "
              f"{check['result_total']:>14,.2f} reallocated  "
              f"delta {check['delta']:+,.2f} ({status})")

    duration = datetime.now() - start_time
    print_header("ANALYSIS COMPLETE")
    print(f"Duration: {duration}")
    print(f"Neighborhoods: {len(merged)}")
    print(f"Results saved to: {path}")

    return merged, checks


def main():
    """Main entry point."""
    parser = argparse.ArgumentParser(
        description="Reallocate Boston census tract counts onto neighborhoods, 1940-2017"
    )
    parser.add_argument(
        '--vintages', nargs='+',
        help='Year labels to run (e.g., --vintages 1990 2000)'
    )
    parser.add_argument(
        '--output', type=Path, default=OUTPUT_FILE,
        help='Output file for the merged table'
    )
    parser.add_argument(
        '--format', choices=['csv', 'parquet'], default=OUTPUT_CONFIG['format'],
        help='Output file format'
    )
    parser.add_argument(
        '--fill-missing', action='store_true',
        help='Treat missing tract counts as zero instead of failing'
    )
    parser.add_argument(
        '--tolerance', type=float, default=CONSERVATION_TOLERANCE,
        help='Relative tolerance for the conservation check'
    )

    args = parser.parse_args()

    try:
        run_full_analysis(
            year_labels=args.vintages,
            output_path=args.output,
            fmt=args.format,
            fill_missing=args.fill_missing,
            tolerance=args.tolerance,
        )
    except (ReallocationError, FileNotFoundError) as e:
        print(f"\nError: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
