#!/usr/bin/env python3
"""
run_reserve.py - Survivor Pension Reserve Runner

Runs the reserve pipeline from start to finish:
1. Load demographic inputs (paired estimates to smooth, or smoothed tables)
2. Load the mortality basis (built-in table or file)
3. Build the charge table for every age to ω
4. Compute reserves and interest-rate sensitivity
5. Save CSV tables or an Excel workbook

Usage:
    python run_reserve.py --paired paired_estimates.csv --output results.xlsx

    python run_reserve.py \\
        --smoothed smoothed_tables.csv \\
        --mortality mortality.csv \\
        --config valuation.json \\
        --interest-rate 0.06 \\
        --samples 10000 \\
        --output results/

Author: Actuarial Pipeline Project
License: MIT
"""

import argparse
import sys
import logging
from pathlib import Path
from typing import Any, Dict, Optional

import pydantic

from survivor_reserve import ValuationConfig, create_engine, load_config
from survivor_reserve.exceptions import DataAvailabilityError, ValidationError
from survivor_reserve.tables import (
    load_demographic_tables,
    load_mortality,
    load_paired_estimates,
    save_csv,
    save_workbook,
)

# Set up logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


def build_config(config_path: Optional[str], overrides: Dict[str, Any]) -> ValuationConfig:
    """Configuration file (or defaults) with command-line overrides applied."""
    config = load_config(config_path) if config_path else ValuationConfig()
    overrides = {k: v for k, v in overrides.items() if v is not None}
    if not overrides:
        return config
    try:
        return ValuationConfig.model_validate({**config.model_dump(), **overrides})
    except pydantic.ValidationError as e:
        raise ValidationError(f"Invalid command-line override: {e}") from e


def run_reserve(
    output_path: str,
    config: ValuationConfig,
    paired_path: Optional[str] = None,
    smoothed_path: Optional[str] = None,
    mortality_path: Optional[str] = None,
    include_sensitivity: bool = True,
) -> Dict[str, Any]:
    """
    Run a complete survivor reserve valuation.

    Args:
        output_path: .xlsx workbook, or a directory for CSV tables
        config: Run configuration
        paired_path: Paired estimates to smooth
        smoothed_path: Pre-smoothed demographic tables (skips smoothing)
        mortality_path: Mortality file (built-in table from config if omitted)
        include_sensitivity: Also compute the interest-rate sensitivity

    Returns:
        Summary dictionary of the run
    """
    print("=" * 70)
    print("SURVIVOR PENSION RESERVE")
    print("=" * 70)
    print(f"Inputs:      {smoothed_path or paired_path}")
    print(f"Mortality:   {mortality_path or config.mortality_table}")
    print(f"Output:      {output_path}")
    print(f"Interest:    {config.interest_rate:.2%}")
    print(f"Samples:     {config.n_samples:,}")
    print()

    # ================================================================
    # STEP 1: Demographic inputs
    # ================================================================
    print("Step 1: Loading demographic inputs...")
    demographics = None
    paired = None
    if smoothed_path:
        demographics = load_demographic_tables(smoothed_path, policy=config.lookup_policy,
                                               sd_floor=config.smoothing.sd_floor,
                                               age_bounds=config.member_age_bounds)
    else:
        paired = load_paired_estimates(paired_path)
        print(f"  Paired estimates: {len(paired)} rows")
    mortality = load_mortality(mortality_path) if mortality_path else None
    print()

    # ================================================================
    # STEP 2: Charges, reserves, sensitivity
    # ================================================================
    print("Step 2: Running reserve engine...")
    engine = create_engine(config, demographics=demographics, paired=paired,
                           mortality=mortality)
    result = engine.run(include_sensitivity=include_sensitivity)
    summary = result.get_summary()
    print(f"  Charge cells:  {summary['charge_cells']}")
    print(f"  Reserve cells: {summary['reserve_cells']}")
    print(f"  Mean reserve:  {summary['mean_reserve']:.4f} years of benefit")
    print()

    # ================================================================
    # STEP 3: Save
    # ================================================================
    print("Step 3: Saving output...")
    output = Path(output_path)
    if output.suffix.lower() == '.xlsx':
        save_workbook(result, output)
    else:
        save_csv(result, output)
    print(f"  Output saved to: {output}")
    print()

    return summary


def main():
    parser = argparse.ArgumentParser(
        description='Run Survivor Pension Reserve Valuation',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Smooth paired estimates and write a workbook
  python run_reserve.py --paired paired.csv --output results.xlsx

  # Use pre-smoothed tables and a custom mortality file, CSV output
  python run_reserve.py \\
      --smoothed smoothed.csv \\
      --mortality mortality.csv \\
      --interest-rate 0.05 \\
      --output results/
"""
    )

    source = parser.add_mutually_exclusive_group(required=True)
    source.add_argument('--paired', type=str, help='Paired estimates file (CSV or Excel)')
    source.add_argument('--smoothed', type=str, help='Smoothed demographic tables (CSV or Excel)')
    parser.add_argument('--mortality', type=str, help='Mortality table file (age, sex, qx)')
    parser.add_argument('--config', type=str, help='JSON configuration file')
    parser.add_argument('--output', type=str, required=True,
                        help='Output .xlsx file or directory for CSV tables')
    parser.add_argument('--interest-rate', type=float, help='Discount rate (e.g., 0.06)')
    parser.add_argument('--samples', type=int, help='Monte Carlo samples per cell')
    parser.add_argument('--seed', type=int, help='Random seed')
    parser.add_argument('--min-age', type=int, help='Youngest member age in the output grid')
    parser.add_argument('--max-age', type=int, help='Oldest member age in the output grid')
    parser.add_argument('--no-sensitivity', action='store_true',
                        help='Skip the interest-rate sensitivity')

    args = parser.parse_args()

    try:
        config = build_config(args.config, {
            'interest_rate': args.interest_rate,
            'n_samples': args.samples,
            'seed': args.seed,
            'min_age': args.min_age,
            'max_age': args.max_age,
        })
        run_reserve(
            output_path=args.output,
            config=config,
            paired_path=args.paired,
            smoothed_path=args.smoothed,
            mortality_path=args.mortality,
            include_sensitivity=not args.no_sensitivity,
        )
    except (ValidationError, DataAvailabilityError) as e:
        print(f"ERROR: {e}")
        sys.exit(1)


if __name__ == '__main__':
    main()
