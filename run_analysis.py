#!/usr/bin/env python3
"""
Anthropometry Engine - Main CLI Script

This is the main entry point for anthropometric body composition analysis. It
provides a command-line interface with helpful error messages and delegates
the core analysis logic to the core module.
"""

import argparse
import logging
import os

from core import run_analysis
from shared_models import BMRFormula, DensityProfile


def main(argv=None):
    """Main CLI function with argument parsing."""
    parser = argparse.ArgumentParser(
        description="Anthropometric body composition and energy expenditure analysis",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python run_analysis.py                              # Use example_config.json
  python run_analysis.py evaluation.json              # Use custom evaluation file
  python run_analysis.py evaluation.json --profile athlete --formula harris
  python run_analysis.py evaluation.json --csv results.csv

Run with --help-config to see the expected JSON format.
        """,
    )

    parser.add_argument(
        "config_file",
        nargs="?",
        default="example_config.json",
        help="Path to JSON evaluation file (default: example_config.json)",
    )

    parser.add_argument(
        "--profile",
        "-p",
        choices=[p.value for p in DensityProfile],
        help="Skinfold density equation profile (overrides patient_info.profile)",
    )

    parser.add_argument(
        "--formula",
        "-f",
        choices=[f.value for f in BMRFormula],
        help="BMR formula (overrides patient_info.bmr_formula)",
    )

    parser.add_argument(
        "--csv",
        dest="csv_path",
        help="Write the per-evaluation results table to this CSV file",
    )

    parser.add_argument(
        "--log-level",
        default="WARNING",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging verbosity (default: WARNING)",
    )

    parser.add_argument(
        "--help-config",
        action="store_true",
        help="Show detailed help about the JSON evaluation format",
    )

    args = parser.parse_args(argv)

    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    if args.help_config:
        show_config_help()
        return 0

    if not os.path.exists(args.config_file):
        print(f"Error: Evaluation file not found: {args.config_file}")
        print()
        if args.config_file == "example_config.json":
            print("The example evaluation file is missing.")
            print("Please ensure example_config.json exists in the current directory.")
        else:
            print("Please check the file path and try again.")
        print()
        print("Run with --help-config to see the expected JSON format.")
        return 1

    try:
        exit_code = run_analysis(
            config_path=args.config_file,
            profile=args.profile,
            bmr_formula=args.formula,
            csv_path=args.csv_path,
        )

        if exit_code == 0:
            print()
            print("Analysis completed successfully!")

        return exit_code

    except KeyboardInterrupt:
        print("\nAnalysis interrupted by user.")
        return 1


def show_config_help():
    """Show detailed help about the JSON evaluation format."""
    help_text = """
JSON Evaluation Format
======================

{
  "patient_info": {
    "sex": "<male|female|other|m|f>",
    "birth_date": "MM/DD/YYYY",          // or age_years
    "activity_level": "moderate",        // sedentary .. ultra (Spanish aliases accepted)
    "profile": "general",                // general|control|fitness|athlete|rapid
    "bmr_formula": "mifflin",            // mifflin|harris|fao|henry|katch|cunningham|iom
    "protein_basis": "total",            // total|ideal|adjusted|lean
    "is_athlete": false,
    "calorie_preset": "mild_deficit"     // optional
  },
  "evaluations": [
    {
      "date": "MM/DD/YYYY",
      "weight_kg": 80.0,
      "stature_cm": 175.0,
      "skinfolds": {"triceps": 10.0, "abdominal": [20.0, 20.4], ...},
      "girths": {"arm_flexed": 33.0, "calf": 38.0, ...},
      "breadths": {"humerus": 7.0, "femur": 9.8, ...}
    }
  ]
}

Field Descriptions:
------------------

patient_info:
  - sex is required; age comes from age_years, or birth_date plus evaluation dates

evaluations:
  - At least one evaluation with weight_kg and stature_cm
  - Skinfolds in mm, girths and breadths in cm
  - A site may be a number, a list of up to three ISAK takes, or
    {"val1", "val2", "val3", "final"}; missing sites are simply omitted
  - Sites with two or more takes get a technical error of measurement report

Skinfolds: triceps, subscapular, biceps, iliac_crest, supraspinale,
           abdominal, thigh, calf
Girths:    arm_relaxed, arm_flexed, waist, hip, mid_thigh, calf
Breadths:  humerus, femur, biacromial, biiliocristal, bistyloid
    """
    print(help_text)


if __name__ == "__main__":
    exit(main())
