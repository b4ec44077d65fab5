"""Command-line entry point for the survival report.

Loads the cohort (a file, or the bundled Veterans' Administration lung
cancer trial), runs the analysis and renders the Word report.
"""
import argparse
import logging
import sys
from typing import List, Optional

from survival_report.config import ReportConfig
from survival_report.models import ModelFitError
from survival_report.logging_config import setup_logging
from survival_report.pipeline import run_report


def build_config(args: argparse.Namespace) -> ReportConfig:
    """Merge a JSON configuration (if any) with command-line overrides."""
    config = ReportConfig.load(args.config) if args.config else ReportConfig()

    if args.input is not None:
        config.data.input_file = args.input
    if args.group is not None:
        config.data.group_column = args.group
    if args.output_dir is not None:
        config.output_dir = args.output_dir
    if args.report_name is not None:
        config.report_name = args.report_name
    if args.time_transform is not None:
        config.model.time_transform = args.time_transform
    if args.simulations is not None:
        config.simulation.n_replicates = args.simulations
    if args.n_jobs is not None:
        config.simulation.n_jobs = args.n_jobs
    if args.mlflow:
        config.track_mlflow = True
    config.data.validate()
    return config


def main(argv: Optional[List[str]] = None) -> int:
    """Main execution function with argument parsing.

    Returns:
        Exit code (0 for success, 1 for a load or model-fit error)
    """
    parser = argparse.ArgumentParser(
        description="Survival analysis report - Kaplan-Meier, Cox regression, PH diagnostics, model selection",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Reference report on the bundled veteran data
  survival-report

  # Own cohort, grouped by cell type, into a separate folder
  survival-report --input data/inputs/veteran.csv --group celltype --output-dir data/outputs/celltype

  # Saved configuration plus a 200-replicate calibration appendix on 4 cores
  survival-report --config configs/veteran.json --simulations 200 --n-jobs 4
        """
    )
    parser.add_argument("--config", type=str, default=None, help="JSON configuration file")
    parser.add_argument("--input", type=str, default=None,
                        help="Cohort file (.csv, .pkl, .parquet). Default: bundled veteran data")
    parser.add_argument("--group", type=str, default=None, help="Grouping column for Kaplan-Meier curves")
    parser.add_argument("--output-dir", type=str, default=None, help="Output directory")
    parser.add_argument("--report-name", type=str, default=None, help="File name of the .docx report")
    parser.add_argument("--time-transform", type=str, default=None,
                        choices=["km", "rank", "identity", "log"],
                        help="Time transform of the Schoenfeld residual test. Default: km")
    parser.add_argument("--simulations", type=int, default=None,
                        help="Replicates per calibration simulation (0 = no appendix)")
    parser.add_argument("--n-jobs", type=int, default=None, help="Parallel jobs for simulations (-1 = all cores)")
    parser.add_argument("--mlflow", action="store_true", help="Track the run with MLflow")
    parser.add_argument("--save-config", type=str, default=None, help="Write the effective configuration to JSON")
    parser.add_argument("--log-level", type=str, default="INFO",
                        choices=["DEBUG", "INFO", "WARNING", "ERROR"], help="Console log level")

    args = parser.parse_args(argv)

    try:
        config = build_config(args)
    except (OSError, ValueError, TypeError) as e:
        print(f"ERROR: invalid configuration: {e}", file=sys.stderr)
        return 1

    logger = setup_logging(config.output_dir, log_level=getattr(logging, args.log_level))
    if args.save_config:
        config.save(args.save_config)

    try:
        outputs = run_report(config)
    except (FileNotFoundError, ValueError, ModelFitError) as e:
        logger.error(f"Report failed: {e}")
        return 1

    logger.info(f"Report: {outputs.report_path}")
    logger.info(f"{len(outputs.tables)} tables and {len(outputs.figures)} figures written to {config.output_dir}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
