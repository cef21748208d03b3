"""Command-line interface for the reproduction analysis.

Usage:
    foxrepro check-data -c configs/analysis.yaml
    foxrepro fit -c configs/analysis.yaml diagnostics.n_sim=500
    foxrepro render -c configs/analysis.yaml -o results/
    foxrepro render -v seed=7
    python -m foxrepro render seed=7
"""

import argparse
import logging
import sys
from typing import List, Optional

from .loaders import load_all_datasets, validate_data_directory
from .pipeline import run_full_pipeline
from .schemas import DiagnosticVerdict
from .utils.config import load_config, validate_config
from .utils.logging import setup_logging

logger = logging.getLogger(__name__)

DEFAULT_CONFIG = "configs/analysis.yaml"


def _print_summary(run) -> None:
    for outcome in run.summary.analyses:
        best = outcome.fit(outcome.best_model)
        print(f"\n{outcome.title} [{outcome.name}]  n={outcome.dataset.n_obs}")
        print(f"  {'Model':<24} {'Family':<18} {'k':>3} {'AIC':>10} {'dAIC':>8}")
        print(f"  {'-'*24} {'-'*18} {'-'*3} {'-'*10} {'-'*8}")
        for fit in sorted(outcome.fits, key=lambda f: f.aic):
            print(
                f"  {fit.name[:24]:<24} {fit.family:<18} {fit.df_model:>3} "
                f"{fit.aic:>10.2f} {fit.aic - best.aic:>8.2f}"
            )
        for term, peak in outcome.peaks.items():
            print(f"  Peak over {term}: {peak:.2f}")
        verdict = outcome.diagnostics.verdict
        flag = "" if verdict == DiagnosticVerdict.OK else "  <-- check residuals"
        print(f"  Diagnostics: {verdict.value}{flag}")


def cmd_check_data(args: argparse.Namespace) -> int:
    """Validate the config and every dataset without fitting."""
    try:
        cfg = load_config(args.config, overrides=args.overrides)
        validate_config(cfg)

        is_valid, found, missing = validate_data_directory(cfg)
        if not is_valid:
            logger.error(f"Missing data files: {missing}")
            return 1
        logger.info(f"Found {len(found)} data files")

        datasets = load_all_datasets(cfg)
        for name, df in datasets.items():
            print(f"  {name:<24} {len(df):>6} rows  ({df.attrs['source']})")
        print("\nAll datasets passed validation.")
        return 0

    except Exception as e:
        logger.error(f"Data check failed: {e}")
        if args.verbose:
            import traceback
            traceback.print_exc()
        return 1


def cmd_fit(args: argparse.Namespace) -> int:
    """Run Stage 1 only (model fitting and statistics)."""
    try:
        result = run_full_pipeline(
            args.config,
            overrides=args.overrides,
            output_dir=args.output,
            render=False,
            log_level=logging.DEBUG if args.verbose else logging.INFO,
        )
        _print_summary(result["run"])
        print(f"\nStage 1 complete. Output: {result['output_dir']}")
        return 0

    except Exception as e:
        logger.error(f"Model fitting failed: {e}")
        if args.verbose:
            import traceback
            traceback.print_exc()
        return 1


def cmd_render(args: argparse.Namespace) -> int:
    """Run the full pipeline and render the report."""
    try:
        result = run_full_pipeline(
            args.config,
            overrides=args.overrides,
            output_dir=args.output,
            render=True,
            log_level=logging.DEBUG if args.verbose else logging.INFO,
        )

        print("\n" + "=" * 60)
        print("REPORT COMPLETE")
        print("=" * 60)
        _print_summary(result["run"])
        print(f"\nReport: {result['report']}")
        return 0

    except Exception as e:
        logger.error(f"Report rendering failed: {e}")
        if args.verbose:
            import traceback
            traceback.print_exc()
        return 1


def _add_common_arguments(parser: argparse.ArgumentParser, output: bool = True) -> None:
    # No default, so a -v given before the subcommand is kept
    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        default=argparse.SUPPRESS,
        help="Enable verbose output",
    )
    parser.add_argument(
        "-c", "--config",
        default=DEFAULT_CONFIG,
        help=f"Path to YAML config (default: {DEFAULT_CONFIG})",
    )
    if output:
        parser.add_argument(
            "-o", "--output",
            default=None,
            help="Output directory (default: paths.output_dir from config)",
        )
    parser.add_argument(
        "overrides",
        nargs="*",
        help="Config overrides in key=value form, e.g. diagnostics.n_sim=500",
    )


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point for CLI."""
    parser = argparse.ArgumentParser(
        prog="foxrepro",
        description="Arctic fox reproduction analysis",
    )
    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Enable verbose output",
    )

    subparsers = parser.add_subparsers(dest="command", help="Command to run")

    check_parser = subparsers.add_parser(
        "check-data",
        help="Validate the config and datasets",
    )
    _add_common_arguments(check_parser, output=False)

    fit_parser = subparsers.add_parser(
        "fit",
        help="Run Stage 1 only (fit models, diagnostics, predictions)",
    )
    _add_common_arguments(fit_parser)

    render_parser = subparsers.add_parser(
        "render",
        help="Run full pipeline and render the HTML report (Stage 1 + Stage 2)",
    )
    _add_common_arguments(render_parser)

    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        return 1

    setup_logging(level=logging.DEBUG if args.verbose else logging.INFO)

    # Dispatch to command handler
    if args.command == "check-data":
        return cmd_check_data(args)
    elif args.command == "fit":
        return cmd_fit(args)
    elif args.command == "render":
        return cmd_render(args)
    else:
        parser.print_help()
        return 1


if __name__ == "__main__":
    sys.exit(main())
