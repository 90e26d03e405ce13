"""
diffprop propr command - proportionality between every pair of features.

Usage:
    diffprop propr --counts counts.csv --metric rho --reference clr --output results/

Outputs (in --output):
    results.csv   Partner, Pair, lrv, propr (filtered by --cutoff if given)
    summary.json  run parameters and headline numbers
"""

import argparse
import logging
from datetime import datetime
from pathlib import Path

import numpy as np

from diffprop.cli._validators import _finite_float, _nonzero_float
from diffprop.core.errors import DiffPropError

logger = logging.getLogger(__name__)


def register_parser(subparsers: argparse._SubParsersAction) -> None:
    """Register the propr subcommand."""
    parser = subparsers.add_parser(
        "propr",
        help="Proportionality (rho, phi, phs, cor) for every feature pair",
        description=(
            "Compute a proportionality metric on log-ratios against a "
            "reference (clr, iqlr, or named features)."
        ),
    )

    parser.add_argument("--counts", "-c", type=Path,
                        help="Count table (samples x features; see --features-as-rows)")
    parser.add_argument("--features-as-rows", action="store_true",
                        help="Count table has features as rows and samples as columns")
    parser.add_argument("--output", "-o", type=Path, default=Path("results/propr"),
                        help="Output directory (default: results/propr)")
    parser.add_argument("--config", type=Path, default=None,
                        help="YAML/JSON config file; explicit CLI arguments take precedence")

    parser.add_argument("--metric", choices=["rho", "phi", "phs", "cor"], default="rho",
                        help="Proportionality metric (default: rho)")
    parser.add_argument("--reference", nargs="+", default=["clr"],
                        help="'clr', 'iqlr', or one or more feature names (default: clr)")
    parser.add_argument("--alpha", type=_nonzero_float, default=None,
                        help="Power transform parameter (default: log-ratios)")
    parser.add_argument("--cutoff", type=_finite_float, default=None,
                        help="Keep pairs at/above (rho, cor) or at/below (phi, phs) this value")

    parser.set_defaults(func=run_propr)


def _reference_arg(value):
    """A single mode name stays a string; several names form a subset."""
    if isinstance(value, (list, tuple)):
        return value[0] if len(value) == 1 else list(value)
    return value


def run_propr(args: argparse.Namespace, cli_args=None) -> int:
    """Execute the propr command."""
    from diffprop.cli.config import load_config, merge_config_with_args, validate_config
    from diffprop.loaders import load_counts
    from diffprop.propr import propr
    from diffprop.utils.fileio import atomic_write_csv, atomic_write_json

    if args.config is not None:
        config = load_config(args.config)
        validate_config(config)
        args = merge_config_with_args(config, args, "propr", cli_args)

    if args.counts is None:
        logger.error("--counts is required (on the command line or in --config)")
        return 2

    start = datetime.now()
    try:
        counts = load_counts(args.counts, features_as_rows=args.features_as_rows)
        result = propr(
            counts,
            metric=args.metric,
            reference=_reference_arg(args.reference),
            alpha=args.alpha,
        )
        table = result.get_results(args.cutoff)
    except (DiffPropError, ValueError, FileNotFoundError) as e:
        logger.error(f"propr failed: {e}")
        return 1

    args.output.mkdir(parents=True, exist_ok=True)
    atomic_write_csv(args.output / "results.csv", table)

    values = result.results["propr"].to_numpy()
    summary = {
        "command": "propr",
        "timestamp": start.isoformat(),
        "elapsed_seconds": (datetime.now() - start).total_seconds(),
        "counts": str(args.counts),
        "n_samples": counts.n_samples,
        "n_features": counts.n_features,
        "metric": result.metric.value,
        "reference": _reference_arg(args.reference),
        "alpha": result.alpha,
        "cutoff": args.cutoff,
        "n_pairs_total": len(values),
        "n_pairs_kept": len(table),
        "metric_median": float(np.nanmedian(values)),
    }
    atomic_write_json(args.output / "summary.json", summary)

    logger.info(f"Wrote {len(table)} pairs to {args.output / 'results.csv'}")
    return 0
