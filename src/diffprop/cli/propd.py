"""
diffprop propd command - differential proportionality between two groups.

Computes theta for every feature pair, estimates the FDR of the active
statistic over stored permutations, and optionally adds (moderated)
F-statistics.

Usage:
    diffprop propd --counts counts.csv --groups groups.csv --output results/
    diffprop propd --config run.yaml --permutations 500

Outputs (in --output):
    results.csv   one row per pair (feature names, theta, VLRs, ...)
    fdr.csv       cutoff, randcounts, truecounts, FDR (when permutations > 0)
    summary.json  run parameters and headline numbers
"""

import argparse
import logging
from datetime import datetime
from pathlib import Path

import numpy as np

from diffprop.cli._validators import (
    _finite_float,
    _n_jobs,
    _non_negative_int,
    _nonzero_float,
    _unit_interval,
)
from diffprop.core.errors import DiffPropError
from diffprop.stats.fdr import DEFAULT_CUTOFFS

logger = logging.getLogger(__name__)


def register_parser(subparsers: argparse._SubParsersAction) -> None:
    """Register the propd subcommand."""
    parser = subparsers.add_parser(
        "propd",
        help="Differential proportionality between two groups",
        description=(
            "Compute theta_d / theta_e / theta_f for every feature pair, "
            "estimate FDR by permutation, and optionally run the "
            "(moderated) F-test."
        ),
    )

    # Input/output
    parser.add_argument("--counts", "-c", type=Path,
                        help="Count table (samples x features; see --features-as-rows)")
    parser.add_argument("--groups", "-g", type=Path,
                        help="Group table indexed by sample id")
    parser.add_argument("--group-column", default=None,
                        help="Column of --groups holding labels (default: first column)")
    parser.add_argument("--features-as-rows", action="store_true",
                        help="Count table has features as rows and samples as columns")
    parser.add_argument("--output", "-o", type=Path, default=Path("results/propd"),
                        help="Output directory (default: results/propd)")
    parser.add_argument("--config", type=Path, default=None,
                        help="YAML/JSON config file; explicit CLI arguments take precedence")

    # Statistics
    parser.add_argument("--alpha", type=_nonzero_float, default=None,
                        help="Power transform parameter (default: log-ratios)")
    parser.add_argument("--weighted", action="store_true",
                        help="Use voom precision weights")
    parser.add_argument("--active", choices=["theta_d", "theta_e", "theta_f", "theta_mod"],
                        default="theta_d",
                        help="Statistic for FDR and results; theta_mod needs --moderated "
                             "(default: theta_d)")

    # FDR
    parser.add_argument("--permutations", "-p", type=_non_negative_int, default=100,
                        help="Number of permutations; 0 disables FDR (default: 100)")
    parser.add_argument("--cutoffs", type=_finite_float, nargs="+",
                        default=list(DEFAULT_CUTOFFS),
                        help="Theta cutoffs for FDR (default: 0.05 0.35 0.65 0.95)")
    parser.add_argument("--seed", type=int, default=None,
                        help="Random seed for the permutation set")

    # F-test
    parser.add_argument("--fstat", action="store_true",
                        help="Add Fstat and Pval columns (theta_d only)")
    parser.add_argument("--moderated", action="store_true",
                        help="Use the moderated F-test (implies --fstat)")
    parser.add_argument("--pval", type=_unit_interval, default=0.05,
                        help="p-value for the reported theta cutoff (qtheta; default: 0.05)")

    parser.add_argument("--n-jobs", type=_n_jobs, default=1,
                        help="Parallel workers (default: 1; -1 for all cores)")
    parser.add_argument("--progress", action="store_true",
                        help="Show a progress bar over permutations")

    parser.set_defaults(func=run_propd)


def run_propd(args: argparse.Namespace, cli_args=None) -> int:
    """Execute the propd command."""
    from diffprop.cli.config import load_config, merge_config_with_args, validate_config
    from diffprop.loaders import load_counts, load_groups
    from diffprop.propd import propd
    from diffprop.utils.fileio import atomic_write_csv, atomic_write_json

    if args.config is not None:
        config = load_config(args.config)
        validate_config(config)
        args = merge_config_with_args(config, args, "propd", cli_args)

    if args.counts is None or args.groups is None:
        logger.error("--counts and --groups are required (on the command line or in --config)")
        return 2
    if args.active == "theta_mod" and not args.moderated:
        logger.error("--active theta_mod requires --moderated")
        return 2

    start = datetime.now()
    try:
        counts = load_counts(args.counts, features_as_rows=args.features_as_rows)
        group = load_groups(args.groups, counts.sample_ids, column=args.group_column)

        logger.info(
            f"propd: {counts.n_samples} samples, {counts.n_features} features, "
            f"groups {group.levels[0]} ({group.n1}) vs {group.levels[1]} ({group.n2})"
        )

        result = propd(
            counts, group,
            alpha=args.alpha,
            p=args.permutations,
            weighted=args.weighted,
            seed=args.seed,
            n_jobs=args.n_jobs,
        )

        qtheta = None
        if args.fstat or args.moderated:
            result = result.update_f(moderated=args.moderated)
            qtheta = result.qtheta(pval=args.pval, moderated=args.moderated)

        result = result.set_active(args.active)

        if args.permutations > 0:
            result = result.update_cutoffs(
                args.cutoffs, n_jobs=args.n_jobs, progress=args.progress,
            )
    except (DiffPropError, ValueError, FileNotFoundError) as e:
        logger.error(f"propd failed: {e}")
        return 1

    args.output.mkdir(parents=True, exist_ok=True)
    table = result.get_results()
    atomic_write_csv(args.output / "results.csv", table)
    if result.fdr is not None:
        atomic_write_csv(args.output / "fdr.csv", result.fdr)

    theta = result.theta
    summary = {
        "command": "propd",
        "timestamp": start.isoformat(),
        "elapsed_seconds": (datetime.now() - start).total_seconds(),
        "counts": str(args.counts),
        "groups": str(args.groups),
        "n_samples": counts.n_samples,
        "n_features": counts.n_features,
        "n_pairs": len(table),
        "group_levels": list(group.levels),
        "group_sizes": [group.n1, group.n2],
        "alpha": result.alpha,
        "weighted": result.weighted,
        "active": result.active.value,
        "permutations": result.n_permutations,
        "seed": args.seed,
        "theta_min": float(np.nanmin(theta)),
        "theta_median": float(np.nanmedian(theta)),
        "moderated": bool(args.moderated),
        "df_prior": result.moderation.df_prior if result.moderation is not None else None,
        "qtheta_pval": args.pval,
        "qtheta": qtheta,
        "fdr": None if result.fdr is None else (
            result.fdr.astype(object).where(result.fdr.notna(), None).to_dict(orient="records")
        ),
    }
    atomic_write_json(args.output / "summary.json", summary)

    logger.info(f"Wrote {len(table)} pairs to {args.output / 'results.csv'}")
    return 0

