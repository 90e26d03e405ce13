"""
Permutation-based false discovery rate for the active theta statistic.

The null distribution comes from shuffling sample rows while keeping the
group labels fixed. For each cutoff c:

    truecounts = #{pairs : theta < c}                    (observed data)
    randcounts = sum_k #{pairs : theta_k < c} / P        (P shuffles)
    FDR        = randcounts / truecounts

The total VLR does not depend on the group labels, so permutation passes
reuse it and only recompute the group-wise VLRs. The moderated statistic
(theta_mod) has no such shortcut: each shuffle gets its own moderated fit.

Counts are integers summed over permutations, so the table is identical
for every run with the same permutation set, whatever the worker count.
"""

from __future__ import annotations

import logging
from contextlib import ExitStack
from dataclasses import replace
from typing import TYPE_CHECKING, Callable, Sequence

import numpy as np
import pandas as pd
from joblib import Parallel, cpu_count, delayed
from numpy.typing import NDArray
from tqdm import tqdm

from diffprop.core.errors import (
    FDRCancelledError,
    ModerationPreconditionError,
    PermutationDisabledError,
)
from diffprop.stats.theta import ThetaType, theta_from_basis
from diffprop.stats.vlr import LogRatioBasis, PairwiseStats

if TYPE_CHECKING:
    from diffprop.propd import Propd

__all__ = [
    'DEFAULT_CUTOFFS',
    'FDR_COLUMNS',
    'generate_permutation_set',
    'validate_cutoffs',
    'permuted_theta',
    'update_cutoffs',
]

logger = logging.getLogger(__name__)

DEFAULT_CUTOFFS = (0.05, 0.35, 0.65, 0.95)
FDR_COLUMNS = ["cutoff", "randcounts", "truecounts", "FDR"]


def generate_permutation_set(
    n_samples: int,
    n_permutations: int,
    seed: int | None = None,
) -> NDArray[np.intp]:
    """
    Draw the row shuffles used for every FDR estimate of one object.

    Args:
        n_samples: Number of samples
        n_permutations: Number of shuffles (0 disables permutation testing)
        seed: Random seed for reproducibility

    Returns:
        Read-only (n_samples × n_permutations) array; column k is a
        permutation of 0..n_samples-1
    """
    if n_permutations < 0:
        raise ValueError(f"number of permutations must be >= 0, got {n_permutations}")
    rng = np.random.default_rng(seed)
    perms = np.empty((n_samples, n_permutations), dtype=np.intp)
    for k in range(n_permutations):
        perms[:, k] = rng.permutation(n_samples)
    perms.flags.writeable = False
    return perms


def validate_cutoffs(cutoffs: Sequence[float]) -> NDArray[np.float64]:
    """Cutoffs as a sorted float array; must be non-empty and finite."""
    values = np.sort(np.asarray(list(cutoffs), dtype=np.float64))
    if values.ndim != 1 or values.size == 0:
        raise ValueError("provide at least one cutoff")
    if not np.all(np.isfinite(values)):
        raise ValueError("cutoffs must be finite")
    return values


def permuted_theta(propd: Propd, k: int) -> NDArray[np.float64]:
    """Active statistic of ``propd`` after applying stored shuffle ``k``."""
    rows = propd.permutations[:, k]

    if propd.active is ThetaType.THETA_MOD:
        from diffprop.propd import build_propd
        from diffprop.stats.fstat import update_f

        weights = None if propd.weights is None else propd.weights[rows]
        shadow = build_propd(
            propd.counts.take_samples(rows),
            propd.group,
            alpha=propd.alpha,
            p=0,
            weighted=propd.weighted,
            weights=weights,
            moderator=propd.moderator,
            warn_degenerate=False,
        )
        shadow = update_f(
            shadow,
            moderated=True,
            reference=propd.moderation_reference,
            moderator=propd.moderator,
        )
        return shadow.results["theta_mod"].to_numpy()

    basis = LogRatioBasis.from_counts(propd.counts, alpha=propd.alpha, weights=propd.weights)
    total = PairwiseStats(
        lrv=propd.results["lrv"].to_numpy(),
        omega=propd.results["p"].to_numpy(),
    )
    return theta_from_basis(
        basis.take(rows),
        propd.group,
        total=total,
        which=propd.active,
        warn_degenerate=False,
    )


def _count_batch(propd: Propd, columns: Sequence[int], cutoffs: NDArray[np.float64]) -> NDArray[np.int64]:
    counts = np.zeros(len(cutoffs), dtype=np.int64)
    for k in columns:
        theta = permuted_theta(propd, k)
        counts += np.array([np.count_nonzero(theta < c) for c in cutoffs], dtype=np.int64)
    return counts


def update_cutoffs(
    propd: Propd,
    cutoffs: Sequence[float] = DEFAULT_CUTOFFS,
    n_jobs: int = 1,
    progress: bool = False,
    callback: Callable[[int, int], None] | None = None,
    should_stop: Callable[[], bool] | None = None,
) -> Propd:
    """
    Estimate the FDR of the active statistic at each cutoff.

    Args:
        propd: Differential proportionality object with stored permutations
        cutoffs: Theta cutoffs; sorted ascending in the output
        n_jobs: Parallel workers (joblib); permutations are dispatched in
            batches of ``n_jobs``
        progress: Show a tqdm progress bar
        callback: Called as ``callback(done, total)`` after each permutation
            (or each batch when parallel)
        should_stop: Polled before each permutation (or batch); returning
            True aborts the run

    Returns:
        New object whose ``fdr`` table has columns cutoff, randcounts,
        truecounts, FDR. FDR is NaN where no observed pair is below the
        cutoff.

    Raises:
        PermutationDisabledError: The object was built with p = 0
        ModerationPreconditionError: theta_mod is active but no moderated
            fit exists
        FDRCancelledError: ``should_stop`` returned True
    """
    total = propd.n_permutations
    if total == 0:
        raise PermutationDisabledError(
            "Permutation testing is disabled: rebuild the object with p > 0."
        )
    if propd.active is ThetaType.THETA_MOD and propd.moderation is None:
        raise ModerationPreconditionError(
            "theta_mod requires a moderated fit; run update_f(moderated=True) first."
        )
    if n_jobs == 0:
        raise ValueError("n_jobs must be non-zero")

    values = validate_cutoffs(cutoffs)
    logger.info(
        "Estimating FDR for %s over %d permutations at %d cutoffs",
        propd.active.value, total, len(values),
    )

    rand = np.zeros(len(values), dtype=np.int64)
    done = 0

    if n_jobs == 1:
        batches = [[k] for k in range(total)]
    else:
        width = n_jobs if n_jobs > 0 else cpu_count()
        batches = [list(range(k, min(k + width, total))) for k in range(0, total, width)]

    parallel = Parallel(n_jobs=n_jobs) if n_jobs != 1 else None
    with ExitStack() as stack:
        bar = stack.enter_context(tqdm(total=total, desc="Permutations", disable=not progress))
        if parallel is not None:
            # One worker pool for every batch
            stack.enter_context(parallel)

        for batch in batches:
            if should_stop is not None and should_stop():
                logger.warning("FDR estimation cancelled after %d/%d permutations", done, total)
                raise FDRCancelledError(done, total)

            if parallel is None:
                rand += _count_batch(propd, batch, values)
            else:
                parts = parallel(
                    delayed(_count_batch)(propd, [k], values) for k in batch
                )
                for part in parts:
                    rand += part

            done += len(batch)
            bar.update(len(batch))
            if callback is not None:
                callback(done, total)

    theta = propd.results[propd.active.value].to_numpy()
    true = np.array([np.count_nonzero(theta < c) for c in values], dtype=np.int64)

    randcounts = rand / total
    with np.errstate(invalid="ignore", divide="ignore"):
        fdr = np.where(true > 0, randcounts / np.maximum(true, 1), np.nan)

    table = pd.DataFrame({
        "cutoff": values,
        "randcounts": randcounts,
        "truecounts": true,
        "FDR": fdr,
    }, columns=FDR_COLUMNS)

    return replace(propd, fdr=table)
