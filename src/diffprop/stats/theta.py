"""
Differential proportionality statistics (theta).

For every feature pair, the total VLR (V) over all samples is compared with
the within-group VLRs (V1, V2), each scaled by its effective size
(p = n - 1, or Omega when weighted):

    theta_d = (p1 V1 + p2 V2) / (p V)          disjointed proportionality
    theta_e = 1 - max(p1 V1, p2 V2) / (p V)    emergent proportionality
    theta_f = max(p1 V1, p2 V2) / (p V)        = 1 - theta_e

Small theta_d means the log-ratio mean differs between groups relative to
its spread; small theta_e means one group is proportional while the other
is not.

Degenerate pairs (V, V1 or V2 undefined, or V == 0) are set to exactly 1
for every statistic computed, so they are never called significant.
"""

from __future__ import annotations

import logging
import warnings
from enum import Enum

import numpy as np
import pandas as pd
from numpy.typing import ArrayLike, NDArray

from diffprop.core.counts import CountMatrix, GroupLabels
from diffprop.core.errors import DegenerateVLRWarning
from diffprop.core.pairs import enumerate_pairs
from diffprop.core.transform import replace_zeros, validate_alpha
from diffprop.stats.vlr import LogRatioBasis, PairwiseStats, omega, pairwise_stats

__all__ = [
    'ThetaType',
    'RESULT_COLUMNS',
    'theta_from_lrv',
    'calculate_theta',
    'theta_from_basis',
    'resolve_weights',
]

logger = logging.getLogger(__name__)

RESULT_COLUMNS = [
    "Partner", "Pair", "theta_d", "theta_e", "theta_f",
    "lrv", "lrv1", "lrv2", "lrm1", "lrm2", "p1", "p2", "p",
]


class ThetaType(Enum):
    """Differential proportionality statistics."""
    THETA_D = "theta_d"
    THETA_E = "theta_e"
    THETA_F = "theta_f"
    THETA_MOD = "theta_mod"

    @classmethod
    def parse(cls, value: ThetaType | str) -> ThetaType:
        """Resolve a statistic name; unknown names raise ValueError."""
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).lower())
        except ValueError:
            valid = ", ".join(t.value for t in cls)
            raise ValueError(f"unknown theta type {value!r}; expected one of {valid}") from None


def _degenerate(lrv, lrv1, lrv2) -> NDArray[np.bool_]:
    return np.isnan(lrv) | np.isnan(lrv1) | np.isnan(lrv2) | (lrv == 0)


def theta_from_lrv(
    lrv: ArrayLike,
    lrv1: ArrayLike,
    lrv2: ArrayLike,
    p: ArrayLike,
    p1: ArrayLike,
    p2: ArrayLike,
    which: ThetaType | str = ThetaType.THETA_D,
) -> NDArray[np.float64]:
    """
    One theta statistic from total and group-wise VLRs.

    Args:
        lrv, lrv1, lrv2: Total and per-group VLR per pair
        p, p1, p2: Effective sizes (scalars or per pair)
        which: THETA_D, THETA_E or THETA_F

    Returns:
        Theta per pair, with degenerate pairs set to 1
    """
    which = ThetaType.parse(which)
    if which is ThetaType.THETA_MOD:
        raise ValueError("theta_mod is produced by update_f, not from VLRs")

    lrv = np.asarray(lrv, dtype=np.float64)
    lrv1 = np.asarray(lrv1, dtype=np.float64)
    lrv2 = np.asarray(lrv2, dtype=np.float64)

    with np.errstate(invalid="ignore", divide="ignore"):
        total = p * lrv
        s1 = p1 * lrv1
        s2 = p2 * lrv2
        if which is ThetaType.THETA_D:
            theta = (s1 + s2) / total
        elif which is ThetaType.THETA_E:
            theta = 1.0 - np.fmax(s1, s2) / total
        else:
            theta = np.fmax(s1, s2) / total

    theta = np.array(theta, dtype=np.float64)
    theta[_degenerate(lrv, lrv1, lrv2)] = 1.0
    return theta


def resolve_weights(
    counts: CountMatrix,
    group: GroupLabels,
    weighted: bool,
    weights: ArrayLike | None = None,
    moderator=None,
) -> NDArray[np.float64] | None:
    """Precision weights to use, or None when unweighted."""
    if not weighted:
        return None
    if weights is not None:
        weights = np.asarray(weights, dtype=np.float64)
        if weights.shape != counts.shape:
            raise ValueError(
                f"weights shape {weights.shape} must match counts shape {counts.shape}"
            )
        return weights

    from diffprop.stats.moderation import VoomModerator

    logger.info("Calculating limma-based weights.")
    moderator = moderator if moderator is not None else VoomModerator()
    return np.asarray(moderator.voom_weights(counts.data, group.design()), dtype=np.float64)


def theta_from_basis(
    basis: LogRatioBasis,
    group: GroupLabels,
    total: PairwiseStats | None = None,
    which: ThetaType | None = None,
    n_jobs: int = 1,
    warn_degenerate: bool = True,
) -> pd.DataFrame | NDArray[np.float64]:
    """
    Theta from a prepared basis.

    ``total`` carries the VLR and effective size over all samples; when
    given it is reused instead of recomputed (permutation passes keep the
    total VLR, which does not depend on the labels).

    Returns:
        The results table when ``which`` is None, else one statistic
    """
    with_mean = which is None
    if total is None:
        total = pairwise_stats(basis, with_mean=False, n_jobs=n_jobs)

    g1 = pairwise_stats(basis.take(group.group1), with_mean=with_mean, n_jobs=n_jobs)
    g2 = pairwise_stats(basis.take(group.group2), with_mean=with_mean, n_jobs=n_jobs)

    if warn_degenerate:
        n_bad = int(np.sum(_degenerate(total.lrv, g1.lrv, g2.lrv)))
        if n_bad:
            warnings.warn(
                f"{n_bad} pairs have undefined or zero VLR; their theta is set to 1.",
                DegenerateVLRWarning,
                stacklevel=3,
            )

    if which is not None:
        return theta_from_lrv(total.lrv, g1.lrv, g2.lrv, total.omega, g1.omega, g2.omega, which)

    partner, pair = enumerate_pairs(basis.n_features)
    stats = (total.lrv, g1.lrv, g2.lrv, total.omega, g1.omega, g2.omega)
    return pd.DataFrame({
        "Partner": partner,
        "Pair": pair,
        "theta_d": theta_from_lrv(*stats, ThetaType.THETA_D),
        "theta_e": theta_from_lrv(*stats, ThetaType.THETA_E),
        "theta_f": theta_from_lrv(*stats, ThetaType.THETA_F),
        "lrv": total.lrv,
        "lrv1": g1.lrv,
        "lrv2": g2.lrv,
        "lrm1": g1.lrm,
        "lrm2": g2.lrm,
        "p1": np.asarray(g1.omega, dtype=np.float64),
        "p2": np.asarray(g2.omega, dtype=np.float64),
        "p": np.asarray(total.omega, dtype=np.float64),
    }, columns=RESULT_COLUMNS)


def calculate_theta(
    counts: CountMatrix | pd.DataFrame | ArrayLike,
    group: GroupLabels | ArrayLike,
    alpha: float | None = None,
    lrv: ArrayLike | None = None,
    only: ThetaType | str = "all",
    weighted: bool = False,
    weights: ArrayLike | None = None,
    moderator=None,
    n_jobs: int = 1,
) -> pd.DataFrame | NDArray[np.float64]:
    """
    Differential proportionality for every feature pair.

    Args:
        counts: Count matrix (samples × features)
        group: Two-group labels, one per sample
        alpha: Power parameter; None uses log-ratios with zeros replaced by 1
        lrv: Precomputed total VLR in pair order; when given, this is not a
            first pass and no degenerate-pair warning is issued
        only: "all" for the full results table, or one statistic name
        weighted: Use precision weights
        weights: Weights (samples × features); computed by ``moderator``
            when weighted and not supplied
        moderator: ModerationService used for weights (default VoomModerator)
        n_jobs: Parallel workers for the pair blocks

    Returns:
        Results table (columns Partner, Pair, theta_d, theta_e, theta_f,
        lrv, lrv1, lrv2, lrm1, lrm2, p1, p2, p), or one theta array

    Raises:
        InvalidGroupError: Groups are not exactly two or lengths mismatch
        ValueError: Unknown statistic name or bad alpha / weights
    """
    counts = CountMatrix.coerce(counts)
    group = GroupLabels.coerce(group, counts.n_samples)
    alpha = validate_alpha(alpha)

    if isinstance(only, str) and only.lower() == "all":
        which = None
    else:
        which = ThetaType.parse(only)
        if which is ThetaType.THETA_MOD:
            raise ValueError("theta_mod is produced by update_f, not calculate_theta")

    if alpha is None:
        counts = replace_zeros(counts)

    weights = resolve_weights(counts, group, weighted, weights, moderator)
    basis = LogRatioBasis.from_counts(counts, alpha=alpha, weights=weights)

    total = None
    first_pass = lrv is None
    if not first_pass:
        lrv = np.asarray(lrv, dtype=np.float64)
        if lrv.shape != (counts.n_features * (counts.n_features - 1) // 2,):
            raise ValueError(
                f"lrv has shape {lrv.shape}, expected one value per feature pair"
            )
        p = omega(basis.weights) if basis.weighted else np.full(lrv.shape, counts.n_samples - 1.0)
        total = PairwiseStats(lrv=lrv, omega=p)

    return theta_from_basis(
        basis, group, total=total, which=which, n_jobs=n_jobs, warn_degenerate=first_pass,
    )
