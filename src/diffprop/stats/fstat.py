"""
F-statistics for disjointed proportionality.

theta_d is a one-way ANOVA ratio on the log-ratio of a pair, so it maps to
an F-statistic with 1 and N - 2 degrees of freedom:

    F = (N - 2) (1 - theta) / theta

The moderated variant adds the empirical Bayes prior (d0, s0²) of the
pseudo-count log-ratios:

    mod      = d0 s0² / lrv
    F'       = (1 - theta) (N + d0) / (N theta + mod)
    F        = (N + d0 - 2) F'
    theta_mod = 1 / (1 + F')

P-values use F(K - 1, N + d0 - K) with K = 2 groups (d0 = 0 unmoderated).
``qtheta`` inverts the relation: the theta_d at which the F-test reaches a
given p-value.
"""

from __future__ import annotations

import logging
from dataclasses import replace
from typing import TYPE_CHECKING

import numpy as np
from numpy.typing import NDArray
from scipy import stats

from diffprop.core.counts import CountMatrix, GroupLabels
from diffprop.core.errors import ModerationPreconditionError, ReferenceZeroError
from diffprop.core.transform import Reference, ReferenceSpec, parse_reference, reference_index
from diffprop.stats.moderation import ModerationFit, VoomModerator
from diffprop.stats.theta import ThetaType

if TYPE_CHECKING:
    from diffprop.propd import Propd

__all__ = ['F_COLUMNS', 'moderation_pseudo_counts', 'moderated_fit', 'update_f', 'qtheta']

logger = logging.getLogger(__name__)

F_COLUMNS = ["theta_mod", "Fstat", "Pval"]

# Number of groups
K = 2


def moderation_pseudo_counts(
    counts: CountMatrix,
    reference: ReferenceSpec = Reference.CLR,
) -> NDArray[np.float64]:
    """
    Counts rescaled against the reference geometric mean.

    Each sample is divided by the geometric mean of its reference features
    and multiplied by the average reference geometric mean across samples,
    so library size no longer enters the variance fit.

    Raises:
        ReferenceZeroError: The reference geometric mean is zero in a sample
    """
    data = counts.data
    if np.any(data == 0):
        logger.info("Adding 1 to count matrix for moderation.")
        data = data + 1.0

    use = reference_index(counts.with_data(data), reference)
    logx = np.log(data)
    z_geo = logx[:, use].mean(axis=1)
    geo = np.exp(z_geo)
    if np.any(geo == 0):
        raise ReferenceZeroError("Zeros present in reference set.")

    return np.exp(logx - z_geo[:, None]) * geo.mean()


def moderated_fit(
    counts: CountMatrix,
    group: GroupLabels,
    reference: ReferenceSpec = Reference.CLR,
    moderator=None,
) -> ModerationFit:
    """Empirical Bayes prior for the log-ratios of ``counts``."""
    moderator = moderator if moderator is not None else VoomModerator()
    pseudo = moderation_pseudo_counts(counts, reference)
    return moderator.fit(pseudo, group.design())


def update_f(
    propd: Propd,
    moderated: bool = False,
    reference: ReferenceSpec = Reference.CLR,
    moderator=None,
) -> Propd:
    """
    Append theta_mod, Fstat and Pval to the results.

    Args:
        propd: Object whose active statistic is theta_d
        moderated: Use the empirical Bayes moderated F-statistic
        reference: Reference for the pseudo-counts of the moderated fit
        moderator: ModerationService (defaults to the object's, then voom)

    Returns:
        New object; earlier result columns are untouched

    Raises:
        ModerationPreconditionError: Active statistic is not theta_d
    """
    if propd.active is not ThetaType.THETA_D:
        raise ModerationPreconditionError(
            f"update_f requires the active statistic to be theta_d, got {propd.active.value}"
        )

    n = propd.group.n1 + propd.group.n2
    results = propd.results
    theta = results["theta_d"].to_numpy()
    reference = parse_reference(reference)

    with np.errstate(invalid="ignore", divide="ignore"):
        if moderated:
            moderator = moderator if moderator is not None else propd.moderator
            fit = moderated_fit(propd.counts, propd.group, reference, moderator)
            df, s2 = fit.df_prior, fit.s2_prior
            mod = df * s2 / results["lrv"].to_numpy()
            fprime = (1.0 - theta) * (n + df) / (n * theta + mod)
            fstat = (n + df - 2.0) * fprime
            theta_mod = 1.0 / (1.0 + fprime)
            dfz = df
        else:
            fit = None
            fstat = (n - 2.0) * (1.0 - theta) / theta
            theta_mod = np.zeros_like(theta)
            dfz = 0.0

    pval = stats.f.sf(fstat, K - 1, n + dfz - K)

    table = results.drop(columns=[c for c in F_COLUMNS if c in results.columns])
    table = table.assign(theta_mod=theta_mod, Fstat=fstat, Pval=pval)

    logger.debug("update_f: moderated=%s, dfz=%.4g", moderated, dfz)
    return replace(
        propd,
        results=table,
        dfz=float(dfz),
        moderation=fit,
        moderation_reference=reference if moderated else propd.moderation_reference,
    )


def qtheta(propd: Propd, pval: float = 0.05, moderated: bool = False) -> float:
    """
    theta_d at which the (moderated) F-test has p-value ``pval``.

    A moderated fit already on the object is reused; otherwise one is run
    with the object's reference and moderator.

    Raises:
        ValueError: ``pval`` outside [0, 1]
    """
    if not 0 <= pval <= 1:
        raise ValueError("Provide a p-value cutoff from [0, 1].")

    n = propd.group.n1 + propd.group.n2

    if moderated:
        fit = propd.moderation
        if fit is None:
            fit = moderated_fit(propd.counts, propd.group, propd.moderation_reference, propd.moderator)
        df = fit.df_prior
        r = n - 2.0 + df
        q = stats.f.isf(pval, K - 1, n + df - K)
        return float(r / (q + r))

    q = stats.f.isf(pval, K - 1, n - K)
    return float((n - 2.0) / (q + n - 2.0))
