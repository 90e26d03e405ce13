"""
Empirical Bayes moderation service (limma-voom style).

The moderated F-statistic for differential proportionality borrows variance
information across features: a scaled inverse chi-square prior is fitted to
the per-feature residual variances, and its degrees of freedom (d0) and
scale (s0²) enter the theta -> F conversion.

Contract (ModerationService):
    fit(pseudo_counts, design) -> ModerationFit(df_prior, s2_prior, weights)
    voom_weights(counts, design) -> per sample/feature precision weights

Both calls are synchronous and deterministic given their input. Any object
implementing the two methods can replace the default VoomModerator.

Default pipeline (VoomModerator):
    1. log-CPM: y = log2((x + 0.5) / (lib + 1) * 1e6), features × samples
    2. Least squares fit of y on the group design, per feature
    3. Mean-variance trend: lowess of sqrt(sigma) against average log count
    4. Precision weights: 1 / trend(fitted log count)^4
    5. Weighted refit -> residual variances s²
    6. fit_f_dist(s², df_residual) -> (d0, s0²) by the method of moments

References:
    Smyth (2004) "Linear models and empirical Bayes methods for assessing
    differential expression in microarray experiments", SAGMB 3(1).
    Law et al. (2014) "voom: precision weights unlock linear model analysis
    tools for RNA-seq read counts", Genome Biology 15:R29.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Protocol, runtime_checkable

import numpy as np
from numpy.typing import NDArray
from scipy.special import digamma, polygamma

__all__ = [
    'ModerationFit',
    'ModerationService',
    'VoomModerator',
    'trigamma_inverse',
    'fit_f_dist',
    'lm_fit',
]

logger = logging.getLogger(__name__)

# Largest prior df reported; an infinite d0 (no extra variability beyond
# sampling noise) is represented by this finite stand-in so the F relations
# stay defined.
MAX_PRIOR_DF = 1e10

_EPS = 1e-12


@dataclass(frozen=True)
class ModerationFit:
    """
    Result of an empirical Bayes fit.

    Attributes:
        df_prior: Prior degrees of freedom d0
        s2_prior: Prior variance s0²
        weights: Precision weights (n_samples × n_features), if computed
        df_residual: Residual degrees of freedom of the linear fit
        sigma2: Per-feature residual variances (n_features,)
    """

    df_prior: float
    s2_prior: float
    weights: NDArray[np.float64] | None = None
    df_residual: float | None = None
    sigma2: NDArray[np.float64] | None = None


@runtime_checkable
class ModerationService(Protocol):
    """Collaborator that fits the empirical Bayes prior."""

    def fit(self, pseudo_counts: NDArray[np.float64], design: NDArray[np.float64]) -> ModerationFit:
        """Fit on (n_samples × n_features) pseudo-counts with an (n × k) design."""
        ...

    def voom_weights(self, counts: NDArray[np.float64], design: NDArray[np.float64]) -> NDArray[np.float64]:
        """Precision weights (n_samples × n_features) for the given counts."""
        ...


# =============================================================================
# Empirical Bayes Functions
# =============================================================================

def trigamma_inverse(x: float, tol: float = 1e-8, max_iter: int = 50) -> float:
    """
    Inverse of the trigamma function by Newton's method.

    Solves trigamma(y) = x, following limma's trigammaInverse: start at
    y = 0.5 + 1/x and iterate on trigamma directly.

    Args:
        x: Target trigamma value (must be positive)
        tol: Relative convergence tolerance
        max_iter: Maximum Newton iterations

    Returns:
        y such that trigamma(y) ≈ x (np.inf for x <= 0)
    """
    if x <= 0:
        return np.inf

    if x > 1e6:
        return 1.0 / np.sqrt(x)
    elif x < 1e-6:
        return 1.0 / x

    y = 0.5 + 1.0 / x

    for _ in range(max_iter):
        tri = polygamma(1, y)
        tri_deriv = polygamma(2, y)

        if abs(tri_deriv) < 1e-15:
            break
        delta = (tri - x) / tri_deriv
        y_new = y - delta

        # Keep y positive
        if y_new <= 0:
            y = y / 2.0
        else:
            y = y_new

        if abs(delta) < tol * abs(y):
            break

    return max(float(y), 1e-10)


def fit_f_dist(
    sigma2: NDArray[np.float64],
    df: float | NDArray[np.float64],
) -> tuple[float, float]:
    """
    Estimate prior d0 and s0² by the method of moments (limma fitFDist).

    Assumes s²_i ~ s0² × F(df, d0). On the log scale:

        e = log(s²) - digamma(df/2) + log(df/2)
        evar = var(e) - mean(trigamma(df/2))
        d0 = 2 × trigamma⁻¹(evar)
        s0² = exp(mean(e) + digamma(d0/2) - log(d0/2))

    Args:
        sigma2: Residual variances (n_features,)
        df: Residual degrees of freedom (scalar or per feature)

    Zero variances are kept and clamped at 1e-5 times the median, as in
    limma; negative or non-finite values are dropped.

    Returns:
        (d0, s0²). d0 is np.inf when the observed spread of log-variances
        is no larger than sampling noise alone.
    """
    sigma2 = np.asarray(sigma2, dtype=np.float64)
    valid_mask = (sigma2 >= 0) & np.isfinite(sigma2)
    sigma2_valid = sigma2[valid_mask]

    if len(sigma2_valid) > 0:
        m = np.median(sigma2_valid)
        if m == 0:
            logger.warning("More than half of residual variances are exactly zero; eBayes unreliable.")
            m = 1.0
        sigma2_valid = np.maximum(sigma2_valid, 1e-5 * m)

    if len(sigma2_valid) < 3:
        # Insufficient data - no shrinkage
        return np.inf, float(np.median(sigma2_valid)) if len(sigma2_valid) > 0 else 1.0

    if np.isscalar(df):
        df_half = df / 2.0
        mean_trigamma = polygamma(1, df_half)
    else:
        df_half = np.asarray(df, dtype=np.float64)[valid_mask] / 2.0
        mean_trigamma = np.mean(polygamma(1, df_half))

    e = np.log(sigma2_valid) - digamma(df_half) + np.log(df_half)
    emean = np.mean(e)
    evar = np.var(e, ddof=1)

    evar_adjusted = evar - mean_trigamma

    if evar_adjusted <= 0:
        d0 = np.inf
        s0_sq = np.exp(emean)
    else:
        d0 = 2.0 * trigamma_inverse(evar_adjusted)
        if d0 > MAX_PRIOR_DF:
            d0 = np.inf
            s0_sq = np.exp(emean)
        else:
            s0_sq = np.exp(emean + digamma(d0 / 2.0) - np.log(d0 / 2.0))

    return float(d0), float(s0_sq)


# =============================================================================
# Linear model
# =============================================================================

def lm_fit(
    y: NDArray[np.float64],
    design: NDArray[np.float64],
    weights: NDArray[np.float64] | None = None,
) -> tuple[NDArray[np.float64], NDArray[np.float64], float]:
    """
    Weighted least squares of every row of ``y`` on ``design``.

    Args:
        y: Responses (n_features × n_samples)
        design: Design matrix (n_samples × k), full column rank
        weights: Optional weights, same shape as y

    Returns:
        (coefficients (n_features × k), sigma2 (n_features,), df_residual)
    """
    n_features, n_samples = y.shape
    design = np.asarray(design, dtype=np.float64)
    if design.shape[0] != n_samples:
        raise ValueError(
            f"design rows ({design.shape[0]}) must match samples ({n_samples})"
        )
    k = np.linalg.matrix_rank(design)
    if k < design.shape[1]:
        raise ValueError("design matrix is not of full column rank")
    df_residual = float(n_samples - k)

    if weights is None:
        coef, *_ = np.linalg.lstsq(design, y.T, rcond=None)
        coef = coef.T
        resid = y - coef @ design.T
        rss = np.einsum("ij,ij->i", resid, resid)
    else:
        # Per-feature normal equations: (X' W_g X) b_g = X' W_g y_g
        xtwx = np.einsum("sa,gs,sb->gab", design, weights, design)
        xtwy = np.einsum("sa,gs,gs->ga", design, weights, y)
        coef = np.linalg.solve(xtwx, xtwy[..., None])[..., 0]
        resid = y - coef @ design.T
        rss = np.einsum("gs,gs,gs->g", weights, resid, resid)

    with np.errstate(invalid="ignore", divide="ignore"):
        sigma2 = rss / df_residual
    return coef, sigma2, df_residual


# =============================================================================
# Default service
# =============================================================================

class VoomModerator:
    """
    limma-voom style moderation service.

    Args:
        span: Lowess span for the mean-variance trend (limma default 0.5)
    """

    def __init__(self, span: float = 0.5):
        if not 0 < span <= 1:
            raise ValueError(f"span must be in (0, 1], got {span}")
        self.span = span

    def _voom(
        self,
        counts: NDArray[np.float64],
        design: NDArray[np.float64],
    ) -> tuple[NDArray[np.float64], NDArray[np.float64]]:
        """log-CPM (features × samples) and precision weights of the same shape."""
        from statsmodels.nonparametric.smoothers_lowess import lowess

        x = np.asarray(counts, dtype=np.float64).T
        if np.any(x < 0):
            raise ValueError("voom requires non-negative counts")
        lib_size = x.sum(axis=0)
        y = np.log2((x + 0.5) / (lib_size[None, :] + 1.0) * 1e6)

        coef, sigma2, df_residual = lm_fit(y, design)
        if df_residual <= 0:
            logger.warning("No residual degrees of freedom; using unit voom weights.")
            return y, np.ones_like(y)

        amean = y.mean(axis=1)
        sx = amean + np.mean(np.log2(lib_size + 1.0)) - np.log2(1e6)
        sy = np.sqrt(np.sqrt(np.clip(sigma2, 0.0, None)))

        trend = lowess(sy, sx, frac=self.span, it=3, return_sorted=True)
        trend_x, trend_y = trend[:, 0], trend[:, 1]

        fitted = coef @ np.asarray(design, dtype=np.float64).T
        fitted_count = 1e-6 * np.exp2(fitted) * (lib_size[None, :] + 1.0)
        fitted_logcount = np.log2(fitted_count)

        f = np.interp(fitted_logcount, trend_x, trend_y)
        weights = 1.0 / np.maximum(f, _EPS) ** 4
        return y, weights

    def voom_weights(
        self,
        counts: NDArray[np.float64],
        design: NDArray[np.float64],
    ) -> NDArray[np.float64]:
        """Precision weights, samples × features."""
        _, weights = self._voom(counts, design)
        return weights.T

    def fit(
        self,
        pseudo_counts: NDArray[np.float64],
        design: NDArray[np.float64],
    ) -> ModerationFit:
        y, weights = self._voom(pseudo_counts, design)
        _, sigma2, df_residual = lm_fit(y, design, weights=weights)
        d0, s0_sq = fit_f_dist(sigma2, df_residual)

        if np.isinf(d0):
            logger.warning(
                "Prior degrees of freedom are infinite; capping at %g.", MAX_PRIOR_DF
            )
            d0 = MAX_PRIOR_DF

        logger.debug("Moderation fit: df.prior=%.4g, s2.prior=%.4g", d0, s0_sq)
        return ModerationFit(
            df_prior=d0,
            s2_prior=s0_sq,
            weights=weights.T,
            df_residual=df_residual,
            sigma2=sigma2,
        )
