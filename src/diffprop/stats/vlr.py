"""
Variance of log-ratios (VLR) for every feature pair.

For features i < j the VLR is the sample variance of log(x_i / x_j) across
samples. Four variants are supported:

    raw          var(log x_i - log x_j)
    alpha        aVLR, the power-transform approximation: each feature is
                 divided by the whole-set mean of its alpha-power, the two
                 scaled series are differenced, and the sum of squared
                 deviations is divided by (n - 1) * alpha^2
    weighted     precision weights w_s = W_si * W_sj per sample and pair;
                 the (n - 1) divisor becomes Omega = sum(w) - sum(w^2)/sum(w)
    weighted +   both adjustments; the whole-set means used for scaling are
    alpha        weighted by the same pair weights

Sufficient statistics:
    The engine never builds the n × d(d-1)/2 matrix of log-ratios. Every
    quantity is a weighted sum over samples that factorizes into matrix
    products of per-feature columns, e.g. for y = c_i B_i - c_j B_j:

        sum(w)      = (W^T W)_ij
        sum(w y)    = c_i ((W∘B)^T W)_ij - c_j (W^T (W∘B))_ij
        sum(w y^2)  = c_i^2 ((W∘B²)^T W)_ij + c_j^2 (W^T (W∘B²))_ij
                      - 2 c_i c_j ((W∘B)^T (W∘B))_ij

    The products are evaluated on column blocks so memory stays at
    O(d × block) and blocks can be mapped over workers. The canonical pair
    order groups pairs by their larger index, so a block of columns yields a
    contiguous slice of the output.

Numerical stability:
    Columns are centred before the products; variances are shift-invariant
    per feature, so this only removes cancellation. For alpha the basis is
    B = expm1(alpha * (log x - log mean(x^alpha))) / alpha, which stays
    finite and accurate as alpha -> 0 and at x = 0 (B = -1/alpha for
    alpha > 0). Dividing by alpha^2 is therefore folded into the basis.

References:
    Erb et al. (2017) "Differential proportionality - a normalization-free
    approach to differential gene expression", bioRxiv 134536.
    Lovell et al. (2015) "Proportionality: a valid alternative to
    correlation for relative data", PLoS Comput Biol 11(3).
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, replace

import numpy as np
from numpy.typing import NDArray
from scipy.special import logsumexp

from diffprop.core.counts import CountMatrix
from diffprop.core.pairs import enumerate_pairs, n_pairs
from diffprop.core.transform import validate_alpha

__all__ = [
    'LogRatioBasis',
    'PairwiseStats',
    'pairwise_stats',
    'pairwise_lrv',
    'omega',
]

logger = logging.getLogger(__name__)

DEFAULT_CHUNK_SIZE = 256


@dataclass(frozen=True, eq=False)
class LogRatioBasis:
    """
    Per-sample, per-feature values whose column differences are log-ratios.

    Normalization always refers to the whole sample set the basis was built
    from; ``take`` subsets samples without renormalizing, which is what the
    group-wise VLRs require.

    Attributes:
        values: Basis B (n_samples × n_features), uncentred
        weights: Precision weights (n_samples × n_features) or None
        alpha: Power parameter, or None for the log transform
        full_values: B on the whole sample set
        full_weights: Weights on the whole sample set
    """

    values: NDArray[np.float64]
    weights: NDArray[np.float64] | None
    alpha: float | None
    full_values: NDArray[np.float64]
    full_weights: NDArray[np.float64] | None

    @classmethod
    def from_counts(
        cls,
        counts: CountMatrix | NDArray,
        alpha: float | None = None,
        weights: NDArray | None = None,
    ) -> LogRatioBasis:
        """
        Build the basis from counts.

        Zeros are not replaced here: without alpha they produce -inf logs
        and the affected pairs come out as NaN. Callers apply the zero
        policy first (see ``diffprop.core.transform.replace_zeros``).

        Args:
            counts: Count matrix (samples × features)
            alpha: Power parameter (non-zero) or None
            weights: Optional precision weights, same shape as counts
        """
        data = counts.data if isinstance(counts, CountMatrix) else np.asarray(counts, dtype=np.float64)
        alpha = validate_alpha(alpha)
        n = data.shape[0]

        with np.errstate(divide="ignore", invalid="ignore"):
            logx = np.log(data)
            if alpha is None:
                values = logx
            else:
                # log of the whole-set mean of x^alpha, per feature
                log_mu = logsumexp(alpha * logx, axis=0) - np.log(n)
                values = np.expm1(alpha * (logx - log_mu)) / alpha

        if weights is not None:
            weights = np.asarray(weights, dtype=np.float64)
            if weights.shape != data.shape:
                raise ValueError(
                    f"weights shape {weights.shape} must match counts shape {data.shape}"
                )
            if np.any(weights < 0) or not np.all(np.isfinite(weights)):
                raise ValueError("weights must be finite and non-negative")

        return cls(values, weights, alpha, values, weights)

    @property
    def n_samples(self) -> int:
        return self.values.shape[0]

    @property
    def n_features(self) -> int:
        return self.values.shape[1]

    @property
    def weighted(self) -> bool:
        return self.weights is not None

    def take(self, rows: NDArray) -> LogRatioBasis:
        """Subset or reorder samples, keeping the whole-set normalization."""
        rows = np.asarray(rows)
        return replace(
            self,
            values=self.values[rows],
            weights=None if self.weights is None else self.weights[rows],
        )


@dataclass(frozen=True)
class PairwiseStats:
    """
    Per-pair log-ratio summaries in canonical pair order.

    Attributes:
        lrv: Variance of log-ratios (VLR or aVLR)
        omega: Effective size (n - 1 unweighted, Omega weighted)
        lrm: Mean log-ratio log(x_partner / x_pair), or None if skipped
    """

    lrv: NDArray[np.float64]
    omega: NDArray[np.float64]
    lrm: NDArray[np.float64] | None = None


def _column_blocks(d: int, chunk_size: int) -> list[tuple[int, int]]:
    # Column 0 has no partner; start at 1
    return [(q0, min(q0 + chunk_size, d)) for q0 in range(1, d, chunk_size)]


def _block_stats(
    B: NDArray[np.float64],
    beta: NDArray[np.float64],
    W: NDArray[np.float64] | None,
    full_B: NDArray[np.float64] | None,
    full_W: NDArray[np.float64] | None,
    alpha: float | None,
    q0: int,
    q1: int,
    with_mean: bool,
) -> tuple[NDArray, NDArray, NDArray | None]:
    """Sufficient statistics for all pairs whose larger index is in [q0, q1)."""
    with np.errstate(invalid="ignore", divide="ignore", over="ignore"):
        return _block_stats_impl(B, beta, W, full_B, full_W, alpha, q0, q1, with_mean)


def _block_stats_impl(B, beta, W, full_B, full_W, alpha, q0, q1, with_mean):
    n = B.shape[0]
    Bp, Bq = B[:, :q1], B[:, q0:q1]

    if W is None:
        sw = np.float64(n)
        sw2 = np.float64(n)
        s1p = Bp.sum(axis=0)[:, None]
        s1q = Bq.sum(axis=0)[None, :]
        s2p = np.einsum("ij,ij->j", Bp, Bp)[:, None]
        s2q = np.einsum("ij,ij->j", Bq, Bq)[None, :]
        spq = Bp.T @ Bq
    else:
        Wp, Wq = W[:, :q1], W[:, q0:q1]
        WBp, WBq = Wp * Bp, Wq * Bq
        sw = Wp.T @ Wq
        sw2 = (Wp * Wp).T @ (Wq * Wq)
        s1p = WBp.T @ Wq
        s1q = Wp.T @ WBq
        s2p = (WBp * Bp).T @ Wq
        s2q = Wp.T @ (WBq * Bq)
        spq = WBp.T @ WBq

    if full_W is not None and alpha is not None:
        # Weighted whole-set means of the basis give per-pair scale factors
        fWp, fWq = full_W[:, :q1], full_W[:, q0:q1]
        fsw = fWp.T @ fWq
        mbp = ((fWp * full_B[:, :q1]).T @ fWq) / fsw
        mbq = (fWp.T @ (fWq * full_B[:, q0:q1])) / fsw
        cp = 1.0 / (1.0 + alpha * mbp)
        cq = 1.0 / (1.0 + alpha * mbq)
    else:
        mbp = mbq = None
        cp = cq = 1.0

    sy = cp * s1p - cq * s1q
    syy = cp * cp * s2p + cq * cq * s2q - 2.0 * cp * cq * spq
    ss = np.maximum(syy - sy * sy / sw, 0.0)
    om = sw - sw2 / sw
    lrv = ss / om
    om = np.broadcast_to(om, lrv.shape)

    lrm = None
    if with_mean:
        lrm = sy / sw + cp * beta[:q1, None] - cq * beta[None, q0:q1]
        if mbp is not None:
            lrm = lrm + (mbq - mbp) * cp * cq
        lrm = np.broadcast_to(lrm, lrv.shape)

    # Pick (partner, pair) entries in canonical order
    partner, pair = enumerate_pairs(q1)
    start = n_pairs(q0)
    partner, col = partner[start:], pair[start:] - q0

    return (
        lrv[partner, col],
        om[partner, col],
        None if lrm is None else lrm[partner, col],
    )


def pairwise_stats(
    basis: LogRatioBasis,
    with_mean: bool = True,
    chunk_size: int = DEFAULT_CHUNK_SIZE,
    n_jobs: int = 1,
) -> PairwiseStats:
    """
    VLR, effective size and (optionally) mean log-ratio for every pair.

    Args:
        basis: Log-ratio basis for the sample subset of interest
        with_mean: Also compute mean log-ratios (skipped in permutation loops)
        chunk_size: Number of pair columns per block
        n_jobs: Parallel workers over blocks (joblib); 1 runs inline

    Returns:
        PairwiseStats with arrays of length d(d-1)/2
    """
    d = basis.n_features
    if chunk_size < 1:
        raise ValueError(f"chunk_size must be positive, got {chunk_size}")

    with np.errstate(invalid="ignore", divide="ignore", over="ignore"):
        beta = basis.values.mean(axis=0)
        centred = basis.values - beta
        weighted_alpha = basis.weights is not None and basis.alpha is not None
        full_B = basis.full_values if weighted_alpha else None
        full_W = basis.full_weights if weighted_alpha else None

        blocks = _column_blocks(d, chunk_size)
        args = (centred, beta, basis.weights, full_B, full_W, basis.alpha)

        if n_jobs == 1 or len(blocks) == 1:
            parts = [_block_stats(*args, q0, q1, with_mean) for q0, q1 in blocks]
        else:
            from joblib import Parallel, delayed

            parts = Parallel(n_jobs=n_jobs)(
                delayed(_block_stats)(*args, q0, q1, with_mean) for q0, q1 in blocks
            )

    lrv = np.concatenate([p[0] for p in parts])
    om = np.concatenate([p[1] for p in parts])
    lrm = np.concatenate([p[2] for p in parts]) if with_mean else None
    return PairwiseStats(lrv=lrv, omega=om, lrm=lrm)


def pairwise_lrv(
    counts: CountMatrix | NDArray,
    alpha: float | None = None,
    weights: NDArray | None = None,
    n_jobs: int = 1,
) -> NDArray[np.float64]:
    """Convenience wrapper: VLR of every pair over all samples."""
    basis = LogRatioBasis.from_counts(counts, alpha=alpha, weights=weights)
    return pairwise_stats(basis, with_mean=False, n_jobs=n_jobs).lrv


def omega(weights: NDArray[np.float64], chunk_size: int = DEFAULT_CHUNK_SIZE) -> NDArray[np.float64]:
    """
    Weighted effective size per pair: sum(w) - sum(w^2) / sum(w).

    With w = W_i * W_j for the pair (i, j). Unit weights give n - 1.
    """
    W = np.asarray(weights, dtype=np.float64)
    d = W.shape[1]
    out = []
    with np.errstate(invalid="ignore", divide="ignore"):
        for q0, q1 in _column_blocks(d, chunk_size):
            Wp, Wq = W[:, :q1], W[:, q0:q1]
            sw = Wp.T @ Wq
            om = sw - ((Wp * Wp).T @ (Wq * Wq)) / sw
            partner, pair = enumerate_pairs(q1)
            start = n_pairs(q0)
            out.append(om[partner[start:], pair[start:] - q0])
    return np.concatenate(out)
