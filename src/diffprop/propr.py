"""
Proportionality analysis object.

Proportionality measures how well two features keep a constant ratio
across samples. All metrics come from the covariance S of log-ratios
against a reference (clr, iqlr or an explicit feature subset):

    vlr  = S_ii + S_jj - 2 S_ij
    rho  = 1 - vlr / (S_ii + S_jj)     concordance, in [-1, 1]
    phi  = vlr / S_ii                  (i = partner)
    phs  = (1 - rho) / (1 + rho)       symmetric phi
    cor  = S_ij / sqrt(S_ii S_jj)      Pearson correlation of log-ratios

References:
    Lovell et al. (2015) "Proportionality: a valid alternative to
    correlation for relative data", PLoS Comput Biol 11(3).
    Quinn et al. (2017) "propr: An R-package for Identifying Proportionally
    Abundant Features Using Compositional Data Analysis", Sci Rep 7:16252.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

import numpy as np
import pandas as pd
from numpy.typing import ArrayLike, NDArray

from diffprop.core.counts import CountMatrix
from diffprop.core.pairs import enumerate_pairs
from diffprop.core.transform import LogRatioTransform, Reference, ReferenceSpec, replace_zeros
from diffprop.results import CutoffDirection, filter_results

__all__ = ['Metric', 'Propr', 'propr', 'proportionality']

logger = logging.getLogger(__name__)


class Metric(Enum):
    """Proportionality metrics."""
    RHO = "rho"
    PHI = "phi"
    PHS = "phs"
    COR = "cor"

    @classmethod
    def parse(cls, value: Metric | str) -> Metric:
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).lower())
        except ValueError:
            valid = ", ".join(m.value for m in cls)
            raise ValueError(f"unknown metric {value!r}; expected one of {valid}") from None

    @property
    def cutoff_direction(self) -> CutoffDirection:
        if self in (Metric.RHO, Metric.COR):
            return CutoffDirection.AT_LEAST
        return CutoffDirection.AT_MOST


def proportionality(
    log_ratios: NDArray[np.float64],
    metric: Metric | str = Metric.RHO,
) -> tuple[NDArray[np.float64], NDArray[np.float64]]:
    """
    Metric and VLR for every pair, in canonical pair order.

    Args:
        log_ratios: Log-ratios against a reference (samples × features)
        metric: rho, phi, phs or cor

    Returns:
        (values, vlr)
    """
    metric = Metric.parse(metric)
    cov = np.cov(log_ratios, rowvar=False, ddof=1)
    var = np.diag(cov)
    partner, pair = enumerate_pairs(log_ratios.shape[1])

    s_ij = cov[partner, pair]
    s_ii = var[partner]
    s_jj = var[pair]
    vlr = s_ii + s_jj - 2.0 * s_ij

    with np.errstate(invalid="ignore", divide="ignore"):
        if metric is Metric.RHO:
            values = 1.0 - vlr / (s_ii + s_jj)
        elif metric is Metric.PHI:
            values = vlr / s_ii
        elif metric is Metric.PHS:
            rho = 1.0 - vlr / (s_ii + s_jj)
            values = (1.0 - rho) / (1.0 + rho)
        else:
            values = s_ij / np.sqrt(s_ii * s_jj)

    return values, vlr


@dataclass(frozen=True, eq=False)
class Propr:
    """
    Immutable proportionality results.

    Attributes:
        counts: Counts used (zeros replaced by 1 when alpha is unset)
        metric: Metric in the ``propr`` column
        reference: Reference of the log-ratio transform
        alpha: Power parameter or None
        log_ratios: Transformed data (samples × features)
        results: Partner, Pair, lrv, propr in canonical pair order
    """

    counts: CountMatrix
    metric: Metric
    reference: Any
    alpha: float | None
    log_ratios: NDArray[np.float64] = field(repr=False)
    results: pd.DataFrame = field(repr=False)

    @property
    def feature_ids(self) -> pd.Index:
        return self.counts.feature_ids

    @property
    def cutoff_direction(self) -> CutoffDirection:
        return self.metric.cutoff_direction

    def pair_index(self) -> tuple[NDArray[np.intp], NDArray[np.intp]]:
        return (
            self.results["Partner"].to_numpy(dtype=np.intp),
            self.results["Pair"].to_numpy(dtype=np.intp),
        )

    def ratio_counts(self) -> CountMatrix:
        return self.counts

    def get_results(self, cutoff: float | None = None) -> pd.DataFrame:
        """Pairs passing ``cutoff`` (at least for rho/cor, at most for phi/phs)."""
        return filter_results(
            self.results, "propr", cutoff, self.cutoff_direction, self.feature_ids,
        )

    def matrix(self) -> pd.DataFrame:
        """Symmetric feature × feature matrix of the metric."""
        d = self.counts.n_features
        partner, pair = self.pair_index()
        diag = 1.0 if self.cutoff_direction is CutoffDirection.AT_LEAST else 0.0
        mat = np.full((d, d), diag)
        values = self.results["propr"].to_numpy()
        mat[partner, pair] = values
        mat[pair, partner] = values
        return pd.DataFrame(mat, index=self.feature_ids, columns=self.feature_ids)

    def __repr__(self) -> str:
        return (
            f"Propr({self.counts.n_samples} samples × {self.counts.n_features} features, "
            f"metric={self.metric.value}, alpha={self.alpha})"
        )


def propr(
    counts: CountMatrix | pd.DataFrame | ArrayLike,
    metric: Metric | str = Metric.RHO,
    reference: ReferenceSpec = Reference.CLR,
    alpha: float | None = None,
) -> Propr:
    """
    Proportionality between every pair of features.

    Args:
        counts: Count matrix (samples × features)
        metric: "rho", "phi", "phs" or "cor"
        reference: "clr", "iqlr", or feature names/positions
        alpha: Power parameter; None uses log-ratios with zeros replaced by 1

    Raises:
        ValueError: Unknown metric or reference, bad alpha
        ReferenceZeroError: Reference mean is zero in a sample
    """
    counts = CountMatrix.coerce(counts)
    metric = Metric.parse(metric)
    transform = LogRatioTransform(reference=reference, alpha=alpha)

    if transform.alpha is None:
        counts = replace_zeros(counts)

    log_ratios = transform.apply(counts).data
    logger.debug("propr: %s with %s", metric.value, transform)
    values, vlr = proportionality(log_ratios, metric)

    partner, pair = enumerate_pairs(counts.n_features)
    results = pd.DataFrame({
        "Partner": partner,
        "Pair": pair,
        "lrv": vlr,
        "propr": values,
    })

    return Propr(
        counts=counts,
        metric=metric,
        reference=transform.reference,
        alpha=transform.alpha,
        log_ratios=log_ratios,
        results=results,
    )
