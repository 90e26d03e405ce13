"""
Uniform access to pairwise results of Propr and Propd objects.

Both object kinds expose the same capability (PairwiseResults): a results
table in canonical pair order, the pair index, and the direction in which
a cutoff keeps pairs. Association metrics (rho, cor) keep pairs at or above
the cutoff; distance-like metrics (phi, phs) and every theta keep pairs at
or below it.
"""

from __future__ import annotations

import logging
from enum import Enum
from typing import Protocol, runtime_checkable

import numpy as np
import pandas as pd
from numpy.typing import NDArray

from diffprop.core.counts import CountMatrix
from diffprop.core.pairs import enumerate_pairs

__all__ = [
    'CutoffDirection',
    'PairwiseResults',
    'filter_results',
    'get_results',
    'pairwise_ratios',
    'get_ratios',
]

logger = logging.getLogger(__name__)


class CutoffDirection(Enum):
    """Which side of a cutoff is retained."""
    AT_LEAST = "at_least"
    AT_MOST = "at_most"


@runtime_checkable
class PairwiseResults(Protocol):
    """Capability shared by Propr and Propd."""

    @property
    def cutoff_direction(self) -> CutoffDirection: ...

    @property
    def feature_ids(self) -> pd.Index: ...

    @property
    def alpha(self) -> float | None: ...

    def pair_index(self) -> tuple[NDArray[np.intp], NDArray[np.intp]]: ...

    def get_results(self, cutoff: float | None = None) -> pd.DataFrame: ...

    def ratio_counts(self) -> CountMatrix: ...


def filter_results(
    table: pd.DataFrame,
    column: str,
    cutoff: float | None,
    direction: CutoffDirection,
    feature_ids: pd.Index,
) -> pd.DataFrame:
    """
    Apply a cutoff and replace Partner/Pair indices by feature names.

    Args:
        table: Results with integer Partner/Pair columns
        column: Statistic compared with the cutoff
        cutoff: Threshold, or None (or NaN) to keep every pair
        direction: Side of the cutoff to keep (inclusive)
        feature_ids: Names indexed by feature position

    Raises:
        ValueError: No pairs remain
    """
    if cutoff is not None and not np.isnan(cutoff):
        values = table[column]
        if direction is CutoffDirection.AT_LEAST:
            keep = values >= cutoff
        else:
            keep = values <= cutoff
        table = table.loc[keep]

    if len(table) == 0:
        raise ValueError("No results remain after cutoff.")

    names = np.asarray(feature_ids, dtype=object)
    table = table.assign(
        Partner=names[table["Partner"].to_numpy()],
        Pair=names[table["Pair"].to_numpy()],
    )
    return table.reset_index(drop=True)


def get_results(obj: PairwiseResults, cutoff: float | None = None) -> pd.DataFrame:
    """Results of a Propr or Propd object, filtered and with feature names."""
    if not isinstance(obj, PairwiseResults):
        raise TypeError(f"expected a Propr or Propd object, got {type(obj).__name__}")
    return obj.get_results(cutoff)


def pairwise_ratios(counts: CountMatrix, alpha: float | None = None) -> pd.DataFrame:
    """
    (Log-)ratio of every feature pair per sample.

    Columns are named "partner/pair" in canonical pair order. With alpha the
    ratio is ``(partner^alpha - pair^alpha) / alpha``; otherwise
    ``log(partner / pair)``.
    """
    partner, pair = enumerate_pairs(counts.n_features)
    data = counts.data
    if alpha is None:
        logx = np.log(data)
        values = logx[:, partner] - logx[:, pair]
    else:
        powered = np.power(data, alpha)
        values = (powered[:, partner] - powered[:, pair]) / alpha

    names = np.asarray(counts.feature_ids, dtype=object)
    columns = [f"{a}/{b}" for a, b in zip(names[partner], names[pair])]
    return pd.DataFrame(values, index=counts.sample_ids, columns=columns)


def get_ratios(
    obj: PairwiseResults,
    cutoff: float | None = None,
    melt: bool = False,
) -> pd.DataFrame:
    """
    Pairwise (log-)ratios among the features that survive ``cutoff``.

    Args:
        obj: Propr or Propd object
        cutoff: Passed to ``get_results``
        melt: Return long format (columns sample, ratio, value) instead of
            samples × ratios

    Returns:
        DataFrame of ratios
    """
    df = get_results(obj, cutoff)
    keep = obj.feature_ids.isin(pd.unique(np.concatenate([df["Partner"], df["Pair"]])))
    counts = obj.ratio_counts().take_features(keep)
    logger.debug("Computing ratios for %d features", counts.n_features)

    lr = pairwise_ratios(counts, obj.alpha)
    if not melt:
        return lr

    long = lr.rename_axis("sample").reset_index().melt(
        id_vars="sample", var_name="ratio", value_name="value",
    )
    return long
