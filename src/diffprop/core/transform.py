"""
Log-ratio transformations of compositional counts.

Counts are only meaningful relative to each other, so every analysis step
works on log-ratios against a reference: the geometric mean of a chosen
feature subset in each sample.

Reference modes:
    - Reference.CLR: all features (centered log-ratio)
    - Reference.IQLR: features whose CLR variance lies in the
      interquartile range; stable features make a steadier reference
      when a large fraction of features change between groups
    - explicit subset: a sequence of feature names or positions
      (a single feature gives the additive log-ratio)

Zero policy:
    log(0) is undefined, so without alpha zeros are replaced by 1 before
    logging. With a power parameter alpha the transform
    ``((x^alpha / mean_ref(x^alpha)) - 1) / alpha`` is used instead, which is
    finite at zero and tends to the log-ratio as alpha -> 0.

The module also keeps the immutable Transform interface: a transform takes
a CountMatrix and returns a new matrix, leaving the input untouched.

Examples:
    >>> from diffprop.core.transform import LogRatioTransform, Reference
    >>> clr = LogRatioTransform(reference=Reference.CLR)
    >>> lr = clr.apply(counts)     # counts unchanged
"""

from __future__ import annotations

import logging
import math
from abc import ABC, abstractmethod
from datetime import datetime
from enum import Enum
from typing import Any, Sequence, Union

import numpy as np
import pandas as pd
from numpy.typing import NDArray

from diffprop.core.counts import CountMatrix, check_layout
from diffprop.core.errors import ReferenceZeroError

__all__ = [
    'Transform',
    'Reference',
    'ReferenceSpec',
    'parse_reference',
    'validate_alpha',
    'replace_zeros',
    'reference_index',
    'log_ratio',
    'LogRatioTransform',
    'LogRatioMatrix',
]

logger = logging.getLogger(__name__)


class Reference(Enum):
    """Built-in reference modes for log-ratio transforms."""
    CLR = "clr"
    IQLR = "iqlr"


ReferenceSpec = Union[Reference, str, Sequence[Union[str, int]]]


def parse_reference(reference: ReferenceSpec) -> Reference | list[str | int]:
    """
    Resolve a reference argument at the boundary.

    Strings "clr" and "iqlr" (case-insensitive) map to the enum. Any other
    single string is taken as one feature name. Sequences are explicit
    feature subsets.
    """
    if isinstance(reference, Reference):
        return reference
    if isinstance(reference, str):
        try:
            return Reference(reference.lower())
        except ValueError:
            return [reference]
    if isinstance(reference, (int, np.integer)):
        return [int(reference)]
    subset = list(reference)
    if not subset:
        raise ValueError("explicit reference subset is empty")
    return subset


def validate_alpha(alpha: float | None) -> float | None:
    """Normalize alpha: None/NaN mean "unset"; zero is rejected."""
    if alpha is None:
        return None
    alpha = float(alpha)
    if math.isnan(alpha):
        return None
    if alpha == 0:
        raise ValueError("alpha must be non-zero; leave it unset for the log transform")
    if not math.isfinite(alpha):
        raise ValueError(f"alpha must be finite, got {alpha}")
    return alpha


def replace_zeros(counts: CountMatrix) -> CountMatrix:
    """Return counts with every zero replaced by 1."""
    if not counts.has_zeros:
        return counts
    logger.info("Replacing 0s in count matrix with 1.")
    data = counts.data.copy()
    data[data == 0] = 1.0
    return counts.with_data(data)


def _clr(log_counts: NDArray[np.float64]) -> NDArray[np.float64]:
    return log_counts - log_counts.mean(axis=1, keepdims=True)


def reference_index(counts: CountMatrix, reference: ReferenceSpec) -> NDArray[np.intp]:
    """
    Feature positions forming the reference.

    Args:
        counts: Count matrix
        reference: Reference mode or explicit subset

    Returns:
        Sorted integer positions of the reference features

    Raises:
        ValueError: Unknown feature names or positions out of range
    """
    ref = parse_reference(reference)
    d = counts.n_features

    if ref is Reference.CLR:
        return np.arange(d)

    if ref is Reference.IQLR:
        data = counts.data.copy()
        data[data == 0] = 1.0
        clr_var = np.var(_clr(np.log(data)), axis=0, ddof=1)
        q1, q3 = np.quantile(clr_var, [0.25, 0.75])
        use = np.flatnonzero((clr_var >= q1) & (clr_var <= q3))
        logger.debug("IQLR reference uses %d of %d features", len(use), d)
        return use

    positions = []
    for feature in ref:
        if isinstance(feature, (int, np.integer)) and not isinstance(feature, bool):
            if not 0 <= feature < d:
                raise ValueError(f"reference position {feature} out of range for {d} features")
            positions.append(int(feature))
        else:
            loc = counts.feature_ids.get_indexer([feature])[0]
            if loc < 0:
                raise ValueError(f"reference feature {feature!r} not found")
            positions.append(int(loc))
    return np.unique(np.asarray(positions, dtype=np.intp))


def log_ratio(
    counts: CountMatrix,
    reference: ReferenceSpec = Reference.CLR,
    alpha: float | None = None,
) -> NDArray[np.float64]:
    """
    Log-ratio of every feature against the reference, per sample.

    Without alpha:
        lr[s, f] = log x[s, f] - mean_{r in ref} log x[s, r]
        (zeros replaced by 1 first)

    With alpha:
        lr[s, f] = (x[s, f]^alpha / mean_{r in ref} x[s, r]^alpha - 1) / alpha

    Raises:
        ReferenceZeroError: If the reference (geometric or power) mean is
            zero in any sample
    """
    alpha = validate_alpha(alpha)
    use = reference_index(counts, reference)
    data = counts.data

    if alpha is None:
        data = data.copy()
        data[data == 0] = 1.0
        logx = np.log(data)
        ref = logx[:, use].mean(axis=1, keepdims=True)
        if np.any(np.exp(ref) == 0):
            raise ReferenceZeroError("Zeros present in reference set.")
        return logx - ref

    powered = np.power(data, alpha)
    ref = powered[:, use].mean(axis=1, keepdims=True)
    if np.any(ref == 0) or not np.all(np.isfinite(ref)):
        raise ReferenceZeroError("Zeros present in reference set.")
    return (powered / ref - 1.0) / alpha


class Transform(ABC):
    """
    Abstract base class for count-matrix transformations.

    Transformations take a CountMatrix and parameters and return a new
    matrix (CountMatrix or LogRatioMatrix); the input is never modified.

    Attributes:
        name: Human-readable transformation name
        params: JSON-serializable parameters, kept for provenance
        timestamp: When this transform instance was created
    """

    def __init__(self, name: str, params: dict[str, Any]) -> None:
        self.name = name
        self.params = params
        self.timestamp = datetime.now()

    @abstractmethod
    def apply(self, counts: CountMatrix) -> CountMatrix | LogRatioMatrix:
        """Execute the transformation and return a new matrix."""

    def validate(self, counts: CountMatrix) -> list[str]:
        """
        Check preconditions before applying the transformation.

        Returns:
            List of error messages (empty list = valid)
        """
        errors: list[str] = []
        if counts.data.size == 0:
            errors.append("Cannot process empty matrix")
        return errors

    def __repr__(self) -> str:
        params_str = ", ".join(f"{k}={v}" for k, v in self.params.items())
        return f"{self.name}({params_str})"


class LogRatioTransform(Transform):
    """
    Log-ratio transform against a reference (clr, iqlr or explicit subset).

    Returns a LogRatioMatrix: same ids as the counts, values of any sign.
    """

    def __init__(self, reference: ReferenceSpec = Reference.CLR, alpha: float | None = None):
        ref = parse_reference(reference)
        super().__init__(
            name="LogRatioTransform",
            params={
                "reference": ref.value if isinstance(ref, Reference) else list(ref),
                "alpha": validate_alpha(alpha),
            },
        )
        self.reference = ref
        self.alpha = validate_alpha(alpha)

    def validate(self, counts: CountMatrix) -> list[str]:
        errors = super().validate(counts)
        try:
            use = reference_index(counts, self.reference)
        except ValueError as e:
            errors.append(str(e))
            return errors
        if self.alpha is not None:
            if np.any(np.all(counts.data[:, use] == 0, axis=1)):
                errors.append("Reference is zero in at least one sample")
        return errors

    def apply(self, counts: CountMatrix) -> LogRatioMatrix:
        values = log_ratio(counts, self.reference, self.alpha)
        return LogRatioMatrix(values, counts.feature_ids, counts.sample_ids)


class LogRatioMatrix:
    """
    Read-only samples × features log-ratios with the ids of their counts.

    Shares the layout checks of CountMatrix but not its value checks:
    log-ratios take any sign.
    """

    def __init__(self, data, feature_ids=None, sample_ids=None):
        values, feature_ids, sample_ids = check_layout(data, feature_ids, sample_ids)
        values.flags.writeable = False
        self._data = values
        self._feature_ids = feature_ids
        self._sample_ids = sample_ids

    @property
    def data(self) -> np.ndarray:
        return self._data

    @property
    def feature_ids(self) -> pd.Index:
        return self._feature_ids

    @property
    def sample_ids(self) -> pd.Index:
        return self._sample_ids

    @property
    def shape(self) -> tuple[int, int]:
        return self._data.shape

    def take_samples(self, rows) -> LogRatioMatrix:
        rows = np.asarray(rows)
        return LogRatioMatrix(self._data[rows], self._feature_ids, self._sample_ids[rows])

    def take_features(self, columns) -> LogRatioMatrix:
        columns = np.asarray(columns)
        return LogRatioMatrix(self._data[:, columns], self._feature_ids[columns], self._sample_ids)

    def to_dataframe(self) -> pd.DataFrame:
        return pd.DataFrame(self._data.copy(), index=self._sample_ids, columns=self._feature_ids)

    def __repr__(self) -> str:
        return f"LogRatioMatrix({self.shape[0]} samples × {self.shape[1]} features)"
