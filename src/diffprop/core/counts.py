"""
Core data structures for compositional count data.

CountMatrix couples the numerical counts with feature names and sample ids.
GroupLabels holds the two-group assignment used by differential
proportionality.

Compositional Context:
    Sequencing counts only carry relative information: every sample is a
    composition whose total is an artefact of library size. All statistics
    in this package are therefore built from log-ratios between features,
    never from the raw abundances themselves.

    - Rows = samples
    - Columns = features (genes, taxa, transcripts)
    - Values = non-negative counts or abundances

    This orientation (samples × features) differs from the usual expression
    matrix layout on purpose: every pairwise statistic scans columns, so
    features are kept contiguous.

Engineering Design:
    - Immutable: the underlying array is read-only, operations return new
      instances
    - Validated: constructor checks shape, finiteness and non-negativity
    - Cheap subsetting: sample selection keeps the feature index intact

Examples:
    >>> import numpy as np
    >>> import pandas as pd
    >>> from diffprop.core.counts import CountMatrix, GroupLabels
    >>>
    >>> counts = CountMatrix.from_dataframe(pd.DataFrame(
    ...     [[10, 20, 5], [12, 18, 0]],
    ...     index=["s1", "s2"],
    ...     columns=["geneA", "geneB", "geneC"],
    ... ))
    >>> counts.has_zeros
    True
    >>> groups = GroupLabels(["ctrl", "case"], n_samples=counts.n_samples)
    >>> groups.levels
    ('ctrl', 'case')
"""

from __future__ import annotations

from typing import Sequence

import numpy as np
import pandas as pd
from numpy.typing import ArrayLike, NDArray

from diffprop.core.errors import InvalidGroupError

__all__ = ['CountMatrix', 'GroupLabels', 'check_layout']


def _readonly(array: np.ndarray) -> np.ndarray:
    array.flags.writeable = False
    return array


def check_layout(
    data: ArrayLike,
    feature_ids: pd.Index | Sequence | None = None,
    sample_ids: pd.Index | Sequence | None = None,
) -> tuple[np.ndarray, pd.Index, pd.Index]:
    """
    Validate a samples × features layout and its identifiers.

    Returns:
        (float64 copy of data, feature_ids, sample_ids); missing ids default
        to "0", "1", ...

    Raises:
        ValueError: Not 2D, fewer than two samples or features, id lengths
            mismatch, or duplicate feature ids
    """
    values = np.array(data, dtype=np.float64, copy=True)
    if values.ndim != 2:
        raise ValueError(f"data must be 2D, got shape {values.shape}")

    n_samples, n_features = values.shape
    if n_features < 2:
        raise ValueError(f"need at least 2 features, got {n_features}")
    if n_samples < 2:
        raise ValueError(f"need at least 2 samples, got {n_samples}")

    if feature_ids is None:
        feature_ids = pd.Index([str(i) for i in range(n_features)])
    if sample_ids is None:
        sample_ids = pd.Index([str(i) for i in range(n_samples)])
    feature_ids = pd.Index(feature_ids)
    sample_ids = pd.Index(sample_ids)

    if len(feature_ids) != n_features:
        raise ValueError(
            f"feature_ids length ({len(feature_ids)}) must match data columns ({n_features})"
        )
    if len(sample_ids) != n_samples:
        raise ValueError(
            f"sample_ids length ({len(sample_ids)}) must match data rows ({n_samples})"
        )
    if not feature_ids.is_unique:
        raise ValueError("feature_ids must be unique")
    return values, feature_ids, sample_ids


class CountMatrix:
    """
    Immutable container for a samples × features count matrix.

    Attributes:
        data: Counts (n_samples × n_features), float64, read-only
        feature_ids: Column identifiers (feature names)
        sample_ids: Row identifiers (sample names)

    Shape Invariants:
        - data.shape == (len(sample_ids), len(feature_ids))
        - n_features >= 2 (pairs need two features)
        - all values finite and >= 0
        - feature_ids unique
    """

    def __init__(
        self,
        data: ArrayLike,
        feature_ids: pd.Index | Sequence | None = None,
        sample_ids: pd.Index | Sequence | None = None,
    ):
        """
        Initialize CountMatrix with validation.

        Args:
            data: Count matrix (samples × features)
            feature_ids: Feature names. Defaults to "0", "1", ...
            sample_ids: Sample names. Defaults to "0", "1", ...

        Raises:
            ValueError: If shapes are inconsistent, values are negative or
                non-finite, or fewer than two features are given
        """
        values, feature_ids, sample_ids = check_layout(data, feature_ids, sample_ids)
        if not np.all(np.isfinite(values)):
            raise ValueError("data contains NaN or infinite values")
        if np.any(values < 0):
            raise ValueError("data contains negative values")

        self._data = _readonly(values)
        self._feature_ids = feature_ids
        self._sample_ids = sample_ids

    @classmethod
    def from_dataframe(cls, df: pd.DataFrame) -> CountMatrix:
        """Build from a DataFrame with samples as rows and features as columns."""
        return cls(df.to_numpy(dtype=np.float64), df.columns, df.index)

    @classmethod
    def coerce(cls, counts: CountMatrix | pd.DataFrame | ArrayLike) -> CountMatrix:
        """Accept a CountMatrix, DataFrame or plain array."""
        if isinstance(counts, CountMatrix):
            return counts
        if isinstance(counts, pd.DataFrame):
            return cls.from_dataframe(counts)
        return cls(counts)

    @property
    def data(self) -> np.ndarray:
        """Counts (samples × features), read-only."""
        return self._data

    @property
    def feature_ids(self) -> pd.Index:
        return self._feature_ids

    @property
    def sample_ids(self) -> pd.Index:
        return self._sample_ids

    @property
    def shape(self) -> tuple[int, int]:
        """Matrix dimensions (n_samples, n_features)."""
        return self._data.shape

    @property
    def n_samples(self) -> int:
        return self._data.shape[0]

    @property
    def n_features(self) -> int:
        return self._data.shape[1]

    @property
    def has_zeros(self) -> bool:
        return bool(np.any(self._data == 0))

    def with_data(self, data: ArrayLike) -> CountMatrix:
        """Return a new matrix with the same ids and different values."""
        return CountMatrix(data, self._feature_ids, self._sample_ids)

    def take_samples(self, rows: NDArray[np.intp] | NDArray[np.bool_]) -> CountMatrix:
        """
        Subset or reorder samples (rows).

        Args:
            rows: Boolean mask or integer positions

        Returns:
            New CountMatrix with the selected samples in the given order
        """
        rows = np.asarray(rows)
        if rows.dtype == bool and len(rows) != self.n_samples:
            raise ValueError(
                f"mask length ({len(rows)}) must match n_samples ({self.n_samples})"
            )
        return CountMatrix(self._data[rows], self._feature_ids, self._sample_ids[rows])

    def take_features(self, columns: NDArray[np.intp] | NDArray[np.bool_]) -> CountMatrix:
        """Subset features (columns), preserving sample ids."""
        columns = np.asarray(columns)
        return CountMatrix(self._data[:, columns], self._feature_ids[columns], self._sample_ids)

    def to_dataframe(self) -> pd.DataFrame:
        return pd.DataFrame(self._data.copy(), index=self._sample_ids, columns=self._feature_ids)

    def __repr__(self) -> str:
        return (
            f"CountMatrix({self.n_samples} samples × {self.n_features} features)\n"
            f"  Features: {self.feature_ids[0]}...{self.feature_ids[-1]}\n"
            f"  Samples: {self.sample_ids[0]}...{self.sample_ids[-1]}"
        )


class GroupLabels:
    """
    Two-group assignment of samples.

    The first label encountered defines group 1, the other defines group 2,
    so results do not depend on how the labels happen to sort.

    Attributes:
        labels: Per-sample labels as strings (read-only)
        levels: (group1_label, group2_label)
    """

    def __init__(self, labels: ArrayLike | pd.Series, n_samples: int | None = None):
        """
        Raises:
            InvalidGroupError: If there are not exactly two distinct labels,
                or the length does not match ``n_samples``
        """
        if isinstance(labels, pd.Series):
            labels = labels.to_numpy()
        values = np.asarray(labels).astype(str)
        if values.ndim != 1:
            raise InvalidGroupError(f"group labels must be 1D, got shape {values.shape}")

        levels = tuple(pd.unique(values))
        if len(levels) != 2:
            raise InvalidGroupError(
                f"Please use exactly two unique groups, got {len(levels)}: {list(levels)}"
            )
        if n_samples is not None and len(values) != n_samples:
            raise InvalidGroupError(
                f"Too many or too few group labels: {len(values)} labels for {n_samples} samples"
            )

        self._labels = _readonly(values)
        self._levels: tuple[str, str] = (str(levels[0]), str(levels[1]))

    @classmethod
    def coerce(cls, group: GroupLabels | ArrayLike, n_samples: int) -> GroupLabels:
        if isinstance(group, GroupLabels):
            if len(group) != n_samples:
                raise InvalidGroupError(
                    f"Too many or too few group labels: {len(group)} labels for {n_samples} samples"
                )
            return group
        return cls(group, n_samples=n_samples)

    @property
    def labels(self) -> np.ndarray:
        return self._labels

    @property
    def levels(self) -> tuple[str, str]:
        return self._levels

    @property
    def group1(self) -> NDArray[np.bool_]:
        """Mask of samples in the first group."""
        return self._labels == self._levels[0]

    @property
    def group2(self) -> NDArray[np.bool_]:
        """Mask of samples in the second group."""
        return self._labels == self._levels[1]

    @property
    def n1(self) -> int:
        return int(np.sum(self.group1))

    @property
    def n2(self) -> int:
        return int(np.sum(self.group2))

    def design(self) -> NDArray[np.float64]:
        """Group-means design matrix (n_samples × 2) of 0/1 indicators."""
        return np.column_stack([self.group1, self.group2]).astype(np.float64)

    def __len__(self) -> int:
        return len(self._labels)

    def __repr__(self) -> str:
        return (
            f"GroupLabels({self._levels[0]}: {self.n1}, {self._levels[1]}: {self.n2})"
        )
