"""
Canonical enumeration of unordered feature pairs.

Every pairwise table in the package (VLR vectors, theta columns, results
rows, network edges) is laid out in this single order, so a linear pair
index means the same pair everywhere.

Order:
    Column-major scan of the strict upper triangle of a d × d matrix::

        for pair in 1 .. d-1:
            for partner in 0 .. pair-1:
                yield (partner, pair)

    giving (0,1), (0,2), (1,2), (0,3), (1,3), (2,3), ...

    The linear index of (partner, pair) is ``pair*(pair-1)/2 + partner``.
    Because the index of a pair does not depend on d, tables built for the
    first d features are prefixes of tables built for more features.
"""

from __future__ import annotations

import math

import numpy as np
from numpy.typing import NDArray

__all__ = ['n_pairs', 'enumerate_pairs', 'pair_to_index', 'index_to_pair']


def n_pairs(d: int) -> int:
    """Number of unordered pairs among ``d`` features."""
    return d * (d - 1) // 2


def enumerate_pairs(d: int) -> tuple[NDArray[np.intp], NDArray[np.intp]]:
    """
    Enumerate all unordered feature pairs in canonical order.

    Args:
        d: Number of features (>= 2)

    Returns:
        Tuple (partner, pair) of integer arrays of length d(d-1)/2 with
        partner < pair elementwise.

    Examples:
        >>> partner, pair = enumerate_pairs(4)
        >>> list(zip(partner.tolist(), pair.tolist()))
        [(0, 1), (0, 2), (1, 2), (0, 3), (1, 3), (2, 3)]
    """
    if d < 2:
        raise ValueError(f"need at least 2 features to form pairs, got {d}")
    # Row-major lower triangle (i > j) is the column-major upper triangle transposed
    rows, cols = np.tril_indices(d, k=-1)
    return cols.astype(np.intp), rows.astype(np.intp)


def pair_to_index(i: int | NDArray, j: int | NDArray) -> int | NDArray:
    """
    Linear index of the unordered pair {i, j}.

    Order-insensitive; i == j is rejected.
    """
    i = np.asarray(i)
    j = np.asarray(j)
    if np.any(i == j):
        raise ValueError("a pair needs two distinct features")
    if np.any(i < 0) or np.any(j < 0):
        raise ValueError("feature indices must be non-negative")
    lo = np.minimum(i, j)
    hi = np.maximum(i, j)
    k = hi * (hi - 1) // 2 + lo
    return int(k) if k.ndim == 0 else k


def index_to_pair(k: int) -> tuple[int, int]:
    """Inverse of :func:`pair_to_index` for a single index."""
    k = int(k)
    if k < 0:
        raise ValueError(f"pair index must be non-negative, got {k}")
    pair = (1 + math.isqrt(1 + 8 * k)) // 2
    # isqrt floors; correct the rare off-by-one at triangle boundaries
    while pair * (pair - 1) // 2 > k:
        pair -= 1
    while (pair + 1) * pair // 2 <= k:
        pair += 1
    return k - pair * (pair - 1) // 2, pair
