"""Core data structures: count matrices, group labels, log-ratio transforms, pair order."""

from diffprop.core.counts import CountMatrix, GroupLabels
from diffprop.core.errors import (
    DegenerateVLRWarning,
    DiffPropError,
    FDRCancelledError,
    InvalidGroupError,
    ModerationPreconditionError,
    PermutationDisabledError,
    ReferenceZeroError,
)
from diffprop.core.pairs import enumerate_pairs, index_to_pair, n_pairs, pair_to_index
from diffprop.core.transform import LogRatioTransform, Reference, Transform, log_ratio

__all__ = [
    'CountMatrix',
    'GroupLabels',
    'DiffPropError',
    'InvalidGroupError',
    'PermutationDisabledError',
    'ModerationPreconditionError',
    'ReferenceZeroError',
    'FDRCancelledError',
    'DegenerateVLRWarning',
    'enumerate_pairs',
    'index_to_pair',
    'n_pairs',
    'pair_to_index',
    'LogRatioTransform',
    'Reference',
    'Transform',
    'log_ratio',
]
