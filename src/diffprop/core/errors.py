"""
Typed failures raised by the proportionality engines.

Every condition listed here is surfaced to the caller; the only recovery
behaviour in the package is the numeric convention of forcing degenerate
theta values to 1, which is reported through DegenerateVLRWarning.
"""

from __future__ import annotations

__all__ = [
    'DiffPropError',
    'InvalidGroupError',
    'PermutationDisabledError',
    'ModerationPreconditionError',
    'ReferenceZeroError',
    'FDRCancelledError',
    'DegenerateVLRWarning',
]


class DiffPropError(Exception):
    """Base class for all diffprop errors."""


class InvalidGroupError(DiffPropError, ValueError):
    """Group vector does not have exactly two labels or mismatches the samples."""


class PermutationDisabledError(DiffPropError, RuntimeError):
    """FDR requested on an object built without permutations (p = 0)."""


class ModerationPreconditionError(DiffPropError, RuntimeError):
    """Moderated operation requested in the wrong state.

    Raised when the active statistic is not theta_d, or when theta_mod is
    needed before any moderated F fit has been run.
    """


class ReferenceZeroError(DiffPropError, ValueError):
    """The chosen reference has zero abundance in at least one sample."""


class FDRCancelledError(DiffPropError, RuntimeError):
    """Permutation FDR stopped by the caller between permutations."""

    def __init__(self, completed: int, total: int):
        self.completed = completed
        self.total = total
        super().__init__(
            f"FDR permutation loop cancelled after {completed}/{total} permutations"
        )


class DegenerateVLRWarning(UserWarning):
    """Some pairs had zero or undefined VLR; their theta was forced to 1."""
