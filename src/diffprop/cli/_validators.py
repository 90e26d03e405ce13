"""Shared argparse type validators for CLI parameter bounds checking.

These validators produce clear error messages when users pass invalid
values (e.g., ``--alpha 0``, ``--permutations -5``).  They are intended
to be used as the ``type=`` argument in ``add_argument()``.
"""

from __future__ import annotations

import argparse
import math


def _non_negative_int(value: str) -> int:
    """argparse type for integers >= 0."""
    ivalue = int(value)
    if ivalue < 0:
        raise argparse.ArgumentTypeError(f"{value} is not a non-negative integer")
    return ivalue


def _n_jobs(value: str) -> int:
    """argparse type for joblib worker counts (non-zero; -1 = all cores)."""
    ivalue = int(value)
    if ivalue == 0:
        raise argparse.ArgumentTypeError("n-jobs must be non-zero (use -1 for all cores)")
    return ivalue


def _nonzero_float(value: str) -> float:
    """argparse type for finite, non-zero floats (the alpha power)."""
    fvalue = float(value)
    if fvalue == 0 or not math.isfinite(fvalue):
        raise argparse.ArgumentTypeError(f"{value} is not a finite non-zero number")
    return fvalue


def _unit_interval(value: str) -> float:
    """argparse type for values in the closed interval [0, 1]."""
    fvalue = float(value)
    if not (0 <= fvalue <= 1):
        raise argparse.ArgumentTypeError(
            f"{value} is not a valid probability (must be in [0, 1])"
        )
    return fvalue


def _finite_float(value: str) -> float:
    """argparse type for finite floats (theta/metric cutoffs)."""
    fvalue = float(value)
    if not math.isfinite(fvalue):
        raise argparse.ArgumentTypeError(f"{value} is not a finite number")
    return fvalue
