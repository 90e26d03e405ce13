"""
Statistical engines for (differential) proportionality.

Exports core functions for:
- Variance of log-ratios for every feature pair (raw, alpha, weighted)
- Theta statistics and their F-test counterparts
- Permutation FDR over theta cutoffs
- Empirical Bayes moderation (limma-voom style)
"""

from .vlr import LogRatioBasis, PairwiseStats, pairwise_stats, pairwise_lrv, omega
from .theta import ThetaType, theta_from_lrv, calculate_theta
from .moderation import ModerationFit, ModerationService, VoomModerator, fit_f_dist
from .fdr import generate_permutation_set, update_cutoffs
from .fstat import update_f, qtheta

__all__ = [
    "LogRatioBasis",
    "PairwiseStats",
    "pairwise_stats",
    "pairwise_lrv",
    "omega",
    "ThetaType",
    "theta_from_lrv",
    "calculate_theta",
    "ModerationFit",
    "ModerationService",
    "VoomModerator",
    "fit_f_dist",
    "generate_permutation_set",
    "update_cutoffs",
    "update_f",
    "qtheta",
]
