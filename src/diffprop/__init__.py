"""
diffprop - Proportionality and Differential Proportionality for Count Data

Pairwise compositional association (rho, phi, phs, cor) and two-group
differential proportionality (theta_d, theta_e, theta_f, theta_mod) for
every feature pair of a count matrix, with permutation FDR and an
empirical Bayes moderated F-test.
"""

__version__ = "0.1.0"

from diffprop.core.counts import CountMatrix, GroupLabels
from diffprop.core.transform import Reference, Transform
from diffprop.propd import Propd, propd
from diffprop.propr import Metric, Propr, propr
from diffprop.results import CutoffDirection, PairwiseResults, get_ratios, get_results
from diffprop.stats.theta import ThetaType, calculate_theta
from diffprop.network import get_network

__all__ = [
    "CountMatrix",
    "GroupLabels",
    "Reference",
    "Transform",
    "Propd",
    "propd",
    "Metric",
    "Propr",
    "propr",
    "CutoffDirection",
    "PairwiseResults",
    "get_results",
    "get_ratios",
    "ThetaType",
    "calculate_theta",
    "get_network",
]
