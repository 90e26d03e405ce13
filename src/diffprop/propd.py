"""
Differential proportionality analysis object.

``propd`` builds an immutable ``Propd`` holding the (zero-replaced) counts,
the group labels, the stored permutation set and the theta results table.
Every further step returns a new object:

    >>> pd_ = propd(counts, group, p=100, seed=1)
    >>> pd_ = pd_.update_cutoffs()                  # FDR of theta_d
    >>> pd_e = pd_.set_emergent().update_cutoffs()  # FDR of theta_e
    >>> pd_ = pd_.update_f(moderated=True)          # theta_mod, Fstat, Pval
    >>> pd_.get_results(cutoff=0.05)

The permutation set is drawn once at construction; every FDR estimate on
the object and its descendants reuses it.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from typing import Any, Sequence

import numpy as np
import pandas as pd
from numpy.typing import ArrayLike, NDArray

from diffprop.core.counts import CountMatrix, GroupLabels
from diffprop.core.errors import ModerationPreconditionError
from diffprop.core.transform import Reference, ReferenceSpec, replace_zeros, validate_alpha
from diffprop.results import CutoffDirection, filter_results
from diffprop.stats.fdr import DEFAULT_CUTOFFS, generate_permutation_set
from diffprop.stats.moderation import ModerationFit
from diffprop.stats.theta import ThetaType, resolve_weights, theta_from_basis
from diffprop.stats.vlr import LogRatioBasis

__all__ = ['Propd', 'propd', 'build_propd']

logger = logging.getLogger(__name__)

RESULT_VIEW_COLUMNS = [
    "Partner", "Pair", "theta", "theta_e", "theta_f",
    "lrv", "lrv1", "lrv2", "lrm1", "lrm2", "p1", "p2", "p",
    "theta_mod", "Fstat", "Pval",
]


@dataclass(frozen=True, eq=False)
class Propd:
    """
    Immutable differential proportionality results.

    Attributes:
        counts: Counts used for every statistic (zeros replaced by 1 when
            alpha is unset)
        group: Two-group labels
        alpha: Power parameter or None
        weighted: Whether precision weights are in use
        weights: Weights (samples × features) when weighted
        permutations: Stored row shuffles (samples × p), read-only
        results: Results table in canonical pair order
        active: Statistic used by FDR and get_results
        fdr: Latest FDR table for the active statistic, if any
        dfz: Prior degrees of freedom of the last F update (0 unmoderated)
        moderation: Moderated fit from update_f, if any
        moderation_reference: Reference used for the moderated fit
        moderator: ModerationService collaborator (None means voom)
    """

    counts: CountMatrix
    group: GroupLabels
    alpha: float | None
    weighted: bool
    weights: NDArray[np.float64] | None = field(repr=False)
    permutations: NDArray[np.intp] = field(repr=False)
    results: pd.DataFrame = field(repr=False)
    active: ThetaType = ThetaType.THETA_D
    fdr: pd.DataFrame | None = field(default=None, repr=False)
    dfz: float = 0.0
    moderation: ModerationFit | None = None
    moderation_reference: Any = Reference.CLR
    moderator: Any = field(default=None, repr=False)

    @property
    def n_permutations(self) -> int:
        return self.permutations.shape[1]

    @property
    def feature_ids(self) -> pd.Index:
        return self.counts.feature_ids

    @property
    def cutoff_direction(self) -> CutoffDirection:
        return CutoffDirection.AT_MOST

    @property
    def theta(self) -> NDArray[np.float64]:
        """Values of the active statistic in pair order."""
        return self.results[self.active.value].to_numpy()

    def pair_index(self) -> tuple[NDArray[np.intp], NDArray[np.intp]]:
        return (
            self.results["Partner"].to_numpy(dtype=np.intp),
            self.results["Pair"].to_numpy(dtype=np.intp),
        )

    def ratio_counts(self) -> CountMatrix:
        return self.counts

    # ------------------------------------------------------------------
    # State transitions
    # ------------------------------------------------------------------

    def set_active(self, what: ThetaType | str = ThetaType.THETA_D) -> Propd:
        """
        Return a copy whose active statistic is ``what``.

        The FDR table belongs to the previous statistic and is dropped.

        Raises:
            ValueError: Unknown statistic name
            ModerationPreconditionError: theta_mod before a moderated update_f
        """
        what = ThetaType.parse(what)
        if what is ThetaType.THETA_MOD and self.moderation is None:
            raise ModerationPreconditionError(
                "theta_mod requires a moderated fit; run update_f(moderated=True) first."
            )
        if what is self.active:
            return self
        logger.debug("Active statistic: %s -> %s", self.active.value, what.value)
        return replace(self, active=what, fdr=None)

    def set_disjointed(self) -> Propd:
        return self.set_active(ThetaType.THETA_D)

    def set_emergent(self) -> Propd:
        return self.set_active(ThetaType.THETA_E)

    def update_cutoffs(
        self,
        cutoffs: Sequence[float] = DEFAULT_CUTOFFS,
        n_jobs: int = 1,
        progress: bool = False,
        callback=None,
        should_stop=None,
    ) -> Propd:
        """See :func:`diffprop.stats.fdr.update_cutoffs`."""
        from diffprop.stats.fdr import update_cutoffs

        return update_cutoffs(
            self, cutoffs, n_jobs=n_jobs, progress=progress,
            callback=callback, should_stop=should_stop,
        )

    def update_f(
        self,
        moderated: bool = False,
        reference: ReferenceSpec = Reference.CLR,
        moderator=None,
    ) -> Propd:
        """See :func:`diffprop.stats.fstat.update_f`."""
        from diffprop.stats.fstat import update_f

        return update_f(self, moderated=moderated, reference=reference, moderator=moderator)

    def qtheta(self, pval: float = 0.05, moderated: bool = False) -> float:
        """See :func:`diffprop.stats.fstat.qtheta`."""
        from diffprop.stats.fstat import qtheta

        return qtheta(self, pval=pval, moderated=moderated)

    # ------------------------------------------------------------------
    # Results
    # ------------------------------------------------------------------

    def get_results(self, cutoff: float | None = None) -> pd.DataFrame:
        """
        Pairs whose active theta is at most ``cutoff``.

        The ``theta`` column holds the active statistic; F-test columns are
        present once update_f has run.
        """
        table = self.results.assign(theta=self.theta)
        columns = [c for c in RESULT_VIEW_COLUMNS if c in table.columns]
        return filter_results(
            table[columns], "theta", cutoff, self.cutoff_direction, self.feature_ids,
        )

    def __repr__(self) -> str:
        return (
            f"Propd({self.counts.n_samples} samples × {self.counts.n_features} features, "
            f"groups={self.group.levels}, active={self.active.value}, "
            f"alpha={self.alpha}, weighted={self.weighted}, p={self.n_permutations})"
        )


def build_propd(
    counts: CountMatrix | pd.DataFrame | ArrayLike,
    group: GroupLabels | ArrayLike,
    alpha: float | None = None,
    p: int = 100,
    weighted: bool = False,
    weights: ArrayLike | None = None,
    seed: int | None = None,
    moderator=None,
    n_jobs: int = 1,
    warn_degenerate: bool = True,
) -> Propd:
    """Construct a Propd; ``warn_degenerate=False`` silences the first-pass notice."""
    counts = CountMatrix.coerce(counts)
    group = GroupLabels.coerce(group, counts.n_samples)
    alpha = validate_alpha(alpha)
    if int(p) != p or p < 0:
        raise ValueError(f"p must be a non-negative integer, got {p}")

    if alpha is None:
        counts = replace_zeros(counts)

    weights = resolve_weights(counts, group, weighted, weights, moderator)
    if weights is not None:
        weights = np.array(weights, dtype=np.float64)
        weights.flags.writeable = False

    permutations = generate_permutation_set(counts.n_samples, int(p), seed)

    basis = LogRatioBasis.from_counts(counts, alpha=alpha, weights=weights)
    results = theta_from_basis(basis, group, n_jobs=n_jobs, warn_degenerate=warn_degenerate)

    return Propd(
        counts=counts,
        group=group,
        alpha=alpha,
        weighted=bool(weighted),
        weights=weights,
        permutations=permutations,
        results=results,
        moderator=moderator,
    )


def propd(
    counts: CountMatrix | pd.DataFrame | ArrayLike,
    group: GroupLabels | ArrayLike,
    alpha: float | None = None,
    p: int = 100,
    weighted: bool = False,
    weights: ArrayLike | None = None,
    seed: int | None = None,
    moderator=None,
    n_jobs: int = 1,
) -> Propd:
    """
    Differential proportionality between two groups for every feature pair.

    Args:
        counts: Count matrix (samples × features); DataFrame columns name
            the features
        group: One label per sample, exactly two distinct values
        alpha: Power parameter; None uses log-ratios with zeros replaced by 1
        p: Number of stored permutations for FDR estimation (0 disables it)
        weighted: Use precision weights
        weights: Weights (samples × features); computed with ``moderator``
            when weighted and not supplied
        seed: Seed for the permutation set
        moderator: ModerationService for weights and moderated F-tests
        n_jobs: Parallel workers for the pair blocks

    Returns:
        Propd with theta_d active

    Raises:
        InvalidGroupError: Groups are not exactly two or lengths mismatch
        ValueError: Invalid alpha, p or weights
    """
    return build_propd(
        counts, group, alpha=alpha, p=p, weighted=weighted, weights=weights,
        seed=seed, moderator=moderator, n_jobs=n_jobs,
    )
