"""
Pytest configuration and shared fixtures.

Provides small synthetic count tables with a two-group design and a fixed
moderation service for tests that should not depend on the lowess trend.
"""

import numpy as np
import pandas as pd
import pytest

from diffprop.stats.moderation import ModerationFit


def generate_counts(
    n_samples: int = 12,
    n_features: int = 8,
    shifted: tuple = (0,),
    fold_change: float = 4.0,
    seed: int = 42,
) -> pd.DataFrame:
    """
    Generate a samples × features count table with two groups.

    Args:
        n_samples: Number of samples; the first half is group "A"
        n_features: Number of features
        shifted: Features whose abundance changes in group "B"
        fold_change: Multiplicative change in group "B"
        seed: Random seed for reproducibility

    Design:
        - Poisson counts around a log-normal baseline per feature
        - Library sizes vary per sample (compositional effect)
        - +1 so no zeros appear unless a test adds them
    """
    rng = np.random.default_rng(seed)
    base = rng.lognormal(mean=4, sigma=1, size=n_features)
    lib = rng.uniform(0.5, 2.0, size=n_samples)
    mean = np.outer(lib, base)
    half = n_samples // 2
    for f in shifted:
        mean[half:, f] *= fold_change
    data = rng.poisson(mean).astype(float) + 1.0
    return pd.DataFrame(
        data,
        index=[f"s{i}" for i in range(n_samples)],
        columns=[f"g{j}" for j in range(n_features)],
    )


@pytest.fixture
def counts_df():
    """12 samples × 8 features, feature g0 shifted in group B."""
    return generate_counts()


@pytest.fixture
def groups():
    """Labels for counts_df: six "A" then six "B"."""
    return np.array(["A"] * 6 + ["B"] * 6)


@pytest.fixture
def wide_counts_df():
    """10 samples × 40 features, enough for a mean-variance trend."""
    return generate_counts(n_samples=10, n_features=40, shifted=(0, 1, 2), seed=7)


@pytest.fixture
def wide_groups():
    return np.array(["ctrl"] * 5 + ["case"] * 5)


class FixedModerator:
    """Moderation service returning a fixed prior and unit weights."""

    def __init__(self, df_prior: float = 4.0, s2_prior: float = 0.05):
        self.df_prior = df_prior
        self.s2_prior = s2_prior
        self.fit_calls = 0
        self.weight_calls = 0
        self.last_pseudo_counts = None
        self.last_design = None

    def fit(self, pseudo_counts, design):
        self.fit_calls += 1
        self.last_pseudo_counts = np.asarray(pseudo_counts)
        self.last_design = np.asarray(design)
        return ModerationFit(df_prior=self.df_prior, s2_prior=self.s2_prior)

    def voom_weights(self, counts, design):
        self.weight_calls += 1
        return np.ones(np.shape(counts), dtype=float)


@pytest.fixture
def fixed_moderator():
    return FixedModerator()
