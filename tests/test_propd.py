"""Tests for the Propd object and its state transitions."""

from dataclasses import FrozenInstanceError

import numpy as np
import pytest

from diffprop.core.errors import InvalidGroupError
from diffprop.propd import RESULT_VIEW_COLUMNS, Propd, propd
from diffprop.results import CutoffDirection, PairwiseResults
from diffprop.stats.theta import ThetaType


@pytest.fixture
def obj(counts_df, groups):
    return propd(counts_df, groups, p=5, seed=1)


class TestConstruction:
    """propd() inputs and stored state."""

    def test_defaults(self, obj):
        assert isinstance(obj, Propd)
        assert isinstance(obj, PairwiseResults)
        assert obj.active is ThetaType.THETA_D
        assert obj.fdr is None
        assert obj.n_permutations == 5
        assert obj.weights is None
        assert obj.cutoff_direction is CutoffDirection.AT_MOST
        assert len(obj.results) == 8 * 7 // 2

    def test_immutable(self, obj):
        with pytest.raises(FrozenInstanceError):
            obj.active = ThetaType.THETA_E
        with pytest.raises(ValueError):
            obj.permutations[0, 0] = 0

    def test_seeded_permutations(self, counts_df, groups):
        a = propd(counts_df, groups, p=5, seed=9)
        b = propd(counts_df, groups, p=5, seed=9)
        np.testing.assert_array_equal(a.permutations, b.permutations)

    def test_zeros_replaced_without_alpha(self, counts_df, groups):
        counts_df.iloc[0, 0] = 0
        assert not propd(counts_df, groups, p=0).counts.has_zeros
        assert propd(counts_df, groups, p=0, alpha=0.5).counts.has_zeros

    @pytest.mark.parametrize("p", [-1, 2.5])
    def test_invalid_permutations(self, counts_df, groups, p):
        with pytest.raises(ValueError):
            propd(counts_df, groups, p=p)

    def test_invalid_alpha(self, counts_df, groups):
        with pytest.raises(ValueError):
            propd(counts_df, groups, alpha=0)

    def test_invalid_groups(self, counts_df):
        with pytest.raises(InvalidGroupError):
            propd(counts_df, ["a"] * 12)

    def test_weighted_stores_read_only_weights(self, counts_df, groups, fixed_moderator):
        weighted = propd(counts_df, groups, p=0, weighted=True, moderator=fixed_moderator)
        assert weighted.weighted
        assert weighted.weights.shape == counts_df.shape
        assert not weighted.weights.flags.writeable

    def test_repr(self, obj):
        text = repr(obj)
        assert "theta_d" in text and "p=5" in text


class TestActiveStatistic:
    """Explicit setters for the active statistic."""

    def test_set_emergent(self, obj):
        emergent = obj.set_emergent()
        assert emergent.active is ThetaType.THETA_E
        assert obj.active is ThetaType.THETA_D
        np.testing.assert_array_equal(emergent.theta, obj.results["theta_e"])
        assert emergent.set_disjointed().active is ThetaType.THETA_D

    def test_same_statistic_is_noop(self, obj):
        assert obj.set_active("theta_d") is obj

    def test_switch_clears_fdr(self, obj):
        with_fdr = obj.update_cutoffs([0.5])
        assert with_fdr.fdr is not None
        assert with_fdr.set_active("theta_f").fdr is None

    def test_unknown(self, obj):
        with pytest.raises(ValueError, match="unknown theta type"):
            obj.set_active("theta_z")


class TestGetResults:
    """Filtered results with feature names."""

    def test_all_pairs_named(self, obj):
        df = obj.get_results()
        assert len(df) == len(obj.results)
        assert list(df.columns) == [c for c in RESULT_VIEW_COLUMNS if c in df.columns]
        assert df.loc[0, "Partner"] == "g0" and df.loc[0, "Pair"] == "g1"
        np.testing.assert_array_equal(df["theta"], obj.results["theta_d"])

    def test_cutoff_inclusive(self, obj):
        cutoff = float(np.median(obj.results["theta_d"]))
        df = obj.get_results(cutoff)
        assert (df["theta"] <= cutoff).all()
        assert len(df) == int(np.sum(obj.results["theta_d"] <= cutoff))

    def test_active_statistic_drives_filter(self, obj):
        df = obj.set_emergent().get_results(0.5)
        assert (df["theta"] <= 0.5).all()
        np.testing.assert_array_equal(df["theta"], df["theta_e"])

    def test_nan_cutoff_keeps_everything(self, obj):
        assert len(obj.get_results(float("nan"))) == len(obj.results)

    def test_f_columns_after_update(self, obj):
        assert "Fstat" not in obj.get_results().columns
        assert {"theta_mod", "Fstat", "Pval"} <= set(obj.update_f().get_results().columns)

    def test_empty(self, obj):
        with pytest.raises(ValueError, match="No results remain after cutoff."):
            obj.get_results(-1.0)

    def test_pair_index(self, obj):
        partner, pair = obj.pair_index()
        assert partner.dtype == np.intp
        assert np.all(partner < pair)
