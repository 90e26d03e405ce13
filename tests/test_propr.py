"""Tests for proportionality metrics."""

import numpy as np
import pytest

from diffprop.core.errors import ReferenceZeroError
from diffprop.core.pairs import enumerate_pairs
from diffprop.propr import Metric, Propr, propr
from diffprop.results import CutoffDirection


@pytest.fixture
def clr(counts_df):
    logx = np.log(counts_df.to_numpy())
    return logx - logx.mean(axis=1, keepdims=True)


def _pair_terms(clr):
    partner, pair = enumerate_pairs(clr.shape[1])
    a, b = clr[:, partner], clr[:, pair]
    va, vb = a.var(axis=0, ddof=1), b.var(axis=0, ddof=1)
    vlr = (a - b).var(axis=0, ddof=1)
    return a, b, va, vb, vlr


class TestMetrics:
    """Each metric against a direct computation on clr data."""

    def test_rho(self, counts_df, clr):
        _, _, va, vb, vlr = _pair_terms(clr)
        result = propr(counts_df, "rho")
        np.testing.assert_allclose(result.results["propr"], 1 - vlr / (va + vb), rtol=1e-10)
        np.testing.assert_allclose(result.results["lrv"], vlr, rtol=1e-10)

    def test_phi(self, counts_df, clr):
        _, _, va, _, vlr = _pair_terms(clr)
        np.testing.assert_allclose(propr(counts_df, "phi").results["propr"], vlr / va, rtol=1e-10)

    def test_phs(self, counts_df, clr):
        _, _, va, vb, vlr = _pair_terms(clr)
        rho = 1 - vlr / (va + vb)
        np.testing.assert_allclose(
            propr(counts_df, "phs").results["propr"], (1 - rho) / (1 + rho), rtol=1e-10,
        )

    def test_cor(self, counts_df, clr):
        a, b, *_ = _pair_terms(clr)
        expected = [np.corrcoef(a[:, k], b[:, k])[0, 1] for k in range(a.shape[1])]
        np.testing.assert_allclose(propr(counts_df, "cor").results["propr"], expected, rtol=1e-10)

    def test_proportional_pair(self):
        rng = np.random.default_rng(4)
        base = rng.uniform(5, 50, size=(10, 1))
        counts = np.hstack([base, 3 * base, rng.uniform(5, 50, size=(10, 2))])
        result = propr(counts, "rho")
        assert result.results.loc[0, "propr"] == pytest.approx(1.0)
        assert result.results.loc[0, "lrv"] == pytest.approx(0.0, abs=1e-12)

    def test_unknown_metric(self, counts_df):
        with pytest.raises(ValueError, match="unknown metric"):
            propr(counts_df, "kendall")

    def test_reference_modes(self, counts_df):
        iqlr = propr(counts_df, reference="iqlr")
        alr = propr(counts_df, reference="g3")
        assert iqlr.results["propr"].notna().all()
        assert isinstance(alr, Propr)
        # vlr does not depend on the reference
        np.testing.assert_allclose(iqlr.results["lrv"], alr.results["lrv"], rtol=1e-9)

    def test_alpha_zero_reference(self):
        counts = np.array([[0.0, 0.0, 0.0], [1.0, 2.0, 3.0], [2.0, 2.0, 5.0]])
        with pytest.raises(ReferenceZeroError):
            propr(counts, alpha=0.5)


class TestResults:
    """Cutoff direction and matrix view."""

    def test_directions(self):
        assert Metric.RHO.cutoff_direction is CutoffDirection.AT_LEAST
        assert Metric.COR.cutoff_direction is CutoffDirection.AT_LEAST
        assert Metric.PHI.cutoff_direction is CutoffDirection.AT_MOST
        assert Metric.PHS.cutoff_direction is CutoffDirection.AT_MOST

    def test_rho_keeps_at_least(self, counts_df):
        result = propr(counts_df, "rho")
        cutoff = float(result.results["propr"].median())
        df = result.get_results(cutoff)
        assert (df["propr"] >= cutoff).all()
        assert df["Partner"].str.startswith("g").all()

    def test_phi_keeps_at_most(self, counts_df):
        result = propr(counts_df, "phi")
        cutoff = float(result.results["propr"].median())
        assert (result.get_results(cutoff)["propr"] <= cutoff).all()

    def test_matrix(self, counts_df):
        result = propr(counts_df, "rho")
        mat = result.matrix()
        assert mat.shape == (8, 8)
        np.testing.assert_allclose(mat.to_numpy(), mat.to_numpy().T)
        np.testing.assert_array_equal(np.diag(mat), 1.0)
        assert mat.loc["g0", "g1"] == result.results.loc[0, "propr"]
        assert np.all(np.diag(propr(counts_df, "phi").matrix()) == 0.0)
