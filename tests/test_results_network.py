"""Tests for the shared results accessors and the network builder."""

import networkx as nx
import numpy as np
import pytest

from diffprop.network import EDGE_COLORS, NODE_COLORS, get_network
from diffprop.propd import propd
from diffprop.propr import propr
from diffprop.results import get_ratios, get_results, pairwise_ratios


@pytest.fixture
def rho(counts_df):
    return propr(counts_df, "rho")


@pytest.fixture
def thetad(counts_df, groups):
    return propd(counts_df, groups, p=0)


class TestAccessors:
    """get_results / get_ratios on either object kind."""

    def test_get_results_dispatch(self, rho, thetad):
        assert len(get_results(rho)) == 28
        assert "theta" in get_results(thetad).columns

    def test_get_results_rejects_other(self):
        with pytest.raises(TypeError):
            get_results(object())

    def test_ratios_wide(self, rho, counts_df):
        wide = get_ratios(rho)
        assert wide.shape == (12, 28)
        assert wide.columns[0] == "g0/g1"
        np.testing.assert_allclose(wide["g0/g1"], np.log(counts_df["g0"] / counts_df["g1"]))
        assert list(wide.index) == list(counts_df.index)

    def test_ratios_long(self, rho):
        long = get_ratios(rho, melt=True)
        assert list(long.columns) == ["sample", "ratio", "value"]
        assert len(long) == 12 * 28

    def test_ratios_follow_cutoff(self, thetad):
        cutoff = float(thetad.results["theta_d"].min())
        df = thetad.get_results(cutoff)
        features = set(df["Partner"]) | set(df["Pair"])
        wide = get_ratios(thetad, cutoff)
        assert wide.shape[1] == len(features) * (len(features) - 1) // 2

    def test_alpha_ratios(self, counts_df):
        from diffprop.core.counts import CountMatrix

        counts = CountMatrix.from_dataframe(counts_df)
        lr = pairwise_ratios(counts, alpha=0.5)
        expected = (np.sqrt(counts_df["g0"]) - np.sqrt(counts_df["g2"])) / 0.5
        np.testing.assert_allclose(lr["g0/g2"], expected)


class TestNetwork:
    """Edge and node coloring."""

    def test_propr_edges(self, rho):
        cutoff = float(rho.results["propr"].quantile(0.75))
        g = get_network(rho, cutoff=cutoff)
        assert isinstance(g, nx.Graph)
        df = rho.get_results(cutoff)
        assert g.number_of_edges() == len(df)
        for partner, pair, value in zip(df["Partner"], df["Pair"], df["propr"]):
            expected = EDGE_COLORS["propr_positive" if value >= 0 else "propr_negative"]
            assert g.edges[partner, pair]["color"] == expected
            assert g.edges[partner, pair]["source"] == "propr"

    def test_thetad_edges(self, thetad):
        g = get_network(thetad_object=thetad)
        df = thetad.get_results()
        for _, row in df.iterrows():
            edge = g.edges[row["Partner"], row["Pair"]]
            if row["lrm1"] > row["lrm2"]:
                assert edge["color"] == EDGE_COLORS["theta_d_group1"]
            elif row["lrm1"] < row["lrm2"]:
                assert edge["color"] == EDGE_COLORS["theta_d_group2"]

    def test_thetae_edges(self, thetad):
        thetae = thetad.set_emergent()
        g = get_network(thetae)
        df = thetae.get_results()
        row = df.iloc[0]
        expected = "theta_e_group2" if row["lrv1"] < row["lrv2"] else "theta_e_group1"
        assert g.edges[row["Partner"], row["Pair"]]["color"] == EDGE_COLORS[expected]

    def test_later_source_recolors(self, rho, thetad):
        g = get_network(propr_object=rho, thetad_object=thetad)
        assert {d["source"] for *_, d in g.edges(data=True)} == {"theta_d"}

    def test_node_colors_and_isolates(self, rho):
        cutoff = float(rho.results["propr"].max())
        g = get_network(rho, cutoff=cutoff, col1=["g0", "g1"], col2=["missing"])
        assert g.number_of_edges() == 1
        assert g.number_of_nodes() == 2
        assert "missing" not in g
        colored = {n: d.get("color") for n, d in g.nodes(data=True)}
        for feature in ("g0", "g1"):
            if feature in colored:
                assert colored[feature] == NODE_COLORS["col1"]

    def test_wrong_kinds(self, rho, thetad):
        with pytest.raises(TypeError):
            get_network(thetad.set_active("theta_f"))
        with pytest.raises(TypeError):
            get_network(thetad_object=thetad.set_emergent())
        with pytest.raises(TypeError):
            get_network(propr_object=thetad)
        with pytest.raises(TypeError):
            get_network(object())
