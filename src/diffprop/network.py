"""
Graphs of proportional and differentially proportional pairs.

Nodes are features, edges are pairs passing each object's cutoff. Edge
colors follow the source and direction of the association:

    propr      forestgreen   positively proportional
               burlywood4    inversely proportional (propr < 0)
    theta_d    coral1        higher mean log-ratio in group 1
               lightseagreen higher mean log-ratio in group 2
    theta_e    gold2         total variance explained by group 2
               blueviolet    total variance explained by group 1

Later sources recolor shared edges. Features listed in ``col1``/``col2``
are colored darkred/darkslateblue; features without edges are dropped.
Layout and drawing are left to the caller.
"""

from __future__ import annotations

import logging
from typing import Iterable

import networkx as nx
import numpy as np
import pandas as pd

from diffprop.propd import Propd
from diffprop.propr import Propr
from diffprop.stats.theta import ThetaType

__all__ = ['EDGE_COLORS', 'NODE_COLORS', 'get_network']

logger = logging.getLogger(__name__)

EDGE_COLORS = {
    "propr_positive": "forestgreen",
    "propr_negative": "burlywood4",
    "theta_d_group1": "coral1",
    "theta_d_group2": "lightseagreen",
    "theta_e_group2": "gold2",
    "theta_e_group1": "blueviolet",
}

NODE_COLORS = {"col1": "darkred", "col2": "darkslateblue"}


def _add_edges(g: nx.Graph, df: pd.DataFrame, mask, color: str, source: str) -> int:
    sub = df.loc[np.asarray(mask, dtype=bool)]
    for partner, pair in zip(sub["Partner"], sub["Pair"]):
        g.add_edge(partner, pair, color=color, source=source)
    return len(sub)


def get_network(
    obj: Propr | Propd | None = None,
    cutoff: float | None = None,
    propr_object: Propr | None = None,
    propr_cutoff: float | None = None,
    thetad_object: Propd | None = None,
    thetad_cutoff: float | None = None,
    thetae_object: Propd | None = None,
    thetae_cutoff: float | None = None,
    col1: Iterable[str] | None = None,
    col2: Iterable[str] | None = None,
) -> nx.Graph:
    """
    Build an undirected, colored graph from result objects.

    Args:
        obj: Shortcut: a Propr, or a Propd with theta_d or theta_e active,
            used as the matching typed argument with ``cutoff``
        propr_object, propr_cutoff: Proportionality results and cutoff
        thetad_object, thetad_cutoff: Propd with theta_d active and cutoff
        thetae_object, thetae_cutoff: Propd with theta_e active and cutoff
        col1: Features to color darkred
        col2: Features to color darkslateblue

    Returns:
        networkx.Graph; edges carry ``color`` and ``source`` attributes,
        colored nodes carry ``color``

    Raises:
        TypeError: An object has the wrong kind or active statistic
    """
    if obj is not None:
        if isinstance(obj, Propr):
            logger.info("Treating 'obj' as the proportionality network.")
            propr_object, propr_cutoff = obj, cutoff
        elif isinstance(obj, Propd) and obj.active is ThetaType.THETA_D:
            logger.info("Treating 'obj' as the disjointed proportionality network.")
            thetad_object, thetad_cutoff = obj, cutoff
        elif isinstance(obj, Propd) and obj.active is ThetaType.THETA_E:
            logger.info("Treating 'obj' as the emergent proportionality network.")
            thetae_object, thetae_cutoff = obj, cutoff
        else:
            raise TypeError("Provide a Propr, or a Propd with theta_d or theta_e active.")

    if propr_object is not None and not isinstance(propr_object, Propr):
        raise TypeError("propr_object must be a Propr")
    for name, value, what in (
        ("thetad_object", thetad_object, ThetaType.THETA_D),
        ("thetae_object", thetae_object, ThetaType.THETA_E),
    ):
        if value is not None and (not isinstance(value, Propd) or value.active is not what):
            raise TypeError(f"{name} must be a Propd with {what.value} active")

    g = nx.Graph()

    if propr_object is not None:
        df = propr_object.get_results(propr_cutoff)
        _add_edges(g, df, np.ones(len(df)), EDGE_COLORS["propr_positive"], "propr")
        n_neg = _add_edges(g, df, df["propr"] < 0, EDGE_COLORS["propr_negative"], "propr")
        logger.info("Green: pair positively proportional across all samples.")
        if n_neg:
            logger.info("Brown: pair inversely proportional across all samples.")

    if thetad_object is not None:
        g1, g2 = thetad_object.group.levels
        df = thetad_object.get_results(thetad_cutoff)
        _add_edges(g, df, df["lrm1"] > df["lrm2"], EDGE_COLORS["theta_d_group1"], "theta_d")
        _add_edges(g, df, df["lrm1"] < df["lrm2"], EDGE_COLORS["theta_d_group2"], "theta_d")
        logger.info("Red: pair has higher LRM in group %s than in group %s", g1, g2)
        logger.info("Blue: pair has higher LRM in group %s than in group %s", g2, g1)

    if thetae_object is not None:
        g1, g2 = thetae_object.group.levels
        df = thetae_object.get_results(thetae_cutoff)
        _add_edges(g, df, df["lrv1"] < df["lrv2"], EDGE_COLORS["theta_e_group2"], "theta_e")
        _add_edges(g, df, df["lrv1"] > df["lrv2"], EDGE_COLORS["theta_e_group1"], "theta_e")
        logger.info("Gold: nearly all of total LRV explained by %s", g2)
        logger.info("Purple: nearly all of total LRV explained by %s", g1)

    for features, key in ((col1, "col1"), (col2, "col2")):
        if features is None:
            continue
        for feature in features:
            if feature in g:
                g.nodes[feature]["color"] = NODE_COLORS[key]

    isolated = list(nx.isolates(g))
    g.remove_nodes_from(isolated)
    logger.debug("Network: %d nodes, %d edges", g.number_of_nodes(), g.number_of_edges())
    return g
