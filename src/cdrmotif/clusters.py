"""
Connected-component clusters and their representative V/J annotation.
"""

from __future__ import annotations

import logging

import numpy as np
import pandas as pd
from scipy.sparse import coo_matrix
from scipy.sparse.csgraph import connected_components

from cdrmotif.io import MEMBERSHIP_COLUMNS
from cdrmotif.models import GROUP_COLUMNS, GroupGraph

MEMBER_KEY = GROUP_COLUMNS + ["sequence_id"]
COMPONENT_COLUMNS = ["cluster_id", "component_index", "sequence_id", "cluster_size"] + GROUP_COLUMNS


def component_labels(n_nodes: int, edges: np.ndarray) -> np.ndarray:
    """
    Label connected components of a graph given as local ``(n, 2)`` edge indices.

    Labels are 1-based and ordered by decreasing component size, ties broken
    by the smallest node index of the component, so the labelling depends
    only on the edge set.
    """
    if n_nodes == 0:
        return np.empty(0, dtype=np.int64)

    adjacency = coo_matrix(
        (np.ones(edges.shape[0], dtype=np.int8), (edges[:, 0], edges[:, 1])), shape=(n_nodes, n_nodes)
    )
    n_components, labels = connected_components(adjacency, directed=False)

    sizes = np.bincount(labels, minlength=n_components)
    first_node = np.full(n_components, n_nodes, dtype=np.int64)
    np.minimum.at(first_node, labels, np.arange(n_nodes, dtype=np.int64))

    order = np.lexsort((first_node, -sizes))
    rank = np.empty(n_components, dtype=np.int64)
    rank[order] = np.arange(1, n_components + 1)
    return rank[labels]


def extract_components(graph: GroupGraph) -> pd.DataFrame:
    """
    Partition the nodes of a group graph into connected components.

    Every node appears in exactly one component; the component index is
    turned into the cluster id ``{species}.{chain}.{epitope}.{index}``.
    """
    nodes = graph.nodes
    if nodes.size == 0:
        return pd.DataFrame(columns=COMPONENT_COLUMNS)

    local_edges = np.searchsorted(nodes, graph.edges)
    labels = component_labels(nodes.size, local_edges)
    sizes = np.bincount(labels)

    table = pd.DataFrame(
        {
            "cluster_id": [graph.key.cluster_id(int(label)) for label in labels],
            "component_index": labels,
            "sequence_id": [graph.sequences[i] for i in nodes],
            "cluster_size": sizes[labels],
        }
    )
    for col, value in graph.key.as_dict().items():
        table[col] = value
    return table.sort_values(["component_index", "sequence_id"], kind="mergesort").reset_index(drop=True)


def filter_clusters(components: pd.DataFrame, min_cluster_size: int = 5) -> pd.DataFrame:
    """Drop every component with fewer than ``min_cluster_size`` members."""
    kept = components.loc[components["cluster_size"] >= min_cluster_size]
    return kept.reset_index(drop=True)


def extract_clusters(graph: GroupGraph, min_cluster_size: int = 5) -> pd.DataFrame:
    """Connected components of ``graph`` with at least ``min_cluster_size`` members."""
    components = extract_components(graph)
    clusters = filter_clusters(components, min_cluster_size)

    logger = logging.getLogger(__name__)
    logger.info(
        f"{graph.key.prefix}: {components['cluster_id'].nunique()} component(s), "
        f"{clusters['cluster_id'].nunique()} with size >= {min_cluster_size}"
    )
    return clusters


def first_token(annotation) -> str:
    """First entry of a comma-separated gene-segment annotation."""
    return str(annotation).split(",", 1)[0].strip()


def _mode_per_cluster(rows: pd.DataFrame, column: str) -> pd.Series:
    """
    Most frequent first token of ``column`` per cluster.

    Ties go to the alphabetically first segment name.
    """
    tokens = rows[["cluster_id"]].assign(token=rows[column].map(first_token))
    counts = tokens.groupby(["cluster_id", "token"], sort=True).size().reset_index(name="n")
    counts = counts.sort_values(["cluster_id", "n", "token"], ascending=[True, False, True], kind="mergesort")
    return counts.drop_duplicates("cluster_id", keep="first").set_index("cluster_id")["token"]


def representative_segments(clusters: pd.DataFrame, annotations: pd.DataFrame) -> pd.DataFrame:
    """
    Majority-vote V and J segment of every cluster.

    All annotation rows of all members vote, so duplicated annotations of one
    CDR3 are counted, never averaged.
    """
    if clusters.empty:
        return pd.DataFrame(columns=["cluster_id", "representative_v", "representative_j"])

    rows = clusters[["cluster_id"] + MEMBER_KEY].merge(annotations, on=MEMBER_KEY, how="inner")
    result = pd.DataFrame(
        {
            "representative_v": _mode_per_cluster(rows, "v_segment"),
            "representative_j": _mode_per_cluster(rows, "j_segment"),
        }
    )
    result.index.name = "cluster_id"
    return result.reset_index()


def membership_table(clusters: pd.DataFrame, annotations: pd.DataFrame) -> pd.DataFrame:
    """Cluster membership rows joined with their representative annotation."""
    if clusters.empty:
        return pd.DataFrame(columns=MEMBERSHIP_COLUMNS)
    representatives = representative_segments(clusters, annotations)
    table = clusters.merge(representatives, on="cluster_id", how="left", validate="many_to_one")
    return table[MEMBERSHIP_COLUMNS]
