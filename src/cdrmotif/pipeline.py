"""
Motif inference pipeline.

Every stage is a pure function of its input tables and the configuration:

    enrichment flags -> group members -> neighbor graph -> clusters
    -> representative annotation -> PWMs -> output tables

Analysis groups (species x chain x epitope) are independent and are mapped
over the task executor; the background tables are shared read-only.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from dataclasses import field as dc_field
from typing import List, Optional, Sequence

import pandas as pd

from cdrmotif.clusters import extract_clusters, membership_table
from cdrmotif.config import MotifConfig
from cdrmotif.enrichment import clean_annotations, join_group_members, select_enriched
from cdrmotif.graph import build_group_graph
from cdrmotif.io import MEMBERSHIP_COLUMNS
from cdrmotif.models import GROUP_COLUMNS, BackgroundTables, ClusterMotif, GroupGraph, GroupKey
from cdrmotif.parallel import TaskExecutor
from cdrmotif.pwm import (
    build_motifs,
    motif_table,
    position_counts,
    prepare_background,
    summarize_clusters,
)

EDGE_COLUMNS = ["from", "to"] + GROUP_COLUMNS


@dataclass(frozen=True)
class GroupResult:
    """Outputs of one analysis group."""

    key: GroupKey
    graph: GroupGraph
    membership: pd.DataFrame = dc_field(hash=False, compare=False)
    motifs: List[ClusterMotif] = dc_field(default_factory=list, hash=False, compare=False)


@dataclass(frozen=True)
class MotifResults:
    """Assembled output tables of a pipeline run."""

    membership: pd.DataFrame = dc_field(hash=False, compare=False)
    pwm: pd.DataFrame = dc_field(hash=False, compare=False)
    summary: pd.DataFrame = dc_field(hash=False, compare=False)
    position_counts: pd.DataFrame = dc_field(hash=False, compare=False)
    edges: pd.DataFrame = dc_field(hash=False, compare=False)
    motifs: List[ClusterMotif] = dc_field(default_factory=list, hash=False, compare=False)

    def overview(self) -> dict:
        """Counts suitable for a JSON report."""
        return {
            "groups_with_edges": int(self.edges[GROUP_COLUMNS].drop_duplicates().shape[0]),
            "edges": int(len(self.edges)),
            "clusters": int(self.membership["cluster_id"].nunique()),
            "clustered_sequences": int(len(self.membership)),
            "scorable_clusters": int(self.pwm["cluster_id"].nunique()),
            "imputed_clusters": int(self.summary["need_impute"].astype(bool).sum()),
        }


def process_group(
    item: tuple,
    background: BackgroundTables,
    config: MotifConfig,
    executor: Optional[TaskExecutor] = None,
) -> GroupResult:
    """Run graph building, clustering, annotation and PWM building for one group."""
    key, members, annotations = item
    graph = build_group_graph(key, members, executor=executor, chunk_size=config.pair_chunk_size)
    clusters = extract_clusters(graph, config.min_cluster_size)
    membership = membership_table(clusters, annotations)
    motifs = build_motifs(membership, background, config.normalization_scale)
    return GroupResult(key=key, graph=graph, membership=membership, motifs=motifs)


def _edge_frame(graph: GroupGraph) -> pd.DataFrame:
    frame = pd.DataFrame(graph.edge_list(), columns=["from", "to"])
    for col, value in graph.key.as_dict().items():
        frame[col] = value
    return frame[EDGE_COLUMNS]


def _concat(frames: Sequence[pd.DataFrame], columns: Sequence[str]) -> pd.DataFrame:
    frames = [frame for frame in frames if not frame.empty]
    if not frames:
        return pd.DataFrame(columns=list(columns))
    return pd.concat(frames, ignore_index=True)[list(columns)]


def attach_metadata(table: pd.DataFrame, metadata: pd.DataFrame, on: Sequence[str]) -> pd.DataFrame:
    """
    Left-join auxiliary metadata onto an output table by explicit keys.

    Columns present in both frames keep the value of ``table``; only
    metadata-only columns are appended. Metadata must be unique per key.
    """
    on = list(on)
    missing = [col for col in on if col not in table.columns or col not in metadata.columns]
    if missing:
        raise ValueError(f"Join key(s) missing from table or metadata: {', '.join(missing)}")

    extra = [col for col in metadata.columns if col not in table.columns]
    if not extra:
        return table.copy()
    return table.merge(metadata[on + extra], on=on, how="left", validate="many_to_one")


class Pipeline:
    """
    Orchestrates motif inference over all analysis groups.

    Parameters
    ----------
    config : MotifConfig
        Thresholds, minimum cluster size, normalization scale and worker count.
    """

    def __init__(self, config: Optional[MotifConfig] = None):
        self.config = config or MotifConfig()
        self.executor = TaskExecutor(n_jobs=self.config.n_jobs)
        self.logger = logging.getLogger(__name__)

    def group_items(self, stats: pd.DataFrame, annotations: pd.DataFrame) -> List[tuple]:
        """Split validated inputs into ``(GroupKey, members, annotations)`` work items."""
        flags = select_enriched(stats, self.config.degree_threshold, self.config.p_threshold)
        annotations = clean_annotations(annotations)
        members = join_group_members(flags, annotations)

        items = []
        if members.empty:
            return items

        annotation_groups = {key: frame for key, frame in annotations.groupby(GROUP_COLUMNS, sort=True)}
        for key, frame in members.groupby(GROUP_COLUMNS, sort=True):
            group_key = GroupKey(*(str(k) for k in key))
            items.append((group_key, frame.reset_index(drop=True), annotation_groups[key].reset_index(drop=True)))
        return items

    def run_groups(self, items: List[tuple], background: BackgroundTables) -> List[GroupResult]:
        """
        Process every group.

        With several groups the executor parallelizes across groups and the
        pair search inside each group runs inline; a single group hands the
        executor to its pair search instead.
        """
        if len(items) > 1 and self.executor.workers > 1:
            self.logger.info(f"Processing {len(items)} group(s) on {self.executor.workers} worker(s)")
            return self.executor.map(process_group, items, background, self.config, self.executor.sequential())

        self.logger.info(f"Processing {len(items)} group(s) inline")
        return [process_group(item, background, self.config, self.executor) for item in items]

    def assemble(self, results: List[GroupResult]) -> MotifResults:
        """Merge per-group outputs into the final tables."""
        membership = _concat([r.membership for r in results], MEMBERSHIP_COLUMNS)
        motifs = [motif for r in results for motif in r.motifs]
        pwm = motif_table(motifs)
        summary = summarize_clusters(motifs)
        edges = _concat([_edge_frame(r.graph) for r in results], EDGE_COLUMNS)

        return MotifResults(
            membership=membership,
            pwm=pwm,
            summary=summary,
            position_counts=position_counts(membership),
            edges=edges,
            motifs=motifs,
        )

    def run(self, stats: pd.DataFrame, annotations: pd.DataFrame, background: pd.DataFrame) -> MotifResults:
        """
        Run the full pipeline on in-memory tables.

        Parameters
        ----------
        stats : pd.DataFrame
            ``sequence_id, degree, p_value, species, chain, epitope``.
        annotations : pd.DataFrame
            ``sequence_id, v_segment, j_segment, species, chain, epitope``.
        background : pd.DataFrame
            ``species, chain, v_segment, j_segment, length, position, residue, count``.

        Returns
        -------
        MotifResults
        """
        self.logger.info(f"Starting motif inference with {self.config}")
        items = self.group_items(stats, annotations)
        tables = prepare_background(background)
        results = self.run_groups(items, tables)
        output = self.assemble(results)

        unscorable = [m.cluster_id for m in output.motifs if not m.scorable]
        if unscorable:
            self.logger.warning(f"{len(unscorable)} unscorable cluster(s) kept in membership only")
        self.logger.info(f"Pipeline completed: {output.overview()}")
        return output


def run_pipeline(
    stats: pd.DataFrame,
    annotations: pd.DataFrame,
    background: pd.DataFrame,
    config: Optional[MotifConfig] = None,
) -> MotifResults:
    """Module-level shortcut for :meth:`Pipeline.run`."""
    return Pipeline(config).run(stats, annotations, background)
