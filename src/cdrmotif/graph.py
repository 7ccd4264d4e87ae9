"""
Hamming neighbor graph construction.

The graph of an analysis group is built in two passes:

1. seed-to-all: every enriched sequence is compared with every sequence of
   the group;
2. closure: all sequences touched in the first pass are compared with each
   other, adding links between non-enriched neighbors.

Only equal-length sequences are ever compared, so work is bucketed by length
and each bucket is split into chunks of query sequences that the executor
runs independently. Chunk results are merged by set union.
"""

from __future__ import annotations

import logging
from typing import Iterable, Optional, Set, Tuple

import numpy as np
import pandas as pd

from cdrmotif.functions import neighbor_pairs, unique_pairs
from cdrmotif.models import GroupGraph, GroupKey
from cdrmotif.parallel import TaskExecutor, chunked
from cdrmotif.ragged import RaggedData, encode_sequences


def _pairs_task(task: Tuple[np.ndarray, np.ndarray], sequences: RaggedData) -> np.ndarray:
    """Distance-1 pairs between one chunk of queries and its length bucket."""
    queries, targets = task
    return neighbor_pairs(sequences, queries, targets, distance=1)


def edge_indices(
    sequences: RaggedData,
    queries: np.ndarray,
    targets: np.ndarray,
    executor: Optional[TaskExecutor] = None,
    chunk_size: int = 512,
) -> np.ndarray:
    """
    Index pairs ``(a, b)``, ``a < b``, of query/target sequences at Hamming distance 1.

    Parameters
    ----------
    sequences : RaggedData
        Encoded sequences of the group.
    queries, targets : np.ndarray
        Sequence indices to compare.
    executor : TaskExecutor, optional
        Executor running the per-chunk searches (inline when omitted).
    chunk_size : int
        Number of query sequences per task.

    Returns
    -------
    np.ndarray
        ``(n, 2)`` int64 array, sorted and deduplicated.
    """
    executor = executor or TaskExecutor(n_jobs=1)
    queries = np.asarray(queries, dtype=np.int64)
    targets = np.asarray(targets, dtype=np.int64)
    lengths = sequences.lengths()

    tasks = []
    for length in np.unique(lengths[queries]) if queries.size else []:
        bucket = targets[lengths[targets] == length]
        if bucket.size == 0:
            continue
        for chunk in chunked(queries[lengths[queries] == length], chunk_size):
            tasks.append((chunk, bucket))

    results = executor.map(_pairs_task, tasks, sequences)
    if not results:
        return np.empty((0, 2), dtype=np.int64)
    return unique_pairs(np.concatenate(results, axis=0))


def build_edges(
    seed_set: Iterable[str],
    full_set: Iterable[str],
    executor: Optional[TaskExecutor] = None,
    chunk_size: int = 512,
) -> Set[Tuple[str, str]]:
    """
    Undirected edges between seed sequences and any sequence at Hamming distance 1.

    Each edge is returned once as a lexicographically ordered ``(from, to)``
    tuple. Seeds missing from ``full_set`` are still compared against it.
    """
    universe = sorted(set(full_set) | set(seed_set))
    index = {seq: i for i, seq in enumerate(universe)}
    encoded = encode_sequences(universe)

    queries = np.array(sorted(index[seq] for seq in set(seed_set)), dtype=np.int64)
    targets = np.array(sorted(index[seq] for seq in set(full_set)), dtype=np.int64)

    pairs = edge_indices(encoded, queries, targets, executor=executor, chunk_size=chunk_size)
    return {(universe[a], universe[b]) for a, b in pairs}


def build_group_graph(
    key: GroupKey,
    members: pd.DataFrame,
    executor: Optional[TaskExecutor] = None,
    chunk_size: int = 512,
) -> GroupGraph:
    """
    Build the two-pass neighbor graph of one analysis group.

    ``members`` holds one row per sequence with ``sequence_id`` and
    ``enriched`` columns. A group without enriched sequences yields an empty
    graph.
    """
    logger = logging.getLogger(__name__)

    members = members.drop_duplicates(subset="sequence_id").sort_values("sequence_id", kind="mergesort")
    sequences = tuple(members["sequence_id"])
    enriched = np.flatnonzero(members["enriched"].to_numpy(dtype=bool)).astype(np.int64)
    encoded = encode_sequences(sequences)

    seed_edges = edge_indices(
        encoded, enriched, np.arange(len(sequences), dtype=np.int64), executor=executor, chunk_size=chunk_size
    )

    closure = np.unique(seed_edges) if seed_edges.size else np.empty(0, dtype=np.int64)
    closure_edges = edge_indices(encoded, closure, closure, executor=executor, chunk_size=chunk_size)
    edges = unique_pairs(np.concatenate([seed_edges, closure_edges], axis=0))

    logger.info(
        f"{key.prefix}: {len(sequences)} sequence(s), {enriched.size} enriched, "
        f"{seed_edges.shape[0]} seed edge(s), {edges.shape[0]} edge(s) over {closure.size} node(s)"
    )

    return GroupGraph(key=key, sequences=sequences, enriched=enriched, seed_edges=seed_edges, edges=edges)
