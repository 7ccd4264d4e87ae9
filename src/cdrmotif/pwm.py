"""
Position weight matrices of motif clusters.

Counts of residues per position are normalized twice: against the cluster
size (observed frequency) and against a background repertoire of the
cluster's representative V/J segments and length. When no background exists
for that exact combination, an aggregate over all V/J segments of the same
species, chain and length is used instead (``need_impute``).
"""

from __future__ import annotations

import logging
from typing import Dict, Iterable, List, Tuple

import numpy as np
import pandas as pd

from cdrmotif.functions import (
    count_matrix,
    counts_to_frequencies,
    heights,
    information_content,
    normalized_information_content,
    smoothed_background,
)
from cdrmotif.io import BACKGROUND_COLUMNS, PWM_COLUMNS, require_columns
from cdrmotif.models import BackgroundTables, ClusterMotif, GroupKey
from cdrmotif.ragged import ALPHABET_SIZE, AMINO_ACIDS, encode_sequences

EXACT_KEY = ["species", "chain", "v_segment", "j_segment", "length"]
FALLBACK_KEY = ["species", "chain", "length"]

_RESIDUE_INDEX = {aa: i for i, aa in enumerate(AMINO_ACIDS)}

SUMMARY_COLUMNS = [
    "cluster_id",
    "cluster_size",
    "length",
    "consensus",
    "total_information",
    "total_information_normalized",
    "need_impute",
    "scorable",
    "species",
    "chain",
    "epitope",
    "representative_v",
    "representative_j",
]


def _clean_background(table: pd.DataFrame) -> pd.DataFrame:
    require_columns(table, BACKGROUND_COLUMNS, "background PWM")
    table = table[BACKGROUND_COLUMNS].copy()
    table["residue"] = table["residue"].astype(str).str.upper()
    for col in ["length", "position", "count"]:
        table[col] = pd.to_numeric(table[col], errors="coerce")

    bad = (
        ~table["residue"].isin(list(AMINO_ACIDS))
        | table[["length", "position", "count"]].isna().any(axis=1)
        | (table["position"] < 0)
        | (table["position"] >= table["length"])
    )
    if bad.any():
        logger = logging.getLogger(__name__)
        logger.warning(f"Ignored {int(bad.sum())} background row(s) with unknown residue, position or count")
    table = table.loc[~bad]
    return table.astype({"length": np.int64, "position": np.int64, "count": np.float64})


def make_fallback_background(table: pd.DataFrame) -> pd.DataFrame:
    """Collapse a background table over V and J segments."""
    table = _clean_background(table)
    keys = FALLBACK_KEY + ["position", "residue"]
    return table.groupby(keys, sort=True, as_index=False)["count"].sum()


def _count_matrices(table: pd.DataFrame, keys: List[str]) -> Dict[tuple, Tuple[np.ndarray, float]]:
    """Build a (20, length) count matrix and total per background key."""
    matrices = {}
    for key, frame in table.groupby(keys, sort=True):
        length = int(key[-1])
        matrix = np.zeros((ALPHABET_SIZE, length), dtype=np.float64)
        rows = frame["residue"].map(_RESIDUE_INDEX).to_numpy(dtype=np.int64)
        np.add.at(matrix, (rows, frame["position"].to_numpy(dtype=np.int64)), frame["count"].to_numpy())
        total = float(matrix[:, 0].sum()) if length > 0 else 0.0
        normalized = tuple(str(k) for k in key[:-1]) + (length,)
        matrices[normalized] = (matrix, total)
    return matrices


def prepare_background(table: pd.DataFrame) -> BackgroundTables:
    """
    Index a background PWM table for lookup by cluster.

    The background total of a ``(species, chain, v, j, length)`` group is the
    sum of its counts at position 0.
    """
    table = _clean_background(table)
    exact = _count_matrices(table, EXACT_KEY)
    fallback = _count_matrices(make_fallback_background(table), FALLBACK_KEY)

    logger = logging.getLogger(__name__)
    logger.info(f"Background: {len(exact)} V/J/length group(s), {len(fallback)} fallback group(s)")
    return BackgroundTables(exact=exact, fallback=fallback)


def position_counts(clusters: pd.DataFrame) -> pd.DataFrame:
    """
    Flatten cluster members into residues and count them per position.

    Returns ``cluster_id, position, residue, length, count`` rows; for a fixed
    cluster and position the counts add up to the number of members covering
    that position.
    """
    columns = ["cluster_id", "position", "residue", "length", "count"]
    members = clusters.drop_duplicates(subset=["cluster_id", "sequence_id"])
    if members.empty:
        return pd.DataFrame(columns=columns)

    sequences = members["sequence_id"].astype(str).tolist()
    lengths = np.array([len(seq) for seq in sequences], dtype=np.int64)
    flat = pd.DataFrame(
        {
            "cluster_id": np.repeat(members["cluster_id"].to_numpy(), lengths),
            "position": np.concatenate([np.arange(n) for n in lengths]),
            "residue": list("".join(sequences)),
            "length": np.repeat(lengths, lengths),
        }
    )
    counts = flat.groupby(["cluster_id", "position", "residue", "length"], sort=True).size()
    return counts.reset_index(name="count")[columns]


def build_cluster_motif(
    cluster_id: str,
    key: GroupKey,
    members: Iterable[str],
    representative_v: str,
    representative_j: str,
    background: BackgroundTables,
    normalization_scale: float = 1.0,
) -> ClusterMotif:
    """
    Compute observed and background-normalized PWMs of one cluster.

    A cluster without exact or fallback background is returned without
    ``freq_bg`` and is reported as unscorable.
    """
    logger = logging.getLogger(__name__)

    members = sorted(set(members))
    encoded = encode_sequences(members)
    lengths = encoded.lengths()
    length = int(np.bincount(lengths).argmax())
    size = len(members)

    counts = count_matrix(encoded, length)
    freq = counts_to_frequencies(counts, size)
    information = information_content(freq)

    found = background.lookup(key.species, key.chain, representative_v, representative_j, length)
    if found is None:
        logger.warning(
            f"unscorable cluster {cluster_id}: no background for "
            f"{key.species}/{key.chain} {representative_v}/{representative_j} length {length}"
        )
        return ClusterMotif(
            cluster_id=cluster_id,
            key=key,
            length=length,
            size=size,
            representative_v=representative_v,
            representative_j=representative_j,
            counts=counts,
            freq=freq,
            information=information,
        )

    bg_counts, bg_total, need_impute = found
    if need_impute:
        logger.info(f"{cluster_id}: no exact background for {representative_v}/{representative_j}, using fallback")

    freq_bg = smoothed_background(bg_counts, bg_total)
    information_normalized = normalized_information_content(freq, freq_bg, normalization_scale)

    return ClusterMotif(
        cluster_id=cluster_id,
        key=key,
        length=length,
        size=size,
        representative_v=representative_v,
        representative_j=representative_j,
        counts=counts,
        freq=freq,
        freq_bg=freq_bg,
        information=information,
        information_normalized=information_normalized,
        need_impute=need_impute,
    )


def build_motifs(
    membership: pd.DataFrame, background: BackgroundTables, normalization_scale: float = 1.0
) -> List[ClusterMotif]:
    """Build a motif for every cluster of a membership table."""
    motifs = []
    if membership.empty:
        return motifs

    for cluster_id, frame in membership.groupby("cluster_id", sort=True):
        first = frame.iloc[0]
        key = GroupKey(str(first["species"]), str(first["chain"]), str(first["epitope"]))
        motifs.append(
            build_cluster_motif(
                cluster_id=str(cluster_id),
                key=key,
                members=frame["sequence_id"],
                representative_v=str(first["representative_v"]),
                representative_j=str(first["representative_j"]),
                background=background,
                normalization_scale=normalization_scale,
            )
        )
    return motifs


def motif_table(motifs: Iterable[ClusterMotif]) -> pd.DataFrame:
    """
    Long-format PWM table of all scorable motifs.

    Each position has one row per canonical residue, so ``freq`` and
    ``freq_bg`` sum to one within every ``(cluster_id, position)``.
    """
    frames = []
    for motif in motifs:
        if not motif.scorable:
            continue
        length = motif.length
        height = heights(motif.freq, motif.information)
        height_normalized = heights(motif.freq, motif.information_normalized)
        frame = pd.DataFrame(
            {
                "cluster_id": motif.cluster_id,
                "position": np.repeat(np.arange(length), ALPHABET_SIZE),
                "residue": np.tile(list(AMINO_ACIDS), length),
                "freq": motif.freq.T.ravel(),
                "freq_bg": motif.freq_bg.T.ravel(),
                "information": np.repeat(motif.information, ALPHABET_SIZE),
                "information_normalized": np.repeat(motif.information_normalized, ALPHABET_SIZE),
                "height": height.T.ravel(),
                "height_normalized": height_normalized.T.ravel(),
                "length": length,
                "representative_v": motif.representative_v,
                "representative_j": motif.representative_j,
                "need_impute": motif.need_impute,
                **motif.key.as_dict(),
            }
        )
        frames.append(frame[PWM_COLUMNS])

    if not frames:
        return pd.DataFrame(columns=PWM_COLUMNS)
    return pd.concat(frames, ignore_index=True)


def consensus(motif: ClusterMotif) -> str:
    """Most frequent residue at each position."""
    return "".join(AMINO_ACIDS[i] for i in np.argmax(motif.counts, axis=0))


def summarize_clusters(motifs: Iterable[ClusterMotif]) -> pd.DataFrame:
    """One summary row per motif, including unscorable ones."""
    rows = []
    for motif in motifs:
        rows.append(
            {
                "cluster_id": motif.cluster_id,
                "cluster_size": motif.size,
                "length": motif.length,
                "consensus": consensus(motif),
                "total_information": float(motif.information.sum()),
                "total_information_normalized": (
                    float(motif.information_normalized.sum()) if motif.scorable else np.nan
                ),
                "need_impute": motif.need_impute,
                "scorable": motif.scorable,
                "representative_v": motif.representative_v,
                "representative_j": motif.representative_j,
                **motif.key.as_dict(),
            }
        )
    return pd.DataFrame(rows, columns=SUMMARY_COLUMNS)
