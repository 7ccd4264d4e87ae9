"""
Enrichment selection and input integrity checks.

Degree and p-value statistics come from an external neighborhood-enrichment
tool; this module only flags sequences and never alters the statistics.
"""

import logging

import numpy as np
import pandas as pd

from cdrmotif.io import ANNOTATION_COLUMNS, STATS_COLUMNS, require_columns
from cdrmotif.models import GROUP_COLUMNS
from cdrmotif.ragged import is_canonical

MEMBER_KEY = GROUP_COLUMNS + ["sequence_id"]


def _report_excluded(table: pd.DataFrame, mask: pd.Series, reason: str) -> None:
    """Log sequences removed for a data-integrity fault."""
    n_bad = int(mask.sum())
    if n_bad == 0:
        return
    examples = ", ".join(str(x) for x in table.loc[mask, "sequence_id"].head(5))
    logger = logging.getLogger(__name__)
    logger.warning(f"Excluded {n_bad} record(s) with {reason} (e.g. {examples})")


def _drop_invalid_records(table: pd.DataFrame) -> pd.DataFrame:
    bad = ~table["sequence_id"].map(is_canonical).astype(bool)
    _report_excluded(table, bad, "empty or non-canonical CDR3")
    table = table.loc[~bad]

    no_group = table[GROUP_COLUMNS].isna().any(axis=1)
    _report_excluded(table, no_group, "missing species, chain or epitope")
    return table.loc[~no_group]


def clean_stats(stats: pd.DataFrame) -> pd.DataFrame:
    """
    Validate enrichment statistics.

    Records with missing, non-numeric or out-of-range degree/p-value are
    data-integrity faults: they are logged and excluded. Duplicated records for
    one sequence keep the first occurrence.
    """
    require_columns(stats, STATS_COLUMNS, "enrichment statistics")
    table = stats[STATS_COLUMNS].copy()
    table = _drop_invalid_records(table)

    degree = pd.to_numeric(table["degree"], errors="coerce")
    p_value = pd.to_numeric(table["p_value"], errors="coerce")

    missing = degree.isna() | p_value.isna()
    _report_excluded(table, missing, "missing degree or p-value")

    out_of_range = ~missing & ((degree < 0) | (degree != np.floor(degree)) | (p_value < 0) | (p_value > 1))
    _report_excluded(table, out_of_range, "invalid degree or p-value")

    keep = ~(missing | out_of_range)
    table = table.loc[keep].copy()
    table["degree"] = degree[keep].astype(np.int64)
    table["p_value"] = p_value[keep].astype(np.float64)

    duplicated = table.duplicated(subset=MEMBER_KEY, keep="first")
    if duplicated.any():
        logger = logging.getLogger(__name__)
        logger.warning(f"Dropped {int(duplicated.sum())} duplicated enrichment record(s)")
        table = table.loc[~duplicated]

    return table.reset_index(drop=True)


def clean_annotations(annotations: pd.DataFrame) -> pd.DataFrame:
    """Validate gene-segment annotations; several rows per sequence are allowed."""
    require_columns(annotations, ANNOTATION_COLUMNS, "sequence annotations")
    table = annotations[ANNOTATION_COLUMNS].copy()
    table = _drop_invalid_records(table)

    missing = table["v_segment"].isna() | table["j_segment"].isna()
    _report_excluded(table, missing, "missing V/J annotation")
    table = table.loc[~missing].copy()
    table["v_segment"] = table["v_segment"].astype(str)
    table["j_segment"] = table["j_segment"].astype(str)
    return table.reset_index(drop=True)


def select_enriched(stats: pd.DataFrame, degree_threshold: int = 2, p_threshold: float = 0.05) -> pd.DataFrame:
    """
    Flag over-represented sequences.

    ``enriched = degree >= degree_threshold and p_value < p_threshold``. The
    returned table is a new frame with an added boolean ``enriched`` column;
    p-values are passed through untouched.
    """
    table = clean_stats(stats)
    table["enriched"] = (table["degree"] >= degree_threshold) & (table["p_value"] < p_threshold)

    logger = logging.getLogger(__name__)
    logger.info(
        f"Enrichment: {int(table['enriched'].sum())} of {len(table)} sequence(s) pass "
        f"degree >= {degree_threshold} and p < {p_threshold}"
    )
    return table


def join_group_members(flags: pd.DataFrame, annotations: pd.DataFrame) -> pd.DataFrame:
    """
    Restrict each analysis group to sequences with both statistics and annotations.

    Sequences referenced by only one of the two tables are data-integrity
    faults and are excluded from their group. Returns one row per
    ``(species, chain, epitope, sequence_id)`` with the ``enriched`` flag.
    """
    annotated = annotations[MEMBER_KEY].drop_duplicates()
    merged = flags.merge(annotated, on=MEMBER_KEY, how="outer", indicator=True, validate="one_to_one")

    no_annotation = merged["_merge"] == "left_only"
    _report_excluded(merged, no_annotation, "enrichment statistics but no annotation")
    no_stats = merged["_merge"] == "right_only"
    _report_excluded(merged, no_stats, "annotation but no enrichment statistics")

    members = merged.loc[merged["_merge"] == "both"].drop(columns="_merge")
    members["enriched"] = members["enriched"].astype(bool)
    members["degree"] = members["degree"].astype(np.int64)
    return members.sort_values(MEMBER_KEY, kind="mergesort").reset_index(drop=True)
