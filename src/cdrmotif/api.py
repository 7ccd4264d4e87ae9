"""High-level public API for motif inference."""

import os
from pathlib import Path
from typing import Callable, Dict, Optional, Union

import pandas as pd

from cdrmotif.config import MotifConfig, create_config
from cdrmotif.io import read_annotations, read_background, read_stats, write_meme, write_table
from cdrmotif.pipeline import MotifResults, Pipeline, attach_metadata

TableRef = Union[pd.DataFrame, str, Path]

__all__ = ["attach_metadata", "create_config", "find_motifs", "write_results"]


def find_motifs(
    stats: TableRef,
    annotations: TableRef,
    background: TableRef,
    config: Optional[MotifConfig] = None,
    **config_kwargs,
) -> MotifResults:
    """
    Single-call entry point for motif inference.

    Tables may be given as DataFrames or as paths to delimited files.
    Configuration is passed either as ``config`` or as keyword options
    understood by :func:`create_config`.
    """
    if config is not None and config_kwargs:
        raise ValueError("Use either 'config' or configuration kwargs, not both.")

    resolved = config or create_config(**config_kwargs)
    return Pipeline(resolved).run(
        _resolve_table(stats, read_stats),
        _resolve_table(annotations, read_annotations),
        _resolve_table(background, read_background),
    )


def write_results(results: MotifResults, out_dir: Union[str, Path], meme: bool = False) -> Dict[str, str]:
    """Write all output tables (and optionally a MEME file) into ``out_dir``."""
    os.makedirs(out_dir, exist_ok=True)
    paths = {
        "clusters": os.path.join(out_dir, "clusters.tsv"),
        "motif_pwms": os.path.join(out_dir, "motif_pwms.tsv"),
        "cluster_summary": os.path.join(out_dir, "cluster_summary.tsv"),
        "position_counts": os.path.join(out_dir, "position_counts.tsv"),
        "edges": os.path.join(out_dir, "edges.tsv"),
    }
    write_table(results.membership, paths["clusters"])
    write_table(results.pwm, paths["motif_pwms"])
    write_table(results.summary, paths["cluster_summary"])
    write_table(results.position_counts, paths["position_counts"])
    write_table(results.edges, paths["edges"])

    if meme:
        paths["meme"] = os.path.join(out_dir, "motifs.meme")
        scorable = [m for m in results.motifs if m.scorable]
        write_meme([m.freq for m in scorable], [(m.cluster_id, m.length, m.size) for m in scorable], paths["meme"])

    return paths


def _resolve_table(source: TableRef, reader: Callable[[Union[str, Path]], pd.DataFrame]) -> pd.DataFrame:
    """Convert a table reference to a DataFrame."""
    if isinstance(source, pd.DataFrame):
        return source
    if isinstance(source, (str, Path)):
        return reader(source)
    raise TypeError(f"Unsupported table reference type: {type(source)!r}")
