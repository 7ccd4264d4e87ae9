"""
cdrmotif
========

Inference of shared CDR3 motifs among epitope-specific immune receptors.
Sequences whose neighborhood is enriched relative to a background repertoire
seed a Hamming-distance-1 graph, connected components of that graph become
motif clusters, and each cluster is summarized by a position weight matrix
normalized against background amino-acid usage.

The top level modules expose the following key components:

``enrichment``
    Selection of enriched sequences from external degree/p-value statistics
    and integrity checks of the input tables.

``graph``
    Two-pass construction of the Hamming neighbor graph of a group.

``clusters``
    Connected-component clusters and their representative V/J segments.

``pwm``
    Residue counts, background lookup with fallback imputation and
    information content of every cluster.

``pipeline``
    Per-group orchestration and assembly of the output tables.

``io``
    Readers and writers for tabular inputs/outputs and MEME export.

``cli``
    Command line interface exposing the pipeline to end users.
"""

from cdrmotif.api import attach_metadata, find_motifs, write_results
from cdrmotif.config import MotifConfig, create_config
from cdrmotif.pipeline import MotifResults, Pipeline, run_pipeline

__all__ = [
    "MotifConfig",
    "MotifResults",
    "Pipeline",
    "attach_metadata",
    "create_config",
    "find_motifs",
    "run_pipeline",
    "write_results",
]
