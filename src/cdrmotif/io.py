from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import List, Sequence, Tuple

import numpy as np
import pandas as pd

from cdrmotif.ragged import AMINO_ACIDS

STATS_COLUMNS = ["sequence_id", "degree", "p_value", "species", "chain", "epitope"]
ANNOTATION_COLUMNS = ["sequence_id", "v_segment", "j_segment", "species", "chain", "epitope"]
BACKGROUND_COLUMNS = ["species", "chain", "v_segment", "j_segment", "length", "position", "residue", "count"]

MEMBERSHIP_COLUMNS = [
    "cluster_id",
    "sequence_id",
    "cluster_size",
    "representative_v",
    "representative_j",
    "species",
    "chain",
    "epitope",
]
PWM_COLUMNS = [
    "cluster_id",
    "position",
    "residue",
    "freq",
    "freq_bg",
    "information",
    "information_normalized",
    "height",
    "height_normalized",
    "length",
    "species",
    "chain",
    "epitope",
    "representative_v",
    "representative_j",
    "need_impute",
]

_TEXT_COLUMNS = {"sequence_id", "species", "chain", "epitope", "v_segment", "j_segment", "residue"}


def require_columns(table: pd.DataFrame, columns: Sequence[str], name: str) -> None:
    """Raise ValueError if any of ``columns`` is absent from ``table``."""
    missing = [col for col in columns if col not in table.columns]
    if missing:
        raise ValueError(f"Missing column(s) in {name}: {', '.join(missing)}")


def _separator(path: str | Path) -> str:
    return "," if str(path).lower().endswith(".csv") else "\t"


def read_table(path: str | Path, columns: Sequence[str], name: str) -> pd.DataFrame:
    """Read a delimited table (``.csv`` comma, otherwise tab) and check its columns."""
    if not os.path.exists(path):
        raise FileNotFoundError(f"{name} file not found: {path}")

    header = pd.read_csv(path, sep=_separator(path), nrows=0)
    dtypes = {col: str for col in header.columns if col in _TEXT_COLUMNS}
    table = pd.read_csv(path, sep=_separator(path), dtype=dtypes, keep_default_na=True)
    require_columns(table, columns, name)

    logger = logging.getLogger(__name__)
    logger.info(f"Read {len(table)} row(s) of {name} from {path}")
    return table


def read_stats(path: str | Path) -> pd.DataFrame:
    """Read per-sequence degree/p-value records."""
    return read_table(path, STATS_COLUMNS, "enrichment statistics")


def read_annotations(path: str | Path) -> pd.DataFrame:
    """Read V/J annotations of sequences."""
    return read_table(path, ANNOTATION_COLUMNS, "sequence annotations")


def read_background(path: str | Path) -> pd.DataFrame:
    """Read a background residue count table."""
    table = read_table(path, BACKGROUND_COLUMNS, "background PWM")
    for col in ["length", "position", "count"]:
        table[col] = pd.to_numeric(table[col], errors="raise")
    return table


def write_table(table: pd.DataFrame, path: str | Path) -> None:
    """Write a table, creating the parent directory if needed."""
    os.makedirs(os.path.dirname(os.path.abspath(path)), exist_ok=True)
    table.to_csv(path, sep=_separator(path), index=False)


def write_meme(motifs: List[np.ndarray], info: List[Tuple[str, int, int]], path: str | Path) -> None:
    """
    Write residue frequency matrices to a MEME (protein alphabet) file.

    ``motifs`` holds (20, length) frequency matrices and ``info`` the matching
    ``(name, length, number_of_sites)`` tuples.
    """
    with open(path, "w") as out:
        out.write("MEME version 4\n\n")
        out.write(f"ALPHABET= {AMINO_ACIDS}\n\n")
        out.write("Background letter frequencies\n")
        uniform = 1.0 / len(AMINO_ACIDS)
        out.write(" ".join(f"{aa} {uniform:.3f}" for aa in AMINO_ACIDS) + "\n\n")
        for motif, (name, length, nsites) in zip(motifs, info, strict=True):
            out.write(f"MOTIF {name}\n")
            out.write(f"letter-probability matrix: alength= {len(AMINO_ACIDS)} w= {length} nsites= {nsites}\n")
            for row in motif.T:
                out.write(" " + " ".join(f"{val:.6f}" for val in row) + "\n")
            out.write("\n")


def read_meme(path: str | Path) -> List[Tuple[str, np.ndarray]]:
    """Read all motifs of a MEME file as ``(name, (alength, w) matrix)`` pairs."""
    motifs = []
    with open(path) as handle:
        line = handle.readline()
        while line:
            if line.startswith("MOTIF"):
                name = line.strip().split()[1]
                header = handle.readline().strip().split()
                try:
                    length = int(header[header.index("w=") + 1])
                except (ValueError, IndexError):
                    length = 0

                matrix = []
                for _ in range(length):
                    row = handle.readline().strip().split()
                    if row:
                        matrix.append([float(x) for x in row])
                motifs.append((name, np.array(matrix, dtype=np.float64).T))
            line = handle.readline()

    if not motifs:
        raise ValueError(f"No motifs found in {path}")
    return motifs
