"""
Pytest configuration and common fixtures for cdrmotif tests.

The toy dataset holds three analysis groups:

* human/beta/GILGFVFTL: one enriched seed with five distance-1 neighbors
  (a retained cluster), a three-member cluster below the size cutoff, a
  distance-2 sequence outside the closure and a longer look-alike;
* human/alpha/NLVPMVATV: no enriched sequence;
* mouse/beta/SSLENFRAYV: a length-12 cluster without exact background
  (imputed) and a length-10 cluster without any background (unscorable).
"""

import sys
import tempfile
from pathlib import Path

import pandas as pd
import pytest

# Force testing the installed package, not the local source
project_root = str(Path(__file__).parent.parent.absolute())
if project_root in sys.path:
    sys.path.remove(project_root)

from cdrmotif.ragged import AMINO_ACIDS  # noqa: E402

HUMAN_BETA = ("human", "beta", "GILGFVFTL")
HUMAN_ALPHA = ("human", "alpha", "NLVPMVATV")
MOUSE_BETA = ("mouse", "beta", "SSLENFRAYV")

SEED_A = "CASSIRSSYEQF"
CLUSTER_A = [
    SEED_A,
    "CASSIRSAYEQF",
    "CASSLRSSYEQF",
    "CASSIRSSYEQY",
    "CASRIRSSYEQF",
    "CASSIRSGYEQF",
]
OUTSIDE_CLOSURE = "CASSLRSAYEQF"
LONGER = "CASSIRSSYEQFF"
CLUSTER_B = ["CASSPGTEAFF", "CASSPGTDAFF", "CASSPGSEAFF"]
LONE = "CASSQETQYF"

ALPHA_SEQUENCES = ["CAVRDSNYQLIW", "CAVRDSNYKLIW", "CAVSDSNYQLIW"]

CLUSTER_C = ["CASSDRGQNTLY", "CASSERGQNTLY", "CASSDWGQNTLY", "CASSDRGENTLY", "CASSDRGQNALY"]
CLUSTER_D = ["CASSGQGAYF", "CASTGQGAYF", "CASSGRGAYF", "CASSGQGSYF", "CASSGQGAHF"]


def _stats_rows():
    rows = []
    enriched_seeds = {SEED_A, CLUSTER_B[0], CLUSTER_C[0], CLUSTER_D[0]}
    human_beta = CLUSTER_A + [OUTSIDE_CLOSURE, LONGER] + CLUSTER_B + [LONE]
    for seq in human_beta:
        degree, p_value = (5, 0.001) if seq in enriched_seeds else (1, 0.5)
        rows.append((seq, degree, p_value) + HUMAN_BETA)
    for seq in ALPHA_SEQUENCES:
        rows.append((seq, 1, 0.6) + HUMAN_ALPHA)
    for seq in CLUSTER_C + CLUSTER_D:
        degree, p_value = (4, 0.01) if seq in enriched_seeds else (1, 0.4)
        rows.append((seq, degree, p_value) + MOUSE_BETA)
    # data-integrity faults
    rows.append(("CASSYSQF", 3, float("nan")) + HUMAN_BETA)
    rows.append(("CASS*TQYF", 6, 0.0001) + HUMAN_BETA)
    return rows


def _annotation_rows():
    v_calls = {
        SEED_A: "TRBV19*01",
        "CASSIRSAYEQF": "TRBV19*01,TRBV19*02",
        "CASSLRSSYEQF": "TRBV19*01",
        "CASSIRSSYEQY": "TRBV7-9*01",
        "CASRIRSSYEQF": "TRBV19*01",
        "CASSIRSGYEQF": "TRBV12-3*01",
    }
    rows = []
    for seq in CLUSTER_A:
        j_call = "TRBJ1-2*01" if seq in ("CASSIRSSYEQY", "CASSIRSGYEQF") else "TRBJ2-7*01"
        rows.append((seq, v_calls[seq], j_call) + HUMAN_BETA)
    rows.append(("CASSIRSSYEQY", "TRBV7-9*01", "TRBJ1-2*01") + HUMAN_BETA)
    for seq in [OUTSIDE_CLOSURE, LONGER, LONE] + CLUSTER_B + ["CASSYSQF", "CASS*TQYF"]:
        rows.append((seq, "TRBV6-5*01", "TRBJ2-1*01") + HUMAN_BETA)
    for seq in ALPHA_SEQUENCES:
        rows.append((seq, "TRAV1-2*01", "TRAJ33*01") + HUMAN_ALPHA)
    for seq in CLUSTER_C + CLUSTER_D:
        rows.append((seq, "TRBV19", "TRBJ2-3") + MOUSE_BETA)
    return rows


def _background_rows():
    rows = []
    # human: uniform usage, 5 counts per residue and position
    for position in range(12):
        for residue in AMINO_ACIDS:
            rows.append(("human", "beta", "TRBV19*01", "TRBJ2-7*01", 12, position, residue, 5))
    # mouse: only V/J segments absent from the clusters, only alanine observed
    for position in range(12):
        rows.append(("mouse", "beta", "TRBV1", "TRBJ1-1", 12, position, "A", 10))
    return rows


@pytest.fixture
def temp_dir():
    """Create a temporary directory for tests."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def stats_table():
    return pd.DataFrame(_stats_rows(), columns=["sequence_id", "degree", "p_value", "species", "chain", "epitope"])


@pytest.fixture
def annotation_table():
    return pd.DataFrame(
        _annotation_rows(), columns=["sequence_id", "v_segment", "j_segment", "species", "chain", "epitope"]
    )


@pytest.fixture
def background_table():
    return pd.DataFrame(
        _background_rows(),
        columns=["species", "chain", "v_segment", "j_segment", "length", "position", "residue", "count"],
    )


@pytest.fixture
def input_files(temp_dir, stats_table, annotation_table, background_table):
    """Write the toy tables to tab-separated files."""
    paths = {
        "stats": temp_dir / "stats.tsv",
        "annotations": temp_dir / "annotations.tsv",
        "background": temp_dir / "background.tsv",
    }
    stats_table.to_csv(paths["stats"], sep="\t", index=False)
    annotation_table.to_csv(paths["annotations"], sep="\t", index=False)
    background_table.to_csv(paths["background"], sep="\t", index=False)
    return paths
