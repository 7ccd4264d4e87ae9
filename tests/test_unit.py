"""
Unit tests for key computational functions in cdrmotif.

These tests validate the correctness of individual functions from:
- cdrmotif/functions.py and cdrmotif/ragged.py
- cdrmotif/enrichment.py, cdrmotif/graph.py, cdrmotif/clusters.py
- cdrmotif/pwm.py, cdrmotif/config.py, cdrmotif/parallel.py, cdrmotif/execute.py
"""

import logging
import sys

import numpy as np
import pandas as pd
import pytest
from conftest import (
    CLUSTER_A,
    CLUSTER_B,
    HUMAN_BETA,
    LONGER,
    OUTSIDE_CLOSURE,
    SEED_A,
)

from cdrmotif.clusters import (
    component_labels,
    extract_clusters,
    extract_components,
    first_token,
    representative_segments,
)
from cdrmotif.config import MotifConfig, create_config
from cdrmotif.enrichment import clean_annotations, join_group_members, select_enriched
from cdrmotif.execute import ExternalToolError, check_tool, run_enrichment_tool
from cdrmotif.functions import (
    count_matrix,
    information_content,
    neighbor_pairs,
    normalized_information_content,
    smoothed_background,
)
from cdrmotif.graph import build_edges, build_group_graph
from cdrmotif.models import GROUP_COLUMNS, BackgroundTables, GroupKey
from cdrmotif.parallel import TaskExecutor, chunked
from cdrmotif import attach_metadata
from cdrmotif.pwm import build_cluster_motif, make_fallback_background, motif_table, prepare_background
from cdrmotif.ragged import AMINO_ACIDS, decode_sequence, encode_sequences, is_canonical

KEY = GroupKey(*HUMAN_BETA)


def hamming_distance(seq_1, seq_2):
    """Reference Hamming distance, None when lengths differ."""
    if len(seq_1) != len(seq_2):
        return None
    return sum(a != b for a, b in zip(seq_1, seq_2))


def _members(sequences, enriched):
    return pd.DataFrame({"sequence_id": sequences, "enriched": [seq in enriched for seq in sequences]})


def test_encode_decode_sequences():
    """Test amino-acid encoding into RaggedData"""
    ragged = encode_sequences(["CASS", "CAW"])

    assert ragged.num_sequences == 2
    assert ragged.get_length(0) == 4
    np.testing.assert_array_equal(ragged.lengths(), [4, 3])
    assert decode_sequence(ragged.get_slice(1)) == "CAW"


def test_is_canonical():
    assert is_canonical("CASSLGTDTQYF")
    assert not is_canonical("CASS*QYF")
    assert not is_canonical("")
    assert not is_canonical(float("nan"))


def test_neighbor_pairs_matches_brute_force():
    """Edge exists iff equal length and exactly one mismatch"""
    rng = np.random.default_rng(7)
    alphabet = np.array(list("ACG"))
    sequences = sorted({"".join(rng.choice(alphabet, size=rng.integers(4, 6))) for _ in range(80)})
    ragged = encode_sequences(sequences)
    everything = np.arange(len(sequences))

    pairs = {tuple(p) for p in neighbor_pairs(ragged, everything, everything)}
    expected = {
        (i, j)
        for i in range(len(sequences))
        for j in range(i + 1, len(sequences))
        if hamming_distance(sequences[i], sequences[j]) == 1
    }
    assert pairs == expected


def test_neighbor_pairs_empty_queries():
    ragged = encode_sequences(["CASS", "CATS"])
    pairs = neighbor_pairs(ragged, np.array([], dtype=np.int64), np.arange(2))
    assert pairs.shape == (0, 2)


def test_build_edges_example():
    """Seed-to-all pass links both neighbors of the enriched sequence"""
    first, second, third = "CASSLGTDTQYF", "CASSLGADTQYF", "CASSLGTDSQYF"

    edges = build_edges({first}, {first, second, third})
    assert edges == {(second, first), (third, first)}

    closure = {seq for edge in edges for seq in edge}
    assert build_edges(closure, closure) == edges


def test_build_edges_never_links_unequal_lengths():
    edges = build_edges({SEED_A}, {SEED_A, LONGER, "CASSIRSSYEQ"})
    assert edges == set()


def test_build_edges_with_chunks_and_executor():
    """Chunked dispatch returns the same edge set as a single task"""
    single = build_edges(set(CLUSTER_A), set(CLUSTER_A), chunk_size=512)
    chunked_edges = build_edges(set(CLUSTER_A), set(CLUSTER_A), executor=TaskExecutor(n_jobs=1), chunk_size=2)
    assert single == chunked_edges


def test_build_group_graph_two_passes():
    """Closure pass adds links between neighbors but never widens the node set"""
    sequences = CLUSTER_A + [OUTSIDE_CLOSURE, LONGER]
    graph = build_group_graph(KEY, _members(sequences, {SEED_A}))

    nodes = {graph.sequences[i] for i in graph.nodes}
    assert nodes == set(CLUSTER_A)
    assert graph.seed_edges.shape[0] == 5
    assert graph.num_edges == 6
    assert ("CASSIRSAYEQF", "CASSIRSGYEQF") in graph.edge_list()


def test_build_group_graph_without_enriched():
    graph = build_group_graph(KEY, _members(CLUSTER_A, set()))
    assert graph.num_edges == 0
    assert graph.nodes.size == 0
    assert extract_components(graph).empty


def test_component_labels_partition():
    """Labels form a partition ordered by component size"""
    edges = np.array([[0, 1], [3, 4], [4, 5], [5, 6]], dtype=np.int64)
    labels = component_labels(8, edges)

    assert labels.shape == (8,)
    assert labels[3] == labels[4] == labels[5] == labels[6] == 1
    assert labels[0] == labels[1] == 2
    assert len({labels[2], labels[7]} | {1, 2}) == 4


def test_extract_clusters_filters_small_components():
    sequences = CLUSTER_A + CLUSTER_B
    graph = build_group_graph(KEY, _members(sequences, {SEED_A, CLUSTER_B[0]}))

    components = extract_components(graph)
    assert set(components["cluster_id"]) == {"H.B.GILGFVFTL.1", "H.B.GILGFVFTL.2"}
    assert components["sequence_id"].is_unique

    clusters = extract_clusters(graph, min_cluster_size=5)
    assert set(clusters["cluster_id"]) == {"H.B.GILGFVFTL.1"}
    assert set(clusters["sequence_id"]) == set(CLUSTER_A)
    assert (clusters["cluster_size"] == 6).all()


def test_min_cluster_size_monotonic():
    sequences = CLUSTER_A + CLUSTER_B
    graph = build_group_graph(KEY, _members(sequences, {SEED_A, CLUSTER_B[0]}))

    previous = None
    for size in range(1, 9):
        clusters = extract_clusters(graph, min_cluster_size=size)
        current = (clusters["cluster_id"].nunique(), len(clusters))
        if previous is not None:
            assert current[0] <= previous[0]
            assert current[1] <= previous[1]
        previous = current


def test_group_key_prefix():
    assert GroupKey("human", "beta", "GILGFVFTL").prefix == "H.B.GILGFVFTL"
    assert GroupKey("MusMusculus", "TRA", "SSLENFRAYV").cluster_id(3) == "M.A.SSLENFRAYV.3"


def test_first_token():
    assert first_token("TRBV19*01,TRBV19*02") == "TRBV19*01"
    assert first_token("TRBJ2-7*01") == "TRBJ2-7*01"


def test_representative_segments_majority_and_ties():
    clusters = pd.DataFrame(
        {
            "cluster_id": ["c1", "c1", "c1"],
            "sequence_id": ["AAA", "AAC", "AAD"],
            "species": "human",
            "chain": "beta",
            "epitope": "X",
        }
    )
    annotations = pd.DataFrame(
        {
            "sequence_id": ["AAA", "AAC", "AAC", "AAD"],
            "v_segment": ["TRBV2,TRBV3", "TRBV5", "TRBV5", "TRBV2"],
            "j_segment": ["TRBJ2", "TRBJ1", "TRBJ9", "TRBJ8"],
            "species": "human",
            "chain": "beta",
            "epitope": "X",
        }
    )

    result = representative_segments(clusters, annotations).set_index("cluster_id")
    # TRBV2 and TRBV5 tie with two votes each; the first name wins
    assert result.loc["c1", "representative_v"] == "TRBV2"
    assert result.loc["c1", "representative_j"] == "TRBJ1"


def test_select_enriched_rule(stats_table):
    """Test enrichment flags and pass-through of p-values"""
    flags = select_enriched(stats_table, degree_threshold=2, p_threshold=0.05)

    assert "CASSYSQF" not in set(flags["sequence_id"])
    assert "CASS*TQYF" not in set(flags["sequence_id"])

    enriched = set(flags.loc[flags["enriched"], "sequence_id"])
    assert SEED_A in enriched
    assert CLUSTER_A[1] not in enriched

    merged = flags.merge(stats_table, on=["sequence_id", "species", "chain", "epitope"], suffixes=("", "_in"))
    np.testing.assert_array_equal(merged["p_value"].to_numpy(), merged["p_value_in"].to_numpy())


def test_select_enriched_thresholds_are_strict_for_p():
    stats = pd.DataFrame(
        {
            "sequence_id": ["CASSA", "CASSC", "CASSD"],
            "degree": [2, 2, 1],
            "p_value": [0.05, 0.049, 0.001],
            "species": "human",
            "chain": "beta",
            "epitope": "X",
        }
    )
    flags = select_enriched(stats, degree_threshold=2, p_threshold=0.05).set_index("sequence_id")
    assert not flags.loc["CASSA", "enriched"]
    assert flags.loc["CASSC", "enriched"]
    assert not flags.loc["CASSD", "enriched"]


def test_select_enriched_missing_columns():
    with pytest.raises(ValueError):
        select_enriched(pd.DataFrame({"sequence_id": ["CASS"]}))


def test_join_group_members_excludes_one_sided(stats_table, annotation_table):
    flags = select_enriched(stats_table)
    annotations = clean_annotations(annotation_table)
    members = join_group_members(flags, annotations)

    assert "CASSYSQF" not in set(members["sequence_id"])
    assert not members.duplicated(subset=["species", "chain", "epitope", "sequence_id"]).any()
    assert members["enriched"].dtype == bool


def test_missing_group_key_is_reported(stats_table, annotation_table, caplog):
    """Records without species, chain or epitope are logged and excluded"""
    stats = stats_table.copy()
    annotations = annotation_table.copy()
    stats.loc[stats["sequence_id"] == SEED_A, "epitope"] = np.nan
    annotations.loc[annotations["sequence_id"] == SEED_A, "epitope"] = np.nan

    with caplog.at_level(logging.WARNING, logger="cdrmotif.enrichment"):
        members = join_group_members(select_enriched(stats), clean_annotations(annotations))

    messages = [r.getMessage() for r in caplog.records if "missing species, chain or epitope" in r.getMessage()]
    assert len(messages) == 2
    assert all(SEED_A in message for message in messages)
    assert SEED_A not in set(members["sequence_id"])
    assert not members[GROUP_COLUMNS].isna().any().any()


def test_count_matrix():
    ragged = encode_sequences(["CAS", "CAT", "CGS"])
    counts = count_matrix(ragged, 3)

    assert counts.shape == (20, 3)
    np.testing.assert_array_equal(counts.sum(axis=0), [3, 3, 3])
    assert counts[AMINO_ACIDS.index("C"), 0] == 3
    assert counts[AMINO_ACIDS.index("S"), 2] == 2


def test_information_content_bounds():
    uniform = np.full((20, 1), 1.0 / 20)
    conserved = np.zeros((20, 1))
    conserved[0, 0] = 1.0

    np.testing.assert_allclose(information_content(uniform), [0.0], atol=1e-12)
    assert information_content(conserved)[0] == 1.0


def test_smoothed_background_sums_to_one():
    bg = np.zeros((20, 3))
    bg[0, :] = 7
    bg[4, :] = 3
    freq_bg = smoothed_background(bg, 10.0)

    np.testing.assert_allclose(freq_bg.sum(axis=0), 1.0)
    assert (freq_bg > 0).all()


def test_normalized_information_content_scale():
    freq = np.zeros((20, 2))
    freq[0, :] = 1.0
    freq_bg = np.full((20, 2), 1.0 / 20)

    np.testing.assert_allclose(normalized_information_content(freq, freq_bg, 1.0), [1.0, 1.0])
    np.testing.assert_allclose(normalized_information_content(freq, freq_bg, 2.0), [0.5, 0.5])


def test_prepare_background_totals(background_table):
    tables = prepare_background(background_table)

    counts, total, need_impute = tables.lookup("human", "beta", "TRBV19*01", "TRBJ2-7*01", 12)
    assert total == 100
    assert not need_impute
    assert counts.shape == (20, 12)

    counts, total, need_impute = tables.lookup("mouse", "beta", "TRBV19", "TRBJ2-3", 12)
    assert need_impute
    assert total == 10

    assert tables.lookup("mouse", "beta", "TRBV19", "TRBJ2-3", 10) is None


def test_make_fallback_background_collapses_segments(background_table):
    extra = background_table.copy()
    extra["v_segment"] = "TRBV2*01"
    fallback = make_fallback_background(pd.concat([background_table, extra], ignore_index=True))

    human = fallback[(fallback["species"] == "human") & (fallback["position"] == 0)]
    assert human["count"].sum() == 200
    assert "v_segment" not in fallback.columns


def test_conserved_position_example():
    """A residue present in every member has frequency 1 and information 1"""
    members = ["CASAL", "CGSAL", "CASAW", "CTSAL", "CAKAL"]
    bg = np.full((20, 5), 5.0)
    tables = BackgroundTables(exact={("human", "beta", "V1", "J1", 5): (bg, 100.0)})

    motif = build_cluster_motif("c1", KEY, members, "V1", "J1", tables)

    alanine = AMINO_ACIDS.index("A")
    assert motif.freq[alanine, 3] == 1.0
    assert motif.freq[:, 3].sum() == 1.0
    assert np.count_nonzero(motif.freq[:, 3]) == 1
    assert motif.information[3] == 1.0
    assert not motif.need_impute
    np.testing.assert_allclose(motif.freq_bg.sum(axis=0), 1.0)


def test_unscorable_motif_has_no_background():
    motif = build_cluster_motif("c1", KEY, ["CASSF", "CASSW"], "V1", "J1", BackgroundTables())
    assert not motif.scorable
    assert motif_table([motif]).empty


def test_motif_table_rows(background_table):
    tables = prepare_background(background_table)
    motif = build_cluster_motif("H.B.GILGFVFTL.1", KEY, CLUSTER_A, "TRBV19*01", "TRBJ2-7*01", tables, 2.0)
    table = motif_table([motif])

    assert len(table) == 20 * 12
    sums = table.groupby("position")[["freq", "freq_bg"]].sum()
    np.testing.assert_allclose(sums["freq"], 1.0)
    np.testing.assert_allclose(sums["freq_bg"], 1.0)
    np.testing.assert_allclose(table["information_normalized"], 0.5)
    np.testing.assert_allclose(table["height"], table["freq"] * table["information"])


def test_create_config():
    """Test MotifConfig creation and factory function"""
    config = create_config()
    assert config == MotifConfig()
    assert config.min_cluster_size == 5

    config = create_config(degree_threshold=3, normalization_scale=2.0)
    assert config.degree_threshold == 3
    assert config.normalization_scale == 2.0

    # Test immutability
    try:
        config.min_cluster_size = 10
        assert False, "Config should be immutable"
    except Exception:
        pass  # Expected


@pytest.mark.parametrize(
    "kwargs",
    [
        {"degree_threshold": -1},
        {"p_threshold": 0.0},
        {"p_threshold": 1.5},
        {"min_cluster_size": 0},
        {"normalization_scale": 0.0},
        {"n_jobs": 0},
        {"pair_chunk_size": 0},
    ],
)
def test_create_config_rejects_invalid(kwargs):
    with pytest.raises(ValueError):
        create_config(**kwargs)


def test_create_config_rejects_unknown_option():
    with pytest.raises(TypeError):
        create_config(threshold=3)


def test_task_executor_map():
    executor = TaskExecutor(n_jobs=1)
    assert executor.map(pow, [1, 2, 3], 2) == [1, 4, 9]
    assert executor.map(pow, []) == []
    assert executor.sequential().n_jobs == 1

    with pytest.raises(ValueError):
        TaskExecutor(n_jobs=0)


def test_chunked():
    assert chunked([1, 2, 3, 4, 5], 2) == [[1, 2], [3, 4], [5]]
    with pytest.raises(ValueError):
        chunked([1], 0)


def test_attach_metadata_keeps_table_values():
    table = pd.DataFrame({"sequence_id": ["A", "B"], "cluster_id": ["c1", "c1"]})
    metadata = pd.DataFrame({"sequence_id": ["A", "B"], "cluster_id": ["x", "y"], "donor": ["d1", "d2"]})

    merged = attach_metadata(table, metadata, on=["sequence_id"])
    assert list(merged["cluster_id"]) == ["c1", "c1"]
    assert list(merged["donor"]) == ["d1", "d2"]

    with pytest.raises(ValueError):
        attach_metadata(table, metadata, on=["missing"])


def test_check_tool_missing():
    with pytest.raises(ExternalToolError):
        check_tool("definitely-not-an-enrichment-tool")


def test_run_enrichment_tool(temp_dir):
    output = temp_dir / "degree.tsv"
    script = (
        "import sys\n"
        "with open(sys.argv[1], 'w') as f:\n"
        "    f.write('cdr3aa\\tdegree.s\\tp.value\\n')\n"
        "    f.write('CASSF\\t3\\t0.01\\n')\n"
    )
    table = run_enrichment_tool(
        [sys.executable, "-c", script, str(output)],
        str(output),
        column_map={"cdr3aa": "sequence_id", "degree.s": "degree", "p.value": "p_value"},
        group={"species": "human", "chain": "beta", "epitope": "X"},
    )

    assert list(table.columns) == ["sequence_id", "degree", "p_value", "species", "chain", "epitope"]
    assert table.loc[0, "degree"] == 3


def test_run_enrichment_tool_failure(temp_dir):
    with pytest.raises(ExternalToolError):
        run_enrichment_tool([sys.executable, "-c", "import sys; sys.exit(3)"], str(temp_dir / "none.tsv"))


if __name__ == "__main__":
    pytest.main([__file__])
