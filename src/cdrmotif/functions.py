import numpy as np
from numba import njit

from cdrmotif.ragged import ALPHABET_SIZE, RaggedData

LOG_ALPHABET = np.log(ALPHABET_SIZE)


@njit(inline="always")
def _hamming_capped(data, start_a, start_b, length, cap):
    """Count mismatches between two equal-length slices, stopping once ``cap`` is exceeded."""
    mismatches = 0
    for k in range(length):
        if data[start_a + k] != data[start_b + k]:
            mismatches += 1
            if mismatches > cap:
                break
    return mismatches


@njit(cache=True)
def _count_neighbors_jit(data, offsets, queries, targets, distance):
    """Cumulative neighbor counts per query (offsets into the pair buffer)."""
    n_q = queries.shape[0]
    counts = np.zeros(n_q + 1, dtype=np.int64)

    for qi in range(n_q):
        q = queries[qi]
        q_start = offsets[q]
        q_len = offsets[q + 1] - q_start
        found = 0
        for ti in range(targets.shape[0]):
            t = targets[ti]
            if t == q:
                continue
            t_start = offsets[t]
            if offsets[t + 1] - t_start != q_len:
                continue
            if _hamming_capped(data, q_start, t_start, q_len, distance) == distance:
                found += 1
        counts[qi + 1] = found

    for qi in range(n_q):
        counts[qi + 1] += counts[qi]

    return counts


@njit(cache=True)
def _neighbor_pairs_jit(data, offsets, queries, targets, distance):
    """Return all (query, target) index pairs at exactly ``distance`` mismatches."""
    counts = _count_neighbors_jit(data, offsets, queries, targets, distance)
    pairs = np.empty((counts[-1], 2), dtype=np.int64)

    for qi in range(queries.shape[0]):
        q = queries[qi]
        q_start = offsets[q]
        q_len = offsets[q + 1] - q_start
        out = counts[qi]
        for ti in range(targets.shape[0]):
            t = targets[ti]
            if t == q:
                continue
            t_start = offsets[t]
            if offsets[t + 1] - t_start != q_len:
                continue
            if _hamming_capped(data, q_start, t_start, q_len, distance) == distance:
                if q < t:
                    pairs[out, 0] = q
                    pairs[out, 1] = t
                else:
                    pairs[out, 0] = t
                    pairs[out, 1] = q
                out += 1

    return pairs


def neighbor_pairs(sequences: RaggedData, queries: np.ndarray, targets: np.ndarray, distance: int = 1) -> np.ndarray:
    """
    Find unordered index pairs whose sequences differ at exactly ``distance`` positions.

    Sequences of unequal length are never compared. The result is an ``(n, 2)``
    int64 array with ``pair[0] < pair[1]``, sorted and free of duplicates.
    """
    queries = np.ascontiguousarray(queries, dtype=np.int64)
    targets = np.ascontiguousarray(targets, dtype=np.int64)
    if queries.size == 0 or targets.size == 0:
        return np.empty((0, 2), dtype=np.int64)

    pairs = _neighbor_pairs_jit(sequences.data, sequences.offsets, queries, targets, distance)
    return unique_pairs(pairs)


def unique_pairs(pairs: np.ndarray) -> np.ndarray:
    """Sort and deduplicate an ``(n, 2)`` array of normalized index pairs."""
    if pairs.shape[0] == 0:
        return np.empty((0, 2), dtype=np.int64)
    return np.unique(pairs.astype(np.int64), axis=0)


def count_matrix(sequences: RaggedData, length: int) -> np.ndarray:
    """Tabulate a (20, length) residue-by-position count matrix."""
    counts = np.zeros((ALPHABET_SIZE, length), dtype=np.int64)
    if sequences.total_elements() == 0:
        return counts

    lengths = sequences.lengths()
    positions = np.arange(sequences.data.size) - np.repeat(sequences.offsets[:-1], lengths)
    residues = sequences.data.astype(np.int64)
    mask = (residues < ALPHABET_SIZE) & (positions < length)
    np.add.at(counts, (residues[mask], positions[mask]), 1)
    return counts


def counts_to_frequencies(counts: np.ndarray, cluster_size: int) -> np.ndarray:
    """Observed residue frequencies: count divided by cluster size."""
    return counts.astype(np.float64) / float(cluster_size)


def smoothed_background(bg_counts: np.ndarray, bg_total: float, pseudocount: float = 1.0) -> np.ndarray:
    """
    Laplace-smoothed background frequencies.

    Every residue receives ``pseudocount`` so that no background frequency is
    zero. Background frequencies of every position must sum to one, so the
    denominator is ``bg_total + 20 * pseudocount`` (one pseudocount per
    residue). A ``bg_total + 1`` denominator breaks that sum whenever more
    than one residue is smoothed and must not be used here.
    """
    bg_counts = np.asarray(bg_counts, dtype=np.float64)
    total = np.asarray(bg_total, dtype=np.float64)
    return (bg_counts + pseudocount) / (total + pseudocount * bg_counts.shape[0])


def _plogp(freq: np.ndarray) -> np.ndarray:
    """Elementwise p*log(p) with 0*log(0) = 0."""
    logs = np.log(freq, out=np.zeros_like(freq, dtype=np.float64), where=freq > 0)
    return freq * logs


def information_content(freq: np.ndarray) -> np.ndarray:
    """
    Per-position information content scaled to [0, 1].

    ``I = 1 + sum(f * log f) / log(20)``; a uniform column gives 0 and a fully
    conserved column gives exactly 1.
    """
    freq = np.asarray(freq, dtype=np.float64)
    return 1.0 + _plogp(freq).sum(axis=0) / LOG_ALPHABET


def normalized_information_content(freq: np.ndarray, freq_bg: np.ndarray, scale: float = 1.0) -> np.ndarray:
    """Background-normalized information: ``-sum(f * log f_bg) / log(20) / scale``."""
    freq = np.asarray(freq, dtype=np.float64)
    freq_bg = np.asarray(freq_bg, dtype=np.float64)
    return -(freq * np.log(freq_bg)).sum(axis=0) / LOG_ALPHABET / scale


def heights(freq: np.ndarray, information: np.ndarray) -> np.ndarray:
    """Letter heights (frequency times the column information)."""
    return np.asarray(freq, dtype=np.float64) * np.asarray(information, dtype=np.float64)[np.newaxis, :]
