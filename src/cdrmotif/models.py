"""
Immutable containers passed between pipeline stages.

Each stage builds a new container from its inputs; numpy arrays held by these
objects are never modified after construction.
"""

from __future__ import annotations

from dataclasses import dataclass
from dataclasses import field as dc_field
from typing import Dict, Optional, Tuple

import numpy as np

GROUP_COLUMNS = ["species", "chain", "epitope"]


@dataclass(frozen=True, order=True)
class GroupKey:
    """Analysis group: species x receptor chain x epitope."""

    species: str
    chain: str
    epitope: str

    @property
    def prefix(self) -> str:
        """Cluster id prefix, e.g. ``H.B.GILGFVFTL``."""
        return f"{_initial(self.species)}.{_initial(self.chain)}.{self.epitope}"

    def cluster_id(self, component_index: int) -> str:
        return f"{self.prefix}.{component_index}"

    def as_dict(self) -> Dict[str, str]:
        return {"species": self.species, "chain": self.chain, "epitope": self.epitope}


def _initial(value: str) -> str:
    value = str(value).strip()
    if value.upper().startswith("TR") and len(value) == 3:
        # TRA / TRB style chain names
        return value[2].upper()
    return value[:1].upper()


@dataclass(frozen=True)
class GroupGraph:
    """
    Hamming-distance-1 graph of one analysis group.

    Attributes
    ----------
    key : GroupKey
        Analysis group.
    sequences : tuple of str
        All valid sequences of the group; edge indices refer to this order.
    enriched : np.ndarray
        Indices of enriched (seed) sequences.
    seed_edges : np.ndarray
        ``(n, 2)`` index pairs found in the seed-to-all pass.
    edges : np.ndarray
        ``(m, 2)`` index pairs of the final graph over the closure set.
    """

    key: GroupKey
    sequences: Tuple[str, ...]
    enriched: np.ndarray = dc_field(hash=False, compare=False)
    seed_edges: np.ndarray = dc_field(hash=False, compare=False)
    edges: np.ndarray = dc_field(hash=False, compare=False)

    def __hash__(self):
        return hash((self.key, self.sequences))

    @property
    def nodes(self) -> np.ndarray:
        """Indices of sequences touched by at least one edge."""
        if self.edges.shape[0] == 0:
            return np.empty(0, dtype=np.int64)
        return np.unique(self.edges)

    @property
    def num_edges(self) -> int:
        return int(self.edges.shape[0])

    def edge_list(self) -> list:
        """Edges as sorted ``(from, to)`` sequence tuples."""
        return [(self.sequences[a], self.sequences[b]) for a, b in self.edges]


@dataclass(frozen=True)
class BackgroundTables:
    """
    Read-only background residue counts.

    ``exact`` is keyed by ``(species, chain, v_segment, j_segment, length)`` and
    ``fallback`` by ``(species, chain, length)``; values are ``(counts, total)``
    where ``counts`` is a (20, length) matrix and ``total`` the number of
    background sequences (sum of counts at position 0).
    """

    exact: Dict[tuple, Tuple[np.ndarray, float]] = dc_field(default_factory=dict, hash=False)
    fallback: Dict[tuple, Tuple[np.ndarray, float]] = dc_field(default_factory=dict, hash=False)

    def __hash__(self):
        return hash((len(self.exact), len(self.fallback)))

    def lookup(self, species: str, chain: str, v_segment: str, j_segment: str, length: int):
        """
        Find background counts for a cluster.

        Returns ``(counts, total, need_impute)`` or ``None`` when neither the
        exact nor the fallback background is usable.
        """
        exact = self.exact.get((species, chain, v_segment, j_segment, int(length)))
        if exact is not None and exact[1] > 0:
            return exact[0], exact[1], False

        fallback = self.fallback.get((species, chain, int(length)))
        if fallback is not None and fallback[1] > 0:
            return fallback[0], fallback[1], True

        return None


@dataclass(frozen=True)
class ClusterMotif:
    """Background-normalized position weight matrix of one cluster."""

    cluster_id: str
    key: GroupKey
    length: int
    size: int
    representative_v: str
    representative_j: str
    counts: np.ndarray = dc_field(hash=False, compare=False)
    freq: np.ndarray = dc_field(hash=False, compare=False)
    freq_bg: Optional[np.ndarray] = dc_field(default=None, hash=False, compare=False)
    information: np.ndarray = dc_field(default=None, hash=False, compare=False)
    information_normalized: Optional[np.ndarray] = dc_field(default=None, hash=False, compare=False)
    need_impute: bool = False

    def __hash__(self):
        return hash((self.cluster_id, self.length, self.size))

    @property
    def scorable(self) -> bool:
        """True when a background (exact or imputed) was available."""
        return self.freq_bg is not None
