"""Configuration of the motif inference engine."""

from dataclasses import dataclass, fields


@dataclass(frozen=True)
class MotifConfig:
    """
    Immutable engine configuration.

    Attributes
    ----------
    degree_threshold : int
        Minimum neighborhood degree of an enriched sequence.
    p_threshold : float
        Enrichment p-value must be strictly below this value.
    min_cluster_size : int
        Smallest connected component kept as a motif cluster.
    normalization_scale : float
        Divisor of the background-normalized information content.
    n_jobs : int
        Worker count of the task executor (-1 uses all cores).
    pair_chunk_size : int
        Query sequences per all-pairs distance task.
    """

    degree_threshold: int = 2
    p_threshold: float = 0.05
    min_cluster_size: int = 5
    normalization_scale: float = 1.0
    n_jobs: int = 1
    pair_chunk_size: int = 512


def create_config(**kwargs) -> MotifConfig:
    """Build a validated configuration; unknown options raise TypeError."""
    known = {f.name for f in fields(MotifConfig)}
    unknown = sorted(set(kwargs) - known)
    if unknown:
        raise TypeError(f"Unknown configuration option(s): {', '.join(unknown)}")

    config = MotifConfig(**kwargs)

    if config.degree_threshold < 0:
        raise ValueError(f"degree_threshold must be non-negative, got {config.degree_threshold}")
    if not 0.0 < config.p_threshold <= 1.0:
        raise ValueError(f"p_threshold must be in (0, 1], got {config.p_threshold}")
    if config.min_cluster_size < 1:
        raise ValueError(f"min_cluster_size must be positive, got {config.min_cluster_size}")
    if config.normalization_scale <= 0:
        raise ValueError(f"normalization_scale must be positive, got {config.normalization_scale}")
    if config.n_jobs == 0:
        raise ValueError("n_jobs must be non-zero")
    if config.pair_chunk_size <= 0:
        raise ValueError(f"pair_chunk_size must be positive, got {config.pair_chunk_size}")

    return config
