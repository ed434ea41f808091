"""
BranchCore Configuration System
===============================
Centralized, validated configuration with environment variable overrides.
"""

import os
from pathlib import Path
from typing import Optional
from dataclasses import dataclass, field

import yaml

from branchcore.core.exceptions import ConfigurationError


@dataclass(frozen=True)
class CrossRefConfig:
    """Thresholds and top-k bounds for the cross-reference pass."""
    direct_threshold: float = 0.70
    very_similar_threshold: float = 0.85
    multi_hop_threshold: float = 0.50
    max_direct: int = 3
    max_total: int = 6


@dataclass(frozen=True)
class ScoringConfig:
    direct_weight: float = 0.5
    multi_hop_weight: float = 0.25
    degree_weight: float = 0.2
    recency_weight: float = 0.1
    diversity_weight: float = 0.1
    confidence_weight: float = 0.2
    key_points_weight: float = 0.1
    diversity_branch_cap: int = 5


@dataclass(frozen=True)
class CacheConfig:
    embedding_lru_size: int = 256
    summary_ttl_seconds: float = 300.0
    summary_max_entries: int = 100
    history_cache_size: int = 32
    status_cache_size: int = 32
    insights_cache_size: int = 64
    insights_window: int = 10
    analytics_ttl_seconds: float = 300.0
    analytics_max_entries: int = 50


@dataclass(frozen=True)
class EmbeddingConfig:
    provider: str = "transformers"  # "transformers" | "hashing"
    model_name: str = "all-MiniLM-L6-v2"
    summarization_model: str = "sshleifer/distilbart-cnn-6-6"
    max_tokens: int = 512
    batch_size: int = 8
    dimension: int = 384


@dataclass(frozen=True)
class PathsConfig:
    data_dir: str = "./data"
    task_store: str = "tasks"
    embedding_cache: str = "embeddings-cache"


@dataclass(frozen=True)
class ObservabilityConfig:
    log_level: str = "INFO"
    json_logs: bool = False


@dataclass(frozen=True)
class VisualizationConfig:
    auto_detail_node_limit: int = 100
    kmeans_max_iterations: int = 100
    kmeans_seed: int = 42


@dataclass(frozen=True)
class BranchCoreConfig:
    """Root configuration for BranchCore."""

    version: str = "1.0"
    crossref: CrossRefConfig = field(default_factory=CrossRefConfig)
    scoring: ScoringConfig = field(default_factory=ScoringConfig)
    cache: CacheConfig = field(default_factory=CacheConfig)
    embedding: EmbeddingConfig = field(default_factory=EmbeddingConfig)
    paths: PathsConfig = field(default_factory=PathsConfig)
    observability: ObservabilityConfig = field(default_factory=ObservabilityConfig)
    visualization: VisualizationConfig = field(default_factory=VisualizationConfig)


def _env_override(key: str, default):
    """Check for BRANCHCORE_<KEY> environment variable override."""
    env_key = f"BRANCHCORE_{key.upper()}"
    val = os.environ.get(env_key)
    if val is None:
        return default
    # Type coercion based on the default's type
    if isinstance(default, bool):
        return val.lower() in ("true", "1", "yes")
    if isinstance(default, int):
        return int(val)
    if isinstance(default, float):
        return float(val)
    return val


def _check_unit_interval(key: str, value: float) -> None:
    if not 0.0 <= value <= 1.0:
        raise ConfigurationError(
            config_key=key,
            reason=f"must be within [0, 1], got {value}",
        )


def _check_positive(key: str, value: float) -> None:
    if value <= 0:
        raise ConfigurationError(
            config_key=key,
            reason=f"must be positive, got {value}",
        )


def load_config(path: Optional[Path] = None) -> BranchCoreConfig:
    """
    Load configuration from YAML file with environment variable overrides.

    Priority: ENV > YAML > defaults.

    Args:
        path: Path to config.yaml. If None, searches ./config.yaml.

    Returns:
        Validated BranchCoreConfig instance.

    Raises:
        ConfigurationError: If a threshold or size is out of range.
    """
    if path is None:
        candidate = Path("config.yaml")
        if candidate.exists():
            path = candidate

    raw = {}
    if path is not None and path.exists():
        with open(path) as f:
            loaded = yaml.safe_load(f) or {}
            raw = loaded.get("branchcore") or {}

    # Build cross-reference config
    xr_raw = raw.get("crossref") or {}
    crossref = CrossRefConfig(
        direct_threshold=_env_override("CROSSREF_DIRECT_THRESHOLD", xr_raw.get("direct_threshold", 0.70)),
        very_similar_threshold=_env_override("CROSSREF_VERY_SIMILAR_THRESHOLD", xr_raw.get("very_similar_threshold", 0.85)),
        multi_hop_threshold=_env_override("CROSSREF_MULTI_HOP_THRESHOLD", xr_raw.get("multi_hop_threshold", 0.50)),
        max_direct=_env_override("CROSSREF_MAX_DIRECT", xr_raw.get("max_direct", 3)),
        max_total=_env_override("CROSSREF_MAX_TOTAL", xr_raw.get("max_total", 6)),
    )
    _check_unit_interval("crossref.direct_threshold", crossref.direct_threshold)
    _check_unit_interval("crossref.very_similar_threshold", crossref.very_similar_threshold)
    _check_unit_interval("crossref.multi_hop_threshold", crossref.multi_hop_threshold)
    _check_positive("crossref.max_direct", crossref.max_direct)
    if crossref.max_total < crossref.max_direct:
        raise ConfigurationError(
            config_key="crossref.max_total",
            reason=f"must be >= max_direct ({crossref.max_direct}), got {crossref.max_total}",
        )

    # Build scoring config
    sc_raw = raw.get("scoring") or {}
    scoring = ScoringConfig(
        direct_weight=sc_raw.get("direct_weight", 0.5),
        multi_hop_weight=sc_raw.get("multi_hop_weight", 0.25),
        degree_weight=sc_raw.get("degree_weight", 0.2),
        recency_weight=sc_raw.get("recency_weight", 0.1),
        diversity_weight=sc_raw.get("diversity_weight", 0.1),
        confidence_weight=sc_raw.get("confidence_weight", 0.2),
        key_points_weight=sc_raw.get("key_points_weight", 0.1),
        diversity_branch_cap=sc_raw.get("diversity_branch_cap", 5),
    )
    _check_positive("scoring.diversity_branch_cap", scoring.diversity_branch_cap)

    # Build cache config
    cache_raw = raw.get("cache") or {}
    cache = CacheConfig(
        embedding_lru_size=_env_override("CACHE_EMBEDDING_LRU_SIZE", cache_raw.get("embedding_lru_size", 256)),
        summary_ttl_seconds=_env_override("CACHE_SUMMARY_TTL_SECONDS", float(cache_raw.get("summary_ttl_seconds", 300.0))),
        summary_max_entries=cache_raw.get("summary_max_entries", 100),
        history_cache_size=cache_raw.get("history_cache_size", 32),
        status_cache_size=cache_raw.get("status_cache_size", 32),
        insights_cache_size=cache_raw.get("insights_cache_size", 64),
        insights_window=cache_raw.get("insights_window", 10),
        analytics_ttl_seconds=float(cache_raw.get("analytics_ttl_seconds", 300.0)),
        analytics_max_entries=cache_raw.get("analytics_max_entries", 50),
    )
    for key in ("embedding_lru_size", "summary_ttl_seconds", "summary_max_entries",
                "history_cache_size", "status_cache_size", "insights_cache_size",
                "insights_window", "analytics_ttl_seconds", "analytics_max_entries"):
        _check_positive(f"cache.{key}", getattr(cache, key))

    # Build embedding config
    emb_raw = raw.get("embedding") or {}
    embedding = EmbeddingConfig(
        provider=_env_override("EMBEDDING_PROVIDER", emb_raw.get("provider", "transformers")),
        model_name=_env_override("EMBEDDING_MODEL_NAME", emb_raw.get("model_name", "all-MiniLM-L6-v2")),
        summarization_model=_env_override(
            "EMBEDDING_SUMMARIZATION_MODEL",
            emb_raw.get("summarization_model", "sshleifer/distilbart-cnn-6-6"),
        ),
        max_tokens=_env_override("EMBEDDING_MAX_TOKENS", emb_raw.get("max_tokens", 512)),
        batch_size=_env_override("EMBEDDING_BATCH_SIZE", emb_raw.get("batch_size", 8)),
        dimension=_env_override("EMBEDDING_DIMENSION", emb_raw.get("dimension", 384)),
    )
    if embedding.provider not in ("transformers", "hashing"):
        raise ConfigurationError(
            config_key="embedding.provider",
            reason=f"expected 'transformers' or 'hashing', got {embedding.provider!r}",
        )
    _check_positive("embedding.max_tokens", embedding.max_tokens)
    _check_positive("embedding.batch_size", embedding.batch_size)
    _check_positive("embedding.dimension", embedding.dimension)

    # Build paths config
    paths_raw = raw.get("paths") or {}
    paths = PathsConfig(
        data_dir=_env_override("DATA_DIR", paths_raw.get("data_dir", "./data")),
        task_store=_env_override("TASK_STORE", paths_raw.get("task_store", "tasks")),
        embedding_cache=_env_override("EMBEDDING_CACHE", paths_raw.get("embedding_cache", "embeddings-cache")),
    )

    # Build observability config
    obs_raw = raw.get("observability") or {}
    observability = ObservabilityConfig(
        log_level=_env_override("LOG_LEVEL", obs_raw.get("log_level", "INFO")),
        json_logs=_env_override("JSON_LOGS", obs_raw.get("json_logs", False)),
    )

    # Build visualization config
    viz_raw = raw.get("visualization") or {}
    visualization = VisualizationConfig(
        auto_detail_node_limit=viz_raw.get("auto_detail_node_limit", 100),
        kmeans_max_iterations=viz_raw.get("kmeans_max_iterations", 100),
        kmeans_seed=viz_raw.get("kmeans_seed", 42),
    )

    return BranchCoreConfig(
        version=raw.get("version", "1.0"),
        crossref=crossref,
        scoring=scoring,
        cache=cache,
        embedding=embedding,
        paths=paths,
        observability=observability,
        visualization=visualization,
    )


# Module-level config (lazy-loaded)
_CONFIG: Optional[BranchCoreConfig] = None


def get_config() -> BranchCoreConfig:
    """Get or initialize the process-wide config."""
    global _CONFIG
    if _CONFIG is None:
        _CONFIG = load_config()
    return _CONFIG


def reset_config():
    """Reset the process-wide config (useful for testing)."""
    global _CONFIG
    _CONFIG = None
