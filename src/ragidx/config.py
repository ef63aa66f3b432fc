"""Configuration system for ragidx.

Manages project configuration via .ragidx/config.toml with typed dataclasses
and sensible defaults for all values. Range checks live here so that bad
parameters are rejected before any document is processed.
"""

from __future__ import annotations

import logging
import sys
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, TypeVar

import tomli_w

if sys.version_info >= (3, 12):
    import tomllib
else:
    import tomli as tomllib

from ragidx.exceptions import ConfigError
from ragidx.types import (
    ChunkStrategy,
    DedupeMethod,
    DedupeScope,
    FusionKind,
    HydrateStrategy,
    SearchMode,
)

if TYPE_CHECKING:
    from pathlib import Path

_T = TypeVar("_T")

__all__ = [
    "BuildConfig",
    "ChunkConfig",
    "DedupeConfig",
    "EmbeddingConfig",
    "HydrateConfig",
    "ProjectConfig",
    "RagidxConfig",
    "SearchConfig",
    "StoreConfig",
    "default_config",
    "load_config",
    "parse_dedupe_method",
    "save_config",
    "validate_chunk_config",
    "validate_config",
    "validate_dedupe_config",
    "validate_hydrate_config",
    "validate_search_config",
]

logger = logging.getLogger(__name__)

DEFAULT_SEPARATORS = ["\n\n", "\n", ". ", " "]


@dataclass
class ProjectConfig:
    """[project] section."""

    name: str = ""
    description: str = ""


@dataclass
class ChunkConfig:
    """[chunk] section."""

    strategy: str = ChunkStrategy.RECURSIVE.value
    max_chars: int = 1500
    min_chars: int = 100
    overlap_chars: int = 150
    separators: list[str] = field(default_factory=lambda: list(DEFAULT_SEPARATORS))
    create_parent_chunks: bool = True
    parent_context_chars: int = 200

    def fingerprint_params(self) -> dict[str, object]:
        """Parameters that change chunk boundaries, for cache invalidation."""
        return {
            "strategy": self.strategy,
            "max_chars": self.max_chars,
            "min_chars": self.min_chars,
            "overlap_chars": self.overlap_chars,
            "separators": list(self.separators),
            "create_parent_chunks": self.create_parent_chunks,
            "parent_context_chars": self.parent_context_chars,
        }


@dataclass
class DedupeConfig:
    """[dedupe] section."""

    enabled: bool = True
    method: str = DedupeMethod.EXACT.value
    scope: str = DedupeScope.GLOBAL.value
    threshold: float = 0.95


@dataclass
class SearchConfig:
    """[search] section."""

    mode: str = SearchMode.HYBRID.value
    fusion: str = FusionKind.RRF.value
    top_k: int = 10
    rrf_k: int = 60
    keyword_weight: float = 0.3
    semantic_weight: float = 0.7
    anchor_exact_boost: float = 0.4
    anchor_partial_boost: float = 0.15


@dataclass
class HydrateConfig:
    """[hydrate] section. Also used directly as hydration options."""

    enabled: bool = False
    strategy: str = HydrateStrategy.BOTH.value
    adjacent_before: int = 1
    adjacent_after: int = 1
    include_parent: bool = True
    max_total_chunks: int = 10


@dataclass
class EmbeddingConfig:
    """[embedding] section."""

    model: str = "nomic-embed-text"
    provider: str = "ollama"
    api_key_env: str = ""
    base_url: str = ""
    batch_size: int = 50
    batch_delay_s: float = 0.1
    rate_limit_cooldown_s: float = 60.0
    cost_per_million_tokens: float = 0.02


@dataclass
class StoreConfig:
    """[store] section."""

    collection_name: str = "ragidx"


@dataclass
class BuildConfig:
    """[build] section."""

    fetch_concurrency: int = 5
    export_chunks: bool = True


@dataclass
class RagidxConfig:
    """Root configuration combining all sections."""

    project: ProjectConfig = field(default_factory=ProjectConfig)
    chunk: ChunkConfig = field(default_factory=ChunkConfig)
    dedupe: DedupeConfig = field(default_factory=DedupeConfig)
    search: SearchConfig = field(default_factory=SearchConfig)
    hydrate: HydrateConfig = field(default_factory=HydrateConfig)
    embedding: EmbeddingConfig = field(default_factory=EmbeddingConfig)
    store: StoreConfig = field(default_factory=StoreConfig)
    build: BuildConfig = field(default_factory=BuildConfig)


_SECTION_MAP: dict[str, type] = {
    "project": ProjectConfig,
    "chunk": ChunkConfig,
    "dedupe": DedupeConfig,
    "search": SearchConfig,
    "hydrate": HydrateConfig,
    "embedding": EmbeddingConfig,
    "store": StoreConfig,
    "build": BuildConfig,
}


def default_config() -> RagidxConfig:
    """Return a config with all default values."""
    return RagidxConfig()


# --- Validation ---


def _check_range(section: str, name: str, value: float, low: float, high: float) -> None:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ConfigError(f"[{section}] {name} must be a number, got {value!r}")
    if not low <= value <= high:
        raise ConfigError(f"[{section}] {name} must be between {low} and {high}, got {value}")


def _check_choice(section: str, name: str, value: str, enum_cls: type) -> None:
    allowed = [m.value for m in enum_cls]
    if value not in allowed:
        raise ConfigError(f"[{section}] {name} must be one of {allowed}, got {value!r}")


def parse_dedupe_method(value: str) -> DedupeMethod:
    """Resolve a dedupe method name; ``simhash`` is accepted as an alias of ``near``."""
    if value == "simhash":
        return DedupeMethod.NEAR
    _check_choice("dedupe", "method", value, DedupeMethod)
    return DedupeMethod(value)


def validate_chunk_config(cfg: ChunkConfig) -> None:
    """Reject out-of-range chunking parameters.

    Raises:
        ConfigError: If any parameter is invalid.
    """
    _check_choice("chunk", "strategy", cfg.strategy, ChunkStrategy)
    _check_range("chunk", "max_chars", cfg.max_chars, 100, 10000)
    _check_range("chunk", "min_chars", cfg.min_chars, 0, 500)
    _check_range("chunk", "overlap_chars", cfg.overlap_chars, 0, 500)
    _check_range("chunk", "parent_context_chars", cfg.parent_context_chars, 0, 500)
    if cfg.overlap_chars >= cfg.max_chars:
        raise ConfigError(
            f"[chunk] overlap_chars ({cfg.overlap_chars}) must be smaller than "
            f"max_chars ({cfg.max_chars})"
        )
    if not cfg.separators or any(not s for s in cfg.separators):
        raise ConfigError("[chunk] separators must be a non-empty list of non-empty strings")


def validate_dedupe_config(cfg: DedupeConfig) -> None:
    parse_dedupe_method(cfg.method)
    _check_choice("dedupe", "scope", cfg.scope, DedupeScope)
    _check_range("dedupe", "threshold", cfg.threshold, 0.8, 1.0)


def validate_search_config(cfg: SearchConfig) -> None:
    _check_choice("search", "mode", cfg.mode, SearchMode)
    _check_choice("search", "fusion", cfg.fusion, FusionKind)
    _check_range("search", "top_k", cfg.top_k, 1, 100)
    _check_range("search", "rrf_k", cfg.rrf_k, 0, 1000)
    _check_range("search", "keyword_weight", cfg.keyword_weight, 0.0, 1.0)
    _check_range("search", "semantic_weight", cfg.semantic_weight, 0.0, 1.0)
    _check_range("search", "anchor_exact_boost", cfg.anchor_exact_boost, 0.0, 10.0)
    _check_range("search", "anchor_partial_boost", cfg.anchor_partial_boost, 0.0, 10.0)


def validate_hydrate_config(cfg: HydrateConfig) -> None:
    _check_choice("hydrate", "strategy", cfg.strategy, HydrateStrategy)
    _check_range("hydrate", "adjacent_before", cfg.adjacent_before, 0, 5)
    _check_range("hydrate", "adjacent_after", cfg.adjacent_after, 0, 5)
    _check_range("hydrate", "max_total_chunks", cfg.max_total_chunks, 1, 20)


def validate_config(config: RagidxConfig) -> None:
    """Validate every section that carries ranged parameters.

    Raises:
        ConfigError: On the first invalid value found.
    """
    validate_chunk_config(config.chunk)
    validate_dedupe_config(config.dedupe)
    validate_search_config(config.search)
    validate_hydrate_config(config.hydrate)
    if config.embedding.batch_size < 1:
        raise ConfigError(
            f"[embedding] batch_size must be >= 1, got {config.embedding.batch_size}"
        )
    if config.build.fetch_concurrency < 1:
        raise ConfigError(
            f"[build] fetch_concurrency must be >= 1, got {config.build.fetch_concurrency}"
        )


# --- TOML I/O ---


def _config_to_dict(config: RagidxConfig) -> dict[str, object]:
    """Convert RagidxConfig to a nested dict suitable for TOML serialization."""
    return {name: dict(vars(getattr(config, name))) for name in _SECTION_MAP}


def save_config(config: RagidxConfig, path: Path) -> None:
    """Save configuration to a TOML file."""
    path.parent.mkdir(parents=True, exist_ok=True)
    data = _config_to_dict(config)
    try:
        with path.open("wb") as f:
            tomli_w.dump(data, f)
        logger.info("Saved config to %s", path)
    except OSError as e:
        logger.error("Failed to save config to %s: %s", path, e)
        raise ConfigError(f"Failed to save config to {path}: {e}") from e


def _load_section(cls: type[_T], data: dict[str, object]) -> _T:
    """Load a dataclass section from a dict, ignoring unknown keys."""
    known_fields = {f.name for f in cls.__dataclass_fields__.values()}  # type: ignore[attr-defined]
    filtered = {k: v for k, v in data.items() if k in known_fields}
    return cls(**filtered)


def load_config(path: Path) -> RagidxConfig:
    """Load configuration from a TOML file.

    Missing sections or keys get default values; the result is validated.
    """
    if not path.exists():
        raise ConfigError(f"Config file not found: {path}")

    try:
        raw = path.read_bytes()
        data = tomllib.loads(raw.decode("utf-8"))
    except (OSError, UnicodeDecodeError, tomllib.TOMLDecodeError) as e:
        logger.error("Failed to load config from %s: %s", path, e)
        raise ConfigError(f"Failed to load config from {path}: {e}") from e

    config = RagidxConfig()
    for name, cls in _SECTION_MAP.items():
        if name in data:
            try:
                setattr(config, name, _load_section(cls, data[name]))
            except (TypeError, AttributeError) as e:
                raise ConfigError(f"Invalid [{name}] section in {path}: {e}") from e

    validate_config(config)
    logger.info("Loaded config from %s", path)
    return config
