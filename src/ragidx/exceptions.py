"""Custom exception hierarchy for ragidx."""

__all__ = [
    "CheckpointError",
    "ChunkError",
    "ConfigError",
    "EmbeddingError",
    "InputError",
    "PipelineError",
    "PluginError",
    "ProjectError",
    "RagidxError",
    "RateLimitError",
    "StoreError",
]


class RagidxError(Exception):
    """Base exception for all ragidx errors."""


class ConfigError(RagidxError):
    """Raised when configuration loading or validation fails."""


class InputError(RagidxError):
    """Raised when source text is missing or unreadable."""


class CheckpointError(RagidxError):
    """Raised when build checkpoint operations fail."""


class ProjectError(RagidxError):
    """Raised when project initialization or discovery fails."""


class ChunkError(RagidxError):
    """Raised when chunking operations fail."""


class EmbeddingError(RagidxError):
    """Raised when embedding generation fails."""


class RateLimitError(EmbeddingError):
    """Raised when the embedding provider answers HTTP 429."""


class StoreError(RagidxError):
    """Raised when vector store operations fail."""


class PipelineError(RagidxError):
    """Raised when build orchestration fails."""


class PluginError(RagidxError):
    """Raised when plugin loading or registration fails."""
