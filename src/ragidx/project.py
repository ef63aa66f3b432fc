"""Project manager for ragidx.

Handles project initialization, status reporting, and project root discovery.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path

from ragidx.checkpoint import BuildCheckpoint, load_checkpoint, save_checkpoint
from ragidx.config import RagidxConfig, default_config, load_config, save_config
from ragidx.exceptions import ProjectError

__all__ = [
    "CHECKPOINT_FILE",
    "CHUNKS_FILE",
    "CONFIG_FILE",
    "RAG_DIR",
    "ProjectManager",
    "ProjectStatus",
]

logger = logging.getLogger(__name__)

RAG_DIR = ".ragidx"
CONFIG_FILE = "config.toml"
CHECKPOINT_FILE = "checkpoint.json"
CHUNKS_FILE = "chunks.jsonl"
INDEX_DIR = "index"

SUBDIRS = [INDEX_DIR, "templates"]


@dataclass
class ProjectStatus:
    """Summary of the current project state."""

    initialized: bool
    root: Path
    source_count: int
    chunk_count: int
    tokens_used: int
    estimated_cost_usd: float
    error_count: int
    config: RagidxConfig | None


class ProjectManager:
    """Manages ragidx project lifecycle."""

    def __init__(self, root: Path | None = None) -> None:
        self.root = root or Path.cwd()

    @property
    def rag_dir(self) -> Path:
        return self.root / RAG_DIR

    @property
    def config_path(self) -> Path:
        return self.rag_dir / CONFIG_FILE

    @property
    def checkpoint_path(self) -> Path:
        return self.rag_dir / CHECKPOINT_FILE

    @property
    def index_path(self) -> Path:
        return self.rag_dir / INDEX_DIR

    @property
    def chunks_path(self) -> Path:
        return self.rag_dir / CHUNKS_FILE

    @property
    def is_initialized(self) -> bool:
        return (
            self.rag_dir.is_dir() and self.config_path.exists() and self.checkpoint_path.exists()
        )

    def init(self, name: str = "") -> Path:
        """Initialize a new ragidx project.

        Creates .ragidx/ directory structure, default config, and an empty
        checkpoint. Safe to call on an already-initialized project (idempotent).

        Returns the .ragidx/ directory path.

        Raises:
            ProjectError: If the directory structure cannot be created.
        """
        try:
            self.rag_dir.mkdir(parents=True, exist_ok=True)
            for subdir in SUBDIRS:
                (self.rag_dir / subdir).mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise ProjectError(f"Cannot create {self.rag_dir}: {e}") from e

        if self.config_path.exists():
            config = load_config(self.config_path)
            logger.info("Existing config found at %s", self.config_path)
        else:
            config = default_config()

        if name:
            config.project.name = name
        elif not config.project.name:
            config.project.name = self.root.name

        save_config(config, self.config_path)

        if not self.checkpoint_path.exists():
            save_checkpoint(BuildCheckpoint(), self.checkpoint_path)

        logger.info("Initialized ragidx project at %s", self.rag_dir)
        return self.rag_dir

    def load_config(self) -> RagidxConfig:
        return load_config(self.config_path)

    def load_checkpoint(self) -> BuildCheckpoint:
        return load_checkpoint(self.checkpoint_path)

    def status(self) -> ProjectStatus:
        """Get current project status."""
        if not self.is_initialized:
            return ProjectStatus(
                initialized=False,
                root=self.root,
                source_count=0,
                chunk_count=0,
                tokens_used=0,
                estimated_cost_usd=0.0,
                error_count=0,
                config=None,
            )

        config = self.load_config()
        checkpoint = self.load_checkpoint()

        return ProjectStatus(
            initialized=True,
            root=self.root,
            source_count=len(checkpoint.sources),
            chunk_count=sum(s.chunks for s in checkpoint.sources),
            tokens_used=checkpoint.tokens_used,
            estimated_cost_usd=checkpoint.estimated_cost_usd,
            error_count=len(checkpoint.errors),
            config=config,
        )

    @staticmethod
    def find_project_root(start: Path | None = None) -> Path | None:
        """Walk up from start directory to find a .ragidx/ directory.

        Returns the project root (parent of .ragidx/) or None if not found.
        """
        current = (start or Path.cwd()).resolve()
        while True:
            if (current / RAG_DIR).is_dir():
                return current
            parent = current.parent
            if parent == current:
                return None
            current = parent
