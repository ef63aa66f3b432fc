"""Shared fixtures for ragidx tests."""

from __future__ import annotations

from typing import TYPE_CHECKING

import pytest

from ragidx.checkpoint import BuildCheckpoint, save_checkpoint
from ragidx.config import RagidxConfig, save_config
from ragidx.project import CHECKPOINT_FILE, CONFIG_FILE, RAG_DIR

if TYPE_CHECKING:
    from pathlib import Path


@pytest.fixture
def project_dir(tmp_path: Path) -> Path:
    """A temporary directory simulating a project root."""
    return tmp_path


@pytest.fixture
def initialized_project(tmp_path: Path) -> Path:
    """A temporary project with .ragidx/ already initialized."""
    rag = tmp_path / RAG_DIR
    rag.mkdir()
    for subdir in ("index", "templates"):
        (rag / subdir).mkdir(parents=True)

    config = RagidxConfig()
    config.project.name = "test-project"
    save_config(config, rag / CONFIG_FILE)
    save_checkpoint(BuildCheckpoint(), rag / CHECKPOINT_FILE)

    return tmp_path


@pytest.fixture
def sample_file(tmp_path: Path) -> Path:
    """A small sample file for hash testing."""
    f = tmp_path / "sample.txt"
    f.write_text("Hello, retrieval world!", encoding="utf-8")
    return f


@pytest.fixture
def markdown_file(tmp_path: Path) -> Path:
    """A small Markdown document with a three-level heading tree."""
    f = tmp_path / "guide.md"
    f.write_text(
        "# Guide\n\nIntro to the guide.\n\n"
        "## Install\n\nRun the installer and follow the prompts.\n\n"
        "### Linux\n\nUse the package manager. See D40. for details.\n\n"
        "## Usage\n\nStart the service and open the dashboard.\n",
        encoding="utf-8",
    )
    return f
