"""Local source loading.

Reads UTF-8 text files into ``SourceDocument`` records with provenance
(content hash, retrieval timestamp, source and content type). Extraction
of binary formats is out of scope; such files are read as text only when
they decode.
"""

from __future__ import annotations

import logging
from datetime import UTC, datetime
from typing import TYPE_CHECKING

from ragidx.exceptions import InputError
from ragidx.hashing import compute_file_hash
from ragidx.types import SourceDocument

if TYPE_CHECKING:
    from pathlib import Path

__all__ = ["MAX_FILE_SIZE", "detect_content_type", "detect_source_type", "load_source"]

logger = logging.getLogger(__name__)

MAX_FILE_SIZE: int = 50 * 1024 * 1024  # 50 MB

_SOURCE_TYPES: dict[str, str] = {
    ".pdf": "pdf",
    ".html": "html",
    ".htm": "html",
    ".md": "markdown",
    ".markdown": "markdown",
    ".txt": "txt",
    ".text": "txt",
    ".csv": "csv",
    ".json": "json",
    ".docx": "docx",
}

_CONTENT_TYPES: dict[str, str] = {
    "pdf": "application/pdf",
    "html": "text/html",
    "markdown": "text/markdown",
    "txt": "text/plain",
    "csv": "text/csv",
    "json": "application/json",
    "docx": "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
}


def detect_source_type(path: Path) -> str:
    """Source type from the file extension; unknown extensions are ``txt``."""
    return _SOURCE_TYPES.get(path.suffix.lower(), "txt")


def detect_content_type(path: Path) -> str:
    return _CONTENT_TYPES[detect_source_type(path)]


def load_source(path: Path) -> SourceDocument:
    """Read a local file into a ``SourceDocument``.

    Args:
        path: File to read.

    Returns:
        SourceDocument whose ``source_id`` is the resolved path.

    Raises:
        InputError: If the file is missing, too large or cannot be read.
    """
    if not path.exists():
        raise InputError(f"Source file not found: {path}")
    if not path.is_file():
        raise InputError(f"Not a file: {path}")

    try:
        size = path.stat().st_size
    except OSError as e:
        raise InputError(f"Cannot stat {path}: {e}") from e
    if size > MAX_FILE_SIZE:
        raise InputError(
            f"File too large: {path.name} ({size / 1024 / 1024:.1f} MB, "
            f"max {MAX_FILE_SIZE / 1024 / 1024:.0f} MB)"
        )

    try:
        raw = path.read_text(encoding="utf-8")
    except UnicodeDecodeError as e:
        raise InputError(f"{path.name} is not valid UTF-8 text: {e}") from e
    except OSError as e:
        raise InputError(f"Cannot read {path.name}: {e}") from e

    # Strip BOM if present
    if raw.startswith("\ufeff"):
        raw = raw[1:]

    source_type = detect_source_type(path)
    logger.info("Loaded source %s (%s, %d chars)", path, source_type, len(raw))
    return SourceDocument(
        source_id=str(path.resolve()),
        text=raw,
        source_type=source_type,
        content_hash=compute_file_hash(path),
        retrieved_at=datetime.now(UTC).isoformat(),
        metadata=(("content_type", detect_content_type(path)), ("filename", path.name)),
    )
