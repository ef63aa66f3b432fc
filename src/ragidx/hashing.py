"""Deterministic identifiers and text normalization.

Every id in ragidx is a SHA-256 hex digest of something the caller can
recompute: the normalized document text, a byte range inside it, or a
chunking configuration.
"""

from __future__ import annotations

import hashlib
import json
import math
import unicodedata
from typing import TYPE_CHECKING

from ragidx.exceptions import InputError

if TYPE_CHECKING:
    from collections.abc import Mapping
    from pathlib import Path

__all__ = [
    "approx_tokens",
    "compute_file_hash",
    "config_hash",
    "make_chunk_id",
    "make_doc_id",
    "normalize_text",
    "sha256_hex",
]

HASH_CHUNK_SIZE = 65536
CHARS_PER_TOKEN = 4
TAB_WIDTH = 4


def sha256_hex(text: str) -> str:
    return hashlib.sha256(text.encode("utf-8")).hexdigest()


def normalize_text(text: str) -> str:
    """Normalize line endings, expand tabs and apply Unicode NFC."""
    text = text.replace("\r\n", "\n").replace("\t", " " * TAB_WIDTH)
    return unicodedata.normalize("NFC", text)


def make_doc_id(normalized_text: str) -> str:
    """Document id: hash of the already-normalized document text."""
    return sha256_hex(normalized_text)


def make_chunk_id(doc_id: str, byte_start: int, byte_end: int) -> str:
    """Chunk id: pure function of (document hash, byte range)."""
    return sha256_hex(f"{doc_id}|{byte_start}|{byte_end}")


def approx_tokens(text: str) -> int:
    """Cheap token estimate, four characters per token rounded up."""
    return math.ceil(len(text) / CHARS_PER_TOKEN)


def config_hash(params: Mapping[str, object]) -> str:
    """Fingerprint a parameter mapping via stable, key-sorted JSON."""
    payload = json.dumps(params, sort_keys=True, separators=(",", ":"), default=str)
    return sha256_hex(payload)


def compute_file_hash(path: Path) -> str:
    """Compute SHA-256 hash of a file's contents."""
    h = hashlib.sha256()
    try:
        with path.open("rb") as f:
            while True:
                block = f.read(HASH_CHUNK_SIZE)
                if not block:
                    break
                h.update(block)
    except OSError as e:
        raise InputError(f"Failed to hash file {path}: {e}") from e
    return f"sha256:{h.hexdigest()}"
