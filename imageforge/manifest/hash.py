"""
Content hashing for change detection.

Files are read in fixed-size chunks so large sources never load fully into
memory.
"""

from __future__ import annotations

import hashlib
from pathlib import Path
from typing import Any, Callable

import xxhash

CHUNK_SIZE = 65536

_HASHERS: dict[str, Callable[[], Any]] = {
    "sha1": hashlib.sha1,
    "sha256": hashlib.sha256,
    "xxh64": xxhash.xxh64,
}


def available_algorithms() -> list[str]:
    return sorted(_HASHERS)


def new_hasher(algorithm: str = "sha1") -> Any:
    """
    Create an incremental hasher.

    Raises:
        ValueError: If the algorithm is unknown.
    """
    try:
        return _HASHERS[algorithm]()
    except KeyError:
        raise ValueError(
            f"Unknown hash algorithm '{algorithm}' (choose from {', '.join(available_algorithms())})"
        ) from None


def compute_file_hash(path: Path, algorithm: str = "sha1") -> str:
    """
    Compute hash of a file's contents.

    Args:
        path: Path to file.
        algorithm: One of ``sha1``, ``sha256``, ``xxh64``.

    Returns:
        Hex-encoded hash string.

    Raises:
        OSError: If the file cannot be read.
    """
    hasher = new_hasher(algorithm)
    with open(path, "rb") as f:
        for chunk in iter(lambda: f.read(CHUNK_SIZE), b""):
            hasher.update(chunk)
    return hasher.hexdigest()
