"""Manifest system: cache records, hashing and persistence."""

from imageforge.manifest.record import Manifest, ManifestRecord
from imageforge.manifest.store import (
    InMemoryManifestStore,
    JsonManifestStore,
    LoadResult,
    ManifestStore,
)
from imageforge.manifest.hash import compute_file_hash

__all__ = [
    "Manifest",
    "ManifestRecord",
    "ManifestStore",
    "JsonManifestStore",
    "InMemoryManifestStore",
    "LoadResult",
    "compute_file_hash",
]
