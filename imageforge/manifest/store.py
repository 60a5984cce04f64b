"""
Manifest store interface and backends.

A store has exactly two operations: ``load`` at the start of a run and
``save`` once at the end. ``load`` never raises; a missing or damaged
manifest degrades to an empty one, which simply means every file is
reprocessed.
"""

from __future__ import annotations

import logging
import os
import tempfile
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from pydantic import ValidationError

from imageforge.core.json_canonical import canonical_json_loads
from imageforge.manifest.record import Manifest, ManifestRecord

logger = logging.getLogger(__name__)


@dataclass
class LoadResult:
    """Outcome of reading a manifest: either a manifest or a failure reason."""

    manifest: Manifest | None = None
    error: str | None = None
    dropped_keys: list[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.manifest is not None

    def unwrap_or_empty(self) -> Manifest:
        return self.manifest if self.manifest is not None else Manifest()


def parse_manifest(data: Any) -> LoadResult:
    """
    Validate decoded JSON against the manifest shape.

    The top level must be an object with a ``files`` object. Individual
    records that fail validation are dropped and reported in
    ``dropped_keys``; the remaining records are kept.

    Args:
        data: Decoded JSON value.

    Returns:
        LoadResult with the parsed manifest or an error.
    """
    if not isinstance(data, dict):
        return LoadResult(error="manifest root is not an object")

    files = data.get("files")
    if not isinstance(files, dict):
        return LoadResult(error="manifest has no 'files' object")

    records: dict[str, ManifestRecord] = {}
    dropped: list[str] = []
    for key, raw in files.items():
        try:
            records[key] = ManifestRecord.model_validate(raw)
        except ValidationError:
            dropped.append(key)

    return LoadResult(manifest=Manifest(files=records), dropped_keys=dropped)


class ManifestStore(ABC):
    """Abstract manifest persistence."""

    @abstractmethod
    def read(self) -> LoadResult:
        """
        Read the persisted manifest.

        Returns:
            LoadResult describing the manifest or why it could not be read.
        """
        ...

    @abstractmethod
    def save(self, manifest: Manifest) -> None:
        """
        Persist the full manifest, replacing any previous version.

        Args:
            manifest: Manifest to write.
        """
        ...

    def load(self) -> Manifest:
        """
        Load the manifest, falling back to an empty one.

        Returns:
            The persisted manifest, or an empty Manifest if it is absent,
            unparseable or structurally invalid.
        """
        result = self.read()
        if not result.ok:
            if result.error:
                logger.warning("Ignoring manifest (%s); rebuilding cache", result.error)
            return Manifest()

        if result.dropped_keys:
            logger.warning(
                "Dropped %d malformed manifest record(s): %s",
                len(result.dropped_keys),
                ", ".join(sorted(result.dropped_keys)),
            )
        return result.unwrap_or_empty()


class JsonManifestStore(ManifestStore):
    """
    Manifest stored as a single JSON file.

    Writes go to a temporary file in the same directory which is then
    renamed over the target, so a crash mid-write leaves the previous
    manifest intact.
    """

    def __init__(self, path: Path):
        """
        Initialize store.

        Args:
            path: Manifest file location.
        """
        self.path = Path(path)

    def read(self) -> LoadResult:
        if not self.path.exists():
            return LoadResult()

        try:
            content = self.path.read_bytes()
        except OSError as e:
            return LoadResult(error=f"unreadable: {e}")

        try:
            data = canonical_json_loads(content)
        except ValueError as e:
            # orjson.JSONDecodeError subclasses ValueError
            return LoadResult(error=f"invalid JSON: {e}")

        return parse_manifest(data)

    def save(self, manifest: Manifest) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        payload = manifest.to_json(indent=True)

        fd, tmp_name = tempfile.mkstemp(
            prefix=f".{self.path.name}.", suffix=".tmp", dir=self.path.parent
        )
        tmp_path = Path(tmp_name)
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(payload)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_path, self.path)
        except BaseException:
            tmp_path.unlink(missing_ok=True)
            raise

        logger.debug("Saved manifest with %d record(s) to %s", len(manifest), self.path)


class InMemoryManifestStore(ManifestStore):
    """Store kept in memory; useful for tests and dry runs."""

    def __init__(self, manifest: Manifest | None = None):
        self.manifest = manifest
        self.save_count = 0

    def read(self) -> LoadResult:
        if self.manifest is None:
            return LoadResult()
        return LoadResult(manifest=Manifest(files=dict(self.manifest.files)))

    def save(self, manifest: Manifest) -> None:
        self.manifest = Manifest(files=dict(manifest.files))
        self.save_count += 1
