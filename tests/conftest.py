"""Shared fixtures for pipeline tests."""

import os
import threading
from dataclasses import dataclass
from pathlib import Path

import pytest

from imageforge.core.config import PipelineConfig
from imageforge.encoders.base import Encoder, EncoderError


class RecordingEncoder(Encoder):
    """Fake encoder that tags output bytes and records every call."""

    def __init__(self, fail_on: set[str] | None = None):
        self.calls: list[tuple[bytes, str]] = []
        self.fail_on = fail_on or set()
        self._lock = threading.Lock()

    def encode(self, source: bytes, fmt: str) -> bytes:
        with self._lock:
            self.calls.append((source, fmt))
        if fmt in self.fail_on:
            raise EncoderError(f"cannot encode {fmt}", fmt=fmt)
        return f"{fmt}:".encode() + source

    @property
    def formats(self) -> list[str]:
        return [fmt for _, fmt in self.calls]

    def reset(self) -> None:
        self.calls.clear()


@dataclass
class Project:
    """Temporary project layout."""

    root: Path
    source_dir: Path
    output_dir: Path
    manifest_path: Path

    def config(self, **overrides) -> PipelineConfig:
        return PipelineConfig(
            source_dir=self.source_dir,
            output_dir=self.output_dir,
            manifest_path=self.manifest_path,
            **overrides,
        )

    def add_source(self, rel: str, content: bytes = b"image-bytes") -> Path:
        path = self.source_dir / rel
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(content)
        return path

    def output(self, rel: str) -> Path:
        return self.output_dir / rel


def set_mtime_ns(path: Path, mtime_ns: int) -> None:
    """Force a file's modification time."""
    os.utime(path, ns=(mtime_ns, mtime_ns))


@pytest.fixture
def project(tmp_path):
    """Create a project with an empty source tree."""
    source_dir = tmp_path / "src" / "images"
    source_dir.mkdir(parents=True)
    return Project(
        root=tmp_path,
        source_dir=source_dir,
        output_dir=tmp_path / "images",
        manifest_path=tmp_path / ".image-cache.json",
    )


@pytest.fixture
def encoder():
    """Create a recording encoder."""
    return RecordingEncoder()
