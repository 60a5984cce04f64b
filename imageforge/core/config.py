"""
Pipeline configuration.

Defaults mirror the conventional project layout: originals under
``src/images``, optimized copies under ``images`` and the manifest at
``.image-cache.json`` in the project root.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

HashAlgorithm = Literal["sha1", "sha256", "xxh64"]


class PipelineConfig(BaseModel):
    """Configuration for an image pipeline run."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    # Layout
    source_dir: Path = Field(default=Path("src/images"), description="Root of original images")
    output_dir: Path = Field(default=Path("images"), description="Root of optimized outputs")
    manifest_path: Path = Field(
        default=Path(".image-cache.json"), description="Path to the cache manifest"
    )

    # Change detection
    hash_algorithm: HashAlgorithm = Field(
        default="sha1", description="Content hash algorithm"
    )
    verify_content: bool = Field(
        default=False, description="Always hash, never trust size+mtime alone"
    )
    force: bool = Field(default=False, description="Reprocess every target")

    # Execution
    workers: int = Field(default=1, ge=1, description="Decide+encode worker threads")

    # Encoder settings
    jpeg_quality: int = Field(default=80, ge=1, le=100, description="JPEG quality")
    png_compress_level: int = Field(default=9, ge=0, le=9, description="PNG zlib level")
    webp_quality: int = Field(default=80, ge=1, le=100, description="WebP quality")

    def resolved(self, root: Path | None = None) -> PipelineConfig:
        """
        Return a copy with all paths made absolute.

        Args:
            root: Base for relative paths. Defaults to the current directory.
        """
        base = Path(root) if root is not None else Path.cwd()

        def _abs(p: Path) -> Path:
            return p if p.is_absolute() else Path(os.path.abspath(base / p))

        return self.model_copy(
            update={
                "source_dir": _abs(self.source_dir),
                "output_dir": _abs(self.output_dir),
                "manifest_path": _abs(self.manifest_path),
            }
        )

    def with_overrides(self, **overrides: Any) -> PipelineConfig:
        """Return a validated copy with non-None overrides applied."""
        data = self.model_dump()
        data.update({k: v for k, v in overrides.items() if v is not None})
        return PipelineConfig.model_validate(data)

    @classmethod
    def from_yaml(cls, path: str | Path) -> PipelineConfig:
        """
        Load configuration from a YAML file.

        Expected format:
        ```yaml
        source_dir: src/images
        output_dir: images
        hash_algorithm: sha1
        workers: 4
        webp_quality: 75
        ```

        Args:
            path: Path to YAML file.

        Returns:
            Loaded PipelineConfig.

        Raises:
            ValueError: If the file does not contain a mapping.
        """
        import yaml

        content = Path(path).read_text()
        data = yaml.safe_load(content) or {}
        if not isinstance(data, dict):
            raise ValueError(f"Config file must contain a mapping: {path}")

        return cls.model_validate(data)
