"""
Path resolution between the source tree, the output tree and manifest keys.

Manifest keys are source-relative POSIX paths, so a manifest written on one
platform stays valid on another.
"""

from __future__ import annotations

import os
from collections.abc import Iterable
from dataclasses import dataclass
from pathlib import Path

from imageforge.core.formats import (
    DERIVATIVE_EXTENSION,
    SUPPORTED_EXTENSIONS,
    extension_of,
    is_derivative_eligible,
    is_supported,
)


def is_portable_key(key: str) -> bool:
    """
    True when a manifest key can be written as UTF-8 JSON.

    Undecodable file names arrive as lone surrogates and would make the
    manifest unwritable.
    """
    try:
        key.encode("utf-8")
    except UnicodeEncodeError:
        return False
    return True


@dataclass(frozen=True)
class ResolvedPaths:
    """Everything the pipeline needs to know about one source file."""

    source: Path
    key: str
    output: Path
    derivative: Path | None = None

    @property
    def expected_outputs(self) -> list[Path]:
        """Outputs that must exist for a cache hit."""
        if self.derivative is None:
            return [self.output]
        return [self.output, self.derivative]

    def outputs_exist(self) -> bool:
        return all(p.exists() for p in self.expected_outputs)


class PathResolver:
    """Maps source files to manifest keys and output locations."""

    def __init__(self, source_dir: Path, output_dir: Path):
        """
        Initialize resolver.

        Args:
            source_dir: Root of the original images.
            output_dir: Root of the optimized outputs.
        """
        self.source_dir = Path(os.path.abspath(source_dir))
        self.output_dir = Path(os.path.abspath(output_dir))

    def is_inside_source(self, path: Path) -> bool:
        """True when ``path`` lies strictly below the source root."""
        rel = os.path.relpath(path, self.source_dir)
        if rel == os.curdir or os.path.isabs(rel):
            return False
        return rel != os.pardir and not rel.startswith(os.pardir + os.sep)

    def key_for(self, source: Path) -> str:
        """
        Manifest key for a source file.

        Args:
            source: Absolute path below the source root.

        Returns:
            Forward-slash path relative to the source root.

        Raises:
            ValueError: If the path is outside the source root.
        """
        absolute = Path(os.path.abspath(source))
        if not self.is_inside_source(absolute):
            raise ValueError(f"{source} is not inside {self.source_dir}")
        return Path(os.path.relpath(absolute, self.source_dir)).as_posix()

    def output_path(self, key: str) -> Path:
        return self.output_dir.joinpath(*key.split("/"))

    def derivative_path(self, key: str) -> Path | None:
        """WebP sibling of the primary output, or None if not eligible."""
        if not is_derivative_eligible(key):
            return None
        return self.output_path(key).with_suffix(DERIVATIVE_EXTENSION)

    def resolve(self, source: Path) -> ResolvedPaths:
        key = self.key_for(source)
        return ResolvedPaths(
            source=Path(os.path.abspath(source)),
            key=key,
            output=self.output_path(key),
            derivative=self.derivative_path(key),
        )

    def filter_explicit(self, args: Iterable[str | Path]) -> list[Path]:
        """
        Resolve explicit arguments to absolute paths inside the source root.

        Duplicates are removed keeping first occurrence order. Paths outside
        the root, including ``..`` escapes, are dropped without error.

        Args:
            args: Path strings as given on the command line.

        Returns:
            Absolute paths strictly inside the source root.
        """
        seen: set[Path] = set()
        targets: list[Path] = []
        for arg in args:
            if not str(arg):
                continue
            absolute = Path(os.path.abspath(arg))
            if absolute in seen:
                continue
            seen.add(absolute)
            if self.is_inside_source(absolute):
                targets.append(absolute)
        return targets

    def enumerate_sources(self) -> list[Path]:
        """All files under the source root with a supported extension, sorted."""
        if not self.source_dir.is_dir():
            return []
        return sorted(
            p
            for p in self.source_dir.rglob("*")
            if p.is_file() and extension_of(p) in SUPPORTED_EXTENSIONS
        )

    def output_collisions(self, sources: Iterable[Path]) -> dict[Path, list[str]]:
        """
        Output files claimed by more than one source.

        ``a.jpg``, ``a.png`` and ``a.webp`` in one directory all write
        ``a.webp``.

        Returns:
            Colliding output path -> keys of the sources writing it, in
            source order.
        """
        claims: dict[Path, list[str]] = {}
        for source in sources:
            if not is_supported(source) or not self.is_inside_source(source):
                continue
            resolved = self.resolve(source)
            for output in resolved.expected_outputs:
                claims.setdefault(output, []).append(resolved.key)
        return {output: keys for output, keys in claims.items() if len(keys) > 1}
