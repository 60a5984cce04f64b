"""
Change detection for source images.

Decides per file whether the cached outputs are still valid. Checks run in
order and the first match wins:

1. not a regular file              -> skip ("not-file")
2. unsupported extension or a file
   name that is not valid UTF-8     -> skip ("unsupported")
3. size + mtime match, outputs present -> hit ("cached"), content not read
4. content hash matches            -> hit with refreshed stat fields, or a
                                      miss if an output was deleted
5. otherwise                       -> miss ("updated")
"""

from __future__ import annotations

import logging
import os
import stat
from dataclasses import dataclass
from enum import Enum
from pathlib import Path

from imageforge.cache.paths import PathResolver, ResolvedPaths, is_portable_key
from imageforge.core.formats import is_supported
from imageforge.manifest.hash import compute_file_hash
from imageforge.manifest.record import Manifest, ManifestRecord

logger = logging.getLogger(__name__)


class DecisionReason(str, Enum):
    """Why a file was or was not reprocessed."""

    NOT_A_FILE = "not-file"
    UNSUPPORTED = "unsupported"
    CACHED = "cached"
    UPDATED = "updated"


@dataclass(frozen=True)
class Decision:
    """
    Result of checking one source file against the manifest.

    ``record`` is set when the manifest entry must change even though the
    encoder may not run (a hit with drifted stat fields). For a miss it
    carries the refreshed fields and the driver replaces it after encoding.
    """

    source: Path
    reason: DecisionReason
    paths: ResolvedPaths | None = None
    size: int | None = None
    modified_time: int | None = None
    content_hash: str | None = None
    record: ManifestRecord | None = None

    @property
    def needs_processing(self) -> bool:
        return self.reason is DecisionReason.UPDATED

    @property
    def skipped(self) -> bool:
        return self.reason in (DecisionReason.NOT_A_FILE, DecisionReason.UNSUPPORTED)

    def new_record(self) -> ManifestRecord:
        """
        Record describing this source after a successful encode.

        Raises:
            ValueError: If the decision was not a miss.
        """
        if not self.needs_processing or self.paths is None or self.content_hash is None:
            raise ValueError(f"No new record for {self.reason.value} decision on {self.source}")
        return ManifestRecord(
            content_hash=self.content_hash,
            size=self.size,
            modified_time=self.modified_time,
            has_derivative=self.paths.derivative is not None,
        )


class ChangeDetector:
    """
    Decides whether a source image must be re-encoded.

    Never mutates the manifest it is given; callers apply ``Decision.record``.
    """

    def __init__(
        self,
        resolver: PathResolver,
        hash_algorithm: str = "sha1",
        verify_content: bool = False,
        force: bool = False,
    ):
        """
        Initialize detector.

        Args:
            resolver: Path resolver for keys and output locations.
            hash_algorithm: Content hash algorithm.
            verify_content: Skip the size+mtime fast path and always hash.
            force: Treat every supported file as changed.
        """
        self.resolver = resolver
        self.hash_algorithm = hash_algorithm
        self.verify_content = verify_content
        self.force = force

    def decide(self, source: Path, manifest: Manifest) -> Decision:
        """
        Check one source file.

        Args:
            source: Absolute path inside the source root.
            manifest: Cache state loaded for this run.

        Returns:
            Decision for the file.

        Raises:
            OSError: If the file cannot be stat'ed or read for hashing.
        """
        try:
            st = os.stat(source)
        except FileNotFoundError:
            logger.warning("Skipping missing source %s", source)
            return Decision(source=source, reason=DecisionReason.NOT_A_FILE)

        if not stat.S_ISREG(st.st_mode):
            return Decision(source=source, reason=DecisionReason.NOT_A_FILE)

        if not is_supported(source):
            return Decision(source=source, reason=DecisionReason.UNSUPPORTED)

        paths = self.resolver.resolve(source)
        if not is_portable_key(paths.key):
            logger.warning("Skipping %r: file name is not valid UTF-8", source)
            return Decision(source=source, reason=DecisionReason.UNSUPPORTED)

        size = st.st_size
        mtime = st.st_mtime_ns
        prev = None if self.force else manifest.get(paths.key)

        if (
            prev is not None
            and not self.verify_content
            and prev.matches_stat(size, mtime)
            and paths.outputs_exist()
        ):
            logger.debug("%s: stat match, cached", paths.key)
            return Decision(
                source=source,
                reason=DecisionReason.CACHED,
                paths=paths,
                size=size,
                modified_time=mtime,
                content_hash=prev.content_hash,
            )

        content_hash = compute_file_hash(source, self.hash_algorithm)

        if prev is not None and prev.content_hash == content_hash:
            refreshed = prev.refreshed(content_hash, size, mtime)
            if paths.outputs_exist():
                logger.debug("%s: content unchanged, refreshing stat fields", paths.key)
                return Decision(
                    source=source,
                    reason=DecisionReason.CACHED,
                    paths=paths,
                    size=size,
                    modified_time=mtime,
                    content_hash=content_hash,
                    record=refreshed,
                )

            logger.debug("%s: content unchanged but outputs missing", paths.key)
            return Decision(
                source=source,
                reason=DecisionReason.UPDATED,
                paths=paths,
                size=size,
                modified_time=mtime,
                content_hash=content_hash,
                record=refreshed,
            )

        logger.debug("%s: %s", paths.key, "new file" if prev is None else "content changed")
        return Decision(
            source=source,
            reason=DecisionReason.UPDATED,
            paths=paths,
            size=size,
            modified_time=mtime,
            content_hash=content_hash,
        )
