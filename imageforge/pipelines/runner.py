"""
Pipeline driver.

Enumerates targets, consults the change detector, encodes changed files and
persists the manifest exactly once at the end of a successful run. Any
failure aborts the batch before the save, so the previous manifest stays
authoritative for the next run.
"""

from __future__ import annotations

import logging
import shutil
import threading
from collections.abc import Iterable, Iterator, Sequence
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from pathlib import Path

from imageforge.cache.detector import ChangeDetector, Decision, DecisionReason
from imageforge.cache.paths import PathResolver
from imageforge.core.config import PipelineConfig
from imageforge.core.formats import (
    PASSTHROUGH_EXTENSIONS,
    extension_of,
    format_for,
)
from imageforge.encoders.base import Encoder, EncoderError
from imageforge.manifest.record import Manifest, ManifestRecord
from imageforge.manifest.store import JsonManifestStore, ManifestStore

logger = logging.getLogger(__name__)


class RunCancelled(Exception):
    """The run was cancelled between files; the manifest was not saved."""


@dataclass(frozen=True)
class FileOutcome:
    """What happened to one target."""

    source: Path
    reason: DecisionReason
    key: str | None = None
    outputs: tuple[Path, ...] = ()

    @property
    def processed(self) -> bool:
        return self.reason is DecisionReason.UPDATED


@dataclass
class RunResult:
    """Summary of a pipeline run."""

    manifest: Manifest
    outcomes: list[FileOutcome] = field(default_factory=list)
    saved: bool = False
    dry_run: bool = False

    @property
    def nothing_to_do(self) -> bool:
        return not self.outcomes

    @property
    def processed(self) -> int:
        """Files actually (re)encoded, or that would be in a dry run."""
        return sum(1 for o in self.outcomes if o.processed)

    @property
    def cached(self) -> int:
        return sum(1 for o in self.outcomes if o.reason is DecisionReason.CACHED)

    @property
    def skipped(self) -> int:
        return sum(
            1
            for o in self.outcomes
            if o.reason in (DecisionReason.NOT_A_FILE, DecisionReason.UNSUPPORTED)
        )


@dataclass
class PipelineDriver:
    """
    Orchestrates an incremental image run.

    The manifest is loaded once, threaded through the run as a value and
    saved once. Only the driver thread builds the updated record set, so
    worker threads never write shared state.
    """

    config: PipelineConfig
    encoder: Encoder
    store: ManifestStore
    cancel_event: threading.Event | None = None

    def __post_init__(self) -> None:
        self.resolver = PathResolver(self.config.source_dir, self.config.output_dir)
        self.detector = ChangeDetector(
            self.resolver,
            hash_algorithm=self.config.hash_algorithm,
            verify_content=self.config.verify_content,
            force=self.config.force,
        )

    def collect_targets(self, explicit_args: Sequence[str | Path] = ()) -> list[Path]:
        """
        Build the target list.

        Args:
            explicit_args: Paths given by the caller. When empty the whole
                source tree is enumerated.

        Returns:
            Absolute source paths to check.
        """
        args = [a for a in explicit_args if str(a)]
        if args:
            targets = self.resolver.filter_explicit(args)
            if len(targets) < len(args):
                logger.debug(
                    "Ignored %d argument(s) outside %s",
                    len(args) - len(targets),
                    self.resolver.source_dir,
                )
            return targets
        return self.resolver.enumerate_sources()

    def run(
        self,
        explicit_args: Sequence[str | Path] = (),
        dry_run: bool = False,
    ) -> RunResult:
        """
        Execute the pipeline.

        Args:
            explicit_args: Optional explicit source paths.
            dry_run: Decide only; no encoding and no manifest save.

        Returns:
            RunResult with per-file outcomes and the resulting manifest.

        Raises:
            EncoderError: If an encoder fails.
            OSError: On filesystem failures.
            RunCancelled: If ``cancel_event`` was set mid-run.
        """
        manifest = self.store.load()
        targets = self.collect_targets(explicit_args)

        if not targets:
            logger.debug("No targets under %s", self.resolver.source_dir)
            if not dry_run:
                self.store.save(manifest)
            return RunResult(manifest=manifest, saved=not dry_run, dry_run=dry_run)

        logger.info(
            "Checking %d image(s) in %s (%d cached record(s))",
            len(targets),
            self.resolver.source_dir,
            len(manifest),
        )

        collisions = self.resolver.output_collisions(targets)
        for output, keys in collisions.items():
            logger.warning(
                "%s is written by %s; the last one processed wins", output, ", ".join(keys)
            )

        # Colliding outputs must not be written from two threads at once
        if self.config.workers > 1 and len(targets) > 1 and not collisions:
            results = self._process_parallel(targets, manifest, dry_run)
        else:
            results = self._process_sequential(targets, manifest, dry_run)

        updates, outcomes = self._fold(results)

        if dry_run:
            return RunResult(manifest=manifest, outcomes=outcomes, dry_run=True)

        self._check_cancelled()
        updated = manifest.with_records(updates)
        self.store.save(updated)

        result = RunResult(manifest=updated, outcomes=outcomes, saved=True)
        logger.info(
            "Updated %d, cached %d, skipped %d", result.processed, result.cached, result.skipped
        )
        return result

    @staticmethod
    def _fold(
        results: Iterable[tuple[Decision, FileOutcome]],
    ) -> tuple[dict[str, ManifestRecord], list[FileOutcome]]:
        """Accumulate manifest updates and outcomes in target order."""
        updates: dict[str, ManifestRecord] = {}
        outcomes: list[FileOutcome] = []
        for decision, outcome in results:
            outcomes.append(outcome)
            if decision.paths is None:
                continue
            if decision.needs_processing:
                updates[decision.paths.key] = decision.new_record()
            elif decision.record is not None:
                updates[decision.paths.key] = decision.record
        return updates, outcomes

    def _process_sequential(
        self, targets: list[Path], manifest: Manifest, dry_run: bool
    ) -> Iterator[tuple[Decision, FileOutcome]]:
        for source in targets:
            self._check_cancelled()
            yield self.process_one(source, manifest, dry_run)

    def _process_parallel(
        self, targets: list[Path], manifest: Manifest, dry_run: bool
    ) -> Iterator[tuple[Decision, FileOutcome]]:
        def task(source: Path) -> tuple[Decision, FileOutcome]:
            self._check_cancelled()
            return self.process_one(source, manifest, dry_run)

        with ThreadPoolExecutor(max_workers=self.config.workers) as pool:
            futures = [pool.submit(task, source) for source in targets]
            try:
                for future in futures:
                    yield future.result()
            finally:
                for future in futures:
                    future.cancel()

    def process_one(
        self, source: Path, manifest: Manifest, dry_run: bool = False
    ) -> tuple[Decision, FileOutcome]:
        """
        Decide and, on a miss, encode one source file.

        Does not touch the manifest; the caller folds the decision in.
        """
        decision = self.detector.decide(source, manifest)
        key = decision.paths.key if decision.paths else None

        if decision.skipped:
            logger.debug("Skipping %s (%s)", source, decision.reason.value)
            return decision, FileOutcome(source=source, reason=decision.reason)

        outputs: tuple[Path, ...] = ()
        if decision.needs_processing:
            if not dry_run:
                outputs = self._write_outputs(decision)
            logger.info("%s %s", "Would update" if dry_run else "Updated", key)

        return decision, FileOutcome(
            source=source, reason=decision.reason, key=key, outputs=outputs
        )

    def _write_outputs(self, decision: Decision) -> tuple[Path, ...]:
        paths = decision.paths
        paths.output.parent.mkdir(parents=True, exist_ok=True)

        # GIF and WebP are already in their final form
        if extension_of(decision.source) in PASSTHROUGH_EXTENSIONS:
            shutil.copyfile(decision.source, paths.output)
            return (paths.output,)

        source_bytes = decision.source.read_bytes()
        fmt = format_for(decision.source)
        paths.output.write_bytes(self._encode(source_bytes, fmt, paths.key))

        if paths.derivative is None:
            return (paths.output,)

        paths.derivative.write_bytes(self._encode(source_bytes, "webp", paths.key))
        return (paths.output, paths.derivative)

    def _encode(self, source_bytes: bytes, fmt: str, key: str) -> bytes:
        if not self.encoder.supports(fmt):
            raise EncoderError(f"{key}: encoder does not support {fmt}", fmt=fmt)
        try:
            return self.encoder.encode(source_bytes, fmt)
        except EncoderError as e:
            raise EncoderError(f"{key}: {e}", fmt=fmt) from e

    def _check_cancelled(self) -> None:
        if self.cancel_event is not None and self.cancel_event.is_set():
            raise RunCancelled("Run cancelled; manifest not saved")


def create_driver(
    config: PipelineConfig | None = None,
    encoder: Encoder | None = None,
    store: ManifestStore | None = None,
    cancel_event: threading.Event | None = None,
) -> PipelineDriver:
    """
    Create a pipeline driver with default collaborators.

    Args:
        config: Run configuration. Relative paths resolve against the
            current directory.
        encoder: Encoder to use. Defaults to a PillowEncoder built from the
            config's quality settings.
        store: Manifest store. Defaults to a JSON file at
            ``config.manifest_path``.
        cancel_event: Optional event checked between files.

    Returns:
        Configured PipelineDriver.
    """
    config = (config or PipelineConfig()).resolved()

    if encoder is None:
        from imageforge.encoders.pillow_encoder import PillowEncoder

        encoder = PillowEncoder(
            jpeg_quality=config.jpeg_quality,
            png_compress_level=config.png_compress_level,
            webp_quality=config.webp_quality,
        )

    return PipelineDriver(
        config=config,
        encoder=encoder,
        store=store or JsonManifestStore(config.manifest_path),
        cancel_event=cancel_event,
    )
