"""Tests for the pipeline driver."""

import os
import sys
import threading

import pytest

from conftest import RecordingEncoder, set_mtime_ns
from imageforge.cache.detector import DecisionReason
from imageforge.encoders.base import EncoderError
from imageforge.manifest.record import Manifest, ManifestRecord
from imageforge.manifest.store import InMemoryManifestStore, JsonManifestStore
from imageforge.pipelines.runner import PipelineDriver, RunCancelled, create_driver


@pytest.fixture
def store():
    return InMemoryManifestStore()


@pytest.fixture
def driver(project, encoder, store):
    return create_driver(project.config(), encoder=encoder, store=store)


def snapshot(manifest):
    return {
        key: (rec.content_hash, rec.size, rec.modified_time)
        for key, rec in manifest.files.items()
    }


class TestFullRun:
    """Tests for processing a whole source tree."""

    def test_first_run_processes_everything(self, project, driver, encoder, store):
        project.add_source("a.jpg", b"jpeg")
        project.add_source("icons/b.svg", b"<svg/>")

        result = driver.run()

        assert result.processed == 2
        assert result.saved
        assert store.save_count == 1
        assert set(store.manifest.files) == {"a.jpg", "icons/b.svg"}

    def test_idempotent_second_run(self, project, driver, encoder, store):
        """A second run with no changes reprocesses nothing and keeps records."""
        project.add_source("a.jpg", b"jpeg")
        project.add_source("b.png", b"png")
        project.add_source("c.gif", b"gif")

        driver.run()
        first = snapshot(store.manifest)
        encoder.reset()

        result = driver.run()

        assert result.processed == 0
        assert result.cached == 3
        assert encoder.calls == []
        assert snapshot(store.manifest) == first
        assert store.save_count == 2

    def test_touched_file_not_reencoded(self, project, driver, encoder, store):
        """New mtime with same bytes refreshes the record without encoding."""
        source = project.add_source("a.png", b"png")
        driver.run()
        old = store.manifest.files["a.png"]
        encoder.reset()

        new_mtime = old.modified_time + 10_000_000_000
        set_mtime_ns(source, new_mtime)
        result = driver.run()

        assert result.processed == 0
        assert encoder.calls == []
        refreshed = store.manifest.files["a.png"]
        assert refreshed.modified_time == new_mtime
        assert refreshed.content_hash == old.content_hash
        assert refreshed.has_derivative is True

    def test_changed_content_reprocessed(self, project, driver, encoder, store):
        source = project.add_source("a.png", b"old")
        driver.run()
        old = store.manifest.files["a.png"]
        encoder.reset()

        source.write_bytes(b"new!")
        set_mtime_ns(source, old.modified_time + 1)
        result = driver.run()

        assert result.processed == 1
        assert encoder.formats == ["png", "webp"]
        assert store.manifest.files["a.png"].content_hash != old.content_hash
        assert project.output("a.png").read_bytes() == b"png:new!"

    def test_deleted_output_regenerated(self, project, driver, encoder, store):
        """Missing outputs are regenerated even though hash and stat match."""
        project.add_source("a.jpg", b"jpeg")
        driver.run()
        encoder.reset()

        project.output("a.webp").unlink()
        result = driver.run()

        assert result.processed == 1
        assert project.output("a.webp").exists()
        assert encoder.formats == ["jpeg", "webp"]

    def test_derivative_eligibility(self, project, driver, encoder, store):
        """JPEG/PNG get a WebP sibling; SVG only gets a primary output."""
        project.add_source("photo.jpeg", b"jpeg")
        project.add_source("logo.svg", b"<svg/>")

        result = driver.run()

        outputs = {o.key: o.outputs for o in result.outcomes}
        assert outputs["photo.jpeg"] == (project.output("photo.jpeg"), project.output("photo.webp"))
        assert outputs["logo.svg"] == (project.output("logo.svg"),)
        assert project.output("photo.jpeg").read_bytes() == b"jpeg:jpeg"
        assert project.output("photo.webp").read_bytes() == b"webp:jpeg"
        assert project.output("logo.svg").read_bytes() == b"svg:<svg/>"
        assert not project.output("logo.webp").exists()
        assert store.manifest.files["photo.jpeg"].has_derivative is True
        assert store.manifest.files["logo.svg"].has_derivative is False
        assert encoder.formats.count("webp") == 1

    def test_gif_and_webp_copied_without_encoder(self, project, driver, encoder, store):
        project.add_source("anim.gif", b"GIF89a")
        project.add_source("modern.webp", b"RIFF")

        result = driver.run()

        assert result.processed == 2
        assert encoder.calls == []
        assert project.output("anim.gif").read_bytes() == b"GIF89a"
        assert project.output("modern.webp").read_bytes() == b"RIFF"

    def test_unsupported_files_not_enumerated(self, project, driver, encoder):
        project.add_source("notes.txt", b"text")
        result = driver.run()
        assert result.nothing_to_do
        assert encoder.calls == []

    def test_corrupt_manifest_triggers_full_rebuild(self, project, encoder):
        """Invalid manifest text is treated as an empty cache."""
        project.add_source("a.png", b"png")
        project.manifest_path.write_text("{{{ definitely not json")
        driver = create_driver(project.config(), encoder=encoder)

        result = driver.run()

        assert result.processed == 1
        saved = JsonManifestStore(project.manifest_path).load()
        assert set(saved.files) == {"a.png"}

    @pytest.mark.skipif(not sys.platform.startswith("linux"), reason="needs byte file names")
    def test_undecodable_name_does_not_block_save(self, project, encoder):
        """A non-UTF-8 file name is skipped and the manifest still persists."""
        project.add_source(os.fsdecode(b"bad\xff.png"), b"bad")
        project.add_source("ok.png", b"png")
        driver = create_driver(project.config(), encoder=encoder)

        result = driver.run()

        assert result.processed == 1
        assert result.skipped == 1
        saved = JsonManifestStore(project.manifest_path).load()
        assert set(saved.files) == {"ok.png"}

        encoder.reset()
        assert driver.run().processed == 0
        assert encoder.calls == []

    def test_keeps_records_for_untargeted_files(self, project, driver, store):
        store.manifest = Manifest(
            files={"gone.png": ManifestRecord(content_hash="h", size=1, modified_time=1, has_derivative=True)}
        )
        project.add_source("a.png")
        driver.run()
        assert set(store.manifest.files) == {"a.png", "gone.png"}


class TestExplicitTargets:
    """Tests for runs restricted to explicit arguments."""

    def test_only_given_files_processed(self, project, driver, encoder, store):
        a = project.add_source("a.png")
        project.add_source("b.png")

        result = driver.run([str(a)])

        assert result.processed == 1
        assert set(store.manifest.files) == {"a.png"}

    def test_traversal_never_reaches_encoder(self, project, driver, encoder, store):
        """Paths outside the source root are dropped before detection."""
        outside = project.root / "secret.png"
        outside.write_bytes(b"secret")
        escape = str(project.source_dir / ".." / ".." / "secret.png")

        result = driver.run([escape, "../../etc/passwd"])

        assert result.nothing_to_do
        assert encoder.calls == []
        assert not project.output_dir.exists()

    def test_empty_target_set_still_saves(self, project, driver, encoder, store):
        """Nothing to do still attempts a save with the mapping unchanged."""
        existing = Manifest(
            files={"a.png": ManifestRecord(content_hash="h", size=1, modified_time=1, has_derivative=True)}
        )
        store.manifest = existing

        result = driver.run(["/etc/passwd"])

        assert result.nothing_to_do
        assert result.processed == 0
        assert encoder.calls == []
        assert store.save_count == 1
        assert store.manifest.files == existing.files

    def test_empty_source_tree(self, driver, encoder, store):
        result = driver.run()
        assert result.nothing_to_do
        assert store.save_count == 1

    def test_directory_argument_skipped(self, project, driver, encoder):
        (project.source_dir / "sub").mkdir()
        result = driver.run([str(project.source_dir / "sub")])
        assert result.skipped == 1
        assert result.processed == 0
        assert result.outcomes[0].reason is DecisionReason.NOT_A_FILE


class TestFailures:
    """Tests for batch abort behaviour."""

    def test_encoder_failure_aborts_without_save(self, project, store):
        """An encoder error propagates and the manifest is not saved."""
        project.add_source("a.svg", b"<svg/>")
        project.add_source("b.png", b"png")
        encoder = RecordingEncoder(fail_on={"webp"})
        driver = create_driver(project.config(), encoder=encoder, store=store)

        with pytest.raises(EncoderError) as excinfo:
            driver.run()

        assert "b.png" in str(excinfo.value)
        assert store.save_count == 0

    def test_previous_manifest_survives_failure(self, project):
        """A failed run leaves the last persisted manifest on disk."""
        project.add_source("a.png", b"png")
        create_driver(project.config(), encoder=RecordingEncoder()).run()
        before = project.manifest_path.read_text()

        project.add_source("b.png", b"png2")
        failing = create_driver(project.config(), encoder=RecordingEncoder(fail_on={"png"}))
        with pytest.raises(EncoderError):
            failing.run()

        assert project.manifest_path.read_text() == before

    def test_worker_failure_aborts_without_save(self, project, store):
        """An encoder error raised in a pooled task propagates."""
        for i in range(6):
            project.add_source(f"img{i}.png", f"png{i}".encode())
        project.add_source("broken.svg", b"<svg/>")
        encoder = RecordingEncoder(fail_on={"svg"})
        driver = create_driver(project.config(workers=3), encoder=encoder, store=store)

        with pytest.raises(EncoderError) as excinfo:
            driver.run()

        assert "broken.svg" in str(excinfo.value)
        assert store.save_count == 0

    def test_unsupported_encoder_format(self, project, store):
        class JpegOnly(RecordingEncoder):
            def supports(self, fmt):
                return fmt == "jpeg"

        project.add_source("a.png", b"png")
        driver = create_driver(project.config(), encoder=JpegOnly(), store=store)
        with pytest.raises(EncoderError):
            driver.run()
        assert store.save_count == 0


class TestRunModes:
    """Tests for dry run, workers and cancellation."""

    def test_dry_run_writes_nothing(self, project, driver, encoder, store):
        project.add_source("a.png")

        result = driver.run(dry_run=True)

        assert result.dry_run
        assert result.processed == 1
        assert encoder.calls == []
        assert store.save_count == 0
        assert not project.output_dir.exists()

    def test_parallel_matches_sequential(self, project, encoder, store):
        """Worker threads produce the same manifest and a single save."""
        for i in range(12):
            project.add_source(f"dir{i % 3}/img{i}.png", f"png{i}".encode())
        project.add_source("vector.svg", b"<svg/>")

        driver = create_driver(project.config(workers=4), encoder=encoder, store=store)
        result = driver.run()

        assert result.processed == 13
        assert store.save_count == 1
        assert len(store.manifest) == 13
        assert [o.key for o in result.outcomes] == sorted(o.key for o in result.outcomes)
        assert encoder.formats.count("webp") == 12

        encoder.reset()
        assert driver.run().processed == 0

    def test_cancel_skips_save(self, project, encoder, store):
        project.add_source("a.png")
        project.add_source("b.png")
        cancel = threading.Event()

        class CancelAfterFirst(RecordingEncoder):
            def encode(self, source, fmt):
                cancel.set()
                return super().encode(source, fmt)

        driver = PipelineDriver(
            config=project.config().resolved(),
            encoder=CancelAfterFirst(),
            store=store,
            cancel_event=cancel,
        )

        with pytest.raises(RunCancelled):
            driver.run()
        assert store.save_count == 0

    def test_force_reprocesses_cached(self, project, encoder, store):
        project.add_source("a.png")
        create_driver(project.config(), encoder=encoder, store=store).run()
        encoder.reset()

        result = create_driver(project.config(force=True), encoder=encoder, store=store).run()
        assert result.processed == 1
        assert encoder.formats == ["png", "webp"]

    def test_colliding_outputs_written_in_order(self, project, encoder, store):
        """Sources sharing a WebP output are processed one at a time, in target order."""
        project.add_source("a.jpg", b"jpeg")
        project.add_source("a.png", b"png")
        project.add_source("b.png", b"other")

        driver = create_driver(project.config(workers=4), encoder=encoder, store=store)
        result = driver.run()

        assert result.processed == 3
        assert [fmt for src, fmt in encoder.calls if src != b"other"] == ["jpeg", "webp", "png", "webp"]
        assert project.output("a.webp").read_bytes() == b"webp:png"
        assert store.save_count == 1
