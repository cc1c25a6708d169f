"""Tests for the sync engine."""

import os
import tempfile
import threading
import time
import zipfile
from pathlib import Path
from unittest.mock import Mock, patch

import pytest

from watchsync.crypto import decrypt_file
from watchsync.exceptions import StateSaveError, UploadError, WatchNotFoundError
from watchsync.sync.comparator import ChangeDetector, SyncAction
from watchsync.sync.engine import SyncEngine
from watchsync.sync.fingerprint import FingerprintMode
from watchsync.sync.ignore import IGNORE_FILE_NAME, IgnoreRuleSet
from watchsync.sync.modes import SyncMode
from watchsync.sync.operations import SyncOperations
from watchsync.sync.scheduler import WatchScheduler, join_tasks
from watchsync.sync.state import StateStore, WatchEntry


class RecordingUploader:
    """Uploader double that keeps a copy of every uploaded artifact."""

    def __init__(self, fail_names=()):
        self.calls = []
        self.fail_names = set(fail_names)

    def upload(self, local_path, remote_dir):
        if local_path.name in self.fail_names:
            raise UploadError(f"rejected {local_path.name}")
        self.calls.append((local_path, remote_dir, local_path.read_bytes()))
        return None

    @property
    def targets(self):
        return [(path.name, remote_dir) for path, remote_dir, _ in self.calls]


class SlowUploader(RecordingUploader):
    """Uploader double that takes a while and tracks overlapping uploads."""

    def __init__(self, delay):
        super().__init__()
        self.delay = delay
        self.active = 0
        self.max_active = 0
        self._lock = threading.Lock()

    def upload(self, local_path, remote_dir):
        with self._lock:
            self.active += 1
            self.max_active = max(self.max_active, self.active)
        try:
            time.sleep(self.delay)
            return super().upload(local_path, remote_dir)
        finally:
            with self._lock:
                self.active -= 1


@pytest.fixture
def temp_dir():
    """Create a temporary directory for testing."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir).resolve()


@pytest.fixture
def root(temp_dir):
    path = temp_dir / "docs"
    path.mkdir()
    (path / "a.txt").write_text("alpha")
    (path / "sub").mkdir()
    (path / "sub" / "b.txt").write_text("beta")
    return path


@pytest.fixture
def work_dir(temp_dir):
    path = temp_dir / "work"
    path.mkdir()
    return path


@pytest.fixture
def store(temp_dir):
    return StateStore(temp_dir / "state.json")


@pytest.fixture
def uploader():
    return RecordingUploader()


@pytest.fixture
def engine(store, uploader, work_dir):
    return SyncEngine(store, SyncOperations(uploader), temp_dir=work_dir)


def _register(store: StateStore, **kwargs) -> WatchEntry:
    entry = WatchEntry(**kwargs)
    with store.transaction() as registry:
        registry.watches[entry.id] = entry
    return entry


def _touch_later(path: Path, content: str) -> None:
    """Rewrite a file and move its mtime forward so metadata changes are visible."""
    stat = path.stat()
    path.write_text(content)
    os.utime(path, (stat.st_atime + 10, stat.st_mtime + 10))


class TestChangeDetector:
    def test_new_file_is_uploaded(self, root):
        decision = ChangeDetector().evaluate(root / "a.txt", "a.txt")
        assert decision.action == SyncAction.UPLOAD
        assert decision.reason == "New local file"

    def test_unchanged_file_is_skipped(self, root):
        detector = ChangeDetector()
        first = detector.evaluate(root / "a.txt", "a.txt")
        second = detector.evaluate(root / "a.txt", "a.txt", first.fingerprint)
        assert second.action == SyncAction.SKIP

    def test_ignored_file(self, root):
        detector = ChangeDetector(IgnoreRuleSet.from_lines(["a.txt"]))
        assert detector.evaluate(root / "a.txt", "a.txt").action == SyncAction.IGNORE

    def test_changed_content_reason(self, root):
        detector = ChangeDetector()
        first = detector.evaluate(root / "a.txt", "a.txt")
        (root / "a.txt").write_text("ALPHA")
        second = detector.evaluate(root / "a.txt", "a.txt", first.fingerprint)
        assert second.action == SyncAction.UPLOAD
        assert second.reason.startswith("Content changed")


class TestIncrementalSync:
    def test_first_pass_uploads_everything(self, engine, store, root, uploader):
        watch = _register(store, local=str(root), remote="/remote")

        stats = engine.run_pass(watch.id)

        assert stats["uploads"] == 2
        assert stats["failures"] == 0
        assert sorted(uploader.targets) == [
            ("a.txt", "/remote"),
            ("b.txt", "/remote/sub"),
        ]
        files = store.load().watches[watch.id].files
        assert set(files) == {"a.txt", "sub/b.txt"}
        assert files["a.txt"].md5 is not None

    def test_second_pass_uploads_nothing(self, engine, store, root, uploader):
        watch = _register(store, local=str(root), remote="/remote")
        engine.run_pass(watch.id)
        uploader.calls.clear()

        stats = engine.run_pass(watch.id)

        assert stats["uploads"] == 0
        assert stats["skips"] == 2
        assert uploader.calls == []

    def test_changed_file_is_uploaded_again(self, engine, store, root, uploader):
        watch = _register(store, local=str(root), remote="/remote")
        engine.run_pass(watch.id)
        uploader.calls.clear()

        (root / "a.txt").write_text("alpha v2")
        stats = engine.run_pass(watch.id)

        assert stats["uploads"] == 1
        assert uploader.targets == [("a.txt", "/remote")]
        assert uploader.calls[0][2] == b"alpha v2"

    def test_deleted_file_is_not_propagated(self, engine, store, root, uploader):
        watch = _register(store, local=str(root), remote="/remote")
        engine.run_pass(watch.id)
        uploader.calls.clear()

        (root / "sub" / "b.txt").unlink()
        stats = engine.run_pass(watch.id)

        assert stats == {
            "uploads": 0,
            "skips": 1,
            "ignored": 0,
            "failures": 0,
            "cancelled": False,
        }
        assert uploader.calls == []
        # The stale entry stays: deletions are not tracked
        assert "sub/b.txt" in store.load().watches[watch.id].files

    def test_ignored_files_get_no_state(self, engine, store, root, uploader):
        (root / IGNORE_FILE_NAME).write_text("*.log\n")
        (root / "sub" / "debug.log").write_text("noise")
        watch = _register(store, local=str(root), remote="/remote")

        stats = engine.run_pass(watch.id)

        assert stats["ignored"] == 1
        assert ("debug.log", "/remote/sub") not in uploader.targets
        assert "sub/debug.log" not in store.load().watches[watch.id].files

        # Still ignored, never skipped, on the next pass
        stats = engine.run_pass(watch.id)
        assert stats["ignored"] == 1

    def test_ignored_directory(self, engine, store, root, uploader):
        (root / "rules").write_text("sub/\n")
        watch = _register(store, local=str(root), remote="/r", ignore_file="rules")

        engine.run_pass(watch.id)

        assert "b.txt" not in [name for name, _ in uploader.targets]

    def test_negated_extension_below_ignore_all(self, engine, store, root, uploader):
        (root / "rules").write_text("*\n!*.txt\n")
        (root / "sub" / "c.bin").write_bytes(b"\x00")
        watch = _register(store, local=str(root), remote="/r", ignore_file="rules")

        stats = engine.run_pass(watch.id)

        assert sorted(uploader.targets) == [("a.txt", "/r"), ("b.txt", "/r/sub")]
        assert stats["ignored"] == 2

    def test_failed_upload_is_retried_next_pass(self, store, root, work_dir):
        uploader = RecordingUploader(fail_names={"b.txt"})
        engine = SyncEngine(store, SyncOperations(uploader), temp_dir=work_dir)
        watch = _register(store, local=str(root), remote="/remote")

        stats = engine.run_pass(watch.id)

        assert stats["uploads"] == 1
        assert stats["failures"] == 1
        assert "sub/b.txt" not in store.load().watches[watch.id].files

        uploader.fail_names.clear()
        uploader.calls.clear()
        stats = engine.run_pass(watch.id)
        assert uploader.targets == [("b.txt", "/remote/sub")]

    def test_false_return_counts_as_failure(self, store, root, work_dir):
        uploader = Mock()
        uploader.upload.return_value = False
        engine = SyncEngine(store, SyncOperations(uploader), temp_dir=work_dir)
        watch = _register(store, local=str(root), remote="/remote")

        stats = engine.run_pass(watch.id)

        assert stats["failures"] == 2
        assert store.load().watches[watch.id].files == {}

    def test_state_save_failure_keeps_pass_going(self, engine, store, root, uploader):
        watch = _register(store, local=str(root), remote="/remote")

        with patch.object(
            store, "record_file_state", side_effect=StateSaveError("disk full")
        ):
            stats = engine.run_pass(watch.id)

        assert stats["uploads"] == 2
        assert len(uploader.calls) == 2

    def test_cancelled_pass(self, engine, store, root, uploader):
        watch = _register(store, local=str(root), remote="/remote")
        cancel = threading.Event()
        cancel.set()

        stats = engine.run_pass(watch.id, cancel)

        assert stats["cancelled"] is True
        assert uploader.calls == []

    def test_walk_failure(self, store, root, work_dir, uploader):
        walk = Mock(side_effect=PermissionError("denied"))
        engine = SyncEngine(
            store, SyncOperations(uploader), walk=walk, temp_dir=work_dir
        )
        watch = _register(store, local=str(root), remote="/remote")

        stats = engine.run_pass(watch.id)

        assert stats["failures"] == 1
        assert uploader.calls == []

    def test_unknown_watch(self, engine):
        with pytest.raises(WatchNotFoundError):
            engine.run_pass("does-not-exist")

    def test_metadata_mode(self, engine, store, root, uploader):
        watch = _register(
            store,
            local=str(root),
            remote="/remote",
            fingerprint=FingerprintMode.METADATA,
        )
        engine.run_pass(watch.id)
        assert store.load().watches[watch.id].files["a.txt"].md5 is None
        uploader.calls.clear()

        _touch_later(root / "a.txt", "alpha v2")
        stats = engine.run_pass(watch.id)

        assert stats["uploads"] == 1
        assert uploader.targets == [("a.txt", "/remote")]

    def test_encrypted_upload(self, engine, store, root, uploader, work_dir):
        watch = _register(
            store, local=str(root), remote="/remote", key="k", method="aes-128-cfb"
        )

        engine.run_pass(watch.id)

        assert sorted(uploader.targets) == [
            ("a.txt.encrypted", "/remote"),
            ("b.txt.encrypted", "/remote/sub"),
        ]
        payload = dict((p.name, data) for p, _, data in uploader.calls)
        encrypted = work_dir / "check.enc"
        encrypted.write_bytes(payload["a.txt.encrypted"])
        decrypt_file(encrypted, work_dir / "check.txt", "k", "aes-128-cfb")
        assert (work_dir / "check.txt").read_text() == "alpha"
        # Only the files written by this test remain
        assert sorted(p.name for p in work_dir.iterdir()) == ["check.enc", "check.txt"]

    def test_anonymized_names_are_stable(self, engine, store, root, uploader):
        watch = _register(
            store, local=str(root), remote="/remote", key="k", anonymize_names=True
        )

        engine.run_pass(watch.id)
        first = dict(uploader.targets)
        uploader.calls.clear()

        (root / "a.txt").write_text("alpha v2")
        engine.run_pass(watch.id)

        assert len(uploader.calls) == 1
        name, remote_dir = uploader.targets[0]
        assert first[name] == remote_dir == "/remote"
        assert "a.txt" not in name
        assert store.load().watches[watch.id].name_map[name] == "a.txt"


class TestBundleSync:
    def test_bundle_uploads_archive(self, engine, store, root, uploader, work_dir):
        watch = _register(
            store, local=str(root), remote="/remote", mode=SyncMode.BUNDLE
        )

        stats = engine.run_pass(watch.id)

        assert stats["uploads"] == 1
        assert uploader.targets == [("docs.zip", "/remote")]
        archive = work_dir / "check.zip"
        archive.write_bytes(uploader.calls[0][2])
        with zipfile.ZipFile(archive) as zf:
            assert sorted(zf.namelist()) == ["a.txt", "sub/b.txt"]
        assert store.load().watches[watch.id].files == {}

    def test_bundle_reuploads_every_pass(self, engine, store, root, uploader):
        watch = _register(
            store, local=str(root), remote="/remote", mode=SyncMode.BUNDLE
        )
        engine.run_pass(watch.id)
        engine.run_pass(watch.id)
        assert uploader.targets == [("docs.zip", "/remote")] * 2

    def test_bundle_anonymized_name_reused(self, engine, store, root, uploader):
        watch = _register(
            store,
            local=str(root),
            remote="/remote",
            mode=SyncMode.BUNDLE,
            key="k",
            anonymize_names=True,
        )

        engine.run_pass(watch.id)
        engine.run_pass(watch.id)

        names = [name for name, _ in uploader.targets]
        assert len(names) == 2
        assert names[0] == names[1]
        assert names[0] == store.load().watches[watch.id].bundle_name

    def test_bundle_temp_files_removed(self, engine, store, root, uploader, work_dir):
        watch = _register(
            store, local=str(root), remote="/remote", mode=SyncMode.BUNDLE, key="k"
        )
        engine.run_pass(watch.id)
        assert uploader.targets == [("docs.zip.encrypted", "/remote")]
        assert list(work_dir.iterdir()) == []
        assert sorted(p.name for p in root.iterdir()) == ["a.txt", "sub"]

    def test_bundle_upload_failure(self, store, root, work_dir):
        uploader = RecordingUploader(fail_names={"docs.zip"})
        engine = SyncEngine(store, SyncOperations(uploader), temp_dir=work_dir)
        watch = _register(
            store, local=str(root), remote="/remote", mode=SyncMode.BUNDLE
        )

        stats = engine.run_pass(watch.id)

        assert stats["failures"] == 1
        assert stats["uploads"] == 0
        assert list(work_dir.iterdir()) == []


class TestPassSerialization:
    def test_restart_waits_for_cancelled_pass(self, store, root, work_dir):
        (root / "c.txt").write_text("gamma")
        uploader = SlowUploader(delay=0.3)
        engine = SyncEngine(store, SyncOperations(uploader), temp_dir=work_dir)
        watch = _register(store, local=str(root), remote="/remote", interval=3600)
        scheduler = WatchScheduler(engine)

        scheduler.start(watch)
        time.sleep(0.1)
        old = scheduler.stop(watch.id)
        new = scheduler.start(watch)
        try:
            deadline = time.monotonic() + 10
            while (
                len(store.get_watch(watch.id).files) < 3
                and time.monotonic() < deadline
            ):
                time.sleep(0.05)
        finally:
            scheduler.stop_all()
            join_tasks([old, new], timeout=5)

        assert uploader.max_active == 1
        assert sorted(name for name, _ in uploader.targets) == [
            "a.txt",
            "b.txt",
            "c.txt",
        ]

    def test_concurrent_run_pass_calls_are_serialized(self, store, root, work_dir):
        uploader = SlowUploader(delay=0.2)
        engine = SyncEngine(store, SyncOperations(uploader), temp_dir=work_dir)
        watch = _register(store, local=str(root), remote="/remote")
        results = []

        threads = [
            threading.Thread(target=lambda: results.append(engine.run_pass(watch.id)))
            for _ in range(2)
        ]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join(10)

        assert uploader.max_active == 1
        assert sorted(stats["uploads"] for stats in results) == [0, 2]
