"""Tests for the persisted watch registry."""

import json
import tempfile
from pathlib import Path
from unittest.mock import patch

import pytest

from watchsync.exceptions import StateLoadError, StateSaveError
from watchsync.sync.fingerprint import FileFingerprint, FingerprintMode
from watchsync.sync.modes import SyncMode
from watchsync.sync.state import (
    Registry,
    StateStore,
    WatchEntry,
    canonical_local_path,
    watch_id_for,
)


@pytest.fixture
def temp_dir():
    """Create a temporary directory for testing."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir).resolve()


@pytest.fixture
def store(temp_dir):
    return StateStore(temp_dir / "state" / "sync_config.json")


def _add(store: StateStore, entry: WatchEntry) -> None:
    with store.transaction() as registry:
        registry.watches[entry.id] = entry


class TestWatchId:
    def test_stable_for_equivalent_paths(self, temp_dir):
        assert watch_id_for(temp_dir) == watch_id_for(str(temp_dir) + "/")
        assert watch_id_for(temp_dir / "a" / "..") == watch_id_for(temp_dir)

    def test_differs_per_path(self, temp_dir):
        assert watch_id_for(temp_dir / "a") != watch_id_for(temp_dir / "b")

    def test_canonical_path_is_absolute(self):
        assert Path(canonical_local_path("relative/dir")).is_absolute()


class TestWatchEntry:
    def test_effective_fingerprint_forced_for_encrypted(self):
        entry = WatchEntry(
            local="/data", remote="/r", key="k", fingerprint=FingerprintMode.METADATA
        )
        assert entry.effective_fingerprint == FingerprintMode.CONTENT

    def test_effective_fingerprint_forced_for_anonymized(self):
        entry = WatchEntry(
            local="/data",
            remote="/r",
            anonymize_names=True,
            fingerprint=FingerprintMode.METADATA,
        )
        assert entry.effective_fingerprint == FingerprintMode.CONTENT

    def test_effective_fingerprint_metadata(self):
        entry = WatchEntry(
            local="/data", remote="/r", fingerprint=FingerprintMode.METADATA
        )
        assert entry.effective_fingerprint == FingerprintMode.METADATA

    def test_to_dict_omits_unset_optionals(self):
        data = WatchEntry(local="/data", remote="/r").to_dict()
        assert "key" not in data
        assert "method" not in data
        assert "name_map" not in data
        assert data["mode"] == "incremental"
        assert data["files"] == {}

    def test_from_dict_round_trip(self):
        entry = WatchEntry(
            local="/data",
            remote="/r",
            interval=30,
            key="secret",
            method="aes-256-cfb",
            ignore_file="rules",
            anonymize_names=True,
            mode=SyncMode.BUNDLE,
            bundle_name="n1",
            files={"a.txt": FileFingerprint(1, 2, "h")},
            name_map={"uuid-1": "a.txt"},
        )
        assert WatchEntry.from_dict(entry.to_dict()) == entry

    def test_anonymized_name_lookup(self):
        entry = WatchEntry(local="/d", remote="/r", name_map={"n1": "a.txt"})
        assert entry.anonymized_name_for("a.txt") == "n1"
        assert entry.anonymized_name_for("b.txt") is None


class TestStateStore:
    def test_missing_file_gives_empty_registry(self, store):
        assert store.load().watches == {}

    def test_empty_file_gives_empty_registry(self, store):
        store.path.parent.mkdir(parents=True)
        store.path.write_text("  \n")
        assert store.load().watches == {}

    def test_corrupt_file_raises(self, store):
        store.path.parent.mkdir(parents=True)
        store.path.write_text("{not json")
        with pytest.raises(StateLoadError):
            store.load()

    def test_transaction_persists(self, store, temp_dir):
        entry = WatchEntry(local=str(temp_dir), remote="/r")
        _add(store, entry)

        data = json.loads(store.path.read_text())
        assert entry.id in data["watches"]
        assert data["watches"][entry.id]["remote"] == "/r"

        reloaded = StateStore(store.path).load()
        assert reloaded.watches[entry.id] == entry

    def test_transaction_not_saved_on_error(self, store, temp_dir):
        with pytest.raises(RuntimeError):
            with store.transaction() as registry:
                registry.watches["x"] = WatchEntry(local=str(temp_dir), remote="/r")
                raise RuntimeError("boom")
        assert not store.path.exists()

    def test_no_temp_files_left(self, store, temp_dir):
        _add(store, WatchEntry(local=str(temp_dir), remote="/r"))
        assert [p.name for p in store.path.parent.iterdir()] == [store.path.name]

    def test_save_failure_raises_state_save_error(self, store, temp_dir):
        _add(store, WatchEntry(local=str(temp_dir), remote="/r"))
        with patch("watchsync.sync.state.os.replace", side_effect=OSError("disk full")):
            with pytest.raises(StateSaveError):
                store.save()
        # Previous document is intact
        assert json.loads(store.path.read_text())["watches"]

    def test_record_file_state(self, store, temp_dir):
        entry = WatchEntry(local=str(temp_dir), remote="/r")
        _add(store, entry)
        fp = FileFingerprint(10, 20, "h")

        assert store.record_file_state(entry.id, "sub/a.txt", fp) is True
        assert store.get_file_state(entry.id, "sub/a.txt") == fp

        data = json.loads(store.path.read_text())
        assert data["watches"][entry.id]["files"]["sub/a.txt"] == {
            "mod_time": 10,
            "size": 20,
            "md5": "h",
        }

    def test_record_file_state_for_deleted_watch(self, store):
        assert store.record_file_state("gone", "a.txt", FileFingerprint(1, 1)) is False

    def test_assign_anonymized_name_is_stable(self, store, temp_dir):
        entry = WatchEntry(local=str(temp_dir), remote="/r")
        _add(store, entry)

        first = store.assign_anonymized_name(entry.id, "a.txt")
        second = store.assign_anonymized_name(entry.id, "a.txt")
        other = store.assign_anonymized_name(entry.id, "b.txt")

        assert first == second
        assert first != other
        reloaded = StateStore(store.path).load().watches[entry.id]
        assert reloaded.name_map == {first: "a.txt", other: "b.txt"}

    def test_assign_anonymized_name_unknown_watch(self, store):
        with pytest.raises(KeyError):
            store.assign_anonymized_name("missing", "a.txt")

    def test_assign_bundle_name_is_stable(self, store, temp_dir):
        entry = WatchEntry(local=str(temp_dir), remote="/r", mode=SyncMode.BUNDLE)
        _add(store, entry)
        name = store.assign_bundle_name(entry.id)
        assert store.assign_bundle_name(entry.id) == name
        assert StateStore(store.path).load().watches[entry.id].bundle_name == name

    def test_unsaved_changes_survive_refresh(self, store, temp_dir):
        entry = WatchEntry(local=str(temp_dir), remote="/r")
        _add(store, entry)
        fp = FileFingerprint(1, 2, "h")
        with patch("watchsync.sync.state.os.replace", side_effect=OSError("disk full")):
            with pytest.raises(StateSaveError):
                store.record_file_state(entry.id, "a.txt", fp)

        assert store.get_watch(entry.id).files == {"a.txt": fp}
        assert store.record_file_state(entry.id, "b.txt", fp) is True
        files = StateStore(store.path).load().watches[entry.id].files
        assert set(files) == {"a.txt", "b.txt"}


class TestSharedStateFile:
    """Two stores on one file must not erase each other's updates."""

    @pytest.fixture
    def stores(self, store):
        return store, StateStore(store.path)

    def test_record_keeps_watch_added_elsewhere(self, stores, temp_dir):
        first, second = stores
        w1 = WatchEntry(local=str(temp_dir / "w1"), remote="/r1")
        w2 = WatchEntry(local=str(temp_dir / "w2"), remote="/r2")
        _add(first, w1)
        _add(second, w2)

        assert first.record_file_state(w1.id, "x.txt", FileFingerprint(1, 1)) is True

        watches = StateStore(first.path).load().watches
        assert set(watches) == {w1.id, w2.id}
        assert "x.txt" in watches[w1.id].files

    def test_interleaved_file_records(self, stores, temp_dir):
        first, second = stores
        w1 = WatchEntry(local=str(temp_dir / "w1"), remote="/r1")
        w2 = WatchEntry(local=str(temp_dir / "w2"), remote="/r2")
        _add(first, w1)
        _add(first, w2)

        first.record_file_state(w1.id, "a.txt", FileFingerprint(1, 1))
        second.record_file_state(w2.id, "b.txt", FileFingerprint(2, 2))
        first.record_file_state(w1.id, "c.txt", FileFingerprint(3, 3))

        watches = StateStore(first.path).load().watches
        assert set(watches[w1.id].files) == {"a.txt", "c.txt"}
        assert set(watches[w2.id].files) == {"b.txt"}

    def test_assign_name_keeps_other_updates(self, stores, temp_dir):
        first, second = stores
        w1 = WatchEntry(local=str(temp_dir / "w1"), remote="/r1")
        _add(first, w1)
        second.record_file_state(w1.id, "a.txt", FileFingerprint(1, 1))

        name = first.assign_anonymized_name(w1.id, "b.txt")

        reloaded = StateStore(first.path).load().watches[w1.id]
        assert "a.txt" in reloaded.files
        assert reloaded.name_map == {name: "b.txt"}

    def test_get_watch_sees_removal_elsewhere(self, stores, temp_dir):
        first, second = stores
        w1 = WatchEntry(local=str(temp_dir), remote="/r")
        _add(first, w1)
        assert first.get_watch(w1.id) is not None

        with second.transaction() as registry:
            del registry.watches[w1.id]

        assert first.get_watch(w1.id) is None
        assert first.record_file_state(w1.id, "a.txt", FileFingerprint(1, 1)) is False


class TestRegistry:
    def test_get_by_local_path(self, temp_dir):
        entry = WatchEntry(local=str(temp_dir), remote="/r")
        registry = Registry({entry.id: entry})
        assert registry.get(temp_dir) is entry
        assert registry.get(temp_dir / "other") is None

    def test_from_dict_empty(self):
        assert Registry.from_dict({}).watches == {}
