from __future__ import annotations

import json
from pathlib import Path

import pytest

from services.ota.constants import FAILED_UPDATES_KEY, PENDING_UPDATE_KEY
from services.ota.models import Package, PendingUpdate
from services.ota.state import JsonFileKeyValueStore, MemoryKeyValueStore, UpdateStateTracker


@pytest.fixture
def store() -> MemoryKeyValueStore:
    return MemoryKeyValueStore()


@pytest.fixture
def tracker(store: MemoryKeyValueStore) -> UpdateStateTracker:
    return UpdateStateTracker(store)


def test_pending_update_round_trips_through_store(tracker: UpdateStateTracker, store: MemoryKeyValueStore) -> None:
    tracker.save_pending_update("abc", is_loading=False)

    assert json.loads(store.get(PENDING_UPDATE_KEY)) == {"hash": "abc", "isLoading": False}
    assert tracker.get_pending_update() == PendingUpdate(hash="abc", is_loading=False)

    tracker.remove_pending_update()
    assert tracker.get_pending_update() is None


def test_is_pending_update_ignores_loading_records(tracker: UpdateStateTracker) -> None:
    assert tracker.is_pending_update() is False

    tracker.save_pending_update("abc", is_loading=False)
    assert tracker.is_pending_update() is True
    assert tracker.is_pending_update("abc") is True
    assert tracker.is_pending_update("other") is False

    tracker.save_pending_update("abc", is_loading=True)
    assert tracker.is_pending_update() is False
    assert tracker.is_pending_update("abc") is False


@pytest.mark.parametrize(
    "raw",
    ["{broken", json.dumps(["abc"]), json.dumps({"hash": 5, "isLoading": False}), json.dumps({"hash": "abc"})],
)
def test_malformed_pending_record_reads_as_absent(
    tracker: UpdateStateTracker,
    store: MemoryKeyValueStore,
    caplog: pytest.LogCaptureFixture,
    raw: str,
) -> None:
    store.set(PENDING_UPDATE_KEY, raw)

    with caplog.at_level("WARNING"):
        assert tracker.get_pending_update() is None

    assert tracker.is_pending_update() is False
    assert "Unable to parse pending update" in caplog.text


def test_failed_updates_are_deduplicated_by_hash(tracker: UpdateStateTracker) -> None:
    tracker.save_failed_update(Package(hash="abc", version_name="1.0.0"))
    tracker.save_failed_update(Package(hash="abc", version_name="1.0.1"))
    tracker.save_failed_update(Package(hash="def"))

    failed = tracker.get_failed_updates()

    assert [package.hash for package in failed] == ["abc", "def"]
    assert failed[0].version_name == "1.0.0"
    assert tracker.is_failed_hash("abc") is True
    assert tracker.is_failed_hash("xyz") is False
    assert tracker.is_failed_hash(None) is False


def test_corrupted_failed_updates_reset_and_are_replaced(
    tracker: UpdateStateTracker, store: MemoryKeyValueStore
) -> None:
    store.set(FAILED_UPDATES_KEY, "[{not json")

    assert tracker.get_failed_updates() == []
    assert store.get(FAILED_UPDATES_KEY) == "[]"

    tracker.save_failed_update(Package(hash="abc"))
    assert json.loads(store.get(FAILED_UPDATES_KEY)) == [{"packageHash": "abc"}]


def test_failed_updates_with_unexpected_shape_are_reset(
    tracker: UpdateStateTracker, store: MemoryKeyValueStore
) -> None:
    store.set(FAILED_UPDATES_KEY, json.dumps({"packageHash": "abc"}))

    assert tracker.get_failed_updates() == []
    assert tracker.is_failed_hash("abc") is False


def test_failed_entries_without_hash_are_skipped(tracker: UpdateStateTracker, store: MemoryKeyValueStore) -> None:
    store.set(FAILED_UPDATES_KEY, json.dumps([{"versionName": "1.0"}, {"packageHash": "abc", "note": "x"}]))

    failed = tracker.get_failed_updates()

    assert failed == [Package(hash="abc", extras={"note": "x"})]


def test_remove_failed_updates(tracker: UpdateStateTracker) -> None:
    tracker.save_failed_update(Package(hash="abc"))

    tracker.remove_failed_updates()

    assert tracker.get_failed_updates() == []


def test_json_file_store_persists_between_instances(tmp_path: Path) -> None:
    path = tmp_path / "state" / "OTAUpdater.json"
    first = UpdateStateTracker(JsonFileKeyValueStore(path))
    first.save_pending_update("abc", is_loading=True)
    first.save_failed_update(Package(hash="bad"))

    second = UpdateStateTracker(JsonFileKeyValueStore(path))

    assert second.get_pending_update() == PendingUpdate(hash="abc", is_loading=True)
    assert second.is_failed_hash("bad") is True
    assert not list(path.parent.glob(".OTAUpdater.json.*"))


def test_json_file_store_recovers_from_corrupt_file(tmp_path: Path, caplog: pytest.LogCaptureFixture) -> None:
    path = tmp_path / "OTAUpdater.json"
    path.write_text("not json", encoding="utf-8")
    store = JsonFileKeyValueStore(path)

    with caplog.at_level("WARNING"):
        assert store.get(PENDING_UPDATE_KEY) is None
    assert "Discarding unreadable update state" in caplog.text

    store.set("key", "value")
    assert json.loads(path.read_text(encoding="utf-8")) == {"key": "value"}

    store.remove("key")
    store.remove("missing")
    assert store.get("key") is None


def test_json_file_store_treats_undecodable_file_as_empty(tmp_path: Path) -> None:
    path = tmp_path / "OTAUpdater.json"
    path.write_bytes(b"\xff\xfe\x00garbage")
    tracker = UpdateStateTracker(JsonFileKeyValueStore(path))

    assert tracker.get_pending_update() is None
    assert tracker.get_failed_updates() == []

    tracker.save_pending_update("abc", is_loading=False)
    assert tracker.get_pending_update() == PendingUpdate(hash="abc", is_loading=False)
