from __future__ import annotations

import sqlite3

from ct_discoverer.engine.collection import CollectionManager, merge_collections, merge_group
from ct_discoverer.engine.models import Collection, Group, GroupStatus, ItemStatus, WorkItem


class RecordingLogger:
    def __init__(self) -> None:
        self.events: list[tuple[str, str, dict]] = []

    def _log(self, level: str, event: str, **fields) -> None:
        self.events.append((level, event, fields))

    def info(self, event: str, **fields) -> None:
        self._log("info", event, **fields)

    def warning(self, event: str, **fields) -> None:
        self._log("warning", event, **fields)

    def error(self, event: str, **fields) -> None:
        self._log("error", event, **fields)

    def names(self) -> list[str]:
        return [event for _, event, _ in self.events]


class BrokenStore:
    def load(self):
        raise sqlite3.OperationalError("disk I/O error")

    def save(self, payload) -> int:
        raise sqlite3.OperationalError("database is locked")

    def clear(self) -> None:
        raise sqlite3.OperationalError("database is locked")

    def destroy(self) -> None:
        raise sqlite3.OperationalError("database is locked")


def test_merge_adds_unseen_codes_and_keeps_progress(make_group) -> None:
    existing = make_group(
        codes=("411001", "411002"),
        items=(WorkItem(code="411001", status=ItemStatus.SCANNED), WorkItem(code="411002")),
        weight=100,
        status=GroupStatus.STOPPED,
    )
    incoming = make_group(codes=("411002", "411003"), weight=200)
    merged = merge_collections(Collection(groups={"Maharashtra": (existing,)}), [incoming])
    pune = merged.get("Maharashtra", "Pune")
    assert pune.codes == ("411001", "411002", "411003")
    assert pune.item("411001").status is ItemStatus.SCANNED
    assert pune.item("411003").status is ItemStatus.PENDING
    assert pune.weight == 200


def test_merge_reuses_untouched_groups(make_group) -> None:
    existing = make_group(weight=500)
    assert merge_group(existing, make_group(weight=100)) is existing


def test_merge_sorts_labels_and_groups(make_group) -> None:
    groups = [
        make_group(name="Pune", label="Maharashtra"),
        make_group(name="Chennai", label="Tamil Nadu", codes=("600001",)),
        make_group(name="Mumbai", label="Maharashtra", codes=("400001",)),
    ]
    merged = merge_collections(Collection(), groups)
    assert merged.labels == ["Maharashtra", "Tamil Nadu"]
    assert [group.name for group in merged.groups["Maharashtra"]] == ["Mumbai", "Pune"]


def test_merge_into_completed_group_reopens_it(make_group) -> None:
    completed = make_group(
        codes=("411001",),
        items=(WorkItem(code="411001", status=ItemStatus.SCANNED),),
        status=GroupStatus.COMPLETED,
    )
    merged = merge_group(completed, make_group(codes=("411001", "411002")))
    assert merged.status is GroupStatus.STOPPED
    assert merged.item("411002").status is ItemStatus.PENDING


def test_manager_persists_and_reloads(snapshot_store, make_group, make_record) -> None:
    manager = CollectionManager(store=snapshot_store)
    manager.merge([make_group()])
    manager.apply(
        "Maharashtra",
        "Pune",
        lambda group: group.model_copy(
            update={"results": (make_record("Ruby Hall", map_link="https://maps.example/1"),), "result_count": 1}
        ),
    )
    stored = snapshot_store.load()
    assert stored["groups"]["Maharashtra"][0]["results"][0]["centerName"] == "Ruby Hall"
    assert stored["groups"]["Maharashtra"][0]["results"][0]["mapLink"] == "https://maps.example/1"

    reloaded = CollectionManager(store=snapshot_store)
    collection = reloaded.load()
    group = collection.get("Maharashtra", "Pune")
    assert group.result_count == 1
    assert group.results[0].map_link == "https://maps.example/1"


def test_manager_recovers_interrupted_runs_on_load(snapshot_store, make_group) -> None:
    running = make_group(
        items=(WorkItem(code="411001", status=ItemStatus.SCANNING), WorkItem(code="411002")),
        status=GroupStatus.RUNNING,
    )
    snapshot_store.save(Collection(groups={"Maharashtra": (running,)}).model_dump(mode="json", by_alias=True))
    group = CollectionManager(store=snapshot_store).load().get("Maharashtra", "Pune")
    assert group.status is GroupStatus.STOPPED
    assert group.item("411001").status is ItemStatus.PENDING


def test_manager_load_without_snapshot_is_empty(snapshot_store) -> None:
    assert CollectionManager(store=snapshot_store).load().is_empty


def test_manager_logs_invalid_snapshot(snapshot_store) -> None:
    snapshot_store.save({"groups": {"X": [{"name": "broken"}]}})
    logger = RecordingLogger()
    collection = CollectionManager(store=snapshot_store, logger=logger).load()
    assert collection.is_empty
    assert "snapshot_invalid" in logger.names()


def test_manager_swallows_persistence_failures(make_group) -> None:
    logger = RecordingLogger()
    manager = CollectionManager(store=BrokenStore(), logger=logger)
    assert manager.load().is_empty
    manager.merge([make_group()])
    assert manager.collection.get("Maharashtra", "Pune") is not None
    assert "snapshot_load_failed" in logger.names()
    assert "snapshot_save_failed" in logger.names()


def test_reset_clears_snapshot(snapshot_store, make_group) -> None:
    manager = CollectionManager(store=snapshot_store)
    manager.merge([make_group()])
    assert snapshot_store.db_path.exists()
    manager.reset()
    assert manager.collection.is_empty
    assert not snapshot_store.db_path.exists()
    assert snapshot_store.load() is None
    assert CollectionManager(store=snapshot_store).load().is_empty


def test_reset_survives_storage_failure(make_group) -> None:
    logger = RecordingLogger()
    manager = CollectionManager(store=BrokenStore(), logger=logger)
    manager.merge([make_group()])
    manager.reset()
    assert manager.collection.is_empty
    assert "snapshot_reset_failed" in logger.names()


def test_apply_notifies_listeners_and_unsubscribes(make_group) -> None:
    manager = CollectionManager(store=None, logger=RecordingLogger())
    manager.merge([make_group()])
    seen: list[Group] = []
    unsubscribe = manager.subscribe(seen.append)
    manager.apply("Maharashtra", "Pune", lambda group: group.model_copy(update={"weight": 1}))
    unsubscribe()
    manager.apply("Maharashtra", "Pune", lambda group: group.model_copy(update={"weight": 2}))
    assert [group.weight for group in seen] == [1]


def test_storage_usage_reports_quota(make_group) -> None:
    manager = CollectionManager(store=None, quota_kb=5120, logger=RecordingLogger())
    assert manager.storage_usage().used_kb == 0
    manager.merge([make_group()])
    usage = manager.storage_usage()
    assert 0 < usage.used_kb < usage.quota_kb
    assert usage.available_kb == usage.quota_kb - usage.used_kb
