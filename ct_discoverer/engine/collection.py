"""Collection management: merging ingested groups and persisting snapshots."""

from __future__ import annotations

import json
import sqlite3
from dataclasses import dataclass
from typing import Callable, Iterable

import structlog
from pydantic import ValidationError

from ..infra.storage import SnapshotStore
from ..logging_conf import configure_logging
from .models import Collection, Group, GroupStatus, WorkItem
from .state import recover_interrupted

GroupListener = Callable[[Group], None]


def merge_group(existing: Group, incoming: Group) -> Group:
    """Fold ``incoming`` codes and weight into ``existing`` without touching progress."""

    known = set(existing.codes)
    additions = tuple(WorkItem(code=code) for code in incoming.codes if code not in known)
    weight = max(existing.weight, incoming.weight)
    if not additions and weight == existing.weight:
        return existing
    update: dict[str, object] = {"items": existing.items + additions, "weight": weight}
    if additions and existing.status is GroupStatus.COMPLETED:
        # 新增的 pincode 尚未扫描，分组不能再保持 completed
        update["status"] = GroupStatus.STOPPED
    return existing.model_copy(update=update)


def merge_collections(existing: Collection, new_groups: Iterable[Group]) -> Collection:
    """Merge freshly ingested groups into ``existing``.

    Unknown labels and group names are inserted as-is; groups present on both
    sides gain the unseen pincodes (as pending) and the larger weight. Labels
    and group names come out sorted.
    """

    buckets: dict[str, list[Group]] = {
        label: list(groups) for label, groups in existing.groups.items()
    }
    for incoming in new_groups:
        bucket = buckets.setdefault(incoming.label, [])
        for index, current in enumerate(bucket):
            if current.name == incoming.name:
                bucket[index] = merge_group(current, incoming)
                break
        else:
            bucket.append(incoming)
    ordered = {
        label: tuple(sorted(buckets[label], key=lambda group: group.name))
        for label in sorted(buckets)
    }
    return Collection(groups=ordered)


@dataclass(slots=True)
class StorageUsage:
    used_kb: float
    quota_kb: float

    @property
    def available_kb(self) -> float:
        return max(0.0, self.quota_kb - self.used_kb)

    @property
    def used_percentage(self) -> float:
        return (self.used_kb / self.quota_kb) * 100 if self.quota_kb else 0.0


class CollectionManager:
    """Own the current collection snapshot and keep durable storage in sync."""

    def __init__(
        self,
        store: SnapshotStore | None = None,
        quota_kb: float = 5120,
        logger: structlog.BoundLogger | None = None,
    ) -> None:
        self.store = store
        self.quota_kb = quota_kb
        self.logger = logger or configure_logging().bind(component="collection")
        self._collection = Collection()
        self._listeners: list[GroupListener] = []

    @property
    def collection(self) -> Collection:
        return self._collection

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------
    def load(self) -> Collection:
        payload = None
        if self.store is not None:
            try:
                payload = self.store.load()
            except (sqlite3.Error, OSError, ValueError) as exc:
                self.logger.error("snapshot_load_failed", error=str(exc))
        if payload is None:
            self._collection = Collection()
            return self._collection
        try:
            loaded = Collection.model_validate(payload)
        except ValidationError as exc:
            self.logger.error("snapshot_invalid", error=str(exc))
            self._collection = Collection()
            return self._collection
        self._collection = Collection(
            groups={
                label: tuple(recover_interrupted(group) for group in groups)
                for label, groups in loaded.groups.items()
            }
        )
        self.logger.info(
            "snapshot_loaded",
            labels=len(self._collection.groups),
            groups=sum(len(groups) for groups in self._collection.groups.values()),
        )
        return self._collection

    def persist(self) -> None:
        if self.store is None:
            return
        try:
            if self._collection.is_empty:
                self.store.clear()
            else:
                self.store.save(self._collection.model_dump(mode="json", by_alias=True))
        except (sqlite3.Error, OSError, TypeError, ValueError) as exc:
            self.logger.error("snapshot_save_failed", error=str(exc))

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------
    def merge(self, new_groups: Iterable[Group]) -> Collection:
        self._collection = merge_collections(self._collection, new_groups)
        self.persist()
        return self._collection

    def reset(self) -> None:
        """Forget every group and delete the snapshot database."""

        self._collection = Collection()
        if self.store is None:
            return
        try:
            self.store.destroy()
        except (sqlite3.Error, OSError) as exc:
            self.logger.error("snapshot_reset_failed", error=str(exc))

    def get_group(self, label: str, name: str) -> Group:
        group = self._collection.get(label, name)
        if group is None:
            raise KeyError(f"Unknown group {label}/{name}")
        return group

    def apply(self, label: str, name: str, updater: Callable[[Group], Group]) -> Group:
        """Replace one group with ``updater(group)``, persist, and notify listeners."""

        current = self.get_group(label, name)
        updated = updater(current)
        if updated is current:
            return current
        self._collection = self._collection.replace_group(updated)
        self.persist()
        for listener in list(self._listeners):
            try:
                listener(updated)
            except Exception as exc:  # noqa: BLE001
                self.logger.warning("listener_failed", group=name, error=str(exc))
        return updated

    def subscribe(self, listener: GroupListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    # ------------------------------------------------------------------
    def storage_usage(self) -> StorageUsage:
        payload = self._collection.model_dump(mode="json", by_alias=True)
        size = len(json.dumps(payload, ensure_ascii=False).encode("utf-8"))
        if self._collection.is_empty:
            size = 0
        return StorageUsage(used_kb=round(size / 1024, 2), quota_kb=float(self.quota_kb))


__all__ = [
    "CollectionManager",
    "StorageUsage",
    "merge_collections",
    "merge_group",
]
