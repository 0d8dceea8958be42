"""Shared fixtures for the CT Discoverer test-suite."""

from __future__ import annotations

from pathlib import Path
from typing import Any, Callable, Iterable, Sequence

import pytest

from ct_discoverer.config import ConfigLocator, ConfigRepository, DiscoverySettings
from ct_discoverer.config.loader import HOME_ENV
from ct_discoverer.engine import CollectionManager, ExtractedRecord, Group, WorkItem
from ct_discoverer.infra import SnapshotStore, SQLiteManager


@pytest.fixture(autouse=True)
def isolated_home(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """Keep config, snapshots and log files inside the test's tmp dir."""

    monkeypatch.setenv(HOME_ENV, str(tmp_path))
    return tmp_path


@pytest.fixture
def make_record() -> Callable[..., ExtractedRecord]:
    def _builder(name: str, address: str | None = None, **overrides: Any) -> ExtractedRecord:
        base: dict[str, Any] = {
            "center_name": name,
            "address": address or f"{name} Road, Pune",
            "contact_details": "020-1234567",
        }
        base.update(overrides)
        return ExtractedRecord(**base)

    return _builder


@pytest.fixture
def make_group() -> Callable[..., Group]:
    def _builder(
        codes: Sequence[str] = ("411001", "411002"),
        name: str = "Pune",
        label: str = "Maharashtra",
        **overrides: Any,
    ) -> Group:
        base: dict[str, Any] = {
            "name": name,
            "label": label,
            "items": tuple(WorkItem(code=code) for code in codes),
            "weight": 9_429_408,
        }
        base.update(overrides)
        return Group(**base)

    return _builder


@pytest.fixture
def snapshot_store(tmp_path: Path) -> Iterable[SnapshotStore]:
    manager = SQLiteManager()
    yield SnapshotStore(manager, tmp_path / "state" / "collection.db")
    manager.close_all()


@pytest.fixture
def collection_manager(snapshot_store: SnapshotStore) -> CollectionManager:
    return CollectionManager(store=snapshot_store)


@pytest.fixture
def fast_settings() -> DiscoverySettings:
    return DiscoverySettings(max_concurrent_items=2, max_attempts=3, retry_delay_seconds=0)


@pytest.fixture
def temp_config_repository(tmp_path: Path) -> ConfigRepository:
    return ConfigRepository(ConfigLocator(project_root=tmp_path))
