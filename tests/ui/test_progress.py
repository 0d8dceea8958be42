from __future__ import annotations

from rich.console import Console

from ct_discoverer.engine.models import Collection, GroupStatus, ItemStatus, WorkItem
from ct_discoverer.engine.collection import StorageUsage
from ct_discoverer.orchestrator import AttemptEvent
from ct_discoverer.ui import (
    GroupProgressObserver,
    MultiGroupProgress,
    render_badges,
    render_group_panel,
    render_groups_table,
    render_results_table,
    render_storage,
)


def _render(renderable) -> str:
    console = Console(record=True, width=160, force_terminal=False)
    console.print(renderable)
    return console.export_text()


class RecordingDelegate:
    def __init__(self) -> None:
        self.events: list[str] = []

    def on_attempt(self, event: AttemptEvent) -> None:
        self.events.append(event.outcome)

    def on_update(self, group) -> None:
        self.events.append(group.status.value)


def test_group_panel_shows_status_and_badges(make_group) -> None:
    group = make_group(
        codes=("411001", "411002"),
        items=(WorkItem(code="411001", status=ItemStatus.SCANNED), WorkItem(code="411002")),
        status=GroupStatus.STOPPED,
    )
    text = _render(render_group_panel(group))
    assert "Search stopped. (1/2 complete)" in text
    assert "411001" in text and "411002" in text
    assert "Resume" in text
    assert "Pune" in text


def test_badges_follow_item_order(make_group) -> None:
    badges = render_badges(make_group(codes=("3", "1", "2"))).plain
    assert badges.index("3") < badges.index("1") < badges.index("2")


def test_results_and_groups_tables(make_group, make_record) -> None:
    group = make_group(results=(make_record("Ruby Hall", doctor_details=["Dr. A"]),), result_count=1)
    results = _render(render_results_table(group))
    assert "Ruby Hall" in results and "Dr. A" in results
    overview = _render(render_groups_table(Collection(groups={"Maharashtra": (group,)})))
    assert "Maharashtra" in overview and "9,429,408" in overview


def test_storage_panel() -> None:
    text = _render(render_storage(StorageUsage(used_kb=512.0, quota_kb=5120.0)))
    assert "512.00 KB" in text and "10.0%" in text


def test_progress_observer_forwards_to_delegate(make_group) -> None:
    group = make_group()
    progress = MultiGroupProgress(enabled=False, console=Console(force_terminal=False))
    delegate = RecordingDelegate()
    observer = progress.observer_for(group, delegate)
    observer.on_update(group.model_copy(update={"status": GroupStatus.RUNNING}))
    observer.on_attempt(
        AttemptEvent(label="Maharashtra", group="Pune", code="411001", attempt=1, max_attempts=3, outcome="retry")
    )
    assert delegate.events == ["running", "retry"]


class RecordingLog:
    def __init__(self) -> None:
        self.messages: list[str] = []

    def log(self, message: str) -> None:
        self.messages.append(message)


def test_progress_observer_prints_error_text_literally() -> None:
    sink = RecordingLog()
    observer = GroupProgressObserver(sink, task_id=0)
    error = "Extraction service returned 400: [bold]bad[/red] request"
    for outcome in ("retry", "failed"):
        observer.on_attempt(
            AttemptEvent(
                label="Maharashtra",
                group="Pune",
                code="411001",
                attempt=3,
                max_attempts=3,
                outcome=outcome,
                error=error,
            )
        )

    assert len(sink.messages) == 2
    for message in sink.messages:
        assert error in _render(message)
