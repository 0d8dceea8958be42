"""Terminal progress helpers with Rich-based rendering."""

from __future__ import annotations

from rich.console import Console
from rich.errors import LiveError
from rich.markup import escape
from rich.progress import (
    BarColumn,
    Progress,
    SpinnerColumn,
    TaskID,
    TaskProgressColumn,
    TextColumn,
    TimeElapsedColumn,
)

from ..engine.models import Group, ItemStatus
from ..engine.state import active_count, scanned_count, status_label
from ..orchestrator import AttemptEvent, DiscoveryObserver


class MultiGroupProgress:
    """
    管理多个分组进度条的 Rich 显示器

    每个分组一行：扫描进度、在途 pincode 数、失败数与结果数。
    """

    def __init__(self, enabled: bool = True, console: Console | None = None) -> None:
        self.enabled = enabled
        self.console = console or Console()
        if enabled and not self.console.is_terminal:
            # 非TTY 环境下退化为静默模式，避免重复打印
            self.enabled = False
        self._progress = Progress(
            SpinnerColumn(style="cyan"),
            TextColumn("[bold blue]{task.fields[group]:<18}", justify="left"),
            BarColumn(bar_width=None, complete_style="green", finished_style="green", pulse_style="cyan"),
            TaskProgressColumn(show_speed=False),
            TimeElapsedColumn(),
            TextColumn("[cyan]⟳{task.fields[active]:>2}", justify="right"),
            TextColumn("[red]✗{task.fields[failed]:>3}", justify="right"),
            TextColumn("[green]◆{task.fields[results]:>4}", justify="right"),
            TextColumn("[dim]{task.fields[message]}", justify="left"),
            console=self.console,
            transient=False,
            refresh_per_second=8,
            expand=True,
            disable=not self.enabled,
        )
        self._entered = False

    def __enter__(self) -> "MultiGroupProgress":
        if self.enabled and not self._entered:
            try:
                self._progress.__enter__()
                self._entered = True
            except LiveError:
                # 若已有其它 Live 控制器占用同一控制台，则直接退化为静默模式
                self.enabled = False
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        if self._entered:
            self._progress.__exit__(exc_type, exc, tb)
            self._entered = False

    def add_group(self, group: Group) -> TaskID:
        return self._progress.add_task(
            group.key[1],
            total=len(group.items) or 1,
            completed=scanned_count(group),
            group=group.name,
            active=active_count(group),
            failed=_failed_count(group),
            results=group.result_count,
            message="等待中…",
        )

    def update_group(self, task_id: TaskID, group: Group) -> None:
        if not self.enabled:
            return
        self._progress.update(
            task_id,
            total=len(group.items) or 1,
            completed=scanned_count(group),
            active=active_count(group),
            failed=_failed_count(group),
            results=group.result_count,
            message=status_label(group),
        )

    def log(self, message: str) -> None:
        if self.enabled:
            self._progress.console.log(message)

    def observer_for(
        self, group: Group, delegate: DiscoveryObserver | None = None
    ) -> "GroupProgressObserver":
        return GroupProgressObserver(self, self.add_group(group), delegate)


class GroupProgressObserver:
    """Discovery observer that mirrors group snapshots into a progress row."""

    def __init__(
        self,
        manager: MultiGroupProgress,
        task_id: TaskID,
        delegate: DiscoveryObserver | None = None,
    ) -> None:
        self.manager = manager
        self.task_id = task_id
        self.delegate = delegate

    def on_attempt(self, event: AttemptEvent) -> None:
        if self.delegate is not None:
            self.delegate.on_attempt(event)
        if event.outcome == "retry":
            self.manager.log(
                f"[yellow]{event.group} · {event.code} 第 {event.attempt}/{event.max_attempts} 次失败，"
                f"稍后重试：{escape(event.error or '')}"
            )
        elif event.outcome == "failed":
            self.manager.log(f"[red]{event.group} · {event.code} 重试耗尽：{escape(event.error or '')}")

    def on_update(self, group: Group) -> None:
        if self.delegate is not None:
            self.delegate.on_update(group)
        self.manager.update_group(self.task_id, group)


def _failed_count(group: Group) -> int:
    return sum(1 for item in group.items if item.status is ItemStatus.ERROR)


__all__ = ["GroupProgressObserver", "MultiGroupProgress"]
