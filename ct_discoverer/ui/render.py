"""Static Rich renderables for groups, badges and discovered centers."""

from __future__ import annotations

from rich.console import Group as RenderGroup
from rich.panel import Panel
from rich.progress_bar import ProgressBar
from rich.table import Table
from rich.text import Text

from ..engine.collection import StorageUsage
from ..engine.models import Collection, Group, GroupStatus, ItemStatus
from ..engine.state import (
    action_label,
    item_badges,
    progress_fraction,
    scanned_count,
    status_label,
)

ITEM_STYLES: dict[ItemStatus, str] = {
    ItemStatus.PENDING: "grey58",
    ItemStatus.SCANNING: "bold blue",
    ItemStatus.RETRYING: "bold yellow",
    ItemStatus.SCANNED: "green",
    ItemStatus.ERROR: "bold red",
}

GROUP_STYLES: dict[GroupStatus, str] = {
    GroupStatus.IDLE: "dim",
    GroupStatus.RUNNING: "cyan",
    GroupStatus.STOPPED: "yellow",
    GroupStatus.COMPLETED: "green",
    GroupStatus.ERROR: "red",
}


def render_badges(group: Group) -> Text:
    text = Text()
    for index, (code, status) in enumerate(item_badges(group)):
        if index:
            text.append(" ")
        text.append(f" {code} ", style=f"{ITEM_STYLES[status]} reverse")
    return text


def render_group_panel(group: Group) -> Panel:
    total = len(group.items)
    scanned = scanned_count(group)
    bar = ProgressBar(total=100, completed=round(progress_fraction(group) * 100), width=40)
    header = Text.assemble(
        (status_label(group), GROUP_STYLES[group.status]),
        "  ",
        (f"{scanned}/{total} pincodes · {group.result_count} centers", "dim"),
    )
    body = [header, bar, Text(""), render_badges(group)]
    body.append(Text(f"下一步：{action_label(group)}", style="dim"))
    return Panel(
        RenderGroup(*body),
        title=f"[bold]{group.name}[/bold] · {group.label}",
        border_style=GROUP_STYLES[group.status],
    )


def render_results_table(group: Group) -> Table:
    table = Table(title=f"{group.name} 检测到的 CT 中心", show_lines=True)
    table.add_column("#", justify="right", style="dim")
    table.add_column("Center Name", style="bold")
    table.add_column("Address")
    table.add_column("Contact Details")
    table.add_column("Doctor Details")
    table.add_column("Google Maps Link", overflow="fold")
    for index, record in enumerate(group.results, start=1):
        table.add_row(
            str(index),
            record.center_name,
            record.address,
            record.contact_details or "-",
            "; ".join(record.doctor_details) or "-",
            record.map_link or "-",
        )
    return table


def render_groups_table(collection: Collection) -> Table:
    table = Table(title="分组列表", show_lines=False)
    table.add_column("State")
    table.add_column("District", style="bold")
    table.add_column("Population", justify="right")
    table.add_column("Pincodes", justify="right")
    table.add_column("Progress", justify="right")
    table.add_column("Centers", justify="right")
    table.add_column("Status")
    for group in collection.iter_groups():
        table.add_row(
            group.label,
            group.name,
            f"{group.weight:,}",
            str(len(group.items)),
            f"{progress_fraction(group):.0%}",
            str(group.result_count),
            Text(group.status.value, style=GROUP_STYLES[group.status]),
        )
    return table


def render_storage(usage: StorageUsage) -> Panel:
    bar = ProgressBar(total=100, completed=min(100, round(usage.used_percentage)), width=40)
    summary = Text(
        f"已用 {usage.used_kb:.2f} KB / {usage.quota_kb:.0f} KB "
        f"({usage.used_percentage:.1f}%)，剩余 {usage.available_kb:.2f} KB"
    )
    return Panel(RenderGroup(summary, bar), title="存储占用")


__all__ = [
    "GROUP_STYLES",
    "ITEM_STYLES",
    "render_badges",
    "render_group_panel",
    "render_groups_table",
    "render_results_table",
    "render_storage",
]
