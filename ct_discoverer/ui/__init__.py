"""User interaction helpers."""

from .progress import GroupProgressObserver, MultiGroupProgress
from .render import (
    render_badges,
    render_group_panel,
    render_groups_table,
    render_results_table,
    render_storage,
)

__all__ = [
    "GroupProgressObserver",
    "MultiGroupProgress",
    "render_badges",
    "render_group_panel",
    "render_groups_table",
    "render_results_table",
    "render_storage",
]
