"""Pure state transitions for work items and groups.

Every function here takes an immutable snapshot and returns a new one. The
orchestrator and the CLI never mutate a ``Group`` in place; they route every
change through these helpers so readers only ever observe whole snapshots.
"""

from __future__ import annotations

from typing import Iterable, Sequence

from .dedup import filter_new
from .models import ELIGIBLE, IN_FLIGHT, ExtractedRecord, Group, GroupStatus, ItemStatus, WorkItem


class InvalidTransitionError(ValueError):
    """Raised when a work item or group is asked to make an illegal move."""


# Allowed item moves. Any non-scanned state may also fall back to PENDING when
# the group is stopped, which is why PENDING shows up in most rows.
_ITEM_TRANSITIONS: dict[ItemStatus, frozenset[ItemStatus]] = {
    ItemStatus.PENDING: frozenset({ItemStatus.SCANNING, ItemStatus.PENDING}),
    ItemStatus.SCANNING: frozenset(
        {ItemStatus.SCANNED, ItemStatus.RETRYING, ItemStatus.ERROR, ItemStatus.PENDING}
    ),
    ItemStatus.RETRYING: frozenset(
        {ItemStatus.SCANNED, ItemStatus.RETRYING, ItemStatus.ERROR, ItemStatus.PENDING}
    ),
    ItemStatus.ERROR: frozenset({ItemStatus.PENDING, ItemStatus.SCANNING}),
    ItemStatus.SCANNED: frozenset(),
}


def can_transition(current: ItemStatus, target: ItemStatus) -> bool:
    return target in _ITEM_TRANSITIONS[current]


def transition_item(item: WorkItem, target: ItemStatus) -> WorkItem:
    if item.status is target and target is not ItemStatus.RETRYING:
        return item
    if not can_transition(item.status, target):
        raise InvalidTransitionError(
            f"Pincode {item.code} cannot move from {item.status.value} to {target.value}"
        )
    return item.model_copy(update={"status": target})


def _replace_item(group: Group, code: str, target: ItemStatus) -> Group:
    group.item(code)  # raises KeyError for unknown codes
    items = tuple(
        transition_item(item, target) if item.code == code else item for item in group.items
    )
    return group.model_copy(update={"items": items})


# ----------------------------------------------------------------------
# Read-only derived values
# ----------------------------------------------------------------------
def scanned_count(group: Group) -> int:
    return sum(1 for item in group.items if item.status is ItemStatus.SCANNED)


def active_count(group: Group) -> int:
    return sum(1 for item in group.items if item.status in IN_FLIGHT)


def all_scanned(group: Group) -> bool:
    return all(item.status is ItemStatus.SCANNED for item in group.items)


def next_eligible(group: Group, exclude: Iterable[str] = ()) -> WorkItem | None:
    """Return the first pending/error item in list order, skipping ``exclude``."""

    skipped = set(exclude)
    for item in group.items:
        if item.status in ELIGIBLE and item.code not in skipped:
            return item
    return None


def progress_fraction(group: Group) -> float:
    total = len(group.items)
    if total == 0:
        return 0.0
    return scanned_count(group) / total


def status_label(group: Group) -> str:
    scanned = scanned_count(group)
    total = len(group.items)
    if group.status is GroupStatus.IDLE:
        return "Ready to start discovery."
    if group.status is GroupStatus.RUNNING:
        return f"Scanning... ({scanned}/{total} complete)"
    if group.status is GroupStatus.STOPPED:
        return f"Search stopped. ({scanned}/{total} complete)"
    if group.status is GroupStatus.COMPLETED:
        return "Discovery complete."
    return f"An error occurred: {group.last_error or 'unknown error'}"


def action_label(group: Group) -> str:
    """Label for the primary action a user can take on ``group``."""

    if group.status is GroupStatus.RUNNING:
        return "Stop"
    if group.status is GroupStatus.COMPLETED:
        return "Discover Again"
    if scanned_count(group) > 0:
        return "Resume"
    return "Discover Now"


def item_badges(group: Group) -> list[tuple[str, ItemStatus]]:
    return [(item.code, item.status) for item in group.items]


def export_rows(group: Group) -> list[ExtractedRecord]:
    return list(group.results)


# ----------------------------------------------------------------------
# Group transitions
# ----------------------------------------------------------------------
def start_discovery(group: Group) -> Group:
    """Begin (or resume) discovery on ``group``.

    A group that never produced a scanned item, or that already completed, is
    reset to a clean slate. Otherwise scanned items and accumulated results are
    kept and only the remaining items are reconsidered.
    """

    has_scanned = scanned_count(group) > 0
    if group.status is GroupStatus.COMPLETED or not has_scanned:
        items = tuple(
            item.model_copy(update={"status": ItemStatus.PENDING}) for item in group.items
        )
        return group.model_copy(
            update={
                "status": GroupStatus.RUNNING,
                "items": items,
                "results": (),
                "result_count": 0,
                "last_error": None,
            }
        )
    items = tuple(
        item.model_copy(update={"status": ItemStatus.PENDING}) if item.status in IN_FLIGHT else item
        for item in group.items
    )
    return group.model_copy(
        update={"status": GroupStatus.RUNNING, "items": items, "last_error": None}
    )


def stop_discovery(group: Group) -> Group:
    """Mark ``group`` stopped and hand in-flight items back to the pending pool."""

    items = tuple(
        transition_item(item, ItemStatus.PENDING) if item.status in IN_FLIGHT else item
        for item in group.items
    )
    return group.model_copy(update={"status": GroupStatus.STOPPED, "items": items})


def retry_item(group: Group, code: str) -> Group:
    item = group.item(code)
    if item.status is not ItemStatus.ERROR:
        raise InvalidTransitionError(
            f"Pincode {code} is {item.status.value}; only failed pincodes can be retried"
        )
    updated = _replace_item(group, code, ItemStatus.PENDING)
    return updated.model_copy(update={"status": GroupStatus.RUNNING, "last_error": None})


def mark_attempt(group: Group, code: str, attempt: int) -> Group:
    target = ItemStatus.SCANNING if attempt <= 1 else ItemStatus.RETRYING
    return _replace_item(group, code, target)


def record_success(group: Group, code: str, records: Sequence[ExtractedRecord]) -> Group:
    survivors = filter_new(records, group.results)
    updated = _replace_item(group, code, ItemStatus.SCANNED)
    results = group.results + tuple(survivors)
    return updated.model_copy(
        update={
            "results": results,
            "result_count": group.result_count + len(survivors),
            "last_error": None,
        }
    )


def failure_message(code: str) -> str:
    return f"Failed on pincode {code}."


def record_failure(group: Group, code: str) -> Group:
    updated = _replace_item(group, code, ItemStatus.ERROR)
    return updated.model_copy(update={"last_error": failure_message(code)})


def complete(group: Group) -> Group:
    if not all_scanned(group):
        raise InvalidTransitionError(f"Group {group.name} still has unscanned pincodes")
    if group.status is GroupStatus.COMPLETED:
        return group
    return group.model_copy(update={"status": GroupStatus.COMPLETED})


def fail(group: Group) -> Group:
    """Settle a run that has nothing left to try but still holds failed items."""

    if group.status is GroupStatus.ERROR:
        return group
    update: dict[str, object] = {"status": GroupStatus.ERROR}
    if group.last_error is None:
        # 之后的成功会清空 last_error，这里补回第一个失败的 pincode
        failed = next((item.code for item in group.items if item.status is ItemStatus.ERROR), None)
        if failed is not None:
            update["last_error"] = failure_message(failed)
    return group.model_copy(update=update)


def recover_interrupted(group: Group) -> Group:
    """Normalise a snapshot written by a process that died mid-run."""

    if group.status is GroupStatus.RUNNING or active_count(group):
        return stop_discovery(group)
    return group


__all__ = [
    "InvalidTransitionError",
    "action_label",
    "active_count",
    "all_scanned",
    "can_transition",
    "complete",
    "export_rows",
    "fail",
    "failure_message",
    "item_badges",
    "mark_attempt",
    "next_eligible",
    "progress_fraction",
    "record_failure",
    "record_success",
    "recover_interrupted",
    "retry_item",
    "scanned_count",
    "start_discovery",
    "status_label",
    "stop_discovery",
    "transition_item",
]
