"""Immutable domain records shared by the discovery engine."""

from __future__ import annotations

from enum import Enum
from typing import Any, Iterator

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel


class ItemStatus(str, Enum):
    """Lifecycle of a single pincode inside a group."""

    PENDING = "pending"
    SCANNING = "scanning"
    RETRYING = "retrying"
    SCANNED = "scanned"
    ERROR = "error"


class GroupStatus(str, Enum):
    """Aggregate discovery state of a group."""

    IDLE = "idle"
    RUNNING = "running"
    STOPPED = "stopped"
    COMPLETED = "completed"
    ERROR = "error"


IN_FLIGHT = frozenset({ItemStatus.SCANNING, ItemStatus.RETRYING})
ELIGIBLE = frozenset({ItemStatus.PENDING, ItemStatus.ERROR})


class WorkItem(BaseModel):
    """One pincode scheduled for extraction."""

    model_config = ConfigDict(frozen=True)

    code: str
    status: ItemStatus = ItemStatus.PENDING

    @field_validator("code", mode="before")
    @classmethod
    def _strip_code(cls, value: Any) -> str:
        text = str(value).strip()
        if not text:
            raise ValueError("Work item code cannot be empty")
        return text


class ExtractedRecord(BaseModel):
    """A diagnostic center returned by the extraction service."""

    model_config = ConfigDict(frozen=True, alias_generator=to_camel, populate_by_name=True)

    center_name: str
    address: str
    contact_details: str = ""
    doctor_details: tuple[str, ...] = ()
    map_link: str = Field(
        default="",
        validation_alias=AliasChoices("mapLink", "googleMapsLink", "map_link"),
        serialization_alias="mapLink",
    )
    reasoning: str = ""

    @field_validator("contact_details", "map_link", "reasoning", mode="before")
    @classmethod
    def _coerce_optional_text(cls, value: Any) -> str:
        if value is None:
            return ""
        return str(value)

    @field_validator("doctor_details", mode="before")
    @classmethod
    def _coerce_doctors(cls, value: Any) -> tuple[str, ...]:
        if value in (None, ""):
            return ()
        if isinstance(value, str):
            return (value.strip(),)
        if isinstance(value, (list, tuple)):
            return tuple(str(item).strip() for item in value if str(item).strip())
        raise ValueError("doctorDetails expects a list of names")


class Group(BaseModel):
    """A named set of pincodes (a district) under a parent label (a state)."""

    model_config = ConfigDict(frozen=True)

    name: str
    label: str
    items: tuple[WorkItem, ...] = ()
    status: GroupStatus = GroupStatus.IDLE
    results: tuple[ExtractedRecord, ...] = ()
    result_count: int = 0
    weight: int = 0
    last_error: str | None = None

    @model_validator(mode="after")
    def _validate_invariants(self) -> "Group":
        codes = [item.code for item in self.items]
        if len(codes) != len(set(codes)):
            raise ValueError(f"Duplicate pincodes in group {self.name}")
        if self.result_count != len(self.results):
            raise ValueError("result_count must equal the number of results")
        return self

    @property
    def key(self) -> tuple[str, str]:
        return self.label, self.name

    @property
    def codes(self) -> tuple[str, ...]:
        return tuple(item.code for item in self.items)

    def item(self, code: str) -> WorkItem:
        for item in self.items:
            if item.code == code:
                return item
        raise KeyError(f"Unknown pincode {code} in group {self.name}")


class Collection(BaseModel):
    """All groups keyed by their parent label."""

    model_config = ConfigDict(frozen=True)

    groups: dict[str, tuple[Group, ...]] = Field(default_factory=dict)

    @model_validator(mode="after")
    def _validate_unique_names(self) -> "Collection":
        for label, groups in self.groups.items():
            names = [group.name for group in groups]
            if len(names) != len(set(names)):
                raise ValueError(f"Duplicate group names under label {label}")
        return self

    @property
    def labels(self) -> list[str]:
        return list(self.groups.keys())

    @property
    def is_empty(self) -> bool:
        return not any(self.groups.values())

    def iter_groups(self) -> Iterator[Group]:
        for groups in self.groups.values():
            yield from groups

    def get(self, label: str, name: str) -> Group | None:
        for group in self.groups.get(label, ()):
            if group.name == name:
                return group
        return None

    def replace_group(self, group: Group) -> "Collection":
        """Return a new collection with ``group`` swapped in; other labels are shared."""

        current = self.groups.get(group.label, ())
        if not any(existing.name == group.name for existing in current):
            raise KeyError(f"Unknown group {group.label}/{group.name}")
        updated = tuple(group if existing.name == group.name else existing for existing in current)
        groups = dict(self.groups)
        groups[group.label] = updated
        return Collection.model_construct(groups=groups)


__all__ = [
    "Collection",
    "ELIGIBLE",
    "ExtractedRecord",
    "Group",
    "GroupStatus",
    "IN_FLIGHT",
    "ItemStatus",
    "WorkItem",
]
