"""Turn a pincode CSV into discovery groups."""

from __future__ import annotations

import csv
import io
from dataclasses import dataclass, field
from pathlib import Path

import structlog

from .models import Group, WorkItem

REQUIRED_COLUMNS = ("pincode", "district", "statename", "population")


class IngestError(ValueError):
    """Raised when the uploaded table cannot be interpreted."""


@dataclass
class _GroupDraft:
    label: str
    weight: int
    codes: dict[str, None] = field(default_factory=dict)


def _parse_population(raw: str) -> int | None:
    cleaned = raw.replace(",", "").strip()
    try:
        return int(cleaned)
    except ValueError:
        try:
            return int(float(cleaned))
        except ValueError:
            return None


def parse_csv(text: str) -> list[Group]:
    """Parse CSV text with ``Pincode, District, StateName, Population`` columns.

    Rows are grouped by (state, district); repeated pincodes collapse into one
    work item and the population of the first row seen becomes the weight.
    Groups are returned heaviest first.
    """

    logger = structlog.get_logger("ct_discoverer.ingest")
    rows = [row for row in csv.reader(io.StringIO(text)) if any(cell.strip() for cell in row)]
    if len(rows) < 2:
        return []
    header = [cell.strip().lower() for cell in rows[0]]
    missing = [column for column in REQUIRED_COLUMNS if column not in header]
    if missing:
        raise IngestError(
            "Could not parse file. Required columns: 'Pincode', 'District', 'StateName', 'Population'."
        )
    index = {column: header.index(column) for column in REQUIRED_COLUMNS}
    widest = max(index.values())

    drafts: dict[tuple[str, str], _GroupDraft] = {}
    skipped = 0
    for row in rows[1:]:
        if len(row) <= widest:
            skipped += 1
            continue
        pincode = row[index["pincode"]].strip()
        district = row[index["district"]].strip()
        state_name = row[index["statename"]].strip()
        population = _parse_population(row[index["population"]])
        if not (pincode and district and state_name) or population is None:
            skipped += 1
            continue
        draft = drafts.setdefault((state_name, district), _GroupDraft(state_name, population))
        draft.codes[pincode] = None

    if skipped:
        logger.info("ingest_rows_skipped", skipped=skipped)
    groups = [
        Group(
            name=district,
            label=draft.label,
            items=tuple(WorkItem(code=code) for code in draft.codes),
            weight=draft.weight,
        )
        for (_, district), draft in drafts.items()
        if draft.codes
    ]
    groups.sort(key=lambda group: group.weight, reverse=True)
    return groups


def load_csv(path: Path) -> list[Group]:
    return parse_csv(path.read_text(encoding="utf-8-sig"))


__all__ = ["IngestError", "REQUIRED_COLUMNS", "load_csv", "parse_csv"]
