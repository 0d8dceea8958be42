"""Address fingerprinting used to drop duplicate centers as results arrive."""

from __future__ import annotations

import re
from typing import Iterable

from .models import ExtractedRecord

_NON_ALNUM = re.compile(r"[^a-z0-9]")


def fingerprint(address: str) -> str:
    """Lowercase ``address`` and strip everything that is not an ASCII letter or digit."""

    return _NON_ALNUM.sub("", (address or "").lower())


def filter_new(
    candidates: Iterable[ExtractedRecord],
    existing: Iterable[ExtractedRecord],
) -> list[ExtractedRecord]:
    """Return candidates whose address fingerprint is unseen, keeping input order.

    Duplicates inside ``candidates`` are collapsed as well; the first occurrence wins.
    """

    seen = {fingerprint(record.address) for record in existing}
    survivors: list[ExtractedRecord] = []
    for record in candidates:
        key = fingerprint(record.address)
        if key in seen:
            continue
        seen.add(key)
        survivors.append(record)
    return survivors


__all__ = ["filter_new", "fingerprint"]
