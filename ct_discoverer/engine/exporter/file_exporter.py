"""File based exporter writing CSV or JSON lines."""

from __future__ import annotations

import csv
import json
import re
from pathlib import Path
from typing import Optional

from ..models import ExtractedRecord
from .base import BaseExporter

CSV_HEADERS = (
    "Center Name",
    "Address",
    "Contact Details",
    "Doctor Details",
    "Google Maps Link",
    "Reasoning",
)
SUPPORTED_FORMATS = ("csv", "json")


def export_filename(group_name: str, fmt: str) -> str:
    slug = re.sub(r"\s+", "_", group_name.strip()) or "group"
    slug = re.sub(r"[\\/:*?\"<>|]+", "_", slug)
    extension = "jsonl" if fmt == "json" else "csv"
    return f"CT_Scan_Results_{slug}.{extension}"


def csv_row(record: ExtractedRecord) -> list[str]:
    return [
        record.center_name,
        record.address,
        record.contact_details,
        "; ".join(record.doctor_details),
        record.map_link,
        record.reasoning,
    ]


class FileExporter(BaseExporter):
    """Write one group's records to a local file.

    The file is truncated on open: an export always reflects the group's
    current result list, never an append of earlier exports.
    """

    def __init__(self, output_dir: Path, group_name: str, fmt: str = "csv") -> None:
        if fmt not in SUPPORTED_FORMATS:
            raise ValueError(f"Unsupported export format: {fmt}")
        self.output_dir = output_dir
        self.group_name = group_name
        self.format = fmt
        self.output_dir.mkdir(parents=True, exist_ok=True)
        self.path = self.output_dir / export_filename(group_name, fmt)
        # utf-8-sig 让 Excel 正确识别中文及特殊字符
        encoding = "utf-8-sig" if fmt == "csv" else "utf-8"
        self._file = self.path.open("w", encoding=encoding, newline="")
        self._csv_writer: Optional[csv.writer] = None
        if fmt == "csv":
            self._csv_writer = csv.writer(self._file)
            self._csv_writer.writerow(CSV_HEADERS)

    def export(self, record: ExtractedRecord) -> None:
        if self._csv_writer is not None:
            self._csv_writer.writerow(csv_row(record))
        else:
            json.dump(record.model_dump(mode="json", by_alias=True), self._file, ensure_ascii=False)
            self._file.write("\n")

    def flush(self) -> None:
        self._file.flush()

    def close(self) -> None:
        if not self._file.closed:
            self._file.close()


__all__ = ["CSV_HEADERS", "FileExporter", "SUPPORTED_FORMATS", "csv_row", "export_filename"]
