"""Exporter SPI and implementations."""

from .base import BaseExporter
from .file_exporter import CSV_HEADERS, FileExporter, export_filename

__all__ = ["BaseExporter", "CSV_HEADERS", "FileExporter", "export_filename"]
