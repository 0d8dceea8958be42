"""Engine components: domain records, transitions, dedup, ingest, extraction, export."""

from .collection import CollectionManager, StorageUsage, merge_collections
from .dedup import filter_new, fingerprint
from .extractor import (
    ExtractionClient,
    ExtractionError,
    GeminiExtractionClient,
    MalformedResponseError,
)
from .ingest import IngestError, load_csv, parse_csv
from .models import Collection, ExtractedRecord, Group, GroupStatus, ItemStatus, WorkItem
from .state import InvalidTransitionError

__all__ = [
    "Collection",
    "CollectionManager",
    "ExtractedRecord",
    "ExtractionClient",
    "ExtractionError",
    "GeminiExtractionClient",
    "Group",
    "GroupStatus",
    "IngestError",
    "InvalidTransitionError",
    "ItemStatus",
    "MalformedResponseError",
    "StorageUsage",
    "WorkItem",
    "filter_new",
    "fingerprint",
    "load_csv",
    "merge_collections",
    "parse_csv",
]
