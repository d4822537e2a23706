"""Query matching, per-folder result sources and result aggregation."""

from .aggregate import DedupKey, aggregate, sort_hits
from .matcher import make_matcher
from .service import SearchService
from .sources import (
    CachingScanSource,
    FolderScope,
    FolderSource,
    LiveScanSource,
    LocalCacheSource,
    StoreSource,
)

__all__ = [
    "CachingScanSource",
    "DedupKey",
    "FolderScope",
    "FolderSource",
    "LiveScanSource",
    "LocalCacheSource",
    "SearchService",
    "StoreSource",
    "aggregate",
    "make_matcher",
    "sort_hits",
]
