"""Local and persistent indexes of mailbox scans.

``cache`` holds the per-profile JSON cache of folder scans; ``repository`` and
``sync`` implement the SQL store that mirrors a profile's messages.
"""

from .cache import FolderIndexEntry, IndexFile, LocalIndexCache, build_index, load_index, save_index
from .repository import MessageStoreRepository, StoreQuery, make_engine
from .sync import StoreSynchronizer, SyncResult

__all__ = [
    "FolderIndexEntry",
    "IndexFile",
    "LocalIndexCache",
    "MessageStoreRepository",
    "StoreQuery",
    "StoreSynchronizer",
    "SyncResult",
    "build_index",
    "load_index",
    "make_engine",
    "save_index",
]
