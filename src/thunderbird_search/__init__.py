"""Thunderbird Search - read-only search over local mailbox files.

This package scans Thunderbird mbox folders, keeps a per-profile JSON cache of
folder scans, and can mirror messages into a SQL store for faster queries.
"""

__version__ = "0.1.0"

from thunderbird_search.config import Settings, get_settings

__all__ = ["Settings", "get_settings", "__version__"]
