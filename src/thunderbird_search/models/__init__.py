"""Data models for Thunderbird Search."""

from thunderbird_search.models.mailbox import Fingerprint, Mailbox, Profile
from thunderbird_search.models.message import FolderTag, FullMessage, MessageSummary, folder_tag_for
from thunderbird_search.models.query import SearchRequest

__all__ = [
    "Fingerprint",
    "FolderTag",
    "FullMessage",
    "Mailbox",
    "MessageSummary",
    "Profile",
    "SearchRequest",
    "folder_tag_for",
]
