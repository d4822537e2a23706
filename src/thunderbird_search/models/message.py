"""Processed message summary model.

A summary is built once per extracted message and never mutated; callers that
need a different account label use ``model_copy(update=...)``.
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field


class FolderTag(str, Enum):
    """Folder type derived from the folder's display name."""

    NONE = "none"
    TRASH = "trash"
    SPAM = "spam"


def folder_tag_for(folder_name: str) -> FolderTag:
    """Tag a folder as trash or spam by case-insensitive name heuristics."""

    lower = folder_name.lower()
    if "trash" in lower or "deleted" in lower:
        return FolderTag.TRASH
    if "spam" in lower or "junk" in lower:
        return FolderTag.SPAM
    return FolderTag.NONE


class MessageSummary(BaseModel):
    """Searchable summary of a single message."""

    model_config = ConfigDict(frozen=True)

    folder: str = Field(default="", description="Display name of the source folder")
    subject: str = Field(default="", description="Decoded Subject header")
    sender: str = Field(default="", description="Decoded From header")
    date: str = Field(
        default="",
        description="Display date: formatted timestamp, or the raw Date header when unparsed",
    )
    when: datetime | None = Field(default=None, description="Parsed absolute timestamp")
    message_id: str = Field(default="", description="Message-ID header (may be empty)")
    snippet: str = Field(default="", description="First non-blank line of the body text")
    search: str = Field(default="", description="Lowercase blob used for matching")
    account: str = Field(default="", description="Identity email the folder belongs to")
    folder_tag: FolderTag = Field(default=FolderTag.NONE, description="Trash/spam tag")


class FullMessage(BaseModel):
    """A message summary together with its extracted body text."""

    model_config = ConfigDict(frozen=True)

    summary: MessageSummary
    body: str = Field(default="", description="Plain text body, or the flattened HTML fallback")
