"""Custom exceptions for Thunderbird Search."""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from thunderbird_search.models import MessageSummary


class MailSearchError(Exception):
    """Base exception for all Thunderbird Search errors."""


class ConfigurationError(MailSearchError):
    """Exception raised for configuration related errors."""


class ProfileNotFoundError(MailSearchError):
    """Exception raised when a mail profile cannot be resolved."""


class AccountNotFoundError(MailSearchError):
    """Exception raised when an account email is not configured in a profile."""


class NoMatchingFoldersError(MailSearchError):
    """Exception raised when folder or account scoping leaves nothing to search."""


class MailboxOpenError(MailSearchError):
    """Exception raised when a mailbox file cannot be opened at all."""


class MessageParseError(MailSearchError):
    """Exception raised for a message whose header block is malformed."""


class CacheWriteError(MailSearchError):
    """Exception raised when the local index cache cannot be written.

    The search results computed before the failure are kept on ``hits`` so
    callers may report the problem and still use them.
    """

    def __init__(self, message: str, hits: list[MessageSummary] | None = None) -> None:
        super().__init__(message)
        self.hits = hits or []


class StoreError(MailSearchError):
    """Exception raised for persistent store failures."""
