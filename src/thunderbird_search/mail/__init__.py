"""Reading mailbox files and extracting message summaries."""

from .mbox import iter_messages, open_mailbox
from .parsing import extract_full_message, extract_message, normalize_subject
from .scanner import FolderScanner, Matcher, in_date_range, match_all

__all__ = [
    "FolderScanner",
    "Matcher",
    "extract_full_message",
    "extract_message",
    "in_date_range",
    "iter_messages",
    "match_all",
    "normalize_subject",
    "open_mailbox",
]
