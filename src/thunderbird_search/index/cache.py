"""Per-profile JSON cache of folder scans.

One file per profile maps each mailbox path to the summaries of its last full
scan, keyed by the mailbox fingerprint. Deleting the file is always safe.
"""

from __future__ import annotations

import os
from datetime import datetime, timezone
from pathlib import Path

import structlog
from pydantic import BaseModel, Field, ValidationError

from thunderbird_search.exceptions import CacheWriteError, MailboxOpenError
from thunderbird_search.mail.scanner import FolderScanner
from thunderbird_search.models import Fingerprint, Mailbox, MessageSummary

logger = structlog.get_logger()


def _now_utc() -> datetime:
    return datetime.now(timezone.utc)


class FolderIndexEntry(BaseModel):
    """Cached scan of one mailbox."""

    mtime_ns: int = Field(description="Mailbox modification time at scan time")
    size: int = Field(description="Mailbox size in bytes at scan time")
    messages: list[MessageSummary] = Field(default_factory=list)
    saved_at: datetime = Field(default_factory=_now_utc)
    complete: bool = Field(
        default=False,
        description="True when built from an unfiltered scan of the whole folder",
    )

    @property
    def fingerprint(self) -> Fingerprint:
        return Fingerprint(mtime_ns=self.mtime_ns, size=self.size)

    def is_fresh(self, current: Fingerprint | None) -> bool:
        """Whether this entry may answer any query without a re-scan.

        Entries holding undated messages are treated as stale so they are
        rebuilt with the current date parser.
        """

        if current is None or current != self.fingerprint:
            return False
        if not self.complete:
            return False
        return all(m.when is not None for m in self.messages)


class IndexFile(BaseModel):
    """All cached folder scans of one profile, keyed by absolute mailbox path."""

    folders: dict[str, FolderIndexEntry] = Field(default_factory=dict)
    saved_at: datetime | None = None


def load_index(path: Path) -> IndexFile | None:
    """Read a cache file; missing or unreadable files yield None."""

    try:
        data = path.read_bytes()
    except FileNotFoundError:
        return None
    except OSError as e:
        logger.debug("index_cache_unreadable", path=str(path), error=str(e))
        return None
    try:
        return IndexFile.model_validate_json(data)
    except ValidationError as e:
        logger.debug("index_cache_corrupt", path=str(path), error=str(e))
        return None


def save_index(path: Path, index: IndexFile) -> None:
    """Write a cache file atomically (temporary file, then rename).

    Raises:
        CacheWriteError: If the file cannot be written.
    """

    index.saved_at = _now_utc()
    tmp = path.with_name(path.name + ".tmp")
    try:
        tmp.write_text(index.model_dump_json(indent=2), encoding="utf-8")
        os.replace(tmp, path)
    except OSError as e:
        raise CacheWriteError(f"Cannot write index cache {path}: {e}") from e
    logger.info("index_cache_saved", path=str(path), folders=len(index.folders))


def current_fingerprint(mailbox: Mailbox) -> Fingerprint | None:
    try:
        return Fingerprint.of(mailbox.path)
    except OSError:
        return None


class LocalIndexCache:
    """In-memory view of a profile's cache file.

    Entries are replaced wholesale; ``save`` writes the file only when
    something changed.
    """

    def __init__(self, path: Path, index: IndexFile | None = None) -> None:
        self.path = path
        self._index = index or IndexFile()
        self.dirty = False

    @property
    def index(self) -> IndexFile:
        return self._index

    @classmethod
    def load(cls, path: Path) -> LocalIndexCache:
        return cls(path, load_index(path))

    def get(self, mailbox: Mailbox) -> FolderIndexEntry | None:
        return self._index.folders.get(str(mailbox.path))

    def fresh_entry(self, mailbox: Mailbox) -> FolderIndexEntry | None:
        """Return the mailbox's entry if it passes the staleness test."""

        entry = self.get(mailbox)
        if entry is None or not entry.is_fresh(current_fingerprint(mailbox)):
            return None
        return entry

    def put(self, mailbox: Mailbox, entry: FolderIndexEntry) -> None:
        self._index.folders[str(mailbox.path)] = entry
        self.dirty = True

    def save(self) -> bool:
        """Persist pending changes.

        Returns:
            True if the file was written.

        Raises:
            CacheWriteError: If the file cannot be written.
        """

        if not self.dirty:
            return False
        save_index(self.path, self._index)
        self.dirty = False
        return True


def scan_entry(
    scanner: FolderScanner,
    mailbox: Mailbox,
    *,
    account: str = "",
    max_messages: int = 0,
    tail: int = 0,
) -> FolderIndexEntry:
    """Scan a whole mailbox (match-all) into a cache entry.

    The fingerprint is taken before reading so a file that grows during the
    scan is seen as changed next time.

    Raises:
        MailboxOpenError: If the mailbox cannot be opened or stat'ed.
    """

    try:
        fp = Fingerprint.of(mailbox.path)
    except OSError as e:
        raise MailboxOpenError(f"Cannot stat mailbox {mailbox.path}: {e}") from e
    messages = scanner.scan(mailbox, max_messages=max_messages, tail=tail, account=account)
    return FolderIndexEntry(
        mtime_ns=fp.mtime_ns,
        size=fp.size,
        messages=messages,
        complete=max_messages == 0 and tail == 0,
    )


def build_index(
    scanner: FolderScanner,
    mailboxes: list[Mailbox],
    path: Path,
    *,
    account_of: dict[str, str] | None = None,
    tail: int = 0,
) -> IndexFile:
    """Pre-build a fresh cache file for ``mailboxes``.

    Mailboxes that cannot be opened are skipped with a warning.

    Args:
        scanner: Scanner used for the match-all passes.
        mailboxes: Mailboxes to index.
        path: Cache file to (over)write.
        account_of: Optional mailbox path -> account label map.
        tail: Keep only the last N messages per folder (entries are then
            marked incomplete).

    Raises:
        CacheWriteError: If the file cannot be written.
    """

    cache = LocalIndexCache(path)
    for mailbox in mailboxes:
        account = (account_of or {}).get(str(mailbox.path), "")
        try:
            entry = scan_entry(scanner, mailbox, account=account, tail=tail)
        except MailboxOpenError as e:
            logger.warning("index_folder_skipped", folder=mailbox.name, error=str(e))
            continue
        cache.put(mailbox, entry)
        logger.info("index_folder_built", folder=mailbox.name, messages=len(entry.messages))
    cache.dirty = True
    cache.save()
    return cache.index
