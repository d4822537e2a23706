"""Where per-folder search results come from.

Each source answers "which messages of this folder match these filters". A
source returns None when it cannot serve the folder, and the next source in the
chain is asked.
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
from datetime import datetime
from typing import Protocol

import structlog

from thunderbird_search.index.cache import LocalIndexCache, scan_entry
from thunderbird_search.index.repository import MessageStoreRepository, StoreQuery
from thunderbird_search.mail.scanner import FolderScanner, Matcher, in_date_range, match_all
from thunderbird_search.models import Mailbox, MessageSummary
from thunderbird_search.profiles import AccountDirs, account_for_path

logger = structlog.get_logger()


@dataclass(frozen=True)
class FolderScope:
    """Filters shared by every folder of one search."""

    match: Matcher = match_all
    query: str = ""
    start: datetime | None = None
    end: datetime | None = None
    account: str = ""
    dirs: AccountDirs = field(default_factory=dict)
    limit: int = 0
    max_messages: int = 0
    tail: int = 0

    def account_for(self, mailbox: Mailbox) -> str:
        """Label for messages of ``mailbox``: the requested account, else by path."""

        return self.account or account_for_path(mailbox.path, self.dirs)


def label_accounts(hits: Iterable[MessageSummary], label: str) -> list[MessageSummary]:
    if not label:
        return list(hits)
    return [h if h.account else h.model_copy(update={"account": label}) for h in hits]


def select_hits(messages: Iterable[MessageSummary], mailbox: Mailbox, scope: FolderScope) -> list[MessageSummary]:
    """Apply a scope's account, date and query filters to cached summaries."""

    out: list[MessageSummary] = []
    for m in label_accounts(messages, scope.account_for(mailbox)):
        if not in_date_range(m, scope.start, scope.end):
            continue
        if scope.account and m.account.lower() != scope.account:
            continue
        if scope.match(m.search):
            out.append(m)
    return out


class FolderSource(Protocol):
    """Produces the matching summaries of one folder, or None if it cannot."""

    name: str

    def fetch(self, mailbox: Mailbox, scope: FolderScope) -> list[MessageSummary] | None: ...


class LiveScanSource:
    """Scans the mailbox directly; never touches the cache."""

    name = "scan"

    def __init__(self, scanner: FolderScanner) -> None:
        self._scanner = scanner

    def fetch(self, mailbox: Mailbox, scope: FolderScope) -> list[MessageSummary] | None:
        return self._scanner.scan(
            mailbox,
            scope.match,
            max_messages=scope.max_messages,
            tail=scope.tail,
            start=scope.start,
            end=scope.end,
            account=scope.account_for(mailbox),
        )


class LocalCacheSource:
    """Serves folders from a fresh cache entry holding enough matches."""

    name = "cache"

    def __init__(self, cache: LocalIndexCache) -> None:
        self._cache = cache

    def fetch(self, mailbox: Mailbox, scope: FolderScope) -> list[MessageSummary] | None:
        entry = self._cache.fresh_entry(mailbox)
        if entry is None:
            return None
        hits = select_hits(entry.messages, mailbox, scope)
        if scope.limit > 0 and len(hits) < scope.limit:
            logger.debug("cache_entry_underfilled", folder=mailbox.name, hits=len(hits), limit=scope.limit)
            return None
        return hits


class CachingScanSource:
    """Rescans the whole folder, replaces its cache entry, then filters."""

    name = "rescan"

    def __init__(self, scanner: FolderScanner, cache: LocalIndexCache) -> None:
        self._scanner = scanner
        self._cache = cache

    def fetch(self, mailbox: Mailbox, scope: FolderScope) -> list[MessageSummary] | None:
        entry = scan_entry(
            self._scanner,
            mailbox,
            account=scope.account_for(mailbox),
            max_messages=scope.max_messages,
            tail=scope.tail,
        )
        self._cache.put(mailbox, entry)
        return select_hits(entry.messages, mailbox, scope)


class StoreSource:
    """Answers from the persistent store.

    The store always matches every query token (fuzzy semantics).
    """

    name = "store"

    def __init__(self, repository: MessageStoreRepository, profile: str) -> None:
        self._repo = repository
        self._profile = profile

    def fetch(self, mailbox: Mailbox, scope: FolderScope) -> list[MessageSummary] | None:
        hits = self._repo.search(
            StoreQuery(
                query=scope.query,
                profile=self._profile,
                account=scope.account,
                folder=mailbox.name,
                start=scope.start,
                end=scope.end,
                limit=scope.limit,
            )
        )
        return label_accounts(hits, scope.account_for(mailbox))


def fetch_first(sources: Sequence[FolderSource], mailbox: Mailbox, scope: FolderScope) -> list[MessageSummary]:
    """Ask each source in turn; the first that can serve the folder wins."""

    for source in sources:
        hits = source.fetch(mailbox, scope)
        if hits is not None:
            logger.debug("folder_served", folder=mailbox.name, source=source.name, hits=len(hits))
            return hits
    return []
