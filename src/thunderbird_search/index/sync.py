"""Mirror mailbox contents into the persistent store.

Folder fingerprints and the last sync time are kept in the store's metadata
table so that later runs only rescan folders that changed.
"""

from __future__ import annotations

import hashlib
from dataclasses import dataclass
from datetime import datetime, timezone

import structlog

from thunderbird_search.exceptions import MailboxOpenError
from thunderbird_search.index.repository import MessageStoreRepository
from thunderbird_search.mail.scanner import FolderScanner
from thunderbird_search.models import Fingerprint, Mailbox, MessageSummary
from thunderbird_search.profiles import AccountDirs, account_for_path

logger = structlog.get_logger()


def fingerprint_key(profile: str, path: str) -> str:
    return f"fp:{profile}:{path}"


def synced_at_key(profile: str) -> str:
    return f"synced_at:{profile}"


def synthetic_message_id(summary: MessageSummary) -> str:
    """Deterministic id for messages that carry no Message-ID header."""

    digest = hashlib.sha1(
        "\x1f".join([summary.folder, summary.date, summary.subject, summary.snippet]).encode(
            "utf-8", errors="replace"
        )
    ).hexdigest()
    return f"synthetic:{digest}"


def with_store_id(summary: MessageSummary) -> MessageSummary:
    if summary.message_id.strip():
        return summary
    return summary.model_copy(update={"message_id": synthetic_message_id(summary)})


@dataclass(frozen=True)
class SyncResult:
    """Outcome of a store sync."""

    folders: int
    messages: int
    pruned: int
    complete: bool


class StoreSynchronizer:
    """Keeps a profile's rows in the store in step with its mailboxes."""

    def __init__(
        self,
        repository: MessageStoreRepository,
        scanner: FolderScanner,
        *,
        refresh_interval: int = 300,
    ) -> None:
        self._repo = repository
        self._scanner = scanner
        self._refresh_interval = refresh_interval

    def refresh_folder(self, profile: str, mailbox: Mailbox, account: str = "") -> list[str]:
        """Fully rescan one folder and upsert every message.

        Returns:
            The store ids of the folder's messages.

        Raises:
            MailboxOpenError: If the mailbox cannot be opened.
            StoreError: If the upsert fails.
        """

        try:
            fp = Fingerprint.of(mailbox.path)
        except OSError as e:
            raise MailboxOpenError(f"Cannot stat mailbox {mailbox.path}: {e}") from e

        summaries = [with_store_id(s) for s in self._scanner.scan(mailbox, account=account)]
        self._repo.upsert_many(profile, summaries)
        self._repo.set_meta(fingerprint_key(profile, str(mailbox.path)), fp.encode())
        logger.info("store_folder_refreshed", profile=profile, folder=mailbox.name, messages=len(summaries))
        return [s.message_id for s in summaries]

    def recently_synced(self, profile: str, now: datetime | None = None) -> bool:
        raw = self._repo.get_meta(synced_at_key(profile))
        if not raw:
            return False
        try:
            last = datetime.fromisoformat(raw)
        except ValueError:
            return False
        if last.tzinfo is None:
            last = last.replace(tzinfo=timezone.utc)
        now = now or datetime.now(timezone.utc)
        return (now - last).total_seconds() < self._refresh_interval

    def refresh_stale(
        self,
        profile: str,
        mailboxes: list[Mailbox],
        dirs: AccountDirs | None = None,
    ) -> int:
        """Rescan folders whose fingerprint changed since they were stored.

        Skipped entirely when the profile was synced within the refresh
        interval. Unreadable folders are skipped with a warning.

        Returns:
            Number of folders refreshed.
        """

        if self.recently_synced(profile):
            logger.debug("store_refresh_skipped", profile=profile)
            return 0

        stored = self._repo.get_meta_prefix(f"fp:{profile}:")
        refreshed = 0
        for mailbox in mailboxes:
            try:
                current = Fingerprint.of(mailbox.path)
            except OSError:
                continue
            known = Fingerprint.decode(stored.get(fingerprint_key(profile, str(mailbox.path))))
            if known == current:
                continue
            try:
                self.refresh_folder(profile, mailbox, account_for_path(mailbox.path, dirs or {}))
            except MailboxOpenError as e:
                logger.warning("store_folder_skipped", profile=profile, folder=mailbox.name, error=str(e))
                continue
            refreshed += 1

        self._mark_synced(profile)
        return refreshed

    def sync(
        self,
        profile: str,
        mailboxes: list[Mailbox],
        dirs: AccountDirs | None = None,
        *,
        prune: bool = True,
    ) -> SyncResult:
        """Full scan of every folder, upsert, then mirror-prune.

        Pruning only happens when every folder was scanned and at least one
        message was seen; a folder that could not be opened, or an empty
        scan, leaves the store's existing rows alone.
        """

        keep: list[str] = []
        complete = True
        folders = 0
        for mailbox in mailboxes:
            try:
                keep.extend(
                    self.refresh_folder(profile, mailbox, account_for_path(mailbox.path, dirs or {}))
                )
            except MailboxOpenError as e:
                complete = False
                logger.warning("store_folder_skipped", profile=profile, folder=mailbox.name, error=str(e))
                continue
            folders += 1

        pruned = 0
        if prune and not complete:
            logger.warning("store_prune_skipped", profile=profile, reason="incomplete scan")
        elif prune and not keep:
            logger.warning("store_prune_skipped", profile=profile, reason="nothing scanned", folders=len(mailboxes))
        elif prune:
            pruned = self._repo.prune(profile, keep)

        self._mark_synced(profile)
        logger.info(
            "store_sync_complete",
            profile=profile,
            folders=folders,
            messages=len(keep),
            pruned=pruned,
        )
        return SyncResult(folders=folders, messages=len(keep), pruned=pruned, complete=complete)

    def _mark_synced(self, profile: str) -> None:
        self._repo.set_meta(synced_at_key(profile), datetime.now(timezone.utc).isoformat())
