"""Search orchestration: folders in, one ordered hit list out."""

from __future__ import annotations

from pathlib import Path

import structlog

from thunderbird_search.config import Settings
from thunderbird_search.exceptions import AccountNotFoundError, CacheWriteError
from thunderbird_search.index.cache import IndexFile, LocalIndexCache, build_index
from thunderbird_search.index.repository import MessageStoreRepository
from thunderbird_search.index.sync import StoreSynchronizer, SyncResult
from thunderbird_search.mail.parsing import normalize_subject
from thunderbird_search.mail.scanner import FolderScanner, match_all
from thunderbird_search.models import FullMessage, Mailbox, MessageSummary, Profile, SearchRequest
from thunderbird_search.profiles import (
    AccountDirs,
    MailboxCatalog,
    ThunderbirdCatalog,
    account_for_path,
    filter_mailboxes,
    find_mailbox,
)
from thunderbird_search.search.aggregate import aggregate
from thunderbird_search.search.matcher import make_matcher
from thunderbird_search.search.sources import (
    CachingScanSource,
    FolderScope,
    FolderSource,
    LiveScanSource,
    LocalCacheSource,
    StoreSource,
    fetch_first,
)

logger = structlog.get_logger()


class SearchService:
    """Runs searches over one mail client installation.

    Collaborators are injectable; by default the Thunderbird catalog under
    ``settings.profile_root`` is used and the store is built from
    ``settings.pg_dsn`` on first use.
    """

    def __init__(
        self,
        settings: Settings,
        *,
        catalog: MailboxCatalog | None = None,
        scanner: FolderScanner | None = None,
        repository: MessageStoreRepository | None = None,
    ) -> None:
        self._settings = settings
        self.catalog = catalog or ThunderbirdCatalog(settings.profile_root)
        self.scanner = scanner or FolderScanner(settings)
        self._repository = repository
        self._store_ready = False

    def cache_path(self, profile: Profile) -> Path:
        return profile.absolute_path / self._settings.index_file_name

    def list_folders(self, profile_name: str = "") -> tuple[Profile, list[Mailbox]]:
        profile = self.catalog.resolve_profile(profile_name)
        return profile, self.catalog.list_mailboxes(profile)

    def search(self, request: SearchRequest) -> list[MessageSummary]:
        """Run a search.

        Returns:
            Hits, newest first; an empty list means no matches.

        Raises:
            ProfileNotFoundError: If the profile cannot be resolved.
            AccountNotFoundError: If the requested account is not configured.
            NoMatchingFoldersError: If no folder is left to search.
            MailboxOpenError: If a selected mailbox cannot be opened.
            CacheWriteError: If the cache cannot be saved; ``hits`` holds the
                results.
            StoreError: If the persistent store fails.
        """

        profile = self.catalog.resolve_profile(request.profile)
        mailboxes = self.catalog.list_mailboxes(profile)
        dirs = self._account_dirs(profile, required=bool(request.account))
        selected = filter_mailboxes(
            mailboxes,
            folder_like=request.folder_like,
            account=request.account,
            dirs=dirs,
        )

        scope = FolderScope(
            match=make_matcher(request.query, request.fuzzy),
            query=request.query,
            start=request.start,
            end=request.end,
            account=request.account,
            dirs=dirs,
            limit=request.limit,
            max_messages=request.max_messages,
            tail=request.tail,
        )

        cache: LocalIndexCache | None = None
        sources: list[FolderSource]
        if request.use_store:
            repo = self._store_for(profile, mailboxes, dirs)
            sources = [StoreSource(repo, profile.name)]
        elif request.no_cache:
            sources = [LiveScanSource(self.scanner)]
        else:
            cache = LocalIndexCache.load(self.cache_path(profile))
            sources = [LocalCacheSource(cache), CachingScanSource(self.scanner, cache)]

        batches = [fetch_first(sources, mailbox, scope) for mailbox in selected]
        hits = aggregate(batches, start=request.start, end=request.end, limit=request.limit)
        logger.info(
            "search_complete",
            profile=profile.name,
            folders=len(selected),
            hits=len(hits),
            source=sources[0].name,
        )

        if cache is not None:
            try:
                cache.save()
            except CacheWriteError as e:
                raise CacheWriteError(str(e), hits=hits) from e
        return hits

    def recent(
        self,
        folder: str,
        *,
        profile_name: str = "",
        limit: int = 20,
        query: str = "",
    ) -> list[MessageSummary]:
        """Return the last ``limit`` messages of one folder, newest first.

        "Newest" means last in the mailbox file. A non-empty ``query`` keeps
        only messages containing it.
        """

        profile = self.catalog.resolve_profile(profile_name)
        mailbox = find_mailbox(self.catalog.list_mailboxes(profile), folder)
        dirs = self._account_dirs(profile, required=False)
        window = self.scanner.scan(
            mailbox,
            make_matcher(query) if query else match_all,
            tail=limit,
            account=account_for_path(mailbox.path, dirs),
        )
        window.reverse()
        return window

    def show(
        self,
        folder: str,
        *,
        query: str,
        profile_name: str = "",
        account: str = "",
        limit: int = 1,
        thread: bool = False,
    ) -> list[FullMessage]:
        """Return full messages of one folder containing ``query``.

        Without ``thread`` the first ``limit`` matches are returned in file
        order. With ``thread`` the first match fixes a subject (``Re:``/``Fwd:``
        prefixes ignored) and it and every later message of the folder with
        that subject are returned, oldest first, up to ``limit``.

        Raises:
            ProfileNotFoundError: If the profile cannot be resolved.
            NoMatchingFoldersError: If no folder matches, or the folder is not
                in ``account``.
            AccountNotFoundError: If ``account`` is not configured.
            MailboxOpenError: If the mailbox cannot be opened.
        """

        profile = self.catalog.resolve_profile(profile_name)
        mailbox = find_mailbox(self.catalog.list_mailboxes(profile), folder)
        account = account.strip().lower()
        dirs = self._account_dirs(profile, required=bool(account))
        if account:
            filter_mailboxes([mailbox], account=account, dirs=dirs)
        label = account or account_for_path(mailbox.path, dirs)
        match = make_matcher(query)

        found: list[FullMessage] = []
        subject: str | None = None
        for summary, body in self.scanner.read_full(mailbox):
            if not thread and limit > 0 and len(found) >= limit:
                break
            if thread and subject is not None:
                if normalize_subject(summary.subject) == subject:
                    found.append(FullMessage(summary=summary.model_copy(update={"account": label}), body=body))
                continue
            if not match(summary.search):
                continue
            if thread:
                subject = normalize_subject(summary.subject)
            found.append(FullMessage(summary=summary.model_copy(update={"account": label}), body=body))

        if thread:
            found.sort(key=_oldest_first)
            if limit > 0:
                found = found[:limit]
        logger.info("show_complete", folder=mailbox.name, messages=len(found), thread=thread)
        return found

    def build_cache(
        self,
        *,
        profile_name: str = "",
        folder_like: str = "",
        account: str = "",
        tail: int = 0,
    ) -> IndexFile:
        """Pre-build the profile's cache file for the selected folders."""

        profile = self.catalog.resolve_profile(profile_name)
        account = account.strip().lower()
        dirs = self._account_dirs(profile, required=bool(account))
        selected = filter_mailboxes(
            self.catalog.list_mailboxes(profile),
            folder_like=folder_like,
            account=account,
            dirs=dirs,
        )
        account_of = {str(b.path): account or account_for_path(b.path, dirs) for b in selected}
        return build_index(self.scanner, selected, self.cache_path(profile), account_of=account_of, tail=tail)

    def sync_store(self, *, profile_name: str = "", prune: bool = True) -> SyncResult:
        """Mirror every folder of the profile into the persistent store."""

        profile = self.catalog.resolve_profile(profile_name)
        mailboxes = self.catalog.list_mailboxes(profile)
        dirs = self._account_dirs(profile, required=False)
        return self._synchronizer(self._repository_ready()).sync(profile.name, mailboxes, dirs, prune=prune)

    def _store_for(self, profile: Profile, mailboxes: list[Mailbox], dirs: AccountDirs) -> MessageStoreRepository:
        repo = self._repository_ready()
        sync = self._synchronizer(repo)
        if repo.count_messages(profile.name) == 0:
            logger.info("store_hydrating", profile=profile.name, folders=len(mailboxes))
            sync.sync(profile.name, mailboxes, dirs)
        else:
            sync.refresh_stale(profile.name, mailboxes, dirs)
        return repo

    def _repository_ready(self) -> MessageStoreRepository:
        if self._repository is None:
            self._repository = MessageStoreRepository.from_settings(self._settings)
        if not self._store_ready:
            self._repository.initialize()
            self._store_ready = True
        return self._repository

    def _synchronizer(self, repo: MessageStoreRepository) -> StoreSynchronizer:
        return StoreSynchronizer(
            repo,
            self.scanner,
            refresh_interval=self._settings.store_refresh_interval,
        )

    def _account_dirs(self, profile: Profile, *, required: bool) -> AccountDirs:
        try:
            return self.catalog.account_dirs(profile)
        except AccountNotFoundError:
            if required:
                raise
            return {}


def _oldest_first(message: FullMessage) -> tuple[bool, float, str]:
    when = message.summary.when
    # Undated messages go last, by raw date.
    return (when is None, when.timestamp() if when is not None else 0.0, message.summary.date)
