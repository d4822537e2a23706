"""Unit tests for the search service over a temporary profile."""

from __future__ import annotations

from datetime import date

import pytest
from conftest import StaticCatalog, make_message, numbered_messages
from sqlalchemy import create_engine

from thunderbird_search.exceptions import (
    AccountNotFoundError,
    CacheWriteError,
    NoMatchingFoldersError,
    ProfileNotFoundError,
)
from thunderbird_search.index.cache import load_index
from thunderbird_search.index.repository import MessageStoreRepository
from thunderbird_search.models import Profile, SearchRequest
from thunderbird_search.search import SearchService

REPORT_IDS = ["<review@example.com>", "<report@example.net>", "<draft@example.net>"]


@pytest.fixture
def service(settings, profile_tree) -> SearchService:
    return SearchService(settings)


def _ids(hits) -> list[str]:
    return [h.message_id for h in hits]


def _append(path, raw: bytes) -> None:
    with open(path, "ab") as fh:
        fh.write(b"From - Sat Feb 10 10:00:00 2024\n" + raw + b"\n")


class TestSearch:
    """Tests for filtering and ordering."""

    def test_search_across_folders_newest_first(self, service) -> None:
        hits = service.search(SearchRequest(query="report", limit=0))

        assert _ids(hits) == REPORT_IDS
        assert hits[2].folder_tag.value == "trash"

    def test_query_is_case_insensitive_substring(self, service) -> None:
        assert _ids(service.search(SearchRequest(query="QUARTERLY NUMBERS", limit=0))) == ["<report@example.net>"]

    def test_fuzzy_matches_every_word_in_any_order(self, service) -> None:
        assert _ids(service.search(SearchRequest(query="numbers quarterly", limit=0))) == []
        assert _ids(service.search(SearchRequest(query="numbers quarterly", fuzzy=True, limit=0))) == [
            "<report@example.net>"
        ]

    def test_limit(self, service) -> None:
        assert _ids(service.search(SearchRequest(query="report", limit=2))) == REPORT_IDS[:2]

    def test_empty_query_matches_everything(self, service) -> None:
        assert len(service.search(SearchRequest(limit=0))) == 4

    def test_date_bounds_are_inclusive_days(self, service) -> None:
        since = service.search(SearchRequest(query="report", since=date(2024, 2, 6), limit=0))
        till = service.search(SearchRequest(query="report", till=date(2024, 2, 5), limit=0))

        assert _ids(since) == ["<review@example.com>"]
        assert _ids(till) == ["<report@example.net>", "<draft@example.net>"]

    def test_folder_filter(self, service) -> None:
        hits = service.search(SearchRequest(query="report", folder_like="trash", limit=0))

        assert _ids(hits) == ["<draft@example.net>"]

    def test_account_filter_and_labels(self, service) -> None:
        alice = service.search(SearchRequest(account="Alice@Example.com", limit=0))
        everything = service.search(SearchRequest(limit=0))

        assert _ids(alice) == ["<review@example.com>"]
        assert alice[0].account == "alice@example.com"
        assert {h.account for h in everything} == {"alice@example.com", "bob@example.org"}

    def test_unknown_account_raises(self, service) -> None:
        with pytest.raises(AccountNotFoundError):
            service.search(SearchRequest(account="nobody@example.com"))

    def test_no_matching_folder_raises(self, service) -> None:
        with pytest.raises(NoMatchingFoldersError):
            service.search(SearchRequest(folder_like="archive"))

    def test_unknown_profile_raises(self, service) -> None:
        with pytest.raises(ProfileNotFoundError):
            service.search(SearchRequest(profile="missing"))

    def test_missing_profile_directory_raises(self, service, tmp_path) -> None:
        with pytest.raises(ProfileNotFoundError):
            service.search(SearchRequest(query="x", profile=str(tmp_path / "nope")))

    def test_no_matches_is_empty(self, service) -> None:
        assert service.search(SearchRequest(query="zebra")) == []


class TestCacheCoherence:
    """Tests that the cache file is used only while folders are unchanged."""

    def test_second_search_does_not_rescan(self, service, profile_tree) -> None:
        first = service.search(SearchRequest(query="report", limit=0))
        assert service.scanner.scan_count == 3
        assert load_index(service.cache_path(profile_tree)) is not None

        second = service.search(SearchRequest(query="report", limit=0))

        assert service.scanner.scan_count == 3
        assert second == first

    def test_cache_file_is_shared_between_runs(self, settings, profile_tree) -> None:
        SearchService(settings).search(SearchRequest(query="report", limit=0))
        fresh = SearchService(settings)

        hits = fresh.search(SearchRequest(query="lunch", limit=0))

        assert fresh.scanner.scan_count == 0
        assert _ids(hits) == ["<lunch@example.net>"]

    def test_changed_folder_is_rescanned(self, service, profile_tree) -> None:
        service.search(SearchRequest(query="report", limit=0))
        _append(
            profile_tree.absolute_path / "Mail" / "Local Folders" / "Inbox",
            make_message(
                subject="Report addendum",
                date="Sat, 10 Feb 2024 10:00:00 +0000",
                message_id="<addendum@example.net>",
            ),
        )

        hits = service.search(SearchRequest(query="report", limit=0))

        assert service.scanner.scan_count == 4
        assert _ids(hits)[0] == "<addendum@example.net>"

    def test_underfilled_entry_is_rescanned(self, service) -> None:
        service.search(SearchRequest(query="report", limit=0))

        service.search(SearchRequest(query="report", limit=5))

        assert service.scanner.scan_count == 6

    def test_no_cache_bypasses_file(self, service, profile_tree) -> None:
        service.search(SearchRequest(query="report", no_cache=True, limit=0))
        service.search(SearchRequest(query="report", no_cache=True, limit=0))

        assert service.scanner.scan_count == 6
        assert not service.cache_path(profile_tree).exists()

    def test_build_cache_then_search_without_scanning(self, service) -> None:
        index = service.build_cache()
        assert len(index.folders) == 3
        scans = service.scanner.scan_count

        hits = service.search(SearchRequest(query="report", limit=0))

        assert service.scanner.scan_count == scans
        assert _ids(hits) == REPORT_IDS

    def test_cache_write_failure_keeps_hits(self, settings, profile_tree) -> None:
        broken = SearchService(settings.model_copy(update={"index_file_name": "no-such-dir/index.json"}))

        with pytest.raises(CacheWriteError) as excinfo:
            broken.search(SearchRequest(query="report", limit=0))

        assert _ids(excinfo.value.hits) == REPORT_IDS


class TestStore:
    """Tests for searches answered by the persistent store."""

    @pytest.fixture
    def store_service(self, settings, profile_tree, tmp_path) -> SearchService:
        repo = MessageStoreRepository(create_engine(f"sqlite:///{tmp_path / 'store.sqlite3'}"), max_retries=0)
        return SearchService(settings, repository=repo)

    def test_store_search_hydrates_and_matches_scan(self, store_service) -> None:
        hits = store_service.search(SearchRequest(query="report", use_store=True, limit=0))

        assert _ids(hits) == REPORT_IDS
        assert store_service.scanner.scan_count == 3

    def test_store_search_filters(self, store_service) -> None:
        store_service.sync_store()

        alice = store_service.search(SearchRequest(account="alice@example.com", use_store=True, limit=0))
        trash = store_service.search(SearchRequest(folder_like="trash", use_store=True, limit=0))

        assert _ids(alice) == ["<review@example.com>"]
        assert _ids(trash) == ["<draft@example.net>"]

    def test_sync_store_reports_counts(self, store_service) -> None:
        result = store_service.sync_store()

        assert result.folders == 3
        assert result.messages == 4
        assert result.complete


def test_recent_returns_last_messages_newest_first(service) -> None:
    hits = service.recent("Local Folders/Inbox", limit=1)
    both = service.recent("Local Folders/Inbox")

    assert _ids(hits) == ["<lunch@example.net>"]
    assert hits[0].account == "bob@example.org"
    assert _ids(both) == ["<lunch@example.net>", "<report@example.net>"]


def test_list_folders(service) -> None:
    profile, boxes = service.list_folders()

    assert profile.name == "default"
    assert [b.name for b in boxes][0] == "ImapMail/imap.example.com/INBOX"


class TestInjectedCatalog:
    """Tests with an in-memory catalog instead of a Thunderbird home."""

    @pytest.fixture
    def boxes(self, mailbox_factory):
        return [
            mailbox_factory("Inbox", numbered_messages(3)),
            mailbox_factory("Notes", [make_message(subject="Undated note", date=None, message_id="<note@x>")]),
        ]

    @pytest.fixture
    def catalog(self, tmp_path, boxes) -> StaticCatalog:
        return StaticCatalog(Profile(name="static", path=str(tmp_path), absolute_path=tmp_path), boxes)

    def test_missing_prefs_only_matters_for_account_searches(self, settings, catalog) -> None:
        service = SearchService(settings, catalog=catalog)

        hits = service.search(SearchRequest(limit=0))

        assert len(hits) == 4
        assert hits[-1].message_id == "<note@x>"
        with pytest.raises(AccountNotFoundError):
            service.search(SearchRequest(account="me@example.com"))

    def test_undated_entries_are_rescanned(self, settings, catalog) -> None:
        service = SearchService(settings, catalog=catalog)
        service.search(SearchRequest(limit=0))

        service.search(SearchRequest(limit=0))

        assert service.scanner.scan_count == 3

    def test_tail_keeps_last_matches_per_folder(self, settings, catalog) -> None:
        service = SearchService(settings, catalog=catalog)

        hits = service.search(SearchRequest(query="message", tail=1, no_cache=True, limit=0))

        assert [h.subject for h in hits] == ["Message 2"]


class TestShow:
    """Tests for printing full messages and threads."""

    def test_first_match_with_body(self, service) -> None:
        (message,) = service.show("Local Folders/Inbox", query="quarterly")

        assert message.summary.message_id == "<report@example.net>"
        assert message.summary.account == "bob@example.org"
        assert message.body.strip() == "Please find the quarterly numbers attached."

    def test_limit_keeps_file_order(self, service) -> None:
        shown = service.show("Local Folders/Inbox", query="", limit=0)

        assert [m.summary.message_id for m in shown] == ["<report@example.net>", "<lunch@example.net>"]

    def test_no_matches_is_empty(self, service) -> None:
        assert service.show("trash", query="zebra") == []

    def test_account_must_own_folder(self, service) -> None:
        assert len(service.show("imap.example.com/INBOX", query="review", account="alice@example.com")) == 1
        with pytest.raises(NoMatchingFoldersError):
            service.show("Local Folders/Inbox", query="lunch", account="alice@example.com")
        with pytest.raises(AccountNotFoundError):
            service.show("trash", query="draft", account="nobody@example.com")

    @pytest.fixture
    def thread_service(self, settings, tmp_path, mailbox_factory) -> SearchService:
        box = mailbox_factory(
            "Threads",
            [
                make_message(subject="Other topic", date="Thu, 01 Feb 2024 09:00:00 +0000", message_id="<o@x>"),
                make_message(
                    subject="Budget plan",
                    date="Fri, 02 Feb 2024 09:00:00 +0000",
                    body="First draft of the budget.",
                    message_id="<b1@x>",
                ),
                make_message(
                    subject="Fwd: Re: budget PLAN",
                    date="Mon, 05 Feb 2024 09:00:00 +0000",
                    body="Forwarding.",
                    message_id="<b3@x>",
                ),
                make_message(
                    subject="RE: Budget plan",
                    date="Sat, 03 Feb 2024 09:00:00 +0000",
                    body="Looks fine.",
                    message_id="<b2@x>",
                ),
                make_message(subject="Re: Other topic", date="Tue, 06 Feb 2024 09:00:00 +0000", message_id="<o2@x>"),
            ],
        )
        catalog = StaticCatalog(Profile(name="static", path=str(tmp_path), absolute_path=tmp_path), [box])
        return SearchService(settings, catalog=catalog)

    def test_thread_collects_same_subject_oldest_first(self, thread_service) -> None:
        shown = thread_service.show("Threads", query="budget", limit=0, thread=True)

        assert [m.summary.message_id for m in shown] == ["<b1@x>", "<b2@x>", "<b3@x>"]
        assert shown[1].body.strip() == "Looks fine."

    def test_thread_respects_limit(self, thread_service) -> None:
        shown = thread_service.show("Threads", query="budget", limit=2, thread=True)

        assert [m.summary.message_id for m in shown] == ["<b1@x>", "<b2@x>"]
