"""Pytest configuration and shared fixtures."""

from __future__ import annotations

from pathlib import Path

import pytest
import structlog

from thunderbird_search.config import Settings
from thunderbird_search.exceptions import AccountNotFoundError
from thunderbird_search.models import Mailbox, Profile


def make_message(
    subject: str = "Hello",
    sender: str = "Alice <alice@example.com>",
    date: str | None = "Fri, 02 Feb 2024 10:00:00 +0000",
    body: str = "Hello world",
    message_id: str | None = "<m1@example.com>",
    extra_headers: str = "",
) -> bytes:
    """Build a simple single-part text/plain message."""

    lines = [f"From: {sender}", f"Subject: {subject}"]
    if date is not None:
        lines.append(f"Date: {date}")
    if message_id is not None:
        lines.append(f"Message-ID: {message_id}")
    lines.append("Content-Type: text/plain; charset=utf-8")
    if extra_headers:
        lines.append(extra_headers.rstrip("\n"))
    return ("\n".join(lines) + "\n\n" + body + "\n").encode("utf-8")


def write_mbox(path: Path, messages: list[bytes]) -> Path:
    """Write messages as an mbox file (one ``From `` separator each)."""

    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "wb") as fh:
        for raw in messages:
            fh.write(b"From - Fri Feb  2 10:00:00 2024\n")
            fh.write(raw)
            if not raw.endswith(b"\n"):
                fh.write(b"\n")
            fh.write(b"\n")
    return path


def numbered_messages(count: int, start_day: int = 1) -> list[bytes]:
    """``count`` messages with increasing dates and distinct ids."""

    return [
        make_message(
            subject=f"Message {i}",
            date=f"{start_day + i:02d} Jan 2024 09:00:00 +0000",
            body=f"Body number {i}",
            message_id=f"<n{i}@example.com>",
        )
        for i in range(count)
    ]


@pytest.fixture(autouse=True)
def _reset_structlog():
    """Undo global structlog configuration done by ``cli.main`` between tests."""

    yield
    structlog.reset_defaults()


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    """Settings pointing at a temporary Thunderbird home."""

    return Settings(
        profile_root=tmp_path / "thunderbird",
        pg_dsn=None,
        log_level="DEBUG",
        debug=True,
    )


@pytest.fixture
def profile_tree(settings: Settings) -> Profile:
    """A default profile with one local and one IMAP account.

    Layout::

        profiles.ini
        Profiles/abc.default/prefs.js
        Profiles/abc.default/Mail/Local Folders/Inbox
        Profiles/abc.default/Mail/Local Folders/Trash
        Profiles/abc.default/ImapMail/imap.example.com/INBOX
    """

    root = settings.profile_root
    profile_dir = root / "Profiles" / "abc.default"
    profile_dir.mkdir(parents=True)
    (root / "profiles.ini").write_text(
        "[General]\nStartWithLastProfile=1\n\n"
        "[Profile0]\nName=default\nIsRelative=1\nPath=Profiles/abc.default\nDefault=1\n",
        encoding="utf-8",
    )
    (profile_dir / "prefs.js").write_text(
        "\n".join(
            [
                'user_pref("mail.accountmanager.accounts", "account1,account2");',
                'user_pref("mail.account.account1.server", "server1");',
                'user_pref("mail.account.account1.identities", "id1");',
                'user_pref("mail.server.server1.directory-rel", "[ProfD]ImapMail/imap.example.com");',
                'user_pref("mail.identity.id1.useremail", "Alice@Example.com");',
                'user_pref("mail.account.account2.server", "server2");',
                'user_pref("mail.account.account2.identities", "id2");',
                f'user_pref("mail.server.server2.directory", "{profile_dir / "Mail" / "Local Folders"}");',
                'user_pref("mail.identity.id2.useremail", "bob@example.org");',
            ]
        )
        + "\n",
        encoding="utf-8",
    )

    write_mbox(
        profile_dir / "Mail" / "Local Folders" / "Inbox",
        [
            make_message(
                subject="Quarterly report",
                sender="Carol <carol@example.net>",
                date="Mon, 05 Feb 2024 08:30:00 +0000",
                body="Please find the quarterly numbers attached.",
                message_id="<report@example.net>",
            ),
            make_message(
                subject="Lunch",
                sender="Dave <dave@example.net>",
                date="Tue, 06 Feb 2024 12:00:00 +0000",
                body="Lunch at noon?",
                message_id="<lunch@example.net>",
            ),
        ],
    )
    write_mbox(
        profile_dir / "Mail" / "Local Folders" / "Trash",
        [
            make_message(
                subject="Old report draft",
                date="Wed, 10 Jan 2024 08:00:00 +0000",
                body="Draft of the report.",
                message_id="<draft@example.net>",
            ),
        ],
    )
    write_mbox(
        profile_dir / "ImapMail" / "imap.example.com" / "INBOX",
        [
            make_message(
                subject="Report review",
                date="Thu, 08 Feb 2024 16:45:00 +0000",
                body="Can you review the report?",
                message_id="<review@example.com>",
            ),
        ],
    )
    # Not mailboxes.
    (profile_dir / "Mail" / "Local Folders" / "Inbox.msf").write_text("summary", encoding="utf-8")
    (profile_dir / "ImapMail" / "imap.example.com" / "INBOX.sbd").mkdir()
    (profile_dir / "ImapMail" / "imap.example.com" / "msgFilterRules.dat").write_text("", encoding="utf-8")

    return Profile(
        name="default",
        path="Profiles/abc.default",
        absolute_path=profile_dir,
        is_relative=True,
        default=True,
    )


@pytest.fixture
def mailbox_factory(tmp_path: Path):
    """Create a Mailbox backed by an mbox file of the given messages."""

    def _make(name: str, messages: list[bytes]) -> Mailbox:
        path = write_mbox(tmp_path / "boxes" / name, messages)
        return Mailbox(name=name, path=path, size=path.stat().st_size)

    return _make


class StaticCatalog:
    """In-memory MailboxCatalog over a fixed set of mailboxes."""

    def __init__(self, profile: Profile, mailboxes: list[Mailbox], dirs: dict[str, list[str]] | None = None) -> None:
        self.profile = profile
        self.mailboxes = mailboxes
        self.dirs = dirs

    def resolve_profile(self, name: str) -> Profile:
        return self.profile

    def list_mailboxes(self, profile: Profile) -> list[Mailbox]:
        return list(self.mailboxes)

    def account_dirs(self, profile: Profile) -> dict[str, list[str]]:
        if self.dirs is None:
            raise AccountNotFoundError("prefs.js not available")
        return self.dirs
