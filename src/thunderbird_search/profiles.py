"""Thunderbird profile, mailbox and account discovery.

Everything here only reads the profile directory: ``profiles.ini`` for the
profile list, ``prefs.js`` for account directories, and the ``Mail`` and
``ImapMail`` trees for mbox files.
"""

from __future__ import annotations

import os
import re
from pathlib import Path
from typing import Protocol

import structlog

from thunderbird_search.exceptions import (
    AccountNotFoundError,
    NoMatchingFoldersError,
    ProfileNotFoundError,
)
from thunderbird_search.models import Mailbox, Profile

logger = structlog.get_logger()

_PREF_RE = re.compile(r'user_pref\("([^"]+)",\s*"(.*)"\);')

_MAIL_ROOTS = ("Mail", "ImapMail")
_SKIP_SUFFIXES = (".msf", ".dat", ".json", ".db", ".sqlite")

AccountDirs = dict[str, list[str]]


class MailboxCatalog(Protocol):
    """Source of profiles, their mailboxes and their account directories."""

    def resolve_profile(self, name: str) -> Profile: ...

    def list_mailboxes(self, profile: Profile) -> list[Mailbox]: ...

    def account_dirs(self, profile: Profile) -> AccountDirs: ...


def _profile_from_section(root: Path, kv: dict[str, str]) -> Profile:
    path = kv.get("Path", "")
    is_relative = kv.get("IsRelative") == "1"
    absolute = root / path if is_relative else Path(path)
    return Profile(
        name=kv.get("Name") or Path(path).name,
        path=path,
        absolute_path=Path(os.path.normpath(absolute)),
        is_relative=is_relative,
        default=kv.get("Default") == "1",
    )


def load_profiles(root: Path) -> list[Profile]:
    """Parse ``profiles.ini`` under ``root``.

    Raises:
        ProfileNotFoundError: If ``profiles.ini`` cannot be read.
    """

    ini = root / "profiles.ini"
    try:
        text = ini.read_text(encoding="utf-8", errors="replace")
    except OSError as e:
        raise ProfileNotFoundError(f"Cannot read {ini}: {e}") from e

    profiles: list[Profile] = []
    current: dict[str, str] | None = None
    for line in text.splitlines():
        line = line.strip()
        if not line or line.startswith(("#", ";")):
            continue
        if line.startswith("[") and line.endswith("]"):
            if current is not None:
                profiles.append(_profile_from_section(root, current))
            section = line.strip("[]")
            current = {} if section.lower().startswith("profile") else None
            continue
        if current is None or "=" not in line:
            continue
        key, _, value = line.partition("=")
        current[key] = value
    if current is not None:
        profiles.append(_profile_from_section(root, current))
    return profiles


def resolve_profile(root: Path, name: str = "") -> Profile:
    """Find a profile by name, directory name or path.

    An empty name selects the default profile (or the first one listed).

    Raises:
        ProfileNotFoundError: If nothing matches.
    """

    if not name:
        profiles = load_profiles(root)
        for p in profiles:
            if p.default:
                return p
        if profiles:
            return profiles[0]
        raise ProfileNotFoundError(f"No profiles found in {root / 'profiles.ini'}")

    needle = name.lower()
    try:
        profiles = load_profiles(root)
    except ProfileNotFoundError:
        profiles = []
    for p in profiles:
        if needle in (p.name.lower(), Path(p.path).name.lower(), p.absolute_path.name.lower()):
            return p

    candidate = Path(name)
    if candidate.is_absolute():
        if candidate.is_dir():
            return Profile(name=candidate.name, path=name, absolute_path=candidate)
        raise ProfileNotFoundError(f"Profile directory {name} does not exist")
    alt = root / name
    if alt.is_dir():
        return Profile(name=candidate.name, path=name, absolute_path=alt)
    raise ProfileNotFoundError(f"Profile {name!r} not found")


def _is_mailbox_file(filename: str) -> bool:
    if filename.endswith(_SKIP_SUFFIXES):
        return False
    ext = os.path.splitext(filename)[1]
    return ext in ("", ".mbox")


def list_mailboxes(profile: Profile) -> list[Mailbox]:
    """List mbox files under the profile's ``Mail`` and ``ImapMail`` trees."""

    boxes: list[Mailbox] = []
    for root_name in _MAIL_ROOTS:
        root = profile.absolute_path / root_name
        if not root.is_dir():
            continue
        for dirpath, dirnames, filenames in os.walk(root):
            # Attachment stores, not mail folders.
            dirnames[:] = [d for d in dirnames if not d.endswith(".mozmsgs")]
            for filename in filenames:
                if not _is_mailbox_file(filename):
                    continue
                path = Path(dirpath) / filename
                try:
                    size = path.stat().st_size
                except OSError:
                    continue
                boxes.append(
                    Mailbox(
                        name=path.relative_to(profile.absolute_path).as_posix(),
                        path=path,
                        size=size,
                    )
                )
    boxes.sort(key=lambda b: b.name)
    return boxes


def parse_prefs(path: Path) -> dict[str, str]:
    """Read ``user_pref("key", "value");`` lines from a prefs.js file."""

    prefs: dict[str, str] = {}
    for line in path.read_text(encoding="utf-8", errors="replace").splitlines():
        m = _PREF_RE.search(line)
        if m:
            prefs[m.group(1)] = m.group(2)
    return prefs


def _split_csv(value: str | None) -> list[str]:
    if not value:
        return []
    return [part.strip() for part in value.split(",") if part.strip()]


def account_dirs(profile: Profile) -> AccountDirs:
    """Map each identity email (lowercase) to its account storage directories.

    Raises:
        AccountNotFoundError: If ``prefs.js`` cannot be read.
    """

    prefs_path = profile.absolute_path / "prefs.js"
    try:
        prefs = parse_prefs(prefs_path)
    except OSError as e:
        raise AccountNotFoundError(f"Cannot read {prefs_path}: {e}") from e

    result: AccountDirs = {}
    for account in _split_csv(prefs.get("mail.accountmanager.accounts")):
        server = prefs.get(f"mail.account.{account}.server", "")
        identities = _split_csv(prefs.get(f"mail.account.{account}.identities"))
        directory = prefs.get(f"mail.server.{server}.directory", "")
        if not directory:
            rel = prefs.get(f"mail.server.{server}.directory-rel", "")
            if rel.startswith("[ProfD]"):
                directory = str(profile.absolute_path / rel[len("[ProfD]"):])
            elif rel:
                directory = os.path.normpath(rel)
        if not directory:
            continue
        for identity in identities:
            email = prefs.get(f"mail.identity.{identity}.useremail", "").strip().lower()
            if not email:
                continue
            dirs = result.setdefault(email, [])
            if directory not in dirs:
                dirs.append(directory)
    return result


def account_for_path(path: Path | str, dirs: AccountDirs) -> str:
    """Attribute a mailbox path to the account with the longest matching directory."""

    target = str(path)
    best = ""
    best_len = -1
    for email, prefixes in dirs.items():
        for prefix in prefixes:
            if target.startswith(prefix) and len(prefix) > best_len:
                best = email
                best_len = len(prefix)
    return best


def filter_mailboxes(
    mailboxes: list[Mailbox],
    *,
    folder_like: str = "",
    account: str = "",
    dirs: AccountDirs | None = None,
) -> list[Mailbox]:
    """Scope mailboxes to an account and a folder-name substring.

    Raises:
        AccountNotFoundError: If ``account`` has no directories in ``dirs``.
        NoMatchingFoldersError: If the filters leave no mailbox.
    """

    boxes = mailboxes
    if account:
        prefixes = (dirs or {}).get(account.lower(), [])
        if not prefixes:
            raise AccountNotFoundError(f"Account {account} not found in prefs.js")
        boxes = [b for b in boxes if any(str(b.path).startswith(d) for d in prefixes)]
        if not boxes:
            raise NoMatchingFoldersError(f"No folders for account {account}")

    if folder_like:
        needle = folder_like.lower()
        boxes = [
            b
            for b in boxes
            if needle in b.name.lower() or needle in Path(b.name).name.lower()
        ]
    if not boxes and not folder_like:
        raise NoMatchingFoldersError("Profile has no mailboxes")
    if not boxes:
        raise NoMatchingFoldersError(f"No folders match {folder_like!r}")
    return boxes


def find_mailbox(mailboxes: list[Mailbox], name: str) -> Mailbox:
    """Pick one mailbox by exact name or basename, else the first substring match.

    Raises:
        NoMatchingFoldersError: If nothing matches.
    """

    needle = name.lower()
    fallback: Mailbox | None = None
    for b in mailboxes:
        rel = b.name.lower()
        base = Path(b.name).name.lower()
        if needle in (rel, base):
            return b
        if fallback is None and (needle in rel or needle in base):
            fallback = b
    if fallback is None:
        raise NoMatchingFoldersError(f"Folder {name!r} not found")
    return fallback


class ThunderbirdCatalog:
    """MailboxCatalog over a Thunderbird home directory."""

    def __init__(self, root: Path) -> None:
        self._root = root

    def load_profiles(self) -> list[Profile]:
        return load_profiles(self._root)

    def resolve_profile(self, name: str) -> Profile:
        return resolve_profile(self._root, name)

    def list_mailboxes(self, profile: Profile) -> list[Mailbox]:
        return list_mailboxes(profile)

    def account_dirs(self, profile: Profile) -> AccountDirs:
        return account_dirs(profile)
