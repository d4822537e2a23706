"""Profile, mailbox and file fingerprint models."""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path


@dataclass(frozen=True)
class Profile:
    """A mail client profile directory."""

    name: str
    path: str
    absolute_path: Path
    is_relative: bool = False
    default: bool = False


@dataclass(frozen=True)
class Mailbox:
    """One mailbox container file."""

    name: str
    path: Path
    size: int = 0


@dataclass(frozen=True)
class Fingerprint:
    """Cheap change detector for a mailbox file: modification time and size."""

    mtime_ns: int
    size: int

    @classmethod
    def of(cls, path: Path | str) -> Fingerprint:
        """Stat ``path`` and return its fingerprint.

        Raises:
            OSError: If the file cannot be stat'ed.
        """

        st = os.stat(path)
        return cls(mtime_ns=st.st_mtime_ns, size=st.st_size)

    def encode(self) -> str:
        return f"{self.mtime_ns}:{self.size}"

    @classmethod
    def decode(cls, value: str | None) -> Fingerprint | None:
        if not value:
            return None
        mtime, _, size = value.partition(":")
        try:
            return cls(mtime_ns=int(mtime), size=int(size))
        except ValueError:
            return None
