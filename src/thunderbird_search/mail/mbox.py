"""Streaming reader for mbox container files.

A message starts after every line beginning with ``From ``; that separator line
is not part of the message. mboxrd quoting (``>From `` inside a body) is undone.
"""

from __future__ import annotations

import re
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import BinaryIO

from thunderbird_search.exceptions import MailboxOpenError

_SEPARATOR = b"From "
_QUOTED_FROM_RE = re.compile(rb"^>+From ")


def iter_messages(stream: BinaryIO, max_bytes: int = 0) -> Iterator[bytes]:
    """Yield the raw bytes of each message in ``stream``, in file order.

    Args:
        stream: Binary file object positioned at the start of the mailbox.
        max_bytes: Per-message cap; longer messages are truncated (0 = no cap).
    """

    buf = bytearray()
    in_message = False
    for line in stream:
        if line.startswith(_SEPARATOR):
            if in_message:
                yield bytes(buf)
            buf = bytearray()
            in_message = True
            continue
        if not in_message:
            # Preamble before the first separator.
            continue
        if _QUOTED_FROM_RE.match(line):
            line = line[1:]
        if max_bytes > 0:
            room = max_bytes - len(buf)
            if room <= 0:
                continue
            line = line[:room]
        buf.extend(line)

    if in_message:
        yield bytes(buf)


@contextmanager
def open_mailbox(path: Path | str) -> Iterator[BinaryIO]:
    """Open a mailbox file for reading.

    Raises:
        MailboxOpenError: If the file cannot be opened.
    """

    try:
        fh = open(path, "rb")
    except OSError as e:
        raise MailboxOpenError(f"Cannot open mailbox {path}: {e}") from e
    try:
        yield fh
    finally:
        fh.close()
