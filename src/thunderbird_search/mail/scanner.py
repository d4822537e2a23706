"""Sequential mailbox scanning with caps, tail windows and fault tolerance."""

from __future__ import annotations

from collections import deque
from collections.abc import Callable, Iterator
from datetime import datetime

import structlog

from thunderbird_search.config import Settings
from thunderbird_search.exceptions import MessageParseError
from thunderbird_search.mail.mbox import iter_messages, open_mailbox
from thunderbird_search.mail.parsing import extract_full_message, extract_message
from thunderbird_search.models import Mailbox, MessageSummary, folder_tag_for

logger = structlog.get_logger()

Matcher = Callable[[str], bool]


def match_all(_blob: str) -> bool:
    return True


def in_date_range(summary: MessageSummary, start: datetime | None, end: datetime | None) -> bool:
    """Check ``start <= when < end``; undated messages are always in range."""

    if summary.when is None:
        return True
    if start is not None and summary.when < start:
        return False
    if end is not None and summary.when >= end:
        return False
    return True


class FolderScanner:
    """Walks mailbox files one message at a time.

    ``scan_count`` counts mailbox files opened, which lets callers verify that
    cached results were served without touching the container.
    """

    def __init__(self, settings: Settings) -> None:
        self._max_message_bytes = settings.max_message_bytes
        self._max_part_bytes = settings.max_part_bytes
        self._snippet_length = settings.snippet_length
        self._warn_limit = settings.scan_warn_limit
        self.scan_count = 0

    def scan(
        self,
        mailbox: Mailbox,
        match: Matcher = match_all,
        *,
        max_messages: int = 0,
        tail: int = 0,
        start: datetime | None = None,
        end: datetime | None = None,
        account: str = "",
    ) -> list[MessageSummary]:
        """Scan one mailbox and return the matching summaries in file order.

        Args:
            mailbox: Mailbox to read.
            match: Predicate over the lowercase search blob.
            max_messages: Stop after this many messages seen (0 = all). Ignored
                when ``tail`` is set.
            tail: Keep only the last ``tail`` matches (0 = keep all).
            start: Inclusive lower timestamp bound.
            end: Exclusive upper timestamp bound.
            account: Account label stamped on every summary.

        Raises:
            MailboxOpenError: If the mailbox file cannot be opened.
        """

        hits: deque[MessageSummary] | list[MessageSummary]
        hits = deque(maxlen=tail) if tail > 0 else []
        tag = folder_tag_for(mailbox.name)
        seen = 0
        faults = 0

        with open_mailbox(mailbox.path) as fh:
            self.scan_count += 1
            for raw in iter_messages(fh, self._max_message_bytes):
                seen += 1
                if max_messages > 0 and tail == 0 and seen > max_messages:
                    break
                try:
                    summary = extract_message(
                        raw,
                        mailbox.name,
                        max_part_bytes=self._max_part_bytes,
                        snippet_length=self._snippet_length,
                    )
                except MessageParseError as e:
                    faults += 1
                    self._report_fault(mailbox, seen, faults, e)
                    continue

                if not in_date_range(summary, start, end):
                    continue
                if not match(summary.search):
                    continue
                hits.append(summary.model_copy(update={"account": account, "folder_tag": tag}))

        self._report_suppressed(mailbox, faults)
        logger.debug("mailbox_scanned", folder=mailbox.name, seen=seen, matched=len(hits))
        return list(hits)

    def read_full(self, mailbox: Mailbox) -> Iterator[tuple[MessageSummary, str]]:
        """Yield every extractable message of ``mailbox`` with its body text, in file order.

        Raises:
            MailboxOpenError: If the mailbox file cannot be opened.
        """

        tag = folder_tag_for(mailbox.name)
        faults = 0
        with open_mailbox(mailbox.path) as fh:
            self.scan_count += 1
            for seen, raw in enumerate(iter_messages(fh, self._max_message_bytes), start=1):
                try:
                    summary, body = extract_full_message(
                        raw,
                        mailbox.name,
                        max_part_bytes=self._max_part_bytes,
                        snippet_length=self._snippet_length,
                    )
                except MessageParseError as e:
                    faults += 1
                    self._report_fault(mailbox, seen, faults, e)
                    continue
                yield summary.model_copy(update={"folder_tag": tag}), body
        self._report_suppressed(mailbox, faults)

    def _report_fault(self, mailbox: Mailbox, position: int, faults: int, error: Exception) -> None:
        if faults <= self._warn_limit:
            logger.warning("message_extract_failed", folder=mailbox.name, position=position, error=str(error))

    def _report_suppressed(self, mailbox: Mailbox, faults: int) -> None:
        if faults > self._warn_limit:
            logger.info(
                "message_faults_suppressed",
                folder=mailbox.name,
                faults=faults,
                reported=self._warn_limit,
            )
