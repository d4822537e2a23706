"""Helpers for turning raw RFC 5322 messages into searchable summaries."""

from __future__ import annotations

import re
from email import message_from_bytes
from email import policy
from email.errors import HeaderParseError, MissingHeaderBodySeparatorDefect
from email.header import decode_header, make_header
from email.message import Message

from bs4 import BeautifulSoup

from thunderbird_search.exceptions import MessageParseError
from thunderbird_search.mail.dates import display_date, parse_date
from thunderbird_search.models import MessageSummary
from thunderbird_search.utils import to_valid_utf8, truncate

DEFAULT_MAX_PART_BYTES = 2 << 20
DEFAULT_SNIPPET_LENGTH = 160

# Labels some mail clients emit that Python's codec registry does not know.
_CHARSET_ALIASES = {
    "x-sjis": "shift_jis",
    "x-euc-jp": "euc_jp",
    "x-gb2312": "gb2312",
    "x-big5": "big5",
    "x-unknown": "utf-8",
}

_FOLD_RE = re.compile(r"\r?\n[ \t]+")


def _header_map(msg: Message) -> dict[str, str]:
    result: dict[str, str] = {}
    for name, value in msg.raw_items():
        # Keep the first occurrence of repeated headers.
        result.setdefault(name.lower(), _FOLD_RE.sub(" ", str(value)).strip())
    return result


def decode_header_value(value: str | None) -> str:
    """Decode MIME encoded-words in a header value.

    Undecodable values are returned as-is. The result is always valid UTF-8.
    """

    if not value:
        return ""
    try:
        decoded = str(make_header(decode_header(value)))
    except (HeaderParseError, LookupError, UnicodeError, ValueError):
        decoded = value
    return to_valid_utf8(decoded)


def decode_charset(payload: bytes, charset: str | None) -> str:
    """Best-effort transcoding of a part payload to text."""

    name = (charset or "utf-8").strip().lower()
    name = _CHARSET_ALIASES.get(name, name)
    try:
        return payload.decode(name, errors="replace")
    except LookupError:
        return payload.decode("utf-8", errors="replace")


def html_to_text(html: str) -> str:
    """Reduce an HTML document to its visible text on a single line."""

    soup = BeautifulSoup(html, "html.parser")
    for tag in soup(["script", "style"]):
        tag.decompose()
    return " ".join(" ".join(soup.stripped_strings).split())


def extract_text(part: Message, max_part_bytes: int = DEFAULT_MAX_PART_BYTES) -> tuple[str, str]:
    """Find body text in a message or MIME part.

    Multipart containers are walked recursively. The first non-empty
    ``text/plain`` part wins; the first ``text/html`` part is kept, reduced to
    text, as a fallback. Attachments are ignored.

    Returns:
        A ``(plain, html_fallback)`` pair; either may be empty.
    """

    # message/rfc822 parts are also "multipart" to the email package; an inline
    # forwarded message is not body text of this one.
    if part.get_content_maintype() == "multipart" and part.is_multipart():
        plain = ""
        fallback = ""
        for sub in part.get_payload():
            sub_plain, sub_fallback = extract_text(sub, max_part_bytes)
            if sub_plain and not plain:
                plain = sub_plain
            if sub_fallback and not fallback:
                fallback = sub_fallback
        return plain, fallback

    if part.get_content_disposition() == "attachment":
        return "", ""

    content_type = part.get_content_type()
    if content_type not in ("text/plain", "text/html"):
        return "", ""

    # Undoes base64 / quoted-printable; identity payloads come back unchanged.
    payload = part.get_payload(decode=True) or b""
    if max_part_bytes > 0:
        payload = payload[:max_part_bytes]
    text = decode_charset(payload, part.get_content_charset())

    if content_type == "text/html":
        return "", html_to_text(text)
    return text, ""


def first_non_blank_line(text: str, limit: int = DEFAULT_SNIPPET_LENGTH) -> str:
    for line in text.splitlines():
        line = line.strip()
        if line:
            return truncate(line, limit)
    return ""


def parse_message(raw: bytes) -> Message:
    """Parse raw message bytes, rejecting a malformed header block.

    Raises:
        MessageParseError: If there are no headers or a header line is broken.
    """

    msg = message_from_bytes(raw, policy=policy.compat32)
    if not msg.keys():
        raise MessageParseError("message has no header block")
    if any(isinstance(d, MissingHeaderBodySeparatorDefect) for d in msg.defects):
        raise MessageParseError("malformed header line")
    return msg


def extract_full_message(
    raw: bytes,
    folder: str = "",
    *,
    max_message_bytes: int = 0,
    max_part_bytes: int = DEFAULT_MAX_PART_BYTES,
    snippet_length: int = DEFAULT_SNIPPET_LENGTH,
) -> tuple[MessageSummary, str]:
    """Convert one raw message to a MessageSummary plus its body text.

    The account label and folder tag are left at their defaults; the scanner
    stamps them.

    Args:
        raw: Message bytes as stored in the mailbox (without the ``From `` line).
        folder: Display name of the folder the message came from.
        max_message_bytes: Truncate ``raw`` to this many bytes (0 = no cap).
        max_part_bytes: Cap applied to each decoded MIME part.
        snippet_length: Snippet budget in characters, ellipsis included.

    Returns:
        The parsed summary (with its lowercase search blob) and the full
        extracted body text.

    Raises:
        MessageParseError: If the header block is malformed.
    """

    if max_message_bytes > 0:
        raw = raw[:max_message_bytes]

    msg = parse_message(raw)
    hm = _header_map(msg)

    subject = decode_header_value(hm.get("subject")).strip()
    sender = decode_header_value(hm.get("from")).strip()
    date_header = to_valid_utf8(hm.get("date", ""))
    when = parse_date(date_header)

    plain, fallback = extract_text(msg, max_part_bytes)
    body = to_valid_utf8(plain or fallback)

    summary = MessageSummary(
        folder=folder,
        subject=subject,
        sender=sender,
        date=display_date(when, date_header),
        when=when,
        message_id=to_valid_utf8(hm.get("message-id", "")),
        snippet=first_non_blank_line(body, snippet_length),
        search=" ".join([subject, sender, date_header, body]).lower(),
    )
    return summary, body


def extract_message(
    raw: bytes,
    folder: str = "",
    *,
    max_message_bytes: int = 0,
    max_part_bytes: int = DEFAULT_MAX_PART_BYTES,
    snippet_length: int = DEFAULT_SNIPPET_LENGTH,
) -> MessageSummary:
    """Convert one raw message to a MessageSummary, dropping the body text.

    Raises:
        MessageParseError: If the header block is malformed.
    """

    summary, _body = extract_full_message(
        raw,
        folder,
        max_message_bytes=max_message_bytes,
        max_part_bytes=max_part_bytes,
        snippet_length=snippet_length,
    )
    return summary


def normalize_subject(subject: str) -> str:
    """Lowercase a subject and strip any chain of ``Re:``/``Fwd:``/``Fw:`` prefixes."""

    s = subject.strip().lower()
    while True:
        for prefix in ("re:", "fwd:", "fw:"):
            if s.startswith(prefix):
                s = s[len(prefix):].strip()
                break
        else:
            return s
