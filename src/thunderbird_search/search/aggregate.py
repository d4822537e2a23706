"""Merging per-folder hits into one de-duplicated, date-ordered result."""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from datetime import datetime

from thunderbird_search.mail.scanner import in_date_range
from thunderbird_search.models import MessageSummary


@dataclass(frozen=True)
class DedupKey:
    """Identity of a hit across folders and sources.

    Hits are the same message when message id, subject, date and folder all
    agree. A hit with all four empty is keyed by (date, snippet) instead, so
    metadata-less messages neither vanish into one another nor collide with
    unrelated messages; ``snippet`` is only ever set for such fallback keys.
    """

    message_id: str = ""
    subject: str = ""
    date: str = ""
    folder: str = ""
    snippet: str = ""

    @classmethod
    def of(cls, summary: MessageSummary) -> DedupKey:
        if summary.message_id or summary.subject or summary.date or summary.folder:
            return cls(
                message_id=summary.message_id,
                subject=summary.subject,
                date=summary.date,
                folder=summary.folder,
            )
        return cls(date=summary.date, snippet=summary.snippet)


def sort_hits(hits: Iterable[MessageSummary]) -> list[MessageSummary]:
    """Newest first; undated hits after all dated ones, by raw date descending."""

    dated: list[MessageSummary] = []
    undated: list[MessageSummary] = []
    for h in hits:
        (dated if h.when is not None else undated).append(h)
    dated.sort(key=lambda h: h.when, reverse=True)
    undated.sort(key=lambda h: h.date, reverse=True)
    return dated + undated


def aggregate(
    batches: Iterable[Iterable[MessageSummary]],
    *,
    start: datetime | None = None,
    end: datetime | None = None,
    limit: int = 0,
) -> list[MessageSummary]:
    """Merge per-folder hit lists.

    Args:
        batches: Hit lists, one per folder, in folder order.
        start: Inclusive lower timestamp bound, re-applied to every hit.
        end: Exclusive upper timestamp bound, re-applied to every hit.
        limit: Maximum number of hits returned (0 = unlimited).
    """

    seen: set[DedupKey] = set()
    merged: list[MessageSummary] = []
    for batch in batches:
        for hit in batch:
            if not in_date_range(hit, start, end):
                continue
            key = DedupKey.of(hit)
            if key in seen:
                continue
            seen.add(key)
            merged.append(hit)

    ordered = sort_hits(merged)
    if limit > 0:
        ordered = ordered[:limit]
    return ordered
