"""Boolean query predicates over a message's lowercase search blob."""

from __future__ import annotations

from thunderbird_search.mail.scanner import Matcher, match_all


def make_matcher(query: str, fuzzy: bool = False) -> Matcher:
    """Build a predicate for ``query``.

    Substring mode tests the whole lowercased query. Fuzzy mode requires every
    whitespace-separated token to appear, in any order.
    """

    if not fuzzy:
        needle = query.lower()
        return lambda blob: needle in blob

    tokens = query.lower().split()
    return lambda blob: all(t in blob for t in tokens)


__all__ = ["Matcher", "make_matcher", "match_all"]
