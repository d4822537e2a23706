"""Search request model."""

from __future__ import annotations

from datetime import date, datetime, time, timedelta, timezone

from pydantic import BaseModel, Field, field_validator


class SearchRequest(BaseModel):
    """Everything a caller can ask of a search.

    ``since`` and ``till`` are inclusive calendar days, interpreted in UTC.
    """

    query: str = Field(default="", description="Free-text query")
    profile: str = Field(default="", description="Profile name or path (empty = default)")
    folder_like: str = Field(default="", description="Folder name substring filter")
    account: str = Field(default="", description="Identity email to scope the search to")
    since: date | None = Field(default=None, description="Inclusive start day")
    till: date | None = Field(default=None, description="Inclusive end day")
    limit: int = Field(default=25, ge=0, description="Maximum hits (0 = unlimited)")
    fuzzy: bool = Field(default=False, description="Match every whitespace token instead of the whole query")
    no_cache: bool = Field(default=False, description="Bypass the local index cache")
    use_store: bool = Field(default=False, description="Answer from the persistent store")
    max_messages: int = Field(default=0, ge=0, description="Messages scanned per folder (0 = all)")
    tail: int = Field(default=0, ge=0, description="Keep only the last N matches per folder (0 = all)")

    @field_validator("account")
    @classmethod
    def _normalize_account(cls, v: str) -> str:
        return v.strip().lower()

    @property
    def start(self) -> datetime | None:
        """Inclusive lower timestamp bound."""

        if self.since is None:
            return None
        return datetime.combine(self.since, time.min, tzinfo=timezone.utc)

    @property
    def end(self) -> datetime | None:
        """Exclusive upper timestamp bound (the day after ``till``)."""

        if self.till is None:
            return None
        return datetime.combine(self.till + timedelta(days=1), time.min, tzinfo=timezone.utc)
