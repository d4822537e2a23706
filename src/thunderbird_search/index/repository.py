"""SQL-backed persistent store of message summaries.

The store keeps one row per (profile, message id) plus a small key/value
metadata table. It is designed for PostgreSQL but also runs on SQLite, which is
handy for local use and tests.
"""

from __future__ import annotations

from collections.abc import Iterable, Iterator, Sequence
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

import structlog
from sqlalchemy import (
    Column,
    DateTime,
    Index,
    MetaData,
    Table,
    Text,
    create_engine,
    delete,
    func,
    inspect,
    select,
    text,
)
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.engine import Engine
from sqlalchemy.exc import OperationalError, SQLAlchemyError

from thunderbird_search.config import Settings
from thunderbird_search.exceptions import ConfigurationError, StoreError
from thunderbird_search.models import MessageSummary, folder_tag_for
from thunderbird_search.utils import retry_on_failure, to_valid_utf8

logger = structlog.get_logger()


_SCHEMA_VERSION = 2
KEY_SCHEMA_VERSION = "schema_version"

metadata = MetaData()

messages = Table(
    "tb_messages",
    metadata,
    Column("profile", Text, primary_key=True, server_default=""),
    Column("message_id", Text, primary_key=True),
    Column("folder", Text, nullable=False, server_default=""),
    Column("subject", Text, nullable=False, server_default=""),
    Column("sender", Text, nullable=False, server_default=""),
    Column("snippet", Text, nullable=False, server_default=""),
    Column("search_text", Text, nullable=False, server_default=""),
    Column("when_ts", DateTime(timezone=True), nullable=True),
    Column("date_str", Text, nullable=False, server_default=""),
    Column("account", Text, nullable=False, server_default=""),
    Index("tb_messages_when_idx", "profile", "when_ts"),
    Index("tb_messages_folder_idx", "profile", "folder"),
    Index("tb_messages_account_idx", "profile", "account"),
)

meta = Table(
    "tb_meta",
    metadata,
    Column("key", Text, primary_key=True),
    Column("val", Text, nullable=False),
)

_KEY_COLUMNS = ("profile", "message_id")
_DATA_COLUMNS = tuple(c.name for c in messages.columns if c.name not in _KEY_COLUMNS)

_DELETE_CHUNK = 500


@dataclass(frozen=True)
class StoreQuery:
    """Filters for a store search.

    Every whitespace token of ``query`` must appear in the search text;
    ``folder_like`` is a case-insensitive substring, ``folder`` an exact name.
    ``profile=None`` searches across all profiles.
    """

    query: str = ""
    profile: str | None = None
    account: str = ""
    folder_like: str = ""
    folder: str = ""
    start: datetime | None = None
    end: datetime | None = None
    limit: int = 0


def make_engine(dsn: str) -> Engine:
    """Create an engine from a SQLAlchemy URL or a libpq ``key=value`` DSN."""

    dsn = dsn.strip()
    if "://" not in dsn:
        return create_engine("postgresql+psycopg2://", connect_args={"dsn": dsn}, pool_pre_ping=True)
    if dsn.startswith("postgres://"):
        dsn = "postgresql://" + dsn[len("postgres://"):]
    return create_engine(dsn, pool_pre_ping=True)


def _as_utc(value: datetime | None) -> datetime | None:
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _chunks(items: Sequence[Any], size: int) -> Iterator[Sequence[Any]]:
    for i in range(0, len(items), size):
        yield items[i : i + size]


def _escape_like(value: str) -> str:
    return value.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


class MessageStoreRepository:
    """Repository for storing and querying message summaries per profile."""

    def __init__(self, engine: Engine, *, batch_size: int = 500, max_retries: int = 3) -> None:
        """Create a repository.

        Args:
            engine: SQLAlchemy engine (PostgreSQL or SQLite).
            batch_size: Rows written per upsert transaction.
            max_retries: Connection attempts made by ``initialize``.
        """

        self._engine = engine
        self._batch_size = max(1, batch_size)
        self._max_retries = max_retries

    @classmethod
    def from_settings(cls, settings: Settings) -> MessageStoreRepository:
        """Build a repository from ``settings.pg_dsn``.

        Raises:
            ConfigurationError: If no DSN is configured.
        """

        if not settings.pg_dsn:
            raise ConfigurationError("TB_PG_DSN is not set; the persistent store is unavailable")
        return cls(
            make_engine(settings.pg_dsn),
            batch_size=settings.store_batch_size,
            max_retries=settings.max_retries,
        )

    @property
    def engine(self) -> Engine:
        return self._engine

    def initialize(self) -> None:
        """Create or upgrade the store schema.

        Raises:
            StoreError: If the database is unreachable or the schema cannot be
                created.
        """

        ping = retry_on_failure(
            max_retries=self._max_retries,
            delay=0.5,
            exceptions=(OperationalError,),
        )(self._ping)

        try:
            ping()
            self._migrate_legacy_table()
            metadata.create_all(self._engine, checkfirst=True)
            self._check_schema_version()
        except SQLAlchemyError as e:
            raise StoreError(f"Cannot initialise message store: {e}") from e

    def upsert_many(self, profile: str, summaries: Iterable[MessageSummary]) -> int:
        """Insert or overwrite rows keyed by (profile, message id).

        Each batch is one transaction; a failing batch is rolled back.

        Returns:
            Number of rows written.

        Raises:
            StoreError: If a batch fails.
        """

        rows = self._rows_for(profile, summaries)
        if not rows:
            return 0

        insert = self._insert_construct()
        written = 0
        for batch in _chunks(rows, self._batch_size):
            stmt = insert(messages)
            stmt = stmt.on_conflict_do_update(
                index_elements=list(_KEY_COLUMNS),
                set_={name: stmt.excluded[name] for name in _DATA_COLUMNS},
            )
            try:
                with self._engine.begin() as conn:
                    conn.execute(stmt, list(batch))
            except SQLAlchemyError as e:
                logger.error("store_upsert_failed", profile=profile, batch_size=len(batch), error=str(e))
                raise StoreError(f"Upsert failed for profile {profile!r}: {e}") from e
            written += len(batch)
            logger.debug("store_batch_upserted", profile=profile, batch_size=len(batch), written=written)
        return written

    def search(self, q: StoreQuery) -> list[MessageSummary]:
        """Search stored rows; newest first, undated rows last.

        Raises:
            StoreError: If the query fails.
        """

        c = messages.c
        stmt = select(messages)
        if q.profile is not None:
            stmt = stmt.where(c.profile == q.profile)
        for token in q.query.lower().split():
            stmt = stmt.where(c.search_text.ilike(f"%{_escape_like(token)}%", escape="\\"))
        if q.account:
            stmt = stmt.where(c.account == q.account.lower())
        if q.folder_like:
            stmt = stmt.where(c.folder.ilike(f"%{_escape_like(q.folder_like)}%", escape="\\"))
        if q.folder:
            stmt = stmt.where(c.folder == q.folder)
        if q.start is not None:
            stmt = stmt.where(c.when_ts >= _as_utc(q.start))
        if q.end is not None:
            stmt = stmt.where(c.when_ts < _as_utc(q.end))
        stmt = stmt.order_by(c.when_ts.desc().nulls_last(), c.date_str.desc())
        if q.limit > 0:
            stmt = stmt.limit(q.limit)

        try:
            with self._engine.connect() as conn:
                rows = conn.execute(stmt).mappings().all()
        except SQLAlchemyError as e:
            raise StoreError(f"Store search failed: {e}") from e
        return [self._row_to_summary(row) for row in rows]

    def count_messages(self, profile: str) -> int:
        stmt = select(func.count()).select_from(messages).where(messages.c.profile == profile)
        try:
            with self._engine.connect() as conn:
                return int(conn.execute(stmt).scalar() or 0)
        except SQLAlchemyError as e:
            raise StoreError(f"Store count failed: {e}") from e

    def message_ids(self, profile: str) -> set[str]:
        stmt = select(messages.c.message_id).where(messages.c.profile == profile)
        try:
            with self._engine.connect() as conn:
                return set(conn.execute(stmt).scalars().all())
        except SQLAlchemyError as e:
            raise StoreError(f"Store read failed: {e}") from e

    def prune(self, profile: str, keep_ids: Iterable[str]) -> int:
        """Delete the profile's rows whose message id is not in ``keep_ids``.

        Only call this with the ids of a complete scan of the profile.

        Returns:
            Number of rows deleted.

        Raises:
            StoreError: If the delete fails (nothing is deleted).
        """

        keep = {to_valid_utf8(i) for i in keep_ids}
        if not keep:
            # An empty keep-list is never a real mirror of a profile.
            logger.warning("store_prune_skipped", profile=profile, reason="empty keep list")
            return 0
        c = messages.c
        try:
            with self._engine.begin() as conn:
                existing = conn.execute(select(c.message_id).where(c.profile == profile)).scalars().all()
                doomed = [i for i in existing if i not in keep]
                for chunk in _chunks(doomed, _DELETE_CHUNK):
                    conn.execute(
                        delete(messages).where(c.profile == profile, c.message_id.in_(list(chunk)))
                    )
        except SQLAlchemyError as e:
            raise StoreError(f"Prune failed for profile {profile!r}: {e}") from e

        logger.info("store_pruned", profile=profile, deleted=len(doomed), kept=len(existing) - len(doomed))
        return len(doomed)

    def get_meta(self, key: str) -> str | None:
        stmt = select(meta.c.val).where(meta.c.key == key)
        try:
            with self._engine.connect() as conn:
                row = conn.execute(stmt).fetchone()
        except SQLAlchemyError as e:
            raise StoreError(f"Metadata read failed: {e}") from e
        return None if row is None else str(row[0])

    def set_meta(self, key: str, value: str) -> None:
        stmt = self._insert_construct()(meta).values(key=key, val=value)
        stmt = stmt.on_conflict_do_update(index_elements=["key"], set_={"val": stmt.excluded.val})
        try:
            with self._engine.begin() as conn:
                conn.execute(stmt)
        except SQLAlchemyError as e:
            raise StoreError(f"Metadata write failed: {e}") from e

    def get_meta_prefix(self, prefix: str) -> dict[str, str]:
        stmt = select(meta.c.key, meta.c.val).where(meta.c.key.startswith(prefix, autoescape=True))
        try:
            with self._engine.connect() as conn:
                rows = conn.execute(stmt).fetchall()
        except SQLAlchemyError as e:
            raise StoreError(f"Metadata read failed: {e}") from e
        return {str(k): str(v) for k, v in rows}

    def _ping(self) -> None:
        with self._engine.connect() as conn:
            conn.execute(text("SELECT 1"))

    def _insert_construct(self) -> Any:
        dialect = self._engine.dialect.name
        if dialect == "postgresql":
            return pg_insert
        if dialect == "sqlite":
            return sqlite_insert
        raise ConfigurationError(f"Unsupported database dialect: {dialect}")

    def _migrate_legacy_table(self) -> None:
        """Move a pre-profile ``tb_messages`` table under profile ''."""

        insp = inspect(self._engine)
        if not insp.has_table(messages.name):
            return
        columns = {col["name"] for col in insp.get_columns(messages.name)}
        if "profile" in columns:
            return

        legacy_indexes = [ix["name"] for ix in insp.get_indexes(messages.name) if ix.get("name")]
        names = [name for name in ("message_id", *_DATA_COLUMNS) if name in columns]
        copy_cols = ", ".join(names)
        # Legacy text columns were nullable.
        source_cols = ", ".join(
            name if name in ("message_id", "when_ts") else f"COALESCE({name}, '')" for name in names
        )

        with self._engine.begin() as conn:
            conn.execute(text("ALTER TABLE tb_messages RENAME TO tb_messages_legacy"))
            for name in legacy_indexes:
                conn.execute(text(f'DROP INDEX IF EXISTS "{name}"'))
            if conn.dialect.name == "postgresql":
                conn.execute(text("ALTER INDEX IF EXISTS tb_messages_pkey RENAME TO tb_messages_legacy_pkey"))
            messages.create(conn)
            result = conn.execute(
                text(
                    f"INSERT INTO tb_messages (profile, {copy_cols}) "
                    f"SELECT '', {source_cols} FROM tb_messages_legacy"
                )
            )
            conn.execute(text("DROP TABLE tb_messages_legacy"))

        logger.info("store_schema_migrated", rows=result.rowcount, version=_SCHEMA_VERSION)

    def _check_schema_version(self) -> None:
        raw = self.get_meta(KEY_SCHEMA_VERSION)
        if raw is None:
            self.set_meta(KEY_SCHEMA_VERSION, str(_SCHEMA_VERSION))
            logger.info("store_schema_created", version=_SCHEMA_VERSION)
            return
        try:
            current = int(raw)
        except ValueError:
            raise StoreError(f"Invalid schema version {raw!r}") from None
        if current > _SCHEMA_VERSION:
            raise StoreError(f"Unsupported schema version {current}; expected {_SCHEMA_VERSION}")
        if current < _SCHEMA_VERSION:
            self.set_meta(KEY_SCHEMA_VERSION, str(_SCHEMA_VERSION))
            logger.info("store_schema_upgraded", old_version=current, version=_SCHEMA_VERSION)

    def _rows_for(self, profile: str, summaries: Iterable[MessageSummary]) -> list[dict[str, Any]]:
        # Later duplicates of a key win; one statement must not touch a row twice.
        by_key: dict[str, dict[str, Any]] = {}
        for s in summaries:
            message_id = to_valid_utf8(s.message_id)
            by_key[message_id] = {
                "profile": profile,
                "message_id": message_id,
                "folder": to_valid_utf8(s.folder),
                "subject": to_valid_utf8(s.subject),
                "sender": to_valid_utf8(s.sender),
                "snippet": to_valid_utf8(s.snippet),
                "search_text": to_valid_utf8(s.search),
                "when_ts": _as_utc(s.when),
                "date_str": to_valid_utf8(s.date),
                "account": to_valid_utf8(s.account).lower(),
            }
        return list(by_key.values())

    def _row_to_summary(self, row: Any) -> MessageSummary:
        folder = row["folder"] or ""
        return MessageSummary(
            folder=folder,
            subject=row["subject"] or "",
            sender=row["sender"] or "",
            date=row["date_str"] or "",
            when=_as_utc(row["when_ts"]),
            message_id=row["message_id"],
            snippet=row["snippet"] or "",
            search=row["search_text"] or "",
            account=row["account"] or "",
            folder_tag=folder_tag_for(folder),
        )
