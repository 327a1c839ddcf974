# ordertrack/store.py

from __future__ import annotations

import asyncio
import logging
import threading
from contextlib import contextmanager, nullcontext
from datetime import datetime, timezone
from typing import Iterable, Iterator

from sqlalchemy import MetaData, create_engine, delete, func, insert, inspect, select, update
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from ordertrack.entities import (
    KEY_PATH,
    SCHEMA_VERSION_KEY,
    Record,
    StoreSchema,
    build_meta_table,
    build_order_table,
    record_to_row,
    row_to_record,
)
from ordertrack.errors import StoreUnavailable, TransactionFailed, ValidationFailed
from ordertrack.settings import database_url_for

logger = logging.getLogger("ordertrack.store")


def utc_now_iso() -> str:
    """Millisecond UTC timestamp with a trailing Z, e.g. 2024-05-01T09:30:00.123Z"""
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def is_memory_url(url: str) -> bool:
    return url.startswith("sqlite") and (url in ("sqlite://", "sqlite+pysqlite://") or ":memory:" in url)


def make_engine(url: str) -> Engine:
    if is_memory_url(url):
        # one shared connection, otherwise every worker thread sees its own empty database
        return create_engine(
            url,
            poolclass=StaticPool,
            connect_args={"check_same_thread": False},
        )
    if url.startswith("sqlite"):
        return create_engine(url, connect_args={"check_same_thread": False})
    return create_engine(url, future=True, pool_pre_ping=True)


class _SharedEngine:
    def __init__(self, engine: Engine):
        self.engine = engine
        self.lock = threading.RLock()
        self.handles = 0


# In-memory databases live as long as their engine, so every handle on the same
# in-memory URL must get the same engine. Keyed by URL, counted by open handles.
_shared_engines: dict[str, _SharedEngine] = {}
_shared_engines_lock = threading.Lock()


def acquire_engine(url: str) -> tuple[Engine, threading.RLock | None]:
    """
    Engine for ``url`` plus the lock that serializes transactions on it. Only in-memory
    engines are shared (one connection for all threads) and only those need the lock.
    """
    if not is_memory_url(url):
        return make_engine(url), None
    with _shared_engines_lock:
        shared = _shared_engines.get(url)
        if shared is None:
            shared = _shared_engines[url] = _SharedEngine(make_engine(url))
        shared.handles += 1
        return shared.engine, shared.lock


def release_engine(url: str, engine: Engine) -> None:
    """Dispose the engine, or for a shared one, once its last handle lets go."""
    if is_memory_url(url):
        with _shared_engines_lock:
            shared = _shared_engines.get(url)
            if shared is not None and shared.engine is engine:
                shared.handles -= 1
                if shared.handles > 0:
                    return
                del _shared_engines[url]
                logger.debug("[DB] Last handle on %s closed; in-memory data is gone", url)
    engine.dispose()


class RecordStore:
    """
    Handle on the persisted table of order records.

    Obtain one with ``await RecordStore.open(name, version, schema)`` and close it when done.
    Every operation runs in its own transaction on a worker thread, so callers on the
    event loop are suspended (not blocked) until the database answers.

    Version policy: opening with a version above the stored one DROPS the table and
    recreates it with the schema's index set. Rows are not migrated.
    """

    def __init__(self, name: str, version: int, schema: StoreSchema | None = None, *, url: str | None = None):
        if int(version) < 1:
            raise ValueError("Schema version must be a positive integer")
        self.name = name
        self.version = int(version)
        self.schema = schema or StoreSchema()
        self.url = url or database_url_for(name)

        self.engine: Engine | None = None
        self.SessionFactory: sessionmaker | None = None
        self._lock: threading.RLock | None = None

        self._metadata = MetaData()
        self.meta = build_meta_table(self._metadata)
        self.table = build_order_table(self._metadata, self.schema)

    @classmethod
    async def open(
        cls,
        name: str,
        version: int,
        schema: StoreSchema | None = None,
        *,
        url: str | None = None,
    ) -> "RecordStore":
        store = cls(name, version, schema, url=url)
        await store.connect()
        return store

    @property
    def is_open(self) -> bool:
        return self.SessionFactory is not None

    async def connect(self) -> "RecordStore":
        await asyncio.to_thread(self._connect_sync)
        return self

    async def close(self) -> None:
        if self.engine is not None:
            await asyncio.to_thread(release_engine, self.url, self.engine)
        self.engine = None
        self.SessionFactory = None
        self._lock = None

    # -----------------------
    # Open / schema version
    # -----------------------

    def _connect_sync(self) -> None:
        if self.is_open:
            return

        engine, lock = acquire_engine(self.url)
        try:
            with lock or nullcontext():
                self._prepare_schema(engine)
        except StoreUnavailable:
            release_engine(self.url, engine)
            raise
        except SQLAlchemyError as e:
            release_engine(self.url, engine)
            raise StoreUnavailable(f"Could not open store '{self.name}': {e}") from e

        self.engine = engine
        self._lock = lock
        self.SessionFactory = sessionmaker(bind=engine, autoflush=False, future=True)
        logger.debug("[DB] Store '%s' open at version %s (%s)", self.name, self.version, self.url)

    def _prepare_schema(self, engine: Engine) -> None:
        self.meta.create(engine, checkfirst=True)
        with engine.begin() as conn:
            stored = conn.execute(
                select(self.meta.c.value).where(self.meta.c.key == SCHEMA_VERSION_KEY)
            ).scalar_one_or_none()
            stored_version = int(stored) if stored is not None else 0

            if self.version < stored_version:
                raise StoreUnavailable(
                    f"Requested version {self.version} of '{self.name}' is lower than "
                    f"the stored version {stored_version}"
                )

            if self.version > stored_version:
                logger.info(
                    "[DB] Upgrading '%s' schema %s -> %s: dropping and recreating table '%s'",
                    self.name, stored_version, self.version, self.table.name,
                )
                self.table.drop(conn, checkfirst=True)
                self.table.create(conn)
                if stored is None:
                    conn.execute(insert(self.meta).values(key=SCHEMA_VERSION_KEY, value=str(self.version)))
                else:
                    conn.execute(
                        update(self.meta)
                        .where(self.meta.c.key == SCHEMA_VERSION_KEY)
                        .values(value=str(self.version))
                    )
            elif not inspect(conn).has_table(self.table.name):
                self.table.create(conn)

    # -----------------------
    # Transactions
    # -----------------------

    def _require_open(self) -> None:
        if not self.is_open:
            raise StoreUnavailable(f"Store '{self.name}' is not initialized")

    @contextmanager
    def _transaction(self) -> Iterator[Session]:
        self._require_open()
        with self._lock or nullcontext():
            session = self.SessionFactory()
            try:
                yield session
                session.commit()
            except SQLAlchemyError as e:
                session.rollback()
                raise TransactionFailed(str(e)) from e
            except Exception:
                session.rollback()
                raise
            finally:
                session.close()

    # -----------------------
    # Operations
    # -----------------------

    async def get(self, key: str) -> Record | None:
        self._require_open()
        return await asyncio.to_thread(self._get_sync, key)

    async def put(self, record: Record, *, stamp: bool = True) -> str:
        """
        Upsert by id. With ``stamp`` (the default) createdAt is kept from the stored row
        (or the record, or now for a new row) and updatedAt is set to now.
        """
        self._require_open()
        return await asyncio.to_thread(self._put_sync, record, stamp)

    async def delete(self, key: str) -> bool:
        self._require_open()
        return await asyncio.to_thread(self._delete_sync, key)

    async def list_all(self) -> list[Record]:
        self._require_open()
        return await asyncio.to_thread(self._list_all_sync)

    async def find_by_index(self, field: str, value: str) -> list[Record]:
        self._require_open()
        return await asyncio.to_thread(self._find_by_index_sync, field, value)

    async def count(self) -> int:
        self._require_open()
        return await asyncio.to_thread(self._count_sync)

    async def clear(self) -> int:
        self._require_open()
        return await asyncio.to_thread(self._clear_sync)

    async def replace_all(self, records: Iterable[Record]) -> int:
        """Clear the table, then write records as given (no stamping)."""
        self._require_open()
        return await asyncio.to_thread(self._replace_all_sync, list(records))

    # -----------------------
    # Blocking implementations
    # -----------------------

    def _get_sync(self, key: str) -> Record | None:
        with self._transaction() as session:
            row = session.execute(select(self.table).where(self.table.c.id == str(key))).first()
            return row_to_record(row) if row is not None else None

    def _write_row(self, session: Session, record: Record, stamp: bool) -> str:
        if not isinstance(record, dict):
            raise ValidationFailed(f"Record must be a mapping, got {type(record).__name__}")
        if record.get(KEY_PATH) in (None, ""):
            raise ValidationFailed(f"Record has no '{KEY_PATH}'")

        row = record_to_row(record)
        key = row[KEY_PATH]
        if stamp:
            now = utc_now_iso()
            row["createdAt"] = row.get("createdAt") or now
            row["updatedAt"] = now

        t = self.table
        dialect = {"sqlite": sqlite, "postgresql": postgresql}.get(session.get_bind().dialect.name)
        if dialect is None:
            # no native upsert on this dialect
            existing = session.execute(select(t.c.createdAt).where(t.c.id == key)).first()
            if existing is None:
                session.execute(insert(t).values(**row))
            else:
                if stamp and existing.createdAt:
                    row["createdAt"] = existing.createdAt
                session.execute(update(t).where(t.c.id == key).values(**row))
            return key

        # single INSERT .. ON CONFLICT so overlapping puts of one id cannot both insert
        stmt = dialect.insert(t).values(**row)
        changes = {name: stmt.excluded[name] for name in row if name != KEY_PATH}
        if stamp:
            # a stored createdAt always wins
            changes["createdAt"] = func.coalesce(func.nullif(t.c.createdAt, ""), stmt.excluded.createdAt)
        session.execute(stmt.on_conflict_do_update(index_elements=[t.c.id], set_=changes))
        return key

    def _put_sync(self, record: Record, stamp: bool) -> str:
        with self._transaction() as session:
            return self._write_row(session, record, stamp)

    def _delete_sync(self, key: str) -> bool:
        with self._transaction() as session:
            result = session.execute(delete(self.table).where(self.table.c.id == str(key)))
            return result.rowcount > 0

    def _list_all_sync(self) -> list[Record]:
        with self._transaction() as session:
            rows = session.execute(select(self.table).order_by(self.table.c.id)).all()
            return [row_to_record(r) for r in rows]

    def _find_by_index_sync(self, field: str, value: str) -> list[Record]:
        if field not in self.schema.indexes:
            raise ValidationFailed(f"No index named '{field}' on table '{self.table.name}'")
        if value is None:
            return []
        column = self.table.c[field]
        with self._transaction() as session:
            rows = session.execute(
                select(self.table).where(column == str(value)).order_by(self.table.c.id)
            ).all()
            return [row_to_record(r) for r in rows]

    def _count_sync(self) -> int:
        with self._transaction() as session:
            return int(session.execute(select(func.count()).select_from(self.table)).scalar_one())

    def _clear_sync(self) -> int:
        with self._transaction() as session:
            result = session.execute(delete(self.table))
            return result.rowcount

    def _replace_all_sync(self, records: list[Record]) -> int:
        with self._transaction() as session:
            session.execute(delete(self.table))
            for record in records:
                self._write_row(session, record, stamp=False)
            return len(records)
