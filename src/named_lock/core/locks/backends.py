"""Lock store implementations.

Design principles:
- A store only ever changes a claim through one conditional write: claim
  applies only while the row is free, clear applies only while the row
  still holds the exact claim the caller observed.
- The four claim columns are written together, so a row is never half
  claimed.
- Store failures propagate as LockStoreError; the store never retries.
"""

from __future__ import annotations

import contextlib
import itertools
import logging
import threading
from collections.abc import Iterator
from dataclasses import replace
from typing import Protocol

from sqlalchemy import (
    BigInteger,
    CheckConstraint,
    Column,
    Integer,
    MetaData,
    String,
    Table,
    create_engine,
    event,
    insert,
    select,
    update,
)
from sqlalchemy.engine import Engine, make_url
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.pool import StaticPool

from named_lock.core.constants import (
    DEFAULT_DATABASE_URL,
    DEFAULT_TABLE_NAME,
    MAX_LOCK_NAME_LENGTH,
    MAX_OWNER_TOKEN_LENGTH,
    SQLITE_BUSY_TIMEOUT_SECONDS,
)
from named_lock.core.exceptions import LockStoreError
from named_lock.core.locks.models import Duration, LockRow, OwnerClaim

logger = logging.getLogger(__name__)


class LockStore(Protocol):
    """Backend abstraction for the shared lock rows."""

    name: str

    def create_schema(self) -> None:
        """Provision whatever the store needs to hold lock rows."""

    def provision(self, name: str, lease: Duration) -> int:
        """Return the id of the row for `name`, inserting a free row if missing."""

    def find(self, name: str) -> LockRow | None:
        """Read a row by lock name without creating it."""

    def read(self, row_id: int) -> LockRow | None:
        """Read a row by id."""

    def holds(self, row_id: int, claim: OwnerClaim) -> bool:
        """True if the row currently carries exactly `claim`."""

    def claim(self, row_id: int, claim: OwnerClaim) -> bool:
        """Write `claim` only if the row is free. Returns whether it applied."""

    def clear(self, row_id: int, expected: OwnerClaim) -> bool:
        """Free the row only if it still carries `expected`. Returns whether it applied."""

    def close(self) -> None:
        """Release connections held by the store."""


class MemoryLockStore:
    """In-process store for tests and single-process use.

    A mutex makes every operation indivisible, which is the same guarantee a
    database gives a single UPDATE statement.
    """

    name = "memory"

    def __init__(self) -> None:
        self._rows: dict[int, LockRow] = {}
        self._ids_by_name: dict[str, int] = {}
        self._ids = itertools.count(1)
        self._mutex = threading.Lock()

    def create_schema(self) -> None:
        return None

    def provision(self, name: str, lease: Duration) -> int:
        with self._mutex:
            row_id = self._ids_by_name.get(name)
            if row_id is not None:
                return row_id
            row_id = next(self._ids)
            self._rows[row_id] = LockRow(id=row_id, name=name, lease_sec=lease.seconds, lease_frac=lease.micros)
            self._ids_by_name[name] = row_id
            return row_id

    def find(self, name: str) -> LockRow | None:
        with self._mutex:
            row_id = self._ids_by_name.get(name)
            if row_id is None:
                return None
            return replace(self._rows[row_id])

    def read(self, row_id: int) -> LockRow | None:
        with self._mutex:
            row = self._rows.get(row_id)
            return None if row is None else replace(row)

    def holds(self, row_id: int, claim: OwnerClaim) -> bool:
        with self._mutex:
            row = self._rows.get(row_id)
            return row is not None and claim.same_claim(row.claim)

    def claim(self, row_id: int, claim: OwnerClaim) -> bool:
        with self._mutex:
            row = self._rows.get(row_id)
            if row is None:
                return False
            if any(c is not None for c in (row.owner_pid, row.owner_token, row.acquired_sec, row.acquired_frac)):
                return False
            self._rows[row_id] = replace(
                row,
                owner_pid=claim.pid,
                owner_token=claim.token,
                acquired_sec=claim.acquired_sec,
                acquired_frac=claim.acquired_frac,
                lease_sec=claim.lease_sec,
                lease_frac=claim.lease_frac,
            )
            return True

    def clear(self, row_id: int, expected: OwnerClaim) -> bool:
        with self._mutex:
            row = self._rows.get(row_id)
            if row is None or not expected.same_claim(row.claim):
                return False
            self._rows[row_id] = replace(row, owner_pid=None, owner_token=None, acquired_sec=None, acquired_frac=None)
            return True

    def close(self) -> None:
        return None


def build_lock_table(metadata: MetaData, table_name: str = DEFAULT_TABLE_NAME) -> Table:
    """Describe the lock table on `metadata`."""
    return Table(
        table_name,
        metadata,
        Column("id", Integer, primary_key=True, autoincrement=True),
        Column("name", String(MAX_LOCK_NAME_LENGTH), nullable=False, unique=True),
        Column("owner_pid", Integer, nullable=True),
        Column("acquired_sec", BigInteger, nullable=True),
        Column("acquired_frac", Integer, nullable=True),
        Column("owner_token", String(MAX_OWNER_TOKEN_LENGTH), nullable=True),
        Column("lease_sec", BigInteger, nullable=False, default=0),
        Column("lease_frac", Integer, nullable=False, default=0),
        CheckConstraint("lease_sec >= 0", name=f"ck_{table_name}_lease_sec"),
        CheckConstraint("lease_frac >= 0 AND lease_frac < 1000000", name=f"ck_{table_name}_lease_frac"),
        CheckConstraint(
            "(owner_pid IS NULL AND owner_token IS NULL AND acquired_sec IS NULL AND acquired_frac IS NULL)"
            " OR (owner_pid IS NOT NULL AND owner_token IS NOT NULL"
            " AND acquired_sec IS NOT NULL AND acquired_frac IS NOT NULL)",
            name=f"ck_{table_name}_claim_conull",
        ),
    )


def _use_immediate_transactions(engine: Engine) -> None:
    """Make SQLite take its write lock when a transaction starts.

    A deferred transaction that upgrades from a read lock can fail with
    "database is locked" without waiting; BEGIN IMMEDIATE waits on the busy
    timeout instead.
    """

    @event.listens_for(engine, "connect")
    def _disable_driver_begin(dbapi_connection, connection_record) -> None:
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _begin_immediate(conn) -> None:
        conn.exec_driver_sql("BEGIN IMMEDIATE")


def _engine_for_url(url: str, echo: bool) -> Engine:
    parsed = make_url(url)
    kwargs: dict = {"echo": echo}
    if parsed.get_backend_name() != "sqlite":
        return create_engine(parsed, **kwargs)

    # Handles may be shared across threads; SQLite's own locking serializes writers.
    kwargs["connect_args"] = {"check_same_thread": False, "timeout": SQLITE_BUSY_TIMEOUT_SECONDS}
    if parsed.database in (None, "", ":memory:"):
        # Every pooled connection would otherwise see its own empty database.
        kwargs["poolclass"] = StaticPool
    engine = create_engine(parsed, **kwargs)
    _use_immediate_transactions(engine)
    return engine


class SQLLockStore:
    """Relational store built on SQLAlchemy Core.

    Claim, break and release are each a single ``UPDATE ... WHERE``
    whose filter spells out the prior values the caller expects, so the
    database's row-level atomicity is the only synchronization used.
    """

    name = "sql"

    def __init__(
        self,
        url: str = DEFAULT_DATABASE_URL,
        *,
        engine: Engine | None = None,
        table_name: str = DEFAULT_TABLE_NAME,
        echo: bool = False,
    ):
        self.engine = engine if engine is not None else _engine_for_url(url, echo)
        self.metadata = MetaData()
        self.table = build_lock_table(self.metadata, table_name)

    def __repr__(self) -> str:
        return f"SQLLockStore({self.engine.url.render_as_string(hide_password=True)!r}, table={self.table.name!r})"

    @contextlib.contextmanager
    def _store_errors(self, operation: str) -> Iterator[None]:
        try:
            yield
        except SQLAlchemyError as e:
            logger.error("Lock store %s failed on table %s: %s", operation, self.table.name, e)
            raise LockStoreError(
                "Lock store operation failed",
                operation=operation,
                details=type(e).__name__,
                original_error=e,
            ) from e

    def _claim_filter(self, row_id: int, claim: OwnerClaim) -> tuple:
        t = self.table
        return (
            t.c.id == row_id,
            t.c.owner_pid == claim.pid,
            t.c.owner_token == claim.token,
            t.c.acquired_sec == claim.acquired_sec,
            t.c.acquired_frac == claim.acquired_frac,
        )

    def create_schema(self) -> None:
        with self._store_errors("create_schema"):
            self.metadata.create_all(self.engine, checkfirst=True)

    def _lookup_id(self, name: str) -> int | None:
        with self.engine.connect() as conn:
            return conn.execute(select(self.table.c.id).where(self.table.c.name == name)).scalar_one_or_none()

    def provision(self, name: str, lease: Duration) -> int:
        with self._store_errors("provision"):
            row_id = self._lookup_id(name)
            if row_id is not None:
                return int(row_id)
            try:
                with self.engine.begin() as conn:
                    result = conn.execute(
                        insert(self.table).values(name=name, lease_sec=lease.seconds, lease_frac=lease.micros)
                    )
                    row_id = result.inserted_primary_key[0]
                logger.debug("Provisioned lock row %s for %r", row_id, name)
                return int(row_id)
            except IntegrityError:
                # Another process inserted the same name first; use its row.
                row_id = self._lookup_id(name)
                if row_id is None:
                    raise
                return int(row_id)

    def find(self, name: str) -> LockRow | None:
        with self._store_errors("find"), self.engine.connect() as conn:
            row = conn.execute(select(self.table).where(self.table.c.name == name)).mappings().first()
        return None if row is None else LockRow.from_mapping(row)

    def read(self, row_id: int) -> LockRow | None:
        with self._store_errors("read"), self.engine.connect() as conn:
            row = conn.execute(select(self.table).where(self.table.c.id == row_id)).mappings().first()
        return None if row is None else LockRow.from_mapping(row)

    def holds(self, row_id: int, claim: OwnerClaim) -> bool:
        with self._store_errors("holds"), self.engine.connect() as conn:
            found = conn.execute(select(self.table.c.id).where(*self._claim_filter(row_id, claim))).first()
        return found is not None

    def claim(self, row_id: int, claim: OwnerClaim) -> bool:
        t = self.table
        statement = (
            update(t)
            .where(
                t.c.id == row_id,
                t.c.owner_pid.is_(None),
                t.c.owner_token.is_(None),
                t.c.acquired_sec.is_(None),
                t.c.acquired_frac.is_(None),
            )
            .values(
                owner_pid=claim.pid,
                owner_token=claim.token,
                acquired_sec=claim.acquired_sec,
                acquired_frac=claim.acquired_frac,
                lease_sec=claim.lease_sec,
                lease_frac=claim.lease_frac,
            )
        )
        with self._store_errors("claim"), self.engine.begin() as conn:
            return conn.execute(statement).rowcount == 1

    def clear(self, row_id: int, expected: OwnerClaim) -> bool:
        statement = (
            update(self.table)
            .where(*self._claim_filter(row_id, expected))
            .values(owner_pid=None, owner_token=None, acquired_sec=None, acquired_frac=None)
        )
        with self._store_errors("clear"), self.engine.begin() as conn:
            return conn.execute(statement).rowcount == 1

    def close(self) -> None:
        self.engine.dispose()
