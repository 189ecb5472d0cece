"""Dialect-neutral local store over SQLite and PostgreSQL.

Callers build ordinary SQLAlchemy Core statements for reads and plain writes.
The two operations whose SQL differs between backends are expressed as
neutral values and translated here:

- Upsert: INSERT ... ON CONFLICT (conflict_columns) DO UPDATE SET only the
  listed update_columns. Never INSERT OR REPLACE, which would delete the row
  and lose locally-owned columns.
- AddColumn: additive migration. PostgreSQL uses ADD COLUMN IF NOT EXISTS;
  SQLite has no such clause, so "duplicate column name" is swallowed.

Every SQLAlchemy failure is re-raised as PersistenceError naming the
operation, so nothing above the store imports driver exceptions.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import AsyncIterator, Mapping, Sequence
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import Any

import structlog
from sqlalchemy import Column, Table, text
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncConnection, AsyncEngine
from sqlalchemy.sql import Executable, TextClause

from src.dealboard.config import Environment, Settings
from src.dealboard.core.database import Base, build_engine, normalize_postgres_url, sqlite_url
from src.dealboard.core.errors import PersistenceError
from src.dealboard.store.models import ADDITIVE_COLUMNS

logger = structlog.get_logger(__name__)


# ── Neutral Operations ──────────────────────────────────────────────────────


@dataclass(frozen=True)
class Upsert:
    """Insert-or-update keyed on a unique column set."""

    table: Table
    values: Mapping[str, Any]
    conflict_columns: Sequence[str]
    update_columns: Sequence[str] = field(default_factory=tuple)


@dataclass(frozen=True)
class AddColumn:
    """Add a column if the table does not already have it."""

    table_name: str
    column: Column


@dataclass(frozen=True)
class WriteResult:
    affected_count: int


Statement = Executable | Upsert | AddColumn


# ── Store ───────────────────────────────────────────────────────────────────


class StoreSession:
    """read/read_one/write bound to a single open connection."""

    def __init__(self, store: LocalStore, conn: AsyncConnection) -> None:
        self._store = store
        self._conn = conn

    async def read(self, stmt: Executable) -> list[dict[str, Any]]:
        try:
            result = await self._conn.execute(stmt)
        except SQLAlchemyError as exc:
            raise PersistenceError(str(exc), operation="read", cause=exc) from exc
        return [dict(row._mapping) for row in result]

    async def read_one(self, stmt: Executable) -> dict[str, Any] | None:
        rows = await self.read(stmt)
        return rows[0] if rows else None

    async def write(self, stmt: Statement) -> WriteResult:
        operation = type(stmt).__name__.lower() if isinstance(stmt, (Upsert, AddColumn)) else "write"
        compiled = self._store.translate(stmt)
        try:
            result = await self._conn.execute(compiled)
        except SQLAlchemyError as exc:
            if isinstance(stmt, AddColumn) and self._store.is_duplicate_column_error(exc):
                logger.debug(
                    "store.column_exists",
                    table=stmt.table_name,
                    column=stmt.column.name,
                )
                return WriteResult(affected_count=0)
            raise PersistenceError(str(exc), operation=operation, cause=exc) from exc
        rowcount = result.rowcount if result.rowcount is not None else 0
        return WriteResult(affected_count=max(rowcount, 0))


class LocalStore(ABC):
    """Abstract store; subclasses supply the dialect-specific translations.

    Args:
        engine: The AsyncEngine for this backend. Owned by the store and
            disposed in close().
    """

    dialect_name: str = ""

    def __init__(self, engine: AsyncEngine) -> None:
        self._engine = engine
        self.bootstrapped = False

    @property
    def engine(self) -> AsyncEngine:
        return self._engine

    # ── Dialect hooks ──────────────────────────────────────────────────────

    @abstractmethod
    def _insert(self, table: Table) -> Any:
        """Return the dialect's INSERT construct supporting ON CONFLICT."""

    @abstractmethod
    def _add_column_sql(self, table_name: str, column_sql: str) -> str:
        """Return the ALTER TABLE statement for one column definition."""

    @abstractmethod
    def is_duplicate_column_error(self, exc: SQLAlchemyError) -> bool:
        """True if exc means the column being added already exists."""

    # ── Translation ────────────────────────────────────────────────────────

    def translate(self, stmt: Statement) -> Executable:
        """Turn a neutral operation into an executable statement."""
        if isinstance(stmt, Upsert):
            return self._translate_upsert(stmt)
        if isinstance(stmt, AddColumn):
            return self._translate_add_column(stmt)
        return stmt

    def _translate_upsert(self, op: Upsert) -> Executable:
        insert_stmt = self._insert(op.table).values(dict(op.values))
        update_columns = [c for c in op.update_columns if c not in op.conflict_columns]
        if not update_columns:
            return insert_stmt.on_conflict_do_nothing(index_elements=list(op.conflict_columns))
        return insert_stmt.on_conflict_do_update(
            index_elements=list(op.conflict_columns),
            set_={col: insert_stmt.excluded[col] for col in update_columns},
        )

    def _translate_add_column(self, op: AddColumn) -> TextClause:
        dialect = self._engine.dialect
        preparer = dialect.identifier_preparer
        column_sql = f"{preparer.quote(op.column.name)} {op.column.type.compile(dialect=dialect)}"
        default = op.column.server_default
        # Only constant defaults; SQLite rejects expressions in ADD COLUMN.
        if default is not None and isinstance(getattr(default, "arg", None), TextClause):
            column_sql += f" DEFAULT {default.arg.text}"
        return text(self._add_column_sql(preparer.quote(op.table_name), column_sql))

    # ── Execution ──────────────────────────────────────────────────────────

    async def read(self, stmt: Executable) -> list[dict[str, Any]]:
        """Run a SELECT and return its rows as plain dicts."""
        try:
            async with self._engine.connect() as conn:
                return await StoreSession(self, conn).read(stmt)
        except SQLAlchemyError as exc:
            raise PersistenceError(str(exc), operation="read", cause=exc) from exc

    async def read_one(self, stmt: Executable) -> dict[str, Any] | None:
        rows = await self.read(stmt)
        return rows[0] if rows else None

    async def write(self, stmt: Statement) -> WriteResult:
        """Run one statement in its own transaction."""
        async with self.transaction() as session:
            return await session.write(stmt)

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[StoreSession]:
        """Explicit transaction: commit on clean exit, roll back on any error.

        Usage:
            async with store.transaction() as tx:
                await tx.write(Upsert(...))
                await tx.write(Upsert(...))
        """
        try:
            async with self._engine.begin() as conn:
                yield StoreSession(self, conn)
        except SQLAlchemyError as exc:
            raise PersistenceError(str(exc), operation="transaction", cause=exc) from exc

    # ── Lifecycle ──────────────────────────────────────────────────────────

    async def bootstrap(self) -> None:
        """Create missing tables, then apply additive column migrations.

        Idempotent. A failing ALTER is logged and skipped; it never aborts
        startup. Failure to create the tables themselves is raised.
        """
        try:
            async with self._engine.begin() as conn:
                await conn.run_sync(Base.metadata.create_all)
        except SQLAlchemyError as exc:
            raise PersistenceError(str(exc), operation="bootstrap", cause=exc) from exc

        for table_name, column_name in ADDITIVE_COLUMNS:
            column = Base.metadata.tables[table_name].c[column_name]
            try:
                await self.write(AddColumn(table_name, column))
            except PersistenceError as exc:
                logger.warning(
                    "store.additive_column_failed",
                    table=table_name,
                    column=column_name,
                    error=str(exc),
                )

        self.bootstrapped = True
        logger.info("store.bootstrapped", dialect=self.dialect_name)

    async def ping(self) -> bool:
        """Return True if a trivial query succeeds."""
        try:
            async with self._engine.connect() as conn:
                await conn.execute(text("SELECT 1"))
        except (SQLAlchemyError, OSError) as exc:
            logger.warning("store.ping_failed", dialect=self.dialect_name, error=str(exc))
            return False
        return True

    async def close(self) -> None:
        await self._engine.dispose()


class SQLiteStore(LocalStore):
    """File-backed SQLite store via aiosqlite."""

    dialect_name = "sqlite"

    def _insert(self, table: Table) -> Any:
        return sqlite.insert(table)

    def _add_column_sql(self, table_name: str, column_sql: str) -> str:
        return f"ALTER TABLE {table_name} ADD COLUMN {column_sql}"

    def is_duplicate_column_error(self, exc: SQLAlchemyError) -> bool:
        return "duplicate column name" in str(exc).lower()


class PostgresStore(LocalStore):
    """Pooled PostgreSQL store via asyncpg."""

    dialect_name = "postgresql"

    def _insert(self, table: Table) -> Any:
        return postgresql.insert(table)

    def _add_column_sql(self, table_name: str, column_sql: str) -> str:
        return f"ALTER TABLE {table_name} ADD COLUMN IF NOT EXISTS {column_sql}"

    def is_duplicate_column_error(self, exc: SQLAlchemyError) -> bool:
        return "already exists" in str(exc).lower()


# ── Factory ─────────────────────────────────────────────────────────────────


def open_sqlite_store(path: str) -> SQLiteStore:
    return SQLiteStore(build_engine(sqlite_url(path)))


async def create_store(settings: Settings) -> LocalStore:
    """Select, connect and bootstrap the store for this process.

    PostgreSQL when DATABASE_URL is set, otherwise SQLite at SQLITE_PATH.
    If PostgreSQL is unreachable and DATABASE_FALLBACK_TO_SQLITE is enabled,
    the SQLite store is used instead. The returned store is bootstrapped.
    """
    store: LocalStore
    if settings.uses_postgres:
        store = PostgresStore(
            build_engine(
                normalize_postgres_url(settings.DATABASE_URL),
                production=settings.ENVIRONMENT == Environment.production,
            )
        )
        if not await store.ping():
            if not settings.DATABASE_FALLBACK_TO_SQLITE:
                await store.close()
                raise PersistenceError("PostgreSQL is unreachable", operation="connect")
            logger.warning("store.postgres_unreachable_falling_back", sqlite_path=settings.SQLITE_PATH)
            await store.close()
            store = open_sqlite_store(settings.SQLITE_PATH)
    else:
        store = open_sqlite_store(settings.SQLITE_PATH)

    await store.bootstrap()
    return store
