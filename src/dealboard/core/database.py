"""Async SQLAlchemy engine construction for the two supported backends.

Provides:
- Base: Declarative base shared by every table
- normalize_postgres_url(): Rewrites postgres:// style URLs for asyncpg
- sqlite_url(): Builds an aiosqlite URL from a file path
- build_engine(): Creates the AsyncEngine for a normalized URL

The backend is chosen once at startup (see src.dealboard.store.adapter.create_store)
and never changes for the lifetime of the process.
"""

from __future__ import annotations

import ssl
from pathlib import Path
from typing import Any

from sqlalchemy import MetaData
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine
from sqlalchemy.orm import DeclarativeBase

# ── Declarative Base ────────────────────────────────────────────────────────

metadata = MetaData()


class Base(DeclarativeBase):
    """Base class for all dealboard tables."""

    metadata = metadata


# ── URL Handling ────────────────────────────────────────────────────────────


def normalize_postgres_url(url: str) -> str:
    """Return an asyncpg-flavoured URL for any PostgreSQL connection string.

    Hosting providers hand out ``postgres://`` or ``postgresql://`` URLs;
    SQLAlchemy's async engine needs the driver spelled out.
    """
    url = url.strip()
    if url.startswith("postgres://"):
        return "postgresql+asyncpg://" + url[len("postgres://"):]
    if url.startswith("postgresql://"):
        return "postgresql+asyncpg://" + url[len("postgresql://"):]
    return url


def sqlite_url(path: str) -> str:
    """Return the aiosqlite URL for a database file path."""
    if path == ":memory:":
        return "sqlite+aiosqlite:///:memory:"
    return f"sqlite+aiosqlite:///{Path(path).expanduser()}"


def _insecure_ssl_context() -> ssl.SSLContext:
    # Managed Postgres hosts present certificates that do not chain to a
    # local trust store; encryption is kept, verification is not.
    ctx = ssl.create_default_context()
    ctx.check_hostname = False
    ctx.verify_mode = ssl.CERT_NONE
    return ctx


# ── Engine Factory ──────────────────────────────────────────────────────────


def build_engine(url: str, *, production: bool = False, echo: bool = False) -> AsyncEngine:
    """Create the AsyncEngine for a normalized database URL.

    Args:
        url: ``postgresql+asyncpg://...`` or ``sqlite+aiosqlite:///...``.
        production: When True, PostgreSQL connections use TLS without
            certificate verification.
        echo: Log every statement (debugging only).

    Returns:
        A configured AsyncEngine. No connection is opened yet.
    """
    if url.startswith("sqlite"):
        return create_async_engine(url, echo=echo)

    connect_args: dict[str, Any] = {}
    if production:
        connect_args["ssl"] = _insecure_ssl_context()

    return create_async_engine(
        url,
        pool_size=10,
        max_overflow=5,
        pool_pre_ping=True,
        connect_args=connect_args,
        echo=echo,
    )
