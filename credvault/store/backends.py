"""Storage backend strategies.

A backend knows how to open an engine for its database and which dialect
construct implements ``INSERT ... ON CONFLICT DO UPDATE``. The credential
store is written once against this small surface.
"""

from sqlalchemy import event
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine
from sqlalchemy.pool import StaticPool

from credvault.exceptions import ConfigurationError


class SQLiteBackend:
    """Embedded file database for local development (aiosqlite driver)."""

    name = "sqlite"

    def create_engine(self, url: str) -> AsyncEngine:
        if ":memory:" in url:
            # An in-memory database lives and dies with its connection,
            # so every session has to share the same one
            engine = create_async_engine(
                url,
                echo=False,
                connect_args={"check_same_thread": False},
                poolclass=StaticPool,
            )
        else:
            engine = create_async_engine(
                url,
                echo=False,
                connect_args={"check_same_thread": False, "timeout": 5},
            )

        @event.listens_for(engine.sync_engine, "connect")
        def _apply_pragmas(dbapi_connection, connection_record):
            cursor = dbapi_connection.cursor()
            # WAL mode allows concurrent reads while a write is in progress
            cursor.execute("PRAGMA journal_mode=WAL")
            cursor.execute("PRAGMA synchronous=NORMAL")
            cursor.execute("PRAGMA busy_timeout=5000")
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.close()

        return engine

    def insert(self, model):
        return sqlite.insert(model)


class PostgresBackend:
    """Managed PostgreSQL for production (asyncpg driver)."""

    name = "postgresql"

    def create_engine(self, url: str) -> AsyncEngine:
        return create_async_engine(
            url,
            echo=False,
            pool_size=10,
            max_overflow=20,
            pool_timeout=30,
            pool_recycle=3600,  # Managed databases drop idle connections
            pool_pre_ping=True,
        )

    def insert(self, model):
        return postgresql.insert(model)


def normalize_database_url(url: str) -> str:
    """Point bare postgres URLs (as issued by hosting providers) at the asyncpg driver."""
    for prefix in ("postgres://", "postgresql://"):
        if url.startswith(prefix):
            return "postgresql+asyncpg://" + url[len(prefix):]
    return url


def backend_for_url(url: str):
    """Select the backend strategy for a database URL.

    Raises:
        ConfigurationError: If the URL names an unsupported database
    """
    if url.startswith("sqlite"):
        return SQLiteBackend()
    if url.startswith("postgresql") or url.startswith("postgres://"):
        return PostgresBackend()
    raise ConfigurationError(f"Unsupported DATABASE_URL scheme: {url.split(':', 1)[0]}")
