"""
PostgreSQL Async Database Handle

Uses SQLAlchemy 2.0 with asyncpg. One ``Database`` is built at startup and
passed to every store that needs it.
"""

from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

import structlog
from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import AsyncConnection, AsyncEngine, create_async_engine

logger = structlog.get_logger(__name__)


# libpq connection options the asyncpg driver does not accept
LIBPQ_ONLY_PARAMS = frozenset({
    "channel_binding",
    "connect_timeout",
    "gssencmode",
    "krbsrvname",
    "sslcompression",
    "sslcert",
    "sslkey",
    "sslrootcert",
    "sslcrl",
    "requiressl",
})


def to_async_url(url: str) -> str:
    """Rewrite a libpq-style URL for the asyncpg dialect"""

    parsed = make_url(url)
    if parsed.drivername in ("postgres", "postgresql"):
        parsed = parsed.set(drivername="postgresql+asyncpg")

    query = {key: value for key, value in parsed.query.items() if key not in LIBPQ_ONLY_PARAMS}
    # asyncpg spells the TLS query parameter differently
    if "sslmode" in query:
        query["ssl"] = query.pop("sslmode")

    return parsed.set(query=query).render_as_string(hide_password=False)


class Database:
    """Owns the async engine and its connection pool"""

    def __init__(self, url: str, pool_size: int = 5, max_overflow: int = 10, echo: bool = False):
        self.url = to_async_url(url)
        self.pool_size = pool_size
        self.max_overflow = max_overflow
        self.echo = echo
        self._engine: Optional[AsyncEngine] = None

    async def connect(self) -> None:
        """Initialize the database connection pool."""

        self._engine = create_async_engine(
            self.url,
            echo=self.echo,
            pool_size=max(1, self.pool_size),
            max_overflow=max(0, self.max_overflow),
            pool_pre_ping=True,
        )
        logger.info("Database connection pool initialized", pool_size=self.pool_size)

    async def close(self) -> None:
        """Close the database connection pool."""

        if self._engine is not None:
            await self._engine.dispose()
            self._engine = None
            logger.info("Database connection pool closed")

    @property
    def engine(self) -> AsyncEngine:
        if self._engine is None:
            raise RuntimeError("Database not initialized. Call connect() first.")
        return self._engine

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[AsyncConnection]:
        """
        Connection inside a transaction, committed on exit.

        Usage:
            async with database.transaction() as conn:
                result = await conn.execute(text("..."), {...})
        """

        async with self.engine.begin() as conn:
            yield conn
