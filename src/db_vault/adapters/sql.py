"""Async SQL adapter for MySQL and PostgreSQL.

Provides ``AsyncSqlAdapter``, an implementation of the ``DatabaseClient``
protocol on SQLAlchemy's async engine.  Engine-specific behavior (driver
scheme, multi-statement execution, connection-loss detection) comes from
the target's ``Dialect``.

Usage:
    from db_vault.adapters.sql import AsyncSqlAdapter
    from db_vault.dialects import get_dialect

    adapter = AsyncSqlAdapter("mysql://root:pw@localhost/shop", get_dialect("mysql"))
    async with adapter:
        await adapter.execute_script(dump_text)
"""

import logging
from typing import Any

from sqlalchemy import exc as sa_exc
from sqlalchemy import text
from sqlalchemy.engine import URL
from sqlalchemy.ext.asyncio import AsyncConnection, AsyncEngine, create_async_engine

from db_vault.dialects.base import Dialect
from db_vault.errors import (
    ConnectionLostError,
    DatabaseConnectionError,
    RestoreExecutionError,
)

logger = logging.getLogger(__name__)


def create_async_engine_pooled(database_url: URL | str, **kwargs: Any) -> AsyncEngine:
    """Create an async SQLAlchemy engine with connection pooling.

    Default pool settings:

    - ``pool_size=1``: An adapter holds a single session.
    - ``max_overflow=0``: Never open a second connection behind its back.
    - ``pool_pre_ping=True``: Validate connections before checkout.
    - ``pool_recycle=300``: Recycle connections every 5 minutes.

    Args:
        database_url: Connection URL with an async driver scheme.
        **kwargs: Additional keyword arguments forwarded to
            ``create_async_engine`` (caller kwargs override defaults).

    Returns:
        Configured ``AsyncEngine``.
    """
    defaults: dict[str, Any] = {
        "pool_size": 1,
        "max_overflow": 0,
        "pool_pre_ping": True,
        "pool_recycle": 300,
        "echo": False,
    }
    merged = {**defaults, **kwargs}

    return create_async_engine(database_url, **merged)


class AsyncSqlAdapter:
    """``DatabaseClient`` backed by one AUTOCOMMIT SQLAlchemy connection.

    Scripts go straight to the raw driver connection (SQLAlchemy's
    ``text()`` would try to bind ``:name`` tokens inside dump data), while
    queries with parameters go through ``text()``.

    Args:
        database_url: Connection URL in any accepted scheme for the dialect.
        dialect: Engine dialect of the target.
        connect_timeout: Seconds to wait for the server on connect.
        **engine_kwargs: Forwarded to ``create_async_engine_pooled``.
    """

    def __init__(
        self,
        database_url: URL | str,
        dialect: Dialect,
        connect_timeout: int = 10,
        **engine_kwargs: Any,
    ) -> None:
        self._dialect = dialect
        url = database_url if isinstance(database_url, URL) else dialect.parse_url(database_url)
        self._url = url
        engine_kwargs.setdefault("connect_args", dialect.connect_args(connect_timeout))
        self._engine: AsyncEngine = create_async_engine_pooled(url, **engine_kwargs)
        self._conn: AsyncConnection | None = None
        self._driver: Any = None
        self._lost = False

    @property
    def database(self) -> str | None:
        return self._url.database

    @property
    def closed(self) -> bool:
        return self._lost or self._conn is None or self._conn.closed

    async def connect(self) -> "AsyncSqlAdapter":
        """Open the session; idempotent."""
        if self._conn is not None:
            return self
        try:
            conn = await self._engine.connect()
            self._conn = await conn.execution_options(isolation_level="AUTOCOMMIT")
            raw = await self._conn.get_raw_connection()
            self._driver = raw.driver_connection
        except (sa_exc.DBAPIError, OSError) as e:
            await self._engine.dispose()
            raise DatabaseConnectionError(
                f"Cannot connect to {self._url.render_as_string(hide_password=True)}: {e}",
                stage="connect",
            ) from e
        logger.debug("Connected to %s", self._url.render_as_string(hide_password=True))
        return self

    async def __aenter__(self) -> "AsyncSqlAdapter":
        return await self.connect()

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------

    async def execute_script(self, sql: str) -> None:
        await self._run_raw(sql)

    async def execute(self, sql: str) -> None:
        await self._run_raw(sql)

    async def scalar(self, sql: str, params: dict[str, Any] | None = None) -> Any:
        conn = self._require_connection()
        try:
            result = await conn.execute(text(sql), params or {})
            return result.scalar()
        except sa_exc.DBAPIError as e:
            raise self._translate(e.orig or e) from e

    async def fetch_all(
        self, sql: str, params: dict[str, Any] | None = None
    ) -> list[dict[str, Any]]:
        conn = self._require_connection()
        try:
            result = await conn.execute(text(sql), params or {})
            return [dict(row._mapping) for row in result]
        except sa_exc.DBAPIError as e:
            raise self._translate(e.orig or e) from e

    async def close(self) -> None:
        """Close the session and dispose the engine so no pooled connection lingers."""
        if self._conn is not None:
            try:
                await self._conn.close()
            except (sa_exc.DBAPIError, OSError) as e:
                # Already gone; nothing left to release
                logger.debug("Ignoring error while closing lost connection: %s", e)
            self._conn = None
            self._driver = None
        await self._engine.dispose()

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _require_connection(self) -> AsyncConnection:
        if self._lost:
            raise ConnectionLostError("Connection was lost", stage="execute")
        if self._conn is None:
            raise RestoreExecutionError("Adapter is not connected", stage="execute")
        return self._conn

    async def _run_raw(self, sql: str) -> None:
        self._require_connection()
        try:
            await self._dialect.execute_raw(self._driver, sql)
        except Exception as e:  # driver-specific error hierarchies
            raise self._translate(e) from e

    def _translate(self, error: BaseException) -> Exception:
        if self._dialect.is_connection_lost(error):
            self._lost = True
            return ConnectionLostError(f"Connection lost: {error}", stage="execute")
        return RestoreExecutionError(str(error), stage="execute")
