"""Tests for AsyncSqlAdapter and the pooled engine helper.

The SQLAlchemy engine is patched out; these tests cover URL handling,
connect-time error mapping, and how driver errors are classified.
"""

from unittest.mock import AsyncMock, MagicMock, patch

import pymysql
import pytest
from pymysql.constants import CLIENT
from sqlalchemy import exc as sa_exc

from db_vault.adapters.sql import AsyncSqlAdapter, create_async_engine_pooled
from db_vault.errors import ConnectionLostError, DatabaseConnectionError, RestoreExecutionError


# ============================================================================
# Test: create_async_engine_pooled
# ============================================================================


class TestCreateAsyncEnginePooled:
    """Pool defaults and overrides."""

    def test_passes_pool_settings(self) -> None:
        with patch("db_vault.adapters.sql.create_async_engine") as mock_create:
            mock_create.return_value = MagicMock()
            create_async_engine_pooled("mysql+aiomysql://u:p@h/db")
            _, kwargs = mock_create.call_args
            assert kwargs["pool_size"] == 1
            assert kwargs["max_overflow"] == 0
            assert kwargs["pool_pre_ping"] is True
            assert kwargs["pool_recycle"] == 300

    def test_caller_kwargs_override_defaults(self) -> None:
        with patch("db_vault.adapters.sql.create_async_engine") as mock_create:
            mock_create.return_value = MagicMock()
            create_async_engine_pooled("mysql+aiomysql://u:p@h/db", pool_size=3)
            _, kwargs = mock_create.call_args
            assert kwargs["pool_size"] == 3


# ============================================================================
# Test: URL normalization
# ============================================================================


class TestAdapterURL:
    """Locators are rewritten to the dialect's async driver."""

    def test_mysql_driver(self, mysql) -> None:
        with patch("db_vault.adapters.sql.create_async_engine_pooled") as mock_create:
            mock_create.return_value = MagicMock()
            adapter = AsyncSqlAdapter("mysql://u:p@h:3306/shop", mysql)
            url = mock_create.call_args[0][0]
            assert url.drivername == "mysql+aiomysql"
            assert adapter.database == "shop"

    def test_mysql_multi_statements_flag(self, mysql) -> None:
        with patch("db_vault.adapters.sql.create_async_engine_pooled") as mock_create:
            mock_create.return_value = MagicMock()
            AsyncSqlAdapter("mysql://u:p@h/shop", mysql, connect_timeout=7)
            connect_args = mock_create.call_args.kwargs["connect_args"]
            assert connect_args["connect_timeout"] == 7
            assert connect_args["client_flag"] & CLIENT.MULTI_STATEMENTS

    def test_postgres_alias(self, postgres) -> None:
        with patch("db_vault.adapters.sql.create_async_engine_pooled") as mock_create:
            mock_create.return_value = MagicMock()
            AsyncSqlAdapter("postgres://u:p@h/db", postgres)
            url = mock_create.call_args[0][0]
            assert url.drivername == "postgresql+psycopg"
            assert url.host == "h"

    def test_starts_closed(self, mysql) -> None:
        with patch("db_vault.adapters.sql.create_async_engine_pooled") as mock_create:
            mock_create.return_value = MagicMock()
            assert AsyncSqlAdapter("mysql://u:p@h/db", mysql).closed


# ============================================================================
# Test: connect and execution errors
# ============================================================================


def _adapter(dialect):
    engine = MagicMock()
    engine.dispose = AsyncMock()
    with patch("db_vault.adapters.sql.create_async_engine_pooled", return_value=engine):
        return AsyncSqlAdapter("mysql://u:secret@h/db", dialect), engine


class TestConnect:
    async def test_connect_failure_is_typed(self, mysql) -> None:
        adapter, engine = _adapter(mysql)
        engine.connect = AsyncMock(side_effect=OSError("Connection refused"))

        with pytest.raises(DatabaseConnectionError) as exc_info:
            await adapter.connect()

        assert exc_info.value.stage == "connect"
        assert "secret" not in str(exc_info.value)
        engine.dispose.assert_awaited()

    async def test_execute_before_connect(self, mysql) -> None:
        adapter, _ = _adapter(mysql)
        with pytest.raises(RestoreExecutionError, match="not connected"):
            await adapter.execute("SELECT 1")


class TestErrorTranslation:
    """Driver errors become ConnectionLostError or RestoreExecutionError."""

    async def test_statement_error(self, mysql) -> None:
        adapter, _ = _adapter(mysql)
        adapter._conn = MagicMock(closed=False)
        with patch.object(
            type(mysql),
            "execute_raw",
            AsyncMock(side_effect=pymysql.err.ProgrammingError(1064, "syntax error")),
        ):
            with pytest.raises(RestoreExecutionError, match="syntax error"):
                await adapter.execute_script("SELEC 1")
        assert not adapter.closed

    async def test_server_gone_marks_adapter_lost(self, mysql) -> None:
        adapter, _ = _adapter(mysql)
        adapter._conn = MagicMock(closed=False)
        with patch.object(
            type(mysql),
            "execute_raw",
            AsyncMock(side_effect=pymysql.err.OperationalError(2006, "MySQL server has gone away")),
        ):
            with pytest.raises(ConnectionLostError):
                await adapter.execute("SELECT 1")

        assert adapter.closed
        with pytest.raises(ConnectionLostError):
            await adapter.execute("SELECT 1")

    async def test_scalar_translates_dbapi_error(self, mysql) -> None:
        adapter, _ = _adapter(mysql)
        conn = MagicMock(closed=False)
        orig = pymysql.err.ProgrammingError(1146, "Table 'db.x' doesn't exist")
        conn.execute = AsyncMock(side_effect=sa_exc.ProgrammingError("SELECT", {}, orig))
        adapter._conn = conn

        with pytest.raises(RestoreExecutionError, match="doesn't exist"):
            await adapter.scalar("SELECT COUNT(*) FROM x")
