"""PostgreSQL dialect (psycopg 3 async driver, pg_dump tool)."""

from typing import Any

import psycopg

from db_vault.dialects.base import Dialect, EngineVariant

# SQLSTATEs for admin shutdown / crash shutdown / cannot connect now
_SHUTDOWN_STATES = frozenset({"57P01", "57P02", "57P03"})


class PostgresDialect(Dialect):
    variant = EngineVariant.POSTGRES
    identifier_quote = '"'
    async_driver = "postgresql+psycopg"
    admin_database = "postgres"
    tool_name = "pg_dump"
    tool_env_var = "PG_DUMP_PATH"
    password_env_var = "PGPASSWORD"
    dollar_quotes = True
    banner = "PostgreSQL database dump"

    def normalize_scheme(self, database_url: str) -> str:
        # postgres:// is a common alias (Heroku, Railway, Supabase)
        if database_url.startswith("postgres://"):
            return "postgresql://" + database_url[len("postgres://"):]
        return database_url

    def format_bytes(self, value: bytes) -> str:
        return f"decode('{value.hex()}', 'hex')"

    async def execute_raw(self, driver_connection: Any, sql: str) -> None:
        # Without parameters psycopg sends the text as a simple query,
        # which accepts multiple statements.
        await driver_connection.execute(sql)

    def is_connection_lost(self, exc: BaseException) -> bool:
        if isinstance(exc, psycopg.InterfaceError):
            return True
        if isinstance(exc, psycopg.OperationalError):
            state = getattr(exc, "sqlstate", None)
            return state is None or state.startswith("08") or state in _SHUTDOWN_STATES
        return isinstance(exc, ConnectionError)

    def tool_command(self, binary: str, database_url: str) -> tuple[list[str], dict[str, str]]:
        url = self.parse_url(database_url)
        argv = [
            binary,
            "-h", url.host or "localhost",
            "-p", str(url.port or 5432),
            "-d", url.database or "postgres",
            "-F", "p",
            "--no-owner",
            "--no-privileges",
            # INSERT statements replay through a plain connection; COPY FROM stdin does not
            "--inserts",
        ]
        if url.username:
            argv += ["-U", url.username]
        env = {self.password_env_var: url.password} if url.password else {}
        return argv, env

    def terminate_sessions_sql(self, name: str) -> str | None:
        return (
            "SELECT pg_terminate_backend(pid) FROM pg_stat_activity "
            f"WHERE datname = '{self.escape_string(name)}' AND pid <> pg_backend_pid()"
        )

    def drop_table_sql(self, table: str) -> str:
        return f"{super().drop_table_sql(table)} CASCADE"
