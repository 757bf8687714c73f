"""Engine variants and the per-engine capability interface.

An ``EngineVariant`` is resolved once per target into a ``Dialect``; every
engine-specific decision (URL normalization, quoting, native dump tool
invocation, administrative DDL, raw script execution) goes through it.
"""

import json
import re
from datetime import date, datetime, time, timedelta
from decimal import Decimal
from enum import Enum
from typing import Any

from sqlalchemy.engine import URL, make_url


class EngineVariant(str, Enum):
    """Closed set of supported database engines."""

    MYSQL = "mysql"
    POSTGRES = "postgres"

    @classmethod
    def _missing_(cls, value):
        aliases = {"postgresql": cls.POSTGRES, "pg": cls.POSTGRES, "mariadb": cls.MYSQL}
        return aliases.get(str(value).lower())


class Dialect:
    """Capability interface for one database engine.

    Subclasses set the class attributes and implement the driver-facing
    hooks (``execute_raw``, ``is_connection_lost``, ``connect_args``).
    """

    variant: EngineVariant
    identifier_quote: str = '"'
    async_driver: str = ""
    admin_database: str | None = None
    tool_name: str = ""
    tool_env_var: str = ""
    password_env_var: str = ""
    backslash_escapes: bool = False
    dollar_quotes: bool = False
    hash_comments: bool = False
    client_delimiters: bool = False
    session_preamble: str = ""
    default_verify_query: str = "SELECT COUNT(*) FROM information_schema.tables"
    banner: str = ""

    # ------------------------------------------------------------------
    # Identifiers and literals
    # ------------------------------------------------------------------

    def quote_identifier(self, name: str) -> str:
        """Quote an identifier, doubling any embedded quote characters."""
        q = self.identifier_quote
        return f"{q}{name.replace(q, q + q)}{q}"

    def quote_qualified(self, name: str) -> str:
        """Quote a possibly schema-qualified ``schema.table`` name."""
        return ".".join(self.quote_identifier(part) for part in name.split("."))

    def escape_string(self, value: str) -> str:
        return value.replace("'", "''")

    def format_literal(self, value: Any) -> str:
        """Render a Python value as a SQL literal for INSERT statements."""
        if value is None:
            return "NULL"
        if isinstance(value, bool):
            return self.format_bool(value)
        if isinstance(value, (int, float, Decimal)):
            return str(value)
        if isinstance(value, (bytes, bytearray, memoryview)):
            return self.format_bytes(bytes(value))
        if isinstance(value, datetime):
            return f"'{value.isoformat(sep=' ')}'"
        if isinstance(value, (date, time)):
            return f"'{value.isoformat()}'"
        if isinstance(value, timedelta):
            return f"'{value}'"
        if isinstance(value, (dict, list)):
            return f"'{self.escape_string(json.dumps(value))}'"
        return f"'{self.escape_string(str(value))}'"

    def format_bool(self, value: bool) -> str:
        return "TRUE" if value else "FALSE"

    def format_bytes(self, value: bytes) -> str:
        return f"X'{value.hex()}'"

    # ------------------------------------------------------------------
    # URLs and connections
    # ------------------------------------------------------------------

    def parse_url(self, database_url: str) -> URL:
        """Parse a locator and normalize its scheme to the async driver."""
        url = make_url(self.normalize_scheme(database_url))
        return url.set(drivername=self.async_driver)

    def normalize_scheme(self, database_url: str) -> str:
        return database_url

    def database_url(self, database_url: str, database: str | None) -> URL:
        """Same server and credentials, different database."""
        # URL.set() skips None, which would keep the original database
        return self.parse_url(database_url)._replace(database=database)

    def admin_url(self, database_url: str) -> URL:
        """URL used for CREATE/DROP DATABASE."""
        return self.database_url(database_url, self.admin_database)

    def default_database(self, database_url: str) -> str | None:
        return self.parse_url(database_url).database

    def connect_args(self, timeout: int) -> dict[str, Any]:
        return {"connect_timeout": timeout}

    async def execute_raw(self, driver_connection: Any, sql: str) -> None:
        """Execute one or more statements on the raw driver connection."""
        raise NotImplementedError

    def is_connection_lost(self, exc: BaseException) -> bool:
        raise NotImplementedError

    # ------------------------------------------------------------------
    # Native dump tool
    # ------------------------------------------------------------------

    def tool_command(self, binary: str, database_url: str) -> tuple[list[str], dict[str, str]]:
        """Return ``(argv, extra_env)`` for the native dump tool.

        The dump is written to stdout; the password travels in the
        environment, never on the command line.
        """
        raise NotImplementedError

    # ------------------------------------------------------------------
    # Administrative SQL
    # ------------------------------------------------------------------

    def create_database_sql(self, name: str) -> str:
        return f"CREATE DATABASE {self.quote_identifier(name)}"

    def drop_database_sql(self, name: str) -> str:
        return f"DROP DATABASE IF EXISTS {self.quote_identifier(name)}"

    def drop_table_sql(self, table: str) -> str:
        return f"DROP TABLE IF EXISTS {self.quote_qualified(table)}"

    def terminate_sessions_sql(self, name: str) -> str | None:
        """SQL that disconnects other sessions from ``name``, if needed."""
        return None

    def count_rows_sql(self, table: str) -> str:
        return f"SELECT COUNT(*) FROM {self.quote_qualified(table)}"

    # ------------------------------------------------------------------
    # Dump text recognition
    # ------------------------------------------------------------------

    def identifier_pattern(self) -> str:
        """Regex alternation for one quoted-or-bare identifier."""
        q = re.escape(self.identifier_quote)
        return rf"{q}(?:[^{q}]|{q}{q})+{q}|[\w$]+"

    def unquote_identifier(self, token: str) -> str:
        q = self.identifier_quote
        if len(token) >= 2 and token[0] == q and token[-1] == q:
            return token[1:-1].replace(q + q, q)
        return token

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self.variant.value}>"
