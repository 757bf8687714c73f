"""MySQL / MariaDB dialect (aiomysql driver, mysqldump tool)."""

from typing import Any

import pymysql
from pymysql.constants import CLIENT

from db_vault.dialects.base import Dialect, EngineVariant

# Client error codes for a dropped server connection
_CONNECTION_LOST_CODES = frozenset({2006, 2013, 2055})

_ESCAPES = {
    "\\": "\\\\",
    "'": "\\'",
    "\n": "\\n",
    "\r": "\\r",
    "\t": "\\t",
    "\0": "\\0",
    "\x1a": "\\Z",
}


class MySQLDialect(Dialect):
    variant = EngineVariant.MYSQL
    identifier_quote = "`"
    async_driver = "mysql+aiomysql"
    admin_database = None
    tool_name = "mysqldump"
    tool_env_var = "MYSQLDUMP_PATH"
    password_env_var = "MYSQL_PWD"
    backslash_escapes = True
    hash_comments = True
    client_delimiters = True
    session_preamble = "SET FOREIGN_KEY_CHECKS=0;\n"
    banner = "MySQL dump"

    def escape_string(self, value: str) -> str:
        return "".join(_ESCAPES.get(ch, ch) for ch in value)

    def format_bool(self, value: bool) -> str:
        return "1" if value else "0"

    def connect_args(self, timeout: int) -> dict[str, Any]:
        # Bulk restore sends a whole dump in one round trip
        return {"connect_timeout": timeout, "client_flag": CLIENT.MULTI_STATEMENTS}

    async def execute_raw(self, driver_connection: Any, sql: str) -> None:
        async with driver_connection.cursor() as cur:
            await cur.execute(sql)
            # Drain every result set so errors in later statements surface
            while await cur.nextset():
                pass

    def is_connection_lost(self, exc: BaseException) -> bool:
        if isinstance(exc, pymysql.err.InterfaceError):
            return True
        if isinstance(exc, pymysql.err.OperationalError):
            code = exc.args[0] if exc.args else None
            return code in _CONNECTION_LOST_CODES
        return isinstance(exc, ConnectionError)

    def tool_command(self, binary: str, database_url: str) -> tuple[list[str], dict[str, str]]:
        url = self.parse_url(database_url)
        argv = [
            binary,
            "-h", url.host or "localhost",
            "-P", str(url.port or 3306),
            "--single-transaction",
            "--routines",
            "--triggers",
            "--no-tablespaces",
            "--hex-blob",
        ]
        if url.username:
            argv += ["-u", url.username]
        argv.append(url.database or "")
        env = {self.password_env_var: url.password} if url.password else {}
        return argv, env
