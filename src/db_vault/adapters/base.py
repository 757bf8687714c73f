"""Database client protocol definition.

Defines the ``DatabaseClient`` Protocol that restore and catalog-dump code
talks to.  All methods are ``async def`` -- the library is async-first.

A client wraps exactly one live session, so session state set by one
statement (``SET FOREIGN_KEY_CHECKS=0``, ``SET search_path``) is visible to
the next.

Usage:
    from db_vault.adapters.base import DatabaseClient

    async def restore(client: DatabaseClient, sql: str) -> None:
        await client.execute_script(sql)
        tables = await client.scalar("SELECT COUNT(*) FROM information_schema.tables")
        await client.close()
"""

from typing import Any, Protocol


class DatabaseClient(Protocol):
    """Database client interface that all adapters must implement.

    Errors are raised as db-vault types: ``ConnectionLostError`` when the
    session dropped, ``RestoreExecutionError`` for any other SQL failure.
    """

    async def execute_script(self, sql: str) -> None:
        """Execute a multi-statement SQL script in one round trip.

        Args:
            sql: Full script text.

        Raises:
            RestoreExecutionError: If any statement fails.
            ConnectionLostError: If the session dropped.
        """
        ...

    async def execute(self, sql: str) -> None:
        """Execute a single statement with no parameters.

        Example:
            await client.execute("DROP TABLE IF EXISTS `users`")
        """
        ...

    async def scalar(self, sql: str, params: dict[str, Any] | None = None) -> Any:
        """Execute a query and return the first column of the first row."""
        ...

    async def fetch_all(
        self, sql: str, params: dict[str, Any] | None = None
    ) -> list[dict[str, Any]]:
        """Execute a query and return every row as a dict.

        Example:
            rows = await client.fetch_all(
                "SELECT table_name FROM information_schema.tables "
                "WHERE table_schema = :schema",
                {"schema": "public"},
            )
        """
        ...

    @property
    def closed(self) -> bool:
        """True once the session is closed or known to be lost."""
        ...

    async def close(self) -> None:
        """Close the session and dispose of the underlying engine."""
        ...

    async def __aenter__(self) -> "DatabaseClient":
        ...

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        ...
