"""Scoped acquisition for temporary files and temporary databases.

Both helpers release their resource on every exit path.

Usage:
    async with ephemeral_database(admin, dialect, "restore_20250101") as name:
        ...  # database exists here
    # database is gone here, even if the block raised
"""

import logging
import shutil
import tempfile
from collections.abc import AsyncIterator, Iterator
from contextlib import asynccontextmanager, contextmanager
from pathlib import Path

from db_vault.adapters.base import DatabaseClient
from db_vault.dialects.base import Dialect

logger = logging.getLogger(__name__)


@contextmanager
def scratch_directory(parent: Path | None = None, prefix: str = "db-vault-") -> Iterator[Path]:
    """Yield a private scratch directory, removed with its contents on exit."""
    if parent is not None:
        parent.mkdir(parents=True, exist_ok=True)
    path = Path(tempfile.mkdtemp(prefix=prefix, dir=parent))
    try:
        yield path
    finally:
        shutil.rmtree(path, ignore_errors=True)


async def drop_database(admin: DatabaseClient, dialect: Dialect, name: str) -> None:
    """Disconnect other sessions (where the engine needs it) and drop ``name``."""
    terminate = dialect.terminate_sessions_sql(name)
    if terminate:
        await admin.fetch_all(terminate)
    await admin.execute(dialect.drop_database_sql(name))


@asynccontextmanager
async def ephemeral_database(
    admin: DatabaseClient, dialect: Dialect, name: str
) -> AsyncIterator[str]:
    """Create database ``name`` and drop it unconditionally on exit.

    The drop also runs when creation itself failed part-way, so a
    half-created database never survives.
    """
    try:
        logger.info("Creating ephemeral database %s", name)
        await admin.execute(dialect.create_database_sql(name))
        yield name
    finally:
        logger.info("Dropping ephemeral database %s", name)
        await drop_database(admin, dialect, name)
