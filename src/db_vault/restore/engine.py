"""RestoreEngine: decode an artifact and replay it into a database.

Modes:

- ``verify``: replay into a uniquely named throwaway database, run a
  verification query, and drop the database on every exit path.
- ``destructive``: drop and recreate the real database, then replay.
  There is no rollback; a partial restore is reported as failed.
- single table (``RestoreRequest.table``): extract one table's statements,
  drop that table in the target, replay only those statements, and count
  the restored rows.  Combined with ``verify`` mode the target is a
  throwaway database.

Usage:
    engine = RestoreEngine(config, connector)
    report = await engine.restore(
        RestoreRequest(artifact=artifact.path, mode=RestoreMode.VERIFY),
        resolve_target(config.targets["shop"]),
    )
"""

import asyncio
import logging
import secrets
from collections.abc import Callable
from datetime import datetime, timezone
from pathlib import Path
from typing import TYPE_CHECKING

from db_vault.adapters.base import DatabaseClient
from db_vault.config.models import TargetConfig, VaultConfig
from db_vault.dialects.base import Dialect
from db_vault.errors import (
    CompressionError,
    DumpValidationError,
    TableNotFoundError,
    VaultError,
)
from db_vault.pipeline import crypto
from db_vault.pipeline.transforms import gunzip_file, has_sql_markers, is_gzip
from db_vault.resources import drop_database, ephemeral_database, scratch_directory
from db_vault.restore.extractor import extract_table, list_tables
from db_vault.restore.models import RestoreMode, RestorePhase, RestoreReport, RestoreRequest
from db_vault.restore.statements import replay

if TYPE_CHECKING:
    from db_vault.factory import Connector, ResolvedTarget

logger = logging.getLogger(__name__)


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class RestoreEngine:
    """Reverse the artifact pipeline and replay SQL.

    Args:
        config: Vault configuration (decryption keys, scratch location).
        connector: Opens database clients.
        clock: Returns the current time; used for ephemeral database names.
    """

    def __init__(
        self,
        config: VaultConfig,
        connector: "Connector",
        clock: Callable[[], datetime] = _utc_now,
    ) -> None:
        self._config = config
        self._connector = connector
        self._clock = clock

    # ------------------------------------------------------------------
    # Decoding
    # ------------------------------------------------------------------

    async def decode(
        self, artifact: Path, scratch: Path, target: TargetConfig | None = None
    ) -> Path:
        """Decrypt and decompress ``artifact`` into ``scratch``.

        Encryption and compression are detected from the file's leading
        bytes, so plain ``.sql`` and ``.sql.gz`` files are accepted too.

        Returns:
            Path of the plain SQL file.

        Raises:
            EncryptionError: Decryption failed.
            CompressionError: Content is not valid gzip.
            DumpValidationError: Decoded content contains no SQL markers.
        """
        current = Path(artifact)
        if not current.exists():
            raise DumpValidationError(f"Artifact not found: {current}", stage="decode")

        if crypto.is_encrypted(current):
            decrypted = scratch / "decrypted.bin"
            await asyncio.to_thread(
                crypto.decrypt_file,
                current,
                decrypted,
                passphrase=self._passphrase(target),
                keyring=self._config.encryption.keyring_path,
            )
            current = decrypted

        if is_gzip(current):
            plain = scratch / "dump.sql"
            try:
                await asyncio.to_thread(gunzip_file, current, plain)
            except (OSError, EOFError) as e:
                raise CompressionError(f"Cannot decompress {artifact}: {e}", stage="decode") from e
            current = plain

        if not await asyncio.to_thread(has_sql_markers, current):
            raise DumpValidationError(
                f"Decoded {Path(artifact).name} contains no recognizable SQL", stage="decode"
            )
        return current

    def _passphrase(self, target: TargetConfig | None) -> bytes | None:
        path = (
            self._config.passphrase_file_for(target)
            if target is not None
            else self._config.encryption.passphrase_file
        )
        if path is None or not path.exists():
            return None
        return crypto.read_passphrase(path)

    async def read_sql(self, artifact: Path, target: TargetConfig | None = None) -> str:
        """Decode an artifact and return its SQL text."""
        with scratch_directory(self._config.scratch_dir, prefix="db-vault-restore-") as scratch:
            path = await self.decode(artifact, scratch, target)
            try:
                return await asyncio.to_thread(path.read_text, encoding="utf-8")
            except UnicodeDecodeError as e:
                raise DumpValidationError(
                    f"Decoded {Path(artifact).name} is not valid UTF-8 at byte {e.start}",
                    stage="decode",
                ) from e

    async def list_tables(self, artifact: Path, resolved: "ResolvedTarget") -> list[str]:
        """Tables created in an artifact's dump, in dump order."""
        sql = await self.read_sql(artifact, resolved.config)
        return list_tables(sql, resolved.dialect)

    # ------------------------------------------------------------------
    # Restore
    # ------------------------------------------------------------------

    def ephemeral_name(self) -> str:
        return f"restore_{self._clock():%Y%m%d%H%M%S%f}_{secrets.token_hex(2)}"

    async def restore(self, request: RestoreRequest, resolved: "ResolvedTarget") -> RestoreReport:
        """Run a restore and return its report.

        Raises:
            VaultError: Any typed failure; ``error.report`` holds the partial
                ``RestoreReport`` and ``error.stage`` the phase it failed in.
        """
        report = RestoreReport(
            target=resolved.name,
            artifact=request.artifact,
            mode=request.mode,
            database=request.database or resolved.database,
            table=request.table,
        )
        try:
            report.enter(RestorePhase.DECODING)
            sql = await self.read_sql(request.artifact, resolved.config)

            if request.table:
                table_name = request.table.split(".")[-1]
                found = extract_table(sql, table_name, resolved.dialect)
                if found is None:
                    raise TableNotFoundError(
                        f"Table '{request.table}' not found in {Path(request.artifact).name}"
                    )
                logger.info(
                    "Extracted %s: %d statement(s)", request.table, found.statement_count
                )
                sql = found.sql

            if request.mode is RestoreMode.VERIFY:
                await self._restore_verify(sql, request, resolved, report)
            else:
                await self._restore_destructive(sql, request, resolved, report)
        except VaultError as e:
            # Verify mode has already recorded the phase before cleanup
            if report.phase is not RestorePhase.CLEANUP:
                e.at_stage(report.phase.value)
            e.with_context(target=resolved.name)
            report.error = str(e)
            report.enter(RestorePhase.FAILED)
            e.report = report
            logger.error("Restore of %s failed: %s", resolved.name, e)
            raise

        report.success = True
        report.enter(RestorePhase.DONE)
        logger.info(
            "Restore of %s into %s complete (%s)", resolved.name, report.database, report.strategy
        )
        return report

    async def _restore_verify(
        self,
        sql: str,
        request: RestoreRequest,
        resolved: "ResolvedTarget",
        report: RestoreReport,
    ) -> None:
        dialect = resolved.dialect
        name = self.ephemeral_name()
        report.database = name

        report.enter(RestorePhase.CONNECTING)
        async with self._connector(dialect, dialect.admin_url(resolved.url)) as admin:
            try:
                async with ephemeral_database(admin, dialect, name):
                    db_url = dialect.database_url(resolved.url, name)
                    async with self._connector(dialect, db_url) as client:
                        await self._apply(client, dialect, sql, request, report)

                        report.enter(RestorePhase.VERIFYING)
                        query = (
                            request.verify_query
                            or self._config.verify_query_for(resolved.config)
                            or dialect.default_verify_query
                        )
                        report.verify_result = await client.scalar(query)
                        logger.info("Verification query on %s returned %r", name, report.verify_result)
                    report.enter(RestorePhase.CLEANUP)
            except VaultError as e:
                # The ephemeral database has already been dropped on the way out
                e.at_stage(report.phase.value)
                if report.phase is not RestorePhase.CLEANUP:
                    report.enter(RestorePhase.CLEANUP)
                raise

    async def _restore_destructive(
        self,
        sql: str,
        request: RestoreRequest,
        resolved: "ResolvedTarget",
        report: RestoreReport,
    ) -> None:
        dialect = resolved.dialect
        database = report.database

        report.enter(RestorePhase.CONNECTING)
        if not request.table:
            logger.warning("Dropping and recreating database %s", database)
            async with self._connector(dialect, dialect.admin_url(resolved.url)) as admin:
                await drop_database(admin, dialect, database)
                await admin.execute(dialect.create_database_sql(database))

        async with self._connector(dialect, dialect.database_url(resolved.url, database)) as client:
            await self._apply(client, dialect, sql, request, report)

    async def _apply(
        self,
        client: DatabaseClient,
        dialect: Dialect,
        sql: str,
        request: RestoreRequest,
        report: RestoreReport,
    ) -> None:
        if request.table:
            if dialect.session_preamble:
                await client.execute(dialect.session_preamble)
            await client.execute(dialect.drop_table_sql(request.table))

        report.enter(RestorePhase.BULK_EXECUTING)
        outcome = await replay(
            client,
            sql,
            dialect,
            on_fallback=lambda: report.enter(RestorePhase.STATEMENT_FALLBACK),
        )
        report.strategy = outcome.strategy
        report.statements_executed = outcome.executed
        report.statements_failed = outcome.failed
        report.statements_skipped = outcome.skipped
        report.errors = outcome.errors

        if request.table:
            report.rows_restored = int(await client.scalar(dialect.count_rows_sql(request.table)))
            logger.info("Restored %d row(s) into %s", report.rows_restored, request.table)
