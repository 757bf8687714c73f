"""Catalog reconstruction strategy.

Rebuilds a best-effort SQL dump over a live connection when no native
dump tool is usable: table DDL from the engine's catalog plus row data as
multi-row INSERT statements.  Triggers, routines, sequences, views and
engine-specific types are not reproduced; the output says so in its
banner.
"""

import logging
from collections.abc import Sequence
from datetime import datetime, timezone
from pathlib import Path
from typing import IO, TYPE_CHECKING, Any

from db_vault.adapters.base import DatabaseClient
from db_vault.dialects.base import Dialect, EngineVariant
from db_vault.dump.models import StrategyOutcome
from db_vault.errors import ConnectionLostError, RestoreExecutionError

if TYPE_CHECKING:
    from db_vault.factory import Connector, ResolvedTarget

logger = logging.getLogger(__name__)

INSERT_BATCH_SIZE = 100

_INTEGER_TYPES = {"smallint", "integer", "bigint"}


def write_banner(out: IO[str], dialect: Dialect, target_name: str) -> None:
    out.write(f"-- db-vault {dialect.variant.value} dump (fallback)\n")
    out.write(f"-- Target: {target_name}\n")
    out.write(f"-- Generated: {datetime.now(timezone.utc).isoformat()}\n")
    out.write(
        "-- Reconstructed from the catalog: triggers, routines, sequences "
        "and views are not included.\n\n"
    )


def write_inserts(
    out: IO[str],
    dialect: Dialect,
    table_sql: str,
    rows: Sequence[dict[str, Any]],
    batch_size: int = INSERT_BATCH_SIZE,
) -> None:
    """Write rows as multi-row INSERT statements of ``batch_size`` rows."""
    if not rows:
        return
    columns = ", ".join(dialect.quote_identifier(c) for c in rows[0].keys())
    for start in range(0, len(rows), batch_size):
        batch = rows[start:start + batch_size]
        values = ",\n".join(
            "(" + ", ".join(dialect.format_literal(v) for v in row.values()) + ")"
            for row in batch
        )
        out.write(f"INSERT INTO {table_sql} ({columns}) VALUES\n{values};\n")


class CatalogStrategy:
    """Reconstruct a dump from information_schema / SHOW CREATE TABLE.

    Args:
        connector: Opens a ``DatabaseClient`` for the target.
    """

    name = "catalog"
    fallback = True

    def __init__(self, connector: "Connector") -> None:
        self._connector = connector

    async def run(self, resolved: "ResolvedTarget", output_path: Path) -> StrategyOutcome:
        dialect = resolved.dialect
        # DatabaseConnectionError from connect propagates: no later strategy can succeed
        async with self._connector(dialect, resolved.url) as client:
            try:
                with open(output_path, "w", encoding="utf-8") as out:
                    write_banner(out, dialect, resolved.name)
                    if dialect.variant is EngineVariant.MYSQL:
                        await self._dump_mysql(client, dialect, out)
                    else:
                        await self._dump_postgres(client, dialect, out)
            except (ConnectionLostError, RestoreExecutionError) as e:
                return StrategyOutcome.failed(self.name, e.with_context(target=resolved.name, stage="dump"))
        logger.info("Catalog dump of %s written to %s", resolved.name, output_path)
        return StrategyOutcome.ok(self.name)

    # ------------------------------------------------------------------
    # MySQL
    # ------------------------------------------------------------------

    async def _dump_mysql(self, client: DatabaseClient, dialect: Dialect, out: IO[str]) -> None:
        tables = await client.fetch_all(
            "SELECT table_name AS name FROM information_schema.tables "
            "WHERE table_schema = DATABASE() AND table_type = 'BASE TABLE' "
            "ORDER BY table_name"
        )
        out.write("SET FOREIGN_KEY_CHECKS=0;\n")
        for row in tables:
            table = row["name"]
            quoted = dialect.quote_identifier(table)
            try:
                create = await client.fetch_all(f"SHOW CREATE TABLE {quoted}")
                data = await client.fetch_all(f"SELECT * FROM {quoted}")
            except RestoreExecutionError as e:
                logger.warning("Skipping table %s: %s", table, e)
                out.write(f"\n-- Error dumping table {table}: {e.message}\n")
                continue
            out.write(f"\n--\n-- Table structure for table {quoted}\n--\n\n")
            out.write(f"DROP TABLE IF EXISTS {quoted};\n")
            out.write(f"{create[0]['Create Table']};\n")
            out.write(f"\n-- Dumping data for table {quoted} ({len(data)} rows)\n")
            write_inserts(out, dialect, quoted, data)
        out.write("\nSET FOREIGN_KEY_CHECKS=1;\n")

    # ------------------------------------------------------------------
    # PostgreSQL
    # ------------------------------------------------------------------

    async def _dump_postgres(self, client: DatabaseClient, dialect: Dialect, out: IO[str]) -> None:
        tables = await client.fetch_all(
            "SELECT table_schema, table_name FROM information_schema.tables "
            "WHERE table_schema NOT IN ('pg_catalog', 'information_schema') "
            "AND table_type = 'BASE TABLE' "
            "ORDER BY table_schema, table_name"
        )
        schemas_created: set[str] = set()
        for row in tables:
            schema, table = row["table_schema"], row["table_name"]
            qualified = (
                dialect.quote_identifier(table)
                if schema == "public"
                else f"{dialect.quote_identifier(schema)}.{dialect.quote_identifier(table)}"
            )
            try:
                columns = await client.fetch_all(
                    "SELECT column_name, data_type, udt_name, character_maximum_length, "
                    "numeric_precision, numeric_scale, is_nullable, column_default "
                    "FROM information_schema.columns "
                    "WHERE table_schema = :schema AND table_name = :table "
                    "ORDER BY ordinal_position",
                    {"schema": schema, "table": table},
                )
                primary_key = await client.fetch_all(
                    "SELECT kcu.column_name FROM information_schema.table_constraints tc "
                    "JOIN information_schema.key_column_usage kcu "
                    "ON tc.constraint_name = kcu.constraint_name "
                    "AND tc.table_schema = kcu.table_schema "
                    "WHERE tc.constraint_type = 'PRIMARY KEY' "
                    "AND tc.table_schema = :schema AND tc.table_name = :table "
                    "ORDER BY kcu.ordinal_position",
                    {"schema": schema, "table": table},
                )
                data = await client.fetch_all(f"SELECT * FROM {qualified}")
            except RestoreExecutionError as e:
                logger.warning("Skipping table %s.%s: %s", schema, table, e)
                out.write(f"\n-- Error dumping table {schema}.{table}: {e.message}\n")
                continue

            if schema != "public" and schema not in schemas_created:
                out.write(f"CREATE SCHEMA IF NOT EXISTS {dialect.quote_identifier(schema)};\n")
                schemas_created.add(schema)

            out.write(f"\n--\n-- Name: {table}; Schema: {schema}\n--\n\n")
            out.write(f"DROP TABLE IF EXISTS {qualified} CASCADE;\n")
            out.write(self._postgres_create_table(dialect, qualified, columns, primary_key))
            out.write(f"\n-- Data for {qualified} ({len(data)} rows)\n")
            write_inserts(out, dialect, qualified, data)

    def _postgres_create_table(
        self,
        dialect: Dialect,
        qualified: str,
        columns: list[dict[str, Any]],
        primary_key: list[dict[str, Any]],
    ) -> str:
        lines = [f"    {self._postgres_column(dialect, col)}" for col in columns]
        if primary_key:
            pk = ", ".join(dialect.quote_identifier(r["column_name"]) for r in primary_key)
            lines.append(f"    PRIMARY KEY ({pk})")
        return f"CREATE TABLE {qualified} (\n" + ",\n".join(lines) + "\n);\n"

    def _postgres_column(self, dialect: Dialect, col: dict[str, Any]) -> str:
        data_type = col["data_type"]
        if data_type == "ARRAY":
            type_sql = col["udt_name"].lstrip("_") + "[]"
        elif data_type == "USER-DEFINED":
            type_sql = col["udt_name"]
        elif data_type in ("character varying", "character") and col["character_maximum_length"]:
            type_sql = f"{data_type}({col['character_maximum_length']})"
        elif data_type == "numeric" and col["numeric_precision"] is not None:
            type_sql = f"numeric({col['numeric_precision']}, {col['numeric_scale'] or 0})"
        else:
            type_sql = data_type

        parts = [dialect.quote_identifier(col["column_name"]), type_sql]
        default = col["column_default"]
        if default and default.startswith("nextval("):
            # Sequences are not dumped; keep auto-numbering with an identity column
            if data_type in _INTEGER_TYPES:
                parts.append("GENERATED BY DEFAULT AS IDENTITY")
        elif default is not None:
            parts.append(f"DEFAULT {default}")
        if col["is_nullable"] == "NO":
            parts.append("NOT NULL")
        return " ".join(parts)
