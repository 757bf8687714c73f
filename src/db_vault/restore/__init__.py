"""Restore engine, table extractor, and statement replay."""

from db_vault.restore.engine import RestoreEngine
from db_vault.restore.extractor import TableRange, extract_table, list_tables
from db_vault.restore.models import RestoreMode, RestorePhase, RestoreReport, RestoreRequest
from db_vault.restore.statements import (
    ReplayOutcome,
    is_privilege_statement,
    replay,
    split_statements,
)

__all__ = [
    "ReplayOutcome",
    "RestoreEngine",
    "RestoreMode",
    "RestorePhase",
    "RestoreReport",
    "RestoreRequest",
    "TableRange",
    "extract_table",
    "is_privilege_statement",
    "list_tables",
    "replay",
    "split_statements",
]
