"""Restore request and report models."""

from enum import Enum
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field


class RestoreMode(str, Enum):
    VERIFY = "verify"
    DESTRUCTIVE = "destructive"


class RestorePhase(str, Enum):
    """Restore state machine.

    ``DECODING -> CONNECTING -> BULK_EXECUTING -> [STATEMENT_FALLBACK]
    -> VERIFYING (verify mode) -> CLEANUP -> DONE | FAILED``
    """

    DECODING = "decoding"
    CONNECTING = "connecting"
    BULK_EXECUTING = "bulk_executing"
    STATEMENT_FALLBACK = "statement_fallback"
    VERIFYING = "verifying"
    CLEANUP = "cleanup"
    DONE = "done"
    FAILED = "failed"


class RestoreRequest(BaseModel):
    """What to restore and where.

    Attributes:
        artifact: Stored artifact (or any .sql / .sql.gz / encrypted file).
        mode: ``verify`` (throwaway database) or ``destructive``.
        database: Target database; defaults to the target's own database.
        table: Restore only this table (destructive, into ``database``).
        verify_query: Query run after a verify restore.
    """

    artifact: Path
    mode: RestoreMode = RestoreMode.VERIFY
    database: str | None = None
    table: str | None = None
    verify_query: str | None = None


class RestoreReport(BaseModel):
    """Outcome of a restore.

    A destructive restore that failed part-way is reported with
    ``success=False`` and whatever counts were reached; nothing is rolled back.
    """

    target: str
    artifact: Path
    mode: RestoreMode
    database: str
    table: str | None = None
    success: bool = False
    phase: RestorePhase = RestorePhase.DECODING
    phases: list[RestorePhase] = Field(default_factory=list)
    strategy: str | None = None  # "bulk" | "statements"
    statements_executed: int = 0
    statements_failed: int = 0
    statements_skipped: int = 0
    errors: list[str] = Field(default_factory=list)
    verify_result: Any = None
    rows_restored: int | None = None
    error: str | None = None

    def enter(self, phase: RestorePhase) -> None:
        self.phase = phase
        self.phases.append(phase)
