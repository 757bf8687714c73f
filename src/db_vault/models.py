"""Structured results returned by service operations."""

from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field

from db_vault.errors import VaultError
from db_vault.pipeline.models import Artifact
from db_vault.restore.models import RestoreReport


class ErrorInfo(BaseModel):
    """A typed error flattened for display or JSON output."""

    kind: str
    message: str
    target: str | None = None
    stage: str | None = None

    @classmethod
    def from_exception(cls, error: BaseException) -> "ErrorInfo":
        if isinstance(error, VaultError):
            return cls(
                kind=error.kind,
                message=error.message,
                target=error.target,
                stage=error.stage,
            )
        return cls(kind=type(error).__name__, message=str(error))


class TargetCycleResult(BaseModel):
    """What one scheduler cycle did for one target."""

    target: str
    artifact: Artifact | None = None
    verify: RestoreReport | None = None
    pruned: dict[str, list[Path]] = Field(default_factory=dict)
    error: ErrorInfo | None = None

    @property
    def success(self) -> bool:
        return self.error is None


class CycleReport(BaseModel):
    results: list[TargetCycleResult] = Field(default_factory=list)

    @property
    def success(self) -> bool:
        return all(r.success for r in self.results)

    @property
    def failed_targets(self) -> list[str]:
        return [r.target for r in self.results if not r.success]


class OperationResult(BaseModel):
    """Result of a named service operation.

    Attributes:
        success: Whether the operation completed.
        operation: Operation name (``produce-now``, ``verify-restore``, ...).
        target: Target name, when the operation has one.
        artifact: Artifact produced or used.
        artifacts: Artifacts listed.
        restore: Restore report (also set on failure when one was reached).
        tables: Table names listed.
        cycle: Scheduler cycle report.
        error: Typed error on failure.
    """

    success: bool = False
    operation: str
    target: str | None = None
    artifact: Artifact | None = None
    artifacts: list[Artifact] = Field(default_factory=list)
    restore: RestoreReport | None = None
    tables: list[str] = Field(default_factory=list)
    cycle: CycleReport | None = None
    error: ErrorInfo | None = None
    details: dict[str, Any] = Field(default_factory=dict)
