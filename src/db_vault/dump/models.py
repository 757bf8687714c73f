"""Result types for dump strategies."""

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path

from db_vault.errors import VaultError


class OutcomeStatus(str, Enum):
    SUCCEEDED = "succeeded"
    SKIPPED = "skipped"
    FAILED = "failed"


@dataclass
class StrategyOutcome:
    """What one dump strategy did.

    ``error`` is the typed reason for a skip or failure
    (``ToolUnavailableError``, ``ToolExecutionError``, ...).
    """

    strategy: str
    status: OutcomeStatus
    error: VaultError | None = None

    @property
    def succeeded(self) -> bool:
        return self.status is OutcomeStatus.SUCCEEDED

    @property
    def reason(self) -> str | None:
        return str(self.error) if self.error else None

    @classmethod
    def ok(cls, strategy: str) -> "StrategyOutcome":
        return cls(strategy, OutcomeStatus.SUCCEEDED)

    @classmethod
    def skipped(cls, strategy: str, error: VaultError) -> "StrategyOutcome":
        return cls(strategy, OutcomeStatus.SKIPPED, error)

    @classmethod
    def failed(cls, strategy: str, error: VaultError) -> "StrategyOutcome":
        return cls(strategy, OutcomeStatus.FAILED, error)


@dataclass
class DumpResult:
    """A finished raw dump and how it was produced."""

    path: Path
    strategy: str
    fallback: bool
    attempts: list[StrategyOutcome] = field(default_factory=list)
