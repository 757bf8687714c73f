"""Typed error taxonomy for backup and restore operations.

Every error carries the target name and the stage it was raised from so a
failure can be diagnosed from the log line alone.

Usage:
    from db_vault.errors import DumpValidationError

    raise DumpValidationError(
        "No SQL markers found", target="shop", stage="validate"
    )
"""


class VaultError(Exception):
    """Base class for all db-vault errors.

    Attributes:
        message: Underlying human-readable message.
        target: Name of the backup target involved, if any.
        stage: Pipeline stage or restore phase the error was raised from.
    """

    kind = "vault_error"

    def __init__(
        self,
        message: str,
        *,
        target: str | None = None,
        stage: str | None = None,
    ) -> None:
        self.message = message
        self.target = target
        self.stage = stage
        # Partial result (e.g. a RestoreReport) reached before the failure
        self.report = None
        super().__init__(message)

    def __str__(self) -> str:
        context = [
            part
            for part in (
                f"target={self.target}" if self.target else None,
                f"stage={self.stage}" if self.stage else None,
            )
            if part
        ]
        if not context:
            return self.message
        return f"{self.message} ({', '.join(context)})"

    def with_context(
        self, *, target: str | None = None, stage: str | None = None
    ) -> "VaultError":
        """Fill in target/stage if they are not already set, returning self."""
        if self.target is None:
            self.target = target
        if self.stage is None:
            self.stage = stage
        return self

    def at_stage(self, stage: str) -> "VaultError":
        """Replace the stage, folding a lower-level stage into the message."""
        if self.stage and self.stage != stage:
            self.message = f"{self.stage}: {self.message}"
        self.stage = stage
        return self


class ConfigurationError(VaultError):
    """Configuration references something that does not exist."""

    kind = "configuration"


class DatabaseConnectionError(VaultError):
    """Bad connection locator or credentials.

    Never triggers a dump fallback: the fallback would hit the same wall.
    """

    kind = "connection"


class ToolUnavailableError(VaultError):
    """Native dump tool is missing or not executable."""

    kind = "tool_unavailable"


class ToolExecutionError(VaultError):
    """Native dump tool exited non-zero or timed out."""

    kind = "tool_execution"

    def __init__(self, message: str, *, returncode: int | None = None, **kwargs) -> None:
        super().__init__(message, **kwargs)
        self.returncode = returncode


class FallbackExhaustedError(VaultError):
    """Every dump strategy failed or was skipped."""

    kind = "fallback_exhausted"

    def __init__(self, message: str, *, attempts: list | None = None, **kwargs) -> None:
        super().__init__(message, **kwargs)
        self.attempts = attempts or []


class DumpValidationError(VaultError):
    """Content does not look like a SQL dump."""

    kind = "validation"


class CompressionError(VaultError):
    """Compressed output failed its self-check."""

    kind = "compression"


class EncryptionError(VaultError):
    """Encryption or decryption failed."""

    kind = "encryption"


class StorageError(VaultError):
    """Final placement or sidecar write failed."""

    kind = "storage"


class RestoreExecutionError(VaultError):
    """SQL execution failed during a restore."""

    kind = "restore_execution"


class TableNotFoundError(VaultError):
    """Requested table has no CREATE TABLE statement in the dump."""

    kind = "table_not_found"


class ConnectionLostError(VaultError):
    """Database connection dropped mid-restore."""

    kind = "connection_lost"
