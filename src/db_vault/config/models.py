"""Pydantic models for db-vault configuration."""

from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field, field_validator

from db_vault.dialects.base import EngineVariant


TIERS: tuple[str, ...] = ("hourly", "daily", "weekly", "monthly", "yearly")


# ============================================================================
# Retention
# ============================================================================


class RetentionPolicy(BaseModel):
    """Keep-count per retention tier.  A count <= 0 disables pruning."""

    model_config = ConfigDict(extra="forbid")

    hourly: int = 24
    daily: int = 7
    weekly: int = 4
    monthly: int = 12
    yearly: int = 0

    def items(self) -> list[tuple[str, int]]:
        """Return ``(tier, keep)`` pairs in tier order."""
        return [(tier, getattr(self, tier)) for tier in TIERS]

    def merged(self, overrides: dict[str, int] | None) -> "RetentionPolicy":
        """Return a copy with per-tier overrides applied."""
        if not overrides:
            return self
        return self.model_copy(update=overrides)


# ============================================================================
# Global sections
# ============================================================================


class EncryptionSettings(BaseModel):
    """Global encryption defaults (targets may override)."""

    passphrase_file: Path | None = None
    recipients: list[str] = Field(default_factory=list)
    keyring_path: Path | None = None


class UploadSettings(BaseModel):
    """Optional S3 upload of finished artifacts."""

    bucket: str | None = None
    prefix: str = ""
    region: str | None = None
    profile: str | None = None


class BinarySettings(BaseModel):
    """Directories to search for native dump tools before ``PATH``."""

    mysql_path: Path | None = None
    postgres_path: Path | None = None


class VerifyScheduleSettings(BaseModel):
    """Scheduled verify-restore defaults."""

    enabled: bool = False
    hour: int = Field(default=3, ge=0, le=23)
    verify_query: str | None = None


# ============================================================================
# Targets
# ============================================================================


class TargetConfig(BaseModel):
    """One database to back up.

    Either ``url`` or ``url_env`` (name of an environment variable holding
    the URL) must be set.  ``db_password`` substitutes the
    ``[YOUR-PASSWORD]`` placeholder in the URL.
    """

    name: str
    engine: EngineVariant
    url: str | None = None
    url_env: str | None = None
    db_password: str | None = None
    keep: dict[str, int] = Field(default_factory=dict)
    recipients: list[str] | None = None
    passphrase_file: Path | None = None
    verify_hour: int | None = Field(default=None, ge=0, le=23)
    verify_query: str | None = None

    @field_validator("keep")
    @classmethod
    def _known_tiers(cls, value: dict[str, int]) -> dict[str, int]:
        unknown = set(value) - set(TIERS)
        if unknown:
            raise ValueError(f"Unknown retention tier(s): {', '.join(sorted(unknown))}")
        return value


class VaultConfig(BaseModel):
    """Complete db-vault configuration, threaded explicitly to components."""

    backup_root: Path = Path("backups")
    scratch_dir: Path | None = None
    command_timeout: float = 3600.0
    connect_timeout: int = 10
    default_keep: RetentionPolicy = Field(default_factory=RetentionPolicy)
    encryption: EncryptionSettings = Field(default_factory=EncryptionSettings)
    upload: UploadSettings = Field(default_factory=UploadSettings)
    binaries: BinarySettings = Field(default_factory=BinarySettings)
    test_restore: VerifyScheduleSettings = Field(default_factory=VerifyScheduleSettings)
    targets: dict[str, TargetConfig] = Field(default_factory=dict)
    # [restore_locations.<name>] maps an engine to a server URL
    restore_locations: dict[str, dict[EngineVariant, str]] = Field(default_factory=dict)

    def retention_for(self, target: TargetConfig) -> RetentionPolicy:
        return self.default_keep.merged(target.keep)

    def recipients_for(self, target: TargetConfig) -> list[str]:
        if target.recipients is not None:
            return list(target.recipients)
        return list(self.encryption.recipients)

    def passphrase_file_for(self, target: TargetConfig) -> Path | None:
        return target.passphrase_file or self.encryption.passphrase_file

    def verify_hour_for(self, target: TargetConfig) -> int | None:
        """Hour of day a scheduled verify-restore runs, or None."""
        if target.verify_hour is not None:
            return target.verify_hour
        if self.test_restore.enabled:
            return self.test_restore.hour
        return None

    def verify_query_for(self, target: TargetConfig) -> str | None:
        return target.verify_query or self.test_restore.verify_query

    def target_dir(self, target_name: str, tier: str) -> Path:
        return self.backup_root / target_name / tier
