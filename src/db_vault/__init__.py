"""db-vault: backup lifecycle and restore orchestration for SQL databases.

Captures dumps of MySQL and PostgreSQL targets, stores them as verified,
compressed, optionally encrypted artifacts in tiered retention
directories, and restores them into throwaway or real databases.

Usage:
    from db_vault import BackupService, load_config

    service = BackupService(load_config("db-vault.toml"))
    result = await service.produce_now("shop")
"""

__version__ = "0.1.0"

# Config
from db_vault.config.loader import load_config
from db_vault.config.models import RetentionPolicy, TargetConfig, VaultConfig

# Errors
from db_vault.errors import (
    CompressionError,
    ConfigurationError,
    ConnectionLostError,
    DatabaseConnectionError,
    DumpValidationError,
    EncryptionError,
    FallbackExhaustedError,
    RestoreExecutionError,
    StorageError,
    TableNotFoundError,
    ToolExecutionError,
    ToolUnavailableError,
    VaultError,
)

# Components
from db_vault.dump.producer import DumpProducer
from db_vault.pipeline.models import Artifact, ArtifactMetadata
from db_vault.pipeline.pipeline import ArtifactPipeline
from db_vault.restore.engine import RestoreEngine
from db_vault.restore.extractor import TableRange, extract_table
from db_vault.restore.models import RestoreMode, RestoreReport, RestoreRequest
from db_vault.scheduler import RetentionScheduler, prune_tier

# Service
from db_vault.models import OperationResult
from db_vault.service import BackupService

__all__ = [
    # Config
    "load_config",
    "RetentionPolicy",
    "TargetConfig",
    "VaultConfig",
    # Errors
    "VaultError",
    "ConfigurationError",
    "DatabaseConnectionError",
    "ToolUnavailableError",
    "ToolExecutionError",
    "FallbackExhaustedError",
    "DumpValidationError",
    "CompressionError",
    "EncryptionError",
    "StorageError",
    "RestoreExecutionError",
    "TableNotFoundError",
    "ConnectionLostError",
    # Components
    "DumpProducer",
    "ArtifactPipeline",
    "Artifact",
    "ArtifactMetadata",
    "RestoreEngine",
    "RestoreMode",
    "RestoreRequest",
    "RestoreReport",
    "TableRange",
    "extract_table",
    "RetentionScheduler",
    "prune_tier",
    # Service
    "BackupService",
    "OperationResult",
]
