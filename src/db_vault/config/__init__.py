"""Configuration models and TOML loader."""

from db_vault.config.loader import load_config, parse_config
from db_vault.config.models import (
    TIERS,
    RetentionPolicy,
    TargetConfig,
    VaultConfig,
)

__all__ = [
    "TIERS",
    "RetentionPolicy",
    "TargetConfig",
    "VaultConfig",
    "load_config",
    "parse_config",
]
