"""Configuration loading for db-vault.

Reads a TOML file into a ``VaultConfig``.  Targets live under
``[targets.<name>]``; the table key becomes the target's ``name``.
"""

import os
import tomllib
from pathlib import Path

from pydantic import ValidationError

from db_vault.config.models import VaultConfig

CONFIG_ENV_VAR = "DB_VAULT_CONFIG"
DEFAULT_CONFIG_NAME = "db-vault.toml"


def resolve_config_path(config_path: Path | str | None = None) -> Path:
    """Pick the config path: explicit argument, then env var, then cwd."""
    if config_path is not None:
        return Path(config_path)
    env_path = os.environ.get(CONFIG_ENV_VAR)
    if env_path:
        return Path(env_path)
    return Path.cwd() / DEFAULT_CONFIG_NAME


def load_config(config_path: Path | str | None = None) -> VaultConfig:
    """Load db-vault configuration from a TOML file.

    Args:
        config_path: Path to the TOML file.  Defaults to ``$DB_VAULT_CONFIG``
            or ``./db-vault.toml``.

    Returns:
        Parsed ``VaultConfig``.

    Raises:
        FileNotFoundError: If the config file doesn't exist.
        ValueError: If the config format is invalid.
    """
    path = resolve_config_path(config_path)

    if not path.exists():
        raise FileNotFoundError(
            f"db-vault config not found: {path}\n"
            f"Create {DEFAULT_CONFIG_NAME} or set {CONFIG_ENV_VAR}."
        )

    with open(path, "rb") as f:
        try:
            data = tomllib.load(f)
        except tomllib.TOMLDecodeError as e:
            raise ValueError(f"Invalid TOML in {path}: {e}") from e

    return parse_config(data, source=str(path))


def parse_config(data: dict, source: str = "<dict>") -> VaultConfig:
    """Build a ``VaultConfig`` from already-decoded TOML data."""
    data = dict(data)
    targets = {}
    for name, target_data in data.pop("targets", {}).items():
        if not isinstance(target_data, dict):
            raise ValueError(f"[targets.{name}] in {source} must be a table")
        targets[name] = {**target_data, "name": name}

    try:
        return VaultConfig(**data, targets=targets)
    except ValidationError as e:
        raise ValueError(f"Invalid db-vault config in {source}:\n{e}") from e
