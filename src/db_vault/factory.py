"""Target resolution and client construction.

Resolves a configured ``TargetConfig`` once into a ``ResolvedTarget``
(dialect + concrete URL), and opens ``DatabaseClient`` sessions for it.

Usage:
    from db_vault.factory import make_connector, resolve_target

    resolved = resolve_target(config.targets["shop"])
    async with make_connector()(resolved.dialect, resolved.url) as client:
        await client.execute_script(sql)
"""

import logging
import os
from collections.abc import Callable
from dataclasses import dataclass, replace

from sqlalchemy.engine import URL
from sqlalchemy.exc import ArgumentError

from db_vault.adapters.base import DatabaseClient
from db_vault.adapters.sql import AsyncSqlAdapter
from db_vault.config.models import TargetConfig, VaultConfig
from db_vault.dialects import Dialect, get_dialect
from db_vault.errors import ConfigurationError, DatabaseConnectionError

logger = logging.getLogger(__name__)

PASSWORD_PLACEHOLDER = "[YOUR-PASSWORD]"

# (dialect, url) -> unopened client; used as an async context manager
Connector = Callable[[Dialect, URL | str], DatabaseClient]


@dataclass(frozen=True)
class ResolvedTarget:
    """A target with its dialect and connection URL resolved."""

    config: TargetConfig
    dialect: Dialect
    url: str

    @property
    def name(self) -> str:
        return self.config.name

    @property
    def database(self) -> str:
        """Database named in the URL, falling back to the target name."""
        return self.dialect.default_database(self.url) or self.config.name


def resolve_url(target: TargetConfig) -> str:
    """Resolve a target's connection URL.

    ``url_env`` is read from the environment when set; otherwise ``url``
    is used.  The ``[YOUR-PASSWORD]`` placeholder is replaced with
    ``db_password`` when present.

    Raises:
        DatabaseConnectionError: If no URL can be resolved.
    """
    url = None
    if target.url_env:
        url = os.environ.get(target.url_env)
        if not url:
            raise DatabaseConnectionError(
                f"Environment variable {target.url_env} is not set",
                target=target.name,
                stage="resolve",
            )
    elif target.url:
        url = target.url

    if not url:
        raise DatabaseConnectionError(
            "Target has neither url nor url_env", target=target.name, stage="resolve"
        )

    if target.db_password and PASSWORD_PLACEHOLDER in url:
        url = url.replace(PASSWORD_PLACEHOLDER, target.db_password)

    return url


def resolve_target(target: TargetConfig) -> ResolvedTarget:
    """Resolve dialect and URL for a target.

    Raises:
        DatabaseConnectionError: If the URL is missing or unparseable.
    """
    dialect = get_dialect(target.engine)
    url = resolve_url(target)
    try:
        dialect.parse_url(url)
    except ArgumentError as e:
        raise DatabaseConnectionError(
            f"Invalid connection URL: {e}", target=target.name, stage="resolve"
        ) from e
    return ResolvedTarget(config=target, dialect=dialect, url=url)


def resolve_restore_location(
    config: VaultConfig, resolved: ResolvedTarget, location: str
) -> ResolvedTarget:
    """Point a resolved target at a configured restore location.

    The location's URL for the target's engine replaces the target's own;
    when it names no database, the target's database is kept.

    Raises:
        ConfigurationError: If the location is unknown or has no URL for
            the target's engine.
        DatabaseConnectionError: If the location's URL is unparseable.
    """
    urls = config.restore_locations.get(location)
    if urls is None:
        available = ", ".join(sorted(config.restore_locations)) or "none"
        raise ConfigurationError(
            f"Unknown restore location '{location}' (configured: {available})",
            target=resolved.name,
        )
    variant = resolved.dialect.variant
    url = urls.get(variant)
    if url is None:
        raise ConfigurationError(
            f"Restore location '{location}' has no {variant.value} URL", target=resolved.name
        )
    try:
        parsed = resolved.dialect.parse_url(url)
    except ArgumentError as e:
        raise DatabaseConnectionError(
            f"Invalid URL for restore location '{location}': {e}",
            target=resolved.name,
            stage="resolve",
        ) from e
    if not parsed.database:
        url = parsed._replace(database=resolved.database).render_as_string(hide_password=False)
    logger.info("Restoring %s to location %s", resolved.name, location)
    return replace(resolved, url=url)


def get_target(config: VaultConfig, name: str) -> TargetConfig:
    """Look up a configured target by name.

    Raises:
        ConfigurationError: If no target has that name.
    """
    try:
        return config.targets[name]
    except KeyError:
        available = ", ".join(sorted(config.targets)) or "none"
        raise ConfigurationError(
            f"Unknown target '{name}' (configured: {available})", target=name
        ) from None


def make_connector(connect_timeout: int = 10) -> Connector:
    """Build a connector that opens ``AsyncSqlAdapter`` sessions."""

    def open_client(dialect: Dialect, url: URL | str) -> DatabaseClient:
        return AsyncSqlAdapter(url, dialect, connect_timeout=connect_timeout)

    return open_client
