"""Engine dialects, resolved once per backup target."""

from db_vault.dialects.base import Dialect, EngineVariant
from db_vault.dialects.mysql import MySQLDialect
from db_vault.dialects.postgres import PostgresDialect

_DIALECTS: dict[EngineVariant, Dialect] = {
    EngineVariant.MYSQL: MySQLDialect(),
    EngineVariant.POSTGRES: PostgresDialect(),
}


def get_dialect(engine: EngineVariant | str) -> Dialect:
    """Return the dialect for an engine variant (``"mysql"`` / ``"postgres"``)."""
    return _DIALECTS[EngineVariant(engine)]


__all__ = ["Dialect", "EngineVariant", "MySQLDialect", "PostgresDialect", "get_dialect"]
