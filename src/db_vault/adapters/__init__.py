"""Database adapters implementing the ``DatabaseClient`` protocol."""

from db_vault.adapters.base import DatabaseClient
from db_vault.adapters.sql import AsyncSqlAdapter, create_async_engine_pooled

__all__ = ["AsyncSqlAdapter", "DatabaseClient", "create_async_engine_pooled"]
