"""Dump production: native tool with catalog fallback."""

from db_vault.dump.catalog import CatalogStrategy
from db_vault.dump.models import DumpResult, OutcomeStatus, StrategyOutcome
from db_vault.dump.producer import DumpProducer, DumpStrategy, default_strategies
from db_vault.dump.tool import NativeToolStrategy, locate_tool

__all__ = [
    "CatalogStrategy",
    "DumpProducer",
    "DumpResult",
    "DumpStrategy",
    "NativeToolStrategy",
    "OutcomeStatus",
    "StrategyOutcome",
    "default_strategies",
    "locate_tool",
]
