"""DumpProducer: ordered dump strategies with typed outcomes.

Strategies run in order until one succeeds.  A skipped or failed
strategy is recorded and the next one is tried; a connection failure
stops the chain at once, since every strategy needs the same server.

Usage:
    producer = DumpProducer(config, connector)
    result = await producer.produce(resolved, Path("/tmp/shop.sql"))
    print(result.strategy, result.fallback)
"""

import logging
from pathlib import Path
from typing import TYPE_CHECKING, Protocol

from db_vault.config.models import VaultConfig
from db_vault.dump.catalog import CatalogStrategy
from db_vault.dump.models import DumpResult, StrategyOutcome
from db_vault.dump.tool import NativeToolStrategy
from db_vault.errors import DatabaseConnectionError, FallbackExhaustedError, VaultError

if TYPE_CHECKING:
    from db_vault.factory import Connector, ResolvedTarget

logger = logging.getLogger(__name__)


class DumpStrategy(Protocol):
    name: str
    fallback: bool

    async def run(self, resolved: "ResolvedTarget", output_path: Path) -> StrategyOutcome:
        ...


def default_strategies(config: VaultConfig, connector: "Connector") -> list[DumpStrategy]:
    """Native tool first, catalog reconstruction second."""
    return [
        NativeToolStrategy(config.binaries, timeout=config.command_timeout),
        CatalogStrategy(connector),
    ]


class DumpProducer:
    """Produce a raw SQL dump for one target.

    Args:
        config: Vault configuration.
        connector: Opens database clients (used by the catalog strategy).
        strategies: Override the strategy list (tests, custom tools).
    """

    def __init__(
        self,
        config: VaultConfig,
        connector: "Connector",
        strategies: list[DumpStrategy] | None = None,
    ) -> None:
        self._strategies = (
            strategies if strategies is not None else default_strategies(config, connector)
        )

    async def produce(self, resolved: "ResolvedTarget", output_path: Path) -> DumpResult:
        """Write a raw dump of ``resolved`` to ``output_path``.

        Raises:
            DatabaseConnectionError: Bad locator or credentials.
            FallbackExhaustedError: No strategy succeeded.  ``output_path``
                does not exist afterwards.
        """
        output_path = Path(output_path)
        attempts: list[StrategyOutcome] = []

        for strategy in self._strategies:
            try:
                outcome = await strategy.run(resolved, output_path)
            except DatabaseConnectionError as e:
                output_path.unlink(missing_ok=True)
                raise e.with_context(target=resolved.name, stage="dump")
            except VaultError as e:
                outcome = StrategyOutcome.failed(strategy.name, e.with_context(target=resolved.name, stage="dump"))
            except OSError as e:
                outcome = StrategyOutcome.failed(
                    strategy.name,
                    VaultError(f"{strategy.name} failed: {e}", target=resolved.name, stage="dump"),
                )
            attempts.append(outcome)

            if outcome.succeeded:
                if strategy.fallback:
                    logger.warning(
                        "Dump of %s used fallback strategy '%s'; output is best-effort",
                        resolved.name,
                        strategy.name,
                    )
                else:
                    logger.info("Dump of %s produced by '%s'", resolved.name, strategy.name)
                return DumpResult(
                    path=output_path,
                    strategy=strategy.name,
                    fallback=strategy.fallback,
                    attempts=attempts,
                )

            logger.warning(
                "Dump strategy '%s' %s for %s: %s",
                strategy.name,
                outcome.status.value,
                resolved.name,
                outcome.reason,
            )

        output_path.unlink(missing_ok=True)
        summary = "; ".join(f"{a.strategy} {a.status.value}: {a.reason}" for a in attempts)
        raise FallbackExhaustedError(
            f"All dump strategies failed ({summary or 'no strategies configured'})",
            attempts=attempts,
            target=resolved.name,
            stage="dump",
        )
