"""RetentionScheduler: the periodic backup, verify, and prune cycle.

Each cycle processes targets one after another: capture a new artifact
into the ``hourly`` tier, run a verify-restore when the target's
verification hour has come round, then prune every tier down to its
keep-count.  A failure in one target is logged and recorded; the cycle
moves on to the next target.

Usage:
    scheduler = RetentionScheduler(config, producer, pipeline, engine)
    report = await scheduler.run_cycle()

    stop = asyncio.Event()
    await scheduler.run_forever(stop)  # until stop.set()
"""

import asyncio
import logging
from collections.abc import Callable
from datetime import datetime
from pathlib import Path

from db_vault.config.models import TargetConfig, VaultConfig
from db_vault.dump.producer import DumpProducer
from db_vault.errors import VaultError
from db_vault.factory import ResolvedTarget, resolve_target
from db_vault.models import CycleReport, ErrorInfo, TargetCycleResult
from db_vault.pipeline.models import Artifact, is_sidecar, sidecar_path_for
from db_vault.pipeline.pipeline import ArtifactPipeline
from db_vault.resources import scratch_directory
from db_vault.restore.engine import RestoreEngine
from db_vault.restore.models import RestoreMode, RestoreRequest

logger = logging.getLogger(__name__)

CYCLE_INTERVAL = 3600.0


def tier_files(tier_dir: Path) -> list[Path]:
    """Artifact files in a tier directory, oldest first.

    Sidecars and dotfiles (in-flight ``.partial`` files) are excluded.
    """
    if not tier_dir.is_dir():
        return []
    files = [
        p
        for p in tier_dir.iterdir()
        if p.is_file() and not is_sidecar(p) and not p.name.startswith(".")
    ]
    files.sort(key=lambda p: (p.stat().st_mtime_ns, p.name))
    return files


def prune_tier(tier_dir: Path, keep: int) -> list[Path]:
    """Delete all but the ``keep`` newest artifacts (and their sidecars).

    A ``keep`` of zero or less leaves the tier untouched.

    Returns:
        The artifact paths removed, oldest first.
    """
    if keep <= 0:
        return []
    files = tier_files(tier_dir)
    doomed = files[: max(len(files) - keep, 0)]
    for path in doomed:
        path.unlink()
        sidecar_path_for(path).unlink(missing_ok=True)
        logger.info("Pruned %s", path)
    return doomed


async def capture(
    producer: DumpProducer,
    pipeline: ArtifactPipeline,
    resolved: ResolvedTarget,
    scratch_dir: Path | None = None,
    tier: str = "hourly",
) -> Artifact:
    """Dump a target and commit the dump as an artifact."""
    with scratch_directory(scratch_dir, prefix="db-vault-dump-") as scratch:
        raw = scratch / f"{resolved.name}.sql"
        result = await producer.produce(resolved, raw)
        return await pipeline.commit(
            raw,
            resolved.config,
            tier=tier,
            dump_strategy=result.strategy,
            fallback_dump=result.fallback,
        )


class RetentionScheduler:
    """Drives capture, scheduled verification, and pruning.

    Args:
        config: Vault configuration.
        producer: Dump producer.
        pipeline: Artifact pipeline.
        engine: Restore engine for scheduled verify-restores.
        resolver: Resolves a ``TargetConfig`` (injectable for tests).
        clock: Local wall-clock time, compared to verification hours.
    """

    def __init__(
        self,
        config: VaultConfig,
        producer: DumpProducer,
        pipeline: ArtifactPipeline,
        engine: RestoreEngine,
        resolver: Callable[[TargetConfig], ResolvedTarget] = resolve_target,
        clock: Callable[[], datetime] = datetime.now,
    ) -> None:
        self._config = config
        self._producer = producer
        self._pipeline = pipeline
        self._engine = engine
        self._resolver = resolver
        self._clock = clock

    def prune_target(self, target: TargetConfig) -> dict[str, list[Path]]:
        """Apply the target's retention policy to every tier."""
        pruned: dict[str, list[Path]] = {}
        for tier, keep in self._config.retention_for(target).items():
            if keep <= 0:
                continue
            removed = prune_tier(self._config.target_dir(target.name, tier), keep)
            if removed:
                pruned[tier] = removed
        return pruned

    async def run_target(self, target: TargetConfig) -> TargetCycleResult:
        """Capture, maybe verify, and prune one target.  Never raises."""
        result = TargetCycleResult(target=target.name)
        try:
            resolved = self._resolver(target)
            result.artifact = await capture(
                self._producer, self._pipeline, resolved, self._config.scratch_dir
            )

            verify_hour = self._config.verify_hour_for(target)
            if verify_hour is not None and self._clock().hour == verify_hour:
                logger.info("Running scheduled verify-restore for %s", target.name)
                result.verify = await self._engine.restore(
                    RestoreRequest(artifact=result.artifact.path, mode=RestoreMode.VERIFY),
                    resolved,
                )

            result.pruned = await asyncio.to_thread(self.prune_target, target)
        except VaultError as e:
            e.with_context(target=target.name)
            logger.error("Cycle failed for %s: %s", target.name, e)
            result.error = ErrorInfo.from_exception(e)
            if e.report is not None:
                result.verify = e.report
        except Exception as e:  # one target must not stop the cycle
            logger.exception("Unexpected error in cycle for %s", target.name)
            result.error = ErrorInfo.from_exception(e)
        return result

    async def run_cycle(self) -> CycleReport:
        """Process every configured target, sequentially."""
        report = CycleReport()
        logger.info("Starting cycle for %d target(s)", len(self._config.targets))
        for target in self._config.targets.values():
            report.results.append(await self.run_target(target))
        if report.failed_targets:
            logger.warning("Cycle finished with failures: %s", ", ".join(report.failed_targets))
        else:
            logger.info("Cycle finished")
        return report

    async def run_forever(
        self, stop: asyncio.Event, interval: float = CYCLE_INTERVAL
    ) -> int:
        """Run cycles every ``interval`` seconds until ``stop`` is set.

        A stop request lets the running cycle finish.

        Returns:
            Number of cycles run.
        """
        cycles = 0
        while not stop.is_set():
            await self.run_cycle()
            cycles += 1
            try:
                await asyncio.wait_for(stop.wait(), timeout=interval)
            except TimeoutError:
                pass
        logger.info("Scheduler stopped after %d cycle(s)", cycles)
        return cycles
