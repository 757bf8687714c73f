"""BackupService: the named operations exposed to the CLI.

Every operation returns an ``OperationResult``; typed failures are turned
into ``ErrorInfo`` instead of propagating, so callers only render.

Usage:
    from db_vault.config import load_config
    from db_vault.service import BackupService

    service = BackupService(load_config())
    result = await service.produce_now("shop")
    if result.success:
        print(result.artifact.path)
    else:
        print(result.error.kind, result.error.message)
"""

import asyncio
import logging
import signal
from collections.abc import Awaitable, Callable
from pathlib import Path

from db_vault.config.models import TIERS, TargetConfig, VaultConfig
from db_vault.dump.producer import DumpProducer
from db_vault.errors import ConfigurationError, VaultError
from db_vault.factory import (
    Connector,
    ResolvedTarget,
    get_target,
    make_connector,
    resolve_restore_location,
    resolve_target,
)
from db_vault.models import ErrorInfo, OperationResult
from db_vault.pipeline.models import Artifact
from db_vault.pipeline.pipeline import ArtifactPipeline
from db_vault.restore.engine import RestoreEngine
from db_vault.restore.models import RestoreMode, RestoreRequest
from db_vault.scheduler import CYCLE_INTERVAL, RetentionScheduler, capture, tier_files
from db_vault.storage.upload import Uploader, build_uploader

logger = logging.getLogger(__name__)


class BackupService:
    """Wires the components together from one ``VaultConfig``.

    Args:
        config: Vault configuration.
        connector: Opens database clients (defaults to ``AsyncSqlAdapter``).
        producer: Override the dump producer.
        uploader: Override the uploader (defaults to S3 when configured).
    """

    def __init__(
        self,
        config: VaultConfig,
        connector: Connector | None = None,
        producer: DumpProducer | None = None,
        uploader: Uploader | None = None,
        pipeline: ArtifactPipeline | None = None,
        engine: RestoreEngine | None = None,
    ) -> None:
        self.config = config
        self.connector = connector or make_connector(config.connect_timeout)
        self.producer = producer or DumpProducer(config, self.connector)
        self.pipeline = pipeline or ArtifactPipeline(
            config, uploader=uploader if uploader is not None else build_uploader(config.upload)
        )
        self.engine = engine or RestoreEngine(config, self.connector)
        self.scheduler = RetentionScheduler(
            config, self.producer, self.pipeline, self.engine, resolver=self.resolve
        )

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def resolve(self, target: TargetConfig) -> ResolvedTarget:
        return resolve_target(target)

    def _resolve_name(self, target_name: str) -> ResolvedTarget:
        return self.resolve(get_target(self.config, target_name))

    def _restore_target(self, target_name: str, location: str | None) -> ResolvedTarget:
        resolved = self._resolve_name(target_name)
        if location is None:
            return resolved
        return resolve_restore_location(self.config, resolved, location)

    async def _run(
        self,
        operation: str,
        target: str | None,
        body: Callable[[OperationResult], Awaitable[None]],
    ) -> OperationResult:
        result = OperationResult(operation=operation, target=target)
        try:
            await body(result)
        except VaultError as e:
            e.with_context(target=target)
            logger.error("%s failed: %s", operation, e)
            result.error = ErrorInfo.from_exception(e)
            if e.report is not None:
                result.restore = e.report
            return result
        except FileNotFoundError as e:
            result.error = ErrorInfo(kind="not_found", message=str(e), target=target)
            return result
        result.success = True
        return result

    def list_artifact_paths(self, target_name: str, tier: str | None = None) -> list[Path]:
        """Artifact paths for a target, oldest first, across one or all tiers."""
        if tier is not None and tier not in TIERS:
            raise ConfigurationError(f"Unknown tier '{tier}'", target=target_name)
        tiers = [tier] if tier else list(TIERS)
        paths = [p for t in tiers for p in tier_files(self.config.target_dir(target_name, t))]
        paths.sort(key=lambda p: (p.stat().st_mtime_ns, p.name))
        return paths

    def latest_artifact(self, target_name: str) -> Path:
        """Newest artifact of a target across all tiers.

        Raises:
            FileNotFoundError: If the target has no artifacts.
        """
        paths = self.list_artifact_paths(target_name)
        if not paths:
            raise FileNotFoundError(f"No artifacts for target '{target_name}'")
        return paths[-1]

    def _artifact_path(self, target_name: str, artifact: Path | str | None) -> Path:
        return Path(artifact) if artifact else self.latest_artifact(target_name)

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    async def create_backup(self, target_name: str, tier: str = "hourly") -> Artifact:
        """Dump and commit one target; raises on failure."""
        resolved = self._resolve_name(target_name)
        return await capture(
            self.producer, self.pipeline, resolved, self.config.scratch_dir, tier=tier
        )

    async def produce_now(self, target_name: str, tier: str = "hourly") -> OperationResult:
        """Capture one artifact now, then apply the target's retention policy."""

        async def body(result: OperationResult) -> None:
            result.artifact = await self.create_backup(target_name, tier)
            target = get_target(self.config, target_name)
            pruned = await asyncio.to_thread(self.scheduler.prune_target, target)
            result.details["pruned"] = [str(p) for paths in pruned.values() for p in paths]

        return await self._run("produce-now", target_name, body)

    async def verify_restore(
        self,
        target_name: str,
        artifact: Path | str | None = None,
        verify_query: str | None = None,
        location: str | None = None,
    ) -> OperationResult:
        async def body(result: OperationResult) -> None:
            resolved = self._restore_target(target_name, location)
            request = RestoreRequest(
                artifact=self._artifact_path(target_name, artifact),
                mode=RestoreMode.VERIFY,
                verify_query=verify_query,
            )
            result.restore = await self.engine.restore(request, resolved)

        return await self._run("verify-restore", target_name, body)

    async def destructive_restore(
        self,
        target_name: str,
        artifact: Path | str | None = None,
        database: str | None = None,
        location: str | None = None,
    ) -> OperationResult:
        async def body(result: OperationResult) -> None:
            resolved = self._restore_target(target_name, location)
            request = RestoreRequest(
                artifact=self._artifact_path(target_name, artifact),
                mode=RestoreMode.DESTRUCTIVE,
                database=database,
            )
            result.restore = await self.engine.restore(request, resolved)

        return await self._run("destructive-restore", target_name, body)

    async def list_tables(
        self, target_name: str, artifact: Path | str | None = None
    ) -> OperationResult:
        async def body(result: OperationResult) -> None:
            resolved = self._resolve_name(target_name)
            path = self._artifact_path(target_name, artifact)
            result.details["artifact"] = str(path)
            result.tables = await self.engine.list_tables(path, resolved)

        return await self._run("list-tables", target_name, body)

    async def restore_table(
        self,
        target_name: str,
        table: str,
        artifact: Path | str | None = None,
        database: str | None = None,
        verify: bool = False,
        location: str | None = None,
    ) -> OperationResult:
        async def body(result: OperationResult) -> None:
            resolved = self._restore_target(target_name, location)
            request = RestoreRequest(
                artifact=self._artifact_path(target_name, artifact),
                mode=RestoreMode.VERIFY if verify else RestoreMode.DESTRUCTIVE,
                database=database,
                table=table,
            )
            result.restore = await self.engine.restore(request, resolved)

        return await self._run("restore-table", target_name, body)

    async def list_artifacts(
        self, target_name: str, tier: str | None = None
    ) -> OperationResult:
        async def body(result: OperationResult) -> None:
            get_target(self.config, target_name)
            for path in self.list_artifact_paths(target_name, tier):
                try:
                    result.artifacts.append(Artifact.load(path))
                except FileNotFoundError:
                    logger.warning("Artifact %s has no metadata sidecar", path.name)
                except ValueError as e:
                    # JSONDecodeError and pydantic's ValidationError
                    logger.warning("Artifact %s has an unreadable sidecar: %s", path.name, e)
                    result.details.setdefault("unreadable", []).append(path.name)

        return await self._run("list-backups", target_name, body)

    async def run_cycle_once(self) -> OperationResult:
        async def body(result: OperationResult) -> None:
            result.cycle = await self.scheduler.run_cycle()
            if not result.cycle.success:
                raise VaultError(
                    f"Cycle failed for: {', '.join(result.cycle.failed_targets)}",
                    stage="cycle",
                )

        return await self._run("run-cycle-once", None, body)

    async def run_cycle_daemon(
        self, stop: asyncio.Event | None = None, interval: float = CYCLE_INTERVAL
    ) -> OperationResult:
        """Run cycles until SIGINT/SIGTERM (or ``stop``) asks to stop."""
        stop = stop or asyncio.Event()
        loop = asyncio.get_running_loop()
        installed = []
        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(sig, stop.set)
                installed.append(sig)
            except (NotImplementedError, RuntimeError):
                logger.debug("Signal handlers not supported here; use the stop event")

        async def body(result: OperationResult) -> None:
            result.details["cycles"] = await self.scheduler.run_forever(stop, interval)

        try:
            return await self._run("run-cycle-daemon", None, body)
        finally:
            for sig in installed:
                loop.remove_signal_handler(sig)


__all__ = ["BackupService"]
