"""Tests for pruning and the scheduler cycle."""

import asyncio
import os
from datetime import datetime, timedelta, timezone

import pytest
from conftest import MYSQL_DUMP

from db_vault.config.models import TargetConfig
from db_vault.dump.models import StrategyOutcome
from db_vault.dump.producer import DumpProducer
from db_vault.errors import ToolExecutionError
from db_vault.pipeline.models import sidecar_path_for
from db_vault.pipeline.pipeline import ArtifactPipeline
from db_vault.restore.engine import RestoreEngine
from db_vault.scheduler import RetentionScheduler, prune_tier, tier_files


# ------------------------------------------------------------------
# Helpers
# ------------------------------------------------------------------


def _make_artifacts(tier_dir, count, with_sidecars=True):
    """Create ``count`` artifacts with strictly increasing mtimes, oldest first."""
    tier_dir.mkdir(parents=True, exist_ok=True)
    paths = []
    for i in range(count):
        path = tier_dir / f"t1_{i:03d}.sql.gz"
        path.write_bytes(b"x")
        os.utime(path, (1_700_000_000 + i * 60, 1_700_000_000 + i * 60))
        if with_sidecars:
            sidecar_path_for(path).write_text("{}")
        paths.append(path)
    return paths


class _DumpStrategy:
    name = "native-tool"
    fallback = False

    def __init__(self, failing=()):
        self.failing = set(failing)

    async def run(self, resolved, output_path):
        if resolved.name in self.failing:
            return StrategyOutcome.failed(self.name, ToolExecutionError("exit 2", returncode=2))
        output_path.write_text(MYSQL_DUMP)
        return StrategyOutcome.ok(self.name)


class _Clock:
    def __init__(self):
        self.now = datetime(2024, 5, 1, tzinfo=timezone.utc)

    def __call__(self):
        self.now += timedelta(seconds=1)
        return self.now


def _scheduler(config, server, failing=(), hour=12):
    producer = DumpProducer(config, server.connector, strategies=[_DumpStrategy(failing)])
    pipeline = ArtifactPipeline(config, clock=_Clock())
    engine = RestoreEngine(config, server.connector)
    return RetentionScheduler(
        config, producer, pipeline, engine, clock=lambda: datetime(2024, 5, 1, hour, 5)
    )


# ------------------------------------------------------------------
# Pruning
# ------------------------------------------------------------------


class TestPruneTier:
    """Keep exactly the newest N artifacts."""

    def test_keeps_newest(self, tmp_path):
        paths = _make_artifacts(tmp_path / "hourly", 5)

        removed = prune_tier(tmp_path / "hourly", 2)

        assert removed == paths[:3]
        assert tier_files(tmp_path / "hourly") == paths[3:]

    def test_sidecars_removed_with_artifacts(self, tmp_path):
        paths = _make_artifacts(tmp_path / "hourly", 3)
        prune_tier(tmp_path / "hourly", 1)

        remaining = sorted(p.name for p in (tmp_path / "hourly").iterdir())
        assert remaining == [paths[2].name, sidecar_path_for(paths[2]).name]

    def test_ordering_is_by_mtime_not_name(self, tmp_path):
        tier = tmp_path / "hourly"
        paths = _make_artifacts(tier, 3)
        # Oldest file gets the newest mtime
        os.utime(paths[0], (1_800_000_000, 1_800_000_000))

        removed = prune_tier(tier, 1)

        assert removed == [paths[1], paths[2]]
        assert paths[0].exists()

    @pytest.mark.parametrize("keep", [0, -1])
    def test_non_positive_keep_disables_pruning(self, tmp_path, keep):
        _make_artifacts(tmp_path / "hourly", 4)
        assert prune_tier(tmp_path / "hourly", keep) == []
        assert len(tier_files(tmp_path / "hourly")) == 4

    def test_fewer_than_keep(self, tmp_path):
        _make_artifacts(tmp_path / "hourly", 2)
        assert prune_tier(tmp_path / "hourly", 5) == []

    def test_missing_directory(self, tmp_path):
        assert prune_tier(tmp_path / "nope", 3) == []

    def test_partial_files_are_ignored(self, tmp_path):
        tier = tmp_path / "hourly"
        _make_artifacts(tier, 2)
        (tier / ".t1_999.sql.gz.partial").write_bytes(b"x")

        assert len(tier_files(tier)) == 2
        prune_tier(tier, 1)
        assert (tier / ".t1_999.sql.gz.partial").exists()


class TestPruneTarget:
    def test_every_tier_uses_its_own_keep(self, vault_config, server):
        vault_config.targets["t1"].keep = {"hourly": 2, "daily": 1, "yearly": 0}
        _make_artifacts(vault_config.target_dir("t1", "hourly"), 4)
        _make_artifacts(vault_config.target_dir("t1", "daily"), 3)
        _make_artifacts(vault_config.target_dir("t1", "yearly"), 3)

        pruned = _scheduler(vault_config, server).prune_target(vault_config.targets["t1"])

        assert {tier: len(paths) for tier, paths in pruned.items()} == {"hourly": 2, "daily": 2}
        assert len(tier_files(vault_config.target_dir("t1", "yearly"))) == 3


# ------------------------------------------------------------------
# Cycle
# ------------------------------------------------------------------


class TestRunCycle:
    """Per-target capture, verify, prune with failure isolation."""

    async def test_capture_and_prune(self, vault_config, server):
        scheduler = _scheduler(vault_config, server)
        for _ in range(3):
            report = await scheduler.run_cycle()
            assert report.success

        files = tier_files(vault_config.target_dir("t1", "hourly"))
        assert len(files) == 2
        assert report.results[0].artifact.path == files[-1]
        assert len(report.results[0].pruned["hourly"]) == 1

    async def test_failure_in_one_target_does_not_stop_others(self, vault_config, server):
        vault_config.targets["t0"] = TargetConfig(
            name="t0", engine="mysql", url="mysql://root@localhost/t0"
        )
        scheduler = _scheduler(vault_config, server, failing={"t0"})

        report = await scheduler.run_cycle()

        assert report.failed_targets == ["t0"]
        by_target = {r.target: r for r in report.results}
        assert by_target["t0"].error.kind == "fallback_exhausted"
        assert by_target["t0"].error.target == "t0"
        assert by_target["t1"].success
        assert by_target["t1"].artifact is not None

    async def test_unresolvable_target_is_recorded(self, vault_config, server, monkeypatch):
        monkeypatch.delenv("MISSING_URL", raising=False)
        vault_config.targets["t2"] = TargetConfig(name="t2", engine="mysql", url_env="MISSING_URL")

        report = await _scheduler(vault_config, server).run_cycle()

        assert report.failed_targets == ["t2"]
        assert report.results[-1].error.kind == "connection"

    async def test_verify_runs_at_configured_hour(self, vault_config, server):
        vault_config.targets["t1"].verify_hour = 3
        report = await _scheduler(vault_config, server, hour=3).run_cycle()

        result = report.results[0]
        assert result.verify is not None
        assert result.verify.success
        assert len(server.created) == 1
        assert not any(db.startswith("restore_") for db in server.databases)

    async def test_verify_skipped_at_other_hours(self, vault_config, server):
        vault_config.targets["t1"].verify_hour = 3
        report = await _scheduler(vault_config, server, hour=4).run_cycle()

        assert report.results[0].verify is None
        assert server.created == []

    async def test_global_verify_schedule(self, vault_config, server):
        vault_config.test_restore.enabled = True
        vault_config.test_restore.hour = 12
        report = await _scheduler(vault_config, server, hour=12).run_cycle()
        assert report.results[0].verify is not None

    async def test_failed_verify_skips_pruning(self, vault_config, server):
        vault_config.targets["t1"].verify_hour = 12
        _make_artifacts(vault_config.target_dir("t1", "hourly"), 3)
        server.fail_scalar = True

        report = await _scheduler(vault_config, server, hour=12).run_cycle()

        result = report.results[0]
        assert result.error.kind == "restore_execution"
        assert result.verify is not None
        assert result.verify.success is False
        assert result.pruned == {}
        assert len(tier_files(vault_config.target_dir("t1", "hourly"))) == 4


class TestRunForever:
    async def test_stops_when_event_set(self, vault_config, server):
        scheduler = _scheduler(vault_config, server)
        stop = asyncio.Event()

        async def stop_soon():
            await asyncio.sleep(0.05)
            stop.set()

        stopper = asyncio.create_task(stop_soon())
        cycles = await scheduler.run_forever(stop, interval=0.01)
        await stopper

        assert cycles >= 1
        assert len(tier_files(vault_config.target_dir("t1", "hourly"))) <= 2

    async def test_preset_event_runs_nothing(self, vault_config, server):
        stop = asyncio.Event()
        stop.set()
        assert await _scheduler(vault_config, server).run_forever(stop) == 0
