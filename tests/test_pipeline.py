"""Tests for ArtifactPipeline.commit()."""

import gzip
import hashlib
import json
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

from db_vault.errors import DumpValidationError, EncryptionError, StorageError
from db_vault.pipeline import crypto
from db_vault.pipeline import pipeline as pipeline_module
from db_vault.pipeline.models import Artifact
from db_vault.pipeline.pipeline import ArtifactPipeline, artifact_filename

FIXED = datetime(2024, 5, 1, 12, 30, 0, tzinfo=timezone.utc)


class _Clock:
    def __init__(self, start=FIXED, step=timedelta(seconds=1)):
        self.now = start
        self.step = step

    def __call__(self):
        current = self.now
        self.now += self.step
        return current


class _RecordingUploader:
    def __init__(self, fail=False):
        self.calls = []
        self.fail = fail

    def upload(self, path, key):
        if self.fail:
            raise ConnectionError("bucket unreachable")
        self.calls.append((path.name, key))


# ------------------------------------------------------------------
# Filenames
# ------------------------------------------------------------------


class TestArtifactFilename:
    def test_plain(self):
        assert artifact_filename("shop", FIXED, False) == "shop_20240501T123000000000Z.sql.gz"

    def test_encrypted(self):
        assert artifact_filename("shop", FIXED, True).endswith(".sql.gz.enc")


# ------------------------------------------------------------------
# Commit
# ------------------------------------------------------------------


class TestCommit:
    """Raw dump to stored artifact."""

    async def test_stores_compressed_artifact_with_sidecar(self, vault_config, raw_dump):
        pipeline = ArtifactPipeline(vault_config, clock=_Clock())
        artifact = await pipeline.commit(
            raw_dump, vault_config.targets["t1"], dump_strategy="native-tool"
        )

        assert artifact.path.parent == vault_config.backup_root / "t1" / "hourly"
        assert artifact.path.name == "t1_20240501T123000000000Z.sql.gz"
        assert gzip.decompress(artifact.path.read_bytes()) == raw_dump.read_bytes()

        sidecar = json.loads(artifact.sidecar_path.read_text())
        assert sidecar["target"] == "t1"
        assert sidecar["engine"] == "mysql"
        assert sidecar["tier"] == "hourly"
        assert sidecar["encrypted"] is False
        assert sidecar["dump_strategy"] == "native-tool"
        assert sidecar["fallback_dump"] is False

    async def test_checksum_matches_stored_file(self, vault_config, raw_dump):
        artifact = await ArtifactPipeline(vault_config).commit(raw_dump, vault_config.targets["t1"])

        digest = hashlib.sha256(artifact.path.read_bytes()).hexdigest()
        assert artifact.metadata.sha256 == digest
        assert artifact.metadata.size_bytes == artifact.path.stat().st_size
        assert Artifact.load(artifact.path).metadata.sha256 == digest

    async def test_scratch_is_removed(self, vault_config, raw_dump):
        await ArtifactPipeline(vault_config).commit(raw_dump, vault_config.targets["t1"])
        assert list(vault_config.scratch_dir.iterdir()) == []

    async def test_no_partial_files_left(self, vault_config, raw_dump):
        artifact = await ArtifactPipeline(vault_config).commit(raw_dump, vault_config.targets["t1"])
        names = sorted(p.name for p in artifact.path.parent.iterdir())
        assert names == [artifact.path.name, artifact.sidecar_path.name]

    async def test_artifact_synced_before_sidecar(self, vault_config, raw_dump, monkeypatch):
        tier_dir = vault_config.target_dir("t1", "hourly")
        synced = []

        def record(path):
            has_sidecar = tier_dir.exists() and any(
                p.name.endswith(".meta.json") for p in tier_dir.iterdir()
            )
            synced.append((Path(path).name, has_sidecar))

        monkeypatch.setattr(pipeline_module, "_fsync_path", record)
        artifact = await ArtifactPipeline(vault_config).commit(raw_dump, vault_config.targets["t1"])

        assert synced[:2] == [(f".{artifact.path.name}.partial", False), ("hourly", False)]
        assert synced[-1] == ("hourly", True)

    async def test_consecutive_commits_get_distinct_names(self, vault_config, raw_dump):
        pipeline = ArtifactPipeline(vault_config, clock=_Clock())
        first = await pipeline.commit(raw_dump, vault_config.targets["t1"])
        second = await pipeline.commit(raw_dump, vault_config.targets["t1"])
        assert first.path != second.path

    async def test_same_timestamp_refuses_to_overwrite(self, vault_config, raw_dump):
        pipeline = ArtifactPipeline(vault_config, clock=lambda: FIXED)
        await pipeline.commit(raw_dump, vault_config.targets["t1"])

        with pytest.raises(StorageError, match="already exists") as exc_info:
            await pipeline.commit(raw_dump, vault_config.targets["t1"])
        assert exc_info.value.target == "t1"


class TestValidation:
    """Dumps without SQL never become artifacts."""

    async def test_not_sql(self, vault_config, tmp_path):
        raw = tmp_path / "raw.sql"
        raw.write_text("mysqldump: Got error: 1045: Access denied\n")

        with pytest.raises(DumpValidationError) as exc_info:
            await ArtifactPipeline(vault_config).commit(raw, vault_config.targets["t1"])

        assert exc_info.value.stage == "validate"
        assert exc_info.value.target == "t1"
        assert not (vault_config.backup_root / "t1").exists()

    async def test_empty_file(self, vault_config, tmp_path):
        raw = tmp_path / "raw.sql"
        raw.write_text("")
        with pytest.raises(DumpValidationError):
            await ArtifactPipeline(vault_config).commit(raw, vault_config.targets["t1"])

    async def test_missing_file(self, vault_config, tmp_path):
        with pytest.raises(DumpValidationError, match="Cannot read dump"):
            await ArtifactPipeline(vault_config).commit(
                tmp_path / "nope.sql", vault_config.targets["t1"]
            )


class TestEncryption:
    """Encryption settings are applied at commit time."""

    async def test_passphrase_encryption(self, vault_config, raw_dump, tmp_path):
        passphrase_file = tmp_path / "passphrase"
        passphrase_file.write_text("hunter2\n")
        vault_config.encryption.passphrase_file = passphrase_file

        artifact = await ArtifactPipeline(vault_config).commit(raw_dump, vault_config.targets["t1"])

        assert artifact.path.name.endswith(".sql.gz.enc")
        assert artifact.metadata.encrypted is True
        assert artifact.metadata.encryption_mode == "passphrase"
        assert crypto.is_encrypted(artifact.path)

        out = tmp_path / "out.gz"
        crypto.decrypt_file(artifact.path, out, passphrase=b"hunter2")
        assert gzip.decompress(out.read_bytes()) == raw_dump.read_bytes()

    async def test_missing_passphrase_file_is_created(self, vault_config, raw_dump, tmp_path):
        passphrase_file = tmp_path / "keys" / "passphrase"
        vault_config.targets["t1"].passphrase_file = passphrase_file

        artifact = await ArtifactPipeline(vault_config).commit(raw_dump, vault_config.targets["t1"])

        assert passphrase_file.exists()
        assert artifact.metadata.encrypted is True

    async def test_recipients_without_keyring(self, vault_config, raw_dump):
        vault_config.encryption.recipients = ["ops"]

        with pytest.raises(EncryptionError, match="keyring_path") as exc_info:
            await ArtifactPipeline(vault_config).commit(raw_dump, vault_config.targets["t1"])
        assert exc_info.value.stage == "encrypt"
        assert not (vault_config.backup_root / "t1").exists()

    async def test_target_can_opt_out_of_recipients(self, vault_config, raw_dump):
        vault_config.encryption.recipients = ["ops"]
        vault_config.targets["t1"].recipients = []

        artifact = await ArtifactPipeline(vault_config).commit(raw_dump, vault_config.targets["t1"])
        assert artifact.metadata.encrypted is False


class TestUpload:
    """Remote copies after placement."""

    async def test_uploads_artifact_and_sidecar(self, vault_config, raw_dump):
        uploader = _RecordingUploader()
        artifact = await ArtifactPipeline(vault_config, uploader=uploader).commit(
            raw_dump, vault_config.targets["t1"]
        )

        assert uploader.calls == [
            (artifact.path.name, f"t1/hourly/{artifact.path.name}"),
            (artifact.sidecar_path.name, f"t1/hourly/{artifact.sidecar_path.name}"),
        ]

    async def test_upload_failure_does_not_fail_commit(self, vault_config, raw_dump, caplog):
        uploader = _RecordingUploader(fail=True)
        artifact = await ArtifactPipeline(vault_config, uploader=uploader).commit(
            raw_dump, vault_config.targets["t1"]
        )

        assert artifact.path.exists()
        assert "Upload of" in caplog.text
