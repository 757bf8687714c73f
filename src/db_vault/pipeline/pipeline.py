"""Artifact pipeline: raw dump -> validated, compressed, encrypted, stored.

``ArtifactPipeline.commit()`` turns a raw SQL dump into an immutable
artifact under ``backup_root/<target>/<tier>/`` with a ``.meta.json``
sidecar.  Intermediate files live in a scratch directory that is always
removed; the final file appears at its storage path in one rename.

Usage:
    from db_vault.pipeline import ArtifactPipeline

    pipeline = ArtifactPipeline(config, uploader=build_uploader(config.upload))
    artifact = await pipeline.commit(Path("/tmp/shop.sql"), config.targets["shop"])
    print(artifact.path, artifact.metadata.sha256)
"""

import asyncio
import json
import logging
import os
import shutil
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path

from db_vault import __version__
from db_vault.config.models import TargetConfig, VaultConfig
from db_vault.errors import (
    CompressionError,
    DumpValidationError,
    EncryptionError,
    StorageError,
    VaultError,
)
from db_vault.pipeline import crypto
from db_vault.pipeline.models import Artifact, ArtifactMetadata, sidecar_path_for
from db_vault.pipeline.transforms import gzip_file, gunzip_file, has_sql_markers, sha256_file
from db_vault.resources import scratch_directory
from db_vault.storage.upload import Uploader

logger = logging.getLogger(__name__)

TIMESTAMP_FORMAT = "%Y%m%dT%H%M%S%fZ"


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def artifact_filename(target_name: str, timestamp: datetime, encrypted: bool) -> str:
    """``<target>_<timestamp>.sql.gz[.enc]``"""
    name = f"{target_name}_{timestamp.strftime(TIMESTAMP_FORMAT)}.sql.gz"
    return name + ".enc" if encrypted else name


def _fsync_path(path: Path) -> None:
    """Flush a file or directory to stable storage."""
    fd = os.open(path, os.O_RDONLY)
    try:
        os.fsync(fd)
    finally:
        os.close(fd)


@dataclass
class _EncryptionPlan:
    mode: str  # "passphrase" | "recipients"
    recipients: list[str]
    passphrase_file: Path | None
    keyring: Path | None


class ArtifactPipeline:
    """Validate, compress, encrypt, checksum, and place raw dumps.

    Args:
        config: Vault configuration (storage root, encryption settings).
        uploader: Optional remote uploader, called after placement.
        clock: Returns the current time; injectable for tests.
    """

    def __init__(
        self,
        config: VaultConfig,
        uploader: Uploader | None = None,
        clock: Callable[[], datetime] = _utc_now,
    ) -> None:
        self._config = config
        self._uploader = uploader
        self._clock = clock

    async def commit(
        self,
        raw_dump_path: Path,
        target: TargetConfig,
        *,
        tier: str = "hourly",
        dump_strategy: str | None = None,
        fallback_dump: bool = False,
    ) -> Artifact:
        """Turn a raw dump into a stored artifact.

        Args:
            raw_dump_path: Plain SQL dump produced by ``DumpProducer``.
            target: Target the dump belongs to.
            tier: Retention tier directory to store into.
            dump_strategy: Name of the dump strategy, recorded in metadata.
            fallback_dump: Whether the dump came from a fallback strategy.

        Returns:
            The stored ``Artifact``.

        Raises:
            DumpValidationError: Dump contains no SQL markers.
            CompressionError: Compressed output failed its self-check.
            EncryptionError: Encryption is configured but failed.
            StorageError: Final placement or sidecar write failed.
        """
        try:
            artifact = await asyncio.to_thread(
                self._commit_sync, Path(raw_dump_path), target, tier, dump_strategy, fallback_dump
            )
        except VaultError as e:
            raise e.with_context(target=target.name)

        logger.info(
            "Stored artifact %s (%d bytes, sha256=%s)",
            artifact.path,
            artifact.metadata.size_bytes,
            artifact.metadata.sha256[:12],
        )
        await self._upload(artifact)
        return artifact

    # ------------------------------------------------------------------
    # Steps
    # ------------------------------------------------------------------

    def _commit_sync(
        self,
        raw_dump_path: Path,
        target: TargetConfig,
        tier: str,
        dump_strategy: str | None,
        fallback_dump: bool,
    ) -> Artifact:
        self._validate(raw_dump_path)
        encryption = self._encryption_plan(target)
        timestamp = self._clock()
        filename = artifact_filename(target.name, timestamp, encryption is not None)

        with scratch_directory(self._config.scratch_dir, prefix="db-vault-commit-") as scratch:
            compressed = scratch / (filename.removesuffix(".enc"))
            gzip_file(raw_dump_path, compressed)
            self._self_verify(compressed, scratch)

            final = compressed
            if encryption is not None:
                final = scratch / filename
                self._encrypt(compressed, final, encryption)

            checksum = sha256_file(final)
            size = final.stat().st_size

            metadata = ArtifactMetadata(
                tool_version=__version__,
                engine=target.engine.value,
                target=target.name,
                file=filename,
                tier=tier,
                timestamp=timestamp,
                encrypted=encryption is not None,
                encryption_mode=encryption.mode if encryption else None,
                recipients=encryption.recipients if encryption else [],
                sha256=checksum,
                size_bytes=size,
                dump_strategy=dump_strategy,
                fallback_dump=fallback_dump,
            )
            dest_dir = self._config.target_dir(target.name, tier)
            path = self._place(final, dest_dir / filename)

        self._write_sidecar(path, metadata)
        return Artifact(path=path, metadata=metadata)

    def _validate(self, raw_dump_path: Path) -> None:
        try:
            ok = raw_dump_path.stat().st_size > 0 and has_sql_markers(raw_dump_path)
        except OSError as e:
            raise DumpValidationError(f"Cannot read dump {raw_dump_path}: {e}", stage="validate") from e
        if not ok:
            raise DumpValidationError(
                f"Dump {raw_dump_path.name} contains no recognizable SQL", stage="validate"
            )

    def _self_verify(self, compressed: Path, scratch: Path) -> None:
        check = scratch / "verify.sql"
        try:
            gunzip_file(compressed, check)
            ok = has_sql_markers(check)
        except (OSError, EOFError) as e:
            raise CompressionError(f"Compressed dump is unreadable: {e}", stage="compress") from e
        finally:
            check.unlink(missing_ok=True)
        if not ok:
            raise CompressionError(
                "Decompressed content failed the SQL marker check", stage="compress"
            )

    def _encryption_plan(self, target: TargetConfig) -> _EncryptionPlan | None:
        recipients = self._config.recipients_for(target)
        keyring = self._config.encryption.keyring_path
        if recipients:
            if keyring is None:
                raise EncryptionError(
                    "Recipients are configured but encryption.keyring_path is not",
                    stage="encrypt",
                )
            return _EncryptionPlan("recipients", recipients, None, keyring)
        passphrase_file = self._config.passphrase_file_for(target)
        if passphrase_file is not None:
            return _EncryptionPlan("passphrase", [], passphrase_file, None)
        return None

    def _encrypt(self, src: Path, dest: Path, plan: _EncryptionPlan) -> None:
        try:
            if plan.mode == "recipients":
                crypto.encrypt_for_recipients(src, dest, plan.recipients, plan.keyring)
            else:
                passphrase = crypto.ensure_passphrase(plan.passphrase_file)
                crypto.encrypt_with_passphrase(src, dest, passphrase)
        except EncryptionError as e:
            raise e.with_context(stage="encrypt")
        except OSError as e:
            raise EncryptionError(f"Encryption failed: {e}", stage="encrypt") from e

    def _place(self, src: Path, dest: Path) -> Path:
        partial = dest.with_name(f".{dest.name}.partial")
        try:
            dest.parent.mkdir(parents=True, exist_ok=True)
            if dest.exists():
                raise StorageError(f"Artifact already exists: {dest}", stage="place")
            shutil.move(src, partial)
            _fsync_path(partial)
            os.replace(partial, dest)
            # The rename itself must be durable before the sidecar exists
            _fsync_path(dest.parent)
        except OSError as e:
            dest.unlink(missing_ok=True)
            partial.unlink(missing_ok=True)
            raise StorageError(f"Cannot place artifact at {dest}: {e}", stage="place") from e
        return dest

    def _write_sidecar(self, path: Path, metadata: ArtifactMetadata) -> None:
        sidecar = sidecar_path_for(path)
        partial = sidecar.with_name(f".{sidecar.name}.partial")
        try:
            with open(partial, "w", encoding="utf-8") as f:
                json.dump(metadata.model_dump(mode="json"), f, indent=2)
                f.write("\n")
            _fsync_path(partial)
            os.replace(partial, sidecar)
            _fsync_path(sidecar.parent)
        except OSError as e:
            partial.unlink(missing_ok=True)
            # An artifact without its sidecar is never left behind
            path.unlink(missing_ok=True)
            raise StorageError(f"Cannot write metadata {sidecar}: {e}", stage="place") from e

    async def _upload(self, artifact: Artifact) -> None:
        if self._uploader is None:
            return
        meta = artifact.metadata
        for path in (artifact.path, artifact.sidecar_path):
            key = f"{meta.target}/{meta.tier}/{path.name}"
            try:
                await asyncio.to_thread(self._uploader.upload, path, key)
            except Exception as e:  # uploader failures never fail a commit
                logger.warning("Upload of %s failed: %s", path.name, e)
                return
