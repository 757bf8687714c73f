"""Remote copies of finished artifacts.

The pipeline calls an ``Uploader`` after an artifact is stored; failures
are logged by the caller and never fail the backup.
"""

import logging
from pathlib import Path
from typing import Protocol

from db_vault.config.models import UploadSettings

logger = logging.getLogger(__name__)


class Uploader(Protocol):
    def upload(self, path: Path, key: str) -> None:
        """Copy ``path`` to remote storage under ``key`` (blocking)."""
        ...


class S3Uploader:
    """Upload artifacts to an S3 bucket with boto3.

    Requires the ``s3`` extra (``pip install db-vault[s3]``).
    """

    def __init__(self, settings: UploadSettings) -> None:
        import boto3

        if not settings.bucket:
            raise ValueError("S3 upload requires a bucket")
        session = boto3.session.Session(
            profile_name=settings.profile, region_name=settings.region
        )
        self._client = session.client("s3")
        self._bucket = settings.bucket
        self._prefix = settings.prefix.strip("/")

    def upload(self, path: Path, key: str) -> None:
        full_key = f"{self._prefix}/{key}" if self._prefix else key
        logger.info("Uploading %s to s3://%s/%s", path.name, self._bucket, full_key)
        self._client.upload_file(str(path), self._bucket, full_key)


def build_uploader(settings: UploadSettings) -> Uploader | None:
    """Return an ``S3Uploader`` when a bucket is configured, else None."""
    if not settings.bucket:
        return None
    return S3Uploader(settings)
