"""Remote storage for finished artifacts."""

from db_vault.storage.upload import S3Uploader, Uploader, build_uploader

__all__ = ["S3Uploader", "Uploader", "build_uploader"]
