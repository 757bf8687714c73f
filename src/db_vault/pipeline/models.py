"""Artifact descriptor and its metadata sidecar."""

import json
from datetime import datetime
from pathlib import Path

from pydantic import BaseModel, Field

SIDECAR_SUFFIX = ".meta.json"


class ArtifactMetadata(BaseModel):
    """Contents of ``<artifact>.meta.json``."""

    tool_version: str
    engine: str
    target: str
    file: str
    tier: str
    timestamp: datetime
    compressed: bool = True
    encrypted: bool = False
    encryption_mode: str | None = None  # "passphrase" | "recipients"
    recipients: list[str] = Field(default_factory=list)
    sha256: str
    size_bytes: int
    dump_strategy: str | None = None
    fallback_dump: bool = False


class Artifact(BaseModel):
    """A stored backup file plus its metadata."""

    path: Path
    metadata: ArtifactMetadata

    @property
    def sidecar_path(self) -> Path:
        return sidecar_path_for(self.path)

    @classmethod
    def load(cls, path: Path) -> "Artifact":
        """Load an artifact descriptor from its sidecar.

        Raises:
            FileNotFoundError: If the artifact or its sidecar is missing.
            ValueError: If the sidecar is not valid metadata JSON.
        """
        path = Path(path)
        if not path.exists():
            raise FileNotFoundError(f"Artifact not found: {path}")
        sidecar = sidecar_path_for(path)
        with open(sidecar, encoding="utf-8") as f:
            return cls(path=path, metadata=ArtifactMetadata.model_validate(json.load(f)))


def sidecar_path_for(path: Path) -> Path:
    return path.with_name(path.name + SIDECAR_SUFFIX)


def is_sidecar(path: Path) -> bool:
    return path.name.endswith(SIDECAR_SUFFIX)
