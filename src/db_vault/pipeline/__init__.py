"""Artifact pipeline: validation, compression, encryption, storage."""

from db_vault.pipeline.models import Artifact, ArtifactMetadata
from db_vault.pipeline.pipeline import ArtifactPipeline, artifact_filename

__all__ = ["Artifact", "ArtifactMetadata", "ArtifactPipeline", "artifact_filename"]
