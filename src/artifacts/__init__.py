"""Retained build artifacts for pipeline runs."""

from .download import extract_artifact, list_artifact_members
from .publisher import ArtifactRecord, ArtifactStore

__all__ = ["ArtifactRecord", "ArtifactStore", "extract_artifact", "list_artifact_members"]
