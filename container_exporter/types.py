"""Shared type definitions for container_exporter.

This module contains enums shared across subpackages to avoid circular
imports.
"""

from enum import Enum


class ExportStage(str, Enum):
    """Stage of the export pipeline."""

    RESOLVING = "resolving"
    ASSEMBLING = "assembling"
    BUILDING = "building"
    CLEANUP = "cleanup"
    SAVING = "saving"
    PUBLISHING = "publishing"
    REMOVING = "removing"
    DONE = "done"
    FAILED = "failed"


class RegistryType(str, Enum):
    """Kind of registry an image is published to."""

    AMAZON = "amazon"
    AZURE = "azure"
    DOCKER = "docker"


class EngineKind(str, Enum):
    """Supported container build tools."""

    DOCKER = "docker"
    PODMAN = "podman"
    BUILDAH = "buildah"


class ArtifactOrigin(str, Enum):
    """Where a resolved package artifact is fetched from."""

    DEPOT = "depot"
    LOCAL = "local"


__all__ = [
    "ArtifactOrigin",
    "EngineKind",
    "ExportStage",
    "RegistryType",
]
