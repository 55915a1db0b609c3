"""Built container images.

This module handles:
- Writing the build report
- Publishing every tag to a registry
- Removing local references and exporting tarballs

Publishing is not transactional: when an upload fails, the tags uploaded
before it stay published and are listed on the raised PushError.
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING

from container_exporter.errors import EngineError, PushError, RemoveError

if TYPE_CHECKING:
    from container_exporter.builds.engine import Engine
    from container_exporter.registry.credentials import RegistryCredential

logger = logging.getLogger(__name__)

REPORT_FILENAME = "last_container_export.env"
AUTH_FILENAME = "config.json"
DEFAULT_REGISTRY = "https://index.docker.io/v1/"


def write_auth_file(path: Path, registry: str, credential: RegistryCredential) -> None:
    """Write an engine auth file readable only by the current user.

    Args:
        path: File to create; must not exist.
        registry: Registry key the credential applies to.
        credential: Credential to store.
    """
    content = {"auths": {registry: {"auth": credential.token}}}
    fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_EXCL, 0o600)
    with os.fdopen(fd, "w", encoding="utf-8") as f:
        json.dump(content, f)


@dataclass
class ContainerImage:
    """An image built by an engine.

    Attributes:
        name: Image name without tag.
        image_id: Engine image ID.
        tags: Tags applied at build time, in policy order.
        engine: Engine owning the image.
        extra_refs: Registry references added while publishing.
    """

    name: str
    image_id: str
    tags: list[str]
    engine: Engine = field(repr=False)
    extra_refs: list[str] = field(default_factory=list)

    @property
    def refs(self) -> list[str]:
        """Local ``name:tag`` references applied at build time."""
        return [f"{self.name}:{tag}" for tag in self.tags]

    def create_report(self, results_dir: Path) -> Path:
        """Write the build report.

        Args:
            results_dir: Directory receiving the report.

        Returns:
            Path to the report file.

        Raises:
            OSError: If the report cannot be written.
        """
        results_dir.mkdir(parents=True, exist_ok=True)
        report = results_dir / REPORT_FILENAME
        lines = [
            f"name={self.name}",
            f"id={self.image_id}",
            f"tags={','.join(self.tags)}",
            f"refs={','.join(self.refs)}",
        ]
        report.write_text("\n".join(lines) + "\n", encoding="utf-8")
        logger.info("Wrote build report %s", report)
        return report

    def push(
        self,
        credential: RegistryCredential,
        registry: str | None = None,
    ) -> list[str]:
        """Upload every tag to a registry.

        When ``registry`` is given each tag is first re-tagged as
        ``<registry>/<name>:<tag>``. The credential is written to a private
        temporary auth file that is deleted when the upload ends.

        Args:
            credential: Registry credential.
            registry: Optional registry host to qualify references with,
                as returned by ``NamingPolicy.registry_prefix``.

        Returns:
            References uploaded, in tag order.

        Raises:
            PushError: If a re-tag or upload fails; ``pushed`` lists the
                references uploaded before the failure.
        """
        host = registry or None
        pushed: list[str] = []

        with tempfile.TemporaryDirectory(prefix="container-export-auth-") as auth_dir:
            auth_file = Path(auth_dir) / AUTH_FILENAME
            try:
                write_auth_file(auth_file, host or DEFAULT_REGISTRY, credential)
            except OSError as e:
                raise PushError(
                    f"Cannot write registry auth file: {e}", code="auth_file_error"
                ) from e

            for ref in self.refs:
                target = f"{host}/{ref}" if host else ref
                if target != ref:
                    try:
                        self.engine.tag(ref, target)
                    except EngineError as e:
                        raise PushError(
                            f"Failed to tag {target}: {e}",
                            pushed=pushed,
                            code="tag_failed",
                        ) from e
                    if target not in self.extra_refs:
                        self.extra_refs.append(target)

                logger.info("Pushing %s", target)
                try:
                    self.engine.push(target, auth_file)
                except EngineError as e:
                    raise PushError(
                        f"Failed to push {target} after uploading "
                        f"{len(pushed)} of {len(self.tags)} tag(s): {e}",
                        pushed=pushed,
                    ) from e
                pushed.append(target)

        return pushed

    def remove(self) -> list[str]:
        """Delete every local reference of the image.

        Returns:
            References removed.

        Raises:
            RemoveError: If a reference cannot be removed; ``removed`` lists
                the references deleted before the failure.
        """
        removed: list[str] = []
        for ref in [*self.extra_refs, *self.refs]:
            logger.info("Removing %s", ref)
            try:
                self.engine.remove(ref)
            except EngineError as e:
                raise RemoveError(
                    f"Failed to remove {ref}: {e}", removed=removed
                ) from e
            removed.append(ref)
        return removed

    def save(self, dest_dir: Path) -> Path:
        """Export the image as a tarball.

        Args:
            dest_dir: Directory receiving the tarball.

        Returns:
            Path to the tarball.

        Raises:
            EngineError: If the export fails.
        """
        ref = self.refs[0]
        dest = dest_dir / f"{self.name.replace('/', '-')}-{self.tags[0]}.tar"
        try:
            dest_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise EngineError(
                f"Cannot create {dest_dir}: {e}", code="write_error"
            ) from e
        logger.info("Saving %s to %s", ref, dest)
        self.engine.export_tarball(ref, dest)
        return dest


__all__ = [
    "DEFAULT_REGISTRY",
    "REPORT_FILENAME",
    "ContainerImage",
    "write_auth_file",
]
