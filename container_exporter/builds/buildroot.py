"""Build workspace lifecycle.

This module handles:
- Rendering the Dockerfile for an assembled root filesystem
- Building and tagging the image through an engine
- Destroying the workspace exactly once

A BuildRoot is a context manager; leaving the ``with`` block destroys the
workspace whether or not the build succeeded. Destruction failures are
recorded on the BuildRoot, never raised from the block.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from types import TracebackType
from typing import TYPE_CHECKING

from container_exporter.builds import workspace
from container_exporter.builds.engine import DOCKERFILE
from container_exporter.builds.image import ContainerImage
from container_exporter.errors import BuildRootError, CleanupError

if TYPE_CHECKING:
    from container_exporter.builds.engine import Engine
    from container_exporter.builds.naming import NamingPolicy
    from container_exporter.builds.rootfs import RootfsEnvironment
    from container_exporter.builds.spec import ResolvedBuildSpec

logger = logging.getLogger(__name__)

ROOTFS_DIR = "rootfs"

LABEL_EXPORTER_VERSION = "io.container-exporter.version"
LABEL_PACKAGES = "io.container-exporter.packages"


def render_dockerfile(
    base_image: str,
    environment: RootfsEnvironment,
    labels: dict[str, str],
) -> str:
    """Render the Dockerfile for a build root.

    Args:
        base_image: Image the root filesystem is layered onto.
        environment: Runtime environment of the root filesystem.
        labels: Image labels.

    Returns:
        Dockerfile content.
    """
    lines = [f"FROM {base_image}", f"ADD {ROOTFS_DIR} /"]
    for key, value in sorted(environment.variables.items()):
        lines.append(f"ENV {key}={json.dumps(value)}")
    if environment.exposes:
        lines.append(f"EXPOSE {' '.join(environment.exposes)}")
    for key, value in labels.items():
        lines.append(f"LABEL {json.dumps(key)}={json.dumps(value)}")
    lines.append(f"ENTRYPOINT {json.dumps([environment.entrypoint])}")
    return "\n".join(lines) + "\n"


class BuildRoot:
    """An exclusively owned, populated build workspace.

    Attributes:
        workdir: Workspace directory.
        resolved: Resolved build specification installed in the workspace.
        environment: Runtime environment of the root filesystem.
        exporter_version: Version recorded in image labels.
        warnings: Non-fatal problems found while building.
        report_path: Build report written by ``build_image``, if any.
        cleanup_error: Error raised by ``destroy`` on context exit, if any.
    """

    def __init__(
        self,
        workdir: Path,
        resolved: ResolvedBuildSpec,
        environment: RootfsEnvironment,
        exporter_version: str | None = None,
    ) -> None:
        self.workdir = workdir
        self.resolved = resolved
        self.environment = environment
        self.exporter_version = exporter_version
        self.warnings: list[str] = []
        self.report_path: Path | None = None
        self.cleanup_error: CleanupError | None = None
        self._destroyed = False

    def __repr__(self) -> str:
        return f"BuildRoot(workdir={str(self.workdir)!r})"

    @property
    def rootfs(self) -> Path:
        """Root filesystem directory."""
        return self.workdir / ROOTFS_DIR

    @property
    def destroyed(self) -> bool:
        """True once ``destroy`` has run."""
        return self._destroyed

    def labels(self) -> dict[str, str]:
        """Return the labels applied to images built from this root."""
        primary = self.resolved.primary.ident
        labels = {
            "org.opencontainers.image.title": primary.name,
            "org.opencontainers.image.version": primary.version or "",
            LABEL_PACKAGES: " ".join(self.resolved.idents),
        }
        if self.exporter_version:
            labels[LABEL_EXPORTER_VERSION] = self.exporter_version
        return labels

    def build_image(
        self,
        naming: NamingPolicy,
        engine: Engine,
        memory: str | None = None,
        results_dir: Path | None = None,
    ) -> ContainerImage:
        """Build and tag an image from the workspace.

        Args:
            naming: Naming policy for the image.
            engine: Engine performing the build.
            memory: Optional memory limit for the build.
            results_dir: Directory receiving the build report (none if None).

        Returns:
            The built ContainerImage.

        Raises:
            BuildRootError: If the workspace is gone or cannot be written.
            EngineBuildError: If the engine fails to build the image.
        """
        if self._destroyed:
            raise BuildRootError(
                f"Build root {self.workdir} was already destroyed", code="destroyed"
            )

        primary = self.resolved.primary.ident
        name = naming.image_name(primary)
        tags = naming.tags(primary)

        dockerfile = render_dockerfile(
            self.resolved.spec.base_image, self.environment, self.labels()
        )
        try:
            (self.workdir / DOCKERFILE).write_text(dockerfile, encoding="utf-8")
        except OSError as e:
            raise BuildRootError(
                f"Cannot write Dockerfile in {self.workdir}: {e}",
                code="populate_error",
            ) from e

        logger.info("Building %s with tags %s", name, ", ".join(tags))
        image_id = engine.build(
            self.workdir, [f"{name}:{tag}" for tag in tags], memory=memory
        )
        image = ContainerImage(name=name, image_id=image_id, tags=tags, engine=engine)

        if results_dir is not None:
            try:
                self.report_path = image.create_report(results_dir)
            except OSError as e:
                message = f"Could not write build report to {results_dir}: {e}"
                logger.warning(message)
                self.warnings.append(message)

        return image

    def destroy(self) -> None:
        """Remove the workspace.

        Only the first call has an effect.

        Raises:
            CleanupError: If the workspace is missing or cannot be removed.
        """
        if self._destroyed:
            return
        self._destroyed = True
        try:
            workspace.remove(self.workdir)
        except FileNotFoundError as e:
            raise CleanupError(
                f"Build root {self.workdir} is already gone",
                code="workspace_missing",
            ) from e
        except OSError as e:
            raise CleanupError(
                f"Failed to remove build root {self.workdir}: {e}"
            ) from e
        logger.debug("Destroyed build root %s", self.workdir)

    def __enter__(self) -> BuildRoot:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        try:
            self.destroy()
        except CleanupError as e:
            logger.warning("%s", e)
            self.cleanup_error = e


__all__ = ["ROOTFS_DIR", "BuildRoot", "render_dockerfile"]
