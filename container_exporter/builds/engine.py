"""Container engine abstraction.

This module handles:
- Building images from a Dockerfile context
- Tagging, pushing and removing image references
- Exporting images as tarballs

Each engine shells out to its command line tool. Engines hold no state
beyond the tool they invoke, so one instance can serve concurrent exports.
"""

from __future__ import annotations

import logging
import shlex
import subprocess
from abc import ABC, abstractmethod
from pathlib import Path

from container_exporter.errors import EngineBuildError, EngineError
from container_exporter.types import EngineKind

logger = logging.getLogger(__name__)

DOCKERFILE = "Dockerfile"
IIDFILE = "image.id"


class Engine(ABC):
    """A container build tool.

    Args:
        binary: Executable to invoke (defaults to the tool's name).
    """

    kind: EngineKind
    build_subcommand = "build"

    def __init__(self, binary: str | None = None) -> None:
        self.binary = binary or self.kind.value

    def __repr__(self) -> str:
        return f"{type(self).__name__}(binary={self.binary!r})"

    def build(
        self,
        context_dir: Path,
        refs: list[str],
        memory: str | None = None,
    ) -> str:
        """Build an image from ``context_dir/Dockerfile`` and tag it.

        Args:
            context_dir: Build context containing the Dockerfile.
            refs: References (``name:tag``) applied to the image.
            memory: Optional memory limit passed to the tool.

        Returns:
            Image ID reported by the tool.

        Raises:
            EngineBuildError: If the build fails; ``output`` holds the
                tool's output verbatim.
        """
        iidfile = context_dir / IIDFILE
        cmd = [
            self.binary,
            self.build_subcommand,
            "--force-rm",
            "--no-cache",
            "--file",
            str(context_dir / DOCKERFILE),
            "--iidfile",
            str(iidfile),
        ]
        if memory:
            cmd.extend(["--memory", memory])
        for ref in refs:
            cmd.extend(["--tag", ref])
        cmd.append(str(context_dir))

        try:
            result = self._run(cmd)
        except EngineError as e:
            raise EngineBuildError(str(e)) from e

        if result.returncode != 0:
            raise EngineBuildError(
                f"{self.binary} build failed with exit code {result.returncode}",
                exit_code=result.returncode,
                output=result.stdout,
            )

        try:
            image_id = iidfile.read_text(encoding="utf-8").strip()
        except OSError as e:
            raise EngineBuildError(
                f"{self.binary} did not report an image ID: {e}",
                exit_code=result.returncode,
                output=result.stdout,
            ) from e
        if not image_id:
            raise EngineBuildError(
                f"{self.binary} reported an empty image ID",
                exit_code=result.returncode,
                output=result.stdout,
            )
        logger.info("Built image %s", image_id)
        return image_id

    def tag(self, source: str, target: str) -> None:
        """Add reference ``target`` to the image at ``source``."""
        self._check([self.binary, "tag", source, target])

    def push(self, ref: str, auth_file: Path) -> None:
        """Upload one reference using the credentials in ``auth_file``.

        Raises:
            EngineError: If the upload fails.
        """
        self._check(self.push_command(ref, auth_file))

    def remove(self, ref: str) -> None:
        """Delete one local reference."""
        self._check([self.binary, "rmi", ref])

    def export_tarball(self, ref: str, dest: Path) -> None:
        """Write the image at ``ref`` to a tarball at ``dest``."""
        self._check(self.export_command(ref, dest))

    @abstractmethod
    def push_command(self, ref: str, auth_file: Path) -> list[str]:
        """Compose the push command for this tool."""

    @abstractmethod
    def export_command(self, ref: str, dest: Path) -> list[str]:
        """Compose the tarball export command for this tool."""

    def _run(self, cmd: list[str]) -> subprocess.CompletedProcess[str]:
        logger.debug("Running: %s", shlex.join(cmd))
        try:
            return subprocess.run(
                cmd,
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
                text=True,
                check=False,
            )
        except OSError as e:
            raise EngineError(
                f"Failed to run {self.binary}: {e}", code="engine_unavailable"
            ) from e

    def _check(self, cmd: list[str]) -> subprocess.CompletedProcess[str]:
        result = self._run(cmd)
        if result.returncode != 0:
            raise EngineError(
                f"{shlex.join(cmd[:2])} failed with exit code {result.returncode}",
                code="command_failed",
                exit_code=result.returncode,
                output=result.stdout,
            )
        return result


class DockerEngine(Engine):
    """Docker CLI."""

    kind = EngineKind.DOCKER

    def push_command(self, ref: str, auth_file: Path) -> list[str]:
        # Docker reads config.json from a config directory
        return [self.binary, "--config", str(auth_file.parent), "push", ref]

    def export_command(self, ref: str, dest: Path) -> list[str]:
        return [self.binary, "save", "--output", str(dest), ref]


class PodmanEngine(Engine):
    """Podman CLI."""

    kind = EngineKind.PODMAN

    def push_command(self, ref: str, auth_file: Path) -> list[str]:
        return [self.binary, "push", "--authfile", str(auth_file), ref]

    def export_command(self, ref: str, dest: Path) -> list[str]:
        return [self.binary, "save", "--output", str(dest), ref]


class BuildahEngine(Engine):
    """Buildah CLI."""

    kind = EngineKind.BUILDAH
    build_subcommand = "bud"

    def push_command(self, ref: str, auth_file: Path) -> list[str]:
        return [self.binary, "push", "--authfile", str(auth_file), ref]

    def export_command(self, ref: str, dest: Path) -> list[str]:
        return [self.binary, "push", ref, f"docker-archive:{dest}:{ref}"]


ENGINES: dict[EngineKind, type[Engine]] = {
    EngineKind.DOCKER: DockerEngine,
    EngineKind.PODMAN: PodmanEngine,
    EngineKind.BUILDAH: BuildahEngine,
}


def get_engine(kind: EngineKind | str, binary: str | None = None) -> Engine:
    """Create the engine for a tool kind.

    Args:
        kind: Engine kind or its name.
        binary: Optional executable override.

    Returns:
        Engine instance.

    Raises:
        ValueError: If the kind is unknown.
    """
    return ENGINES[EngineKind(kind)](binary)


__all__ = [
    "DOCKERFILE",
    "BuildahEngine",
    "DockerEngine",
    "Engine",
    "PodmanEngine",
    "get_engine",
]
