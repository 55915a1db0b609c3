"""Root filesystem assembly.

This module handles:
- Creating the workspace that becomes a BuildRoot
- Fetching and unpacking every resolved package into ``rootfs/``
- Writing the support files an image needs to run standalone:
  user database, binlinks, environment, CA bundle and entrypoint

A failure while populating the workspace removes it before the error
propagates.
"""

from __future__ import annotations

import logging
import shlex
import shutil
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING

from container_exporter.builds import workspace
from container_exporter.builds.buildroot import ROOTFS_DIR, BuildRoot
from container_exporter.errors import BuildRootError, DepotError, HartError
from container_exporter.packages import hart
from container_exporter.types import ArtifactOrigin

if TYPE_CHECKING:
    from container_exporter.builds.spec import ResolvedBuildSpec, ResolvedPackage
    from container_exporter.packages.depot import DepotClient

logger = logging.getLogger(__name__)

# Packages whose binaries are linked into /bin
BINLINK_PACKAGES = ("busybox-static",)

CACERTS_PACKAGE = "cacerts"
CACERTS_BUNDLE = "ssl/cert.pem"
CA_BUNDLE_PATH = "etc/ssl/certs/ca-certificates.crt"

ENVIRONMENT_FILE = "etc/container-export/environment"
ENTRYPOINT = "init.sh"
DEFAULT_COMMAND = ["/bin/sh"]

PASSWD = """\
root:x:0:0:root:/:/bin/sh
hab:x:42:42:hab:/:/bin/sh
"""

GROUP = """\
root:x:0:
hab:x:42:hab
"""

INIT_SCRIPT = """\
#!/bin/sh
set -e
. /{environment_file}
if [ "$#" -eq 0 ]; then
  set -- {command}
fi
exec "$@"
"""


@dataclass
class RootfsEnvironment:
    """Runtime environment of an assembled root filesystem.

    Attributes:
        variables: Environment variables, including PATH.
        exposes: Ports declared by the primary package.
        command: Default command run by the entrypoint.
        entrypoint: Absolute path of the entrypoint script in the image.
    """

    variables: dict[str, str] = field(default_factory=dict)
    exposes: list[str] = field(default_factory=list)
    command: list[str] = field(default_factory=lambda: list(DEFAULT_COMMAND))
    entrypoint: str = f"/{ENTRYPOINT}"


def package_file(rootfs: Path, package: ResolvedPackage, name: str) -> Path | None:
    """Locate a file of an installed package inside the root filesystem.

    Symlinks are followed only while they stay within ``rootfs``.

    Args:
        rootfs: Root filesystem directory.
        package: Installed package.
        name: Path relative to the package directory.

    Returns:
        Resolved file path, or None if no such file exists.

    Raises:
        HartError: If the path resolves outside ``rootfs``.
    """
    path = (rootfs / package.ident.pkg_path() / name).resolve()
    if not path.is_relative_to(rootfs.resolve()):
        raise HartError(
            f"{name} of {package.ident} resolves outside the root filesystem",
            code="unsafe_path",
        )
    if not path.is_file():
        return None
    return path


def read_metadata_file(rootfs: Path, package: ResolvedPackage, name: str) -> str | None:
    """Read a metadata file of an installed package.

    Args:
        rootfs: Root filesystem directory.
        package: Installed package.
        name: Metadata file name (PATH, EXPOSES, ...).

    Returns:
        Stripped file content, or None if the file does not exist.

    Raises:
        HartError: If the file is not UTF-8 text or lies outside ``rootfs``.
    """
    path = package_file(rootfs, package, name)
    if path is None:
        return None
    try:
        return path.read_text(encoding="utf-8").strip()
    except UnicodeDecodeError as e:
        raise HartError(
            f"{name} of {package.ident} is not UTF-8 text", code="invalid_metadata"
        ) from e


def _binlink(rootfs: Path, package: ResolvedPackage) -> int:
    pkg_bin = rootfs / package.ident.pkg_path() / "bin"
    if not pkg_bin.is_dir():
        return 0
    bin_dir = rootfs / "bin"
    bin_dir.mkdir(parents=True, exist_ok=True)
    count = 0
    for entry in sorted(pkg_bin.iterdir()):
        link = bin_dir / entry.name
        if link.exists() or link.is_symlink():
            continue
        link.symlink_to(f"/{package.ident.pkg_path()}/bin/{entry.name}")
        count += 1
    return count


def _runtime_variables(rootfs: Path, package: ResolvedPackage) -> dict[str, str]:
    content = read_metadata_file(rootfs, package, "RUNTIME_ENVIRONMENT")
    variables: dict[str, str] = {}
    for line in (content or "").splitlines():
        key, sep, value = line.partition("=")
        if sep and key.strip():
            variables[key.strip()] = value
    return variables


def write_support_files(rootfs: Path, resolved: ResolvedBuildSpec) -> RootfsEnvironment:
    """Write the files an image needs to run standalone.

    Args:
        rootfs: Root filesystem with all packages unpacked.
        resolved: Resolved build specification.

    Returns:
        RootfsEnvironment describing the runtime environment.

    Raises:
        HartError: If package metadata is unreadable or unsafe.
        OSError: If a file cannot be written.
    """
    env = RootfsEnvironment()
    primary = resolved.primary

    etc = rootfs / "etc"
    etc.mkdir(parents=True, exist_ok=True)
    (etc / "passwd").write_text(PASSWD, encoding="utf-8")
    (etc / "group").write_text(GROUP, encoding="utf-8")

    binlinked = False
    for package in resolved.packages:
        if package.ident.name in BINLINK_PACKAGES:
            binlinked = _binlink(rootfs, package) > 0 or binlinked

    # PATH follows install order so primaries win lookups
    path_entries: list[str] = []
    for package in resolved.packages:
        for entry in (read_metadata_file(rootfs, package, "PATH") or "").split(":"):
            if entry and entry not in path_entries:
                path_entries.append(entry)
    if binlinked and "/bin" not in path_entries:
        path_entries.append("/bin")

    env.variables = {
        k: v for k, v in _runtime_variables(rootfs, primary).items() if k != "PATH"
    }
    env.variables["PATH"] = ":".join(path_entries)

    cacerts = resolved.find(CACERTS_PACKAGE)
    if cacerts is not None:
        bundle = package_file(rootfs, cacerts, CACERTS_BUNDLE)
        if bundle is not None:
            dest = rootfs / CA_BUNDLE_PATH
            dest.parent.mkdir(parents=True, exist_ok=True)
            shutil.copyfile(bundle, dest)
            env.variables["SSL_CERT_FILE"] = f"/{CA_BUNDLE_PATH}"

    env.exposes = (read_metadata_file(rootfs, primary, "EXPOSES") or "").split()

    if package_file(rootfs, primary, "hooks/run") is not None:
        env.command = [f"/{primary.ident.pkg_path()}/hooks/run"]

    env_file = rootfs / ENVIRONMENT_FILE
    env_file.parent.mkdir(parents=True, exist_ok=True)
    env_file.write_text(
        "".join(
            f"export {k}={shlex.quote(v)}\n" for k, v in sorted(env.variables.items())
        ),
        encoding="utf-8",
    )

    init = rootfs / ENTRYPOINT
    init.write_text(
        INIT_SCRIPT.format(
            environment_file=ENVIRONMENT_FILE,
            command=shlex.join(env.command),
        ),
        encoding="utf-8",
    )
    init.chmod(0o755)

    return env


class RootfsAssembler:
    """Materializes resolved build specifications into BuildRoots.

    Args:
        depot: Depot client used to download artifacts.
        cache_dir: Directory caching downloaded artifacts.
        tmp_dir: Parent directory for workspaces (system default if None).
        exporter_version: Version recorded in image labels.
    """

    def __init__(
        self,
        depot: DepotClient,
        cache_dir: Path,
        tmp_dir: Path | None = None,
        exporter_version: str | None = None,
    ) -> None:
        self.depot = depot
        self.cache_dir = cache_dir
        self.tmp_dir = tmp_dir
        self.exporter_version = exporter_version

    def materialize(self, resolved: ResolvedBuildSpec) -> BuildRoot:
        """Create and populate a BuildRoot.

        Args:
            resolved: Resolved build specification.

        Returns:
            BuildRoot owning the populated workspace.

        Raises:
            BuildRootError: If the workspace cannot be created or populated.
        """
        try:
            workdir = workspace.create(self.tmp_dir)
        except OSError as e:
            raise BuildRootError(
                f"Cannot create build workspace: {e}", code="workspace_error"
            ) from e

        rootfs = workdir / ROOTFS_DIR
        try:
            for package in resolved.packages:
                artifact = self._fetch(package, resolved.spec.target)
                logger.info("Installing %s", package.ident)
                hart.unpack(artifact, rootfs)
            environment = write_support_files(rootfs, resolved)
        except DepotError as e:
            self._discard(workdir)
            raise BuildRootError(
                f"Failed to fetch package: {e}", code="download_failed"
            ) from e
        except HartError as e:
            self._discard(workdir)
            raise BuildRootError(
                f"Failed to install package: {e}", code="install_failed"
            ) from e
        except OSError as e:
            self._discard(workdir)
            raise BuildRootError(
                f"Failed to populate build root {workdir}: {e}",
                code="populate_error",
            ) from e
        except BaseException:
            self._discard(workdir)
            raise

        logger.info(
            "Assembled root filesystem with %d package(s) in %s",
            len(resolved.packages),
            workdir,
        )
        return BuildRoot(
            workdir,
            resolved,
            environment,
            exporter_version=self.exporter_version,
        )

    def _fetch(self, package: ResolvedPackage, target: str) -> Path:
        if package.source == ArtifactOrigin.LOCAL and package.path is not None:
            return package.path
        return self.depot.download(package.ident, self.cache_dir, target)

    def _discard(self, workdir: Path) -> None:
        try:
            workspace.remove(workdir)
        except OSError as e:
            logger.warning("Failed to remove partial workspace %s: %s", workdir, e)


__all__ = [
    "CA_BUNDLE_PATH",
    "ENTRYPOINT",
    "ENVIRONMENT_FILE",
    "RootfsAssembler",
    "RootfsEnvironment",
    "package_file",
    "read_metadata_file",
    "write_support_files",
]
