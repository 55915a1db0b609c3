"""Shared fixtures for container_exporter tests."""

import io
import lzma
import tarfile
from collections.abc import Callable
from pathlib import Path

import pytest

from container_exporter.errors import DepotError
from container_exporter.packages.depot import PackageInfo
from container_exporter.packages.ident import PackageIdent

HartFactory = Callable[..., Path]


def build_hart_bytes(
    ident: str,
    tdeps: list[str] | None = None,
    files: dict[str, str | bytes] | None = None,
    extra_members: dict[str, str | bytes] | None = None,
    include_ident: bool = True,
    header: str = "HART-1\ncore-20200101\nBLAKE2b\nc2lnbmF0dXJl\n\n",
) -> bytes:
    """Build the bytes of a .hart artifact.

    Args:
        ident: Fully qualified identifier written to IDENT.
        tdeps: Identifiers written to TDEPS.
        files: Files relative to the package directory.
        extra_members: Members with raw archive names.
        include_ident: Whether to write the IDENT file.
        header: Artifact header text.
    """
    pkg_dir = f"hab/pkgs/{ident}"
    members: dict[str, str | bytes] = {}
    if include_ident:
        members[f"{pkg_dir}/IDENT"] = ident + "\n"
    if tdeps is not None:
        members[f"{pkg_dir}/TDEPS"] = "".join(f"{d}\n" for d in tdeps)
    for name, content in (files or {}).items():
        members[f"{pkg_dir}/{name}"] = content
    members.update(extra_members or {})

    buf = io.BytesIO()
    with tarfile.open(fileobj=buf, mode="w") as tar:
        for name, content in members.items():
            data = content.encode() if isinstance(content, str) else content
            info = tarfile.TarInfo(name)
            info.size = len(data)
            info.mode = 0o755 if "/bin/" in name or "/hooks/" in name else 0o644
            tar.addfile(info, io.BytesIO(data))

    return header.encode() + lzma.compress(buf.getvalue())


@pytest.fixture
def make_hart(tmp_path: Path) -> HartFactory:
    """Return a factory writing .hart artifacts below tmp_path."""

    def factory(ident: str, dest_dir: Path | None = None, **kwargs) -> Path:
        dest_dir = dest_dir or tmp_path / "harts"
        dest_dir.mkdir(parents=True, exist_ok=True)
        origin, name, version, release = ident.split("/")
        path = dest_dir / f"{origin}-{name}-{version}-{release}-x86_64-linux.hart"
        path.write_bytes(build_hart_bytes(ident, **kwargs))
        return path

    return factory


@pytest.fixture
def hart_bytes() -> Callable[..., bytes]:
    """Return the raw .hart builder for malformed artifacts."""
    return build_hart_bytes


class FakeDepot:
    """In-memory stand-in for DepotClient.

    Args:
        packages: Fully qualified identifier to package definition with
            optional ``tdeps`` and ``files`` keys.
    """

    def __init__(self, packages: dict[str, dict]) -> None:
        self.packages = packages
        self.downloads: list[str] = []

    def _info(self, ident: str) -> PackageInfo:
        spec = self.packages[ident]
        return PackageInfo(
            ident=PackageIdent.parse(ident),
            tdeps=[PackageIdent.parse(d) for d in spec.get("tdeps", [])],
        )

    def show(self, ident: PackageIdent, target: str) -> PackageInfo:
        if str(ident) not in self.packages:
            raise DepotError(f"{ident} not found", code="not_found", status_code=404)
        return self._info(str(ident))

    def latest(self, ident: PackageIdent, channel: str, target: str) -> PackageInfo:
        prefix = str(ident) + "/"
        matches = sorted(
            (k for k in self.packages if k.startswith(prefix)),
            key=lambda k: k.split("/")[3],
        )
        if not matches:
            raise DepotError(f"{ident} not found", code="not_found", status_code=404)
        return self._info(matches[-1])

    def download(self, ident: PackageIdent, dest_dir: Path, target: str) -> Path:
        key = str(ident)
        self.downloads.append(key)
        spec = self.packages[key]
        dest_dir.mkdir(parents=True, exist_ok=True)
        path = dest_dir / f"{key.replace('/', '-')}-{target}.hart"
        path.write_bytes(
            build_hart_bytes(key, tdeps=spec.get("tdeps"), files=spec.get("files"))
        )
        return path


DEFAULT_PACKAGES: dict[str, dict] = {
    "acme/web/1.2.0/20200101000000": {
        "tdeps": ["core/glibc/2.35/20220101000000"],
        "files": {
            "PATH": "/hab/pkgs/acme/web/1.2.0/20200101000000/bin",
            "EXPOSES": "8080 8443",
            "RUNTIME_ENVIRONMENT": "WEB_HOME=/srv/web\nPATH=/ignored\n",
            "bin/web": "#!/bin/sh\n",
            "hooks/run": "#!/bin/sh\nexec web\n",
        },
    },
    "core/glibc/2.35/20220101000000": {
        "files": {"PATH": "/hab/pkgs/core/glibc/2.35/20220101000000/bin"},
    },
    "core/redis/6.2.0/20210101000000": {},
    "core/redis/7.0.4/20220809000000": {
        "tdeps": ["core/glibc/2.35/20220101000000"],
    },
    "core/busybox-static/1.34.1/20220101000000": {
        "files": {
            "PATH": "/hab/pkgs/core/busybox-static/1.34.1/20220101000000/bin",
            "bin/busybox": "ELF",
            "bin/sh": "ELF",
        },
    },
    "core/cacerts/2022.01/20220101000000": {
        "files": {"ssl/cert.pem": "-----BEGIN CERTIFICATE-----\n"},
    },
}


@pytest.fixture
def fake_depot() -> FakeDepot:
    """Return a fake depot with a small package set."""
    return FakeDepot(dict(DEFAULT_PACKAGES))
