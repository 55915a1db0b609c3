"""Reading and unpacking .hart package artifacts.

A .hart file is a short plain-text header followed by an xz-compressed tar
payload rooted at ``hab/pkgs/<origin>/<name>/<version>/<release>/``:

    HART-1
    <signing key name>
    BLAKE2b
    <base64 signature>
    <blank line>
    <xz payload>

Signatures are not verified here; the engine only needs the payload.
"""

from __future__ import annotations

import logging
import lzma
import tarfile
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field
from pathlib import Path, PurePosixPath
from typing import IO

from container_exporter.errors import HartError
from container_exporter.packages.ident import PackageIdent

logger = logging.getLogger(__name__)

HART_FORMAT_VERSION = "HART-1"
HART_HASH_TYPE = "BLAKE2b"
HEADER_LINES = 5

# Depth of metadata files: hab/pkgs/origin/name/version/release/FILE
METADATA_DEPTH = 7


@dataclass
class HartMetadata:
    """Package metadata embedded in a .hart payload.

    Attributes:
        ident: Fully qualified identifier from the IDENT file.
        tdeps: Transitive dependencies from the TDEPS file.
    """

    ident: PackageIdent
    tdeps: list[PackageIdent] = field(default_factory=list)


def _read_header(f: IO[bytes], path: Path) -> None:
    lines: list[str] = []
    for _ in range(HEADER_LINES):
        raw = f.readline()
        if not raw.endswith(b"\n"):
            raise HartError(
                f"Truncated artifact header: {path}", code="malformed_header"
            )
        try:
            lines.append(raw.decode("utf-8").rstrip("\n"))
        except UnicodeDecodeError as e:
            raise HartError(
                f"Artifact header is not text: {path}", code="malformed_header"
            ) from e

    format_version, key_name, hash_type, _signature, blank = lines
    if format_version != HART_FORMAT_VERSION:
        raise HartError(
            f"Unsupported artifact format '{format_version}': {path}",
            code="unsupported_format",
        )
    if hash_type != HART_HASH_TYPE or not key_name or blank:
        raise HartError(
            f"Malformed artifact header: {path}", code="malformed_header"
        )


@contextmanager
def open_payload(path: Path) -> Iterator[tarfile.TarFile]:
    """Open the tar payload of a .hart file as a stream.

    Args:
        path: Artifact path.

    Yields:
        Streaming TarFile positioned at the first member.

    Raises:
        HartError: If the artifact cannot be opened.
    """
    try:
        with path.open("rb") as f:
            _read_header(f, path)
            with (
                lzma.open(f) as payload,
                tarfile.open(fileobj=payload, mode="r|") as tar,
            ):
                yield tar
    except tarfile.FilterError as e:
        raise HartError(
            f"Refusing unsafe member in {path}: {e}", code="path_traversal"
        ) from e
    except (tarfile.TarError, lzma.LZMAError, EOFError) as e:
        raise HartError(
            f"Corrupt artifact payload {path}: {e}", code="corrupt_payload"
        ) from e
    except OSError as e:
        raise HartError(f"Cannot read artifact {path}: {e}", code="read_error") from e


def read_metadata(path: Path) -> HartMetadata:
    """Read IDENT and TDEPS from a .hart payload.

    Args:
        path: Artifact path.

    Returns:
        HartMetadata instance.

    Raises:
        HartError: If the artifact is malformed or has no IDENT file.
    """
    ident_text: str | None = None
    tdeps_text = ""

    with open_payload(path) as tar:
        for member in tar:
            parts = PurePosixPath(member.name).parts
            if len(parts) != METADATA_DEPTH or parts[:2] != ("hab", "pkgs"):
                continue
            if parts[-1] not in ("IDENT", "TDEPS") or not member.isfile():
                continue
            extracted = tar.extractfile(member)
            if extracted is None:
                continue
            text = extracted.read().decode("utf-8", errors="replace").strip()
            if parts[-1] == "IDENT":
                ident_text = text
            else:
                tdeps_text = text

    if ident_text is None:
        raise HartError(f"Artifact has no IDENT file: {path}", code="missing_ident")

    try:
        ident = PackageIdent.parse(ident_text)
        tdeps = [
            PackageIdent.parse(line) for line in tdeps_text.splitlines() if line
        ]
    except ValueError as e:
        raise HartError(
            f"Artifact {path} has invalid metadata: {e}", code="invalid_metadata"
        ) from e
    if not ident.fully_qualified:
        raise HartError(
            f"Artifact {path} has a partial IDENT: {ident}", code="invalid_metadata"
        )
    return HartMetadata(ident=ident, tdeps=tdeps)


def unpack(path: Path, dest_dir: Path) -> None:
    """Unpack a .hart payload into a root filesystem.

    Members are extracted with the tarfile "tar" filter: names resolving
    outside ``dest_dir`` are rejected, while absolute symlink targets are
    kept since they point into the image, not the host.

    Args:
        path: Artifact path.
        dest_dir: Root filesystem directory.

    Raises:
        HartError: If the payload is corrupt or contains unsafe members.
    """
    logger.debug("Unpacking %s into %s", path.name, dest_dir)
    dest_dir.mkdir(parents=True, exist_ok=True)
    with open_payload(path) as tar:
        tar.extractall(dest_dir, filter="tar")


__all__ = [
    "HART_FORMAT_VERSION",
    "HartMetadata",
    "open_payload",
    "read_metadata",
    "unpack",
]
