"""Depot API client.

This module handles:
- Resolving partial identifiers to the latest release in a channel
- Fetching metadata for fully qualified identifiers
- Downloading package artifacts into a local cache
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import httpx

from container_exporter.errors import DepotError
from container_exporter.packages.ident import PackageIdent

logger = logging.getLogger(__name__)

DEFAULT_BLDR_URL = "https://bldr.habitat.sh"

# Timeout for metadata requests (seconds)
METADATA_TIMEOUT = 60

# Timeout for downloads (seconds)
DOWNLOAD_TIMEOUT = 3600

# Chunk size for downloads (bytes)
DOWNLOAD_CHUNK_SIZE = 64 * 1024  # 64 KB


@dataclass
class PackageInfo:
    """Metadata of a fully qualified package.

    Attributes:
        ident: Fully qualified identifier.
        tdeps: Transitive runtime dependencies, fully qualified.
    """

    ident: PackageIdent
    tdeps: list[PackageIdent] = field(default_factory=list)


def artifact_filename(ident: PackageIdent, target: str) -> str:
    """Return the canonical artifact filename for a package.

    Args:
        ident: Fully qualified identifier.
        target: Package target platform.

    Returns:
        Filename such as ``core-redis-7.0.4-20220809000000-x86_64-linux.hart``.
    """
    if not ident.fully_qualified:
        raise ValueError(f"'{ident}' is not fully qualified")
    return "-".join([*ident.parts(), target]) + ".hart"


def parse_package_info(data: dict[str, Any]) -> PackageInfo:
    """Parse a depot package document.

    Args:
        data: JSON document returned by the depot.

    Returns:
        PackageInfo instance.

    Raises:
        DepotError: If the document lacks a fully qualified identifier.
    """
    try:
        ident = PackageIdent.from_depot(data["ident"])
        tdeps = [PackageIdent.from_depot(d) for d in data.get("tdeps") or []]
    except (KeyError, TypeError, ValueError) as e:
        raise DepotError(
            f"Malformed package document: {e}",
            code="malformed_response",
        ) from e
    if not ident.fully_qualified:
        raise DepotError(
            f"Depot returned a partial identifier: {ident}",
            code="malformed_response",
        )
    return PackageInfo(ident=ident, tdeps=tdeps)


class DepotClient:
    """Client for the package depot API.

    Args:
        base_url: Depot base URL.
        client: Optional preconfigured HTTPX client. Its own timeout applies
            and the timeouts below are ignored.
        timeout: Metadata request timeout in seconds.
        download_timeout: Artifact download timeout in seconds.
    """

    def __init__(
        self,
        base_url: str = DEFAULT_BLDR_URL,
        client: httpx.Client | None = None,
        timeout: float = METADATA_TIMEOUT,
        download_timeout: float = DOWNLOAD_TIMEOUT,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.download_timeout = download_timeout
        self._client = client or httpx.Client(follow_redirects=True)
        self._owns_client = client is None

    def close(self) -> None:
        """Close the underlying HTTP client if this instance created it."""
        if self._owns_client:
            self._client.close()

    def __enter__(self) -> DepotClient:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def _timeout(self, seconds: float) -> Any:
        # Injected clients keep their own configured timeout
        if self._owns_client:
            return seconds
        return httpx.USE_CLIENT_DEFAULT

    def latest(
        self,
        ident: PackageIdent,
        channel: str,
        target: str,
    ) -> PackageInfo:
        """Resolve a partial identifier to the latest release in a channel.

        Args:
            ident: Identifier with at most a version pinned.
            channel: Channel to search.
            target: Package target platform.

        Returns:
            PackageInfo for the latest matching release.

        Raises:
            DepotError: If no matching package exists or the request fails.
        """
        path = f"/v1/depot/channels/{ident.origin}/{channel}/pkgs/{ident.name}"
        if ident.version:
            path += f"/{ident.version}"
        path += "/latest"
        return parse_package_info(self._get_json(path, {"target": target}))

    def show(self, ident: PackageIdent, target: str) -> PackageInfo:
        """Fetch metadata for a fully qualified identifier.

        Args:
            ident: Fully qualified identifier.
            target: Package target platform.

        Returns:
            PackageInfo for the package.

        Raises:
            DepotError: If the package does not exist or the request fails.
        """
        path = "/v1/depot/pkgs/" + "/".join(ident.parts())
        return parse_package_info(self._get_json(path, {"target": target}))

    def download(
        self,
        ident: PackageIdent,
        dest_dir: Path,
        target: str,
        chunk_size: int = DOWNLOAD_CHUNK_SIZE,
    ) -> Path:
        """Download a package artifact, reusing a cached copy when present.

        Args:
            ident: Fully qualified identifier.
            dest_dir: Cache directory for artifacts.
            target: Package target platform.
            chunk_size: Size of chunks to download.

        Returns:
            Path to the artifact file.

        Raises:
            DepotError: If the download fails.
        """
        dest_path = dest_dir / artifact_filename(ident, target)
        if dest_path.is_file():
            logger.debug("Using cached artifact %s", dest_path)
            return dest_path

        url = f"{self.base_url}/v1/depot/pkgs/{'/'.join(ident.parts())}/download"
        part_path = dest_path.with_name(
            f"{dest_path.name}.{uuid.uuid4().hex[:8]}.part"
        )
        logger.info("Downloading %s to %s", ident, dest_path)

        try:
            dest_dir.mkdir(parents=True, exist_ok=True)
            with self._client.stream(
                "GET",
                url,
                params={"target": target},
                timeout=self._timeout(self.download_timeout),
            ) as response:
                response.raise_for_status()
                total_bytes = 0
                with part_path.open("wb") as f:
                    for chunk in response.iter_bytes(chunk_size):
                        f.write(chunk)
                        total_bytes += len(chunk)
            part_path.replace(dest_path)
        except httpx.HTTPStatusError as e:
            part_path.unlink(missing_ok=True)
            raise DepotError(
                f"HTTP error downloading {ident}: {e.response.status_code} "
                f"{e.response.reason_phrase}",
                code="not_found" if e.response.status_code == 404 else "http_error",
                status_code=e.response.status_code,
            ) from e
        except httpx.TimeoutException as e:
            part_path.unlink(missing_ok=True)
            raise DepotError(f"Timeout downloading {ident}", code="timeout") from e
        except httpx.RequestError as e:
            part_path.unlink(missing_ok=True)
            raise DepotError(
                f"Network error downloading {ident}: {e}",
                code="network_error",
            ) from e
        except OSError as e:
            part_path.unlink(missing_ok=True)
            raise DepotError(
                f"Failed to write artifact {dest_path}: {e}",
                code="write_error",
            ) from e

        logger.info("Downloaded %s (%d bytes)", dest_path.name, total_bytes)
        return dest_path

    def _get_json(self, path: str, params: dict[str, str]) -> dict[str, Any]:
        url = f"{self.base_url}{path}"
        logger.debug("GET %s %s", url, params)
        try:
            response = self._client.get(
                url, params=params, timeout=self._timeout(self.timeout)
            )
            response.raise_for_status()
            return response.json()
        except httpx.HTTPStatusError as e:
            status = e.response.status_code
            raise DepotError(
                f"HTTP error fetching {url}: {status} {e.response.reason_phrase}",
                code="not_found" if status == 404 else "http_error",
                status_code=status,
            ) from e
        except httpx.TimeoutException as e:
            raise DepotError(f"Timeout fetching {url}", code="timeout") from e
        except httpx.RequestError as e:
            raise DepotError(
                f"Network error fetching {url}: {e}",
                code="network_error",
            ) from e
        except ValueError as e:
            raise DepotError(
                f"Invalid JSON from {url}: {e}",
                code="malformed_response",
            ) from e


__all__ = [
    "DEFAULT_BLDR_URL",
    "DepotClient",
    "PackageInfo",
    "artifact_filename",
    "parse_package_info",
]
