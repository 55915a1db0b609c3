"""Image naming and tagging policy.

This module handles:
- Rendering the image name from a custom template or the primary package
- Computing the ordered, de-duplicated tag list
- Normalizing registry URLs into image reference prefixes

Everything here is pure computation: the same policy and identifier
always produce the same name and tags.
"""

from __future__ import annotations

import re

from pydantic import BaseModel, ConfigDict, field_validator

from container_exporter.packages.ident import PackageIdent
from container_exporter.types import RegistryType

DEFAULT_TAG = "latest"

PLACEHOLDER_PATTERN = re.compile(r"{{\s*([A-Za-z_]+)\s*}}")
PLACEHOLDERS = ("pkg_origin", "pkg_name", "pkg_version", "pkg_release")


def render_template(template: str, ident: PackageIdent) -> str:
    """Substitute ``{{pkg_*}}`` placeholders with identifier parts.

    Args:
        template: Template such as ``{{pkg_origin}}/app``.
        ident: Fully qualified identifier of the primary package.

    Returns:
        Rendered string.
    """
    values = {
        "pkg_origin": ident.origin,
        "pkg_name": ident.name,
        "pkg_version": ident.version or "",
        "pkg_release": ident.release or "",
    }
    return PLACEHOLDER_PATTERN.sub(lambda m: values[m.group(1)], template)


def registry_host(registry_url: str) -> str:
    """Strip scheme and trailing slashes from a registry URL.

    Args:
        registry_url: URL such as ``https://registry.example.com/``.

    Returns:
        Reference prefix such as ``registry.example.com``.
    """
    host = re.sub(r"^[A-Za-z][A-Za-z0-9+.\-]*://", "", registry_url.strip())
    return host.rstrip("/")


class NamingPolicy(BaseModel):
    """Which name and tags an image gets, and where it is published.

    Attributes:
        custom_image_name: Image name template; defaults to ``origin/name``.
        latest_tag: Tag the image ``latest``.
        version_tag: Tag the image with the package version.
        version_release_tag: Tag the image with ``version-release``.
        custom_tag: Extra tag template.
        registry_url: Registry the image is published to.
        registry_type: Kind of registry at ``registry_url``.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    custom_image_name: str | None = None
    latest_tag: bool = True
    version_tag: bool = True
    version_release_tag: bool = True
    custom_tag: str | None = None
    registry_url: str | None = None
    registry_type: RegistryType = RegistryType.DOCKER

    @field_validator("custom_image_name", "custom_tag")
    @classmethod
    def validate_template(cls, v: str | None) -> str | None:
        """Reject empty templates and unknown placeholders."""
        if v is None:
            return v
        v = v.strip()
        if not v:
            raise ValueError("template must not be blank")
        for match in PLACEHOLDER_PATTERN.finditer(v):
            if match.group(1) not in PLACEHOLDERS:
                raise ValueError(f"unknown placeholder '{match.group(0)}'")
        return v

    def image_name(self, ident: PackageIdent) -> str:
        """Compute the image name for the primary package."""
        if self.custom_image_name:
            name = render_template(self.custom_image_name, ident)
        else:
            name = f"{ident.origin}/{ident.name}"
        return name.lower()

    def tags(self, ident: PackageIdent) -> list[str]:
        """Compute the tag list for the primary package.

        Tags follow the precedence custom, version-release, version, latest.
        Duplicates are dropped keeping the first occurrence; when no tag is
        selected the list falls back to ``latest``.

        Args:
            ident: Fully qualified identifier of the primary package.

        Returns:
            Non-empty list of tags.
        """
        candidates: list[str] = []
        if self.custom_tag:
            candidates.append(render_template(self.custom_tag, ident))
        if self.version_release_tag and ident.version and ident.release:
            candidates.append(f"{ident.version}-{ident.release}")
        if self.version_tag and ident.version:
            candidates.append(ident.version)
        if self.latest_tag:
            candidates.append(DEFAULT_TAG)

        tags = list(dict.fromkeys(t for t in candidates if t))
        return tags or [DEFAULT_TAG]

    def registry_prefix(self) -> str | None:
        """Return the registry host used to qualify references, if any."""
        if not self.registry_url:
            return None
        return registry_host(self.registry_url) or None


__all__ = [
    "DEFAULT_TAG",
    "NamingPolicy",
    "registry_host",
    "render_template",
]
