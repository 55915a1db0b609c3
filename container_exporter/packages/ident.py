"""Package identifiers.

A package identifier has the form ``origin/name[/version[/release]]``.
Identifiers with all four parts are fully qualified and name exactly one
installable artifact.
"""

from __future__ import annotations

import re
from typing import Any

from pydantic import BaseModel, ConfigDict, field_validator

# Origins and names follow the depot's naming rules
NAME_PATTERN = re.compile(r"^[A-Za-z0-9_\-]+$")
# Versions and releases are free-form but must not contain separators
SEGMENT_PATTERN = re.compile(r"^[^/\s]+$")


class PackageIdent(BaseModel):
    """A possibly partial package identifier.

    Attributes:
        origin: Package origin (publisher namespace).
        name: Package name.
        version: Package version, if pinned.
        release: Package release timestamp, if pinned.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    origin: str
    name: str
    version: str | None = None
    release: str | None = None

    @field_validator("origin", "name")
    @classmethod
    def validate_name(cls, v: str) -> str:
        """Validate origin and name characters."""
        if not NAME_PATTERN.match(v):
            raise ValueError(f"invalid characters in '{v}'")
        return v

    @field_validator("version", "release")
    @classmethod
    def validate_segment(cls, v: str | None) -> str | None:
        """Validate optional version and release segments."""
        if v is not None and not SEGMENT_PATTERN.match(v):
            raise ValueError(f"invalid identifier segment '{v}'")
        return v

    @classmethod
    def parse(cls, value: str, default_origin: str | None = None) -> PackageIdent:
        """Parse an identifier string.

        Args:
            value: Identifier such as ``core/redis`` or ``core/redis/7.0.4/20220809``.
            default_origin: Origin used when ``value`` is a bare name.

        Returns:
            PackageIdent instance.

        Raises:
            ValueError: If the identifier is malformed.
        """
        parts = value.strip().split("/")
        if any(not p for p in parts) or len(parts) > 4:
            raise ValueError(f"malformed package identifier '{value}'")
        if len(parts) == 1:
            if not default_origin:
                raise ValueError(f"identifier '{value}' has no origin")
            parts = [default_origin, *parts]
        fields: dict[str, Any] = dict(
            zip(("origin", "name", "version", "release"), parts, strict=False)
        )
        return cls(**fields)

    @classmethod
    def from_depot(cls, data: dict[str, Any]) -> PackageIdent:
        """Build an identifier from a depot ``ident`` object."""
        return cls(
            origin=data["origin"],
            name=data["name"],
            version=data.get("version"),
            release=data.get("release"),
        )

    @property
    def fully_qualified(self) -> bool:
        """True when version and release are both pinned."""
        return self.version is not None and self.release is not None

    def parts(self) -> list[str]:
        """Return the non-empty identifier segments."""
        return [
            p for p in (self.origin, self.name, self.version, self.release) if p
        ]

    def pkg_path(self) -> str:
        """Return the relative install path of a fully qualified package."""
        if not self.fully_qualified:
            raise ValueError(f"'{self}' is not fully qualified")
        return "/".join(["hab", "pkgs", *self.parts()])

    def __str__(self) -> str:
        return "/".join(self.parts())


__all__ = ["PackageIdent"]
