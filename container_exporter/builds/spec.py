"""Build specification and resolution.

This module handles:
- Describing what goes into an image (component references, base image)
- Resolving every reference to a fully qualified, installable package
- Expanding transitive dependencies and base packages

Resolution is all-or-nothing: the first unresolvable reference aborts it.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING, Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

from container_exporter.errors import DepotError, HartError, ResolutionError
from container_exporter.packages import hart
from container_exporter.packages.ident import PackageIdent
from container_exporter.types import ArtifactOrigin

if TYPE_CHECKING:
    from container_exporter.config import Settings
    from container_exporter.packages.depot import DepotClient, PackageInfo

logger = logging.getLogger(__name__)

HART_SUFFIX = ".hart"


def is_artifact_path(reference: str) -> bool:
    """Check whether a reference names a local .hart artifact."""
    return reference.lower().endswith(HART_SUFFIX)


@dataclass(frozen=True)
class ResolvedPackage:
    """A package ready to be installed.

    Attributes:
        ident: Fully qualified identifier.
        source: Where the artifact comes from.
        path: Local artifact path when ``source`` is local.
        primary: Whether the caller asked for this package directly.
    """

    ident: PackageIdent
    source: ArtifactOrigin = ArtifactOrigin.DEPOT
    path: Path | None = None
    primary: bool = False


@dataclass
class ResolvedBuildSpec:
    """A fully resolved build specification.

    Attributes:
        spec: The build specification this was resolved from.
        packages: Install closure in install order, without duplicates.
    """

    spec: BuildSpec
    packages: list[ResolvedPackage] = field(default_factory=list)

    @property
    def primaries(self) -> list[ResolvedPackage]:
        """Packages the caller asked for, in request order."""
        return [p for p in self.packages if p.primary]

    @property
    def primary(self) -> ResolvedPackage:
        """The primary component, which names the image."""
        return self.primaries[0]

    @property
    def idents(self) -> list[str]:
        """Fully qualified identifiers of the install closure."""
        return [str(p.ident) for p in self.packages]

    def find(self, name: str) -> ResolvedPackage | None:
        """Find an installed package by name."""
        return next((p for p in self.packages if p.ident.name == name), None)


class BuildSpec(BaseModel):
    """What to include in an image.

    Attributes:
        references: Package identifiers or paths to local .hart artifacts.
        base_image: Image the root filesystem is layered onto.
        default_origin: Origin used for references given as a bare name.
        channel: Depot channel used to resolve partial identifiers.
        target: Package target platform.
        base_packages: Packages installed into every image.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    references: tuple[str, ...] = Field(min_length=1)
    base_image: str = "scratch"
    default_origin: str = "core"
    channel: str = "stable"
    target: str = "x86_64-linux"
    base_packages: tuple[str, ...] = ("core/busybox-static", "core/cacerts")

    @field_validator("references")
    @classmethod
    def validate_references(cls, v: tuple[str, ...]) -> tuple[str, ...]:
        """Reject blank references."""
        stripped = tuple(r.strip() for r in v)
        if any(not r for r in stripped):
            raise ValueError("references must not be blank")
        return stripped

    @classmethod
    def from_settings(
        cls,
        references: list[str] | tuple[str, ...],
        settings: Settings,
        **overrides: Any,
    ) -> BuildSpec:
        """Create a build specification using settings as defaults.

        Args:
            references: Package identifiers or artifact paths.
            settings: Settings providing depot and image defaults.
            **overrides: Field values taking precedence over settings.

        Returns:
            BuildSpec instance.
        """
        values: dict[str, Any] = {
            "references": tuple(references),
            "base_image": settings.base_image,
            "default_origin": settings.default_origin,
            "channel": settings.channel,
            "target": settings.pkg_target,
            "base_packages": tuple(settings.base_packages),
        }
        values.update(overrides)
        return cls(**values)

    def resolve(self, depot: DepotClient) -> ResolvedBuildSpec:
        """Resolve every reference to a fully qualified package.

        Args:
            depot: Depot client used for identifier lookups.

        Returns:
            ResolvedBuildSpec with primaries, dependencies and base packages.

        Raises:
            ResolutionError: If any reference cannot be resolved.
        """
        closure = _Closure()

        for reference in self.references:
            if is_artifact_path(reference):
                metadata = _read_local_artifact(reference)
                closure.add(
                    ResolvedPackage(
                        ident=metadata.ident,
                        source=ArtifactOrigin.LOCAL,
                        path=Path(reference).resolve(),
                        primary=True,
                    )
                )
                closure.add_deps(metadata.tdeps)
            else:
                info = self._lookup(depot, reference)
                closure.add(ResolvedPackage(ident=info.ident, primary=True))
                closure.add_deps(info.tdeps)

        for reference in self.base_packages:
            info = self._lookup(depot, reference)
            closure.add(ResolvedPackage(ident=info.ident))
            closure.add_deps(info.tdeps)

        resolved = ResolvedBuildSpec(spec=self, packages=closure.packages)
        logger.info(
            "Resolved %d reference(s) to %d package(s)",
            len(self.references),
            len(resolved.packages),
        )
        return resolved

    def _lookup(self, depot: DepotClient, reference: str) -> PackageInfo:
        try:
            ident = PackageIdent.parse(reference, default_origin=self.default_origin)
        except ValueError as e:
            raise ResolutionError(reference, str(e), code="malformed_reference") from e

        try:
            if ident.fully_qualified:
                info = depot.show(ident, self.target)
            else:
                info = depot.latest(ident, self.channel, self.target)
        except DepotError as e:
            code = "unknown_package" if e.code == "not_found" else "depot_unavailable"
            raise ResolutionError(reference, str(e), code=code) from e

        logger.debug("Resolved %s to %s", reference, info.ident)
        return info


def _read_local_artifact(reference: str) -> hart.HartMetadata:
    path = Path(reference)
    if not path.is_file():
        raise ResolutionError(
            reference, "artifact file not found", code="artifact_not_found"
        )
    try:
        return hart.read_metadata(path)
    except HartError as e:
        raise ResolutionError(reference, str(e), code="malformed_artifact") from e


class _Closure:
    """Ordered, de-duplicated install closure."""

    def __init__(self) -> None:
        self.packages: list[ResolvedPackage] = []
        self._index: dict[PackageIdent, int] = {}

    def add(self, package: ResolvedPackage) -> None:
        position = self._index.get(package.ident)
        if position is None:
            self._index[package.ident] = len(self.packages)
            self.packages.append(package)
            return

        # Merge: a local artifact wins over the depot copy, primary is sticky
        existing = self.packages[position]
        local = package if package.source == ArtifactOrigin.LOCAL else existing
        self.packages[position] = ResolvedPackage(
            ident=existing.ident,
            source=local.source,
            path=local.path,
            primary=existing.primary or package.primary,
        )

    def add_deps(self, deps: list[PackageIdent]) -> None:
        for dep in deps:
            self.add(ResolvedPackage(ident=dep))


__all__ = [
    "BuildSpec",
    "ResolvedBuildSpec",
    "ResolvedPackage",
    "is_artifact_path",
]
