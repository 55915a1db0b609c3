"""End-to-end export pipeline.

This module provides the high-level export API:
- export(): resolve, assemble, build, clean up, then optionally save,
  publish and remove the image
- export_many(): run independent exports concurrently

Stages run strictly in order. The build workspace is destroyed right after
the build, before any publishing, and on every failure once it exists.
Fatal errors are reported, stamped with the stage they occurred in and
re-raised; nothing already built or pushed is rolled back.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING

from container_exporter.builds.engine import Engine, get_engine
from container_exporter.builds.rootfs import RootfsAssembler
from container_exporter.config import get_settings
from container_exporter.errors import EngineError, ExportError
from container_exporter.packages.depot import DepotClient
from container_exporter.registry.credentials import resolve_credential
from container_exporter.reporting import LoggingReporter
from container_exporter.types import EngineKind, ExportStage

if TYPE_CHECKING:
    from container_exporter.builds.image import ContainerImage
    from container_exporter.builds.naming import NamingPolicy
    from container_exporter.builds.spec import BuildSpec
    from container_exporter.config import Settings
    from container_exporter.errors import CleanupError
    from container_exporter.registry.credentials import RegistryCredential
    from container_exporter.reporting import Reporter
    from container_exporter.types import RegistryType

logger = logging.getLogger(__name__)

CredentialResolverFn = Callable[
    ["RegistryType", str, str, "Settings | None"], "RegistryCredential"
]


@dataclass
class PublishRequest:
    """Registry login for publishing.

    Attributes:
        username: Registry username or AWS access key ID.
        password: Registry password or AWS secret access key.
    """

    username: str
    password: str = field(repr=False)


@dataclass
class ExportRequest:
    """One export in a batch."""

    spec: BuildSpec
    naming: NamingPolicy
    engine: Engine | EngineKind | str | None = None
    memory: str | None = None
    publish: PublishRequest | None = None
    remove: bool = False
    save_tarball: bool = False
    results_dir: Path | None = None


@dataclass
class ExportResult:
    """Outcome of a successful export.

    Attributes:
        image: The built image.
        stage: Final stage reached.
        resolved: Fully qualified identifiers installed in the image.
        pushed: References uploaded to the registry.
        removed: Local references removed.
        tarball: Exported tarball, if requested.
        report_path: Build report, if written.
        warnings: Non-fatal problems.
        cleanup_error: Workspace destruction failure, if any.
    """

    image: ContainerImage
    stage: ExportStage = ExportStage.DONE
    resolved: list[str] = field(default_factory=list)
    pushed: list[str] = field(default_factory=list)
    removed: list[str] = field(default_factory=list)
    tarball: Path | None = None
    report_path: Path | None = None
    warnings: list[str] = field(default_factory=list)
    cleanup_error: CleanupError | None = None


class ExportOrchestrator:
    """Sequences the export pipeline.

    Args:
        settings: Settings (loaded from the environment if None).
        depot: Depot client (created from settings if None).
        reporter: Lifecycle reporter (logging if None).
        exporter_version: Version recorded in image labels (from settings
            if None).
        credential_resolver: Callable resolving registry credentials.
    """

    def __init__(
        self,
        settings: Settings | None = None,
        depot: DepotClient | None = None,
        reporter: Reporter | None = None,
        exporter_version: str | None = None,
        credential_resolver: CredentialResolverFn | None = None,
    ) -> None:
        self.settings = settings or get_settings()
        self._owns_depot = depot is None
        self.depot = depot or DepotClient(
            self.settings.bldr_url,
            timeout=self.settings.depot_timeout,
            download_timeout=self.settings.download_timeout,
        )
        self.reporter: Reporter = reporter or LoggingReporter()
        self.exporter_version = exporter_version or self.settings.exporter_version
        self.credential_resolver = credential_resolver or resolve_credential
        self.assembler = RootfsAssembler(
            self.depot,
            self.settings.cache_dir,
            tmp_dir=self.settings.tmp_dir,
            exporter_version=self.exporter_version,
        )

    def close(self) -> None:
        """Close the depot client if this orchestrator created it."""
        if self._owns_depot:
            self.depot.close()

    def __enter__(self) -> ExportOrchestrator:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def export(
        self,
        spec: BuildSpec,
        naming: NamingPolicy,
        engine: Engine | EngineKind | str | None = None,
        *,
        memory: str | None = None,
        publish: PublishRequest | None = None,
        remove: bool = False,
        save_tarball: bool = False,
        results_dir: Path | None = None,
    ) -> ExportResult:
        """Build an image and optionally save, publish and remove it.

        Args:
            spec: What to include in the image.
            naming: Naming policy, including the target registry.
            engine: Engine or engine kind performing the build
                (``settings.engine`` if None).
            memory: Optional memory limit for the build.
            publish: Registry login; the image is pushed when given.
            remove: Remove local references after publishing.
            save_tarball: Export the image as a tarball into ``results_dir``.
            results_dir: Directory for the report and tarball (from settings
                if None).

        Returns:
            ExportResult describing the outcome.

        Raises:
            ExportError: On any fatal error; ``stage`` names the failed
                stage and ``image`` holds the built image, if any.
        """
        if engine is None:
            engine = self.settings.engine
        if not isinstance(engine, Engine):
            engine = get_engine(engine)
        results_dir = results_dir or self.settings.results_dir

        stage = ExportStage.RESOLVING
        image: ContainerImage | None = None
        try:
            self.reporter.begin(
                "Building a runnable container image with: "
                + ", ".join(spec.references)
            )
            resolved = spec.resolve(self.depot)

            stage = ExportStage.ASSEMBLING
            self.reporter.status(
                f"Assembling root filesystem with {len(resolved.packages)} package(s)"
            )
            build_root = self.assembler.materialize(resolved)

            stage = ExportStage.BUILDING
            with build_root:
                image = build_root.build_image(
                    naming, engine, memory=memory, results_dir=results_dir
                )
                stage = ExportStage.CLEANUP

            result = ExportResult(
                image=image,
                resolved=resolved.idents,
                report_path=build_root.report_path,
                warnings=list(build_root.warnings),
                cleanup_error=build_root.cleanup_error,
            )
            if build_root.cleanup_error is not None:
                result.warnings.append(str(build_root.cleanup_error))
            for warning in result.warnings:
                self.reporter.warn(warning)
            self.reporter.end(
                f"Container image '{image.name}' created with tags: "
                + ", ".join(image.tags)
            )

            if save_tarball:
                stage = ExportStage.SAVING
                result.tarball = image.save(results_dir)
                self.reporter.status(f"Saved image to {result.tarball}")

            if publish is not None:
                stage = ExportStage.PUBLISHING
                self.reporter.status(
                    f"Publishing to {naming.registry_url or 'the default registry'}"
                )
                credential = self.credential_resolver(
                    naming.registry_type,
                    publish.username,
                    publish.password,
                    self.settings,
                )
                result.pushed = image.push(credential, naming.registry_prefix())
                self.reporter.status(f"Pushed {len(result.pushed)} tag(s)")

            if remove:
                stage = ExportStage.REMOVING
                result.removed = image.remove()
                self.reporter.status(
                    f"Removed {len(result.removed)} local reference(s)"
                )
        except ExportError as e:
            e.stage = stage
            e.image = image
            message = f"Export failed while {stage.value}: {e}"
            if isinstance(e, EngineError) and e.output:
                message += "\n" + e.output.rstrip()
            self.reporter.fatal(message)
            raise

        result.stage = ExportStage.DONE
        return result

    def run(self, request: ExportRequest) -> ExportResult:
        """Run one export request."""
        return self.export(
            request.spec,
            request.naming,
            request.engine,
            memory=request.memory,
            publish=request.publish,
            remove=request.remove,
            save_tarball=request.save_tarball,
            results_dir=request.results_dir,
        )

    def export_many(
        self,
        requests: Iterable[ExportRequest],
        max_workers: int | None = None,
    ) -> list[ExportResult | ExportError]:
        """Run independent exports concurrently.

        Each export gets its own build workspace. Exports targeting the same
        image name and tag are not serialized.

        Args:
            requests: Export requests.
            max_workers: Worker count (``max_concurrent_exports`` if None).

        Returns:
            One ExportResult or ExportError per request, in request order.
        """
        workers = max_workers or self.settings.max_concurrent_exports
        outcomes: list[ExportResult | ExportError] = []
        with ThreadPoolExecutor(
            max_workers=workers, thread_name_prefix="export"
        ) as pool:
            futures = [pool.submit(self.run, request) for request in requests]
            for future in futures:
                try:
                    outcomes.append(future.result())
                except ExportError as e:
                    outcomes.append(e)
        return outcomes


__all__ = [
    "ExportOrchestrator",
    "ExportRequest",
    "ExportResult",
    "PublishRequest",
]
