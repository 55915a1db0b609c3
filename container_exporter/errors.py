"""Error taxonomy for the export pipeline.

Every error carries a stable ``code`` for programmatic handling. The
orchestrator stamps ``stage`` (and ``image`` once one was built) before
re-raising, so callers can report which step failed and what was left
behind.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from container_exporter.builds.image import ContainerImage
    from container_exporter.types import ExportStage


class ExportError(Exception):
    """Base error for export pipeline operations."""

    def __init__(self, message: str, code: str = "export_error") -> None:
        """Initialize ExportError.

        Args:
            message: Error description.
            code: Error code for structured error handling.
        """
        super().__init__(message)
        self.code = code
        self.stage: ExportStage | None = None
        self.image: ContainerImage | None = None


class DepotError(ExportError):
    """Raised when a depot request fails."""

    def __init__(
        self,
        message: str,
        code: str = "depot_error",
        status_code: int | None = None,
    ) -> None:
        """Initialize DepotError.

        Args:
            message: Error description.
            code: Error code for structured error handling.
            status_code: HTTP status returned by the depot, if any.
        """
        super().__init__(message, code)
        self.status_code = status_code


class HartError(ExportError):
    """Raised when a package artifact cannot be read."""

    def __init__(self, message: str, code: str = "hart_error") -> None:
        """Initialize HartError.

        Args:
            message: Error description.
            code: Error code for structured error handling.
        """
        super().__init__(message, code)


class ResolutionError(ExportError):
    """Raised when a component reference cannot be resolved."""

    def __init__(
        self,
        reference: str,
        reason: str,
        code: str = "resolution_error",
    ) -> None:
        """Initialize ResolutionError.

        Args:
            reference: Component reference that failed to resolve.
            reason: Why resolution failed.
            code: Error code for structured error handling.
        """
        super().__init__(f"Cannot resolve '{reference}': {reason}", code)
        self.reference = reference
        self.reason = reason


class BuildRootError(ExportError):
    """Raised when the build workspace cannot be populated."""

    def __init__(self, message: str, code: str = "build_root_error") -> None:
        """Initialize BuildRootError.

        Args:
            message: Error description.
            code: Error code for structured error handling.
        """
        super().__init__(message, code)


class EngineError(ExportError):
    """Raised when a container engine command fails."""

    def __init__(
        self,
        message: str,
        code: str = "engine_error",
        exit_code: int | None = None,
        output: str = "",
    ) -> None:
        """Initialize EngineError.

        Args:
            message: Error description.
            code: Error code for structured error handling.
            exit_code: Exit code of the engine command, if it ran.
            output: Combined stdout and stderr of the command.
        """
        super().__init__(message, code)
        self.exit_code = exit_code
        self.output = output


class EngineBuildError(EngineError):
    """Raised when the engine fails to build an image.

    ``output`` holds the tool's diagnostic output verbatim.
    """

    def __init__(
        self,
        message: str,
        exit_code: int | None = None,
        output: str = "",
    ) -> None:
        """Initialize EngineBuildError.

        Args:
            message: Error description.
            exit_code: Exit code of the build command, if it ran.
            output: Diagnostic output of the build.
        """
        super().__init__(message, "engine_build_error", exit_code, output)


class CredentialError(ExportError):
    """Raised when registry credentials cannot be resolved."""

    def __init__(self, message: str, code: str = "credential_error") -> None:
        """Initialize CredentialError.

        Args:
            message: Error description.
            code: Error code for structured error handling.
        """
        super().__init__(message, code)


class PushError(ExportError):
    """Raised when uploading a tag fails.

    Tags uploaded before the failure stay published; ``pushed`` lists them.
    """

    def __init__(
        self,
        message: str,
        pushed: list[str] | None = None,
        code: str = "push_error",
    ) -> None:
        """Initialize PushError.

        Args:
            message: Error description.
            pushed: References uploaded before the failure.
            code: Error code for structured error handling.
        """
        super().__init__(message, code)
        self.pushed = list(pushed or [])


class RemoveError(ExportError):
    """Raised when local image references cannot be removed."""

    def __init__(
        self,
        message: str,
        removed: list[str] | None = None,
        code: str = "remove_error",
    ) -> None:
        """Initialize RemoveError.

        Args:
            message: Error description.
            removed: References removed before the failure.
            code: Error code for structured error handling.
        """
        super().__init__(message, code)
        self.removed = list(removed or [])


class CleanupError(ExportError):
    """Raised when a build workspace cannot be destroyed. Never fatal."""

    def __init__(self, message: str, code: str = "cleanup_error") -> None:
        """Initialize CleanupError.

        Args:
            message: Error description.
            code: Error code for structured error handling.
        """
        super().__init__(message, code)


__all__ = [
    "BuildRootError",
    "CleanupError",
    "CredentialError",
    "DepotError",
    "EngineBuildError",
    "EngineError",
    "ExportError",
    "HartError",
    "PushError",
    "RemoveError",
    "ResolutionError",
]
