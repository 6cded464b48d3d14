"""
Error types for the daemux updater.

This module defines the UpdaterError base class and subclasses for the
failure categories of the update pipeline. Callers branch on ``error_code``
(or the subclass) rather than parsing messages.

Validation failures (bad manifest, checksum mismatch, missing artifact) and
filesystem failures during install or activation always propagate. Purely
diagnostic failures are logged by the component that hits them and never
surface as one of these errors.
"""

from __future__ import annotations

from typing import Any


class UpdaterError(Exception):
    """
    Base exception class for updater errors.

    Attributes:
        error_code: Internal error code string (e.g., "invalid_manifest",
            "checksum_mismatch", "unavailable", "failed_precondition").
        message: Human-readable error message.
        details: Optional structured details (e.g., version, path, URL).

    Example:
        >>> raise UpdaterError(
        ...     error_code="unavailable",
        ...     message="Manifest fetch failed: 503 Service Unavailable",
        ...     details={"url": "https://daemux.ai/manifest.json"},
        ... )
    """

    def __init__(
        self,
        error_code: str,
        message: str,
        details: dict[str, Any] | None = None,
    ) -> None:
        """
        Initialize an UpdaterError.

        Args:
            error_code: Internal error code string identifying the error category.
            message: Human-readable error message.
            details: Optional dictionary with structured error details.
        """
        super().__init__(message)
        self.error_code = error_code
        self.message = message
        self.details = details or {}

    def __repr__(self) -> str:
        """Return a detailed string representation."""
        return (
            f"{self.__class__.__name__}("
            f"error_code={self.error_code!r}, "
            f"message={self.message!r}, "
            f"details={self.details!r})"
        )

    def to_dict(self) -> dict[str, Any]:
        """
        Convert the error to a dictionary for serialization.

        Returns:
            Dictionary with error_code, message, and details.
        """
        return {
            "error_code": self.error_code,
            "message": self.message,
            "details": self.details,
        }


class InvalidArgumentError(UpdaterError):
    """Error raised when an operation receives invalid input arguments."""

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        """Initialize an InvalidArgumentError."""
        super().__init__(
            error_code="invalid_argument", message=message, details=details
        )


class ManifestValidationError(UpdaterError):
    """
    Error raised when a release manifest is not valid JSON or violates the schema.

    Any single violation (bad URL, malformed sha256, non-positive size, missing
    field) rejects the whole manifest.
    """

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        """Initialize a ManifestValidationError."""
        super().__init__(
            error_code="invalid_manifest", message=message, details=details
        )


class ChecksumMismatchError(UpdaterError):
    """Error raised when a downloaded artifact does not hash to the manifest's sha256."""

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        """Initialize a ChecksumMismatchError."""
        super().__init__(
            error_code="checksum_mismatch", message=message, details=details
        )


class ArtifactNotFoundError(UpdaterError):
    """Error raised when the manifest has no artifact for this platform."""

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        """Initialize an ArtifactNotFoundError."""
        super().__init__(
            error_code="artifact_not_found", message=message, details=details
        )


class UnsupportedPlatformError(UpdaterError):
    """Error raised when the OS family or architecture has no release artifacts."""

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        """Initialize an UnsupportedPlatformError."""
        super().__init__(
            error_code="unsupported_platform", message=message, details=details
        )


class UnavailableError(UpdaterError):
    """
    Error raised when a remote resource cannot be fetched.

    Covers transport failures, non-2xx responses and empty response bodies.
    """

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        """Initialize an UnavailableError."""
        super().__init__(error_code="unavailable", message=message, details=details)


class DeadlineExceededError(UnavailableError):
    """Error raised when a network call is aborted by its timeout."""

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        """Initialize a DeadlineExceededError."""
        super().__init__(message=message, details=details)
        self.error_code = "deadline_exceeded"


class FailedPreconditionError(UpdaterError):
    """
    Error raised when a precondition for the operation is not met.

    Used when a version binary is missing, a requested version is not in the
    manifest, or another operation is already in flight.
    """

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        """Initialize a FailedPreconditionError."""
        super().__init__(
            error_code="failed_precondition", message=message, details=details
        )


class InstallError(UpdaterError):
    """Error raised when extracting an artifact into a version directory fails."""

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        """Initialize an InstallError."""
        super().__init__(
            error_code="install_failed", message=message, details=details
        )


class ActivationError(UpdaterError):
    """Error raised when the stable symlink cannot be switched to a new target."""

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        """Initialize an ActivationError."""
        super().__init__(
            error_code="activation_failed", message=message, details=details
        )


class InternalError(UpdaterError):
    """Error raised for unexpected internal errors."""

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        """Initialize an InternalError."""
        super().__init__(error_code="internal", message=message, details=details)
