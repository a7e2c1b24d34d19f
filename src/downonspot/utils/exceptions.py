"""Custom exception hierarchy for DownOnSpot.

Every error raised by the application derives from DownOnSpotError so that
callers can handle the whole family in one place. Errors carry the context
needed to render a useful message (track ids, endpoints, reasons) as
attributes, and are chained with ``raise ... from`` where they wrap a
lower-level failure.
"""

from typing import Any

# =============================================================================
# Base Exception Classes
# =============================================================================


class DownOnSpotError(Exception):
    """Base exception for all DownOnSpot errors.

    Attributes:
        message: Human-readable error description.
    """

    def __init__(self, message: str = "An error occurred in DownOnSpot") -> None:
        """Initializes the base exception.

        Args:
            message: Human-readable error description.
        """
        self.message = message
        super().__init__(message)


# =============================================================================
# Input/Validation Errors
# =============================================================================


class ValidationError(DownOnSpotError):
    """Base exception for validation-related errors."""

    pass


class InvalidUri(ValidationError):
    """Exception raised when an identifier cannot be parsed.

    Attributes:
        uri: The rejected identifier.
        reason: Why the identifier was rejected.
    """

    def __init__(self, uri: str, reason: str = "Unsupported URI or URL") -> None:
        """Initializes the invalid URI error.

        Args:
            uri: The rejected identifier.
            reason: Why the identifier was rejected.
        """
        self.uri = uri
        self.reason = reason
        super().__init__(f"Invalid URI '{uri}': {reason}")


# =============================================================================
# Job Store Errors
# =============================================================================


class DuplicateJob(DownOnSpotError):
    """Exception raised when a track is already tracked by the job store.

    Attributes:
        track_id: ID of the duplicated track.
    """

    def __init__(self, track_id: str) -> None:
        """Initializes the duplicate job error.

        Args:
            track_id: ID of the duplicated track.
        """
        self.track_id = track_id
        super().__init__(f"Track {track_id} is already in the download queue")


class InvalidTransition(DownOnSpotError):
    """Exception raised when a job state change breaks the state machine.

    This signals a programming error in a job owner, not a user-facing
    condition.

    Attributes:
        track_id: ID of the job.
        current: Name of the current state.
        requested: Name of the requested state.
    """

    def __init__(self, track_id: str, current: str, requested: str) -> None:
        """Initializes the invalid transition error.

        Args:
            track_id: ID of the job.
            current: Name of the current state.
            requested: Name of the requested state.
        """
        self.track_id = track_id
        self.current = current
        self.requested = requested
        super().__init__(
            f"Job {track_id}: transition {current} -> {requested} is not allowed"
        )


# =============================================================================
# Configuration Errors
# =============================================================================


class ConfigurationError(DownOnSpotError):
    """Base exception for configuration-related errors."""

    pass


class SessionProviderNotFound(ConfigurationError):
    """Exception raised when the configured audio session plugin is missing.

    Attributes:
        provider: Name of the requested provider.
        available: Names of the installed providers.
    """

    def __init__(self, provider: str, available: list[str] | None = None) -> None:
        """Initializes the missing provider error.

        Args:
            provider: Name of the requested provider.
            available: Names of the installed providers.
        """
        self.provider = provider
        self.available = available or []
        msg = f'Audio session provider "{provider}" is not installed'
        if self.available:
            msg += f" (installed: {', '.join(self.available)})"
        super().__init__(msg)


# =============================================================================
# Remote Service Errors
# =============================================================================


class ServiceError(DownOnSpotError):
    """Base exception for failures talking to the remote catalog or session."""

    pass


class AuthenticationError(ServiceError):
    """Exception raised when logging in to the remote service fails."""

    def __init__(self, reason: str = "Invalid login details") -> None:
        """Initializes the authentication error.

        Args:
            reason: Reason for the failure.
        """
        self.reason = reason
        super().__init__(f"Authentication failed: {reason}")


class SessionExpiredError(ServiceError):
    """Exception raised when the audio session dropped and must be renewed."""

    def __init__(self) -> None:
        """Initializes the session expired error."""
        super().__init__("Session has expired, please re-authenticate")


class MetadataAPIError(ServiceError):
    """Exception raised when a metadata API call fails.

    Attributes:
        status: HTTP status code.
        error_message: Error message from the API.
        endpoint: The API endpoint that failed.
    """

    def __init__(self, status: int, error_message: str, endpoint: str) -> None:
        """Initializes the API error.

        Args:
            status: HTTP status code.
            error_message: Error message from the API.
            endpoint: The API endpoint that failed.
        """
        self.status = status
        self.error_message = error_message
        self.endpoint = endpoint
        super().__init__(f"Error {status}: {error_message} (endpoint: {endpoint})")


class RateLimitError(ServiceError):
    """Exception raised when the API rate limit is exceeded.

    Attributes:
        retry_after: Seconds to wait before retrying, if provided by the API.
    """

    def __init__(self, retry_after: float | None = None) -> None:
        """Initializes the rate limit error.

        Args:
            retry_after: Seconds to wait before retrying.
        """
        self.retry_after = retry_after
        msg = "Rate limit exceeded"
        if retry_after:
            msg += f", retry after {retry_after:g} seconds"
        super().__init__(msg)


class TrackUnavailableError(ServiceError):
    """Exception raised when a track cannot be streamed.

    Attributes:
        track_id: ID of the unavailable track.
        reason: Reason why the track is unavailable.
    """

    def __init__(
        self, track_id: str, reason: str = "Track is unavailable"
    ) -> None:
        """Initializes the unavailable track error.

        Args:
            track_id: ID of the unavailable track.
            reason: Reason why the track is unavailable.
        """
        self.track_id = track_id
        self.reason = reason
        super().__init__(f"Track {track_id}: {reason}")


class StreamError(ServiceError):
    """Exception raised when an audio stream fails mid-transfer.

    Attributes:
        track_id: ID of the streamed track.
        reason: Reason for the failure.
    """

    def __init__(self, track_id: str, reason: str = "Stream interrupted") -> None:
        """Initializes the stream error.

        Args:
            track_id: ID of the streamed track.
            reason: Reason for the failure.
        """
        self.track_id = track_id
        self.reason = reason
        super().__init__(f"Streaming track {track_id} failed: {reason}")


# =============================================================================
# File/Conversion Errors
# =============================================================================


class FileOperationError(DownOnSpotError):
    """Base exception for post-processing errors."""

    pass


class ConversionError(FileOperationError):
    """Exception raised when audio conversion fails.

    Attributes:
        source_format: Source format name.
        target_format: Target format name.
        reason: Reason for the failure.
    """

    def __init__(
        self,
        source_format: str,
        target_format: str,
        reason: str = "Conversion failed",
    ) -> None:
        """Initializes the conversion error.

        Args:
            source_format: Source format name.
            target_format: Target format name.
            reason: Reason for the failure.
        """
        self.source_format = source_format
        self.target_format = target_format
        self.reason = reason
        super().__init__(
            f"Failed to convert {source_format} to {target_format}: {reason}"
        )


class TagSavingFailure(FileOperationError):
    """Exception raised when saving tags to a file fails.

    Attributes:
        file_path: Path to the file that failed.
        reason: Reason for the failure.
    """

    def __init__(
        self,
        file_path: str | None = None,
        reason: str = "Failed to save tags",
    ) -> None:
        """Initializes the tag saving failure error.

        Args:
            file_path: Path to the file that failed.
            reason: Reason for the failure.
        """
        self.file_path = file_path
        self.reason = reason
        msg = reason
        if file_path:
            msg = f"Failed to save tags to '{file_path}': {reason}"
        super().__init__(msg)


# =============================================================================
# Utility Functions
# =============================================================================


def describe_error(error: BaseException) -> str:
    """Returns a display message for an arbitrary exception.

    DownOnSpot errors carry their own message; foreign exceptions are
    prefixed with their type name when ``str()`` is empty or uninformative.

    Args:
        error: The exception to describe.

    Returns:
        A non-empty message string.
    """
    if isinstance(error, DownOnSpotError):
        return error.message
    text = str(error)
    name = type(error).__name__
    return f"{name}: {text}" if text else name


def error_context(error: BaseException) -> dict[str, Any]:
    """Collects public attributes of an exception for debug logging.

    Args:
        error: The exception to inspect.

    Returns:
        Mapping of attribute names to values, excluding private attributes.
    """
    return {k: v for k, v in vars(error).items() if not k.startswith("_")}
