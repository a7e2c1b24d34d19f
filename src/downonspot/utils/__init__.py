"""Utility modules for DownOnSpot.

This package provides utility functions, models, settings and exception
classes used throughout the DownOnSpot application.
"""

from .exceptions import (
    AuthenticationError,
    ConfigurationError,
    ConversionError,
    DownOnSpotError,
    DuplicateJob,
    FileOperationError,
    InvalidTransition,
    InvalidUri,
    MetadataAPIError,
    RateLimitError,
    ServiceError,
    SessionExpiredError,
    SessionProviderNotFound,
    StreamError,
    TagSavingFailure,
    TrackUnavailableError,
    ValidationError,
    describe_error,
    error_context,
)
from .tempfile_manager import TempFileManager

__all__ = [
    # Exceptions
    "DownOnSpotError",
    "ValidationError",
    "InvalidUri",
    "DuplicateJob",
    "InvalidTransition",
    "ConfigurationError",
    "SessionProviderNotFound",
    "ServiceError",
    "AuthenticationError",
    "SessionExpiredError",
    "MetadataAPIError",
    "RateLimitError",
    "TrackUnavailableError",
    "StreamError",
    "FileOperationError",
    "ConversionError",
    "TagSavingFailure",
    "describe_error",
    "error_context",
    # Temp file management
    "TempFileManager",
]
