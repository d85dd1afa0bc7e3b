"""Core modules for the receiver - centralized definitions and utilities."""

from upcloud_receiver.core.errors import (
    APIError,
    ConfigurationError,
    ExitCode,
    PayloadDecodeError,
    ReceiverError,
    ReceiverStateError,
    ScrapeError,
    SecretResolutionError,
    SnapshotConversionError,
    format_error_message,
    main_with_error_handling,
)

__all__ = [
    "ExitCode",
    "ReceiverError",
    "ConfigurationError",
    "SecretResolutionError",
    "APIError",
    "PayloadDecodeError",
    "SnapshotConversionError",
    "ReceiverStateError",
    "ScrapeError",
    "main_with_error_handling",
    "format_error_message",
]
