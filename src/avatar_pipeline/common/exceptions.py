"""
Exception types and error classification for avatar_pipeline.

Provides:
- ErrorCategory enum for fallback decisions
- Typed exception hierarchy for fetch errors
- Error classification utilities
"""

from enum import Enum
from typing import Optional


class ErrorCategory(Enum):
    """
    Classification of error types for handling decisions.

    Categories:
        TRANSIENT: Connection-level failures that authorize one attempt
                   through the secondary transport (DNS, refused, reset,
                   certificate rejected, no HTTP status at all)
        PERMANENT: Failures that will not be retried (HTTP 4xx/5xx,
                   timeouts, decode errors, configuration issues)
        UNKNOWN: Unclassified errors, treated as permanent
    """

    TRANSIENT = "transient"
    PERMANENT = "permanent"
    UNKNOWN = "unknown"


class AvatarFetchError(Exception):
    """
    Base exception for all avatar fetch errors.

    Attributes:
        message: Human-readable error description
        category: Error classification for fallback decisions
        cause: Original exception if wrapping
        context: Additional context dict for debugging
    """

    category: ErrorCategory = ErrorCategory.UNKNOWN

    def __init__(
        self,
        message: str,
        cause: Optional[Exception] = None,
        context: Optional[dict] = None,
    ):
        self.message = message
        self.cause = cause
        self.context = context or {}
        super().__init__(message)

    @property
    def is_retryable(self) -> bool:
        """Whether this error authorizes the fallback transport."""
        return self.category == ErrorCategory.TRANSIENT

    def __str__(self) -> str:
        parts = [self.message]
        if self.cause:
            parts.append(f"Caused by: {self.cause}")
        return " | ".join(parts)


class ConfigurationError(AvatarFetchError):
    """Header derivation or URL parsing failed; request proceeds with defaults."""

    category = ErrorCategory.PERMANENT


# =============================================================================
# Transport Errors
# =============================================================================


class TransportError(AvatarFetchError):
    """Base class for transport-level failures."""

    def __init__(
        self,
        message: str,
        status_code: int = 0,
        cause: Optional[Exception] = None,
        context: Optional[dict] = None,
    ):
        super().__init__(message, cause, context)
        self.status_code = status_code


class RetryableTransportError(TransportError):
    """Connection-level failure or zero status; triggers one fallback attempt."""

    category = ErrorCategory.TRANSIENT


class TerminalTransportError(TransportError):
    """HTTP error status, timeout or other non-connection failure."""

    category = ErrorCategory.PERMANENT


class CertificateRejectedError(RetryableTransportError):
    """Trust evaluator refused the presented certificate."""

    def __init__(
        self,
        host: str,
        cause: Optional[Exception] = None,
    ):
        super().__init__(
            f"Certificate rejected for host '{host}'",
            cause=cause,
            context={"host": host},
        )
        self.host = host


# =============================================================================
# Decode Errors
# =============================================================================


class DecodeError(AvatarFetchError):
    """Payload was empty or could not be decoded as an image."""

    category = ErrorCategory.PERMANENT

    def __init__(
        self,
        reason: str,
        cause: Optional[Exception] = None,
        context: Optional[dict] = None,
    ):
        super().__init__(f"Image decode failed: {reason}", cause, context)
        self.reason = reason


# =============================================================================
# Error Classification Utilities
# =============================================================================


def classify_http_status(status_code: int) -> ErrorCategory:
    """
    Classify an HTTP response status into error category.

    A zero status means no HTTP exchange happened at all, which is a
    connection-level failure. Any real HTTP error status is terminal.

    Args:
        status_code: HTTP response status (0 when none was received)

    Returns:
        Appropriate ErrorCategory
    """
    if status_code == 0:
        return ErrorCategory.TRANSIENT

    if 200 <= status_code < 300:
        return ErrorCategory.UNKNOWN  # Not an error

    return ErrorCategory.PERMANENT


def classify_exception(exc: Exception) -> ErrorCategory:
    """
    Classify an exception raised by a transport into error category.

    Timeouts are checked before connection markers so a connect timeout
    stays terminal.

    Args:
        exc: Exception to classify

    Returns:
        Appropriate ErrorCategory
    """
    # Already classified
    if isinstance(exc, AvatarFetchError):
        return exc.category

    exc_type = type(exc).__name__.lower()
    exc_str = str(exc).lower()

    if "timeout" in exc_type or "timed out" in exc_str:
        return ErrorCategory.PERMANENT

    connection_markers = (
        "connectionerror",
        "connecterror",
        "connectorerror",
        "connection refused",
        "connection reset",
        "connection aborted",
        "no route to host",
        "network unreachable",
        "name resolution",
        "name or service not known",
        "nodename nor servname",
        "dns",
        "socket",
        "ssl",
        "certificate",
        "broken pipe",
        "disconnected",
    )
    if any(m in exc_type or m in exc_str for m in connection_markers):
        return ErrorCategory.TRANSIENT

    return ErrorCategory.UNKNOWN


def wrap_exception(
    exc: Exception,
    context: Optional[dict] = None,
) -> TransportError:
    """
    Wrap a transport exception in the matching TransportError subclass.

    Args:
        exc: Exception to wrap
        context: Additional context to include

    Returns:
        RetryableTransportError for connection-level failures,
        TerminalTransportError otherwise
    """
    if isinstance(exc, TransportError):
        if context:
            exc.context.update(context)
        return exc

    if classify_exception(exc) == ErrorCategory.TRANSIENT:
        return RetryableTransportError(str(exc), cause=exc, context=context)
    return TerminalTransportError(str(exc), cause=exc, context=context)
