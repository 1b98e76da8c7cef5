"""Tests for exception hierarchy and error classification."""

import asyncio

import pytest

from avatar_pipeline.common.exceptions import (
    AvatarFetchError,
    CertificateRejectedError,
    ConfigurationError,
    DecodeError,
    ErrorCategory,
    RetryableTransportError,
    TerminalTransportError,
    TransportError,
    classify_exception,
    classify_http_status,
    wrap_exception,
)


class TestExceptionHierarchy:
    def test_categories(self):
        assert ConfigurationError("x").category == ErrorCategory.PERMANENT
        assert RetryableTransportError("x").category == ErrorCategory.TRANSIENT
        assert TerminalTransportError("x").category == ErrorCategory.PERMANENT
        assert DecodeError("empty").category == ErrorCategory.PERMANENT
        assert AvatarFetchError("x").category == ErrorCategory.UNKNOWN

    def test_certificate_rejection_is_retryable(self):
        """A rejected certificate is a connection-level failure."""
        error = CertificateRejectedError("avatars.githubusercontent.com")

        assert isinstance(error, TransportError)
        assert error.is_retryable is True
        assert error.host == "avatars.githubusercontent.com"
        assert error.context == {"host": "avatars.githubusercontent.com"}
        assert "avatars.githubusercontent.com" in error.message

    def test_str_includes_cause(self):
        cause = OSError("boom")
        error = TerminalTransportError("request failed", status_code=500, cause=cause)

        assert str(error) == "request failed | Caused by: boom"
        assert error.status_code == 500

    def test_decode_error_message(self):
        error = DecodeError("malformed")

        assert error.reason == "malformed"
        assert error.message == "Image decode failed: malformed"


class TestClassifyHttpStatus:
    def test_zero_status_is_transient(self):
        assert classify_http_status(0) == ErrorCategory.TRANSIENT

    @pytest.mark.parametrize("status", [200, 204, 299])
    def test_success_is_not_an_error(self, status):
        assert classify_http_status(status) == ErrorCategory.UNKNOWN

    @pytest.mark.parametrize("status", [301, 400, 403, 404, 429, 500, 503])
    def test_http_errors_are_permanent(self, status):
        """No HTTP error status ever authorizes the fallback transport."""
        assert classify_http_status(status) == ErrorCategory.PERMANENT


class TestClassifyException:
    @pytest.mark.parametrize(
        "exc",
        [
            ConnectionRefusedError("Connection refused"),
            ConnectionResetError("Connection reset by peer"),
            OSError("[Errno -2] Name or service not known"),
            OSError("Temporary failure in name resolution"),
            OSError("[SSL: CERTIFICATE_VERIFY_FAILED] certificate verify failed"),
            BrokenPipeError("Broken pipe"),
        ],
    )
    def test_connection_errors_are_transient(self, exc):
        assert classify_exception(exc) == ErrorCategory.TRANSIENT

    @pytest.mark.parametrize(
        "exc",
        [
            asyncio.TimeoutError(),
            TimeoutError("connect timed out"),
            OSError("socket timed out"),
        ],
    )
    def test_timeouts_are_permanent(self, exc):
        """Timeouts are checked before connection markers."""
        assert classify_exception(exc) == ErrorCategory.PERMANENT

    def test_unknown_error(self):
        assert classify_exception(RuntimeError("something odd")) == ErrorCategory.UNKNOWN

    def test_already_classified(self):
        assert classify_exception(ConfigurationError("bad")) == ErrorCategory.PERMANENT


class TestWrapException:
    def test_wraps_connection_error_as_retryable(self):
        original = ConnectionRefusedError("Connection refused")

        wrapped = wrap_exception(original, context={"url": "https://x/y.png"})

        assert isinstance(wrapped, RetryableTransportError)
        assert wrapped.cause is original
        assert wrapped.context == {"url": "https://x/y.png"}

    def test_wraps_other_errors_as_terminal(self):
        wrapped = wrap_exception(RuntimeError("odd"))

        assert isinstance(wrapped, TerminalTransportError)

    def test_existing_transport_error_gets_context(self):
        original = TerminalTransportError("HTTP 404", status_code=404)

        wrapped = wrap_exception(original, context={"url": "u"})

        assert wrapped is original
        assert wrapped.context == {"url": "u"}
