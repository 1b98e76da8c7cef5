"""
Primary avatar transport built on aiohttp.

Provides PrimaryTransport which builds one GET request per avatar URL:
- 30 second total timeout
- Host policy headers (User-Agent, Referer, Accept)
- TLS 1.2+ with standard validation, except for trusted hosts where the
  certificate trust evaluator replaces default validation

Sending a request returns an Operation immediately. The caller polls
Operation.is_done while yielding to the event loop, then classifies the
finished operation with classify_primary().

Usage:
    transport = PrimaryTransport()
    operation = transport.build_request(url).send()
    while not operation.is_done:
        await asyncio.sleep(0.01)
    outcome = classify_primary(operation)
"""

import asyncio
import functools
import logging
from contextvars import ContextVar
from dataclasses import replace
from typing import Any, Callable, Dict, List, Optional

import aiohttp

from avatar_pipeline.common.exceptions import (
    CertificateRejectedError,
    ConfigurationError,
    ErrorCategory,
    RetryableTransportError,
    TerminalTransportError,
    classify_http_status,
    wrap_exception,
)
from avatar_pipeline.common.logging import log_exception, log_with_context
from avatar_pipeline.common.security import sanitize_error_message
from avatar_pipeline.config import AvatarFetchConfig
from avatar_pipeline.download.models import FetchOutcome, NetworkFailure, Success
from avatar_pipeline.security.cert_trust import evaluate_trust
from avatar_pipeline.security.host_policy import (
    DEFAULT_HOST_POLICY,
    HostPolicy,
    headers_for,
    host_of,
    is_trusted_host,
)
from avatar_pipeline.security.tls import create_ssl_context

logger = logging.getLogger(__name__)

TrustEvaluator = Callable[[str, Optional[bytes], bool], bool]

# Certificate of the connection serving the current request. Set per request
# by PrimaryTransport._perform, filled in by PeerCertificateConnector.
_peer_certificate_slot: ContextVar[Optional[Dict[str, Optional[bytes]]]] = ContextVar(
    "peer_certificate_slot", default=None
)


def _certificate_from_transport(
    transport: Optional[asyncio.BaseTransport],
) -> Optional[bytes]:
    """DER bytes of the certificate presented on a TLS transport, if any."""
    if transport is None:
        return None
    ssl_object = transport.get_extra_info("ssl_object")
    if ssl_object is None:
        return None
    return ssl_object.getpeercert(binary_form=True)


class PeerCertificateConnector(aiohttp.TCPConnector):
    """
    TCPConnector that records the server certificate for each request.

    aiohttp hands a connection back to the pool as soon as a small body has
    been read, before the caller sees the response, so the certificate is
    captured when the connection is handed out instead.
    """

    async def connect(
        self,
        req: aiohttp.ClientRequest,
        traces: List[Any],
        timeout: aiohttp.ClientTimeout,
    ) -> "aiohttp.connector.Connection":
        connection = await super().connect(req, traces, timeout)
        slot = _peer_certificate_slot.get()
        if slot is not None:
            slot["certificate"] = _certificate_from_transport(connection.transport)
        return connection


def create_session(
    max_connections: int = 20,
    max_connections_per_host: int = 10,
) -> aiohttp.ClientSession:
    """
    Create an aiohttp session with connection pooling and TLS 1.2+.

    The session's connector records peer certificates, which trusted hosts
    need for the trust evaluator.

    Args:
        max_connections: Total connection pool size
        max_connections_per_host: Per-host connection limit

    Returns:
        aiohttp.ClientSession (caller must close)
    """
    connector = PeerCertificateConnector(
        limit=max_connections,
        limit_per_host=max_connections_per_host,
        ssl=create_ssl_context(),
    )
    return aiohttp.ClientSession(connector=connector)


class Operation:
    """
    A sent request, pollable without blocking.

    All result attributes are meaningful only once is_done is True.

    Attributes:
        succeeded: Response received with a 2xx status and its body read
        response_code: HTTP status, 0 when no response was received
        error_message: Error description on failure
        connection_error: Failure happened at connection level (DNS,
            refused, reset, TLS, certificate rejected)
        timed_out: The transport timeout expired
    """

    def __init__(self, url: str):
        self.url = url
        self.succeeded = False
        self.response_code = 0
        self.error_message: Optional[str] = None
        self.connection_error = False
        self.timed_out = False
        self._body: bytes = b""
        self._task: Optional[asyncio.Task] = None

    @property
    def is_done(self) -> bool:
        return self._task is not None and self._task.done()

    def response_bytes(self) -> bytes:
        return self._body

    def cancel(self) -> None:
        """Cancel the in-flight request, if any."""
        if self._task is not None and not self._task.done():
            self._task.cancel()

    def _start(self, coro) -> "Operation":
        self._task = asyncio.ensure_future(coro)
        return self


class RequestHandle:
    """
    One configured GET request, not yet sent.

    Attributes:
        url: Request URL
        method: Always GET
        headers: Host policy headers
        timeout: Total timeout in seconds
        trusted: Host uses the trust evaluator instead of default validation
    """

    method = "GET"

    def __init__(
        self,
        transport: "PrimaryTransport",
        url: str,
        headers: Dict[str, str],
        timeout: float,
        trusted: bool,
        host: str,
    ):
        self._transport = transport
        self.url = url
        self.headers = headers
        self.timeout = timeout
        self.trusted = trusted
        self.host = host

    def send(self) -> Operation:
        """Begin the request and return its Operation without waiting."""
        operation = Operation(self.url)
        return operation._start(self._transport._perform(self, operation))


class PrimaryTransport:
    """
    First-attempt avatar transport.

    Session management:
        By default, creates a new session for each request and closes it
        when the request finishes. Pass a shared session to reuse one
        connection pool; the caller then owns and closes it. A shared
        session should use PeerCertificateConnector (see create_session)
        so trusted hosts can be checked whatever the body size.
    """

    def __init__(
        self,
        config: Optional[AvatarFetchConfig] = None,
        policy: HostPolicy = DEFAULT_HOST_POLICY,
        session: Optional[aiohttp.ClientSession] = None,
        trust_evaluator: Optional[TrustEvaluator] = None,
    ):
        self.config = config or AvatarFetchConfig()
        if policy.user_agent != self.config.user_agent:
            policy = replace(policy, user_agent=self.config.user_agent)
        self.policy = policy
        self._session = session
        self._trust_evaluator = trust_evaluator or functools.partial(
            evaluate_trust, policy=self.policy
        )
        self._verified_ssl = create_ssl_context(verify=True)
        self._unverified_ssl = create_ssl_context(verify=False)

    def build_request(self, url: str) -> RequestHandle:
        """
        Build a GET request for url with policy headers and TLS handling.

        Only trusted hosts get the trust evaluator; all others keep
        standard validation. A URL whose host can't be parsed still yields
        a request (with default headers) so the failure surfaces from the
        transport itself.
        """
        try:
            host = host_of(url)
        except ConfigurationError:
            host = ""

        return RequestHandle(
            transport=self,
            url=url,
            headers=headers_for(url, self.policy),
            timeout=self.config.timeout_seconds,
            trusted=(
                is_trusted_host(host, self.policy)
                and url.lower().startswith("https://")
            ),
            host=host,
        )

    async def _perform(self, request: RequestHandle, operation: Operation) -> None:
        session = self._session
        owns_session = session is None
        if owns_session:
            session = create_session(
                max_connections=self.config.max_connections,
                max_connections_per_host=self.config.max_connections_per_host,
            )

        ssl_context = self._unverified_ssl if request.trusted else self._verified_ssl
        peer: Dict[str, Optional[bytes]] = {}
        slot_token = _peer_certificate_slot.set(peer)

        try:
            async with session.request(
                request.method,
                request.url,
                headers=request.headers,
                timeout=aiohttp.ClientTimeout(total=request.timeout),
                ssl=ssl_context,
            ) as response:
                if request.trusted:
                    certificate = peer.get("certificate") or _peer_certificate(response)
                    if not self._trust_evaluator(request.host, certificate, False):
                        raise CertificateRejectedError(request.host)

                operation.response_code = response.status
                if not 200 <= response.status < 300:
                    operation.error_message = f"HTTP {response.status}"
                    return

                operation._body = await response.read()
                operation.succeeded = True

        except CertificateRejectedError as e:
            operation.connection_error = True
            operation.error_message = e.message
        except asyncio.TimeoutError:
            operation.timed_out = True
            operation.error_message = f"Request timeout after {request.timeout}s"
        except aiohttp.ClientConnectionError as e:
            operation.connection_error = True
            operation.error_message = (
                f"Connection error: {sanitize_error_message(str(e))}"
            )
        except aiohttp.ClientError as e:
            operation.connection_error = wrap_exception(e).is_retryable
            operation.error_message = sanitize_error_message(str(e)) or type(e).__name__
        except Exception as e:
            log_exception(logger, e, "Unexpected primary transport error", url=request.url)
            operation.error_message = f"Unexpected error: {sanitize_error_message(str(e))}"
        finally:
            _peer_certificate_slot.reset(slot_token)
            if owns_session:
                await session.close()


def _peer_certificate(response: aiohttp.ClientResponse) -> Optional[bytes]:
    """Certificate from a connection the response still holds, if any."""
    connection = response.connection
    if connection is None:
        return None
    return _certificate_from_transport(connection.transport)


def classify_primary(operation: Operation) -> FetchOutcome:
    """
    Classify a finished primary Operation.

    Returns:
        Success(bytes) when the request succeeded.
        NetworkFailure(retryable=True) for connection-level errors or a zero
        response code; this is the only outcome that authorizes fallback.
        NetworkFailure(retryable=False) for HTTP error statuses and timeouts.
    """
    if operation.succeeded:
        return Success(operation.response_bytes())

    if operation.timed_out:
        category = ErrorCategory.PERMANENT
    elif operation.connection_error:
        category = ErrorCategory.TRANSIENT
    else:
        category = classify_http_status(operation.response_code)

    error_class = (
        RetryableTransportError
        if category == ErrorCategory.TRANSIENT
        else TerminalTransportError
    )
    error = error_class(
        operation.error_message or f"HTTP {operation.response_code}",
        status_code=operation.response_code,
        context={"url": operation.url},
    )

    log_with_context(
        logger,
        logging.WARNING,
        "Primary request failed",
        url=operation.url,
        http_status=error.status_code,
        error_category=error.category.value,
        retryable=error.is_retryable,
        error_message=error.message,
    )

    return NetworkFailure(
        retryable=error.is_retryable,
        code=operation.response_code,
        message=operation.error_message or "",
    )
