"""
Secondary avatar transport built on httpx.

Used only after the primary transport fails at connection level. Has its
own connection pool, its own 30 second timeout and automatic response
decompression, applies the same host policy headers and uses the same
certificate trust evaluator as the primary transport.

The transport is process-wide: get_secondary_transport() builds it once
and reuses it. If it can't be built, fallback is reported unavailable.
"""

import functools
import logging
import threading
from dataclasses import replace
from typing import Callable, Dict, Optional

import httpx

from avatar_pipeline.common.exceptions import CertificateRejectedError, wrap_exception
from avatar_pipeline.common.logging import log_exception, log_with_context
from avatar_pipeline.common.security import sanitize_error_message
from avatar_pipeline.config import AvatarFetchConfig
from avatar_pipeline.security.cert_trust import evaluate_trust
from avatar_pipeline.security.host_policy import (
    DEFAULT_HOST_POLICY,
    HostPolicy,
    headers_for,
    is_trusted_host,
)
from avatar_pipeline.security.tls import create_ssl_context

logger = logging.getLogger(__name__)

TrustEvaluator = Callable[[str, Optional[bytes], bool], bool]


def _relaxed_mounts(
    policy: HostPolicy, config: AvatarFetchConfig
) -> Dict[str, httpx.AsyncBaseTransport]:
    """
    Route trusted hosts through a transport without default validation.

    Requests to these hosts are checked by the trust evaluator once the
    response headers arrive.
    """
    transport = httpx.AsyncHTTPTransport(
        verify=create_ssl_context(verify=False),
        limits=httpx.Limits(
            max_connections=config.max_connections,
            max_keepalive_connections=config.max_connections_per_host,
        ),
    )
    mounts: Dict[str, httpx.AsyncBaseTransport] = {}
    for suffix in sorted(policy.trusted_host_suffixes):
        mounts[f"https://{suffix}"] = transport
        mounts[f"https://*.{suffix}"] = transport
    return mounts


class SecondaryTransport:
    """
    Fallback avatar transport.

    fetch() never raises for transport problems: every failure is logged
    and reported as None.
    """

    def __init__(
        self,
        config: Optional[AvatarFetchConfig] = None,
        policy: HostPolicy = DEFAULT_HOST_POLICY,
        trust_evaluator: Optional[TrustEvaluator] = None,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.config = config or AvatarFetchConfig()
        if policy.user_agent != self.config.user_agent:
            policy = replace(policy, user_agent=self.config.user_agent)
        self.policy = policy
        self._trust_evaluator = trust_evaluator or functools.partial(
            evaluate_trust, policy=self.policy
        )
        self._client = client or httpx.AsyncClient(
            timeout=httpx.Timeout(self.config.timeout_seconds),
            verify=create_ssl_context(verify=True),
            limits=httpx.Limits(
                max_connections=self.config.max_connections,
                max_keepalive_connections=self.config.max_connections_per_host,
            ),
            mounts=_relaxed_mounts(self.policy, self.config),
            follow_redirects=True,
        )

    async def fetch(self, url: str) -> Optional[bytes]:
        """
        Download url.

        Args:
            url: Avatar URL

        Returns:
            Response body, or None on any transport exception, certificate
            rejection or non-success status
        """
        log_with_context(logger, logging.INFO, "Attempting secondary download", url=url)

        try:
            async with self._client.stream(
                "GET", url, headers=headers_for(url, self.policy)
            ) as response:
                host = (response.url.host or "").lower()
                if response.url.scheme == "https" and is_trusted_host(host, self.policy):
                    certificate = _peer_certificate(response)
                    if not self._trust_evaluator(host, certificate, False):
                        raise CertificateRejectedError(host)

                if not response.is_success:
                    log_with_context(
                        logger,
                        logging.WARNING,
                        "Secondary download returned error status",
                        url=url,
                        http_status=response.status_code,
                    )
                    return None

                return await response.aread()

        except CertificateRejectedError as e:
            log_with_context(
                logger,
                logging.WARNING,
                "Secondary download rejected certificate",
                url=url,
                error_category=e.category.value,
                error_message=e.message,
            )
            return None
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            error = wrap_exception(e, context={"url": url})
            log_with_context(
                logger,
                logging.WARNING,
                "Secondary download failed",
                url=url,
                error_category=error.category.value,
                error_message=sanitize_error_message(str(e)) or type(e).__name__,
            )
            return None

    async def aclose(self) -> None:
        await self._client.aclose()


def _peer_certificate(response: httpx.Response) -> Optional[bytes]:
    """DER bytes of the certificate the server presented, if available."""
    stream = response.extensions.get("network_stream")
    if stream is None:
        return None
    ssl_object = stream.get_extra_info("ssl_object")
    if ssl_object is None:
        return None
    return ssl_object.getpeercert(binary_form=True)


# =============================================================================
# Process-wide instance
# =============================================================================

_secondary: Optional[SecondaryTransport] = None
_secondary_built = False
_secondary_lock = threading.Lock()


def get_secondary_transport(
    config: Optional[AvatarFetchConfig] = None,
) -> Optional[SecondaryTransport]:
    """
    Get the shared secondary transport, building it on first use.

    Construction is attempted once per process. A failure is logged and
    every later call returns None (fallback unavailable).

    Args:
        config: Configuration used on first construction only

    Returns:
        SecondaryTransport, or None if it could not be built
    """
    global _secondary, _secondary_built

    with _secondary_lock:
        if not _secondary_built:
            _secondary_built = True
            try:
                _secondary = SecondaryTransport(config)
            except Exception as e:
                log_exception(
                    logger,
                    e,
                    "Failed to build secondary transport, fallback unavailable",
                    level=logging.WARNING,
                )
                _secondary = None
        return _secondary


async def close_secondary_transport() -> None:
    """Close the shared secondary transport and allow it to be rebuilt."""
    global _secondary, _secondary_built

    with _secondary_lock:
        transport = _secondary
        _secondary = None
        _secondary_built = False

    if transport is not None:
        await transport.aclose()
