"""TLS context construction shared by both transports."""

import logging
import ssl

from avatar_pipeline.common.logging import log_exception

logger = logging.getLogger(__name__)


def create_ssl_context(verify: bool = True) -> ssl.SSLContext:
    """
    Build a client TLS context with TLS 1.2 as the minimum version.

    TLS 1.3 is enabled where the platform supports it; failing to enable it
    is logged and ignored.

    Args:
        verify: Perform standard chain and hostname validation. Pass False
            only for trusted hosts, whose certificates are then checked by
            the trust evaluator after the handshake.

    Returns:
        Configured SSLContext
    """
    context = ssl.create_default_context()
    context.minimum_version = ssl.TLSVersion.TLSv1_2

    try:
        if ssl.HAS_TLSv1_3:
            context.maximum_version = ssl.TLSVersion.TLSv1_3
    except (ValueError, AttributeError) as e:
        log_exception(
            logger,
            e,
            "Unable to enable TLS 1.3",
            level=logging.WARNING,
            include_traceback=False,
        )

    if not verify:
        context.check_hostname = False
        context.verify_mode = ssl.CERT_NONE

    return context
