"""
Certificate trust evaluation for avatar hosts.

Avatar CDNs sometimes present certificates that standard chain validation
rejects in constrained environments (missing intermediates, stale CA
bundles). For trusted hosts only, a certificate is accepted when its
subject or Subject Alternative Names name the host or its parent domain.
Every other host keeps the standard chain validation result unchanged.

The evaluator is a pure function shared by both transports.
"""

import logging
from typing import Iterable, List, Optional

from cryptography import x509
from cryptography.x509.oid import ExtensionOID

from avatar_pipeline.common.logging import log_with_context
from avatar_pipeline.security.host_policy import (
    DEFAULT_HOST_POLICY,
    HostPolicy,
    is_trusted_host,
)

logger = logging.getLogger(__name__)


def host_suffix(host: str) -> str:
    """
    Return everything after the first label of a host.

    Examples:
        >>> host_suffix("avatars.githubusercontent.com")
        'githubusercontent.com'
        >>> host_suffix("localhost")
        'localhost'
    """
    if not host:
        return ""
    index = host.find(".")
    if index >= 0 and index + 1 < len(host):
        return host[index + 1 :]
    return host


def load_certificate(certificate: bytes) -> x509.Certificate:
    """Parse a DER or PEM encoded certificate."""
    if certificate.lstrip().startswith(b"-----BEGIN"):
        return x509.load_pem_x509_certificate(certificate)
    return x509.load_der_x509_certificate(certificate)


def certificate_names(cert: x509.Certificate) -> List[str]:
    """Subject string followed by every SAN DNS name, lowercased."""
    names = [cert.subject.rfc4514_string().lower()]
    try:
        san = cert.extensions.get_extension_for_oid(
            ExtensionOID.SUBJECT_ALTERNATIVE_NAME
        ).value
    except x509.ExtensionNotFound:
        return names
    names.extend(name.lower() for name in san.get_values_for_type(x509.DNSName))
    return names


def _matches(names: Iterable[str], host: str, suffix: str) -> bool:
    for name in names:
        if suffix and suffix in name:
            return True
        if host in name:
            return True
    return False


def evaluate_trust(
    host: str,
    certificate: Optional[bytes],
    standard_chain_valid: bool,
    policy: HostPolicy = DEFAULT_HOST_POLICY,
) -> bool:
    """
    Decide whether to trust a certificate presented by host.

    Args:
        host: Host the connection was made to
        certificate: DER (or PEM) certificate bytes, None if none was presented
        standard_chain_valid: Result of the platform's standard validation
        policy: Host policy naming the trusted suffixes

    Returns:
        True to accept the connection. Non-trusted hosts always get
        standard_chain_valid back verbatim. Trusted hosts are accepted when
        the subject or a SAN entry contains the host's parent suffix (when
        it has at least two labels) or the host itself; a missing or
        unparseable certificate is rejected.
    """
    host = (host or "").lower()
    if not is_trusted_host(host, policy):
        return standard_chain_valid

    if not certificate:
        log_with_context(
            logger, logging.WARNING, "No certificate presented by trusted host"
        )
        return False

    try:
        cert = load_certificate(certificate)
        names = certificate_names(cert)
    except ValueError as e:
        log_with_context(
            logger,
            logging.WARNING,
            "Certificate validation failed",
            error_message=str(e),
        )
        return False

    # A single-label parent ("com") would match any certificate in that TLD,
    # so such hosts must be named by the certificate itself
    suffix = host_suffix(host)
    if "." not in suffix:
        suffix = ""

    accepted = _matches(names, host, suffix)
    if not accepted:
        log_with_context(
            logger,
            logging.WARNING,
            "Certificate names do not match trusted host",
            reason=", ".join(names),
        )
    return accepted
