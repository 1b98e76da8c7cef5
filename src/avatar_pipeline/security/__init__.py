"""
Security policy for avatar downloads.

Components:
    - host_policy: per-host headers and trusted host suffixes
    - cert_trust: certificate trust evaluation for trusted hosts
    - tls: TLS 1.2+ client contexts
"""

from avatar_pipeline.security.cert_trust import evaluate_trust, host_suffix
from avatar_pipeline.security.host_policy import (
    DEFAULT_HOST_POLICY,
    HeaderRule,
    HostPolicy,
    headers_for,
    host_of,
    is_trusted_host,
)
from avatar_pipeline.security.tls import create_ssl_context

__all__ = [
    "evaluate_trust",
    "host_suffix",
    "DEFAULT_HOST_POLICY",
    "HeaderRule",
    "HostPolicy",
    "headers_for",
    "host_of",
    "is_trusted_host",
    "create_ssl_context",
]
