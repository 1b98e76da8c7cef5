"""
Per-host request policy for avatar downloads.

Decides which headers each avatar host needs (some CDNs refuse hotlinked
requests without a matching Referer) and which hosts get relaxed
certificate matching.
"""

import logging
from dataclasses import dataclass, field
from typing import Dict, FrozenSet, Mapping, Tuple
from urllib.parse import urlparse

from avatar_pipeline.common.exceptions import ConfigurationError
from avatar_pipeline.common.logging import log_with_context
from avatar_pipeline.config import DEFAULT_USER_AGENT

logger = logging.getLogger(__name__)

IMAGE_ACCEPT = "image/avif,image/webp,image/apng,image/*,*/*;q=0.8"


@dataclass(frozen=True)
class HeaderRule:
    """Headers applied when the host contains any of host_substrings."""

    host_substrings: Tuple[str, ...]
    headers: Mapping[str, str]

    def matches(self, host: str) -> bool:
        return any(s in host for s in self.host_substrings)


@dataclass(frozen=True)
class HostPolicy:
    """
    Read-only header rules and trusted host suffixes.

    Rules are checked in order and the first match wins. The User-Agent
    header is always applied, before any rule.
    """

    header_rules: Tuple[HeaderRule, ...]
    trusted_host_suffixes: FrozenSet[str]
    user_agent: str = DEFAULT_USER_AGENT
    default_headers: Mapping[str, str] = field(default_factory=dict)


DEFAULT_HOST_POLICY = HostPolicy(
    header_rules=(
        HeaderRule(
            host_substrings=("huaban.com",),
            headers={"Referer": "https://huaban.com/"},
        ),
        HeaderRule(
            host_substrings=("githubusercontent.com", "githubusercontent"),
            headers={"Referer": "https://github.com/", "Accept": IMAGE_ACCEPT},
        ),
    ),
    trusted_host_suffixes=frozenset({"githubusercontent.com"}),
)


def host_of(url: str) -> str:
    """
    Extract the lowercased host component of a URL.

    Raises:
        ConfigurationError: If the URL is empty or has no host
    """
    if not url:
        raise ConfigurationError("Empty URL")

    try:
        hostname = urlparse(url).hostname
    except ValueError as e:
        raise ConfigurationError(f"Invalid URL format: {e}", cause=e) from e

    if not hostname:
        raise ConfigurationError(f"No hostname in URL: {url}")

    return hostname.lower()


def headers_for(url: str, policy: HostPolicy = DEFAULT_HOST_POLICY) -> Dict[str, str]:
    """
    Build request headers for a URL.

    A host with no specific rule receives only the User-Agent. When the
    host can't be parsed the failure is logged and the defaults are
    returned, so header derivation never aborts a request.

    Args:
        url: Request URL
        policy: Host policy to apply

    Returns:
        Header name -> value mapping

    Examples:
        >>> headers_for("https://avatars.githubusercontent.com/u/1")["Referer"]
        'https://github.com/'
    """
    headers = {"User-Agent": policy.user_agent}
    headers.update(policy.default_headers)

    try:
        host = host_of(url)
    except ConfigurationError as e:
        log_with_context(
            logger,
            logging.WARNING,
            "Unable to derive host headers, using defaults",
            url=url,
            error_category=e.category.value,
            error_message=e.message,
        )
        return headers

    for rule in policy.header_rules:
        if rule.matches(host):
            headers.update(rule.headers)
            break

    return headers


def is_trusted_host(host: str, policy: HostPolicy = DEFAULT_HOST_POLICY) -> bool:
    """
    Check whether a host gets relaxed certificate matching.

    A host is trusted when it equals a trusted suffix or is a subdomain of
    one. Comparison is case-insensitive.
    """
    if not host:
        return False

    host = host.lower().rstrip(".")
    return any(
        host == suffix or host.endswith("." + suffix)
        for suffix in policy.trusted_host_suffixes
    )
