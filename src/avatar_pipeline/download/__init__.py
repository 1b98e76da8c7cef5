"""
Avatar download module.

Components:
    - primary: aiohttp transport, pollable Operation
    - secondary: shared httpx fallback transport
    - decoder: Pillow decode gate
    - orchestrator: two-tier fetch state machine

Clean interface: RequestTarget -> FetchResult
"""

from avatar_pipeline.download.decoder import decode_image
from avatar_pipeline.download.models import (
    DecodedImage,
    DecodeFailure,
    FetchOutcome,
    FetchResult,
    FetchSession,
    FetchState,
    NetworkFailure,
    RequestTarget,
    Success,
)
from avatar_pipeline.download.orchestrator import FetchOrchestrator
from avatar_pipeline.download.primary import (
    Operation,
    PrimaryTransport,
    RequestHandle,
    classify_primary,
)
from avatar_pipeline.download.secondary import (
    SecondaryTransport,
    close_secondary_transport,
    get_secondary_transport,
)

__all__ = [
    "decode_image",
    "DecodedImage",
    "DecodeFailure",
    "FetchOutcome",
    "FetchResult",
    "FetchSession",
    "FetchState",
    "NetworkFailure",
    "RequestTarget",
    "Success",
    "FetchOrchestrator",
    "Operation",
    "PrimaryTransport",
    "RequestHandle",
    "classify_primary",
    "SecondaryTransport",
    "close_secondary_transport",
    "get_secondary_transport",
]
