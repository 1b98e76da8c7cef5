"""
Display-facing avatar loading.

The display layer owns an AvatarSink, which shows its fallback label until
told otherwise. AvatarLoader connects a sink to the fetch orchestrator and
delivers exactly one of on_image_ready(image) or on_fallback() per
completed request.

Usage:
    loader = AvatarLoader(sink, fallback_label="CN")
    loader.request_image("https://avatars.githubusercontent.com/u/123")
    ...
    await loader.wait()
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Iterable, List, Optional, Protocol

from avatar_pipeline.common.logging import log_with_context
from avatar_pipeline.download.models import (
    DEFAULT_FALLBACK_LABEL,
    DecodedImage,
    FetchResult,
    RequestTarget,
)
from avatar_pipeline.download.orchestrator import FetchOrchestrator

logger = logging.getLogger(__name__)


class AvatarSink(Protocol):
    """Display collaborator receiving exactly one delivery per completed request."""

    def on_image_ready(self, image: DecodedImage) -> None:
        ...

    def on_fallback(self) -> None:
        ...


class AvatarLoader:
    """
    Fire-and-forget avatar requests for one display slot.

    A newer request cancels the one still in flight; a cancelled request
    delivers nothing to the sink.
    """

    def __init__(
        self,
        sink: AvatarSink,
        fallback_label: str = DEFAULT_FALLBACK_LABEL,
        orchestrator: Optional[FetchOrchestrator] = None,
    ):
        self.sink = sink
        self.fallback_label = fallback_label or DEFAULT_FALLBACK_LABEL
        self.orchestrator = orchestrator or FetchOrchestrator()
        self._task: Optional[asyncio.Task] = None

    def request_image(self, url: str) -> asyncio.Task:
        """
        Start loading url; returns immediately.

        Must be called from a running event loop.
        """
        if self._task is not None and not self._task.done():
            self._task.cancel()

        target = RequestTarget(url=url, fallback_label=self.fallback_label)
        self._task = asyncio.ensure_future(self._load(target))
        return self._task

    async def _load(self, target: RequestTarget) -> FetchResult:
        result = await self.orchestrator.run(target)
        if result.image is not None:
            self.sink.on_image_ready(result.image)
        else:
            self.sink.on_fallback()
        return result

    async def wait(self) -> Optional[FetchResult]:
        """Await the current request. Returns None if it was cancelled."""
        if self._task is None:
            return None
        try:
            return await self._task
        except asyncio.CancelledError:
            if self._task.cancelled():
                return None
            raise


@dataclass
class LoadSummary:
    """Counts from a batch load."""

    loaded: int = 0
    failed: int = 0
    results: List[FetchResult] = field(default_factory=list)


async def load_all(
    targets: Iterable[RequestTarget],
    orchestrator: Optional[FetchOrchestrator] = None,
) -> LoadSummary:
    """
    Load several avatars one after another.

    Args:
        targets: Avatars to load
        orchestrator: Fetch orchestrator (default: a new one)

    Returns:
        LoadSummary with loaded/failed counts and every FetchResult
    """
    orchestrator = orchestrator or FetchOrchestrator()
    summary = LoadSummary()

    for target in targets:
        result = await orchestrator.run(target)
        summary.results.append(result)
        if result.success:
            summary.loaded += 1
        else:
            summary.failed += 1

    log_with_context(
        logger,
        logging.INFO,
        f"Image loading complete. Loaded: {summary.loaded}, Failed: {summary.failed}",
        loaded=summary.loaded,
        failed=summary.failed,
    )
    return summary
