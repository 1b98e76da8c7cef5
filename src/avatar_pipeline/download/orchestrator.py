"""
Fetch orchestrator: drives one avatar fetch from request to terminal result.

State machine (one FetchSession per run):

    START -> PRIMARY_PENDING | FAILED
    PRIMARY_PENDING -> DECODING | FALLBACK_PENDING | FAILED
    FALLBACK_PENDING -> DECODING | FAILED
    DECODING -> DONE | FAILED

Only a retryable primary failure (connection-level error or zero status)
enters FALLBACK_PENDING, so at most one secondary attempt is made per
target. A URL without a usable host fails from START with no network
attempt. Decode failures are terminal and decoding runs in a worker
thread. All failures are absorbed here and
reported as a FetchResult without an image; only cancellation propagates.

Usage:
    orchestrator = FetchOrchestrator()
    result = await orchestrator.run(RequestTarget(url, "CN"))
    if result.success:
        show(result.image)
"""

import asyncio
import logging
import time
from typing import Callable, Optional, Union

from avatar_pipeline.common.exceptions import ConfigurationError
from avatar_pipeline.common.logging import (
    log_exception,
    log_with_context,
    set_log_context,
)
from avatar_pipeline.common.metrics import record_attempt, record_result
from avatar_pipeline.config import AvatarFetchConfig
from avatar_pipeline.download.decoder import decode_image
from avatar_pipeline.download.models import (
    DecodedImage,
    DecodeFailure,
    FetchResult,
    FetchSession,
    FetchState,
    NetworkFailure,
    RequestTarget,
    Success,
)
from avatar_pipeline.download.primary import (
    Operation,
    PrimaryTransport,
    classify_primary,
)
from avatar_pipeline.download.secondary import (
    SecondaryTransport,
    get_secondary_transport,
)
from avatar_pipeline.security.host_policy import host_of

logger = logging.getLogger(__name__)

SecondaryProvider = Callable[[], Optional[SecondaryTransport]]
Decoder = Callable[[Optional[bytes]], Union[DecodedImage, DecodeFailure]]


class FetchOrchestrator:
    """
    Two-tier avatar fetcher.

    Transports are injectable: pass a PrimaryTransport and a callable
    returning the SecondaryTransport (or None when fallback is unavailable).
    By default the shared process-wide secondary transport is used.
    """

    def __init__(
        self,
        config: Optional[AvatarFetchConfig] = None,
        primary: Optional[PrimaryTransport] = None,
        secondary_provider: Optional[SecondaryProvider] = None,
        decoder: Decoder = decode_image,
    ):
        self.config = config or AvatarFetchConfig()
        self.primary = primary or PrimaryTransport(self.config)
        self._secondary_provider = secondary_provider or (
            lambda: get_secondary_transport(self.config)
        )
        self._decode = decoder

    async def run(self, target: RequestTarget) -> FetchResult:
        """
        Fetch and decode one avatar.

        Args:
            target: URL and fallback label

        Returns:
            FetchResult with the decoded image, or with image=None when the
            fallback label should stay visible

        Raises:
            asyncio.CancelledError: If the driving task is cancelled; the
                session is marked FAILED and nothing is delivered
        """
        session = FetchSession(target=target)
        started = time.monotonic()
        try:
            host = host_of(target.url)
        except ConfigurationError as e:
            set_log_context(session_id=session.session_id, host="", transport="")
            log_exception(
                logger,
                e,
                "Avatar URL rejected",
                level=logging.WARNING,
                include_traceback=False,
                url=target.url,
            )
            session.fail("invalid url")
            self._log_fallback_label(session)
            record_result("fallback", time.monotonic() - started)
            return FetchResult(target=target, image=None, session=session)

        set_log_context(session_id=session.session_id, host=host, transport="")
        try:
            image = await self._drive(session)
        except asyncio.CancelledError:
            if not session.is_terminal:
                session.fail("cancelled")
            log_with_context(
                logger,
                logging.INFO,
                "Fetch cancelled",
                url=target.url,
                state=session.history[-2].value,
                network_attempts=session.network_attempts,
            )
            record_result("cancelled", time.monotonic() - started)
            raise

        record_result(
            "image" if image is not None else "fallback", time.monotonic() - started
        )
        return FetchResult(target=target, image=image, session=session)

    async def _drive(self, session: FetchSession) -> Optional[DecodedImage]:
        target = session.target

        # START -> PRIMARY_PENDING
        set_log_context(transport="primary")
        session.transition(FetchState.PRIMARY_PENDING)
        session.network_attempts += 1
        operation = self.primary.build_request(target.url).send()
        try:
            await self._wait_operation(operation)
        except asyncio.CancelledError:
            operation.cancel()
            raise

        outcome = classify_primary(operation)
        session.primary_outcome = outcome

        if isinstance(outcome, Success):
            record_attempt("primary", "success")
            session.transition(FetchState.DECODING)
            return await self._decode_payload(session, outcome.data)

        record_attempt("primary", "retryable" if outcome.retryable else "terminal")
        if not outcome.retryable or not self.config.enable_fallback:
            session.fail(f"primary: {outcome.message or outcome.code}")
            self._log_fallback_label(session)
            return None

        # PRIMARY_PENDING -> FALLBACK_PENDING
        set_log_context(transport="secondary")
        session.transition(FetchState.FALLBACK_PENDING)
        data = await self._run_secondary(session)
        if data is None:
            self._log_fallback_label(session)
            return None

        session.transition(FetchState.DECODING)
        return await self._decode_payload(session, data)

    async def _wait_operation(self, operation: Operation) -> None:
        # Yield to the event loop between polls; never block
        while not operation.is_done:
            await asyncio.sleep(self.config.poll_interval_seconds)

    async def _run_secondary(self, session: FetchSession) -> Optional[bytes]:
        secondary = self._secondary_provider()
        if secondary is None:
            log_with_context(
                logger,
                logging.WARNING,
                "Secondary transport unavailable",
                url=session.target.url,
            )
            session.fallback_outcome = NetworkFailure(
                retryable=False, message="fallback unavailable"
            )
            session.fail("fallback unavailable")
            return None

        session.network_attempts += 1
        task = asyncio.ensure_future(secondary.fetch(session.target.url))
        try:
            while not task.done():
                await asyncio.sleep(self.config.poll_interval_seconds)
        except asyncio.CancelledError:
            task.cancel()
            raise

        if task.cancelled():
            log_with_context(logger, logging.WARNING, "Secondary download task cancelled")
            record_attempt("secondary", "terminal")
            session.fallback_outcome = NetworkFailure(retryable=False, message="cancelled")
            session.fail("cancelled")
            return None

        exc = task.exception()
        if exc is not None:
            log_exception(
                logger,
                exc,
                "Secondary download task faulted",
                level=logging.WARNING,
                url=session.target.url,
            )
            record_attempt("secondary", "terminal")
            session.fallback_outcome = NetworkFailure(retryable=False, message=str(exc))
            session.fail("exception")
            return None

        data = task.result()
        if data is None:
            record_attempt("secondary", "terminal")
            session.fallback_outcome = NetworkFailure(
                retryable=False, message="secondary download failed"
            )
            session.fail("secondary download failed")
            return None

        record_attempt("secondary", "success")
        session.fallback_outcome = Success(data)
        return data

    async def _decode_payload(
        self, session: FetchSession, data: Optional[bytes]
    ) -> Optional[DecodedImage]:
        # Decoding is CPU-bound and runs off the event loop
        result = await asyncio.to_thread(self._decode, data)

        if isinstance(result, DecodeFailure):
            session.decode_outcome = result
            session.fail(f"decode: {result.reason}")
            self._log_fallback_label(session)
            return None

        session.transition(FetchState.DONE)
        log_with_context(
            logger,
            logging.INFO,
            "Successfully loaded avatar",
            url=session.target.url,
            width=result.width,
            height=result.height,
            network_attempts=session.network_attempts,
        )
        return result

    def _log_fallback_label(self, session: FetchSession) -> None:
        log_with_context(
            logger,
            logging.INFO,
            "Keeping fallback label",
            url=session.target.url,
            fallback_label=session.target.fallback_label,
            reason=session.failure_reason,
            network_attempts=session.network_attempts,
        )
