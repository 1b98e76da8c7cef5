"""Image decode gate: turns downloaded bytes into an image or a DecodeFailure."""

import io
import logging
from typing import Optional, Union

from PIL import Image

from avatar_pipeline.common.exceptions import DecodeError
from avatar_pipeline.common.logging import log_exception, log_with_context
from avatar_pipeline.common.metrics import record_decode_failure
from avatar_pipeline.download.models import DecodedImage, DecodeFailure

logger = logging.getLogger(__name__)

EMPTY = "empty"
MALFORMED = "malformed"


def _reject(
    reason: str, data: Optional[bytes], cause: Optional[Exception] = None
) -> DecodeFailure:
    error = DecodeError(reason, cause=cause)
    log_exception(
        logger,
        error,
        "Failed to decode image",
        level=logging.WARNING,
        include_traceback=False,
        reason=reason,
        bytes_received=len(data) if data else 0,
    )
    record_decode_failure(reason)
    return DecodeFailure(reason)


def decode_image(data: Optional[bytes]) -> Union[DecodedImage, DecodeFailure]:
    """
    Decode an image payload.

    Never raises for bad input: anything Pillow can't open or load is
    reported as malformed.

    Args:
        data: Downloaded bytes (None when nothing was received)

    Returns:
        DecodedImage with pixel dimensions, or DecodeFailure("empty") for
        missing/zero-length input, or DecodeFailure("malformed") when the
        bytes are not a decodable image.
    """
    if not data:
        return _reject(EMPTY, data)

    try:
        image = Image.open(io.BytesIO(data))
        image.load()
    except Exception as e:
        # Besides OSError, broken input surfaces as SyntaxError, EOFError,
        # struct.error or IndexError depending on the format plugin
        return _reject(MALFORMED, data, cause=e)

    decoded = DecodedImage(
        image=image,
        width=image.width,
        height=image.height,
        format=image.format,
    )
    log_with_context(
        logger,
        logging.DEBUG,
        "Image decoded",
        width=decoded.width,
        height=decoded.height,
        image_format=decoded.format,
        bytes_received=len(data),
    )
    return decoded
