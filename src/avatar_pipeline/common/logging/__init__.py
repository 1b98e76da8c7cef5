"""
Structured logging for avatar_pipeline.

Import from here or directly from sub-modules:
    from avatar_pipeline.common.logging import log_exception, log_with_context
    from avatar_pipeline.common.logging.setup import setup_logging
"""

from avatar_pipeline.common.logging.context import (
    clear_log_context,
    get_log_context,
    set_log_context,
)
from avatar_pipeline.common.logging.formatters import ConsoleFormatter, JSONFormatter
from avatar_pipeline.common.logging.setup import setup_logging
from avatar_pipeline.common.logging.utilities import (
    log_exception,
    log_with_context,
)

__all__ = [
    "clear_log_context",
    "get_log_context",
    "set_log_context",
    "ConsoleFormatter",
    "JSONFormatter",
    "setup_logging",
    "log_exception",
    "log_with_context",
]
