"""Context variables injected into every log record."""

from contextvars import ContextVar
from typing import Dict, Optional

_session_id: ContextVar[str] = ContextVar("session_id", default="")
_host: ContextVar[str] = ContextVar("host", default="")
_transport: ContextVar[str] = ContextVar("transport", default="")


def set_log_context(
    session_id: Optional[str] = None,
    host: Optional[str] = None,
    transport: Optional[str] = None,
) -> None:
    """
    Set logging context for the current task.

    Values are task-local (contextvars), so concurrent fetch sessions
    never see each other's context.

    Args:
        session_id: Fetch session identifier
        host: Host being fetched
        transport: Active transport (primary, secondary)
    """
    if session_id is not None:
        _session_id.set(session_id)
    if host is not None:
        _host.set(host)
    if transport is not None:
        _transport.set(transport)


def get_log_context() -> Dict[str, str]:
    """Get current logging context."""
    return {
        "session_id": _session_id.get(),
        "host": _host.get(),
        "transport": _transport.get(),
    }


def clear_log_context() -> None:
    """Reset logging context to defaults."""
    _session_id.set("")
    _host.set("")
    _transport.set("")
