"""
Prometheus metrics for avatar fetching.

Provides instrumentation for:
- Attempts per transport and their status
- Terminal results (image delivered vs fallback label kept)
- Decode failures by reason
- End-to-end fetch duration
"""

from prometheus_client import Counter, Histogram

fetch_attempts_total = Counter(
    "avatar_fetch_attempts_total",
    "Total number of network attempts by transport",
    ["transport", "status"],  # transport: primary, secondary; status: success, retryable, terminal
)

fetch_results_total = Counter(
    "avatar_fetch_results_total",
    "Total number of terminal fetch results",
    ["result"],  # result: image, fallback, cancelled
)

decode_failures_total = Counter(
    "avatar_decode_failures_total",
    "Total number of payloads rejected by the decode gate",
    ["reason"],  # reason: empty, malformed
)

fetch_duration_seconds = Histogram(
    "avatar_fetch_duration_seconds",
    "Time from request to terminal result",
    buckets=(0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0),
)


def record_attempt(transport: str, status: str) -> None:
    """
    Record a network attempt.

    Args:
        transport: Transport name (primary, secondary)
        status: Attempt status (success, retryable, terminal)
    """
    fetch_attempts_total.labels(transport=transport, status=status).inc()


def record_result(result: str, duration_seconds: float) -> None:
    """
    Record a terminal fetch result.

    Args:
        result: Result kind (image, fallback, cancelled)
        duration_seconds: Time spent in the fetch session
    """
    fetch_results_total.labels(result=result).inc()
    fetch_duration_seconds.observe(duration_seconds)


def record_decode_failure(reason: str) -> None:
    """Record a payload rejected by the decode gate."""
    decode_failures_total.labels(reason=reason).inc()


__all__ = [
    "fetch_attempts_total",
    "fetch_results_total",
    "decode_failures_total",
    "fetch_duration_seconds",
    "record_attempt",
    "record_result",
    "record_decode_failure",
]
