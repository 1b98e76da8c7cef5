"""
Data model for avatar fetching.

Clean interface: RequestTarget -> FetchResult, with FetchOutcome variants
recorded per network attempt inside a FetchSession.
"""

import secrets
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, List, Optional, Union

DEFAULT_FALLBACK_LABEL = "??"


@dataclass(frozen=True)
class RequestTarget:
    """
    What the display collaborator wants fetched.

    Attributes:
        url: Avatar image URL
        fallback_label: Short text (e.g. initials) shown when no image is available
    """

    url: str
    fallback_label: str = DEFAULT_FALLBACK_LABEL

    def __post_init__(self) -> None:
        if not self.fallback_label:
            object.__setattr__(self, "fallback_label", DEFAULT_FALLBACK_LABEL)


# =============================================================================
# Per-attempt outcomes
# =============================================================================


@dataclass(frozen=True)
class Success:
    """Transport delivered a payload."""

    data: bytes


@dataclass(frozen=True)
class NetworkFailure:
    """
    Transport failed.

    Attributes:
        retryable: True only for connection-level errors or a zero status;
            the one condition that authorizes the secondary transport
        code: HTTP status (0 when no response was received)
        message: Error description
    """

    retryable: bool
    code: int = 0
    message: str = ""


@dataclass(frozen=True)
class DecodeFailure:
    """Payload could not be turned into an image (reason: empty, malformed)."""

    reason: str


FetchOutcome = Union[Success, NetworkFailure, DecodeFailure]


@dataclass(frozen=True)
class DecodedImage:
    """Decoded image handed to the display collaborator."""

    image: Any  # PIL.Image.Image
    width: int
    height: int
    format: Optional[str] = None


# =============================================================================
# Session state
# =============================================================================


class FetchState(str, Enum):
    """States of one fetch session."""

    START = "start"
    PRIMARY_PENDING = "primary_pending"
    FALLBACK_PENDING = "fallback_pending"
    DECODING = "decoding"
    DONE = "done"
    FAILED = "failed"


TERMINAL_STATES = frozenset({FetchState.DONE, FetchState.FAILED})

_TRANSITIONS = {
    FetchState.START: {FetchState.PRIMARY_PENDING, FetchState.FAILED},
    FetchState.PRIMARY_PENDING: {
        FetchState.DECODING,
        FetchState.FALLBACK_PENDING,
        FetchState.FAILED,
    },
    FetchState.FALLBACK_PENDING: {FetchState.DECODING, FetchState.FAILED},
    FetchState.DECODING: {FetchState.DONE, FetchState.FAILED},
    FetchState.DONE: set(),
    FetchState.FAILED: set(),
}


def _new_session_id() -> str:
    return f"s-{secrets.token_hex(4)}"


@dataclass
class FetchSession:
    """
    Per-request state, owned by the orchestrator run that created it.

    Attributes:
        target: What is being fetched
        state: Current state machine position
        primary_outcome: Outcome of the primary attempt
        fallback_outcome: Outcome of the secondary attempt, if entered
        decode_outcome: DecodeFailure when decoding rejected the payload
        failure_reason: Short reason for a FAILED session
        network_attempts: Transports actually invoked (at most two)
        history: Every state visited, in order
    """

    target: RequestTarget
    state: FetchState = FetchState.START
    primary_outcome: Optional[FetchOutcome] = None
    fallback_outcome: Optional[FetchOutcome] = None
    decode_outcome: Optional[DecodeFailure] = None
    failure_reason: Optional[str] = None
    network_attempts: int = 0
    session_id: str = field(default_factory=_new_session_id)
    history: List[FetchState] = field(default_factory=lambda: [FetchState.START])

    def transition(self, new_state: FetchState) -> None:
        """
        Move to new_state.

        Raises:
            ValueError: If the transition is not allowed from the current state
        """
        if new_state not in _TRANSITIONS[self.state]:
            raise ValueError(
                f"Invalid transition {self.state.value} -> {new_state.value}"
            )
        self.state = new_state
        self.history.append(new_state)

    def fail(self, reason: str) -> None:
        """Move to FAILED, recording why."""
        self.failure_reason = reason
        self.transition(FetchState.FAILED)

    @property
    def fallback_attempted(self) -> bool:
        return FetchState.FALLBACK_PENDING in self.history

    @property
    def is_terminal(self) -> bool:
        return self.state in TERMINAL_STATES


@dataclass(frozen=True)
class FetchResult:
    """
    Terminal result of a fetch session.

    image is None when the display should keep showing the fallback label.
    """

    target: RequestTarget
    image: Optional[DecodedImage]
    session: FetchSession

    @property
    def success(self) -> bool:
        return self.image is not None

    @property
    def use_fallback(self) -> bool:
        return self.image is None
