"""
Connection State Machine - the four states of a chat connection.

A chat connection is much simpler than a full TCP endpoint. It starts either
LISTENING (waiting for one peer) or CONNECTING (dialing one peer), becomes
CONNECTED when the socket is up, and ends in CLOSED:

    LISTENING  --accept ok-->   CONNECTED --EOF/close/error--> CLOSED
    CONNECTING --connect ok-->  CONNECTED
    LISTENING  --close/error--> CLOSED
    CONNECTING --close/error--> CLOSED

CLOSED is terminal. Nothing leaves it, which is what makes close() safe to
call from any thread at any time.
"""

from enum import Enum, auto
from dataclasses import dataclass
from typing import Optional, Callable


class ConnectionState(Enum):
    """Lifecycle states of a chat connection."""

    # Bound to a port, waiting for the single peer to connect
    LISTENING = auto()

    # Dialing the remote host
    CONNECTING = auto()

    # Socket is up - messages can flow both directions
    CONNECTED = auto()

    # Torn down (terminal)
    CLOSED = auto()

    def can_send(self) -> bool:
        """Check if messages may be sent in this state."""
        return self == ConnectionState.CONNECTED

    def is_pending(self) -> bool:
        """Check if the connection is still being set up."""
        return self in (ConnectionState.LISTENING, ConnectionState.CONNECTING)

    def is_terminal(self) -> bool:
        return self == ConnectionState.CLOSED


class Role(Enum):
    """Which side of the link a connection plays."""

    # Passively accepts one inbound session
    LISTENER = auto()

    # Actively initiates one outbound session
    DIALER = auto()

    @property
    def initial_state(self) -> ConnectionState:
        if self == Role.LISTENER:
            return ConnectionState.LISTENING
        return ConnectionState.CONNECTING


class CloseReason(Enum):
    """Who or what ended a connection."""

    # close() was called on this side
    LOCAL = auto()

    # The peer ended its stream
    REMOTE = auto()

    # Bind, connect, read or write failed
    ERROR = auto()


@dataclass(frozen=True)
class Outcome:
    """
    Why a connection closed.

    Several paths can race to end a connection (an explicit close, the peer
    hanging up, an I/O error). The first one recorded becomes the outcome and
    is handed once to the cleanup routine.
    """
    reason: CloseReason
    error: Optional[Exception] = None

    def __str__(self) -> str:
        if self.error is not None:
            return f"{self.reason.name.lower()}: {self.error}"
        return self.reason.name.lower()


# Legal transitions out of each state
TRANSITIONS = {
    ConnectionState.LISTENING: frozenset({ConnectionState.CONNECTED, ConnectionState.CLOSED}),
    ConnectionState.CONNECTING: frozenset({ConnectionState.CONNECTED, ConnectionState.CLOSED}),
    ConnectionState.CONNECTED: frozenset({ConnectionState.CLOSED}),
    ConnectionState.CLOSED: frozenset(),
}


class ConnectionStateMachine:
    """
    Chat connection state machine.

    Validates transitions against TRANSITIONS and notifies registered
    callbacks when the state actually changes. It is not thread-safe on its
    own: the owning connection only touches it while holding its lock.
    """

    def __init__(self, initial_state: ConnectionState):
        self.state = initial_state
        self._transition_callbacks: list[Callable] = []

    def on_transition(self, callback: Callable[[ConnectionState, ConnectionState], None]):
        """Register a callback for state transitions."""
        self._transition_callbacks.append(callback)

    def _notify_transition(self, from_state: ConnectionState, to_state: ConnectionState):
        for callback in self._transition_callbacks:
            callback(from_state, to_state)

    def can_transition(self, new_state: ConnectionState) -> bool:
        """Check if moving to new_state is legal from the current state."""
        return new_state in TRANSITIONS[self.state]

    def transition(self, new_state: ConnectionState) -> bool:
        """
        Attempt a state transition.

        Args:
            new_state: The state to move to

        Returns:
            True if the state changed, False if the transition was illegal
            (including any attempt to leave CLOSED).
        """
        if not self.can_transition(new_state):
            return False

        old_state = self.state
        self.state = new_state
        self._notify_transition(old_state, new_state)
        return True

    def is_connected(self) -> bool:
        return self.state == ConnectionState.CONNECTED

    def is_closed(self) -> bool:
        return self.state == ConnectionState.CLOSED

    def __str__(self) -> str:
        return f"ConnectionStateMachine(state={self.state.name})"
