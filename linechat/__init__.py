"""
linechat - a two-party, line-delimited text chat over a stream socket.

One side listens for a single incoming connection, the other dials out. Once
linked, either side sends newline-terminated messages and receives the
other's messages asynchronously. Front ends observe the connection through
notifications instead of being called from the socket thread.
"""

from .states import ConnectionState, Role, CloseReason, Outcome
from .errors import (
    ChatError, BindError, ConnectError, ChatIOError,
    InvalidPortError, TranscriptError,
)
from .notifier import Event, ConnectionObserver, NotificationDispatcher
from .connection import ChatConnection, ChatConfig, listen, connect, DEFAULT_PORT, DEFAULT_HOST
from .transcript import Transcript
from .session import ChatSession, parse_port

__version__ = "1.0.0"

__all__ = [
    "ConnectionState",
    "Role",
    "CloseReason",
    "Outcome",
    "ChatError",
    "BindError",
    "ConnectError",
    "ChatIOError",
    "InvalidPortError",
    "TranscriptError",
    "Event",
    "ConnectionObserver",
    "NotificationDispatcher",
    "ChatConnection",
    "ChatConfig",
    "listen",
    "connect",
    "DEFAULT_PORT",
    "DEFAULT_HOST",
    "Transcript",
    "ChatSession",
    "parse_port",
]
