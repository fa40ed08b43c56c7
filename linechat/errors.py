"""
Chat errors.

Failures on the background thread are never raised to the caller of
listen()/connect(). They are wrapped in one of these classes, reported once
through the observer's on_error() and end the connection.
"""


class ChatError(Exception):
    """Base class for all chat errors."""


class BindError(ChatError):
    """The listening port could not be bound (in use, not permitted, ...)."""


class ConnectError(ChatError):
    """Dialing the peer failed: host unreachable, refused or not resolvable."""


class ChatIOError(ChatError):
    """Accepting, reading or writing failed on an established link."""


class InvalidPortError(ChatError, ValueError):
    """A port number given by the user is not in 0..65535."""


class TranscriptError(ChatError):
    """The transcript could not be written to a file."""
