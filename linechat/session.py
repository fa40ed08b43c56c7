"""
Chat Session - the front-end side of a chat window.

A ChatSession plays the part of the window's controls. It holds at most one
live connection at a time, validates port numbers typed by the user, and
forwards listen/connect/send/close commands. All of its connections share
one notification dispatcher, so a front end registers its observer once and
sees every connection's events in order, and one Transcript records the
whole conversation.
"""

import threading
import logging
from typing import Optional, Union

from .states import ConnectionState
from .errors import InvalidPortError
from .notifier import NotificationDispatcher
from .connection import ChatConnection, ChatConfig, listen, connect
from .transcript import Transcript


logger = logging.getLogger(__name__)


MAX_PORT = 65535


def parse_port(value: Union[int, str]) -> int:
    """
    Validate a user-supplied port number.

    Args:
        value: Port as an int or a decimal string

    Returns:
        The port as an int in 0..65535

    Raises:
        InvalidPortError: If value is not a legal port number
    """
    try:
        port = int(str(value).strip())
    except ValueError:
        raise InvalidPortError(f"{value} is not a legal port number.") from None

    if port < 0 or port > MAX_PORT:
        raise InvalidPortError(f"{value} is not a legal port number.")
    return port


class ChatSession:
    """
    Owns the current connection of a chat front end.

    Usage:
        session = ChatSession(observer=window)
        session.listen("1501")
        ...
        session.send("hi")
        session.close()
        session.shutdown()
    """

    def __init__(self, observer=None, config: Optional[ChatConfig] = None):
        """
        Create a session.

        Args:
            observer: Receives notifications from every connection
            config: Options for the connections this session creates
        """
        self.config = config or ChatConfig()
        self.transcript = Transcript()

        self._dispatcher = NotificationDispatcher(
            name="linechat-session", daemon=self.config.daemon_threads
        )
        self._dispatcher.add_observer(self.transcript)
        if observer is not None:
            self._dispatcher.add_observer(observer)
        self._dispatcher.start()

        self._connection: Optional[ChatConnection] = None
        self._lock = threading.Lock()

    @property
    def connection(self) -> Optional[ChatConnection]:
        with self._lock:
            return self._connection

    @property
    def state(self) -> Optional[ConnectionState]:
        """State of the current connection, None before the first one."""
        conn = self.connection
        return conn.state if conn else None

    @property
    def is_idle(self) -> bool:
        """True when a new connection may be started."""
        conn = self.connection
        return conn is None or conn.is_closed

    def add_observer(self, observer):
        self._dispatcher.add_observer(observer)

    def listen(self, port: Union[int, str]) -> Optional[ChatConnection]:
        """
        Start listening for a peer.

        Returns:
            The new connection, or None if one is already in progress

        Raises:
            InvalidPortError: If port is not a legal port number
        """
        port = parse_port(port)
        with self._lock:
            if not self._idle_locked():
                logger.warning("Listen ignored: a connection is already open")
                return None
            self._connection = listen(port, config=self.config,
                                      dispatcher=self._dispatcher)
            return self._connection

    def connect(self, host: str, port: Union[int, str]) -> Optional[ChatConnection]:
        """
        Dial a peer.

        Returns:
            The new connection, or None if one is already in progress

        Raises:
            InvalidPortError: If port is not a legal port number
        """
        port = parse_port(port)
        host = host.strip()
        if not host:
            raise ValueError("Remote host must not be empty")

        with self._lock:
            if not self._idle_locked():
                logger.warning("Connect ignored: a connection is already open")
                return None
            self._connection = connect(host, port, config=self.config,
                                       dispatcher=self._dispatcher)
            return self._connection

    def send(self, message: str) -> bool:
        """Send a message if the current connection is CONNECTED."""
        conn = self.connection
        if conn is None:
            return False
        return conn.send(message)

    def close(self):
        """Close the current connection, if any."""
        conn = self.connection
        if conn is not None:
            conn.close()

    def shutdown(self, timeout: Optional[float] = None) -> bool:
        """
        Close the current connection and stop delivering notifications.

        Everything posted before shutdown is still delivered.

        Returns:
            True if the connection and dispatcher finished within the timeout
        """
        conn = self.connection
        finished = True
        if conn is not None:
            conn.close()
            finished = conn.join(timeout)

        self._dispatcher.stop()
        return self._dispatcher.join(timeout) and finished

    def _idle_locked(self) -> bool:
        return self._connection is None or self._connection.is_closed

    def __enter__(self):
        return self

    def __exit__(self, *args):
        self.shutdown()
