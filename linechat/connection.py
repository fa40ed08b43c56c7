"""
Chat Connection - one two-party, line-delimited text chat link.

A ChatConnection wraps exactly one stream-socket session. It either waits
for a single inbound peer (Listener) or dials one out (Dialer). Once the
socket is up, both sides exchange newline-terminated lines of text.

All blocking socket work (bind/accept, connect, line reads) runs on one
background thread per connection. The control operations - send(), close()
and the state property - may be called from any other thread. Everything
that mutates the state or touches the socket references goes through a
single lock, but the blocking calls themselves run outside it: otherwise
close() could never run while the background thread sits in accept() or
readline().

A blocked accept(), connect() or readline() can't be interrupted by setting
a flag. close() instead shuts down the socket underneath it, the background
thread sees an error or end-of-stream, and then runs the one cleanup routine
that every exit path shares.

Usage:
    # Listening side
    conn = listen(1501, observer=my_observer)

    # Dialing side
    conn = connect("localhost", 1501, observer=my_observer)

    conn.send("Hello!")      # no-op unless CONNECTED
    conn.close()             # idempotent, any thread
"""

import socket
import threading
import logging
from dataclasses import dataclass
from typing import Optional, Tuple

from .states import ConnectionState, ConnectionStateMachine, Role, CloseReason, Outcome
from .notifier import Event, NotificationDispatcher
from .errors import ChatError, BindError, ConnectError, ChatIOError


logger = logging.getLogger(__name__)


DEFAULT_PORT = 1501
DEFAULT_HOST = "localhost"


@dataclass
class ChatConfig:
    """Configuration options for a chat connection."""

    # Text encoding on the wire
    encoding: str = "utf-8"

    # How undecodable inbound bytes are handled ("replace" never raises)
    decode_errors: str = "replace"

    # Appended to every outbound message
    line_delimiter: str = "\n"

    # Interface the listener binds to ("" for all interfaces)
    bind_host: str = ""

    # Pending connection queue length - only one peer is ever accepted
    backlog: int = 1

    # Allow listening again on a port right after the last session closed
    reuse_address: bool = True

    # Background threads don't keep the process alive
    daemon_threads: bool = True


class ChatConnection:
    """
    A two-party chat connection.

    Prefer the listen() and connect() functions, which construct and start
    the connection in one step. Construction by itself does no I/O.
    """

    def __init__(self, role: Role, port: int, remote_host: Optional[str] = None,
                 observer=None,
                 config: Optional[ChatConfig] = None,
                 dispatcher: Optional[NotificationDispatcher] = None):
        """
        Initialize a chat connection.

        Args:
            role: Listener or Dialer
            port: Port to listen on, or remote port to dial (0..65535,
                  validated by the caller)
            remote_host: Host to dial (Dialer only)
            observer: Receives this connection's notifications
            config: Connection options
            dispatcher: Shared notification dispatcher; by default the
                        connection creates its own and stops it once closed
        """
        if role == Role.DIALER and not remote_host:
            raise ValueError("A dialing connection needs a remote host")

        self.role = role
        self.port = port
        self.remote_host = remote_host
        self.config = config or ChatConfig()

        # Notifications
        self._owns_dispatcher = dispatcher is None
        self._dispatcher = dispatcher or NotificationDispatcher(
            name=f"linechat-notify-{port}", daemon=self.config.daemon_threads
        )
        if observer is not None:
            self._dispatcher.add_observer(observer)

        # State machine
        self._state_machine = ConnectionStateMachine(role.initial_state)
        self._state_machine.on_transition(self._on_transition)

        # Socket resources (only touched under _lock)
        self._listener: Optional[socket.socket] = None
        self._socket: Optional[socket.socket] = None
        self._reader = None
        self._writer = None

        self._local_address: Optional[Tuple[str, int]] = None
        self._peer_address: Optional[Tuple[str, int]] = None

        # Why the connection ended; first cause recorded wins
        self._outcome: Optional[Outcome] = None

        # Background thread
        self._started = False
        self._cleaned_up = False
        self._thread: Optional[threading.Thread] = None

        # Events for blocking waits
        self._bound_event = threading.Event()
        self._established_event = threading.Event()
        self._closed_event = threading.Event()

        # Lock for thread safety
        self._lock = threading.RLock()

    # ========== Properties ==========

    @property
    def state(self) -> ConnectionState:
        """Current connection state."""
        with self._lock:
            return self._state_machine.state

    @property
    def is_connected(self) -> bool:
        with self._lock:
            return self._state_machine.is_connected()

    @property
    def is_closed(self) -> bool:
        with self._lock:
            return self._state_machine.is_closed()

    @property
    def outcome(self) -> Optional[Outcome]:
        """Why the connection closed (None while it is still open)."""
        with self._lock:
            return self._outcome

    @property
    def local_address(self) -> Optional[Tuple[str, int]]:
        """Bound address of the listener, or local end of the stream socket."""
        with self._lock:
            return self._local_address

    @property
    def peer_address(self) -> Optional[Tuple[str, int]]:
        """Address of the remote peer once connected."""
        with self._lock:
            return self._peer_address

    @property
    def dispatcher(self) -> NotificationDispatcher:
        return self._dispatcher

    def add_observer(self, observer):
        """Register another observer for this connection's notifications."""
        self._dispatcher.add_observer(observer)

    # ========== Startup ==========

    def start(self) -> "ChatConnection":
        """
        Announce the initial state and start the background thread.

        Returns immediately; all socket I/O happens on the background thread.

        Returns:
            self, so construction and start can be chained

        Raises:
            RuntimeError: If already started or already closed
        """
        with self._lock:
            if self._started:
                raise RuntimeError("Connection already started")
            if self._state_machine.is_closed():
                raise RuntimeError("Connection is closed")
            self._started = True

            self._dispatcher.start()
            self._notify(Event.STATE_CHANGED, self._state_machine.state)

            if self.role == Role.LISTENER:
                logger.info(f"Listening on port {self.port}")
                self._notify(Event.LISTENING, self.port)
            else:
                logger.info(f"Connecting to {self.remote_host}:{self.port}")
                self._notify(Event.CONNECTING, self.remote_host, self.port)

            self._thread = threading.Thread(
                target=self._run,
                name=f"linechat-{self.role.name.lower()}-{self.port}",
                daemon=self.config.daemon_threads,
            )
            self._thread.start()

        return self

    # ========== Background Thread ==========

    def _run(self):
        """
        The connection lifecycle, executed once on the background thread.

        Every way out of here - peer hung up, close() called, I/O error -
        ends in _clean_up().
        """
        try:
            if self.role == Role.LISTENER:
                sock = self._accept_peer()
            else:
                sock = self._dial_peer()

            if sock is not None and self._connection_opened(sock):
                self._receive_loop()

        except ChatError as e:
            with self._lock:
                # After a local close the failure is just the forced wake-up
                if not self._state_machine.is_closed():
                    logger.warning(f"Connection failed: {e}")
                    self._record_outcome(Outcome(CloseReason.ERROR, e))
                    self._notify(Event.ERROR, e)
        finally:
            self._clean_up()

    def _accept_peer(self) -> Optional[socket.socket]:
        """
        Bind, listen and wait for exactly one peer.

        The listening socket is closed as soon as a peer is accepted: this
        is a two-party chat, not a server.

        Returns:
            The accepted stream socket, or None if closed before binding
        """
        listener = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        try:
            if self.config.reuse_address:
                listener.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
            listener.bind((self.config.bind_host, self.port))
            listener.listen(self.config.backlog)
        except (OSError, OverflowError) as e:
            listener.close()
            raise BindError(f"Cannot listen on port {self.port}: {e}") from e

        with self._lock:
            if self._state_machine.is_closed():
                listener.close()
                return None
            self._listener = listener
            self._local_address = listener.getsockname()[:2]

        self._bound_event.set()
        logger.debug(f"Bound to {self._local_address[0] or '*'}:{self._local_address[1]}")

        try:
            sock, address = listener.accept()
        except OSError as e:
            raise ChatIOError(f"Accept failed on port {self.port}: {e}") from e
        finally:
            with self._lock:
                self._listener = None
            listener.close()

        logger.debug(f"Accepted peer {address[0]}:{address[1]}")
        return sock

    def _dial_peer(self) -> Optional[socket.socket]:
        """
        Connect to (remote_host, port), trying each resolved address in turn.

        Each candidate socket is registered before connect() blocks, so that
        close() can abort the attempt.

        Returns:
            The connected stream socket, or None if closed while dialing
        """
        try:
            candidates = socket.getaddrinfo(self.remote_host, self.port,
                                            type=socket.SOCK_STREAM)
        except (OSError, OverflowError, UnicodeError) as e:
            raise ConnectError(f"Cannot resolve {self.remote_host}: {e}") from e

        last_error: Optional[OSError] = None
        for family, socktype, proto, _, address in candidates:
            try:
                sock = socket.socket(family, socktype, proto)
            except OSError as e:
                # e.g. an IPv6 address on a host without IPv6
                last_error = e
                continue

            with self._lock:
                if self._state_machine.is_closed():
                    sock.close()
                    return None
                self._socket = sock

            try:
                sock.connect(address)
                return sock
            except OSError as e:
                logger.debug(f"Connect to {address} failed: {e}")
                last_error = e
                with self._lock:
                    self._socket = None
                sock.close()

        with self._lock:
            if self._state_machine.is_closed():
                return None

        raise ConnectError(
            f"Cannot connect to {self.remote_host}:{self.port}: {last_error}"
        ) from last_error

    def _connection_opened(self, sock: socket.socket) -> bool:
        """
        Move to CONNECTED and wrap the socket in a line reader and writer.

        Returns:
            False if close() won the race and the socket was discarded
        """
        with self._lock:
            if self._state_machine.is_closed():
                _close_quietly(sock)
                self._socket = None
                return False

            try:
                self._peer_address = sock.getpeername()[:2]
                self._local_address = sock.getsockname()[:2]
            except OSError as e:
                _close_quietly(sock)
                self._socket = None
                raise ChatIOError(f"Connection lost while opening: {e}") from e

            self._socket = sock
            self._listener = None
            self._reader = sock.makefile(
                "r", encoding=self.config.encoding,
                errors=self.config.decode_errors, newline="\n"
            )
            # Binary: send() encodes itself so it can reject a message
            # before announcing it
            self._writer = sock.makefile("wb")

            self._state_machine.transition(ConnectionState.CONNECTED)
            self._notify(Event.CONNECTED)

        self._established_event.set()
        logger.info(f"Connection established with {self._peer_address[0]}:{self._peer_address[1]}")
        return True

    def _receive_loop(self):
        """Read lines until the state leaves CONNECTED."""
        while True:
            with self._lock:
                if not self._state_machine.is_connected():
                    break
                reader = self._reader

            try:
                line = reader.readline()
            except OSError as e:
                raise ChatIOError(f"Receive failed: {e}") from e

            if not line:
                self._connection_closed_from_other_side()
            else:
                self._received(_strip_delimiter(line))

    def _received(self, message: str):
        with self._lock:
            # Lines racing a close are dropped
            if self._state_machine.is_connected():
                self._notify(Event.MESSAGE_RECEIVED, message)

    def _connection_closed_from_other_side(self):
        with self._lock:
            if self._state_machine.is_connected():
                logger.info("Connection closed from other side")
                self._record_outcome(Outcome(CloseReason.REMOTE))
                self._notify(Event.REMOTE_CLOSED)
                self._state_machine.transition(ConnectionState.CLOSED)

    def _clean_up(self):
        """
        Release every resource and announce the close. Runs exactly once.

        Sockets may already have been closed by close(); errors from closing
        them again are ignored.
        """
        with self._lock:
            if self._cleaned_up:
                return
            self._cleaned_up = True

            self._record_outcome(Outcome(CloseReason.LOCAL))
            self._state_machine.transition(ConnectionState.CLOSED)
            self._notify(Event.CLOSED)

            for stream in (self._reader, self._writer):
                if stream is not None:
                    _close_quietly(stream)
            if self._socket is not None:
                _close_quietly(self._socket)
            if self._listener is not None:
                _close_quietly(self._listener)

            self._socket = None
            self._reader = None
            self._writer = None
            self._listener = None
            outcome = self._outcome

        # Wake up any waiters
        self._closed_event.set()
        self._bound_event.set()
        self._established_event.set()

        logger.info(f"Connection closed ({outcome})")

        if self._owns_dispatcher:
            self._dispatcher.stop()

    # ========== Control Operations ==========

    def send(self, message: str) -> bool:
        """
        Send one message to the peer.

        Does nothing unless the connection is CONNECTED. The message is
        announced to observers, then written with the line delimiter
        appended. A message that can't be encoded is never announced. Either
        failure, encoding or writing, is reported through on_error() and
        closes the connection.

        The write happens under the connection lock. If the peer stops
        reading and the socket buffer fills up, send() blocks, and so does a
        close() from another thread until the write completes.

        Args:
            message: Text to send (should not contain newlines - the peer
                     would see them as message boundaries)

        Returns:
            True if the message was written
        """
        with self._lock:
            if not self._state_machine.is_connected():
                return False

            try:
                data = (message + self.config.line_delimiter).encode(self.config.encoding)
            except UnicodeError as e:
                self._send_failed(ChatIOError(
                    f"Cannot encode message as {self.config.encoding}: {e}"
                ))
                return False

            self._notify(Event.MESSAGE_SENT, message)
            try:
                self._writer.write(data)
                self._writer.flush()
            except OSError as e:
                self._send_failed(ChatIOError(
                    f"Error occurred while trying to send data: {e}"
                ))
                return False

            return True

    def _send_failed(self, error: ChatIOError):
        logger.warning(str(error))
        self._record_outcome(Outcome(CloseReason.ERROR, error))
        self._notify(Event.ERROR, error)
        self.close()

    def close(self):
        """
        Close the connection.

        Idempotent and callable from any thread in any state. Shuts down
        whichever socket is open so that a blocked accept, connect or read
        on the background thread returns and cleanup runs there.

        Waits for a send() in progress to finish writing first. A connection
        closed before start() sends no notifications at all.
        """
        with self._lock:
            self._record_outcome(Outcome(CloseReason.LOCAL))
            self._state_machine.transition(ConnectionState.CLOSED)

            if self._socket is not None:
                _shutdown_quietly(self._socket)
            if self._listener is not None:
                _shutdown_quietly(self._listener)

            never_started = not self._started

        if never_started:
            self._closed_event.set()

    # ========== Waiting ==========

    def wait_until_listening(self, timeout: Optional[float] = None) -> Optional[int]:
        """
        Block until the listening socket is bound.

        Returns:
            The bound port (useful when listening on port 0), or None if the
            connection closed before binding or the timeout expired
        """
        self._bound_event.wait(timeout)
        with self._lock:
            if self._local_address is None:
                return None
            return self._local_address[1]

    def wait_until_connected(self, timeout: Optional[float] = None) -> bool:
        """
        Block until the connection is established.

        Returns:
            True if CONNECTED was reached (it may have closed since)
        """
        self._established_event.wait(timeout)
        with self._lock:
            return self._peer_address is not None

    def join(self, timeout: Optional[float] = None) -> bool:
        """
        Wait for the connection to finish closing.

        When the connection owns its dispatcher this also waits for every
        pending notification to be delivered.

        Returns:
            True if everything finished within the timeout
        """
        if not self._closed_event.wait(timeout):
            return False

        thread = self._thread
        if thread is not None:
            thread.join(timeout)
            if thread.is_alive():
                return False

        if self._owns_dispatcher:
            return self._dispatcher.join(timeout)
        return True

    # ========== Internal Methods ==========

    def _notify(self, event: Event, *args):
        self._dispatcher.post(event, *args)

    def _on_transition(self, from_state: ConnectionState, to_state: ConnectionState):
        logger.debug(f"State {from_state.name} -> {to_state.name}")
        # Unstarted connections never announced their initial state either
        if self._started:
            self._notify(Event.STATE_CHANGED, to_state)

    def _record_outcome(self, outcome: Outcome):
        if self._outcome is None:
            self._outcome = outcome

    def __enter__(self):
        return self

    def __exit__(self, *args):
        self.close()

    def __repr__(self):
        target = f"{self.remote_host}:{self.port}" if self.remote_host else f"port {self.port}"
        return f"ChatConnection({self.role.name.lower()}, {target}, {self.state.name})"


def _strip_delimiter(line: str) -> str:
    """Remove the trailing \\n (or \\r\\n) from a received line."""
    if line.endswith("\n"):
        line = line[:-1]
        if line.endswith("\r"):
            line = line[:-1]
    return line


def _shutdown_quietly(sock: socket.socket):
    """Shut down and close a socket, ignoring "not connected"/"already closed"."""
    try:
        sock.shutdown(socket.SHUT_RDWR)
    except OSError as e:
        logger.debug(f"Ignoring shutdown error: {e}")
    _close_quietly(sock)


def _close_quietly(resource):
    try:
        resource.close()
    except OSError as e:
        logger.debug(f"Ignoring close error: {e}")


# Convenience functions for creating connections
def listen(port: int, observer=None,
           config: Optional[ChatConfig] = None,
           dispatcher: Optional[NotificationDispatcher] = None) -> ChatConnection:
    """
    Start a connection that waits for one peer on the given port.

    Args:
        port: Port to listen on (0..65535; 0 picks a free port)
        observer: Receives notifications
        config: Connection options
        dispatcher: Shared notification dispatcher

    Returns:
        The started connection, in state LISTENING
    """
    conn = ChatConnection(Role.LISTENER, port, observer=observer,
                          config=config, dispatcher=dispatcher)
    return conn.start()


def connect(host: str, port: int, observer=None,
            config: Optional[ChatConfig] = None,
            dispatcher: Optional[NotificationDispatcher] = None) -> ChatConnection:
    """
    Start a connection that dials (host, port).

    Returns:
        The started connection, in state CONNECTING
    """
    conn = ChatConnection(Role.DIALER, port, remote_host=host, observer=observer,
                          config=config, dispatcher=dispatcher)
    return conn.start()
