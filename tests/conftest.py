"""
Shared fixtures for linechat tests.
"""

import socket
import threading
import pytest


# Generous upper bound for anything that crosses a thread or the loopback
TIMEOUT = 5.0


class RecordingObserver:
    """Records every notification and lets tests wait for them."""

    def __init__(self):
        self.events = []
        self._cond = threading.Condition()

    def _record(self, name, *args):
        with self._cond:
            self.events.append((name, args))
            self._cond.notify_all()

    def on_state_changed(self, state):
        self._record("on_state_changed", state)

    def on_listening(self, port):
        self._record("on_listening", port)

    def on_connecting(self, host, port):
        self._record("on_connecting", host, port)

    def on_connected(self):
        self._record("on_connected")

    def on_message_received(self, text):
        self._record("on_message_received", text)

    def on_message_sent(self, text):
        self._record("on_message_sent", text)

    def on_remote_closed(self):
        self._record("on_remote_closed")

    def on_error(self, error):
        self._record("on_error", error)

    def on_closed(self):
        self._record("on_closed")

    def names(self):
        with self._cond:
            return [name for name, _ in self.events]

    def count(self, name):
        return self.names().count(name)

    def args(self, name):
        """Argument tuples of every recorded `name` notification."""
        with self._cond:
            return [args for n, args in self.events if n == name]

    def states(self):
        return [args[0] for args in self.args("on_state_changed")]

    def wait_for(self, name, count=1, timeout=TIMEOUT):
        with self._cond:
            return self._cond.wait_for(
                lambda: sum(1 for n, _ in self.events if n == name) >= count,
                timeout,
            )


@pytest.fixture
def make_recorder():
    return RecordingObserver


@pytest.fixture
def track():
    """Register connections to be closed when the test ends."""
    connections = []

    def _track(conn):
        connections.append(conn)
        return conn

    yield _track

    for conn in connections:
        conn.close()
    for conn in connections:
        conn.join(TIMEOUT)


@pytest.fixture
def free_port():
    """A loopback port with nothing listening on it."""
    s = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    s.bind(("127.0.0.1", 0))
    port = s.getsockname()[1]
    s.close()
    return port
