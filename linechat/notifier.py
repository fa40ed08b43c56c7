"""
Connection notifications - how a connection talks to whatever displays it.

The connection never touches a front end directly. Every event it produces
is posted to a NotificationDispatcher, which hands the events to observers
on its own thread, one at a time, in the order they were posted. A slow or
broken observer therefore can't stall the socket thread, and an observer
never sees "message received" before "connection established".
"""

import threading
import logging
from enum import Enum
from dataclasses import dataclass
from typing import Optional, List, Any
from queue import Queue


logger = logging.getLogger(__name__)


class Event(Enum):
    """Notification kinds; each value is the observer method that handles it."""

    STATE_CHANGED = "on_state_changed"
    LISTENING = "on_listening"
    CONNECTING = "on_connecting"
    CONNECTED = "on_connected"
    MESSAGE_RECEIVED = "on_message_received"
    MESSAGE_SENT = "on_message_sent"
    REMOTE_CLOSED = "on_remote_closed"
    ERROR = "on_error"
    CLOSED = "on_closed"


@dataclass(frozen=True)
class Notification:
    """A single queued event and its arguments."""
    event: Event
    args: tuple = ()


class ConnectionObserver:
    """
    Receives connection notifications.

    Subclass and override what you need; every method defaults to doing
    nothing. Plain objects implementing only some of these methods work too.
    """

    def on_state_changed(self, state):
        pass

    def on_listening(self, port: int):
        pass

    def on_connecting(self, host: str, port: int):
        pass

    def on_connected(self):
        pass

    def on_message_received(self, text: str):
        pass

    def on_message_sent(self, text: str):
        pass

    def on_remote_closed(self):
        pass

    def on_error(self, error: Exception):
        pass

    def on_closed(self):
        pass


# Queued by stop() to end the delivery thread
_STOP = object()


class NotificationDispatcher:
    """
    Delivers notifications to observers on a background thread.

    Usage:
        dispatcher = NotificationDispatcher()
        dispatcher.add_observer(my_observer)
        dispatcher.start()

        dispatcher.post(Event.CONNECTED)
        dispatcher.post(Event.MESSAGE_RECEIVED, "hello")

        dispatcher.stop()
        dispatcher.join()

    Notifications posted before start() are kept and delivered once the
    thread runs. stop() lets everything already posted be delivered first.
    A dispatcher runs once; it can't be restarted after stop().
    """

    def __init__(self, name: str = "linechat-notify", daemon: bool = True):
        self.name = name
        self.daemon = daemon

        self._observers: List[Any] = []
        self._queue: Queue = Queue()

        self._thread: Optional[threading.Thread] = None
        self._stopped = False

        # Statistics
        self.delivered = 0
        self.observer_errors = 0

        self._lock = threading.Lock()

    def add_observer(self, observer):
        """Register an observer for all subsequent deliveries."""
        with self._lock:
            if observer not in self._observers:
                self._observers.append(observer)

    def remove_observer(self, observer):
        with self._lock:
            if observer in self._observers:
                self._observers.remove(observer)

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self):
        """Start the delivery thread. Calling it again is a no-op."""
        with self._lock:
            if self._thread is not None:
                return
            self._thread = threading.Thread(
                target=self._deliver_loop, name=self.name, daemon=self.daemon
            )
            self._thread.start()

    def post(self, event: Event, *args):
        """Queue a notification. Never blocks."""
        self._queue.put(Notification(event, args))

    def stop(self):
        """Ask the delivery thread to exit once the queue is drained."""
        with self._lock:
            if self._stopped:
                return
            self._stopped = True
        self._queue.put(_STOP)

    def join(self, timeout: Optional[float] = None) -> bool:
        """
        Wait for the delivery thread to finish.

        Returns:
            True if the thread has exited (or was never started)
        """
        thread = self._thread
        if thread is None:
            return True
        thread.join(timeout)
        return not thread.is_alive()

    def _deliver_loop(self):
        """Main delivery loop."""
        while True:
            item = self._queue.get()
            if item is _STOP:
                break
            self._deliver(item)

        logger.debug(f"{self.name}: delivery stopped after {self.delivered} notifications")

    def _deliver(self, notification: Notification):
        with self._lock:
            observers = list(self._observers)

        method = notification.event.value
        for observer in observers:
            handler = getattr(observer, method, None)
            if handler is None:
                continue
            try:
                handler(*notification.args)
            except Exception as e:
                self.observer_errors += 1
                logger.error(f"Error in observer {method}: {e}", exc_info=True)

        self.delivered += 1
