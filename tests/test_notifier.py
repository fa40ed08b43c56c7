"""
Tests for notification delivery.
"""

import threading
import pytest
from linechat.notifier import Event, ConnectionObserver, NotificationDispatcher


TIMEOUT = 5.0


class TestNotificationDispatcher:
    """Test ordered, asynchronous delivery."""

    def test_delivers_in_post_order(self, make_recorder):
        """Notifications arrive in exactly the order they were posted."""
        obs = make_recorder()
        dispatcher = NotificationDispatcher()
        dispatcher.add_observer(obs)
        dispatcher.start()

        for i in range(100):
            dispatcher.post(Event.MESSAGE_RECEIVED, f"msg {i}")
        dispatcher.post(Event.CLOSED)

        dispatcher.stop()
        assert dispatcher.join(TIMEOUT)

        received = [args[0] for args in obs.args("on_message_received")]
        assert received == [f"msg {i}" for i in range(100)]
        assert obs.names()[-1] == "on_closed"
        assert dispatcher.delivered == 101

    def test_delivers_on_its_own_thread(self):
        """Observers are never called on the posting thread."""
        seen = []
        done = threading.Event()

        class ThreadObserver(ConnectionObserver):
            def on_connected(self):
                seen.append(threading.current_thread())
                done.set()

        dispatcher = NotificationDispatcher(name="test-notify")
        dispatcher.add_observer(ThreadObserver())
        dispatcher.start()
        dispatcher.post(Event.CONNECTED)

        assert done.wait(TIMEOUT)
        assert seen[0] is not threading.current_thread()
        assert seen[0].name == "test-notify"
        dispatcher.stop()
        dispatcher.join(TIMEOUT)

    def test_posted_before_start_are_kept(self, make_recorder):
        obs = make_recorder()
        dispatcher = NotificationDispatcher()
        dispatcher.add_observer(obs)

        dispatcher.post(Event.LISTENING, 1501)
        dispatcher.post(Event.CLOSED)
        assert obs.names() == []

        dispatcher.start()
        dispatcher.stop()
        assert dispatcher.join(TIMEOUT)
        assert obs.names() == ["on_listening", "on_closed"]
        assert obs.args("on_listening") == [(1501,)]

    def test_observer_error_does_not_stop_delivery(self, make_recorder):
        """A failing observer is logged and skipped."""

        class BrokenObserver:
            def on_message_received(self, text):
                raise RuntimeError("observer bug")

        obs = make_recorder()
        dispatcher = NotificationDispatcher()
        dispatcher.add_observer(BrokenObserver())
        dispatcher.add_observer(obs)
        dispatcher.start()

        dispatcher.post(Event.MESSAGE_RECEIVED, "one")
        dispatcher.post(Event.MESSAGE_RECEIVED, "two")
        dispatcher.stop()
        assert dispatcher.join(TIMEOUT)

        assert obs.args("on_message_received") == [("one",), ("two",)]
        assert dispatcher.observer_errors == 2

    def test_partial_observer(self, make_recorder):
        """Observers only need the methods they care about."""
        closed = []

        class OnlyClosed:
            def on_closed(self):
                closed.append(True)

        dispatcher = NotificationDispatcher()
        dispatcher.add_observer(OnlyClosed())
        dispatcher.start()
        dispatcher.post(Event.CONNECTED)
        dispatcher.post(Event.CLOSED)
        dispatcher.stop()
        assert dispatcher.join(TIMEOUT)

        assert closed == [True]

    def test_add_and_remove_observer(self, make_recorder):
        obs = make_recorder()
        dispatcher = NotificationDispatcher()
        dispatcher.add_observer(obs)
        dispatcher.add_observer(obs)  # duplicate ignored
        dispatcher.remove_observer(obs)
        dispatcher.start()

        dispatcher.post(Event.CONNECTED)
        dispatcher.stop()
        assert dispatcher.join(TIMEOUT)
        assert obs.names() == []

    def test_start_and_stop_are_idempotent(self):
        dispatcher = NotificationDispatcher()
        dispatcher.start()
        dispatcher.start()
        assert dispatcher.is_running

        dispatcher.stop()
        dispatcher.stop()
        assert dispatcher.join(TIMEOUT)
        assert not dispatcher.is_running

    def test_join_without_start(self):
        assert NotificationDispatcher().join(0.1)


class TestConnectionObserver:
    """Test the no-op observer base class."""

    @pytest.mark.parametrize("event", list(Event))
    def test_base_class_handles_every_event(self, event):
        handler = getattr(ConnectionObserver(), event.value)
        args = {
            Event.STATE_CHANGED: ("state",),
            Event.LISTENING: (1501,),
            Event.CONNECTING: ("localhost", 1501),
            Event.MESSAGE_RECEIVED: ("hi",),
            Event.MESSAGE_SENT: ("hi",),
            Event.ERROR: (RuntimeError("x"),),
        }.get(event, ())
        assert handler(*args) is None
