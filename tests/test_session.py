"""
Tests for the front-end session controller.
"""

import pytest
from linechat import ChatSession, ConnectionState, InvalidPortError, parse_port


TIMEOUT = 5.0


class TestParsePort:
    """Test user port validation."""

    @pytest.mark.parametrize("value,expected", [
        (0, 0),
        (65535, 65535),
        ("1501", 1501),
        (" 80 ", 80),
    ])
    def test_valid_ports(self, value, expected):
        assert parse_port(value) == expected

    @pytest.mark.parametrize("value", [-1, 65536, "abc", "", "15.01", "99999"])
    def test_invalid_ports(self, value):
        with pytest.raises(InvalidPortError):
            parse_port(value)

    def test_error_message(self):
        with pytest.raises(InvalidPortError, match="abc is not a legal port number."):
            parse_port("abc")

    def test_invalid_port_is_a_value_error(self):
        with pytest.raises(ValueError):
            parse_port("70000")


@pytest.fixture
def sessions():
    """Sessions to shut down when the test ends."""
    created = []

    def _make(**kwargs):
        session = ChatSession(**kwargs)
        created.append(session)
        return session

    yield _make

    for session in created:
        session.shutdown(TIMEOUT)


class TestChatSession:
    """Test the one-connection-at-a-time controller."""

    def test_idle_before_first_connection(self, sessions):
        session = sessions()
        assert session.state is None
        assert session.is_idle
        assert session.send("nobody") is False
        session.close()

    def test_refuses_second_connection_while_busy(self, sessions):
        session = sessions()
        conn = session.listen(0)
        assert conn is not None
        assert conn.wait_until_listening(TIMEOUT)
        assert not session.is_idle

        assert session.listen(0) is None
        assert session.connect("127.0.0.1", 1501) is None
        assert session.connection is conn

    def test_new_connection_after_close(self, sessions):
        session = sessions()
        first = session.listen(0)
        assert first.wait_until_listening(TIMEOUT)

        session.close()
        assert first.join(TIMEOUT)
        assert session.is_idle
        assert session.state == ConnectionState.CLOSED

        second = session.listen(0)
        assert second is not None
        assert second is not first

    def test_invalid_port_starts_nothing(self, sessions):
        session = sessions()
        with pytest.raises(InvalidPortError):
            session.listen("not a port")
        assert session.connection is None

    def test_empty_host(self, sessions):
        session = sessions()
        with pytest.raises(ValueError):
            session.connect("  ", 1501)
        assert session.connection is None

    def test_conversation_between_sessions(self, sessions, make_recorder):
        server_obs = make_recorder()
        client_obs = make_recorder()
        server = sessions(observer=server_obs)
        client = sessions(observer=client_obs)

        port = server.listen(0).wait_until_listening(TIMEOUT)
        client.connect("127.0.0.1", str(port))
        assert server_obs.wait_for("on_connected")
        assert client_obs.wait_for("on_connected")
        assert server.state == ConnectionState.CONNECTED

        assert client.send("hello")
        assert server_obs.wait_for("on_message_received")
        assert server.send("hi back")
        assert client_obs.wait_for("on_message_received")

        assert client.shutdown(TIMEOUT)
        assert server_obs.wait_for("on_closed")
        assert server.shutdown(TIMEOUT)

        assert server.transcript.lines == [
            "LISTENING ON PORT 0",
            "CONNECTION ESTABLISHED",
            "RECEIVE:  hello",
            "SEND:  hi back",
            "CONNECTION CLOSED FROM OTHER SIDE",
            "*** CONNECTION CLOSED ***",
        ]
        assert client.transcript.lines == [
            f"CONNECTING TO 127.0.0.1 ON PORT {port}",
            "CONNECTION ESTABLISHED",
            "SEND:  hello",
            "RECEIVE:  hi back",
            "*** CONNECTION CLOSED ***",
        ]

    def test_observer_sees_every_connection(self, sessions, make_recorder):
        obs = make_recorder()
        session = sessions(observer=obs)

        for i in range(2):
            conn = session.listen(0)
            assert conn.wait_until_listening(TIMEOUT)
            session.close()
            assert conn.join(TIMEOUT)
            assert obs.wait_for("on_closed", count=i + 1)

        assert obs.count("on_listening") == 2
        assert obs.count("on_closed") == 2
