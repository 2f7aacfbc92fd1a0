"""Tests for the RTA WebSocket transport."""

import json
import threading
from types import SimpleNamespace

import websocket

from xbox_rta import RTA_PROTOCOL, ConnectionState, MessageAssembler, RtaTransport

TEXT = websocket.ABNF.OPCODE_TEXT
CONT = websocket.ABNF.OPCODE_CONT
CLOSE = websocket.ABNF.OPCODE_CLOSE
PING = websocket.ABNF.OPCODE_PING


def frame(opcode, data, fin=True):
    return opcode, SimpleNamespace(data=data, fin=fin)


class FakeSocket:

    def __init__(self, frames=(), connect_error=None, recv_error=None):
        self.frames = list(frames)
        self.connect_error = connect_error
        self.recv_error = recv_error
        self.sent = []
        self.connect_args = None
        self.closed = False

    def connect(self, url, **kwargs):
        self.connect_args = (url, kwargs)
        if self.connect_error:
            raise self.connect_error

    def settimeout(self, timeout):
        pass

    def recv_data_frame(self, control_frame=False):
        if self.frames:
            return self.frames.pop(0)
        if self.recv_error:
            raise self.recv_error
        return frame(CLOSE, b"")

    def send(self, payload):
        self.sent.append(payload)

    def shutdown(self):
        self.closed = True

    def close(self):
        self.closed = True


def run(transport):
    assert transport.start()
    transport.thread.join(5)
    assert not transport.thread.is_alive()


class TestMessageAssembler:

    def test_fragments_are_joined(self):
        """Nothing is emitted until the final fragment."""
        assembler = MessageAssembler()
        assert assembler.feed(b'[3,1,', False) is None
        assert assembler.feed(b'{"a":', False) is None
        assert assembler.feed(b'1}]', True) == b'[3,1,{"a":1}]'

    def test_buffer_resets_between_messages(self):
        """Each complete message starts from an empty buffer."""
        assembler = MessageAssembler()
        assembler.feed(b"one", True)
        assert assembler.feed("two", True) == b"two"


class TestRtaTransport:

    def test_handshake_and_delivery(self, identity):
        """Connects with auth header and subprotocol, delivers assembled messages."""
        sock = FakeSocket([
            frame(TEXT, b'[3,1,{"presence', fin=False),
            frame(CONT, b'Details":[]}]', fin=True),
            frame(PING, b""),
            frame(TEXT, b'[3,2,{}]'),
        ])
        messages, statuses = [], []
        transport = RtaTransport(identity, messages.append,
                                 lambda connected, reason: statuses.append((connected, reason)),
                                 socket_factory=lambda: sock)
        run(transport)

        url, kwargs = sock.connect_args
        assert url == "wss://rta.xboxlive.com:443/connect"
        assert kwargs["header"] == ["Authorization: XBL3.0 x=u;T"]
        assert kwargs["subprotocols"] == [RTA_PROTOCOL]
        assert messages == ['[3,1,{"presenceDetails":[]}]', "[3,2,{}]"]
        assert statuses == [(True, None), (False, None)]
        assert transport.state == ConnectionState.DISCONNECTED
        assert not transport.is_active

    def test_subscribe_sends_frame(self, identity):
        """Subscriptions made on connect are sent as [1, seq, uri]."""
        sock = FakeSocket()
        transport = None

        def on_status(connected, reason):
            if connected:
                transport.subscribe("https://userpresence.xboxlive.com/users/xuid(1)/richpresence")
                transport.subscribe("https://achievements.xboxlive.com/users/xuid(1)/achievements/s")

        transport = RtaTransport(identity, lambda text: None, on_status, socket_factory=lambda: sock)
        run(transport)

        assert [json.loads(s) for s in sock.sent] == [
            [1, 1, "https://userpresence.xboxlive.com/users/xuid(1)/richpresence"],
            [1, 2, "https://achievements.xboxlive.com/users/xuid(1)/achievements/s"],
        ]

    def test_subscribe_while_disconnected(self, identity):
        """Nothing is sent without a connection."""
        transport = RtaTransport(identity, lambda text: None)
        assert transport.subscribe("uri") is None

    def test_connect_failure_reports_reason(self, identity):
        """A failed handshake ends in Disconnected with the error text."""
        statuses = []
        sock = FakeSocket(connect_error=websocket.WebSocketBadStatusException("Handshake status 401", 401))
        transport = RtaTransport(identity, lambda text: None,
                                 lambda connected, reason: statuses.append((connected, reason)),
                                 socket_factory=lambda: sock)
        run(transport)

        assert len(statuses) == 1
        assert statuses[0][0] is False
        assert "401" in statuses[0][1]
        assert transport.state == ConnectionState.DISCONNECTED

    def test_connection_drop_reports_reason(self, identity):
        """A dropped socket reports why."""
        statuses = []
        sock = FakeSocket(recv_error=websocket.WebSocketConnectionClosedException("socket is already closed."))
        transport = RtaTransport(identity, lambda text: None,
                                 lambda connected, reason: statuses.append((connected, reason)),
                                 socket_factory=lambda: sock)
        run(transport)

        assert statuses == [(True, None), (False, "socket is already closed.")]
        assert sock.closed

    def test_handler_errors_do_not_kill_the_loop(self, identity):
        """An exception in the message handler is logged and reading goes on."""
        seen = []

        def handler(text):
            seen.append(text)
            raise RuntimeError("boom")

        sock = FakeSocket([frame(TEXT, b"a"), frame(TEXT, b"b")])
        run(RtaTransport(identity, handler, socket_factory=lambda: sock))
        assert seen == ["a", "b"]

    def test_start_twice(self, identity):
        """A running transport refuses a second start."""
        transport = RtaTransport(identity, lambda text: None, socket_factory=FakeSocket)
        transport.running = True
        assert transport.start() is False

    def test_stop_during_connect_closes_socket(self, identity):
        """A socket that finishes connecting after stop() is closed and never reported connected."""
        statuses = []
        started = threading.Event()

        class SlowSocket(FakeSocket):
            def connect(self, url, **kwargs):
                super().connect(url, **kwargs)
                started.wait(5)
                transport.stop(timeout=0)

        sock = SlowSocket([frame(TEXT, b"late")])
        received = []
        transport = RtaTransport(identity, received.append,
                                 lambda connected, reason: statuses.append((connected, reason)),
                                 socket_factory=lambda: sock)
        assert transport.start()
        thread = transport.thread
        started.set()
        thread.join(5)

        assert not thread.is_alive()
        assert statuses == [(False, "Stopped")]
        assert received == []
        assert sock.closed
        assert transport.state == ConnectionState.DISCONNECTED
        assert transport.subscribe("uri") is None
