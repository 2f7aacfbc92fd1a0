"""
Xbox Achievements Tracker - RTA Transport
=========================================
Persistent WebSocket to the Xbox Real-Time Activity service.

  wss://rta.xboxlive.com:443/connect   subprotocol rta.xboxlive.com.V2

The socket is serviced on its own thread. Fragmented messages are assembled
before delivery. The transport never reconnects on its own; the owner gets
``on_status(False, reason)`` and decides whether to start it again.
"""

import enum
import json
import logging
import threading

import websocket

log = logging.getLogger(__name__)

RTA_URL = "wss://rta.xboxlive.com:443/connect"
RTA_PROTOCOL = "rta.xboxlive.com.V2"
CONNECT_TIMEOUT = 30


class ConnectionState(enum.Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"


class MessageAssembler:
    """Accumulates fragments until the final one arrives."""

    def __init__(self):
        self.buffer = bytearray()

    def feed(self, data, final):
        """Append a fragment. Returns the complete message on the final fragment, else None."""
        if isinstance(data, str):
            data = data.encode("utf-8")
        self.buffer.extend(data)
        if not final:
            return None
        message = bytes(self.buffer)
        self.buffer.clear()
        return message


class RtaTransport:

    def __init__(self, identity, on_message, on_status=None, socket_factory=None, url=RTA_URL):
        self.identity = identity
        self.on_message = on_message
        self.on_status = on_status
        self.socket_factory = socket_factory or self._new_socket
        self.url = url
        self.state = ConnectionState.DISCONNECTED
        self.running = False
        self.ws = None
        self.thread = None
        self.subscriptions = {}
        self._sequence = 0
        self._lock = threading.Lock()

    @staticmethod
    def _new_socket():
        return websocket.WebSocket(
            fire_cont_frame=True, skip_utf8_validation=True, enable_multithread=True)

    @property
    def is_active(self):
        return self.running

    def start(self):
        if self.running:
            log.warning("Xbox RTA: monitoring already active")
            return False
        self.running = True
        self.thread = threading.Thread(target=self._run, name="xbox-rta", daemon=True)
        self.thread.start()
        log.info("Xbox RTA: monitoring started")
        return True

    def stop(self, timeout=10):
        if self.thread is None:
            return
        log.info("Xbox RTA: stopping monitoring")
        self.running = False
        ws = self.ws
        if ws is not None:
            try:
                ws.shutdown()
            except Exception as e:
                log.debug("Xbox RTA: shutdown raised %s", e)
        if self.thread is not threading.current_thread():
            self.thread.join(timeout)
        self.thread = None
        log.info("Xbox RTA: monitoring stopped")

    def subscribe(self, uri):
        """Send a subscribe frame. Returns its sequence number, or None when not connected."""
        with self._lock:
            if self.state != ConnectionState.CONNECTED or self.ws is None:
                log.warning("Xbox RTA: cannot subscribe to %s while %s", uri, self.state.value)
                return None
            self._sequence += 1
            sequence = self._sequence
            self.subscriptions[sequence] = uri
            self.ws.send(json.dumps([1, sequence, uri]))
        log.info("Xbox RTA: subscribed to %s (#%d)", uri, sequence)
        return sequence

    def _notify(self, connected, reason=None):
        if self.on_status is None:
            return
        try:
            self.on_status(connected, reason)
        except Exception:
            log.exception("Xbox RTA: status callback raised")

    def _run(self):
        self.state = ConnectionState.CONNECTING
        ws = self.socket_factory()
        try:
            ws.connect(
                self.url,
                header=[f"Authorization: {self.identity.authorization}"],
                subprotocols=[RTA_PROTOCOL],
                timeout=CONNECT_TIMEOUT)
            ws.settimeout(None)
        except Exception as e:
            log.error("Xbox RTA: connection error: %s", e)
            self.state = ConnectionState.DISCONNECTED
            self.running = False
            self._notify(False, str(e) or "Connection error")
            return

        if not self.running:
            log.info("Xbox RTA: stopped while connecting")
            self.state = ConnectionState.DISCONNECTED
            try:
                ws.close()
            except Exception as e:
                log.debug("Xbox RTA: close raised %s", e)
            self._notify(False, "Stopped")
            return

        with self._lock:
            self.ws = ws
            self.state = ConnectionState.CONNECTED
        log.info("Xbox RTA: WebSocket connection established")
        self._notify(True)

        reason = None
        try:
            self._receive_loop(ws)
        except Exception as e:
            if self.running:
                reason = str(e) or e.__class__.__name__
                log.error("Xbox RTA: connection lost: %s", reason)
        finally:
            with self._lock:
                self.state = ConnectionState.DISCONNECTED
                self.ws = None
                self.subscriptions.clear()
            self.running = False
            try:
                ws.close()
            except Exception as e:
                log.debug("Xbox RTA: close raised %s", e)
            log.info("Xbox RTA: connection closed")
            self._notify(False, reason)

    def _receive_loop(self, ws):
        assembler = MessageAssembler()
        while self.running:
            opcode, frame = ws.recv_data_frame(True)
            if opcode == websocket.ABNF.OPCODE_CLOSE:
                return
            if opcode not in (websocket.ABNF.OPCODE_TEXT, websocket.ABNF.OPCODE_BINARY,
                              websocket.ABNF.OPCODE_CONT):
                continue
            message = assembler.feed(frame.data, frame.fin)
            if message is None:
                continue
            text = message.decode("utf-8", errors="replace")
            log.debug("Xbox RTA: complete message received: %.500s", text)
            try:
                self.on_message(text)
            except Exception:
                log.exception("Xbox RTA: message handler raised")
