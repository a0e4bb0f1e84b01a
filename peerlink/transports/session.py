"""Ad-hoc session transport.

Peers advertise themselves with UDP broadcast beacons and browse for beacons
of the same service type. When a new peer is found, the side with the lower
instance id invites it by opening a TCP session and sending a ``hello``
frame; the invited side accepts unconditionally and answers with its own
``hello``. After that both sides exchange ``msg`` frames. Frames are JSON
objects, one per line, and the sender label is the remote display name.
"""

from __future__ import annotations

import json
import logging
import socket
import threading
import uuid
from typing import Any

from peerlink.core.model import Readiness
from peerlink.core.readiness import ReadinessTracker
from peerlink.transports.base import ReceiveCallback, decode_payload, encode_payload
from peerlink.transports.framing import StreamConnection

LOGGER = logging.getLogger(__name__)

_ACCEPT_POLL_S = 0.5


def _encode_frame(frame: dict[str, Any]) -> bytes:
    return encode_payload(json.dumps(frame, ensure_ascii=False, separators=(",", ":")))


def _decode_beacon(data: bytes) -> dict[str, Any] | None:
    text = decode_payload(data)
    if text is None:
        return None
    try:
        decoded = json.loads(text)
    except json.JSONDecodeError:
        return None
    return decoded if isinstance(decoded, dict) else None


def _decode_frame(data: bytes) -> dict[str, Any] | None:
    frame = _decode_beacon(data)
    if frame is None or not isinstance(frame.get("type"), str):
        return None
    return frame


class SessionTransport:
    def __init__(
        self,
        *,
        display_name: str,
        service_type: str = "chat-service",
        discovery_port: int | None = 47474,
        bind_host: str = "0.0.0.0",
        beacon_interval_s: float = 2.0,
        invite_timeout_s: float = 10.0,
        timeout_s: float = 3.0,
        broadcast_address: str = "<broadcast>",
        name: str = "session",
    ) -> None:
        self.name = name
        self.display_name = display_name
        self.service_type = service_type
        self.discovery_port = discovery_port
        self.broadcast_address = broadcast_address
        self.bind_host = bind_host
        self.beacon_interval_s = beacon_interval_s
        self.invite_timeout_s = invite_timeout_s
        self.timeout_s = timeout_s
        self.instance_id = uuid.uuid4().hex
        self._tracker = ReadinessTracker(name)
        self._callback: ReceiveCallback | None = None
        self._callback_lock = threading.Lock()
        self._peers: dict[str, StreamConnection] = {}
        self._connections: set[StreamConnection] = set()
        self._peers_lock = threading.Lock()
        self._listener: socket.socket | None = None
        self._discovery: socket.socket | None = None
        self._stopping = threading.Event()

    @property
    def readiness(self) -> Readiness:
        return self._tracker.state

    @property
    def tracker(self) -> ReadinessTracker:
        return self._tracker

    @property
    def bound_port(self) -> int | None:
        if self._listener is None:
            return None
        return self._listener.getsockname()[1]

    @property
    def connected_peers(self) -> list[str]:
        with self._peers_lock:
            return sorted(connection.label for connection in self._peers.values())

    def on_receive(self, callback: ReceiveCallback | None) -> None:
        with self._callback_lock:
            self._callback = callback

    def start(self) -> None:
        self._tracker.transition(Readiness.INITIALIZING)
        try:
            listener = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
            listener.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
            listener.bind((self.bind_host, 0))
            listener.listen()
            listener.settimeout(_ACCEPT_POLL_S)
            self._listener = listener
            if self.discovery_port is not None:
                self._discovery = self._open_discovery_socket()
        except OSError as exc:
            self._tracker.fail(f"session bring-up failed: {exc}")
            return

        threading.Thread(target=self._accept_loop, name=f"{self.name}-accept", daemon=True).start()
        if self._discovery is not None:
            threading.Thread(target=self._advertise_loop, name=f"{self.name}-advertise", daemon=True).start()
            threading.Thread(target=self._browse_loop, name=f"{self.name}-browse", daemon=True).start()
        LOGGER.info("[%s] Session started as %s", self.name, self.display_name)
        self._tracker.transition(Readiness.READY)
        self._refresh_peer_count()

    def send(self, body: str) -> bool:
        payload = _encode_frame({"type": "msg", "body": body})
        with self._peers_lock:
            connections = list(self._peers.values())
        if not connections:
            LOGGER.debug("[%s] No connected peers", self.name)
            return False

        delivered = False
        for connection in connections:
            if connection.write_frame(payload):
                delivered = True
            else:
                LOGGER.info("[%s] Error sending to %s", self.name, connection.label)
        return delivered

    def invite(self, host: str, port: int) -> bool:
        """Open a session to a peer listening on `host:port`."""
        try:
            sock = socket.create_connection((host, port), timeout=self.invite_timeout_s)
        except OSError as exc:
            LOGGER.info("[%s] Invitation to %s:%s failed: %s", self.name, host, port, exc)
            return False
        connection = StreamConnection(sock, label=f"{host}:{port}", timeout_s=self.timeout_s)
        if not connection.write_frame(self._hello()):
            return False
        self._spawn_reader(connection)
        return True

    def close(self) -> None:
        self._stopping.set()
        for sock in (self._listener, self._discovery):
            if sock is not None:
                sock.close()
        with self._peers_lock:
            connections = list(self._connections)
        for connection in connections:
            connection.close()

    def _hello(self) -> bytes:
        return _encode_frame({"type": "hello", "name": self.display_name, "id": self.instance_id})

    def _open_discovery_socket(self) -> socket.socket:
        assert self.discovery_port is not None
        sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
        sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        if hasattr(socket, "SO_REUSEPORT"):
            sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEPORT, 1)
        sock.setsockopt(socket.SOL_SOCKET, socket.SO_BROADCAST, 1)
        sock.bind(("", self.discovery_port))
        sock.settimeout(self.beacon_interval_s)
        return sock

    def beacon(self) -> bytes:
        """Return the datagram this instance advertises itself with."""
        return json.dumps(
            {
                "service": self.service_type,
                "name": self.display_name,
                "id": self.instance_id,
                "port": self.bound_port,
            }
        ).encode("utf-8")

    def handle_beacon(self, data: bytes, host: str) -> bool:
        """Act on a beacon received from `host`; return True if it led to an invitation."""
        beacon = _decode_beacon(data)
        if beacon is None or beacon.get("service") != self.service_type:
            return False
        peer_id = beacon.get("id")
        port = beacon.get("port")
        if not isinstance(peer_id, str) or not isinstance(port, int) or peer_id == self.instance_id:
            return False
        with self._peers_lock:
            known = peer_id in self._peers
        # Only the lower id invites so a pair never opens two sessions.
        if known or self.instance_id > peer_id:
            return False
        LOGGER.info("[%s] Found peer %s at %s", self.name, beacon.get("name"), host)
        return self.invite(host, port)

    def _advertise_loop(self) -> None:
        assert self._discovery is not None and self.discovery_port is not None
        beacon = self.beacon()
        while not self._stopping.is_set():
            try:
                self._discovery.sendto(beacon, (self.broadcast_address, self.discovery_port))
            except OSError as exc:
                LOGGER.debug("[%s] Beacon failed: %s", self.name, exc)
            self._stopping.wait(self.beacon_interval_s)

    def _browse_loop(self) -> None:
        assert self._discovery is not None
        while not self._stopping.is_set():
            try:
                data, address = self._discovery.recvfrom(2048)
            except TimeoutError:
                continue
            except OSError:
                break
            self.handle_beacon(data, address[0])

    def _accept_loop(self) -> None:
        assert self._listener is not None
        while not self._stopping.is_set():
            try:
                sock, address = self._listener.accept()
            except TimeoutError:
                continue
            except OSError:
                break
            connection = StreamConnection(sock, label=f"{address[0]}:{address[1]}", timeout_s=self.timeout_s)
            self._spawn_reader(connection, answer_hello=True)

    def _spawn_reader(self, connection: StreamConnection, *, answer_hello: bool = False) -> None:
        with self._peers_lock:
            self._connections.add(connection)
        threading.Thread(
            target=self._read_loop,
            args=(connection, answer_hello),
            name=f"{self.name}-reader",
            daemon=True,
        ).start()

    def _read_loop(self, connection: StreamConnection, answer_hello: bool) -> None:
        peer_id: str | None = None
        for data in connection.frames():
            frame = _decode_frame(data)
            if frame is None:
                LOGGER.debug("[%s] Dropping malformed frame from %s", self.name, connection.label)
                continue
            if peer_id is None:
                peer_id = self._handshake(connection, frame, answer_hello)
                if peer_id is None:
                    connection.close()
                    break
                continue
            if frame["type"] == "msg" and isinstance(frame.get("body"), str):
                self._deliver(connection.label, frame["body"])

        with self._peers_lock:
            self._connections.discard(connection)
        if peer_id is not None:
            with self._peers_lock:
                if self._peers.get(peer_id) is connection:
                    del self._peers[peer_id]
            LOGGER.info("[%s] Peer %s state changed: disconnected", self.name, connection.label)
            self._refresh_peer_count()

    def _handshake(self, connection: StreamConnection, frame: dict[str, Any], answer_hello: bool) -> str | None:
        peer_id = frame.get("id")
        name = frame.get("name")
        if frame["type"] != "hello" or not isinstance(peer_id, str) or not isinstance(name, str):
            LOGGER.info("[%s] Rejecting session without hello from %s", self.name, connection.label)
            return None
        with self._peers_lock:
            if peer_id in self._peers:
                LOGGER.debug("[%s] Duplicate session with %s", self.name, name)
                return None
            connection.label = name
            self._peers[peer_id] = connection
        if answer_hello:
            connection.write_frame(self._hello())
        LOGGER.info("[%s] Peer %s state changed: connected", self.name, name)
        self._refresh_peer_count()
        return peer_id

    def _deliver(self, sender: str, text: str) -> None:
        with self._callback_lock:
            callback = self._callback
        if callback is None:
            return
        try:
            callback(sender, text)
        except Exception:
            LOGGER.exception("[%s] Receive callback failed", self.name)

    def _refresh_peer_count(self) -> None:
        with self._peers_lock:
            self._tracker.update_peer_count(len(self._peers))
