"""Direct socket transport: TCP listener plus optional outbound peers."""

from __future__ import annotations

import logging
import socket
import threading

from peerlink.core.errors import EncodingError
from peerlink.core.model import Readiness
from peerlink.core.readiness import ReadinessTracker
from peerlink.transports.base import ReceiveCallback, decode_payload, encode_payload
from peerlink.transports.framing import StreamConnection

LOGGER = logging.getLogger(__name__)

SOCKET_PEER_LABEL = "SocketPeer"
_RECONNECT_INTERVAL_S = 2.0
_ACCEPT_POLL_S = 0.5


def _split_peer(peer: str) -> tuple[str, int]:
    host, _, port = peer.rpartition(":")
    return host.strip("[]"), int(port)


class SocketTransport:
    def __init__(
        self,
        *,
        port: int = 8080,
        bind_host: str = "0.0.0.0",
        peers: tuple[str, ...] = (),
        timeout_s: float = 3.0,
        reconnect_interval_s: float = _RECONNECT_INTERVAL_S,
        name: str = "socket",
    ) -> None:
        self.name = name
        self.port = port
        self.bind_host = bind_host
        self.peers = peers
        self.timeout_s = timeout_s
        self.reconnect_interval_s = reconnect_interval_s
        self._tracker = ReadinessTracker(name)
        self._callback: ReceiveCallback | None = None
        self._callback_lock = threading.Lock()
        self._connections: dict[int, StreamConnection] = {}
        self._outbound: dict[str, StreamConnection] = {}
        # id(connection) -> remote IP, for accepted connections only
        self._inbound_hosts: dict[int, str] = {}
        self._conn_lock = threading.Lock()
        self._listener: socket.socket | None = None
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

    def on_receive(self, callback: ReceiveCallback | None) -> None:
        with self._callback_lock:
            self._callback = callback

    def start(self) -> None:
        self._tracker.transition(Readiness.INITIALIZING)
        try:
            listener = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
            listener.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
            listener.bind((self.bind_host, self.port))
            listener.listen()
            listener.settimeout(_ACCEPT_POLL_S)
        except OSError as exc:
            self._tracker.fail(f"could not listen on {self.bind_host}:{self.port}: {exc}")
            return

        self._listener = listener
        threading.Thread(target=self._accept_loop, name=f"{self.name}-accept", daemon=True).start()
        if self.peers:
            threading.Thread(target=self._connect_loop, name=f"{self.name}-connect", daemon=True).start()
        LOGGER.info("[%s] Listening on %s:%s", self.name, self.bind_host, self.bound_port)
        self._tracker.transition(Readiness.READY)
        self._refresh_peer_count()

    def send(self, body: str) -> bool:
        if "\n" in body or "\r" in body:
            raise EncodingError("Socket frames cannot carry line breaks")
        payload = encode_payload(body)
        with self._conn_lock:
            connections = list(self._connections.values())
        if not connections:
            LOGGER.debug("[%s] No connected peers", self.name)
            return False

        delivered = False
        for connection in connections:
            if connection.write_frame(payload):
                delivered = True
            else:
                LOGGER.info("[%s] Error sending message to %s", self.name, connection.label)
        return delivered

    def close(self) -> None:
        self._stopping.set()
        if self._listener is not None:
            self._listener.close()
        with self._conn_lock:
            connections = list(self._connections.values())
        for connection in connections:
            connection.close()

    def _accept_loop(self) -> None:
        assert self._listener is not None
        while not self._stopping.is_set():
            try:
                sock, address = self._listener.accept()
            except TimeoutError:
                continue
            except OSError:
                break
            LOGGER.info("[%s] Accepted connection from %s:%s", self.name, *address[:2])
            connection = StreamConnection(sock, label=SOCKET_PEER_LABEL, timeout_s=self.timeout_s)
            with self._conn_lock:
                self._inbound_hosts[id(connection)] = address[0]
            self._adopt(connection)

    def _has_inbound_from(self, host: str) -> bool:
        """Report whether an accepted connection came from any address of `host`."""
        try:
            addresses = {info[4][0] for info in socket.getaddrinfo(host, None, type=socket.SOCK_STREAM)}
        except OSError:
            return False
        with self._conn_lock:
            return any(remote in addresses for remote in self._inbound_hosts.values())

    def _connect_loop(self) -> None:
        while not self._stopping.is_set():
            for peer in self.peers:
                with self._conn_lock:
                    existing = self._outbound.get(peer)
                if existing is not None and not existing.closed:
                    continue
                host, port = _split_peer(peer)
                # A peer that listed us too has already dialed in.
                if self._has_inbound_from(host):
                    LOGGER.debug("[%s] Skipping %s, already connected inbound", self.name, peer)
                    continue
                try:
                    sock = socket.create_connection((host, port), timeout=self.timeout_s)
                except OSError as exc:
                    LOGGER.debug("[%s] Connect to %s failed: %s", self.name, peer, exc)
                    continue
                LOGGER.info("[%s] Connected to %s", self.name, peer)
                connection = StreamConnection(sock, label=SOCKET_PEER_LABEL, timeout_s=self.timeout_s)
                with self._conn_lock:
                    self._outbound[peer] = connection
                self._adopt(connection)
            self._stopping.wait(self.reconnect_interval_s)

    def _adopt(self, connection: StreamConnection) -> None:
        with self._conn_lock:
            self._connections[id(connection)] = connection
        self._refresh_peer_count()
        threading.Thread(
            target=self._read_loop,
            args=(connection,),
            name=f"{self.name}-reader",
            daemon=True,
        ).start()

    def _read_loop(self, connection: StreamConnection) -> None:
        for frame in connection.frames():
            text = decode_payload(frame)
            if text is None:
                LOGGER.debug("[%s] Dropping undecodable frame", self.name)
                continue
            self._deliver(connection.label, text)
        with self._conn_lock:
            self._connections.pop(id(connection), None)
            self._inbound_hosts.pop(id(connection), None)
        LOGGER.info("[%s] Connection to %s closed", self.name, connection.label)
        self._refresh_peer_count()

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
        # Held across the update so concurrent refreshes apply in count order.
        with self._conn_lock:
            self._tracker.update_peer_count(len(self._connections))
