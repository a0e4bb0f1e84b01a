"""Newline-delimited framing over stream sockets."""

from __future__ import annotations

import logging
import socket
import threading
from collections.abc import Iterator

LOGGER = logging.getLogger(__name__)

MAX_FRAME_BYTES = 64 * 1024


class StreamConnection:
    """A connected stream socket shared between one reader and many writers."""

    def __init__(self, sock: socket.socket, *, label: str, timeout_s: float) -> None:
        self.sock = sock
        self.label = label
        self.sock.settimeout(timeout_s)
        self._write_lock = threading.Lock()
        self._closed = threading.Event()

    @property
    def closed(self) -> bool:
        return self._closed.is_set()

    def write_frame(self, payload: bytes) -> bool:
        if self.closed:
            return False
        try:
            with self._write_lock:
                self.sock.sendall(payload + b"\n")
        except OSError as exc:
            LOGGER.debug("Write to %s failed: %s", self.label, exc)
            self.close()
            return False
        return True

    def frames(self) -> Iterator[bytes]:
        """Yield complete frames until the peer disconnects or the connection closes."""
        buffer = b""
        # Set while skipping the rest of an oversized frame up to its newline.
        discarding = False
        while not self.closed:
            try:
                chunk = self.sock.recv(4096)
            except TimeoutError:
                continue
            except OSError:
                break
            if not chunk:
                break
            buffer += chunk
            if discarding:
                if b"\n" not in buffer:
                    buffer = b""
                    continue
                buffer = buffer.split(b"\n", 1)[1]
                discarding = False
            while b"\n" in buffer:
                frame, buffer = buffer.split(b"\n", 1)
                if len(frame) > MAX_FRAME_BYTES:
                    LOGGER.warning("Dropping oversized frame from %s", self.label)
                elif frame:
                    yield frame.rstrip(b"\r")
            if len(buffer) > MAX_FRAME_BYTES:
                LOGGER.warning("Dropping oversized frame from %s", self.label)
                buffer = b""
                discarding = True
        self.close()

    def close(self) -> None:
        if self._closed.is_set():
            return
        self._closed.set()
        try:
            self.sock.shutdown(socket.SHUT_RDWR)
        except OSError:
            pass
        self.sock.close()
