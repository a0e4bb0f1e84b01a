"""Transport interfaces."""

from __future__ import annotations

from collections.abc import Callable
from typing import Protocol

from peerlink.core.errors import EncodingError
from peerlink.core.model import Readiness

ReceiveCallback = Callable[[str, str], None]


class Transport(Protocol):
    name: str

    @property
    def readiness(self) -> Readiness:
        """Advisory bring-up/connectivity state reported by the backend."""

    def start(self) -> None:
        """Begin asynchronous bring-up and return immediately."""

    def send(self, body: str) -> bool:
        """Deliver `body` to every reachable peer; True when at least one accepted it."""

    def on_receive(self, callback: ReceiveCallback | None) -> None:
        """Register the single inbound callback, replacing any previous one."""

    def close(self) -> None:
        """Release sockets, threads, and radio sessions."""


def encode_payload(text: str) -> bytes:
    try:
        return text.encode("utf-8")
    except UnicodeEncodeError as exc:
        raise EncodingError(f"Payload is not representable as UTF-8: {exc}") from exc


def decode_payload(data: bytes) -> str | None:
    """Decode an inbound frame, or None when it is not valid UTF-8."""
    try:
        return data.decode("utf-8")
    except UnicodeDecodeError:
        return None
