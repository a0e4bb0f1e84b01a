"""Transport manager: inbound fan-in and ordered-failover outbound dispatch."""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable, Sequence
from datetime import datetime, timezone

from peerlink.core.errors import AllTransportsExhausted, TransportError
from peerlink.core.model import DispatchResult, InboundMessage, OutboundRequest, Readiness
from peerlink.transports.base import ReceiveCallback, Transport

LOGGER = logging.getLogger(__name__)

ResultCallback = Callable[[bool], None]
MessageCallback = Callable[[InboundMessage], None]


class TransportManager:
    """Owns the transport set and exposes a single send/receive surface.

    Transports are tried in the order given at construction. That order is the
    priority list and never changes afterwards.
    """

    def __init__(self, transports: Sequence[Transport]) -> None:
        self._transports: tuple[Transport, ...] = tuple(transports)
        self._subscriber: MessageCallback | None = None
        self._raw_subscriber: ReceiveCallback | None = None
        self._subscriber_lock = threading.Lock()
        self._rewire()

    @property
    def transports(self) -> tuple[Transport, ...]:
        return self._transports

    @property
    def on_message(self) -> ReceiveCallback | None:
        with self._subscriber_lock:
            return self._raw_subscriber

    @on_message.setter
    def on_message(self, callback: ReceiveCallback | None) -> None:
        if callback is None:
            self._set_subscriber(None, None)
            return
        self._set_subscriber(
            lambda message: callback(message.sender_label, message.body),
            callback,
        )

    def subscribe_messages(self, callback: MessageCallback | None) -> None:
        """Subscribe with a callback receiving full `InboundMessage` values."""
        self._set_subscriber(callback, None)

    def start(self) -> None:
        for transport in self._transports:
            try:
                transport.start()
            except Exception:
                LOGGER.exception("[TransportManager] %s failed to start", transport.name)

    def send(self, text: str, on_result: ResultCallback | None = None) -> None:
        """Send `text`.

        Without `on_result` every transport is tried once and outcomes are
        ignored. With `on_result` transports are tried in priority order until
        one delivers, and the overall success flag is passed to `on_result`.
        """
        if on_result is None:
            self.broadcast(text)
            return
        # The callback reports exhaustion, so the log stays at INFO.
        result = self._failover(text, exhausted_level=logging.INFO)
        on_result(result.delivered)

    def dispatch(self, text: str) -> DispatchResult:
        return self._failover(text, exhausted_level=logging.WARNING)

    def _failover(self, text: str, *, exhausted_level: int) -> DispatchResult:
        request = OutboundRequest(body=text)
        attempts: list[str] = []
        for transport in self._transports:
            attempts.append(transport.name)
            if self._attempt(transport, request):
                LOGGER.info("[TransportManager] Message sent via %s", transport.name)
                return DispatchResult(delivered=True, transport=transport.name, attempts=tuple(attempts))

        LOGGER.log(exhausted_level, "[TransportManager] Failed to send message on all transports.")
        return DispatchResult(delivered=False, transport=None, attempts=tuple(attempts))

    def broadcast(self, text: str) -> None:
        request = OutboundRequest(body=text)
        for transport in self._transports:
            self._attempt(transport, request)

    def deliver(self, text: str) -> DispatchResult:
        result = self._failover(text, exhausted_level=logging.INFO)
        if not result.delivered:
            raise AllTransportsExhausted(result.attempts)
        return result

    def readiness(self) -> dict[str, Readiness]:
        return {transport.name: transport.readiness for transport in self._transports}

    def close(self) -> None:
        for transport in self._transports:
            try:
                transport.close()
            except Exception:
                LOGGER.exception("[TransportManager] %s failed to close", transport.name)

    def _attempt(self, transport: Transport, request: OutboundRequest) -> bool:
        try:
            return bool(transport.send(request.body))
        except TransportError as exc:
            LOGGER.info("[TransportManager] %s did not deliver: %s", transport.name, exc)
        except Exception:
            LOGGER.exception("[TransportManager] %s raised while sending", transport.name)
        return False

    def _set_subscriber(self, subscriber: MessageCallback | None, raw: ReceiveCallback | None) -> None:
        with self._subscriber_lock:
            self._subscriber = subscriber
            self._raw_subscriber = raw
        self._rewire()

    def _rewire(self) -> None:
        for transport in self._transports:
            transport.on_receive(self._fan_in)

    def _fan_in(self, sender_label: str, body: str) -> None:
        # Swap-then-deliver: whichever subscriber is registered when the message
        # reaches this point receives it, exactly once.
        with self._subscriber_lock:
            subscriber = self._subscriber
        if subscriber is None:
            LOGGER.debug("[TransportManager] Dropping message from %s: no subscriber", sender_label)
            return
        subscriber(
            InboundMessage(
                sender_label=sender_label,
                body=body,
                received_at=datetime.now(timezone.utc),
            )
        )
