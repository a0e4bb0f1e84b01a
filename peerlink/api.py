"""Stable public API for building tooling on top of peerlink.

This module is the supported integration surface for third-party callers.
Avoid importing from private/internal modules unless intentionally depending on
non-stable internals.
"""

from __future__ import annotations

from collections.abc import Callable, Sequence
from pathlib import Path

from peerlink.core.config_loader import load_config
from peerlink.core.errors import (
    AllTransportsExhausted,
    ConfigLoadError,
    ConfigValidationError,
    EncodingError,
    PeerlinkError,
    ReadinessTransitionError,
    TransportError,
    TransportUnavailable,
)
from peerlink.core.manager import TransportManager
from peerlink.core.model import (
    DispatchResult,
    InboundMessage,
    PeerlinkConfig,
    Readiness,
    TransportSpec,
)
from peerlink.core.readiness import ReadinessTracker
from peerlink.core.service import build_transports, runtime_warnings
from peerlink.transports.base import ReceiveCallback, Transport

__all__ = [
    "PeerlinkError",
    "ConfigLoadError",
    "ConfigValidationError",
    "ReadinessTransitionError",
    "TransportError",
    "TransportUnavailable",
    "EncodingError",
    "AllTransportsExhausted",
    "DispatchResult",
    "InboundMessage",
    "PeerlinkConfig",
    "Readiness",
    "ReadinessTracker",
    "TransportSpec",
    "Transport",
    "TransportManager",
    "Client",
]


class Client:
    """Public client for exchanging messages with nearby peers.

    A `Client` loads configuration, builds the configured transports in
    priority order, and exposes the manager's send/receive surface. Pass
    `transports` to bypass configuration entirely (tests, embedding).
    """

    def __init__(
        self,
        *,
        config_path: Path | None = None,
        transports: Sequence[Transport] | None = None,
    ) -> None:
        if transports is None:
            self._config: PeerlinkConfig | None = load_config(config_path)
            transports = build_transports(self._config)
        else:
            self._config = None
        self._manager = TransportManager(transports)

    @property
    def config(self) -> PeerlinkConfig | None:
        return self._config

    @property
    def runtime_warnings(self) -> tuple[str, ...]:
        if self._config is None:
            return ()
        return runtime_warnings(self._config)

    @property
    def transport_names(self) -> tuple[str, ...]:
        return tuple(transport.name for transport in self._manager.transports)

    @property
    def on_message(self) -> ReceiveCallback | None:
        return self._manager.on_message

    @on_message.setter
    def on_message(self, callback: ReceiveCallback | None) -> None:
        self._manager.on_message = callback

    def start(self) -> None:
        self._manager.start()

    def send(self, text: str, on_result: Callable[[bool], None] | None = None) -> None:
        self._manager.send(text, on_result)

    def dispatch(self, text: str) -> DispatchResult:
        return self._manager.dispatch(text)

    def deliver(self, text: str) -> DispatchResult:
        return self._manager.deliver(text)

    def readiness(self) -> dict[str, Readiness]:
        return self._manager.readiness()

    def close(self) -> None:
        self._manager.close()
