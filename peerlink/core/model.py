"""Core data models used across config loading, the manager, and the CLI."""

from __future__ import annotations

import enum
from dataclasses import dataclass
from datetime import datetime


class Readiness(enum.Enum):
    NOT_STARTED = "not-started"
    INITIALIZING = "initializing"
    READY = "ready"
    DEGRADED = "degraded"
    FAILED = "failed"


@dataclass(frozen=True)
class InboundMessage:
    sender_label: str
    body: str
    received_at: datetime


@dataclass(frozen=True)
class OutboundRequest:
    body: str


@dataclass(frozen=True)
class DispatchResult:
    delivered: bool
    transport: str | None
    attempts: tuple[str, ...]


@dataclass(frozen=True)
class TransportSpec:
    type: str
    enabled: bool = True
    timeout_s: float = 5.0
    port: int | None = None
    peers: tuple[str, ...] = ()
    bind_host: str = "0.0.0.0"
    service_type: str | None = None
    discovery_port: int | None = None
    beacon_interval_s: float = 2.0
    invite_timeout_s: float = 10.0
    service_uuid: str | None = None
    char_uuid: str | None = None
    scan_interval_s: float = 5.0


@dataclass(frozen=True)
class PeerlinkConfig:
    display_name: str
    transports: tuple[TransportSpec, ...]
    source: str = "<defaults>"
