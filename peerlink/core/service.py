"""Builds the configured transport set in priority order."""

from __future__ import annotations

import importlib.util
import logging

from peerlink.core.errors import ConfigValidationError
from peerlink.core.model import PeerlinkConfig, TransportSpec
from peerlink.transports.base import Transport
from peerlink.transports.ble_gatt import BLEGATTTransport
from peerlink.transports.session import SessionTransport
from peerlink.transports.socket_stream import SocketTransport

LOGGER = logging.getLogger(__name__)


def build_transport(spec: TransportSpec, *, display_name: str) -> Transport:
    if spec.type == "socket":
        return SocketTransport(
            port=spec.port if spec.port is not None else 8080,
            bind_host=spec.bind_host,
            peers=spec.peers,
            timeout_s=spec.timeout_s,
        )
    if spec.type == "session":
        return SessionTransport(
            display_name=display_name,
            service_type=spec.service_type or "chat-service",
            discovery_port=spec.discovery_port,
            bind_host=spec.bind_host,
            beacon_interval_s=spec.beacon_interval_s,
            invite_timeout_s=spec.invite_timeout_s,
            timeout_s=spec.timeout_s,
        )
    if spec.type == "ble":
        if not spec.service_uuid or not spec.char_uuid:
            raise ConfigValidationError("BLE transport is missing its service or characteristic UUID")
        return BLEGATTTransport(
            service_uuid=spec.service_uuid,
            char_uuid=spec.char_uuid,
            scan_interval_s=spec.scan_interval_s,
            timeout_s=spec.timeout_s,
        )
    raise ConfigValidationError(f"Unsupported transport type '{spec.type}'")


def build_transports(config: PeerlinkConfig) -> list[Transport]:
    transports: list[Transport] = []
    for spec in config.transports:
        if not spec.enabled:
            LOGGER.info("Transport '%s' disabled in %s", spec.type, config.source)
            continue
        transports.append(build_transport(spec, display_name=config.display_name))
    return transports


def runtime_warnings(config: PeerlinkConfig) -> tuple[str, ...]:
    warnings: list[str] = []
    enabled = [spec for spec in config.transports if spec.enabled]
    if not enabled:
        warnings.append("No transports are enabled; every send will fail.")
    if any(spec.type == "ble" for spec in enabled) and importlib.util.find_spec("bleak") is None:
        warnings.append("Python runtime missing 'bleak'; the BLE transport will report failed.")
    return tuple(warnings)
