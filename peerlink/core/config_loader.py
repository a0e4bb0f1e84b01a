"""Configuration loading and validation for YAML-based peerlink configs."""

from __future__ import annotations

import json
import logging
import os
import re
import socket
import uuid
from importlib import resources
from importlib.resources.abc import Traversable
from pathlib import Path
from typing import Any

import yaml
from jsonschema import ValidationError, validators

from peerlink.core.errors import ConfigLoadError, ConfigValidationError
from peerlink.core.model import PeerlinkConfig, TransportSpec

_UUID_RE = re.compile(r"^[0-9a-f]{4}$|^[0-9a-f]{8}$|^[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}$")
_PEER_RE = re.compile(r"^(?P<host>[^\s:]+|\[[0-9a-fA-F:]+\]):(?P<port>\d{1,5})$")
LOGGER = logging.getLogger(__name__)


class UniqueKeyLoader(yaml.SafeLoader):
    """YAML loader that rejects duplicate mapping keys."""


UniqueKeyLoader.yaml_implicit_resolvers = {
    key: list(value) for key, value in yaml.SafeLoader.yaml_implicit_resolvers.items()
}

for first_char, mappings in list(UniqueKeyLoader.yaml_implicit_resolvers.items()):
    UniqueKeyLoader.yaml_implicit_resolvers[first_char] = [
        (tag, regexp)
        for tag, regexp in mappings
        if tag != "tag:yaml.org,2002:bool"
    ]


def _construct_mapping(loader: UniqueKeyLoader, node: yaml.Node, deep: bool = False) -> dict[str, Any]:
    mapping: dict[str, Any] = {}
    for key_node, value_node in node.value:
        key = loader.construct_object(key_node, deep=deep)
        if key in mapping:
            raise ConfigValidationError(f"Duplicate key '{key}' in YAML document")
        mapping[key] = loader.construct_object(value_node, deep=deep)
    return mapping


UniqueKeyLoader.add_constructor(
    yaml.resolver.BaseResolver.DEFAULT_MAPPING_TAG,
    _construct_mapping,
)


def _load_schema_validator() -> Any:
    schema_text = resources.files("peerlink.schemas").joinpath("config.schema.json").read_text(
        encoding="utf-8"
    )
    schema = json.loads(schema_text)
    validator_cls = validators.validator_for(schema)
    validator_cls.check_schema(schema)
    return validator_cls(schema)


def user_config_path() -> Path:
    xdg_config = Path(os.environ.get("XDG_CONFIG_HOME", Path.home() / ".config"))
    return xdg_config / "peerlink/config.yaml"


def _packaged_config_path() -> Traversable:
    return resources.files("peerlink.defaults").joinpath("config.yaml")


def _read_yaml(path: Path | Traversable) -> dict[str, Any]:
    try:
        content = path.read_text(encoding="utf-8")
    except OSError as exc:
        raise ConfigLoadError(f"Could not read config file {path}: {exc}") from exc

    try:
        loaded = yaml.load(content, Loader=UniqueKeyLoader)
    except yaml.YAMLError as exc:
        raise ConfigValidationError(f"Invalid YAML in {path}: {exc}") from exc

    if not isinstance(loaded, dict):
        raise ConfigValidationError(f"Config file {path} must contain a mapping at root")
    return loaded


def _normalize_uuid(value: str, *, context: str) -> str:
    normalized = value.strip().lower()
    if not _UUID_RE.match(normalized):
        raise ConfigValidationError(
            f"{context} must be a 16-bit, 32-bit, or 128-bit UUID string"
        )
    return normalized


def _normalize_bool(value: Any, *, context: str) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered == "true":
            return True
        if lowered == "false":
            return False
    raise ConfigValidationError(f"{context} must be boolean true/false")


def _normalize_peer(value: str, *, context: str) -> str:
    normalized = value.strip()
    match = _PEER_RE.match(normalized)
    if not match or not 0 < int(match.group("port")) <= 65535:
        raise ConfigValidationError(f"{context} must be a 'host:port' address, got '{value}'")
    return normalized


def default_display_name() -> str:
    return socket.gethostname() or uuid.uuid4().hex


def _build_transport(doc: dict[str, Any], index: int) -> TransportSpec:
    context = f"transports[{index}]"
    transport_type = doc["type"]
    enabled = _normalize_bool(doc.get("enabled", True), context=f"{context}.enabled")

    if transport_type == "socket":
        return TransportSpec(
            type="socket",
            enabled=enabled,
            timeout_s=float(doc.get("timeout_s", 3.0)),
            bind_host=doc.get("bind_host", "0.0.0.0"),
            port=int(doc.get("port", 8080)),
            peers=tuple(
                _normalize_peer(peer, context=f"{context}.peers[{i}]")
                for i, peer in enumerate(doc.get("peers", []))
            ),
        )
    if transport_type == "session":
        return TransportSpec(
            type="session",
            enabled=enabled,
            timeout_s=float(doc.get("timeout_s", 3.0)),
            bind_host=doc.get("bind_host", "0.0.0.0"),
            service_type=doc.get("service_type", "chat-service"),
            discovery_port=int(doc.get("discovery_port", 47474)),
            beacon_interval_s=float(doc.get("beacon_interval_s", 2.0)),
            invite_timeout_s=float(doc.get("invite_timeout_s", 10.0)),
        )
    if transport_type == "ble":
        return TransportSpec(
            type="ble",
            enabled=enabled,
            timeout_s=float(doc.get("timeout_s", 5.0)),
            service_uuid=_normalize_uuid(
                doc.get("service_uuid", "c0de1000-feed-feed-feed-c0dec0ffee01"),
                context=f"{context}.service_uuid",
            ),
            char_uuid=_normalize_uuid(
                doc.get("char_uuid", "c0de1001-feed-feed-feed-c0dec0ffee01"),
                context=f"{context}.char_uuid",
            ),
            scan_interval_s=float(doc.get("scan_interval_s", 5.0)),
        )
    raise ConfigValidationError(f"Unsupported transport type '{transport_type}' in {context}")


def _build_config(doc: dict[str, Any], source: Path | Traversable) -> PeerlinkConfig:
    validator = _load_schema_validator()
    try:
        validator.validate(doc)
    except ValidationError as exc:
        path = ".".join(str(p) for p in exc.path)
        where = f" ({path})" if path else ""
        raise ConfigValidationError(f"Schema validation failed for {source}{where}: {exc.message}") from exc

    transports: list[TransportSpec] = []
    seen: set[str] = set()
    for index, transport_doc in enumerate(doc["transports"]):
        spec = _build_transport(transport_doc, index)
        if spec.type in seen:
            raise ConfigValidationError(
                f"Transport type '{spec.type}' is configured more than once in {source}"
            )
        seen.add(spec.type)
        transports.append(spec)

    return PeerlinkConfig(
        display_name=doc.get("display_name") or default_display_name(),
        transports=tuple(transports),
        source=str(source),
    )


def load_config(path: Path | None = None) -> PeerlinkConfig:
    """Load config from `path`, else the user file, else the packaged defaults."""
    if path is not None:
        if not path.exists():
            raise ConfigLoadError(f"Config file {path} does not exist")
        return _build_config(_read_yaml(path), path)

    user_path = user_config_path()
    if user_path.is_file():
        LOGGER.info("Using user config %s", user_path)
        return _build_config(_read_yaml(user_path), user_path)

    packaged = _packaged_config_path()
    return _build_config(_read_yaml(packaged), packaged)
