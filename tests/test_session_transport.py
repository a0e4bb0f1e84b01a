from __future__ import annotations

import socket
import threading
import time

import pytest

from peerlink.core.model import Readiness
from peerlink.transports.session import SessionTransport, _decode_frame


def _wait_for(predicate, timeout: float = 5.0) -> bool:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.02)
    return False


def _session(name: str) -> SessionTransport:
    return SessionTransport(display_name=name, discovery_port=None, bind_host="127.0.0.1", timeout_s=0.5)


@pytest.fixture
def pair():
    alice, bob = _session("alice"), _session("bob")
    alice.start()
    bob.start()
    yield alice, bob
    alice.close()
    bob.close()


def test_started_session_without_peers_is_degraded(pair) -> None:
    alice, _ = pair
    assert alice.readiness is Readiness.DEGRADED
    assert alice.send("hi") is False


def test_invited_peers_exchange_messages_with_display_names(pair) -> None:
    alice, bob = pair
    to_alice: list[tuple[str, str]] = []
    to_bob: list[tuple[str, str]] = []
    alice_got, bob_got = threading.Event(), threading.Event()
    alice.on_receive(lambda sender, body: (to_alice.append((sender, body)), alice_got.set()))
    bob.on_receive(lambda sender, body: (to_bob.append((sender, body)), bob_got.set()))

    assert bob.invite("127.0.0.1", alice.bound_port) is True
    assert _wait_for(lambda: alice.readiness is Readiness.READY and bob.readiness is Readiness.READY)
    assert alice.connected_peers == ["bob"]
    assert bob.connected_peers == ["alice"]

    assert bob.send("multi\nline hi") is True
    assert alice.send("yo") is True
    assert alice_got.wait(5.0) and bob_got.wait(5.0)
    assert to_alice == [("bob", "multi\nline hi")]
    assert to_bob == [("alice", "yo")]


def test_peer_disconnect_degrades_session(pair) -> None:
    alice, bob = pair
    bob.invite("127.0.0.1", alice.bound_port)
    assert _wait_for(lambda: alice.readiness is Readiness.READY)

    bob.close()

    assert _wait_for(lambda: alice.readiness is Readiness.DEGRADED)
    assert alice.send("gone?") is False


def test_invite_to_closed_port_fails() -> None:
    lonely = _session("lonely")
    lonely.start()
    gone = _session("gone")
    gone.start()
    port = gone.bound_port
    gone.close()
    try:
        assert lonely.invite("127.0.0.1", port) is False
    finally:
        lonely.close()


@pytest.mark.parametrize(
    "data",
    [b"\xff\xfe", b"not json", b"[1, 2]", b'{"body": "no type"}'],
)
def test_malformed_frames_are_rejected(data: bytes) -> None:
    assert _decode_frame(data) is None


def test_msg_frame_decodes() -> None:
    assert _decode_frame('{"type":"msg","body":"hé"}'.encode("utf-8")) == {"type": "msg", "body": "hé"}


def test_lower_id_invites_and_higher_id_waits(pair) -> None:
    alice, bob = pair
    alice.instance_id = "0" * 32
    bob.instance_id = "f" * 32

    assert bob.handle_beacon(alice.beacon(), "127.0.0.1") is False
    assert alice.handle_beacon(bob.beacon(), "127.0.0.1") is True
    assert _wait_for(lambda: alice.readiness is Readiness.READY and bob.readiness is Readiness.READY)

    # A repeated beacon from a connected peer opens nothing new.
    assert alice.handle_beacon(bob.beacon(), "127.0.0.1") is False
    assert bob.handle_beacon(alice.beacon(), "127.0.0.1") is False
    time.sleep(0.2)
    assert alice.connected_peers == ["bob"]
    assert bob.connected_peers == ["alice"]


@pytest.mark.parametrize(
    "data",
    [
        b"\xff\xfe",
        b"not json",
        b'{"service": "other-service", "id": "f", "port": 1}',
        b'{"service": "chat-service", "id": 7, "port": 1}',
        b'{"service": "chat-service", "id": "f", "port": "1"}',
    ],
)
def test_foreign_or_malformed_beacons_are_ignored(pair, data: bytes) -> None:
    alice, _ = pair
    alice.instance_id = "0" * 32
    assert alice.handle_beacon(data, "127.0.0.1") is False
    assert alice.readiness is Readiness.DEGRADED


def test_own_beacon_is_ignored(pair) -> None:
    alice, _ = pair
    assert alice.handle_beacon(alice.beacon(), "127.0.0.1") is False


def _free_udp_port() -> int:
    with socket.socket(socket.AF_INET, socket.SOCK_DGRAM) as sock:
        sock.bind(("127.0.0.1", 0))
        return sock.getsockname()[1]


def test_beacon_on_discovery_port_starts_session() -> None:
    port = _free_udp_port()
    alice = SessionTransport(
        display_name="alice",
        discovery_port=port,
        broadcast_address="127.0.0.1",
        bind_host="127.0.0.1",
        beacon_interval_s=0.2,
        timeout_s=0.5,
    )
    alice.instance_id = "0" * 32
    bob = _session("bob")
    bob.instance_id = "f" * 32
    alice.start()
    bob.start()
    try:
        assert alice.readiness is Readiness.DEGRADED
        with socket.socket(socket.AF_INET, socket.SOCK_DGRAM) as sender:
            sender.sendto(bob.beacon(), ("127.0.0.1", port))

        assert _wait_for(lambda: alice.connected_peers == ["bob"] and bob.connected_peers == ["alice"])
        assert alice.readiness is Readiness.READY
        assert bob.readiness is Readiness.READY
    finally:
        alice.close()
        bob.close()
