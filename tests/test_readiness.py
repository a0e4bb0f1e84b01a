from __future__ import annotations

import pytest

from peerlink.core.errors import ReadinessTransitionError
from peerlink.core.model import Readiness
from peerlink.core.readiness import ReadinessTracker


def test_bring_up_and_connectivity_changes() -> None:
    seen: list[tuple[Readiness, Readiness]] = []
    tracker = ReadinessTracker("radio", listener=lambda name, old, new: seen.append((old, new)))

    tracker.transition(Readiness.INITIALIZING)
    tracker.transition(Readiness.READY)
    tracker.update_peer_count(0)
    tracker.update_peer_count(2)

    assert tracker.state is Readiness.READY
    assert seen == [
        (Readiness.NOT_STARTED, Readiness.INITIALIZING),
        (Readiness.INITIALIZING, Readiness.READY),
        (Readiness.READY, Readiness.DEGRADED),
        (Readiness.DEGRADED, Readiness.READY),
    ]


def test_peer_count_ignored_before_bring_up() -> None:
    tracker = ReadinessTracker("session")
    tracker.update_peer_count(3)
    assert tracker.state is Readiness.NOT_STARTED

    tracker.transition(Readiness.INITIALIZING)
    tracker.update_peer_count(3)
    assert tracker.state is Readiness.INITIALIZING


def test_invalid_transition_raises() -> None:
    tracker = ReadinessTracker("socket")
    with pytest.raises(ReadinessTransitionError):
        tracker.transition(Readiness.READY)
    assert tracker.state is Readiness.NOT_STARTED


def test_same_state_is_a_no_op() -> None:
    tracker = ReadinessTracker("socket")
    assert tracker.transition(Readiness.INITIALIZING) is True
    assert tracker.transition(Readiness.INITIALIZING) is False


def test_fail_from_not_started_and_restart() -> None:
    tracker = ReadinessTracker("ble")
    tracker.fail("adapter powered off")
    assert tracker.state is Readiness.FAILED

    tracker.transition(Readiness.INITIALIZING)
    tracker.transition(Readiness.READY)
    assert tracker.state is Readiness.READY
