"""Per-guest cooldown reservations."""

from __future__ import annotations

import pytest
from conftest import FakeTimer

from encore.shared.cooldown import CooldownTracker


@pytest.fixture
def tracker(timer: FakeTimer) -> CooldownTracker:
    return CooldownTracker("karaoke", timer=timer)


def test_second_request_inside_window_is_denied(tracker, timer):
    assert tracker.check_and_reserve("E1", "G1", 60).allowed
    timer.advance(20.5)
    denied = tracker.check_and_reserve("E1", "G1", 60)
    assert not denied.allowed
    assert denied.remaining_seconds == 40  # ceil(39.5)


def test_request_after_window_is_allowed(tracker, timer):
    tracker.check_and_reserve("E1", "G1", 60)
    timer.advance(60)
    assert tracker.check_and_reserve("E1", "G1", 60).allowed


def test_zero_cooldown_never_blocks(tracker):
    for _ in range(3):
        assert tracker.check_and_reserve("E1", "G1", 0).allowed
    assert tracker.remaining("E1", "G1", 0) == 0


def test_guests_and_events_are_independent(tracker):
    tracker.check_and_reserve("E1", "G1", 60)
    assert tracker.check_and_reserve("E1", "G2", 60).allowed
    assert tracker.check_and_reserve("E2", "G1", 60).allowed


def test_release_undoes_reservation(tracker):
    reservation = tracker.check_and_reserve("E1", "G1", 60)
    tracker.release(reservation)
    assert tracker.check_and_reserve("E1", "G1", 60).allowed


def test_release_restores_previous_window(tracker, timer):
    tracker.check_and_reserve("E1", "G1", 10)
    timer.advance(5)
    # cooldown lowered, so a new reservation is allowed while the old entry lives
    second = tracker.check_and_reserve("E1", "G1", 5)
    assert second.allowed and second.previous is not None
    tracker.release(second)
    assert tracker.remaining("E1", "G1", 10) == 5


def test_releasing_a_denial_is_a_noop(tracker):
    tracker.check_and_reserve("E1", "G1", 60)
    denied = tracker.check_and_reserve("E1", "G1", 60)
    tracker.release(denied)
    assert tracker.remaining("E1", "G1", 60) == 60


def test_current_setting_governs_remaining_time(tracker, timer):
    tracker.check_and_reserve("E1", "G1", 60)
    timer.advance(10)
    assert tracker.remaining("E1", "G1", 60) == 50
    assert tracker.check_and_reserve("E1", "G1", 5).allowed


def test_raised_cooldown_applies_to_waiting_guest(tracker, timer):
    tracker.check_and_reserve("E1", "G1", 10)
    timer.advance(15)
    denied = tracker.check_and_reserve("E1", "G1", 60)
    assert not denied.allowed
    assert denied.remaining_seconds == 45
    assert tracker.remaining("E1", "G1", 60) == 45


def test_entries_dropped_after_longest_cooldown(timer):
    tracker = CooldownTracker("song", max_cooldown_seconds=120, timer=timer)
    tracker.check_and_reserve("E1", "G1", 60)
    timer.advance(121)
    assert tracker.remaining("E1", "G1", 3600) == 0
    assert tracker.check_and_reserve("E1", "G1", 3600).allowed
