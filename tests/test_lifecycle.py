"""Transition tables and their side effects."""

from __future__ import annotations

from datetime import UTC, datetime

import pytest

from encore.shared.errors import InvalidTransitionError, QueueValidationError
from encore.shared.lifecycle import LifecycleStateMachine, TransitionTable, parse_status
from encore.shared.models import KaraokeStatus, QueueRequest, RequestKind, SongStatus, TrackRef

NOW = datetime(2026, 5, 1, 21, 30, tzinfo=UTC)


def make(kind: RequestKind, status: str, **fields) -> QueueRequest:
    return QueueRequest(
        id="r1",
        event_id="E1",
        guest_id="G1",
        kind=kind,
        track=TrackRef(title="Bohemian Rhapsody"),
        status=status,
        **fields,
    )


@pytest.fixture
def machine() -> LifecycleStateMachine:
    return LifecycleStateMachine()


@pytest.mark.parametrize(
    ("source", "target", "allowed"),
    [
        (SongStatus.PENDING, SongStatus.HIGHLIGHTED, True),
        (SongStatus.HIGHLIGHTED, SongStatus.URGENT, True),
        (SongStatus.URGENT, SongStatus.PLAYED, True),
        (SongStatus.PENDING, SongStatus.DISCARDED, True),
        (SongStatus.PENDING, SongStatus.PLAYED, True),
        (SongStatus.HIGHLIGHTED, SongStatus.PLAYED, True),
        (SongStatus.PENDING, SongStatus.URGENT, True),
        (SongStatus.PLAYED, SongStatus.PENDING, True),
        (SongStatus.DISCARDED, SongStatus.URGENT, True),
        (SongStatus.PLAYED, SongStatus.HIGHLIGHTED, False),
        (SongStatus.PLAYED, SongStatus.DISCARDED, False),
        (SongStatus.DISCARDED, SongStatus.HIGHLIGHTED, False),
    ],
)
def test_song_table(machine, source, target, allowed):
    assert machine.table_for(RequestKind.SONG).can_transition(source, target) is allowed


@pytest.mark.parametrize(
    ("source", "target", "allowed"),
    [
        (KaraokeStatus.QUEUED, KaraokeStatus.CALLED, True),
        (KaraokeStatus.CALLED, KaraokeStatus.ON_STAGE, True),
        (KaraokeStatus.ON_STAGE, KaraokeStatus.COMPLETED, True),
        (KaraokeStatus.QUEUED, KaraokeStatus.NO_SHOW, True),
        (KaraokeStatus.CALLED, KaraokeStatus.CANCELLED, True),
        (KaraokeStatus.NO_SHOW, KaraokeStatus.QUEUED, True),
        (KaraokeStatus.QUEUED, KaraokeStatus.ON_STAGE, False),
        (KaraokeStatus.QUEUED, KaraokeStatus.COMPLETED, False),
        (KaraokeStatus.ON_STAGE, KaraokeStatus.NO_SHOW, False),
        (KaraokeStatus.COMPLETED, KaraokeStatus.QUEUED, True),
        (KaraokeStatus.COMPLETED, KaraokeStatus.CALLED, True),
        (KaraokeStatus.NO_SHOW, KaraokeStatus.CALLED, True),
        (KaraokeStatus.CANCELLED, KaraokeStatus.CALLED, True),
        (KaraokeStatus.COMPLETED, KaraokeStatus.ON_STAGE, False),
        (KaraokeStatus.NO_SHOW, KaraokeStatus.COMPLETED, False),
    ],
)
def test_karaoke_table(machine, source, target, allowed):
    assert machine.table_for(RequestKind.KARAOKE).can_transition(source, target) is allowed


def test_rejected_transition_names_both_states(machine):
    request = make(RequestKind.KARAOKE, KaraokeStatus.QUEUED)
    with pytest.raises(InvalidTransitionError) as exc_info:
        machine.transition(request, KaraokeStatus.ON_STAGE, now=NOW)
    assert exc_info.value.context == {"from_status": "QUEUED", "to_status": "ON_STAGE"}


def test_calling_a_singer_stamps_called_at(machine):
    request = make(RequestKind.KARAOKE, KaraokeStatus.QUEUED)
    assert machine.transition(request, "called", now=NOW) == {
        "status": KaraokeStatus.CALLED,
        "called_at": NOW,
    }


def test_returning_to_queue_clears_called_at(machine):
    request = make(RequestKind.KARAOKE, KaraokeStatus.CALLED, called_at=NOW)
    assert machine.transition(request, KaraokeStatus.QUEUED, now=NOW) == {
        "status": KaraokeStatus.QUEUED,
        "called_at": None,
    }


def test_song_transition_only_changes_status(machine):
    request = make(RequestKind.SONG, SongStatus.PENDING, priority=0)
    assert machine.transition(request, SongStatus.PLAYED, now=NOW) == {"status": SongStatus.PLAYED}


def test_parse_status_is_case_insensitive():
    assert parse_status(RequestKind.SONG, "urgent") == SongStatus.URGENT


def test_parse_status_rejects_other_kinds_statuses():
    with pytest.raises(QueueValidationError):
        parse_status(RequestKind.SONG, "ON_STAGE")


def test_unknown_target_is_a_validation_error(machine):
    with pytest.raises(QueueValidationError):
        machine.transition(make(RequestKind.SONG, SongStatus.PENDING), "LOST", now=NOW)


def test_initial_statuses(machine):
    assert machine.table_for(RequestKind.SONG).initial == SongStatus.PENDING
    assert machine.table_for(RequestKind.KARAOKE).initial == KaraokeStatus.QUEUED


class TestOverrides:
    def test_configured_table_replaces_default(self):
        machine = LifecycleStateMachine.from_overrides(
            {RequestKind.SONG: {"PENDING": ["PLAYED"], "PLAYED": []}}
        )
        table = machine.table_for(RequestKind.SONG)
        assert table.can_transition("PENDING", "PLAYED")
        assert not table.can_transition("PENDING", "URGENT")
        assert not table.can_transition("PLAYED", "PENDING")

    def test_empty_override_keeps_default(self):
        machine = LifecycleStateMachine.from_overrides({RequestKind.KARAOKE: {}})
        assert machine.table_for(RequestKind.KARAOKE).can_transition("QUEUED", "CALLED")

    def test_unknown_status_is_rejected(self):
        with pytest.raises(ValueError):
            TransitionTable(RequestKind.KARAOKE, {"QUEUED": ["BOOED"]})

    def test_as_dict_lists_every_status(self):
        table = TransitionTable.default(RequestKind.KARAOKE)
        assert set(table.as_dict()) == {s.value for s in KaraokeStatus}
        assert table.as_dict()["ON_STAGE"] == ["COMPLETED"]
        assert table.as_dict()["COMPLETED"] == ["CALLED", "QUEUED"]


def test_calling_again_from_terminal_stamps_called_at(machine):
    request = make(RequestKind.KARAOKE, KaraokeStatus.NO_SHOW, called_at=None)
    assert machine.transition(request, KaraokeStatus.CALLED, now=NOW) == {
        "status": KaraokeStatus.CALLED,
        "called_at": NOW,
    }
