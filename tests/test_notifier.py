"""Change fan-out: ordering, filtering and slow subscribers."""

from __future__ import annotations

import asyncio
from datetime import UTC, datetime

from encore.shared.models import (
    ChangeType,
    KaraokeStatus,
    ModuleConfig,
    QueueChange,
    QueueRequest,
    RequestKind,
    TrackRef,
)
from encore.shared.notifier import ChangeNotifier


def reordered(event_id: str, *ids: str, kind: RequestKind = RequestKind.KARAOKE) -> QueueChange:
    return QueueChange.reordered(event_id, kind, list(ids))


async def test_subscribers_see_changes_in_publish_order(notifier, drain):
    first = notifier.subscribe("E1")
    second = notifier.subscribe("E1")
    for i in range(5):
        notifier.publish(reordered("E1", str(i)))

    for subscription in (first, second):
        changes = await drain(subscription)
        assert [c.order for c in changes] == [(str(i),) for i in range(5)]
        assert [c.sequence for c in changes] == [1, 2, 3, 4, 5]


async def test_sequences_are_per_event(notifier):
    notifier.publish(reordered("E1", "a"))
    notifier.publish(reordered("E1", "b"))
    stamped = notifier.publish(reordered("E2", "c"))
    assert stamped.sequence == 1
    assert stamped.emitted_at is not None
    assert notifier.last_sequence("E1") == 2


async def test_events_are_isolated(notifier, drain):
    e1 = notifier.subscribe("E1")
    notifier.publish(reordered("E2", "x"))
    notifier.publish(reordered("E1", "y"))
    await notifier.drain("E2")
    assert [c.order for c in await drain(e1)] == [("y",)]


async def test_kind_filter(notifier, drain):
    songs = notifier.subscribe("E1", [RequestKind.SONG])
    notifier.publish(reordered("E1", "k1"))
    notifier.publish(reordered("E1", "s1", kind=RequestKind.SONG))
    assert [c.order for c in await drain(songs)] == [("s1",)]


async def test_overflowing_subscriber_is_disconnected():
    notifier = ChangeNotifier(subscriber_queue_size=2)
    slow = notifier.subscribe("E1")
    for i in range(5):
        notifier.publish(reordered("E1", str(i)))
    await notifier.drain("E1")

    assert slow.lagged and slow.closed
    assert notifier.subscriber_count("E1") == 0
    assert [c async for c in slow] == []

    # publishing keeps working for later subscribers
    fresh = notifier.subscribe("E1")
    notifier.publish(reordered("E1", "next"))
    await notifier.drain("E1")
    assert (await fresh.get()).sequence == 6
    await notifier.aclose()


async def test_unsubscribe_ends_iteration(notifier):
    subscription = notifier.subscribe("E1")
    notifier.publish(reordered("E1", "a"))
    await notifier.drain("E1")
    notifier.unsubscribe(subscription)
    assert [c.order async for c in subscription] == [("a",)]
    assert not subscription.lagged
    assert notifier.subscriber_count("E1") == 0


async def test_aclose_ends_every_stream(notifier):
    subscription = notifier.subscribe("E1")
    await notifier.aclose()
    assert [c async for c in subscription] == []


def test_payload_carries_request_and_order():
    request = QueueRequest(
        id="r2",
        event_id="E1",
        guest_id="G2",
        kind=RequestKind.KARAOKE,
        track=TrackRef(title="Livin' on a Prayer", artist="Bon Jovi"),
        status=KaraokeStatus.QUEUED,
        turn_number=2,
        queue_position=0,
        created_at=datetime(2026, 5, 1, 20, 0, tzinfo=UTC),
    )
    payload = QueueChange.deleted(request, ["r3"]).to_payload()
    assert payload["type"] == ChangeType.REQUEST_DELETED == "request.deleted"
    assert payload["request_id"] == "r2"
    assert payload["order"] == ["r3"]
    assert payload["request"]["title"] == "Livin' on a Prayer"
    assert payload["request"]["created_at"] == "2026-05-01T20:00:00+00:00"
    assert "config" not in payload


def test_config_payload():
    config = ModuleConfig(event_id="E1", module=RequestKind.SONG, cooldown_seconds=30)
    payload = QueueChange.config_updated(config).to_payload()
    assert payload["type"] == "config.updated"
    assert payload["kind"] == "song"
    assert payload["config"]["cooldown_seconds"] == 30
    assert "order" not in payload


async def test_rooms_released_after_changes_without_subscribers(notifier):
    for i in range(50):
        notifier.publish(reordered(f"E{i}", "a"))
    for i in range(50):
        await notifier.drain(f"E{i}")
    await asyncio.sleep(0)
    assert notifier.room_count() == 0
    # sequences survive the room
    assert notifier.publish(reordered("E0", "b")).sequence == 2


async def test_room_released_when_last_subscriber_leaves_with_backlog(notifier):
    subscription = notifier.subscribe("E1")
    notifier.publish(reordered("E1", "a"))
    notifier.unsubscribe(subscription)
    assert notifier.room_count() == 1  # backlog still queued

    await notifier.drain("E1")
    await asyncio.sleep(0)
    assert notifier.room_count() == 0


async def test_lagged_room_released():
    notifier = ChangeNotifier(subscriber_queue_size=1)
    notifier.subscribe("E1")
    for i in range(3):
        notifier.publish(reordered("E1", str(i)))
    await notifier.drain("E1")
    await asyncio.sleep(0)
    assert notifier.room_count() == 0
    await notifier.aclose()


async def test_delivered_sequence_trails_the_outbox(notifier, drain):
    notifier.publish(reordered("E1", "a"))
    await notifier.drain("E1")
    notifier.publish(reordered("E1", "b"))

    late = notifier.subscribe("E1")
    assert notifier.last_sequence("E1") == 2
    assert notifier.delivered_sequence("E1") == 1
    # the queued change still reaches the late subscriber, numbered above the marker
    assert [c.sequence for c in await drain(late)] == [2]
    assert notifier.delivered_sequence("E1") == 2
