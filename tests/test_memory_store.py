"""In-memory request store: queries and transaction semantics."""

from __future__ import annotations

import asyncio

import pytest

from encore.shared.errors import NotFoundError, QueueValidationError
from encore.shared.models import KaraokeStatus, RequestDraft, RequestKind, SongStatus, TrackRef


def karaoke_draft(guest: str, position: int, turn: int, event_id: str = "E1") -> RequestDraft:
    return RequestDraft(
        event_id=event_id,
        guest_id=guest,
        kind=RequestKind.KARAOKE,
        track=TrackRef(title=f"song of {guest}"),
        status=KaraokeStatus.QUEUED,
        turn_number=turn,
        queue_position=position,
    )


def song_draft(guest: str, priority: int = 0) -> RequestDraft:
    return RequestDraft(
        event_id="E1",
        guest_id=guest,
        kind=RequestKind.SONG,
        track=TrackRef(title=f"pick of {guest}"),
        status=SongStatus.PENDING,
        priority=priority,
    )


async def test_get_is_scoped_to_event(store):
    created = await store.create(karaoke_draft("G1", 0, 1))
    assert await store.get("E1", created.id) == created
    assert await store.get("E2", created.id) is None
    assert created.created_at is not None and created.created_at == created.updated_at


async def test_list_active_is_sorted_and_excludes_terminal(store):
    a = await store.create(karaoke_draft("G1", 1, 1))
    b = await store.create(karaoke_draft("G2", 0, 2))
    c = await store.create(karaoke_draft("G3", 2, 3))
    await store.update(c.id, {"status": KaraokeStatus.COMPLETED})
    assert [r.id for r in await store.list_active("E1", RequestKind.KARAOKE)] == [b.id, a.id]


async def test_song_order_uses_priority_then_creation(store):
    first = await store.create(song_draft("G1"))
    second = await store.create(song_draft("G2"))
    boosted = await store.create(song_draft("G3", priority=10))
    ids = [r.id for r in await store.list_active("E1", RequestKind.SONG)]
    assert ids == [boosted.id, first.id, second.id]


async def test_created_at_is_strictly_increasing(store):
    created = [await store.create(song_draft(f"G{i}")) for i in range(20)]
    stamps = [r.created_at for r in created]
    assert stamps == sorted(stamps) and len(set(stamps)) == len(stamps)


async def test_failed_transaction_leaves_no_trace(store):
    with pytest.raises(RuntimeError):
        async with store.transaction():
            await store.create(karaoke_draft("G1", 0, 1))
            await store.next_turn_number("E1", RequestKind.KARAOKE)
            raise RuntimeError("abort")
    assert await store.list_active("E1", RequestKind.KARAOKE) == []
    assert await store.next_turn_number("E1", RequestKind.KARAOKE) == 1


async def test_uncommitted_writes_are_invisible_to_other_readers(store):
    written = asyncio.Event()
    release = asyncio.Event()

    async def writer() -> None:
        async with store.transaction():
            await store.create(karaoke_draft("G1", 0, 1))
            written.set()
            await release.wait()

    task = asyncio.create_task(writer())
    await written.wait()
    assert await store.list_active("E1", RequestKind.KARAOKE) == []
    release.set()
    await task
    assert len(await store.list_active("E1", RequestKind.KARAOKE)) == 1


async def test_concurrent_transactions_on_different_events_both_commit(store):
    gate = asyncio.Event()

    async def writer(event_id: str) -> None:
        async with store.transaction():
            await store.create(karaoke_draft("G1", 0, 1, event_id=event_id))
            await gate.wait()

    tasks = [asyncio.create_task(writer(e)) for e in ("E1", "E2")]
    await asyncio.sleep(0)
    gate.set()
    await asyncio.gather(*tasks)
    assert len(await store.list_active("E1", RequestKind.KARAOKE)) == 1
    assert len(await store.list_active("E2", RequestKind.KARAOKE)) == 1


async def test_nested_transaction_joins_outer(store):
    with pytest.raises(RuntimeError):
        async with store.transaction():
            async with store.transaction():
                await store.create(song_draft("G1"))
            raise RuntimeError("abort outer")
    assert await store.list_active("E1", RequestKind.SONG) == []


async def test_turn_counter_is_per_event_and_kind(store):
    assert await store.next_turn_number("E1", RequestKind.KARAOKE) == 1
    assert await store.next_turn_number("E1", RequestKind.KARAOKE) == 2
    assert await store.next_turn_number("E2", RequestKind.KARAOKE) == 1
    assert await store.next_turn_number("E1", RequestKind.SONG) == 1


async def test_update_rejects_immutable_fields(store):
    created = await store.create(song_draft("G1"))
    with pytest.raises(QueueValidationError):
        await store.update(created.id, {"guest_id": "G2"})


async def test_update_missing_request(store):
    with pytest.raises(NotFoundError):
        await store.update("missing", {"status": SongStatus.PLAYED})


async def test_delete(store):
    created = await store.create(song_draft("G1"))
    assert await store.delete(created.id) is True
    assert await store.delete(created.id) is False
    assert await store.get("E1", created.id) is None


async def test_reassign_only_touches_matching_rows(store):
    a = await store.create(karaoke_draft("G1", 5, 1))
    other = await store.create(karaoke_draft("G2", 7, 1, event_id="E2"))
    await store.reassign("E1", RequestKind.KARAOKE, "queue_position", {a.id: 0, other.id: 0})
    assert (await store.get("E1", a.id)).queue_position == 0
    assert (await store.get("E2", other.id)).queue_position == 7


async def test_guest_queries(store):
    first = await store.create(karaoke_draft("G1", 0, 1))
    second = await store.create(karaoke_draft("G1", 1, 2))
    await store.create(song_draft("G1"))
    await store.update(first.id, {"status": KaraokeStatus.CANCELLED})

    history = await store.list_by_guest("E1", "G1", RequestKind.KARAOKE)
    assert [r.id for r in history] == [second.id, first.id]
    assert len(await store.list_by_guest("E1", "G1")) == 3
    assert await store.count_active_by_guest("E1", RequestKind.KARAOKE, "G1") == 1


async def test_listing_with_filters_and_pages(store):
    ids = [(await store.create(karaoke_draft(f"G{i}", i, i + 1))).id for i in range(5)]
    await store.update(ids[0], {"status": KaraokeStatus.COMPLETED})

    page = await store.list_requests("E1", RequestKind.KARAOKE, limit=2, offset=1)
    assert [r.id for r in page] == ids[1:3]
    done = await store.list_requests(
        "E1", RequestKind.KARAOKE, statuses={KaraokeStatus.COMPLETED}
    )
    assert [r.id for r in done] == [ids[0]]
    assert await store.count_requests("E1", RequestKind.KARAOKE) == 5
    assert await store.count_by_status("E1", RequestKind.KARAOKE) == {
        "QUEUED": 4,
        "COMPLETED": 1,
    }
