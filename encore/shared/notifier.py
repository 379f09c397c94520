"""Realtime change fan-out.

Architecture:
    QueueService → publish(change) → per-event outbox → fan-out worker → subscriptions

``publish`` is synchronous and never blocks: it stamps the change with the
event's next sequence number and appends it to the event's outbox. One
worker task per event drains the outbox and offers each change to every
subscription of that event, so all subscribers observe changes in commit
order. Subscriptions are bounded; a subscriber that falls too far behind
is disconnected instead of slowing down the others.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator, Iterable
from dataclasses import replace
from datetime import UTC, datetime

from .models.change import QueueChange
from .models.request import RequestKind

logger = logging.getLogger(__name__)


class Subscription:
    """A subscriber's view of one event's change stream.

    Iterate with ``async for``; iteration ends when the subscription is
    closed, either by ``ChangeNotifier.unsubscribe`` or because the
    subscriber overflowed its buffer (``lagged`` is then True).
    """

    def __init__(
        self,
        event_id: str,
        kinds: Iterable[RequestKind] | None = None,
        maxsize: int = 256,
    ) -> None:
        self.event_id = event_id
        self.kinds = frozenset(RequestKind(k) for k in kinds) if kinds else None
        self.lagged = False
        self.closed = False
        self._queue: asyncio.Queue[QueueChange | None] = asyncio.Queue(maxsize=maxsize)

    def wants(self, change: QueueChange) -> bool:
        return self.kinds is None or change.kind in self.kinds

    def offer(self, change: QueueChange) -> bool:
        """Buffer a change. Returns False when the buffer is full."""
        if self.closed:
            return True
        try:
            self._queue.put_nowait(change)
        except asyncio.QueueFull:
            return False
        return True

    def close(self, *, lagged: bool = False) -> None:
        if self.closed:
            return
        self.closed = True
        self.lagged = lagged
        if lagged:
            # Backlog is useless once a change was lost; the client resyncs
            while not self._queue.empty():
                self._queue.get_nowait()
        try:
            self._queue.put_nowait(None)
        except asyncio.QueueFull:
            self._queue.get_nowait()
            self._queue.put_nowait(None)

    async def get(self) -> QueueChange | None:
        """Next change, or None once the stream has ended."""
        return await self._queue.get()

    def pending(self) -> int:
        return self._queue.qsize()

    async def __aiter__(self) -> AsyncIterator[QueueChange]:
        while True:
            change = await self._queue.get()
            if change is None:
                return
            yield change


class _Room:
    """Outbox and subscribers of one event.

    A room exists while it has subscribers or undelivered changes; the
    worker releases it once both are gone.
    """

    def __init__(self, event_id: str, delivered: int = 0) -> None:
        self.event_id = event_id
        self.outbox: asyncio.Queue[QueueChange] = asyncio.Queue()
        self.subscribers: list[Subscription] = []
        self.worker: asyncio.Task[None] | None = None
        self.delivered = delivered  # sequence of the last fanned-out change

    @property
    def idle(self) -> bool:
        return not self.subscribers and self.outbox.empty()


class ChangeNotifier:
    def __init__(self, subscriber_queue_size: int = 256) -> None:
        self.subscriber_queue_size = subscriber_queue_size
        self._rooms: dict[str, _Room] = {}
        self._sequences: dict[str, int] = {}

    def _room(self, event_id: str) -> _Room:
        room = self._rooms.get(event_id)
        if room is None:
            room = self._rooms[event_id] = _Room(event_id, self._sequences.get(event_id, 0))
        return room

    def _release(self, room: _Room) -> None:
        if self._rooms.get(room.event_id) is room:
            del self._rooms[room.event_id]
        if room.worker is not None and room.worker is not asyncio.current_task():
            room.worker.cancel()
        logger.debug(f"Released room of event {room.event_id}")

    # --- publishing ---

    def publish(self, change: QueueChange) -> QueueChange:
        """Stamp and enqueue a committed change. Never blocks."""
        room = self._room(change.event_id)
        sequence = self._sequences.get(change.event_id, 0) + 1
        self._sequences[change.event_id] = sequence
        change = replace(change, sequence=sequence, emitted_at=datetime.now(UTC))
        room.outbox.put_nowait(change)
        if room.worker is None or room.worker.done():
            room.worker = asyncio.get_running_loop().create_task(
                self._fan_out(room), name=f"fan-out:{room.event_id}"
            )
        logger.debug(f"Queued {change.type} seq={sequence} for event {change.event_id}")
        return change

    async def _fan_out(self, room: _Room) -> None:
        while True:
            change = await room.outbox.get()
            delivered = 0
            for subscription in list(room.subscribers):
                if not subscription.wants(change):
                    continue
                if subscription.offer(change):
                    delivered += 1
                    continue
                logger.warning(
                    f"Subscriber of event {room.event_id} fell behind at seq={change.sequence}, "
                    "disconnecting"
                )
                room.subscribers.remove(subscription)
                subscription.close(lagged=True)
            room.delivered = change.sequence
            logger.debug(
                f"Delivered {change.type} seq={change.sequence} "
                f"to {delivered}/{len(room.subscribers)} subscribers of {room.event_id}"
            )
            room.outbox.task_done()
            if room.idle:
                self._release(room)
                return

    # --- subscriptions ---

    def subscribe(
        self, event_id: str, kinds: Iterable[RequestKind] | None = None
    ) -> Subscription:
        subscription = Subscription(event_id, kinds, maxsize=self.subscriber_queue_size)
        self._room(event_id).subscribers.append(subscription)
        logger.debug(f"New subscriber for event {event_id}")
        return subscription

    def unsubscribe(self, subscription: Subscription) -> None:
        room = self._rooms.get(subscription.event_id)
        if room is not None:
            if subscription in room.subscribers:
                room.subscribers.remove(subscription)
            # With changes still queued the worker releases the room when done
            if room.idle:
                self._release(room)
        subscription.close()

    def subscriber_count(self, event_id: str) -> int:
        room = self._rooms.get(event_id)
        return len(room.subscribers) if room else 0

    def room_count(self) -> int:
        return len(self._rooms)

    def last_sequence(self, event_id: str) -> int:
        """Sequence of the last published change of *event_id*."""
        return self._sequences.get(event_id, 0)

    def delivered_sequence(self, event_id: str) -> int:
        """Sequence of the last change fanned out to subscribers.

        A subscription opened now receives every change numbered above it.
        """
        room = self._rooms.get(event_id)
        if room is None:
            return self._sequences.get(event_id, 0)
        return room.delivered

    # --- lifecycle ---

    async def drain(self, event_id: str) -> None:
        """Wait until every published change of *event_id* was fanned out."""
        room = self._rooms.get(event_id)
        if room is not None:
            await room.outbox.join()

    async def aclose(self) -> None:
        workers = [room.worker for room in self._rooms.values() if room.worker is not None]
        for room in list(self._rooms.values()):
            for subscription in room.subscribers:
                subscription.close()
        for worker in workers:
            worker.cancel()
        await asyncio.gather(*workers, return_exceptions=True)
        self._rooms.clear()
        logger.info("Change notifier closed")
