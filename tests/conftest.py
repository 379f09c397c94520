"""Pytest configuration and fixtures."""

from __future__ import annotations

import pytest
import pytest_asyncio

from encore.api.services.queue_service import QueueService
from encore.shared.cooldown import CooldownTracker
from encore.shared.models import RequestKind, TrackRef
from encore.shared.notifier import ChangeNotifier, Subscription
from encore.shared.repositories import MemoryModuleConfigRepository, MemoryRequestRepository


class FakeTimer:
    """Monotonic clock the tests move by hand."""

    def __init__(self, start: float = 1_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def track(title: str, artist: str | None = None) -> TrackRef:
    return TrackRef(title=title, artist=artist)


@pytest.fixture
def timer() -> FakeTimer:
    return FakeTimer()


@pytest.fixture
def store() -> MemoryRequestRepository:
    return MemoryRequestRepository()


@pytest.fixture
def configs() -> MemoryModuleConfigRepository:
    return MemoryModuleConfigRepository(default_cooldown_seconds=60, default_max_per_guest=0)


@pytest_asyncio.fixture
async def notifier():
    notifier = ChangeNotifier(subscriber_queue_size=64)
    yield notifier
    await notifier.aclose()


@pytest.fixture
def service(store, configs, notifier, timer) -> QueueService:
    cooldowns = {kind: CooldownTracker(kind, timer=timer) for kind in RequestKind}
    return QueueService(store, configs, notifier, cooldowns=cooldowns)


@pytest.fixture
def drain(notifier):
    """Collect every change delivered to a subscription so far."""

    async def _drain(subscription: Subscription) -> list:
        await notifier.drain(subscription.event_id)
        changes = []
        while subscription.pending():
            change = await subscription.get()
            if change is not None:
                changes.append(change)
        return changes

    return _drain
