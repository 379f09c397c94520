"""Queue service: composes the store, ordering, lifecycle, cooldowns and notifier.

Every mutation of an event runs under that event's lock:

    lock → policy checks → store transaction → publish → unlock

so the order in which changes are committed and the order in which they
are published are the same. Rejected mutations raise before the
transaction commits and publish nothing.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Mapping, Sequence
from dataclasses import replace
from datetime import UTC, datetime
from typing import Any

from ...shared.catalog import TrackCatalog
from ...shared.cooldown import MAX_COOLDOWN_SECONDS, CooldownTracker
from ...shared.errors import (
    CooldownActiveError,
    GuestLimitReachedError,
    KindMismatchError,
    ModuleDisabledError,
    NotFoundError,
    NotRequestOwnerError,
    QueueValidationError,
)
from ...shared.lifecycle import LifecycleStateMachine, parse_status
from ...shared.locks import EventLocks
from ...shared.models import (
    ACTIVE_STATUSES,
    STATUS_ENUMS,
    ModuleConfig,
    QueueChange,
    QueueRequest,
    RequestDraft,
    RequestKind,
    TrackRef,
)
from ...shared.notifier import ChangeNotifier
from ...shared.ordering import strategy_for
from ...shared.repositories.base import ModuleConfigStore, RequestStore

logger = logging.getLogger(__name__)

MAX_TITLE_LENGTH = 200
MAX_ARTIST_LENGTH = 200
MAX_PRIORITY = 999
MAX_PER_GUEST_LIMIT = 20
MAX_PAGE_SIZE = 500


def parse_kind(kind: str | RequestKind) -> RequestKind:
    try:
        return RequestKind(str(kind).lower())
    except ValueError:
        raise QueueValidationError(
            f"Unknown request kind '{kind}'", allowed=[k.value for k in RequestKind]
        ) from None


def _require_id(value: Any, name: str) -> str:
    if not isinstance(value, str) or not value.strip():
        raise QueueValidationError(f"{name} is required")
    return value.strip()


def _check_int(value: Any, name: str, low: int, high: int) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise QueueValidationError(f"{name} must be an integer")
    if not low <= value <= high:
        raise QueueValidationError(f"{name} must be between {low} and {high}", **{name: value})
    return value


def _clean_track(track: TrackRef) -> TrackRef:
    title = (track.title or "").strip()
    if not title:
        raise QueueValidationError("title is required")
    if len(title) > MAX_TITLE_LENGTH:
        raise QueueValidationError(f"title must be at most {MAX_TITLE_LENGTH} characters")
    artist = (track.artist or "").strip() or None
    if artist and len(artist) > MAX_ARTIST_LENGTH:
        raise QueueValidationError(f"artist must be at most {MAX_ARTIST_LENGTH} characters")
    return replace(track, title=title, artist=artist)


def _utcnow() -> datetime:
    return datetime.now(UTC)


class QueueService:
    """Public contract of the request queues, consumed by the HTTP and WebSocket layers."""

    def __init__(
        self,
        store: RequestStore,
        configs: ModuleConfigStore,
        notifier: ChangeNotifier,
        *,
        lifecycle: LifecycleStateMachine | None = None,
        cooldowns: Mapping[RequestKind, CooldownTracker] | None = None,
        locks: EventLocks | None = None,
        catalog: TrackCatalog | None = None,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self.store = store
        self.configs = configs
        self.notifier = notifier
        self.lifecycle = lifecycle or LifecycleStateMachine()
        # Each module owns its tracker, so song and karaoke cooldowns are independent
        self.cooldowns = dict(cooldowns or {kind: CooldownTracker(kind) for kind in RequestKind})
        self.locks = locks or EventLocks()
        self.catalog = catalog
        self._clock = clock

    # ------------------------------------------------------------------
    # Submissions
    # ------------------------------------------------------------------

    async def submit_request(
        self,
        event_id: str,
        guest_id: str,
        kind: str | RequestKind,
        track: TrackRef | None = None,
        *,
        query: str | None = None,
    ) -> QueueRequest:
        """Create a request for a guest.

        Either *track* or a catalog *query* (link or search phrase) must be
        given. Rejected with ModuleDisabledError, GuestLimitReachedError or
        CooldownActiveError according to the module config. A query that
        finds nothing raises NotFoundError; an unreachable catalog raises
        TrackLookupUnavailableError.
        """
        kind = parse_kind(kind)
        event_id = _require_id(event_id, "event_id")
        guest_id = _require_id(guest_id, "guest_id")
        if track is None:
            track = await self._lookup(query)
        track = _clean_track(track)

        config = await self.configs.get_or_create(event_id, kind)
        if not config.enabled:
            logger.info(f"Rejected {kind} request from {guest_id} in {event_id}: module disabled")
            raise ModuleDisabledError(kind)

        async with self.locks.hold(event_id):
            if config.max_per_guest > 0:
                owned = await self.store.count_active_by_guest(event_id, kind, guest_id)
                if owned >= config.max_per_guest:
                    logger.info(f"Guest {guest_id} in {event_id} hit the {kind} limit ({owned})")
                    raise GuestLimitReachedError(config.max_per_guest)

            tracker = self.cooldowns[kind]
            reservation = tracker.check_and_reserve(event_id, guest_id, config.cooldown_seconds)
            if not reservation.allowed:
                raise CooldownActiveError(reservation.remaining_seconds)

            committed = False
            try:
                async with self.store.transaction():
                    strategy = strategy_for(kind)
                    active = await self.store.list_active(event_id, kind)
                    turn_number = None
                    if kind == RequestKind.KARAOKE:
                        turn_number = await self.store.next_turn_number(event_id, kind)
                    request = await self.store.create(
                        RequestDraft(
                            event_id=event_id,
                            guest_id=guest_id,
                            kind=kind,
                            track=track,
                            status=self.lifecycle.table_for(kind).initial,
                            turn_number=turn_number,
                            **strategy.insert_keys(active),
                        )
                    )
                    order = [r.id for r in strategy.sort([*active, request])]
                committed = True
            finally:
                if not committed:
                    tracker.release(reservation)

            logger.info(
                f"New {kind} request {request.id} in {event_id} from {guest_id}: "
                f"'{track.title}' (turn={request.turn_number}, position={request.queue_position})"
            )
            self.notifier.publish(QueueChange.created(request, order))
        return request

    async def _lookup(self, query: str | None) -> TrackRef:
        if not query or not query.strip():
            raise QueueValidationError("Either track fields or a lookup query is required")
        if self.catalog is None:
            raise QueueValidationError("Track lookup is not available, provide a title")
        track = await self.catalog.lookup(query.strip())
        if track is None:
            raise NotFoundError(f"No track found for '{query.strip()}'", query=query.strip())
        return track

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def list_queue(
        self,
        event_id: str,
        kind: str | RequestKind,
        *,
        status: str | None = None,
        include_inactive: bool = False,
        limit: int | None = None,
        offset: int = 0,
    ) -> list[QueueRequest]:
        """Requests in queue order; the active set unless told otherwise."""
        kind = parse_kind(kind)
        if limit is not None:
            _check_int(limit, "limit", 1, MAX_PAGE_SIZE)
        _check_int(offset, "offset", 0, 2**31 - 1)
        if status is not None:
            statuses: frozenset[str] | None = frozenset({parse_status(kind, status)})
        elif include_inactive:
            statuses = None
        else:
            statuses = ACTIVE_STATUSES[kind]
        return await self.store.list_requests(
            event_id, kind, statuses=statuses, limit=limit, offset=offset
        )

    async def get_request(
        self, event_id: str, request_id: str, kind: str | RequestKind | None = None
    ) -> QueueRequest:
        request = await self.store.get(event_id, request_id)
        if request is None:
            raise NotFoundError(f"Request {request_id} not found", request_id=request_id)
        if kind is not None and request.kind != parse_kind(kind):
            raise KindMismatchError(
                f"Request {request_id} is a {request.kind} request",
                request_id=request_id,
                kind=str(request.kind),
            )
        return request

    async def list_guest_requests(
        self, event_id: str, guest_id: str, kind: str | RequestKind | None = None
    ) -> list[QueueRequest]:
        """A guest's requests in an event, newest first."""
        guest_id = _require_id(guest_id, "guest_id")
        return await self.store.list_by_guest(
            event_id, guest_id, parse_kind(kind) if kind is not None else None
        )

    async def get_stats(self, event_id: str, kind: str | RequestKind) -> dict[str, Any]:
        kind = parse_kind(kind)
        counts = await self.store.count_by_status(event_id, kind)
        by_status = {status.value: counts.get(status.value, 0) for status in STATUS_ENUMS[kind]}
        return {
            "event_id": event_id,
            "kind": kind.value,
            "total": sum(by_status.values()),
            "active": sum(by_status[s] for s in ACTIVE_STATUSES[kind]),
            "by_status": by_status,
        }

    # ------------------------------------------------------------------
    # Operator mutations
    # ------------------------------------------------------------------

    async def update_status(
        self,
        event_id: str,
        request_id: str,
        target_status: str,
        kind: str | RequestKind | None = None,
    ) -> QueueRequest:
        return await self.update_request(event_id, request_id, kind=kind, status=target_status)

    async def update_request(
        self,
        event_id: str,
        request_id: str,
        *,
        kind: str | RequestKind | None = None,
        status: str | None = None,
        priority: int | None = None,
    ) -> QueueRequest:
        """Apply a status transition and/or a priority change in one step.

        Leaving the active set closes the karaoke position gap; returning
        to it appends the request at the end of the queue.
        """
        if status is None and priority is None:
            raise QueueValidationError("Nothing to update")
        if priority is not None:
            _check_int(priority, "priority", 0, MAX_PRIORITY)

        async with self.locks.hold(event_id):
            current = await self.get_request(event_id, request_id, kind)
            if priority is not None and current.kind != RequestKind.SONG:
                raise QueueValidationError("priority only applies to song requests")

            patch: dict[str, Any] = {}
            if status is not None:
                target = parse_status(current.kind, status)
                if target != current.status:
                    patch.update(self.lifecycle.transition(current, target, now=self._clock()))
            if priority is not None and priority != current.priority:
                patch["priority"] = priority
            if not patch:
                return current

            strategy = strategy_for(current.kind)
            async with self.store.transaction():
                before = await self.store.list_active(event_id, current.kind)
                leaving = current.active and not self._is_active(current, patch)
                joining = not current.active and self._is_active(current, patch)
                if joining:
                    others = [r for r in before if r.id != current.id]
                    patch.update(strategy.rejoin_keys(others))

                updated = await self.store.update(current.id, patch)

                order: list[str] | None = None
                if leaving or joining:
                    after = await self.store.list_active(event_id, current.kind)
                    renumbered = strategy.renumber(after)
                    await self.store.reassign(event_id, current.kind, strategy.field, renumbered)
                    order = [r.id for r in after]
                elif updated.active and "priority" in patch:
                    after = await self.store.list_active(event_id, current.kind)
                    order = [r.id for r in after]
                    if order == [r.id for r in before]:
                        order = None

            logger.info(
                f"Updated {current.kind} request {current.id} in {event_id}: "
                + ", ".join(f"{k}={v}" for k, v in patch.items())
            )
            self.notifier.publish(QueueChange.updated(updated, order))
        return updated

    @staticmethod
    def _is_active(current: QueueRequest, patch: Mapping[str, Any]) -> bool:
        return patch.get("status", current.status) in ACTIVE_STATUSES[current.kind]

    async def reorder_queue(
        self, event_id: str, kind: str | RequestKind, ordered_ids: Sequence[str]
    ) -> list[QueueRequest]:
        """Replace the active order with *ordered_ids*, all or nothing.

        The ids must be exactly the current active set of *kind*.
        """
        kind = parse_kind(kind)
        if isinstance(ordered_ids, str) or not all(
            isinstance(i, str) and i for i in ordered_ids
        ):
            raise QueueValidationError("request_ids must be a list of request ids")
        ordered_ids = list(ordered_ids)
        strategy = strategy_for(kind)

        async with self.locks.hold(event_id):
            async with self.store.transaction():
                active = await self.store.list_active(event_id, kind)
                active_ids = {r.id for r in active}
                for request_id in dict.fromkeys(ordered_ids):
                    if request_id in active_ids:
                        continue
                    other = await self.store.get(event_id, request_id)
                    if other is not None and other.kind != kind:
                        raise KindMismatchError(
                            f"Request {request_id} is a {other.kind} request, not {kind}",
                            request_id=request_id,
                            kind=str(other.kind),
                        )
                updates = strategy.reorder(active, ordered_ids)
                await self.store.reassign(event_id, kind, strategy.field, updates)
                result = await self.store.list_active(event_id, kind)

            order = [r.id for r in result]
            logger.info(f"Reordered {kind} queue of {event_id} ({len(updates)} moved)")
            self.notifier.publish(QueueChange.reordered(event_id, kind, order))
        return result

    async def delete_request(
        self,
        event_id: str,
        request_id: str,
        *,
        kind: str | RequestKind | None = None,
        guest_id: str | None = None,
    ) -> None:
        """Remove a request entirely.

        With *guest_id* the call is a guest cancelling their own request and
        fails with NotRequestOwnerError for anyone else's.
        """
        async with self.locks.hold(event_id):
            current = await self.get_request(event_id, request_id, kind)
            if guest_id is not None and current.guest_id != guest_id:
                raise NotRequestOwnerError(request_id)

            strategy = strategy_for(current.kind)
            async with self.store.transaction():
                if not await self.store.delete(current.id):
                    raise NotFoundError(f"Request {request_id} not found", request_id=request_id)
                order: list[str] | None = None
                if current.active:
                    remaining = await self.store.list_active(event_id, current.kind)
                    renumbered = strategy.renumber(remaining)
                    await self.store.reassign(event_id, current.kind, strategy.field, renumbered)
                    order = [r.id for r in remaining]

            logger.info(
                f"Deleted {current.kind} request {current.id} in {event_id}"
                + (f" (by guest {guest_id})" if guest_id else "")
            )
            self.notifier.publish(QueueChange.deleted(current, order))

    # ------------------------------------------------------------------
    # Module configuration
    # ------------------------------------------------------------------

    async def get_config(self, event_id: str, kind: str | RequestKind) -> ModuleConfig:
        return await self.configs.get_or_create(event_id, parse_kind(kind))

    async def update_config(
        self,
        event_id: str,
        kind: str | RequestKind,
        *,
        enabled: bool | None = None,
        cooldown_seconds: int | None = None,
        max_per_guest: int | None = None,
    ) -> ModuleConfig:
        kind = parse_kind(kind)
        if enabled is None and cooldown_seconds is None and max_per_guest is None:
            raise QueueValidationError("Nothing to update")
        if enabled is not None and not isinstance(enabled, bool):
            raise QueueValidationError("enabled must be a boolean")
        if cooldown_seconds is not None:
            _check_int(cooldown_seconds, "cooldown_seconds", 0, MAX_COOLDOWN_SECONDS)
        if max_per_guest is not None:
            _check_int(max_per_guest, "max_per_guest", 0, MAX_PER_GUEST_LIMIT)

        async with self.locks.hold(event_id):
            config = await self.configs.update(
                event_id,
                kind,
                enabled=enabled,
                cooldown_seconds=cooldown_seconds,
                max_per_guest=max_per_guest,
            )
            logger.info(
                f"Updated {kind} config of {event_id}: enabled={config.enabled}, "
                f"cooldown={config.cooldown_seconds}s, max_per_guest={config.max_per_guest}"
            )
            self.notifier.publish(QueueChange.config_updated(config))
        return config

