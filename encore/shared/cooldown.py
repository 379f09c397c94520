"""Per-guest submission cooldown.

One entry per (event_id, guest_id) holding the time of the guest's last
accepted submission. Whether the guest may submit again is decided with the
module's *current* ``cooldown_seconds`` at check time. Entries are dropped
lazily once even the longest allowed cooldown has passed, no sweeper runs.
"""

from __future__ import annotations

import logging
import math
import time
from collections.abc import Callable
from dataclasses import dataclass

from cachetools import TLRUCache  # type: ignore[import-untyped]

logger = logging.getLogger(__name__)

MAX_COOLDOWN_SECONDS = 3600


@dataclass(frozen=True)
class CooldownEntry:
    last_request_at: float


@dataclass(frozen=True)
class Reservation:
    """Outcome of ``check_and_reserve``.

    An allowed reservation must be released if the submission it guards
    is not committed.
    """

    event_id: str
    guest_id: str
    allowed: bool
    remaining_seconds: int = 0
    previous: CooldownEntry | None = None


class CooldownTracker:
    """Rate limiter for one request module.

    Callers serialise ``check_and_reserve``/``release`` per event (the
    queue service holds the event lock around both).
    """

    def __init__(
        self,
        name: str,
        *,
        maxsize: int = 100_000,
        max_cooldown_seconds: int = MAX_COOLDOWN_SECONDS,
        timer: Callable[[], float] = time.monotonic,
    ) -> None:
        self.name = name
        self.max_cooldown_seconds = max_cooldown_seconds
        self._timer = timer
        # Entries outlive any settable cooldown; the current setting decides at check time
        self._entries: TLRUCache = TLRUCache(
            maxsize=maxsize,
            ttu=lambda _key, entry, _now: entry.last_request_at + self.max_cooldown_seconds,
            timer=timer,
        )

    def check_and_reserve(
        self, event_id: str, guest_id: str, cooldown_seconds: int
    ) -> Reservation:
        """Allow the submission and start a new cooldown, or deny it.

        The remaining time is computed with the *current* ``cooldown_seconds``
        so raising or lowering the setting takes effect for guests already
        waiting.
        """
        key = (event_id, guest_id)
        now = self._timer()
        current: CooldownEntry | None = self._entries.get(key)
        if current is not None and cooldown_seconds > 0:
            remaining = current.last_request_at + cooldown_seconds - now
            if remaining > 0:
                seconds = math.ceil(remaining)
                logger.debug(
                    f"[{self.name}] Cooldown active for guest {guest_id} "
                    f"in event {event_id} ({seconds}s left)"
                )
                return Reservation(event_id, guest_id, allowed=False, remaining_seconds=seconds)

        if cooldown_seconds > 0:
            self._entries[key] = CooldownEntry(now)
        return Reservation(event_id, guest_id, allowed=True, previous=current)

    def release(self, reservation: Reservation) -> None:
        """Undo an allowed reservation whose submission failed."""
        if not reservation.allowed:
            return
        key = (reservation.event_id, reservation.guest_id)
        self._entries.pop(key, None)
        if reservation.previous is not None:
            # Restored entries past their expiry are dropped by the cache
            self._entries[key] = reservation.previous
        logger.debug(
            f"[{self.name}] Released cooldown for guest {reservation.guest_id} "
            f"in event {reservation.event_id}"
        )

    def remaining(self, event_id: str, guest_id: str, cooldown_seconds: int) -> int:
        """Seconds the guest still has to wait (0 when free to submit)."""
        entry: CooldownEntry | None = self._entries.get((event_id, guest_id))
        if entry is None or cooldown_seconds <= 0:
            return 0
        return max(0, math.ceil(entry.last_request_at + cooldown_seconds - self._timer()))
