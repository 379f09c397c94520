"""Error taxonomy for queue operations.

Every error except ``StoreUnavailableError`` is an expected, recoverable
rejection and is surfaced to the caller verbatim.
"""

from __future__ import annotations

from typing import Any


class QueueError(Exception):
    """Base class for rejected queue operations."""

    code = "queue_error"
    status_code = 400

    def __init__(self, detail: str, **context: Any) -> None:
        super().__init__(detail)
        self.detail = detail
        self.context = context

    def to_dict(self) -> dict[str, Any]:
        return {"detail": self.detail, "code": self.code, **self.context}


class QueueValidationError(QueueError):
    """Malformed input, rejected before the store is touched."""

    code = "validation_error"
    status_code = 422


class ModuleDisabledError(QueueError):
    code = "module_disabled"
    status_code = 409

    def __init__(self, module: str) -> None:
        super().__init__(f"The {module} module is disabled for this event", module=module)


class CooldownActiveError(QueueError):
    code = "cooldown_active"
    status_code = 429

    def __init__(self, remaining_seconds: int) -> None:
        super().__init__(
            f"Wait {remaining_seconds}s before sending another request",
            remaining_seconds=remaining_seconds,
        )
        self.remaining_seconds = remaining_seconds


class GuestLimitReachedError(QueueError):
    code = "guest_limit_reached"
    status_code = 429

    def __init__(self, limit: int) -> None:
        super().__init__(f"Limit of {limit} active requests per guest reached", limit=limit)


class NotFoundError(QueueError):
    code = "not_found"
    status_code = 404


class NotRequestOwnerError(QueueError):
    code = "not_request_owner"
    status_code = 403

    def __init__(self, request_id: str) -> None:
        super().__init__("Request belongs to another guest", request_id=request_id)


class InvalidTransitionError(QueueError):
    code = "invalid_transition"
    status_code = 409

    def __init__(self, from_status: str, to_status: str) -> None:
        super().__init__(
            f"Cannot move a request from {from_status} to {to_status}",
            from_status=str(from_status),
            to_status=str(to_status),
        )


class InvalidReorderError(QueueError):
    """Reorder payload does not match the current active set.

    The caller must re-fetch the queue and retry.
    """

    code = "invalid_reorder"
    status_code = 409

    def __init__(self, reason: str, **context: Any) -> None:
        super().__init__(f"Invalid reorder: {reason}", reason=reason, **context)


class KindMismatchError(QueueError):
    code = "kind_mismatch"
    status_code = 400


class StoreUnavailableError(QueueError):
    """Storage I/O failure. Not retried by the engine."""

    code = "store_unavailable"
    status_code = 503

    def __init__(self, detail: str = "Request store unavailable") -> None:
        super().__init__(detail)


class TrackLookupUnavailableError(QueueError):
    """The track catalog could not be reached. The guest may retry or type the title."""

    code = "lookup_unavailable"
    status_code = 502

    def __init__(self, detail: str = "Track lookup is temporarily unavailable") -> None:
        super().__init__(detail)
