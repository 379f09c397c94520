"""WebSocket change stream for guest displays and operator consoles."""

import asyncio
import json
import logging

from fastapi import APIRouter, HTTPException, Query, WebSocket, WebSocketDisconnect

from ...shared.models import RequestKind
from ...shared.notifier import ChangeNotifier, Subscription
from ..core.dependencies import get_notifier

logger = logging.getLogger(__name__)

router = APIRouter(tags=["realtime"])

# Private-use close code: subscriber fell behind and must re-fetch
LAGGED_CLOSE_CODE = 4008


async def _pump(websocket: WebSocket, subscription: Subscription) -> None:
    """Forward changes until the subscription ends."""
    async for change in subscription:
        await websocket.send_json(change.to_payload())
    if subscription.lagged:
        await websocket.send_json({"type": "lagged", "event_id": subscription.event_id})
        await websocket.close(code=LAGGED_CLOSE_CODE)


async def _receive(websocket: WebSocket) -> None:
    """Answer keep-alive pings; clients send nothing else."""
    while True:
        raw = await websocket.receive_text()
        try:
            data = json.loads(raw)
        except json.JSONDecodeError:
            data = {"type": raw.strip()}
        message_type = data.get("type") if isinstance(data, dict) else None
        if message_type == "ping":
            await websocket.send_json({"type": "pong"})
        else:
            logger.debug(f"Ignoring client message: {message_type}")


@router.websocket("/ws/events/{event_id}")
async def event_stream(
    websocket: WebSocket,
    event_id: str,
    kind: RequestKind | None = Query(None),
) -> None:
    """Stream every committed change of an event, in commit order.

    Sends a ``connected`` greeting carrying the sequence of the last change
    fanned out before the subscription started. Every change the socket
    then forwards is numbered above it.
    """
    try:
        notifier: ChangeNotifier = get_notifier()
    except HTTPException:
        await websocket.close(code=1013)
        return

    await websocket.accept()
    subscription = notifier.subscribe(event_id, [kind] if kind else None)
    sequence = notifier.delivered_sequence(event_id)
    logger.info(f"Subscriber connected to {event_id} (kind={kind or 'all'})")

    tasks: set[asyncio.Task] = set()
    try:
        await websocket.send_json(
            {
                "type": "connected",
                "event_id": event_id,
                "kind": kind.value if kind else None,
                "sequence": sequence,
            }
        )
        tasks = {
            asyncio.create_task(_pump(websocket, subscription)),
            asyncio.create_task(_receive(websocket)),
        }
        done, _ = await asyncio.wait(tasks, return_when=asyncio.FIRST_COMPLETED)
        for task in done:
            exc = task.exception()
            if exc is not None and not isinstance(exc, WebSocketDisconnect):
                logger.warning(f"WebSocket error on {event_id}: {type(exc).__name__}: {exc}")
    except WebSocketDisconnect:
        pass
    finally:
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        notifier.unsubscribe(subscription)
        logger.info(f"Subscriber disconnected from {event_id}")
