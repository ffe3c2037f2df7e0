from __future__ import annotations

import asyncio
import contextlib
from datetime import datetime, timezone

from fastapi import APIRouter, WebSocket, WebSocketDisconnect, status

from ..services.broadcaster import Broadcaster, ObserverHandle

router = APIRouter()


async def _forward(websocket: WebSocket, handle: ObserverHandle) -> None:
    while True:
        event = await handle.next_event()
        await websocket.send_json(event)


@router.websocket("/events")
async def document_events(websocket: WebSocket) -> None:
    services = websocket.app.state.services
    origin = websocket.headers.get("origin")
    if origin and origin.rstrip("/") != services.settings.frontend_url.rstrip("/"):
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return

    await websocket.accept()
    broadcaster: Broadcaster = services.broadcaster
    handle = broadcaster.subscribe(asyncio.get_running_loop())
    await websocket.send_json(
        {
            "event": "connected",
            "data": {
                "message": "Connected to IDP backend",
                "timestamp": datetime.now(timezone.utc).isoformat(),
            },
        }
    )
    forward = asyncio.create_task(_forward(websocket, handle))
    try:
        while True:
            # clients only listen; wait for them to go away
            message = await websocket.receive()
            if message["type"] == "websocket.disconnect":
                break
    finally:
        broadcaster.unsubscribe(handle)
        forward.cancel()
        with contextlib.suppress(asyncio.CancelledError, WebSocketDisconnect, RuntimeError):
            await forward
