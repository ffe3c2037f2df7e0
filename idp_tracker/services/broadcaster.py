from __future__ import annotations

import asyncio
import itertools
import queue
import threading
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from ..models import ExtractionResult
from ..utils.logger import Log

STATUS_UPDATE = "status-update"
COMPLETED = "completed"
FAILED = "failed"


def _timestamp() -> str:
    return datetime.now(timezone.utc).isoformat()


class ObserverHandle:
    """One connected observer. Events queue up in publish order.

    Handles bound to an event loop buffer events in an ``asyncio.Queue`` fed
    through ``call_soon_threadsafe``, so waiting for the next event never
    occupies a worker thread.
    """

    _ids = itertools.count(1)

    def __init__(
        self, max_backlog: int, loop: Optional[asyncio.AbstractEventLoop] = None
    ) -> None:
        self.id = next(self._ids)
        self._loop = loop
        if loop is None:
            self._events: "queue.Queue[Dict[str, Any]]" = queue.Queue(maxsize=max_backlog)
        else:
            self._async_events: "asyncio.Queue[Dict[str, Any]]" = asyncio.Queue(
                maxsize=max_backlog
            )

    def deliver(self, event: Dict[str, Any]) -> bool:
        if self._loop is not None:
            try:
                self._loop.call_soon_threadsafe(self._put_async, event)
            except RuntimeError:
                # loop already closed
                return False
            return True
        try:
            self._events.put_nowait(event)
        except queue.Full:
            return False
        return True

    def _put_async(self, event: Dict[str, Any]) -> None:
        try:
            self._async_events.put_nowait(event)
        except asyncio.QueueFull:
            Log.warning(f"Observer {self.id} backlog full, dropping {event['event']} event")

    def get(self, timeout: Optional[float] = None) -> Optional[Dict[str, Any]]:
        try:
            return self._events.get(timeout=timeout)
        except queue.Empty:
            return None

    async def next_event(self) -> Dict[str, Any]:
        return await self._async_events.get()


class Broadcaster:
    """Fan-out of document events to whoever is connected right now.

    No backlog is kept for observers that subscribe later.
    """

    def __init__(self, max_backlog: int = 1000) -> None:
        self.max_backlog = max_backlog
        self._observers: Dict[int, ObserverHandle] = {}
        self._lock = threading.Lock()

    def subscribe(self, loop: Optional[asyncio.AbstractEventLoop] = None) -> ObserverHandle:
        handle = ObserverHandle(self.max_backlog, loop)
        with self._lock:
            self._observers[handle.id] = handle
        Log.info(f"Observer {handle.id} connected")
        return handle

    def unsubscribe(self, handle: ObserverHandle) -> None:
        with self._lock:
            removed = self._observers.pop(handle.id, None)
        if removed is not None:
            Log.info(f"Observer {handle.id} disconnected")

    @property
    def observer_count(self) -> int:
        with self._lock:
            return len(self._observers)

    def publish(self, event_type: str, payload: Dict[str, Any]) -> None:
        event = {"event": event_type, "data": payload}
        # the lock also keeps per-observer order equal to publish order
        with self._lock:
            observers: List[ObserverHandle] = list(self._observers.values())
            for handle in observers:
                if not handle.deliver(event):
                    Log.warning(
                        f"Observer {handle.id} backlog full or closed, dropping {event_type} event"
                    )
        Log.debug(f"Published {event_type} to {len(observers)} observer(s)")

    def status_update(self, doc_id: str, status: str) -> None:
        self.publish(STATUS_UPDATE, {"docId": doc_id, "status": status, "timestamp": _timestamp()})

    def completed(self, doc_id: str, result: ExtractionResult) -> None:
        self.publish(
            COMPLETED,
            {"docId": doc_id, "extractedData": result.to_json(), "timestamp": _timestamp()},
        )

    def failed(self, doc_id: str, error_message: str) -> None:
        self.publish(
            FAILED, {"docId": doc_id, "errorMessage": error_message, "timestamp": _timestamp()}
        )
