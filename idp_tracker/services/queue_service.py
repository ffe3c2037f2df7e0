from __future__ import annotations

import queue
import threading
from dataclasses import dataclass
from typing import Callable, List

from ..utils.exceptions import QueueFullError
from ..utils.logger import Log


@dataclass
class Job:
    document_id: str
    content: bytes
    filename: str
    content_type: str = "image/jpeg"


class InMemoryQueueService:
    """Bounded job queue drained by a fixed pool of worker threads.

    Jobs are not persisted. Each ``start`` gets its own stop event, so workers
    from an earlier run that are still finishing a job never steal work or
    shutdown signals from the next run.
    """

    def __init__(
        self,
        handler: Callable[[Job], None],
        *,
        workers: int = 4,
        max_pending: int = 100,
    ) -> None:
        self.handler = handler
        self.workers = workers
        self.queue: "queue.Queue[Job]" = queue.Queue(maxsize=max_pending)
        self._threads: List[threading.Thread] = []
        self._stop_event = threading.Event()
        self._stats_lock = threading.Lock()
        self.failed_jobs = 0

    def _worker(self, stop_event: threading.Event) -> None:
        while not stop_event.is_set():
            try:
                job = self.queue.get(timeout=0.5)
            except queue.Empty:
                continue
            try:
                self.handler(job)
            except Exception:  # noqa: BLE001
                with self._stats_lock:
                    self.failed_jobs += 1
                Log.exception(f"Background job for document {job.document_id} crashed")
            finally:
                self.queue.task_done()

    def enqueue(self, job: Job) -> None:
        try:
            self.queue.put_nowait(job)
        except queue.Full:
            raise QueueFullError("Processing queue is full, try again later")

    @property
    def pending(self) -> int:
        return self.queue.qsize()

    @property
    def running(self) -> bool:
        return any(t.is_alive() for t in self._threads)

    def start(self) -> None:
        if self._threads and not self._stop_event.is_set():
            return
        stop_event = self._stop_event = threading.Event()
        self._threads = [
            threading.Thread(
                target=self._worker, args=(stop_event,), name=f"doc-worker-{i}", daemon=True
            )
            for i in range(self.workers)
        ]
        for thread in self._threads:
            thread.start()
        Log.info(f"Started {self.workers} background worker(s)")

    def stop(self, timeout: float = 5.0) -> None:
        self._stop_event.set()
        for thread in self._threads:
            thread.join(timeout=timeout)
        self._threads = []
