from __future__ import annotations

import time
from typing import Optional, Protocol

from ..database import DocumentRepository
from ..models import DocumentRecord, ExtractionResult
from ..utils.exceptions import ExtractionTriggerError, QueueFullError, ValidationError
from ..utils.logger import Log
from .broadcaster import Broadcaster
from .image_service import ImageService
from .mock_simulator import MockSimulator
from .queue_service import InMemoryQueueService, Job


class ExtractionClient(Protocol):
    def submit(self, content: bytes, filename: str, content_type: str = ...) -> str: ...

    def request_extraction(self, external_doc_id: str) -> None: ...


class ProcessingOrchestrator:
    """Drives a document from submission to a terminal state.

    ``submit`` runs on the request path and only persists the record and
    queues a job. Everything that talks to the provider runs on the worker
    pool in ``process``. ``complete`` and ``fail`` are the single completion
    path shared by webhook reconciliation and the mock simulator.
    """

    def __init__(
        self,
        repo: DocumentRepository,
        client: ExtractionClient,
        broadcaster: Broadcaster,
        *,
        images: Optional[ImageService] = None,
        simulator: Optional[MockSimulator] = None,
        workers: int = 4,
        max_pending: int = 100,
    ) -> None:
        self.repo = repo
        self.client = client
        self.broadcaster = broadcaster
        self.images = images or ImageService()
        self.simulator = simulator
        self.queue = InMemoryQueueService(self.process, workers=workers, max_pending=max_pending)

    def start(self) -> None:
        self.queue.start()

    def stop(self) -> None:
        self.queue.stop()
        if self.simulator is not None:
            self.simulator.cancel_all()

    def submit(self, content: bytes, content_type: str = "image/jpeg") -> DocumentRecord:
        if not content:
            raise ValidationError("imageData is required")
        content, content_type = self.images.normalize(content, content_type)

        record = self.repo.create_document(content, content_type)
        Log.info(f"Created document {record.id}", doc_id=record.id)
        self.broadcaster.status_update(record.id, "uploading")

        filename = f"document_{int(time.time() * 1000)}.{self.images.extension_for(content_type)}"
        try:
            self.queue.enqueue(Job(record.id, content, filename, content_type))
        except QueueFullError as exc:
            self.fail(record.id, str(exc), from_statuses=("uploading",))
            raise
        return record

    def process(self, job: Job) -> None:
        doc_id = job.document_id
        try:
            external_id = self.client.submit(job.content, job.filename, job.content_type)
            moved = self.repo.mark_processing(doc_id, external_id)
        except Exception as exc:  # noqa: BLE001
            Log.error(f"Submission of {doc_id} failed: {exc}", doc_id=doc_id)
            self.fail(doc_id, str(exc) or exc.__class__.__name__, from_statuses=("uploading",))
            return

        if not moved:
            Log.warning(f"Document {doc_id} was removed during upload, abandoning", doc_id=doc_id)
            return

        Log.info(f"Document {doc_id} uploaded as {external_id}", doc_id=doc_id)
        self.broadcaster.status_update(doc_id, "processing")

        try:
            self.client.request_extraction(external_id)
        except ExtractionTriggerError as exc:
            # Stays processing; a late webhook can still complete it.
            Log.warning(f"Document {doc_id} uploaded but extraction trigger failed: {exc}")

        if self.simulator is not None:
            self.simulator.schedule(doc_id, self.complete)

    def complete(self, doc_id: str, result: ExtractionResult) -> bool:
        if not self.repo.mark_completed(doc_id, result):
            Log.warning(f"Ignoring completion for {doc_id}: not processing or removed")
            return False
        Log.info(f"Document {doc_id} completed as {result.document_type}", doc_id=doc_id)
        self.broadcaster.completed(doc_id, result)
        return True

    def fail(self, doc_id: str, message: str, from_statuses=("processing",)) -> bool:
        if not self.repo.mark_failed(doc_id, message, from_statuses):
            Log.warning(f"Ignoring failure for {doc_id}: already terminal or removed")
            return False
        Log.info(f"Document {doc_id} failed: {message}", doc_id=doc_id)
        self.broadcaster.failed(doc_id, message)
        return True
