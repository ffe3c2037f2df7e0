from __future__ import annotations

from typing import Any, List, Literal

from pydantic import ValidationError as PydanticValidationError

from ..database import DocumentRepository
from ..models import (
    ExtractedField,
    ExtractedTable,
    ExtractionResult,
    ProviderDocument,
    ProviderTable,
)
from ..utils.exceptions import NotFoundError, WebhookPayloadError
from ..utils.logger import Log
from .orchestrator import ProcessingOrchestrator

SUCCESS_STATUSES = {"Extracted", "ReviewRequired"}

Outcome = Literal["completed", "failed", "duplicate"]


def _percent(fraction: Any) -> float:
    try:
        value = float(fraction or 0) * 100
    except (TypeError, ValueError):
        return 0.0
    return max(0.0, min(100.0, value))


def parse_tables(tables: List[ProviderTable]) -> List[ExtractedTable]:
    parsed = []
    for table in tables:
        rows = []
        for record in table.records or []:
            rows.append({cell.recordName: cell.value for cell in record.records or []})
        parsed.append(ExtractedTable(name=table.name, rows=rows))
    return parsed


def parse_document(document: ProviderDocument) -> ExtractionResult:
    fields = [
        ExtractedField(
            name=field.name,
            value=field.value if field.value is not None else "",
            confidence=_percent(field.extractionConfidence),
        )
        for field in document.fields or []
    ]
    return ExtractionResult(
        document_type=document.className or "Unknown",
        overall_confidence=_percent(document.classificationConfidence),
        fields=fields,
        tables=parse_tables(document.tables or []),
    )


class WebhookReconciler:
    """Applies provider extraction callbacks to document records.

    Callbacks for records that are already terminal are accepted and
    ignored, so redelivered webhooks never mutate state twice.
    """

    def __init__(self, repo: DocumentRepository, orchestrator: ProcessingOrchestrator) -> None:
        self.repo = repo
        self.orchestrator = orchestrator

    def handle(self, payload: Any) -> Outcome:
        if not isinstance(payload, dict):
            raise WebhookPayloadError("Invalid webhook payload")
        documents = payload.get("documents")
        if not isinstance(documents, list) or not documents:
            raise WebhookPayloadError("Invalid webhook payload")

        references = payload.get("contentFileReferences")
        reference = references[0] if isinstance(references, list) and references else None
        external_id = reference.get("sys_id") if isinstance(reference, dict) else None
        if not external_id:
            raise WebhookPayloadError("Missing document ID")

        record = self.repo.get_by_external_id(str(external_id))
        if record is None:
            raise NotFoundError("Document not found")

        if record.is_terminal:
            Log.info(f"Duplicate callback for {record.id} ({record.status}), ignoring")
            return "duplicate"

        status = payload.get("extractionStatus")
        if status in SUCCESS_STATUSES:
            try:
                document = ProviderDocument.model_validate(documents[0])
            except PydanticValidationError as exc:
                raise WebhookPayloadError(f"Malformed extraction document: {exc}") from exc
            result = parse_document(document)
            done = self.orchestrator.complete(record.id, result)
            return "completed" if done else "duplicate"

        done = self.orchestrator.fail(record.id, f"Extraction status: {status}")
        return "failed" if done else "duplicate"


def summarize(payload: Any) -> str:
    """Short description of a callback for logs."""
    if not isinstance(payload, dict):
        return f"non-object payload ({type(payload).__name__})"
    refs = payload.get("contentFileReferences") or []
    first = refs[0] if isinstance(refs, list) and refs else None
    sys_id = first.get("sys_id") if isinstance(first, dict) else None
    return f"status={payload.get('extractionStatus')} sys_id={sys_id}"
