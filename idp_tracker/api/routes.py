from __future__ import annotations

import base64
from typing import Any, Dict, List

from fastapi import APIRouter, Depends, HTTPException, Request, Response
from starlette.concurrency import run_in_threadpool

from ..api.dependencies import get_orchestrator, get_reconciler, get_repo, get_services
from ..container import Services
from ..database import DocumentRepository
from ..models import UploadRequest, UploadResponse
from ..services.orchestrator import ProcessingOrchestrator
from ..services.webhook_service import WebhookReconciler, summarize
from ..utils.exceptions import WebhookPayloadError
from ..utils.logger import Log
from ..utils.validators import DEFAULT_CONTENT_TYPE, decode_image_data, validate_image_bytes

router = APIRouter()


async def _read_upload(request: Request, max_size: int):
    """Accepts multipart ``file`` or JSON ``{"imageData": ...}``."""
    if request.headers.get("content-type", "").startswith("multipart/form-data"):
        form = await request.form()
        upload = form.get("file")
        if upload is None or isinstance(upload, str):
            raise ValueError("imageData is required")
        content = validate_image_bytes(await upload.read(), max_size)
        return content, upload.content_type or DEFAULT_CONTENT_TYPE

    try:
        body = await request.json()
    except ValueError:
        raise ValueError("Request body must be JSON with imageData")
    payload = UploadRequest.model_validate(body if isinstance(body, dict) else {})
    return decode_image_data(payload.image_data or payload.image_base64, max_size)


@router.post("/documents/upload", status_code=201)
async def upload_document(
    request: Request,
    services: Services = Depends(get_services),
    orchestrator: ProcessingOrchestrator = Depends(get_orchestrator),
) -> Dict[str, Any]:
    try:
        content, content_type = await _read_upload(request, services.settings.max_upload_bytes)
    except ValueError as ve:
        raise HTTPException(status_code=400, detail=str(ve))

    record = await run_in_threadpool(orchestrator.submit, content, content_type)
    return UploadResponse(doc_id=record.id, status=record.status).to_json()


@router.get("/documents")
def list_documents(repo: DocumentRepository = Depends(get_repo)) -> List[Dict[str, Any]]:
    return [summary.to_json() for summary in repo.list_documents()]


@router.get("/documents/{document_id}")
def get_document(
    document_id: str, repo: DocumentRepository = Depends(get_repo)
) -> Dict[str, Any]:
    doc = repo.get_document(document_id)
    if not doc:
        raise HTTPException(status_code=404, detail="Document not found")
    body = doc.to_json()
    image = repo.get_image(document_id)
    if image is not None:
        data, content_type = image
        body["imageData"] = f"data:{content_type};base64,{base64.b64encode(data).decode('ascii')}"
    return body


@router.delete("/documents/{document_id}", status_code=204)
def delete_document(
    document_id: str, repo: DocumentRepository = Depends(get_repo)
) -> Response:
    doc = repo.get_document(document_id)
    if not doc:
        raise HTTPException(status_code=404, detail="Document not found")
    if not doc.is_terminal:
        # background work may still be running; its later updates become no-ops
        Log.warning(f"Deleting document {document_id} while {doc.status}")
    repo.delete_document(document_id)
    return Response(status_code=204)


@router.post("/webhook/extraction")
async def extraction_webhook(
    request: Request, reconciler: WebhookReconciler = Depends(get_reconciler)
) -> Dict[str, Any]:
    try:
        payload = await request.json()
    except ValueError:
        raise WebhookPayloadError("Webhook body must be JSON")
    Log.info(f"Received extraction callback: {summarize(payload)}")
    outcome = await run_in_threadpool(reconciler.handle, payload)
    Log.info(f"Extraction callback handled: {outcome}")
    return {"success": True}
