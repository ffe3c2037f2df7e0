from __future__ import annotations

import json
import time
import uuid

import httpx

from ..utils.exceptions import AuthenticationError, ExtractionTriggerError, UploadError
from ..utils.logger import Log
from .credential_cache import CredentialCache


class ProviderExtractionClient:
    """Uploads documents to the provider content API and requests extraction."""

    def __init__(
        self,
        http: httpx.Client,
        credentials: CredentialCache,
        *,
        content_api_url: str,
        folder_id: str,
        webhook_url: str,
    ) -> None:
        self.http = http
        self.credentials = credentials
        self.content_api_url = content_api_url.rstrip("/")
        self.folder_id = folder_id
        self.webhook_url = webhook_url

    def _auth_headers(self) -> dict:
        return {"Authorization": f"Bearer {self.credentials.get_credential().token}"}

    def submit(self, content: bytes, filename: str, content_type: str = "image/jpeg") -> str:
        headers = self._auth_headers()
        upload_id = str(int(time.time() * 1000))
        metadata = {
            "sys_primaryType": "SysFile",
            "sys_title": filename,
            "sysfile_blob": {"uploadId": upload_id},
        }
        files = {
            "main": (None, json.dumps(metadata), "application/json"),
            upload_id: (filename, content, content_type),
        }
        try:
            response = self.http.post(
                f"{self.content_api_url}/documents/{self.folder_id}",
                files=files,
                headers=headers,
            )
            response.raise_for_status()
            body = response.json()
        except (httpx.HTTPError, ValueError) as exc:
            raise UploadError(f"Failed to upload document to provider: {exc}") from exc

        external_id = (body.get("id") or body.get("sys_id")) if isinstance(body, dict) else None
        if not external_id:
            raise UploadError("Provider accepted the upload but returned no document id")
        Log.info(f"Document uploaded to provider as {external_id}")
        return str(external_id)

    def request_extraction(self, external_doc_id: str) -> None:
        try:
            headers = self._auth_headers()
            response = self.http.post(
                f"{self.content_api_url}/documents/{external_doc_id}/extract",
                json={"webhookUrl": self.webhook_url},
                headers=headers,
            )
            response.raise_for_status()
        except (AuthenticationError, httpx.HTTPError) as exc:
            raise ExtractionTriggerError(
                f"Extraction trigger failed for {external_doc_id}: {exc}"
            ) from exc
        Log.info(f"Extraction requested for {external_doc_id}")


class MockExtractionClient:
    """Stands in for the provider in mock mode; performs no network calls."""

    def submit(self, content: bytes, filename: str, content_type: str = "image/jpeg") -> str:
        external_id = f"MOCK-{uuid.uuid4().hex[:12]}"
        Log.info(f"Mock upload of {filename} ({len(content)} bytes) as {external_id}")
        return external_id

    def request_extraction(self, external_doc_id: str) -> None:
        Log.info(f"Mock extraction requested for {external_doc_id}")
