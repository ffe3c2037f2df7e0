import base64
import threading
import time
from contextlib import contextmanager
from typing import List, Optional

import pytest
from fastapi.testclient import TestClient

from idp_tracker.config import Settings
from idp_tracker.database import DocumentRepository
from idp_tracker.main import create_app
from idp_tracker.services.broadcaster import Broadcaster
from idp_tracker.utils.exceptions import ExtractionTriggerError, UploadError

JPEG_BYTES = b"\xff\xd8\xff\xe0fake-jpeg-body\xff\xd9"


class FakeExtractionClient:
    """Records calls; failures are switched on per test."""

    def __init__(self) -> None:
        self.upload_error: Optional[Exception] = None
        self.trigger_error: Optional[Exception] = None
        self.submitted: List[str] = []
        self.triggered: List[str] = []
        self._lock = threading.Lock()

    def submit(self, content: bytes, filename: str, content_type: str = "image/jpeg") -> str:
        if self.upload_error is not None:
            raise self.upload_error
        with self._lock:
            self.submitted.append(filename)
            return f"EXT-{len(self.submitted)}"

    def request_extraction(self, external_doc_id: str) -> None:
        with self._lock:
            self.triggered.append(external_doc_id)
        if self.trigger_error is not None:
            raise self.trigger_error


@pytest.fixture()
def image_payload() -> dict:
    encoded = base64.b64encode(JPEG_BYTES).decode("ascii")
    return {"imageData": f"data:image/jpeg;base64,{encoded}"}


@pytest.fixture()
def mock_settings(tmp_path) -> Settings:
    return Settings(
        _env_file=None,
        database_path=str(tmp_path / "mock.db"),
        use_mock_provider=True,
        mock_processing_time_ms=50,
        worker_count=2,
    )


@pytest.fixture()
def production_settings(tmp_path) -> Settings:
    return Settings(
        _env_file=None,
        database_path=str(tmp_path / "prod.db"),
        use_mock_provider=False,
        provider_auth_url="https://auth.idp.test/token",
        provider_content_api_url="https://content.idp.test/api",
        provider_client_id="client",
        provider_client_secret="secret",
        provider_folder_id="folder-1",
        worker_count=2,
    )


@pytest.fixture()
def fake_client() -> FakeExtractionClient:
    return FakeExtractionClient()


@pytest.fixture()
def upload_failure() -> Exception:
    return UploadError("Failed to upload document to provider: 500")


@pytest.fixture()
def trigger_failure() -> Exception:
    return ExtractionTriggerError("Extraction trigger failed for EXT-1: 503")


@contextmanager
def running_app(settings: Settings, extraction_client=None):
    app = create_app(settings, extraction_client=extraction_client)
    with TestClient(app) as client:
        yield client


@pytest.fixture()
def mock_client(mock_settings):
    with running_app(mock_settings) as client:
        yield client


@pytest.fixture()
def prod_client(production_settings, fake_client):
    with running_app(production_settings, fake_client) as client:
        yield client


@pytest.fixture()
def repo(tmp_path) -> DocumentRepository:
    return DocumentRepository(str(tmp_path / "unit.db"))


@pytest.fixture()
def broadcaster() -> Broadcaster:
    return Broadcaster()


def poll_until_status(client: TestClient, doc_id: str, statuses, timeout_s: float = 5.0) -> dict:
    deadline = time.time() + timeout_s
    last = None
    while time.time() < deadline:
        r = client.get(f"/documents/{doc_id}")
        if r.status_code == 200:
            last = r.json()
            if last.get("status") in statuses:
                return last
        time.sleep(0.02)
    assert last is not None, "No document status available"
    return last
