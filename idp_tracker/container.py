from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

import httpx

from .config import Settings
from .database import DocumentRepository
from .services.broadcaster import Broadcaster
from .services.credential_cache import CredentialCache, ProviderAuthenticator
from .services.extraction_client import MockExtractionClient, ProviderExtractionClient
from .services.image_service import ImageService
from .services.mock_simulator import MockSimulator
from .services.orchestrator import ExtractionClient, ProcessingOrchestrator
from .services.webhook_service import WebhookReconciler
from .utils.logger import Log


@dataclass
class Services:
    """Everything a request handler may need, built once per application."""

    settings: Settings
    repo: DocumentRepository
    broadcaster: Broadcaster
    orchestrator: ProcessingOrchestrator
    reconciler: WebhookReconciler
    http: Optional[httpx.Client] = None

    @property
    def mode(self) -> str:
        return "mock" if self.settings.mock_mode else "production"

    def start(self) -> None:
        self.orchestrator.start()

    def stop(self) -> None:
        self.orchestrator.stop()
        if self.http is not None:
            self.http.close()


def build_extraction_client(settings: Settings, http: httpx.Client) -> ProviderExtractionClient:
    authenticator = ProviderAuthenticator(
        http,
        auth_url=settings.provider_auth_url or "",
        client_id=settings.provider_client_id or "",
        client_secret=settings.provider_client_secret or "",
    )
    credentials = CredentialCache(
        authenticator.fetch_credential,
        safety_margin_seconds=settings.token_safety_margin_seconds,
    )
    return ProviderExtractionClient(
        http,
        credentials,
        content_api_url=settings.provider_content_api_url or "",
        folder_id=settings.provider_folder_id,
        webhook_url=settings.webhook_url,
    )


def build_services(
    settings: Settings, *, extraction_client: Optional[ExtractionClient] = None
) -> Services:
    """Wire the component graph.

    ``extraction_client`` overrides the provider client; the simulator is
    only attached in mock mode.
    """
    repo = DocumentRepository(settings.database_path)
    broadcaster = Broadcaster()

    http: Optional[httpx.Client] = None
    simulator: Optional[MockSimulator] = None
    client: ExtractionClient
    if extraction_client is not None:
        client = extraction_client
    elif settings.mock_mode:
        if not settings.use_mock_provider:
            Log.warning("Provider is not configured, falling back to mock mode")
        client = MockExtractionClient()
    else:
        http = httpx.Client(timeout=settings.provider_timeout_seconds)
        client = build_extraction_client(settings, http)

    if settings.mock_mode:
        simulator = MockSimulator(settings.mock_processing_time_ms / 1000)

    orchestrator = ProcessingOrchestrator(
        repo,
        client,
        broadcaster,
        images=ImageService(),
        simulator=simulator,
        workers=settings.worker_count,
        max_pending=settings.max_pending_jobs,
    )
    return Services(
        settings=settings,
        repo=repo,
        broadcaster=broadcaster,
        orchestrator=orchestrator,
        reconciler=WebhookReconciler(repo, orchestrator),
        http=http,
    )
