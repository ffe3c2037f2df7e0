from fastapi import Request

from ..container import Services
from ..database import DocumentRepository
from ..services.orchestrator import ProcessingOrchestrator
from ..services.webhook_service import WebhookReconciler


def get_services(request: Request) -> Services:
    return request.app.state.services


def get_repo(request: Request) -> DocumentRepository:
    return get_services(request).repo


def get_orchestrator(request: Request) -> ProcessingOrchestrator:
    return get_services(request).orchestrator


def get_reconciler(request: Request) -> WebhookReconciler:
    return get_services(request).reconciler
