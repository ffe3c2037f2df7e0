from __future__ import annotations

from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Optional

import uvicorn
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .api.events import router as events_router
from .api.routes import router
from .config import Settings
from .container import build_services
from .services.orchestrator import ExtractionClient
from .utils.exceptions import (
    DocumentProcessingError,
    NotFoundError,
    QueueFullError,
    StoreError,
    ValidationError,
    WebhookPayloadError,
)
from .utils.logger import Log

ERROR_STATUS = {
    ValidationError: 400,
    WebhookPayloadError: 400,
    NotFoundError: 404,
    QueueFullError: 503,
    StoreError: 500,
}


def create_app(
    settings: Optional[Settings] = None,
    *,
    extraction_client: Optional[ExtractionClient] = None,
) -> FastAPI:
    settings = settings or Settings()
    Log.configure(settings.log_level)
    services = build_services(settings, extraction_client=extraction_client)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        services.start()
        Log.info(f"IDP tracker started in {services.mode} mode")
        try:
            yield
        finally:
            services.stop()

    app = FastAPI(title="IDP Document Tracker", lifespan=lifespan)
    app.state.services = services
    app.add_middleware(
        CORSMiddleware,
        allow_origins=[settings.frontend_url],
        allow_credentials=True,
        allow_methods=["GET", "POST", "DELETE"],
        allow_headers=["*"],
    )

    @app.exception_handler(DocumentProcessingError)
    async def processing_error_handler(request: Request, exc: DocumentProcessingError):
        status_code = next(
            (code for cls, code in ERROR_STATUS.items() if isinstance(exc, cls)), 500
        )
        if status_code >= 500:
            Log.error(f"{request.method} {request.url.path} failed: {exc}")
        return JSONResponse(status_code=status_code, content={"detail": str(exc)})

    # Global catch-all exception handler: detailed in dev, sanitized in prod
    @app.exception_handler(Exception)
    async def unhandled_exception_handler(request: Request, exc: Exception):
        Log.error(f"Unhandled error on {request.method} {request.url.path}: {exc!r}")
        if settings.is_production:
            return JSONResponse(
                status_code=500, content={"detail": "Internal server error"}
            )
        return JSONResponse(status_code=500, content={"detail": str(exc)})

    @app.get("/health")
    def health():
        db_status = "ok"
        try:
            services.repo.ping()
        except StoreError:
            db_status = "failed"

        queue = services.orchestrator.queue
        return {
            "status": "ok" if db_status == "ok" else "failed",
            "mode": services.mode,
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "dependencies": {"db": db_status},
            "queue": {"pending": queue.pending, "failedJobs": queue.failed_jobs},
        }

    app.include_router(router)
    app.include_router(events_router)
    return app


def run(settings: Optional[Settings] = None) -> None:
    """Serve the app with uvicorn on the configured host and port."""
    settings = settings or Settings()
    uvicorn.run(
        "idp_tracker.main:create_app", factory=True, host=settings.host, port=settings.port
    )


if __name__ == "__main__":
    run()
