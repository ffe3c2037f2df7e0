from __future__ import annotations

from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application configuration loaded from environment variables."""

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    app_env: str = "dev"
    log_level: str = "INFO"
    database_path: str = "idp_tracker.db"

    use_mock_provider: bool = False
    mock_processing_time_ms: int = 120_000

    provider_auth_url: Optional[str] = None
    provider_content_api_url: Optional[str] = None
    provider_client_id: Optional[str] = None
    provider_client_secret: Optional[str] = None
    provider_folder_id: str = ""
    provider_timeout_seconds: float = 30.0
    token_safety_margin_seconds: float = 30.0

    host: str = "0.0.0.0"
    port: int = 8000
    backend_url: str = "http://localhost:8000"
    frontend_url: str = "http://localhost:5173"

    worker_count: int = 4
    max_pending_jobs: int = 100
    max_upload_bytes: int = 20 * 1024 * 1024

    @property
    def provider_configured(self) -> bool:
        return bool(
            self.provider_auth_url
            and self.provider_content_api_url
            and self.provider_client_id
        )

    @property
    def mock_mode(self) -> bool:
        return self.use_mock_provider or not self.provider_configured

    @property
    def webhook_url(self) -> str:
        return f"{self.backend_url.rstrip('/')}/webhook/extraction"

    @property
    def is_production(self) -> bool:
        return self.app_env.lower().startswith("prod")
