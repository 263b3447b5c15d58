"""
Centralized Settings

Environment-driven configuration for the inbox API, Celery workers and the
ingestion/enrichment pipeline. Values are read from the process environment
and an optional .env file.
"""
from functools import lru_cache
from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings."""

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    environment: str = "development"
    service_name: str = "social-inbox"
    log_level: str = "INFO"

    # Storage
    database_url: str = "sqlite:///./social_inbox.db"
    database_echo: bool = False

    # Queues
    redis_url: str = "redis://localhost:6379/0"
    celery_broker_url: Optional[str] = None
    celery_result_backend: Optional[str] = None
    celery_worker_concurrency: int = 4

    # Task retry policy: total executions and exponential backoff base (seconds)
    task_max_attempts: int = 3
    task_retry_backoff_seconds: int = 2

    # AI provider
    openai_api_key: Optional[str] = None
    openai_model: str = "gpt-4"
    ai_request_timeout: float = 30.0
    ai_classification_temperature: float = 0.3
    ai_response_temperature: float = 0.7
    ai_response_max_tokens: int = 200

    # Pipeline policy
    auto_reply_min_confidence: float = 0.7
    negative_spike_threshold: int = 3
    negative_spike_window_hours: int = 24
    knowledge_base_context_limit: int = 10
    sync_interval_minutes: int = 5
    youtube_sync_max_videos: int = 50

    # Platform credentials
    meta_app_secret: Optional[str] = None
    meta_verify_token: Optional[str] = None
    google_client_id: Optional[str] = None
    google_client_secret: Optional[str] = None
    google_webhook_verify_token: Optional[str] = None
    youtube_webhook_verify_token: Optional[str] = None

    # Outbound HTTP
    http_timeout: float = 30.0
    http_max_retries: int = 3

    # Email relay for notifications
    smtp_host: Optional[str] = None
    smtp_port: int = 587
    smtp_user: Optional[str] = None
    smtp_password: Optional[str] = None
    smtp_use_tls: bool = True
    notification_from_email: str = "inbox@example.com"
    frontend_url: str = "http://localhost:4200"

    def get_celery_broker_url(self) -> str:
        return self.celery_broker_url or self.redis_url

    def get_celery_result_backend(self) -> str:
        return self.celery_result_backend or self.redis_url

    @property
    def is_production(self) -> bool:
        return self.environment.lower() == "production"


@lru_cache()
def get_settings() -> Settings:
    """Return the cached settings instance."""
    return Settings()
