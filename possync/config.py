"""
Configuration management using Pydantic settings.
Loads environment variables for Supabase, Square, Toast, credential encryption and sync workers.
"""
from typing import Literal

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application configuration loaded from environment variables."""

    # Application Configuration
    app_environment: str = "development"
    log_level: str = "INFO"
    app_base_url: str = "http://localhost:8000"

    # Supabase Configuration
    supabase_url: str = ""
    supabase_service_key: str = ""
    # PostgREST max-rows; reads larger than this are paged
    supabase_page_size: int = 1000

    # Persistence backends: "supabase" for deployments, "memory" for single-process runs
    storage_backend: Literal["supabase", "memory"] = "supabase"
    lock_backend: Literal["supabase", "memory"] = "supabase"

    # Fernet key (44 chars, urlsafe base64) used to encrypt POS credentials at rest
    credential_encryption_key: str = ""

    # Square Configuration
    square_application_id: str = ""
    square_application_secret: str = ""
    square_environment: str = "sandbox"  # sandbox | production
    square_api_version: str = "2024-12-18"
    square_oauth_redirect_uri: str = ""
    square_webhook_signature_key: str = ""
    square_webhook_notification_url: str = ""  # Fallback when request URL is unavailable

    # Toast Configuration
    toast_environment: str = "sandbox"  # sandbox | production
    toast_webhook_secret: str = ""
    toast_token_skew_seconds: int = 300

    # Token lifecycle
    token_refresh_threshold_days: int = 7
    oauth_state_max_age_seconds: int = 600

    # Worker Configuration
    catalog_sync_enabled: bool = True
    catalog_sync_interval_seconds: int = 900
    token_refresh_interval_hours: int = 24
    sync_lock_ttl_seconds: int = 900

    # HTTP / retry behaviour for provider APIs
    http_timeout_seconds: float = 30.0
    pagination_delay_seconds: float = 0.1
    max_retry_attempts: int = 3
    retry_backoff_multiplier: float = 2.0
    retry_initial_delay_seconds: float = 1.0

    class Config:
        env_prefix = "POSSYNC_"
        env_file = ".env"
        env_file_encoding = "utf-8"
        case_sensitive = False


# Global settings instance
settings = Settings()
