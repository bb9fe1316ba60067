"""
Application Configuration

Environment-driven settings for the webhook ingestion and outbound dispatch
pipeline. Values come from the process environment or a local .env file.
"""
from functools import lru_cache
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Central pipeline settings"""

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    # Application
    environment: str = Field(default="development")
    log_level: str = Field(default="INFO")
    use_json_logging: bool = Field(default=False)

    # Database / broker
    database_url: str = Field(default="postgresql://localhost:5432/socialhub")
    redis_url: str = Field(default="redis://localhost:6379/0")
    celery_broker_url: Optional[str] = Field(default=None)
    celery_result_backend: Optional[str] = Field(default=None)

    # Meta platform credentials (static fallbacks for system settings)
    meta_app_id: Optional[str] = Field(default=None)
    meta_app_secret: Optional[str] = Field(default=None)
    meta_verify_token: Optional[str] = Field(default=None)
    whatsapp_verify_token: Optional[str] = Field(default=None)

    # Outbound platform calls
    graph_api_base_url: str = Field(default="https://graph.facebook.com/v18.0")
    platform_http_timeout: float = Field(default=20.0, gt=0)
    http_user_agent: str = Field(default="SocialHub-Pipeline/1.0")

    # Token storage
    token_encryption_key: Optional[str] = Field(default=None)
    token_refresh_window_days: int = Field(default=5, ge=1)
    default_token_ttl_seconds: int = Field(default=5184000)

    # Media and retention
    media_base_url: str = Field(default="http://localhost:8000/storage/")
    webhook_retention_days: int = Field(default=30, ge=1)

    def get_celery_broker_url(self) -> str:
        return self.celery_broker_url or self.redis_url

    def get_celery_result_backend(self) -> str:
        return self.celery_result_backend or self.redis_url

    @property
    def is_production(self) -> bool:
        return self.environment.lower() == "production"


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance"""
    return Settings()
