"""
Application configuration using Pydantic Settings.
"""
from functools import lru_cache
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    # Application
    app_name: str = "ZapSocial"
    debug: bool = False
    log_level: str = "INFO"
    secret_key: str = "change-this-in-production"
    app_url: str = "http://localhost:3000"

    # Database
    database_url: str = "sqlite+aiosqlite:///./zapsocial.db"

    # JWT
    jwt_secret_key: str = "change-this-jwt-secret"
    jwt_algorithm: str = "HS256"
    access_token_expire_minutes: int = 30
    refresh_token_expire_days: int = 7
    oauth_state_expire_minutes: int = 10

    # Facebook / Instagram (Graph API)
    facebook_app_id: str = ""
    facebook_app_secret: str = ""
    facebook_graph_version: str = "v21.0"

    # LinkedIn OAuth
    linkedin_client_id: str = ""
    linkedin_client_secret: str = ""

    # Outbound HTTP
    http_timeout_seconds: float = 30.0

    # Token refresh
    cron_secret: str = ""
    token_refresh_window_days: int = 7
    retry_max_retries: int = 3
    retry_delay_ms: int = 300
    retry_backoff_multiplier: float = 2

    @property
    def facebook_redirect_uri(self) -> str:
        return f"{self.app_url}/api/v1/integrations/facebook/callback"

    @property
    def linkedin_redirect_uri(self) -> str:
        return f"{self.app_url}/api/v1/integrations/linkedin/callback"


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
