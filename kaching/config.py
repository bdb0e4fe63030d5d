"""
Configuration management.
Loaded from environment variables and an optional .env file.
"""

from typing import Optional, Set

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    # Server
    host: str = "0.0.0.0"
    port: int = 8080
    environment: str = "development"  # development | test | production
    app_url: str = "http://localhost:8080"  # used in emailed links

    # Security
    session_secret: str = "change-me-in-production-use-random-string"
    secure_cookies: bool = False
    token_encryption_key: Optional[str] = None  # defaults to session_secret
    trusted_proxies: str = ""  # comma-separated peers allowed to set X-Forwarded-For

    # Database
    database_path: str = "./data/kaching.db"

    # Shopee partner app
    shopee_partner_id: str = ""
    shopee_partner_key: str = ""
    shopee_api_base_url: str = "https://partner.shopeemobile.com"
    shopee_redirect_uri: str = "http://localhost:8080/api/shopee/callback"

    # Background processing
    webhook_max_retries: int = 5
    webhook_timestamp_tolerance: int = 300  # seconds
    integration_failure_threshold: int = 3
    token_refresh_margin: int = 3600  # seconds before expiry
    max_concurrent_jobs: int = 5

    # Logging
    log_level: str = "INFO"

    @property
    def trusted_proxy_hosts(self) -> Set[str]:
        return {host.strip() for host in self.trusted_proxies.split(",") if host.strip()}

    @property
    def shopee_configured(self) -> bool:
        return bool(self.shopee_partner_id and self.shopee_partner_key)


# Global settings instance
settings = Settings()
