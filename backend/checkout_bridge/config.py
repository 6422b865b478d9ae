"""
Checkout Bridge Configuration Module

Loads environment variables for the checkout backend: storefront origin,
Webpay Plus credentials, Resend email delivery and session lifetime.
"""
from functools import lru_cache
from typing import List, Literal

from pydantic_settings import BaseSettings, SettingsConfigDict


# Webpay Plus integration credentials published by Transbank for testing
WEBPAY_INTEGRATION_COMMERCE_CODE = "597055555532"
WEBPAY_INTEGRATION_API_KEY = "579B532A7440BB0C9079DED94D31EA1615BACEB56610332264630D42D0A36B1C"


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    Notes:
    - Webpay defaults point at the Transbank integration environment
    - demo_mode swaps the real gateway for the in-process mock
    - Receipts are skipped when no Resend API key is configured
    """

    model_config = SettingsConfigDict(env_file=".env", case_sensitive=False, extra="ignore")

    # Runtime
    environment: Literal["development", "staging", "production"] = "development"
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"
    app_version: str = "1.1.0"
    demo_mode: bool = False

    # Storefront
    frontend_url: str = "http://localhost:5173"

    # Webpay Plus
    webpay_environment: Literal["integration", "production"] = "integration"
    webpay_commerce_code: str = WEBPAY_INTEGRATION_COMMERCE_CODE
    webpay_api_key: str = WEBPAY_INTEGRATION_API_KEY
    gateway_timeout_seconds: float = 30.0

    # Resend
    resend_api_key: str = ""
    email_from: str = "Luxury Cars <onboarding@resend.dev>"
    max_email_template_chars: int = 500_000

    # Pending purchase lifetime
    session_ttl_minutes: float = 30
    sweep_interval_minutes: float = 30

    # Rate limiting (fixed window per client IP)
    rate_limit_window_minutes: int = 15
    rate_limit_max_requests: int = 100
    transaction_rate_limit_max_requests: int = 10
    # Proxies allowed to set X-Forwarded-For (JSON list in the environment)
    trusted_proxies: List[str] = []

    # Server
    host: str = "0.0.0.0"
    port: int = 3000

    @property
    def return_url(self) -> str:
        """Storefront page Webpay redirects the customer back to."""
        return f"{self.frontend_url.rstrip('/')}/checkout/confirm"

    @property
    def is_development(self) -> bool:
        return self.environment == "development"


@lru_cache
def get_settings() -> Settings:
    return Settings()


# Global settings instance
settings = get_settings()
