"""Configuration utilities for the customer portal."""

from functools import lru_cache

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Runtime configuration loaded from the environment."""

    model_config = SettingsConfigDict(env_prefix="CUSTOMER_PORTAL_", case_sensitive=False)

    api_base_url: str = Field(
        "http://localhost:8080", description="Base URL of the platform HTTP API"
    )
    api_timeout: float | None = Field(
        default=None,
        description="Optional request timeout in seconds; httpx defaults apply when unset",
    )
    stripe_secret_key: str = Field(
        "", description="Secret key used to confirm setup intents", repr=False
    )
    stripe_publishable_key: str = Field(
        "", description="Publishable key handed to the card entry widget"
    )
    session_secret: str = Field(
        "customer-portal-session-secret",
        description="Secret used to sign the session cookie",
        repr=False,
    )
    demo_fallback: bool = Field(
        False,
        description="Substitute canned demo data when a billing fetch fails",
    )
    demo_email: str = Field("demo@felora.io", description="Login accepted in demo mode")
    demo_password: str = Field("demo", description="Password accepted in demo mode", repr=False)
    demo_org_id: str = Field("demo-org", description="Organisation bound to the demo login")
    demo_access_token: str = Field(
        "demo-jwt-token", description="Bearer token forwarded for the demo login", repr=False
    )
    notification_ttl_seconds: float = Field(
        3.0, gt=0, description="Lifetime of toast notifications"
    )
    log_level: str = Field("INFO", description="Root log level")

    @field_validator("api_base_url")
    @classmethod
    def _strip_trailing_slash(cls, value: str) -> str:
        return value.rstrip("/") or value


@lru_cache()
def get_settings() -> Settings:
    """Return cached settings to avoid re-parsing environment variables."""

    return Settings()


__all__ = ["Settings", "get_settings"]
