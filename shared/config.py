"""
Shared configuration management for the M2M Trust Layer.
"""

from typing import Optional

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class BaseConfig(BaseSettings):
    """Base configuration class with common settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_prefix="TRUST_",
        case_sensitive=False,
        extra="allow",
    )

    # Environment
    env: str = Field(default="dev")
    log_level: str = Field(default="info")

    # Identity provider
    provider_type: str = Field(default="cognito")
    issuer: Optional[str] = Field(default=None)
    audience: Optional[str] = Field(default=None)
    jwks_uri: Optional[str] = Field(default=None)
    cognito_region: str = Field(default="us-east-1")
    cognito_user_pool_id: Optional[str] = Field(default=None)
    azure_tenant_id: Optional[str] = Field(default=None)

    # Key cache
    jwks_cache_ttl_seconds: float = Field(default=600.0)
    jwks_requests_per_minute: int = Field(default=10)
    jwks_rate_limit_wait_seconds: float = Field(default=5.0)
    jwks_fetch_timeout_seconds: float = Field(default=3.0)

    # Authorization decisions
    decision_timeout_seconds: float = Field(default=8.0)
    clock_leeway_seconds: int = Field(default=0)
    # "stage" wildcards all methods of the API stage, "method" keeps the exact ARN
    resource_scope: str = Field(default="stage")

    # Rotation
    rotation_days: int = Field(default=90)
    grace_period_days: int = Field(default=14)
    notification_webhook_url: Optional[str] = Field(default=None)

    @model_validator(mode="after")
    def _check_invariants(self) -> "BaseConfig":
        if self.grace_period_days >= self.rotation_days:
            raise ValueError("grace_period_days must be shorter than rotation_days")
        if self.resource_scope not in ("stage", "method"):
            raise ValueError("resource_scope must be 'stage' or 'method'")
        return self


class ServiceConfig(BaseConfig):
    """Service-specific configuration."""

    service_name: str
    port: int
    host: str = "0.0.0.0"

    def __init__(self, service_name: str, port: int, **kwargs):
        super().__init__(service_name=service_name, port=port, **kwargs)


def get_config(service_name: str, port: int, **overrides) -> ServiceConfig:
    """Get configuration for a specific service."""
    return ServiceConfig(service_name=service_name, port=port, **overrides)
