"""Application configuration.

Every setting can be overridden with a ``BILLING_`` prefixed environment
variable, nested sections joined with ``_`` (e.g. ``BILLING_DATABASE_Engine``).
"""

from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from billing.configs.database import DatabaseConfig
from billing.configs.payment import PaymentConfig
from billing.configs.pricing import PricingConfig
from billing.configs.redis import RedisConfig


class AdminConfig(BaseModel):
    Secret: str = Field(default="", description="Shared secret expected in the X-Admin-Secret header")


class AuditConfig(BaseModel):
    Enabled: bool = Field(default=True, description="Publish audit events to the external sink")
    Channel: str = Field(default="billing:audit", description="Redis pub/sub channel for audit events")


class AppConfig(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="BILLING_",
        env_nested_delimiter="_",
        case_sensitive=False,
        extra="ignore",
        env_file=".env",
    )

    Host: str = Field(default="0.0.0.0", description="Bind host")
    Port: int = Field(default=48200, description="Bind port")
    Debug: bool = Field(default=False, description="Enable auto-reload and verbose logging")
    FrontendUrl: str = Field(default="http://localhost:5173", description="Default return URL after payment")

    Database: DatabaseConfig = Field(default_factory=DatabaseConfig)
    Redis: RedisConfig = Field(default_factory=RedisConfig)
    Payment: PaymentConfig = Field(default_factory=PaymentConfig)
    Pricing: PricingConfig = Field(default_factory=PricingConfig)
    Admin: AdminConfig = Field(default_factory=AdminConfig)
    Audit: AuditConfig = Field(default_factory=AuditConfig)


configs = AppConfig()

__all__ = ["configs", "AppConfig"]
