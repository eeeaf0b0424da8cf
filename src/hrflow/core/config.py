"""Application configuration management using pydantic-settings."""

from functools import lru_cache
from typing import Literal

from pydantic import Field, computed_field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings with environment variable support."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Application
    app_name: str = Field(default="hrflow-backend", description="Application name")
    environment: Literal["development", "testing", "staging", "production"] = Field(
        default="development", description="Runtime environment"
    )
    debug: bool = Field(default=False, description="Debug mode flag")
    instance_id: str = Field(
        default="hrflow-api",
        description="Origin identifier stamped on replication events",
    )

    # API
    api_v1_prefix: str = Field(default="/api/v1", description="API v1 prefix")
    allowed_origins: list[str] = Field(
        default=["http://localhost:3000", "http://localhost:8080"],
        description="CORS allowed origins",
    )

    # Database
    db_host: str = Field(default="localhost", description="PostgreSQL host")
    db_port: int = Field(default=5432, description="PostgreSQL port")
    db_user: str = Field(default="postgres", description="PostgreSQL user")
    db_password: str = Field(default="postgres", description="PostgreSQL password")
    db_name: str = Field(default="hrflow", description="PostgreSQL database name")

    # Redis
    redis_host: str = Field(default="localhost", description="Redis host")
    redis_port: int = Field(default=6379, description="Redis port")
    redis_db: int = Field(default=0, description="Redis database number")
    redis_password: str | None = Field(default=None, description="Redis password")

    # Logging
    log_level: str = Field(default="INFO", description="Logging level")
    log_format: Literal["json", "console"] = Field(
        default="json", description="Log output format"
    )

    # Notifications
    notification_webhook_url: str | None = Field(
        default=None, description="Webhook receiving workflow notifications"
    )
    notification_webhook_token: str | None = Field(
        default=None, description="Bearer token for the notification webhook"
    )

    # Workflow engine
    workflow_store_backend: Literal["memory", "database"] = Field(
        default="memory", description="System of record for workflow requests"
    )
    workflow_escalation_enabled: bool = Field(
        default=True, description="Enable deadline escalation on new requests"
    )
    workflow_escalation_days: int = Field(
        default=3, ge=1, description="Days before an idle step escalates"
    )
    workflow_escalation_path: list[str] = Field(
        default=["direct_manager", "department_head", "general_manager"],
        description="Default escalation path (approver roles, lowest first)",
    )
    workflow_step_timeout_hours: int = Field(
        default=48, ge=1, description="Baseline step timeout for resolved routes"
    )
    escalation_check_interval_seconds: float = Field(
        default=300.0, gt=0, description="Escalation sweep period for Celery beat"
    )
    organization_members_file: str | None = Field(
        default=None, description="JSON file seeding the organization directory"
    )
    approval_flows_file: str | None = Field(
        default=None, description="JSON file seeding the approval flow catalog"
    )

    @computed_field
    @property
    def database_url(self) -> str:
        """Construct database URL from components."""
        return (
            f"postgresql+asyncpg://{self.db_user}:{self.db_password}"
            f"@{self.db_host}:{self.db_port}/{self.db_name}"
        )

    @computed_field
    @property
    def redis_url(self) -> str:
        """Construct Redis URL from components."""
        auth = f":{self.redis_password}@" if self.redis_password else ""
        return f"redis://{auth}{self.redis_host}:{self.redis_port}/{self.redis_db}"


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
