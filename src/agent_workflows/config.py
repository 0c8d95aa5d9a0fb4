"""Configuration for the workflow client.

Configuration is loaded from:
- environment variables
- and a local `.env` file (if present)

The auth token is optional at load time. Validation and graph commands work
without it; opening a stream or calling the execution API fails fast when it
is missing.
"""

from __future__ import annotations

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class WorkflowSettings(BaseSettings):
    """Settings for the execution API client and stream consumer.

    Environment variables:
    - WORKFLOW_API_BASE_URL                 (optional)
    - WORKFLOW_AUTH_TOKEN                   (required for execution commands)
    - LOG_LEVEL                             (optional)
    - WORKFLOW_AUTO_RECONNECT               (optional)
    - WORKFLOW_RECONNECT_DELAY_SECONDS      (optional)
    - WORKFLOW_REQUEST_TIMEOUT_SECONDS      (optional)
    - WORKFLOW_STREAM_READ_TIMEOUT_SECONDS  (optional)

    Notes:
        Tests can override the env file via `WorkflowSettings(_env_file=path)`.
    """

    api_base_url: str = Field(
        default="http://localhost:8000",
        validation_alias="WORKFLOW_API_BASE_URL",
        description="Base URL of the execution API",
    )
    auth_token: str = Field(
        default="",
        validation_alias="WORKFLOW_AUTH_TOKEN",
        description="Bearer token for the execution API and event stream",
    )

    log_level: str = Field(
        default="INFO",
        validation_alias="LOG_LEVEL",
        description="Root logging level",
    )

    auto_reconnect: bool = Field(
        default=True,
        validation_alias="WORKFLOW_AUTO_RECONNECT",
        description="Schedule one reconnect when the event stream drops mid-execution",
    )
    reconnect_delay_seconds: float = Field(
        default=5.0,
        gt=0,
        validation_alias="WORKFLOW_RECONNECT_DELAY_SECONDS",
        description="Fixed delay before the reconnect attempt",
    )
    request_timeout_seconds: float = Field(
        default=30.0,
        gt=0,
        validation_alias="WORKFLOW_REQUEST_TIMEOUT_SECONDS",
        description="Timeout for execution API requests",
    )
    stream_read_timeout_seconds: float = Field(
        default=90.0,
        gt=0,
        validation_alias="WORKFLOW_STREAM_READ_TIMEOUT_SECONDS",
        description="Idle read timeout for the event stream",
    )

    model_config = SettingsConfigDict(
        env_prefix="",
        env_file=".env",
        extra="ignore",
    )

    @field_validator("api_base_url")
    @classmethod
    def _strip_trailing_slash(cls, value: str) -> str:
        return value.strip().rstrip("/")

    @property
    def has_auth_token(self) -> bool:
        return bool(self.auth_token.strip())
