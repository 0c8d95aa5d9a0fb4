"""Configuration for the REST server.

The validation endpoints are pure and need no credentials, so the server starts
with nothing configured.
"""

from __future__ import annotations

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class ServerSettings(BaseSettings):
    """Settings for the REST API."""

    # Dev-friendly CORS for a local editor UI. Override via WORKFLOW_CORS_ORIGINS=...
    cors_origins: str = Field(
        default="http://localhost:5173,http://127.0.0.1:5173",
        validation_alias="WORKFLOW_CORS_ORIGINS",
        description="Comma-separated list of allowed CORS origins.",
    )

    host: str = Field(default="127.0.0.1", validation_alias="WORKFLOW_SERVER_HOST")
    port: int = Field(default=8000, validation_alias="WORKFLOW_SERVER_PORT")

    model_config = SettingsConfigDict(env_prefix="", env_file=".env", extra="ignore")

    def parsed_cors_origins(self) -> list[str]:
        return [o.strip() for o in self.cors_origins.split(",") if o.strip()]
