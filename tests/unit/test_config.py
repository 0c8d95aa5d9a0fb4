"""Unit tests for settings loading."""

from __future__ import annotations

from pathlib import Path

import pytest
from pydantic import ValidationError

from agent_workflows.config import WorkflowSettings
from agent_workflows.server.config import ServerSettings


def test_defaults_need_no_token(clean_env: pytest.MonkeyPatch) -> None:
    settings = WorkflowSettings()

    assert settings.api_base_url == "http://localhost:8000"
    assert settings.auth_token == ""
    assert not settings.has_auth_token
    assert settings.auto_reconnect is True
    assert settings.reconnect_delay_seconds == 5.0
    assert settings.log_level == "INFO"


def test_environment_overrides(clean_env: pytest.MonkeyPatch) -> None:
    clean_env.setenv("WORKFLOW_API_BASE_URL", "https://workflows.example.com/")
    clean_env.setenv("WORKFLOW_AUTH_TOKEN", "secret")
    clean_env.setenv("WORKFLOW_AUTO_RECONNECT", "false")
    clean_env.setenv("WORKFLOW_RECONNECT_DELAY_SECONDS", "2.5")

    settings = WorkflowSettings()

    assert settings.api_base_url == "https://workflows.example.com"
    assert settings.has_auth_token
    assert settings.auto_reconnect is False
    assert settings.reconnect_delay_seconds == 2.5


def test_settings_loads_from_dotenv(tmp_path: Path, clean_env: pytest.MonkeyPatch) -> None:
    (tmp_path / ".env").write_text(
        "\n".join(["WORKFLOW_AUTH_TOKEN=from-file", "LOG_LEVEL=DEBUG", ""]),
        encoding="utf-8",
    )

    settings = WorkflowSettings()

    assert settings.auth_token == "from-file"
    assert settings.log_level == "DEBUG"


def test_reconnect_delay_must_be_positive(clean_env: pytest.MonkeyPatch) -> None:
    clean_env.setenv("WORKFLOW_RECONNECT_DELAY_SECONDS", "0")

    with pytest.raises(ValidationError):
        WorkflowSettings()


def test_server_cors_origins(clean_env: pytest.MonkeyPatch) -> None:
    clean_env.setenv("WORKFLOW_CORS_ORIGINS", "https://a.example, ,https://b.example")

    assert ServerSettings().parsed_cors_origins() == ["https://a.example", "https://b.example"]
