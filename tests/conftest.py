"""Test configuration and fixtures."""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import Any

import pytest

from agent_workflows.logging import JsonFormatter
from agent_workflows.workflow.models import Agent, Template, WorkflowConfig

AgentFactory = Callable[..., Agent]


@pytest.fixture
def make_agent() -> AgentFactory:
    """Build an agent that passes every structural check unless overridden."""

    def factory(agent_id: str, **overrides: Any) -> Agent:
        fields: dict[str, Any] = {
            "id": agent_id,
            "name": f"Agent {agent_id}",
            "type": "research",
            "system_prompt": "You are a careful research assistant.",
            "user_prompt": "Summarise the findings for the query.",
            "timeout_seconds": 300,
        }
        fields.update(overrides)
        return Agent(**fields)

    return factory


@pytest.fixture
def make_template(make_agent: AgentFactory) -> Callable[..., Template]:
    """Build a named template around `agents` (three default agents a, b, c)."""

    def factory(agents: list[Agent] | None = None, **workflow: Any) -> Template:
        return Template(
            name="Market scan",
            description="Research, analyse and synthesise a market overview.",
            agents=agents if agents is not None else [make_agent(i) for i in ("a", "b", "c")],
            workflow=WorkflowConfig(**workflow),
        )

    return factory


@pytest.fixture
def clean_env(monkeypatch: pytest.MonkeyPatch, tmp_path) -> pytest.MonkeyPatch:
    """Run in an empty directory with no workflow variables set."""

    for name in (
        "WORKFLOW_API_BASE_URL",
        "WORKFLOW_AUTH_TOKEN",
        "LOG_LEVEL",
        "WORKFLOW_AUTO_RECONNECT",
        "WORKFLOW_RECONNECT_DELAY_SECONDS",
        "WORKFLOW_REQUEST_TIMEOUT_SECONDS",
        "WORKFLOW_STREAM_READ_TIMEOUT_SECONDS",
        "WORKFLOW_CORS_ORIGINS",
        "WORKFLOW_SERVER_HOST",
        "WORKFLOW_SERVER_PORT",
    ):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.chdir(tmp_path)
    return monkeypatch


@pytest.fixture(autouse=True)
def restore_root_logging():
    """Drop JSON handlers installed by `configure_logging` during a test."""

    root = logging.getLogger()
    level = root.level
    yield
    for handler in list(root.handlers):
        if isinstance(handler.formatter, JsonFormatter):
            root.removeHandler(handler)
    root.setLevel(level)
