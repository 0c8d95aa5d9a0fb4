from __future__ import annotations

import pytest
from fastapi.testclient import TestClient

from agent_workflows.server.app import create_app
from agent_workflows.workflow.models import CompletionStrategy


@pytest.fixture
def client(clean_env) -> TestClient:
    return TestClient(create_app())


def test_health(client: TestClient) -> None:
    assert client.get("/api/health").json() == {"status": "ok"}


def test_validate_reports_errors(client: TestClient, make_template) -> None:
    template = make_template(
        completion_strategy=CompletionStrategy.THRESHOLD, required_completions=5
    )

    resp = client.post("/api/templates/validate", json=template.model_dump(mode="json"))

    assert resp.status_code == 200
    body = resp.json()
    assert body["is_valid"] is False
    assert [e["field"] for e in body["errors"]] == ["workflow.required_completions"]


def test_validate_never_rejects_malformed_templates(client: TestClient) -> None:
    resp = client.post("/api/templates/validate", json={"agents": [{"name": "no id"}]})

    assert resp.status_code == 200
    assert "agents[0].id" in [e["field"] for e in resp.json()["errors"]]


def test_validate_field(client: TestClient, make_agent, make_template) -> None:
    template = make_template([make_agent("a", retry_count=9), make_agent("b")])

    resp = client.post(
        "/api/templates/validate-field",
        params={"field": "agents[0]"},
        json=template.model_dump(mode="json"),
    )

    body = resp.json()
    assert body["field"] == "agents[0]"
    assert body["is_valid"] is False
    assert [e["field"] for e in body["errors"]] == ["agents[0].retry_count"]


def test_graph(client: TestClient, make_template) -> None:
    resp = client.post("/api/templates/graph", json=make_template().model_dump(mode="json"))

    body = resp.json()
    assert resp.status_code == 200
    assert body["detected_mode"] == "sequential"
    assert body["graph"]["entry_point"] == "a"
    assert body["nodes_by_level"] == [["a"], ["b"], ["c"]]
    assert body["analysis"]["has_cycle"] is False


def test_graph_rejects_unparseable_template(client: TestClient) -> None:
    resp = client.post("/api/templates/graph", json={"agents": [{"name": "no id"}]})

    assert resp.status_code == 422
    assert resp.json()["detail"][0]["field"] == "agents[0].id"
