"""Unit tests for the execution monitor facade."""

from __future__ import annotations

import json
from unittest.mock import Mock

import pytest

from agent_workflows.execution.client import AuthenticationRequired
from agent_workflows.execution.events import (
    AgentStatus,
    ExecutionRequest,
    ExecutionResponse,
    ExecutionResult,
    InterventionAction,
    InterventionResponse,
    WorkflowStatus,
)
from agent_workflows.execution.monitor import ExecutionMonitor, NoActiveExecution


class FakeTimer:
    def __init__(self, delay, callback) -> None:
        self.callback = callback
        self.daemon = False
        self.cancelled = False

    def start(self) -> None:
        pass

    def cancel(self) -> None:
        self.cancelled = True


def _stream(*events: dict) -> list[str]:
    return [json.dumps(e) for e in events]


RUNNING = {"type": "execution_status", "data": {"status": "running"}}
COMPLETED = {"type": "execution_completed", "data": {"total_cost": 1.5}}


@pytest.fixture
def timers() -> list[FakeTimer]:
    return []


@pytest.fixture
def monitor(timers: list[FakeTimer]) -> tuple[ExecutionMonitor, Mock]:
    client = Mock()

    def factory(delay, callback):
        timer = FakeTimer(delay, callback)
        timers.append(timer)
        return timer

    return ExecutionMonitor(client, reconnect_delay_seconds=1.0, timer_factory=factory), client


def test_watch_applies_stream_to_tracker(monitor) -> None:
    mon, client = monitor
    client.stream_events.return_value = _stream(RUNNING, COMPLETED)

    watched = mon.watch("exec-1", background=False)

    assert watched.execution_id == "exec-1"
    assert mon.state.status == WorkflowStatus.COMPLETED
    assert mon.state.total_cost == 1.5
    client.stream_events.assert_called_once_with("exec-1")


def test_watch_without_token_connects_nothing(monitor) -> None:
    mon, client = monitor
    client.ensure_authenticated.side_effect = AuthenticationRequired("no token")

    with pytest.raises(AuthenticationRequired):
        mon.watch("exec-1", background=False)

    client.stream_events.assert_not_called()
    assert mon.current is None


def test_start_returns_execution_id(monitor, make_template) -> None:
    mon, client = monitor
    client.start_execution.return_value = ExecutionResponse(execution_id="exec-9")
    client.stream_events.return_value = _stream(COMPLETED)

    execution_id = mon.start(
        ExecutionRequest(template_id="t-1", query="q"), template=make_template()
    )
    mon.current.consumer.join(timeout=5)

    assert execution_id == "exec-9"
    assert list(mon.state.agents) == ["a", "b", "c"]
    assert mon.state.status == WorkflowStatus.COMPLETED


def test_reconnect_catches_up_from_status_api(monitor, timers) -> None:
    mon, client = monitor
    client.stream_events.side_effect = [_stream(RUNNING), _stream(COMPLETED)]
    client.get_execution.return_value = ExecutionResult(
        execution_id="exec-1",
        status="running",
        agent_results=[{"agent_id": "a", "cost": 0.5}],
        total_cost=0.5,
    )
    mon.watch("exec-1", background=False)

    timers[0].callback()

    client.get_execution.assert_called_once_with("exec-1")
    assert mon.state.agent("a").status == AgentStatus.COMPLETED
    assert mon.state.status == WorkflowStatus.COMPLETED


def test_cancel_is_server_first_then_local(monitor, timers) -> None:
    mon, client = monitor
    client.stream_events.return_value = _stream(RUNNING)
    mon.watch("exec-1", background=False)

    state = mon.cancel()

    client.cancel_execution.assert_called_once_with("exec-1")
    assert state.status == WorkflowStatus.CANCELLED
    assert timers[0].cancelled
    assert mon.current.consumer.cancelled


def test_respond_routes_to_coordinator(monitor) -> None:
    mon, client = monitor
    client.stream_events.return_value = _stream(
        RUNNING,
        {"type": "intervention_required", "data": {"intervention_id": "i-1", "agent_id": "a"}},
    )
    mon.watch("exec-1", background=False)
    assert [r.intervention_id for r in mon.pending_interventions()] == ["i-1"]

    response = InterventionResponse(intervention_id="i-1", action=InterventionAction.APPROVE)

    assert mon.respond(response)
    client.submit_intervention.assert_called_once_with(response)
    assert mon.state.agent("a").status == AgentStatus.RUNNING
    assert mon.pending_interventions() == []


def test_commands_require_an_active_execution(monitor) -> None:
    mon, _ = monitor

    with pytest.raises(NoActiveExecution):
        mon.cancel()
    assert mon.state is None
    assert mon.pending_interventions() == []
