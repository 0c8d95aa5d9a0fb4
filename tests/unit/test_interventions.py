"""Unit tests for pending human-in-the-loop interventions."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta
from unittest.mock import Mock

import pytest

from agent_workflows.execution.events import (
    AgentStatus,
    InterventionAction,
    InterventionRequest,
    InterventionResponse,
    parse_event,
)
from agent_workflows.execution.interventions import InterventionCoordinator, InterventionRejected
from agent_workflows.execution.tracker import ExecutionTracker

NOW = datetime(2026, 1, 1, 12, 0, tzinfo=UTC)


def _request(intervention_id: str, agent_id: str, *, timeout_at: datetime | None = None):
    return InterventionRequest(
        intervention_id=intervention_id,
        agent_id=agent_id,
        timeout_at=timeout_at,
    )


def _waiting(tracker: ExecutionTracker, coordinator: InterventionCoordinator, request) -> None:
    tracker.apply(
        parse_event({"type": "intervention_required", "data": request.model_dump(mode="json")})
    )
    coordinator.add(request)


@pytest.fixture
def tracker() -> ExecutionTracker:
    return ExecutionTracker("exec-1")


@pytest.fixture
def responder() -> Mock:
    return Mock()


@pytest.fixture
def coordinator(tracker: ExecutionTracker, responder: Mock) -> InterventionCoordinator:
    return InterventionCoordinator(tracker, responder=responder)


@pytest.mark.parametrize(
    ("action", "expected"),
    [
        (InterventionAction.APPROVE, AgentStatus.RUNNING),
        (InterventionAction.RETRY, AgentStatus.RUNNING),
        (InterventionAction.REJECT, AgentStatus.FAILED),
        (InterventionAction.SKIP, AgentStatus.FAILED),
    ],
)
def test_response_resolves_waiting_agent(
    tracker, coordinator, responder, action, expected
) -> None:
    _waiting(tracker, coordinator, _request("i-1", "a"))
    response = InterventionResponse(intervention_id="i-1", action=action)

    assert coordinator.submit(response)

    responder.assert_called_once_with(response)
    assert "i-1" not in coordinator
    assert tracker.snapshot.agent("a").status == expected


def test_unknown_or_duplicate_response_is_a_no_op(tracker, coordinator, responder) -> None:
    _waiting(tracker, coordinator, _request("i-1", "a"))
    response = InterventionResponse(intervention_id="i-1", action=InterventionAction.APPROVE)

    assert coordinator.submit(response)
    assert not coordinator.submit(response)
    assert not coordinator.submit(
        InterventionResponse(intervention_id="nope", action=InterventionAction.REJECT)
    )

    assert responder.call_count == 1


def test_response_after_terminal_state_is_rejected(tracker, coordinator, responder) -> None:
    _waiting(tracker, coordinator, _request("i-1", "a"))
    tracker.apply(parse_event({"type": "execution_completed"}))

    with pytest.raises(InterventionRejected):
        coordinator.submit(
            InterventionResponse(intervention_id="i-1", action=InterventionAction.APPROVE)
        )

    assert "i-1" in coordinator
    responder.assert_not_called()


def test_failed_submission_leaves_local_state(tracker, coordinator, responder) -> None:
    _waiting(tracker, coordinator, _request("i-1", "a"))
    responder.side_effect = RuntimeError("api down")

    with pytest.raises(RuntimeError):
        coordinator.submit(
            InterventionResponse(intervention_id="i-1", action=InterventionAction.APPROVE)
        )

    assert "i-1" in coordinator
    assert tracker.snapshot.agent("a").status == AgentStatus.WAITING_INTERVENTION


def test_expire_overdue_drops_only_past_requests(tracker, coordinator) -> None:
    _waiting(tracker, coordinator, _request("i-1", "a", timeout_at=NOW - timedelta(seconds=1)))
    _waiting(tracker, coordinator, _request("i-2", "b", timeout_at=NOW + timedelta(minutes=5)))
    _waiting(tracker, coordinator, _request("i-3", "c"))

    expired = coordinator.expire_overdue(NOW)

    assert [r.intervention_id for r in expired] == ["i-1"]
    assert [r.intervention_id for r in coordinator.pending()] == ["i-2", "i-3"]
    assert tracker.snapshot.agent("a").status == AgentStatus.WAITING_INTERVENTION
