"""Execution tracking state machine.

One :class:`ExecutionTracker` exists per execution run. It folds stream events
into an immutable :class:`ExecutionState` snapshot; each event replaces the
snapshot in one step, so readers only ever see a complete before or after view.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass, field, replace
from typing import Any, assert_never

from agent_workflows.execution.events import (
    AgentResult,
    AgentResultData,
    AgentResultEvent,
    AgentStarted,
    AgentStartedData,
    AgentStatus,
    ConnectionEstablished,
    ExecutionCompleted,
    ExecutionError,
    ExecutionResult,
    ExecutionStatusData,
    ExecutionStatusEvent,
    ExecutionTotals,
    Heartbeat,
    InterventionAction,
    InterventionRequest,
    InterventionRequired,
    ParallelProgress,
    ParallelProgressEvent,
    StreamingEvent,
    WorkflowStatus,
    normalize_status,
)
from agent_workflows.workflow.models import Template

logger = logging.getLogger(__name__)


WORKFLOW_TRANSITIONS: dict[WorkflowStatus, set[WorkflowStatus]] = {
    WorkflowStatus.PENDING: {
        WorkflowStatus.RUNNING,
        WorkflowStatus.COMPLETED,
        WorkflowStatus.FAILED,
        WorkflowStatus.CANCELLED,
    },
    WorkflowStatus.RUNNING: {
        WorkflowStatus.COMPLETED,
        WorkflowStatus.FAILED,
        WorkflowStatus.CANCELLED,
    },
    WorkflowStatus.COMPLETED: set(),
    WorkflowStatus.FAILED: set(),
    WorkflowStatus.CANCELLED: set(),
}

# Agents may skip `running` when its event was lost during a disconnect.
# A replayed result may flip a finished agent between completed and failed.
AGENT_TRANSITIONS: dict[AgentStatus, set[AgentStatus]] = {
    AgentStatus.PENDING: {
        AgentStatus.RUNNING,
        AgentStatus.WAITING_INTERVENTION,
        AgentStatus.COMPLETED,
        AgentStatus.FAILED,
    },
    AgentStatus.RUNNING: {
        AgentStatus.WAITING_INTERVENTION,
        AgentStatus.COMPLETED,
        AgentStatus.FAILED,
    },
    AgentStatus.WAITING_INTERVENTION: {AgentStatus.RUNNING, AgentStatus.FAILED},
    AgentStatus.COMPLETED: {AgentStatus.FAILED},
    AgentStatus.FAILED: {AgentStatus.COMPLETED},
}


class IllegalTransitionError(ValueError):
    pass


def transition_workflow(*, current: WorkflowStatus, to: WorkflowStatus) -> WorkflowStatus:
    if to == current:
        return current
    if to not in WORKFLOW_TRANSITIONS.get(current, set()):
        raise IllegalTransitionError(
            f"Illegal workflow transition: {current.value} -> {to.value}"
        )
    return to


def transition_agent(*, current: AgentStatus, to: AgentStatus) -> AgentStatus:
    if to == current:
        return current
    if to not in AGENT_TRANSITIONS.get(current, set()):
        raise IllegalTransitionError(f"Illegal agent transition: {current.value} -> {to.value}")
    return to


@dataclass(frozen=True, slots=True)
class AgentState:
    agent_id: str
    name: str = ""
    status: AgentStatus = AgentStatus.PENDING
    cost: float = 0.0
    tokens: int = 0
    tavily_credits: float = 0.0
    duration_seconds: float = 0.0
    confidence: float = 0.0
    error: str | None = None
    started_at: str | None = None
    completed_at: str | None = None

    def to_json(self) -> dict[str, object]:
        return {
            "agent_id": self.agent_id,
            "name": self.name,
            "status": self.status.value,
            "cost": self.cost,
            "tokens": self.tokens,
            "tavily_credits": self.tavily_credits,
            "duration_seconds": self.duration_seconds,
            "confidence": self.confidence,
            "error": self.error,
            "started_at": self.started_at,
            "completed_at": self.completed_at,
        }


@dataclass(frozen=True, slots=True)
class ExecutionState:
    """Read-only view of one execution.

    `counted_agents` holds the agents whose result is already folded into the
    totals; a replayed result for one of them never adds to the totals again.
    """

    execution_id: str
    status: WorkflowStatus = WorkflowStatus.PENDING
    agents: Mapping[str, AgentState] = field(default_factory=dict)
    agent_results: Mapping[str, AgentResult] = field(default_factory=dict)
    counted_agents: frozenset[str] = frozenset()
    total_cost: float = 0.0
    total_tokens: int = 0
    total_tavily_credits: float = 0.0
    total_duration: float = 0.0
    overall_confidence: float = 0.0
    progress_percentage: float = 0.0
    current_agent: str | None = None
    error_message: str | None = None
    failed_agent: str | None = None
    final_result: dict[str, Any] | None = None
    completed_at: str | None = None
    parallel_progress: ParallelProgress | None = None

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    @property
    def completed_agents(self) -> list[str]:
        return [a.agent_id for a in self.agents.values() if a.status == AgentStatus.COMPLETED]

    @property
    def failed_agents(self) -> list[str]:
        return [a.agent_id for a in self.agents.values() if a.status == AgentStatus.FAILED]

    def agent(self, agent_id: str) -> AgentState | None:
        return self.agents.get(agent_id)

    def to_json(self) -> dict[str, object]:
        return {
            "execution_id": self.execution_id,
            "status": self.status.value,
            "agents": [a.to_json() for a in self.agents.values()],
            "total_cost": self.total_cost,
            "total_tokens": self.total_tokens,
            "total_tavily_credits": self.total_tavily_credits,
            "total_duration": self.total_duration,
            "overall_confidence": self.overall_confidence,
            "progress_percentage": self.progress_percentage,
            "current_agent": self.current_agent,
            "error_message": self.error_message,
            "failed_agent": self.failed_agent,
            "completed_at": self.completed_at,
        }


_TOTAL_FIELDS: tuple[str, ...] = (
    "total_cost",
    "total_tokens",
    "total_tavily_credits",
    "total_duration",
    "overall_confidence",
    "progress_percentage",
    "current_agent",
    "error_message",
    "failed_agent",
    "final_result",
    "completed_at",
)


def _with_agent(state: ExecutionState, agent: AgentState) -> ExecutionState:
    agents = dict(state.agents)
    agents[agent.agent_id] = agent
    return replace(state, agents=agents)


def _record_result(
    state: ExecutionState, result: AgentResult, status: AgentStatus
) -> ExecutionState:
    """Update the displayed fields for one agent. Totals are left alone."""

    agent = state.agents.get(result.agent_id) or AgentState(agent_id=result.agent_id)
    agent = replace(
        agent,
        name=result.agent_name or agent.name,
        status=status,
        cost=result.cost,
        tokens=result.tokens_used,
        tavily_credits=result.tavily_credits,
        duration_seconds=result.duration_seconds,
        confidence=result.confidence_score,
        error=result.error,
        started_at=result.started_at or agent.started_at,
        completed_at=result.completed_at,
    )
    results = dict(state.agent_results)
    results[result.agent_id] = result
    return replace(_with_agent(state, agent), agent_results=results)


def _result_status(result: AgentResult) -> AgentStatus:
    return AgentStatus.COMPLETED if result.success else AgentStatus.FAILED


def _fold_reported(
    state: ExecutionState, results: Iterable[AgentResult]
) -> ExecutionState:
    reported: set[str] = set()
    for result in results:
        state = _record_result(state, result, _result_status(result))
        reported.add(result.agent_id)
    return replace(state, counted_agents=state.counted_agents | reported)


def _apply_totals(state: ExecutionState, totals: ExecutionTotals) -> ExecutionState:
    if totals.agent_results is not None:
        state = _fold_reported(state, totals.agent_results)
    changes = {
        name: getattr(totals, name)
        for name in _TOTAL_FIELDS
        if getattr(totals, name) is not None
    }
    return replace(state, **changes)


def _ensure_running(state: ExecutionState) -> ExecutionState:
    if state.status == WorkflowStatus.PENDING:
        return replace(state, status=WorkflowStatus.RUNNING)
    return state


def _finish_agent(current: AgentStatus, to: AgentStatus) -> AgentStatus:
    # A result for an agent still awaiting intervention means the response was
    # handled elsewhere; pass through `running` on the way.
    if current == AgentStatus.WAITING_INTERVENTION and to == AgentStatus.COMPLETED:
        current = transition_agent(current=current, to=AgentStatus.RUNNING)
    return transition_agent(current=current, to=to)


class ExecutionTracker:
    """Single-writer state machine for one execution.

    All mutation goes through :meth:`apply` (stream events), :meth:`hydrate`
    (status API catch-up), :meth:`resolve_intervention` and :meth:`cancel`.
    """

    def __init__(self, execution_id: str, *, agents: Iterable[AgentState] = ()) -> None:
        self._lock = threading.Lock()
        self._listeners: list[Callable[[ExecutionState], None]] = []
        self._state = ExecutionState(
            execution_id=execution_id,
            agents={a.agent_id: a for a in agents},
        )

    @classmethod
    def for_template(cls, execution_id: str, template: Template) -> ExecutionTracker:
        """Seed one pending agent entry per template agent."""

        return cls(
            execution_id,
            agents=[AgentState(agent_id=a.id, name=a.name) for a in template.agents if a.id],
        )

    @property
    def execution_id(self) -> str:
        return self._state.execution_id

    @property
    def snapshot(self) -> ExecutionState:
        return self._state

    def add_listener(self, listener: Callable[[ExecutionState], None]) -> None:
        self._listeners.append(listener)

    def _notify(self, state: ExecutionState) -> None:
        for listener in self._listeners:
            listener(state)

    def apply(self, event: StreamingEvent) -> bool:
        """Fold one event into the state. Returns False if the event was ignored."""

        with self._lock:
            current = self._state
            try:
                updated = self._reduce(current, event)
            except IllegalTransitionError as e:
                logger.warning(
                    "Ignoring event with illegal transition",
                    extra={
                        "execution_id": current.execution_id,
                        "event_type": event.type,
                        "error": str(e),
                    },
                )
                return False
            if updated is None:
                return False
            self._state = updated
        self._notify(updated)
        return True

    def _reduce(self, state: ExecutionState, event: StreamingEvent) -> ExecutionState | None:
        if isinstance(event, (ConnectionEstablished, Heartbeat)):
            return None

        if state.is_terminal:
            logger.info(
                "Ignoring event after terminal state",
                extra={
                    "execution_id": state.execution_id,
                    "event_type": event.type,
                    "status": state.status.value,
                },
            )
            return None

        if isinstance(event, AgentStarted):
            return self._on_agent_started(state, event.data)
        if isinstance(event, AgentResultEvent):
            return self._on_agent_result(state, event.data)
        if isinstance(event, ExecutionStatusEvent):
            return self._on_execution_status(state, event.data)
        if isinstance(event, ParallelProgressEvent):
            return replace(_ensure_running(state), parallel_progress=event.data)
        if isinstance(event, ExecutionCompleted):
            status = transition_workflow(current=state.status, to=WorkflowStatus.COMPLETED)
            state = _apply_totals(replace(state, status=status), event.data)
            if event.data.progress_percentage is None:
                state = replace(state, progress_percentage=100.0)
            return state
        if isinstance(event, ExecutionError):
            status = transition_workflow(current=state.status, to=WorkflowStatus.FAILED)
            return _apply_totals(replace(state, status=status), event.data)
        if isinstance(event, InterventionRequired):
            return self._on_intervention_required(state, event.data)
        assert_never(event)

    def _on_agent_started(self, state: ExecutionState, data: AgentStartedData) -> ExecutionState:
        agent = state.agents.get(data.agent_id) or AgentState(agent_id=data.agent_id)
        status = transition_agent(current=agent.status, to=AgentStatus.RUNNING)
        agent = replace(
            agent,
            name=data.agent_name or agent.name,
            status=status,
            started_at=data.timestamp or agent.started_at,
        )
        state = _with_agent(_ensure_running(state), agent)
        return replace(state, current_agent=data.agent_id)

    def _on_agent_result(self, state: ExecutionState, data: AgentResultData) -> ExecutionState:
        result = data.agent_result
        previous = state.agents.get(result.agent_id)
        current_status = previous.status if previous is not None else AgentStatus.PENDING
        status = _finish_agent(current_status, _result_status(result))

        state = _record_result(_ensure_running(state), result, status)
        if result.agent_id in state.counted_agents:
            logger.debug(
                "Duplicate agent result; totals unchanged",
                extra={"execution_id": state.execution_id, "agent_id": result.agent_id},
            )
            return state

        return replace(
            state,
            counted_agents=state.counted_agents | {result.agent_id},
            total_cost=state.total_cost + result.cost,
            total_tokens=state.total_tokens + result.tokens_used,
            total_tavily_credits=state.total_tavily_credits + result.tavily_credits,
        )

    def _on_execution_status(
        self, state: ExecutionState, data: ExecutionStatusData
    ) -> ExecutionState | None:
        status = normalize_status(data.status)
        if status is None:
            logger.warning(
                "Ignoring unknown execution status",
                extra={"execution_id": state.execution_id, "status": data.status},
            )
            return None
        progress = (
            data.progress_percentage
            if data.progress_percentage is not None
            else state.progress_percentage
        )
        # Completion and failure carry authoritative totals, so only their own
        # events finish the run. Cancellation has no dedicated event.
        if status in (WorkflowStatus.COMPLETED, WorkflowStatus.FAILED):
            logger.debug(
                "Terminal status reported; waiting for the closing event",
                extra={"execution_id": state.execution_id, "status": data.status},
            )
            status = _ensure_running(state).status
        return replace(
            state,
            status=transition_workflow(current=state.status, to=status),
            progress_percentage=progress,
            current_agent=data.current_agent,
        )

    def _on_intervention_required(
        self, state: ExecutionState, request: InterventionRequest
    ) -> ExecutionState:
        agent = state.agents.get(request.agent_id) or AgentState(agent_id=request.agent_id)
        status = transition_agent(current=agent.status, to=AgentStatus.WAITING_INTERVENTION)
        return _with_agent(_ensure_running(state), replace(agent, status=status))

    def hydrate(self, result: ExecutionResult) -> ExecutionState:
        """Fold a status-API snapshot in (initial load or reconnect catch-up).

        Reported totals are authoritative and reported agents count as folded.
        """

        with self._lock:
            state = self._state
            if state.is_terminal:
                return state

            status = state.status
            reported = normalize_status(result.status)
            if reported is not None:
                try:
                    status = transition_workflow(current=state.status, to=reported)
                except IllegalTransitionError:
                    logger.warning(
                        "Status snapshot would move execution backwards; keeping current status",
                        extra={
                            "execution_id": state.execution_id,
                            "current": state.status.value,
                            "reported": result.status,
                        },
                    )

            state = _fold_reported(state, result.agent_results)
            state = replace(
                state,
                status=status,
                total_cost=result.total_cost,
                total_tokens=result.total_tokens,
                total_tavily_credits=result.total_tavily_credits,
                total_duration=result.total_duration,
                overall_confidence=result.overall_confidence,
                progress_percentage=result.progress_percentage,
                current_agent=result.current_agent,
                error_message=result.error_message,
                failed_agent=result.failed_agent,
                final_result=result.final_result,
                completed_at=result.completed_at,
            )
            self._state = state
        self._notify(state)
        return state

    def resolve_intervention(self, agent_id: str, action: InterventionAction) -> bool:
        """Move an agent out of `waiting_intervention` after a response was accepted."""

        to = (
            AgentStatus.RUNNING
            if action in (InterventionAction.APPROVE, InterventionAction.RETRY)
            else AgentStatus.FAILED
        )
        with self._lock:
            state = self._state
            agent = state.agents.get(agent_id)
            if agent is None or agent.status != AgentStatus.WAITING_INTERVENTION:
                logger.warning(
                    "Agent is not waiting for an intervention",
                    extra={
                        "execution_id": state.execution_id,
                        "agent_id": agent_id,
                        "status": agent.status.value if agent is not None else None,
                    },
                )
                return False
            state = _with_agent(
                state, replace(agent, status=transition_agent(current=agent.status, to=to))
            )
            self._state = state
        self._notify(state)
        return True

    def cancel(self) -> bool:
        """Mark the execution cancelled. Agent states are left as last observed."""

        with self._lock:
            state = self._state
            if state.is_terminal:
                return False
            state = replace(
                state,
                status=transition_workflow(current=state.status, to=WorkflowStatus.CANCELLED),
            )
            self._state = state
        self._notify(state)
        return True
