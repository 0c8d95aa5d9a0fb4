"""Wire models for the execution API and its event stream.

Stream messages are a closed tagged union keyed by `type`; each variant only
carries the payload fields relevant to it. `parse_event()` is the single entry
point for turning raw stream data into a typed event.
"""

from __future__ import annotations

import json
from collections.abc import Mapping
from datetime import UTC, datetime
from enum import Enum
from typing import Annotated, Any, Literal

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError, field_validator


class MalformedEventError(ValueError):
    """Raised when stream data is not a well-formed event."""


class WorkflowStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES: frozenset[WorkflowStatus] = frozenset(
    {WorkflowStatus.COMPLETED, WorkflowStatus.FAILED, WorkflowStatus.CANCELLED}
)

# Statuses the server may report that have no workflow-level state of their own.
_STATUS_ALIASES: dict[str, WorkflowStatus] = {
    "waiting_intervention": WorkflowStatus.RUNNING,
    "paused": WorkflowStatus.RUNNING,
    "timeout": WorkflowStatus.FAILED,
}


def normalize_status(raw: str) -> WorkflowStatus | None:
    """Map a server-reported status onto a workflow state, or None if unknown."""

    value = raw.strip().lower()
    try:
        return WorkflowStatus(value)
    except ValueError:
        return _STATUS_ALIASES.get(value)


class AgentStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    WAITING_INTERVENTION = "waiting_intervention"
    COMPLETED = "completed"
    FAILED = "failed"


class InterventionAction(str, Enum):
    APPROVE = "approve"
    REJECT = "reject"
    SKIP = "skip"
    RETRY = "retry"


def _as_utc(value: datetime | None) -> datetime | None:
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value


class _Wire(BaseModel):
    model_config = ConfigDict(extra="ignore", frozen=True)


class AgentResult(_Wire):
    agent_id: str
    agent_name: str = ""
    success: bool = True
    result: dict[str, Any] | None = None
    error: str | None = None
    cost: float = 0.0
    duration_seconds: float = 0.0
    confidence_score: float = 0.0
    tokens_used: int = 0
    tavily_calls: int = 0
    tavily_credits: float = 0.0
    started_at: str | None = None
    completed_at: str | None = None


class InterventionRequest(_Wire):
    intervention_id: str
    execution_id: str = ""
    agent_id: str
    intervention_type: str = "approval"
    intervention_point: str = ""
    context: dict[str, Any] = Field(default_factory=dict)
    agent_result: Any = None
    timeout_at: datetime | None = None
    requested_at: datetime | None = None

    @field_validator("timeout_at", "requested_at")
    @classmethod
    def _assume_utc(cls, value: datetime | None) -> datetime | None:
        return _as_utc(value)


class InterventionResponse(_Wire):
    intervention_id: str
    action: InterventionAction
    human_feedback: str | None = None


class ExecutionRequest(_Wire):
    template_id: str
    query: str
    custom_parameters: dict[str, Any] | None = None


class ExecutionResponse(_Wire):
    execution_id: str
    message: str = ""
    status: str = ""


class ExecutionResult(_Wire):
    """Execution snapshot returned by the status API."""

    execution_id: str
    template_id: str = ""
    template_name: str = ""
    query: str = ""
    status: str = "pending"
    agent_results: list[AgentResult] = Field(default_factory=list)
    final_result: dict[str, Any] | None = None
    total_cost: float = 0.0
    total_duration: float = 0.0
    overall_confidence: float = 0.0
    total_tokens: int = 0
    total_tavily_credits: float = 0.0
    progress_percentage: float = 0.0
    current_agent: str | None = None
    error_message: str | None = None
    failed_agent: str | None = None
    started_at: str | None = None
    completed_at: str | None = None


# Event payloads


class ConnectionData(_Wire):
    connection_id: str | None = None


class AgentStartedData(_Wire):
    agent_id: str
    agent_name: str = ""
    timestamp: str | None = None


class AgentResultData(_Wire):
    agent_result: AgentResult


class ExecutionStatusData(_Wire):
    status: str
    progress_percentage: float | None = None
    current_agent: str | None = None


class CompletionTracker(_Wire):
    total_agents: int = 0
    completed_count: int = 0
    failed_count: int = 0
    pending_count: int = 0
    completion_percentage: float = 0.0
    is_complete: bool = False
    completion_strategy: str = ""


class ParallelProgress(_Wire):
    execution_id: str = ""
    completion_tracker: CompletionTracker = Field(default_factory=CompletionTracker)
    active_agents: list[str] = Field(default_factory=list)
    agent_statuses: dict[str, str] = Field(default_factory=dict)


class ExecutionTotals(_Wire):
    """Authoritative totals reported with a terminal event. Absent fields stay None."""

    agent_results: list[AgentResult] | None = None
    final_result: dict[str, Any] | None = None
    total_cost: float | None = None
    total_duration: float | None = None
    overall_confidence: float | None = None
    total_tokens: int | None = None
    total_tavily_credits: float | None = None
    progress_percentage: float | None = None
    current_agent: str | None = None
    error_message: str | None = None
    failed_agent: str | None = None
    completed_at: str | None = None


class ExecutionErrorData(ExecutionTotals):
    error_message: str | None = "Execution failed"


class HeartbeatData(_Wire):
    model_config = ConfigDict(extra="allow", frozen=True)


# Events


class _Event(_Wire):
    timestamp: str = ""
    connection_id: str | None = None


class ConnectionEstablished(_Event):
    type: Literal["connection_established"]
    data: ConnectionData = Field(default_factory=ConnectionData)

    @property
    def resolved_connection_id(self) -> str | None:
        return self.data.connection_id or self.connection_id


class AgentStarted(_Event):
    type: Literal["agent_started"]
    data: AgentStartedData


class AgentResultEvent(_Event):
    type: Literal["agent_result"]
    data: AgentResultData


class ExecutionStatusEvent(_Event):
    type: Literal["execution_status"]
    data: ExecutionStatusData


class ParallelProgressEvent(_Event):
    type: Literal["parallel_progress"]
    data: ParallelProgress


class ExecutionCompleted(_Event):
    type: Literal["execution_completed"]
    data: ExecutionTotals = Field(default_factory=ExecutionTotals)


class ExecutionError(_Event):
    type: Literal["execution_error"]
    data: ExecutionErrorData = Field(default_factory=ExecutionErrorData)


class InterventionRequired(_Event):
    type: Literal["intervention_required"]
    data: InterventionRequest


class Heartbeat(_Event):
    type: Literal["heartbeat"]
    data: HeartbeatData = Field(default_factory=HeartbeatData)


StreamingEvent = Annotated[
    ConnectionEstablished
    | AgentStarted
    | AgentResultEvent
    | ExecutionStatusEvent
    | ParallelProgressEvent
    | ExecutionCompleted
    | ExecutionError
    | InterventionRequired
    | Heartbeat,
    Field(discriminator="type"),
]

_EVENT_ADAPTER: TypeAdapter[StreamingEvent] = TypeAdapter(StreamingEvent)


def parse_event(raw: str | bytes | Mapping[str, Any]) -> StreamingEvent:
    """Parse one stream message.

    Raises:
        MalformedEventError: not JSON, unknown `type`, or a payload that does
            not match its variant.
    """

    if isinstance(raw, (str, bytes)):
        try:
            obj = json.loads(raw)
        except json.JSONDecodeError as e:
            raise MalformedEventError(f"Event is not valid JSON: {e}") from e
    else:
        obj = raw

    if not isinstance(obj, Mapping):
        raise MalformedEventError(f"Event must be a JSON object, got {type(obj).__name__}")

    try:
        return _EVENT_ADAPTER.validate_python(obj)
    except ValidationError as e:
        raise MalformedEventError(
            f"Invalid {obj.get('type', '<untyped>')!s} event: {e.error_count()} error(s)"
        ) from e
