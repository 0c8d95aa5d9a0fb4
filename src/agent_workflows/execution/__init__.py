"""Live execution tracking.

This package introduces:
- Typed stream events and execution API wire models
- The per-execution tracking state machine
- The stream consumer with a single cancellable reconnect
- Pending human-in-the-loop interventions
"""

from __future__ import annotations

from agent_workflows.execution.client import (
    AuthenticationRequired,
    ExecutionApiClient,
    ExecutionApiError,
)
from agent_workflows.execution.interventions import InterventionCoordinator, InterventionRejected
from agent_workflows.execution.monitor import ExecutionMonitor
from agent_workflows.execution.stream import StreamConsumer
from agent_workflows.execution.tracker import ExecutionState, ExecutionTracker

__all__ = [
    "AuthenticationRequired",
    "ExecutionApiClient",
    "ExecutionApiError",
    "ExecutionMonitor",
    "ExecutionState",
    "ExecutionTracker",
    "InterventionCoordinator",
    "InterventionRejected",
    "StreamConsumer",
]
