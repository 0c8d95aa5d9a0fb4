"""Execution monitor: start, watch, cancel and answer interventions.

Wires one tracker, one stream consumer and one intervention coordinator per
execution around an injected :class:`ExecutionApiClient`. Watching a new
execution stops the previous one.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Iterable
from dataclasses import dataclass

import requests

from agent_workflows.config import WorkflowSettings
from agent_workflows.execution.client import ExecutionApiClient, ExecutionApiError
from agent_workflows.execution.events import (
    ExecutionRequest,
    InterventionRequest,
    InterventionResponse,
)
from agent_workflows.execution.interventions import InterventionCoordinator
from agent_workflows.execution.stream import EventSource, StreamConsumer, TimerFactory
from agent_workflows.execution.tracker import ExecutionState, ExecutionTracker
from agent_workflows.workflow.models import Template

logger = logging.getLogger(__name__)


class NoActiveExecution(RuntimeError):
    pass


@dataclass(frozen=True, slots=True)
class WatchedExecution:
    tracker: ExecutionTracker
    consumer: StreamConsumer
    interventions: InterventionCoordinator

    @property
    def execution_id(self) -> str:
        return self.tracker.execution_id


class ExecutionMonitor:
    def __init__(
        self,
        client: ExecutionApiClient,
        *,
        auto_reconnect: bool = True,
        reconnect_delay_seconds: float = 5.0,
        timer_factory: TimerFactory = threading.Timer,
    ) -> None:
        self._client = client
        self._auto_reconnect = auto_reconnect
        self._reconnect_delay = reconnect_delay_seconds
        self._timer_factory = timer_factory
        self._current: WatchedExecution | None = None

    @classmethod
    def from_settings(
        cls, settings: WorkflowSettings, *, client: ExecutionApiClient | None = None
    ) -> ExecutionMonitor:
        return cls(
            client or ExecutionApiClient.from_settings(settings),
            auto_reconnect=settings.auto_reconnect,
            reconnect_delay_seconds=settings.reconnect_delay_seconds,
        )

    @property
    def current(self) -> WatchedExecution | None:
        return self._current

    @property
    def state(self) -> ExecutionState | None:
        return self._current.tracker.snapshot if self._current is not None else None

    def pending_interventions(self) -> list[InterventionRequest]:
        return self._current.interventions.pending() if self._current is not None else []

    def _require_current(self) -> WatchedExecution:
        if self._current is None:
            raise NoActiveExecution("No execution is being monitored")
        return self._current

    def start(self, request: ExecutionRequest, *, template: Template | None = None) -> str:
        """Start an execution and begin streaming its events. Returns the execution id."""

        response = self._client.start_execution(request)
        self.watch(response.execution_id, template=template)
        return response.execution_id

    def watch(
        self,
        execution_id: str,
        *,
        template: Template | None = None,
        background: bool = True,
    ) -> WatchedExecution:
        """Attach to `execution_id`.

        Raises:
            AuthenticationRequired: no token configured; nothing is connected.
        """

        self._client.ensure_authenticated()
        self.stop()

        tracker = (
            ExecutionTracker.for_template(execution_id, template)
            if template is not None
            else ExecutionTracker(execution_id)
        )
        interventions = InterventionCoordinator(tracker, responder=self._client.submit_intervention)
        consumer = StreamConsumer(
            tracker,
            self._connector(tracker),
            interventions=interventions,
            auto_reconnect=self._auto_reconnect,
            reconnect_delay_seconds=self._reconnect_delay,
            timer_factory=self._timer_factory,
        )
        watched = WatchedExecution(tracker=tracker, consumer=consumer, interventions=interventions)
        self._current = watched

        if background:
            consumer.start()
        else:
            consumer.run()
        return watched

    def _connector(self, tracker: ExecutionTracker) -> EventSource:
        attempts = 0

        def connect() -> Iterable[str]:
            nonlocal attempts
            attempts += 1
            if attempts > 1:
                self._catch_up(tracker)
            return self._client.stream_events(tracker.execution_id)

        return connect

    def _catch_up(self, tracker: ExecutionTracker) -> None:
        try:
            tracker.hydrate(self._client.get_execution(tracker.execution_id))
        except (requests.RequestException, ExecutionApiError) as e:
            logger.warning(
                "Status catch-up failed; continuing with stream only",
                extra={"execution_id": tracker.execution_id, "error": str(e)},
            )

    def cancel(self) -> ExecutionState:
        """Cancel the current execution server-side, then locally."""

        current = self._require_current()
        self._client.cancel_execution(current.execution_id)
        current.tracker.cancel()
        current.consumer.cancel()
        return current.tracker.snapshot

    def respond(self, response: InterventionResponse) -> bool:
        return self._require_current().interventions.submit(response)

    def reconnect(self) -> bool:
        """Manually reconnect the stream; only has an effect while disconnected."""

        return self._require_current().consumer.reconnect()

    def stop(self) -> None:
        """Stop streaming the current execution without cancelling it."""

        if self._current is not None:
            self._current.consumer.cancel()
            self._current = None
