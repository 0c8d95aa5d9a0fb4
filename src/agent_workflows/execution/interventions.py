"""Pending human-in-the-loop requests for one execution."""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from datetime import UTC, datetime

from agent_workflows.execution.events import InterventionRequest, InterventionResponse
from agent_workflows.execution.tracker import ExecutionTracker

logger = logging.getLogger(__name__)

Responder = Callable[[InterventionResponse], object]


class InterventionRejected(RuntimeError):
    """A response was submitted after the execution reached a terminal state."""


class InterventionCoordinator:
    """Keyed set of pending intervention requests.

    Entries are added when the tracker accepts an `intervention_required`
    event and removed once a response has been accepted by the intervention
    API. Local state only changes after the API call succeeds.
    """

    def __init__(self, tracker: ExecutionTracker, *, responder: Responder) -> None:
        self._tracker = tracker
        self._responder = responder
        self._lock = threading.Lock()
        self._pending: dict[str, InterventionRequest] = {}

    def __len__(self) -> int:
        return len(self._pending)

    def __contains__(self, intervention_id: object) -> bool:
        return intervention_id in self._pending

    def add(self, request: InterventionRequest) -> None:
        with self._lock:
            self._pending[request.intervention_id] = request
        logger.info(
            "Intervention required",
            extra={
                "execution_id": self._tracker.execution_id,
                "intervention_id": request.intervention_id,
                "agent_id": request.agent_id,
                "intervention_type": request.intervention_type,
            },
        )

    def pending(self) -> list[InterventionRequest]:
        """Pending requests in arrival order."""

        with self._lock:
            return list(self._pending.values())

    def submit(self, response: InterventionResponse) -> bool:
        """Send `response` and apply it locally.

        Returns False when no such request is pending (duplicate submission).

        Raises:
            InterventionRejected: the execution already finished; the pending
                entry is left in place.
        """

        state = self._tracker.snapshot
        if state.is_terminal:
            raise InterventionRejected(
                f"Execution {state.execution_id} is {state.status.value}; "
                f"intervention {response.intervention_id} was not submitted"
            )

        with self._lock:
            request = self._pending.get(response.intervention_id)
        if request is None:
            logger.info(
                "Ignoring response for unknown intervention",
                extra={
                    "execution_id": state.execution_id,
                    "intervention_id": response.intervention_id,
                },
            )
            return False

        self._responder(response)

        with self._lock:
            self._pending.pop(response.intervention_id, None)
        self._tracker.resolve_intervention(request.agent_id, response.action)
        logger.info(
            "Intervention response submitted",
            extra={
                "execution_id": state.execution_id,
                "intervention_id": response.intervention_id,
                "agent_id": request.agent_id,
                "action": response.action.value,
            },
        )
        return True

    def expire_overdue(self, now: datetime | None = None) -> list[InterventionRequest]:
        """Drop requests whose `timeout_at` has passed.

        How an expired request is resolved is decided server-side, so the
        tracker is not touched here.
        """

        current = now or datetime.now(UTC)
        with self._lock:
            expired = [
                r
                for r in self._pending.values()
                if r.timeout_at is not None and r.timeout_at <= current
            ]
            for request in expired:
                del self._pending[request.intervention_id]
        for request in expired:
            logger.info(
                "Intervention expired",
                extra={
                    "execution_id": self._tracker.execution_id,
                    "intervention_id": request.intervention_id,
                    "agent_id": request.agent_id,
                },
            )
        return expired
