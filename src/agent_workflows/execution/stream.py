"""Event stream consumer for one execution.

The consumer owns the single connection for an execution id and is the only
writer to its :class:`ExecutionTracker`. Events are applied in arrival order.

On disconnect while the execution is still live, exactly one reconnect is
scheduled after a fixed delay. The timer handle is kept on the consumer and
cancelled as soon as the execution is cancelled or reaches a terminal state.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable, Iterable
from datetime import UTC, datetime
from typing import Protocol

import requests

from agent_workflows.execution.events import (
    ConnectionEstablished,
    Heartbeat,
    InterventionRequired,
    MalformedEventError,
    parse_event,
)
from agent_workflows.execution.interventions import InterventionCoordinator
from agent_workflows.execution.tracker import ExecutionState, ExecutionTracker

logger = logging.getLogger(__name__)


class TimerHandle(Protocol):
    daemon: bool

    def start(self) -> None: ...

    def cancel(self) -> None: ...


TimerFactory = Callable[[float, Callable[[], None]], TimerHandle]
EventSource = Callable[[], Iterable[str]]


class StreamConsumer:
    """Apply one execution's event stream to its tracker.

    `connect` opens a new connection and returns an iterable of raw event
    payloads; it is called once per connection attempt. `timer_factory` has the
    `threading.Timer` signature and is replaced in tests to control reconnects.
    """

    def __init__(
        self,
        tracker: ExecutionTracker,
        connect: EventSource,
        *,
        interventions: InterventionCoordinator | None = None,
        auto_reconnect: bool = True,
        reconnect_delay_seconds: float = 5.0,
        timer_factory: TimerFactory = threading.Timer,
        clock: Callable[[], datetime] = lambda: datetime.now(UTC),
    ) -> None:
        if reconnect_delay_seconds <= 0:
            raise ValueError("reconnect_delay_seconds must be > 0")

        self._tracker = tracker
        self._connect = connect
        self._interventions = interventions
        self._auto_reconnect = auto_reconnect
        self._reconnect_delay = reconnect_delay_seconds
        self._timer_factory = timer_factory
        self._clock = clock

        self._lock = threading.Lock()
        self._cancelled = threading.Event()
        self._closed = threading.Event()
        self._reconnect_timer: TimerHandle | None = None
        self._thread: threading.Thread | None = None

        self._reading = False
        self.connected = False
        self.connection_id: str | None = None
        self.last_event_at: datetime | None = None

        tracker.add_listener(self._on_state_change)

    @property
    def execution_id(self) -> str:
        return self._tracker.execution_id

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()

    @property
    def reconnect_pending(self) -> bool:
        return self._reconnect_timer is not None

    def start(self) -> None:
        """Run the read loop on a background daemon thread."""

        thread = threading.Thread(
            target=self.run,
            name=f"event-stream-{self.execution_id}",
            daemon=True,
        )
        self._thread = thread
        thread.start()

    def join(self, timeout: float | None = None) -> None:
        if self._thread is not None:
            self._thread.join(timeout)

    def run(self) -> None:
        """Consume one connection until it ends, then handle the disconnect."""

        if self._cancelled.is_set():
            return
        self._reading = True
        self._closed.clear()
        try:
            for data in self._connect():
                if self._cancelled.is_set():
                    break
                self._handle(data)
                if self._tracker.snapshot.is_terminal:
                    break
        except requests.RequestException as e:
            logger.warning(
                "Event stream error",
                extra={"execution_id": self.execution_id, "error": str(e)},
            )
        finally:
            self._reading = False
            self._on_disconnect()

    def _handle(self, data: str) -> None:
        try:
            event = parse_event(data)
        except MalformedEventError as e:
            logger.warning(
                "Dropping malformed event",
                extra={"execution_id": self.execution_id, "error": str(e)},
            )
            return

        self.last_event_at = self._clock()

        if isinstance(event, Heartbeat):
            return
        if isinstance(event, ConnectionEstablished):
            self.connected = True
            self.connection_id = event.resolved_connection_id
            logger.info(
                "Event stream connected",
                extra={"execution_id": self.execution_id, "connection_id": self.connection_id},
            )
            return

        applied = self._tracker.apply(event)
        if applied and isinstance(event, InterventionRequired) and self._interventions:
            self._interventions.add(event.data)

    def _on_disconnect(self) -> None:
        self.connected = False
        state = self._tracker.snapshot
        if self._cancelled.is_set() or state.is_terminal:
            logger.info(
                "Event stream closed",
                extra={"execution_id": self.execution_id, "status": state.status.value},
            )
            self._closed.set()
            return
        if not self._auto_reconnect:
            logger.info(
                "Event stream lost; auto-reconnect disabled",
                extra={"execution_id": self.execution_id},
            )
            self._closed.set()
            return

        with self._lock:
            if self._reconnect_timer is not None:
                return
            timer = self._timer_factory(self._reconnect_delay, self._fire_reconnect)
            timer.daemon = True
            self._reconnect_timer = timer
        logger.info(
            "Event stream lost; reconnect scheduled",
            extra={"execution_id": self.execution_id, "delay_seconds": self._reconnect_delay},
        )
        timer.start()

    def _fire_reconnect(self) -> None:
        with self._lock:
            self._reconnect_timer = None
        if self._cancelled.is_set() or self._tracker.snapshot.is_terminal:
            return
        logger.info("Reconnecting event stream", extra={"execution_id": self.execution_id})
        self.run()

    def _cancel_reconnect(self) -> None:
        with self._lock:
            timer = self._reconnect_timer
            self._reconnect_timer = None
        if timer is not None:
            timer.cancel()
            logger.info("Pending reconnect cancelled", extra={"execution_id": self.execution_id})

    def _on_state_change(self, state: ExecutionState) -> None:
        if state.is_terminal:
            self._cancel_reconnect()
            if not self._reading:
                self._closed.set()

    def reconnect(self) -> bool:
        """Reconnect now, replacing any scheduled attempt. Only while disconnected."""

        if self._reading or self.connected or self._cancelled.is_set():
            return False
        if self._tracker.snapshot.is_terminal:
            return False
        self._cancel_reconnect()
        self.start()
        return True

    def cancel(self) -> None:
        """Stop consuming. An in-flight read is not aborted; its events are discarded."""

        self._cancelled.set()
        self._cancel_reconnect()
        self.connected = False
        self._closed.set()

    def wait_closed(self, timeout: float | None = None) -> bool:
        """Block until the consumer stops for good (terminal, cancelled or not reconnecting)."""

        return self._closed.wait(timeout)
