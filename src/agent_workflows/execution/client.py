"""HTTP client for the execution control, intervention and stream endpoints.

This wraps `requests` so callers never build URLs or parse SSE framing
themselves, and so tests can inject a session double.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Iterator
from typing import Any

import requests

from agent_workflows.config import WorkflowSettings
from agent_workflows.execution.events import (
    ExecutionRequest,
    ExecutionResponse,
    ExecutionResult,
    InterventionResponse,
)

logger = logging.getLogger(__name__)


class AuthenticationRequired(RuntimeError):
    """No auth token is configured; raised before any network I/O."""


class ExecutionApiError(RuntimeError):
    """The execution API answered with an HTTP error status."""

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


def iter_sse_data(lines: Iterable[str | bytes]) -> Iterator[str]:
    """Yield the `data` payload of each server-sent event.

    Consecutive `data:` lines are joined with newlines and emitted on the
    blank line that ends the event. Comment lines (leading `:`) and other
    fields are skipped. An event cut off by end of stream is discarded.

    Byte lines are decoded as UTF-8, the only encoding event streams use. An
    event with a line that fails to decode is dropped whole.
    """

    buffer: list[str] = []
    undecodable = False
    for raw in lines:
        if isinstance(raw, bytes):
            try:
                line = raw.decode("utf-8")
            except UnicodeDecodeError as e:
                logger.warning("Dropping undecodable event line", extra={"error": str(e)})
                undecodable = True
                continue
        else:
            line = raw
        line = line.rstrip("\r\n")
        if not line:
            if buffer and not undecodable:
                yield "\n".join(buffer)
            buffer = []
            undecodable = False
            continue
        if line.startswith(":"):
            continue
        name, _, value = line.partition(":")
        if name != "data":
            continue
        buffer.append(value[1:] if value.startswith(" ") else value)


class ExecutionApiClient:
    """Small wrapper around the execution REST API and its event stream."""

    def __init__(
        self,
        *,
        base_url: str,
        token: str,
        timeout_seconds: float = 30.0,
        stream_read_timeout_seconds: float = 90.0,
        session: requests.Session | None = None,
    ) -> None:
        if not base_url.strip():
            raise ValueError("Execution API base URL is required")

        self._base_url = base_url.strip().rstrip("/")
        self._token = token.strip()
        self._timeout = timeout_seconds
        self._stream_read_timeout = stream_read_timeout_seconds
        self._session = session or requests.Session()

    @classmethod
    def from_settings(
        cls, settings: WorkflowSettings, *, session: requests.Session | None = None
    ) -> ExecutionApiClient:
        return cls(
            base_url=settings.api_base_url,
            token=settings.auth_token,
            timeout_seconds=settings.request_timeout_seconds,
            stream_read_timeout_seconds=settings.stream_read_timeout_seconds,
            session=session,
        )

    def close(self) -> None:
        self._session.close()

    def ensure_authenticated(self) -> None:
        if not self._token:
            raise AuthenticationRequired(
                "WORKFLOW_AUTH_TOKEN is required to call the execution API"
            )

    def _headers(self, *, accept: str = "application/json") -> dict[str, str]:
        return {
            "Authorization": f"Bearer {self._token}",
            "Accept": accept,
            "User-Agent": "agent-workflows",
        }

    def _request(self, method: str, path: str, *, payload: dict[str, Any] | None = None) -> Any:
        self.ensure_authenticated()
        url = f"{self._base_url}{path}"
        resp = self._session.request(
            method, url, json=payload, headers=self._headers(), timeout=self._timeout
        )
        try:
            resp.raise_for_status()
        except requests.HTTPError as e:
            raise ExecutionApiError(
                f"{method} {path} failed with status {resp.status_code}",
                status_code=resp.status_code,
            ) from e
        if not resp.content:
            return {}
        return resp.json()

    def start_execution(self, request: ExecutionRequest) -> ExecutionResponse:
        data = self._request(
            "POST", "/api/execute", payload=request.model_dump(mode="json", exclude_none=True)
        )
        response = ExecutionResponse.model_validate(data)
        logger.info(
            "Execution started",
            extra={"execution_id": response.execution_id, "template_id": request.template_id},
        )
        return response

    def get_execution(self, execution_id: str) -> ExecutionResult:
        data = self._request("GET", f"/api/executions/{execution_id}")
        return ExecutionResult.model_validate(data)

    def cancel_execution(self, execution_id: str) -> str:
        data = self._request("POST", f"/api/executions/{execution_id}/cancel")
        message = data.get("message", "") if isinstance(data, dict) else ""
        logger.info("Execution cancel requested", extra={"execution_id": execution_id})
        return str(message)

    def submit_intervention(self, response: InterventionResponse) -> None:
        self._request(
            "POST",
            "/api/interventions/respond",
            payload=response.model_dump(mode="json", exclude_none=True),
        )

    def stream_events(self, execution_id: str) -> Iterator[str]:
        """Open the event stream for `execution_id` and return its data payloads.

        The token check happens here, before the connection is attempted;
        transport errors surface from the returned iterator.
        """

        self.ensure_authenticated()
        return self._iter_stream(execution_id)

    def _iter_stream(self, execution_id: str) -> Iterator[str]:
        url = f"{self._base_url}/api/stream/execution/{execution_id}"
        # Browsers cannot set headers on an EventSource, so the server also
        # accepts the token as a query parameter.
        with self._session.get(
            url,
            params={"token": self._token},
            headers=self._headers(accept="text/event-stream"),
            stream=True,
            timeout=(self._timeout, self._stream_read_timeout),
        ) as resp:
            resp.raise_for_status()
            logger.debug("Event stream opened", extra={"execution_id": execution_id})
            yield from iter_sse_data(resp.iter_lines())
