"""CLI entrypoint: validate templates, inspect graphs, track executions, serve the API."""

from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import Any

import uvicorn
from pydantic import ValidationError

from agent_workflows import __version__
from agent_workflows.config import WorkflowSettings
from agent_workflows.execution.client import (
    AuthenticationRequired,
    ExecutionApiClient,
    ExecutionApiError,
)
from agent_workflows.execution.events import WorkflowStatus
from agent_workflows.execution.monitor import ExecutionMonitor
from agent_workflows.execution.tracker import ExecutionState
from agent_workflows.logging import configure_logging
from agent_workflows.server.app import create_app
from agent_workflows.server.config import ServerSettings
from agent_workflows.workflow.analysis import analyze
from agent_workflows.workflow.graph import build_graph, detect_workflow_mode
from agent_workflows.workflow.models import Template
from agent_workflows.workflow.validation import ValidationResult, validate_payload

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_INVALID = 1
EXIT_USAGE = 2
EXIT_INCOMPLETE = 3


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="agent-workflows",
        description="Validate multi-agent workflow templates and track their executions",
    )
    parser.add_argument("--version", action="version", version=f"agent-workflows {__version__}")

    subparsers = parser.add_subparsers(dest="command", required=True)

    validate = subparsers.add_parser("validate", help="Validate a template JSON file")
    validate.add_argument("file", type=Path, help="Path to the template JSON file")
    validate.add_argument(
        "--json",
        dest="as_json",
        action="store_true",
        help="Print the full validation result as JSON",
    )

    graph = subparsers.add_parser(
        "graph", help="Print the canonical graph and its structural analysis"
    )
    graph.add_argument("file", type=Path, help="Path to the template JSON file")

    watch = subparsers.add_parser("watch", help="Stream an execution until it finishes")
    watch.add_argument("execution_id", help="Execution id returned when the run was started")
    watch.add_argument(
        "--no-reconnect",
        action="store_true",
        help="Do not reconnect if the event stream drops",
    )

    cancel = subparsers.add_parser("cancel", help="Cancel a running execution")
    cancel.add_argument("execution_id", help="Execution id to cancel")

    serve = subparsers.add_parser("serve", help="Run the template validation REST API")
    serve.add_argument("--host", help="Bind address (default: WORKFLOW_SERVER_HOST or 127.0.0.1)")
    serve.add_argument(
        "--port", type=int, help="Bind port (default: WORKFLOW_SERVER_PORT or 8000)"
    )

    return parser


def _load_json(path: Path) -> Any:
    return json.loads(path.read_text(encoding="utf-8"))


def _print_result(result: ValidationResult) -> None:
    for issue in result.errors:
        print(f"error    {issue.field}: {issue.message}")
    for issue in result.warnings:
        print(f"warning  {issue.field}: {issue.message}")
    verdict = "valid" if result.is_valid else "invalid"
    print(
        f"Template is {verdict} "
        f"({len(result.errors)} error(s), {len(result.warnings)} warning(s))"
    )


def _run_validate(args: argparse.Namespace) -> int:
    result = validate_payload(_load_json(args.file))
    if args.as_json:
        print(json.dumps(result.model_dump(mode="json"), indent=2, ensure_ascii=False))
    else:
        _print_result(result)
    return EXIT_OK if result.is_valid else EXIT_INVALID


def _run_graph(args: argparse.Namespace) -> int:
    try:
        template = Template.model_validate(_load_json(args.file))
    except ValidationError as e:
        print(f"Template could not be parsed: {e}", file=sys.stderr)
        return EXIT_INVALID

    graph = build_graph(template.agents, template.workflow)
    structure = graph.to_structure()
    payload = {
        "graph": structure.model_dump(mode="json"),
        "detected_mode": detect_workflow_mode(structure.edges, structure.exit_points),
        "analysis": analyze(graph, template.agents).to_json(),
    }
    print(json.dumps(payload, indent=2, ensure_ascii=False))
    return EXIT_OK


def _print_state(state: ExecutionState) -> None:
    agents = ", ".join(f"{a.agent_id}={a.status.value}" for a in state.agents.values())
    print(
        f"[{state.status.value}] progress={state.progress_percentage:.0f}% "
        f"cost={state.total_cost:.4f} tokens={state.total_tokens} agents: {agents or '-'}"
    )


def _run_watch(args: argparse.Namespace, settings: WorkflowSettings) -> int:
    monitor = ExecutionMonitor(
        ExecutionApiClient.from_settings(settings),
        auto_reconnect=settings.auto_reconnect and not args.no_reconnect,
        reconnect_delay_seconds=settings.reconnect_delay_seconds,
    )

    watched = monitor.watch(args.execution_id, background=True)
    watched.tracker.add_listener(_print_state)
    try:
        watched.consumer.wait_closed()
    except KeyboardInterrupt:
        monitor.stop()
        print("Stopped watching (execution keeps running)", file=sys.stderr)
        return EXIT_INCOMPLETE

    state = watched.tracker.snapshot
    print(json.dumps(state.to_json(), indent=2, ensure_ascii=False))
    if state.status == WorkflowStatus.COMPLETED:
        return EXIT_OK
    if state.is_terminal:
        return EXIT_INVALID
    return EXIT_INCOMPLETE


def _run_cancel(args: argparse.Namespace, settings: WorkflowSettings) -> int:
    client = ExecutionApiClient.from_settings(settings)
    try:
        message = client.cancel_execution(args.execution_id)
    finally:
        client.close()
    print(message or f"Cancellation requested for {args.execution_id}")
    return EXIT_OK


def _run_serve(args: argparse.Namespace, settings: WorkflowSettings) -> int:
    server_settings = ServerSettings()
    host = args.host or server_settings.host
    port = args.port if args.port is not None else server_settings.port
    logger.info("Starting API server", extra={"host": host, "port": port})
    uvicorn.run(create_app(), host=host, port=port, log_level=settings.log_level.lower())
    return EXIT_OK


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        settings = WorkflowSettings()
    except ValidationError as e:
        # Logging isn't configured yet; keep it simple and actionable.
        print("Configuration error (check your .env):", file=sys.stderr)
        print(e, file=sys.stderr)
        return EXIT_USAGE

    configure_logging(settings.log_level)

    try:
        if args.command == "validate":
            return _run_validate(args)
        if args.command == "graph":
            return _run_graph(args)
        if args.command == "watch":
            return _run_watch(args, settings)
        if args.command == "cancel":
            return _run_cancel(args, settings)
        if args.command == "serve":
            return _run_serve(args, settings)

        logger.error("Unknown command", extra={"command": args.command})
        return EXIT_USAGE

    except (OSError, json.JSONDecodeError) as e:
        print(f"Could not read template: {e}", file=sys.stderr)
        return EXIT_USAGE

    except AuthenticationRequired as e:
        print(str(e), file=sys.stderr)
        return EXIT_USAGE

    except ExecutionApiError as e:
        logger.error(str(e), extra={"status_code": e.status_code})
        print(str(e), file=sys.stderr)
        return EXIT_INVALID

    except Exception:
        logger.exception("Command failed")
        return EXIT_INVALID


if __name__ == "__main__":
    raise SystemExit(main())
