#!/usr/bin/env python3
"""Programmatic template validation example.

This demonstrates using the workflow components directly:

* build a small conditional template in code
* validate it and print any errors or warnings
* print the critical path and level grouping of its dependency graph
"""

from __future__ import annotations

import argparse
from typing import Sequence

from agent_workflows.config import WorkflowSettings
from agent_workflows.logging import configure_logging
from agent_workflows.workflow.analysis import analyze
from agent_workflows.workflow.graph import build_graph
from agent_workflows.workflow.models import Agent, Template, WorkflowConfig, WorkflowMode
from agent_workflows.workflow.validation import validate_template


def _parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Validate an example template.")
    parser.add_argument(
        "--timeout",
        type=int,
        default=3600,
        help="Workflow timeout in seconds (default: 3600)",
    )
    return parser.parse_args(argv)


def _agent(agent_id: str, name: str, timeout: int, depends_on: list[str]) -> Agent:
    return Agent(
        id=agent_id,
        name=name,
        system_prompt="You are a careful research assistant.",
        user_prompt="Summarise the findings for the query.",
        timeout_seconds=timeout,
        depends_on=depends_on,
    )


def main(argv: Sequence[str] | None = None) -> int:
    args = _parse_args(argv)

    settings = WorkflowSettings()
    configure_logging(settings.log_level)

    template = Template(
        name="Market scan",
        description="Research, analyse and synthesise a market overview.",
        agents=[
            _agent("research", "Researcher", 1800, []),
            _agent("analysis", "Analyst", 1200, ["research"]),
            _agent("summary", "Writer", 600, ["research"]),
        ],
        workflow=WorkflowConfig(mode=WorkflowMode.CONDITIONAL, timeout_seconds=args.timeout),
    )

    result = validate_template(template)
    for issue in result.errors:
        print(f"error    {issue.field}: {issue.message}")
    for issue in result.warnings:
        print(f"warning  {issue.field}: {issue.message}")
    print(f"Valid: {result.is_valid}")

    analysis = analyze(build_graph(template.agents, template.workflow), template.agents)
    path = analysis.critical_path
    print(f"Critical path: {' -> '.join(path.nodes)} ({path.length_minutes:.0f} min)")
    for level, nodes in enumerate(analysis.nodes_by_level()):
        print(f"Level {level}: {', '.join(nodes)}")
    return 0 if result.is_valid else 1


if __name__ == "__main__":
    raise SystemExit(main())
