"""Workflow template domain.

This package holds the pure, synchronous side of the system:
- Template / agent / workflow configuration models
- The canonical workflow graph (virtual `start`/`end` nodes)
- Structural analysis (cycles, levels, critical path, reachability)
- The validation rule pipeline gating save/execute
"""

from __future__ import annotations

from agent_workflows.workflow.analysis import GraphAnalysis, analyze
from agent_workflows.workflow.graph import WorkflowGraph, build_graph
from agent_workflows.workflow.models import Agent, Template, WorkflowConfig
from agent_workflows.workflow.validation import (
    ValidationIssue,
    ValidationResult,
    validate_payload,
    validate_template,
)

__all__ = [
    "Agent",
    "GraphAnalysis",
    "Template",
    "ValidationIssue",
    "ValidationResult",
    "WorkflowConfig",
    "WorkflowGraph",
    "analyze",
    "build_graph",
    "validate_payload",
    "validate_template",
]
