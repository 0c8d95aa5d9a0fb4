"""Agent Workflows.

Validation and structural analysis for multi-agent workflow templates, plus
live tracking of their executions:
- template models, graph building and dependency analysis
- an ordered validation engine that always returns a result
- an execution tracker fed by a reconnecting event stream
"""

__version__ = "0.1.0"

from agent_workflows.config import WorkflowSettings

__all__ = ["__version__", "WorkflowSettings"]
