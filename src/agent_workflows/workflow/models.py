"""Template, agent and workflow configuration models.

These mirror the persisted template JSON. Field values are deliberately left
unconstrained here: range and enum checks belong to the validation engine so
that a half-edited template still parses and can be reported on.
"""

from __future__ import annotations

from enum import Enum
from typing import Literal

from pydantic import BaseModel, Field

START_NODE = "start"
END_NODE = "end"
VIRTUAL_NODES: frozenset[str] = frozenset({START_NODE, END_NODE})


class WorkflowMode(str, Enum):
    SEQUENTIAL = "sequential"
    PARALLEL = "parallel"
    CONDITIONAL = "conditional"


class CompletionStrategy(str, Enum):
    ALL = "all"
    MAJORITY = "majority"
    ANY = "any"
    THRESHOLD = "threshold"
    FIRST_SUCCESS = "first_success"


class ConditionType(str, Enum):
    ALWAYS = "always"
    SUCCESS = "success"
    FAILURE = "failure"
    CUSTOM = "custom"


AGENT_TYPES: tuple[str, ...] = ("research", "analysis", "synthesis", "validation")
LLM_MODELS: tuple[str, ...] = ("gpt-4", "gpt-3.5-turbo", "gpt-4-turbo")
INTERVENTION_TYPES: tuple[str, ...] = ("approval", "input", "review", "modify", "decision")
INTERVENTION_POINTS: tuple[str, ...] = (
    "before_execution",
    "after_execution",
    "on_error",
    "conditional",
)


class LLMConfig(BaseModel):
    model: str = "gpt-4"
    temperature: float = 0.7
    max_tokens: int = 2000


class HITLConfig(BaseModel):
    """Human-in-the-loop settings for a single agent."""

    enabled: bool = False
    intervention_points: list[str] = Field(default_factory=list)
    intervention_type: str = "approval"
    timeout_seconds: int = 300
    auto_approve_after_timeout: bool = False


class Agent(BaseModel):
    """A single agent in a template.

    `id` may be a temporary client-side identifier until the template is saved.
    `depends_on` is only consulted in conditional mode.
    """

    id: str
    name: str = ""
    type: str = "research"
    system_prompt: str = ""
    user_prompt: str = ""
    llm_config: LLMConfig = Field(default_factory=LLMConfig)
    timeout_seconds: int = 300
    retry_count: int = 1
    priority: int = 1
    depends_on: list[str] = Field(default_factory=list)
    hitl_config: HITLConfig | None = None

    @property
    def hitl_enabled(self) -> bool:
        return self.hitl_config is not None and self.hitl_config.enabled


class Edge(BaseModel):
    """A directed edge in the persisted graph shape."""

    from_node: str
    to_node: str
    condition_type: ConditionType = ConditionType.ALWAYS
    condition: str | None = None
    edge_id: str
    weight: float = 1.0


class GraphStructure(BaseModel):
    """Persisted graph JSON: the exact shape the template store reads and writes."""

    nodes: list[str] = Field(default_factory=list)
    edges: list[Edge] = Field(default_factory=list)
    entry_point: str | None = None
    exit_points: list[str] = Field(default_factory=list)
    graph_id: str = ""
    version: str = "1.0"


class WorkflowConfig(BaseModel):
    mode: WorkflowMode = WorkflowMode.SEQUENTIAL

    # Legacy, mode-specific layouts. Only the field matching `mode` is honoured.
    sequence: list[str] = Field(default_factory=list)
    parallel_groups: list[list[str]] = Field(default_factory=list)
    conditions: dict[str, object] = Field(default_factory=dict)

    graph_structure: GraphStructure | None = None

    max_concurrent_agents: int = 3
    completion_strategy: CompletionStrategy = CompletionStrategy.ALL
    required_completions: int | None = None
    timeout_seconds: int = 1800
    continue_on_failure: bool = False

    def has_graph_edges(self) -> bool:
        return self.graph_structure is not None and len(self.graph_structure.edges) > 0


class Template(BaseModel):
    name: str = ""
    description: str = ""
    agents: list[Agent] = Field(default_factory=list)
    workflow: WorkflowConfig = Field(default_factory=WorkflowConfig)


ValidationStep = Literal["basic", "agents", "workflow", "preview"]
