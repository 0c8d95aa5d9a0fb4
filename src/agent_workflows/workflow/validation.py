"""Template validation pipeline.

`validate_template()` runs an ordered list of independent rule groups over a
template, its canonical graph and the analyzer results, and returns every
issue found. Rules never raise for content problems and never mutate their
input, so the same template always yields the same result.

Errors block save/execute; warnings are informational.
"""

from __future__ import annotations

from collections import Counter
from collections.abc import Callable, Iterable, Iterator, Mapping
from dataclasses import dataclass
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, ValidationError

from agent_workflows.workflow.analysis import GraphAnalysis, analyze
from agent_workflows.workflow.graph import WorkflowGraph, build_graph
from agent_workflows.workflow.models import (
    AGENT_TYPES,
    INTERVENTION_POINTS,
    INTERVENTION_TYPES,
    LLM_MODELS,
    VIRTUAL_NODES,
    Agent,
    CompletionStrategy,
    Template,
    ValidationStep,
    WorkflowConfig,
    WorkflowMode,
)

MAX_AGENTS = 5
NAME_MAX = 200
DESCRIPTION_MAX = 1000
AGENT_NAME_MAX = 100
SYSTEM_PROMPT_RANGE = (10, 2000)
USER_PROMPT_RANGE = (10, 1000)
AGENT_TIMEOUT_RANGE = (30, 3600)
RETRY_RANGE = (0, 3)
PRIORITY_RANGE = (1, 10)
TEMPERATURE_RANGE = (0.0, 2.0)
MAX_TOKENS_RANGE = (100, 4000)
HITL_TIMEOUT_RANGE = (30, 3600)
MAX_CONCURRENT_RANGE = (1, 10)
WORKFLOW_TIMEOUT_RANGE = (60, 7200)


class Severity(str, Enum):
    ERROR = "error"
    WARNING = "warning"


class IssueKind(str, Enum):
    REQUIRED = "required"
    LENGTH = "length"
    RANGE = "range"
    ENUM = "enum"
    FORMAT = "format"
    CUSTOM = "custom"


class ValidationIssue(BaseModel):
    model_config = ConfigDict(frozen=True)

    field: str
    message: str
    severity: Severity = Severity.ERROR
    kind: IssueKind = IssueKind.CUSTOM


class ValidationResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    is_valid: bool
    errors: list[ValidationIssue]
    warnings: list[ValidationIssue]

    @classmethod
    def from_issues(cls, issues: Iterable[ValidationIssue]) -> ValidationResult:
        collected = list(issues)
        errors = [i for i in collected if i.severity == Severity.ERROR]
        warnings = [i for i in collected if i.severity == Severity.WARNING]
        return cls(is_valid=not errors, errors=errors, warnings=warnings)


@dataclass(frozen=True, slots=True)
class ValidationSummary:
    has_errors: bool
    has_warnings: bool
    error_count: int
    warning_count: int


@dataclass(frozen=True, slots=True)
class _Context:
    template: Template
    graph: WorkflowGraph
    analysis: GraphAnalysis
    agent_ids: frozenset[str]
    configured: bool

    @property
    def agents(self) -> list[Agent]:
        return self.template.agents

    @property
    def workflow(self) -> WorkflowConfig:
        return self.template.workflow


Rule = Callable[[_Context], Iterator[ValidationIssue]]


def _error(field: str, message: str, kind: IssueKind = IssueKind.CUSTOM) -> ValidationIssue:
    return ValidationIssue(field=field, message=message, severity=Severity.ERROR, kind=kind)


def _warning(field: str, message: str) -> ValidationIssue:
    return ValidationIssue(field=field, message=message, severity=Severity.WARNING)


def _label(agent: Agent, index: int) -> str:
    return agent.name.strip() or agent.id or f"#{index + 1}"


def _in_range(value: float, bounds: tuple[float, float]) -> bool:
    return bounds[0] <= value <= bounds[1]


def is_workflow_configured(workflow: WorkflowConfig, agents: Iterable[Agent] = ()) -> bool:
    """Whether the user has started configuring the workflow layout.

    An untouched workflow is "not yet configured" and must not produce
    mode-structure errors.
    """

    if workflow.has_graph_edges() or workflow.sequence or workflow.parallel_groups:
        return True
    if workflow.conditions:
        return True
    if workflow.mode == WorkflowMode.CONDITIONAL:
        return any(agent.depends_on for agent in agents)
    return False


# 1. Structural


def _check_text(
    field: str, value: str, label: str, bounds: tuple[int, int]
) -> Iterator[ValidationIssue]:
    text = value.strip()
    if not text:
        yield _error(field, f"{label} is required", IssueKind.REQUIRED)
    elif not _in_range(len(text), bounds):
        yield _error(
            field,
            f"{label} must be between {bounds[0]} and {bounds[1]} characters",
            IssueKind.LENGTH,
        )


def _structural_agent(agent: Agent, index: int) -> Iterator[ValidationIssue]:
    prefix = f"agents[{index}]"
    label = _label(agent, index)

    if not agent.id.strip():
        yield _error(f"{prefix}.id", "Agent id is required", IssueKind.REQUIRED)

    yield from _check_text(f"{prefix}.name", agent.name, "Agent name", (1, AGENT_NAME_MAX))
    if agent.type not in AGENT_TYPES:
        yield _error(
            f"{prefix}.type",
            f"Agent type must be one of: {', '.join(AGENT_TYPES)}",
            IssueKind.ENUM,
        )
    yield from _check_text(
        f"{prefix}.system_prompt", agent.system_prompt, "System prompt", SYSTEM_PROMPT_RANGE
    )
    yield from _check_text(
        f"{prefix}.user_prompt", agent.user_prompt, "User prompt", USER_PROMPT_RANGE
    )

    if not _in_range(agent.timeout_seconds, AGENT_TIMEOUT_RANGE):
        yield _error(
            f"{prefix}.timeout_seconds",
            f'Agent "{label}" timeout must be between 30 and 3600 seconds',
            IssueKind.RANGE,
        )
    if not _in_range(agent.retry_count, RETRY_RANGE):
        yield _error(
            f"{prefix}.retry_count", "Retry count must be between 0 and 3", IssueKind.RANGE
        )
    if not _in_range(agent.priority, PRIORITY_RANGE):
        yield _error(f"{prefix}.priority", "Priority must be between 1 and 10", IssueKind.RANGE)

    llm = agent.llm_config
    if llm.model not in LLM_MODELS:
        yield _error(
            f"{prefix}.llm_config.model",
            f"Model must be one of: {', '.join(LLM_MODELS)}",
            IssueKind.ENUM,
        )
    if not _in_range(llm.temperature, TEMPERATURE_RANGE):
        yield _error(
            f"{prefix}.llm_config.temperature",
            "Temperature must be between 0 and 2",
            IssueKind.RANGE,
        )
    if not _in_range(llm.max_tokens, MAX_TOKENS_RANGE):
        yield _error(
            f"{prefix}.llm_config.max_tokens",
            "Max tokens must be between 100 and 4000",
            IssueKind.RANGE,
        )

    hitl = agent.hitl_config
    if hitl is None or not hitl.enabled:
        return
    if not _in_range(hitl.timeout_seconds, HITL_TIMEOUT_RANGE):
        yield _error(
            f"{prefix}.hitl_config.timeout_seconds",
            "HITL timeout must be between 30 and 3600 seconds",
            IssueKind.RANGE,
        )
    if hitl.intervention_type not in INTERVENTION_TYPES:
        yield _error(
            f"{prefix}.hitl_config.intervention_type",
            f"Intervention type must be one of: {', '.join(INTERVENTION_TYPES)}",
            IssueKind.ENUM,
        )
    unknown_points = [p for p in hitl.intervention_points if p not in INTERVENTION_POINTS]
    if unknown_points:
        yield _error(
            f"{prefix}.hitl_config.intervention_points",
            f"Unknown intervention points: {', '.join(unknown_points)}",
            IssueKind.ENUM,
        )


def _structural(ctx: _Context) -> Iterator[ValidationIssue]:
    template = ctx.template
    yield from _check_text("name", template.name, "Template name", (1, NAME_MAX))
    yield from _check_text(
        "description", template.description, "Template description", (1, DESCRIPTION_MAX)
    )

    if not ctx.agents:
        yield _error("agents", "At least one agent is required", IssueKind.REQUIRED)
    elif len(ctx.agents) > MAX_AGENTS:
        yield _error(
            "agents", f"Template cannot have more than {MAX_AGENTS} agents", IssueKind.RANGE
        )

    id_counts = Counter(a.id for a in ctx.agents if a.id)
    name_counts = Counter(a.name.strip().lower() for a in ctx.agents if a.name.strip())
    for index, agent in enumerate(ctx.agents):
        yield from _structural_agent(agent, index)
        if agent.id and id_counts[agent.id] > 1:
            yield _error(f"agents[{index}].id", f"Duplicate agent id: {agent.id}")
        if agent.name.strip() and name_counts[agent.name.strip().lower()] > 1:
            yield _error(f"agents[{index}].name", "Agent names must be unique")

    if not _in_range(ctx.workflow.max_concurrent_agents, MAX_CONCURRENT_RANGE):
        yield _error(
            "workflow.max_concurrent_agents",
            "Max concurrent agents must be between 1 and 10",
            IssueKind.RANGE,
        )


# 2. Dependency references


def _dependency_references(ctx: _Context) -> Iterator[ValidationIssue]:
    for index, agent in enumerate(ctx.agents):
        for dep in agent.depends_on:
            if dep not in ctx.agent_ids:
                yield _error(
                    f"agents[{index}].depends_on",
                    f'Agent "{_label(agent, index)}" depends on non-existent agent ID: {dep}',
                )

    structure = ctx.workflow.graph_structure
    if structure is None:
        return
    known = ctx.agent_ids | VIRTUAL_NODES
    for index, edge in enumerate(structure.edges):
        for endpoint in (edge.from_node, edge.to_node):
            if endpoint not in known:
                yield _error(
                    f"workflow.graph_structure.edges[{index}]",
                    f"Edge {edge.edge_id or index} references unknown node: {endpoint}",
                )
    if structure.entry_point and structure.entry_point not in ctx.agent_ids:
        yield _error(
            "workflow.graph_structure.entry_point",
            f"Entry point is not an agent: {structure.entry_point}",
        )


# 3. Self-dependency


def _self_dependency(ctx: _Context) -> Iterator[ValidationIssue]:
    for index, agent in enumerate(ctx.agents):
        if agent.id and agent.id in agent.depends_on:
            yield _error(
                f"agents[{index}].depends_on",
                f'Agent "{_label(agent, index)}" cannot depend on itself',
            )


# 4. Cycles and reachability


def _cycles(ctx: _Context) -> Iterator[ValidationIssue]:
    if ctx.workflow.mode != WorkflowMode.CONDITIONAL or not ctx.analysis.has_cycle:
        return
    yield _error(
        "workflow.conditions",
        "Circular dependencies detected between agents: "
        + ", ".join(ctx.analysis.cycles.nodes),
    )


def _reachability(ctx: _Context) -> Iterator[ValidationIssue]:
    unreachable = set(ctx.analysis.unreachable)
    if not unreachable:
        return
    for index, agent in enumerate(ctx.agents):
        if agent.id in unreachable:
            unreachable.discard(agent.id)
            yield _warning(
                f"agents[{index}]",
                f'Agent "{_label(agent, index)}" is not reachable from the entry point',
            )


# 5. Mode consistency

_LEGACY_FIELDS: Mapping[WorkflowMode, str] = {
    WorkflowMode.SEQUENTIAL: "sequence",
    WorkflowMode.PARALLEL: "parallel_groups",
    WorkflowMode.CONDITIONAL: "conditions",
}


def _sequence_integrity(ctx: _Context) -> Iterator[ValidationIssue]:
    sequence = ctx.workflow.sequence
    unknown = [a for a in sequence if a not in ctx.agent_ids]
    if unknown:
        yield _error(
            "workflow.sequence", f"Sequence references unknown agents: {', '.join(unknown)}"
        )
    duplicates = [a for a, n in Counter(sequence).items() if n > 1]
    if duplicates:
        yield _error(
            "workflow.sequence", f"Sequence lists agents more than once: {', '.join(duplicates)}"
        )
    listed = set(sequence)
    missing = [a.id for a in ctx.agents if a.id and a.id not in listed]
    if missing:
        yield _error(
            "workflow.sequence", f"Sequence must include all agents: {', '.join(missing)}"
        )


def _mode_consistency(ctx: _Context) -> Iterator[ValidationIssue]:
    if not ctx.agents or not ctx.configured:
        return

    workflow = ctx.workflow
    mode = workflow.mode
    title = mode.value.capitalize()

    for other_mode, field_name in _LEGACY_FIELDS.items():
        if other_mode != mode and getattr(workflow, field_name):
            yield _warning(
                f"workflow.{field_name}", f"{title} mode ignores {field_name} configuration"
            )

    if mode != WorkflowMode.CONDITIONAL and len(ctx.agents) < 2:
        yield _warning("workflow.mode", f"{title} workflows work best with 2+ agents")

    has_edges = workflow.has_graph_edges()
    if mode == WorkflowMode.SEQUENTIAL:
        if not has_edges and not workflow.sequence:
            yield _error(
                "workflow.sequence",
                "Sequential workflow requires an agent sequence or edge configuration",
                IssueKind.REQUIRED,
            )
        if workflow.sequence:
            yield from _sequence_integrity(ctx)
    elif mode == WorkflowMode.PARALLEL:
        if not has_edges and not workflow.parallel_groups:
            yield _error(
                "workflow.parallel_groups",
                "Parallel workflow requires parallel_groups or edge configuration",
                IssueKind.REQUIRED,
            )
    else:
        if not has_edges and not workflow.conditions and not any(
            a.depends_on for a in ctx.agents
        ):
            yield _error(
                "workflow.graph_structure",
                "Conditional workflow requires edge configuration",
                IssueKind.REQUIRED,
            )

    structure = workflow.graph_structure
    if has_edges and structure is not None:
        if not structure.entry_point:
            yield _error(
                "workflow.graph_structure.entry_point",
                f"{title} workflow requires an entry point",
                IssueKind.REQUIRED,
            )
        if mode == WorkflowMode.PARALLEL and not ctx.graph.exit_points:
            yield _error(
                "workflow.graph_structure.exit_points",
                "Parallel workflow requires at least one exit point",
                IssueKind.REQUIRED,
            )


# 6. Completion strategy


def _completion_strategy(ctx: _Context) -> Iterator[ValidationIssue]:
    workflow = ctx.workflow
    strategy = workflow.completion_strategy
    agent_count = len(ctx.agents)

    if strategy == CompletionStrategy.THRESHOLD:
        required = workflow.required_completions
        if required is None:
            yield _error(
                "workflow.required_completions",
                "Threshold strategy requires required_completions to be set",
                IssueKind.REQUIRED,
            )
        elif required < 1:
            yield _error(
                "workflow.required_completions",
                "Required completions must be at least 1",
                IssueKind.RANGE,
            )
        elif required > agent_count:
            yield _error(
                "workflow.required_completions",
                f"Required completions ({required}) cannot exceed total agents ({agent_count})",
                IssueKind.RANGE,
            )
    elif strategy in (CompletionStrategy.MAJORITY, CompletionStrategy.FIRST_SUCCESS):
        if agent_count < 1:
            yield _error(
                "workflow.completion_strategy",
                f"{strategy.value} strategy requires at least 1 agent",
            )

    if strategy == CompletionStrategy.FIRST_SUCCESS and workflow.mode != WorkflowMode.PARALLEL:
        yield _error(
            "workflow.completion_strategy",
            "First success strategy only valid with parallel mode",
        )


# 7. Parallel groups


def _parallel_groups(ctx: _Context) -> Iterator[ValidationIssue]:
    workflow = ctx.workflow
    if workflow.mode != WorkflowMode.PARALLEL or not ctx.agents:
        return

    agent_count = len(ctx.agents)
    if workflow.max_concurrent_agents > agent_count:
        yield _error(
            "workflow.max_concurrent_agents",
            f"Max concurrent agents ({workflow.max_concurrent_agents}) "
            f"cannot exceed total agents ({agent_count})",
            IssueKind.RANGE,
        )

    groups = workflow.parallel_groups
    if not groups:
        return

    members = [agent_id for group in groups for agent_id in group]
    if len(members) != len(set(members)):
        yield _error("workflow.parallel_groups", "Agents cannot appear in multiple parallel groups")

    unknown = [a for a in dict.fromkeys(members) if a not in ctx.agent_ids]
    if unknown:
        yield _error(
            "workflow.parallel_groups",
            f"Parallel groups reference unknown agents: {', '.join(unknown)}",
        )

    grouped = set(members)
    missing = [a.id for a in ctx.agents if a.id and a.id not in grouped]
    if missing:
        yield _error(
            "workflow.parallel_groups", f"Agents not assigned to groups: {', '.join(missing)}"
        )

    for index, group in enumerate(groups):
        if not group:
            yield _error(
                f"workflow.parallel_groups[{index}]",
                f"Parallel group {index + 1} cannot be empty",
            )


# 8. Timeouts


def _timeouts(ctx: _Context) -> Iterator[ValidationIssue]:
    workflow_timeout = ctx.workflow.timeout_seconds
    low, high = WORKFLOW_TIMEOUT_RANGE
    if workflow_timeout < low:
        yield _error(
            "workflow.timeout_seconds",
            f"Workflow timeout must be at least {low} seconds",
            IssueKind.RANGE,
        )
    elif workflow_timeout > high:
        yield _error(
            "workflow.timeout_seconds",
            f"Workflow timeout cannot exceed {high} seconds (2 hours)",
            IssueKind.RANGE,
        )

    for index, agent in enumerate(ctx.agents):
        if agent.timeout_seconds >= workflow_timeout:
            yield _error(
                f"agents[{index}].timeout_seconds",
                f'Agent "{_label(agent, index)}" timeout ({agent.timeout_seconds}s) '
                f"must be less than workflow timeout ({workflow_timeout}s)",
                IssueKind.RANGE,
            )

    if ctx.workflow.mode == WorkflowMode.SEQUENTIAL and ctx.agents:
        total = sum(agent.timeout_seconds for agent in ctx.agents)
        if total >= workflow_timeout:
            yield _error(
                "workflow.timeout_seconds",
                f"Workflow timeout ({workflow_timeout}s) must exceed "
                f"sum of agent timeouts ({total}s)",
                IssueKind.RANGE,
            )


# 9. HITL conflicts


def _hitl_conflicts(ctx: _Context) -> Iterator[ValidationIssue]:
    workflow = ctx.workflow
    strategy = workflow.completion_strategy
    hitl_count = sum(1 for a in ctx.agents if a.hitl_enabled)

    for index, agent in enumerate(ctx.agents):
        hitl = agent.hitl_config
        if hitl is None or not hitl.enabled:
            continue
        prefix = f"agents[{index}].hitl_config"
        label = _label(agent, index)

        if hitl.timeout_seconds >= workflow.timeout_seconds:
            yield _error(
                f"{prefix}.timeout_seconds",
                f'Agent "{label}" HITL timeout must be less than workflow timeout',
                IssueKind.RANGE,
            )
        if strategy == CompletionStrategy.FIRST_SUCCESS:
            yield _warning(
                prefix, f'Agent "{label}" HITL may never trigger with "first_success" strategy'
            )
            if "after_execution" in hitl.intervention_points:
                yield _warning(
                    f"{prefix}.intervention_points",
                    f'Agent "{label}" after_execution HITL incompatible with '
                    "first_success strategy",
                )
        if strategy == CompletionStrategy.ANY and hitl_count > 1:
            yield _warning(
                prefix, 'Multiple HITL agents with "any" completion strategy may cause conflicts'
            )


RULES: tuple[Rule, ...] = (
    _structural,
    _dependency_references,
    _self_dependency,
    _cycles,
    _reachability,
    _mode_consistency,
    _completion_strategy,
    _parallel_groups,
    _timeouts,
    _hitl_conflicts,
)


def validate_template(template: Template) -> ValidationResult:
    graph = build_graph(template.agents, template.workflow)
    ctx = _Context(
        template=template,
        graph=graph,
        analysis=analyze(graph, template.agents),
        agent_ids=frozenset(a.id for a in template.agents if a.id),
        configured=is_workflow_configured(template.workflow, template.agents),
    )
    return ValidationResult.from_issues(issue for rule in RULES for issue in rule(ctx))


def _field_path(loc: tuple[int | str, ...]) -> str:
    path = ""
    for part in loc:
        if isinstance(part, int):
            path += f"[{part}]"
        else:
            path = f"{path}.{part}" if path else str(part)
    return path


def validate_payload(raw: Mapping[str, Any]) -> ValidationResult:
    """Validate untrusted template JSON.

    Input that does not even parse into a :class:`Template` is reported as
    errors rather than raised.
    """

    try:
        template = Template.model_validate(raw)
    except ValidationError as exc:
        issues = [
            _error(
                _field_path(tuple(err["loc"])) or "template",
                err["msg"],
                IssueKind.REQUIRED if err["type"] == "missing" else IssueKind.FORMAT,
            )
            for err in exc.errors()
        ]
        return ValidationResult.from_issues(issues)
    return validate_template(template)


def validate_field(template: Template, field: str) -> list[ValidationIssue]:
    """Errors whose field path starts with `field`."""

    return [e for e in validate_template(template).errors if e.field.startswith(field)]


def validation_summary(template: Template) -> ValidationSummary:
    result = validate_template(template)
    return ValidationSummary(
        has_errors=not result.is_valid,
        has_warnings=bool(result.warnings),
        error_count=len(result.errors),
        warning_count=len(result.warnings),
    )


def can_proceed_to_step(template: Template, step: ValidationStep | str) -> bool:
    result = validate_template(template)

    def blocked(*prefixes: str) -> bool:
        return any(e.field.startswith(prefixes) for e in result.errors)

    if step == "basic":
        return not blocked("name", "description")
    if step == "agents":
        return bool(template.agents) and not blocked("agents")
    if step == "workflow":
        return bool(template.agents) and not blocked("workflow")
    if step == "preview":
        return result.is_valid
    return False
