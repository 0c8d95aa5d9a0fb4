"""Unit tests for the template validation pipeline."""

from __future__ import annotations

from agent_workflows.workflow.models import (
    CompletionStrategy,
    Edge,
    GraphStructure,
    HITLConfig,
    WorkflowMode,
)
from agent_workflows.workflow.validation import (
    IssueKind,
    Severity,
    can_proceed_to_step,
    validate_field,
    validate_payload,
    validate_template,
    validation_summary,
)


def _fields(issues) -> list[str]:
    return [i.field for i in issues]


def test_complete_template_is_valid(make_template) -> None:
    result = validate_template(make_template())

    assert result.is_valid
    assert result.errors == []
    assert result.warnings == []


def test_threshold_cannot_exceed_agent_count(make_template) -> None:
    template = make_template(
        completion_strategy=CompletionStrategy.THRESHOLD, required_completions=5
    )

    result = validate_template(template)

    assert not result.is_valid
    issue = next(e for e in result.errors if e.field == "workflow.required_completions")
    assert issue.message == "Required completions (5) cannot exceed total agents (3)"
    assert issue.kind == IssueKind.RANGE


def test_threshold_requires_required_completions(make_template) -> None:
    result = validate_template(make_template(completion_strategy=CompletionStrategy.THRESHOLD))

    assert "workflow.required_completions" in _fields(result.errors)


def test_sequential_timeout_must_exceed_sum_of_agents(make_agent, make_template) -> None:
    agents = [make_agent(i, timeout_seconds=100) for i in ("a", "b", "c")]

    result = validate_template(make_template(agents, timeout_seconds=250))

    messages = [e.message for e in result.errors if e.field == "workflow.timeout_seconds"]
    assert messages == ["Workflow timeout (250s) must exceed sum of agent timeouts (300s)"]


def test_agent_timeout_must_be_below_workflow_timeout(make_agent, make_template) -> None:
    agents = [make_agent("a", timeout_seconds=900), make_agent("b")]

    result = validate_template(
        make_template(agents, mode=WorkflowMode.PARALLEL, timeout_seconds=900)
    )

    assert "agents[0].timeout_seconds" in _fields(result.errors)


def test_self_dependency_names_the_agent(make_agent, make_template) -> None:
    agents = [make_agent("a", name="A"), make_agent("b", name="B", depends_on=["b"])]

    result = validate_template(make_template(agents))

    issue = next(e for e in result.errors if e.field == "agents[1].depends_on")
    assert issue.message == 'Agent "B" cannot depend on itself'


def test_unknown_dependency_is_an_error(make_agent, make_template) -> None:
    agents = [make_agent("a"), make_agent("b", depends_on=["ghost"])]

    result = validate_template(make_template(agents, mode=WorkflowMode.CONDITIONAL))

    issue = next(e for e in result.errors if e.field == "agents[1].depends_on")
    assert "ghost" in issue.message


def test_cycle_reported_in_conditional_mode(make_agent, make_template) -> None:
    agents = [make_agent("a", depends_on=["b"]), make_agent("b", depends_on=["a"])]

    result = validate_template(make_template(agents, mode=WorkflowMode.CONDITIONAL))

    issue = next(e for e in result.errors if e.field == "workflow.conditions")
    assert issue.message == "Circular dependencies detected between agents: a, b"


def test_validation_is_deterministic(make_agent, make_template) -> None:
    agents = [
        make_agent("a", depends_on=["b"], name=""),
        make_agent("b", depends_on=["a", "b"], timeout_seconds=5),
    ]
    template = make_template(agents, mode=WorkflowMode.CONDITIONAL, timeout_seconds=30)

    first = validate_template(template).model_dump_json()
    second = validate_template(template).model_dump_json()

    assert first == second


def test_unconfigured_mode_has_no_structure_errors(make_template) -> None:
    result = validate_template(make_template(mode=WorkflowMode.PARALLEL))

    assert result.is_valid
    assert not [f for f in _fields(result.errors) if f.startswith("workflow.parallel_groups")]


def test_configured_parallel_requires_complete_groups(make_template) -> None:
    result = validate_template(
        make_template(mode=WorkflowMode.PARALLEL, parallel_groups=[["a", "ghost"], []])
    )

    messages = [e.message for e in result.errors if e.field.startswith("workflow.parallel_groups")]
    assert "Parallel groups reference unknown agents: ghost" in messages
    assert "Agents not assigned to groups: b, c" in messages
    assert "Parallel group 2 cannot be empty" in messages


def test_wrong_mode_legacy_field_is_a_warning(make_template) -> None:
    result = validate_template(
        make_template(sequence=["a", "b", "c"], parallel_groups=[["a"]])
    )

    assert result.is_valid
    warning = next(w for w in result.warnings if w.field == "workflow.parallel_groups")
    assert warning.message == "Sequential mode ignores parallel_groups configuration"
    assert warning.severity == Severity.WARNING


def test_sequence_must_cover_all_agents(make_template) -> None:
    result = validate_template(make_template(sequence=["a", "b", "b"]))

    messages = [e.message for e in result.errors if e.field == "workflow.sequence"]
    assert "Sequence lists agents more than once: b" in messages
    assert "Sequence must include all agents: c" in messages


def test_first_success_requires_parallel_mode(make_template) -> None:
    result = validate_template(
        make_template(completion_strategy=CompletionStrategy.FIRST_SUCCESS)
    )

    messages = [e.message for e in result.errors if e.field == "workflow.completion_strategy"]
    assert messages == ["First success strategy only valid with parallel mode"]


def test_majority_strategy_needs_an_agent(make_template) -> None:
    assert validate_template(
        make_template(completion_strategy=CompletionStrategy.MAJORITY)
    ).is_valid

    result = validate_template(make_template([], completion_strategy=CompletionStrategy.MAJORITY))

    messages = [e.message for e in result.errors if e.field == "workflow.completion_strategy"]
    assert messages == ["majority strategy requires at least 1 agent"]


def test_max_concurrent_agents_cannot_exceed_agent_count(make_template) -> None:
    result = validate_template(
        make_template(
            mode=WorkflowMode.PARALLEL, parallel_groups=[["a", "b", "c"]], max_concurrent_agents=5
        )
    )

    issue = next(e for e in result.errors if e.field == "workflow.max_concurrent_agents")
    assert issue.message == "Max concurrent agents (5) cannot exceed total agents (3)"
    assert issue.kind == IssueKind.RANGE


def test_agent_in_two_parallel_groups(make_template) -> None:
    result = validate_template(
        make_template(mode=WorkflowMode.PARALLEL, parallel_groups=[["a", "b"], ["b", "c"]])
    )

    messages = [e.message for e in result.errors if e.field == "workflow.parallel_groups"]
    assert messages == ["Agents cannot appear in multiple parallel groups"]


def test_hitl_with_first_success_is_a_warning(make_agent, make_template) -> None:
    hitl = HITLConfig(enabled=True, intervention_points=["after_execution"])
    agents = [make_agent("a", hitl_config=hitl), make_agent("b"), make_agent("c")]

    result = validate_template(
        make_template(
            agents,
            mode=WorkflowMode.PARALLEL,
            parallel_groups=[["a", "b", "c"]],
            completion_strategy=CompletionStrategy.FIRST_SUCCESS,
        )
    )

    assert result.is_valid
    assert [(w.field, w.message) for w in result.warnings] == [
        (
            "agents[0].hitl_config",
            'Agent "Agent a" HITL may never trigger with "first_success" strategy',
        ),
        (
            "agents[0].hitl_config.intervention_points",
            'Agent "Agent a" after_execution HITL incompatible with first_success strategy',
        ),
    ]


def test_multiple_hitl_agents_with_any_is_a_warning(make_agent, make_template) -> None:
    hitl = HITLConfig(enabled=True, intervention_points=["before_execution"])
    agents = [
        make_agent("a", hitl_config=hitl),
        make_agent("b", hitl_config=hitl),
        make_agent("c"),
    ]

    result = validate_template(make_template(agents, completion_strategy=CompletionStrategy.ANY))

    assert result.is_valid
    assert _fields(result.warnings) == ["agents[0].hitl_config", "agents[1].hitl_config"]
    assert {w.severity for w in result.warnings} == {Severity.WARNING}


def test_hitl_timeout_must_be_below_workflow_timeout(make_agent, make_template) -> None:
    hitl = HITLConfig(enabled=True, timeout_seconds=1800, intervention_points=["after_execution"])
    agents = [make_agent("a", hitl_config=hitl), make_agent("b")]

    result = validate_template(make_template(agents, timeout_seconds=1800))

    assert "agents[0].hitl_config.timeout_seconds" in _fields(result.errors)


def test_unreachable_agent_is_a_warning(make_agent, make_template) -> None:
    structure = GraphStructure(
        nodes=["a", "b"],
        edges=[
            Edge(from_node="start", to_node="a", edge_id="e1"),
            Edge(from_node="a", to_node="end", edge_id="e2"),
            Edge(from_node="b", to_node="end", edge_id="e3"),
        ],
        entry_point="a",
        exit_points=["a", "b"],
    )
    agents = [make_agent("a"), make_agent("b")]

    result = validate_template(
        make_template(agents, mode=WorkflowMode.CONDITIONAL, graph_structure=structure)
    )

    assert result.is_valid
    assert _fields(result.warnings) == ["agents[1]"]


def test_dangling_edge_reference(make_agent, make_template) -> None:
    structure = GraphStructure(
        nodes=["a"],
        edges=[
            Edge(from_node="start", to_node="a", edge_id="e1"),
            Edge(from_node="a", to_node="ghost", edge_id="e2"),
        ],
        entry_point="a",
    )

    result = validate_template(
        make_template(
            [make_agent("a")], mode=WorkflowMode.CONDITIONAL, graph_structure=structure
        )
    )

    issue = next(e for e in result.errors if e.field == "workflow.graph_structure.edges[1]")
    assert issue.message == "Edge e2 references unknown node: ghost"


def test_structural_ranges(make_agent, make_template) -> None:
    agents = [
        make_agent("a", name="", retry_count=9, type="poetry"),
        make_agent("b", system_prompt="short"),
    ]

    result = validate_template(make_template(agents))

    fields = _fields(result.errors)
    assert "agents[0].name" in fields
    assert "agents[0].retry_count" in fields
    assert "agents[0].type" in fields
    assert "agents[1].system_prompt" in fields


def test_too_many_agents(make_agent, make_template) -> None:
    agents = [make_agent(str(i)) for i in range(6)]

    result = validate_template(make_template(agents, timeout_seconds=7200))

    assert "agents" in _fields(result.errors)


def test_validate_payload_reports_parse_errors_as_issues() -> None:
    result = validate_payload(
        {"name": "x", "agents": [{"name": "no id"}, {"id": "b", "timeout_seconds": "soon"}]}
    )

    assert not result.is_valid
    by_field = {e.field: e for e in result.errors}
    assert by_field["agents[0].id"].kind == IssueKind.REQUIRED
    assert by_field["agents[1].timeout_seconds"].kind == IssueKind.FORMAT


def test_validate_payload_runs_rules_on_parsed_template(make_template) -> None:
    payload = make_template().model_dump(mode="json")

    assert validate_payload(payload).is_valid


def test_validate_field_filters_by_prefix(make_agent, make_template) -> None:
    agents = [make_agent("a", retry_count=9), make_agent("b", priority=0)]
    template = make_template(agents)

    assert _fields(validate_field(template, "agents[0]")) == ["agents[0].retry_count"]
    assert _fields(validate_field(template, "agents[1]")) == ["agents[1].priority"]
    assert validate_field(template, "workflow") == []


def test_summary_and_step_gating(make_agent, make_template) -> None:
    template = make_template([make_agent("a", retry_count=9)]).model_copy(update={"name": ""})

    summary = validation_summary(template)

    assert summary.has_errors
    assert summary.error_count == 2
    assert not can_proceed_to_step(template, "basic")
    assert not can_proceed_to_step(template, "agents")
    assert can_proceed_to_step(template, "workflow")
    assert not can_proceed_to_step(template, "preview")
    assert not can_proceed_to_step(template, "unknown")
