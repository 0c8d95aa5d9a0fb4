"""Canonical workflow graph built from agents and workflow configuration.

The graph always uses the two virtual nodes `start` and `end`. They appear in
edges but never in `nodes`, which lists agent ids only.

Building is a pure function of its inputs and produces identical edge ids for
identical inputs, so the result can be diffed and persisted as-is.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field

from agent_workflows.workflow.models import (
    END_NODE,
    START_NODE,
    VIRTUAL_NODES,
    Agent,
    ConditionType,
    Edge,
    GraphStructure,
    WorkflowConfig,
    WorkflowMode,
)


@dataclass(frozen=True, slots=True)
class WorkflowGraph:
    nodes: tuple[str, ...] = ()
    edges: tuple[Edge, ...] = ()
    entry_point: str | None = None
    exit_points: tuple[str, ...] = ()
    outgoing: Mapping[str, tuple[Edge, ...]] = field(default_factory=dict)
    incoming: Mapping[str, tuple[Edge, ...]] = field(default_factory=dict)

    @property
    def is_empty(self) -> bool:
        """True when no agents are configured yet (not an error)."""

        return not self.nodes

    def has_node(self, node_id: str) -> bool:
        return node_id in self.nodes

    def dependencies(self, node_id: str) -> list[str]:
        """Agent predecessors of `node_id`, in edge order, without duplicates.

        Edges from virtual nodes or from unknown ids are not dependencies.
        """

        seen: list[str] = []
        for edge in self.incoming.get(node_id, ()):
            src = edge.from_node
            if self.has_node(src) and src not in seen:
                seen.append(src)
        return seen

    def dependents(self, node_id: str) -> list[str]:
        """Agent successors of `node_id`, in edge order, without duplicates."""

        seen: list[str] = []
        for edge in self.outgoing.get(node_id, ()):
            dst = edge.to_node
            if self.has_node(dst) and dst not in seen:
                seen.append(dst)
        return seen

    def to_structure(self, *, graph_id: str = "", version: str = "1.0") -> GraphStructure:
        return GraphStructure(
            nodes=list(self.nodes),
            edges=[edge.model_copy() for edge in self.edges],
            entry_point=self.entry_point,
            exit_points=list(self.exit_points),
            graph_id=graph_id,
            version=version,
        )


def _edge(src: str, dst: str, condition_type: ConditionType = ConditionType.ALWAYS) -> Edge:
    return Edge(
        from_node=src,
        to_node=dst,
        condition_type=condition_type,
        edge_id=f"edge_{src}_{dst}",
    )


def _unique_ids(agents: Sequence[Agent]) -> list[str]:
    ids: list[str] = []
    for agent in agents:
        if agent.id and agent.id not in ids:
            ids.append(agent.id)
    return ids


def _chain(order: Sequence[str]) -> list[Edge]:
    if not order:
        return []
    edges = [_edge(START_NODE, order[0])]
    edges.extend(_edge(a, b) for a, b in zip(order, order[1:]))
    edges.append(_edge(order[-1], END_NODE))
    return edges


def _sequential_edges(agent_ids: list[str], workflow: WorkflowConfig) -> list[Edge]:
    # An explicit sequence wins; agents it leaves out keep their list order at the tail.
    known = set(agent_ids)
    order: list[str] = []
    for agent_id in workflow.sequence:
        if agent_id in known and agent_id not in order:
            order.append(agent_id)
    order.extend(a for a in agent_ids if a not in order)
    return _chain(order)


def _parallel_edges(agent_ids: list[str], workflow: WorkflowConfig) -> list[Edge]:
    known = set(agent_ids)
    placed: set[str] = set()
    groups: list[list[str]] = []
    for raw_group in workflow.parallel_groups:
        group = []
        for agent_id in raw_group:
            if agent_id in known and agent_id not in placed:
                group.append(agent_id)
                placed.add(agent_id)
        if group:
            groups.append(group)
    groups.extend([a] for a in agent_ids if a not in placed)

    edges: list[Edge] = []
    for group in groups:
        edges.extend(_chain(group))
    return edges


def _conditional_edges(agents: Sequence[Agent], agent_ids: list[str]) -> list[Edge]:
    known = set(agent_ids)
    edges: list[Edge] = []
    has_deps: set[str] = set()
    has_dependents: set[str] = set()
    emitted: set[str] = set()

    for agent in agents:
        if agent.id not in known or agent.id in emitted:
            continue
        emitted.add(agent.id)
        for dep in dict.fromkeys(agent.depends_on):
            if dep not in known:
                continue
            edges.append(_edge(dep, agent.id))
            has_deps.add(agent.id)
            has_dependents.add(dep)

    entry_edges = [_edge(START_NODE, a) for a in agent_ids if a not in has_deps]
    exit_edges = [_edge(a, END_NODE) for a in agent_ids if a not in has_dependents]
    return entry_edges + edges + exit_edges


def _index(
    nodes: Sequence[str], edges: Sequence[Edge]
) -> tuple[dict[str, tuple[Edge, ...]], dict[str, tuple[Edge, ...]]]:
    outgoing: dict[str, list[Edge]] = {n: [] for n in (START_NODE, *nodes, END_NODE)}
    incoming: dict[str, list[Edge]] = {n: [] for n in (START_NODE, *nodes, END_NODE)}
    for edge in edges:
        outgoing.setdefault(edge.from_node, []).append(edge)
        incoming.setdefault(edge.to_node, []).append(edge)
    return (
        {k: tuple(v) for k, v in outgoing.items()},
        {k: tuple(v) for k, v in incoming.items()},
    )


def _infer_entry_point(
    nodes: Sequence[str],
    outgoing: Mapping[str, tuple[Edge, ...]],
    incoming: Mapping[str, tuple[Edge, ...]],
) -> str | None:
    node_set = set(nodes)
    for edge in outgoing.get(START_NODE, ()):
        if edge.to_node in node_set:
            return edge.to_node
    for node in nodes:
        if not any(e.from_node in node_set for e in incoming.get(node, ())):
            return node
    return nodes[0] if nodes else None


def _infer_exit_points(
    nodes: Sequence[str], outgoing: Mapping[str, tuple[Edge, ...]]
) -> tuple[str, ...]:
    node_set = set(nodes)
    return tuple(
        n for n in nodes if not any(e.to_node in node_set for e in outgoing.get(n, ()))
    )


def assemble_graph(
    nodes: Sequence[str], edges: Sequence[Edge], *, entry_point: str | None = None
) -> WorkflowGraph:
    """Index an explicit node/edge list into a :class:`WorkflowGraph`."""

    node_tuple = tuple(nodes)
    outgoing, incoming = _index(node_tuple, edges)
    entry = entry_point or _infer_entry_point(node_tuple, outgoing, incoming)
    return WorkflowGraph(
        nodes=node_tuple,
        edges=tuple(edges),
        entry_point=entry,
        exit_points=_infer_exit_points(node_tuple, outgoing),
        outgoing=outgoing,
        incoming=incoming,
    )


def build_graph(agents: Sequence[Agent], workflow: WorkflowConfig) -> WorkflowGraph:
    """Build the canonical graph for `(agents, workflow)`.

    An empty agent list yields an empty graph: the workflow is simply not
    configured yet.
    """

    agent_ids = _unique_ids(agents)
    if not agent_ids:
        return WorkflowGraph()

    if workflow.mode == WorkflowMode.SEQUENTIAL:
        return assemble_graph(agent_ids, _sequential_edges(agent_ids, workflow))
    if workflow.mode == WorkflowMode.PARALLEL:
        return assemble_graph(agent_ids, _parallel_edges(agent_ids, workflow))

    structure = workflow.graph_structure
    if structure is not None and structure.edges:
        entry = structure.entry_point if structure.entry_point in agent_ids else None
        return assemble_graph(agent_ids, list(structure.edges), entry_point=entry)
    return assemble_graph(agent_ids, _conditional_edges(agents, agent_ids))


def detect_workflow_mode(edges: Sequence[Edge], exit_points: Sequence[str] = ()) -> str:
    """Classify an edge set the way the workflow editor labels it.

    Returns one of ``sequential``, ``parallel``, ``conditional`` or ``custom``.
    """

    if not edges:
        return "parallel" if len(exit_points) > 1 else "custom"

    if any(e.condition_type != ConditionType.ALWAYS for e in edges):
        return "conditional"

    start_edges = [e for e in edges if e.from_node == START_NODE]
    if len(exit_points) > 1 and len(start_edges) > 1:
        return "parallel"

    has_start = bool(start_edges)
    has_end = any(e.to_node == END_NODE for e in edges)
    if has_start and has_end:
        return "sequential"
    return "custom"


def parallel_groups_from_graph(structure: GraphStructure) -> list[list[str]]:
    """Recover legacy `parallel_groups` from a persisted graph."""

    start_targets = [e.to_node for e in structure.edges if e.from_node == START_NODE]
    if len(start_targets) > 1:
        return [start_targets]
    agents = [n for n in structure.nodes if n not in VIRTUAL_NODES]
    return [agents] if agents else []
