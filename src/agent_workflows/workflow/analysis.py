"""Structural analysis of a :class:`WorkflowGraph`.

All functions are pure and only look at agent nodes; edges touching the
virtual `start`/`end` nodes are ignored except where reachability needs the
fan-out of `start`.

Leveling and the critical path are undefined on cyclic graphs, so
:func:`analyze` runs cycle detection first and skips both when a cycle exists.
"""

from __future__ import annotations

from collections import deque
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field

from agent_workflows.workflow.graph import WorkflowGraph
from agent_workflows.workflow.models import START_NODE, Agent

_WHITE, _GRAY, _BLACK = 0, 1, 2


@dataclass(frozen=True, slots=True)
class CycleReport:
    has_cycle: bool
    nodes: tuple[str, ...] = ()


@dataclass(frozen=True, slots=True)
class CriticalPath:
    nodes: tuple[str, ...] = ()
    length_minutes: float = 0.0


@dataclass(frozen=True, slots=True)
class GraphAnalysis:
    cycles: CycleReport
    levels: Mapping[str, int] = field(default_factory=dict)
    critical_path: CriticalPath = field(default_factory=CriticalPath)
    unreachable: tuple[str, ...] = ()
    execution_order: tuple[str, ...] = ()

    @property
    def has_cycle(self) -> bool:
        return self.cycles.has_cycle

    def nodes_by_level(self) -> list[list[str]]:
        if not self.levels:
            return []
        depth = max(self.levels.values()) + 1
        grouped: list[list[str]] = [[] for _ in range(depth)]
        for node, level in self.levels.items():
            grouped[level].append(node)
        return grouped

    def to_json(self) -> dict[str, object]:
        return {
            "has_cycle": self.cycles.has_cycle,
            "cycle_nodes": list(self.cycles.nodes),
            "levels": dict(self.levels),
            "critical_path": {
                "nodes": list(self.critical_path.nodes),
                "length_minutes": self.critical_path.length_minutes,
            },
            "unreachable": list(self.unreachable),
            "execution_order": list(self.execution_order),
        }


def detect_cycles(graph: WorkflowGraph) -> CycleReport:
    """Three-colour depth-first search.

    A back-edge to a gray node marks every node on the current DFS stack as
    being in a cycle. Implicated nodes are reported in graph node order.
    """

    color = {node: _WHITE for node in graph.nodes}
    in_cycle: set[str] = set()

    for root in graph.nodes:
        if color[root] != _WHITE:
            continue
        color[root] = _GRAY
        stack = [root]
        successors = [iter(graph.dependents(root))]
        while successors:
            nxt = next(successors[-1], None)
            if nxt is None:
                color[stack.pop()] = _BLACK
                successors.pop()
                continue
            if color[nxt] == _GRAY:
                in_cycle.update(stack)
            elif color[nxt] == _WHITE:
                color[nxt] = _GRAY
                stack.append(nxt)
                successors.append(iter(graph.dependents(nxt)))

    ordered = tuple(n for n in graph.nodes if n in in_cycle)
    return CycleReport(has_cycle=bool(ordered), nodes=ordered)


def topological_levels(graph: WorkflowGraph) -> dict[str, int]:
    """Kahn's algorithm, one queue generation per level.

    Nodes stuck behind a cycle never reach in-degree zero and get no level.
    """

    in_degree = {node: len(graph.dependencies(node)) for node in graph.nodes}
    frontier = [node for node in graph.nodes if in_degree[node] == 0]
    levels: dict[str, int] = {}
    level = 0
    while frontier:
        next_frontier: list[str] = []
        for node in frontier:
            levels[node] = level
            for dependent in graph.dependents(node):
                in_degree[dependent] -= 1
                if in_degree[dependent] == 0:
                    next_frontier.append(dependent)
        frontier = next_frontier
        level += 1
    return levels


def agent_durations(agents: Sequence[Agent]) -> dict[str, float]:
    """Estimated duration per agent in minutes (configured timeout / 60)."""

    return {agent.id: agent.timeout_seconds / 60 for agent in agents}


def critical_path(graph: WorkflowGraph, durations: Mapping[str, float]) -> CriticalPath:
    """Longest estimated dependency chain.

    ``path_length(n) = duration(n) + max(path_length(dep))`` over dependencies,
    filled in topological order so every dependency is known before its
    dependents. The path ends at the dependent-free node with the largest
    length and is rebuilt by following the longest dependency. Ties go to the
    node or dependency listed first.
    """

    order = list(topological_levels(graph))
    # Nodes caught in a cycle get no level; give them a length anyway.
    leveled = set(order)
    order.extend(n for n in graph.nodes if n not in leveled)

    lengths: dict[str, float] = {}
    for node in order:
        longest_dep = max(
            (lengths.get(dep, 0.0) for dep in graph.dependencies(node)), default=0.0
        )
        lengths[node] = durations.get(node, 0.0) + longest_dep

    end: str | None = None
    best = 0.0
    for node in graph.nodes:
        if graph.dependents(node):
            continue
        if end is None or lengths[node] > best:
            end, best = node, lengths[node]
    if end is None:
        return CriticalPath()

    chain = [end]
    seen = {end}
    current = end
    while True:
        deps = graph.dependencies(current)
        if not deps:
            break
        chosen = deps[0]
        for dep in deps[1:]:
            if lengths[dep] > lengths[chosen]:
                chosen = dep
        if chosen in seen:
            break
        chain.append(chosen)
        seen.add(chosen)
        current = chosen

    chain.reverse()
    return CriticalPath(nodes=tuple(chain), length_minutes=best)


def find_unreachable(graph: WorkflowGraph) -> tuple[str, ...]:
    """Agents not reachable from the entry point.

    The search is seeded with the entry point and every agent fanned out from
    the virtual `start` node, then follows edges in their declared direction.
    """

    seeds: list[str] = []
    if graph.entry_point is not None and graph.has_node(graph.entry_point):
        seeds.append(graph.entry_point)
    for edge in graph.outgoing.get(START_NODE, ()):
        if graph.has_node(edge.to_node) and edge.to_node not in seeds:
            seeds.append(edge.to_node)

    visited: set[str] = set(seeds)
    queue = deque(seeds)
    while queue:
        node = queue.popleft()
        for dependent in graph.dependents(node):
            if dependent not in visited:
                visited.add(dependent)
                queue.append(dependent)

    return tuple(n for n in graph.nodes if n not in visited)


def execution_order(graph: WorkflowGraph) -> list[str]:
    """Dependency-respecting order (dependencies first). Assumes an acyclic graph.

    Post-order depth-first walk over dependencies with an explicit stack, so
    long chains do not hit the recursion limit.
    """

    order: list[str] = []
    visited: set[str] = set()

    for root in graph.nodes:
        if root in visited:
            continue
        visited.add(root)
        stack = [root]
        pending = [iter(graph.dependencies(root))]
        while pending:
            dep = next(pending[-1], None)
            if dep is None:
                order.append(stack.pop())
                pending.pop()
                continue
            if dep not in visited:
                visited.add(dep)
                stack.append(dep)
                pending.append(iter(graph.dependencies(dep)))
    return order


def analyze(graph: WorkflowGraph, agents: Sequence[Agent] = ()) -> GraphAnalysis:
    """Run all analyses over `graph`, skipping the cycle-sensitive ones when cyclic."""

    cycles = detect_cycles(graph)
    unreachable = find_unreachable(graph)
    if cycles.has_cycle:
        return GraphAnalysis(cycles=cycles, unreachable=unreachable)

    return GraphAnalysis(
        cycles=cycles,
        levels=topological_levels(graph),
        critical_path=critical_path(graph, agent_durations(agents)),
        unreachable=unreachable,
        execution_order=tuple(execution_order(graph)),
    )
