"""Deployment planning: dependency graph construction and ordering."""

from __future__ import annotations

import logging
from collections import deque
from dataclasses import dataclass, field
from typing import Iterable

from .errors import CycleError
from .models import ArtifactSpec
from .registry import ArtifactRegistry

logger = logging.getLogger(__name__)


@dataclass
class ArtifactGraph:
    """Graph of artifact references with cycle detection and stable ordering."""

    nodes: dict[str, ArtifactSpec] = field(default_factory=dict)  # name -> spec, declaration order
    edges: dict[str, list[str]] = field(default_factory=dict)  # artifact -> dependencies
    reverse_edges: dict[str, list[str]] = field(default_factory=dict)  # artifact -> dependents
    self_references: list[str] = field(default_factory=list)

    @classmethod
    def from_specs(cls, specs: Iterable[ArtifactSpec]) -> "ArtifactGraph":
        """Build graph from specs; edge A -> B when A needs B's address.

        Plain spec lists are validated through ArtifactRegistry first.
        """
        registry = specs if isinstance(specs, ArtifactRegistry) else ArtifactRegistry(list(specs))
        graph = cls()
        for spec in registry:
            graph.nodes[spec.name] = spec
            graph.edges[spec.name] = []
            graph.reverse_edges[spec.name] = []

        for spec in graph.nodes.values():
            if spec.name in spec.constructor_references():
                graph.self_references.append(spec.name)
            for dep in spec.references():
                graph.edges[spec.name].append(dep)
                graph.reverse_edges[dep].append(spec.name)

        return graph

    def index_of(self, name: str) -> int:
        return list(self.nodes).index(name)

    def topological_sort(self) -> list[str]:
        """Return artifacts in dependency order (deps first).

        Kahn's algorithm with a FIFO queue seeded in declaration order, so
        independent artifacts keep their declared order and precede anything
        that waits on them. Returns a partial order if cycles exist.
        """
        in_degree = {name: len(self.edges[name]) for name in self.nodes}

        queue = deque(n for n in self.nodes if in_degree[n] == 0)
        result: list[str] = []

        while queue:
            node = queue.popleft()
            result.append(node)
            for dependent in self.reverse_edges.get(node, []):
                in_degree[dependent] -= 1
                if in_degree[dependent] == 0:
                    queue.append(dependent)

        return result

    def find_cycles(self) -> list[list[str]]:
        """Find cycles using Tarjan's strongly connected components.

        Self-referencing constructors count as single-node cycles.
        """
        index_counter = [0]
        stack: list[str] = []
        lowlinks: dict[str, int] = {}
        index: dict[str, int] = {}
        on_stack: dict[str, bool] = {}
        sccs: list[list[str]] = []

        def strongconnect(node: str) -> None:
            index[node] = index_counter[0]
            lowlinks[node] = index_counter[0]
            index_counter[0] += 1
            stack.append(node)
            on_stack[node] = True

            for dep in self.edges.get(node, []):
                if dep not in index:
                    strongconnect(dep)
                    lowlinks[node] = min(lowlinks[node], lowlinks[dep])
                elif on_stack.get(dep, False):
                    lowlinks[node] = min(lowlinks[node], index[dep])

            if lowlinks[node] == index[node]:
                scc = []
                while True:
                    w = stack.pop()
                    on_stack[w] = False
                    scc.append(w)
                    if w == node:
                        break
                if len(scc) > 1:
                    sccs.append(sorted(scc, key=self.index_of))

        for node in self.nodes:
            if node not in index:
                strongconnect(node)

        return [[name] for name in self.self_references] + sccs


def plan(specs: Iterable[ArtifactSpec]) -> list[ArtifactSpec]:
    """Order specs so every artifact follows everything it references.

    Raises:
        CycleError: references form a cycle (fatal, operator must fix config)
        ConfigError: duplicate names or a reference to an undeclared artifact
    """
    graph = ArtifactGraph.from_specs(specs)
    cycles = graph.find_cycles()
    if cycles:
        raise CycleError(cycles)

    ordered = graph.topological_sort()
    logger.debug("planned order: %s", " -> ".join(ordered))
    return [graph.nodes[name] for name in ordered]
