# Copyright 2026 Google LLC
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.
#
# SPDX-License-Identifier: Apache-2.0


"""Dependency graph of workspace packages.

Builds a directed graph from each package's local dependencies and
answers the structural questions the selector and scheduler ask: who
does this package need, who needs it, and what is reachable from here.

Architecture, Edge Direction::

    Forward edges (``edges``):          dependent  → dependency
    Reverse edges (``reverse_edges``):  dependency → dependent

    app ──→ core ←── cli

    edges['app'] = ['core']
    reverse_edges['core'] = ['app', 'cli']

Both adjacency maps are computed once in :func:`build_graph`; lookups
never rescan the package list.

Edges naming a package that is not part of the graph are dropped: a
dependency the tree does not contain is an external (registry) one and
irrelevant to ordering.

Usage::

    from monorun.graph import Direction, build_graph

    graph = build_graph(packages)
    graph.dependencies_of('app')                         # {Package('core')}
    graph.transitive_closure([core], Direction.DEPENDENTS)  # {app, cli}
"""

from __future__ import annotations

from collections import deque
from collections.abc import Iterable, Iterator
from dataclasses import dataclass, field
from enum import Enum

from monorun.errors import E, MonorunError
from monorun.logging import get_logger
from monorun.workspace import Package

logger = get_logger(__name__)


class Direction(str, Enum):
    """Which edges :meth:`PackageGraph.transitive_closure` follows."""

    DEPENDENCIES = 'dependencies'
    DEPENDENTS = 'dependents'


@dataclass
class PackageGraph:
    """A directed graph of local package dependencies.

    Attributes:
        packages: Mapping from package name to :class:`Package`, in
            discovery order.
        edges: Forward adjacency list (dependent → sorted dependencies).
        reverse_edges: Reverse adjacency list (dependency → sorted dependents).
    """

    packages: dict[str, Package] = field(default_factory=dict)
    edges: dict[str, list[str]] = field(default_factory=dict)
    reverse_edges: dict[str, list[str]] = field(default_factory=dict)

    @property
    def names(self) -> list[str]:
        """Package names in discovery order."""
        return list(self.packages)

    def __len__(self) -> int:
        """Return the number of packages in the graph."""
        return len(self.packages)

    def __contains__(self, name: object) -> bool:
        """Return True if a package named ``name`` is in the graph."""
        return name in self.packages

    def get(self, name: str) -> Package:
        """Return the package called ``name``.

        Raises:
            MonorunError: If the graph has no such package.
        """
        try:
            return self.packages[name]
        except KeyError:
            raise MonorunError(
                code=E.GRAPH_UNKNOWN_PACKAGE,
                message=f"Unknown package '{name}'",
                hint=f'Known packages: {", ".join(self.names)}',
            ) from None

    def dependencies_of(self, name: str) -> set[Package]:
        """Return the direct local dependencies of ``name``."""
        return {self.packages[dep] for dep in self.edges.get(name, [])}

    def dependents_of(self, name: str) -> set[Package]:
        """Return the packages that directly depend on ``name``."""
        return {self.packages[dep] for dep in self.reverse_edges.get(name, [])}

    def transitive_closure(self, seeds: Iterable[Package], direction: Direction) -> set[Package]:
        """Return every package reachable from ``seeds`` along ``direction``.

        Walks breadth-first until no new package is found. A visited set
        makes cycles harmless. A seed only appears in the result when it is
        reachable from some seed (including itself, through a cycle).

        Args:
            seeds: Starting packages. An empty iterable yields an empty set.
            direction: Follow dependency edges or dependent edges.

        Returns:
            The set of reachable packages.
        """
        adjacency = self.edges if direction is Direction.DEPENDENCIES else self.reverse_edges
        visited: set[str] = set()
        queue: deque[str] = deque()
        for seed in seeds:
            queue.extend(adjacency.get(seed.name, []))
        while queue:
            current = queue.popleft()
            if current in visited:
                continue
            visited.add(current)
            queue.extend(adjacency.get(current, []))
        return {self.packages[name] for name in visited}

    def subgraph(self, names: Iterable[str]) -> PackageGraph:
        """Return the graph restricted to ``names`` and the edges among them.

        Discovery order is preserved.
        """
        keep = set(names)
        return build_graph([pkg for name, pkg in self.packages.items() if name in keep])


def build_graph(packages: list[Package]) -> PackageGraph:
    """Build a dependency graph from discovered packages.

    Args:
        packages: Packages in discovery order.

    Returns:
        A :class:`PackageGraph` with forward and reverse edges.
    """
    graph = PackageGraph()
    for pkg in packages:
        graph.packages[pkg.name] = pkg
        graph.edges[pkg.name] = []
        graph.reverse_edges[pkg.name] = []

    for pkg in packages:
        for dep_name in pkg.local_deps:
            if dep_name == pkg.name or dep_name not in graph.packages:
                continue
            graph.edges[pkg.name].append(dep_name)
            graph.reverse_edges[dep_name].append(pkg.name)

    for adjacency in (graph.edges, graph.reverse_edges):
        for name in adjacency:
            adjacency[name] = sorted(set(adjacency[name]))

    logger.debug(
        'built_dependency_graph',
        packages=len(packages),
        edges=sum(len(deps) for deps in graph.edges.values()),
    )
    return graph


def detect_cycles(graph: PackageGraph) -> list[list[str]]:
    """Detect cycles in the graph using DFS.

    Args:
        graph: The graph to check.

    Returns:
        One list per cycle found, each naming the loop from its entry
        point back to itself (``['a', 'b', 'a']``). Empty if acyclic.
    """
    white, gray, black = 0, 1, 2
    color: dict[str, int] = dict.fromkeys(graph.packages, white)
    parent: dict[str, str | None] = dict.fromkeys(graph.packages)
    cycles: list[list[str]] = []

    # Each stack entry is a gray node and its not yet visited edges.
    for start in graph.packages:
        if color[start] != white:
            continue
        color[start] = gray
        stack: list[tuple[str, Iterator[str]]] = [(start, iter(graph.edges.get(start, [])))]
        while stack:
            node, neighbors = stack[-1]
            neighbor = next(neighbors, None)
            if neighbor is None:
                color[node] = black
                stack.pop()
                continue
            if color[neighbor] == gray:
                # Back edge: walk parents from node up to neighbor.
                cycle = [neighbor]
                current = node
                while current != neighbor:
                    cycle.append(current)
                    p = parent.get(current)
                    if p is None:
                        break
                    current = p
                cycle.append(neighbor)
                cycle.reverse()
                cycles.append(cycle)
            elif color[neighbor] == white:
                parent[neighbor] = node
                color[neighbor] = gray
                stack.append((neighbor, iter(graph.edges.get(neighbor, []))))

    if cycles:
        logger.warning('cycles_detected', count=len(cycles))
    return cycles


def raise_on_cycles(graph: PackageGraph) -> None:
    """Raise a configuration error if ``graph`` contains a cycle.

    Raises:
        MonorunError: ``MR-GRAPH-CYCLE-DETECTED`` naming every cycle found.
    """
    cycles = detect_cycles(graph)
    if cycles:
        cycle_strs = [' → '.join(c) for c in cycles]
        raise MonorunError(
            code=E.GRAPH_CYCLE_DETECTED,
            message=f'Circular dependencies detected: {"; ".join(cycle_strs)}',
            hint='Break the cycle, or --ignore packages so the cycle is not fully selected.',
        )


def topo_sort(graph: PackageGraph) -> list[list[Package]]:
    """Group packages into dependency levels (Kahn's algorithm).

    Level 0 holds packages without local dependencies, level 1 those
    depending only on level 0, and so on. Within a level, packages keep
    discovery order. ``monorun ls`` lists packages this way; the scheduler
    does not wait for whole levels.

    Raises:
        MonorunError: If the graph contains a cycle.
    """
    in_degree = {name: len(graph.edges[name]) for name in graph.packages}
    order = {name: idx for idx, name in enumerate(graph.packages)}
    current = [name for name in graph.packages if in_degree[name] == 0]

    levels: list[list[Package]] = []
    processed = 0
    while current:
        levels.append([graph.packages[name] for name in current])
        processed += len(current)
        following: list[str] = []
        for name in current:
            for dependent in graph.reverse_edges.get(name, []):
                in_degree[dependent] -= 1
                if in_degree[dependent] == 0:
                    following.append(dependent)
        current = sorted(following, key=order.__getitem__)

    if processed != len(graph.packages):
        raise_on_cycles(graph)

    return levels


__all__ = [
    'Direction',
    'PackageGraph',
    'build_graph',
    'detect_cycles',
    'raise_on_cycles',
    'topo_sort',
]
