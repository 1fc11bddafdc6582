"""Build graph: a DAG of build units with cascade skipping.

The graph enforces:
- When a node fails, all transitive dependents are SKIPPED.
- Topological order is deterministic: ties are broken by declaration ordinal.
"""

from __future__ import annotations

import heapq
from collections import deque
from collections.abc import Iterable

from iceforge.core.errors import ResolutionError
from iceforge.models.graph import (
    TERMINAL_STATES,
    BuildUnit,
    NodeStatus,
)


class BuildGraph:
    """Directed acyclic graph of build units.

    Built once per invocation by the graph builder; read-only afterwards.
    Insertion order of *units* is the declaration order used for tie-breaks.
    """

    def __init__(self, units: Iterable[BuildUnit]) -> None:
        self._nodes: dict[str, BuildUnit] = {}
        for unit in units:
            if unit.node_id in self._nodes:
                raise ResolutionError(f"duplicate build node '{unit.node_id}'")
            self._nodes[unit.node_id] = unit
        self._position = {nid: i for i, nid in enumerate(self._nodes)}

        # Forward edges: node_id -> predecessor node_ids
        self._predecessors: dict[str, list[str]] = {}
        # Reverse edges: node_id -> nodes that depend on it
        self._dependents: dict[str, list[str]] = {nid: [] for nid in self._nodes}
        for nid, unit in self._nodes.items():
            preds = list(dict.fromkeys(unit.predecessors))
            for pred in preds:
                if pred not in self._nodes:
                    raise ResolutionError(
                        f"build node '{nid}' depends on unknown node '{pred}'"
                    )
                self._dependents[pred].append(nid)
            self._predecessors[nid] = preds

        cycle = self.find_cycle()
        if cycle:
            raise ResolutionError(
                f"dependency cycle between build nodes: {' -> '.join(cycle)}",
                cycle=cycle,
            )
        self._order = self._topological_order()

    # ------------------------------------------------------------------
    # Structure
    # ------------------------------------------------------------------

    def __len__(self) -> int:
        return len(self._nodes)

    def __contains__(self, node_id: object) -> bool:
        return node_id in self._nodes

    def node(self, node_id: str) -> BuildUnit:
        return self._nodes[node_id]

    @property
    def nodes(self) -> list[BuildUnit]:
        """All units in topological order."""
        return [self._nodes[nid] for nid in self._order]

    @property
    def node_ids(self) -> list[str]:
        """All node_ids in topological order."""
        return list(self._order)

    def get_predecessors(self, node_id: str) -> list[str]:
        """Return direct predecessor node_ids."""
        return list(self._predecessors.get(node_id, []))

    def get_direct_dependents(self, node_id: str) -> list[str]:
        return list(self._dependents.get(node_id, []))

    def get_dependents(self, node_id: str) -> list[str]:
        """Return all transitive dependent node_ids (BFS)."""
        result = []
        queue = deque(self._dependents.get(node_id, []))
        visited: set[str] = set()
        while queue:
            node = queue.popleft()
            if node in visited:
                continue
            visited.add(node)
            result.append(node)
            queue.extend(self._dependents.get(node, []))
        return result

    def ancestors(self, node_ids: Iterable[str]) -> set[str]:
        """Return *node_ids* plus everything they transitively depend on."""
        result: set[str] = set()
        stack = list(node_ids)
        while stack:
            node = stack.pop()
            if node in result:
                continue
            result.add(node)
            stack.extend(self._predecessors.get(node, []))
        return result

    def subgraph(self, keep: Iterable[str]) -> BuildGraph:
        """Return a new graph restricted to *keep* plus their ancestors."""
        wanted = self.ancestors(keep)
        return BuildGraph(u for nid, u in self._nodes.items() if nid in wanted)

    # ------------------------------------------------------------------
    # Ordering
    # ------------------------------------------------------------------

    def find_cycle(self) -> list[str] | None:
        """Iterative DFS; returns the first cycle found as an ordered path
        that ends where it started, or ``None``."""
        white, grey, black = 0, 1, 2
        color = dict.fromkeys(self._nodes, white)
        for start in self._nodes:
            if color[start] != white:
                continue
            path: list[str] = [start]
            iters = [iter(self._predecessors[start])]
            color[start] = grey
            while iters:
                advanced = False
                for pred in iters[-1]:
                    if color[pred] == grey:
                        return path[path.index(pred):] + [pred]
                    if color[pred] == white:
                        color[pred] = grey
                        path.append(pred)
                        iters.append(iter(self._predecessors[pred]))
                        advanced = True
                        break
                if not advanced:
                    color[path.pop()] = black
                    iters.pop()
        return None

    def _topological_order(self) -> list[str]:
        """Kahn's algorithm; among ready nodes the lowest (ordinal, position) wins."""
        in_degree = {nid: len(preds) for nid, preds in self._predecessors.items()}
        heap = [self._sort_key(nid) for nid, deg in in_degree.items() if deg == 0]
        heapq.heapify(heap)
        result: list[str] = []
        while heap:
            *_, node = heapq.heappop(heap)
            result.append(node)
            for dep in self._dependents[node]:
                in_degree[dep] -= 1
                if in_degree[dep] == 0:
                    heapq.heappush(heap, self._sort_key(dep))
        return result

    def _sort_key(self, node_id: str) -> tuple[int, int, str]:
        return (self._nodes[node_id].ordinal, self._position[node_id], node_id)

    # ------------------------------------------------------------------
    # Cascades
    # ------------------------------------------------------------------

    def cascade_skip(
        self, failed_node_id: str, states: dict[str, NodeStatus]
    ) -> list[str]:
        """When a node fails or is skipped, skip all transitive dependents
        that have not reached a terminal state.

        Returns list of node_ids that were newly skipped.
        """
        skipped: list[str] = []
        for node_id in self.get_dependents(failed_node_id):
            if states.get(node_id, NodeStatus.PENDING) not in TERMINAL_STATES:
                states[node_id] = NodeStatus.SKIPPED
                skipped.append(node_id)
        return skipped
