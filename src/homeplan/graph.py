"""Template dependency graph with cycle-checked edits."""

from __future__ import annotations

import heapq
import logging
from collections.abc import Callable, Hashable, Iterable

import networkx as nx

from homeplan.errors import CycleDetected, InvalidDependency, NotFound, UnknownNode
from homeplan.models import TemplateDependency, TemplateItem

logger = logging.getLogger(__name__)


def kahn_order(
    G: nx.DiGraph,
    key: Callable[[str], Hashable] | None = None,
) -> tuple[list[str], list[str]]:
    """Topologically order *G* with Kahn's algorithm.

    Returns ``(order, residual)``. ``residual`` holds the nodes that still had
    incoming edges when no zero in-degree node was left; it is empty exactly
    when *G* is acyclic. Ready nodes are drained smallest *key* first so the
    order does not depend on insertion order.
    """
    key = key or (lambda n: n)
    in_degree = dict(G.in_degree())
    ready = [(key(n), n) for n, deg in in_degree.items() if deg == 0]
    heapq.heapify(ready)

    order: list[str] = []
    while ready:
        _, node = heapq.heappop(ready)
        order.append(node)
        for succ in G.successors(node):
            in_degree[succ] -= 1
            if in_degree[succ] == 0:
                heapq.heappush(ready, (key(succ), succ))

    residual = sorted((n for n, deg in in_degree.items() if deg > 0), key=key)
    return order, residual


def build_template_dag(
    items: dict[str, TemplateItem],
    dependencies: Iterable[TemplateDependency],
) -> nx.DiGraph:
    """Graph over every template item with ``depends_on -> item`` edges."""
    G = nx.DiGraph()
    for iid, item in items.items():
        G.add_node(iid, item=item)
    for dep in dependencies:
        G.add_edge(dep.depends_on_item_id, dep.template_item_id)
    return G


class DependencyGraph:
    """Directed ``depends_on -> item`` edges over all template items.

    Every edit is validated against the whole candidate graph before it is
    committed, so the committed graph is always acyclic.
    """

    def __init__(
        self,
        items: dict[str, TemplateItem],
        dependencies: Iterable[TemplateDependency] = (),
    ):
        self.items = items
        self._graph = build_template_dag(items, dependencies)

    def _sort_key(self, item_id: str) -> tuple[int, str]:
        return (self.items[item_id].sort_order, item_id)

    def edges(self) -> list[TemplateDependency]:
        """Committed edges, ordered by dependent item then prerequisite."""
        deps = [TemplateDependency(u, v) for u, v in self._graph.edges()]
        deps.sort(key=lambda d: (self._sort_key(d.template_item_id), self._sort_key(d.depends_on_item_id)))
        return deps

    def dependencies_of(self, item_id: str) -> list[str]:
        return sorted(self._graph.predecessors(item_id), key=self._sort_key)

    def dependents_of(self, item_id: str) -> list[str]:
        return sorted(self._graph.successors(item_id), key=self._sort_key)

    def topological_order(self) -> list[str]:
        order, residual = kahn_order(self._graph, key=self._sort_key)
        if residual:
            raise CycleDetected([self.items[i].name for i in residual], residual)
        return order

    def set_dependencies(self, item_id: str, depends_on_ids: Iterable[str]) -> list[str]:
        """Replace the prerequisites of *item_id* with *depends_on_ids*.

        Raises ``InvalidDependency`` for a self-dependency, ``UnknownNode`` for
        an unknown prerequisite and ``CycleDetected`` when the resulting graph
        would contain a cycle. On any failure the graph is left as it was.
        """
        if item_id not in self.items:
            raise NotFound("template item", item_id)

        wanted = list(dict.fromkeys(depends_on_ids))
        if item_id in wanted:
            raise InvalidDependency("A work item cannot depend on itself")
        for dep in wanted:
            if dep not in self.items:
                raise UnknownNode(dep)

        candidate = self._graph.copy()
        candidate.remove_edges_from(list(candidate.in_edges(item_id)))
        candidate.add_edges_from((dep, item_id) for dep in wanted)

        _, residual = kahn_order(candidate, key=self._sort_key)
        if residual:
            names = [self.items[i].name for i in residual]
            logger.info("Rejected dependencies for %s: cycle through %s", item_id, ", ".join(names))
            raise CycleDetected(names, residual)

        self._graph = candidate
        logger.info("Set dependencies for %s: %s", item_id, ", ".join(wanted) or "(none)")
        return wanted

    def remove_item(self, item_id: str) -> None:
        """Drop an item and every edge touching it from the graph and from ``items``."""
        if item_id in self._graph:
            self._graph.remove_node(item_id)
        self.items.pop(item_id, None)
