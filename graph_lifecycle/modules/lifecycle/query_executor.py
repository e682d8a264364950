"""
Query Executor: read-only traversals.

Every public read runs inside a read scope, which ends the store's implicit
transaction however the read finishes.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from graph_lifecycle.common.logger import logger
from graph_lifecycle.db.engine import GraphTraversal
from graph_lifecycle.db.models import Criterion, Direction, gte
from graph_lifecycle.db.session import StoreSession
from graph_lifecycle.modules.lifecycle.workload import ReadPlan


@dataclass
class ReadReport:
    """Outcome of one round of the standard reads."""
    lookup: Optional[Dict[str, Any]] = None
    edge: Optional[Dict[str, Any]] = None
    range_values: List[Any] = field(default_factory=list)
    exists: bool = False
    neighbors: List[Any] = field(default_factory=list)


def lookup(g: GraphTraversal, criterion: Criterion, label: Optional[str] = None) -> Optional[Dict[str, Any]]:
    matches = g.vertices(criterion, label=label)
    if not matches:
        return None
    return g.value_map(matches[0].id, with_tokens=True)


def find_edge(g: GraphTraversal, source: Criterion, edge_label: str,
              target: Criterion) -> Optional[Dict[str, Any]]:
    for vertex in g.vertices(source):
        for edge in g.edges(vertex.id, Direction.OUT, edge_label):
            other = g.vertex(edge.in_id)
            if other is not None and target.matches(other.properties.get(target.key, [])):
                return g.edge_value_map(edge, with_tokens=True)
    return None


def range_values(g: GraphTraversal, key: str, minimum: Any) -> List[Any]:
    criterion = gte(key, minimum)
    values = []
    for vertex in g.vertices(criterion):
        values.extend(value for value in vertex.properties.get(key, []) if criterion.matches([value]))
    return values


def exists(g: GraphTraversal, criterion: Criterion) -> bool:
    return g.has_next(criterion)


def neighbor_values(g: GraphTraversal, criterion: Criterion, edge_label: str,
                    key: str = "name", direction: Direction = Direction.BOTH) -> List[Any]:
    """Values of `key` on the neighbours reached through `edge_label`, duplicates removed."""
    seen = []
    for vertex in g.vertices(criterion):
        for neighbour in g.adjacent(vertex.id, direction, edge_label):
            for value in neighbour.properties.get(key, []):
                if value not in seen:
                    seen.append(value)
    return seen


class QueryExecutor:

    def __init__(self, session: StoreSession):
        self.session = session

    def lookup(self, criterion: Criterion, label: Optional[str] = None) -> Optional[Dict[str, Any]]:
        """Point lookup: the first matching vertex with all its properties, or None."""
        with self.session.read_scope() as g:
            return lookup(g, criterion, label)

    def find_edge(self, source: Criterion, edge_label: str, target: Criterion) -> Optional[Dict[str, Any]]:
        """The first `edge_label` edge leading from a `source` vertex to a `target` vertex."""
        with self.session.read_scope() as g:
            return find_edge(g, source, edge_label, target)

    def range_values(self, key: str, minimum: Any) -> List[Any]:
        with self.session.read_scope() as g:
            return range_values(g, key, minimum)

    def exists(self, criterion: Criterion) -> bool:
        with self.session.read_scope() as g:
            return exists(g, criterion)

    def neighbor_names(self, criterion: Criterion, edge_label: str, key: str = "name",
                       direction: Direction = Direction.BOTH) -> List[Any]:
        with self.session.read_scope() as g:
            return neighbor_values(g, criterion, edge_label, key, direction)

    def summary(self) -> Dict[str, Any]:
        """Vertex and edge totals with per-label counts."""
        with self.session.read_scope() as g:
            counts = g.label_counts()
            return {
                "vertex_count": g.count_vertices(),
                "edge_count": g.count_edges(),
                "vertices": counts["vertices"],
                "edges": counts["edges"],
            }

    def read_report(self, plan: ReadPlan) -> ReadReport:
        """Run the standard reads in a single read scope and log what they find."""
        logger.info("reading elements")
        report = ReadReport()
        with self.session.read_scope() as g:
            report.lookup = lookup(g, plan.lookup)
            if report.lookup is not None:
                logger.info(str(report.lookup))
            else:
                logger.warning(f"{plan.lookup} not found")

            report.edge = find_edge(g, plan.edge_source, plan.edge_label, plan.edge_target)
            if report.edge is not None:
                logger.info(str(report.edge))
            else:
                logger.warning(f"{plan.edge_label} edge from {plan.edge_source} to {plan.edge_target} not found")

            report.range_values = range_values(g, plan.range_key, plan.range_minimum)
            logger.info(f"{plan.range_key} >= {plan.range_minimum}: {report.range_values}")

            report.exists = exists(g, plan.exists)
            if report.exists:
                logger.info(f"{plan.exists} exists")
            else:
                logger.warning(f"{plan.exists} not found")

            report.neighbors = neighbor_values(g, plan.neighbors_of, plan.neighbor_label, plan.display_key)
            logger.info(f"{plan.neighbor_label} neighbours of {plan.neighbors_of}: {report.neighbors}")
        return report
