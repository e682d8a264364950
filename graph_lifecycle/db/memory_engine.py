"""
In-memory graph store engine.

Stores are named and shared process-wide, so a second session opened against
the same name sees everything the first one committed. Each implicit
transaction works on a private copy of the committed graph; commit publishes
the copy, rollback throws it away.
"""

import copy
import threading
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from graph_lifecycle.common.config_validator import StoreConfig
from graph_lifecycle.common.errors import TransactionStateError, WriteError
from graph_lifecycle.common.logger import logger
from graph_lifecycle.db.engine import GraphEngine, GraphTraversal, SchemaManagement, StoreFeatures
from graph_lifecycle.db.models import (
    Cardinality,
    Criterion,
    Direction,
    Edge,
    GeoPoint,
    SchemaElement,
    Vertex,
)
from graph_lifecycle.db.schema import SchemaRegistry


@dataclass
class GraphState:
    vertices: Dict[int, Vertex] = field(default_factory=dict)
    edges: Dict[int, Edge] = field(default_factory=dict)
    next_id: int = 1
    version: int = 0

    def copy(self) -> 'GraphState':
        return copy.deepcopy(self)


class InMemoryStore:
    """Committed graph and schema of one named store."""

    def __init__(self, name: str):
        self.name = name
        self.state = GraphState()
        self.schema = SchemaRegistry()
        self.lock = threading.RLock()


_stores: Dict[str, InMemoryStore] = {}
_stores_lock = threading.Lock()


def get_store(name: str) -> InMemoryStore:
    with _stores_lock:
        store = _stores.get(name)
        if store is None:
            store = InMemoryStore(name)
            _stores[name] = store
        return store


def drop_store(name: str) -> bool:
    with _stores_lock:
        return _stores.pop(name, None) is not None


def reset_stores() -> None:
    """Forget every in-memory store."""
    with _stores_lock:
        _stores.clear()


class InMemoryManagement(SchemaManagement):

    def __init__(self, store: InMemoryStore):
        with store.lock:
            super().__init__(store.schema)
        self._store = store

    def _persist(self, elements: List[SchemaElement]) -> None:
        with self._store.lock:
            # re-validate against what was committed since this transaction opened
            updated = self._store.schema.copy()
            for element in elements:
                updated.declare(element)
            self._store.schema = updated
        logger.debug(f"Committed {len(elements)} schema element(s) to '{self._store.name}'")


def _copy_vertex(vertex: Vertex) -> Vertex:
    return Vertex(vertex.id, vertex.label, {key: list(values) for key, values in vertex.properties.items()})


def _copy_edge(edge: Edge) -> Edge:
    return Edge(edge.id, edge.label, edge.out_id, edge.in_id, dict(edge.properties))


def _stored_value(value: Any) -> Any:
    return list(value) if isinstance(value, tuple) else copy.copy(value)


class InMemoryTraversal(GraphTraversal):

    def __init__(self, store: InMemoryStore, features: StoreFeatures, auto_schema: bool = True):
        self._store = store
        self.features = features
        self._auto_schema = auto_schema
        self._state: Optional[GraphState] = None
        self._closed = False

    # Transaction handling

    @property
    def in_transaction(self) -> bool:
        return self._state is not None

    def _graph(self) -> GraphState:
        if self._closed:
            raise TransactionStateError("Traversal handle is closed")
        if not self.features.supports_transactions:
            return self._store.state
        if self._state is None:
            with self._store.lock:
                self._state = self._store.state.copy()
        return self._state

    def commit(self) -> None:
        if self._state is None:
            return
        with self._store.lock:
            if self._store.state.version != self._state.version:
                self._state = None
                raise WriteError(f"Store '{self._store.name}' was modified by another transaction")
            self._state.version += 1
            self._store.state = self._state
        self._state = None

    def rollback(self) -> None:
        self._state = None

    def close(self) -> None:
        self.rollback()
        self._closed = True

    # Writes

    def _check_value(self, key: str, value: Any) -> None:
        if isinstance(value, GeoPoint) and not self.features.supports_geoshape:
            raise WriteError(f"Store does not support geo point values (property '{key}')")
        self._store.schema.check_property(key, value, self._auto_schema)

    def add_vertex(self, label: str, properties: Optional[Dict[str, Any]] = None) -> int:
        graph = self._graph()
        properties = properties or {}
        self._store.schema.check_vertex_label(label, self._auto_schema)
        for key, value in properties.items():
            self._check_value(key, value)

        vertex_id = graph.next_id
        graph.next_id += 1
        graph.vertices[vertex_id] = Vertex(
            vertex_id, label, {key: [_stored_value(value)] for key, value in properties.items()}
        )
        return vertex_id

    def add_edge(self, out_id: Any, in_id: Any, label: str,
                 properties: Optional[Dict[str, Any]] = None) -> int:
        graph = self._graph()
        properties = properties or {}
        for vertex_id in (out_id, in_id):
            if vertex_id not in graph.vertices:
                raise WriteError(f"Vertex {vertex_id} does not exist")
        edge_label = self._store.schema.edge_label(label, self._auto_schema)
        for key, value in properties.items():
            self._check_value(key, value)

        same_label = [edge for edge in graph.edges.values() if edge.label == label]
        SchemaRegistry.check_multiplicity(
            edge_label,
            out_count=sum(1 for edge in same_label if edge.out_id == out_id),
            in_count=sum(1 for edge in same_label if edge.in_id == in_id),
            pair_count=sum(1 for edge in same_label if edge.out_id == out_id and edge.in_id == in_id),
        )

        edge_id = graph.next_id
        graph.next_id += 1
        graph.edges[edge_id] = Edge(
            edge_id, label, out_id, in_id, {key: _stored_value(value) for key, value in properties.items()}
        )
        return edge_id

    def set_property(self, vertex_id: Any, key: str, value: Any) -> None:
        graph = self._graph()
        vertex = graph.vertices.get(vertex_id)
        if vertex is None:
            raise WriteError(f"Vertex {vertex_id} does not exist")
        self._check_value(key, value)

        cardinality = self._store.schema.cardinality(key)
        values = vertex.properties.setdefault(key, [])
        if cardinality is Cardinality.SINGLE:
            values[:] = [_stored_value(value)]
        elif cardinality is Cardinality.SET and value in values:
            return
        else:
            values.append(_stored_value(value))

    def drop_vertex(self, vertex_id: Any) -> int:
        graph = self._graph()
        if graph.vertices.pop(vertex_id, None) is None:
            return 0
        incident = [edge_id for edge_id, edge in graph.edges.items()
                    if edge.out_id == vertex_id or edge.in_id == vertex_id]
        for edge_id in incident:
            del graph.edges[edge_id]
        return len(incident)

    # Reads

    def vertex(self, vertex_id: Any) -> Optional[Vertex]:
        vertex = self._graph().vertices.get(vertex_id)
        return _copy_vertex(vertex) if vertex is not None else None

    def vertices(self, *criteria: Criterion, label: Optional[str] = None) -> List[Vertex]:
        matches = []
        for vertex_id in sorted(self._graph().vertices):
            vertex = self._graph().vertices[vertex_id]
            if label is not None and vertex.label != label:
                continue
            if all(criterion.matches(vertex.properties.get(criterion.key, [])) for criterion in criteria):
                matches.append(_copy_vertex(vertex))
        return matches

    def edges(self, vertex_id: Any, direction: Direction = Direction.OUT,
              label: Optional[str] = None) -> List[Edge]:
        matches = []
        for edge_id in sorted(self._graph().edges):
            edge = self._graph().edges[edge_id]
            if label is not None and edge.label != label:
                continue
            outgoing = edge.out_id == vertex_id and direction in (Direction.OUT, Direction.BOTH)
            incoming = edge.in_id == vertex_id and direction in (Direction.IN, Direction.BOTH)
            if outgoing or incoming:
                matches.append(_copy_edge(edge))
        return matches

    def count_vertices(self) -> int:
        return len(self._graph().vertices)

    def count_edges(self) -> int:
        return len(self._graph().edges)

    def label_counts(self) -> Dict[str, Dict[str, int]]:
        graph = self._graph()
        counts: Dict[str, Dict[str, int]] = {"vertices": {}, "edges": {}}
        for vertex in graph.vertices.values():
            counts["vertices"][vertex.label] = counts["vertices"].get(vertex.label, 0) + 1
        for edge in graph.edges.values():
            counts["edges"][edge.label] = counts["edges"].get(edge.label, 0) + 1
        return counts


class InMemoryGraphEngine(GraphEngine):
    """Engine for `storage.backend: inmemory`."""

    def __init__(self, config: StoreConfig):
        super().__init__(config)
        self._store: Optional[InMemoryStore] = None
        self._features = StoreFeatures(
            supports_transactions=config.transactions,
            supports_geoshape=config.geoshape,
        )

    @property
    def features(self) -> StoreFeatures:
        return self._features

    @property
    def is_open(self) -> bool:
        return self._store is not None

    def connect(self) -> None:
        self._store = get_store(self.config.name)
        logger.debug(f"Attached to in-memory store '{self.config.name}'")

    def close(self) -> None:
        self._store = None

    def drop(self) -> None:
        if drop_store(self.config.name):
            logger.info(f"Dropped in-memory store '{self.config.name}'")
        else:
            logger.warning(f"In-memory store '{self.config.name}' does not exist, nothing to drop")
        if self._store is not None:
            self._store = get_store(self.config.name)

    def _require_store(self) -> InMemoryStore:
        if self._store is None:
            raise TransactionStateError("Engine is not connected")
        return self._store

    def open_management(self) -> InMemoryManagement:
        return InMemoryManagement(self._require_store())

    def traversal(self) -> InMemoryTraversal:
        return InMemoryTraversal(self._require_store(), self._features, self.config.auto_schema)
