"""
Interfaces the lifecycle core needs from a graph store engine.

An engine owns the connection and hands out two handles: a schema management
transaction and a traversal handle whose transaction is opened implicitly on
first access and ended with commit() or rollback().
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence, Union

from graph_lifecycle.common.config_validator import StoreConfig
from graph_lifecycle.common.errors import TransactionStateError
from graph_lifecycle.db.models import (
    Cardinality,
    CompositeIndex,
    Criterion,
    DataType,
    Direction,
    Edge,
    EdgeLabel,
    ElementKind,
    Multiplicity,
    PropertyKey,
    SchemaElement,
    Vertex,
    VertexLabel,
)
from graph_lifecycle.db.schema import SchemaRegistry

KeyRef = Union[str, PropertyKey]


@dataclass(frozen=True)
class StoreFeatures:
    supports_transactions: bool = True
    supports_geoshape: bool = True


def _key_name(key: KeyRef) -> str:
    return key.name if isinstance(key, PropertyKey) else key


class SchemaManagement(ABC):
    """
    A management transaction.

    Declarations are validated immediately against the existing schema plus
    everything declared earlier in this transaction, but only become visible
    to the store on commit(). rollback() discards them.
    """

    def __init__(self, registry: SchemaRegistry):
        self._pending = registry.copy()
        self._declared: List[SchemaElement] = []
        self._open = True

    @property
    def is_open(self) -> bool:
        return self._open

    def _declare(self, element: SchemaElement) -> SchemaElement:
        self._ensure_open()
        self._pending.declare(element)
        self._declared.append(element)
        return element

    def make_property_key(self, name: str, data_type: DataType,
                          cardinality: Cardinality = Cardinality.SINGLE) -> PropertyKey:
        return self._declare(PropertyKey(name, data_type, cardinality))

    def make_vertex_label(self, name: str) -> VertexLabel:
        return self._declare(VertexLabel(name))

    def make_edge_label(self, name: str, multiplicity: Multiplicity = Multiplicity.MULTI,
                        signature: Sequence[KeyRef] = ()) -> EdgeLabel:
        return self._declare(EdgeLabel(name, multiplicity, tuple(_key_name(key) for key in signature)))

    def build_composite_index(self, name: str, element: ElementKind, keys: Sequence[KeyRef],
                              label: Optional[str] = None) -> CompositeIndex:
        return self._declare(CompositeIndex(name, element, tuple(_key_name(key) for key in keys), label))

    def get_property_key(self, name: str) -> Optional[PropertyKey]:
        return self._pending.property_keys.get(name)

    def relation_types(self) -> List[SchemaElement]:
        """Property keys, vertex labels and edge labels, including ones declared in this transaction."""
        self._ensure_open()
        return self._pending.relation_types()

    def indexes(self) -> List[CompositeIndex]:
        return list(self._pending.indexes.values())

    def commit(self) -> None:
        self._ensure_open()
        try:
            if self._declared:
                self._persist(list(self._declared))
        finally:
            self._declared = []
            self._open = False

    def rollback(self) -> None:
        self._declared = []
        self._open = False

    def _ensure_open(self) -> None:
        if not self._open:
            raise TransactionStateError("Management transaction is already closed")

    @abstractmethod
    def _persist(self, elements: List[SchemaElement]) -> None:
        """Make the declared elements durable, all or nothing."""


class GraphTraversal(ABC):
    """Traversal/query handle with an implicit transaction."""

    features: StoreFeatures

    @abstractmethod
    def add_vertex(self, label: str, properties: Optional[Dict[str, Any]] = None) -> Any:
        """Create a vertex and return its store-assigned identity."""

    @abstractmethod
    def add_edge(self, out_id: Any, in_id: Any, label: str,
                 properties: Optional[Dict[str, Any]] = None) -> Any:
        """Create a directed edge out_id -> in_id and return its identity."""

    @abstractmethod
    def vertices(self, *criteria: Criterion, label: Optional[str] = None) -> List[Vertex]:
        """Vertices matching every criterion (and the label, when given)."""

    @abstractmethod
    def edges(self, vertex_id: Any, direction: Direction = Direction.OUT,
              label: Optional[str] = None) -> List[Edge]:
        """Edges incident to a vertex in the given direction."""

    @abstractmethod
    def set_property(self, vertex_id: Any, key: str, value: Any) -> None:
        """Assign a property value honouring the key's cardinality."""

    @abstractmethod
    def drop_vertex(self, vertex_id: Any) -> int:
        """Remove a vertex and its incident edges; returns the number of edges removed."""

    @abstractmethod
    def count_vertices(self) -> int: ...

    @abstractmethod
    def count_edges(self) -> int: ...

    @abstractmethod
    def label_counts(self) -> Dict[str, Dict[str, int]]:
        """{'vertices': {label: n}, 'edges': {label: n}}"""

    @abstractmethod
    def commit(self) -> None: ...

    @abstractmethod
    def rollback(self) -> None: ...

    @property
    @abstractmethod
    def in_transaction(self) -> bool: ...

    @abstractmethod
    def close(self) -> None:
        """Release the handle, rolling back any open transaction."""

    @abstractmethod
    def vertex(self, vertex_id: Any) -> Optional[Vertex]:
        """A single vertex by identity, or None."""

    def value_map(self, vertex_id: Any, with_tokens: bool = False) -> Dict[str, Any]:
        """All properties of a vertex as key -> list of values; id and label added with tokens."""
        vertex = self.vertex(vertex_id)
        if vertex is None:
            return {}
        values: Dict[str, Any] = {key: list(items) for key, items in vertex.properties.items()}
        if with_tokens:
            values["id"] = vertex.id
            values["label"] = vertex.label
        return values

    def edge_value_map(self, edge: Edge, with_tokens: bool = False) -> Dict[str, Any]:
        values: Dict[str, Any] = dict(edge.properties)
        if with_tokens:
            values["id"] = edge.id
            values["label"] = edge.label
        return values

    def adjacent(self, vertex_id: Any, direction: Direction = Direction.OUT,
                 label: Optional[str] = None) -> List[Vertex]:
        """Vertices at the other end of the matching edges, one entry per edge."""
        neighbours = []
        for edge in self.edges(vertex_id, direction, label):
            other_id = edge.in_id if edge.out_id == vertex_id else edge.out_id
            neighbour = self.vertex(other_id)
            if neighbour is not None:
                neighbours.append(neighbour)
        return neighbours

    def has_next(self, *criteria: Criterion, label: Optional[str] = None) -> bool:
        return bool(self.vertices(*criteria, label=label))


class GraphEngine(ABC):
    """Connection to one graph store."""

    def __init__(self, config: StoreConfig):
        self.config = config

    @property
    @abstractmethod
    def features(self) -> StoreFeatures: ...

    @property
    @abstractmethod
    def is_open(self) -> bool: ...

    @abstractmethod
    def connect(self) -> None:
        """Open the connection; raises StoreConnectionError on failure."""

    @abstractmethod
    def close(self) -> None: ...

    @abstractmethod
    def drop(self) -> None:
        """Destroy all data and schema in the store."""

    @abstractmethod
    def open_management(self) -> SchemaManagement: ...

    @abstractmethod
    def traversal(self) -> GraphTraversal: ...
