"""
Data model for the property graph: schema declarations, value types,
query criteria and the records traversals hand back.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional, Tuple, Union

INT32_MIN, INT32_MAX = -(2 ** 31), 2 ** 31 - 1
INT64_MIN, INT64_MAX = -(2 ** 63), 2 ** 63 - 1


@dataclass(frozen=True)
class GeoPoint:
    """A geographic coordinate in decimal degrees."""
    latitude: float
    longitude: float

    def __post_init__(self):
        if not -90.0 <= self.latitude <= 90.0:
            raise ValueError(f"latitude out of range: {self.latitude}")
        if not -180.0 <= self.longitude <= 180.0:
            raise ValueError(f"longitude out of range: {self.longitude}")

    def as_pair(self) -> List[float]:
        """Plain encoding used when the store has no native geo type."""
        return [float(self.latitude), float(self.longitude)]


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


class DataType(Enum):
    STRING = "string"
    INTEGER = "integer"
    LONG = "long"
    FLOAT = "float"
    BOOLEAN = "boolean"
    GEO_POINT = "geo_point"
    FLOAT_ARRAY = "float_array"

    def accepts(self, value: Any) -> bool:
        """Return True if `value` is a legal value for a key of this type."""
        if self is DataType.STRING:
            return isinstance(value, str)
        if self is DataType.INTEGER:
            return isinstance(value, int) and not isinstance(value, bool) and INT32_MIN <= value <= INT32_MAX
        if self is DataType.LONG:
            return isinstance(value, int) and not isinstance(value, bool) and INT64_MIN <= value <= INT64_MAX
        if self is DataType.FLOAT:
            return _is_number(value)
        if self is DataType.BOOLEAN:
            return isinstance(value, bool)
        if self is DataType.GEO_POINT:
            return isinstance(value, GeoPoint)
        if self is DataType.FLOAT_ARRAY:
            return isinstance(value, (list, tuple)) and all(_is_number(item) for item in value)
        return False


class Cardinality(Enum):
    SINGLE = "single"
    LIST = "list"
    SET = "set"


class Multiplicity(Enum):
    MULTI = "multi"
    SIMPLE = "simple"
    MANY2ONE = "many2one"
    ONE2MANY = "one2many"
    ONE2ONE = "one2one"

    @property
    def unique_out(self) -> bool:
        return self in (Multiplicity.MANY2ONE, Multiplicity.ONE2ONE)

    @property
    def unique_in(self) -> bool:
        return self in (Multiplicity.ONE2MANY, Multiplicity.ONE2ONE)


class ElementKind(Enum):
    VERTEX = "vertex"
    EDGE = "edge"


class Direction(Enum):
    OUT = "out"
    IN = "in"
    BOTH = "both"


# Schema elements

@dataclass(frozen=True)
class PropertyKey:
    name: str
    data_type: DataType
    cardinality: Cardinality = Cardinality.SINGLE
    kind = "property_key"


@dataclass(frozen=True)
class VertexLabel:
    name: str
    kind = "vertex_label"


@dataclass(frozen=True)
class EdgeLabel:
    name: str
    multiplicity: Multiplicity = Multiplicity.MULTI
    signature: Tuple[str, ...] = ()
    kind = "edge_label"


@dataclass(frozen=True)
class CompositeIndex:
    """Exact-match index over one or more property keys."""
    name: str
    element: ElementKind
    keys: Tuple[str, ...]
    label: Optional[str] = None
    kind = "composite_index"


SchemaElement = Union[PropertyKey, VertexLabel, EdgeLabel, CompositeIndex]


# Query criteria

class Predicate(Enum):
    EQ = "eq"
    NEQ = "neq"
    GT = "gt"
    GTE = "gte"
    LT = "lt"
    LTE = "lte"

    def test(self, candidate: Any, value: Any) -> bool:
        if self is Predicate.EQ:
            return candidate == value
        if self is Predicate.NEQ:
            return candidate != value
        if not (_is_number(candidate) and _is_number(value)):
            return False
        if self is Predicate.GT:
            return candidate > value
        if self is Predicate.GTE:
            return candidate >= value
        if self is Predicate.LT:
            return candidate < value
        return candidate <= value


CYPHER_OPERATORS = {
    Predicate.EQ: "=",
    Predicate.NEQ: "<>",
    Predicate.GT: ">",
    Predicate.GTE: ">=",
    Predicate.LT: "<",
    Predicate.LTE: "<=",
}


@dataclass(frozen=True)
class Criterion:
    """A filter on one property: `key <predicate> value`."""
    key: str
    value: Any
    predicate: Predicate = Predicate.EQ

    def matches(self, values: Iterable[Any]) -> bool:
        """True if any of the element's values for `key` satisfies the predicate."""
        return any(self.predicate.test(candidate, self.value) for candidate in values)

    def __str__(self) -> str:
        return f"{self.key} {CYPHER_OPERATORS[self.predicate]} {self.value!r}"


def eq(key: str, value: Any) -> Criterion:
    return Criterion(key, value, Predicate.EQ)


def neq(key: str, value: Any) -> Criterion:
    return Criterion(key, value, Predicate.NEQ)


def gt(key: str, value: Any) -> Criterion:
    return Criterion(key, value, Predicate.GT)


def gte(key: str, value: Any) -> Criterion:
    return Criterion(key, value, Predicate.GTE)


def lt(key: str, value: Any) -> Criterion:
    return Criterion(key, value, Predicate.LT)


def lte(key: str, value: Any) -> Criterion:
    return Criterion(key, value, Predicate.LTE)


# Records returned by traversals

@dataclass
class Vertex:
    id: Any
    label: str
    properties: Dict[str, List[Any]] = field(default_factory=dict)

    def value(self, key: str, default: Any = None) -> Any:
        values = self.properties.get(key)
        return values[0] if values else default


@dataclass
class Edge:
    id: Any
    label: str
    out_id: Any
    in_id: Any
    properties: Dict[str, Any] = field(default_factory=dict)


# Declarative inputs for the provisioner and the seed loader

@dataclass(frozen=True)
class SchemaDefinition:
    """Everything to declare, in the order it must be declared."""
    property_keys: Tuple[PropertyKey, ...] = ()
    vertex_labels: Tuple[VertexLabel, ...] = ()
    edge_labels: Tuple[EdgeLabel, ...] = ()
    composite_indexes: Tuple[CompositeIndex, ...] = ()

    def elements(self) -> List[SchemaElement]:
        return [*self.property_keys, *self.vertex_labels, *self.edge_labels, *self.composite_indexes]


@dataclass(frozen=True)
class VertexSpec:
    ref: str
    label: str
    properties: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class EdgeSpec:
    out_ref: str
    label: str
    in_ref: str
    properties: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class Dataset:
    name: str
    marker: Criterion
    marker_label: Optional[str]
    vertices: Tuple[VertexSpec, ...]
    edges: Tuple[EdgeSpec, ...]
