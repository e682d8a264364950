"""
Schema registry shared by the store engines.

Holds the declared property keys, labels and composite indexes, validates new
declarations against them and checks data writes against the declared types,
cardinalities and edge multiplicities.
"""

from typing import Any, Dict, Iterable, List, Optional

from graph_lifecycle.common.errors import SchemaConflictError, WriteError
from graph_lifecycle.db.models import (
    Cardinality,
    CompositeIndex,
    DataType,
    EdgeLabel,
    ElementKind,
    Multiplicity,
    PropertyKey,
    SchemaElement,
    VertexLabel,
)


class SchemaRegistry:
    """Declared schema of one store."""

    def __init__(self, elements: Iterable[SchemaElement] = ()):
        self.property_keys: Dict[str, PropertyKey] = {}
        self.vertex_labels: Dict[str, VertexLabel] = {}
        self.edge_labels: Dict[str, EdgeLabel] = {}
        self.indexes: Dict[str, CompositeIndex] = {}
        for element in elements:
            self.declare(element)

    def copy(self) -> 'SchemaRegistry':
        return SchemaRegistry(self.elements())

    def elements(self) -> List[SchemaElement]:
        return [
            *self.property_keys.values(),
            *self.vertex_labels.values(),
            *self.edge_labels.values(),
            *self.indexes.values(),
        ]

    def relation_types(self) -> List[SchemaElement]:
        return [*self.property_keys.values(), *self.vertex_labels.values(), *self.edge_labels.values()]

    # Declarations

    def declare(self, element: SchemaElement) -> SchemaElement:
        """
        Add a schema element after validating it.

        Raises:
            SchemaConflictError: On a duplicate name or a reference to an undeclared key
        """
        if isinstance(element, PropertyKey):
            self._check_relation_name_free(element.name)
            self.property_keys[element.name] = element
        elif isinstance(element, VertexLabel):
            if element.name in self.vertex_labels:
                raise SchemaConflictError(f"Vertex label '{element.name}' is already defined")
            self.vertex_labels[element.name] = element
        elif isinstance(element, EdgeLabel):
            self._check_relation_name_free(element.name)
            self._check_keys_declared(element.signature, f"signature of edge label '{element.name}'")
            self.edge_labels[element.name] = element
        elif isinstance(element, CompositeIndex):
            if element.name in self.indexes:
                raise SchemaConflictError(f"Index '{element.name}' is already defined")
            if not element.keys:
                raise SchemaConflictError(f"Index '{element.name}' must have at least one key")
            self._check_keys_declared(element.keys, f"index '{element.name}'")
            if element.label is not None:
                labels = self.vertex_labels if element.element is ElementKind.VERTEX else self.edge_labels
                if element.label not in labels:
                    raise SchemaConflictError(
                        f"Index '{element.name}' is restricted to undeclared {element.element.value} label '{element.label}'"
                    )
            self.indexes[element.name] = element
        else:
            raise SchemaConflictError(f"Unknown schema element: {element!r}")
        return element

    def _check_relation_name_free(self, name: str) -> None:
        # property keys and edge labels share one namespace
        if name in self.property_keys or name in self.edge_labels:
            raise SchemaConflictError(f"Relation type '{name}' is already defined")

    def _check_keys_declared(self, keys: Iterable[str], owner: str) -> None:
        missing = [key for key in keys if key not in self.property_keys]
        if missing:
            raise SchemaConflictError(f"Undeclared property key(s) {missing} referenced by {owner}")

    # Write-path checks

    def check_vertex_label(self, label: str, auto_schema: bool) -> None:
        if label not in self.vertex_labels and not auto_schema:
            raise WriteError(f"Vertex label '{label}' is not defined")

    def edge_label(self, label: str, auto_schema: bool) -> EdgeLabel:
        edge_label = self.edge_labels.get(label)
        if edge_label is not None:
            return edge_label
        if not auto_schema:
            raise WriteError(f"Edge label '{label}' is not defined")
        return EdgeLabel(label)

    def check_property(self, key: str, value: Any, auto_schema: bool) -> None:
        if value is None:
            raise WriteError(f"Property '{key}' cannot be set to None")
        property_key = self.property_keys.get(key)
        if property_key is None:
            if not auto_schema:
                raise WriteError(f"Property key '{key}' is not defined")
            return
        if not property_key.data_type.accepts(value):
            raise WriteError(
                f"Value {value!r} of type {type(value).__name__} is not valid for property key "
                f"'{key}' ({property_key.data_type.value})"
            )

    def cardinality(self, key: str) -> Cardinality:
        property_key = self.property_keys.get(key)
        return property_key.cardinality if property_key else Cardinality.SINGLE

    @staticmethod
    def check_multiplicity(edge_label: EdgeLabel, out_count: int, in_count: int, pair_count: int) -> None:
        """
        Validate a new edge against its label's multiplicity.

        Args:
            edge_label: Label of the edge about to be added
            out_count: Existing edges of this label leaving the source vertex
            in_count: Existing edges of this label entering the target vertex
            pair_count: Existing edges of this label from source to target
        """
        multiplicity = edge_label.multiplicity
        if multiplicity.unique_out and out_count > 0:
            raise WriteError(f"Edge label '{edge_label.name}' ({multiplicity.value}) allows one outgoing edge per vertex")
        if multiplicity.unique_in and in_count > 0:
            raise WriteError(f"Edge label '{edge_label.name}' ({multiplicity.value}) allows one incoming edge per vertex")
        if multiplicity is Multiplicity.SIMPLE and pair_count > 0:
            raise WriteError(f"Edge label '{edge_label.name}' (simple) allows one edge per vertex pair")


def element_to_row(element: SchemaElement) -> Dict[str, Any]:
    """Flatten a schema element into primitive values for persistence."""
    row: Dict[str, Any] = {"kind": element.kind, "name": element.name}
    if isinstance(element, PropertyKey):
        row.update(data_type=element.data_type.value, cardinality=element.cardinality.value)
    elif isinstance(element, EdgeLabel):
        row.update(multiplicity=element.multiplicity.value, signature=list(element.signature))
    elif isinstance(element, CompositeIndex):
        row.update(element=element.element.value, keys=list(element.keys))
        if element.label is not None:
            row["label"] = element.label
    return row


def element_from_row(row: Dict[str, Any]) -> Optional[SchemaElement]:
    kind = row.get("kind")
    if kind == PropertyKey.kind:
        return PropertyKey(row["name"], DataType(row["data_type"]), Cardinality(row.get("cardinality", "single")))
    if kind == VertexLabel.kind:
        return VertexLabel(row["name"])
    if kind == EdgeLabel.kind:
        return EdgeLabel(row["name"], Multiplicity(row.get("multiplicity", "multi")), tuple(row.get("signature") or ()))
    if kind == CompositeIndex.kind:
        return CompositeIndex(row["name"], ElementKind(row["element"]), tuple(row["keys"]), row.get("label"))
    return None


ELEMENT_ORDER = {
    PropertyKey.kind: 0,
    VertexLabel.kind: 1,
    EdgeLabel.kind: 2,
    CompositeIndex.kind: 3,
}


def registry_from_rows(rows: Iterable[Dict[str, Any]]) -> SchemaRegistry:
    """Rebuild a registry from persisted rows, declaring keys before what references them."""
    elements = [element for element in (element_from_row(row) for row in rows) if element is not None]
    elements.sort(key=lambda element: ELEMENT_ORDER[element.kind])
    return SchemaRegistry(elements)
