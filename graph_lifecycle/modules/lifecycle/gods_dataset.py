"""
The "graph of the gods" sample: schema, seed data and the standard workload.

12 vertices and 17 edges. `saturn` is the marker vertex used to detect an
already-seeded store.
"""

from graph_lifecycle.db.models import (
    CompositeIndex,
    DataType,
    Dataset,
    EdgeLabel,
    EdgeSpec,
    ElementKind,
    GeoPoint,
    Multiplicity,
    PropertyKey,
    SchemaDefinition,
    VertexLabel,
    VertexSpec,
    eq,
)
from graph_lifecycle.modules.lifecycle.workload import ReadPlan, Workload

MARKER_NAME = "saturn"


def gods_schema(supports_geoshape: bool = True) -> SchemaDefinition:
    """Schema for the dataset; `place` falls back to a [lat, lon] array without geo support."""
    return SchemaDefinition(
        property_keys=(
            PropertyKey("name", DataType.STRING),
            PropertyKey("age", DataType.INTEGER),
            PropertyKey("time", DataType.INTEGER),
            PropertyKey("reason", DataType.STRING),
            PropertyKey("place", DataType.GEO_POINT if supports_geoshape else DataType.FLOAT_ARRAY),
        ),
        vertex_labels=tuple(
            VertexLabel(name) for name in ("titan", "location", "god", "demigod", "human", "monster")
        ),
        edge_labels=(
            EdgeLabel("father", Multiplicity.MANY2ONE),
            EdgeLabel("mother", Multiplicity.MANY2ONE),
            # signature refers to a property key, so keys are declared first
            EdgeLabel("lives", signature=("reason",)),
            EdgeLabel("pet"),
            EdgeLabel("brother"),
            EdgeLabel("battled"),
        ),
        composite_indexes=(
            CompositeIndex("nameIndex", ElementKind.VERTEX, ("name",)),
        ),
    )


def _vertex(label: str, name: str, age: int = None) -> VertexSpec:
    properties = {"name": name}
    if age is not None:
        properties["age"] = age
    return VertexSpec(ref=name, label=label, properties=properties)


GODS_DATASET = Dataset(
    name="graph of the gods",
    marker=eq("name", MARKER_NAME),
    marker_label=None,
    vertices=(
        _vertex("titan", "saturn", 10000),
        _vertex("location", "sky"),
        _vertex("location", "sea"),
        _vertex("god", "jupiter", 5000),
        _vertex("god", "neptune", 4500),
        _vertex("demigod", "hercules", 30),
        _vertex("human", "alcmene", 45),
        _vertex("god", "pluto", 4000),
        _vertex("monster", "nemean"),
        _vertex("monster", "hydra"),
        _vertex("monster", "cerberus"),
        _vertex("location", "tartarus"),
    ),
    edges=(
        EdgeSpec("jupiter", "father", "saturn"),
        EdgeSpec("jupiter", "lives", "sky", {"reason": "loves fresh breezes"}),
        EdgeSpec("jupiter", "brother", "neptune"),
        EdgeSpec("jupiter", "brother", "pluto"),

        EdgeSpec("neptune", "lives", "sea", {"reason": "loves waves"}),
        EdgeSpec("neptune", "brother", "jupiter"),
        EdgeSpec("neptune", "brother", "pluto"),

        EdgeSpec("hercules", "father", "jupiter"),
        EdgeSpec("hercules", "mother", "alcmene"),
        EdgeSpec("hercules", "battled", "nemean", {"time": 1, "place": GeoPoint(38.1, 23.7)}),
        EdgeSpec("hercules", "battled", "hydra", {"time": 2, "place": GeoPoint(37.7, 23.9)}),
        EdgeSpec("hercules", "battled", "cerberus", {"time": 12, "place": GeoPoint(39.0, 22.0)}),

        EdgeSpec("pluto", "brother", "jupiter"),
        EdgeSpec("pluto", "brother", "neptune"),
        EdgeSpec("pluto", "lives", "tartarus", {"reason": "no fear of death"}),
        EdgeSpec("pluto", "pet", "cerberus"),

        EdgeSpec("cerberus", "lives", "tartarus"),
    ),
)

GODS_READ_PLAN = ReadPlan(
    lookup=eq("name", "jupiter"),
    edge_source=eq("name", "hercules"),
    edge_label="battled",
    edge_target=eq("name", "hydra"),
    range_key="age",
    range_minimum=5000,
    exists=eq("name", "pluto"),
    neighbors_of=eq("name", "jupiter"),
    neighbor_label="brother",
)


def gods_workload(supports_geoshape: bool = True) -> Workload:
    return Workload(
        schema=gods_schema(supports_geoshape),
        dataset=GODS_DATASET,
        reads=GODS_READ_PLAN,
        update_target=eq("name", "jupiter"),
        update_key="ts",
        delete_target=eq("name", "pluto"),
    )
