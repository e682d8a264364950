"""
Neo4j graph store engine built on the official neo4j driver.

Mapping onto Neo4j:
- every vertex carries the base label `Vertex` plus its own label
- edges are relationships whose type is the edge label
- schema elements are persisted as `:_Schema` nodes
- composite indexes become range indexes created with IF NOT EXISTS
- geo points are stored as WGS-84 points

The traversal handle begins a driver transaction on first access and keeps it
until commit() or rollback(), so reads and writes behave like an implicit
transaction.
"""

from typing import Any, Dict, List, Optional

from neo4j import GraphDatabase
from neo4j.exceptions import (
    AuthError,
    ConfigurationError,
    DriverError,
    Neo4jError,
    ServiceUnavailable,
    SessionExpired,
)
from neo4j.spatial import WGS84Point

from graph_lifecycle.common.config_validator import StoreConfig
from graph_lifecycle.common.errors import (
    SchemaConflictError,
    StoreConnectionError,
    TransactionStateError,
    WriteError,
)
from graph_lifecycle.common.logger import logger
from graph_lifecycle.db.engine import GraphEngine, GraphTraversal, SchemaManagement, StoreFeatures
from graph_lifecycle.db.models import (
    CYPHER_OPERATORS,
    Cardinality,
    CompositeIndex,
    Criterion,
    Direction,
    Edge,
    ElementKind,
    GeoPoint,
    SchemaElement,
    Vertex,
)
from graph_lifecycle.db.schema import SchemaRegistry, element_to_row, registry_from_rows

BASE_LABEL = "Vertex"
SCHEMA_LABEL = "_Schema"

LOAD_SCHEMA_QUERY = f"MATCH (s:{SCHEMA_LABEL}) RETURN properties(s) AS row"


def quote(name: str) -> str:
    """Backtick-quote a label, relationship type, key or index name for Cypher."""
    return "`" + name.replace("`", "``") + "`"


def to_neo4j(value: Any) -> Any:
    if isinstance(value, GeoPoint):
        return WGS84Point((value.longitude, value.latitude))
    if isinstance(value, (list, tuple)):
        return [to_neo4j(item) for item in value]
    return value


def from_neo4j(value: Any) -> Any:
    if isinstance(value, WGS84Point):
        return GeoPoint(latitude=value.latitude, longitude=value.longitude)
    if isinstance(value, list):
        return [from_neo4j(item) for item in value]
    return value


def translate_error(error: Exception, action: str, kind=WriteError) -> Exception:
    """Map a driver exception onto an error kind; lost connections become StoreConnectionError."""
    if isinstance(error, (ServiceUnavailable, SessionExpired)):
        return StoreConnectionError(f"Lost connection to Neo4j during {action}: {error}")
    return kind(f"Neo4j {action} failed: {error}")


def load_registry(runner) -> SchemaRegistry:
    """Read the persisted schema through a session or transaction."""
    try:
        return registry_from_rows([record["row"] for record in runner.run(LOAD_SCHEMA_QUERY)])
    except (Neo4jError, DriverError) as e:
        raise translate_error(e, "schema read", SchemaConflictError) from e


def index_statements(index: CompositeIndex, registry: SchemaRegistry) -> List[tuple]:
    """
    Build the CREATE INDEX statements for a composite index.

    Returns:
        List of (index name, statement) pairs; edge indexes without a label
        get one index per declared edge label.
    """
    if index.element is ElementKind.VERTEX:
        fields = ", ".join(f"v.{quote(key)}" for key in index.keys)
        label = index.label or BASE_LABEL
        return [(index.name, f"CREATE INDEX {quote(index.name)} IF NOT EXISTS FOR (v:{quote(label)}) ON ({fields})")]

    labels = [index.label] if index.label else sorted(registry.edge_labels)
    fields = ", ".join(f"e.{quote(key)}" for key in index.keys)
    statements = []
    for label in labels:
        name = index.name if index.label else f"{index.name}_{label}"
        statements.append(
            (name, f"CREATE INDEX {quote(name)} IF NOT EXISTS FOR ()-[e:{quote(label)}]-() ON ({fields})")
        )
    return statements


def _create_schema_nodes(tx, rows: List[Dict[str, Any]]) -> None:
    tx.run(f"UNWIND $rows AS row CREATE (s:{SCHEMA_LABEL}) SET s = row", rows=rows).consume()


def _drop_indexes(session, names: List[str]) -> None:
    """Remove indexes created by a schema commit that did not complete."""
    for name in names:
        try:
            session.run(f"DROP INDEX {quote(name)} IF EXISTS").consume()
        except (Neo4jError, DriverError) as e:
            logger.warning(f"Could not drop index {name} after failed schema commit: {e}")


class Neo4jManagement(SchemaManagement):

    def __init__(self, driver, database: str):
        self._driver = driver
        self._database = database
        with driver.session(database=database) as session:
            super().__init__(load_registry(session))

    def _persist(self, elements: List[SchemaElement]) -> None:
        rows = [element_to_row(element) for element in elements]
        with self._driver.session(database=self._database) as session:
            registry = load_registry(session)
            for element in elements:
                registry.declare(element)

            # schema commands cannot share a transaction with data writes, so the
            # indexes go first and the metadata nodes are only written once they exist
            created = []
            try:
                for index in (element for element in elements if isinstance(element, CompositeIndex)):
                    for name, statement in index_statements(index, registry):
                        logger.debug(f"    {statement}")
                        session.run(statement).consume()
                        created.append(name)
                session.execute_write(_create_schema_nodes, rows)
            except (Neo4jError, DriverError) as e:
                _drop_indexes(session, created)
                raise translate_error(e, "schema commit", SchemaConflictError) from e


class Neo4jTraversal(GraphTraversal):

    def __init__(self, driver, database: str, features: StoreFeatures, auto_schema: bool = True):
        self._session = driver.session(database=database)
        self.features = features
        self._auto_schema = auto_schema
        self._tx = None
        self._registry: Optional[SchemaRegistry] = None
        self._closed = False

    # Transaction handling

    @property
    def in_transaction(self) -> bool:
        return self._tx is not None

    def _runner(self):
        if self._closed:
            raise TransactionStateError("Traversal handle is closed")
        if not self.features.supports_transactions:
            return self._session
        if self._tx is None:
            self._tx = self._session.begin_transaction()
            self._registry = None
        return self._tx

    def _run(self, query: str, action: str = "query", **params) -> list:
        runner = self._runner()
        try:
            return list(runner.run(query, params))
        except (Neo4jError, DriverError) as e:
            raise translate_error(e, action) from e

    def _write(self, query: str, **params) -> list:
        return self._run(query, action="write", **params)

    def _schema(self) -> SchemaRegistry:
        if self._registry is None or not self.features.supports_transactions:
            self._registry = load_registry(self._runner())
        return self._registry

    def commit(self) -> None:
        if self._tx is None:
            return
        tx, self._tx = self._tx, None
        try:
            tx.commit()
        except (Neo4jError, DriverError) as e:
            raise translate_error(e, "commit") from e

    def rollback(self) -> None:
        if self._tx is None:
            return
        tx, self._tx = self._tx, None
        try:
            tx.rollback()
        except (Neo4jError, DriverError) as e:
            raise translate_error(e, "rollback", TransactionStateError) from e

    def close(self) -> None:
        try:
            self.rollback()
        finally:
            self._closed = True
            self._session.close()

    # Conversions

    def _check_value(self, key: str, value: Any) -> None:
        if isinstance(value, GeoPoint) and not self.features.supports_geoshape:
            raise WriteError(f"Store does not support geo point values (property '{key}')")
        self._schema().check_property(key, value, self._auto_schema)

    def _to_vertex(self, record) -> Vertex:
        registry = self._schema()
        labels = [label for label in record["labels"] if label != BASE_LABEL]
        properties = {}
        for key, raw in record["props"].items():
            value = from_neo4j(raw)
            if registry.cardinality(key) is Cardinality.SINGLE:
                properties[key] = [value]
            else:
                properties[key] = list(value)
        return Vertex(record["id"], labels[0] if labels else BASE_LABEL, properties)

    @staticmethod
    def _to_edge(record) -> Edge:
        properties = {key: from_neo4j(value) for key, value in record["props"].items()}
        return Edge(record["id"], record["label"], record["out_id"], record["in_id"], properties)

    # Writes

    def add_vertex(self, label: str, properties: Optional[Dict[str, Any]] = None) -> str:
        properties = properties or {}
        self._schema().check_vertex_label(label, self._auto_schema)
        for key, value in properties.items():
            self._check_value(key, value)
        stored = {}
        for key, value in properties.items():
            multi = self._schema().cardinality(key) is not Cardinality.SINGLE
            stored[key] = to_neo4j([value] if multi else value)

        records = self._write(
            f"CREATE (v:{BASE_LABEL}:{quote(label)}) SET v = $props RETURN elementId(v) AS id",
            props=stored,
        )
        return records[0]["id"]

    def add_edge(self, out_id: Any, in_id: Any, label: str,
                 properties: Optional[Dict[str, Any]] = None) -> str:
        properties = properties or {}
        edge_label = self._schema().edge_label(label, self._auto_schema)
        for key, value in properties.items():
            self._check_value(key, value)

        edge_type = quote(label)
        counts = self._run(
            f"""
            MATCH (a:{BASE_LABEL}) WHERE elementId(a) = $out_id
            MATCH (b:{BASE_LABEL}) WHERE elementId(b) = $in_id
            RETURN COUNT {{ (a)-[:{edge_type}]->() }} AS out_count,
                   COUNT {{ ()-[:{edge_type}]->(b) }} AS in_count,
                   COUNT {{ (a)-[:{edge_type}]->(b) }} AS pair_count
            """,
            out_id=out_id,
            in_id=in_id,
        )
        if not counts:
            raise WriteError(f"Vertex {out_id} or {in_id} does not exist")
        SchemaRegistry.check_multiplicity(
            edge_label, counts[0]["out_count"], counts[0]["in_count"], counts[0]["pair_count"]
        )

        records = self._write(
            f"""
            MATCH (a:{BASE_LABEL}) WHERE elementId(a) = $out_id
            MATCH (b:{BASE_LABEL}) WHERE elementId(b) = $in_id
            CREATE (a)-[e:{edge_type}]->(b)
            SET e = $props
            RETURN elementId(e) AS id
            """,
            out_id=out_id,
            in_id=in_id,
            props={key: to_neo4j(value) for key, value in properties.items()},
        )
        return records[0]["id"]

    def set_property(self, vertex_id: Any, key: str, value: Any) -> None:
        self._check_value(key, value)
        cardinality = self._schema().cardinality(key)
        field = f"v.{quote(key)}"
        if cardinality is Cardinality.SINGLE:
            assignment = f"{field} = $value"
        elif cardinality is Cardinality.LIST:
            assignment = f"{field} = coalesce({field}, []) + [$value]"
        else:
            assignment = (f"{field} = CASE WHEN $value IN coalesce({field}, []) "
                          f"THEN {field} ELSE coalesce({field}, []) + [$value] END")

        records = self._write(
            f"MATCH (v:{BASE_LABEL}) WHERE elementId(v) = $id SET {assignment} RETURN count(v) AS n",
            id=vertex_id,
            value=to_neo4j(value),
        )
        if not records or records[0]["n"] == 0:
            raise WriteError(f"Vertex {vertex_id} does not exist")

    def drop_vertex(self, vertex_id: Any) -> int:
        records = self._write(
            f"""
            MATCH (v:{BASE_LABEL}) WHERE elementId(v) = $id
            WITH v, COUNT {{ (v)--() }} AS edge_count
            DETACH DELETE v
            RETURN edge_count
            """,
            id=vertex_id,
        )
        return records[0]["edge_count"] if records else 0

    # Reads

    def vertex(self, vertex_id: Any) -> Optional[Vertex]:
        records = self._run(
            f"MATCH (v:{BASE_LABEL}) WHERE elementId(v) = $id "
            f"RETURN elementId(v) AS id, labels(v) AS labels, properties(v) AS props",
            id=vertex_id,
        )
        return self._to_vertex(records[0]) if records else None

    def _condition(self, criterion: Criterion, param: str) -> str:
        field = f"v.{quote(criterion.key)}"
        operator = CYPHER_OPERATORS[criterion.predicate]
        if self._schema().cardinality(criterion.key) is Cardinality.SINGLE:
            return f"{field} {operator} ${param}"
        return f"any(item IN coalesce({field}, []) WHERE item {operator} ${param})"

    def vertices(self, *criteria: Criterion, label: Optional[str] = None) -> List[Vertex]:
        pattern = f"v:{BASE_LABEL}" + (f":{quote(label)}" if label else "")
        params = {f"p{i}": to_neo4j(criterion.value) for i, criterion in enumerate(criteria)}
        conditions = [self._condition(criterion, f"p{i}") for i, criterion in enumerate(criteria)]
        where = f"WHERE {' AND '.join(conditions)} " if conditions else ""
        records = self._run(
            f"MATCH ({pattern}) {where}"
            f"RETURN elementId(v) AS id, labels(v) AS labels, properties(v) AS props ORDER BY id",
            **params,
        )
        return [self._to_vertex(record) for record in records]

    def edges(self, vertex_id: Any, direction: Direction = Direction.OUT,
              label: Optional[str] = None) -> List[Edge]:
        relationship = f"e:{quote(label)}" if label else "e"
        if direction is Direction.OUT:
            pattern = f"(v)-[{relationship}]->(:{BASE_LABEL})"
        elif direction is Direction.IN:
            pattern = f"(v)<-[{relationship}]-(:{BASE_LABEL})"
        else:
            pattern = f"(v)-[{relationship}]-(:{BASE_LABEL})"
        records = self._run(
            f"""
            MATCH (v:{BASE_LABEL}) WHERE elementId(v) = $id
            MATCH {pattern}
            RETURN DISTINCT elementId(e) AS id, type(e) AS label,
                   elementId(startNode(e)) AS out_id, elementId(endNode(e)) AS in_id,
                   properties(e) AS props
            ORDER BY id
            """,
            id=vertex_id,
        )
        return [self._to_edge(record) for record in records]

    def count_vertices(self) -> int:
        return self._run(f"MATCH (v:{BASE_LABEL}) RETURN count(v) AS n")[0]["n"]

    def count_edges(self) -> int:
        return self._run(f"MATCH (:{BASE_LABEL})-[e]->(:{BASE_LABEL}) RETURN count(e) AS n")[0]["n"]

    def label_counts(self) -> Dict[str, Dict[str, int]]:
        vertex_rows = self._run(
            f"MATCH (v:{BASE_LABEL}) "
            f"RETURN [l IN labels(v) WHERE l <> '{BASE_LABEL}'][0] AS label, count(*) AS n"
        )
        edge_rows = self._run(
            f"MATCH (:{BASE_LABEL})-[e]->(:{BASE_LABEL}) RETURN type(e) AS label, count(*) AS n"
        )
        return {
            "vertices": {row["label"] or BASE_LABEL: row["n"] for row in vertex_rows},
            "edges": {row["label"]: row["n"] for row in edge_rows},
        }


class Neo4jGraphEngine(GraphEngine):
    """Engine for `storage.backend: neo4j`."""

    def __init__(self, config: StoreConfig):
        super().__init__(config)
        self._driver = None
        self._features = StoreFeatures(
            supports_transactions=config.transactions,
            supports_geoshape=config.geoshape,
        )

    @property
    def features(self) -> StoreFeatures:
        return self._features

    @property
    def is_open(self) -> bool:
        return self._driver is not None

    def _new_driver(self):
        try:
            driver = GraphDatabase.driver(self.config.uri, auth=(self.config.username, self.config.password))
        except (ConfigurationError, ValueError) as e:
            raise StoreConnectionError(f"Invalid Neo4j configuration: {e}") from e
        try:
            driver.verify_connectivity()
        except (ServiceUnavailable, AuthError, Neo4jError, DriverError, OSError) as e:
            driver.close()
            raise StoreConnectionError(f"Cannot connect to Neo4j at {self.config.uri}: {e}") from e
        return driver

    def connect(self) -> None:
        logger.info(f"Connecting to Neo4j at {self.config.uri}...")
        self._driver = self._new_driver()
        logger.info("✓ Neo4j connection established")

    def close(self) -> None:
        if self._driver is None:
            return
        driver, self._driver = self._driver, None
        driver.close()

    def drop(self) -> None:
        driver = self._driver or self._new_driver()
        try:
            with driver.session(database=self.config.database) as session:
                session.run("MATCH (n) DETACH DELETE n").consume()
                for record in list(session.run("SHOW CONSTRAINTS YIELD name RETURN name")):
                    session.run(f"DROP CONSTRAINT {quote(record['name'])} IF EXISTS").consume()
                indexes = list(session.run("SHOW INDEXES YIELD name, type WHERE type <> 'LOOKUP' RETURN name"))
                for record in indexes:
                    session.run(f"DROP INDEX {quote(record['name'])} IF EXISTS").consume()
        except (Neo4jError, DriverError) as e:
            raise translate_error(e, "drop") from e
        else:
            logger.info(f"Dropped all data, constraints and {len(indexes)} index(es) from {self.config.describe()}")
        finally:
            if driver is not self._driver:
                driver.close()

    def _require_driver(self):
        if self._driver is None:
            raise TransactionStateError("Engine is not connected")
        return self._driver

    def open_management(self) -> Neo4jManagement:
        return Neo4jManagement(self._require_driver(), self.config.database)

    def traversal(self) -> Neo4jTraversal:
        return Neo4jTraversal(self._require_driver(), self.config.database, self._features, self.config.auto_schema)
