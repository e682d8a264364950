"""
Tests for db/neo4j_engine.py

The Cypher helpers and the driver error handling (against a fake driver) are
tested directly. The integration tests drop and rebuild the target database,
so they only run when NEO4J_PASSWORD is set and GRAPH_LIFECYCLE_NEO4J_TESTS=1.

Run from project root: pytest tests/test_neo4j_engine.py -v
"""

import os

import pytest
from neo4j.exceptions import Neo4jError, ServiceUnavailable, SessionExpired
from neo4j.spatial import WGS84Point

from graph_lifecycle.common.config_validator import StoreConfig
from graph_lifecycle.common.errors import SchemaConflictError, StoreConnectionError, WriteError
from graph_lifecycle.db.engine import StoreFeatures
from graph_lifecycle.db.models import CompositeIndex, DataType, EdgeLabel, ElementKind, GeoPoint, eq
from graph_lifecycle.db.neo4j_engine import (
    Neo4jManagement,
    Neo4jTraversal,
    from_neo4j,
    index_statements,
    quote,
    to_neo4j,
)
from graph_lifecycle.db.schema import SchemaRegistry
from graph_lifecycle.db.session import StoreSession
from graph_lifecycle.modules.lifecycle.controller import LifecycleController
from graph_lifecycle.modules.lifecycle.crud_executor import CrudExecutor, DeleteResult
from graph_lifecycle.modules.lifecycle.gods_dataset import GODS_DATASET, gods_schema
from graph_lifecycle.modules.lifecycle.pacing import NoDelay
from graph_lifecycle.modules.lifecycle.query_executor import QueryExecutor
from graph_lifecycle.modules.lifecycle.schema_provisioner import SchemaProvisioner
from graph_lifecycle.modules.lifecycle.seed_loader import SeedLoader


class TestCypherHelpers:

    def test_quote(self):
        assert quote("name") == "`name`"
        assert quote("we`ird") == "`we``ird`"

    def test_geo_point_conversion(self):
        point = to_neo4j(GeoPoint(38.1, 23.7))

        assert isinstance(point, WGS84Point)
        assert point.longitude == 23.7
        assert point.latitude == 38.1
        assert from_neo4j(point) == GeoPoint(38.1, 23.7)

    def test_plain_values_pass_through(self):
        assert to_neo4j("jupiter") == "jupiter"
        assert to_neo4j((1.0, 2.0)) == [1.0, 2.0]
        assert from_neo4j([1, 2]) == [1, 2]

    def test_vertex_index_statement(self):
        index = CompositeIndex("nameIndex", ElementKind.VERTEX, ("name",))

        assert index_statements(index, SchemaRegistry()) == [(
            "nameIndex",
            "CREATE INDEX `nameIndex` IF NOT EXISTS FOR (v:`Vertex`) ON (v.`name`)",
        )]

    def test_edge_index_per_label(self):
        registry = SchemaRegistry([EdgeLabel("lives"), EdgeLabel("battled")])
        index = CompositeIndex("timeIndex", ElementKind.EDGE, ("time",))

        names = [name for name, _ in index_statements(index, registry)]

        assert names == ["timeIndex_battled", "timeIndex_lives"]

    def test_unreachable_server(self):
        config = StoreConfig(backend="neo4j", uri="bolt://127.0.0.1:1", password="x")

        with pytest.raises(StoreConnectionError):
            StoreSession.open(config)


class FakeResult(list):

    def consume(self):
        return None


class FakeSession:
    """Stands in for a driver session and its transaction; records every statement."""

    def __init__(self, fail_on=None, error=None):
        self.statements = []
        self.fail_on = fail_on
        self.error = error
        self.rollback_error = None
        self.closed = False

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()

    def run(self, query, parameters=None, **kwargs):
        self.statements.append(query)
        if self.fail_on is not None and self.fail_on in query:
            raise self.error
        return FakeResult()

    def execute_write(self, work, *args):
        return work(self, *args)

    def begin_transaction(self):
        return self

    def commit(self):
        return None

    def rollback(self):
        if self.rollback_error is not None:
            raise self.rollback_error

    def close(self):
        self.closed = True


class FakeDriver:

    def __init__(self, session):
        self._session = session

    def session(self, database=None):
        return self._session


def name_index_management(session):
    management = Neo4jManagement(FakeDriver(session), "neo4j")
    management.make_property_key("name", DataType.STRING)
    management.build_composite_index("nameIndex", ElementKind.VERTEX, ["name"])
    return management


def metadata_written(session):
    return any("UNWIND $rows" in statement for statement in session.statements)


class TestDriverErrors:

    def test_lost_connection_during_index_creation(self):
        session = FakeSession(fail_on="CREATE INDEX", error=ServiceUnavailable("connection reset"))

        with pytest.raises(StoreConnectionError):
            name_index_management(session).commit()
        assert not metadata_written(session)

    def test_rejected_index_is_schema_conflict(self):
        session = FakeSession(fail_on="CREATE INDEX", error=Neo4jError("index rejected"))

        with pytest.raises(SchemaConflictError):
            name_index_management(session).commit()
        assert not metadata_written(session)

    def test_failed_metadata_write_drops_created_indexes(self):
        session = FakeSession(fail_on="UNWIND $rows", error=Neo4jError("write rejected"))

        with pytest.raises(SchemaConflictError):
            name_index_management(session).commit()
        assert session.statements[-1] == "DROP INDEX `nameIndex` IF EXISTS"

    def test_schema_commit_order(self):
        session = FakeSession()

        name_index_management(session).commit()

        creates = [statement for statement in session.statements if "CREATE" in statement]
        assert creates[0].startswith("CREATE INDEX `nameIndex`")
        assert "UNWIND $rows" in creates[1]

    def test_failed_schema_read(self):
        session = FakeSession(fail_on="MATCH (s:_Schema)", error=Neo4jError("schema read rejected"))

        with pytest.raises(SchemaConflictError):
            Neo4jManagement(FakeDriver(session), "neo4j")

    def test_failed_query_is_write_error(self):
        session = FakeSession(fail_on="RETURN count(v)", error=Neo4jError("query rejected"))
        g = Neo4jTraversal(FakeDriver(session), "neo4j", StoreFeatures())

        with pytest.raises(WriteError):
            g.count_vertices()

    def test_lost_connection_during_query(self):
        session = FakeSession(fail_on="RETURN count(v)", error=SessionExpired("session expired"))
        g = Neo4jTraversal(FakeDriver(session), "neo4j", StoreFeatures())

        with pytest.raises(StoreConnectionError):
            g.count_vertices()

    def test_close_releases_session_when_rollback_fails(self):
        session = FakeSession()
        session.rollback_error = ServiceUnavailable("connection reset")
        g = Neo4jTraversal(FakeDriver(session), "neo4j", StoreFeatures())
        assert g.vertices() == []

        with pytest.raises(StoreConnectionError):
            g.close()
        assert session.closed
        assert g.in_transaction is False


@pytest.fixture
def neo4j_config():
    """Neo4j connection from the environment; skips when not configured."""
    password = os.getenv("NEO4J_PASSWORD")
    if not password or os.getenv("GRAPH_LIFECYCLE_NEO4J_TESTS") != "1":
        pytest.skip("Neo4j integration tests need NEO4J_PASSWORD and GRAPH_LIFECYCLE_NEO4J_TESTS=1")
    return StoreConfig(
        backend="neo4j",
        uri=os.getenv("NEO4J_URI", "bolt://localhost:7687"),
        username=os.getenv("NEO4J_USERNAME", "neo4j"),
        password=password,
        database=os.getenv("NEO4J_DATABASE", "neo4j"),
        pacing_min_ms=0,
        pacing_max_ms=0,
    )


@pytest.fixture
def neo4j_session(neo4j_config):
    try:
        session = StoreSession.open(neo4j_config)
    except StoreConnectionError as e:
        pytest.skip(f"Neo4j not reachable: {e}")
    session.drop()
    yield session
    session.close()


class TestNeo4jIntegration:

    def test_provision_and_seed(self, neo4j_session):
        assert SchemaProvisioner(neo4j_session, gods_schema()).provision() is True
        assert SchemaProvisioner(neo4j_session, gods_schema()).provision() is False
        assert SeedLoader(neo4j_session, GODS_DATASET).load() is True
        assert SeedLoader(neo4j_session, GODS_DATASET).load() is False

        summary = QueryExecutor(neo4j_session).summary()
        assert (summary["vertex_count"], summary["edge_count"]) == (12, 17)

    def test_reads(self, neo4j_session):
        SchemaProvisioner(neo4j_session, gods_schema()).provision()
        SeedLoader(neo4j_session, GODS_DATASET).load()
        queries = QueryExecutor(neo4j_session)

        assert queries.lookup(eq("name", "jupiter"))["age"] == [5000]
        edge = queries.find_edge(eq("name", "hercules"), "battled", eq("name", "hydra"))
        assert edge["place"] == GeoPoint(37.7, 23.9)
        assert sorted(queries.range_values("age", 5000)) == [5000, 10000]
        assert sorted(queries.neighbor_names(eq("name", "jupiter"), "brother")) == ["neptune", "pluto"]

    def test_delete_cascade(self, neo4j_session):
        SchemaProvisioner(neo4j_session, gods_schema()).provision()
        SeedLoader(neo4j_session, GODS_DATASET).load()

        assert CrudExecutor(neo4j_session).delete(eq("name", "pluto")) == DeleteResult(vertices=1, edges=6)

        summary = QueryExecutor(neo4j_session).summary()
        assert (summary["vertex_count"], summary["edge_count"]) == (11, 11)

    def test_failed_write_rolls_back(self, neo4j_session):
        SchemaProvisioner(neo4j_session, gods_schema()).provision()

        with pytest.raises(WriteError):
            with neo4j_session.write_scope() as g:
                g.add_vertex("god", {"name": "minerva"})
                g.add_vertex("god", {"age": "ancient"})

        assert QueryExecutor(neo4j_session).exists(eq("name", "minerva")) is False

    def test_full_run(self, neo4j_session, neo4j_config):
        neo4j_session.close()

        report = LifecycleController(neo4j_config, pace=NoDelay(), cycles=1).run()

        assert report.completed is True
        assert report.errors == []
        assert report.deleted == DeleteResult(vertices=1, edges=6)
