"""
Pytest configuration and fixtures for graph-lifecycle tests.

Everything runs against the in-memory engine; each test gets its own
uniquely named store so nothing leaks between tests.
"""

import uuid

import pytest

from graph_lifecycle.common.config_validator import StoreConfig
from graph_lifecycle.db.memory_engine import reset_stores
from graph_lifecycle.db.session import StoreSession
from graph_lifecycle.modules.lifecycle.gods_dataset import GODS_DATASET, gods_schema
from graph_lifecycle.modules.lifecycle.schema_provisioner import SchemaProvisioner
from graph_lifecycle.modules.lifecycle.seed_loader import SeedLoader


@pytest.fixture(autouse=True)
def clean_stores():
    """Forget all in-memory stores after every test."""
    yield
    reset_stores()


@pytest.fixture
def store_config():
    """In-memory store configuration with pacing disabled."""
    return StoreConfig(
        backend="inmemory",
        name=f"test-{uuid.uuid4().hex[:8]}",
        pacing_min_ms=0,
        pacing_max_ms=0,
    )


@pytest.fixture
def session(store_config):
    """Open a session for each test and close it afterwards."""
    session = StoreSession.open(store_config)
    yield session
    session.close()


@pytest.fixture
def provisioned_session(session):
    """Session whose store already has the gods schema."""
    SchemaProvisioner(session, gods_schema()).provision()
    return session


@pytest.fixture
def seeded_session(provisioned_session):
    """Session whose store has the gods schema and dataset."""
    SeedLoader(provisioned_session, GODS_DATASET).load()
    return provisioned_session


def graph_counts(session):
    """(vertex count, edge count) read in its own read scope."""
    with session.read_scope() as g:
        return g.count_vertices(), g.count_edges()


@pytest.fixture
def counts():
    """Helper returning (vertex count, edge count) of a session's store."""
    return graph_counts
