"""
Store Session: owns the connection to the graph store together with its
schema-management handle and its traversal handle.
"""

from contextlib import contextmanager
from pathlib import Path
from typing import Any, Dict, Iterator, Mapping, Optional, Type, Union

from graph_lifecycle.common.config_validator import StoreConfig, build_store_config, load_store_config
from graph_lifecycle.common.errors import StoreConnectionError, TransactionStateError, WriteError
from graph_lifecycle.common.logger import logger
from graph_lifecycle.db.engine import GraphEngine, GraphTraversal, SchemaManagement, StoreFeatures
from graph_lifecycle.db.memory_engine import InMemoryGraphEngine
from graph_lifecycle.db.neo4j_engine import Neo4jGraphEngine

ENGINES: Dict[str, Type[GraphEngine]] = {
    "inmemory": InMemoryGraphEngine,
    "neo4j": Neo4jGraphEngine,
}

ConfigSource = Union[StoreConfig, Mapping[str, Any], str, Path]


def resolve_config(config: ConfigSource) -> StoreConfig:
    """Accept a StoreConfig, a raw configuration mapping or a path to a config file."""
    if isinstance(config, StoreConfig):
        return config
    if isinstance(config, (str, Path)):
        return load_store_config(str(config))
    if isinstance(config, Mapping):
        return build_store_config(dict(config))
    raise StoreConnectionError(f"Unsupported configuration type: {type(config).__name__}")


def create_engine(config: StoreConfig) -> GraphEngine:
    engine_class = ENGINES.get(config.backend)
    if engine_class is None:
        raise StoreConnectionError(f"Unknown storage backend '{config.backend}'")
    return engine_class(config)


class StoreSession:
    """
    One connection to the graph store.

    Not meant for concurrent use: at most one read or write scope may be
    active at a time.
    """

    def __init__(self, config: StoreConfig, engine: Optional[GraphEngine] = None):
        self.config = config
        self._engine = engine if engine is not None else create_engine(config)
        self._traversal: Optional[GraphTraversal] = None
        self._scope_active = False

    @classmethod
    def open(cls, config: ConfigSource, engine: Optional[GraphEngine] = None) -> 'StoreSession':
        """
        Connect to the store described by `config`.

        Raises:
            StoreConnectionError: If the configuration is invalid or the store is unreachable
        """
        session = cls(resolve_config(config), engine)
        logger.info(f"opening graph ({session.config.describe()})")
        session._engine.connect()
        session._traversal = session._engine.traversal()
        return session

    @property
    def is_open(self) -> bool:
        return self._traversal is not None and self._engine.is_open

    @property
    def features(self) -> StoreFeatures:
        return self._engine.features

    @property
    def g(self) -> GraphTraversal:
        """The traversal handle."""
        if self._traversal is None:
            raise TransactionStateError("Session is not open")
        return self._traversal

    def open_management(self) -> SchemaManagement:
        """Begin a schema management transaction."""
        if not self.is_open:
            raise TransactionStateError("Session is not open")
        return self._engine.open_management()

    def _enter_scope(self) -> GraphTraversal:
        g = self.g
        if self._scope_active:
            raise TransactionStateError("Another transaction scope is already active on this session")
        self._scope_active = True
        return g

    @contextmanager
    def read_scope(self) -> Iterator[GraphTraversal]:
        """
        Read-only access to the graph.

        Reads open the implicit transaction too, so the scope always ends it
        with a rollback, whether the body finished or raised.
        """
        g = self._enter_scope()
        try:
            yield g
        finally:
            try:
                if self.features.supports_transactions:
                    g.rollback()
            finally:
                self._scope_active = False

    @contextmanager
    def write_scope(self, description: str = "write") -> Iterator[GraphTraversal]:
        """
        Transactional write access to the graph.

        Commits when the body finishes, rolls back when it raises. Failures
        surface as WriteError.
        """
        g = self._enter_scope()
        transactional = self.features.supports_transactions
        committed = False
        try:
            yield g
            if transactional:
                g.commit()
            committed = True
        except WriteError:
            raise
        except Exception as e:
            raise WriteError(f"{description} failed: {e}") from e
        finally:
            try:
                if transactional and not committed:
                    g.rollback()
                    logger.debug(f"Rolled back {description}")
            finally:
                self._scope_active = False

    def close(self) -> None:
        """Release the traversal handle, then the connection. Safe to call more than once."""
        if self._traversal is None and not self._engine.is_open:
            logger.info("graph already closed")
            return
        logger.info("closing graph")
        try:
            if self._traversal is not None:
                self._traversal.close()
        finally:
            self._traversal = None
            self._engine.close()

    def drop(self) -> None:
        """Destroy all data and schema in the store."""
        logger.info(f"dropping graph ({self.config.describe()})")
        self._engine.drop()
        if self._traversal is not None and self._engine.is_open:
            self._traversal.close()
            self._traversal = self._engine.traversal()

    def __enter__(self) -> 'StoreSession':
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()
