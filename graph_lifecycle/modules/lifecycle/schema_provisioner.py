"""
Schema Provisioner: declares property keys, labels and composite indexes
exactly once per store.
"""

from typing import Optional

from graph_lifecycle.common.errors import SchemaConflictError, StoreConnectionError
from graph_lifecycle.common.logger import logger
from graph_lifecycle.db.engine import SchemaManagement
from graph_lifecycle.db.models import SchemaDefinition
from graph_lifecycle.db.session import StoreSession
from graph_lifecycle.modules.lifecycle.idempotency import AnyRelationTypeExists, IdempotencyCheck


class SchemaProvisioner:

    def __init__(self, session: StoreSession, schema: SchemaDefinition,
                 check: Optional[IdempotencyCheck] = None):
        self.session = session
        self.schema = schema
        self.check = check or AnyRelationTypeExists()

    def provision(self) -> bool:
        """
        Declare the schema inside one management transaction.

        Returns:
            True if the schema was created, False if it was already there

        Raises:
            SchemaConflictError: If the idempotency check or any declaration fails; nothing is committed
            StoreConnectionError: If the store connection is lost
        """
        management = None
        try:
            management = self.session.open_management()
            if self.check.already_applied(management):
                logger.info(f"Schema already provisioned ({self.check.name}), skipping")
                management.rollback()
                return False

            logger.info("creating schema")
            self._create_properties(management)
            self._create_vertex_labels(management)
            self._create_edge_labels(management)
            self._create_composite_indexes(management)
            management.commit()
        except (SchemaConflictError, StoreConnectionError):
            self._abandon(management)
            raise
        except Exception as e:
            self._abandon(management)
            raise SchemaConflictError(f"Schema provisioning failed: {e}") from e

        logger.info(f"✓ Created schema with {len(self.schema.elements())} element(s)")
        return True

    @staticmethod
    def _abandon(management: Optional[SchemaManagement]) -> None:
        if management is not None:
            management.rollback()

    def _create_properties(self, management: SchemaManagement) -> None:
        for key in self.schema.property_keys:
            logger.debug(f"    property key {key.name}: {key.data_type.value} ({key.cardinality.value})")
            management.make_property_key(key.name, key.data_type, key.cardinality)

    def _create_vertex_labels(self, management: SchemaManagement) -> None:
        for label in self.schema.vertex_labels:
            management.make_vertex_label(label.name)

    def _create_edge_labels(self, management: SchemaManagement) -> None:
        for label in self.schema.edge_labels:
            signature = []
            for key_name in label.signature:
                key = management.get_property_key(key_name)
                if key is None:
                    raise SchemaConflictError(
                        f"Edge label '{label.name}' signature refers to undeclared property key '{key_name}'"
                    )
                signature.append(key)
            management.make_edge_label(label.name, label.multiplicity, signature)

    def _create_composite_indexes(self, management: SchemaManagement) -> None:
        # A composite index only serves exact-match lookups
        for index in self.schema.composite_indexes:
            logger.debug(f"    composite index {index.name} on {index.element.value} {list(index.keys)}")
            management.build_composite_index(index.name, index.element, index.keys, index.label)
