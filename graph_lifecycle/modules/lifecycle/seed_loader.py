"""
Seed Loader: creates one instance of a fixed dataset inside one transaction.
"""

from typing import Any, Dict, Optional

from graph_lifecycle.common.errors import StoreConnectionError, WriteError
from graph_lifecycle.common.logger import logger
from graph_lifecycle.db.models import Dataset, GeoPoint
from graph_lifecycle.db.session import StoreSession
from graph_lifecycle.modules.lifecycle.idempotency import IdempotencyCheck, MarkerVertexExists


class SeedLoader:

    def __init__(self, session: StoreSession, dataset: Dataset,
                 check: Optional[IdempotencyCheck] = None):
        self.session = session
        self.dataset = dataset
        self.check = check or MarkerVertexExists(dataset.marker, dataset.marker_label)

    def _encode(self, properties: Dict[str, Any]) -> Dict[str, Any]:
        """Replace geo points with their [lat, lon] encoding when the store has no geo type."""
        if self.session.features.supports_geoshape:
            return dict(properties)
        return {
            key: value.as_pair() if isinstance(value, GeoPoint) else value
            for key, value in properties.items()
        }

    def already_seeded(self) -> bool:
        with self.session.read_scope() as g:
            return self.check.already_applied(g)

    def load(self) -> bool:
        """
        Create every vertex, then every edge, and commit them together.

        Returns:
            True if the dataset was created, False if it was already present

        Raises:
            WriteError: If the marker check or any write fails; the whole dataset is rolled back
            StoreConnectionError: If the store connection is lost
        """
        try:
            seeded = self.already_seeded()
        except (WriteError, StoreConnectionError):
            raise
        except Exception as e:
            raise WriteError(f"Marker check for '{self.dataset.name}' failed: {e}") from e
        if seeded:
            logger.info(f"Dataset '{self.dataset.name}' already present ({self.check.name}), skipping")
            return False

        logger.info("creating elements")
        with self.session.write_scope(f"seed '{self.dataset.name}'") as g:
            ids: Dict[str, Any] = {}
            for spec in self.dataset.vertices:
                ids[spec.ref] = g.add_vertex(spec.label, self._encode(spec.properties))
            logger.debug(f"    Created {len(ids)} vertices")

            for spec in self.dataset.edges:
                g.add_edge(ids[spec.out_ref], ids[spec.in_ref], spec.label, self._encode(spec.properties))
            logger.debug(f"    Created {len(self.dataset.edges)} edges")

        logger.info(
            f"✓ Seeded '{self.dataset.name}': {len(self.dataset.vertices)} vertices, {len(self.dataset.edges)} edges"
        )
        return True
