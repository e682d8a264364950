"""
CRUD Executor: updates and deletes existing vertices, one transaction per call.

Zero matches is a normal outcome for both operations, not an error.
"""

from dataclasses import dataclass
from typing import Any, Dict, Optional

from graph_lifecycle.common.logger import logger
from graph_lifecycle.db.models import Criterion
from graph_lifecycle.db.session import StoreSession


@dataclass
class DeleteResult:
    vertices: int = 0
    edges: int = 0


class CrudExecutor:

    def __init__(self, session: StoreSession):
        self.session = session

    def update(self, criterion: Criterion, assignments: Dict[str, Any],
               label: Optional[str] = None) -> int:
        """
        Assign property values to every vertex matching `criterion`.

        Returns:
            Number of vertices updated

        Raises:
            WriteError: If any assignment fails; none of them are committed
        """
        logger.info(f"updating elements where {criterion}")
        with self.session.write_scope(f"update where {criterion}") as g:
            matches = g.vertices(criterion, label=label)
            for vertex in matches:
                for key, value in assignments.items():
                    g.set_property(vertex.id, key, value)

        if not matches:
            logger.info(f"    No vertices match {criterion}, nothing to update")
        else:
            logger.info(f"    ✓ Updated {len(matches)} vertex(es): {sorted(assignments)}")
        return len(matches)

    def delete(self, criterion: Criterion, label: Optional[str] = None) -> DeleteResult:
        """
        Drop every vertex matching `criterion` together with its incident edges.

        Raises:
            WriteError: If any drop fails; nothing is deleted
        """
        logger.info(f"deleting elements where {criterion}")
        result = DeleteResult()
        with self.session.write_scope(f"delete where {criterion}") as g:
            for vertex in g.vertices(criterion, label=label):
                result.edges += g.drop_vertex(vertex.id)
                result.vertices += 1

        if result.vertices == 0:
            logger.info(f"    No vertices match {criterion}, nothing to delete")
        else:
            logger.info(f"    ✓ Deleted {result.vertices} vertex(es) and {result.edges} incident edge(s)")
        return result
