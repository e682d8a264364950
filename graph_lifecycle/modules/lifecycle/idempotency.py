"""
Checks that decide whether an initialization step already ran.

These are heuristics, not migration versioning: a concurrent run, or an
earlier run that failed half-way, can leave the store in a state a check
misreads. Callers take an IdempotencyCheck so a stricter check can be
swapped in without touching them.
"""

from abc import ABC, abstractmethod
from typing import Optional

from graph_lifecycle.common.errors import SchemaConflictError
from graph_lifecycle.db.engine import GraphTraversal, SchemaManagement
from graph_lifecycle.db.models import Criterion, SchemaDefinition


class IdempotencyCheck(ABC):
    name = "idempotency check"

    @abstractmethod
    def already_applied(self, handle) -> bool:
        """True if the step this check guards has already been applied."""


class AnyRelationTypeExists(IdempotencyCheck):
    """Schema counts as provisioned as soon as any property key or label exists."""

    name = "any relation type exists"

    def already_applied(self, handle: SchemaManagement) -> bool:
        return len(handle.relation_types()) > 0


class ExpectedSchemaPresent(IdempotencyCheck):
    """
    Stricter schema check: every expected element must already exist, or none.

    Raises SchemaConflictError when only part of the expected schema is there
    or an element exists with a different definition.
    """

    name = "expected schema present"

    def __init__(self, schema: SchemaDefinition):
        self.schema = schema

    def already_applied(self, handle: SchemaManagement) -> bool:
        existing = {(element.kind, element.name): element
                    for element in [*handle.relation_types(), *handle.indexes()]}
        expected = self.schema.elements()

        present = [element for element in expected if (element.kind, element.name) in existing]
        if not present:
            return False

        mismatched = [element.name for element in present if existing[(element.kind, element.name)] != element]
        missing = [element.name for element in expected if (element.kind, element.name) not in existing]
        if mismatched or missing:
            raise SchemaConflictError(
                f"Existing schema does not match: missing={missing} mismatched={mismatched}"
            )
        return True


class MarkerVertexExists(IdempotencyCheck):
    """Seed data counts as loaded when the marker vertex is found."""

    name = "marker vertex exists"

    def __init__(self, marker: Criterion, label: Optional[str] = None):
        self.marker = marker
        self.label = label

    def already_applied(self, handle: GraphTraversal) -> bool:
        return handle.has_next(self.marker, label=self.label)
