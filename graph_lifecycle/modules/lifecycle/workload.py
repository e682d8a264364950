"""
What a lifecycle run does: which schema to provision, which dataset to seed,
which reads to repeat and which vertices to update and delete.
"""

from dataclasses import dataclass
from typing import Optional

from graph_lifecycle.db.models import Criterion, Dataset, SchemaDefinition


@dataclass(frozen=True)
class ReadPlan:
    """The five standard reads run after every write stage."""
    lookup: Criterion
    edge_source: Criterion
    edge_label: str
    edge_target: Criterion
    range_key: str
    range_minimum: int
    exists: Criterion
    neighbors_of: Criterion
    neighbor_label: str
    display_key: str = "name"


@dataclass(frozen=True)
class Workload:
    schema: SchemaDefinition
    dataset: Dataset
    reads: ReadPlan
    update_target: Criterion
    update_key: str
    delete_target: Criterion
    update_label: Optional[str] = None
    delete_label: Optional[str] = None
