#!/usr/bin/env python3
"""
Print the declared schema and the per-label vertex/edge counts of a store.

Useful after a lifecycle run to check what the provisioner and the seed
loader left behind, or to confirm that a drop emptied the store.

Usage:
    python scripts/inspect_store.py conf/graph-neo4j.yaml
"""

import sys

from graph_lifecycle.db.session import StoreSession
from graph_lifecycle.modules.lifecycle.query_executor import QueryExecutor


def print_schema(session):
    management = session.open_management()
    try:
        relation_types = management.relation_types()
        indexes = management.indexes()
    finally:
        management.rollback()

    print("\n" + "=" * 80)
    print("SCHEMA")
    print("=" * 80)
    if not relation_types and not indexes:
        print("\nNo schema declared.")
        return

    print(f"\n{'Kind':<18} {'Name':<20} {'Details':<40}")
    print("-" * 80)
    for element in relation_types:
        details = {key: value for key, value in vars(element).items() if key != "name"}
        print(f"{element.kind:<18} {element.name:<20} {str(details)[:40]:<40}")
    for index in indexes:
        print(f"{index.kind:<18} {index.name:<20} {index.element.value} {list(index.keys)}")


def print_counts(session):
    summary = QueryExecutor(session).summary()

    print("\n" + "=" * 80)
    print("DATA")
    print("=" * 80)
    print(f"\nVertices: {summary['vertex_count']}   Edges: {summary['edge_count']}\n")

    print(f"{'Vertex label':<30} {'Count':<8}")
    print("-" * 40)
    for label, count in sorted(summary["vertices"].items()):
        print(f"{label:<30} {count:<8}")

    print(f"\n{'Edge label':<30} {'Count':<8}")
    print("-" * 40)
    for label, count in sorted(summary["edges"].items()):
        print(f"{label:<30} {count:<8}")


def main():
    config_path = sys.argv[1] if len(sys.argv) > 1 else "conf/graph-neo4j.yaml"
    session = StoreSession.open(config_path)
    try:
        print_schema(session)
        print_counts(session)
        print("\n✓ Inspection complete")
    finally:
        session.close()


if __name__ == "__main__":
    main()
