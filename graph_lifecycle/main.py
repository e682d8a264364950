#!/usr/bin/env python3
"""
Graph Lifecycle - provision, seed, mutate and read a property graph

Usage:
    graph-lifecycle <config.yaml>          run the full lifecycle
    graph-lifecycle <config.yaml> drop     drop everything in the store

The process exits 0 even when stages fail internally; only a store that
cannot be reached at startup makes it fail.
"""

import argparse
import os
import sys
from typing import List, Optional

from graph_lifecycle.common.config_validator import load_store_config
from graph_lifecycle.common.logger import logger
from graph_lifecycle.modules.lifecycle.controller import LifecycleController, run_drop

DEFAULT_CONFIG = os.getenv("GRAPH_LIFECYCLE_CONFIG", "conf/graph-inmemory.yaml")


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="graph-lifecycle",
        description="Provision schema, seed data and run read/update/delete cycles against a graph store.",
    )
    parser.add_argument("config", nargs="?", default=DEFAULT_CONFIG,
                        help=f"Path to the store configuration file (default: {DEFAULT_CONFIG})")
    parser.add_argument("mode", nargs="?", default=None,
                        help="Pass 'drop' to drop the store instead of running the lifecycle")
    return parser.parse_args(argv)


def main(argv: Optional[List[str]] = None) -> int:
    """Main execution function"""
    args = parse_args(argv)
    drop = args.mode is not None and args.mode.lower() == "drop"

    logger.info("Graph Lifecycle")
    logger.info("=" * 50)

    config = load_store_config(args.config)

    if drop:
        if run_drop(config):
            logger.info("✓ Store dropped")
        return 0

    if args.mode is not None:
        logger.warning(f"Ignoring unknown mode '{args.mode}'")

    report = LifecycleController(config).run()

    logger.info("=" * 50)
    logger.info("Summary:")
    logger.info(f"  Schema created: {report.schema_created}")
    logger.info(f"  Dataset seeded: {report.seeded}")
    logger.info(f"  Updates: {report.updates}")
    if report.deleted is not None:
        logger.info(f"  Deleted: {report.deleted.vertices} vertex(es), {report.deleted.edges} edge(s)")
    logger.info(f"  Errors: {len(report.errors)}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
