"""
Graph lifecycle orchestrator.

Provisions a property-graph schema, seeds a fixed dataset and runs
read/update/delete cycles against it under explicit transactions.
"""

__version__ = "1.0.0"
