"""
Error kinds raised by the store session, engines and lifecycle executors.
"""


class GraphLifecycleError(Exception):
    """Base class for every error raised by graph_lifecycle."""


class StoreConnectionError(GraphLifecycleError, ConnectionError):
    """The store is unreachable or its configuration is invalid."""


class SchemaConflictError(GraphLifecycleError):
    """A schema declaration clashes with the existing or pending schema."""


class WriteError(GraphLifecycleError):
    """A seed, update or delete failed and its transaction was rolled back."""


class TransactionStateError(GraphLifecycleError):
    """A transaction scope was opened while another one is still active."""
