"""Error taxonomy for the entity graph.

Resolution misses are not errors (callers get ``None`` / ``[]``). These
exceptions separate the cases callers may need to tell apart for retry
policy: missing records, a degraded store, and invalid input.
"""

from __future__ import annotations


class GraphError(Exception):
    """Base class for entity graph failures."""


class NotFound(GraphError):
    """A referenced record does not exist."""


class StorageUnavailable(GraphError):
    """The backing store failed to read or write."""


class ValidationFailed(GraphError):
    """An argument is outside its allowed values (programmer error)."""
