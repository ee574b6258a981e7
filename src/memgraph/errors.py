"""Error taxonomy shared by every layer of the memory graph.

Core operations raise these; the MCP tool layer turns them into
``{"success": False, "error": ..., "error_type": kind}`` responses.
"""


class MemoryGraphError(Exception):
    """Base class for all memory graph errors."""

    kind = "error"


class NotFoundError(MemoryGraphError):
    """Unknown domain or node id."""

    kind = "not_found"


class InvalidArgumentError(MemoryGraphError, ValueError):
    """Missing required parameter, out-of-range value, or malformed query."""

    kind = "invalid_argument"


class ConflictError(MemoryGraphError):
    """Entity with the given id already exists."""

    kind = "conflict"


class StorageError(MemoryGraphError):
    """I/O or connection failure in a storage backend."""

    kind = "storage_failure"


class IntegrityViolationError(MemoryGraphError):
    """Edge or reference pointing at a nonexistent entity."""

    kind = "integrity_violation"
