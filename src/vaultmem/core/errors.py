"""
Error taxonomy.

- NotFound: an entity the operation needs is absent
- Transport: the external memory service is unreachable or answered badly
- ParseFailure: a payload or document could not be understood
- SyncAlreadyRunning: a manual sync was requested while one is in flight

Batch store operations turn these into per-item error entries; the sync
orchestrator turns them into SyncResult errors; only the tool layer lets
them reach a caller, as a protocol error.
"""


class VaultMemError(Exception):
    """Base class for all Vault Memory errors."""


class EntityNotFoundError(VaultMemError):
    """The named entity has no file in the storage root."""

    def __init__(self, name: str):
        super().__init__(f"Entity not found: {name}")
        self.name = name


class InvalidEntityNameError(VaultMemError):
    """The entity name cannot be used as a filename stem."""

    def __init__(self, name: str):
        super().__init__(f"Invalid entity name: {name!r}")
        self.name = name


class SyncError(VaultMemError):
    """Failure talking to, or understanding, the external memory service."""


class TransportError(SyncError):
    """The memory service was unreachable or returned an error."""


class ParseFailureError(SyncError):
    """A response or document could not be parsed."""


class SyncAlreadyRunningError(VaultMemError):
    """A sync run is already in flight."""

    def __init__(self):
        super().__init__("Sync already in progress")


class ToolError(VaultMemError):
    """A tool call failed; surfaced to the caller as a JSON-RPC error."""

    def __init__(self, message: str, code: int = -32603):
        super().__init__(message)
        self.code = code
