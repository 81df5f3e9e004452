"""
Exception hierarchy for the synchronization core.
"""


class VarSyncError(Exception):
    """Base class for all synchronization errors."""
    pass


class InvalidKeyError(VarSyncError):
    """Raised when a name violates the key syntax under the batch policy."""

    def __init__(self, name: str):
        self.name = name
        super().__init__(
            f"Invalid key format: {name}. Only alphanumeric, underscore, and hyphen allowed"
        )


class StoreError(VarSyncError):
    """Unexpected fault from the underlying KV backend."""
    pass


class DeliveryError(VarSyncError):
    """A one-way message could not be handed to the transport."""
    pass


class ConfigurationError(VarSyncError):
    """Runtime configuration is invalid."""
    pass
