"""Exception hierarchy for transit_sync."""


class TransitSyncError(Exception):
    """Base class for all transit_sync errors."""


class ConfigError(TransitSyncError):
    """Raised when the configuration does not validate."""


class StoreError(TransitSyncError):
    """Raised when the backend data store cannot complete an operation."""


class ReadError(StoreError):
    """Raised when a read from the backend fails."""


class WriteError(StoreError):
    """Raised when a write to the backend fails."""


class StoreResponseError(StoreError):
    """Exception raised when the backend answers with an error response."""

    def __init__(self, status: int, body: str):
        self.status = status
        self.body = body
        super().__init__(f"Store error {status}: {body[:200]}")
