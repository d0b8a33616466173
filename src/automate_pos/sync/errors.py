"""Exception types for the sync layer."""

from typing import Optional

# Reasons a remote failure is worth retrying
RATE_LIMITED = "rate_limited"
UNAVAILABLE = "unavailable"
TIMEOUT = "timeout"
TRANSPORT = "transport"

# Failures meaning the remote could not be reached at all
NETWORK_REASONS = frozenset({TIMEOUT, TRANSPORT})


class SyncError(Exception):
    """Base exception for sync operations."""


class RemoteError(SyncError):
    """The remote system of record did not accept a request."""

    def __init__(self, message: str, status: Optional[int] = None):
        super().__init__(message)
        self.status = status


class RetryableNetworkError(RemoteError):
    """Rate limit, unavailable, gateway timeout, or transport failure."""

    def __init__(self, message: str, reason: str = TRANSPORT,
                 status: Optional[int] = None):
        super().__init__(message, status)
        self.reason = reason

    @property
    def is_network(self) -> bool:
        return self.reason in NETWORK_REASONS


class FatalRemoteError(RemoteError):
    """The remote rejected the request; retrying will not help."""


class RetryExhaustedError(SyncError):
    """A retryable operation kept failing until the retry budget ran out."""

    def __init__(self, last_error: BaseException, attempts: int):
        super().__init__(
            f"Gave up after {attempts} attempts: {last_error}"
        )
        self.last_error = last_error
        self.attempts = attempts


class ConflictOnPull(SyncError):
    """Pulled remote state overwrote a record with an unsynced local change."""

    def __init__(self, collection: str, record_id: str):
        super().__init__(
            f"Remote {collection}/{record_id} replaced a record with "
            f"pending local changes"
        )
        self.collection = collection
        self.record_id = record_id
