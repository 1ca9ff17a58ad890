class SyncError(Exception):
    """Base class for per-account and per-run failures of the sync engine."""

    kind = "error"

    def __init__(self, message: str = "", *, handle: str | None = None):
        super().__init__(message)
        self.handle = handle

    def as_dict(self) -> dict:
        return {"kind": self.kind, "message": str(self)}


class InvalidAccount(SyncError):
    # Empty/malformed handle or a handle the remote does not know. Never retried.
    kind = "invalid_account"


class RemoteUnavailable(SyncError):
    # Timeouts, 5xx, rate limiting or malformed payloads. Next scheduled run retries.
    kind = "remote_unavailable"


class PersistenceFailure(SyncError):
    kind = "persistence_failure"


class MailFailure(SyncError):
    kind = "mail_failure"


class AlreadyRunning(SyncError):
    kind = "already_running"


class LeaseLost(SyncError):
    # The run's lease expired and was taken over; uncommitted accounts are left for the owner.
    kind = "lease_lost"
