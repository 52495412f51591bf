from __future__ import annotations

TRANSIENT = "transient"
PERMANENT = "permanent"


class LocalFirstError(Exception):
    pass


class LocalIOError(LocalFirstError):
    """Local persistence failed; raised synchronously to the writer."""


class RemoteError(LocalFirstError):
    classification = TRANSIENT


class TransientRemoteError(RemoteError):
    """Network, timeout or server-side failure worth retrying."""

    classification = TRANSIENT


class PermanentRemoteError(RemoteError):
    """Validation or authorization failure; retrying will not help."""

    classification = PERMANENT


class RemoteConflictError(RemoteError):
    """The remote version moved past the expected version during a push."""

    classification = TRANSIENT

    def __init__(self, message: str = "remote version conflict", *, remote_version: int | None = None):
        super().__init__(message)
        self.remote_version = remote_version


class ConflictDetected(LocalFirstError):
    """Informational: local and remote both changed. Logged, never raised to callers."""

    def __init__(self, collection: str, record_id: str, winner: str):
        super().__init__(f"conflict on {collection}:{record_id} resolved in favor of {winner}")
        self.collection = collection
        self.record_id = record_id
        self.winner = winner
