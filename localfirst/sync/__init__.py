from __future__ import annotations

from .adapters import HttpRemoteBackend, InMemoryRemoteBackend, NullRemoteBackend, RemoteBackend
from .conflicts import ConflictResolver
from .queue import SyncQueue
from .worker import RemoteSyncWorker

__all__ = [
    "ConflictResolver",
    "HttpRemoteBackend",
    "InMemoryRemoteBackend",
    "NullRemoteBackend",
    "RemoteBackend",
    "RemoteSyncWorker",
    "SyncQueue",
]
