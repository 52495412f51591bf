from __future__ import annotations

from .cache import RemoteContentCache
from .sources import ContentSource, HttpContentSource, InMemoryContentSource, NullContentSource

__all__ = [
    "ContentSource",
    "HttpContentSource",
    "InMemoryContentSource",
    "NullContentSource",
    "RemoteContentCache",
]
