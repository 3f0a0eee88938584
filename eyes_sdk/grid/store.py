"""Shared resource state, injected into the pipeline instead of living in globals."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Any


@dataclass
class CachedResource:
    """A processed resource: its hash, its dependencies, and its upload state."""

    hash: dict[str, Any]
    dependencies: list[str] | None = None
    ready: asyncio.Future[None] | None = None


@dataclass
class ResourceStore:
    """Resource cache by id, in-flight uploads by hash, and hashes already uploaded.

    Mutated only between await points, so cooperating tasks on one event
    loop never observe a half-applied change.
    """

    cache: dict[str, CachedResource] = field(default_factory=dict)
    pending_uploads: dict[str, asyncio.Future[None]] = field(default_factory=dict)
    uploaded: set[str] = field(default_factory=set)

    def get(self, resource_id: str | None) -> CachedResource | None:
        if resource_id is None:
            return None
        return self.cache.get(resource_id)

    def put(self, resource_id: str | None, entry: CachedResource) -> None:
        if resource_id is not None:
            self.cache[resource_id] = entry

    def discard(self, resource_id: str | None, entry: CachedResource) -> None:
        if resource_id is not None and self.cache.get(resource_id) is entry:
            del self.cache[resource_id]

    def has_pending(self, hash_value: str) -> bool:
        return hash_value in self.pending_uploads
