"""
Ports — Protocol-based interfaces for infrastructure adapters.

These define WHAT the ingestion core needs from its environment without
specifying HOW it's done. Following hexagonal architecture:

  Domain ← Ports (protocols) ← Adapters (implementations)

Two shared mutable resources exist, and both are injected:

  ObjectStore    → durable key/value + metadata store, the source of truth
  ResponseCache  → request-keyed snapshot cache, an accelerator only

The object store speaks Result because its failures are meaningful to the
pipeline (not_found, precondition_failed, storage_error). The cache raises
freely: every caller treats a cache failure as a miss.
"""

from __future__ import annotations

from typing import Protocol, runtime_checkable

from crl_publisher.domain.models import CachedResponse, ObjectListing, StoredObject
from crl_publisher.railway.result import Result


@runtime_checkable
class ObjectStore(Protocol):
    """
    Port: generic key/value store with custom metadata and entity tags.

    Semantics assumed by the core, and nothing more:
      - last-write-wins per key
      - prefix listing with an opaque continuation cursor
      - optimistic conditional writes keyed on the current entity tag
    """

    def get(self, key: str) -> Result[StoredObject]:
        """Read body, metadata and entity tag. Missing key → NOT_FOUND failure."""
        ...

    def put(
        self,
        key: str,
        body: bytes,
        metadata: dict[str, str],
        if_match: str | None = None,
    ) -> Result[StoredObject]:
        """
        Write (create or replace) an object.

        With `if_match`, the write only happens if the stored entity tag still
        equals it; otherwise the result is a PRECONDITION_FAILED failure.
        """
        ...

    def list(
        self,
        prefix: str,
        cursor: str | None = None,
        limit: int = 1000,
    ) -> Result[ObjectListing]:
        """One page of `{key, size, uploaded_at}` rows under `prefix`, ordered by key."""
        ...


@runtime_checkable
class ResponseCache(Protocol):
    """
    Port: request-keyed response cache.

    Freshness is encoded in the cached response's own Cache-Control header.
    """

    def match(self, key: str) -> CachedResponse | None: ...

    def put(self, key: str, response: CachedResponse) -> None: ...

    def delete(self, key: str) -> bool: ...
