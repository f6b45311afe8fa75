"""
In-memory response cache — the bundled ResponseCache adapter.

Bounded LRU map of request keys to CachedResponse snapshots. Entries are
served while inside their fresh + stale-while-revalidate window and dropped
lazily once past it. Callers decide what to do with a stale hit; this class
only refuses to return expired ones.
"""

from __future__ import annotations

import threading
from collections import OrderedDict
from collections.abc import Callable
from dataclasses import replace
from datetime import UTC, datetime

import structlog

from crl_publisher.domain.models import CachedResponse

log = structlog.get_logger()


def _utcnow() -> datetime:
    return datetime.now(UTC)


class InMemoryResponseCache:
    """Thread-safe, size-bounded response cache honouring Cache-Control."""

    def __init__(
        self,
        max_entries: int = 1024,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        if max_entries < 1:
            raise ValueError("max_entries must be at least 1")
        self._entries: OrderedDict[str, CachedResponse] = OrderedDict()
        self._max_entries = max_entries
        self._clock = clock
        self._lock = threading.Lock()

    def match(self, key: str) -> CachedResponse | None:
        now = self._clock()
        with self._lock:
            response = self._entries.get(key)
            if response is None:
                return None
            if not response.is_servable(now):
                del self._entries[key]
                return None
            self._entries.move_to_end(key)
            return response

    def put(self, key: str, response: CachedResponse) -> None:
        if response.stored_at is None:
            response = replace(response, stored_at=self._clock())
        with self._lock:
            self._entries[key] = response
            self._entries.move_to_end(key)
            while len(self._entries) > self._max_entries:
                evicted, _ = self._entries.popitem(last=False)
                log.debug("response_cache.evicted_lru", key=evicted)

    def delete(self, key: str) -> bool:
        with self._lock:
            return self._entries.pop(key, None) is not None

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)
