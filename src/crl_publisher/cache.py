"""
Response-cache coherency — cached reads and post-commit eviction.

The response cache holds request-keyed snapshots of two kinds:

  list entries  https://cache.internal/list?prefix=<p>   (recursive: every key under p)
  meta entries  https://cache.internal/meta/v1?key=<urlencoded object key>

The object store is always the source of truth. Every cache interaction
here is best effort: a cache that raises is logged and treated as a miss,
and an eviction that fails never fails the upload that triggered it.
"""

from __future__ import annotations

import json
from collections.abc import Callable
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass
from datetime import UTC, datetime
from urllib.parse import quote

import structlog

from crl_publisher.domain.models import (
    CachedResponse,
    IngestionReceipt,
    ObjectInfo,
    ObjectSummary,
)
from crl_publisher.domain.ports import ObjectStore, ResponseCache
from crl_publisher.railway import Result
from crl_publisher.summary import (
    SummaryProjector,
    build_summary_metadata,
    needs_refresh,
    read_summary,
)

log = structlog.get_logger()

CACHE_ORIGIN = "https://cache.internal"
CA_PREFIX = "ca/"
CRL_PREFIX = "crl/"
DELTA_CRL_PREFIX = "dcrl/"


@dataclass(frozen=True, slots=True)
class CachePolicy:
    max_age: int
    s_maxage: int
    stale_while_revalidate: int = 0

    def header(self) -> str:
        directives = [f"public, max-age={self.max_age}", f"s-maxage={self.s_maxage}"]
        if self.stale_while_revalidate:
            directives.append(f"stale-while-revalidate={self.stale_while_revalidate}")
        return ", ".join(directives)


LIST_CACHE = CachePolicy(max_age=60, s_maxage=300, stale_while_revalidate=86400)
META_CACHE = CachePolicy(max_age=60, s_maxage=300, stale_while_revalidate=86400)


def _utcnow() -> datetime:
    return datetime.now(UTC)


def list_cache_key(prefix: str) -> str:
    return f"{CACHE_ORIGIN}/list?prefix={prefix}"


def meta_cache_key(key: str) -> str:
    return f"{CACHE_ORIGIN}/meta/v1?key={quote(key, safe='')}"


# ─────────────────────── Best-effort cache access ───────────────────────


def _safe_match(cache: ResponseCache, key: str) -> CachedResponse | None:
    try:
        return cache.match(key)
    except Exception:
        log.warning("cache.match_failed", key=key, exc_info=True)
        return None


def _safe_put(cache: ResponseCache, key: str, response: CachedResponse) -> None:
    try:
        cache.put(key, response)
    except Exception:
        log.warning("cache.put_failed", key=key, exc_info=True)


def _snapshot(payload: dict[str, object], policy: CachePolicy, now: datetime) -> CachedResponse:
    return CachedResponse(
        body=json.dumps(payload).encode("utf-8"),
        headers={"Content-Type": "application/json", "Cache-Control": policy.header()},
        stored_at=now,
    )


# ─────────────────────── Listings ───────────────────────


def _decode_listing(response: CachedResponse) -> list[ObjectInfo] | None:
    try:
        payload = json.loads(response.body)
        return [
            ObjectInfo(
                key=item["key"],
                size=int(item["size"]),
                uploaded_at=(
                    datetime.fromisoformat(item["uploaded"]) if item.get("uploaded") else None
                ),
            )
            for item in payload["items"]
        ]
    except (ValueError, KeyError, TypeError):
        log.warning("cache.listing_corrupt", exc_info=True)
        return None


def _encode_listing(items: list[ObjectInfo], now: datetime) -> dict[str, object]:
    return {
        "items": [
            {
                "key": info.key,
                "size": info.size,
                "uploaded": info.uploaded_at.isoformat() if info.uploaded_at else None,
            }
            for info in items
        ],
        "cachedAt": now.isoformat(),
    }


def list_all(store: ObjectStore, prefix: str, page_size: int = 1000) -> Result[list[ObjectInfo]]:
    """Page through `store.list` until the listing is exhausted."""
    items: list[ObjectInfo] = []
    cursor: str | None = None
    while True:
        page = store.list(prefix, cursor=cursor, limit=page_size)
        if page.is_failure():
            return Result.failure_from(page.error())
        listing = page.value()
        items.extend(listing.objects)
        if not listing.truncated:
            return Result.success(items)
        cursor = listing.cursor


def cached_list_all(
    store: ObjectStore,
    cache: ResponseCache,
    prefix: str,
    policy: CachePolicy = LIST_CACHE,
    clock: Callable[[], datetime] = _utcnow,
) -> Result[list[ObjectInfo]]:
    """
    Every object under `prefix`, served from the list cache when fresh.

    A stale entry is only a fallback: the store is re-listed, and the stale
    snapshot is returned only if that re-listing fails.
    """
    key = list_cache_key(prefix)
    now = clock()
    hit = _safe_match(cache, key)
    cached = _decode_listing(hit) if hit is not None else None
    if cached is not None and hit.is_fresh(now):
        log.debug("cache.list_hit", prefix=prefix, count=len(cached))
        return Result.success(cached)

    listed = list_all(store, prefix)
    if listed.is_failure():
        if cached is not None:
            log.warning("cache.list_stale_served", prefix=prefix, error=listed.error().message)
            return Result.success(cached)
        return listed

    _safe_put(cache, key, _snapshot(_encode_listing(listed.value(), now), policy, now))
    return listed


# ─────────────────────── Summaries ───────────────────────


def _decode_summary(response: CachedResponse) -> ObjectSummary | None:
    try:
        return read_summary(json.loads(response.body))
    except (ValueError, TypeError, AttributeError):
        log.warning("cache.summary_corrupt", exc_info=True)
        return None


def _load_summary(store: ObjectStore, key: str) -> Result[ObjectSummary]:
    def from_metadata(metadata: dict[str, str]) -> Result[ObjectSummary]:
        summary = None if needs_refresh(metadata) else read_summary(metadata)
        if summary is not None:
            return Result.success(summary)
        return SummaryProjector(store).ensure(key)

    return store.get(key).flat_map(lambda stored: from_metadata(stored.metadata))


def cached_summary(
    store: ObjectStore,
    cache: ResponseCache,
    key: str,
    policy: CachePolicy = META_CACHE,
    clock: Callable[[], datetime] = _utcnow,
) -> Result[ObjectSummary]:
    """Summary of one stored object through the meta cache; recomputed when stale or missing."""
    cache_key = meta_cache_key(key)
    now = clock()
    hit = _safe_match(cache, cache_key)
    cached = _decode_summary(hit) if hit is not None else None
    if cached is not None and hit.is_fresh(now):
        return Result.success(cached)

    loaded = _load_summary(store, key)
    if loaded.is_failure():
        if cached is not None:
            log.warning("cache.summary_stale_served", key=key, error=loaded.error().message)
            return Result.success(cached)
        return loaded

    _safe_put(cache, cache_key, _snapshot(build_summary_metadata(loaded.value()), policy, now))
    return loaded


# ─────────────────────── Eviction ───────────────────────


def eviction_keys(receipt: IngestionReceipt) -> list[str]:
    """Every cache key an accepted CRL can make stale."""
    lists = [list_cache_key(p) for p in (CRL_PREFIX, DELTA_CRL_PREFIX, CA_PREFIX)]
    return lists + [meta_cache_key(k) for k in receipt.written_keys]


class CacheCoherencyManager:
    """
    Evicts response-cache entries made stale by a committed CRL.

    Deletes fan out on a thread pool and settle independently: each failure
    is logged and dropped, and the caller only learns how many succeeded.
    """

    def __init__(self, cache: ResponseCache, max_workers: int = 6) -> None:
        self._cache = cache
        self._max_workers = max(1, max_workers)

    def invalidate_after_commit(self, receipt: IngestionReceipt) -> int:
        keys = eviction_keys(receipt)
        succeeded = 0
        with ThreadPoolExecutor(max_workers=min(self._max_workers, len(keys))) as pool:
            futures = {pool.submit(self._cache.delete, key): key for key in keys}
            for future in as_completed(futures):
                try:
                    future.result()
                    succeeded += 1
                except Exception:
                    log.warning("cache.evict_failed", key=futures[future], exc_info=True)

        log.info("cache.invalidated", crl=receipt.id, evicted=succeeded, attempted=len(keys))
        return succeeded
