"""
CRL catalog — read-side views over the published CRLs.

  list_crls   canonical CRLs under crl/ and dcrl/, served from the list and
              meta caches; status is computed per request
  get_crl     one stored CRL decoded from its body, with a window over its
              revoked entries

Only root-level CRL files are catalogued: by-keyid/ aliases and archive/
entries are reachable through get_crl but never listed. When both DER and
PEM forms of a CRL exist the DER key represents them.

Status thresholds: expired once nextUpdate has passed, stale once 80% of
the thisUpdate→nextUpdate window has elapsed, current otherwise. A CRL
without nextUpdate never expires.
"""

from __future__ import annotations

import hashlib
import itertools
import re
from collections.abc import Callable, Iterable
from datetime import UTC, datetime

import structlog
from asn1crypto import algos

from crl_publisher.adapters.decoder import decode_crl
from crl_publisher.cache import (
    CRL_PREFIX,
    DELTA_CRL_PREFIX,
    LIST_CACHE,
    META_CACHE,
    CachePolicy,
    cached_list_all,
    cached_summary,
)
from crl_publisher.domain.models import (
    CrlDetail,
    CrlKind,
    CrlListItem,
    CrlPage,
    CrlState,
    CrlStatus,
    ObjectInfo,
    ObjectSummary,
    RevocationPage,
    RevokedEntry,
    StorageInfo,
    StoredObject,
)
from crl_publisher.domain.ports import ObjectStore, ResponseCache
from crl_publisher.railway import ErrorCode, FailureDescription, Result

log = structlog.get_logger()

DEFAULT_PAGE_SIZE = 50
MAX_PAGE_SIZE = 100
DEFAULT_REVOCATIONS_PAGE = 10
STALE_FRACTION = 0.8

_PREFIXES = {CrlKind.FULL: CRL_PREFIX, CrlKind.DELTA: DELTA_CRL_PREFIX}
_CRL_FILE = re.compile(r"\.crl(\.pem)?$", re.IGNORECASE)
_PEM_SUFFIX = ".pem"


def _utcnow() -> datetime:
    return datetime.now(UTC)


def _parse_instant(value: str | None) -> datetime | None:
    if not value:
        return None
    try:
        instant = datetime.fromisoformat(value)
    except ValueError:
        return None
    return instant if instant.tzinfo else instant.replace(tzinfo=UTC)


def crl_status(
    this_update: datetime | None, next_update: datetime | None, now: datetime
) -> CrlStatus:
    iso = {
        "this_update": this_update.isoformat() if this_update else None,
        "next_update": next_update.isoformat() if next_update else None,
    }
    if next_update is None:
        return CrlStatus(CrlState.CURRENT, **iso)
    if now > next_update:
        return CrlStatus(
            CrlState.EXPIRED, expired_ago=int((now - next_update).total_seconds()), **iso
        )

    expires_in = int((next_update - now).total_seconds())
    state = CrlState.CURRENT
    if this_update is not None:
        validity = (next_update - this_update).total_seconds()
        elapsed = (now - this_update).total_seconds()
        if elapsed > validity * STALE_FRACTION:
            state = CrlState.STALE
    return CrlStatus(state, expires_in=expires_in, **iso)


def _kind_of(key: str) -> CrlKind:
    return CrlKind.DELTA if key.startswith(DELTA_CRL_PREFIX) else CrlKind.FULL


def _storage_info(
    key: str, size: int, uploaded_at: datetime | None, etag: str | None = None
) -> StorageInfo:
    return StorageInfo(
        filename=key.split("/", 1)[1],
        format="pem" if key.lower().endswith(_PEM_SUFFIX) else "der",
        size=size,
        uploaded_at=uploaded_at,
        etag=etag,
    )


def published_crls(infos: Iterable[ObjectInfo]) -> list[ObjectInfo]:
    """Root-level CRL files, one per CRL (DER over PEM), sorted by key."""
    chosen: dict[str, ObjectInfo] = {}
    for info in infos:
        _, _, name = info.key.partition("/")
        if "/" in name or not _CRL_FILE.search(name):
            continue
        base = info.key.removesuffix(_PEM_SUFFIX)
        current = chosen.get(base)
        if current is None or current.key.endswith(_PEM_SUFFIX):
            chosen[base] = info
    return [chosen[base] for base in sorted(chosen)]


# ─────────────────────── Listing ───────────────────────


def _list_item(info: ObjectInfo, summary: ObjectSummary, now: datetime) -> CrlListItem:
    status = crl_status(
        _parse_instant(summary.this_update), _parse_instant(summary.next_update), now
    )
    return CrlListItem(
        id=info.key,
        crl_type=_kind_of(info.key),
        storage=_storage_info(info.key, info.size, info.uploaded_at),
        summary=summary,
        status=status,
    )


def list_crls(
    store: ObjectStore,
    cache: ResponseCache,
    crl_type: CrlKind | None = None,
    state: CrlState | None = None,
    issuer: str | None = None,
    limit: int = DEFAULT_PAGE_SIZE,
    cursor: str | None = None,
    list_policy: CachePolicy = LIST_CACHE,
    meta_policy: CachePolicy = META_CACHE,
    clock: Callable[[], datetime] = _utcnow,
) -> Result[CrlPage]:
    """
    One page of published CRLs, ordered by key.

    `cursor` is the id of the last item of the previous page. Filters run
    before paging, so a page is always full unless the catalog is exhausted.
    Objects whose summary cannot be derived are skipped; a store fault fails
    the whole listing.
    """
    limit = max(1, min(limit, MAX_PAGE_SIZE))
    prefixes = [prefix for kind, prefix in _PREFIXES.items() if crl_type in (None, kind)]
    listed = Result.all_of(
        [cached_list_all(store, cache, prefix, list_policy, clock) for prefix in prefixes]
    )

    def page(listings: list[list[ObjectInfo]]) -> Result[CrlPage]:
        now = clock()
        needle = issuer.lower() if issuer else None
        items: list[CrlListItem] = []
        for info in published_crls(itertools.chain.from_iterable(listings)):
            if cursor is not None and info.key <= cursor:
                continue
            summary = cached_summary(store, cache, info.key, meta_policy, clock)
            if summary.is_failure():
                error = summary.error()
                if error.code is ErrorCode.STORAGE_ERROR:
                    return Result.failure_from(error)
                log.warning("catalog.entry_skipped", key=info.key, error=error.message)
                continue
            item = _list_item(info, summary.value(), now)
            if state is not None and item.status.state is not state:
                continue
            if needle and needle not in (item.summary.issuer_common_name or "").lower():
                continue
            if len(items) == limit:
                return Result.success(CrlPage(tuple(items), next_cursor=items[-1].id))
            items.append(item)
        return Result.success(CrlPage(tuple(items)))

    return listed.flat_map(page)


# ─────────────────────── Detail ───────────────────────


def _fetch(store: ObjectStore, crl_id: str) -> Result[StoredObject]:
    key = crl_id.lstrip("/")
    if key.startswith((CRL_PREFIX, DELTA_CRL_PREFIX)):
        return store.get(key)

    def try_delta(err: FailureDescription) -> Result[StoredObject]:
        if err.code is ErrorCode.NOT_FOUND:
            return store.get(f"{DELTA_CRL_PREFIX}{key}")
        return Result.failure_from(err)

    return store.get(f"{CRL_PREFIX}{key}").recover_with(try_delta)


def _revocations(revoked: tuple[RevokedEntry, ...], limit: int, offset: int) -> RevocationPage:
    limit = max(1, min(limit, MAX_PAGE_SIZE))
    offset = max(0, offset)
    window = revoked[offset : offset + limit]
    end = offset + len(window)
    return RevocationPage(
        count=len(revoked),
        items=tuple(window),
        next_cursor=end if end < len(revoked) else None,
    )


def get_crl(
    store: ObjectStore,
    crl_id: str,
    revocations_limit: int = DEFAULT_REVOCATIONS_PAGE,
    revocations_cursor: int = 0,
    clock: Callable[[], datetime] = _utcnow,
) -> Result[CrlDetail]:
    """
    Decode one stored CRL for display.

    `crl_id` is a key under crl/ or dcrl/, or a bare filename tried under
    crl/ first and dcrl/ second. Missing objects are NOT_FOUND; bodies that
    no longer decode fail with the decoder's own code.
    """

    def detail(stored: StoredObject) -> Result[CrlDetail]:
        pem_encoded = stored.key.lower().endswith(_PEM_SUFFIX)
        return decode_crl(stored.body, pem_encoded=pem_encoded).map(
            lambda crl: CrlDetail(
                id=stored.key.removesuffix(_PEM_SUFFIX),
                crl=crl,
                storage=_storage_info(stored.key, stored.size, stored.uploaded_at, stored.etag),
                status=crl_status(crl.this_update, crl.next_update, clock()),
                fingerprints={
                    "sha1": hashlib.sha1(crl.der).hexdigest(),
                    "sha256": hashlib.sha256(crl.der).hexdigest(),
                },
                signature_algorithm=algos.SignedDigestAlgorithmId.map(
                    crl.signature_algorithm_oid
                ),
                revocations=_revocations(crl.revoked, revocations_limit, revocations_cursor),
            )
        )

    return (
        _fetch(store, crl_id)
        .peek_failure(
            lambda err: log.info("catalog.crl_unavailable", id=crl_id, error=err.message)
        )
        .flat_map(detail)
    )
