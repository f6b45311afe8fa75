"""
Pipeline — the CRL ingestion railway.

All I/O is injected via ports (ObjectStore, ResponseCache). Stages are
connected with flat_map, so a failing stage never runs its successors and a
rejected CRL can never reach the commit step:

  select_decoding(content_type)
    → decode_crl(body)                        invalid_pem / invalid_der
      → IssuerResolver.resolve(crl)           issuer_not_found
        → verify_crl_signature(crl, issuer)   invalid_signature
          → CrlCommitter.locate(crl, issuer)     slot + prior, name collisions split
            → ensure_fresh(crl, prior)        stale_crl
              → CrlCommitter.commit(...)      storage_error
                → invalidate_after_commit     (best effort, never fails)

Each stage returns Result[T]; this module only wires them.
"""

from __future__ import annotations

import structlog

from crl_publisher.adapters.decoder import decode_crl
from crl_publisher.adapters.signature import verify_crl_signature
from crl_publisher.cache import LIST_CACHE, CacheCoherencyManager, CachePolicy
from crl_publisher.domain.models import Crl, IngestionReceipt, IssuerCandidate
from crl_publisher.domain.ports import ObjectStore, ResponseCache
from crl_publisher.freshness import ensure_fresh
from crl_publisher.issuers import IssuerResolver
from crl_publisher.railway import ErrorCode, Result
from crl_publisher.storage import CrlCommitter

log = structlog.get_logger()

PEM_MEDIA_PREFIX = "text/"
DER_MEDIA_TYPES = frozenset({"application/pkix-crl", "application/octet-stream"})


def select_decoding(content_type: str | None) -> Result[bool]:
    """
    Map a request content type to a decode path. Success(True) means PEM.

    Parameters such as `; charset=utf-8` are ignored.
    """
    media_type = (content_type or "").split(";", 1)[0].strip().lower()
    if media_type.startswith(PEM_MEDIA_PREFIX):
        return Result.success(True)
    if media_type in DER_MEDIA_TYPES:
        return Result.success(False)
    return Result.failure(
        ErrorCode.UNSUPPORTED_MEDIA_TYPE,
        f"Unsupported content type {media_type or '(none)'}; "
        "send text/plain PEM or application/pkix-crl DER",
    )


def _verified_issuer(crl: Crl, resolver: IssuerResolver) -> Result[IssuerCandidate]:
    return resolver.resolve(crl).flat_map(
        lambda issuer: verify_crl_signature(crl, issuer.certificate).map(lambda _: issuer)
    )


def _commit_if_newer(
    crl: Crl,
    issuer: IssuerCandidate,
    committer: CrlCommitter,
) -> Result[IngestionReceipt]:
    return committer.locate(crl, issuer.certificate).flat_map(
        lambda located: ensure_fresh(crl, located[1]).flat_map(
            lambda fresh: committer.commit(fresh, issuer.certificate, *located)
        )
    )


def ingest_crl(
    body: bytes,
    content_type: str | None,
    store: ObjectStore,
    cache: ResponseCache,
    eviction_workers: int = 6,
    list_policy: CachePolicy = LIST_CACHE,
) -> Result[IngestionReceipt]:
    """
    Run one CRL upload through the full railway.

    Returns Result[IngestionReceipt] on acceptance, or the failure of the
    first stage that rejected the upload. Cache invalidation runs only after
    a successful commit and cannot turn a success into a failure.
    """
    resolver = IssuerResolver(store, cache, list_policy=list_policy)
    committer = CrlCommitter(store)
    coherency = CacheCoherencyManager(cache, max_workers=eviction_workers)

    return (
        select_decoding(content_type)
        .flat_map(lambda pem_encoded: decode_crl(body, pem_encoded=pem_encoded))
        .flat_map(
            lambda crl: _verified_issuer(crl, resolver).flat_map(
                lambda issuer: _commit_if_newer(crl, issuer, committer)
            )
        )
        .peek(coherency.invalidate_after_commit)
        .peek(
            lambda receipt: log.info(
                "pipeline.crl_accepted",
                id=receipt.id,
                crl_type=receipt.crl_type.value,
                crl_number=receipt.crl_number,
                replaced=receipt.replaced.archived_to if receipt.replaced else None,
            )
        )
        .peek_failure(
            lambda err: log.info(
                "pipeline.crl_rejected", error_code=err.code.value, message=err.message
            )
        )
    )
