"""
Issuer resolver — finds the CA certificate that issued a CRL.

Candidates are the `.crt` objects under `ca/`, enumerated through the cached
listing. Matching is exact and runs in two passes:

  1. CRL has an Authority Key Identifier → the candidate whose Subject Key
     Identifier has the same hex (case-insensitive)
  2. no key identifier match (or no AKI at all) → the candidate whose
     subject DN equals the CRL issuer DN, attribute by attribute

The DN pass keeps CRLs from CAs stored without a SKI resolvable. A twin CA
with the same DN but another key is returned by the DN pass; the signature
check downstream rejects it. There is no "closest match" and no
common-name-only comparison.
"""

from __future__ import annotations

import itertools
from collections.abc import Iterator

import structlog

from crl_publisher.adapters.decoder import decode_certificate
from crl_publisher.cache import CA_PREFIX, LIST_CACHE, CachePolicy, cached_list_all
from crl_publisher.domain.models import Crl, IssuerCandidate
from crl_publisher.domain.ports import ObjectStore, ResponseCache
from crl_publisher.railway import ErrorCode, Result

log = structlog.get_logger()

CERTIFICATE_SUFFIX = ".crt"


class IssuerResolver:
    """
    Resolve CRL issuers against the trust-anchor prefix.

    Each candidate is fetched and decoded lazily, at most once per
    resolve() call; the scan stops at the first match.
    """

    def __init__(
        self,
        store: ObjectStore,
        cache: ResponseCache,
        prefix: str = CA_PREFIX,
        list_policy: CachePolicy = LIST_CACHE,
    ) -> None:
        self._store = store
        self._cache = cache
        self._prefix = prefix
        self._list_policy = list_policy

    def resolve(self, crl: Crl) -> Result[IssuerCandidate]:
        listing = cached_list_all(self._store, self._cache, self._prefix, self._list_policy)
        return listing.flat_map(lambda infos: self._match(crl, [info.key for info in infos]))

    def _match(self, crl: Crl, keys: list[str]) -> Result[IssuerCandidate]:
        aki = crl.aki_hex
        seen: list[IssuerCandidate] = []
        candidates = self._candidates(keys)

        if aki is not None:
            for candidate in candidates:
                seen.append(candidate)
                ski = candidate.certificate.ski_hex
                if ski is not None and ski.lower() == aki.lower():
                    log.info("issuer.resolved", key=candidate.key, criterion="key_identifier")
                    return Result.success(candidate)

        # The AKI pass above drained the generator; `seen` replays it.
        for candidate in itertools.chain(seen, candidates):
            if candidate.certificate.subject == crl.issuer:
                log.info(
                    "issuer.resolved",
                    key=candidate.key,
                    criterion="subject",
                    aki_unmatched=aki,
                )
                return Result.success(candidate)

        criterion = f"subject {crl.issuer}"
        if aki is not None:
            criterion = f"key identifier {aki} or {criterion}"
        log.warning("issuer.not_found", criterion=criterion, candidates=len(keys))
        return Result.failure(
            ErrorCode.ISSUER_NOT_FOUND,
            f"Issuer certificate could not be resolved for this CRL ({criterion})",
        )

    def _candidates(self, keys: list[str]) -> Iterator[IssuerCandidate]:
        for key in keys:
            if not key.endswith(CERTIFICATE_SUFFIX):
                continue
            certificate = self._store.get(key).flat_map(
                lambda stored: decode_certificate(stored.body)
            )
            if certificate.is_failure():
                log.warning("issuer.candidate_skipped", key=key, error=certificate.error().message)
                continue
            yield IssuerCandidate(key=key, certificate=certificate.value())
