"""
Storage committer & archiver — where an accepted CRL lands, and what it replaces.

Placement is a pure function of (issuer certificate, CRL kind):

  crl/<friendly>.crl              canonical DER        (dcrl/ for delta CRLs)
  crl/<friendly>.crl.pem          same bytes, PEM armored
  crl/by-keyid/<aki-hex>.crl      DER alias by Authority Key Identifier
  crl/archive/<friendly>-<tag>.crl  superseded versions, tag = CRL Number or hash prefix

Two issuers with the same friendly name but different subject DNs (same CN,
another O) would share a slot. When the stored CRL at the default slot names
another issuer, the incoming CRL is placed under `<friendly>-<tag>` instead,
tag being the first 8 hex of the issuer SKI (or of its SPKI hash).

Commit order: archive the prior first, then write DER, PEM and alias. A
failure anywhere surfaces as the store's own failure and stops the sequence;
the core never retries.
"""

from __future__ import annotations

import hashlib
import re
from collections.abc import Callable
from datetime import UTC, datetime

import structlog

from crl_publisher.adapters.decoder import CRL_PEM_LABEL, decode_crl, encode_pem
from crl_publisher.domain.models import (
    Certificate,
    Crl,
    CrlKind,
    CrlPlacement,
    IngestionReceipt,
    PriorCrl,
    ReplacedCrl,
    StoredObject,
)
from crl_publisher.domain.ports import ObjectStore
from crl_publisher.railway import ErrorCode, FailureDescription, Result
from crl_publisher.summary import build_summary_metadata, summarize_crl

log = structlog.get_logger()

FULL_CRL_FOLDER = "crl"
DELTA_CRL_FOLDER = "dcrl"

_UNSAFE_NAME_CHARS = re.compile(r"[^\w.-]+", re.ASCII)


def _utcnow() -> datetime:
    return datetime.now(UTC)


def friendly_name(issuer: Certificate) -> str:
    """Storage-safe issuer name: CN, else SKI prefix, else subject hash prefix."""
    common_name = issuer.subject.common_name
    if common_name:
        cleaned = _UNSAFE_NAME_CHARS.sub("", common_name)
        if cleaned:
            return cleaned
    if issuer.ski_hex:
        return f"CA-{issuer.ski_hex[:16]}"
    return f"CA-{hashlib.sha256(issuer.subject.der).hexdigest()[:16]}"


def issuer_tag(issuer: Certificate) -> str:
    """Short key-derived suffix separating issuers that share a friendly name."""
    if issuer.ski_hex:
        return issuer.ski_hex[:8].lower()
    return hashlib.sha256(issuer.public_key_info).hexdigest()[:8]


def place_crl(crl: Crl, issuer: Certificate, disambiguate: bool = False) -> CrlPlacement:
    name = friendly_name(issuer)
    if disambiguate:
        name = f"{name}-{issuer_tag(issuer)}"
    folder = DELTA_CRL_FOLDER if crl.is_delta else FULL_CRL_FOLDER
    aki = crl.aki_hex
    return CrlPlacement(
        friendly_name=name,
        kind=crl.kind,
        folder=folder,
        der_key=f"{folder}/{name}.crl",
        pem_key=f"{folder}/{name}.crl.pem",
        by_key_id_key=f"{folder}/by-keyid/{aki}.crl" if aki else None,
    )


def same_issuer(incoming: Crl, stored: Crl) -> bool:
    """Issuer identity is the full subject DN, so a re-keyed CA keeps its slot."""
    return incoming.issuer == stored.issuer


def archive_tag(prior: PriorCrl) -> str:
    if prior.crl is not None and prior.crl.crl_number is not None:
        return str(prior.crl.crl_number)
    body = prior.stored.body if prior.stored is not None else b""
    return hashlib.sha256(body).hexdigest()[:16]


def crl_metadata(crl: Crl, issuer: Certificate) -> dict[str, str]:
    """Base metadata for every key an accepted CRL is written under."""
    metadata = {
        "issuerKeyId": crl.aki_hex or issuer.ski_hex or "",
        "isDelta": "true" if crl.is_delta else "false",
        "thisUpdate": crl.this_update.isoformat(),
        "revokedCount": str(len(crl.revoked)),
        "fingerprintSha1": hashlib.sha1(crl.der).hexdigest(),
        "fingerprintSha256": hashlib.sha256(crl.der).hexdigest(),
    }
    if issuer.subject.common_name:
        metadata["issuerCN"] = issuer.subject.common_name
    if crl.crl_number is not None:
        metadata["crlNumber"] = str(crl.crl_number)
    if crl.next_update is not None:
        metadata["nextUpdate"] = crl.next_update.isoformat()
    if crl.delta_base_crl_number is not None:
        metadata["baseCRLNumber"] = str(crl.delta_base_crl_number)
    return metadata


class CrlCommitter:
    """
    Reads the prior CRL at a placement and commits a newer one over it.

    There is no lock between locate() and commit(): two concurrent
    uploads for the same issuer both pass the freshness check and the last
    write wins.
    """

    def __init__(
        self,
        store: ObjectStore,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._store = store
        self._clock = clock

    def locate(self, crl: Crl, issuer: Certificate) -> Result[tuple[CrlPlacement, PriorCrl]]:
        """
        Pick the slot for `crl` and load what it currently holds.

        The default slot is used unless it holds a decodable CRL from an
        issuer with another subject DN; then the disambiguated slot is used.
        """
        placement = place_crl(crl, issuer)

        def settle(prior: PriorCrl) -> Result[tuple[CrlPlacement, PriorCrl]]:
            if prior.crl is None or same_issuer(crl, prior.crl):
                return Result.success((placement, prior))
            alternate = place_crl(crl, issuer, disambiguate=True)
            log.warning(
                "storage.name_collision",
                default_key=placement.der_key,
                stored_issuer=str(prior.crl.issuer),
                incoming_issuer=str(crl.issuer),
                placed_at=alternate.der_key,
            )
            return self.load_prior(alternate).map(lambda other: (alternate, other))

        return self.load_prior(placement).flat_map(settle)

    def load_prior(self, placement: CrlPlacement) -> Result[PriorCrl]:
        """The CRL at the canonical DER key, or an empty PriorCrl if none is stored."""
        return (
            self._store.get(placement.der_key)
            .map(self._decode_prior)
            .recover_with(_absent_if_not_found)
        )

    def commit(
        self,
        crl: Crl,
        issuer: Certificate,
        placement: CrlPlacement,
        prior: PriorCrl,
    ) -> Result[IngestionReceipt]:
        summary = summarize_crl(crl, placement.der_key)
        metadata = build_summary_metadata(summary, crl_metadata(crl, issuer))

        replaced: ReplacedCrl | None = None
        if prior.exists:
            archived = self._archive(placement, prior, issuer)
            if archived.is_failure():
                return Result.failure_from(archived.error())
            replaced = archived.value()

        pem_body = encode_pem(crl.der, CRL_PEM_LABEL).encode("ascii")
        writes = [(placement.der_key, crl.der), (placement.pem_key, pem_body)]
        if placement.by_key_id_key:
            writes.append((placement.by_key_id_key, crl.der))

        for key, body in writes:
            written = self._store.put(key, body, metadata)
            if written.is_failure():
                log.error("storage.write_failed", key=key, error=written.error().message)
                return Result.failure_from(written.error())

        log.info(
            "storage.committed",
            der_key=placement.der_key,
            kind=placement.kind.value,
            crl_number=crl.crl_number,
            replaced=replaced.archived_to if replaced else None,
        )
        return Result.success(self._receipt(crl, issuer, placement, replaced))

    def _decode_prior(self, stored: StoredObject) -> PriorCrl:
        decoded = decode_crl(stored.body)
        if decoded.is_failure():
            log.warning(
                "storage.prior_unparsable",
                key=stored.key,
                error=decoded.error().message,
            )
            return PriorCrl(stored=stored, crl=None)
        return PriorCrl(stored=stored, crl=decoded.value())

    def _archive(
        self, placement: CrlPlacement, prior: PriorCrl, issuer: Certificate
    ) -> Result[ReplacedCrl]:
        stored = prior.stored
        archive_key = placement.archive_key(archive_tag(prior))
        metadata = dict(stored.metadata)
        if issuer.subject.common_name:
            metadata["issuerCN"] = issuer.subject.common_name
        metadata["archivedAt"] = self._clock().isoformat()
        metadata["kind"] = "delta" if placement.kind is CrlKind.DELTA else "full"
        log.info("storage.archiving", from_key=stored.key, to_key=archive_key)
        return self._store.put(archive_key, stored.body, metadata).map(
            lambda _: ReplacedCrl(
                id=placement.der_key,
                crl_number=(
                    str(prior.crl.crl_number)
                    if prior.crl is not None and prior.crl.crl_number is not None
                    else None
                ),
                archived_to=archive_key,
            )
        )

    @staticmethod
    def _receipt(
        crl: Crl,
        issuer: Certificate,
        placement: CrlPlacement,
        replaced: ReplacedCrl | None,
    ) -> IngestionReceipt:
        return IngestionReceipt(
            id=placement.der_key,
            crl_type=crl.kind,
            crl_number=str(crl.crl_number) if crl.crl_number is not None else None,
            base_crl_number=(
                str(crl.delta_base_crl_number) if crl.delta_base_crl_number is not None else None
            ),
            this_update=crl.this_update,
            next_update=crl.next_update,
            issuer_common_name=issuer.subject.common_name,
            issuer_key_identifier=crl.aki_hex or issuer.ski_hex,
            der_key=placement.der_key,
            pem_key=placement.pem_key,
            by_key_id_key=placement.by_key_id_key,
            replaced=replaced,
        )


def _absent_if_not_found(err: FailureDescription) -> Result[PriorCrl]:
    if err.code is ErrorCode.NOT_FOUND:
        return Result.success(PriorCrl())
    return Result.failure_from(err)
