"""
Summary projector — denormalized display fields stored as object metadata.

Listing views need a display name, validity window and delta flag for every
certificate and CRL without re-parsing bodies on each request. This module
computes that projection, merges it into an object's metadata, and writes it
back with an entity-tag precondition so a concurrent writer always wins.

Projection version history:
  1 → subject/issuer CN, validity, thisUpdate/nextUpdate, delta flag
  2 → adds summaryRevokedCount
"""

from __future__ import annotations

import re
from collections.abc import Mapping
from datetime import UTC, datetime

import structlog

from crl_publisher.adapters.decoder import decode_certificate, decode_crl
from crl_publisher.domain.models import (
    Certificate,
    Crl,
    ObjectSummary,
    StoredObject,
    SummaryKind,
)
from crl_publisher.domain.ports import ObjectStore
from crl_publisher.railway import ErrorCode, FailureDescription, Result

log = structlog.get_logger()

SUMMARY_VERSION = 2

SUMMARY_KEYS = {
    "version": "summaryVersion",
    "kind": "summaryObjectType",
    "subject": "summarySubjectCN",
    "issuer": "summaryIssuerCN",
    "not_before": "summaryNotBefore",
    "not_after": "summaryNotAfter",
    "this_update": "summaryThisUpdate",
    "next_update": "summaryNextUpdate",
    "is_delta": "summaryIsDelta",
    "revoked_count": "summaryRevokedCount",
    "display_name": "summaryDisplayName",
}

# Pre-summary metadata names still found on older objects.
_LEGACY_KEYS = {
    "subject": ("subjectCommonName", "subjectCN"),
    "issuer": ("issuerCommonName", "issuerCN"),
    "not_before": ("notBefore",),
    "not_after": ("notAfter",),
    "this_update": ("thisUpdate",),
    "next_update": ("nextUpdate",),
    "is_delta": ("isDelta",),
    "revoked_count": ("revokedCount",),
}

_CERTIFICATE_SUFFIX = re.compile(r"\.(crt|cer)(\.pem)?$", re.IGNORECASE)
_CRL_SUFFIX = re.compile(r"\.crl(\.pem)?$", re.IGNORECASE)
_ARTIFACT_SUFFIX = re.compile(r"\.(crt|cer|crl)(\.pem)?$", re.IGNORECASE)
_PEM_SUFFIX = re.compile(r"\.pem$", re.IGNORECASE)


def detect_summary_kind(key: str) -> SummaryKind:
    if _CERTIFICATE_SUFFIX.search(key):
        return SummaryKind.CERTIFICATE
    if _CRL_SUFFIX.search(key):
        return SummaryKind.CRL
    return SummaryKind.OTHER


def fallback_display_name(key: str, kind: SummaryKind | None = None) -> str:
    """Derive a display name from the key alone (top-level folder and suffix dropped)."""
    kind = kind or detect_summary_kind(key)
    base = _ARTIFACT_SUFFIX.sub("", re.sub(r"^[^/]+/", "", key, count=1))
    if kind is SummaryKind.CERTIFICATE:
        return base
    return re.sub(r"[-_.]+", " ", base).strip() or base


def _iso(instant: datetime | None) -> str | None:
    return instant.astimezone(UTC).isoformat() if instant is not None else None


def summarize_certificate(certificate: Certificate, key: str) -> ObjectSummary:
    subject = certificate.subject.common_name
    issuer = certificate.issuer.common_name
    return ObjectSummary(
        kind=SummaryKind.CERTIFICATE,
        display_name=subject or issuer or fallback_display_name(key, SummaryKind.CERTIFICATE),
        subject_common_name=subject,
        issuer_common_name=issuer,
        not_before=_iso(certificate.not_before),
        not_after=_iso(certificate.not_after),
    )


def summarize_crl(crl: Crl, key: str) -> ObjectSummary:
    issuer = crl.issuer.common_name
    return ObjectSummary(
        kind=SummaryKind.CRL,
        display_name=issuer or fallback_display_name(key, SummaryKind.CRL),
        issuer_common_name=issuer,
        this_update=_iso(crl.this_update),
        next_update=_iso(crl.next_update),
        is_delta=crl.is_delta,
        revoked_count=len(crl.revoked),
    )


def summarize_object(key: str, body: bytes, kind: SummaryKind | None = None) -> Result[ObjectSummary]:
    """Decode a stored body (PEM or DER by key suffix) and project it."""
    kind = kind or detect_summary_kind(key)
    pem_encoded = bool(_PEM_SUFFIX.search(key))
    match kind:
        case SummaryKind.CERTIFICATE:
            return decode_certificate(body, pem_encoded=pem_encoded).map(
                lambda cert: summarize_certificate(cert, key)
            )
        case SummaryKind.CRL:
            return decode_crl(body, pem_encoded=pem_encoded).map(
                lambda crl: summarize_crl(crl, key)
            )
        case _:
            return Result.failure(ErrorCode.NOT_FOUND, f"No summary projection for {key}")


def build_summary_metadata(
    summary: ObjectSummary,
    base: Mapping[str, str | None] | None = None,
) -> dict[str, str]:
    """Merge `summary` into a copy of `base`; summary fields win, None values are skipped."""
    output = {k: v for k, v in (base or {}).items() if v is not None}
    output[SUMMARY_KEYS["version"]] = str(SUMMARY_VERSION)
    output[SUMMARY_KEYS["kind"]] = summary.kind.value

    optional = {
        "display_name": summary.display_name,
        "subject": summary.subject_common_name,
        "issuer": summary.issuer_common_name,
        "not_before": summary.not_before,
        "not_after": summary.not_after,
        "this_update": summary.this_update,
        "next_update": summary.next_update,
    }
    for field_name, value in optional.items():
        if value:
            output[SUMMARY_KEYS[field_name]] = value
    if summary.is_delta is not None:
        output[SUMMARY_KEYS["is_delta"]] = str(summary.is_delta).lower()
    if summary.revoked_count is not None:
        output[SUMMARY_KEYS["revoked_count"]] = str(summary.revoked_count)
    return output


def _lookup(metadata: Mapping[str, str], field_name: str) -> str | None:
    value = metadata.get(SUMMARY_KEYS[field_name])
    if value is not None:
        return value
    for legacy in _LEGACY_KEYS.get(field_name, ()):
        if metadata.get(legacy) is not None:
            return metadata[legacy]
    return None


def _parse_bool(value: str | None) -> bool | None:
    if value in ("true", "1"):
        return True
    if value in ("false", "0"):
        return False
    return None


def _parse_int(value: str | None) -> int | None:
    return int(value) if value is not None and value.isdigit() else None


def read_summary(metadata: Mapping[str, str] | None) -> ObjectSummary | None:
    """
    Rebuild an ObjectSummary from stored metadata, accepting legacy field names.

    Returns None when the metadata carries neither a summary kind nor any
    common name to display.
    """
    if not metadata:
        return None

    subject = _lookup(metadata, "subject")
    issuer = _lookup(metadata, "issuer")
    this_update = _lookup(metadata, "this_update")
    next_update = _lookup(metadata, "next_update")
    raw_kind = metadata.get(SUMMARY_KEYS["kind"])

    if raw_kind is None and not subject and not issuer:
        return None

    if raw_kind in {k.value for k in SummaryKind}:
        kind = SummaryKind(raw_kind)
    elif this_update or next_update:
        kind = SummaryKind.CRL
    elif subject:
        kind = SummaryKind.CERTIFICATE
    else:
        kind = SummaryKind.OTHER

    return ObjectSummary(
        kind=kind,
        display_name=metadata.get(SUMMARY_KEYS["display_name"]) or subject or issuer,
        subject_common_name=subject,
        issuer_common_name=issuer,
        not_before=_lookup(metadata, "not_before"),
        not_after=_lookup(metadata, "not_after"),
        this_update=this_update,
        next_update=next_update,
        is_delta=_parse_bool(_lookup(metadata, "is_delta")),
        revoked_count=_parse_int(_lookup(metadata, "revoked_count")),
    )


def needs_refresh(metadata: Mapping[str, str] | None) -> bool:
    """True when the stored projection is missing or from an older version."""
    if not metadata:
        return True
    return metadata.get(SUMMARY_KEYS["version"]) != str(SUMMARY_VERSION)


class SummaryProjector:
    """
    Recompute and persist summary metadata for stored objects.

    Writes are conditional on the entity tag that was read. Losing that race
    means another writer replaced the object, and its own metadata is at
    least as current as ours, so the computed summary is returned as-is.
    """

    def __init__(self, store: ObjectStore, page_size: int = 1000) -> None:
        self._store = store
        self._page_size = page_size

    def ensure(self, key: str) -> Result[ObjectSummary]:
        kind = detect_summary_kind(key)
        if kind is SummaryKind.OTHER:
            return Result.failure(ErrorCode.NOT_FOUND, f"No summary projection for {key}")
        return self._store.get(key).flat_map(lambda stored: self._project(stored, kind))

    def refresh_prefix(self, prefix: str) -> Result[int]:
        """
        Ensure every stale summary under `prefix`. Returns the number refreshed.

        Per-object failures are logged and skipped; only a listing failure
        fails the sweep.
        """
        refreshed = 0
        cursor: str | None = None
        while True:
            page = self._store.list(prefix, cursor=cursor, limit=self._page_size)
            if page.is_failure():
                return Result.failure_from(page.error())
            listing = page.value()
            for info in listing.objects:
                if self._refresh_one(info.key):
                    refreshed += 1
            if not listing.truncated:
                break
            cursor = listing.cursor

        log.info("summary.prefix_refreshed", prefix=prefix, refreshed=refreshed)
        return Result.success(refreshed)

    def _refresh_one(self, key: str) -> bool:
        kind = detect_summary_kind(key)
        if kind is SummaryKind.OTHER:
            return False
        stored = self._store.get(key)
        if stored.is_failure() or not needs_refresh(stored.value().metadata):
            return False
        return (
            self._project(stored.value(), kind)
            .peek_failure(
                lambda err: log.warning("summary.refresh_failed", key=key, error=err.message)
            )
            .is_success()
        )

    def _project(self, stored: StoredObject, kind: SummaryKind) -> Result[ObjectSummary]:
        return summarize_object(stored.key, stored.body, kind).flat_map(
            lambda summary: self._write_back(stored, summary)
        )

    def _write_back(self, stored: StoredObject, summary: ObjectSummary) -> Result[ObjectSummary]:
        metadata = build_summary_metadata(summary, stored.metadata)
        return (
            self._store.put(stored.key, stored.body, metadata, if_match=stored.etag)
            .map(lambda _: summary)
            .recover_with(lambda err: self._lost_race(stored.key, summary, err))
        )

    @staticmethod
    def _lost_race(
        key: str, summary: ObjectSummary, err: FailureDescription
    ) -> Result[ObjectSummary]:
        if err.code is ErrorCode.PRECONDITION_FAILED:
            log.debug("summary.write_skipped", key=key, reason="etag_changed")
            return Result.success(summary)
        return Result.failure_from(err)
