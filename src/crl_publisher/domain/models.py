"""
Domain models — immutable data structures for trust artifacts and storage.

These are pure value objects with no behavior beyond derived properties.
They represent the decoded certificate / CRL structures, the backing-store
records they are persisted as, and the receipt returned by an accepted
ingestion.

All models are frozen dataclasses (immutable). Arbitrary-precision integers
(CRL numbers, serial numbers) are Python ints; instants are timezone-aware
UTC datetimes.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum

from crl_publisher.domain.extensions import (
    AuthorityKeyIdentifierValue,
    Extension,
    SubjectKeyIdentifierValue,
)

COMMON_NAME_OID = "2.5.4.3"


# ─────────────────────── Names ───────────────────────


@dataclass(frozen=True, slots=True)
class NameAttribute:
    """One ``type=value`` pair inside a relative distinguished name."""

    oid: str
    name: str
    value: str


@dataclass(frozen=True, slots=True)
class DistinguishedName:
    """
    An X.501 Name as an ordered sequence of RDNs.

    Equality compares every attribute of every RDN, in order. The raw DER is
    kept for display and hashing but is excluded from equality so that two
    encodings of the same attributes compare equal.
    """

    rdns: tuple[tuple[NameAttribute, ...], ...]
    der: bytes = field(default=b"", repr=False, compare=False)

    @property
    def attributes(self) -> tuple[NameAttribute, ...]:
        return tuple(attr for rdn in self.rdns for attr in rdn)

    @property
    def common_name(self) -> str | None:
        for attr in self.attributes:
            if attr.oid == COMMON_NAME_OID:
                return attr.value
        return None

    def __str__(self) -> str:
        return ", ".join(
            "+".join(f"{attr.name}={attr.value}" for attr in rdn) for rdn in self.rdns
        )


# ─────────────────────── Certificates & CRLs ───────────────────────


@dataclass(frozen=True, slots=True)
class Certificate:
    """
    A CA certificate stored under the trust-anchor prefix.

    Read-only to the ingestion pipeline: it is resolved as the issuer of a
    CRL and its public key authenticates the CRL signature.
    """

    der: bytes = field(repr=False)
    subject: DistinguishedName
    issuer: DistinguishedName
    serial_number: int
    not_before: datetime
    not_after: datetime
    public_key_info: bytes = field(repr=False)
    extensions: tuple[Extension, ...] = ()

    @property
    def subject_key_identifier(self) -> bytes | None:
        for ext in self.extensions:
            if isinstance(ext.value, SubjectKeyIdentifierValue):
                return ext.value.key_identifier
        return None

    @property
    def authority_key_identifier(self) -> bytes | None:
        for ext in self.extensions:
            if isinstance(ext.value, AuthorityKeyIdentifierValue):
                return ext.value.key_identifier
        return None

    @property
    def ski_hex(self) -> str | None:
        ski = self.subject_key_identifier
        return ski.hex() if ski is not None else None


@dataclass(frozen=True, slots=True)
class RevokedEntry:
    serial_number: int
    revocation_date: datetime
    reason: str | None = None
    invalidity_date: datetime | None = None


class CrlKind(Enum):
    FULL = "full"
    DELTA = "delta"


@dataclass(frozen=True, slots=True)
class Crl:
    """
    A decoded Certificate Revocation List.

    `signed_data` is the DER of tbsCertList, i.e. exactly the bytes covered
    by `signature`.
    """

    der: bytes = field(repr=False)
    issuer: DistinguishedName
    this_update: datetime
    next_update: datetime | None
    authority_key_identifier: bytes | None = None
    crl_number: int | None = None
    delta_base_crl_number: int | None = None
    revoked: tuple[RevokedEntry, ...] = field(default=(), repr=False)
    extensions: tuple[Extension, ...] = ()
    signature_algorithm_oid: str = ""
    signature_parameters: bytes | None = field(default=None, repr=False)
    signature: bytes = field(default=b"", repr=False)
    signed_data: bytes = field(default=b"", repr=False)

    @property
    def is_delta(self) -> bool:
        return self.delta_base_crl_number is not None

    @property
    def kind(self) -> CrlKind:
        return CrlKind.DELTA if self.is_delta else CrlKind.FULL

    @property
    def aki_hex(self) -> str | None:
        aki = self.authority_key_identifier
        return aki.hex() if aki is not None else None


# ─────────────────────── Backing store ───────────────────────


@dataclass(frozen=True, slots=True)
class StoredObject:
    """An object read from (or just written to) the backing store."""

    key: str
    body: bytes = field(repr=False)
    etag: str
    uploaded_at: datetime
    metadata: dict[str, str] = field(default_factory=dict)

    @property
    def size(self) -> int:
        return len(self.body)


@dataclass(frozen=True, slots=True)
class ObjectInfo:
    """One row of a prefix listing."""

    key: str
    size: int
    uploaded_at: datetime | None = None


@dataclass(frozen=True, slots=True)
class ObjectListing:
    objects: tuple[ObjectInfo, ...] = ()
    cursor: str | None = None

    @property
    def truncated(self) -> bool:
        return self.cursor is not None


@dataclass(frozen=True, slots=True)
class CachedResponse:
    """
    A serialized snapshot held by the response cache.

    TTL is not stored separately: it is read from the Cache-Control header,
    exactly as a shared HTTP cache would. `s-maxage` wins over `max-age` for
    the fresh window; `stale-while-revalidate` extends it into a stale window.
    """

    body: bytes = field(repr=False)
    headers: dict[str, str] = field(default_factory=dict)
    stored_at: datetime | None = None

    @property
    def directives(self) -> dict[str, int]:
        parsed: dict[str, int] = {}
        for part in self.headers.get("Cache-Control", "").split(","):
            name, _, value = part.strip().partition("=")
            if value.strip().isdigit():
                parsed[name.strip().lower()] = int(value.strip())
        return parsed

    @property
    def fresh_seconds(self) -> int:
        directives = self.directives
        return directives.get("s-maxage", directives.get("max-age", 0))

    @property
    def stale_seconds(self) -> int:
        return self.directives.get("stale-while-revalidate", 0)

    def age(self, now: datetime) -> float:
        if self.stored_at is None:
            return 0.0
        return (now - self.stored_at).total_seconds()

    def is_fresh(self, now: datetime) -> bool:
        return self.age(now) < self.fresh_seconds

    def is_servable(self, now: datetime) -> bool:
        return self.age(now) < self.fresh_seconds + self.stale_seconds


# ─────────────────────── Ingestion results ───────────────────────


@dataclass(frozen=True, slots=True)
class IssuerCandidate:
    """A CA certificate read from the trust-anchor prefix."""

    key: str
    certificate: Certificate


@dataclass(frozen=True, slots=True)
class CrlPlacement:
    """Storage addresses derived for one (issuer, CRL kind) pair."""

    friendly_name: str
    kind: CrlKind
    folder: str
    der_key: str
    pem_key: str
    by_key_id_key: str | None = None

    def archive_key(self, tag: str) -> str:
        return f"{self.folder}/archive/{self.friendly_name}-{tag}.crl"

    @property
    def written_keys(self) -> tuple[str, ...]:
        keys = (self.der_key, self.pem_key)
        return keys + ((self.by_key_id_key,) if self.by_key_id_key else ())


@dataclass(frozen=True, slots=True)
class PriorCrl:
    """
    The CRL currently stored at a placement's canonical DER key.

    `stored` is None when nothing is stored there yet. `crl` is None when the
    stored bytes no longer decode; such a prior is still archived but cannot
    take part in the freshness comparison.
    """

    stored: StoredObject | None = None
    crl: Crl | None = None

    @property
    def exists(self) -> bool:
        return self.stored is not None


@dataclass(frozen=True, slots=True)
class ReplacedCrl:
    id: str
    crl_number: str | None
    archived_to: str


@dataclass(frozen=True, slots=True)
class IngestionReceipt:
    """What an accepted upload wrote, returned to the client."""

    id: str
    crl_type: CrlKind
    crl_number: str | None
    base_crl_number: str | None
    this_update: datetime
    next_update: datetime | None
    issuer_common_name: str | None
    issuer_key_identifier: str | None
    der_key: str
    pem_key: str
    by_key_id_key: str | None = None
    replaced: ReplacedCrl | None = None

    @property
    def written_keys(self) -> tuple[str, ...]:
        keys = (self.der_key, self.pem_key)
        return keys + ((self.by_key_id_key,) if self.by_key_id_key else ())

    def to_dict(self) -> dict[str, object]:
        return {
            "id": self.id,
            "type": "crl",
            "crlType": self.crl_type.value,
            "crlNumber": self.crl_number,
            "baseCrlNumber": self.base_crl_number,
            "thisUpdate": self.this_update.isoformat(),
            "nextUpdate": self.next_update.isoformat() if self.next_update else None,
            "issuer": {
                "commonName": self.issuer_common_name,
                "keyIdentifier": self.issuer_key_identifier,
            },
            "stored": {
                "der": self.der_key,
                "pem": self.pem_key,
                "byKeyId": self.by_key_id_key,
            },
            "replaced": (
                {
                    "id": self.replaced.id,
                    "crlNumber": self.replaced.crl_number,
                    "archivedTo": self.replaced.archived_to,
                }
                if self.replaced
                else None
            ),
        }


# ─────────────────────── Summaries ───────────────────────


class SummaryKind(Enum):
    CERTIFICATE = "certificate"
    CRL = "crl"
    OTHER = "other"


@dataclass(frozen=True, slots=True)
class ObjectSummary:
    """Denormalized display projection persisted as object metadata."""

    kind: SummaryKind
    display_name: str | None = None
    subject_common_name: str | None = None
    issuer_common_name: str | None = None
    not_before: str | None = None
    not_after: str | None = None
    this_update: str | None = None
    next_update: str | None = None
    is_delta: bool | None = None
    revoked_count: int | None = None

    def to_dict(self) -> dict[str, object]:
        return {
            "kind": self.kind.value,
            "displayName": self.display_name,
            "subjectCommonName": self.subject_common_name,
            "issuerCommonName": self.issuer_common_name,
            "notBefore": self.not_before,
            "notAfter": self.not_after,
            "thisUpdate": self.this_update,
            "nextUpdate": self.next_update,
            "isDelta": self.is_delta,
            "revokedCount": self.revoked_count,
        }


# ─────────────────────── Catalog views ───────────────────────


class CrlState(Enum):
    CURRENT = "current"
    STALE = "stale"
    EXPIRED = "expired"


@dataclass(frozen=True, slots=True)
class CrlStatus:
    """Validity of a CRL at one instant; durations are whole seconds."""

    state: CrlState
    this_update: str | None = None
    next_update: str | None = None
    expires_in: int | None = None
    expired_ago: int | None = None

    def to_dict(self) -> dict[str, object]:
        return {
            "state": self.state.value,
            "thisUpdate": self.this_update,
            "nextUpdate": self.next_update,
            "expiresIn": self.expires_in,
            "expiredAgo": self.expired_ago,
        }


@dataclass(frozen=True, slots=True)
class StorageInfo:
    filename: str
    format: str
    size: int
    uploaded_at: datetime | None
    etag: str | None = None

    def to_dict(self) -> dict[str, object]:
        body: dict[str, object] = {
            "filename": self.filename,
            "format": self.format,
            "size": self.size,
            "uploadedAt": self.uploaded_at.isoformat() if self.uploaded_at else None,
        }
        if self.etag is not None:
            body["etag"] = self.etag
        return body


@dataclass(frozen=True, slots=True)
class CrlListItem:
    """One published CRL as listed: cached summary plus computed status."""

    id: str
    crl_type: CrlKind
    storage: StorageInfo
    summary: ObjectSummary
    status: CrlStatus

    def to_dict(self) -> dict[str, object]:
        return {
            "id": self.id,
            "type": "crl",
            "crlType": self.crl_type.value,
            "storage": self.storage.to_dict(),
            "summary": self.summary.to_dict(),
            "status": self.status.to_dict(),
        }


@dataclass(frozen=True, slots=True)
class CrlPage:
    items: tuple[CrlListItem, ...] = ()
    next_cursor: str | None = None

    def to_dict(self) -> dict[str, object]:
        return {
            "items": [item.to_dict() for item in self.items],
            "pagination": {
                "pageSize": len(self.items),
                "hasMore": self.next_cursor is not None,
                "nextCursor": self.next_cursor,
            },
        }


@dataclass(frozen=True, slots=True)
class RevocationPage:
    """A window over a CRL's revoked entries; the cursor is an offset."""

    count: int
    items: tuple[RevokedEntry, ...]
    next_cursor: int | None = None

    def to_dict(self) -> dict[str, object]:
        return {
            "count": self.count,
            "items": [
                {
                    "serialNumber": format(entry.serial_number, "x"),
                    "revocationDate": entry.revocation_date.isoformat(),
                    "reason": entry.reason,
                    "invalidityDate": (
                        entry.invalidity_date.isoformat() if entry.invalidity_date else None
                    ),
                }
                for entry in self.items
            ],
            "hasMore": self.next_cursor is not None,
            "nextCursor": self.next_cursor,
        }


@dataclass(frozen=True, slots=True)
class CrlDetail:
    """Full view of one stored CRL, decoded from its body."""

    id: str
    crl: Crl
    storage: StorageInfo
    status: CrlStatus
    fingerprints: dict[str, str]
    signature_algorithm: str
    revocations: RevocationPage

    def to_dict(self) -> dict[str, object]:
        crl = self.crl
        return {
            "id": self.id,
            "type": "crl",
            "crlType": crl.kind.value,
            "storage": self.storage.to_dict(),
            "fingerprints": self.fingerprints,
            "status": self.status.to_dict(),
            "issuer": {
                "commonName": crl.issuer.common_name,
                "distinguishedName": str(crl.issuer),
                "keyIdentifier": crl.aki_hex,
            },
            "crlNumber": str(crl.crl_number) if crl.crl_number is not None else None,
            "baseCrlNumber": (
                str(crl.delta_base_crl_number) if crl.delta_base_crl_number is not None else None
            ),
            "thisUpdate": crl.this_update.isoformat(),
            "nextUpdate": crl.next_update.isoformat() if crl.next_update else None,
            "extensions": [
                {"oid": ext.oid, "name": ext.name, "critical": ext.critical}
                for ext in crl.extensions
            ],
            "signatureAlgorithm": {
                "oid": crl.signature_algorithm_oid,
                "name": self.signature_algorithm,
            },
            "revocations": self.revocations.to_dict(),
        }
