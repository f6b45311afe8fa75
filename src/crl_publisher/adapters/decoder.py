"""
X.509 decoder adapter — PEM unwrapping + DER parsing of certificates and CRLs.

Adapter layer — turns untrusted bytes into domain models using:
  - a literal-marker PEM extractor (strict base64)
  - asn1crypto: DER parsing of CertificateList / Certificate structures
  - adapters.extensions: the fixed OID → variant decoder table

Pipeline:
  request body
    → PEM? extract_pem_block() → DER bytes           (failure: invalid_pem)
    → asn1crypto: CertificateList.load(strict=True)   (failure: invalid_der)
    → field extraction (names, times, numbers, entries, extensions)
    → Crl / Certificate (domain model)

Certificates and CRLs share every helper below; only the PEM label and the
top-level schema differ. All failures are captured at this boundary via
Result.from_computation so callers never see asn1crypto exceptions.
"""

from __future__ import annotations

import base64
import re
from datetime import UTC, datetime

import structlog
from asn1crypto import core, pem
from asn1crypto import crl as asn1_crl
from asn1crypto import x509 as asn1_x509

from crl_publisher.adapters.extensions import (
    AUTHORITY_KEY_IDENTIFIER,
    CRL_NUMBER,
    DELTA_CRL_INDICATOR,
    decode_extensions,
)
from crl_publisher.domain.extensions import (
    AuthorityKeyIdentifierValue,
    CrlNumberValue,
    CrlReasonValue,
    DeltaCrlIndicatorValue,
    Extension,
    ExtensionError,
    InvalidityDateValue,
)
from crl_publisher.domain.models import (
    Certificate,
    Crl,
    DistinguishedName,
    NameAttribute,
    RevokedEntry,
)
from crl_publisher.railway import ErrorCode, Result

log = structlog.get_logger()

CRL_PEM_LABEL = "X509 CRL"
CERTIFICATE_PEM_LABEL = "CERTIFICATE"

_WHITESPACE = re.compile(r"\s+")


class _RequiredExtensionError(ValueError):
    """A CRL extension needed downstream is present but malformed."""


# ─────────────────────── PEM ───────────────────────


def extract_pem_block(text: str | bytes, label: str) -> Result[bytes]:
    """
    Extract the DER payload of the first `label` PEM block in `text`.

    Only literal BEGIN/END markers for `label` are recognised; other blocks in
    the same text are ignored. The body is stripped of all whitespace and
    strictly base64-decoded.
    """
    if isinstance(text, bytes):
        text = text.decode("utf-8", errors="replace")

    begin = f"-----BEGIN {label}-----"
    end = f"-----END {label}-----"
    match = re.search(re.escape(begin) + r"(.*?)" + re.escape(end), text, re.DOTALL)
    if match is None:
        return Result.failure(
            ErrorCode.INVALID_PEM,
            f"Request body must contain a {begin} ... {end} block",
        )

    body = _WHITESPACE.sub("", match.group(1))
    return Result.from_computation(
        lambda: base64.b64decode(body, validate=True),
        ErrorCode.INVALID_PEM,
        f"{label} PEM block is not valid base64",
    ).ensure(
        lambda der: len(der) > 0,
        ErrorCode.INVALID_PEM,
        f"{label} PEM block is empty",
    )


def encode_pem(der: bytes, label: str = CRL_PEM_LABEL) -> str:
    """Armor DER bytes as 64-column PEM text."""
    return pem.armor(label, der).decode("ascii")


# ─────────────────────── Shared field helpers ───────────────────────


def _present(value: core.Asn1Value) -> bool:
    """False for an absent OPTIONAL field (asn1crypto represents those as Void)."""
    return not isinstance(value, core.Void)


def _instant(time_value: core.Asn1Value) -> datetime:
    """Normalise a UTCTime / GeneralizedTime (or a Time choice of either) to aware UTC."""
    native = time_value.native
    if not isinstance(native, datetime):
        raise ValueError(f"Unsupported time value: {native!r}")
    if native.tzinfo is None:
        return native.replace(tzinfo=UTC)
    return native.astimezone(UTC)


def _attribute_value(value: core.Asn1Value) -> str:
    native = value.native
    if isinstance(native, str):
        return native
    return value.dump().hex()


def _distinguished_name(name: asn1_x509.Name) -> DistinguishedName:
    """Keep every attribute of every RDN, in encoding order."""
    rdns = tuple(
        tuple(
            NameAttribute(
                oid=attribute["type"].dotted,
                name=str(attribute["type"].native),
                value=_attribute_value(attribute["value"]),
            )
            for attribute in rdn
        )
        for rdn in name.chosen
    )
    return DistinguishedName(rdns=rdns, der=name.dump())


def _extensions_of(value: core.Asn1Value) -> tuple[Extension, ...]:
    return decode_extensions(value) if _present(value) else ()


def _required_value[V](extensions: tuple[Extension, ...], oid: str, kind: type[V]) -> V | None:
    """
    Find a downstream-critical extension value.

    Absent → None. Present but malformed → the whole artifact is rejected,
    because freshness and issuer resolution must never run on a guess.
    """
    for ext in extensions:
        if ext.oid != oid:
            continue
        if isinstance(ext.value, ExtensionError):
            raise _RequiredExtensionError(ext.value.message)
        if isinstance(ext.value, kind):
            return ext.value
    return None


# ─────────────────────── CRL ───────────────────────


def _revoked_entry(entry: asn1_crl.RevokedCertificate) -> RevokedEntry:
    reason: str | None = None
    invalidity: datetime | None = None
    for ext in _extensions_of(entry["crl_entry_extensions"]):
        match ext.value:
            case CrlReasonValue(reason=code):
                reason = code
            case InvalidityDateValue(instant=instant):
                invalidity = instant.astimezone(UTC)
            case _:
                pass
    return RevokedEntry(
        serial_number=entry["user_certificate"].native,
        revocation_date=_instant(entry["revocation_date"]),
        reason=reason,
        invalidity_date=invalidity,
    )


def _build_crl(der: bytes) -> Crl:
    """Internal parse — may raise (caught by from_computation in decode_crl)."""
    parsed = asn1_crl.CertificateList.load(der, strict=True)
    tbs = parsed["tbs_cert_list"]

    extensions = _extensions_of(tbs["crl_extensions"])
    aki = _required_value(extensions, AUTHORITY_KEY_IDENTIFIER, AuthorityKeyIdentifierValue)
    number = _required_value(extensions, CRL_NUMBER, CrlNumberValue)
    delta = _required_value(extensions, DELTA_CRL_INDICATOR, DeltaCrlIndicatorValue)

    revoked_list = tbs["revoked_certificates"]
    revoked = (
        tuple(_revoked_entry(entry) for entry in revoked_list)
        if _present(revoked_list)
        else ()
    )

    next_update = tbs["next_update"]
    algorithm = parsed["signature_algorithm"]
    parameters = algorithm["parameters"]

    return Crl(
        der=der,
        issuer=_distinguished_name(tbs["issuer"]),
        this_update=_instant(tbs["this_update"]),
        next_update=_instant(next_update) if _present(next_update) else None,
        authority_key_identifier=aki.key_identifier if aki else None,
        crl_number=number.number if number else None,
        delta_base_crl_number=delta.base_crl_number if delta else None,
        revoked=revoked,
        extensions=extensions,
        signature_algorithm_oid=algorithm["algorithm"].dotted,
        signature_parameters=(
            parameters.dump()
            if _present(parameters) and not isinstance(parameters, core.Null)
            else None
        ),
        signature=parsed["signature"].native,
        signed_data=tbs.dump(),
    )


def decode_crl(data: bytes | str, *, pem_encoded: bool = False) -> Result[Crl]:
    """
    Decode a CRL from PEM text or raw DER bytes.

    Returns Result[Crl] on success, or a failure with
    INVALID_PEM (no/undecodable block) or INVALID_DER (structure).
    """
    if pem_encoded:
        der_result = extract_pem_block(data, CRL_PEM_LABEL)
    elif isinstance(data, str):
        der_result = Result.failure(ErrorCode.INVALID_DER, "DER input must be bytes")
    else:
        der_result = Result.success(data)

    return der_result.ensure(
        lambda der: len(der) > 0, ErrorCode.INVALID_DER, "CRL body is empty"
    ).flat_map(
        lambda der: Result.from_computation(
            lambda: _build_crl(der),
            ErrorCode.INVALID_DER,
            "Failed to parse CRL",
        )
    )


# ─────────────────────── Certificate ───────────────────────


def _build_certificate(der: bytes) -> Certificate:
    """Internal parse — may raise (caught by from_computation in decode_certificate)."""
    parsed = asn1_x509.Certificate.load(der, strict=True)
    tbs = parsed["tbs_certificate"]
    validity = tbs["validity"]
    subject = _distinguished_name(tbs["subject"])
    extensions = _extensions_of(tbs["extensions"])

    certificate = Certificate(
        der=der,
        subject=subject,
        issuer=_distinguished_name(tbs["issuer"]),
        serial_number=tbs["serial_number"].native,
        not_before=_instant(validity["not_before"]),
        not_after=_instant(validity["not_after"]),
        public_key_info=tbs["subject_public_key_info"].dump(),
        extensions=extensions,
    )
    if certificate.subject_key_identifier is None:
        log.warning("certificate.missing_ski", subject=str(subject))
    return certificate


def decode_certificate(data: bytes | str, *, pem_encoded: bool = False) -> Result[Certificate]:
    """Decode a certificate from PEM text or raw DER bytes."""
    if pem_encoded:
        der_result = extract_pem_block(data, CERTIFICATE_PEM_LABEL)
    elif isinstance(data, str):
        der_result = Result.failure(ErrorCode.INVALID_DER, "DER input must be bytes")
    else:
        der_result = Result.success(data)

    return der_result.flat_map(
        lambda der: Result.from_computation(
            lambda: _build_certificate(der),
            ErrorCode.INVALID_DER,
            "Failed to parse certificate",
        )
    )
