"""
Extension decoder — fixed OID table mapping raw extnValue bytes to variants.

Adapter layer — uses asn1crypto to parse each known extension from its raw
DER value. The table is the single dispatch point: an OID either has an
entry (→ typed variant, or ExtensionError if the bytes are malformed) or it
does not (→ UnsupportedExtension). No reflection, no loosely-typed dicts.

The same table serves certificate extensions, CRL extensions and CRL entry
extensions; callers pick the variants they care about with ``match``.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable

import structlog
from asn1crypto import core
from asn1crypto import crl as asn1_crl
from asn1crypto import x509 as asn1_x509

from crl_publisher.domain.extensions import (
    AuthorityInfoAccessValue,
    AuthorityKeyIdentifierValue,
    BasicConstraintsValue,
    CertificatePoliciesValue,
    CrlDistributionPointsValue,
    CrlNumberValue,
    CrlReasonValue,
    DeltaCrlIndicatorValue,
    ExtendedKeyUsageValue,
    Extension,
    ExtensionError,
    ExtensionValue,
    InvalidityDateValue,
    IssuingDistributionPointValue,
    KeyUsageValue,
    SubjectAltNameValue,
    SubjectKeyIdentifierValue,
    UnsupportedExtension,
)
from crl_publisher.railway import ErrorCode, Result

log = structlog.get_logger()

AUTHORITY_KEY_IDENTIFIER = "2.5.29.35"
SUBJECT_KEY_IDENTIFIER = "2.5.29.14"
CRL_NUMBER = "2.5.29.20"
DELTA_CRL_INDICATOR = "2.5.29.27"
CRL_REASON = "2.5.29.21"
INVALIDITY_DATE = "2.5.29.24"
BASIC_CONSTRAINTS = "2.5.29.19"
KEY_USAGE = "2.5.29.15"
EXTENDED_KEY_USAGE = "2.5.29.37"
SUBJECT_ALT_NAME = "2.5.29.17"
CRL_DISTRIBUTION_POINTS = "2.5.29.31"
ISSUING_DISTRIBUTION_POINT = "2.5.29.28"
AUTHORITY_INFO_ACCESS = "1.3.6.1.5.5.7.1.1"
CERTIFICATE_POLICIES = "2.5.29.32"

_GENERAL_NAME_PREFIXES = {
    "dns_name": "dns",
    "rfc822_name": "email",
    "uniform_resource_identifier": "uri",
    "ip_address": "ip",
    "directory_name": "dirname",
    "registered_id": "rid",
}


# ─────────────────────── Value decoders ───────────────────────


def _render_general_name(name: asn1_x509.GeneralName) -> str:
    prefix = _GENERAL_NAME_PREFIXES.get(name.name, name.name)
    if name.name == "directory_name":
        return f"{prefix}:{name.chosen.human_friendly}"
    if name.name == "other_name":
        return f"{prefix}:{name.chosen['type_id'].dotted}"
    return f"{prefix}:{name.native}"


def _uris(names: Iterable[asn1_x509.GeneralName]) -> tuple[str, ...]:
    return tuple(
        name.native for name in names if name.name == "uniform_resource_identifier"
    )


def _decode_aki(raw: bytes) -> AuthorityKeyIdentifierValue:
    aki = asn1_x509.AuthorityKeyIdentifier.load(raw, strict=True)
    return AuthorityKeyIdentifierValue(
        key_identifier=aki["key_identifier"].native,
        authority_cert_serial=aki["authority_cert_serial_number"].native,
    )


def _decode_ski(raw: bytes) -> SubjectKeyIdentifierValue:
    return SubjectKeyIdentifierValue(core.OctetString.load(raw, strict=True).native)


def _decode_crl_number(raw: bytes) -> CrlNumberValue:
    return CrlNumberValue(core.Integer.load(raw, strict=True).native)


def _decode_delta_indicator(raw: bytes) -> DeltaCrlIndicatorValue:
    return DeltaCrlIndicatorValue(core.Integer.load(raw, strict=True).native)


def _decode_crl_reason(raw: bytes) -> CrlReasonValue:
    return CrlReasonValue(asn1_crl.CRLReason.load(raw, strict=True).native)


def _decode_invalidity_date(raw: bytes) -> InvalidityDateValue:
    return InvalidityDateValue(core.GeneralizedTime.load(raw, strict=True).native)


def _decode_basic_constraints(raw: bytes) -> BasicConstraintsValue:
    bc = asn1_x509.BasicConstraints.load(raw, strict=True)
    return BasicConstraintsValue(
        ca=bool(bc["ca"].native),
        path_len_constraint=bc["path_len_constraint"].native,
    )


def _decode_key_usage(raw: bytes) -> KeyUsageValue:
    return KeyUsageValue(tuple(sorted(asn1_x509.KeyUsage.load(raw, strict=True).native)))


def _decode_eku(raw: bytes) -> ExtendedKeyUsageValue:
    syntax = asn1_x509.ExtKeyUsageSyntax.load(raw, strict=True)
    return ExtendedKeyUsageValue(tuple(purpose.native for purpose in syntax))


def _decode_san(raw: bytes) -> SubjectAltNameValue:
    names = asn1_x509.GeneralNames.load(raw, strict=True)
    return SubjectAltNameValue(tuple(_render_general_name(name) for name in names))


def _decode_cdp(raw: bytes) -> CrlDistributionPointsValue:
    uris: list[str] = []
    for point in asn1_x509.CRLDistributionPoints.load(raw, strict=True):
        dp_name = point["distribution_point"]
        if dp_name.native is not None and dp_name.name == "full_name":
            uris.extend(_uris(dp_name.chosen))
    return CrlDistributionPointsValue(tuple(uris))


def _decode_idp(raw: bytes) -> IssuingDistributionPointValue:
    idp = asn1_crl.IssuingDistributionPoint.load(raw, strict=True)
    dp_name = idp["distribution_point"]
    has_full_name = dp_name.native is not None and dp_name.name == "full_name"
    uris = _uris(dp_name.chosen) if has_full_name else ()
    return IssuingDistributionPointValue(
        uris=uris,
        only_contains_user_certs=bool(idp["only_contains_user_certs"].native),
        only_contains_ca_certs=bool(idp["only_contains_ca_certs"].native),
    )


def _decode_aia(raw: bytes) -> AuthorityInfoAccessValue:
    ocsp: list[str] = []
    ca_issuers: list[str] = []
    for description in asn1_x509.AuthorityInfoAccessSyntax.load(raw, strict=True):
        location = _render_general_name(description["access_location"])
        method = description["access_method"].native
        if method == "ocsp":
            ocsp.append(location)
        elif method == "ca_issuers":
            ca_issuers.append(location)
    return AuthorityInfoAccessValue(ocsp=tuple(ocsp), ca_issuers=tuple(ca_issuers))


def _decode_policies(raw: bytes) -> CertificatePoliciesValue:
    policies = asn1_x509.CertificatePolicies.load(raw, strict=True)
    return CertificatePoliciesValue(
        tuple(policy["policy_identifier"].dotted for policy in policies)
    )


_DECODERS: dict[str, tuple[str, Callable[[bytes], ExtensionValue]]] = {
    AUTHORITY_KEY_IDENTIFIER: ("authority_key_identifier", _decode_aki),
    SUBJECT_KEY_IDENTIFIER: ("key_identifier", _decode_ski),
    CRL_NUMBER: ("crl_number", _decode_crl_number),
    DELTA_CRL_INDICATOR: ("delta_crl_indicator", _decode_delta_indicator),
    CRL_REASON: ("crl_reason", _decode_crl_reason),
    INVALIDITY_DATE: ("invalidity_date", _decode_invalidity_date),
    BASIC_CONSTRAINTS: ("basic_constraints", _decode_basic_constraints),
    KEY_USAGE: ("key_usage", _decode_key_usage),
    EXTENDED_KEY_USAGE: ("extended_key_usage", _decode_eku),
    SUBJECT_ALT_NAME: ("subject_alt_name", _decode_san),
    CRL_DISTRIBUTION_POINTS: ("crl_distribution_points", _decode_cdp),
    ISSUING_DISTRIBUTION_POINT: ("issuing_distribution_point", _decode_idp),
    AUTHORITY_INFO_ACCESS: ("authority_information_access", _decode_aia),
    CERTIFICATE_POLICIES: ("certificate_policies", _decode_policies),
}


# ─────────────────────── Public API ───────────────────────


def decode_extension_value(oid: str, raw: bytes) -> tuple[str, ExtensionValue]:
    """
    Decode one extension value through the OID table.

    Returns (name, variant). Never raises: unknown OIDs become
    UnsupportedExtension and malformed values become ExtensionError.
    """
    entry = _DECODERS.get(oid)
    if entry is None:
        return oid, UnsupportedExtension()

    name, decoder = entry
    value = Result.from_computation(
        lambda: decoder(raw),
        ErrorCode.INVALID_DER,
        f"Malformed {name} extension",
    ).either(
        on_success=lambda parsed: parsed,
        on_failure=lambda err: ExtensionError(err.message),
    )
    if isinstance(value, ExtensionError):
        log.warning("extension.malformed", oid=oid, extension=name, error=value.message)
    return name, value


def decode_extensions(raw_extensions: Iterable[asn1_x509.Extension]) -> tuple[Extension, ...]:
    """
    Convert an asn1crypto extension list into domain Extension entries.

    Accepts any asn1crypto Extensions sequence (certificate, TBSCertList
    or CRL entry): all share the extn_id / critical / extn_value layout.
    """
    extensions: list[Extension] = []
    for raw_ext in raw_extensions:
        oid = raw_ext["extn_id"].dotted
        raw = bytes(raw_ext["extn_value"].contents)
        name, value = decode_extension_value(oid, raw)
        extensions.append(
            Extension(
                oid=oid,
                name=name,
                critical=bool(raw_ext["critical"].native),
                raw=raw,
                value=value,
            )
        )
    return tuple(extensions)
