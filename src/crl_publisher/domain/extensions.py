"""
Extension value variants — one frozen dataclass per known extension kind.

A decoded extension carries exactly one of these values. Consumers use
``match`` over the ExtensionValue union; adding a kind means adding a
variant here and a decoder entry in ``adapters.extensions._DECODERS``.

Two catch-all variants keep the list total:
  - UnsupportedExtension: the OID has no decoder (raw bytes still available)
  - ExtensionError: a decoder exists but the value was malformed
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime


@dataclass(frozen=True, slots=True)
class AuthorityKeyIdentifierValue:
    key_identifier: bytes | None
    authority_cert_serial: int | None = None


@dataclass(frozen=True, slots=True)
class SubjectKeyIdentifierValue:
    key_identifier: bytes


@dataclass(frozen=True, slots=True)
class CrlNumberValue:
    number: int


@dataclass(frozen=True, slots=True)
class DeltaCrlIndicatorValue:
    base_crl_number: int


@dataclass(frozen=True, slots=True)
class CrlReasonValue:
    reason: str


@dataclass(frozen=True, slots=True)
class InvalidityDateValue:
    instant: datetime


@dataclass(frozen=True, slots=True)
class BasicConstraintsValue:
    ca: bool
    path_len_constraint: int | None = None


@dataclass(frozen=True, slots=True)
class KeyUsageValue:
    enabled: tuple[str, ...]


@dataclass(frozen=True, slots=True)
class ExtendedKeyUsageValue:
    usages: tuple[str, ...]


@dataclass(frozen=True, slots=True)
class SubjectAltNameValue:
    """General names rendered as ``type:value`` strings (``dns:example.org``)."""

    names: tuple[str, ...]


@dataclass(frozen=True, slots=True)
class CrlDistributionPointsValue:
    uris: tuple[str, ...]


@dataclass(frozen=True, slots=True)
class IssuingDistributionPointValue:
    uris: tuple[str, ...]
    only_contains_user_certs: bool = False
    only_contains_ca_certs: bool = False


@dataclass(frozen=True, slots=True)
class AuthorityInfoAccessValue:
    ocsp: tuple[str, ...]
    ca_issuers: tuple[str, ...]


@dataclass(frozen=True, slots=True)
class CertificatePoliciesValue:
    policy_oids: tuple[str, ...]


@dataclass(frozen=True, slots=True)
class UnsupportedExtension:
    pass


@dataclass(frozen=True, slots=True)
class ExtensionError:
    message: str


type ExtensionValue = (
    AuthorityKeyIdentifierValue
    | SubjectKeyIdentifierValue
    | CrlNumberValue
    | DeltaCrlIndicatorValue
    | CrlReasonValue
    | InvalidityDateValue
    | BasicConstraintsValue
    | KeyUsageValue
    | ExtendedKeyUsageValue
    | SubjectAltNameValue
    | CrlDistributionPointsValue
    | IssuingDistributionPointValue
    | AuthorityInfoAccessValue
    | CertificatePoliciesValue
    | UnsupportedExtension
    | ExtensionError
)


@dataclass(frozen=True, slots=True)
class Extension:
    """One entry of a certificate / CRL / CRL-entry extension list."""

    oid: str
    name: str
    critical: bool
    raw: bytes
    value: ExtensionValue
