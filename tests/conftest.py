"""
Shared test fixtures and helpers for the crl-publisher test suite.

Provides a throwaway PKI generated at runtime with cryptography builders:
CA certificates (EC P-256, RSA-2048, Ed25519, Ed448) and CRLs signed by them, with
full control over CRL Number, delta indicator, AKI, dates and revoked
entries. Nothing is read from disk.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta

import pytest
from asn1crypto import algos
from asn1crypto import crl as asn1_crl
from cryptography import x509
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric import ec, ed448, ed25519, padding, rsa
from cryptography.hazmat.primitives.serialization import Encoding
from cryptography.x509.oid import NameOID

from crl_publisher.adapters.object_store import InMemoryObjectStore
from crl_publisher.adapters.response_cache import InMemoryResponseCache
from crl_publisher.domain.ports import ObjectStore

NOW = datetime(2026, 1, 1, 12, 0, 0, tzinfo=UTC)

type PrivateKey = (
    ec.EllipticCurvePrivateKey | rsa.RSAPrivateKey | ed25519.Ed25519PrivateKey | ed448.Ed448PrivateKey
)


@dataclass
class TestCa:
    """A generated CA: its signing key and self-signed certificate."""

    __test__ = False

    common_name: str | None
    key: PrivateKey
    certificate: x509.Certificate

    @property
    def der(self) -> bytes:
        return self.certificate.public_bytes(Encoding.DER)

    @property
    def pem(self) -> bytes:
        return self.certificate.public_bytes(Encoding.PEM)

    @property
    def ski_hex(self) -> str:
        return x509.SubjectKeyIdentifier.from_public_key(self.key.public_key()).digest.hex()


def _generate_key(key_type: str) -> PrivateKey:
    match key_type:
        case "ec":
            return ec.generate_private_key(ec.SECP256R1())
        case "rsa":
            return rsa.generate_private_key(public_exponent=65537, key_size=2048)
        case "ed25519":
            return ed25519.Ed25519PrivateKey.generate()
        case "ed448":
            return ed448.Ed448PrivateKey.generate()
    raise ValueError(f"unknown key type {key_type}")


def _digest_for(key: PrivateKey) -> hashes.HashAlgorithm | None:
    if isinstance(key, ed25519.Ed25519PrivateKey | ed448.Ed448PrivateKey):
        return None
    return hashes.SHA256()


def make_name(common_name: str | None, organization: str = "Test PKI") -> x509.Name:
    attributes = [
        x509.NameAttribute(NameOID.COUNTRY_NAME, "XX"),
        x509.NameAttribute(NameOID.ORGANIZATION_NAME, organization),
    ]
    if common_name is not None:
        attributes.append(x509.NameAttribute(NameOID.COMMON_NAME, common_name))
    return x509.Name(attributes)


def make_ca(
    common_name: str | None = "Test Root CA",
    key_type: str = "ec",
    with_ski: bool = True,
    organization: str = "Test PKI",
) -> TestCa:
    """Create a self-signed CA certificate."""
    key = _generate_key(key_type)
    subject = make_name(common_name, organization)
    builder = (
        x509.CertificateBuilder()
        .subject_name(subject)
        .issuer_name(subject)
        .public_key(key.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(NOW - timedelta(days=365))
        .not_valid_after(NOW + timedelta(days=3650))
        .add_extension(x509.BasicConstraints(ca=True, path_length=None), critical=True)
    )
    if with_ski:
        builder = builder.add_extension(
            x509.SubjectKeyIdentifier.from_public_key(key.public_key()), critical=False
        )
    certificate = builder.sign(key, _digest_for(key))
    return TestCa(common_name=common_name, key=key, certificate=certificate)


def make_crl(
    ca: TestCa,
    number: int | None = 1,
    delta_base: int | None = None,
    this_update: datetime = NOW,
    next_update: datetime | None = None,
    revoked: Iterable[int] = (),
    with_aki: bool = True,
    signer: TestCa | None = None,
    issuer_name: x509.Name | None = None,
) -> bytes:
    """
    Build a DER CRL issued (by name and AKI) by `ca`.

    `signer` overrides the signing key only, producing a CRL that names `ca`
    but does not verify against it.
    """
    signing_key = (signer or ca).key
    builder = (
        x509.CertificateRevocationListBuilder()
        .issuer_name(issuer_name or ca.certificate.subject)
        .last_update(this_update)
        .next_update(next_update or this_update + timedelta(days=7))
    )
    if number is not None:
        builder = builder.add_extension(x509.CRLNumber(number), critical=False)
    if delta_base is not None:
        builder = builder.add_extension(x509.DeltaCRLIndicator(delta_base), critical=True)
    if with_aki:
        builder = builder.add_extension(
            x509.AuthorityKeyIdentifier.from_issuer_public_key(ca.key.public_key()),
            critical=False,
        )
    for serial in revoked:
        entry = (
            x509.RevokedCertificateBuilder()
            .serial_number(serial)
            .revocation_date(this_update - timedelta(hours=1))
            .add_extension(x509.CRLReason(x509.ReasonFlags.key_compromise), critical=False)
            .build()
        )
        builder = builder.add_revoked_certificate(entry)
    crl = builder.sign(signing_key, _digest_for(signing_key))
    return crl.public_bytes(Encoding.DER)


def to_pem(der: bytes) -> bytes:
    """PEM-wrap CRL DER bytes through cryptography, independently of the code under test."""
    return x509.load_der_x509_crl(der).public_bytes(Encoding.PEM)


def corrupt_signature(der: bytes) -> bytes:
    """Flip the last bit of the encoded signature, leaving the structure intact."""
    return der[:-1] + bytes([der[-1] ^ 0x01])


def resign_pss(der: bytes, ca: TestCa, salt_length: int = 32) -> bytes:
    """
    Re-sign an RSA CA's CRL with RSASSA-PSS (SHA-256, MGF1-SHA-256).

    Both signatureAlgorithm fields are rewritten with explicit PSS
    parameters, so the result carries OID 1.2.840.113549.1.1.10.
    """
    algorithm = algos.SignedDigestAlgorithm(
        {
            "algorithm": "rsassa_pss",
            "parameters": {
                "hash_algorithm": {"algorithm": "sha256"},
                "mask_gen_algorithm": {"algorithm": "mgf1", "parameters": {"algorithm": "sha256"}},
                "salt_length": salt_length,
            },
        }
    )
    parsed = asn1_crl.CertificateList.load(der)
    tbs = parsed["tbs_cert_list"].copy()
    tbs["signature"] = algorithm
    signed_data = tbs.dump(force=True)
    signature = ca.key.sign(
        signed_data,
        padding.PSS(mgf=padding.MGF1(hashes.SHA256()), salt_length=salt_length),
        hashes.SHA256(),
    )
    return asn1_crl.CertificateList(
        {"tbs_cert_list": tbs, "signature_algorithm": algorithm, "signature": signature}
    ).dump()


def seed_ca(store: ObjectStore, ca: TestCa, key: str | None = None) -> str:
    """Store `ca` as a trust anchor and return its key."""
    key = key or f"ca/{(ca.common_name or 'anonymous').replace(' ', '-')}.crt"
    store.put(key, ca.der, {}).value()
    return key


# ─────────────────────── Fixtures ───────────────────────


@pytest.fixture(scope="session")
def root_ca() -> TestCa:
    return make_ca("Test Root CA")


@pytest.fixture(scope="session")
def other_ca() -> TestCa:
    return make_ca("Other CA", organization="Elsewhere")


@pytest.fixture()
def store() -> InMemoryObjectStore:
    return InMemoryObjectStore()


@pytest.fixture()
def cache() -> InMemoryResponseCache:
    return InMemoryResponseCache(max_entries=64)
