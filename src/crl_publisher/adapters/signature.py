"""
Signature verifier adapter — authenticates a CRL against its issuer's key.

Dispatch goes through a fixed table keyed by the CRL's signatureAlgorithm
OID; each entry names a scheme family and its digest. The issuer's
SubjectPublicKeyInfo is loaded with cryptography and the signature is checked
over the exact tbsCertList bytes.

Every way verification can fail (bad signature, key/algorithm mismatch,
unknown OID, malformed PSS parameters) collapses to INVALID_SIGNATURE.
"""

from __future__ import annotations

from dataclasses import dataclass

import structlog
from asn1crypto import algos, keys
from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec, ed448, ed25519, padding, rsa
from cryptography.hazmat.primitives.asymmetric.types import PublicKeyTypes

from crl_publisher.domain.models import Certificate, Crl
from crl_publisher.railway import ErrorCode, Result

log = structlog.get_logger()

RSA_PKCS1V15 = "rsa_pkcs1v15"
RSA_PSS = "rsa_pss"
ECDSA = "ecdsa"
ED25519 = "ed25519"
ED448 = "ed448"

_HASHES: dict[str, type[hashes.HashAlgorithm]] = {
    "sha1": hashes.SHA1,
    "sha224": hashes.SHA224,
    "sha256": hashes.SHA256,
    "sha384": hashes.SHA384,
    "sha512": hashes.SHA512,
}


@dataclass(frozen=True, slots=True)
class SignatureScheme:
    family: str
    hash_name: str | None = None


SIGNATURE_ALGORITHMS: dict[str, SignatureScheme] = {
    "1.2.840.113549.1.1.5": SignatureScheme(RSA_PKCS1V15, "sha1"),
    "1.2.840.113549.1.1.14": SignatureScheme(RSA_PKCS1V15, "sha224"),
    "1.2.840.113549.1.1.11": SignatureScheme(RSA_PKCS1V15, "sha256"),
    "1.2.840.113549.1.1.12": SignatureScheme(RSA_PKCS1V15, "sha384"),
    "1.2.840.113549.1.1.13": SignatureScheme(RSA_PKCS1V15, "sha512"),
    # digest comes from RSASSA-PSS-params
    "1.2.840.113549.1.1.10": SignatureScheme(RSA_PSS),
    "1.2.840.10045.4.1": SignatureScheme(ECDSA, "sha1"),
    "1.2.840.10045.4.3.1": SignatureScheme(ECDSA, "sha224"),
    "1.2.840.10045.4.3.2": SignatureScheme(ECDSA, "sha256"),
    "1.2.840.10045.4.3.3": SignatureScheme(ECDSA, "sha384"),
    "1.2.840.10045.4.3.4": SignatureScheme(ECDSA, "sha512"),
    "1.3.101.112": SignatureScheme(ED25519),
    "1.3.101.113": SignatureScheme(ED448),
}


class SignatureMismatch(ValueError):
    """Raised inside verification; converted to INVALID_SIGNATURE at the boundary."""


def _hash(name: str) -> hashes.HashAlgorithm:
    algorithm = _HASHES.get(name)
    if algorithm is None:
        raise SignatureMismatch(f"unsupported digest {name}")
    return algorithm()


def _load_public_key(public_key_info: bytes) -> PublicKeyTypes:
    info = keys.PublicKeyInfo.load(public_key_info)
    # cryptography cannot load id-RSASSA-PSS keys directly
    if info.algorithm == "rsassa_pss":
        info = info.copy()
        info["algorithm"] = {"algorithm": "rsa"}
    return serialization.load_der_public_key(info.dump())


def _require[K](public_key: PublicKeyTypes, kind: type[K], family: str) -> K:
    if not isinstance(public_key, kind):
        raise SignatureMismatch(
            f"issuer key type {type(public_key).__name__} cannot verify {family}"
        )
    return public_key


def _pss_padding(parameters: bytes | None) -> tuple[padding.PSS, hashes.HashAlgorithm]:
    if parameters is None:
        raise SignatureMismatch("RSASSA-PSS signature without parameters")
    params = algos.RSASSAPSSParams.load(parameters, strict=True)
    mask_gen = params["mask_gen_algorithm"]
    if mask_gen["algorithm"].native != "mgf1":
        raise SignatureMismatch("only MGF1 is supported for RSASSA-PSS")
    digest = _hash(params["hash_algorithm"]["algorithm"].native)
    mgf_digest = _hash(mask_gen["parameters"]["algorithm"].native)
    pss = padding.PSS(
        mgf=padding.MGF1(algorithm=mgf_digest),
        salt_length=params["salt_length"].native,
    )
    return pss, digest


def _verify(crl: Crl, issuer: Certificate, scheme: SignatureScheme) -> bool:
    """Raises on any mismatch; returns True when the signature holds."""
    public_key = _load_public_key(issuer.public_key_info)
    signature = crl.signature
    data = crl.signed_data

    try:
        match scheme.family:
            case "rsa_pkcs1v15":
                rsa_key = _require(public_key, rsa.RSAPublicKey, scheme.family)
                rsa_key.verify(signature, data, padding.PKCS1v15(), _hash(scheme.hash_name))
            case "rsa_pss":
                rsa_key = _require(public_key, rsa.RSAPublicKey, scheme.family)
                pss, digest = _pss_padding(crl.signature_parameters)
                rsa_key.verify(signature, data, pss, digest)
            case "ecdsa":
                ec_key = _require(public_key, ec.EllipticCurvePublicKey, scheme.family)
                ec_key.verify(signature, data, ec.ECDSA(_hash(scheme.hash_name)))
            case "ed25519":
                _require(public_key, ed25519.Ed25519PublicKey, scheme.family).verify(
                    signature, data
                )
            case "ed448":
                _require(public_key, ed448.Ed448PublicKey, scheme.family).verify(
                    signature, data
                )
            case other:
                raise SignatureMismatch(f"unsupported scheme {other}")
    except InvalidSignature as e:
        raise SignatureMismatch("signature does not match issuer public key") from e
    return True


def verify_crl_signature(crl: Crl, issuer: Certificate) -> Result[Crl]:
    """
    Verify `crl` was signed by `issuer`'s key. Returns the same CRL on success.

    This stage is mandatory: there is no configuration that skips it.
    """
    scheme = SIGNATURE_ALGORITHMS.get(crl.signature_algorithm_oid)
    if scheme is None:
        log.warning("signature.unsupported_algorithm", oid=crl.signature_algorithm_oid)
        return Result.failure(
            ErrorCode.INVALID_SIGNATURE,
            f"Unsupported signature algorithm {crl.signature_algorithm_oid}",
        )

    return (
        Result.from_computation(
            lambda: _verify(crl, issuer, scheme),
            ErrorCode.INVALID_SIGNATURE,
            "CRL signature verification failed",
        )
        .peek_failure(
            lambda err: log.warning(
                "signature.rejected",
                issuer=str(issuer.subject),
                algorithm=scheme.family,
                error=err.message,
            )
        )
        .map(lambda _: crl)
    )
