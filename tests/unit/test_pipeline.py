"""
Unit tests for the CRL ingestion railway — end to end over in-memory ports.

Every test drives ingest_crl() with an InMemoryObjectStore, an
InMemoryResponseCache and CRLs generated at runtime, so the full chain
(decode → resolve → verify → freshness → commit → evict) runs for real.

Test categories:
  - Content-type selection
  - Upload scenarios: first upload, stale, unknown issuer, bad signature, replacement
  - Issuer edge cases: CA without SKI, same-DN twin, same-CN issuers
  - Properties: no state change on rejection, archive invariant, cache coherency
  - Failure isolation: store faults, raising cache
"""

from __future__ import annotations

from unittest.mock import MagicMock

import pytest

from crl_publisher.adapters.decoder import decode_crl, extract_pem_block
from crl_publisher.adapters.object_store import InMemoryObjectStore
from crl_publisher.adapters.response_cache import InMemoryResponseCache
from crl_publisher.cache import cached_list_all, list_cache_key
from crl_publisher.domain.models import CrlKind, IngestionReceipt
from crl_publisher.pipeline import ingest_crl, select_decoding
from crl_publisher.railway import ErrorCode, Result, ResultAssertions
from tests.conftest import TestCa, corrupt_signature, make_ca, make_crl, seed_ca, to_pem

DER = "application/pkix-crl"
PEM = "text/plain"


def _snapshot(store: InMemoryObjectStore) -> dict[str, tuple[bytes, str]]:
    """Every object's body and entity tag, for byte-for-byte comparisons."""
    snapshot = {}
    for key in store.keys():
        stored = store.get(key).value()
        snapshot[key] = (stored.body, stored.etag)
    return snapshot


def _upload(
    store: InMemoryObjectStore,
    cache: InMemoryResponseCache,
    ca: TestCa,
    number: int,
    **crl_options: object,
) -> Result[IngestionReceipt]:
    return ingest_crl(make_crl(ca, number=number, **crl_options), DER, store, cache)


# ─────────────────────── Content type ───────────────────────


class TestSelectDecoding:
    """Verify content-type routing."""

    @pytest.mark.parametrize(
        "content_type", ["text/plain", "text/plain; charset=utf-8", "TEXT/X-PEM-FILE"]
    )
    def test_text_types_select_pem(self, content_type: str) -> None:
        """
        GIVEN a text/* content type (any parameters, any case)
        WHEN the decode path is selected
        THEN the PEM path is chosen.
        """
        assert ResultAssertions.assert_success(select_decoding(content_type)) is True

    @pytest.mark.parametrize("content_type", ["application/pkix-crl", "application/octet-stream"])
    def test_binary_types_select_der(self, content_type: str) -> None:
        """
        GIVEN a DER content type
        WHEN the decode path is selected
        THEN the DER path is chosen.
        """
        assert ResultAssertions.assert_success(select_decoding(content_type)) is False

    @pytest.mark.parametrize("content_type", ["application/json", "", None])
    def test_other_types_are_unsupported(self, content_type: str | None) -> None:
        """
        GIVEN any other content type, or none
        WHEN the decode path is selected
        THEN the result is UNSUPPORTED_MEDIA_TYPE.
        """
        ResultAssertions.assert_failure(
            select_decoding(content_type), ErrorCode.UNSUPPORTED_MEDIA_TYPE
        )


# ─────────────────────── Scenarios ───────────────────────


class TestUploadScenarios:
    """The reference upload scenarios, one test each."""

    def test_first_pem_upload_is_accepted(
        self, store: InMemoryObjectStore, cache: InMemoryResponseCache, root_ca: TestCa
    ) -> None:
        """
        GIVEN a stored CA and no prior CRL for it
        WHEN a PEM CRL with crlNumber=5 is uploaded
        THEN it succeeds, DER and PEM objects exist, and nothing is replaced.
        """
        seed_ca(store, root_ca)
        der = make_crl(root_ca, number=5)

        receipt = ResultAssertions.assert_success(ingest_crl(to_pem(der), PEM, store, cache))

        assert receipt.replaced is None
        assert receipt.crl_number == "5"
        assert receipt.crl_type is CrlKind.FULL
        assert receipt.der_key == "crl/TestRootCA.crl"
        assert ResultAssertions.assert_success(store.get(receipt.der_key)).body == der
        pem_body = ResultAssertions.assert_success(store.get(receipt.pem_key)).body
        assert ResultAssertions.assert_success(extract_pem_block(pem_body, "X509 CRL")) == der
        assert receipt.to_dict()["replaced"] is None

    def test_lower_number_is_stale(
        self, store: InMemoryObjectStore, cache: InMemoryResponseCache, root_ca: TestCa
    ) -> None:
        """
        GIVEN crlNumber=5 already stored
        WHEN crlNumber=4 is uploaded
        THEN it is rejected with STALE_CRL.
        """
        seed_ca(store, root_ca)
        ResultAssertions.assert_success(_upload(store, cache, root_ca, 5))

        ResultAssertions.assert_failure(_upload(store, cache, root_ca, 4), ErrorCode.STALE_CRL)

    def test_unknown_issuer_is_rejected(
        self,
        store: InMemoryObjectStore,
        cache: InMemoryResponseCache,
        root_ca: TestCa,
        other_ca: TestCa,
    ) -> None:
        """
        GIVEN only root_ca stored
        WHEN a CRL from an unrelated CA is uploaded
        THEN it is rejected with ISSUER_NOT_FOUND.
        """
        seed_ca(store, root_ca)

        result = _upload(store, cache, other_ca, 1)

        ResultAssertions.assert_failure(result, ErrorCode.ISSUER_NOT_FOUND)

    def test_corrupted_signature_is_rejected(
        self, store: InMemoryObjectStore, cache: InMemoryResponseCache, root_ca: TestCa
    ) -> None:
        """
        GIVEN a resolvable issuer
        WHEN a CRL with a corrupted signature value is uploaded
        THEN it is rejected with INVALID_SIGNATURE.
        """
        seed_ca(store, root_ca)
        der = corrupt_signature(make_crl(root_ca, number=1))

        result = ingest_crl(der, DER, store, cache)

        ResultAssertions.assert_failure(result, ErrorCode.INVALID_SIGNATURE)

    def test_higher_number_replaces_and_archives(
        self, store: InMemoryObjectStore, cache: InMemoryResponseCache, root_ca: TestCa
    ) -> None:
        """
        GIVEN crlNumber=5 stored
        WHEN crlNumber=6 is uploaded
        THEN it succeeds, reports replaced.crlNumber="5", and the archive holds the old bytes.
        """
        seed_ca(store, root_ca)
        old = make_crl(root_ca, number=5)
        ResultAssertions.assert_success(ingest_crl(old, DER, store, cache))

        receipt = ResultAssertions.assert_success(_upload(store, cache, root_ca, 6))

        body = receipt.to_dict()
        assert body["replaced"]["crlNumber"] == "5"
        archived = ResultAssertions.assert_success(store.get(body["replaced"]["archivedTo"]))
        assert archived.body == old


# ─────────────────────── Issuer edge cases ───────────────────────


class TestIssuerEdgeCases:
    """Resolution fallbacks and issuers that share a name."""

    def test_legacy_ca_without_ski_is_accepted(
        self, store: InMemoryObjectStore, cache: InMemoryResponseCache
    ) -> None:
        """
        GIVEN a legacy CA stored without a SubjectKeyIdentifier
        WHEN a CRL carrying an AKI is uploaded
        THEN the issuer is resolved by DN and the CRL is accepted.
        """
        legacy = make_ca("Legacy Root CA", with_ski=False)
        seed_ca(store, legacy)

        receipt = ResultAssertions.assert_success(
            ingest_crl(make_crl(legacy, number=5), DER, store, cache)
        )

        assert receipt.der_key == "crl/LegacyRootCA.crl"
        assert receipt.by_key_id_key == f"crl/by-keyid/{legacy.ski_hex}.crl"

    def test_same_dn_twin_fails_on_signature(
        self, store: InMemoryObjectStore, cache: InMemoryResponseCache
    ) -> None:
        """
        GIVEN only a twin CA stored (same DN as the real issuer, other key)
        WHEN a CRL from the real issuer is uploaded
        THEN the DN fallback picks the twin and the signature check rejects it.
        """
        seed_ca(store, make_ca("Twin CA"))
        real = make_ca("Twin CA")

        result = _upload(store, cache, real, 1)

        ResultAssertions.assert_failure(result, ErrorCode.INVALID_SIGNATURE)
        assert store.keys("crl/") == []

    def test_same_cn_issuers_get_separate_slots(
        self, store: InMemoryObjectStore, cache: InMemoryResponseCache
    ) -> None:
        """
        GIVEN "Issuing CA" / Org A with CRL #10 accepted
        WHEN "Issuing CA" / Org B uploads CRL #5, then #4
        THEN #5 is accepted under another key, A's CRL is untouched and #4 is stale.
        """
        org_a = make_ca("Issuing CA", organization="Org A")
        org_b = make_ca("Issuing CA", organization="Org B")
        seed_ca(store, org_a, "ca/issuing-a.crt")
        seed_ca(store, org_b, "ca/issuing-b.crt")
        first = ResultAssertions.assert_success(_upload(store, cache, org_a, 10))
        before = ResultAssertions.assert_success(store.get(first.der_key))

        second = ResultAssertions.assert_success(_upload(store, cache, org_b, 5))

        assert first.der_key == "crl/IssuingCA.crl"
        assert second.der_key == f"crl/IssuingCA-{org_b.ski_hex[:8]}.crl"
        assert second.replaced is None
        after = ResultAssertions.assert_success(store.get(first.der_key))
        assert (after.body, after.etag) == (before.body, before.etag)
        assert store.keys("crl/archive/") == []
        ResultAssertions.assert_failure(_upload(store, cache, org_b, 4), ErrorCode.STALE_CRL)


# ─────────────────────── Rejection paths ───────────────────────


class TestRejections:
    """Verify that every rejection leaves storage untouched."""

    def test_unsupported_media_type(
        self, store: InMemoryObjectStore, cache: InMemoryResponseCache, root_ca: TestCa
    ) -> None:
        """
        GIVEN a valid CRL
        WHEN it is uploaded as application/json
        THEN it is rejected with UNSUPPORTED_MEDIA_TYPE before decoding.
        """
        seed_ca(store, root_ca)

        result = ingest_crl(make_crl(root_ca), "application/json", store, cache)

        ResultAssertions.assert_failure(result, ErrorCode.UNSUPPORTED_MEDIA_TYPE)

    def test_der_sent_as_pem_is_invalid_pem(
        self, store: InMemoryObjectStore, cache: InMemoryResponseCache, root_ca: TestCa
    ) -> None:
        """
        GIVEN DER bytes
        WHEN uploaded with a text/plain content type
        THEN it is rejected with INVALID_PEM.
        """
        result = ingest_crl(make_crl(root_ca), PEM, store, cache)

        ResultAssertions.assert_failure(result, ErrorCode.INVALID_PEM)

    def test_garbage_der_is_invalid_der(
        self, store: InMemoryObjectStore, cache: InMemoryResponseCache
    ) -> None:
        """
        GIVEN non-ASN.1 bytes
        WHEN uploaded as DER
        THEN it is rejected with INVALID_DER.
        """
        ResultAssertions.assert_failure(
            ingest_crl(b"garbage", DER, store, cache), ErrorCode.INVALID_DER
        )

    def test_resubmitting_the_same_crl_is_a_no_op(
        self, store: InMemoryObjectStore, cache: InMemoryResponseCache, root_ca: TestCa
    ) -> None:
        """
        GIVEN an accepted CRL
        WHEN the identical bytes are uploaded again
        THEN STALE_CRL is returned and storage is byte-for-byte unchanged.
        """
        seed_ca(store, root_ca)
        der = make_crl(root_ca, number=3)
        ResultAssertions.assert_success(ingest_crl(der, DER, store, cache))
        before = _snapshot(store)

        ResultAssertions.assert_failure(ingest_crl(der, DER, store, cache), ErrorCode.STALE_CRL)

        assert _snapshot(store) == before

    @pytest.mark.parametrize("number", [1, 2, 3])
    def test_not_newer_numbers_leave_storage_unchanged(
        self,
        store: InMemoryObjectStore,
        cache: InMemoryResponseCache,
        root_ca: TestCa,
        number: int,
    ) -> None:
        """
        GIVEN crlNumber=3 stored
        WHEN a CRL with number <= 3 is uploaded
        THEN it is STALE_CRL and nothing changes.
        """
        seed_ca(store, root_ca)
        ResultAssertions.assert_success(_upload(store, cache, root_ca, 3))
        before = _snapshot(store)

        ResultAssertions.assert_failure(_upload(store, cache, root_ca, number), ErrorCode.STALE_CRL)

        assert _snapshot(store) == before

    def test_rejected_crl_causes_no_writes(self, root_ca: TestCa) -> None:
        """
        GIVEN a store mock that lists the CA but no prior CRL
        WHEN a CRL with a bad signature is uploaded
        THEN put is never called.
        """
        backing = InMemoryObjectStore()
        seed_ca(backing, root_ca)
        store = MagicMock(wraps=backing)

        ingest_crl(corrupt_signature(make_crl(root_ca)), DER, store, InMemoryResponseCache())

        store.put.assert_not_called()


# ─────────────────────── Properties ───────────────────────


class TestProperties:
    """Invariants that hold across sequences of uploads."""

    def test_archive_invariant(
        self, store: InMemoryObjectStore, cache: InMemoryResponseCache, root_ca: TestCa
    ) -> None:
        """
        GIVEN N=5 consecutive accepted uploads for one issuer
        WHEN storage is inspected
        THEN there are N-1 archive entries and the canonical CRL has the maximum number.
        """
        seed_ca(store, root_ca)
        numbers = [2, 5, 9, 10, 40]
        for number in numbers:
            ResultAssertions.assert_success(_upload(store, cache, root_ca, number))

        archive = store.keys("crl/archive/")
        canonical = ResultAssertions.assert_success(store.get("crl/TestRootCA.crl"))

        assert len(archive) == len(numbers) - 1
        assert archive == sorted(f"crl/archive/TestRootCA-{n}.crl" for n in numbers[:-1])
        assert ResultAssertions.assert_success(decode_crl(canonical.body)).crl_number == max(numbers)

    def test_list_after_upload_never_returns_pre_upload_snapshot(
        self, store: InMemoryObjectStore, cache: InMemoryResponseCache, root_ca: TestCa
    ) -> None:
        """
        GIVEN a cached listing of crl/ taken after the first upload
        WHEN a newer CRL is accepted
        THEN the next listing of crl/ shows the new archive entry.
        """
        seed_ca(store, root_ca)
        ResultAssertions.assert_success(_upload(store, cache, root_ca, 1))
        before = ResultAssertions.assert_success(cached_list_all(store, cache, "crl/"))
        assert cache.match(list_cache_key("crl/")) is not None

        receipt = ResultAssertions.assert_success(_upload(store, cache, root_ca, 2))
        after = ResultAssertions.assert_success(cached_list_all(store, cache, "crl/"))

        assert receipt.replaced is not None
        assert receipt.replaced.archived_to in {info.key for info in after}
        assert receipt.replaced.archived_to not in {info.key for info in before}

    def test_full_and_delta_are_ordered_independently(
        self, store: InMemoryObjectStore, cache: InMemoryResponseCache, root_ca: TestCa
    ) -> None:
        """
        GIVEN a full CRL #10 stored
        WHEN a delta CRL #3 (base 2) is uploaded
        THEN it is accepted under dcrl/ because deltas are compared with deltas only.
        """
        seed_ca(store, root_ca)
        ResultAssertions.assert_success(_upload(store, cache, root_ca, 10))

        receipt = ResultAssertions.assert_success(_upload(store, cache, root_ca, 3, delta_base=2))

        assert receipt.crl_type is CrlKind.DELTA
        assert receipt.der_key == "dcrl/TestRootCA.crl"
        assert receipt.base_crl_number == "2"
        assert receipt.replaced is None

    @pytest.mark.parametrize("key_type", ["rsa", "ed25519", "ed448"])
    def test_other_key_families_end_to_end(
        self, store: InMemoryObjectStore, cache: InMemoryResponseCache, key_type: str
    ) -> None:
        """
        GIVEN a CA with an RSA, Ed25519 or Ed448 key
        WHEN one of its CRLs is uploaded
        THEN it is accepted.
        """
        ca = make_ca(f"{key_type} CA", key_type=key_type)
        seed_ca(store, ca)

        ResultAssertions.assert_success(_upload(store, cache, ca, 1))

    def test_dn_resolved_crl_without_aki(
        self, store: InMemoryObjectStore, cache: InMemoryResponseCache, root_ca: TestCa
    ) -> None:
        """
        GIVEN a CRL without an AKI
        WHEN it is uploaded
        THEN it is resolved by DN, accepted, and has no by-keyid alias.
        """
        seed_ca(store, root_ca)

        receipt = ResultAssertions.assert_success(_upload(store, cache, root_ca, 1, with_aki=False))

        assert receipt.by_key_id_key is None
        assert receipt.issuer_key_identifier == root_ca.ski_hex


# ─────────────────────── Failure isolation ───────────────────────


class TestFailureIsolation:
    """Store faults surface; cache faults never do."""

    def test_raising_cache_does_not_fail_the_upload(
        self, store: InMemoryObjectStore, root_ca: TestCa
    ) -> None:
        """
        GIVEN a response cache whose every operation raises
        WHEN a valid CRL is uploaded
        THEN the upload still succeeds.
        """
        seed_ca(store, root_ca)
        cache = MagicMock()
        cache.match.side_effect = RuntimeError("cache down")
        cache.put.side_effect = RuntimeError("cache down")
        cache.delete.side_effect = RuntimeError("cache down")

        receipt = ResultAssertions.assert_success(
            ingest_crl(make_crl(root_ca, number=1), DER, store, cache)
        )

        assert receipt.crl_number == "1"

    def test_store_write_failure_is_storage_error(self, root_ca: TestCa) -> None:
        """
        GIVEN a store that reads normally but refuses writes
        WHEN a valid CRL is uploaded
        THEN the result is STORAGE_ERROR and the cache is not touched for eviction.
        """
        backing = InMemoryObjectStore()
        seed_ca(backing, root_ca)
        store = MagicMock(wraps=backing)
        store.put.return_value = Result.failure(ErrorCode.STORAGE_ERROR, "read-only")
        cache = MagicMock(wraps=InMemoryResponseCache())

        result = ingest_crl(make_crl(root_ca, number=1), DER, store, cache)

        ResultAssertions.assert_failure(result, ErrorCode.STORAGE_ERROR)
        cache.delete.assert_not_called()
