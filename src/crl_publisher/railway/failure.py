"""
Failure description — structured error information for the failure track.

Every rejection the ingestion pipeline can produce is an ErrorCode member.
The member VALUE is the wire code returned to clients (``invalid_pem``,
``stale_crl``, ...), so the code travels unchanged from the stage that
failed to the HTTP response body.

Codes are grouped by category, which tells an operator what to do next:

- decode:   malformed client input, fix and resubmit
- trust:    the CRL cannot be authenticated, operator intervention required
- ordering: authentic but not newer than what is stored, resubmitting is a no-op
- storage:  backing store fault, surfaced as a server error
- server:   misconfiguration or unexpected failure
"""

from __future__ import annotations

import traceback
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum, unique


@unique
class ErrorCode(Enum):
    """Wire-level error codes for the failure track."""

    # --- Decode errors ---
    INVALID_PEM = "invalid_pem"
    """No matching PEM block, or its body is not valid base64 (→ 400)."""

    INVALID_DER = "invalid_der"
    """Bytes are not a well-formed certificate / CRL structure (→ 400)."""

    UNSUPPORTED_MEDIA_TYPE = "unsupported_media_type"
    """Request content type selects neither the PEM nor the DER path (→ 415)."""

    # --- Trust errors ---
    ISSUER_NOT_FOUND = "issuer_not_found"
    """No stored CA certificate matches the CRL's AKI or issuer DN (→ 400)."""

    INVALID_SIGNATURE = "invalid_signature"
    """CRL signature does not verify against the resolved issuer (→ 400)."""

    # --- Ordering errors ---
    STALE_CRL = "stale_crl"
    """CRL does not supersede the stored version (→ 409)."""

    # --- Storage errors ---
    NOT_FOUND = "not_found"
    """Object key does not exist in the backing store (→ 404)."""

    PRECONDITION_FAILED = "precondition_failed"
    """Conditional write lost against a newer entity tag (→ 412)."""

    STORAGE_ERROR = "storage_error"
    """Backing store unavailable or failing (→ 500)."""

    # --- Server errors ---
    CONFIGURATION_ERROR = "configuration_error"
    """System misconfiguration (→ 500)."""

    UNKNOWN_ERROR = "unknown_error"
    """Unexpected/unclassified failures (→ 500)."""

    @property
    def category(self) -> str:
        """Error family: decode, trust, ordering, storage or server."""
        return _CATEGORIES[self]

    @property
    def retryable(self) -> bool:
        """True when resubmitting corrected input can succeed without an operator."""
        return self.category == "decode"


_CATEGORIES: dict[ErrorCode, str] = {
    ErrorCode.INVALID_PEM: "decode",
    ErrorCode.INVALID_DER: "decode",
    ErrorCode.UNSUPPORTED_MEDIA_TYPE: "decode",
    ErrorCode.ISSUER_NOT_FOUND: "trust",
    ErrorCode.INVALID_SIGNATURE: "trust",
    ErrorCode.STALE_CRL: "ordering",
    ErrorCode.NOT_FOUND: "storage",
    ErrorCode.PRECONDITION_FAILED: "storage",
    ErrorCode.STORAGE_ERROR: "storage",
    ErrorCode.CONFIGURATION_ERROR: "server",
    ErrorCode.UNKNOWN_ERROR: "server",
}


@dataclass(frozen=True, slots=True)
class FailureDescription:
    """
    Immutable failure descriptor carrying error code, message, optional exception, and timestamp.

    >>> desc = FailureDescription(ErrorCode.STALE_CRL, "CRL is not newer than the stored version")
    >>> desc.code.value
    'stale_crl'
    """

    code: ErrorCode
    message: str
    exception: BaseException | None = field(default=None, repr=False)
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))

    def full_stack_trace(self) -> str:
        """Message followed by the formatted exception chain, if any."""
        if self.exception is None:
            return self.message
        tb = "".join(
            traceback.format_exception(
                type(self.exception), self.exception, self.exception.__traceback__
            )
        )
        return f"{self.message}\n{tb}"

    def __str__(self) -> str:
        return f"{self.code.value}: {self.message}"
