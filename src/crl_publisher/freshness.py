"""
Freshness arbiter — decides whether an incoming CRL supersedes the stored one.

Ordering signals, strongest first:
  1. CRL Number on both sides → strictly greater wins; equal or lower loses,
     whatever the dates say
  2. otherwise thisUpdate → strictly later wins
  3. nothing comparable → not newer

Full and delta CRLs are never compared with each other; the caller always
passes the prior stored at the same placement.
"""

from __future__ import annotations

import structlog

from crl_publisher.domain.models import Crl, PriorCrl
from crl_publisher.railway import ErrorCode, Result

log = structlog.get_logger()


def is_newer(incoming: Crl, stored: Crl) -> bool:
    if incoming.crl_number is not None and stored.crl_number is not None:
        return incoming.crl_number > stored.crl_number
    if incoming.this_update is not None and stored.this_update is not None:
        return incoming.this_update > stored.this_update
    log.warning(
        "freshness.undetermined",
        incoming_this_update=incoming.this_update,
        stored_this_update=stored.this_update,
    )
    return False


def ensure_fresh(incoming: Crl, prior: PriorCrl | None) -> Result[Crl]:
    """
    Pass `incoming` through if it supersedes `prior`, else STALE_CRL.

    A missing prior, or one whose stored bytes no longer decode, cannot
    outrank anything.
    """
    if prior is None or prior.crl is None:
        return Result.success(incoming)
    if is_newer(incoming, prior.crl):
        return Result.success(incoming)

    log.info(
        "freshness.rejected",
        kind=incoming.kind.value,
        incoming_number=incoming.crl_number,
        stored_number=prior.crl.crl_number,
        incoming_this_update=incoming.this_update.isoformat(),
        stored_this_update=prior.crl.this_update.isoformat(),
    )
    message = (
        "Delta CRL is not newer than the stored version"
        if incoming.is_delta
        else "CRL is not newer than the stored version"
    )
    return Result.failure(ErrorCode.STALE_CRL, message)
