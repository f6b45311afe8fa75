"""
FastAPI + Uvicorn ASGI application — the HTTP surface of the publisher.

Endpoints:
  POST /api/v2/crls                 → CRL ingestion (PEM via text/*, DER via
                                      application/pkix-crl or octet-stream)
  GET  /api/v2/crls                 → page of published CRLs (type, status,
                                      issuer, limit, cursor)
  GET  /api/v2/crls/{id}            → one CRL decoded, revocations paged
  GET  /api/v2/summaries?key=...    → cached summary of one stored object
  POST /api/v2/summaries/refresh    → recompute stale summaries under a prefix
  GET  /health                      → liveness

The ingestion pipeline is synchronous; each request hands it to a worker
thread so the event loop keeps serving while asn1crypto, cryptography and the
object store do their work.

Entry point for production: uvicorn crl_publisher.asgi:app --host 0.0.0.0 --port 8000
"""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI, Query, Request
from fastapi.responses import JSONResponse

from crl_publisher import __version__
from crl_publisher.cache import LIST_CACHE, META_CACHE, cached_summary
from crl_publisher.catalog import (
    DEFAULT_PAGE_SIZE,
    DEFAULT_REVOCATIONS_PAGE,
    MAX_PAGE_SIZE,
    get_crl,
    list_crls,
)
from crl_publisher.config import AppSettings
from crl_publisher.domain.models import CrlKind, CrlState, IngestionReceipt
from crl_publisher.domain.ports import ObjectStore, ResponseCache
from crl_publisher.main import configure_structlog, create_adapters
from crl_publisher.pipeline import ingest_crl
from crl_publisher.railway import LoggingExecutionContext, Result
from crl_publisher.railway.http_support import build_fastapi_response
from crl_publisher.summary import SummaryProjector

# ─────────────────────── Global State ───────────────────────
# Set during app startup; read by request handlers and health checks.

_store: ObjectStore | None = None
_cache: ResponseCache | None = None
_settings: AppSettings | None = None
_error_message: str | None = None
log = structlog.get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """
    FastAPI lifespan context manager — runs on startup and shutdown.

    Startup: load settings and create the object store and response cache.
    """
    global _store, _cache, _settings, _error_message

    log.info("asgi.startup")

    try:
        settings = AppSettings()
    except Exception as e:
        _error_message = f"Configuration error: {e}"
        log.error("asgi.startup_error", error=_error_message)
        raise

    configure_structlog(settings.log_level)
    log.info(
        "asgi.startup_config",
        version=__version__,
        log_level=settings.log_level,
        storage_backend=settings.storage.backend,
    )

    try:
        _store, _cache = create_adapters(settings)
    except Exception as e:
        _error_message = f"Failed to initialize adapters: {e}"
        log.error("asgi.init_error", error=_error_message)
        raise
    _settings = settings

    log.info("asgi.startup_complete")

    yield

    log.info("asgi.shutdown")
    _store = None
    _cache = None


# ─────────────────────── FastAPI Application ───────────────────────

app = FastAPI(
    title="crl-publisher",
    description="CRL ingestion and publication service",
    version=__version__,
    lifespan=lifespan,
)


def _unavailable() -> JSONResponse:
    return JSONResponse(
        status_code=503,
        content={"status": "unavailable", "reason": "Storage not initialized"},
    )


def _run_ingestion(body: bytes, content_type: str | None) -> Result[IngestionReceipt]:
    assert _store is not None and _cache is not None
    eviction_workers = _settings.cache.eviction_workers if _settings else 6
    list_policy = _settings.cache.list_policy() if _settings else LIST_CACHE
    return LoggingExecutionContext(operation="CrlIngestion").execute(
        lambda: ingest_crl(
            body,
            content_type,
            _store,
            _cache,
            eviction_workers=eviction_workers,
            list_policy=list_policy,
        )
    )


@app.post("/api/v2/crls")
async def upload_crl(request: Request) -> JSONResponse:
    """
    Ingest one CRL.

    Returns 201 with the ingestion receipt, or the failure's status code
    (400 decode/trust, 409 stale, 415 media type, 500 storage) with
    {error_code, category, message, timestamp}.
    """
    if _store is None or _cache is None:
        return _unavailable()

    body = await request.body()
    content_type = request.headers.get("content-type")
    log.info("crl_upload.received", content_type=content_type, size=len(body))

    result = await asyncio.to_thread(_run_ingestion, body, content_type)
    return build_fastapi_response(result, success_status=201, serializer=lambda r: r.to_dict())


@app.get("/api/v2/crls")
async def list_published_crls(
    crl_type: CrlKind | None = Query(default=None, alias="type"),
    status: CrlState | None = Query(default=None),
    issuer: str | None = Query(default=None),
    limit: int = Query(default=DEFAULT_PAGE_SIZE, ge=1, le=MAX_PAGE_SIZE),
    cursor: str | None = Query(default=None),
) -> JSONResponse:
    """Published CRLs with cached summaries and computed status."""
    if _store is None or _cache is None:
        return _unavailable()

    list_policy = _settings.cache.list_policy() if _settings else LIST_CACHE
    meta_policy = _settings.cache.meta_policy() if _settings else META_CACHE
    result = await asyncio.to_thread(
        lambda: list_crls(
            _store,
            _cache,
            crl_type=crl_type,
            state=status,
            issuer=issuer,
            limit=limit,
            cursor=cursor,
            list_policy=list_policy,
            meta_policy=meta_policy,
        )
    )
    return build_fastapi_response(result, serializer=lambda page: page.to_dict())


@app.get("/api/v2/crls/{crl_id:path}")
async def get_published_crl(
    crl_id: str,
    revocations_limit: int = Query(
        default=DEFAULT_REVOCATIONS_PAGE, ge=1, le=MAX_PAGE_SIZE, alias="revocations.limit"
    ),
    revocations_cursor: int = Query(default=0, ge=0, alias="revocations.cursor"),
) -> JSONResponse:
    """One stored CRL; 404 when missing, 400 when its body no longer decodes."""
    if _store is None:
        return _unavailable()

    result = await asyncio.to_thread(
        get_crl, _store, crl_id, revocations_limit, revocations_cursor
    )
    return build_fastapi_response(result, serializer=lambda detail: detail.to_dict())


@app.get("/api/v2/summaries")
async def get_summary(key: str = Query(min_length=1)) -> JSONResponse:
    """Summary projection of a stored certificate or CRL."""
    if _store is None or _cache is None:
        return _unavailable()

    policy = _settings.cache.meta_policy() if _settings else META_CACHE
    result = await asyncio.to_thread(cached_summary, _store, _cache, key, policy)
    return build_fastapi_response(
        result, serializer=lambda summary: {"key": key, "summary": summary.to_dict()}
    )


@app.post("/api/v2/summaries/refresh")
async def refresh_summaries(prefix: str = Query(default="ca/")) -> JSONResponse:
    """Recompute every missing or outdated summary under `prefix`."""
    if _store is None:
        return _unavailable()

    projector = SummaryProjector(_store)
    result = await asyncio.to_thread(projector.refresh_prefix, prefix)
    return build_fastapi_response(
        result, serializer=lambda count: {"prefix": prefix, "refreshed": count}
    )


@app.get("/health")
async def health() -> JSONResponse:
    """
    Liveness check.

    Returns 503 if configuration failed or the adapters are not initialized.
    """
    if _error_message:
        log.warning("health.check_failed", error=_error_message)
        return JSONResponse(
            status_code=503,
            content={"status": "unhealthy", "error": _error_message},
        )

    if _store is None or _cache is None:
        return JSONResponse(
            status_code=503,
            content={"status": "unhealthy", "reason": "storage not initialized"},
        )

    return JSONResponse(
        status_code=200,
        content={"status": "healthy", "version": __version__},
    )
