"""
Application entry point — wires dependencies and starts the HTTP service.

Composition root: creates the concrete object store and response cache from
settings. This is the ONLY place where concrete adapters are instantiated;
everything else depends on the Protocol ports.

Responsibilities:
  1. Configure structlog
  2. Load and validate configuration from environment
  3. Create the object store (memory or PostgreSQL) and response cache
  4. Serve crl_publisher.asgi:app with uvicorn
"""

from __future__ import annotations

import logging
import sys

import structlog
import uvicorn

from crl_publisher import __version__
from crl_publisher.adapters.object_store import InMemoryObjectStore, PsycopgObjectStore
from crl_publisher.adapters.response_cache import InMemoryResponseCache
from crl_publisher.config import AppSettings
from crl_publisher.domain.ports import ObjectStore, ResponseCache


def configure_structlog(log_level: str = "INFO") -> None:
    """
    Configure structlog for structured logging.

    Colored, human-readable console output with ISO timestamps; events below
    `log_level` are filtered before any processor runs.
    """
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.StackInfoRenderer(),
            structlog.dev.set_exc_info,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.dev.ConsoleRenderer(),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(
            getattr(logging, log_level.upper(), logging.INFO)
        ),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )


def create_adapters(settings: AppSettings) -> tuple[ObjectStore, ResponseCache]:
    """
    Instantiate the object store and response cache from settings.

    The PostgreSQL backend gets its table created here, so a misconfigured
    database fails at startup instead of on the first upload.
    """
    store: ObjectStore
    if settings.storage.backend == "postgres":
        postgres = PsycopgObjectStore(dsn=settings.storage.get_dsn())
        schema = postgres.ensure_schema()
        if schema.is_failure():
            raise RuntimeError(schema.error().message)
        store = postgres
    else:
        store = InMemoryObjectStore()

    cache = InMemoryResponseCache(max_entries=settings.cache.max_entries)
    return store, cache


def main() -> None:
    """Load settings and serve the ASGI app."""
    try:
        settings = AppSettings()
    except Exception as e:
        print(f"FATAL: Configuration error — {e}", file=sys.stderr)  # noqa: T201
        sys.exit(1)

    configure_structlog(settings.log_level)
    log = structlog.get_logger()
    log.info(
        "app.starting",
        version=__version__,
        storage_backend=settings.storage.backend,
        host=settings.host,
        port=settings.port,
    )

    uvicorn.run(
        "crl_publisher.asgi:app",
        host=settings.host,
        port=settings.port,
        reload=False,
        log_level=settings.log_level.lower(),
    )


if __name__ == "__main__":
    main()
