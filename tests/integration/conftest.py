"""
Integration test fixtures — PostgreSQL testcontainer and schema setup.

Provides a real PostgreSQL instance for each test session via testcontainers.
The objects table is created by the adapter itself (ensure_schema), exactly
as at application startup. Each test gets a clean table via truncation.
"""

from __future__ import annotations

from collections.abc import Iterator

import psycopg
import pytest
from testcontainers.postgres import PostgresContainer

from crl_publisher.adapters.object_store import PsycopgObjectStore

TRUNCATE_ALL = "TRUNCATE objects"


def _psycopg_dsn(container: PostgresContainer) -> str:
    return container.get_connection_url().replace("postgresql+psycopg2", "postgresql")


@pytest.fixture(scope="session")
def postgres_container() -> Iterator[PostgresContainer]:
    """Start a PostgreSQL container for the entire test session."""
    with PostgresContainer("postgres:16-alpine") as pg:
        PsycopgObjectStore(_psycopg_dsn(pg)).ensure_schema().value()
        yield pg


@pytest.fixture()
def dsn(postgres_container: PostgresContainer) -> str:
    """Return a psycopg-compatible DSN and truncate the objects table before each test."""
    connection_url = _psycopg_dsn(postgres_container)
    with psycopg.connect(connection_url) as conn:
        conn.execute(TRUNCATE_ALL)
        conn.commit()
    return connection_url


@pytest.fixture()
def pg_store(dsn: str) -> PsycopgObjectStore:
    return PsycopgObjectStore(dsn)
