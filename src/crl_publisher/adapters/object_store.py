"""
Object store adapters — implementations of the ObjectStore port.

Two backends share the same contract (last-write-wins per key, prefix
listing in key order with an opaque cursor, entity-tag conditional writes):

  InMemoryObjectStore  → process-local dict, used by tests and the `memory` backend
  PsycopgObjectStore   → PostgreSQL table via psycopg (v3), one connection per call

Entity tags are fresh uuid4 hex strings on every write, so a conditional
write succeeds only against the exact version that was read.
"""

from __future__ import annotations

import threading
import uuid
from collections.abc import Callable
from datetime import UTC, datetime
from typing import Any

import psycopg
import structlog
from psycopg.types.json import Jsonb

from crl_publisher.domain.models import ObjectInfo, ObjectListing, StoredObject
from crl_publisher.railway import ErrorCode, Result

log = structlog.get_logger()


def _new_etag() -> str:
    return uuid.uuid4().hex


def _utcnow() -> datetime:
    return datetime.now(UTC)


class InMemoryObjectStore:
    """Thread-safe dict-backed store. Keys are listed in code-point order."""

    def __init__(self, clock: Callable[[], datetime] = _utcnow) -> None:
        self._objects: dict[str, StoredObject] = {}
        self._lock = threading.Lock()
        self._clock = clock

    def get(self, key: str) -> Result[StoredObject]:
        with self._lock:
            stored = self._objects.get(key)
        return Result.from_optional(stored, f"No object at {key}", ErrorCode.NOT_FOUND)

    def put(
        self,
        key: str,
        body: bytes,
        metadata: dict[str, str],
        if_match: str | None = None,
    ) -> Result[StoredObject]:
        with self._lock:
            current = self._objects.get(key)
            if if_match is not None and (current is None or current.etag != if_match):
                return Result.failure(
                    ErrorCode.PRECONDITION_FAILED,
                    f"Entity tag for {key} no longer matches {if_match}",
                )
            stored = StoredObject(
                key=key,
                body=bytes(body),
                etag=_new_etag(),
                uploaded_at=self._clock(),
                metadata=dict(metadata),
            )
            self._objects[key] = stored
        return Result.success(stored)

    def list(
        self,
        prefix: str,
        cursor: str | None = None,
        limit: int = 1000,
    ) -> Result[ObjectListing]:
        with self._lock:
            matching = sorted(
                k
                for k in self._objects
                if k.startswith(prefix) and (cursor is None or k > cursor)
            )
            page = [self._objects[k] for k in matching[:limit]]

        infos = tuple(ObjectInfo(o.key, o.size, o.uploaded_at) for o in page)
        next_cursor = page[-1].key if len(matching) > limit else None
        return Result.success(ObjectListing(objects=infos, cursor=next_cursor))

    def keys(self, prefix: str = "") -> list[str]:
        """Sorted keys under `prefix`, for inspection."""
        with self._lock:
            return sorted(k for k in self._objects if k.startswith(prefix))


_CREATE_TABLE = """
CREATE TABLE IF NOT EXISTS objects (
    key         TEXT PRIMARY KEY,
    body        BYTEA NOT NULL,
    metadata    JSONB NOT NULL DEFAULT '{}'::jsonb,
    etag        TEXT NOT NULL,
    uploaded_at TIMESTAMPTZ NOT NULL DEFAULT now()
)
"""

_COLUMNS = "key, body, metadata, etag, uploaded_at"

_SELECT = f"SELECT {_COLUMNS} FROM objects WHERE key = %s"

_UPSERT = f"""
INSERT INTO objects (key, body, metadata, etag, uploaded_at)
VALUES (%s, %s, %s, %s, now())
ON CONFLICT (key) DO UPDATE SET
    body = EXCLUDED.body,
    metadata = EXCLUDED.metadata,
    etag = EXCLUDED.etag,
    uploaded_at = EXCLUDED.uploaded_at
RETURNING {_COLUMNS}
"""

_CONDITIONAL_UPDATE = f"""
UPDATE objects
SET body = %s, metadata = %s, etag = %s, uploaded_at = now()
WHERE key = %s AND etag = %s
RETURNING {_COLUMNS}
"""

_LIST = """
SELECT key, octet_length(body), uploaded_at
FROM objects
WHERE starts_with(key, %s) AND key COLLATE "C" > %s
ORDER BY key COLLATE "C"
LIMIT %s
"""


def _row_to_object(row: tuple[Any, ...]) -> StoredObject:
    key, body, metadata, etag, uploaded_at = row
    return StoredObject(
        key=key,
        body=bytes(body),
        etag=etag,
        uploaded_at=uploaded_at,
        metadata={str(k): str(v) for k, v in (metadata or {}).items()},
    )


class PsycopgObjectStore:
    """
    Persist objects in a single PostgreSQL table.

    Implements the ObjectStore port. Conditional writes are a single
    `UPDATE ... WHERE etag = %s`, so the compare-and-swap is atomic in the
    database. All exceptions are caught at this adapter boundary via
    Result.from_computation() and surface as STORAGE_ERROR.
    """

    def __init__(self, dsn: str) -> None:
        self._dsn = dsn

    def ensure_schema(self) -> Result[str]:
        """Create the objects table if it does not exist yet."""
        return Result.from_computation(
            self._create_table,
            ErrorCode.STORAGE_ERROR,
            "Failed to create objects table",
        )

    def get(self, key: str) -> Result[StoredObject]:
        return Result.from_computation(
            lambda: self._fetch(_SELECT, (key,)),
            ErrorCode.STORAGE_ERROR,
            f"Failed to read {key}",
        ).flat_map(
            lambda rows: Result.from_optional(
                rows[0] if rows else None, f"No object at {key}", ErrorCode.NOT_FOUND
            )
        )

    def put(
        self,
        key: str,
        body: bytes,
        metadata: dict[str, str],
        if_match: str | None = None,
    ) -> Result[StoredObject]:
        etag = _new_etag()
        if if_match is None:
            query, params = _UPSERT, (key, body, Jsonb(metadata), etag)
        else:
            query, params = _CONDITIONAL_UPDATE, (body, Jsonb(metadata), etag, key, if_match)

        return Result.from_computation(
            lambda: self._fetch(query, params, write=True),
            ErrorCode.STORAGE_ERROR,
            f"Failed to write {key}",
        ).flat_map(
            lambda rows: Result.from_optional(
                rows[0] if rows else None,
                f"Entity tag for {key} no longer matches {if_match}",
                ErrorCode.PRECONDITION_FAILED,
            )
        )

    def list(
        self,
        prefix: str,
        cursor: str | None = None,
        limit: int = 1000,
    ) -> Result[ObjectListing]:
        return Result.from_computation(
            lambda: self._list_page(prefix, cursor, limit),
            ErrorCode.STORAGE_ERROR,
            f"Failed to list {prefix}",
        )

    def _create_table(self) -> str:
        with psycopg.connect(self._dsn) as conn:
            conn.execute(_CREATE_TABLE)
        log.info("object_store.schema_ready", table="objects")
        return "objects"

    def _fetch(
        self,
        query: str,
        params: tuple[Any, ...],
        write: bool = False,
    ) -> list[StoredObject]:
        """Run one statement returning object rows; commits when `write`."""
        with psycopg.connect(self._dsn) as conn, conn.cursor() as cur:
            cur.execute(query, params)
            rows = [_row_to_object(row) for row in cur.fetchall()]
            if write:
                conn.commit()
            return rows

    def _list_page(self, prefix: str, cursor: str | None, limit: int) -> ObjectListing:
        # one extra row tells us whether another page exists
        with psycopg.connect(self._dsn) as conn, conn.cursor() as cur:
            cur.execute(_LIST, (prefix, cursor or "", limit + 1))
            rows = cur.fetchall()

        page = rows[:limit]
        infos = tuple(ObjectInfo(key, size, uploaded_at) for key, size, uploaded_at in page)
        next_cursor = page[-1][0] if len(rows) > limit else None
        return ObjectListing(objects=infos, cursor=next_cursor)
