"""
app/database.py — Key-addressed document collections on PostgreSQL via asyncpg.

Storage model:
  - One table, `documents`, keyed by (collection, key); the record body is
    JSONB.  Collections in use: donors, finances, inventory.
  - Records handed to callers are the JSON body plus their key as `id`.
  - read() returns records in insertion order.

Resilience:
  - Pool creation failure is logged but does NOT crash the app.
  - All callers go through get_pool(); the dashboard reports a fetch error
    when the database is unavailable.

Change notifications:
  - Every write issues pg_notify('documents_changed', <collection>) in the
    same transaction, so subscribers only hear about committed changes.
  - subscribe() holds one pooled connection, LISTENs on the channel and
    delivers a fresh snapshot of the collection on each change (and once
    immediately, like a realtime database "value" listener).
"""
import asyncio
import inspect
import json
import logging
import uuid
from typing import Any, Awaitable, Callable, Mapping

import asyncpg

from app.config import settings
from app.errors import RecordNotFoundError

logger = logging.getLogger(__name__)

_pool: asyncpg.Pool | None = None

NOTIFY_CHANNEL = "documents_changed"

Snapshot = list[dict]
SnapshotCallback = Callable[[Snapshot | None], Any]


# ---------------------------------------------------------------------------
# Pool lifecycle
# ---------------------------------------------------------------------------

async def _init_connection(conn: asyncpg.Connection) -> None:
    await conn.set_type_codec(
        "jsonb",
        encoder=json.dumps,
        decoder=json.loads,
        schema="pg_catalog",
    )


async def create_pool() -> None:
    """
    Create the asyncpg connection pool.
    On failure the error is logged and _pool stays None — reads and writes
    then fail with a readable error instead of crashing the app.
    """
    global _pool
    try:
        _pool = await asyncpg.create_pool(
            dsn=settings.database_url,
            min_size=settings.db_pool_min_size,
            max_size=settings.db_pool_max_size,
            command_timeout=settings.db_statement_timeout,
            timeout=settings.db_connection_timeout,
            init=_init_connection,
        )
        logger.info("PostgreSQL pool created successfully.")
    except Exception as exc:
        _pool = None
        logger.warning(
            "Could not connect to PostgreSQL — dashboard data will be unavailable. "
            "Reason: %s", exc
        )


async def close_pool() -> None:
    global _pool
    if _pool:
        await _pool.close()
        _pool = None
        logger.info("PostgreSQL pool closed.")


def is_db_available() -> bool:
    return _pool is not None


def get_pool() -> asyncpg.Pool:
    if _pool is None:
        raise RuntimeError(
            "Database is not connected. Check DATABASE_URL in .env and ensure "
            "PostgreSQL is reachable."
        )
    return _pool


_SQL_SCHEMA = """
CREATE TABLE IF NOT EXISTS documents (
    collection TEXT        NOT NULL,
    key        TEXT        NOT NULL,
    data       JSONB       NOT NULL DEFAULT '{}'::jsonb,
    created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
    PRIMARY KEY (collection, key)
);
"""


async def ensure_schema() -> None:
    async with get_pool().acquire() as conn:
        await conn.execute(_SQL_SCHEMA)
    logger.info("Document schema ready.")


# ---------------------------------------------------------------------------
# Reads
# ---------------------------------------------------------------------------

_SQL_READ = """
SELECT key, data
FROM documents
WHERE collection = $1
ORDER BY created_at ASC, key ASC;
"""


def _to_record(key: str, data: Mapping[str, Any]) -> dict:
    record = dict(data)
    record["id"] = key
    return record


def _strip_id(payload: Mapping[str, Any]) -> dict:
    return {k: v for k, v in payload.items() if k != "id"}


async def read(path: str) -> Snapshot:
    """Complete snapshot of one collection."""
    async with get_pool().acquire() as conn:
        rows = await conn.fetch(_SQL_READ, path)
    return [_to_record(r["key"], r["data"]) for r in rows]


# ---------------------------------------------------------------------------
# Writes
# ---------------------------------------------------------------------------

_SQL_INSERT = """
INSERT INTO documents (collection, key, data)
VALUES ($1, $2, $3::jsonb);
"""

# `||` is a shallow JSONB merge: keys in the partial record replace stored ones.
_SQL_UPDATE = """
UPDATE documents
SET data = data || $3::jsonb
WHERE collection = $1 AND key = $2
RETURNING key, data;
"""

_SQL_DELETE = """
DELETE FROM documents
WHERE collection = $1 AND key = $2
RETURNING key;
"""

_SQL_NOTIFY = "SELECT pg_notify($1, $2);"


async def add(path: str, record: Mapping[str, Any]) -> str:
    """Insert a new record under a generated key and return the key."""
    key = uuid.uuid4().hex
    async with get_pool().acquire() as conn:
        async with conn.transaction():
            await conn.execute(_SQL_INSERT, path, key, _strip_id(record))
            await conn.execute(_SQL_NOTIFY, NOTIFY_CHANNEL, path)
    return key


async def update(path: str, key: str, partial: Mapping[str, Any]) -> dict:
    """Merge `partial` into the stored record; returns the stored result."""
    async with get_pool().acquire() as conn:
        async with conn.transaction():
            row = await conn.fetchrow(_SQL_UPDATE, path, key, _strip_id(partial))
            if row is None:
                raise RecordNotFoundError(path, key)
            await conn.execute(_SQL_NOTIFY, NOTIFY_CHANNEL, path)
    return _to_record(row["key"], row["data"])


async def remove(path: str, key: str) -> None:
    async with get_pool().acquire() as conn:
        async with conn.transaction():
            deleted = await conn.fetchval(_SQL_DELETE, path, key)
            if deleted is None:
                raise RecordNotFoundError(path, key)
            await conn.execute(_SQL_NOTIFY, NOTIFY_CHANNEL, path)


# ---------------------------------------------------------------------------
# Subscriptions
# ---------------------------------------------------------------------------

# Pending notification deliveries; the event loop only keeps weak references.
_deliveries: set[asyncio.Task] = set()


def _delivery_done(task: asyncio.Task) -> None:
    _deliveries.discard(task)
    if not task.cancelled() and task.exception() is not None:
        logger.error("Change subscriber failed: %r", task.exception())


async def subscribe(
    path: str,
    callback: SnapshotCallback,
    snapshot: bool = True,
) -> Callable[[], Awaitable[None]]:
    """
    Call `callback(snapshot)` now and after every committed change to `path`.
    With snapshot=False the callback gets None on each change and nothing
    is read, for subscribers that only need to know something changed.
    Returns an async unsubscribe function that releases the connection.
    """
    pool = get_pool()
    conn = await pool.acquire()

    async def _deliver() -> None:
        data = None
        if snapshot:
            try:
                data = await read(path)
            except Exception as exc:
                logger.warning("Could not read '%s' for subscriber: %s", path, exc)
                return
        result = callback(data)
        if inspect.isawaitable(result):
            await result

    def _listener(connection, pid, channel, payload) -> None:
        if payload == path:
            task = asyncio.ensure_future(_deliver())
            _deliveries.add(task)
            task.add_done_callback(_delivery_done)

    await conn.add_listener(NOTIFY_CHANNEL, _listener)
    logger.info("Subscribed to changes on '%s'.", path)
    if snapshot:
        await _deliver()

    async def unsubscribe() -> None:
        try:
            await conn.remove_listener(NOTIFY_CHANNEL, _listener)
        finally:
            await pool.release(conn)
        logger.info("Unsubscribed from '%s'.", path)

    return unsubscribe
