"""Database helpers for the sync worker."""

import logging
from contextlib import contextmanager
from typing import Optional

import psycopg2
from psycopg2 import pool

from placesync.core.config import get_settings

logger = logging.getLogger(__name__)

_connection_pool: Optional[pool.SimpleConnectionPool] = None


class StorageError(RuntimeError):
    """Raised when a read or upsert against the canonical store fails."""


class StoreUnavailable(StorageError):
    """Raised when the canonical store cannot be reached at all."""


SCHEMA = """
CREATE TABLE IF NOT EXISTS places (
    id BIGSERIAL PRIMARY KEY,
    name TEXT NOT NULL,
    type TEXT NOT NULL DEFAULT 'other',
    external_id TEXT UNIQUE,
    street TEXT,
    city TEXT,
    region TEXT,
    lat DOUBLE PRECISION,
    lng DOUBLE PRECISION,
    external_rating DOUBLE PRECISION,
    review_count INTEGER NOT NULL DEFAULT 0,
    app_rating DOUBLE PRECISION NOT NULL DEFAULT 0,
    images JSONB NOT NULL DEFAULT '[]'::jsonb,
    status TEXT NOT NULL DEFAULT 'pending',
    source TEXT NOT NULL DEFAULT 'manual',
    phone TEXT,
    website TEXT,
    description TEXT,
    price_range TEXT,
    cuisine JSONB NOT NULL DEFAULT '[]'::jsonb,
    is_verified BOOLEAN NOT NULL DEFAULT FALSE,
    last_sync_time TIMESTAMPTZ,
    created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
);
CREATE INDEX IF NOT EXISTS places_name_region_idx ON places (name, region);

CREATE TABLE IF NOT EXISTS place_tiles (
    location_key TEXT PRIMARY KEY,
    radius_meters INTEGER NOT NULL,
    search_terms TEXT NOT NULL,
    place_external_ids JSONB NOT NULL DEFAULT '[]'::jsonb,
    last_searched_at TIMESTAMPTZ NOT NULL,
    refresh_interval_days INTEGER NOT NULL DEFAULT 30
);

CREATE TABLE IF NOT EXISTS place_raw (
    external_id TEXT PRIMARY KEY,
    raw_payload JSONB NOT NULL,
    found_at_tile_key TEXT NOT NULL,
    found_at TIMESTAMPTZ NOT NULL
);

CREATE TABLE IF NOT EXISTS reviews (
    id BIGSERIAL PRIMARY KEY,
    place_id BIGINT REFERENCES places (id)
);
CREATE TABLE IF NOT EXISTS hangouts (
    id BIGSERIAL PRIMARY KEY,
    place_id BIGINT REFERENCES places (id)
);
CREATE TABLE IF NOT EXISTS advertisements (
    id BIGSERIAL PRIMARY KEY,
    place_id BIGINT REFERENCES places (id)
);
"""


def init_pool(minconn: int = 1, maxconn: int = 5) -> pool.SimpleConnectionPool:
    """Initialise and return the shared connection pool."""
    global _connection_pool
    if _connection_pool is None:
        settings = get_settings()
        if not settings.database_url:
            raise StoreUnavailable("DATABASE_URL is required for database connections")
        try:
            _connection_pool = pool.SimpleConnectionPool(
                minconn,
                maxconn,
                dsn=settings.database_url,
                connect_timeout=10,
            )
        except psycopg2.Error as exc:
            raise StoreUnavailable(f"Could not connect to the canonical store: {exc}") from exc
        logger.info("Database connection pool initialised")
    return _connection_pool


@contextmanager
def get_connection():
    """Context manager yielding a pooled connection.

    The transaction is committed when the block exits cleanly and rolled back
    otherwise; driver errors surface as StorageError.
    """
    pg_pool = init_pool()
    conn = pg_pool.getconn()
    try:
        yield conn
        conn.commit()
    except psycopg2.Error as exc:
        conn.rollback()
        raise StorageError(str(exc)) from exc
    except Exception:
        conn.rollback()
        raise
    finally:
        pg_pool.putconn(conn)


def ping() -> None:
    """Fail fast with StoreUnavailable when the store cannot answer a trivial query."""
    try:
        with get_connection() as conn:
            with conn.cursor() as cur:
                cur.execute("SELECT 1")
    except StorageError as exc:
        if isinstance(exc, StoreUnavailable):
            raise
        raise StoreUnavailable(str(exc)) from exc


def ensure_schema() -> None:
    with get_connection() as conn:
        with conn.cursor() as cur:
            cur.execute(SCHEMA)
    logger.info("Database schema ensured")
