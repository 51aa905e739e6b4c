"""Database helpers for the price monitor."""

import logging
import uuid
from contextlib import contextmanager
from typing import Iterable, List, Optional

import psycopg2
from psycopg2 import extras, pool

from pricemonitor.core.config import ConfigError
from pricemonitor.models import Row

logger = logging.getLogger(__name__)

extras.register_uuid()


class StorageError(RuntimeError):
    """Base class for failures talking to the database."""


class IdentityResolutionError(StorageError):
    """Raised when a station identity cannot be inserted or fetched."""


class FlushError(StorageError):
    """Raised when a bulk insert of sample rows fails; the batch is lost."""


SCHEMA = """
CREATE TABLE IF NOT EXISTS pricemonitor_stations (
    id UUID PRIMARY KEY,
    address TEXT NOT NULL,
    geo_location TEXT NOT NULL,
    brand TEXT NOT NULL,
    UNIQUE (address, geo_location, brand)
);

CREATE TABLE IF NOT EXISTS pricemonitor_samples (
    id UUID NOT NULL,
    fuel_name TEXT NOT NULL,
    price REAL NOT NULL,
    time TIMESTAMPTZ NOT NULL,
    station_id UUID NOT NULL REFERENCES pricemonitor_stations (id),
    PRIMARY KEY (id, fuel_name)
);
"""

# DO UPDATE (not DO NOTHING) so RETURNING yields the existing id on conflict.
_UPSERT_STATION = """
INSERT INTO pricemonitor_stations (
    id,
    address,
    geo_location,
    brand
) VALUES (
    %(id)s,
    %(address)s,
    %(geo_location)s,
    %(brand)s
)
ON CONFLICT (address, geo_location, brand) DO UPDATE SET
    brand = EXCLUDED.brand
RETURNING id;
"""

_INSERT_SAMPLES = """
INSERT INTO pricemonitor_samples (
    id,
    fuel_name,
    price,
    time,
    station_id
) VALUES %s
"""


def _row_values(rows: Iterable[Row]) -> List[tuple]:
    return [(row.sample_id, row.fuel_name, row.price, row.time, row.station_id) for row in rows]


def _rollback(conn) -> None:
    """Roll back unless the connection is already gone."""
    if conn.closed:
        return
    try:
        conn.rollback()
    except psycopg2.Error as exc:
        logger.warning("Rollback failed: %s", exc)


class PriceStore:
    """Storage adapter owning a thread-safe psycopg2 connection pool."""

    def __init__(self, dsn: str, minconn: int = 1, maxconn: int = 5, connect_timeout: int = 10) -> None:
        if not dsn:
            raise ConfigError("A database DSN is required for storage connections")
        self._dsn = dsn
        self._minconn = minconn
        self._maxconn = maxconn
        self._connect_timeout = connect_timeout
        self._pool: Optional[pool.ThreadedConnectionPool] = None

    def init_pool(self) -> pool.ThreadedConnectionPool:
        """Create the connection pool on first use and return it."""
        if self._pool is None:
            try:
                self._pool = pool.ThreadedConnectionPool(
                    self._minconn,
                    self._maxconn,
                    dsn=self._dsn,
                    connect_timeout=self._connect_timeout,
                )
            except psycopg2.Error as exc:
                raise ConfigError(f"could not connect to database: {exc}") from exc
            logger.info("Database connection pool initialised")
        return self._pool

    def close(self) -> None:
        if self._pool is not None:
            self._pool.closeall()
            self._pool = None

    @contextmanager
    def get_connection(self):
        """Context manager yielding a pooled connection."""
        pg_pool = self.init_pool()
        conn = pg_pool.getconn()
        try:
            yield conn
        finally:
            # Broken connections are discarded so the pool reconnects.
            pg_pool.putconn(conn, close=bool(conn.closed))

    def ping(self) -> None:
        """Verify the database is reachable; unreachable storage is a startup error."""
        try:
            with self.get_connection() as conn:
                with conn.cursor() as cur:
                    cur.execute("SELECT 1")
                _rollback(conn)
        except psycopg2.Error as exc:
            raise ConfigError(f"database is unreachable: {exc}") from exc

    def ensure_schema(self) -> None:
        """Create the station and sample tables if they do not exist yet."""
        try:
            with self.get_connection() as conn:
                with conn.cursor() as cur:
                    cur.execute(SCHEMA)
                conn.commit()
        except psycopg2.Error as exc:
            raise ConfigError(f"could not create database schema: {exc}") from exc
        logger.info("Database schema is up to date")

    def upsert_station(self, address: str, geo_location: str, brand: str) -> uuid.UUID:
        """Insert the station or fetch the existing one, returning its id.

        Safe under concurrent first inserts: the unique constraint on
        (address, geo_location, brand) makes the statement resolve to a
        single row.
        """
        params = {
            "id": uuid.uuid4(),
            "address": address,
            "geo_location": geo_location,
            "brand": brand,
        }
        try:
            with self.get_connection() as conn:
                try:
                    with conn.cursor() as cur:
                        cur.execute(_UPSERT_STATION, params)
                        (station_id,) = cur.fetchone()
                    conn.commit()
                except psycopg2.Error:
                    _rollback(conn)
                    raise
        except psycopg2.Error as exc:
            raise IdentityResolutionError(
                f"could not resolve station {brand!r} at {address!r}: {exc}"
            ) from exc
        logger.debug("Resolved station %s/%s to %s", brand, address, station_id)
        if isinstance(station_id, str):
            station_id = uuid.UUID(station_id)
        return station_id

    def create_samples(self, rows: List[Row]) -> None:
        """Bulk insert sample rows in one transaction (all-or-nothing)."""
        if not rows:
            return
        try:
            with self.get_connection() as conn:
                try:
                    with conn.cursor() as cur:
                        extras.execute_values(cur, _INSERT_SAMPLES, _row_values(rows))
                    conn.commit()
                except psycopg2.Error:
                    _rollback(conn)
                    raise
        except psycopg2.Error as exc:
            raise FlushError(f"could not insert {len(rows)} sample rows: {exc}") from exc
        logger.debug("Inserted %d sample rows", len(rows))
