"""
Database connection for Welldash.
Uses DSN from env WELLDASH_DSN (see config.py). Every connection returns dict rows.
The read path never writes, so connections are used without explicit transactions.
"""
import logging
from contextlib import contextmanager
from typing import Generator

import psycopg
from psycopg.rows import dict_row

from .config import settings

logger = logging.getLogger(__name__)

DEFAULT_DSN = settings.dsn


@contextmanager
def get_conn(dsn: str = DEFAULT_DSN) -> Generator[psycopg.Connection, None, None]:
    """Context manager for a single Postgres connection. Caller closes via context."""
    conn = psycopg.connect(dsn, row_factory=dict_row, autocommit=True)
    try:
        yield conn
    finally:
        conn.close()


def ping(dsn: str = DEFAULT_DSN) -> bool:
    """True when the store answers a trivial query."""
    try:
        with get_conn(dsn) as conn:
            row = conn.execute("SELECT 1 AS ok").fetchone()
            return bool(row and row.get("ok") == 1)
    except psycopg.Error as e:
        logger.error(f"Database ping failed: {e}")
        return False
