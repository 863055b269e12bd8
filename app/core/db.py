"""Database helpers for psycopg connections with pgvector support."""

from __future__ import annotations

import logging
from contextlib import contextmanager
from functools import partial
from typing import Callable, Iterator

import psycopg
from pgvector.psycopg import register_vector
from psycopg.rows import dict_row

from app.config import get_settings

logger = logging.getLogger(__name__)

ConnectionFactory = Callable[[], psycopg.Connection]


def get_conn(database_url: str | None = None, *, autocommit: bool = True) -> psycopg.Connection:
    """Open a connection with the pgvector adapter registered.

    Connections default to autocommit; repositories issue one statement per
    call and rely on the per-conversation lock for ordering.
    """

    url = database_url or get_settings().database_url
    if not url:
        raise RuntimeError("DATABASE_URL is not configured.")
    conn = psycopg.connect(url, autocommit=autocommit)
    try:
        register_vector(conn)
    except Exception:
        logger.exception("Failed to register pgvector adapter; is the extension installed?")
        conn.close()
        raise
    return conn


def connection_factory(database_url: str | None = None) -> ConnectionFactory:
    """Return a callable opening a fresh connection for each unit of work."""

    return partial(get_conn, database_url)


@contextmanager
def dict_cursor(connect: ConnectionFactory) -> Iterator[psycopg.Cursor]:
    """Yield a ``dict_row`` cursor on a new connection, closing both on exit.

    A dropped server session only fails the call in flight; the next call
    reconnects.
    """

    with connect() as conn, conn.cursor(row_factory=dict_row) as cur:
        yield cur


__all__ = ["ConnectionFactory", "connection_factory", "dict_cursor", "get_conn"]
