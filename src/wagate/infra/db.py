"""psycopg2 connections for the Postgres token store and quota backends.

Every call opens its own short-lived connection; the gateway touches the
database only on register, authentication, teardown and send checks.
"""

import os
from contextlib import contextmanager
from typing import Iterator

import psycopg2
from psycopg2.extensions import connection as PgConnection, cursor as PgCursor


def _dsn_from_parts() -> str | None:
    """Compose a libpq DSN from DB_HOST/DB_PORT/DB_USERNAME/DB_DATABASE."""
    host = os.environ.get("DB_HOST")
    if not host:
        return None
    parts = {
        "host": host,
        "port": os.environ.get("DB_PORT", "5432"),
        "user": os.environ.get("DB_USERNAME", "postgres"),
        "dbname": os.environ.get("DB_DATABASE", "wagate"),
    }
    return " ".join(f"{key}={value}" for key, value in parts.items())


def _dsn_has_password(dsn: str) -> bool:
    if "://" in dsn:
        netloc = dsn.split("://", 1)[1].split("/", 1)[0]
        userinfo = netloc.rsplit("@", 1)[0] if "@" in netloc else ""
        return ":" in userinfo
    return any(token.startswith("password=") for token in dsn.split())


def get_conn() -> PgConnection:
    """Open a connection.

    DATABASE_URL wins; otherwise a DSN is composed from DB_* variables.
    DB_PASSWORD is passed separately when the DSN carries no password.

    Raises:
        RuntimeError: If neither DATABASE_URL nor DB_HOST is set.
        psycopg2.Error: On connection failure.
    """
    dsn = os.environ.get("DATABASE_URL") or _dsn_from_parts()
    if not dsn:
        raise RuntimeError("DATABASE_URL environment variable not set")

    password = os.environ.get("DB_PASSWORD")
    if password and not _dsn_has_password(dsn):
        return psycopg2.connect(dsn, password=password)
    return psycopg2.connect(dsn)


@contextmanager
def txn(conn: PgConnection | None = None) -> Iterator[PgCursor]:
    """Yield a cursor inside one transaction: commit on success, rollback on error.

    A connection opened here is closed on exit; a passed-in one is left open.

        with txn() as cur:
            delete_registration(cur, uid=uid)
    """
    owns_conn = conn is None
    if owns_conn:
        conn = get_conn()

    try:
        with conn.cursor() as cur:
            yield cur
        conn.commit()
    except Exception:
        conn.rollback()
        raise
    finally:
        if owns_conn:
            conn.close()
