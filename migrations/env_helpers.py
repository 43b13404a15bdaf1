"""Database URL resolution for Alembic.

Kept apart from env.py so it can be tested without an alembic context.
"""

from __future__ import annotations

import os
import shlex
from urllib.parse import quote_plus, urlsplit, urlunsplit

_DRIVER = "postgresql+psycopg2"


def _build_url(*, user: str, password: str, host: str, port: str, dbname: str) -> str:
    auth = quote_plus(user)
    if password:
        auth += ":" + quote_plus(password)
    return f"{_DRIVER}://{auth}@{host}:{port}/{quote_plus(dbname)}"


def libpq_dsn_to_url(dsn: str) -> str:
    """Convert `host=... user=...` into a SQLAlchemy URL. Quoted values are honoured."""
    tokens = dict(part.split("=", 1) for part in shlex.split(dsn) if "=" in part)
    return _build_url(
        user=tokens.get("user", ""),
        password=tokens.get("password") or os.environ.get("DB_PASSWORD", ""),
        host=tokens.get("host", "localhost"),
        port=tokens.get("port", "5432"),
        dbname=tokens.get("dbname", ""),
    )


def _normalize_url(url: str) -> str:
    scheme, rest = url.split("://", 1)
    if scheme in ("postgres", "postgresql"):
        scheme = _DRIVER
    parts = urlsplit(f"{scheme}://{rest}")

    password = os.environ.get("DB_PASSWORD", "")
    if password and parts.username and not parts.password:
        netloc = f"{quote_plus(parts.username)}:{quote_plus(password)}@{parts.hostname}"
        if parts.port:
            netloc += f":{parts.port}"
        parts = parts._replace(netloc=netloc)
    return urlunsplit(parts)


def database_url() -> str:
    """URL for migrations: DATABASE_URL (URL or libpq DSN) or DB_* parts.

    Raises:
        RuntimeError: If no database is configured.
    """
    url = os.environ.get("DATABASE_URL")
    if url:
        return _normalize_url(url) if "://" in url else libpq_dsn_to_url(url)

    host = os.environ.get("DB_HOST")
    if not host:
        raise RuntimeError("DATABASE_URL or DB_HOST is required to run migrations")
    return _build_url(
        user=os.environ.get("DB_USERNAME", "postgres"),
        password=os.environ.get("DB_PASSWORD", ""),
        host=host,
        port=os.environ.get("DB_PORT", "5432"),
        dbname=os.environ.get("DB_DATABASE", "wagate"),
    )
