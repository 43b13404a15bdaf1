"""Session registration repository - uid to token association.

Uses raw SQL with psycopg2 (no ORM).
"""

from datetime import datetime
from typing import Any

from psycopg2.extensions import cursor as PgCursor


def get_registration(cur: PgCursor, *, uid: str) -> dict[str, Any] | None:
    """Load the registration row for a uid.

    Returns:
        Dict with uid, token, authenticated, updated_at or None.
    """
    cur.execute(
        """
        SELECT uid, token, authenticated, updated_at
        FROM gateway_sessions
        WHERE uid = %s
        """,
        (uid,),
    )
    row = cur.fetchone()
    if row is None:
        return None
    return {
        "uid": row[0],
        "token": row[1],
        "authenticated": row[2],
        "updated_at": row[3],
    }


def upsert_registration(
    cur: PgCursor,
    *,
    uid: str,
    token: str,
    authenticated: bool,
    updated_at: datetime,
) -> None:
    """Insert or replace the registration of a uid."""
    cur.execute(
        """
        INSERT INTO gateway_sessions (uid, token, authenticated, updated_at)
        VALUES (%s, %s, %s, %s)
        ON CONFLICT (uid) DO UPDATE
        SET token = EXCLUDED.token,
            authenticated = EXCLUDED.authenticated,
            updated_at = EXCLUDED.updated_at
        """,
        (uid, token, authenticated, updated_at),
    )


def delete_registration(cur: PgCursor, *, uid: str) -> bool:
    """Delete the registration of a uid.

    Returns:
        True if a row was deleted.
    """
    cur.execute("DELETE FROM gateway_sessions WHERE uid = %s", (uid,))
    return cur.rowcount > 0
