"""License lookup for outbound sends.

Licensing rules live with whoever manages the licenses table; the gateway
only asks whether a uid currently holds an active license.
"""

from psycopg2.extensions import cursor as PgCursor


def has_active_license(cur: PgCursor, *, uid: str) -> bool:
    cur.execute(
        """
        SELECT 1
        FROM licenses
        WHERE uid = %s
          AND active
          AND (expires_at IS NULL OR expires_at > now())
        LIMIT 1
        """,
        (uid,),
    )
    return cur.fetchone() is not None
