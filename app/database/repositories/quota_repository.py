from datetime import date

from app.database.connection import get_connection


class QuotaRepository:
    """Database operations for the ocr_quota_usage table."""

    def increment(self, user_id: str, period: date) -> int:
        """Atomically add one unit of usage and return the new count."""
        with get_connection() as conn:
            with conn.cursor() as cur:
                cur.execute(
                    """
                    INSERT INTO ocr_quota_usage (user_id, period, used, updated_at)
                    VALUES (%s, %s, 1, NOW())
                    ON CONFLICT (user_id, period)
                    DO UPDATE SET used = ocr_quota_usage.used + 1, updated_at = NOW()
                    RETURNING used
                    """,
                    (user_id, period),
                )
                row = cur.fetchone()
            conn.commit()
        return int(row[0]) if row is not None else 0

    def current_usage(self, user_id: str, period: date) -> int:
        with get_connection() as conn:
            with conn.cursor() as cur:
                cur.execute(
                    "SELECT used FROM ocr_quota_usage WHERE user_id = %s AND period = %s",
                    (user_id, period),
                )
                row = cur.fetchone()
        return int(row[0]) if row is not None else 0

    def reset(self, user_id: str, period: date) -> None:
        with get_connection() as conn:
            conn.execute(
                "DELETE FROM ocr_quota_usage WHERE user_id = %s AND period = %s",
                (user_id, period),
            )
            conn.commit()
