from app.database.connection import get_connection


class EntitlementRepository:
    """Reads a user's subscription plan from the billing tables."""

    def tier_for_user(self, user_id: str) -> str | None:
        """Return the lowercase plan name of the user's subscription, or None."""
        with get_connection() as conn:
            with conn.cursor() as cur:
                cur.execute(
                    """
                    SELECT sp.name
                    FROM user_subscriptions us
                    JOIN subscription_plans sp ON sp.id = us.plan_id
                    WHERE us.user_id = %s
                    ORDER BY us.updated_at DESC
                    LIMIT 1
                    """,
                    (user_id,),
                )
                row = cur.fetchone()

        if row is None or row[0] is None:
            return None
        return str(row[0]).strip().lower() or None
