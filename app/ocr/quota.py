"""Per-user daily OCR allowance, keyed by entitlement tier.

Check and consume are separate calls, so concurrent requests for the same
user can both pass the check and overshoot the ceiling by at most the number
of in-flight calls minus one. The counter itself is incremented atomically.
"""

from collections.abc import Callable
from datetime import UTC, date, datetime

from app.config.settings import Settings
from app.database.repositories.quota_repository import QuotaRepository
from app.logging.logger import Log
from app.ocr.metrics import OcrMetrics
from app.ocr.models import ProviderType
from app.ocr.tier_policy import normalize_tier

UNLIMITED = -1


def _utc_today() -> date:
    return datetime.now(UTC).date()


class QuotaGate:
    """Tracks and enforces OCR usage per user for the current UTC day."""

    def __init__(
        self,
        repository: QuotaRepository,
        settings: Settings,
        metrics: OcrMetrics,
        clock: Callable[[], date] = _utc_today,
    ) -> None:
        self._repository = repository
        self._settings = settings
        self._metrics = metrics
        self._clock = clock

    def limit_for_tier(self, tier: str | None) -> int:
        limits = {
            "free": self._settings.ocr_quota_free_daily_limit,
            "trial": self._settings.ocr_quota_trial_daily_limit,
            "basic": self._settings.ocr_quota_basic_daily_limit,
            "premium": self._settings.ocr_quota_premium_daily_limit,
            "enterprise": self._settings.ocr_quota_enterprise_daily_limit,
        }
        return limits.get(normalize_tier(tier), self._settings.ocr_quota_free_daily_limit)

    def has_remaining_quota(self, user_id: str | None, tier: str | None) -> bool:
        if not self._settings.ocr_quota_enabled:
            return True
        limit = self.limit_for_tier(tier)
        if limit < 0:
            return True
        return self.current_usage(user_id) < limit

    def consume_quota(
        self, user_id: str | None, tier: str | None, provider_type: ProviderType
    ) -> bool:
        """Record one successful OCR operation.

        Returns False when this increment pushed usage past the tier ceiling.
        """
        if not self._settings.ocr_quota_enabled:
            return True
        normalized = normalize_tier(tier)
        usage = self._repository.increment(self._key(user_id), self._clock())
        if self._settings.ocr_quota_track_usage:
            self._metrics.record_quota_usage(user_id, normalized, provider_type)

        limit = self.limit_for_tier(normalized)
        if limit != UNLIMITED and usage > limit:
            Log.warning(
                f"User {user_id} exceeded OCR quota for tier {normalized}. "
                f"Usage: {usage}, Limit: {limit}"
            )
            self._metrics.record_quota_exceeded(user_id, normalized)
            return False
        return True

    def remaining_quota(self, user_id: str | None, tier: str | None) -> int:
        """Return units left today, or -1 when the tier is unlimited."""
        limit = self.limit_for_tier(tier)
        if limit < 0:
            return UNLIMITED
        return max(0, limit - self.current_usage(user_id))

    def current_usage(self, user_id: str | None) -> int:
        return self._repository.current_usage(self._key(user_id), self._clock())

    def reset_quota(self, user_id: str | None) -> None:
        self._repository.reset(self._key(user_id), self._clock())
        Log.info(f"Reset OCR quota for user: {user_id}")

    @staticmethod
    def _key(user_id: str | None) -> str:
        return user_id or "anonymous"
