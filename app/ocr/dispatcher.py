"""OCR dispatch: tier-based provider selection, single-hop fallback, metering."""

from app.config.settings import Settings
from app.logging.logger import Log
from app.ocr.base import BaseOcrProvider
from app.ocr.exceptions import InvalidRequestError, OcrProcessingError, QuotaExceededError
from app.ocr.factory import ProviderRegistry
from app.ocr.metrics import OcrMetrics
from app.ocr.models import ExtractionRequest, ExtractionResult, ProviderType
from app.ocr.quota import QuotaGate
from app.ocr.tier_policy import TierPolicy

FALLBACK_FROM_KEY = "fallbackFrom"


class OcrDispatchService:
    """Runs an extraction request against the right provider for the caller's tier.

    Quota is checked before any provider is touched and consumed only when the
    result that is finally returned succeeded. A failed primary attempt, either
    a failed result or a retryable OcrProcessingError, gets at most one
    fallback attempt on another provider.
    """

    def __init__(
        self,
        registry: ProviderRegistry,
        quota: QuotaGate,
        metrics: OcrMetrics,
        tier_policy: TierPolicy,
        settings: Settings,
    ) -> None:
        self._registry = registry
        self._quota = quota
        self._metrics = metrics
        self._tier_policy = tier_policy
        self._settings = settings

    def process_ocr(
        self, request: ExtractionRequest, user_id: str | None, tier: str | None
    ) -> ExtractionResult:
        """Extract text using the tier-mapped provider with fallback.

        Raises:
            InvalidRequestError: if the request has no image source.
            QuotaExceededError: if the user's allowance is exhausted.
            ProviderUnavailableError: if no provider can be selected.
            OcrProcessingError: if the primary failed with an exception and no
                fallback path exists, or the fallback itself raised.
        """
        self._validate(request)
        self._check_quota(user_id, tier)

        primary = self._select_provider(request, tier)
        Log.info(
            f"Processing OCR for document {request.document_id} using provider: "
            f"{primary.provider_type}"
        )

        try:
            result = self._invoke(primary, request)
        except OcrProcessingError as exc:
            return self._handle_exception(request, primary.provider_type, exc, user_id, tier)

        if result.success:
            self._quota.consume_quota(user_id, tier, primary.provider_type)
            return result
        return self._handle_failed_result(request, primary.provider_type, result, user_id, tier)

    def process_ocr_with_provider(
        self,
        request: ExtractionRequest,
        provider_type: ProviderType,
        user_id: str | None,
        tier: str | None,
    ) -> ExtractionResult:
        """Single-shot extraction on an explicit provider: no tier mapping, no fallback."""
        self._validate(request)
        self._check_quota(user_id, tier)

        provider = self._registry.get(provider_type)
        result = self._invoke(provider, request)
        if result.success:
            self._quota.consume_quota(user_id, tier, provider_type)
        return result

    def remaining_quota(self, user_id: str | None, tier: str | None) -> int:
        return self._quota.remaining_quota(user_id, tier)

    def is_provider_available(self, provider_type: ProviderType) -> bool:
        return self._registry.is_provider_available(provider_type)

    @staticmethod
    def _validate(request: ExtractionRequest) -> None:
        if not request.has_source():
            raise InvalidRequestError(
                f"Extraction request for document {request.document_id} must carry "
                "exactly one image source (URL or bytes)"
            )

    def _check_quota(self, user_id: str | None, tier: str | None) -> None:
        if not self._quota.has_remaining_quota(user_id, tier):
            Log.warning(f"OCR quota exhausted for user {user_id} (tier: {tier})")
            raise QuotaExceededError(user_id, tier)

    def _select_provider(self, request: ExtractionRequest, tier: str | None) -> BaseOcrProvider:
        if request.preferred_provider is not None:
            return self._registry.resolve_for_request(request)

        mapped_type = self._tier_policy.provider_for(tier)
        provider = self._registry.get_optional(mapped_type)
        if provider is not None:
            return provider
        Log.warning(
            f"Provider {mapped_type} for tier '{tier}' is unavailable, "
            f"using default provider {self._registry.default_type}"
        )
        return self._registry.get_default_with_fallback()

    def _invoke(self, provider: BaseOcrProvider, request: ExtractionRequest) -> ExtractionResult:
        """Call one provider inside its own timer span and record the outcome."""
        provider_type = provider.provider_type
        self._metrics.record_request_start(provider_type)
        sample = self._metrics.start_timer()
        try:
            result = provider.extract_text(request)
        except OcrProcessingError as exc:
            elapsed_ms = self._metrics.stop_timer(sample, provider_type) or 0
            self._metrics.record_error(provider_type, elapsed_ms, str(exc))
            raise
        except Exception:
            self._metrics.stop_timer(sample, provider_type)
            raise
        self._metrics.stop_timer(sample, provider_type)

        if result.success:
            self._metrics.record_success(result)
        else:
            self._metrics.record_error(
                provider_type, result.processing_time_ms, result.error_message
            )
        return result

    def _fallback_allowed(self, request: ExtractionRequest) -> bool:
        return request.fallback_allowed and self._settings.ocr_fallback_enabled

    def _fallback_provider(self, failed_type: ProviderType) -> BaseOcrProvider | None:
        fallback_type = self._registry.fallback_type
        if fallback_type == failed_type:
            fallback_type = failed_type.other()
        return self._registry.get_optional(fallback_type)

    def _handle_failed_result(
        self,
        request: ExtractionRequest,
        failed_type: ProviderType,
        failed_result: ExtractionResult,
        user_id: str | None,
        tier: str | None,
    ) -> ExtractionResult:
        if not self._fallback_allowed(request):
            return failed_result

        fallback = self._fallback_provider(failed_type)
        if fallback is None:
            Log.warning(f"No fallback provider available for {failed_type}")
            return failed_result
        return self._execute_fallback(request, failed_type, fallback, user_id, tier)

    def _handle_exception(
        self,
        request: ExtractionRequest,
        failed_type: ProviderType,
        exc: OcrProcessingError,
        user_id: str | None,
        tier: str | None,
    ) -> ExtractionResult:
        if not exc.retryable or not self._fallback_allowed(request):
            raise exc

        fallback = self._fallback_provider(failed_type)
        if fallback is None:
            Log.warning(f"No fallback provider available for {failed_type}, rethrowing: {exc}")
            raise exc
        return self._execute_fallback(request, failed_type, fallback, user_id, tier)

    def _execute_fallback(
        self,
        request: ExtractionRequest,
        failed_type: ProviderType,
        fallback: BaseOcrProvider,
        user_id: str | None,
        tier: str | None,
    ) -> ExtractionResult:
        fallback_type = fallback.provider_type
        Log.info(
            f"Falling back from {failed_type} to {fallback_type} "
            f"for document {request.document_id}"
        )
        self._metrics.record_fallback(failed_type, fallback_type)

        result = self._invoke(fallback, request)
        result.with_metadata(FALLBACK_FROM_KEY, failed_type.code)
        if result.success:
            self._quota.consume_quota(user_id, tier, fallback_type)
        return result
