import functools
import re
import threading
import time
from collections import Counter, defaultdict
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any, TypeVar

from app.logging.logger import Log
from app.ocr.models import ExtractionResult, ProviderType

F = TypeVar("F", bound=Callable[..., Any])

METRIC_PREFIX = "ocr"


def _never_raise(func: F) -> F:
    """Metrics are fire-and-forget: log and swallow any recording failure."""

    @functools.wraps(func)
    def wrapper(*args: Any, **kwargs: Any) -> Any:
        try:
            return func(*args, **kwargs)
        except Exception as exc:
            Log.warning(f"Failed to record metric {func.__name__}: {exc}")
            return None

    return wrapper  # type: ignore[return-value]


@dataclass(frozen=True)
class TimerSample:
    started_at: float


def sanitize_error_type(message: str | None) -> str:
    """Turn an error message into a bounded, tag-safe label."""
    if not message:
        return "unknown"
    return re.sub(r"[^a-z0-9_]", "_", message.lower())[:50]


class OcrMetrics:
    """In-process counters and duration samples for OCR dispatch, keyed by tag tuples."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._counters: Counter[tuple[str, tuple[tuple[str, str], ...]]] = Counter()
        self._durations: dict[str, list[int]] = defaultdict(list)
        self._confidences: dict[str, list[float]] = defaultdict(list)
        self._characters: dict[str, list[int]] = defaultdict(list)

    def _increment(self, name: str, **tags: str) -> None:
        key = (f"{METRIC_PREFIX}.{name}", tuple(sorted(tags.items())))
        with self._lock:
            self._counters[key] += 1

    @_never_raise
    def record_request_start(self, provider_type: ProviderType) -> None:
        self._increment("requests.total", provider=provider_type.code)

    @_never_raise
    def record_success(self, result: ExtractionResult) -> None:
        code = result.provider_type.code
        self._increment("requests.success", provider=code)
        with self._lock:
            self._characters[code].append(result.character_count)
            if result.confidence is not None:
                self._confidences[code].append(result.confidence)

    @_never_raise
    def record_error(
        self, provider_type: ProviderType, processing_time_ms: int, message: str | None
    ) -> None:
        self._increment("requests.errors", provider=provider_type.code)
        self._increment(
            "errors.by.type",
            provider=provider_type.code,
            error_type=sanitize_error_type(message),
        )
        Log.debug(
            f"OCR error on {provider_type.code} after {processing_time_ms}ms: {message}"
        )

    @_never_raise
    def record_fallback(self, from_type: ProviderType, to_type: ProviderType) -> None:
        self._increment("fallbacks.total", primary=from_type.code, fallback=to_type.code)

    @_never_raise
    def record_quota_usage(self, user_id: str | None, tier: str, provider_type: ProviderType) -> None:
        _ = user_id
        self._increment("quota.usage", tier=tier, provider=provider_type.code)

    @_never_raise
    def record_quota_exceeded(self, user_id: str | None, tier: str) -> None:
        _ = user_id
        self._increment("quota.exceeded", tier=tier)

    def start_timer(self) -> TimerSample:
        return TimerSample(started_at=time.perf_counter())

    @_never_raise
    def stop_timer(self, sample: TimerSample, provider_type: ProviderType) -> int:
        elapsed_ms = int((time.perf_counter() - sample.started_at) * 1000)
        with self._lock:
            self._durations[provider_type.code].append(elapsed_ms)
        return elapsed_ms

    def count(self, name: str, **tags: str) -> int:
        """Return a counter value; ``name`` is given without the ``ocr.`` prefix."""
        key = (f"{METRIC_PREFIX}.{name}", tuple(sorted(tags.items())))
        with self._lock:
            return self._counters.get(key, 0)

    def durations(self, provider_type: ProviderType) -> list[int]:
        with self._lock:
            return list(self._durations.get(provider_type.code, []))

    def snapshot(self) -> dict[str, object]:
        """Return a copy of every counter and sample list, for reporting."""
        with self._lock:
            counters = {
                name + "".join(f",{k}={v}" for k, v in tags): value
                for (name, tags), value in self._counters.items()
            }
            return {
                "counters": counters,
                "durations_ms": {k: list(v) for k, v in self._durations.items()},
                "confidence": {k: list(v) for k, v in self._confidences.items()},
                "characters": {k: list(v) for k, v in self._characters.items()},
            }
