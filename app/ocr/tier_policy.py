from dataclasses import dataclass
from fnmatch import fnmatchcase

from app.ocr.models import ProviderType

DEFAULT_TIER = "free"


def normalize_tier(tier: str | None) -> str:
    """Lowercase and trim a tier name; None or blank means the free tier."""
    if tier is None or not tier.strip():
        return DEFAULT_TIER
    return tier.strip().lower()


@dataclass(frozen=True)
class TierRule:
    pattern: str
    provider_type: ProviderType


class TierPolicy:
    """Ordered tier-pattern -> provider table; the first matching rule wins."""

    def __init__(self, rules: list[TierRule], default_provider: ProviderType) -> None:
        self._rules = list(rules)
        self._default_provider = default_provider

    @classmethod
    def from_string(cls, spec: str, default_provider: ProviderType) -> "TierPolicy":
        """Parse a comma-separated ``pattern:provider-code`` list.

        Example: ``"free:tesseract,trial:tesseract,*:openai-vision"``.

        Raises:
            ValueError: on a malformed entry or an unknown provider code.
        """
        rules = []
        for entry in spec.split(","):
            entry = entry.strip()
            if not entry:
                continue
            pattern, sep, code = entry.partition(":")
            if not sep or not pattern.strip() or not code.strip():
                raise ValueError(f"Invalid tier policy entry '{entry}', expected 'pattern:provider'")
            rules.append(TierRule(pattern.strip().lower(), ProviderType.from_code(code)))
        return cls(rules, default_provider)

    @property
    def rules(self) -> list[TierRule]:
        return list(self._rules)

    def provider_for(self, tier: str | None) -> ProviderType:
        normalized = normalize_tier(tier)
        for rule in self._rules:
            if fnmatchcase(normalized, rule.pattern):
                return rule.provider_type
        return self._default_provider
