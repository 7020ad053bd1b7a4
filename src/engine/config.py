"""Engine policy configuration.

Every numeric policy the engines apply lives here: the two-digit year
pivot, regex time budget, lookup-miss handling, authenticity weights and
verdict thresholds, and pattern complexity thresholds. Defaults are tuned
for resale identification and can be overridden per module or deployment.

Deterministic -- no I/O.
"""

from __future__ import annotations

from pydantic import Field

from src.config.settings import Settings, get_settings
from src.models.common import (
    Confidence,
    ExpertiseBase,
    LookupMissPolicy,
    MarkerImportance,
)


class EngineConfig(ExpertiseBase, frozen=True):
    """Configuration shared by the decoder, value driver and authenticity engines."""

    # --- Regex execution ---
    regex_timeout_ms: int = Field(default=50, gt=0)

    # --- Decoder ---
    parse_year_pivot: int = Field(default=50, ge=0, le=99)
    lookup_miss_policy: LookupMissPolicy = LookupMissPolicy.DEGRADE
    lookup_miss_confidence: Confidence = 0.5

    # --- Value drivers ---
    value_driver_match_confidence: Confidence = 0.85
    max_combined_multiplier: float | None = Field(default=None, gt=0.0)

    # --- Authenticity ---
    importance_weights: dict[MarkerImportance, float] = Field(
        default_factory=lambda: {
            MarkerImportance.CRITICAL: 3.0,
            MarkerImportance.IMPORTANT: 2.0,
            MarkerImportance.HELPFUL: 1.0,
        },
    )
    identifier_match_confidence: Confidence = 0.85
    text_match_confidence: Confidence = 0.7
    pattern_not_found_confidence: Confidence = 0.6
    likely_authentic_threshold: Confidence = 0.8
    uncertain_threshold: Confidence = 0.5
    critical_failure_cap: Confidence = 0.3
    important_failures_for_uncertain: int = Field(default=2, ge=1)

    # --- Pattern validator ---
    medium_complexity_limits: tuple[int, int, int] = (2, 2, 3)
    high_complexity_limits: tuple[int, int, int] = (5, 5, 10)

    @property
    def regex_timeout_seconds(self) -> float:
        return self.regex_timeout_ms / 1000.0

    @classmethod
    def from_settings(cls, settings: Settings | None = None) -> EngineConfig:
        """Build engine config from environment settings."""
        settings = settings or get_settings()
        return cls(
            regex_timeout_ms=settings.REGEX_TIMEOUT_MS,
            parse_year_pivot=settings.PARSE_YEAR_PIVOT,
            lookup_miss_policy=settings.LOOKUP_MISS_POLICY,
        )


DEFAULT_ENGINE_CONFIG = EngineConfig()
