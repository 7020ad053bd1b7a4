"""Structured engine outputs consumed by the admin test console.

Engines always return one of these; bad input data never raises.
"""

from typing import Any
from uuid import UUID

from pydantic import Field

from src.models.common import (
    AuthenticityAssessment,
    Confidence,
    ExpertiseBase,
    MarkerImportance,
    PatternComplexity,
)


class PatternValidationResult(ExpertiseBase):
    valid: bool
    warnings: list[str] = Field(default_factory=list)
    estimated_complexity: PatternComplexity


# ---------------------------------------------------------------------------
# Decoder
# ---------------------------------------------------------------------------


class LookupUsage(ExpertiseBase):
    """Which lookup entry enriched a decode."""

    table: str
    key: str
    values: dict[str, Any] = Field(default_factory=dict)


class DecodeResult(ExpertiseBase):
    success: bool
    decoded: dict[str, Any] | None = None
    confidence: Confidence | None = None
    lookup_used: LookupUsage | None = None
    errors: list[str] = Field(default_factory=list)
    decoder_id: UUID | None = None
    decoder_name: str | None = None


class DecoderTestCaseResult(ExpertiseBase):
    """Outcome of replaying one stored decoder test case."""

    input: str
    description: str = ""
    passed: bool
    expected_success: bool
    actual: DecodeResult
    mismatches: list[str] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# Value drivers
# ---------------------------------------------------------------------------


class ValueDriverMatch(ExpertiseBase):
    driver_id: UUID
    driver: str
    multiplier: float
    confidence: Confidence
    reasoning: str


class UnsupportedRule(ExpertiseBase):
    """A rule that could not be evaluated, as opposed to one that did not match."""

    rule_id: UUID
    rule: str
    reason: str


class ValueDriverEvaluation(ExpertiseBase):
    matches: list[ValueDriverMatch] = Field(default_factory=list)
    combined_multiplier: float = 1.0
    unsupported: list[UnsupportedRule] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# Authenticity
# ---------------------------------------------------------------------------


class MarkerCheck(ExpertiseBase):
    """Per-marker result. ``passed`` is ``None`` when inconclusive."""

    marker_id: UUID
    marker: str
    importance: MarkerImportance
    passed: bool | None
    confidence: Confidence
    details: str
    checked_value: str | None = None


class AuthenticityResult(ExpertiseBase):
    assessment: AuthenticityAssessment
    confidence: Confidence
    markers_checked: list[MarkerCheck] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)
    summary: str = ""
