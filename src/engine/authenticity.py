"""Authenticity engine: marker checks -> aggregate authenticity assessment.

Marker checks
-------------
- Pattern markers are searched (case-insensitive, bounded) in identifiers of
  the marker's ``identifier_type`` (any type when unset), then in extracted
  text blocks. Identifiers longer than ``pattern_max_length`` are skipped;
  text matches longer than it do not count. A match passes iff the marker
  ``indicates_authentic``; a miss passes iff it does not.
- A value whose search exceeds the regex time budget is skipped and named
  in ``details``; the marker is inconclusive only when every value timed out.
- Pattern-less markers look for their key phrases in the extracted text:
  the quoted phrases of ``check_description`` ('...' or "..."), or the
  marker name when it quotes nothing. Finding a phrase counts as a match.
  Finding nothing leaves the marker inconclusive (manual inspection).
- Inconclusive markers count neither as passes nor as failures.

Aggregation
-----------
``score = passed weight / evaluated weight`` with importance weights from
``EngineConfig`` (critical 3, important 2, helpful 1). Any failed critical
marker makes the verdict ``likely_fake`` with confidence capped at
``critical_failure_cap``. Enough failed important markers block
``likely_authentic``. Otherwise the score thresholds decide. Every added
failure lowers the score, so the verdict never improves with more failures.
No applicable markers, no input, or nothing evaluable yields
``insufficient_data``.

Deterministic -- no I/O.
"""

from __future__ import annotations

import logging
import re

from src.engine.config import DEFAULT_ENGINE_CONFIG, EngineConfig
from src.engine.safe_regex import bounded_search
from src.models.common import AuthenticityAssessment, MarkerImportance
from src.models.results import AuthenticityResult, MarkerCheck
from src.models.rules import AuthenticityMarkerDefinition, ItemIdentifier, applies_to_brand

logger = logging.getLogger(__name__)

_QUOTED = re.compile(r"""'([^']+)'|"([^"]+)\"""")

# Verdict ordering, most favourable first.
ASSESSMENT_RANK: dict[AuthenticityAssessment, int] = {
    AuthenticityAssessment.LIKELY_AUTHENTIC: 3,
    AuthenticityAssessment.UNCERTAIN: 2,
    AuthenticityAssessment.LIKELY_FAKE: 1,
    AuthenticityAssessment.INSUFFICIENT_DATA: 0,
}


def key_phrases(marker: AuthenticityMarkerDefinition) -> list[str]:
    """Phrases a pattern-less marker looks for in extracted text."""
    phrases = [a or b for a, b in _QUOTED.findall(marker.check_description)]
    phrases = [p.strip() for p in phrases if p.strip()]
    return phrases or [marker.name]


def _timeout_note(timed_out: list[str]) -> str:
    return f" (timed out on: {'; '.join(timed_out)})" if timed_out else ""


class AuthenticityEngine:
    """Checks markers against item evidence and aggregates a verdict."""

    def __init__(self, config: EngineConfig | None = None) -> None:
        self._config = config or DEFAULT_ENGINE_CONFIG

    def assess(
        self,
        markers: list[AuthenticityMarkerDefinition],
        identifiers: list[ItemIdentifier],
        extracted_text: list[str],
        brand: str | None = None,
    ) -> AuthenticityResult:
        applicable = [
            m for m in markers
            if m.is_active and applies_to_brand(m.applicable_brands, brand)
        ]
        if not applicable:
            return AuthenticityResult(
                assessment=AuthenticityAssessment.INSUFFICIENT_DATA,
                confidence=0.0,
                summary="No applicable authenticity markers.",
            )

        identifiers = [i for i in identifiers if i.value and i.value.strip()]
        texts = [t for t in extracted_text if t and t.strip()]
        if not identifiers and not texts:
            return AuthenticityResult(
                assessment=AuthenticityAssessment.INSUFFICIENT_DATA,
                confidence=0.0,
                summary="No identifiers or text to check against.",
            )

        checks: list[MarkerCheck] = []
        warnings: list[str] = []
        for marker in applicable:
            check = self.check_marker(marker, identifiers, texts)
            checks.append(check)
            if marker.importance != MarkerImportance.CRITICAL:
                continue
            if check.passed is False:
                warnings.append(f"Critical marker failed: {marker.name}")
            elif check.passed is None:
                warnings.append(f'Critical marker "{marker.name}" could not be tested')

        return self._aggregate(checks, warnings)

    # ------------------------------------------------------------------
    # Per-marker checks
    # ------------------------------------------------------------------

    def check_marker(
        self,
        marker: AuthenticityMarkerDefinition,
        identifiers: list[ItemIdentifier],
        texts: list[str],
    ) -> MarkerCheck:
        if marker.pattern:
            return self._check_pattern(marker, identifiers, texts)
        return self._check_phrases(marker, texts)

    def _outcome(
        self,
        marker: AuthenticityMarkerDefinition,
        *,
        matched: bool,
        confidence: float,
        details: str,
        checked_value: str | None = None,
    ) -> MarkerCheck:
        passed = matched if marker.indicates_authentic else not matched
        return MarkerCheck(
            marker_id=marker.id,
            marker=marker.name,
            importance=marker.importance,
            passed=passed,
            confidence=confidence,
            details=details,
            checked_value=checked_value,
        )

    def _inconclusive(self, marker: AuthenticityMarkerDefinition, details: str) -> MarkerCheck:
        return MarkerCheck(
            marker_id=marker.id,
            marker=marker.name,
            importance=marker.importance,
            passed=None,
            confidence=0.0,
            details=details,
        )

    def _check_pattern(
        self,
        marker: AuthenticityMarkerDefinition,
        identifiers: list[ItemIdentifier],
        texts: list[str],
    ) -> MarkerCheck:
        timeout = self._config.regex_timeout_seconds
        pattern = marker.pattern or ""
        checked_anything = False
        skipped = 0
        timed_out: list[str] = []

        for identifier in identifiers:
            if marker.identifier_type and identifier.type != marker.identifier_type:
                continue
            value = identifier.value.strip()
            if len(value) > marker.pattern_max_length:
                skipped += 1
                continue
            outcome = bounded_search(pattern, value, timeout=timeout, ignore_case=True)
            if outcome.timed_out:
                logger.warning("Marker %s timed out on identifier %r", marker.name, value)
                timed_out.append(f"{value} ({outcome.error})")
                continue
            if not outcome.ok:
                return self._inconclusive(marker, outcome.error or "Pattern error")
            checked_anything = True
            if outcome.matched:
                detail = (
                    f"Format matches: {value}" if marker.indicates_authentic
                    else f"Format indicates concern: {value}"
                )
                return self._outcome(
                    marker,
                    matched=True,
                    confidence=self._config.identifier_match_confidence,
                    details=detail + _timeout_note(timed_out),
                    checked_value=value,
                )

        for text in texts:
            outcome = bounded_search(pattern, text, timeout=timeout, ignore_case=True)
            if outcome.timed_out:
                logger.warning("Marker %s timed out on a text block", marker.name)
                timed_out.append(f"text block ({outcome.error})")
                continue
            if not outcome.ok:
                return self._inconclusive(marker, outcome.error or "Pattern error")
            checked_anything = True
            match = outcome.match
            if match is None or len(match.group(0)) > marker.pattern_max_length:
                continue
            detail = (
                f"Found matching pattern: {match.group(0)}" if marker.indicates_authentic
                else f"Pattern concern: {match.group(0)}"
            )
            return self._outcome(
                marker,
                matched=True,
                confidence=self._config.text_match_confidence,
                details=detail + _timeout_note(timed_out),
                checked_value=match.group(0),
            )

        if not checked_anything:
            note = f" ({skipped} identifier(s) longer than {marker.pattern_max_length})" if skipped else ""
            if timed_out:
                return self._inconclusive(
                    marker, f"Pattern timed out on every value: {'; '.join(timed_out)}{note}",
                )
            return self._inconclusive(marker, f"No value to test against{note}")

        detail = (
            "Pattern not matched - may indicate fake" if marker.indicates_authentic
            else "Pattern not matched - no suspicious indicators"
        )
        return self._outcome(
            marker,
            matched=False,
            confidence=self._config.pattern_not_found_confidence,
            details=detail + _timeout_note(timed_out),
        )

    def _check_phrases(
        self,
        marker: AuthenticityMarkerDefinition,
        texts: list[str],
    ) -> MarkerCheck:
        haystack = [t.lower() for t in texts]
        for phrase in key_phrases(marker):
            needle = phrase.lower()
            if any(needle in text for text in haystack):
                return self._outcome(
                    marker,
                    matched=True,
                    confidence=self._config.text_match_confidence,
                    details=f"Found text: {phrase}",
                    checked_value=phrase,
                )
        return self._inconclusive(
            marker, f"Manual check required: {marker.check_description or marker.name}",
        )

    # ------------------------------------------------------------------
    # Aggregation
    # ------------------------------------------------------------------

    def _aggregate(self, checks: list[MarkerCheck], warnings: list[str]) -> AuthenticityResult:
        cfg = self._config
        evaluated = [c for c in checks if c.passed is not None]
        if not evaluated:
            return AuthenticityResult(
                assessment=AuthenticityAssessment.INSUFFICIENT_DATA,
                confidence=0.0,
                markers_checked=checks,
                warnings=warnings,
                summary="Unable to verify any authenticity markers with available data.",
            )

        total_weight = sum(cfg.importance_weights[c.importance] for c in evaluated)
        passed_weight = sum(cfg.importance_weights[c.importance] for c in evaluated if c.passed)
        score = passed_weight / total_weight if total_weight > 0 else 0.0

        failed = [c for c in evaluated if not c.passed]
        critical_failed = sum(1 for c in failed if c.importance == MarkerImportance.CRITICAL)
        important_failed = sum(1 for c in failed if c.importance == MarkerImportance.IMPORTANT)
        passed_count = len(evaluated) - len(failed)

        if critical_failed:
            assessment = AuthenticityAssessment.LIKELY_FAKE
            confidence = min(score, cfg.critical_failure_cap)
            summary = (
                f"Critical authenticity marker failed. {len(failed)} of "
                f"{len(evaluated)} checks did not pass."
            )
        elif (
            score >= cfg.likely_authentic_threshold
            and important_failed < cfg.important_failures_for_uncertain
        ):
            assessment = AuthenticityAssessment.LIKELY_AUTHENTIC
            confidence = score
            summary = f"{passed_count} of {len(evaluated)} authenticity markers passed."
        elif score >= cfg.uncertain_threshold:
            assessment = AuthenticityAssessment.UNCERTAIN
            confidence = score
            summary = (
                f"Mixed results: {passed_count} passed, {len(failed)} failed. "
                "Manual review recommended."
            )
        else:
            assessment = AuthenticityAssessment.LIKELY_FAKE
            confidence = score
            summary = (
                f"Multiple authenticity concerns: {len(failed)} of "
                f"{len(evaluated)} checks failed."
            )

        logger.debug("Authenticity assessment %s (score=%.3f)", assessment.value, score)
        return AuthenticityResult(
            assessment=assessment,
            confidence=round(confidence, 6),
            markers_checked=checks,
            warnings=warnings,
            summary=summary,
        )


def assess_authenticity(
    markers: list[AuthenticityMarkerDefinition],
    identifiers: list[ItemIdentifier],
    extracted_text: list[str],
    brand: str | None = None,
    *,
    config: EngineConfig | None = None,
) -> AuthenticityResult:
    """Assess authenticity with the default (or given) engine config."""
    return AuthenticityEngine(config).assess(markers, identifiers, extracted_text, brand)
