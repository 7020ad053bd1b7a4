"""Decoder engine: structured identifier -> typed, confidence-scored fields.

A decode runs in fixed stages:

1. Length gate -- input longer than ``input_max_length`` fails before any
   regex executes.
2. Match -- the trimmed, upper-cased input is searched case-insensitively
   with the decoder's pattern under the regex time budget. Patterns are not
   implicitly anchored; authors anchor with ``^`` / ``$``.
3. Extraction -- each extraction rule pulls one capture group and applies
   its transform (none, parseInt, parseYear, lookup).
4. Lookup -- the designated capture group is resolved against the lookup
   table; a miss is handled by the configured ``LookupMissPolicy``.
5. Validation -- rules without ``failure_confidence`` are fatal; the rest
   cap confidence at their ``failure_confidence``.
6. Output -- extracted fields are cast per ``output_fields``.

A transform or output cast that fails drops its field, records an error and
caps confidence at ``lookup_miss_confidence``.

Errors are returned in ``DecodeResult.errors``; bad input never raises, so
the test console can replay many inputs synchronously.

Deterministic -- the only collaborator is the ``LookupResolver``.
"""

from __future__ import annotations

import logging
import math
from collections.abc import Callable, Mapping
from typing import Any

from src.engine.config import DEFAULT_ENGINE_CONFIG, EngineConfig
from src.engine.lookup import LookupResolver
from src.engine.safe_regex import bounded_search
from src.models.common import (
    FieldType,
    LookupMissPolicy,
    TransformType,
    ValidationRuleType,
)
from src.models.results import DecodeResult, DecoderTestCaseResult, LookupUsage
from src.models.rules import DecoderDefinition, ExtractionRule, ValidationRule

logger = logging.getLogger(__name__)

ValidationHook = Callable[[Any, dict[str, Any]], bool]

_FALSE_STRINGS = frozenset({"", "0", "false", "no", "n"})


def parse_year(raw: str, pivot: int) -> int:
    """Expand a 2-digit year around ``pivot``: below -> 20xx, otherwise 19xx."""
    year = int(raw)
    if year < 100:
        return 2000 + year if year < pivot else 1900 + year
    return year


def _apply_transform(
    raw: str,
    rule: ExtractionRule,
    config: EngineConfig,
) -> Any:
    """Raises ValueError when a numeric transform cannot parse ``raw``."""
    if rule.transform == TransformType.PARSE_INT:
        return int(raw)
    if rule.transform == TransformType.PARSE_YEAR:
        pivot = int(rule.transform_config.get("pivot", config.parse_year_pivot))
        return parse_year(raw, pivot)
    # NONE and LOOKUP keep the raw text; LOOKUP is enriched by the lookup stage.
    return raw


def _cast(value: Any, field_type: FieldType) -> Any:
    if field_type == FieldType.NUMBER:
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            return value
        return float(str(value))
    if field_type == FieldType.BOOLEAN:
        if isinstance(value, str):
            return value.strip().lower() not in _FALSE_STRINGS
        return bool(value)
    return str(value)


def _as_number(value: Any) -> float | None:
    if value is None or isinstance(value, bool):
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    return None if math.isnan(number) else number


class _DecodeRun:
    """Mutable state of a single decode; never shared between calls."""

    def __init__(
        self,
        decoder: DecoderDefinition,
        lookup: LookupResolver | None,
        config: EngineConfig,
        hooks: Mapping[str, ValidationHook],
    ) -> None:
        self.decoder = decoder
        self.lookup = lookup
        self.config = config
        self.hooks = hooks
        self.errors: list[str] = []
        self.extracted: dict[str, Any] = {}
        self.confidence = float(decoder.base_confidence)
        self.lookup_used: LookupUsage | None = None
        self.lookup_hit = False

    def fail(self, message: str | None = None) -> DecodeResult:
        if message:
            self.errors.append(message)
        return DecodeResult(success=False, errors=list(self.errors))

    def mark_partial(self) -> None:
        self.confidence = min(self.confidence, self.config.lookup_miss_confidence)

    def run(self, value: str) -> DecodeResult:
        decoder = self.decoder
        if len(value) > decoder.input_max_length:
            return self.fail(
                f"Input too long ({len(value)} > {decoder.input_max_length})",
            )

        normalized = value.strip().upper()
        outcome = bounded_search(
            decoder.input_pattern,
            normalized,
            timeout=self.config.regex_timeout_seconds,
            ignore_case=True,
        )
        if not outcome.ok:
            return self.fail(outcome.error)
        if outcome.match is None:
            return self.fail("Input does not match pattern")
        match = outcome.match

        for rule in decoder.extraction_rules:
            if rule.capture_group > len(match.groups()):
                return self.fail(
                    f"Capture group {rule.capture_group} does not exist in pattern",
                )
            raw = match.group(rule.capture_group)
            if raw is None:
                continue
            try:
                self.extracted[rule.output_field] = _apply_transform(
                    raw, rule, self.config,
                )
            except ValueError:
                self.errors.append(
                    f"Could not apply {rule.transform.value} to '{raw}' "
                    f"for field '{rule.output_field}'",
                )
                self.mark_partial()

        if decoder.lookup_table_id is not None and decoder.lookup_key_group is not None:
            if decoder.lookup_key_group > len(match.groups()):
                return self.fail(
                    f"Lookup key group {decoder.lookup_key_group} does not exist in pattern",
                )
            key = match.group(decoder.lookup_key_group)
            if key and not self._resolve_lookup(key):
                return self.fail()

        fatal = False
        for rule in decoder.validation_rules:
            ok, reason = self._check(rule)
            if ok:
                continue
            self.errors.append(reason)
            if rule.is_fatal:
                fatal = True
            else:
                self.confidence = min(self.confidence, rule.config.failure_confidence)
        if fatal:
            return self.fail()

        decoded: dict[str, Any] = {}
        if decoder.output_fields:
            for mapping in decoder.output_fields:
                if self.extracted.get(mapping.source_field) is None:
                    continue
                try:
                    decoded[mapping.output_field] = _cast(
                        self.extracted[mapping.source_field], mapping.type,
                    )
                except ValueError:
                    self.errors.append(
                        f"Could not cast '{mapping.source_field}' to {mapping.type.value}",
                    )
                    self.mark_partial()
        else:
            decoded = dict(self.extracted)

        confidence = max(0.0, min(float(decoder.base_confidence), self.confidence))
        return DecodeResult(
            success=True,
            decoded=decoded,
            confidence=confidence,
            lookup_used=self.lookup_used,
            errors=list(self.errors),
        )

    def _resolve_lookup(self, key: str) -> bool:
        """Resolve the lookup key; returns False when the decode must fail."""
        table_id = self.decoder.lookup_table_id
        values = self.lookup.lookup(table_id, key) if self.lookup is not None else None
        if values is not None:
            self.lookup_hit = True
            self.extracted.update(values)
            self.lookup_used = LookupUsage(
                table=self.lookup.table_name(table_id) or str(table_id),
                key=key,
                values=values,
            )
            return True

        policy = self.config.lookup_miss_policy
        if policy == LookupMissPolicy.IGNORE:
            return True
        self.errors.append(f"No lookup entry for key '{key}'")
        if policy == LookupMissPolicy.FAIL:
            return False
        self.confidence = min(self.confidence, self.config.lookup_miss_confidence)
        return True

    def _check(self, rule: ValidationRule) -> tuple[bool, str]:
        value = self.extracted.get(rule.field)
        message = rule.config.error_message

        if rule.type == ValidationRuleType.RANGE:
            number = _as_number(value)
            if number is None:
                return False, message
            if rule.config.min is not None and number < rule.config.min:
                return False, message
            if rule.config.max is not None and number > rule.config.max:
                return False, message
            return True, ""

        if rule.type == ValidationRuleType.REGEX:
            if not rule.config.pattern:
                return True, ""
            if value is None:
                return False, message
            outcome = bounded_search(
                rule.config.pattern,
                str(value),
                timeout=self.config.regex_timeout_seconds,
            )
            if not outcome.ok:
                return False, f"{message} ({outcome.error})"
            return outcome.matched, message

        if rule.type == ValidationRuleType.LOOKUP_EXISTS:
            return self.lookup_hit and value is not None, message

        hook = self.hooks.get(rule.config.hook or "")
        if hook is None:
            return False, f"Unsupported custom validation rule '{rule.config.hook or rule.field}'"
        try:
            return bool(hook(value, dict(self.extracted))), message
        except Exception as exc:  # noqa: BLE001 - hook failures become rule failures
            logger.warning("Custom validation hook %r raised: %s", rule.config.hook, exc)
            return False, f"{message} (hook error: {exc})"


def decode(
    decoder: DecoderDefinition,
    value: str,
    lookup: LookupResolver | None = None,
    *,
    config: EngineConfig | None = None,
    hooks: Mapping[str, ValidationHook] | None = None,
) -> DecodeResult:
    """Run one decoder against one raw identifier."""
    run = _DecodeRun(decoder, lookup, config or DEFAULT_ENGINE_CONFIG, hooks or {})
    result = run.run(value)
    logger.debug(
        "Decoder %s on %r: success=%s confidence=%s",
        decoder.name,
        value,
        result.success,
        result.confidence,
    )
    return result.model_copy(
        update={"decoder_id": decoder.id, "decoder_name": decoder.name},
    )


def order_decoders(decoders: list[DecoderDefinition]) -> list[DecoderDefinition]:
    """Evaluation order: priority desc, base confidence desc, then name and id."""
    return sorted(
        decoders,
        key=lambda d: (-d.priority, -d.base_confidence, d.name, str(d.id)),
    )


def decode_with_pipeline(
    decoders: list[DecoderDefinition],
    value: str,
    identifier_type: str | None = None,
    lookup: LookupResolver | None = None,
    *,
    config: EngineConfig | None = None,
    hooks: Mapping[str, ValidationHook] | None = None,
) -> DecodeResult:
    """Try active decoders in evaluation order; return the first success.

    When nothing matches, the failure lists each attempted decoder's errors.
    """
    candidates = [
        d for d in decoders
        if d.is_active and (identifier_type is None or d.identifier_type == identifier_type)
    ]
    if not candidates:
        scope = f" for identifier type '{identifier_type}'" if identifier_type else ""
        return DecodeResult(success=False, errors=[f"No active decoder{scope}"])

    attempts: list[str] = []
    for decoder in order_decoders(candidates):
        result = decode(decoder, value, lookup, config=config, hooks=hooks)
        if result.success:
            return result
        attempts.extend(f"{decoder.name}: {error}" for error in result.errors)

    return DecodeResult(
        success=False,
        errors=["No decoder matched the input", *attempts],
    )


def run_test_cases(
    decoder: DecoderDefinition,
    lookup: LookupResolver | None = None,
    *,
    config: EngineConfig | None = None,
    hooks: Mapping[str, ValidationHook] | None = None,
) -> list[DecoderTestCaseResult]:
    """Replay the decoder's stored test cases and report mismatches."""
    results: list[DecoderTestCaseResult] = []
    for case in decoder.test_cases:
        actual = decode(decoder, case.input, lookup, config=config, hooks=hooks)
        mismatches: list[str] = []
        if actual.success != case.expected_success:
            mismatches.append(
                f"expected success={case.expected_success}, got {actual.success}",
            )
        elif actual.success and case.expected_output:
            decoded = actual.decoded or {}
            for key, expected in case.expected_output.items():
                if decoded.get(key) != expected:
                    mismatches.append(
                        f"{key}: expected {expected!r}, got {decoded.get(key)!r}",
                    )
        results.append(
            DecoderTestCaseResult(
                input=case.input,
                description=case.description,
                passed=not mismatches,
                expected_success=case.expected_success,
                actual=actual,
                mismatches=mismatches,
            ),
        )
    return results
