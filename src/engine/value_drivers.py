"""Value driver engine: item attributes -> combined price multiplier.

Drivers are evaluated in priority order (priority desc, then name, then id)
against ``fields[driver.attribute]``. Conditions are a closed set of tagged
variants dispatched explicitly; ``custom`` is delegated to a registered hook
and listed as unsupported when none exists.

Combination is multiplicative: ``combined_multiplier`` is the product of
every matched multiplier (1.0 when nothing matches). The product is taken
over the multipliers in sorted order and rounded to 6 decimal places, so it
does not depend on priority order. An optional cap from ``EngineConfig``
clamps the result.

Deterministic -- no I/O.
"""

from __future__ import annotations

import logging
import math
from collections.abc import Callable, Mapping
from typing import Any

from src.engine.config import DEFAULT_ENGINE_CONFIG, EngineConfig
from src.engine.safe_regex import bounded_search
from src.models.common import ConditionType
from src.models.results import UnsupportedRule, ValueDriverEvaluation, ValueDriverMatch
from src.models.rules import ConditionConfig, ValueDriverDefinition, applies_to_brand

logger = logging.getLogger(__name__)

ConditionHook = Callable[[Any, dict[str, Any]], bool]

MULTIPLIER_PRECISION = 6


class _Unsupported(Exception):
    """Raised inside condition evaluation for unusable driver configuration."""


def combine_multipliers(
    multipliers: list[float],
    cap: float | None = None,
) -> float:
    """Order-independent product of multipliers, optionally capped."""
    combined = round(float(math.prod(sorted(multipliers))), MULTIPLIER_PRECISION)
    if cap is not None:
        combined = min(cap, combined)
    return combined


def _text_condition(driver: ValueDriverDefinition) -> str:
    if not isinstance(driver.condition_value, str):
        msg = f"{driver.condition_type.value} condition requires a string value"
        raise _Unsupported(msg)
    return driver.condition_value


def _evaluate_condition(
    driver: ValueDriverDefinition,
    value: Any,
    fields: dict[str, Any],
    config: EngineConfig,
    hooks: Mapping[str, ConditionHook],
) -> tuple[bool, str]:
    """Return (matched, reasoning); raises _Unsupported for bad configuration."""
    attribute = driver.attribute
    text = str(value)

    if driver.condition_type == ConditionType.CONTAINS:
        needle = _text_condition(driver)
        if driver.case_sensitive:
            matched = needle in text
        else:
            matched = needle.lower() in text.lower()
        verb = "contains" if matched else "does not contain"
        return matched, f'"{attribute}" {verb} "{needle}"'

    if driver.condition_type == ConditionType.EQUALS:
        target = _text_condition(driver)
        if driver.case_sensitive:
            matched = text == target
        else:
            matched = text.lower() == target.lower()
        verb = "equals" if matched else "does not equal"
        return matched, f'"{attribute}" {verb} "{target}"'

    if driver.condition_type == ConditionType.REGEX:
        pattern = driver.condition_pattern
        if not pattern:
            raise _Unsupported("regex condition has no pattern")
        flags = (
            driver.condition_value.flags
            if isinstance(driver.condition_value, ConditionConfig)
            else None
        ) or ""
        outcome = bounded_search(
            pattern,
            text,
            timeout=config.regex_timeout_seconds,
            ignore_case=not driver.case_sensitive or "i" in flags,
        )
        if not outcome.ok:
            raise _Unsupported(outcome.error or "regex evaluation failed")
        verb = "matches" if outcome.matched else "does not match"
        return outcome.matched, f'"{attribute}" {verb} pattern "{pattern}"'

    if driver.condition_type == ConditionType.RANGE:
        bounds = driver.condition_value
        if not isinstance(bounds, ConditionConfig) or (bounds.min is None and bounds.max is None):
            raise _Unsupported("range condition requires a min and/or max")
        if isinstance(value, bool):
            return False, f'"{attribute}" is not numeric'
        try:
            number = float(text)
        except ValueError:
            return False, f'"{attribute}" ({text}) is not numeric'
        if math.isnan(number):
            return False, f'"{attribute}" is not numeric'
        matched = (bounds.min is None or number >= bounds.min) and (
            bounds.max is None or number <= bounds.max
        )
        where = "within" if matched else "outside"
        return matched, (
            f'"{attribute}" ({number:g}) is {where} range '
            f"[{'-inf' if bounds.min is None else f'{bounds.min:g}'}, "
            f"{'inf' if bounds.max is None else f'{bounds.max:g}'}]"
        )

    # ConditionType.CUSTOM
    name = (
        driver.condition_value.expression
        if isinstance(driver.condition_value, ConditionConfig)
        else driver.condition_value
    )
    hook = hooks.get(name or "")
    if hook is None:
        msg = f"no implementation registered for custom condition '{name}'"
        raise _Unsupported(msg)
    try:
        matched = bool(hook(value, fields))
    except Exception as exc:  # noqa: BLE001 - hook failures become unsupported drivers
        raise _Unsupported(f"custom condition '{name}' raised: {exc}") from exc
    verb = "satisfies" if matched else "does not satisfy"
    return matched, f'"{attribute}" {verb} custom condition "{name}"'


def order_drivers(drivers: list[ValueDriverDefinition]) -> list[ValueDriverDefinition]:
    return sorted(drivers, key=lambda d: (-d.priority, d.name, str(d.id)))


def evaluate_value_drivers(
    drivers: list[ValueDriverDefinition],
    fields: dict[str, Any],
    *,
    config: EngineConfig | None = None,
    hooks: Mapping[str, ConditionHook] | None = None,
) -> ValueDriverEvaluation:
    """Evaluate drivers against an item's attribute map.

    Only active drivers applicable to ``fields["brand"]`` are considered. A
    missing or ``None`` attribute is a non-match. Drivers whose condition
    cannot be evaluated are reported under ``unsupported``, never skipped
    silently.
    """
    config = config or DEFAULT_ENGINE_CONFIG
    hooks = hooks or {}
    brand = fields.get("brand")
    brand = str(brand) if brand is not None else None

    evaluation = ValueDriverEvaluation()
    applicable = [
        d for d in drivers
        if d.is_active and applies_to_brand(d.applicable_brands, brand)
    ]

    for driver in order_drivers(applicable):
        value = fields.get(driver.attribute)
        if driver.condition_type != ConditionType.CUSTOM and value is None:
            continue
        try:
            matched, reasoning = _evaluate_condition(driver, value, fields, config, hooks)
        except _Unsupported as exc:
            logger.warning("Value driver %s unsupported: %s", driver.name, exc)
            evaluation.unsupported.append(
                UnsupportedRule(rule_id=driver.id, rule=driver.name, reason=str(exc)),
            )
            continue

        logger.debug("Value driver %s: %s", driver.name, reasoning)
        if matched:
            evaluation.matches.append(
                ValueDriverMatch(
                    driver_id=driver.id,
                    driver=driver.name,
                    multiplier=float(driver.price_multiplier),
                    confidence=config.value_driver_match_confidence,
                    reasoning=reasoning,
                ),
            )

    evaluation.combined_multiplier = combine_multipliers(
        [m.multiplier for m in evaluation.matches],
        cap=config.max_combined_multiplier,
    )
    return evaluation
