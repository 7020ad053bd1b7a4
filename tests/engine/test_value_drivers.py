"""Tests for the value driver engine."""

import itertools

import pytest

from src.engine.config import EngineConfig
from src.engine.value_drivers import (
    combine_multipliers,
    evaluate_value_drivers,
    order_drivers,
)
from src.models.common import ConditionType
from src.models.rules import ConditionConfig, ValueDriverDefinition


def _make_driver(
    name: str = "driver",
    attribute: str = "material",
    condition_type: ConditionType = ConditionType.CONTAINS,
    condition_value: str | ConditionConfig = "leather",
    multiplier: float = 1.2,
    **kwargs,
) -> ValueDriverDefinition:
    return ValueDriverDefinition(
        name=name,
        attribute=attribute,
        condition_type=condition_type,
        condition_value=condition_value,
        price_multiplier=multiplier,
        **kwargs,
    )


class TestCombination:
    def test_three_drivers_one_miss(self) -> None:
        drivers = [
            _make_driver("canvas", "material", ConditionType.CONTAINS, "canvas", 1.5),
            _make_driver("mint", "condition", ConditionType.EQUALS, "mint", 1.2),
            _make_driver("vintage", "era", ConditionType.EQUALS, "1970s", 1.0),
        ]
        fields = {"material": "Monogram Canvas", "condition": "Mint", "era": "1990s"}
        evaluation = evaluate_value_drivers(drivers, fields)
        assert evaluation.combined_multiplier == 1.8
        assert sorted(m.driver for m in evaluation.matches) == ["canvas", "mint"]

    def test_nothing_matches(self) -> None:
        evaluation = evaluate_value_drivers([_make_driver()], {"material": "nylon"})
        assert evaluation.matches == []
        assert evaluation.combined_multiplier == 1.0

    def test_priority_permutations_give_same_product(self) -> None:
        multipliers = [1.5, 1.2, 0.85, 1.1]
        fields = {"material": "leather"}
        results = set()
        for priorities in itertools.permutations(range(len(multipliers))):
            drivers = [
                _make_driver(f"d{i}", multiplier=m, priority=p)
                for i, (m, p) in enumerate(zip(multipliers, priorities))
            ]
            results.add(evaluate_value_drivers(drivers, fields).combined_multiplier)
        assert len(results) == 1
        assert results.pop() == pytest.approx(1.5 * 1.2 * 0.85 * 1.1)

    def test_combine_is_order_independent(self) -> None:
        assert combine_multipliers([1.1, 1.3, 0.7]) == combine_multipliers([0.7, 1.3, 1.1])

    def test_combine_empty_is_one(self) -> None:
        assert combine_multipliers([]) == 1.0
        assert isinstance(combine_multipliers([]), float)

    def test_cap(self) -> None:
        drivers = [
            _make_driver("a", multiplier=2.0),
            _make_driver("b", multiplier=3.0),
        ]
        config = EngineConfig(max_combined_multiplier=4.0)
        evaluation = evaluate_value_drivers(drivers, {"material": "leather"}, config=config)
        assert evaluation.combined_multiplier == 4.0
        assert len(evaluation.matches) == 2


class TestFiltering:
    def test_inactive_driver_skipped(self) -> None:
        evaluation = evaluate_value_drivers(
            [_make_driver(is_active=False)], {"material": "leather"},
        )
        assert evaluation.matches == []

    def test_brand_filter_case_insensitive(self) -> None:
        driver = _make_driver(applicable_brands=["Louis Vuitton"])
        assert evaluate_value_drivers([driver], {"material": "leather", "brand": "louis vuitton"}).matches
        assert not evaluate_value_drivers([driver], {"material": "leather", "brand": "Gucci"}).matches
        assert not evaluate_value_drivers([driver], {"material": "leather"}).matches

    def test_empty_brand_list_applies_to_all(self) -> None:
        assert evaluate_value_drivers([_make_driver()], {"material": "leather", "brand": "Any"}).matches

    def test_missing_attribute_is_no_match(self) -> None:
        evaluation = evaluate_value_drivers([_make_driver()], {"color": "red"})
        assert evaluation.matches == []
        assert evaluation.unsupported == []

    def test_order(self) -> None:
        drivers = [
            _make_driver("b", priority=1),
            _make_driver("a", priority=1),
            _make_driver("z", priority=9),
        ]
        assert [d.name for d in order_drivers(drivers)] == ["z", "a", "b"]


class TestConditions:
    def test_contains_case_sensitivity(self) -> None:
        insensitive = _make_driver(condition_value="Leather")
        sensitive = _make_driver(condition_value="Leather", case_sensitive=True)
        fields = {"material": "calf leather"}
        assert evaluate_value_drivers([insensitive], fields).matches
        assert not evaluate_value_drivers([sensitive], fields).matches

    def test_equals(self) -> None:
        driver = _make_driver(attribute="size", condition_type=ConditionType.EQUALS, condition_value="MM")
        assert evaluate_value_drivers([driver], {"size": "mm"}).matches
        assert not evaluate_value_drivers([driver], {"size": "PM"}).matches

    def test_equals_stringifies_value(self) -> None:
        driver = _make_driver(attribute="year", condition_type=ConditionType.EQUALS, condition_value="1995")
        assert evaluate_value_drivers([driver], {"year": 1995}).matches

    def test_regex_string_condition(self) -> None:
        driver = _make_driver(
            attribute="model", condition_type=ConditionType.REGEX, condition_value=r"^speedy\s?\d{2}$",
        )
        assert evaluate_value_drivers([driver], {"model": "Speedy 30"}).matches
        assert not evaluate_value_drivers([driver], {"model": "Neverfull MM"}).matches

    def test_regex_case_sensitive(self) -> None:
        driver = _make_driver(
            attribute="model", condition_type=ConditionType.REGEX,
            condition_value="^Speedy", case_sensitive=True,
        )
        assert not evaluate_value_drivers([driver], {"model": "speedy 30"}).matches

    def test_regex_flags_override(self) -> None:
        driver = _make_driver(
            attribute="model", condition_type=ConditionType.REGEX,
            condition_value=ConditionConfig(pattern="^Speedy", flags="i"), case_sensitive=True,
        )
        assert evaluate_value_drivers([driver], {"model": "speedy 30"}).matches

    def test_range(self) -> None:
        driver = _make_driver(
            attribute="year", condition_type=ConditionType.RANGE,
            condition_value=ConditionConfig(min=1980, max=1999), multiplier=1.3,
        )
        assert evaluate_value_drivers([driver], {"year": 1985}).combined_multiplier == 1.3
        assert evaluate_value_drivers([driver], {"year": "1999"}).matches
        assert not evaluate_value_drivers([driver], {"year": 2001}).matches
        assert not evaluate_value_drivers([driver], {"year": "unknown"}).matches

    def test_open_ended_range(self) -> None:
        driver = _make_driver(
            attribute="year", condition_type=ConditionType.RANGE,
            condition_value=ConditionConfig(max=1970),
        )
        assert evaluate_value_drivers([driver], {"year": 1955}).matches

    def test_match_has_reasoning_and_confidence(self) -> None:
        driver = _make_driver()
        match = evaluate_value_drivers([driver], {"material": "leather"}).matches[0]
        assert match.driver_id == driver.id
        assert match.multiplier == 1.2
        assert match.confidence == pytest.approx(0.85)
        assert match.reasoning == '"material" contains "leather"'


class TestUnsupported:
    def test_custom_without_hook_is_unsupported(self) -> None:
        driver = _make_driver(condition_type=ConditionType.CUSTOM, condition_value="rarity_score")
        evaluation = evaluate_value_drivers([driver], {"material": "leather"})
        assert evaluation.matches == []
        assert len(evaluation.unsupported) == 1
        assert evaluation.unsupported[0].rule_id == driver.id
        assert "rarity_score" in evaluation.unsupported[0].reason

    def test_custom_with_hook(self) -> None:
        driver = _make_driver(
            condition_type=ConditionType.CUSTOM,
            condition_value=ConditionConfig(expression="limited"),
            multiplier=2.0,
        )
        hooks = {"limited": lambda value, fields: fields.get("edition") == "limited"}
        evaluation = evaluate_value_drivers([driver], {"edition": "limited"}, hooks=hooks)
        assert evaluation.combined_multiplier == 2.0
        assert evaluation.unsupported == []

    def test_custom_hook_exception_is_unsupported(self) -> None:
        driver = _make_driver(
            name="vintage",
            attribute="year",
            condition_type=ConditionType.CUSTOM,
            condition_value="pre_1990",
            multiplier=1.5,
        )
        other = _make_driver(attribute="year", condition_value="unknown", multiplier=1.1)
        hooks = {"pre_1990": lambda value, fields: int(value) < 1990}
        evaluation = evaluate_value_drivers([driver, other], {"year": "unknown"}, hooks=hooks)
        assert [m.driver_id for m in evaluation.matches] == [other.id]
        assert evaluation.combined_multiplier == pytest.approx(1.1)
        assert len(evaluation.unsupported) == 1
        assert evaluation.unsupported[0].rule_id == driver.id
        assert evaluation.unsupported[0].reason.startswith("custom condition 'pre_1990' raised:")

    def test_invalid_regex_is_unsupported_not_a_miss(self) -> None:
        driver = _make_driver(condition_type=ConditionType.REGEX, condition_value="([a-z")
        evaluation = evaluate_value_drivers([driver], {"material": "leather"})
        assert evaluation.matches == []
        assert evaluation.unsupported[0].reason.startswith("Pattern error")

    def test_range_without_bounds_is_unsupported(self) -> None:
        driver = _make_driver(
            attribute="year", condition_type=ConditionType.RANGE, condition_value="1990-2000",
        )
        evaluation = evaluate_value_drivers([driver], {"year": 1995})
        assert evaluation.unsupported[0].reason == "range condition requires a min and/or max"

    def test_serializes_camel_case(self) -> None:
        driver = _make_driver(condition_type=ConditionType.CUSTOM, condition_value="x")
        payload = evaluate_value_drivers([driver], {}).model_dump(by_alias=True)
        assert payload["combinedMultiplier"] == 1.0
        assert payload["unsupported"][0]["ruleId"] == driver.id
