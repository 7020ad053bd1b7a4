"""Tests for the expertise domain models.

Covers: camelCase aliases, lookup key normalization, field bounds, frozen
snapshots and versions.
"""

import pytest
from pydantic import ValidationError
from uuid_extensions import uuid7

from src.models.common import ConditionType, MarkerImportance, ModuleStatus
from src.models.module import (
    DomainExpertiseModule,
    DomainExpertiseSnapshot,
    DomainExpertiseVersion,
    ModuleSummary,
)
from src.models.rules import (
    MAX_PATTERN_LENGTH,
    AuthenticityMarkerDefinition,
    ConditionConfig,
    DecoderDefinition,
    LookupEntry,
    ValueDriverDefinition,
    applies_to_brand,
)


def _snapshot() -> DomainExpertiseSnapshot:
    return DomainExpertiseSnapshot(module=ModuleSummary(name="LV Bags", category_id="handbags"))


class TestAliases:
    def test_decoder_loads_camel_case(self) -> None:
        decoder = DecoderDefinition.model_validate({
            "name": "LV date code",
            "identifierType": "lv_date_code",
            "inputPattern": r"^([A-Z]{2})(\d{4})$",
            "extractionRules": [{"captureGroup": 1, "outputField": "factory_code"}],
            "lookupKeyGroup": 1,
        })
        assert decoder.identifier_type == "lv_date_code"
        assert decoder.extraction_rules[0].output_field == "factory_code"
        assert decoder.input_max_length == 50

    def test_snake_case_also_accepted(self) -> None:
        marker = AuthenticityMarkerDefinition(
            name="Heat stamp", importance=MarkerImportance.IMPORTANT, check_description="x",
        )
        assert marker.model_dump(by_alias=True)["checkDescription"] == "x"


class TestRules:
    def test_lookup_key_normalized(self) -> None:
        entry = LookupEntry(table_id=uuid7(), key="  sd ", values={"location": "San Dimas"})
        assert entry.key == "SD"

    def test_pattern_length_limit(self) -> None:
        with pytest.raises(ValidationError):
            DecoderDefinition(
                name="Long", identifier_type="serial", input_pattern="a" * (MAX_PATTERN_LENGTH + 1),
            )

    def test_multiplier_must_be_positive(self) -> None:
        with pytest.raises(ValidationError):
            ValueDriverDefinition(
                name="Zero",
                attribute="material",
                condition_type=ConditionType.CONTAINS,
                condition_value="canvas",
                price_multiplier=0,
            )

    def test_condition_value_union(self) -> None:
        driver = ValueDriverDefinition.model_validate({
            "name": "Vintage",
            "attribute": "year",
            "conditionType": "range",
            "conditionValue": {"min": 1980, "max": 1999},
            "priceMultiplier": 1.3,
        })
        assert isinstance(driver.condition_value, ConditionConfig)
        assert driver.condition_value.max == 1999

    def test_condition_pattern(self) -> None:
        plain = ValueDriverDefinition(
            name="Speedy", attribute="model", condition_type=ConditionType.REGEX,
            condition_value="^speedy", price_multiplier=1.2,
        )
        structured = plain.model_copy(update={"condition_value": ConditionConfig(flags="i")})
        assert plain.condition_pattern == "^speedy"
        assert structured.condition_pattern == ""

    @pytest.mark.parametrize(
        ("brands", "brand", "expected"),
        [
            ([], None, True),
            ([], "Chanel", True),
            (["Louis Vuitton"], " louis vuitton ", True),
            (["Louis Vuitton"], "Chanel", False),
            (["Louis Vuitton"], None, False),
        ],
    )
    def test_applies_to_brand(self, brands, brand, expected) -> None:
        assert applies_to_brand(brands, brand) is expected


class TestModuleAndVersion:
    def test_module_defaults(self) -> None:
        module = DomainExpertiseModule(name="LV Bags", category_id="handbags")
        assert module.status == ModuleStatus.DRAFT
        assert module.current_version == 0
        assert module.published_at is None

    def test_snapshot_is_frozen(self) -> None:
        snapshot = _snapshot()
        with pytest.raises(ValidationError):
            snapshot.decoders = ()

    def test_version_is_frozen(self) -> None:
        version = DomainExpertiseVersion(
            module_id=uuid7(), version=1, changelog="Initial", snapshot=_snapshot(),
        )
        with pytest.raises(ValidationError):
            version.is_active = False

    def test_version_requires_changelog(self) -> None:
        with pytest.raises(ValidationError):
            DomainExpertiseVersion(module_id=uuid7(), version=1, changelog="", snapshot=_snapshot())
