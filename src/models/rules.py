"""Declarative rule definitions: decoders, value drivers, markers, lookup tables.

Rules are plain data. The engines in ``src.engine`` interpret them; nothing
here executes a pattern.
"""

from typing import Any
from uuid import UUID

from pydantic import Field, model_validator

from src.models.common import (
    ConditionType,
    Confidence,
    ExpertiseBase,
    FieldType,
    MarkerImportance,
    TransformType,
    UUIDv7,
    ValidationRuleType,
    new_uuid7,
)

MAX_PATTERN_LENGTH = 500


# ---------------------------------------------------------------------------
# Lookup tables
# ---------------------------------------------------------------------------


def normalize_lookup_key(key: str) -> str:
    """Lookup keys are matched case-insensitively, ignoring outer whitespace."""
    return key.strip().upper()


class LookupValueField(ExpertiseBase):
    """One named, typed field in a lookup table's value schema."""

    name: str = Field(..., min_length=1)
    type: FieldType
    required: bool = False


class LookupTable(ExpertiseBase):
    """Reference data table, e.g. factory code -> location.

    ``module_id`` is ``None`` for tables shared between modules.
    """

    id: UUIDv7 = Field(default_factory=new_uuid7)
    module_id: UUID | None = None
    name: str = Field(..., min_length=1, max_length=100)
    description: str = ""
    key_field: str = Field(..., min_length=1)
    value_schema: list[LookupValueField] = Field(default_factory=list)
    is_active: bool = True


class LookupEntry(ExpertiseBase):
    """A single ``key -> values`` record. Keys are stored normalized."""

    id: UUIDv7 = Field(default_factory=new_uuid7)
    table_id: UUID
    key: str = Field(..., min_length=1)
    values: dict[str, Any] = Field(default_factory=dict)
    is_active: bool = True

    @model_validator(mode="after")
    def _normalize_key(self) -> "LookupEntry":
        self.key = normalize_lookup_key(self.key)
        return self


# ---------------------------------------------------------------------------
# Decoders
# ---------------------------------------------------------------------------


class ExtractionRule(ExpertiseBase):
    """Pull one capture group (1-indexed) into an output field."""

    capture_group: int = Field(..., ge=1)
    output_field: str = Field(..., min_length=1)
    transform: TransformType = TransformType.NONE
    transform_config: dict[str, Any] = Field(default_factory=dict)


class ValidationRuleConfig(ExpertiseBase):
    """Parameters for a validation rule.

    Without ``failure_confidence`` a failing rule fails the whole decode.
    With it, a failure caps the decode confidence at that value.
    """

    min: float | None = None
    max: float | None = None
    pattern: str | None = None
    hook: str | None = None
    error_message: str = "Validation failed"
    failure_confidence: Confidence | None = None


class ValidationRule(ExpertiseBase):
    field: str = Field(..., min_length=1)
    type: ValidationRuleType
    config: ValidationRuleConfig = Field(default_factory=ValidationRuleConfig)

    @property
    def is_fatal(self) -> bool:
        return self.config.failure_confidence is None


class OutputFieldMapping(ExpertiseBase):
    source_field: str = Field(..., min_length=1)
    output_field: str = Field(..., min_length=1)
    type: FieldType = FieldType.STRING


class DecoderTestCase(ExpertiseBase):
    """Input / expected output pair kept with the decoder for regression."""

    input: str
    expected_success: bool
    expected_output: dict[str, Any] | None = None
    description: str = ""


class DecoderDefinition(ExpertiseBase):
    """Pattern-based decoder for one identifier family (e.g. ``lv_date_code``).

    Patterns are matched against the trimmed, upper-cased input without
    implicit anchoring. Authors anchor explicitly with ``^`` and ``$``.
    """

    id: UUIDv7 = Field(default_factory=new_uuid7)
    module_id: UUID | None = None
    name: str = Field(..., min_length=1, max_length=100)
    identifier_type: str = Field(..., min_length=1, max_length=50)
    description: str = ""
    input_pattern: str = Field(..., min_length=1, max_length=MAX_PATTERN_LENGTH)
    input_max_length: int = Field(default=50, ge=1)
    extraction_rules: list[ExtractionRule] = Field(default_factory=list)
    lookup_table_id: UUID | None = None
    lookup_key_group: int | None = Field(default=None, ge=1)
    validation_rules: list[ValidationRule] = Field(default_factory=list)
    output_fields: list[OutputFieldMapping] = Field(default_factory=list)
    base_confidence: Confidence = 0.9
    priority: int = 0
    is_active: bool = True
    test_cases: list[DecoderTestCase] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# Value drivers
# ---------------------------------------------------------------------------


class ConditionConfig(ExpertiseBase):
    """Structured condition value for range, regex and custom drivers."""

    min: float | None = None
    max: float | None = None
    pattern: str | None = None
    flags: str | None = None
    expression: str | None = None


class ValueDriverDefinition(ExpertiseBase):
    """Attribute condition -> price multiplier."""

    id: UUIDv7 = Field(default_factory=new_uuid7)
    module_id: UUID | None = None
    name: str = Field(..., min_length=1, max_length=100)
    description: str = ""
    attribute: str = Field(..., min_length=1)
    condition_type: ConditionType
    condition_value: str | ConditionConfig
    case_sensitive: bool = False
    price_multiplier: float = Field(..., gt=0.0)
    priority: int = 0
    applicable_brands: list[str] = Field(default_factory=list)
    is_active: bool = True

    @property
    def condition_pattern(self) -> str:
        if isinstance(self.condition_value, str):
            return self.condition_value
        return self.condition_value.pattern or ""


# ---------------------------------------------------------------------------
# Authenticity markers
# ---------------------------------------------------------------------------


class AuthenticityMarkerDefinition(ExpertiseBase):
    """Evidence check indicating genuine (or counterfeit) goods.

    ``identifier_type`` restricts which identifiers a pattern is checked
    against; ``None`` checks every identifier.
    """

    id: UUIDv7 = Field(default_factory=new_uuid7)
    module_id: UUID | None = None
    name: str = Field(..., min_length=1, max_length=100)
    check_description: str = ""
    pattern: str | None = Field(default=None, max_length=MAX_PATTERN_LENGTH)
    pattern_max_length: int = Field(default=50, ge=1)
    identifier_type: str | None = None
    importance: MarkerImportance
    indicates_authentic: bool = True
    applicable_brands: list[str] = Field(default_factory=list)
    is_active: bool = True


class ItemIdentifier(ExpertiseBase):
    """An identifier read off an item, e.g. ``{"type": "date_code", "value": "SD1023"}``."""

    type: str
    value: str


def applies_to_brand(applicable_brands: list[str], brand: str | None) -> bool:
    """Empty brand list means all brands; comparison ignores case."""
    if not applicable_brands:
        return True
    if not brand:
        return False
    wanted = brand.strip().lower()
    return any(b.strip().lower() == wanted for b in applicable_brands)
