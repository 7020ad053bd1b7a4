"""Shared types, enums, and base models used across the expertise domain models."""

from datetime import datetime, timezone
from enum import StrEnum
from typing import Annotated
from uuid import UUID

from pydantic import BaseModel, Field
from pydantic.alias_generators import to_camel
from uuid_extensions import uuid7


def utc_now() -> datetime:
    """Return the current UTC timestamp (timezone-aware)."""
    return datetime.now(tz=timezone.utc)


def new_uuid7() -> UUID:
    """Generate a new time-sortable UUID v7."""
    return uuid7()


# --- Reusable annotated types ---

UUIDv7 = Annotated[UUID, Field(description="Time-sortable UUID v7.")]
UTCTimestamp = Annotated[
    datetime, Field(description="UTC timezone-aware timestamp.")
]
Confidence = Annotated[float, Field(ge=0.0, le=1.0)]


# --- Shared enums ---


class ModuleStatus(StrEnum):
    """Lifecycle status of a domain expertise module."""

    DRAFT = "draft"
    PUBLISHED = "published"
    ARCHIVED = "archived"


class TransformType(StrEnum):
    """Transform applied to a decoder capture group."""

    NONE = "none"
    PARSE_INT = "parseInt"
    PARSE_YEAR = "parseYear"
    LOOKUP = "lookup"


class ValidationRuleType(StrEnum):
    """Post-extraction validation rule kinds."""

    RANGE = "range"
    REGEX = "regex"
    LOOKUP_EXISTS = "lookup_exists"
    CUSTOM = "custom"


class FieldType(StrEnum):
    """Scalar types for decoder output fields and lookup value schemas."""

    STRING = "string"
    NUMBER = "number"
    BOOLEAN = "boolean"


class ConditionType(StrEnum):
    """Value driver condition kinds."""

    CONTAINS = "contains"
    EQUALS = "equals"
    REGEX = "regex"
    RANGE = "range"
    CUSTOM = "custom"


class MarkerImportance(StrEnum):
    """Weight class of an authenticity marker."""

    CRITICAL = "critical"
    IMPORTANT = "important"
    HELPFUL = "helpful"


class AuthenticityAssessment(StrEnum):
    """Aggregate authenticity verdict."""

    LIKELY_AUTHENTIC = "likely_authentic"
    UNCERTAIN = "uncertain"
    LIKELY_FAKE = "likely_fake"
    INSUFFICIENT_DATA = "insufficient_data"


class PatternComplexity(StrEnum):
    """Risk label for an admin-authored regex, in increasing order."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    DANGEROUS = "dangerous"


class LookupMissPolicy(StrEnum):
    """What a decoder does when its lookup key is not in the table."""

    DEGRADE = "degrade"
    FAIL = "fail"
    IGNORE = "ignore"


# --- Base model ---


class ExpertiseBase(BaseModel):
    """Base model with common configuration for all expertise Pydantic models.

    Accepts camelCase keys so rule JSON authored in the admin console loads
    directly; Python code uses the snake_case field names.
    """

    model_config = {
        "populate_by_name": True,
        "alias_generator": to_camel,
        "ser_json_timedelta": "iso8601",
        "protected_namespaces": (),
    }
