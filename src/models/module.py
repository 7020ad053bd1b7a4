"""Domain expertise modules, live rule sets, and immutable version snapshots."""

from enum import StrEnum
from uuid import UUID

from pydantic import Field

from src.models.common import (
    ExpertiseBase,
    ModuleStatus,
    UTCTimestamp,
    UUIDv7,
    new_uuid7,
    utc_now,
)
from src.models.rules import (
    AuthenticityMarkerDefinition,
    DecoderDefinition,
    LookupEntry,
    LookupTable,
    ValueDriverDefinition,
)


class DefinitionKind(StrEnum):
    """Kinds of rule definition owned by a module."""

    DECODER = "decoder"
    LOOKUP_TABLE = "lookup_table"
    LOOKUP_ENTRY = "lookup_entry"
    VALUE_DRIVER = "value_driver"
    AUTHENTICITY_MARKER = "authenticity_marker"


class DomainExpertiseModule(ExpertiseBase):
    """Aggregate root grouping rule definitions for a category / brand set."""

    id: UUIDv7 = Field(default_factory=new_uuid7)
    name: str = Field(..., min_length=1, max_length=100)
    description: str = ""
    category_id: str = Field(..., min_length=1)
    applicable_brands: list[str] = Field(default_factory=list)
    status: ModuleStatus = ModuleStatus.DRAFT
    current_version: int = Field(default=0, ge=0)
    created_by: UUID | None = None
    last_modified_by: UUID | None = None
    created_at: UTCTimestamp = Field(default_factory=utc_now)
    updated_at: UTCTimestamp = Field(default_factory=utc_now)
    published_at: UTCTimestamp | None = None


class RuleSet(ExpertiseBase):
    """The live rule graph of a module, as consumed by the engines."""

    decoders: list[DecoderDefinition] = Field(default_factory=list)
    lookup_tables: list[LookupTable] = Field(default_factory=list)
    lookup_entries: list[LookupEntry] = Field(default_factory=list)
    value_drivers: list[ValueDriverDefinition] = Field(default_factory=list)
    authenticity_markers: list[AuthenticityMarkerDefinition] = Field(
        default_factory=list,
    )


class ModuleSummary(ExpertiseBase, frozen=True):
    """Module metadata frozen into a snapshot."""

    name: str
    description: str = ""
    category_id: str
    applicable_brands: tuple[str, ...] = ()


class DomainExpertiseSnapshot(ExpertiseBase, frozen=True):
    """Full copy of a module's rule graph at publish time.

    Inactive definitions are included so a restore reproduces the live
    state exactly; the engines skip them.
    """

    module: ModuleSummary
    decoders: tuple[DecoderDefinition, ...] = ()
    lookup_tables: tuple[LookupTable, ...] = ()
    lookup_entries: tuple[LookupEntry, ...] = ()
    value_drivers: tuple[ValueDriverDefinition, ...] = ()
    authenticity_markers: tuple[AuthenticityMarkerDefinition, ...] = ()

    def to_rule_set(self) -> RuleSet:
        """Deep copy the snapshot content into a fresh, mutable rule set."""
        return RuleSet(
            decoders=[d.model_copy(deep=True) for d in self.decoders],
            lookup_tables=[t.model_copy(deep=True) for t in self.lookup_tables],
            lookup_entries=[e.model_copy(deep=True) for e in self.lookup_entries],
            value_drivers=[v.model_copy(deep=True) for v in self.value_drivers],
            authenticity_markers=[
                m.model_copy(deep=True) for m in self.authenticity_markers
            ],
        )


class DomainExpertiseVersion(ExpertiseBase, frozen=True):
    """Immutable, append-only published version of a module.

    ``restored_from_version`` is set when the version was produced by a
    rollback to an earlier snapshot.
    """

    id: UUIDv7 = Field(default_factory=new_uuid7)
    module_id: UUID
    version: int = Field(..., ge=1)
    changelog: str = Field(..., min_length=1)
    published_by: UUID | None = None
    published_at: UTCTimestamp = Field(default_factory=utc_now)
    is_active: bool = True
    restored_from_version: int | None = None
    snapshot: DomainExpertiseSnapshot


class CollectionDiff(ExpertiseBase):
    added: list[UUID] = Field(default_factory=list)
    removed: list[UUID] = Field(default_factory=list)
    modified: list[UUID] = Field(default_factory=list)


class VersionComparison(ExpertiseBase):
    """Per-collection differences between two versions of one module."""

    from_version: int
    to_version: int
    decoders: CollectionDiff = Field(default_factory=CollectionDiff)
    lookup_tables: CollectionDiff = Field(default_factory=CollectionDiff)
    lookup_entries: CollectionDiff = Field(default_factory=CollectionDiff)
    value_drivers: CollectionDiff = Field(default_factory=CollectionDiff)
    authenticity_markers: CollectionDiff = Field(default_factory=CollectionDiff)
