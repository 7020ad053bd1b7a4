"""SQLAlchemy ORM table models for the expertise engine.

Uses FlexJSON (JSONB on Postgres, JSON on SQLite) for nested rule
configuration (extraction rules, validation rules, schemas, snapshots).

Categories:
- AGGREGATE ROOT: ExpertiseModuleRow (status / version counter updates)
- LIVE RULE GRAPH: DecoderRow, LookupTableRow, LookupEntryRow,
                   ValueDriverRow, AuthenticityMarkerRow (editable drafts,
                   replaced wholesale on rollback)
- IMMUTABLE: ExpertiseVersionRow (append-only; only is_active flips)
"""

from datetime import datetime
from uuid import UUID

from sqlalchemy import (
    Boolean,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    text,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.types import JSON

from src.db.session import Base

# JSONB on PostgreSQL, plain JSON on SQLite (for tests)
FlexJSON = JSONB().with_variant(JSON(), "sqlite")


# ---------------------------------------------------------------------------
# Modules
# ---------------------------------------------------------------------------


class ExpertiseModuleRow(Base):
    __tablename__ = "expertise_modules"

    module_id: Mapped[UUID] = mapped_column(primary_key=True)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    description: Mapped[str] = mapped_column(Text, default="")
    category_id: Mapped[str] = mapped_column(String(100), nullable=False, index=True)
    applicable_brands = mapped_column(FlexJSON, nullable=False, default=list)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="draft")
    current_version: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    created_by: Mapped[UUID | None] = mapped_column(nullable=True)
    last_modified_by: Mapped[UUID | None] = mapped_column(nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    published_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True,
    )


# ---------------------------------------------------------------------------
# Live rule graph
# ---------------------------------------------------------------------------


class LookupTableRow(Base):
    """Reference table. module_id NULL = shared between modules."""

    __tablename__ = "lookup_tables"

    table_id: Mapped[UUID] = mapped_column(primary_key=True)
    module_id: Mapped[UUID | None] = mapped_column(
        ForeignKey("expertise_modules.module_id", ondelete="CASCADE"),
        nullable=True, index=True,
    )
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    description: Mapped[str] = mapped_column(Text, default="")
    key_field: Mapped[str] = mapped_column(String(100), nullable=False)
    value_schema = mapped_column(FlexJSON, nullable=False, default=list)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)


class LookupEntryRow(Base):
    """key -> values record. Keys are stored normalized (upper-cased)."""

    __tablename__ = "lookup_entries"
    __table_args__ = (
        UniqueConstraint("table_id", "key", name="uq_lookup_entry_table_key"),
    )

    entry_id: Mapped[UUID] = mapped_column(primary_key=True)
    table_id: Mapped[UUID] = mapped_column(
        ForeignKey("lookup_tables.table_id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    key: Mapped[str] = mapped_column(String(255), nullable=False)
    entry_values = mapped_column(FlexJSON, nullable=False, default=dict)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)


class DecoderRow(Base):
    __tablename__ = "decoders"

    decoder_id: Mapped[UUID] = mapped_column(primary_key=True)
    module_id: Mapped[UUID] = mapped_column(
        ForeignKey("expertise_modules.module_id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    identifier_type: Mapped[str] = mapped_column(String(50), nullable=False, index=True)
    description: Mapped[str] = mapped_column(Text, default="")
    input_pattern: Mapped[str] = mapped_column(String(500), nullable=False)
    input_max_length: Mapped[int] = mapped_column(Integer, nullable=False, default=50)
    extraction_rules = mapped_column(FlexJSON, nullable=False, default=list)
    lookup_table_id: Mapped[UUID | None] = mapped_column(
        ForeignKey("lookup_tables.table_id", ondelete="SET NULL"), nullable=True,
    )
    lookup_key_group: Mapped[int | None] = mapped_column(Integer, nullable=True)
    validation_rules = mapped_column(FlexJSON, nullable=False, default=list)
    output_fields = mapped_column(FlexJSON, nullable=False, default=list)
    base_confidence: Mapped[float] = mapped_column(Float, nullable=False, default=0.9)
    priority: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    test_cases = mapped_column(FlexJSON, nullable=False, default=list)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)


class ValueDriverRow(Base):
    __tablename__ = "value_drivers"

    driver_id: Mapped[UUID] = mapped_column(primary_key=True)
    module_id: Mapped[UUID] = mapped_column(
        ForeignKey("expertise_modules.module_id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    description: Mapped[str] = mapped_column(Text, default="")
    attribute: Mapped[str] = mapped_column(String(100), nullable=False)
    condition_type: Mapped[str] = mapped_column(String(20), nullable=False)
    # Plain string or structured {min, max, pattern, flags, expression}
    condition_value = mapped_column(FlexJSON, nullable=False)
    case_sensitive: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    price_multiplier: Mapped[float] = mapped_column(Float, nullable=False)
    priority: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    applicable_brands = mapped_column(FlexJSON, nullable=False, default=list)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)


class AuthenticityMarkerRow(Base):
    __tablename__ = "authenticity_markers"

    marker_id: Mapped[UUID] = mapped_column(primary_key=True)
    module_id: Mapped[UUID] = mapped_column(
        ForeignKey("expertise_modules.module_id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    check_description: Mapped[str] = mapped_column(Text, default="")
    pattern: Mapped[str | None] = mapped_column(String(500), nullable=True)
    pattern_max_length: Mapped[int] = mapped_column(Integer, nullable=False, default=50)
    identifier_type: Mapped[str | None] = mapped_column(String(50), nullable=True)
    importance: Mapped[str] = mapped_column(String(20), nullable=False)
    indicates_authentic: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    applicable_brands = mapped_column(FlexJSON, nullable=False, default=list)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)


# ---------------------------------------------------------------------------
# Versions (IMMUTABLE)
# ---------------------------------------------------------------------------


class ExpertiseVersionRow(Base):
    """Append-only published snapshot. Only is_active is ever updated."""

    __tablename__ = "expertise_versions"
    __table_args__ = (
        UniqueConstraint("module_id", "version", name="uq_expertise_module_version"),
        Index(
            "uq_expertise_versions_active",
            "module_id",
            unique=True,
            postgresql_where=text("is_active"),
            sqlite_where=text("is_active"),
        ),
    )

    version_id: Mapped[UUID] = mapped_column(primary_key=True)
    module_id: Mapped[UUID] = mapped_column(
        ForeignKey("expertise_modules.module_id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    version: Mapped[int] = mapped_column(Integer, nullable=False)
    changelog: Mapped[str] = mapped_column(Text, nullable=False)
    published_by: Mapped[UUID | None] = mapped_column(nullable=True)
    published_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    restored_from_version: Mapped[int | None] = mapped_column(Integer, nullable=True)
    snapshot = mapped_column(FlexJSON, nullable=False)
