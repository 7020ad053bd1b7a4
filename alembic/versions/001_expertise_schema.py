"""Expertise schema: modules, live rule graph, published versions.

Revision ID: 001
Revises:
Create Date: 2026-10-19
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import JSONB, UUID

revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # -- Aggregate root --
    op.create_table(
        "expertise_modules",
        sa.Column("module_id", UUID(as_uuid=True), primary_key=True),
        sa.Column("name", sa.String(100), nullable=False),
        sa.Column("description", sa.Text, server_default=""),
        sa.Column("category_id", sa.String(100), nullable=False),
        sa.Column("applicable_brands", JSONB, nullable=False),
        sa.Column("status", sa.String(20), nullable=False, server_default="draft"),
        sa.Column("current_version", sa.Integer, nullable=False, server_default="0"),
        sa.Column("created_by", UUID(as_uuid=True), nullable=True),
        sa.Column("last_modified_by", UUID(as_uuid=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("published_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index("ix_expertise_modules_category_id", "expertise_modules", ["category_id"])

    # -- Live rule graph --
    op.create_table(
        "lookup_tables",
        sa.Column("table_id", UUID(as_uuid=True), primary_key=True),
        sa.Column("module_id", UUID(as_uuid=True),
                  sa.ForeignKey("expertise_modules.module_id", ondelete="CASCADE"),
                  nullable=True),
        sa.Column("name", sa.String(100), nullable=False),
        sa.Column("description", sa.Text, server_default=""),
        sa.Column("key_field", sa.String(100), nullable=False),
        sa.Column("value_schema", JSONB, nullable=False),
        sa.Column("is_active", sa.Boolean, nullable=False, server_default=sa.true()),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_lookup_tables_module_id", "lookup_tables", ["module_id"])

    op.create_table(
        "lookup_entries",
        sa.Column("entry_id", UUID(as_uuid=True), primary_key=True),
        sa.Column("table_id", UUID(as_uuid=True),
                  sa.ForeignKey("lookup_tables.table_id", ondelete="CASCADE"),
                  nullable=False),
        sa.Column("key", sa.String(255), nullable=False),
        sa.Column("entry_values", JSONB, nullable=False),
        sa.Column("is_active", sa.Boolean, nullable=False, server_default=sa.true()),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.UniqueConstraint("table_id", "key", name="uq_lookup_entry_table_key"),
    )
    op.create_index("ix_lookup_entries_table_id", "lookup_entries", ["table_id"])

    op.create_table(
        "decoders",
        sa.Column("decoder_id", UUID(as_uuid=True), primary_key=True),
        sa.Column("module_id", UUID(as_uuid=True),
                  sa.ForeignKey("expertise_modules.module_id", ondelete="CASCADE"),
                  nullable=False),
        sa.Column("name", sa.String(100), nullable=False),
        sa.Column("identifier_type", sa.String(50), nullable=False),
        sa.Column("description", sa.Text, server_default=""),
        sa.Column("input_pattern", sa.String(500), nullable=False),
        sa.Column("input_max_length", sa.Integer, nullable=False, server_default="50"),
        sa.Column("extraction_rules", JSONB, nullable=False),
        sa.Column("lookup_table_id", UUID(as_uuid=True),
                  sa.ForeignKey("lookup_tables.table_id", ondelete="SET NULL"),
                  nullable=True),
        sa.Column("lookup_key_group", sa.Integer, nullable=True),
        sa.Column("validation_rules", JSONB, nullable=False),
        sa.Column("output_fields", JSONB, nullable=False),
        sa.Column("base_confidence", sa.Float, nullable=False, server_default="0.9"),
        sa.Column("priority", sa.Integer, nullable=False, server_default="0"),
        sa.Column("is_active", sa.Boolean, nullable=False, server_default=sa.true()),
        sa.Column("test_cases", JSONB, nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_decoders_module_id", "decoders", ["module_id"])
    op.create_index("ix_decoders_identifier_type", "decoders", ["identifier_type"])

    op.create_table(
        "value_drivers",
        sa.Column("driver_id", UUID(as_uuid=True), primary_key=True),
        sa.Column("module_id", UUID(as_uuid=True),
                  sa.ForeignKey("expertise_modules.module_id", ondelete="CASCADE"),
                  nullable=False),
        sa.Column("name", sa.String(100), nullable=False),
        sa.Column("description", sa.Text, server_default=""),
        sa.Column("attribute", sa.String(100), nullable=False),
        sa.Column("condition_type", sa.String(20), nullable=False),
        sa.Column("condition_value", JSONB, nullable=False),
        sa.Column("case_sensitive", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column("price_multiplier", sa.Float, nullable=False),
        sa.Column("priority", sa.Integer, nullable=False, server_default="0"),
        sa.Column("applicable_brands", JSONB, nullable=False),
        sa.Column("is_active", sa.Boolean, nullable=False, server_default=sa.true()),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_value_drivers_module_id", "value_drivers", ["module_id"])

    op.create_table(
        "authenticity_markers",
        sa.Column("marker_id", UUID(as_uuid=True), primary_key=True),
        sa.Column("module_id", UUID(as_uuid=True),
                  sa.ForeignKey("expertise_modules.module_id", ondelete="CASCADE"),
                  nullable=False),
        sa.Column("name", sa.String(100), nullable=False),
        sa.Column("check_description", sa.Text, server_default=""),
        sa.Column("pattern", sa.String(500), nullable=True),
        sa.Column("pattern_max_length", sa.Integer, nullable=False, server_default="50"),
        sa.Column("identifier_type", sa.String(50), nullable=True),
        sa.Column("importance", sa.String(20), nullable=False),
        sa.Column("indicates_authentic", sa.Boolean, nullable=False, server_default=sa.true()),
        sa.Column("applicable_brands", JSONB, nullable=False),
        sa.Column("is_active", sa.Boolean, nullable=False, server_default=sa.true()),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_authenticity_markers_module_id", "authenticity_markers", ["module_id"])

    # -- Versions (IMMUTABLE, only is_active flips) --
    op.create_table(
        "expertise_versions",
        sa.Column("version_id", UUID(as_uuid=True), primary_key=True),
        sa.Column("module_id", UUID(as_uuid=True),
                  sa.ForeignKey("expertise_modules.module_id", ondelete="CASCADE"),
                  nullable=False),
        sa.Column("version", sa.Integer, nullable=False),
        sa.Column("changelog", sa.Text, nullable=False),
        sa.Column("published_by", UUID(as_uuid=True), nullable=True),
        sa.Column("published_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("is_active", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column("restored_from_version", sa.Integer, nullable=True),
        sa.Column("snapshot", JSONB, nullable=False),
        sa.UniqueConstraint("module_id", "version", name="uq_expertise_module_version"),
    )
    op.create_index("ix_expertise_versions_module_id", "expertise_versions", ["module_id"])
    # At most one active version per module
    op.create_index(
        "uq_expertise_versions_active",
        "expertise_versions",
        ["module_id"],
        unique=True,
        postgresql_where=sa.text("is_active"),
    )


def downgrade() -> None:
    op.drop_table("expertise_versions")
    op.drop_table("authenticity_markers")
    op.drop_table("value_drivers")
    op.drop_table("decoders")
    op.drop_table("lookup_entries")
    op.drop_table("lookup_tables")
    op.drop_table("expertise_modules")
