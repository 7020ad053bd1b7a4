"""Domain expertise repositories.

ExpertiseModuleRepository: modules and their live rule graph.
ExpertiseVersionRepository: append-only published versions.

Repositories call add()/flush()/refresh() only, never commit(). Row <->
model conversion lives here so services work with pydantic models.
"""

from datetime import datetime
from typing import Any
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from src.db.tables import (
    AuthenticityMarkerRow,
    DecoderRow,
    ExpertiseModuleRow,
    ExpertiseVersionRow,
    LookupEntryRow,
    LookupTableRow,
    ValueDriverRow,
)
from src.models.common import ModuleStatus, utc_now
from src.models.module import (
    DefinitionKind,
    DomainExpertiseModule,
    DomainExpertiseSnapshot,
    DomainExpertiseVersion,
    RuleSet,
)
from src.models.rules import (
    AuthenticityMarkerDefinition,
    DecoderDefinition,
    LookupEntry,
    LookupTable,
    ValueDriverDefinition,
)

# ---------------------------------------------------------------------------
# Row <-> model conversion
# ---------------------------------------------------------------------------


def _dump_list(items: list[Any]) -> list[Any]:
    return [item.model_dump(mode="json") for item in items]


def module_from_row(row: ExpertiseModuleRow) -> DomainExpertiseModule:
    return DomainExpertiseModule(
        id=row.module_id,
        name=row.name,
        description=row.description or "",
        category_id=row.category_id,
        applicable_brands=list(row.applicable_brands or []),
        status=ModuleStatus(row.status),
        current_version=row.current_version,
        created_by=row.created_by,
        last_modified_by=row.last_modified_by,
        created_at=row.created_at,
        updated_at=row.updated_at,
        published_at=row.published_at,
    )


def decoder_from_row(row: DecoderRow) -> DecoderDefinition:
    return DecoderDefinition.model_validate({
        "id": row.decoder_id,
        "module_id": row.module_id,
        "name": row.name,
        "identifier_type": row.identifier_type,
        "description": row.description or "",
        "input_pattern": row.input_pattern,
        "input_max_length": row.input_max_length,
        "extraction_rules": row.extraction_rules or [],
        "lookup_table_id": row.lookup_table_id,
        "lookup_key_group": row.lookup_key_group,
        "validation_rules": row.validation_rules or [],
        "output_fields": row.output_fields or [],
        "base_confidence": row.base_confidence,
        "priority": row.priority,
        "is_active": row.is_active,
        "test_cases": row.test_cases or [],
    })


def decoder_to_row(decoder: DecoderDefinition, module_id: UUID) -> DecoderRow:
    return DecoderRow(
        decoder_id=decoder.id,
        module_id=module_id,
        name=decoder.name,
        identifier_type=decoder.identifier_type,
        description=decoder.description,
        input_pattern=decoder.input_pattern,
        input_max_length=decoder.input_max_length,
        extraction_rules=_dump_list(decoder.extraction_rules),
        lookup_table_id=decoder.lookup_table_id,
        lookup_key_group=decoder.lookup_key_group,
        validation_rules=_dump_list(decoder.validation_rules),
        output_fields=_dump_list(decoder.output_fields),
        base_confidence=decoder.base_confidence,
        priority=decoder.priority,
        is_active=decoder.is_active,
        test_cases=_dump_list(decoder.test_cases),
        created_at=utc_now(),
    )


def lookup_table_from_row(row: LookupTableRow) -> LookupTable:
    return LookupTable.model_validate({
        "id": row.table_id,
        "module_id": row.module_id,
        "name": row.name,
        "description": row.description or "",
        "key_field": row.key_field,
        "value_schema": row.value_schema or [],
        "is_active": row.is_active,
    })


def lookup_table_to_row(table: LookupTable, module_id: UUID | None) -> LookupTableRow:
    return LookupTableRow(
        table_id=table.id,
        module_id=module_id,
        name=table.name,
        description=table.description,
        key_field=table.key_field,
        value_schema=_dump_list(table.value_schema),
        is_active=table.is_active,
        created_at=utc_now(),
    )


def lookup_entry_from_row(row: LookupEntryRow) -> LookupEntry:
    return LookupEntry(
        id=row.entry_id,
        table_id=row.table_id,
        key=row.key,
        values=dict(row.entry_values or {}),
        is_active=row.is_active,
    )


def lookup_entry_to_row(entry: LookupEntry) -> LookupEntryRow:
    return LookupEntryRow(
        entry_id=entry.id,
        table_id=entry.table_id,
        key=entry.key,
        entry_values=dict(entry.values),
        is_active=entry.is_active,
        created_at=utc_now(),
    )


def value_driver_from_row(row: ValueDriverRow) -> ValueDriverDefinition:
    return ValueDriverDefinition.model_validate({
        "id": row.driver_id,
        "module_id": row.module_id,
        "name": row.name,
        "description": row.description or "",
        "attribute": row.attribute,
        "condition_type": row.condition_type,
        "condition_value": row.condition_value,
        "case_sensitive": row.case_sensitive,
        "price_multiplier": row.price_multiplier,
        "priority": row.priority,
        "applicable_brands": row.applicable_brands or [],
        "is_active": row.is_active,
    })


def value_driver_to_row(driver: ValueDriverDefinition, module_id: UUID) -> ValueDriverRow:
    condition = driver.condition_value
    return ValueDriverRow(
        driver_id=driver.id,
        module_id=module_id,
        name=driver.name,
        description=driver.description,
        attribute=driver.attribute,
        condition_type=driver.condition_type.value,
        condition_value=(
            condition if isinstance(condition, str)
            else condition.model_dump(mode="json", exclude_none=True)
        ),
        case_sensitive=driver.case_sensitive,
        price_multiplier=driver.price_multiplier,
        priority=driver.priority,
        applicable_brands=list(driver.applicable_brands),
        is_active=driver.is_active,
        created_at=utc_now(),
    )


def marker_from_row(row: AuthenticityMarkerRow) -> AuthenticityMarkerDefinition:
    return AuthenticityMarkerDefinition.model_validate({
        "id": row.marker_id,
        "module_id": row.module_id,
        "name": row.name,
        "check_description": row.check_description or "",
        "pattern": row.pattern,
        "pattern_max_length": row.pattern_max_length,
        "identifier_type": row.identifier_type,
        "importance": row.importance,
        "indicates_authentic": row.indicates_authentic,
        "applicable_brands": row.applicable_brands or [],
        "is_active": row.is_active,
    })


def marker_to_row(marker: AuthenticityMarkerDefinition, module_id: UUID) -> AuthenticityMarkerRow:
    return AuthenticityMarkerRow(
        marker_id=marker.id,
        module_id=module_id,
        name=marker.name,
        check_description=marker.check_description,
        pattern=marker.pattern,
        pattern_max_length=marker.pattern_max_length,
        identifier_type=marker.identifier_type,
        importance=marker.importance.value,
        indicates_authentic=marker.indicates_authentic,
        applicable_brands=list(marker.applicable_brands),
        is_active=marker.is_active,
        created_at=utc_now(),
    )


def version_from_row(row: ExpertiseVersionRow) -> DomainExpertiseVersion:
    return DomainExpertiseVersion(
        id=row.version_id,
        module_id=row.module_id,
        version=row.version,
        changelog=row.changelog,
        published_by=row.published_by,
        published_at=row.published_at,
        is_active=row.is_active,
        restored_from_version=row.restored_from_version,
        snapshot=DomainExpertiseSnapshot.model_validate(row.snapshot),
    )


_DEFINITION_ROWS: dict[DefinitionKind, tuple[type, str]] = {
    DefinitionKind.DECODER: (DecoderRow, "decoder_id"),
    DefinitionKind.LOOKUP_TABLE: (LookupTableRow, "table_id"),
    DefinitionKind.LOOKUP_ENTRY: (LookupEntryRow, "entry_id"),
    DefinitionKind.VALUE_DRIVER: (ValueDriverRow, "driver_id"),
    DefinitionKind.AUTHENTICITY_MARKER: (AuthenticityMarkerRow, "marker_id"),
}


# ---------------------------------------------------------------------------
# Modules and live rule graph
# ---------------------------------------------------------------------------


class ExpertiseModuleRepository:
    """Repository for modules and their live rule definitions."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    # --- Modules ---

    async def create_module(self, module: DomainExpertiseModule) -> ExpertiseModuleRow:
        row = ExpertiseModuleRow(
            module_id=module.id,
            name=module.name,
            description=module.description,
            category_id=module.category_id,
            applicable_brands=list(module.applicable_brands),
            status=module.status.value,
            current_version=module.current_version,
            created_by=module.created_by,
            last_modified_by=module.last_modified_by or module.created_by,
            created_at=module.created_at,
            updated_at=module.updated_at,
            published_at=module.published_at,
        )
        self._session.add(row)
        await self._session.flush()
        await self._session.refresh(row)
        return row

    async def get_module(self, module_id: UUID) -> ExpertiseModuleRow | None:
        result = await self._session.execute(
            select(ExpertiseModuleRow).where(ExpertiseModuleRow.module_id == module_id),
        )
        return result.scalar_one_or_none()

    async def list_modules(
        self,
        *,
        category_id: str | None = None,
        status: ModuleStatus | None = None,
    ) -> list[ExpertiseModuleRow]:
        stmt = select(ExpertiseModuleRow)
        if category_id:
            stmt = stmt.where(ExpertiseModuleRow.category_id == category_id)
        if status is not None:
            stmt = stmt.where(ExpertiseModuleRow.status == status.value)
        stmt = stmt.order_by(ExpertiseModuleRow.created_at, ExpertiseModuleRow.module_id)
        result = await self._session.execute(stmt)
        return list(result.scalars().all())

    async def update_status(
        self,
        module_id: UUID,
        *,
        status: ModuleStatus,
        modified_by: UUID | None = None,
        current_version: int | None = None,
        published_at: datetime | None = None,
    ) -> ExpertiseModuleRow | None:
        """Status, version counter and audit fields are the only mutable columns."""
        row = await self.get_module(module_id)
        if row is None:
            return None
        row.status = status.value
        if current_version is not None:
            row.current_version = current_version
        if published_at is not None:
            row.published_at = published_at
        if modified_by is not None:
            row.last_modified_by = modified_by
        row.updated_at = utc_now()
        await self._session.flush()
        await self._session.refresh(row)
        return row

    async def touch(self, module_id: UUID, modified_by: UUID | None = None) -> None:
        row = await self.get_module(module_id)
        if row is None:
            return
        if modified_by is not None:
            row.last_modified_by = modified_by
        row.updated_at = utc_now()
        await self._session.flush()

    # --- Definitions ---

    async def add_decoder(self, decoder: DecoderDefinition, module_id: UUID) -> DecoderRow:
        row = decoder_to_row(decoder, module_id)
        self._session.add(row)
        await self._session.flush()
        await self._session.refresh(row)
        return row

    async def add_lookup_table(
        self, table: LookupTable, module_id: UUID | None,
    ) -> LookupTableRow:
        row = lookup_table_to_row(table, module_id)
        self._session.add(row)
        await self._session.flush()
        await self._session.refresh(row)
        return row

    async def add_lookup_entries(self, entries: list[LookupEntry]) -> list[LookupEntryRow]:
        rows = [lookup_entry_to_row(entry) for entry in entries]
        self._session.add_all(rows)
        await self._session.flush()
        return rows

    async def update_lookup_entry_values(
        self, entry_id: UUID, values: dict[str, Any],
    ) -> LookupEntryRow | None:
        row = await self.get_definition_row(DefinitionKind.LOOKUP_ENTRY, entry_id)
        if row is None:
            return None
        row.entry_values = dict(values)
        await self._session.flush()
        await self._session.refresh(row)
        return row

    async def add_value_driver(
        self, driver: ValueDriverDefinition, module_id: UUID,
    ) -> ValueDriverRow:
        row = value_driver_to_row(driver, module_id)
        self._session.add(row)
        await self._session.flush()
        await self._session.refresh(row)
        return row

    async def add_authenticity_marker(
        self, marker: AuthenticityMarkerDefinition, module_id: UUID,
    ) -> AuthenticityMarkerRow:
        row = marker_to_row(marker, module_id)
        self._session.add(row)
        await self._session.flush()
        await self._session.refresh(row)
        return row

    async def get_definition_row(self, kind: DefinitionKind, definition_id: UUID):
        row_cls, pk = _DEFINITION_ROWS[kind]
        result = await self._session.execute(
            select(row_cls).where(getattr(row_cls, pk) == definition_id),
        )
        return result.scalar_one_or_none()

    async def get_lookup_table(self, table_id: UUID) -> LookupTable | None:
        row = await self.get_definition_row(DefinitionKind.LOOKUP_TABLE, table_id)
        return lookup_table_from_row(row) if row is not None else None

    async def list_lookup_entries(self, table_id: UUID) -> list[LookupEntry]:
        result = await self._session.execute(
            select(LookupEntryRow)
            .where(LookupEntryRow.table_id == table_id)
            .order_by(LookupEntryRow.key),
        )
        return [lookup_entry_from_row(r) for r in result.scalars().all()]

    async def list_lookup_tables(self, table_ids: list[UUID]) -> list[LookupTable]:
        if not table_ids:
            return []
        result = await self._session.execute(
            select(LookupTableRow).where(LookupTableRow.table_id.in_(table_ids)),
        )
        return [lookup_table_from_row(r) for r in result.scalars().all()]

    async def list_lookup_entries_for_tables(self, table_ids: list[UUID]) -> list[LookupEntry]:
        if not table_ids:
            return []
        result = await self._session.execute(
            select(LookupEntryRow)
            .where(LookupEntryRow.table_id.in_(table_ids))
            .order_by(LookupEntryRow.table_id, LookupEntryRow.key),
        )
        return [lookup_entry_from_row(r) for r in result.scalars().all()]

    async def set_definition_active(
        self, kind: DefinitionKind, definition_id: UUID, is_active: bool,
    ) -> bool:
        row = await self.get_definition_row(kind, definition_id)
        if row is None:
            return False
        row.is_active = is_active
        await self._session.flush()
        return True

    async def delete_definition(self, kind: DefinitionKind, definition_id: UUID) -> bool:
        row = await self.get_definition_row(kind, definition_id)
        if row is None:
            return False
        if kind == DefinitionKind.LOOKUP_TABLE:
            for entry in await self._entry_rows([definition_id]):
                await self._session.delete(entry)
        await self._session.delete(row)
        await self._session.flush()
        return True

    async def set_driver_priorities(self, priorities: dict[UUID, int]) -> None:
        if not priorities:
            return
        result = await self._session.execute(
            select(ValueDriverRow).where(ValueDriverRow.driver_id.in_(list(priorities))),
        )
        for row in result.scalars().all():
            row.priority = priorities[row.driver_id]
        await self._session.flush()

    # --- Whole rule graph ---

    async def _rows(self, row_cls, module_id: UUID) -> list:
        result = await self._session.execute(
            select(row_cls)
            .where(row_cls.module_id == module_id)
            .order_by(row_cls.created_at, row_cls.name),
        )
        return list(result.scalars().all())

    async def _entry_rows(self, table_ids: list[UUID]) -> list[LookupEntryRow]:
        if not table_ids:
            return []
        result = await self._session.execute(
            select(LookupEntryRow)
            .where(LookupEntryRow.table_id.in_(table_ids))
            .order_by(LookupEntryRow.table_id, LookupEntryRow.key),
        )
        return list(result.scalars().all())

    async def load_rule_set(self, module_id: UUID) -> RuleSet:
        """Load the module's live rule graph, inactive definitions included.

        Only module-scoped lookup tables (and their entries) are part of it.
        """
        table_rows = await self._rows(LookupTableRow, module_id)
        entry_rows = await self._entry_rows([r.table_id for r in table_rows])
        return RuleSet(
            decoders=[decoder_from_row(r) for r in await self._rows(DecoderRow, module_id)],
            lookup_tables=[lookup_table_from_row(r) for r in table_rows],
            lookup_entries=[lookup_entry_from_row(r) for r in entry_rows],
            value_drivers=[
                value_driver_from_row(r) for r in await self._rows(ValueDriverRow, module_id)
            ],
            authenticity_markers=[
                marker_from_row(r) for r in await self._rows(AuthenticityMarkerRow, module_id)
            ],
        )

    async def replace_rule_set(self, module_id: UUID, rule_set: RuleSet) -> None:
        """Replace the module's live rule graph with ``rule_set`` (ids kept).

        Shared lookup tables are never touched.
        """
        table_rows = await self._rows(LookupTableRow, module_id)
        doomed: list = []
        doomed.extend(await self._rows(DecoderRow, module_id))
        doomed.extend(await self._rows(ValueDriverRow, module_id))
        doomed.extend(await self._rows(AuthenticityMarkerRow, module_id))
        doomed.extend(await self._entry_rows([r.table_id for r in table_rows]))
        doomed.extend(table_rows)
        for row in doomed:
            await self._session.delete(row)
        await self._session.flush()

        self._session.add_all([lookup_table_to_row(t, module_id) for t in rule_set.lookup_tables])
        await self._session.flush()
        self._session.add_all([lookup_entry_to_row(e) for e in rule_set.lookup_entries])
        self._session.add_all([decoder_to_row(d, module_id) for d in rule_set.decoders])
        self._session.add_all([value_driver_to_row(v, module_id) for v in rule_set.value_drivers])
        self._session.add_all(
            [marker_to_row(m, module_id) for m in rule_set.authenticity_markers],
        )
        await self._session.flush()


# ---------------------------------------------------------------------------
# Versions
# ---------------------------------------------------------------------------


class ExpertiseVersionRepository:
    """Repository for published versions. Rows are never deleted."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def create(self, version: DomainExpertiseVersion) -> ExpertiseVersionRow:
        row = ExpertiseVersionRow(
            version_id=version.id,
            module_id=version.module_id,
            version=version.version,
            changelog=version.changelog,
            published_by=version.published_by,
            published_at=version.published_at,
            is_active=version.is_active,
            restored_from_version=version.restored_from_version,
            snapshot=version.snapshot.model_dump(mode="json"),
        )
        self._session.add(row)
        await self._session.flush()
        await self._session.refresh(row)
        return row

    async def get(self, version_id: UUID) -> ExpertiseVersionRow | None:
        result = await self._session.execute(
            select(ExpertiseVersionRow).where(ExpertiseVersionRow.version_id == version_id),
        )
        return result.scalar_one_or_none()

    async def get_by_number(self, module_id: UUID, version: int) -> ExpertiseVersionRow | None:
        result = await self._session.execute(
            select(ExpertiseVersionRow).where(
                ExpertiseVersionRow.module_id == module_id,
                ExpertiseVersionRow.version == version,
            ),
        )
        return result.scalar_one_or_none()

    async def get_active(self, module_id: UUID) -> ExpertiseVersionRow | None:
        result = await self._session.execute(
            select(ExpertiseVersionRow).where(
                ExpertiseVersionRow.module_id == module_id,
                ExpertiseVersionRow.is_active.is_(True),
            ),
        )
        return result.scalars().first()

    async def list_for_module(self, module_id: UUID) -> list[ExpertiseVersionRow]:
        result = await self._session.execute(
            select(ExpertiseVersionRow)
            .where(ExpertiseVersionRow.module_id == module_id)
            .order_by(ExpertiseVersionRow.version.desc()),
        )
        return list(result.scalars().all())

    async def deactivate_all(self, module_id: UUID) -> int:
        """Clear is_active on every version of the module; returns how many flipped."""
        result = await self._session.execute(
            select(ExpertiseVersionRow).where(
                ExpertiseVersionRow.module_id == module_id,
                ExpertiseVersionRow.is_active.is_(True),
            ),
        )
        rows = list(result.scalars().all())
        for row in rows:
            row.is_active = False
        await self._session.flush()
        return len(rows)
