"""Authoring operations on a module's live (draft) rule graph.

Patterns are checked with the pattern validator before anything is
persisted: invalid or dangerous patterns are refused with ``ValueError``.
Archived modules are read-only.
"""

from __future__ import annotations

import logging
from typing import Any, Literal
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from src.engine.config import DEFAULT_ENGINE_CONFIG, EngineConfig
from src.engine.decoder import run_test_cases
from src.engine.lookup import (
    ImportResult,
    InMemoryLookupResolver,
    import_entries,
    validate_value_schema,
)
from src.engine.pattern_validator import PatternValidator
from src.models.common import ConditionType, ModuleStatus, ValidationRuleType
from src.models.module import DefinitionKind, DomainExpertiseModule, RuleSet
from src.models.results import DecoderTestCaseResult
from src.models.rules import (
    AuthenticityMarkerDefinition,
    DecoderDefinition,
    LookupEntry,
    LookupTable,
    ValueDriverDefinition,
)
from src.repositories.expertise import ExpertiseModuleRepository, module_from_row
from src.versioning.snapshots import clone_rule_set

logger = logging.getLogger(__name__)

RetireOutcome = Literal["deactivated", "deleted"]


class ModuleAuthoringService:
    """Create modules and edit their live rule definitions."""

    def __init__(self, session: AsyncSession, config: EngineConfig | None = None) -> None:
        self._modules = ExpertiseModuleRepository(session)
        self._config = config or DEFAULT_ENGINE_CONFIG
        self._validator = PatternValidator(self._config)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    async def get_module(self, module_id: UUID) -> DomainExpertiseModule:
        row = await self._modules.get_module(module_id)
        if row is None:
            msg = f"Module {module_id} not found."
            raise KeyError(msg)
        return module_from_row(row)

    async def _editable_module(self, module_id: UUID) -> DomainExpertiseModule:
        module = await self.get_module(module_id)
        if module.status == ModuleStatus.ARCHIVED:
            msg = f"Module {module_id} is archived and cannot be edited."
            raise ValueError(msg)
        return module

    def _require_safe_pattern(
        self, pattern: str | None, label: str, *, require_anchors: bool = False,
    ) -> list[str]:
        """Raise ValueError for invalid/dangerous patterns; return advisory warnings."""
        if not pattern:
            return []
        result = self._validator.validate(pattern, require_anchors=require_anchors)
        if not result.valid:
            msg = f"Unsafe {label} pattern ({result.estimated_complexity.value}): " + "; ".join(
                result.warnings,
            )
            raise ValueError(msg)
        for warning in result.warnings:
            logger.info("%s pattern %r: %s", label, pattern, warning)
        return result.warnings

    # ------------------------------------------------------------------
    # Modules
    # ------------------------------------------------------------------

    async def create_module(
        self,
        name: str,
        category_id: str,
        *,
        description: str = "",
        applicable_brands: list[str] | None = None,
        created_by: UUID | None = None,
    ) -> DomainExpertiseModule:
        module = DomainExpertiseModule(
            name=name,
            category_id=category_id,
            description=description,
            applicable_brands=applicable_brands or [],
            created_by=created_by,
            last_modified_by=created_by,
        )
        row = await self._modules.create_module(module)
        logger.info("Created module %s (%s)", module.id, name)
        return module_from_row(row)

    async def list_modules(
        self,
        *,
        category_id: str | None = None,
        status: ModuleStatus | None = None,
    ) -> list[DomainExpertiseModule]:
        rows = await self._modules.list_modules(category_id=category_id, status=status)
        return [module_from_row(r) for r in rows]

    async def load_rule_set(self, module_id: UUID) -> RuleSet:
        """Live rule graph of a module (drafts and inactive definitions included)."""
        await self.get_module(module_id)
        return await self._modules.load_rule_set(module_id)

    async def duplicate_module(
        self,
        module_id: UUID,
        name: str,
        created_by: UUID | None = None,
    ) -> DomainExpertiseModule:
        """Copy a module's live rule graph into a new draft module."""
        source = await self.get_module(module_id)
        rule_set = await self._modules.load_rule_set(module_id)
        copy = await self.create_module(
            name,
            source.category_id,
            description=source.description,
            applicable_brands=list(source.applicable_brands),
            created_by=created_by,
        )
        await self._modules.replace_rule_set(copy.id, clone_rule_set(rule_set, copy.id))
        logger.info("Duplicated module %s into %s", module_id, copy.id)
        return copy

    # ------------------------------------------------------------------
    # Definitions
    # ------------------------------------------------------------------

    async def add_decoder(
        self,
        module_id: UUID,
        decoder: DecoderDefinition,
        modified_by: UUID | None = None,
    ) -> DecoderDefinition:
        await self._editable_module(module_id)
        self._require_safe_pattern(decoder.input_pattern, "decoder input", require_anchors=True)
        for rule in decoder.validation_rules:
            if rule.type == ValidationRuleType.REGEX:
                self._require_safe_pattern(rule.config.pattern, f"validation rule '{rule.field}'")
        if decoder.lookup_table_id is not None:
            table = await self._modules.get_lookup_table(decoder.lookup_table_id)
            if table is None or table.module_id not in (None, module_id):
                msg = f"Lookup table {decoder.lookup_table_id} is not available to this module."
                raise ValueError(msg)

        decoder = decoder.model_copy(update={"module_id": module_id})
        await self._modules.add_decoder(decoder, module_id)
        await self._modules.touch(module_id, modified_by)
        return decoder

    async def add_value_driver(
        self,
        module_id: UUID,
        driver: ValueDriverDefinition,
        modified_by: UUID | None = None,
    ) -> ValueDriverDefinition:
        await self._editable_module(module_id)
        if driver.condition_type == ConditionType.REGEX:
            if not driver.condition_pattern:
                msg = "Regex value drivers need a pattern."
                raise ValueError(msg)
            self._require_safe_pattern(driver.condition_pattern, "value driver")
        driver = driver.model_copy(update={"module_id": module_id})
        await self._modules.add_value_driver(driver, module_id)
        await self._modules.touch(module_id, modified_by)
        return driver

    async def add_authenticity_marker(
        self,
        module_id: UUID,
        marker: AuthenticityMarkerDefinition,
        modified_by: UUID | None = None,
    ) -> AuthenticityMarkerDefinition:
        await self._editable_module(module_id)
        self._require_safe_pattern(marker.pattern, "authenticity marker")
        marker = marker.model_copy(update={"module_id": module_id})
        await self._modules.add_authenticity_marker(marker, module_id)
        await self._modules.touch(module_id, modified_by)
        return marker

    async def add_lookup_table(
        self,
        module_id: UUID | None,
        table: LookupTable,
    ) -> LookupTable:
        """Add a module-scoped table, or a shared one when ``module_id`` is None."""
        if module_id is not None:
            await self._editable_module(module_id)
        validate_value_schema(table.value_schema)
        table = table.model_copy(update={"module_id": module_id})
        await self._modules.add_lookup_table(table, module_id)
        return table

    async def add_lookup_entry(
        self,
        table_id: UUID,
        key: str,
        values: dict[str, Any],
    ) -> LookupEntry:
        result = await self.import_lookup_entries(table_id, [{"key": key, "values": values}])
        if result.errors:
            raise ValueError(result.errors[0][1])
        return result.created[0]

    async def import_lookup_entries(
        self,
        table_id: UUID,
        rows: list[dict[str, Any]],
        *,
        overwrite_existing: bool = False,
    ) -> ImportResult:
        """Bulk import ``{"key", "values"}`` rows; per-row problems are reported."""
        table = await self._modules.get_lookup_table(table_id)
        if table is None:
            msg = f"Lookup table {table_id} not found."
            raise KeyError(msg)
        if table.module_id is not None:
            await self._editable_module(table.module_id)

        existing = await self._modules.list_lookup_entries(table_id)
        result = import_entries(table, existing, rows, overwrite_existing=overwrite_existing)
        if result.created:
            await self._modules.add_lookup_entries(result.created)
        for entry in result.updated:
            await self._modules.update_lookup_entry_values(entry.id, entry.values)
        logger.info(
            "Imported into lookup table %s: %d created, %d updated, %d errors",
            table.name,
            len(result.created),
            len(result.updated),
            len(result.errors),
        )
        return result

    async def retire_definition(
        self,
        module_id: UUID,
        kind: DefinitionKind,
        definition_id: UUID,
        modified_by: UUID | None = None,
    ) -> RetireOutcome:
        """Remove a definition from the live rule graph.

        Once a module has published versions, definitions are deactivated
        rather than deleted so version comparisons stay meaningful.
        """
        module = await self._editable_module(module_id)
        row = await self._modules.get_definition_row(kind, definition_id)
        owner = row.module_id if row is not None and kind != DefinitionKind.LOOKUP_ENTRY else None
        if row is not None and kind == DefinitionKind.LOOKUP_ENTRY:
            table = await self._modules.get_lookup_table(row.table_id)
            owner = table.module_id if table is not None else None
        if row is None or owner != module_id:
            msg = f"{kind.value} {definition_id} not found in module {module_id}."
            raise KeyError(msg)

        if module.current_version > 0:
            await self._modules.set_definition_active(kind, definition_id, False)
            outcome: RetireOutcome = "deactivated"
        else:
            await self._modules.delete_definition(kind, definition_id)
            outcome = "deleted"
        await self._modules.touch(module_id, modified_by)
        logger.info("Retired %s %s (%s)", kind.value, definition_id, outcome)
        return outcome

    async def reorder_value_drivers(
        self,
        module_id: UUID,
        ordered_ids: list[UUID],
        modified_by: UUID | None = None,
    ) -> list[ValueDriverDefinition]:
        """Assign descending priorities following ``ordered_ids`` (first = highest)."""
        await self._editable_module(module_id)
        rule_set = await self._modules.load_rule_set(module_id)
        known = {d.id for d in rule_set.value_drivers}
        unknown = [i for i in ordered_ids if i not in known]
        if unknown or len(set(ordered_ids)) != len(ordered_ids):
            msg = "Driver order must list distinct value drivers of this module."
            raise ValueError(msg)

        total = len(ordered_ids)
        await self._modules.set_driver_priorities(
            {driver_id: total - index for index, driver_id in enumerate(ordered_ids)},
        )
        await self._modules.touch(module_id, modified_by)
        rule_set = await self._modules.load_rule_set(module_id)
        return rule_set.value_drivers

    # ------------------------------------------------------------------
    # Engine wiring
    # ------------------------------------------------------------------

    async def build_lookup_resolver(
        self, module_id: UUID, rule_set: RuleSet | None = None,
    ) -> InMemoryLookupResolver:
        """Resolver over the module's own tables plus referenced shared tables."""
        rule_set = rule_set or await self.load_rule_set(module_id)
        own = {t.id for t in rule_set.lookup_tables}
        shared_ids = sorted(
            {
                d.lookup_table_id for d in rule_set.decoders
                if d.lookup_table_id is not None and d.lookup_table_id not in own
            },
            key=str,
        )
        shared_tables = await self._modules.list_lookup_tables(shared_ids)
        shared_entries = await self._modules.list_lookup_entries_for_tables(shared_ids)
        return InMemoryLookupResolver(
            [*rule_set.lookup_tables, *shared_tables],
            [*rule_set.lookup_entries, *shared_entries],
        )

    async def run_decoder_tests(self, module_id: UUID) -> dict[str, list[DecoderTestCaseResult]]:
        """Replay every active decoder's stored test cases against the live rules."""
        rule_set = await self.load_rule_set(module_id)
        resolver = await self.build_lookup_resolver(module_id, rule_set)
        return {
            decoder.name: run_test_cases(decoder, resolver, config=self._config)
            for decoder in rule_set.decoders
            if decoder.is_active and decoder.test_cases
        }
