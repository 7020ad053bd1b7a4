"""Tests for ExpertiseModuleRepository and ExpertiseVersionRepository."""

import pytest
from sqlalchemy.ext.asyncio import AsyncSession
from uuid_extensions import uuid7

from src.models.common import ConditionType, MarkerImportance, ModuleStatus, utc_now
from src.models.module import DefinitionKind, DomainExpertiseModule, DomainExpertiseVersion
from src.models.rules import (
    AuthenticityMarkerDefinition,
    ConditionConfig,
    ValueDriverDefinition,
)
from src.repositories.expertise import ExpertiseModuleRepository, ExpertiseVersionRepository
from src.versioning.snapshots import build_snapshot


async def _module(repo: ExpertiseModuleRepository, name: str = "LV Bags", category: str = "handbags"):
    module = DomainExpertiseModule(name=name, category_id=category)
    await repo.create_module(module)
    return module


class TestModules:
    @pytest.mark.anyio
    async def test_create_and_get(self, db_session: AsyncSession) -> None:
        repo = ExpertiseModuleRepository(db_session)
        module = await _module(repo)
        row = await repo.get_module(module.id)
        assert row is not None
        assert row.status == "draft"
        assert row.current_version == 0
        assert await repo.get_module(uuid7()) is None

    @pytest.mark.anyio
    async def test_list_filters(self, db_session: AsyncSession) -> None:
        repo = ExpertiseModuleRepository(db_session)
        bags = await _module(repo)
        await _module(repo, "Rolex", "watches")
        await repo.update_status(bags.id, status=ModuleStatus.PUBLISHED, current_version=1)

        assert [r.name for r in await repo.list_modules(category_id="watches")] == ["Rolex"]
        published = await repo.list_modules(status=ModuleStatus.PUBLISHED)
        assert [r.module_id for r in published] == [bags.id]
        assert len(await repo.list_modules()) == 2

    @pytest.mark.anyio
    async def test_update_status(self, db_session: AsyncSession) -> None:
        repo = ExpertiseModuleRepository(db_session)
        module = await _module(repo)
        editor = uuid7()
        now = utc_now()
        row = await repo.update_status(
            module.id,
            status=ModuleStatus.PUBLISHED,
            modified_by=editor,
            current_version=1,
            published_at=now,
        )
        assert row.status == "published"
        assert row.current_version == 1
        assert row.last_modified_by == editor
        assert row.published_at is not None
        assert await repo.update_status(uuid7(), status=ModuleStatus.ARCHIVED) is None


class TestRuleGraph:
    @pytest.mark.anyio
    async def test_load_round_trip(
        self, db_session: AsyncSession, factory_table, factory_entries, date_code_decoder,
    ) -> None:
        repo = ExpertiseModuleRepository(db_session)
        module = await _module(repo)
        await repo.add_lookup_table(factory_table.model_copy(update={"module_id": module.id}), module.id)
        await repo.add_lookup_entries(factory_entries)
        decoder = date_code_decoder.model_copy(update={"module_id": module.id})
        await repo.add_decoder(decoder, module.id)
        driver = ValueDriverDefinition(
            module_id=module.id,
            name="Vintage",
            attribute="year",
            condition_type=ConditionType.RANGE,
            condition_value=ConditionConfig(min=1980, max=1999),
            price_multiplier=1.3,
        )
        await repo.add_value_driver(driver, module.id)
        marker = AuthenticityMarkerDefinition(
            module_id=module.id,
            name="Date code format",
            pattern=r"^[A-Z]{2}\d{4}$",
            identifier_type="lv_date_code",
            importance=MarkerImportance.CRITICAL,
        )
        await repo.add_authenticity_marker(marker, module.id)

        rule_set = await repo.load_rule_set(module.id)
        assert rule_set.decoders == [decoder]
        assert rule_set.value_drivers == [driver]
        assert rule_set.authenticity_markers == [marker]
        assert rule_set.lookup_tables[0].id == factory_table.id
        assert sorted(e.key for e in rule_set.lookup_entries) == ["AR", "SD"]

    @pytest.mark.anyio
    async def test_shared_tables_not_in_module_rule_set(
        self, db_session: AsyncSession, factory_table, factory_entries,
    ) -> None:
        repo = ExpertiseModuleRepository(db_session)
        module = await _module(repo)
        await repo.add_lookup_table(factory_table, None)
        await repo.add_lookup_entries(factory_entries)

        rule_set = await repo.load_rule_set(module.id)
        assert rule_set.lookup_tables == []
        assert rule_set.lookup_entries == []
        assert [t.name for t in await repo.list_lookup_tables([factory_table.id])] == [
            "LV Factory Codes",
        ]
        assert len(await repo.list_lookup_entries_for_tables([factory_table.id])) == 2
        assert await repo.list_lookup_tables([]) == []

    @pytest.mark.anyio
    async def test_deactivate_and_delete(self, db_session: AsyncSession) -> None:
        repo = ExpertiseModuleRepository(db_session)
        module = await _module(repo)
        marker = AuthenticityMarkerDefinition(
            name="Heat stamp", importance=MarkerImportance.IMPORTANT,
        )
        await repo.add_authenticity_marker(marker, module.id)

        assert await repo.set_definition_active(
            DefinitionKind.AUTHENTICITY_MARKER, marker.id, False,
        )
        rule_set = await repo.load_rule_set(module.id)
        assert rule_set.authenticity_markers[0].is_active is False

        assert await repo.delete_definition(DefinitionKind.AUTHENTICITY_MARKER, marker.id)
        assert (await repo.load_rule_set(module.id)).authenticity_markers == []
        assert not await repo.delete_definition(DefinitionKind.AUTHENTICITY_MARKER, marker.id)

    @pytest.mark.anyio
    async def test_replace_rule_set_keeps_ids(
        self, db_session: AsyncSession, factory_table, factory_entries, date_code_decoder,
    ) -> None:
        repo = ExpertiseModuleRepository(db_session)
        module = await _module(repo)
        await repo.add_lookup_table(factory_table, module.id)
        await repo.add_lookup_entries(factory_entries)
        await repo.add_decoder(date_code_decoder, module.id)
        before = await repo.load_rule_set(module.id)

        driver = ValueDriverDefinition(
            name="Canvas",
            attribute="material",
            condition_type=ConditionType.CONTAINS,
            condition_value="canvas",
            price_multiplier=1.1,
        )
        await repo.add_value_driver(driver, module.id)
        await repo.delete_definition(DefinitionKind.DECODER, date_code_decoder.id)

        await repo.replace_rule_set(module.id, before)
        after = await repo.load_rule_set(module.id)
        assert [d.id for d in after.decoders] == [date_code_decoder.id]
        assert after.value_drivers == []
        assert {e.id for e in after.lookup_entries} == {e.id for e in before.lookup_entries}


class TestVersions:
    @pytest.mark.anyio
    async def test_append_only_history(self, db_session: AsyncSession) -> None:
        modules = ExpertiseModuleRepository(db_session)
        versions = ExpertiseVersionRepository(db_session)
        module = await _module(modules)
        snapshot = build_snapshot(module, await modules.load_rule_set(module.id))

        for number in (1, 2):
            await versions.deactivate_all(module.id)
            await versions.create(
                DomainExpertiseVersion(
                    module_id=module.id,
                    version=number,
                    changelog=f"v{number}",
                    snapshot=snapshot,
                ),
            )

        rows = await versions.list_for_module(module.id)
        assert [r.version for r in rows] == [2, 1]
        assert [r.is_active for r in rows] == [True, False]

        active = await versions.get_active(module.id)
        assert active.version == 2
        first = await versions.get_by_number(module.id, 1)
        assert first.changelog == "v1"
        assert await versions.get_by_number(module.id, 9) is None
        assert await versions.get(uuid7()) is None
