"""Tests for the SQLAlchemy ORM models in src/db/tables.py.

Covers table creation, FlexJSON round-trips on SQLite, and the unique
constraints on lookup keys and version numbers.
"""

import pytest
from sqlalchemy import inspect
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from src.db.tables import (
    DecoderRow,
    ExpertiseModuleRow,
    ExpertiseVersionRow,
    LookupEntryRow,
    LookupTableRow,
    ValueDriverRow,
)
from src.models.common import new_uuid7, utc_now


@pytest.fixture
async def session(db_engine):
    async with async_sessionmaker(bind=db_engine, class_=AsyncSession, expire_on_commit=False)() as s:
        yield s


async def _module_row(session: AsyncSession) -> ExpertiseModuleRow:
    row = ExpertiseModuleRow(
        module_id=new_uuid7(),
        name="LV Bags",
        description="",
        category_id="handbags",
        applicable_brands=["Louis Vuitton"],
        status="draft",
        current_version=0,
        created_at=utc_now(),
        updated_at=utc_now(),
    )
    session.add(row)
    await session.flush()
    return row


class TestTableCreation:
    EXPECTED_TABLES = {
        "expertise_modules",
        "lookup_tables",
        "lookup_entries",
        "decoders",
        "value_drivers",
        "authenticity_markers",
        "expertise_versions",
    }

    @pytest.mark.anyio
    async def test_all_tables_exist(self, db_engine) -> None:
        async with db_engine.connect() as conn:
            table_names = await conn.run_sync(
                lambda sync_conn: inspect(sync_conn).get_table_names()
            )
        assert self.EXPECTED_TABLES == set(table_names)


class TestFlexJSON:
    @pytest.mark.anyio
    async def test_decoder_json_columns(self, session: AsyncSession) -> None:
        module = await _module_row(session)
        decoder = DecoderRow(
            decoder_id=new_uuid7(),
            module_id=module.module_id,
            name="LV date code",
            identifier_type="lv_date_code",
            input_pattern=r"^([A-Z]{2})(\d{4})$",
            input_max_length=50,
            extraction_rules=[{"capture_group": 1, "output_field": "factory_code"}],
            validation_rules=[],
            output_fields=[],
            base_confidence=0.9,
            priority=0,
            is_active=True,
            test_cases=[{"input": "SD1023", "expected_success": True}],
            created_at=utc_now(),
        )
        session.add(decoder)
        await session.flush()

        fetched = await session.get(DecoderRow, decoder.decoder_id)
        assert fetched is not None
        assert fetched.extraction_rules[0]["output_field"] == "factory_code"
        assert fetched.lookup_table_id is None

    @pytest.mark.anyio
    async def test_condition_value_string_or_object(self, session: AsyncSession) -> None:
        module = await _module_row(session)
        rows = [
            ValueDriverRow(
                driver_id=new_uuid7(),
                module_id=module.module_id,
                name=name,
                attribute="year",
                condition_type=kind,
                condition_value=value,
                case_sensitive=False,
                price_multiplier=1.1,
                priority=0,
                applicable_brands=[],
                is_active=True,
                created_at=utc_now(),
            )
            for name, kind, value in [
                ("Vintage", "range", {"min": 1980, "max": 1999}),
                ("Canvas", "contains", "canvas"),
            ]
        ]
        session.add_all(rows)
        await session.flush()

        vintage = await session.get(ValueDriverRow, rows[0].driver_id)
        canvas = await session.get(ValueDriverRow, rows[1].driver_id)
        assert vintage.condition_value == {"min": 1980, "max": 1999}
        assert canvas.condition_value == "canvas"


class TestConstraints:
    @pytest.mark.anyio
    async def test_lookup_key_unique_per_table(self, session: AsyncSession) -> None:
        table = LookupTableRow(
            table_id=new_uuid7(),
            module_id=None,
            name="LV Factory Codes",
            key_field="code",
            value_schema=[],
            is_active=True,
            created_at=utc_now(),
        )
        session.add(table)
        await session.flush()

        for _ in range(2):
            session.add(
                LookupEntryRow(
                    entry_id=new_uuid7(),
                    table_id=table.table_id,
                    key="SD",
                    entry_values={"location": "San Dimas"},
                    is_active=True,
                    created_at=utc_now(),
                ),
            )
        with pytest.raises(IntegrityError):
            await session.flush()

    @pytest.mark.anyio
    async def test_version_number_unique_per_module(self, session: AsyncSession) -> None:
        module = await _module_row(session)
        for _ in range(2):
            session.add(
                ExpertiseVersionRow(
                    version_id=new_uuid7(),
                    module_id=module.module_id,
                    version=1,
                    changelog="Initial rules",
                    published_at=utc_now(),
                    is_active=True,
                    snapshot={"module": {"name": "LV Bags", "category_id": "handbags"}},
                ),
            )
        with pytest.raises(IntegrityError):
            await session.flush()
