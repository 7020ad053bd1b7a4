"""Shared pytest fixtures for the expertise engine test suite.

Provides:
- db_engine: in-memory SQLite async engine with all tables
- db_session: SAVEPOINT-isolated async session (service commits don't leak)
"""

import pytest
from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine
from sqlalchemy.pool import StaticPool

from src.db.session import Base
import src.db.tables  # noqa: F401 register ORM models on Base.metadata


@pytest.fixture
def anyio_backend():
    """Run anyio-marked tests on asyncio only (SQLAlchemy async requires it)."""
    return "asyncio"


@pytest.fixture
async def db_engine():
    """Create an in-memory SQLite async engine with all tables."""
    eng = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        poolclass=StaticPool,
    )
    async with eng.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield eng
    await eng.dispose()


@pytest.fixture
async def db_session(db_engine):
    """Provide a SAVEPOINT-isolated session.

    The outer transaction is never committed; it rolls back at teardown.
    Application code calling session.commit() triggers a SAVEPOINT release,
    which is then restarted so subsequent operations stay in the same
    outer transaction. This ensures full test isolation.
    """
    async with db_engine.connect() as conn:
        trans = await conn.begin()
        session = AsyncSession(bind=conn, expire_on_commit=False)

        # Start a nested SAVEPOINT
        nested = await conn.begin_nested()

        @event.listens_for(session.sync_session, "after_transaction_end")
        def restart_savepoint(sync_session, transaction):  # noqa: ARG001
            nonlocal nested
            if transaction.nested and not transaction._parent.nested:
                nested = conn.sync_connection.begin_nested()

        yield session

        await session.close()
        await trans.rollback()


# ---------------------------------------------------------------------------
# Rule definition factories
# ---------------------------------------------------------------------------


@pytest.fixture
def factory_table():
    """Factory-code lookup table (e.g. SD -> San Dimas, USA)."""
    from src.models.common import FieldType
    from src.models.rules import LookupTable, LookupValueField

    return LookupTable(
        name="LV Factory Codes",
        key_field="code",
        value_schema=[
            LookupValueField(name="location", type=FieldType.STRING, required=True),
            LookupValueField(name="country", type=FieldType.STRING),
        ],
    )


@pytest.fixture
def factory_entries(factory_table):
    from src.models.rules import LookupEntry

    return [
        LookupEntry(
            table_id=factory_table.id,
            key="SD",
            values={"location": "San Dimas", "country": "USA"},
        ),
        LookupEntry(
            table_id=factory_table.id,
            key="ar",
            values={"location": "Ducey", "country": "France"},
        ),
    ]


@pytest.fixture
def date_code_decoder(factory_table):
    """Two-letter factory code, two-digit month, two-digit year (e.g. SD1023)."""
    from src.models.common import FieldType, TransformType, ValidationRuleType
    from src.models.rules import (
        DecoderDefinition,
        DecoderTestCase,
        ExtractionRule,
        OutputFieldMapping,
        ValidationRule,
        ValidationRuleConfig,
    )

    return DecoderDefinition(
        name="LV date code",
        identifier_type="lv_date_code",
        input_pattern=r"^([A-Z]{2})(\d{2})(\d{2})$",
        extraction_rules=[
            ExtractionRule(capture_group=1, output_field="factory_code"),
            ExtractionRule(
                capture_group=2, output_field="month", transform=TransformType.PARSE_INT,
            ),
            ExtractionRule(
                capture_group=3, output_field="year", transform=TransformType.PARSE_YEAR,
            ),
        ],
        lookup_table_id=factory_table.id,
        lookup_key_group=1,
        validation_rules=[
            ValidationRule(
                field="month",
                type=ValidationRuleType.RANGE,
                config=ValidationRuleConfig(min=1, max=12, error_message="Invalid month"),
            ),
        ],
        output_fields=[
            OutputFieldMapping(source_field="year", output_field="year", type=FieldType.NUMBER),
            OutputFieldMapping(source_field="month", output_field="month", type=FieldType.NUMBER),
            OutputFieldMapping(source_field="location", output_field="factory"),
        ],
        base_confidence=0.9,
        test_cases=[
            DecoderTestCase(
                input="SD1023",
                expected_success=True,
                expected_output={"year": 2023, "month": 10, "factory": "San Dimas"},
            ),
            DecoderTestCase(input="SD1323", expected_success=False),
        ],
    )
