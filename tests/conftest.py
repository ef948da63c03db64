"""
Pytest configuration and fixtures.
"""

from datetime import date
from decimal import Decimal
from functools import partial
from typing import Optional

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from crm_commissions.models import Base, CalculationMethod, Partner, PaymentScheduleType, Sale
from crm_commissions.repositories import RuleRepository, UnitOfWork
from crm_commissions.schemas.rule import PaymentTerms, RuleDefinition
from crm_commissions.services import (
    BulkProcessor,
    CommissionService,
    RecalculationEngine,
    RuleRegistry,
)

# Test database URL (use SQLite for tests)
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

SALE_DATE = date(2024, 6, 15)


def build_rule(**overrides) -> RuleDefinition:
    """Flat 2% rule, immediate payout 30 days after the sale, no approval."""
    data = {
        "organization_id": 1,
        "name": "Standard 2%",
        "calculation_method": CalculationMethod.FLAT,
        "base_rate": Decimal("2"),
        "valid_from": date(2024, 1, 1),
        "valid_until": date(2026, 1, 1),
        "payment_terms": PaymentTerms(
            schedule=PaymentScheduleType.IMMEDIATE,
            payment_delay_days=30,
        ),
    }
    data.update(overrides)
    return RuleDefinition(**data)


class Seeder:
    """Inserts sales-side rows and rules the way the collaborators would."""

    def __init__(self, session_factory: async_sessionmaker) -> None:
        self.session_factory = session_factory

    async def partner(self, **kwargs) -> int:
        data = {
            "organization_id": 1,
            "name": "Acme Realty",
            "average_rating": Decimal("4.5"),
            "joined_on": date(2022, 1, 1),
        }
        data.update(kwargs)
        async with self.session_factory() as session:
            partner = Partner(**data)
            session.add(partner)
            await session.commit()
            return partner.id

    async def sale(self, partner_id: Optional[int] = None, **kwargs) -> int:
        data = {
            "organization_id": 1,
            "partner_id": partner_id,
            "sale_price": Decimal("5000000"),
            "base_price": Decimal("4500000"),
            "unit_type": "2BHK",
            "booking_date": SALE_DATE,
        }
        data.update(kwargs)
        async with self.session_factory() as session:
            sale = Sale(**data)
            session.add(sale)
            await session.commit()
            return sale.id

    async def rule(self, rule: Optional[RuleDefinition] = None, **overrides) -> int:
        """Store a rule without validation, as a previously saved rule."""
        async with self.session_factory() as session:
            saved = await RuleRepository(session).add(rule or build_rule(**overrides))
            await session.commit()
            return saved.id


@pytest.fixture
def rule_factory():
    return build_rule


@pytest_asyncio.fixture
async def db_engine():
    """Create test database engine."""
    engine = create_async_engine(TEST_DATABASE_URL, echo=False, poolclass=StaticPool)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest_asyncio.fixture
async def session_factory(db_engine):
    return async_sessionmaker(
        db_engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


@pytest_asyncio.fixture
async def db_session(session_factory):
    """Create test database session."""
    async with session_factory() as session:
        yield session


@pytest.fixture
def uow_factory(session_factory):
    return partial(UnitOfWork, session_factory)


@pytest.fixture
def seed(session_factory):
    return Seeder(session_factory)


@pytest.fixture
def service(uow_factory):
    return CommissionService(uow_factory)


@pytest.fixture
def recalculation(uow_factory):
    return RecalculationEngine(uow_factory, threshold=Decimal("0.01"))


@pytest.fixture
def registry(uow_factory):
    return RuleRegistry(uow_factory)


@pytest.fixture
def bulk(service):
    # One item at a time: the in-memory database shares a single connection
    return BulkProcessor(service, max_items=10, concurrency=1)
