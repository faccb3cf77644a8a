"""
TaxBook UAE - Test Configuration

Pytest fixtures and configuration.
"""

from datetime import date
from decimal import Decimal
from typing import AsyncGenerator, Dict, List

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.pool import StaticPool

from taxbook.config import TaxSettings
from taxbook.database import Base, close_db, create_engine_and_sessionmaker, init_db
from taxbook.schemas.ledger import CompanyTaxProfile, Period
from taxbook.services.chart_of_accounts import default_chart_of_accounts
from taxbook.services.ledger_service import LedgerSnapshot


TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

FY2024 = Period(start_date=date(2024, 1, 1), end_date=date(2024, 12, 31))
Q1_2024 = Period(start_date=date(2024, 1, 1), end_date=date(2024, 3, 31))


def revenue(tx_id, amount, category="OPERATING_REVENUE", on=date(2024, 2, 1), **extra) -> Dict:
    return {"kind": "revenue", "id": tx_id, "amount": Decimal(amount), "category": category, "date": on, **extra}


def expense(tx_id, amount, category="COST_OF_SALES", on=date(2024, 2, 1), **extra) -> Dict:
    return {"kind": "expense", "id": tx_id, "amount": Decimal(amount), "category": category, "date": on, **extra}


def balance(kind, tx_id, amount, category, on, direction="increase", settlement="CASH") -> Dict:
    return {
        "kind": kind,
        "id": tx_id,
        "amount": Decimal(amount),
        "category": category,
        "date": on,
        "direction": direction,
        "settlement_account": settlement,
    }


def opening(account, category, amount) -> Dict:
    return {"account": account, "category": category, "amount": Decimal(amount)}


@pytest.fixture
def settings() -> TaxSettings:
    """Default settings, isolated from any local .env file."""
    return TaxSettings(_env_file=None)


@pytest.fixture
def chart():
    return default_chart_of_accounts()


@pytest.fixture
def profile() -> CompanyTaxProfile:
    return CompanyTaxProfile(
        name="Falcon Trading LLC",
        trn="100123456700003",
        annual_revenue=Decimal("400000"),
    )


@pytest.fixture
def scenario_one_transactions() -> List[Dict]:
    """Revenue 400,000 and expenses 100,000, all standard-rated and recoverable."""
    return [
        revenue("S-1", "150000.00", on=date(2024, 1, 10)),
        revenue("S-2", "100000.00", "SERVICE_REVENUE", on=date(2024, 1, 25)),
        revenue("S-3", "90000.00", on=date(2024, 2, 14)),
        revenue("S-4", "60000.00", "SERVICE_REVENUE", on=date(2024, 3, 3)),
        expense("P-1", "70000.00", on=date(2024, 1, 12)),
        expense("P-2", "30000.00", "RENT", on=date(2024, 3, 1)),
    ]


@pytest.fixture
def scenario_five_snapshot(settings) -> LedgerSnapshot:
    """Opening cash 50,000 funded by share capital; one cash sale and one cash expense."""
    return LedgerSnapshot.build(
        transactions=[
            revenue("R-1", "100000.00", on=date(2024, 3, 15)),
            expense("E-1", "30000.00", "OFFICE_EXPENSES", on=date(2024, 5, 20)),
        ],
        opening_balances=[
            opening("CASH", "asset", "50000.00"),
            opening("SHARE_CAPITAL", "equity", "50000.00"),
        ],
        profile={"name": "Scenario Five FZE"},
        settings=settings,
    )


@pytest.fixture
def trading_snapshot(settings, profile) -> LedgerSnapshot:
    """
    A year of trading touching every cash flow section.

    Expected FY2024 figures: net income 179,000; closing cash 335,000;
    total assets 594,000.
    """
    transactions = [
        revenue("T-01", "250000.00", on=date(2024, 1, 15)),
        revenue("T-02", "80000.00", "SERVICE_REVENUE", on=date(2024, 2, 10), settlement_account="ACCOUNTS_RECEIVABLE"),
        expense("T-03", "90000.00", on=date(2024, 3, 5)),
        expense("T-04", "40000.00", "RENT", on=date(2024, 3, 20), settlement_account="ACCOUNTS_PAYABLE"),
        balance("asset", "T-05", "60000.00", "FIXED_ASSETS", date(2024, 4, 1)),
        expense("T-06", "16000.00", "DEPRECIATION", on=date(2024, 6, 30), settlement_account="FIXED_ASSETS"),
        balance("liability", "T-07", "100000.00", "LONG_TERM_LOANS", date(2024, 7, 1)),
        balance("liability", "T-08", "20000.00", "LONG_TERM_LOANS", date(2024, 9, 1), direction="decrease"),
        balance("equity", "T-09", "25000.00", "RETAINED_EARNINGS", date(2024, 10, 1), direction="decrease"),
        balance("asset", "T-10", "35000.00", "INVENTORY", date(2024, 11, 1)),
        balance("liability", "T-11", "30000.00", "ACCOUNTS_PAYABLE", date(2024, 11, 15), direction="decrease"),
        expense("T-12", "5000.00", "ENTERTAINMENT", on=date(2024, 12, 1)),
        balance("equity", "T-13", "50000.00", "SHARE_CAPITAL", date(2024, 12, 10), settlement="BANK"),
    ]
    opening_balances = [
        opening("CASH", "asset", "200000.00"),
        opening("FIXED_ASSETS", "asset", "100000.00"),
        opening("ACCOUNTS_PAYABLE", "liability", "30000.00"),
        opening("SHARE_CAPITAL", "equity", "150000.00"),
        opening("RETAINED_EARNINGS", "equity", "120000.00"),
    ]
    return LedgerSnapshot.build(transactions, opening_balances, profile, settings=settings)


@pytest_asyncio.fixture(scope="function")
async def db_session() -> AsyncGenerator[AsyncSession, None]:
    """Fresh in-memory audit database for each test."""
    engine, session_maker = create_engine_and_sessionmaker(
        TaxSettings(_env_file=None),
        url=TEST_DATABASE_URL,
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    await init_db(engine)

    async with session_maker() as session:
        yield session
        await session.rollback()

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await close_db(engine)
