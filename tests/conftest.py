import os
from datetime import date, datetime

# Settings are read at import time; tests never touch a real database
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///./ledgerlens_test.db")
os.environ.setdefault("SECRET_KEY", "test-secret-key-not-for-production")
os.environ.setdefault("ALGORITHM", "HS256")
os.environ.setdefault("ACCESS_TOKEN_EXPIRE_MINUTES", "30")

import pytest_asyncio
from httpx import AsyncClient, ASGITransport
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker

from ledgerlens.main import app
from ledgerlens.core import models
from ledgerlens.core.database import Base
from ledgerlens.core.schemas import AIQueryContext
from ledgerlens.core.security import create_access_token
from ledgerlens.core.query.store import Store, get_store

ORG_A = "org-a"
ORG_B = "org-b"


# Fresh SQLite file per test so concurrent reads get their own connections
@pytest_asyncio.fixture(scope="function")
async def test_engine(tmp_path):
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'ledger.db'}", echo=False
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest_asyncio.fixture(scope="function")
async def session_factory(test_engine):
    return async_sessionmaker(test_engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture(scope="function")
async def store(session_factory, seed):
    return Store(session_factory)


# Two tenants with prices, expenses and recurring bills
@pytest_asyncio.fixture(scope="function")
async def seed(session_factory):
    async with session_factory() as session:
        session.add_all(
            [
                models.Organization(id=ORG_A, name="Acme Bakery"),
                models.Organization(id=ORG_B, name="Beta Cafe"),
            ]
        )
        await session.flush()

        session.add_all(
            [
                models.ExpenseCategory(id="cat-food", org_id=ORG_A, name="Food"),
                models.ExpenseCategory(id="cat-util", org_id=ORG_A, name="Utilities"),
            ]
        )

        session.add_all(
            [
                models.InventoryItem(id="item-flour", org_id=ORG_A, name="Flour", unit="kg"),
                models.InventoryItem(id="item-sugar", org_id=ORG_A, name="Sugar", unit="lb"),
                models.InventoryItem(id="item-milk", org_id=ORG_A, name="Milk", unit="gal"),
                models.InventoryItem(id="item-yeast", org_id=ORG_A, name="Yeast", unit="g"),
                models.InventoryItem(
                    id="item-sifter", org_id=ORG_A, name="Flour Sifter", unit="each"
                ),
                models.InventoryItem(
                    id="item-butter",
                    org_id=ORG_A,
                    name="Butter",
                    unit="lb",
                    is_active=False,
                ),
                models.InventoryItem(
                    id="item-bread-flour", org_id=ORG_B, name="Bread Flour", unit="kg"
                ),
            ]
        )
        await session.flush()

        def price(item_id, org_id, amount, when, vendor=None, note=None):
            return models.InventoryPriceHistory(
                item_id=item_id,
                org_id=org_id,
                unit_price=amount,
                effective_at=when,
                vendor=vendor,
                note=note,
            )

        session.add_all(
            [
                price("item-flour", ORG_A, 10.0, datetime(2024, 1, 1, 8, 0), "Mill Co"),
                price("item-flour", ORG_A, 12.0, datetime(2024, 3, 1, 9, 30), "Mill Co", "Harvest shortage"),
                price("item-sugar", ORG_A, 5.0, datetime(2024, 1, 1, 8, 0)),
                price("item-sugar", ORG_A, 5.0, datetime(2024, 3, 5, 8, 0)),
                price("item-milk", ORG_A, 4.0, datetime(2024, 1, 1, 8, 0), "Dairy Farm"),
                price("item-milk", ORG_A, 3.0, datetime(2024, 3, 1, 8, 0), "Dairy Farm"),
                price("item-yeast", ORG_A, 3.0, datetime(2024, 4, 1, 8, 0)),
                price("item-butter", ORG_A, 4.0, datetime(2024, 1, 1, 8, 0)),
                price("item-butter", ORG_A, 8.0, datetime(2024, 3, 1, 8, 0)),
                price("item-bread-flour", ORG_B, 9.5, datetime(2024, 2, 1, 8, 0), "Grain Hub"),
            ]
        )

        session.add_all(
            [
                models.RecurringExpenseTemplate(
                    id="rt-power",
                    org_id=ORG_A,
                    category_id="cat-util",
                    name="Electricity",
                    vendor="City Power",
                    estimated_amount=110.0,
                    frequency="monthly",
                    typical_day_of_month=5,
                ),
                models.RecurringExpenseTemplate(
                    id="rt-internet",
                    org_id=ORG_A,
                    name="Internet",
                    vendor="FastNet",
                    estimated_amount=60.0,
                    frequency="monthly",
                ),
                models.RecurringExpenseTemplate(
                    id="rt-gym",
                    org_id=ORG_A,
                    name="Old Gym",
                    frequency="monthly",
                    is_active=False,
                ),
            ]
        )
        await session.flush()

        def expense(org_id, amount, when, **extra):
            return models.Expense(org_id=org_id, amount=amount, expense_date=when, **extra)

        session.add_all(
            [
                # January: the $100 + $50 pair
                expense(
                    ORG_A,
                    100.0,
                    date(2024, 1, 10),
                    amount_pre_tax=91.75,
                    tax_amount=8.25,
                    category_id="cat-food",
                    vendor="Sysco",
                ),
                expense(ORG_A, 50.0, date(2024, 1, 20)),
                # February
                expense(
                    ORG_A,
                    300.0,
                    date(2024, 2, 5),
                    amount_pre_tax=300.0,
                    tax_amount=0.0,
                    category_id="cat-util",
                    vendor="City Power",
                ),
                expense(
                    ORG_A,
                    120.0,
                    date(2024, 2, 18),
                    amount_pre_tax=110.0,
                    tax_amount=10.0,
                    category_id="cat-food",
                    vendor="Sysco",
                ),
                # Electricity bills
                expense(
                    ORG_A,
                    100.0,
                    date(2024, 3, 5),
                    recurring_template_id="rt-power",
                    vendor="City Power",
                    notes="Mild month",
                ),
                expense(
                    ORG_A,
                    120.0,
                    date(2024, 4, 5),
                    recurring_template_id="rt-power",
                    vendor="City Power",
                ),
                expense(
                    ORG_A,
                    110.0,
                    date(2024, 5, 5),
                    recurring_template_id="rt-power",
                    vendor="City Power",
                ),
                # Other tenant
                expense(
                    ORG_B,
                    500.0,
                    date(2024, 1, 15),
                    amount_pre_tax=460.0,
                    tax_amount=40.0,
                    vendor="Metro",
                ),
            ]
        )
        await session.commit()


# Contexts
@pytest_asyncio.fixture(scope="function")
async def org_a_context():
    return AIQueryContext.for_org(ORG_A, user_id="user-a", user_name="Alice")


@pytest_asyncio.fixture(scope="function")
async def superuser_context():
    return AIQueryContext.for_superuser(user_id="root", user_name="Root")


# Client
@pytest_asyncio.fixture(scope="function")
async def client(store):
    app.dependency_overrides[get_store] = lambda: store

    async with AsyncClient(
        transport=ASGITransport(app=app), base_url="http://test"
    ) as ac:
        yield ac

    app.dependency_overrides.clear()


# Token for a member of org A
@pytest_asyncio.fixture(scope="function")
async def auth_headers_user():
    token = create_access_token(
        {
            "user_id": "user-a",
            "name": "Alice",
            "role": "member",
            "active_org_id": ORG_A,
            "org_ids": [ORG_A],
        }
    )
    return {"Authorization": f"Bearer {token}"}


# Token for a super admin
@pytest_asyncio.fixture(scope="function")
async def auth_headers_superadmin():
    token = create_access_token(
        {"user_id": "root", "name": "Root", "role": "superadmin", "active_org_id": ORG_B}
    )
    return {"Authorization": f"Bearer {token}"}
