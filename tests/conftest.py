import os

# Must be set before any app module reads core.config
os.environ["DATABASE_URL"] = "sqlite+aiosqlite://"
os.environ["JWT_SECRET"] = "test-secret"
os.environ["COUNT_EXPECTED_AS_OF"] = "approval"

from dataclasses import dataclass
from decimal import Decimal

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine

import db.models  # noqa: F401
from core.auth import get_admin_context, get_tenant_context
from core.context import TenantContext
from db.account import Account, Store
from db.database import Base, get_async_session
from db.item import Category, Item
from db.users import User


@dataclass
class Tenant:
    account: Account
    store_a: Store
    store_b: Store
    chicken: Item
    flour: Item
    oil: Item
    user: User

    @property
    def ctx(self) -> TenantContext:
        return TenantContext(account_id=self.account.id, user_id=self.user.id)


async def make_tenant(session, name: str) -> Tenant:
    account = Account(name=name, base_currency="EUR")
    session.add(account)
    await session.flush()

    store_a = Store(account_id=account.id, name="Central Kitchen")
    store_b = Store(account_id=account.id, name="Downtown")
    meat = Category(account_id=account.id, name="Meat")
    dry = Category(account_id=account.id, name="Dry goods")
    session.add_all([store_a, store_b, meat, dry])
    await session.flush()

    chicken = Item(
        account_id=account.id,
        category_id=meat.id,
        name="Chicken breast",
        unit="kg",
        cost_price=Decimal("8.50"),
        min_stock_level=Decimal("20"),
        max_stock_level=Decimal("80"),
    )
    flour = Item(
        account_id=account.id,
        category_id=dry.id,
        name="Flour",
        unit="kg",
        cost_price=Decimal("0.90"),
        min_stock_level=Decimal("25"),
    )
    oil = Item(account_id=account.id, category_id=dry.id, name="Olive oil", unit="L", cost_price=Decimal("7.80"))
    user = User(
        email=f"manager@{name.lower().replace(' ', '-')}.test",
        hashed_password="not-a-real-hash",
        is_active=True,
        is_superuser=True,
        is_verified=True,
        account_id=account.id,
    )
    session.add_all([chicken, flour, oil, user])
    await session.commit()
    return Tenant(account, store_a, store_b, chicken, flour, oil, user)


@pytest.fixture
async def engine(tmp_path):
    eng = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'stock.db'}")
    async with eng.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield eng
    await eng.dispose()


@pytest.fixture
def session_maker(engine):
    return async_sessionmaker(engine, expire_on_commit=False)


@pytest.fixture
async def session(session_maker):
    async with session_maker() as s:
        yield s


# Built in their own session so a rollback under test never expires them
@pytest.fixture
async def tenant(session_maker) -> Tenant:
    async with session_maker() as s:
        return await make_tenant(s, "Trattoria")


@pytest.fixture
async def other_tenant(session_maker) -> Tenant:
    async with session_maker() as s:
        return await make_tenant(s, "Bistro")


@pytest.fixture
def ctx(tenant) -> TenantContext:
    return tenant.ctx


@pytest.fixture
async def client(session_maker, tenant):
    from main import app

    async def _session():
        async with session_maker() as s:
            yield s

    async def _ctx():
        return tenant.ctx

    app.dependency_overrides[get_async_session] = _session
    app.dependency_overrides[get_tenant_context] = _ctx
    app.dependency_overrides[get_admin_context] = _ctx
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as c:
        yield c
    app.dependency_overrides.clear()
