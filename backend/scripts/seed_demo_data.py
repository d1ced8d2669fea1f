import asyncio
import logging
import os
import sys
from pathlib import Path
from decimal import Decimal

"""
Seed a demo tenant (account, two stores, items, an admin user) and an
opening balance of purchases into the database.

This script can be run from either:
- backend/: `python scripts/seed_demo_data.py`
- repo root: `python backend/scripts/seed_demo_data.py`

Optional env vars:
- DEMO_ADMIN_EMAIL (default: admin@example.com)
- DEMO_ADMIN_PASSWORD (default: admin)
"""

# Allow running from repo root by ensuring `backend/` is on sys.path
BACKEND_DIR = Path(__file__).resolve().parents[1]
if str(BACKEND_DIR) not in sys.path:
    sys.path.insert(0, str(BACKEND_DIR))

from sqlalchemy import func, select

from core.context import TenantContext
from core.logging_config import configure_logging
from db.account import Account, Store
from db.database import async_session_maker, create_db_and_tables
from db.inventory.movement import PURCHASE
from db.item import Category, Item
from db.users import User
from services import ledger
from services.ledger import MovementRequest

from fastapi_users.password import PasswordHelper


logger = logging.getLogger(__name__)
password_helper = PasswordHelper()

DEMO_ACCOUNT = "Demo Restaurants"
DEMO_STORES = ("Central Kitchen", "Downtown")

# name, category, unit, cost, min, max, opening qty at the central kitchen
DEMO_ITEMS = (
    ("Chicken breast", "Meat", "kg", Decimal("8.50"), Decimal("20"), Decimal("80"), Decimal("50")),
    ("Beef mince", "Meat", "kg", Decimal("9.20"), Decimal("15"), Decimal("60"), Decimal("12")),
    ("Tomatoes", "Produce", "kg", Decimal("2.10"), Decimal("10"), Decimal("40"), Decimal("25")),
    ("Olive oil", "Dry goods", "L", Decimal("7.80"), Decimal("5"), None, Decimal("18")),
    ("Flour", "Dry goods", "kg", Decimal("0.90"), Decimal("25"), Decimal("100"), Decimal("5")),
)


async def get_or_create_account(session, name: str) -> Account:
    result = await session.execute(select(Account).where(func.lower(Account.name) == name.strip().lower()))
    account = result.scalar_one_or_none()
    if account:
        return account

    account = Account(name=name.strip(), base_currency="EUR")
    session.add(account)
    await session.flush()
    return account


async def get_or_create_store(session, account: Account, name: str) -> Store:
    result = await session.execute(
        select(Store).where(Store.account_id == account.id, func.lower(Store.name) == name.strip().lower())
    )
    store = result.scalar_one_or_none()
    if store:
        return store

    store = Store(account_id=account.id, name=name.strip())
    session.add(store)
    await session.flush()
    return store


async def get_or_create_category(session, account: Account, name: str) -> Category:
    result = await session.execute(
        select(Category).where(Category.account_id == account.id, func.lower(Category.name) == name.strip().lower())
    )
    category = result.scalar_one_or_none()
    if category:
        return category

    category = Category(account_id=account.id, name=name.strip())
    session.add(category)
    await session.flush()
    return category


async def get_or_create_item(session, account: Account, category: Category, name, unit, cost, min_level, max_level):
    result = await session.execute(
        select(Item).where(Item.account_id == account.id, func.lower(Item.name) == name.strip().lower())
    )
    item = result.scalar_one_or_none()
    if item:
        return item, False

    item = Item(
        account_id=account.id,
        category_id=category.id,
        name=name.strip(),
        unit=unit,
        cost_price=cost,
        min_stock_level=min_level,
        max_stock_level=max_level,
    )
    session.add(item)
    await session.flush()
    return item, True


async def get_or_create_user(session, account: Account, email: str, password: str) -> User:
    result = await session.execute(select(User).where(User.email == email))
    user = result.scalar_one_or_none()
    if user:
        return user

    user = User(
        email=email,
        hashed_password=password_helper.hash(password),
        name="Demo admin",
        account_id=account.id,
        is_active=True,
        is_superuser=True,
        is_verified=True,
    )
    session.add(user)
    await session.flush()
    return user


async def seed_demo(session, admin_email: str = "admin@example.com", admin_password: str = "admin") -> Account:
    """Idempotent: opening purchases are only booked for newly created items."""
    account = await get_or_create_account(session, DEMO_ACCOUNT)
    stores = [await get_or_create_store(session, account, name) for name in DEMO_STORES]
    user = await get_or_create_user(session, account, admin_email, admin_password)

    opening = []
    for name, category_name, unit, cost, min_level, max_level, qty in DEMO_ITEMS:
        category = await get_or_create_category(session, account, category_name)
        item, created = await get_or_create_item(session, account, category, name, unit, cost, min_level, max_level)
        if created:
            opening.append(
                MovementRequest(
                    item_id=item.id,
                    store_id=stores[0].id,
                    quantity=qty,
                    movement_type=PURCHASE,
                    reason="Opening balance",
                    cost_price=cost,
                )
            )
    await session.commit()

    if opening:
        ctx = TenantContext(account_id=account.id, user_id=user.id)
        await ledger.record_movements(session, ctx, opening)
    logger.info("demo account %s seeded: %d store(s), %d opening movement(s)", account.id, len(stores), len(opening))
    return account


async def seed() -> None:
    configure_logging()
    await create_db_and_tables()
    async with async_session_maker() as session:
        await seed_demo(
            session,
            admin_email=os.getenv("DEMO_ADMIN_EMAIL", "admin@example.com"),
            admin_password=os.getenv("DEMO_ADMIN_PASSWORD", "admin"),
        )


if __name__ == "__main__":
    asyncio.run(seed())
