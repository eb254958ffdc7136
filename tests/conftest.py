from __future__ import annotations

from datetime import datetime, timedelta

import pytest
import pytest_asyncio

from dealer_commission.db import init_models, make_engine, make_sessionmaker
from dealer_commission.models import Sale, Salesperson
from dealer_commission.payplan import CommissionEngine
from dealer_commission.store import ActivityLog, SaleStore

BASE_TIME = datetime(2026, 3, 2, 9, 0, 0)


# ---------------------------------------------------------
# Engine + schema: one throwaway SQLite file per test
# ---------------------------------------------------------
@pytest_asyncio.fixture()
async def engine(tmp_path):
    engine = make_engine(f"sqlite+aiosqlite:///{tmp_path / 'commission.db'}")
    await init_models(engine)
    yield engine
    await engine.dispose()


@pytest.fixture()
def sessionmaker(engine):
    return make_sessionmaker(engine)


@pytest_asyncio.fixture()
async def db(sessionmaker):
    async with sessionmaker() as session:
        yield session


@pytest.fixture()
def store(db):
    return SaleStore(db)


@pytest.fixture()
def activity_log(db):
    return ActivityLog(db)


# ---------------------------------------------------------
# Factories
# ---------------------------------------------------------
@pytest.fixture()
def make_salesperson(db):
    async def _make(full_name: str, manager_id: int | None = None, role: str = "member") -> Salesperson:
        person = Salesperson(
            full_name=full_name,
            email=f"{full_name.lower().replace(' ', '.')}@example.com",
            role=role,
            manager_id=manager_id,
        )
        db.add(person)
        await db.commit()
        return person
    return _make


@pytest.fixture()
def make_sale(db):
    """Insert a sale row directly, the way imported or legacy rows arrive:
    no stock claim is taken."""
    async def _make(salesperson: Salesperson, stock_number: str, customer_name: str = "Customer",
                    minutes: int = 0, **fields) -> Sale:
        fields.setdefault("sale_price", 25000.0)
        fields.setdefault("vehicle_type", "new")
        sale = Sale(
            salesperson_id=salesperson.id,
            stock_number=stock_number,
            customer_name=customer_name,
            created_at=BASE_TIME + timedelta(minutes=minutes),
            **fields,
        )
        for k, v in CommissionEngine().compute(sale).as_columns().items():
            setattr(sale, k, v)
        db.add(sale)
        await db.commit()
        return sale
    return _make
