"""
Shared fixtures: an in-memory SQLite database per test, plus factories
for carriers, sales and reserved inventory units.
"""
import os

os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite://")
os.environ.setdefault("BOOKKEEPING_RETRY_ENABLED", "false")

from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import List, Optional

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from app import models  # noqa: F401
from app.database import Base, enable_sqlite_savepoints
from app.models.inventory import InventoryUnit, InventoryUnitStatus
from app.schemas.carrier import CarrierCreate
from app.schemas.delivery import DeliveryCreate, DeliveryItemSelection
from app.schemas.sale import SaleCreate, SaleItemCreate
from app.services.carrier_service import CarrierService
from app.services.delivery_service import DeliveryService
from app.services.sale_service import SaleService


ACTOR = "tester@example.com"


@pytest.fixture
async def engine():
    test_engine = create_async_engine(
        "sqlite+aiosqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    enable_sqlite_savepoints(test_engine)
    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield test_engine
    await test_engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


@pytest.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


# ==================== FACTORIES ====================

@pytest.fixture
def make_carrier(db):
    async def _make(name: str = "Juan Perez", commission_percentage: Optional[float] = None, **kwargs):
        carrier = await CarrierService(db).create_carrier(
            CarrierCreate(name=name, commission_percentage=commission_percentage, **kwargs)
        )
        await db.commit()
        return carrier
    return _make


@pytest.fixture
def make_sale(db):
    async def _make(lines: Optional[List[tuple]] = None, sale_number: str = "V-0001"):
        """lines: [(product_id, quantity, unit_price)]"""
        lines = lines or [("P-100", 2, Decimal("80.00"))]
        sale = await SaleService(db).create_sale(
            SaleCreate(
                sale_number=sale_number,
                customer_name="Maria Lopez",
                customer_phone="987654321",
                items=[
                    SaleItemCreate(
                        product_id=product_id,
                        sku=f"SKU-{product_id}",
                        name=f"Product {product_id}",
                        quantity=quantity,
                        unit_price=price,
                    )
                    for product_id, quantity, price in lines
                ],
            ),
            ACTOR,
        )
        await db.commit()
        return await SaleService(db).require_sale(sale.id)
    return _make


@pytest.fixture
def make_units(db):
    async def _make(product_id: str, count: int, sale_id=None) -> List[str]:
        units = [
            InventoryUnit(
                product_id=product_id,
                status=InventoryUnitStatus.RESERVED.value,
                reserved_for_sale_id=sale_id,
                reserved_at=datetime.now(timezone.utc),
                movements=[],
            )
            for _ in range(count)
        ]
        db.add_all(units)
        await db.commit()
        return [str(unit.id) for unit in units]
    return _make


@pytest.fixture
def schedule_delivery(db):
    async def _schedule(sale, carrier, items: List[tuple], carrier_cost: Decimal = Decimal("15.00"), **kwargs):
        """items: [(product_id, quantity, reserved_unit_ids)]"""
        data = DeliveryCreate(
            sale_id=sale.id,
            carrier_id=carrier.id,
            items=[
                DeliveryItemSelection(product_id=product_id, quantity=quantity, reserved_unit_ids=unit_ids)
                for product_id, quantity, unit_ids in items
            ],
            address="Av. Arequipa 1234",
            district=kwargs.pop("district", "Miraflores"),
            scheduled_at=kwargs.pop("scheduled_at", datetime.now(timezone.utc) + timedelta(hours=2)),
            carrier_cost=carrier_cost,
            **kwargs,
        )
        return await DeliveryService(db).schedule(data, ACTOR)
    return _schedule
