"""Concurrent sessions against a file-backed database."""
import asyncio
from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app import models  # noqa: F401
from app.core.exceptions import StateConflictError
from app.database import Base, create_engine_from_url
from app.models.expense import Expense
from app.schemas.carrier import CarrierCreate
from app.schemas.delivery import DeliveryCreate, DeliveryItemSelection, DeliveryOutcome
from app.schemas.sale import SaleCreate, SaleItemCreate
from app.services.carrier_ledger_service import CarrierLedgerService
from app.services.carrier_service import CarrierService
from app.services.delivery_service import DeliveryService
from app.services.sale_service import SaleService
from tests.conftest import ACTOR


@pytest.fixture
async def file_sessions(tmp_path):
    """One connection per session, like concurrent requests."""
    file_engine = create_engine_from_url(f"sqlite+aiosqlite:///{tmp_path / 'deliveries.db'}")
    async with file_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield async_sessionmaker(file_engine, class_=AsyncSession, expire_on_commit=False, autoflush=False)
    await file_engine.dispose()


async def _create_carrier(file_sessions, name="Juan Perez"):
    async with file_sessions() as session:
        carrier = await CarrierService(session).create_carrier(CarrierCreate(name=name))
        await session.commit()
        return carrier


async def test_concurrent_code_allocation_is_unique(file_sessions):
    carriers = await asyncio.gather(*(_create_carrier(file_sessions, f"Carrier {i}") for i in range(5)))

    assert sorted(c.code for c in carriers) == ["TR-001", "TR-002", "TR-003", "TR-004", "TR-005"]


async def test_concurrent_payments_chain_balances(file_sessions):
    carrier = await _create_carrier(file_sessions)

    async def pay(amount: str):
        async with file_sessions() as session:
            await CarrierLedgerService(session).record_payment(carrier.id, Decimal(amount), actor=ACTOR)
            await session.commit()

    await asyncio.gather(*(pay(f"{i}.00") for i in range(1, 6)))

    async with file_sessions() as session:
        entries = await CarrierLedgerService(session).list_entries(carrier.id)
    entries.sort(key=lambda e: e.sequence)

    assert [e.sequence for e in entries] == [1, 2, 3, 4, 5]
    assert entries[0].balance_before == Decimal("0")
    for previous, entry in zip(entries, entries[1:]):
        assert entry.balance_before == previous.balance_after
    assert entries[-1].balance_after == Decimal("-15.00")


async def test_ledger_append_waits_for_previous_commit(file_sessions):
    carrier = await _create_carrier(file_sessions)

    async with file_sessions() as first:
        await CarrierLedgerService(first).record_payment(carrier.id, Decimal("10.00"), actor=ACTOR)

        async def second_payment():
            async with file_sessions() as second:
                entry = await CarrierLedgerService(second).record_payment(carrier.id, Decimal("5.00"), actor=ACTOR)
                await second.commit()
                return entry

        pending = asyncio.create_task(second_payment())
        await asyncio.sleep(0.05)
        assert not pending.done()

        await first.commit()

    entry = await pending
    assert entry.sequence == 2
    assert entry.balance_before == Decimal("-10.00")
    assert entry.balance_after == Decimal("-15.00")


async def test_concurrent_outcomes_settle_delivery_once(file_sessions):
    carrier = await _create_carrier(file_sessions)
    async with file_sessions() as session:
        sale = await SaleService(session).create_sale(
            SaleCreate(
                sale_number="V-0200",
                customer_name="Maria Lopez",
                items=[SaleItemCreate(product_id="P-100", sku="SKU-100", name="Blender", quantity=2, unit_price=Decimal("80.00"))],
            ),
            ACTOR,
        )
        await session.commit()
        delivery = await DeliveryService(session).schedule(
            DeliveryCreate(
                sale_id=sale.id,
                carrier_id=carrier.id,
                items=[DeliveryItemSelection(product_id="P-100", quantity=2)],
                address="Av. Arequipa 1234",
                district="Miraflores",
                scheduled_at=datetime.now(timezone.utc) + timedelta(hours=2),
                carrier_cost=Decimal("15.00"),
            ),
            ACTOR,
        )

    async def settle():
        async with file_sessions() as session:
            return await DeliveryService(session).record_outcome(
                delivery.id, DeliveryOutcome(success=True, amount_collected=Decimal("50.00")), ACTOR
            )

    results = await asyncio.gather(*(settle() for _ in range(3)), return_exceptions=True)

    conflicts = [r for r in results if isinstance(r, StateConflictError)]
    settled = [r for r in results if not isinstance(r, BaseException)]
    assert len(settled) == 1
    assert len(conflicts) == 2

    async with file_sessions() as session:
        entries = await CarrierLedgerService(session).list_by_delivery(delivery.id)
        expenses = (await session.execute(
            select(func.count(Expense.id)).where(Expense.delivery_id == delivery.id)
        )).scalar()
        carrier = await CarrierService(session).get_carrier(carrier.id)

    assert len(entries) == 1
    assert entries[0].balance_after == Decimal("-35.00")
    assert expenses == 1
    assert carrier.total_deliveries == 1
