"""Carrier ledger: running balance, summaries and balance listing."""
from decimal import Decimal
import uuid

import pytest

from app.core.exceptions import CarrierNotFound, InvalidAmount
from app.models.carrier_ledger import LedgerEntryKind
from app.services.carrier_ledger_service import CarrierLedgerService, net_movement_for
from tests.conftest import ACTOR


def test_net_movement_per_kind():
    assert net_movement_for(LedgerEntryKind.SUCCESSFUL_DELIVERY, Decimal("15"), Decimal("50")) == Decimal("-35.00")
    assert net_movement_for(LedgerEntryKind.SUCCESSFUL_DELIVERY, Decimal("15"), None) == Decimal("15.00")
    assert net_movement_for(LedgerEntryKind.FAILED_DELIVERY, Decimal("15")) == Decimal("0")
    assert net_movement_for(LedgerEntryKind.CARRIER_PAYMENT, payment_amount=Decimal("20")) == Decimal("-20.00")


async def test_first_entry_starts_from_zero(db, make_carrier, make_sale, schedule_delivery):
    carrier = await make_carrier()
    sale = await make_sale()
    delivery = await schedule_delivery(sale, carrier, [("P-100", 2, [])], carrier_cost=Decimal("15.00"))

    ledger = CarrierLedgerService(db)
    entry = await ledger.record_successful_delivery(delivery, amount_collected=Decimal("50.00"), actor=ACTOR)
    await db.commit()

    assert entry.sequence == 1
    assert entry.balance_before == Decimal("0")
    assert entry.net_movement == Decimal("-35.00")
    assert entry.balance_after == Decimal("-35.00")
    assert entry.notes == "Delivery completed. Cost: 15.00, Collected: 50.00"
    assert entry.delivery_code == delivery.code
    assert await ledger.current_balance(carrier.id) == Decimal("-35.00")


async def test_entries_chain_balance(db, make_carrier, make_sale, schedule_delivery):
    carrier = await make_carrier()
    sale = await make_sale([("P-1", 3, Decimal("10.00"))])
    ledger = CarrierLedgerService(db)

    d1 = await schedule_delivery(sale, carrier, [("P-1", 1, [])], carrier_cost=Decimal("20.00"))
    d2 = await schedule_delivery(sale, carrier, [("P-1", 1, [])], carrier_cost=Decimal("12.50"))

    e1 = await ledger.record_successful_delivery(d1, actor=ACTOR)
    e2 = await ledger.record_failed_delivery(d2, "ABSENT", actor=ACTOR)
    e3 = await ledger.record_payment(carrier.id, Decimal("5.00"), actor=ACTOR)
    await db.commit()

    assert [e.sequence for e in (e1, e2, e3)] == [1, 2, 3]
    assert e1.balance_after == Decimal("20.00")
    assert e2.balance_before == e1.balance_after
    assert e2.carrier_cost == Decimal("0")
    assert e2.net_movement == Decimal("0")
    assert e2.notes == "Delivery failed: ABSENT"
    assert e3.balance_before == Decimal("20.00")
    assert e3.balance_after == Decimal("15.00")

    entries = await ledger.list_entries(carrier.id)
    assert [e.sequence for e in entries] == [3, 2, 1]


async def test_invalid_amounts_rejected(db, make_carrier):
    carrier = await make_carrier()
    ledger = CarrierLedgerService(db)

    with pytest.raises(InvalidAmount):
        await ledger.record_payment(carrier.id, Decimal("0"), actor=ACTOR)
    with pytest.raises(InvalidAmount):
        await ledger.append_entry(carrier.id, LedgerEntryKind.SUCCESSFUL_DELIVERY, carrier_cost=Decimal("-1"))


async def test_unknown_carrier_rejected(db):
    with pytest.raises(CarrierNotFound):
        await CarrierLedgerService(db).record_payment(uuid.uuid4(), Decimal("10.00"), actor=ACTOR)


async def test_commission_is_informational(db, make_carrier, make_sale, schedule_delivery):
    carrier = await make_carrier(commission_percentage=10.0)
    sale = await make_sale()
    delivery = await schedule_delivery(sale, carrier, [("P-100", 1, [])], carrier_cost=Decimal("10.00"))

    entry = await CarrierLedgerService(db).record_successful_delivery(
        delivery, amount_collected=Decimal("100.00"), actor=ACTOR
    )

    assert entry.commission == Decimal("10.00")
    assert entry.net_movement == Decimal("-90.00")


async def test_account_summary(db, make_carrier, make_sale, schedule_delivery):
    carrier = await make_carrier()
    sale = await make_sale([("P-1", 2, Decimal("10.00"))])
    ledger = CarrierLedgerService(db)

    d1 = await schedule_delivery(sale, carrier, [("P-1", 1, [])], carrier_cost=Decimal("15.00"))
    d2 = await schedule_delivery(sale, carrier, [("P-1", 1, [])], carrier_cost=Decimal("15.00"))
    await ledger.record_successful_delivery(d1, amount_collected=Decimal("40.00"), actor=ACTOR)
    await ledger.record_failed_delivery(d2, "NOT_FOUND", actor=ACTOR)
    await ledger.record_payment(carrier.id, Decimal("10.00"), actor=ACTOR)
    await db.commit()

    summary = await ledger.account_summary(carrier.id)

    assert summary.carrier_name == carrier.name
    assert summary.current_balance == Decimal("-35.00")
    assert summary.total_cost == Decimal("15.00")
    assert summary.total_collected == Decimal("40.00")
    assert summary.total_paid == Decimal("10.00")
    assert summary.successful_deliveries == 1
    assert summary.failed_deliveries == 1
    assert summary.entries_considered == 3
    assert summary.recent_entries[0].kind == LedgerEntryKind.CARRIER_PAYMENT.value


async def test_account_summary_without_entries(db, make_carrier):
    carrier = await make_carrier()

    summary = await CarrierLedgerService(db).account_summary(carrier.id)

    assert summary.current_balance == Decimal("0")
    assert summary.entries_considered == 0
    assert summary.recent_entries == []


async def test_carriers_with_balance_excludes_zero_and_sorts_by_magnitude(db, make_carrier):
    small = await make_carrier("Carlos Ruiz")
    large = await make_carrier("Rosa Diaz")
    settled = await make_carrier("Luis Soto")
    await make_carrier("Ana Torres")  # no entries
    ledger = CarrierLedgerService(db)

    await ledger.record_payment(small.id, Decimal("5.00"), actor=ACTOR)
    await ledger.record_payment(large.id, Decimal("50.00"), actor=ACTOR)
    await ledger.append_entry(settled.id, LedgerEntryKind.SUCCESSFUL_DELIVERY, carrier_cost=Decimal("10.00"))
    await ledger.record_payment(settled.id, Decimal("10.00"), actor=ACTOR)
    await db.commit()

    balances = await ledger.carriers_with_balance()

    assert [b.carrier_id for b in balances] == [large.id, small.id]
    assert balances[0].balance == Decimal("-50.00")
