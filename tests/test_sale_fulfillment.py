"""Sale status derived from delivered quantities."""
from decimal import Decimal
import uuid

import pytest

from app.core.exceptions import SaleNotFound
from app.models.sale import SaleStatus
from app.schemas.delivery import DeliveryOutcome
from app.services.delivery_service import DeliveryService
from app.services.sale_fulfillment_service import SaleFulfillmentService, target_status
from app.services.sale_service import SaleService
from tests.conftest import ACTOR


@pytest.mark.parametrize(
    "total, delivered, current, expected",
    [
        (3, 3, "IN_DELIVERY", "DELIVERED"),
        (3, 4, "IN_DELIVERY", "DELIVERED"),
        (3, 1, "CONFIRMED", "IN_DELIVERY"),
        (3, 0, "CONFIRMED", "CONFIRMED"),
        (0, 0, "CONFIRMED", "CONFIRMED"),
    ],
)
def test_target_status(total, delivered, current, expected):
    assert target_status(total, delivered, current) == expected


async def test_full_delivery_marks_sale_delivered(db, make_carrier, make_sale, schedule_delivery):
    carrier = await make_carrier()
    sale = await make_sale([("P-100", 2, Decimal("80.00"))])
    delivery = await schedule_delivery(sale, carrier, [("P-100", 2, [])])

    await DeliveryService(db).record_outcome(delivery.id, DeliveryOutcome(success=True), ACTOR)

    sale = await SaleService(db).require_sale(sale.id)
    assert sale.status == SaleStatus.DELIVERED.value
    assert sale.updated_by == ACTOR


async def test_partial_deliveries_progress_sale(db, make_carrier, make_sale, schedule_delivery):
    carrier = await make_carrier()
    sale = await make_sale([("P-1", 2, Decimal("50.00")), ("P-2", 1, Decimal("30.00"))])
    first = await schedule_delivery(sale, carrier, [("P-1", 2, [])])
    second = await schedule_delivery(sale, carrier, [("P-2", 1, [])])
    deliveries = DeliveryService(db)
    fulfillment = SaleFulfillmentService(db)

    await deliveries.record_outcome(first.id, DeliveryOutcome(success=True), ACTOR)
    view = await fulfillment.reconcile(sale.id, ACTOR)
    assert view.delivered_quantity == 2
    assert view.pending_quantity == 1
    assert view.status == SaleStatus.IN_DELIVERY.value

    await deliveries.record_outcome(second.id, DeliveryOutcome(success=True), ACTOR)
    view = await fulfillment.reconcile(sale.id, ACTOR)
    assert view.delivered_quantity == 3
    assert view.status == SaleStatus.DELIVERED.value


async def test_reconcile_is_idempotent(db, make_carrier, make_sale, schedule_delivery):
    carrier = await make_carrier()
    sale = await make_sale()
    delivery = await schedule_delivery(sale, carrier, [("P-100", 2, [])])
    await DeliveryService(db).record_outcome(delivery.id, DeliveryOutcome(success=True), ACTOR)

    view = await SaleFulfillmentService(db).reconcile(sale.id, "someone-else")

    assert view.changed is False
    assert view.previous_status == view.status == SaleStatus.DELIVERED.value
    sale = await SaleService(db).require_sale(sale.id)
    assert sale.updated_by == ACTOR


async def test_failed_delivery_does_not_count(db, make_carrier, make_sale, schedule_delivery):
    carrier = await make_carrier()
    sale = await make_sale()
    delivery = await schedule_delivery(sale, carrier, [("P-100", 2, [])])

    await DeliveryService(db).record_outcome(
        delivery.id, DeliveryOutcome(success=False, failure_reason="ABSENT"), ACTOR
    )
    view = await SaleFulfillmentService(db).reconcile(sale.id, ACTOR)

    assert view.delivered_quantity == 0
    assert view.status == SaleStatus.IN_DELIVERY.value


async def test_delivery_summary(db, make_carrier, make_sale, schedule_delivery):
    carrier = await make_carrier()
    sale = await make_sale([("P-1", 3, Decimal("10.00"))])
    first = await schedule_delivery(sale, carrier, [("P-1", 1, [])], carrier_cost=Decimal("12.00"))
    second = await schedule_delivery(sale, carrier, [("P-1", 1, [])])
    await schedule_delivery(sale, carrier, [("P-1", 1, [])])
    deliveries = DeliveryService(db)
    await deliveries.record_outcome(first.id, DeliveryOutcome(success=True), ACTOR)
    await deliveries.record_outcome(second.id, DeliveryOutcome(success=False), ACTOR)

    summary = await SaleFulfillmentService(db).delivery_summary(sale.id)

    assert summary.total_deliveries == 3
    assert summary.delivered_deliveries == 1
    assert summary.failed_deliveries == 1
    assert summary.pending_deliveries == 1
    assert summary.delivered_quantity == 1
    assert summary.total_distribution_cost == Decimal("12.00")
    assert summary.complete is False
    assert [row.delivery_index for row in summary.deliveries] == [1, 2, 3]


async def test_reconcile_unknown_sale(db):
    with pytest.raises(SaleNotFound):
        await SaleFulfillmentService(db).reconcile(uuid.uuid4(), ACTOR)
