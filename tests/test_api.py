"""HTTP surface: routing, actor header and error status mapping."""
from datetime import datetime, timedelta, timezone
from decimal import Decimal
import uuid

import pytest
from httpx import ASGITransport, AsyncClient

from app.database import get_db
from app.main import app
from app.schemas.carrier import CarrierCreate
from app.schemas.sale import SaleCreate, SaleItemCreate
from app.services.carrier_service import CarrierService
from app.services.sale_service import SaleService


HEADERS = {"X-Actor-Id": "dispatcher-7"}


@pytest.fixture
async def client(session_factory):
    async def override_get_db():
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_db] = override_get_db
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()


@pytest.fixture
async def seeded(session_factory):
    """A carrier and a two-unit sale, committed and detached."""
    async with session_factory() as session:
        carrier = await CarrierService(session).create_carrier(CarrierCreate(name="Juan Perez"))
        sale = await SaleService(session).create_sale(
            SaleCreate(
                sale_number="V-0100",
                customer_name="Maria Lopez",
                items=[SaleItemCreate(product_id="P-100", sku="SKU-100", name="Blender", quantity=2, unit_price=Decimal("80.00"))],
            ),
            "seed",
        )
        await session.commit()
        return {"carrier_id": str(carrier.id), "sale_id": str(sale.id)}


def delivery_payload(seeded, **overrides):
    payload = {
        "sale_id": seeded["sale_id"],
        "carrier_id": seeded["carrier_id"],
        "items": [{"product_id": "P-100", "quantity": 2}],
        "address": "Av. Arequipa 1234",
        "district": "Miraflores",
        "scheduled_at": (datetime.now(timezone.utc) + timedelta(hours=3)).isoformat(),
        "carrier_cost": "15.00",
    }
    payload.update(overrides)
    return payload


async def test_schedule_and_settle_delivery(client, seeded):
    response = await client.post("/api/v1/deliveries", json=delivery_payload(seeded), headers=HEADERS)
    assert response.status_code == 201
    delivery = response.json()
    assert delivery["status"] == "SCHEDULED"
    assert delivery["created_by"] == "dispatcher-7"

    response = await client.get(f"/api/v1/deliveries/{delivery['id']}")
    assert response.status_code == 200
    assert response.json()["code"] == delivery["code"]

    response = await client.post(
        f"/api/v1/deliveries/{delivery['id']}/outcome",
        json={"success": True, "amount_collected": "50.00", "payment_method_received": "CASH"},
        headers=HEADERS,
    )
    assert response.status_code == 200
    assert response.json()["status"] == "DELIVERED"

    response = await client.get(f"/api/v1/carriers/{seeded['carrier_id']}/balance")
    assert Decimal(str(response.json()["balance"])) == Decimal("-35.00")

    response = await client.get(f"/api/v1/sales/{seeded['sale_id']}/deliveries/summary")
    assert response.status_code == 200
    assert response.json()["sale_status"] == "DELIVERED"
    assert response.json()["complete"] is True

    response = await client.get("/api/v1/deliveries", params={"status": "DELIVERED"})
    assert response.json()["total"] == 1


async def test_second_outcome_returns_conflict(client, seeded):
    delivery = (await client.post("/api/v1/deliveries", json=delivery_payload(seeded), headers=HEADERS)).json()
    url = f"/api/v1/deliveries/{delivery['id']}/outcome"

    assert (await client.post(url, json={"success": True}, headers=HEADERS)).status_code == 200
    response = await client.post(url, json={"success": True}, headers=HEADERS)

    assert response.status_code == 409
    detail = response.json()["detail"]
    assert detail["type"] == "StateConflictError"
    assert detail["current_status"] == "DELIVERED"


async def test_missing_actor_header_rejected(client, seeded):
    response = await client.post("/api/v1/deliveries", json=delivery_payload(seeded))

    assert response.status_code == 400


async def test_unknown_ids_return_404(client, seeded):
    missing = uuid.uuid4()

    assert (await client.get(f"/api/v1/deliveries/{missing}")).status_code == 404
    response = await client.post(f"/api/v1/deliveries/{missing}/outcome", json={"success": True}, headers=HEADERS)
    assert response.status_code == 404
    response = await client.post(
        "/api/v1/deliveries", json=delivery_payload(seeded, sale_id=str(missing)), headers=HEADERS
    )
    assert response.status_code == 404


async def test_business_rule_violations_return_400(client, seeded):
    response = await client.post(
        "/api/v1/deliveries",
        json=delivery_payload(seeded, items=[{"product_id": "P-999", "quantity": 1}]),
        headers=HEADERS,
    )
    assert response.status_code == 400
    assert response.json()["detail"]["type"] == "ProductNotInSale"

    response = await client.post(
        "/api/v1/deliveries",
        json=delivery_payload(seeded, items=[{"product_id": "P-100", "quantity": 5}]),
        headers=HEADERS,
    )
    assert response.status_code == 400
    assert response.json()["detail"]["type"] == "InvalidQuantity"


async def test_malformed_body_returns_422(client, seeded):
    response = await client.post("/api/v1/deliveries", json=delivery_payload(seeded, items=[]), headers=HEADERS)
    assert response.status_code == 422

    response = await client.post(
        f"/api/v1/carriers/{seeded['carrier_id']}/payments", json={"amount": "-5"}, headers=HEADERS
    )
    assert response.status_code == 422


async def test_cancel_and_bookkeeping_listing(client, seeded):
    delivery = (await client.post("/api/v1/deliveries", json=delivery_payload(seeded), headers=HEADERS)).json()

    response = await client.post(
        f"/api/v1/deliveries/{delivery['id']}/cancel", json={"reason": "duplicate order"}, headers=HEADERS
    )
    assert response.status_code == 200
    assert response.json()["status"] == "CANCELLED"

    response = await client.post(
        f"/api/v1/deliveries/{delivery['id']}/tracking", json={"tracking_number": "X1"}, headers=HEADERS
    )
    assert response.status_code == 409

    response = await client.get(f"/api/v1/deliveries/{delivery['id']}/bookkeeping")
    assert response.status_code == 200
    assert response.json() == []


async def test_carrier_payments_and_account(client, seeded):
    carrier_id = seeded["carrier_id"]

    response = await client.post(
        f"/api/v1/carriers/{carrier_id}/payments", json={"amount": "25.00"}, headers=HEADERS
    )
    assert response.status_code == 201
    assert Decimal(str(response.json()["balance_after"])) == Decimal("-25.00")

    response = await client.get(f"/api/v1/carriers/{carrier_id}/account")
    assert Decimal(str(response.json()["total_paid"])) == Decimal("25.00")

    response = await client.get(f"/api/v1/carriers/{carrier_id}/ledger")
    assert len(response.json()) == 1

    response = await client.get("/api/v1/carriers/balances")
    assert [row["carrier_id"] for row in response.json()] == [carrier_id]


async def test_queries_and_reconcile(client, seeded):
    response = await client.get("/api/v1/deliveries/next-code")
    assert response.json()["code"].endswith("-001")

    await client.post("/api/v1/deliveries", json=delivery_payload(seeded), headers=HEADERS)

    response = await client.get("/api/v1/deliveries/pending")
    assert len(response.json()) == 1

    response = await client.get("/api/v1/deliveries/stats")
    assert response.json()["total"] == 1

    response = await client.post(f"/api/v1/sales/{seeded['sale_id']}/reconcile", headers=HEADERS)
    assert response.status_code == 200
    assert response.json()["changed"] is False
    assert response.json()["status"] == "IN_DELIVERY"


async def test_health(client):
    response = await client.get("/health")

    assert response.status_code == 200
    assert response.json()["checks"]["database"] == "connected"
