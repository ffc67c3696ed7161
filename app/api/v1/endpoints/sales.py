"""Sale fulfillment API endpoints."""
import uuid

from fastapi import APIRouter

from app.api.deps import DB, Actor, http_error
from app.core.exceptions import DeliveryError
from app.schemas.delivery import DeliveryResponse
from app.schemas.sale import FulfillmentView, SaleDeliverySummary
from app.services.delivery_service import DeliveryService
from app.services.sale_fulfillment_service import SaleFulfillmentService


router = APIRouter()


@router.post("/{sale_id}/reconcile", response_model=FulfillmentView)
async def reconcile_sale(sale_id: uuid.UUID, db: DB, actor: Actor):
    """
    Recompute the sale's delivery status from its delivered deliveries.
    Writes only when the status changes.
    """
    try:
        view = await SaleFulfillmentService(db).reconcile(sale_id, actor)
    except DeliveryError as e:
        raise http_error(e)
    await db.commit()
    return view


@router.get("/{sale_id}/deliveries", response_model=list[DeliveryResponse])
async def list_sale_deliveries(sale_id: uuid.UUID, db: DB):
    deliveries = await DeliveryService(db).list_by_sale(sale_id)
    return [DeliveryResponse.model_validate(d) for d in deliveries]


@router.get("/{sale_id}/deliveries/summary", response_model=SaleDeliverySummary)
async def get_sale_delivery_summary(sale_id: uuid.UUID, db: DB):
    try:
        return await SaleFulfillmentService(db).delivery_summary(sale_id)
    except DeliveryError as e:
        raise http_error(e)
