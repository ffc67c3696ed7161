"""Delivery lifecycle API endpoints."""
from typing import Optional
from datetime import date, datetime
import uuid

from fastapi import APIRouter, HTTPException, status, Query

from app.api.deps import DB, Actor, http_error
from app.core.clock import business_now
from app.core.exceptions import DeliveryError
from app.models.delivery import DeliveryStatus
from app.schemas.delivery import (
    BookkeepingTaskResponse,
    DeliveryCancel,
    DeliveryCreate,
    DeliveryDocumentUpdate,
    DeliveryListResponse,
    DeliveryOutcome,
    DeliveryResponse,
    DeliverySearch,
    DeliveryStats,
    NextCodeResponse,
    TrackingNumberUpdate,
)
from app.services.delivery_service import DeliveryService


router = APIRouter()


# ==================== SCHEDULE & SEARCH ====================

@router.post("", response_model=DeliveryResponse, status_code=status.HTTP_201_CREATED)
async def schedule_delivery(
    data: DeliveryCreate,
    db: DB,
    actor: Actor,
):
    """
    Schedule a delivery for some or all of a sale's line items.
    The parent sale moves to IN_DELIVERY.
    """
    try:
        delivery = await DeliveryService(db).schedule(data, actor)
    except DeliveryError as e:
        raise http_error(e)
    return DeliveryResponse.model_validate(delivery)


@router.get("", response_model=DeliveryListResponse)
async def search_deliveries(
    db: DB,
    status_filter: Optional[DeliveryStatus] = Query(None, alias="status"),
    carrier_id: Optional[uuid.UUID] = Query(None),
    sale_id: Optional[uuid.UUID] = Query(None),
    date_from: Optional[datetime] = Query(None),
    date_to: Optional[datetime] = Query(None),
    district: Optional[str] = Query(None),
    collection_pending: Optional[bool] = Query(None),
    skip: int = Query(0, ge=0),
    limit: int = Query(50, ge=1, le=200),
):
    """Search deliveries. Filters combine with AND."""
    filters = DeliverySearch(
        status=status_filter,
        carrier_id=carrier_id,
        sale_id=sale_id,
        date_from=date_from,
        date_to=date_to,
        district=district,
        collection_pending=collection_pending,
        skip=skip,
        limit=limit,
    )
    items, total = await DeliveryService(db).search(filters)
    return DeliveryListResponse(
        items=[DeliveryResponse.model_validate(d) for d in items],
        total=total,
        skip=skip,
        limit=limit,
    )


@router.get("/pending", response_model=list[DeliveryResponse])
async def list_pending_deliveries(db: DB):
    """Scheduled, en route and rescheduled deliveries, earliest first."""
    deliveries = await DeliveryService(db).list_pending()
    return [DeliveryResponse.model_validate(d) for d in deliveries]


@router.get("/today", response_model=list[DeliveryResponse])
async def list_today_deliveries(
    db: DB,
    day: Optional[date] = Query(None, description="Defaults to today in the business timezone"),
):
    """Deliveries scheduled for a given day."""
    deliveries = await DeliveryService(db).list_for_day(day or business_now().date())
    return [DeliveryResponse.model_validate(d) for d in deliveries]


@router.get("/stats", response_model=DeliveryStats)
async def get_delivery_stats(
    db: DB,
    date_from: Optional[datetime] = Query(None),
    date_to: Optional[datetime] = Query(None),
):
    """Totals, success rate, durations and costs, per carrier and per district."""
    return await DeliveryService(db).stats(date_from, date_to)


@router.get("/next-code", response_model=NextCodeResponse)
async def preview_next_delivery_code(db: DB):
    """Code the next scheduled delivery would get (not reserved)."""
    return NextCodeResponse(code=await DeliveryService(db).preview_next_code())


@router.get("/by-code/{code}", response_model=DeliveryResponse)
async def get_delivery_by_code(code: str, db: DB):
    delivery = await DeliveryService(db).get_by_code(code)
    if not delivery:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Delivery not found"
        )
    return DeliveryResponse.model_validate(delivery)


@router.get("/{delivery_id}", response_model=DeliveryResponse)
async def get_delivery(delivery_id: uuid.UUID, db: DB):
    """Get delivery by ID."""
    delivery = await DeliveryService(db).get_delivery(delivery_id)
    if not delivery:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Delivery not found"
        )
    return DeliveryResponse.model_validate(delivery)


# ==================== TRANSITIONS ====================

@router.post("/{delivery_id}/en-route", response_model=DeliveryResponse)
async def mark_delivery_en_route(delivery_id: uuid.UUID, db: DB, actor: Actor):
    """SCHEDULED -> EN_ROUTE."""
    try:
        delivery = await DeliveryService(db).mark_en_route(delivery_id, actor)
    except DeliveryError as e:
        raise http_error(e)
    return DeliveryResponse.model_validate(delivery)


@router.post("/{delivery_id}/outcome", response_model=DeliveryResponse)
async def record_delivery_outcome(
    delivery_id: uuid.UUID,
    data: DeliveryOutcome,
    db: DB,
    actor: Actor,
):
    """
    Record the result of a delivery attempt.

    Returns 409 if the delivery was already settled. Bookkeeping failures
    after the state change do not fail the request; see
    GET /deliveries/{id}/bookkeeping.
    """
    try:
        delivery = await DeliveryService(db).record_outcome(delivery_id, data, actor)
    except DeliveryError as e:
        raise http_error(e)
    return DeliveryResponse.model_validate(delivery)


@router.post("/{delivery_id}/cancel", response_model=DeliveryResponse)
async def cancel_delivery(
    delivery_id: uuid.UUID,
    data: DeliveryCancel,
    db: DB,
    actor: Actor,
):
    try:
        delivery = await DeliveryService(db).cancel(delivery_id, data.reason, actor)
    except DeliveryError as e:
        raise http_error(e)
    return DeliveryResponse.model_validate(delivery)


@router.post("/{delivery_id}/tracking", response_model=DeliveryResponse)
async def register_tracking_number(
    delivery_id: uuid.UUID,
    data: TrackingNumberUpdate,
    db: DB,
    actor: Actor,
):
    """Attach an external courier's tracking number."""
    try:
        delivery = await DeliveryService(db).register_tracking_number(delivery_id, data.tracking_number, actor)
    except DeliveryError as e:
        raise http_error(e)
    return DeliveryResponse.model_validate(delivery)


@router.post("/{delivery_id}/documents", response_model=DeliveryResponse)
async def register_delivery_document(
    delivery_id: uuid.UUID,
    data: DeliveryDocumentUpdate,
    db: DB,
    actor: Actor,
):
    """Attach the URL of a carrier guide or customer receipt PDF."""
    try:
        delivery = await DeliveryService(db).register_document(delivery_id, data.kind, data.url, actor)
    except DeliveryError as e:
        raise http_error(e)
    return DeliveryResponse.model_validate(delivery)


@router.get("/{delivery_id}/bookkeeping", response_model=list[BookkeepingTaskResponse])
async def get_delivery_bookkeeping(delivery_id: uuid.UUID, db: DB):
    """Bookkeeping steps that failed for this delivery, with retry status."""
    try:
        tasks = await DeliveryService(db).list_bookkeeping(delivery_id)
    except DeliveryError as e:
        raise http_error(e)
    return [BookkeepingTaskResponse.model_validate(t) for t in tasks]
