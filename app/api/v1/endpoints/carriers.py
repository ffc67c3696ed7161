"""Carrier directory and carrier ledger API endpoints."""
from typing import Optional
import uuid

from fastapi import APIRouter, HTTPException, status, Query

from app.api.deps import DB, Actor, http_error
from app.core.exceptions import DeliveryError
from app.models.carrier import CarrierType
from app.schemas.carrier import (
    CarrierAccountSummary,
    CarrierBalanceResponse,
    CarrierCreate,
    CarrierPaymentCreate,
    CarrierResponse,
    CarrierWithBalance,
    LedgerEntryResponse,
)
from app.services.carrier_ledger_service import CarrierLedgerService
from app.services.carrier_service import CarrierService


router = APIRouter()


# ==================== CARRIERS ====================

@router.get("", response_model=list[CarrierResponse])
async def list_carriers(
    db: DB,
    carrier_type: Optional[CarrierType] = Query(None),
    is_active: Optional[bool] = Query(True),
    skip: int = Query(0, ge=0),
    limit: int = Query(50, ge=1, le=200),
):
    carriers, _ = await CarrierService(db).get_carriers(carrier_type, is_active, skip, limit)
    return [CarrierResponse.model_validate(c) for c in carriers]


@router.post("", response_model=CarrierResponse, status_code=status.HTTP_201_CREATED)
async def create_carrier(data: CarrierCreate, db: DB, actor: Actor):
    """Create a carrier. The TR-NNN code is assigned automatically."""
    carrier = await CarrierService(db).create_carrier(data)
    await db.commit()
    return CarrierResponse.model_validate(carrier)


@router.get("/balances", response_model=list[CarrierWithBalance])
async def list_carriers_with_balance(db: DB):
    """Carriers with a non-zero balance, largest first."""
    return await CarrierLedgerService(db).carriers_with_balance()


@router.get("/{carrier_id}", response_model=CarrierResponse)
async def get_carrier(carrier_id: uuid.UUID, db: DB):
    carrier = await CarrierService(db).get_carrier(carrier_id)
    if not carrier:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Carrier not found"
        )
    return CarrierResponse.model_validate(carrier)


# ==================== LEDGER ====================

@router.get("/{carrier_id}/balance", response_model=CarrierBalanceResponse)
async def get_carrier_balance(carrier_id: uuid.UUID, db: DB):
    """Positive: owed to the carrier. Negative: the carrier owes us."""
    balance = await CarrierLedgerService(db).current_balance(carrier_id)
    return CarrierBalanceResponse(carrier_id=carrier_id, balance=balance)


@router.get("/{carrier_id}/account", response_model=CarrierAccountSummary)
async def get_carrier_account(carrier_id: uuid.UUID, db: DB):
    """Account summary folded from the most recent ledger entries."""
    return await CarrierLedgerService(db).account_summary(carrier_id)


@router.get("/{carrier_id}/ledger", response_model=list[LedgerEntryResponse])
async def list_carrier_ledger(
    carrier_id: uuid.UUID,
    db: DB,
    limit: int = Query(50, ge=1, le=500),
):
    entries = await CarrierLedgerService(db).list_entries(carrier_id, limit)
    return [LedgerEntryResponse.model_validate(e) for e in entries]


@router.post(
    "/{carrier_id}/payments",
    response_model=LedgerEntryResponse,
    status_code=status.HTTP_201_CREATED
)
async def record_carrier_payment(
    carrier_id: uuid.UUID,
    data: CarrierPaymentCreate,
    db: DB,
    actor: Actor,
):
    """Record a payment to the carrier."""
    try:
        entry = await CarrierLedgerService(db).record_payment(carrier_id, data.amount, data.notes, actor)
    except DeliveryError as e:
        raise http_error(e)
    await db.commit()
    return LedgerEntryResponse.model_validate(entry)
