"""Pydantic schemas for carriers and the carrier ledger."""
from pydantic import BaseModel, Field, field_validator

from app.schemas.base import BaseResponseSchema, BaseCreateSchema
from typing import Optional, List
from datetime import datetime
from decimal import Decimal
import uuid

from app.core.enum_utils import VALID_CARRIER_TYPES, VALID_EXTERNAL_COURIERS, normalize_to_uppercase
from app.models.carrier import CarrierType, ExternalCourier


# ==================== CARRIER SCHEMAS ====================

class CarrierCreate(BaseCreateSchema):
    """Carrier creation schema. The TR-NNN code is assigned on create."""
    name: str = Field(..., min_length=2, max_length=200)
    carrier_type: CarrierType = Field(CarrierType.INTERNAL, validate_default=True)
    external_courier: Optional[ExternalCourier] = None

    # Contact
    phone: Optional[str] = None
    email: Optional[str] = None

    # Pricing
    fixed_cost: Optional[Decimal] = Field(None, ge=0)
    commission_percentage: Optional[float] = Field(None, ge=0, le=100)

    @field_validator("carrier_type", mode="before")
    @classmethod
    def normalize_carrier_type(cls, v):
        return normalize_to_uppercase(v, VALID_CARRIER_TYPES)

    @field_validator("external_courier", mode="before")
    @classmethod
    def normalize_external_courier(cls, v):
        return normalize_to_uppercase(v, VALID_EXTERNAL_COURIERS)


class CarrierResponse(BaseResponseSchema):
    """Carrier response schema with metrics."""
    id: uuid.UUID
    code: str
    name: str
    carrier_type: str
    external_courier: Optional[str] = None
    phone: Optional[str] = None
    email: Optional[str] = None
    fixed_cost: Optional[Decimal] = None
    commission_percentage: Optional[float] = None
    is_active: bool

    # Metrics
    total_deliveries: int
    successful_deliveries: int
    failed_deliveries: int
    timed_deliveries: int = 0
    success_rate: float
    average_delivery_minutes: float
    total_cost: Decimal
    average_cost: Decimal
    served_districts: List[str] = []
    last_delivery_at: Optional[datetime] = None


# ==================== LEDGER SCHEMAS ====================

class CarrierPaymentCreate(BaseCreateSchema):
    """Payment made to a carrier, reduces what the business owes."""
    amount: Decimal = Field(..., gt=0)
    notes: Optional[str] = None


class LedgerEntryResponse(BaseResponseSchema):
    """Carrier ledger entry."""
    id: uuid.UUID
    carrier_id: uuid.UUID
    carrier_name: str
    sequence: int
    kind: str

    delivery_id: Optional[uuid.UUID] = None
    delivery_code: Optional[str] = None
    sale_id: Optional[uuid.UUID] = None
    sale_number: Optional[str] = None
    expense_id: Optional[uuid.UUID] = None

    carrier_cost: Decimal
    amount_collected: Optional[Decimal] = None
    commission: Optional[Decimal] = None
    payment_amount: Optional[Decimal] = None

    balance_before: Decimal
    net_movement: Decimal
    balance_after: Decimal

    district: Optional[str] = None
    notes: Optional[str] = None
    created_by: Optional[str] = None
    created_at: datetime


class CarrierBalanceResponse(BaseModel):
    """Current running balance. Positive: owed to the carrier."""
    carrier_id: uuid.UUID
    balance: Decimal


class CarrierAccountSummary(BaseModel):
    """Fold over the carrier's most recent ledger entries."""
    carrier_id: uuid.UUID
    carrier_name: Optional[str] = None
    current_balance: Decimal
    total_cost: Decimal
    total_collected: Decimal
    total_paid: Decimal
    total_commissions: Decimal
    successful_deliveries: int
    failed_deliveries: int
    timed_deliveries: int = 0
    entries_considered: int
    recent_entries: List[LedgerEntryResponse] = []


class CarrierWithBalance(BaseModel):
    carrier_id: uuid.UUID
    carrier_name: str
    balance: Decimal
    last_entry_at: datetime
