"""Pydantic schemas for deliveries."""
from pydantic import BaseModel, Field, field_validator, model_validator

from app.schemas.base import BaseResponseSchema, BaseCreateSchema
from typing import Optional, List, Dict
from datetime import datetime
from decimal import Decimal
from enum import Enum
import uuid

from app.core.enum_utils import (
    VALID_DELIVERY_STATUSES,
    VALID_FAILURE_REASONS,
    VALID_PAYMENT_METHODS,
    normalize_to_uppercase,
)
from app.models.delivery import DeliveryStatus, FailureReason, PaymentMethod


class DeliveryDocumentKind(str, Enum):
    """PDFs generated outside this service and attached by URL."""
    CARRIER_GUIDE = "CARRIER_GUIDE"         # Guia para el transportista
    CUSTOMER_RECEIPT = "CUSTOMER_RECEIPT"   # Cargo firmado por el cliente


# ==================== REQUEST SCHEMAS ====================

class DeliveryItemSelection(BaseCreateSchema):
    """A sale line item (or part of it) selected for this delivery."""
    product_id: str
    quantity: int = Field(..., gt=0)
    reserved_unit_ids: List[str] = []


class DeliveryCreate(BaseCreateSchema):
    """Schedule a delivery against a sale."""
    sale_id: uuid.UUID
    carrier_id: uuid.UUID
    items: List[DeliveryItemSelection] = Field(..., min_length=1)

    # Address
    address: str = Field(..., min_length=1)
    district: Optional[str] = None
    reference: Optional[str] = None

    # Schedule
    scheduled_at: datetime
    scheduled_time: Optional[str] = Field(None, description="Time window e.g., 10:00-14:00")
    total_deliveries: Optional[int] = Field(None, ge=1)

    # Collection terms
    collection_pending: bool = False
    amount_to_collect: Optional[Decimal] = Field(None, ge=0)
    expected_payment_method: Optional[PaymentMethod] = None

    carrier_cost: Decimal = Field(Decimal("0"), ge=0)
    notes: Optional[str] = None

    @field_validator("expected_payment_method", mode="before")
    @classmethod
    def normalize_payment_method(cls, v):
        return normalize_to_uppercase(v, VALID_PAYMENT_METHODS)


class DeliveryOutcome(BaseCreateSchema):
    """Outcome of a delivery attempt."""
    success: bool

    # Success data
    delivered_at: Optional[datetime] = None
    photo_url: Optional[str] = None
    signature_url: Optional[str] = None
    delivery_notes: Optional[str] = None
    payment_collected: Optional[bool] = None
    amount_collected: Optional[Decimal] = Field(None, ge=0)
    payment_method_received: Optional[PaymentMethod] = None

    # Failure data
    failure_reason: Optional[FailureReason] = None
    failure_description: Optional[str] = None
    reschedule: bool = False
    new_scheduled_at: Optional[datetime] = None

    @field_validator("failure_reason", mode="before")
    @classmethod
    def normalize_reason(cls, v):
        return normalize_to_uppercase(v, VALID_FAILURE_REASONS)

    @field_validator("payment_method_received", mode="before")
    @classmethod
    def normalize_payment_method(cls, v):
        return normalize_to_uppercase(v, VALID_PAYMENT_METHODS)

    @model_validator(mode="after")
    def check_reschedule_date(self):
        if not self.success and self.reschedule and self.new_scheduled_at is None:
            raise ValueError("new_scheduled_at is required when rescheduling")
        return self


class DeliveryCancel(BaseCreateSchema):
    reason: str = Field(..., min_length=1)


class TrackingNumberUpdate(BaseCreateSchema):
    tracking_number: str = Field(..., min_length=1, max_length=100)


class DeliveryDocumentUpdate(BaseCreateSchema):
    kind: DeliveryDocumentKind
    url: str = Field(..., min_length=1, max_length=500)


class DeliverySearch(BaseModel):
    """Filters for delivery search. All optional, combined with AND."""
    status: Optional[DeliveryStatus] = None
    carrier_id: Optional[uuid.UUID] = None
    sale_id: Optional[uuid.UUID] = None
    date_from: Optional[datetime] = None
    date_to: Optional[datetime] = None
    district: Optional[str] = None
    collection_pending: Optional[bool] = None
    skip: int = 0
    limit: int = 50

    @field_validator("status", mode="before")
    @classmethod
    def normalize_status(cls, v):
        return normalize_to_uppercase(v, VALID_DELIVERY_STATUSES)


# ==================== RESPONSE SCHEMAS ====================

class DeliveryItemResponse(BaseResponseSchema):
    id: uuid.UUID
    position: int
    product_id: str
    sku: str
    brand: Optional[str] = None
    name: str
    presentation: Optional[str] = None
    quantity: int
    reserved_unit_ids: List[str] = []
    unit_price: Decimal
    subtotal: Decimal


class DeliveryResponse(BaseResponseSchema):
    """Delivery response schema."""
    id: uuid.UUID
    code: str
    sale_id: uuid.UUID
    sale_number: str
    delivery_index: int
    total_deliveries: Optional[int] = None

    # Carrier snapshot
    carrier_id: uuid.UUID
    carrier_name: str
    carrier_type: str
    carrier_phone: Optional[str] = None
    external_courier: Optional[str] = None
    tracking_number: Optional[str] = None

    # Customer snapshot
    customer_name: str
    customer_phone: Optional[str] = None
    customer_email: Optional[str] = None
    address: str
    district: Optional[str] = None
    reference: Optional[str] = None

    items: List[DeliveryItemResponse] = []
    item_count: int
    subtotal_amount: Decimal

    collection_pending: bool
    amount_to_collect: Optional[Decimal] = None
    expected_payment_method: Optional[str] = None

    carrier_cost: Decimal
    distribution_expense_id: Optional[uuid.UUID] = None

    status: str
    scheduled_at: datetime
    scheduled_time: Optional[str] = None
    departed_at: Optional[datetime] = None
    delivered_at: Optional[datetime] = None
    delivery_duration_minutes: Optional[int] = None

    failure_reason: Optional[str] = None
    failure_description: Optional[str] = None
    cancellation_reason: Optional[str] = None
    cancelled_at: Optional[datetime] = None

    payment_collected: Optional[bool] = None
    amount_collected: Optional[Decimal] = None
    payment_method_received: Optional[str] = None

    photo_url: Optional[str] = None
    signature_url: Optional[str] = None
    delivery_notes: Optional[str] = None
    carrier_guide_url: Optional[str] = None
    customer_receipt_url: Optional[str] = None
    notes: Optional[str] = None

    created_by: Optional[str] = None
    updated_by: Optional[str] = None
    created_at: datetime
    updated_at: datetime


class DeliveryListResponse(BaseModel):
    """Paginated delivery list."""
    items: List[DeliveryResponse]
    total: int
    skip: int
    limit: int


class NextCodeResponse(BaseModel):
    code: str


class BookkeepingTaskResponse(BaseResponseSchema):
    id: uuid.UUID
    delivery_id: uuid.UUID
    delivery_code: str
    step: str
    payload: Dict = {}
    status: str
    attempts: int
    last_error: Optional[str] = None
    created_at: datetime
    completed_at: Optional[datetime] = None


# ==================== STATS ====================

class CarrierStats(BaseModel):
    carrier_id: uuid.UUID
    carrier_name: str
    deliveries: int
    successful: int
    failed: int
    success_rate: float
    total_cost: Decimal


class DistrictStats(BaseModel):
    district: str
    deliveries: int
    successful: int
    success_rate: float


class DeliveryStats(BaseModel):
    """Aggregates over deliveries scheduled in a date range."""
    total: int
    successful: int
    failed: int
    rescheduled: int
    cancelled: int
    pending: int
    success_rate: float
    average_duration_minutes: Optional[float] = None
    total_carrier_cost: Decimal
    average_carrier_cost: Decimal
    by_carrier: List[CarrierStats] = []
    by_district: List[DistrictStats] = []
