"""Pydantic schemas for sales and their fulfillment views."""
from pydantic import BaseModel, Field

from app.schemas.base import BaseResponseSchema, BaseCreateSchema
from typing import Optional, List
from datetime import datetime
from decimal import Decimal
import uuid


class SaleItemCreate(BaseCreateSchema):
    product_id: str
    sku: str
    name: str
    brand: Optional[str] = None
    presentation: Optional[str] = None
    quantity: int = Field(..., gt=0)
    unit_price: Decimal = Field(..., ge=0)


class SaleCreate(BaseCreateSchema):
    """Sale creation schema (sales are normally owned by the sales module)."""
    sale_number: str
    customer_name: str
    customer_phone: Optional[str] = None
    customer_email: Optional[str] = None
    status: str = "CONFIRMED"
    items: List[SaleItemCreate] = Field(..., min_length=1)


class SaleItemResponse(BaseResponseSchema):
    id: uuid.UUID
    position: int
    product_id: str
    sku: str
    name: str
    brand: Optional[str] = None
    quantity: int
    unit_price: Decimal
    subtotal: Decimal


class SaleResponse(BaseResponseSchema):
    id: uuid.UUID
    sale_number: str
    customer_name: str
    status: str
    total_amount: Decimal
    items: List[SaleItemResponse] = []
    updated_by: Optional[str] = None
    updated_at: datetime


# ==================== FULFILLMENT ====================

class FulfillmentView(BaseModel):
    """Result of reconciling a sale against its delivered deliveries."""
    sale_id: uuid.UUID
    sale_number: str
    total_quantity: int
    delivered_quantity: int
    pending_quantity: int
    previous_status: str
    status: str
    changed: bool


class SaleDeliveryRow(BaseModel):
    delivery_id: uuid.UUID
    code: str
    delivery_index: int
    status: str
    item_count: int
    carrier_name: str
    carrier_cost: Decimal
    scheduled_at: datetime
    delivered_at: Optional[datetime] = None


class SaleDeliverySummary(BaseModel):
    """Per-sale delivery summary."""
    sale_id: uuid.UUID
    sale_number: str
    sale_status: str
    total_deliveries: int
    delivered_deliveries: int
    pending_deliveries: int
    failed_deliveries: int
    total_quantity: int
    delivered_quantity: int
    total_distribution_cost: Decimal
    complete: bool
    deliveries: List[SaleDeliveryRow] = []
