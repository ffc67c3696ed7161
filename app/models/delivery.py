"""Delivery models: one shipment attempt (possibly partial) against a sale."""
import uuid
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import TYPE_CHECKING, Optional, List

from sqlalchemy import String, Boolean, DateTime, ForeignKey, Integer, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.database import Base
from app.db_types import UUIDType, JSONType, Money

if TYPE_CHECKING:
    from app.models.carrier import Carrier
    from app.models.sale import Sale


class DeliveryStatus(str, Enum):
    """Delivery status enumeration."""
    SCHEDULED = "SCHEDULED"       # Waiting for the carrier to leave
    EN_ROUTE = "EN_ROUTE"         # Carrier on the way
    DELIVERED = "DELIVERED"       # Delivered successfully
    FAILED = "FAILED"             # Attempt failed, units released
    RESCHEDULED = "RESCHEDULED"   # Attempt failed, new date set
    CANCELLED = "CANCELLED"       # Cancelled


# States from which an outcome can be recorded
OPEN_STATUSES = (DeliveryStatus.SCHEDULED, DeliveryStatus.EN_ROUTE, DeliveryStatus.RESCHEDULED)


class FailureReason(str, Enum):
    """Why a delivery attempt failed."""
    NOT_FOUND = "NOT_FOUND"                 # Address not found
    ABSENT = "ABSENT"                       # Customer absent
    REFUSED = "REFUSED"                     # Customer refused
    DAMAGED_PRODUCT = "DAMAGED_PRODUCT"     # Product arrived damaged
    PAYMENT_REJECTED = "PAYMENT_REJECTED"   # Could not collect payment
    OTHER = "OTHER"


class PaymentMethod(str, Enum):
    """Payment method expected or received on delivery."""
    CASH = "CASH"
    TRANSFER = "TRANSFER"
    YAPE = "YAPE"
    PLIN = "PLIN"
    CARD = "CARD"
    MERCADO_PAGO = "MERCADO_PAGO"
    PAYPAL = "PAYPAL"
    ZELLE = "ZELLE"
    OTHER = "OTHER"


class Delivery(Base):
    """
    Delivery model.
    Carrier and customer fields are snapshots taken at scheduling time and
    are not re-synced afterwards.
    """
    __tablename__ = "deliveries"

    id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        primary_key=True,
        default=uuid.uuid4
    )

    # Identification
    code: Mapped[str] = mapped_column(
        String(30),
        unique=True,
        nullable=False,
        index=True,
        comment="Sequential delivery code e.g., ENT-2024-001"
    )

    # Sale reference
    sale_id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        ForeignKey("sales.id", ondelete="RESTRICT"),
        nullable=False,
        index=True
    )
    sale_number: Mapped[str] = mapped_column(String(30), nullable=False)
    delivery_index: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        comment="1-based ordinal among the sale's deliveries"
    )
    total_deliveries: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)

    # Carrier snapshot
    carrier_id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        ForeignKey("carriers.id", ondelete="RESTRICT"),
        nullable=False,
        index=True
    )
    carrier_name: Mapped[str] = mapped_column(String(200), nullable=False)
    carrier_type: Mapped[str] = mapped_column(String(30), nullable=False)
    carrier_phone: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    external_courier: Mapped[Optional[str]] = mapped_column(String(30), nullable=True)
    tracking_number: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)

    # Customer snapshot
    customer_name: Mapped[str] = mapped_column(String(200), nullable=False)
    customer_phone: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    customer_email: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    # Address
    address: Mapped[str] = mapped_column(Text, nullable=False)
    district: Mapped[Optional[str]] = mapped_column(String(100), nullable=True, index=True)
    reference: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    # Totals over line items
    item_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    subtotal_amount: Mapped[Decimal] = mapped_column(Money, nullable=False, default=Decimal("0"))

    # Collection terms
    collection_pending: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    amount_to_collect: Mapped[Optional[Decimal]] = mapped_column(Money, nullable=True)
    expected_payment_method: Mapped[Optional[str]] = mapped_column(String(30), nullable=True)

    # Carrier cost
    carrier_cost: Mapped[Decimal] = mapped_column(Money, nullable=False, default=Decimal("0"))
    distribution_expense_id: Mapped[Optional[uuid.UUID]] = mapped_column(UUIDType, nullable=True)

    # Status
    status: Mapped[str] = mapped_column(
        String(30),
        default="SCHEDULED",
        nullable=False,
        index=True,
        comment="SCHEDULED, EN_ROUTE, DELIVERED, FAILED, RESCHEDULED, CANCELLED"
    )

    # Dates
    scheduled_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, index=True)
    scheduled_time: Mapped[Optional[str]] = mapped_column(
        String(30),
        nullable=True,
        comment="Time window e.g., 10:00-14:00"
    )
    departed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    delivered_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    delivery_duration_minutes: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)

    # Failure data
    failure_reason: Mapped[Optional[str]] = mapped_column(
        String(30),
        nullable=True,
        comment="NOT_FOUND, ABSENT, REFUSED, DAMAGED_PRODUCT, PAYMENT_REJECTED, OTHER"
    )
    failure_description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    cancellation_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    cancelled_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    # Collection result
    payment_collected: Mapped[Optional[bool]] = mapped_column(Boolean, nullable=True)
    amount_collected: Mapped[Optional[Decimal]] = mapped_column(Money, nullable=True)
    payment_method_received: Mapped[Optional[str]] = mapped_column(String(30), nullable=True)

    # Proof of delivery
    photo_url: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    signature_url: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    delivery_notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # Generated documents
    carrier_guide_url: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    customer_receipt_url: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)

    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # Audit
    created_by: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    updated_by: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
        nullable=False
    )

    # Relationships
    items: Mapped[List["DeliveryItem"]] = relationship(
        "DeliveryItem",
        back_populates="delivery",
        cascade="all, delete-orphan",
        order_by="DeliveryItem.position"
    )
    carrier: Mapped["Carrier"] = relationship("Carrier", back_populates="deliveries")
    sale: Mapped["Sale"] = relationship("Sale", back_populates="deliveries")

    @property
    def reserved_unit_ids(self) -> List[str]:
        """All inventory units this delivery claims, across line items."""
        return [unit_id for item in self.items for unit_id in (item.reserved_unit_ids or [])]

    def __repr__(self) -> str:
        return f"<Delivery(code='{self.code}', status='{self.status}')>"


class DeliveryItem(Base):
    """Line item carried by a delivery."""
    __tablename__ = "delivery_items"

    id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        primary_key=True,
        default=uuid.uuid4
    )
    delivery_id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        ForeignKey("deliveries.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    position: Mapped[int] = mapped_column(Integer, default=1, nullable=False)

    product_id: Mapped[str] = mapped_column(String(64), nullable=False)
    sku: Mapped[str] = mapped_column(String(64), nullable=False)
    brand: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    presentation: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    reserved_unit_ids: Mapped[List[str]] = mapped_column(JSONType, default=list, nullable=False)
    unit_price: Mapped[Decimal] = mapped_column(Money, nullable=False)
    subtotal: Mapped[Decimal] = mapped_column(Money, nullable=False)

    delivery: Mapped["Delivery"] = relationship("Delivery", back_populates="items")

    def __repr__(self) -> str:
        return f"<DeliveryItem(sku='{self.sku}', qty={self.quantity})>"
