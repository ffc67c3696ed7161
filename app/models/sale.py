"""Sale models. The sale is owned elsewhere; this subsystem reads its
line items and writes its delivery-related status."""
import uuid
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import TYPE_CHECKING, Optional, List

from sqlalchemy import String, DateTime, ForeignKey, Integer
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.database import Base
from app.db_types import UUIDType, Money

if TYPE_CHECKING:
    from app.models.delivery import Delivery


class SaleStatus(str, Enum):
    """Sale status enumeration."""
    QUOTE = "QUOTE"
    RESERVED = "RESERVED"
    CONFIRMED = "CONFIRMED"
    PARTIAL = "PARTIAL"
    ASSIGNED = "ASSIGNED"
    IN_DELIVERY = "IN_DELIVERY"
    DELIVERED = "DELIVERED"
    CANCELLED = "CANCELLED"
    RETURNED = "RETURNED"


class Sale(Base):
    """Parent order whose line items deliveries fulfill."""
    __tablename__ = "sales"

    id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        primary_key=True,
        default=uuid.uuid4
    )
    sale_number: Mapped[str] = mapped_column(
        String(30),
        unique=True,
        nullable=False,
        index=True,
        comment="Human readable number e.g., VT-2024-001"
    )

    # Customer
    customer_name: Mapped[str] = mapped_column(String(200), nullable=False)
    customer_phone: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    customer_email: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    status: Mapped[str] = mapped_column(
        String(30),
        default="CONFIRMED",
        nullable=False,
        index=True,
        comment="QUOTE, RESERVED, CONFIRMED, PARTIAL, ASSIGNED, IN_DELIVERY, DELIVERED, CANCELLED, RETURNED"
    )
    total_amount: Mapped[Decimal] = mapped_column(Money, default=Decimal("0"), nullable=False)

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
    items: Mapped[List["SaleItem"]] = relationship(
        "SaleItem",
        back_populates="sale",
        cascade="all, delete-orphan",
        order_by="SaleItem.position"
    )
    deliveries: Mapped[List["Delivery"]] = relationship(
        "Delivery",
        back_populates="sale"
    )

    @property
    def total_quantity(self) -> int:
        return sum(item.quantity for item in self.items)

    def find_item(self, product_id: str) -> Optional["SaleItem"]:
        return next((item for item in self.items if item.product_id == product_id), None)

    def __repr__(self) -> str:
        return f"<Sale(sale_number='{self.sale_number}', status='{self.status}')>"


class SaleItem(Base):
    """Line item of a sale."""
    __tablename__ = "sale_items"

    id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        primary_key=True,
        default=uuid.uuid4
    )
    sale_id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        ForeignKey("sales.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    position: Mapped[int] = mapped_column(Integer, default=1, nullable=False)

    product_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    sku: Mapped[str] = mapped_column(String(64), nullable=False)
    brand: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    presentation: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    unit_price: Mapped[Decimal] = mapped_column(Money, nullable=False)
    subtotal: Mapped[Decimal] = mapped_column(Money, nullable=False)

    sale: Mapped["Sale"] = relationship("Sale", back_populates="items")

    def __repr__(self) -> str:
        return f"<SaleItem(sku='{self.sku}', qty={self.quantity})>"
