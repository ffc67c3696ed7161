"""Inventory unit model backing the unit gateway (confirm sale / release)."""
import uuid
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Optional, List

from sqlalchemy import String, DateTime
from sqlalchemy.orm import Mapped, mapped_column

from app.database import Base
from app.db_types import UUIDType, JSONType, Money


class InventoryUnitStatus(str, Enum):
    """Inventory unit status enumeration."""
    AVAILABLE = "AVAILABLE"   # In stock, free to reserve
    RESERVED = "RESERVED"     # Earmarked for a sale / delivery
    SOLD = "SOLD"             # Delivered to the customer


class InventoryUnit(Base):
    """A single physical unit of a product."""
    __tablename__ = "inventory_units"

    id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        primary_key=True,
        default=uuid.uuid4
    )
    product_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)

    status: Mapped[str] = mapped_column(
        String(30),
        default="AVAILABLE",
        nullable=False,
        index=True,
        comment="AVAILABLE, RESERVED, SOLD"
    )

    # Reservation
    reserved_for_sale_id: Mapped[Optional[uuid.UUID]] = mapped_column(UUIDType, nullable=True)
    reserved_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    # Sale confirmation
    sale_id: Mapped[Optional[uuid.UUID]] = mapped_column(UUIDType, nullable=True, index=True)
    sale_number: Mapped[Optional[str]] = mapped_column(String(30), nullable=True)
    sold_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    sale_price: Mapped[Optional[Decimal]] = mapped_column(Money, nullable=True)

    # Movement history: [{"type", "at", "by", "notes"}]
    movements: Mapped[List[dict]] = mapped_column(JSONType, default=list, nullable=False)

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

    def __repr__(self) -> str:
        return f"<InventoryUnit(id='{self.id}', status='{self.status}')>"
