"""Carrier models: internal delivery staff and external couriers."""
import uuid
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import TYPE_CHECKING, Optional, List

from sqlalchemy import String, Boolean, DateTime, Integer, Float
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.database import Base
from app.db_types import UUIDType, JSONType, Money

if TYPE_CHECKING:
    from app.models.delivery import Delivery


class CarrierType(str, Enum):
    """Carrier type enumeration."""
    INTERNAL = "INTERNAL"    # Own delivery staff
    EXTERNAL = "EXTERNAL"    # Third-party courier


class ExternalCourier(str, Enum):
    """Supported external couriers."""
    OLVA = "OLVA"
    MERCADO_ENVIOS = "MERCADO_ENVIOS"
    URBANO = "URBANO"
    SHALOM = "SHALOM"
    OTHER = "OTHER"


class Carrier(Base):
    """
    Carrier directory entry.
    Holds contact data plus delivery metrics maintained after every
    delivery outcome.
    """
    __tablename__ = "carriers"

    id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        primary_key=True,
        default=uuid.uuid4
    )

    # Identification
    code: Mapped[str] = mapped_column(
        String(20),
        unique=True,
        nullable=False,
        index=True,
        comment="Sequential carrier code e.g., TR-001"
    )
    name: Mapped[str] = mapped_column(String(200), nullable=False)

    carrier_type: Mapped[str] = mapped_column(
        String(30),
        default="INTERNAL",
        nullable=False,
        comment="INTERNAL, EXTERNAL"
    )
    external_courier: Mapped[Optional[str]] = mapped_column(
        String(30),
        nullable=True,
        comment="OLVA, MERCADO_ENVIOS, URBANO, SHALOM, OTHER"
    )

    # Contact
    phone: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    email: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    # Pricing
    fixed_cost: Mapped[Optional[Decimal]] = mapped_column(Money, nullable=True)
    commission_percentage: Mapped[Optional[float]] = mapped_column(Float, nullable=True)

    is_active: Mapped[bool] = mapped_column(Boolean, default=True)

    # Metrics (maintained by CarrierService.record_delivery)
    total_deliveries: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    successful_deliveries: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    failed_deliveries: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    success_rate: Mapped[float] = mapped_column(Float, default=0.0, nullable=False)
    timed_deliveries: Mapped[int] = mapped_column(
        Integer, default=0, nullable=False,
        comment="Successful deliveries with a known duration"
    )
    average_delivery_minutes: Mapped[float] = mapped_column(Float, default=0.0, nullable=False)
    total_cost: Mapped[Decimal] = mapped_column(Money, default=Decimal("0"), nullable=False)
    average_cost: Mapped[Decimal] = mapped_column(Money, default=Decimal("0"), nullable=False)
    served_districts: Mapped[List[str]] = mapped_column(JSONType, default=list, nullable=False)
    last_delivery_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    # Timestamps
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
    deliveries: Mapped[List["Delivery"]] = relationship(
        "Delivery",
        back_populates="carrier"
    )

    @property
    def is_external(self) -> bool:
        return self.carrier_type == CarrierType.EXTERNAL.value

    def __repr__(self) -> str:
        return f"<Carrier(code='{self.code}', name='{self.name}')>"
