"""Expense model. Only distribution expenses (GD) are written here."""
import uuid
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Optional

from sqlalchemy import String, DateTime, Integer, Text
from sqlalchemy.orm import Mapped, mapped_column

from app.database import Base
from app.db_types import UUIDType, Money


class ExpenseCategory(str, Enum):
    DISTRIBUTION = "GD"   # Gasto de Distribucion: carrier cost of a delivery


class ExpenseStatus(str, Enum):
    PENDING = "PENDING"   # Not yet paid to the provider
    PAID = "PAID"


class Expense(Base):
    """Expense record."""
    __tablename__ = "expenses"

    id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        primary_key=True,
        default=uuid.uuid4
    )
    expense_number: Mapped[str] = mapped_column(
        String(30),
        unique=True,
        nullable=False,
        index=True,
        comment="Sequential number e.g., GAS-0001"
    )

    expense_type: Mapped[str] = mapped_column(String(30), default="DELIVERY", nullable=False)
    category: Mapped[str] = mapped_column(String(10), nullable=False, index=True)
    description: Mapped[str] = mapped_column(String(500), nullable=False)
    currency: Mapped[str] = mapped_column(String(3), default="PEN", nullable=False)
    amount: Mapped[Decimal] = mapped_column(Money, nullable=False)
    status: Mapped[str] = mapped_column(String(20), default="PENDING", nullable=False)
    provider: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)

    # Period
    month: Mapped[int] = mapped_column(Integer, nullable=False)
    year: Mapped[int] = mapped_column(Integer, nullable=False)

    # Linkage
    delivery_id: Mapped[Optional[uuid.UUID]] = mapped_column(UUIDType, nullable=True, index=True)
    delivery_code: Mapped[Optional[str]] = mapped_column(String(30), nullable=True)
    sale_id: Mapped[Optional[uuid.UUID]] = mapped_column(UUIDType, nullable=True, index=True)
    sale_number: Mapped[Optional[str]] = mapped_column(String(30), nullable=True)
    carrier_id: Mapped[Optional[uuid.UUID]] = mapped_column(UUIDType, nullable=True, index=True)
    carrier_name: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)
    district: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)

    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    created_by: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False
    )

    def __repr__(self) -> str:
        return f"<Expense(number='{self.expense_number}', amount={self.amount})>"
