"""
Carrier ledger: append-only running balance per carrier.

SIGN CONVENTION:
━━━━━━━━━━━━━━━━
• Positive balance → the business owes the carrier
• Negative balance → the carrier owes the business (collected more than billed)

NET MOVEMENT BY KIND:
━━━━━━━━━━━━━━━━━━━━━
• SUCCESSFUL_DELIVERY: carrier_cost - amount_collected
• FAILED_DELIVERY:     0 (failed deliveries are never billed)
• CARRIER_PAYMENT:     -payment_amount

Every entry satisfies balance_after == balance_before + net_movement, and
entry[n].balance_before == entry[n-1].balance_after within one carrier.
"""
import uuid
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Optional

from sqlalchemy import String, DateTime, ForeignKey, Integer, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from app.database import Base
from app.db_types import UUIDType, Money


class LedgerEntryKind(str, Enum):
    """Kinds of ledger movements."""
    SUCCESSFUL_DELIVERY = "SUCCESSFUL_DELIVERY"
    FAILED_DELIVERY = "FAILED_DELIVERY"
    CARRIER_PAYMENT = "CARRIER_PAYMENT"


class CarrierLedgerEntry(Base):
    """One immutable ledger row. Never updated or deleted once written."""
    __tablename__ = "carrier_ledger_entries"
    __table_args__ = (
        UniqueConstraint("carrier_id", "sequence", name="uq_carrier_ledger_sequence"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        primary_key=True,
        default=uuid.uuid4
    )

    carrier_id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        ForeignKey("carriers.id", ondelete="RESTRICT"),
        nullable=False,
        index=True
    )
    carrier_name: Mapped[str] = mapped_column(String(200), nullable=False)
    sequence: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        comment="Per-carrier append order, starts at 1"
    )

    kind: Mapped[str] = mapped_column(
        String(30),
        nullable=False,
        index=True,
        comment="SUCCESSFUL_DELIVERY, FAILED_DELIVERY, CARRIER_PAYMENT"
    )

    # Linkage
    delivery_id: Mapped[Optional[uuid.UUID]] = mapped_column(UUIDType, nullable=True, index=True)
    delivery_code: Mapped[Optional[str]] = mapped_column(String(30), nullable=True)
    sale_id: Mapped[Optional[uuid.UUID]] = mapped_column(UUIDType, nullable=True)
    sale_number: Mapped[Optional[str]] = mapped_column(String(30), nullable=True)
    expense_id: Mapped[Optional[uuid.UUID]] = mapped_column(UUIDType, nullable=True)

    # Amounts
    carrier_cost: Mapped[Decimal] = mapped_column(Money, nullable=False, default=Decimal("0"))
    amount_collected: Mapped[Optional[Decimal]] = mapped_column(Money, nullable=True)
    commission: Mapped[Optional[Decimal]] = mapped_column(Money, nullable=True)
    payment_amount: Mapped[Optional[Decimal]] = mapped_column(Money, nullable=True)

    # Running balance
    balance_before: Mapped[Decimal] = mapped_column(Money, nullable=False)
    net_movement: Mapped[Decimal] = mapped_column(Money, nullable=False)
    balance_after: Mapped[Decimal] = mapped_column(Money, nullable=False)

    district: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    created_by: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False,
        index=True
    )

    def __repr__(self) -> str:
        return (
            f"<CarrierLedgerEntry(carrier_id='{self.carrier_id}', seq={self.sequence}, "
            f"kind='{self.kind}', balance_after={self.balance_after})>"
        )
