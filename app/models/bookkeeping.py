"""Outbox of post-transition bookkeeping steps that failed and await retry."""
import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from sqlalchemy import String, DateTime, Integer, Text
from sqlalchemy.orm import Mapped, mapped_column

from app.database import Base
from app.db_types import UUIDType, JSONType


class BookkeepingStep(str, Enum):
    """Side effects run after a delivery transition."""
    CONFIRM_UNITS = "CONFIRM_UNITS"
    RELEASE_UNITS = "RELEASE_UNITS"
    DISTRIBUTION_EXPENSE = "DISTRIBUTION_EXPENSE"
    LEDGER_ENTRY = "LEDGER_ENTRY"
    CARRIER_METRICS = "CARRIER_METRICS"
    SALE_RECONCILE = "SALE_RECONCILE"


class BookkeepingTaskStatus(str, Enum):
    PENDING = "PENDING"
    DONE = "DONE"
    ABANDONED = "ABANDONED"   # Max attempts reached, needs manual follow-up


class BookkeepingTask(Base):
    """
    One failed step, with the payload needed to replay it.
    Written in the same transaction that rolled the step's savepoint back.
    """
    __tablename__ = "bookkeeping_tasks"

    id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        primary_key=True,
        default=uuid.uuid4
    )

    delivery_id: Mapped[uuid.UUID] = mapped_column(UUIDType, nullable=False, index=True)
    delivery_code: Mapped[str] = mapped_column(String(30), nullable=False)

    step: Mapped[str] = mapped_column(
        String(30),
        nullable=False,
        comment="CONFIRM_UNITS, RELEASE_UNITS, DISTRIBUTION_EXPENSE, LEDGER_ENTRY, CARRIER_METRICS, SALE_RECONCILE"
    )
    payload: Mapped[dict] = mapped_column(JSONType, default=dict, nullable=False)

    status: Mapped[str] = mapped_column(
        String(20),
        default="PENDING",
        nullable=False,
        index=True,
        comment="PENDING, DONE, ABANDONED"
    )
    attempts: Mapped[int] = mapped_column(Integer, default=1, nullable=False)
    last_error: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    actor: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False,
        index=True
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
        nullable=False
    )
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    def __repr__(self) -> str:
        return f"<BookkeepingTask(delivery='{self.delivery_code}', step='{self.step}', status='{self.status}')>"
