"""
Code Sequence Model for Atomic Code Generation

FORMAT:
━━━━━━━
• {PREFIX}-{SCOPE}-{SEQUENCE} when scoped, e.g. ENT-2024-007
• {PREFIX}-{SEQUENCE} when unscoped, e.g. GAS-0042, TR-003
• Continuous sequence within a scope (a new year starts a new scope)

USAGE:
━━━━━━
    from app.services.code_sequence_service import CodeSequenceService

    async def schedule(db):
        service = CodeSequenceService(db)
        code = await service.next_code("ENT", "2024")
        # Returns: ENT-2024-001
"""

import uuid
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import String, Integer, DateTime, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from app.database import Base
from app.db_types import UUIDType


class CodeSequence(Base):
    """
    Counter row per (prefix, scope).

    Example:
        prefix = "ENT"
        scope = "2024"
        current_number = 7
        → Next code: ENT-2024-008
    """
    __tablename__ = "code_sequences"
    __table_args__ = (
        UniqueConstraint("prefix", "scope", name="uq_code_sequence_prefix_scope"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        primary_key=True,
        default=uuid.uuid4
    )

    prefix: Mapped[str] = mapped_column(
        String(10),
        nullable=False,
        index=True,
        comment="ENT, GAS, TR"
    )
    scope: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default="",
        comment="e.g., 2024 for yearly codes, empty when unscoped"
    )

    # Sequence Counter
    current_number: Mapped[int] = mapped_column(
        Integer,
        default=0,
        nullable=False,
        comment="Last used sequence number"
    )

    # Formatting
    padding_length: Mapped[int] = mapped_column(
        Integer,
        default=3,
        nullable=False,
        comment="Zero padding for sequence (3 = 001)"
    )
    separator: Mapped[str] = mapped_column(String(5), default="-", nullable=False)

    last_code: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)

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

    @property
    def stem(self) -> str:
        """Code without the numeric suffix, e.g. ENT-2024 or GAS."""
        if self.scope:
            return f"{self.prefix}{self.separator}{self.scope}"
        return self.prefix

    def format(self, number: int) -> str:
        return f"{self.stem}{self.separator}{str(number).zfill(self.padding_length)}"

    def get_next_code(self) -> str:
        """
        Generate next code.

        NOTE: This method increments current_number but does NOT
        commit to database. The caller must handle the transaction.
        """
        self.current_number += 1
        self.last_code = self.format(self.current_number)
        return self.last_code

    def preview_next_code(self) -> str:
        """Preview next code without incrementing."""
        return self.format(self.current_number + 1)

    def __repr__(self) -> str:
        return f"<CodeSequence({self.stem}: {self.current_number})>"
